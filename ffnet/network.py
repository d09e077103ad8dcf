"""
network.py
~~~~~~~~~~

Feedforward network: configuration, inference and per-sample SGD.

A network is assembled from a :class:`NetworkConfig` (the unconfigured
phase, where layers may still be appended) and frozen by
:meth:`NetworkConfig.build`. After that the topology never changes; only
weights and biases are updated by training.

Example:
    >>> config = (NetworkConfig(seed=7, loss=Loss.CROSS_ENTROPY)
    ...           .add_layer(1, 3, 'linear')
    ...           .add_layer(3, 2, 'softmax'))
    >>> net = config.build()
    >>> net.train([[0.2], [0.6]], [[1, 0], [0, 1]])
"""

import logging
import math
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Sequence, Union

import numpy as np

from ffnet.activations import Activation
from ffnet.errors import (
    BatchSizeMismatchError,
    ConfigurationError,
    DimensionMismatchError,
    InvalidInputSizeError,
    UndefinedLossError,
)
from ffnet.layer import ForwardPass, Layer, LayerSize
from ffnet.matrix import Matrix

# Configure module logger
logger = logging.getLogger(__name__)

VectorLike = Union[Matrix, Sequence[float], np.ndarray]


class Loss(Enum):
    """Scalar loss reported by training."""

    SQUARED_ERROR = 'squared_error'
    CROSS_ENTROPY = 'cross_entropy'

    @classmethod
    def parse(cls, value: Union['Loss', str]) -> 'Loss':
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).lower())
        except ValueError:
            raise ConfigurationError(f"Unknown loss '{value}'") from None


@dataclass(frozen=True)
class LayerSpec:
    """One entry of a network configuration."""

    input_size: int
    output_size: int
    activation: Activation = Activation.SIGMOID

    def __post_init__(self):
        object.__setattr__(self, 'activation', Activation.parse(self.activation))

    def to_dict(self) -> Dict[str, Any]:
        return {
            'input_size': self.input_size,
            'output_size': self.output_size,
            'activation': self.activation.value,
        }


@dataclass
class TrainingHistory:
    """Losses collected during :meth:`Network.fit`, one per epoch."""

    losses: List[float] = field(default_factory=list)


def _validate_topology(
    specs: Sequence[LayerSpec],
    learning_rate: float,
    l2_lambda: float
) -> None:
    """
    Check a layer sequence and hyperparameters before anything is built.

    Raises:
        ConfigurationError: No layers, non-positive sizes, misplaced
            softmax or bad hyperparameters
        DimensionMismatchError: Adjacent layer sizes differ
    """
    if not specs:
        raise ConfigurationError("A network needs at least one layer")

    for spec in specs:
        LayerSize(spec.input_size, spec.output_size)

    for index in range(len(specs) - 1):
        upper, lower = specs[index], specs[index + 1]
        if upper.output_size != lower.input_size:
            raise DimensionMismatchError(
                f"Layer {index} outputs {upper.output_size} values but "
                f"layer {index + 1} expects {lower.input_size}"
            )

    for index, spec in enumerate(specs[:-1]):
        if not spec.activation.is_elementwise:
            raise ConfigurationError(
                f"Softmax is only supported on the output layer, "
                f"found on layer {index}"
            )

    if not isinstance(learning_rate, (int, float)) or not learning_rate > 0:
        raise ConfigurationError(
            f"learning_rate must be positive, got {learning_rate!r}"
        )
    if not isinstance(l2_lambda, (int, float)) or not l2_lambda >= 0:
        raise ConfigurationError(
            f"l2_lambda must be non-negative, got {l2_lambda!r}"
        )


@dataclass
class NetworkConfig:
    """
    Description of a network before it is built.

    Parameters
    ----------
    layers:
        Ordered layer specifications, input layer first.
    learning_rate:
        Default step size used by :meth:`Network.train` when none is given.
    l2_lambda:
        L2 regularisation coefficient applied to weights (not biases).
    loss:
        Loss reported by training. ``cross_entropy`` expects strictly
        positive predictions, typically from a softmax output layer.
    seed:
        Seed for weight initialisation. The same seed and topology always
        produce the same initial weights.
    bias_init:
        Initial value of every bias.
    """

    layers: List[LayerSpec] = field(default_factory=list)
    learning_rate: float = 0.1
    l2_lambda: float = 0.0
    loss: Loss = Loss.SQUARED_ERROR
    seed: Optional[int] = None
    bias_init: float = 0.1

    def __post_init__(self):
        self.loss = Loss.parse(self.loss)
        self.layers = [
            spec if isinstance(spec, LayerSpec) else LayerSpec(**spec)
            for spec in self.layers
        ]

    def add_layer(
        self,
        input_size: int,
        output_size: int,
        activation: Union[Activation, str] = Activation.SIGMOID
    ) -> 'NetworkConfig':
        """Append a layer; sizes are checked later by :meth:`build`."""
        self.layers.append(LayerSpec(input_size, output_size, activation))
        return self

    def validate(self) -> None:
        _validate_topology(self.layers, self.learning_rate, self.l2_lambda)
        if self.seed is not None and (
            isinstance(self.seed, bool) or not isinstance(self.seed, int) or self.seed < 0
        ):
            raise ConfigurationError(
                f"seed must be None or a non-negative integer, got {self.seed!r}"
            )
        if (
            isinstance(self.bias_init, bool)
            or not isinstance(self.bias_init, (int, float))
            or not math.isfinite(self.bias_init)
        ):
            raise ConfigurationError(
                f"bias_init must be a finite number, got {self.bias_init!r}"
            )

    def build(self) -> 'Network':
        """
        Validate the configuration and create a network with fresh weights.

        Returns:
            Network: The built network

        Raises:
            DimensionMismatchError: Adjacent layer sizes differ
            ConfigurationError: Any other invalid setting
        """
        self.validate()
        rng = np.random.default_rng(self.seed)
        layers = [
            Layer.initialized(
                LayerSize(spec.input_size, spec.output_size),
                spec.activation,
                rng,
                self.bias_init
            )
            for spec in self.layers
        ]
        return Network(layers, self.learning_rate, self.l2_lambda, self.loss)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'layers': [spec.to_dict() for spec in self.layers],
            'learning_rate': self.learning_rate,
            'l2_lambda': self.l2_lambda,
            'loss': self.loss.value,
            'seed': self.seed,
            'bias_init': self.bias_init,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'NetworkConfig':
        if not isinstance(data, dict) or not isinstance(data.get('layers'), list):
            raise ConfigurationError("Configuration must contain a 'layers' list")
        try:
            layers = [LayerSpec(**spec) for spec in data['layers']]
        except TypeError as e:
            raise ConfigurationError(f"Invalid layer specification: {e}") from e
        defaults = cls()
        return cls(
            layers=layers,
            learning_rate=data.get('learning_rate', defaults.learning_rate),
            l2_lambda=data.get('l2_lambda', defaults.l2_lambda),
            loss=data.get('loss', defaults.loss),
            seed=data.get('seed'),
            bias_init=data.get('bias_init', defaults.bias_init),
        )


def _to_column(values: VectorLike, expected: int, error_cls, what: str) -> Matrix:
    """Turn a flat sequence, row or column into an ``expected x 1`` column."""
    if isinstance(values, Matrix):
        if values.cols == 1:
            column = values
        elif values.rows == 1:
            column = values.transpose()
        else:
            raise error_cls(
                f"{what} must be a vector, got a {values.rows}x{values.cols} matrix"
            )
    else:
        try:
            array = np.asarray(values, dtype=np.float64)
        except (ValueError, TypeError) as e:
            raise error_cls(f"{what} must contain only numbers: {e}") from e
        if array.ndim != 1 or array.size == 0:
            raise error_cls(
                f"{what} must be a non-empty flat sequence, got shape {array.shape}"
            )
        column = Matrix.from_array(array.reshape(-1, 1))

    if column.rows != expected:
        raise error_cls(
            f"{what} has {column.rows} values but the network expects {expected}"
        )
    return column


class Network:
    """
    An ordered, immutable sequence of dense layers.

    Instances are normally created by :meth:`NetworkConfig.build`. The
    network is not safe for concurrent training: each training step reads
    and then overwrites every layer's weights.
    """

    def __init__(
        self,
        layers: Sequence[Layer],
        learning_rate: float = 0.1,
        l2_lambda: float = 0.0,
        loss: Union[Loss, str] = Loss.SQUARED_ERROR
    ):
        specs = [
            LayerSpec(layer.size.input_size, layer.size.output_size, layer.activation)
            for layer in layers
        ]
        _validate_topology(specs, learning_rate, l2_lambda)
        self._layers = tuple(layers)
        self.learning_rate = float(learning_rate)
        self.l2_lambda = float(l2_lambda)
        self.loss_kind = Loss.parse(loss)
        logger.info(
            f"Built network {self.sizes} with activations "
            f"{[layer.activation.value for layer in self._layers]}, "
            f"loss={self.loss_kind.value}"
        )

    @property
    def layers(self) -> tuple:
        return self._layers

    @property
    def sizes(self) -> List[int]:
        """Widths of every layer boundary, input first."""
        return [self._layers[0].size.input_size] + [
            layer.size.output_size for layer in self._layers
        ]

    @property
    def input_size(self) -> int:
        return self._layers[0].size.input_size

    @property
    def output_size(self) -> int:
        return self._layers[-1].size.output_size

    def to_config(self, seed: Optional[int] = None) -> NetworkConfig:
        """Describe this network's topology and hyperparameters."""
        return NetworkConfig(
            layers=[
                LayerSpec(layer.size.input_size, layer.size.output_size, layer.activation)
                for layer in self._layers
            ],
            learning_rate=self.learning_rate,
            l2_lambda=self.l2_lambda,
            loss=self.loss_kind,
            seed=seed,
        )

    # ------------------------------------------------------------------
    # Inference
    # ------------------------------------------------------------------

    def forward(self, values: VectorLike) -> ForwardPass:
        """
        Run one sample through every layer and keep each layer's state.

        Raises:
            InvalidInputSizeError: If the input length differs from the
                first layer's input size
        """
        x = _to_column(values, self.input_size, InvalidInputSizeError, 'Input')
        context = ForwardPass()
        for layer in self._layers:
            state = layer.forward(x)
            context.states.append(state)
            x = state.output
        return context

    def predict(self, values: VectorLike) -> Matrix:
        """Return the output column vector for one input vector."""
        return self.forward(values).output

    def classify(self, values: VectorLike) -> int:
        """Index of the largest output."""
        return self.predict(values).argmax()

    # ------------------------------------------------------------------
    # Losses
    # ------------------------------------------------------------------

    def _target_column(self, target: VectorLike) -> Matrix:
        return _to_column(target, self.output_size, DimensionMismatchError, 'Target')

    def _squared_weight_sum(self) -> float:
        return sum(layer.squared_weight_sum() for layer in self._layers)

    def _squared_error(self, prediction: Matrix, target: Matrix) -> float:
        data_term = 0.5 * target.subtract(prediction).power(2).sum() / self.input_size
        return data_term + self.l2_lambda / 2 * self._squared_weight_sum()

    @staticmethod
    def _cross_entropy(prediction: Matrix, target: Matrix) -> float:
        values = prediction.flatten()
        if any(p <= 0 for p in values):
            raise UndefinedLossError(
                "Cross-entropy is undefined for non-positive predictions"
            )
        logs = prediction.map(math.log)
        return -target.elementwise_multiply(logs).sum()

    def _sample_loss(self, prediction: Matrix, target: Matrix) -> float:
        if self.loss_kind is Loss.CROSS_ENTROPY:
            return self._cross_entropy(prediction, target)
        return self._squared_error(prediction, target)

    def squared_error(self, values: VectorLike, target: VectorLike) -> float:
        """``0.5 * sum((t - p)^2) / input_size + lambda / 2 * sum(W^2)``."""
        return self._squared_error(self.predict(values), self._target_column(target))

    def cross_entropy_error(self, values: VectorLike, target: VectorLike) -> float:
        """
        ``-sum(t * log(p))`` for one sample.

        Raises:
            UndefinedLossError: If any predicted component is <= 0
        """
        return self._cross_entropy(self.predict(values), self._target_column(target))

    def loss(self, values: VectorLike, target: VectorLike) -> float:
        """The configured loss for one sample."""
        return self._sample_loss(self.predict(values), self._target_column(target))

    # ------------------------------------------------------------------
    # Training
    # ------------------------------------------------------------------

    def _train_sample(self, values: VectorLike, target: VectorLike, learning_rate: float) -> float:
        target = self._target_column(target)
        context = self.forward(values)
        prediction = context.output
        sample_loss = self._sample_loss(prediction, target)

        error = prediction.subtract(target)
        output_layer = self._layers[-1]
        if output_layer.activation is Activation.SOFTMAX:
            # softmax + cross-entropy: dL/dz = p - t
            delta = error
        else:
            delta = output_layer.activation_derivative(context[-1]).elementwise_multiply(error)

        for index in range(len(self._layers) - 1, -1, -1):
            propagated = self._layers[index].apply_gradient(
                delta, context[index], learning_rate, self.l2_lambda
            )
            if index > 0:
                below = self._layers[index - 1]
                delta = propagated.elementwise_multiply(
                    below.activation_derivative(context[index - 1])
                )
        return sample_loss

    def train(
        self,
        inputs: Sequence[VectorLike],
        targets: Sequence[VectorLike],
        learning_rate: Optional[float] = None
    ) -> float:
        """
        One pass of per-sample gradient descent over a batch.

        Weights are updated immediately after each sample. The loss of each
        sample is measured on the forward pass before its update.

        Args:
            inputs: Input vectors
            targets: Target vectors, one per input
            learning_rate: Step size; defaults to the network's rate

        Returns:
            float: Total loss over the batch

        Raises:
            BatchSizeMismatchError: If inputs and targets differ in length
        """
        if len(inputs) != len(targets):
            raise BatchSizeMismatchError(
                f"Got {len(inputs)} inputs but {len(targets)} targets"
            )
        rate = self.learning_rate if learning_rate is None else learning_rate
        if not rate > 0:
            raise ConfigurationError(f"learning_rate must be positive, got {rate!r}")

        total = 0.0
        for values, target in zip(inputs, targets):
            total += self._train_sample(values, target, rate)
        return total

    def fit(
        self,
        inputs: Sequence[VectorLike],
        targets: Sequence[VectorLike],
        epochs: int,
        learning_rate: Optional[float] = None,
        on_epoch_complete: Optional[Callable[[Dict[str, Any]], None]] = None
    ) -> TrainingHistory:
        """
        Repeat :meth:`train` for a number of epochs.

        Args:
            inputs: Input vectors
            targets: Target vectors
            epochs: Number of passes over the batch
            learning_rate: Step size; defaults to the network's rate
            on_epoch_complete: Optional callback receiving
                ``{'epoch', 'total_epochs', 'loss', 'elapsed_time'}``

        Returns:
            TrainingHistory: Total loss of every epoch
        """
        if isinstance(epochs, bool) or not isinstance(epochs, int) or epochs < 1:
            raise ConfigurationError(f"epochs must be a positive integer, got {epochs!r}")

        history = TrainingHistory()
        start = time.time()
        for epoch in range(1, epochs + 1):
            epoch_loss = self.train(inputs, targets, learning_rate)
            history.losses.append(epoch_loss)
            logger.debug(f"Epoch {epoch}/{epochs}: loss={epoch_loss:.6f}")
            if on_epoch_complete is not None:
                on_epoch_complete({
                    'epoch': epoch,
                    'total_epochs': epochs,
                    'loss': epoch_loss,
                    'elapsed_time': time.time() - start,
                })
        return history

    def __repr__(self) -> str:
        return f"Network(sizes={self.sizes}, loss={self.loss_kind.value})"
