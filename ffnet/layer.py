"""
layer.py
~~~~~~~~

A single dense layer and the per-sample forward context.

A layer owns its weight matrix (output x input) and bias column
(output x 1). Forward passes do not store anything on the layer: they
return a :class:`LayerState` which the caller keeps in a
:class:`ForwardPass` and hands back for the backward step.
"""

import math
from dataclasses import dataclass, field
from typing import List, Optional

import numpy as np

from ffnet.activations import Activation
from ffnet.errors import ConfigurationError, DimensionMismatchError
from ffnet.matrix import Matrix


@dataclass(frozen=True)
class LayerSize:
    """Input and output width of a layer."""

    input_size: int
    output_size: int

    def __post_init__(self):
        for name in ('input_size', 'output_size'):
            value = getattr(self, name)
            if isinstance(value, bool) or not isinstance(value, int) or value < 1:
                raise ConfigurationError(
                    f"{name} must be a positive integer, got {value!r}"
                )


@dataclass(frozen=True)
class LayerState:
    """What one layer saw and produced for a single sample."""

    input: Matrix
    pre_activation: Matrix
    output: Matrix


@dataclass
class ForwardPass:
    """Ordered layer states for one sample, first layer first."""

    states: List[LayerState] = field(default_factory=list)

    @property
    def output(self) -> Matrix:
        return self.states[-1].output

    def __len__(self) -> int:
        return len(self.states)

    def __getitem__(self, index: int) -> LayerState:
        return self.states[index]


class Layer:
    """
    Fully connected layer computing ``a = activation(W.x + b)``.

    Args:
        size: Input and output width
        activation: Activation applied to the pre-activation
        weights: Optional initial weights, shape (output, input)
        biases: Optional initial biases, shape (output, 1)
    """

    def __init__(
        self,
        size: LayerSize,
        activation: Activation,
        weights: Optional[Matrix] = None,
        biases: Optional[Matrix] = None
    ):
        self.size = size
        self.activation = Activation.parse(activation)
        self._weights = Matrix(size.output_size, size.input_size)
        self._biases = Matrix(size.output_size, 1)
        if weights is not None:
            self.weights = weights
        if biases is not None:
            self.biases = biases

    @classmethod
    def initialized(
        cls,
        size: LayerSize,
        activation: Activation,
        rng: np.random.Generator,
        bias_init: float = 0.1
    ) -> 'Layer':
        """Create a layer with Glorot-uniform weights and constant biases."""
        limit = math.sqrt(6.0 / (size.input_size + size.output_size))
        weights = Matrix.random_uniform(
            size.output_size, size.input_size, -limit, limit, rng
        )
        biases = Matrix(size.output_size, 1, bias_init)
        return cls(size, activation, weights, biases)

    @property
    def weights(self) -> Matrix:
        return self._weights

    @weights.setter
    def weights(self, value: Matrix) -> None:
        expected = (self.size.output_size, self.size.input_size)
        if value.shape != expected:
            raise DimensionMismatchError(
                f"Weight matrix must be {expected[0]}x{expected[1]}, "
                f"got {value.rows}x{value.cols}"
            )
        self._weights = value.clone()

    @property
    def biases(self) -> Matrix:
        return self._biases

    @biases.setter
    def biases(self, value: Matrix) -> None:
        expected = (self.size.output_size, 1)
        if value.shape != expected:
            raise DimensionMismatchError(
                f"Bias vector must be {expected[0]}x1, got {value.rows}x{value.cols}"
            )
        self._biases = value.clone()

    def forward(self, x: Matrix) -> LayerState:
        z = self._weights.multiply(x).add(self._biases)
        return LayerState(input=x, pre_activation=z, output=self.activation.apply(z))

    def activation_derivative(self, state: LayerState) -> Matrix:
        return self.activation.apply_derivative(state.pre_activation)

    def apply_gradient(
        self,
        delta: Matrix,
        state: LayerState,
        learning_rate: float,
        l2_lambda: float = 0.0
    ) -> Matrix:
        """
        Take one gradient step and return the delta for the layer below.

        ``delta`` must already include this layer's activation derivative.
        The weight gradient is ``delta . x^T + lambda * W``; biases step by
        ``delta`` without regularisation.

        Args:
            delta: Loss gradient w.r.t. this layer's pre-activation
            state: This layer's state from the matching forward pass
            learning_rate: Step size
            l2_lambda: L2 regularisation coefficient

        Returns:
            Matrix: ``W^T . delta`` using the weights before the update.
            The caller multiplies it by the lower layer's activation
            derivative.
        """
        propagated = self._weights.transpose().multiply(delta)
        gradient = delta.multiply(state.input.transpose()).add(
            self._weights.scalar_multiply(l2_lambda)
        )
        self._weights = self._weights.subtract(gradient.scalar_multiply(learning_rate))
        self._biases = self._biases.subtract(delta.scalar_multiply(learning_rate))
        return propagated

    def squared_weight_sum(self) -> float:
        return self._weights.power(2).sum()

    def __repr__(self) -> str:
        return (
            f"Layer({self.size.input_size} -> {self.size.output_size}, "
            f"{self.activation.value})"
        )
