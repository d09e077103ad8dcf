"""
activations.py
~~~~~~~~~~~~~~

The fixed family of activation functions.

``Activation`` is a tagged variant: LINEAR, SIGMOID and LEAKY_RELU act
elementwise and have scalar derivatives, while SOFTMAX normalises across
the whole output vector and is only differentiated through the combined
softmax/cross-entropy shortcut in :meth:`ffnet.network.Network.train`.
"""

import math
from enum import Enum
from typing import Union

import numpy as np

from ffnet.errors import ConfigurationError
from ffnet.matrix import Matrix

LEAKY_SLOPE = 0.01


def _linear(x: float) -> float:
    return x


def _linear_derivative(x: float) -> float:
    return 1.0


def _sigmoid(x: float) -> float:
    # Split on sign so exp() never overflows
    if x >= 0:
        return 1.0 / (1.0 + math.exp(-x))
    e = math.exp(x)
    return e / (1.0 + e)


def _sigmoid_derivative(x: float) -> float:
    s = _sigmoid(x)
    return s * (1.0 - s)


def _leaky_relu(x: float) -> float:
    return x if x > 0 else LEAKY_SLOPE * x


def _leaky_relu_derivative(x: float) -> float:
    return 1.0 if x > 0 else LEAKY_SLOPE


def softmax(z: Matrix) -> Matrix:
    """
    Normalised exponential over every element of ``z``.

    The maximum is subtracted before exponentiating, so large-magnitude
    inputs do not overflow. The result sums to 1.
    """
    values = z.to_array()
    shifted = np.exp(values - values.max())
    return Matrix.from_array(shifted / shifted.sum())


class Activation(Enum):
    """Activation applied to a layer's pre-activation ``z = W.x + b``."""

    LINEAR = 'linear'
    SIGMOID = 'sigmoid'
    LEAKY_RELU = 'leaky_relu'
    SOFTMAX = 'softmax'

    @classmethod
    def parse(cls, value: Union['Activation', str]) -> 'Activation':
        """
        Resolve an activation from a member or its name.

        Raises:
            ConfigurationError: If the name is unknown
        """
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).lower())
        except ValueError:
            names = ', '.join(member.value for member in cls)
            raise ConfigurationError(
                f"Unknown activation '{value}'; expected one of: {names}"
            ) from None

    @property
    def is_elementwise(self) -> bool:
        return self is not Activation.SOFTMAX

    def activate(self, x: float) -> float:
        if not self.is_elementwise:
            raise ConfigurationError(
                "Softmax is defined on a whole vector, not a scalar"
            )
        return _FUNCTIONS[self][0](x)

    def derivative(self, x: float) -> float:
        if not self.is_elementwise:
            raise ConfigurationError(
                "Softmax has no elementwise derivative; it is only "
                "supported on the output layer"
            )
        return _FUNCTIONS[self][1](x)

    def apply(self, z: Matrix) -> Matrix:
        """Activate a whole pre-activation vector."""
        if not self.is_elementwise:
            return softmax(z)
        return z.map(_FUNCTIONS[self][0])

    def apply_derivative(self, z: Matrix) -> Matrix:
        """Elementwise derivative evaluated at the pre-activation ``z``."""
        if not self.is_elementwise:
            raise ConfigurationError(
                "Softmax has no elementwise derivative; it is only "
                "supported on the output layer"
            )
        return z.map(_FUNCTIONS[self][1])


_FUNCTIONS = {
    Activation.LINEAR: (_linear, _linear_derivative),
    Activation.SIGMOID: (_sigmoid, _sigmoid_derivative),
    Activation.LEAKY_RELU: (_leaky_relu, _leaky_relu_derivative),
}
