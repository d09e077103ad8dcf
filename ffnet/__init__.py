"""
ffnet package
~~~~~~~~~~~~~

Feedforward neural network engine: a dense matrix primitive, a small
set of activations, dense layers and per-sample SGD with L2
regularisation. Also contains weight persistence and a REST API server.
"""

from ffnet.activations import Activation
from ffnet.errors import (
    BatchSizeMismatchError,
    ConfigurationError,
    DimensionMismatchError,
    InvalidInputSizeError,
    ModelStoreError,
    NetworkError,
    PersistenceFormatError,
    UndefinedLossError,
)
from ffnet.layer import ForwardPass, Layer, LayerSize, LayerState
from ffnet.matrix import Matrix
from ffnet.network import LayerSpec, Loss, Network, NetworkConfig, TrainingHistory

__version__ = "1.0.0"

__all__ = [
    "Activation",
    "BatchSizeMismatchError",
    "ConfigurationError",
    "DimensionMismatchError",
    "ForwardPass",
    "InvalidInputSizeError",
    "Layer",
    "LayerSize",
    "LayerSpec",
    "LayerState",
    "Loss",
    "Matrix",
    "ModelStoreError",
    "Network",
    "NetworkConfig",
    "NetworkError",
    "PersistenceFormatError",
    "TrainingHistory",
    "UndefinedLossError",
]
