"""
errors.py
~~~~~~~~~

Exception hierarchy for the network engine.

Every error raised by the package derives from :class:`NetworkError` so
callers can catch engine failures in one place. Errors caused by bad
values also derive from ``ValueError``.
"""


class NetworkError(Exception):
    """Base class for all engine errors."""


class DimensionMismatchError(NetworkError, ValueError):
    """Matrix operands or adjacent layers have incompatible shapes."""


class InvalidInputSizeError(NetworkError, ValueError):
    """An input vector does not match the first layer's input size."""


class BatchSizeMismatchError(NetworkError, ValueError):
    """Training inputs and targets have different lengths."""


class PersistenceFormatError(NetworkError, ValueError):
    """A saved weight document is malformed or does not fit the network."""


class ConfigurationError(NetworkError, ValueError):
    """Invalid topology or hyperparameters."""


class UndefinedLossError(NetworkError, ValueError):
    """A loss was requested for predictions outside its domain."""


class ModelStoreError(NetworkError):
    """The SQLite model store failed."""
