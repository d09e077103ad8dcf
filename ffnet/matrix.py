"""
matrix.py
~~~~~~~~~

Dense 2-D matrix of float64 values.

The storage is a ``numpy`` array, but every operation checks shapes
explicitly and raises :class:`DimensionMismatchError` instead of relying
on numpy broadcasting. Arithmetic always returns a new ``Matrix``; the
only in-place mutator is :meth:`Matrix.set`.
"""

from typing import Callable, List, Optional, Sequence, Tuple

import numpy as np

from ffnet.errors import DimensionMismatchError


class Matrix:
    """A rows x cols matrix of doubles stored row-major."""

    __slots__ = ('_data',)

    def __init__(self, rows: int, cols: int, fill: float = 0.0):
        """
        Create a matrix filled with a constant value.

        Args:
            rows: Number of rows (must be positive)
            cols: Number of columns (must be positive)
            fill: Initial value of every element

        Raises:
            DimensionMismatchError: If either dimension is not positive
        """
        if rows < 1 or cols < 1:
            raise DimensionMismatchError(
                f"Matrix dimensions must be positive, got {rows}x{cols}"
            )
        self._data = np.full((rows, cols), float(fill), dtype=np.float64)

    # ------------------------------------------------------------------
    # Construction helpers
    # ------------------------------------------------------------------

    @classmethod
    def from_array(cls, array) -> 'Matrix':
        """Wrap a copy of a 2-D array-like as a matrix."""
        data = np.array(array, dtype=np.float64)
        if data.ndim != 2 or data.shape[0] < 1 or data.shape[1] < 1:
            raise DimensionMismatchError(
                f"Expected a non-empty 2-D array, got shape {data.shape}"
            )
        matrix = cls.__new__(cls)
        matrix._data = data
        return matrix

    @classmethod
    def from_rows(cls, rows: Sequence[Sequence[float]]) -> 'Matrix':
        """Build a matrix from a list of equally long rows."""
        widths = {len(row) for row in rows}
        if len(widths) > 1:
            raise DimensionMismatchError(
                f"Ragged rows: found row lengths {sorted(widths)}"
            )
        return cls.from_array(rows)

    @classmethod
    def column(cls, values: Sequence[float]) -> 'Matrix':
        """Build an n x 1 column vector."""
        return cls.from_array([[v] for v in values])

    @classmethod
    def row(cls, values: Sequence[float]) -> 'Matrix':
        """Build a 1 x n row vector."""
        return cls.from_array([list(values)])

    @classmethod
    def random_uniform(
        cls,
        rows: int,
        cols: int,
        low: float,
        high: float,
        rng: Optional[np.random.Generator] = None
    ) -> 'Matrix':
        """Sample every element uniformly from ``[low, high)``."""
        if rows < 1 or cols < 1:
            raise DimensionMismatchError(
                f"Matrix dimensions must be positive, got {rows}x{cols}"
            )
        rng = rng if rng is not None else np.random.default_rng()
        return cls.from_array(rng.uniform(low, high, size=(rows, cols)))

    # ------------------------------------------------------------------
    # Shape and element access
    # ------------------------------------------------------------------

    @property
    def rows(self) -> int:
        return self._data.shape[0]

    @property
    def cols(self) -> int:
        return self._data.shape[1]

    @property
    def shape(self) -> Tuple[int, int]:
        return self._data.shape

    def get(self, row: int, col: int) -> float:
        self._check_index(row, col)
        return float(self._data[row, col])

    def set(self, row: int, col: int, value: float) -> None:
        """Overwrite one element in place."""
        self._check_index(row, col)
        self._data[row, col] = float(value)

    def _check_index(self, row: int, col: int) -> None:
        if not (0 <= row < self.rows and 0 <= col < self.cols):
            raise IndexError(
                f"Index ({row}, {col}) out of range for {self.rows}x{self.cols} matrix"
            )

    # ------------------------------------------------------------------
    # Arithmetic
    # ------------------------------------------------------------------

    def _require_same_shape(self, other: 'Matrix', operation: str) -> None:
        if self.shape != other.shape:
            raise DimensionMismatchError(
                f"Cannot {operation} {self.rows}x{self.cols} and "
                f"{other.rows}x{other.cols} matrices"
            )

    def add(self, other: 'Matrix') -> 'Matrix':
        self._require_same_shape(other, 'add')
        return Matrix.from_array(self._data + other._data)

    def subtract(self, other: 'Matrix') -> 'Matrix':
        self._require_same_shape(other, 'subtract')
        return Matrix.from_array(self._data - other._data)

    def elementwise_multiply(self, other: 'Matrix') -> 'Matrix':
        """Hadamard product of two equally shaped matrices."""
        self._require_same_shape(other, 'elementwise multiply')
        return Matrix.from_array(self._data * other._data)

    def multiply(self, other: 'Matrix') -> 'Matrix':
        """
        Matrix product ``self . other``.

        Args:
            other: Right-hand operand with ``other.rows == self.cols``

        Returns:
            Matrix: A ``self.rows x other.cols`` matrix

        Raises:
            DimensionMismatchError: If the inner dimensions differ
        """
        if self.cols != other.rows:
            raise DimensionMismatchError(
                f"Cannot multiply {self.rows}x{self.cols} by "
                f"{other.rows}x{other.cols}: inner dimensions differ"
            )
        return Matrix.from_array(self._data @ other._data)

    def scalar_multiply(self, k: float) -> 'Matrix':
        return Matrix.from_array(self._data * float(k))

    def transpose(self) -> 'Matrix':
        return Matrix.from_array(self._data.T)

    def map(self, fn: Callable[[float], float]) -> 'Matrix':
        """Apply a unary function to every element."""
        mapped = [[fn(float(v)) for v in row] for row in self._data]
        return Matrix.from_array(mapped)

    def power(self, p: float) -> 'Matrix':
        return Matrix.from_array(np.power(self._data, p))

    def sum(self) -> float:
        return float(self._data.sum())

    def clone(self) -> 'Matrix':
        return Matrix.from_array(self._data)

    def argmax(self) -> int:
        """Row-major index of the largest element."""
        return int(np.argmax(self._data))

    # ------------------------------------------------------------------
    # Conversion
    # ------------------------------------------------------------------

    def to_array(self) -> np.ndarray:
        """Return a copy of the underlying array."""
        return self._data.copy()

    def to_list(self) -> List[List[float]]:
        return self._data.tolist()

    def flatten(self) -> List[float]:
        """All elements in row-major order."""
        return self._data.ravel().tolist()

    def allclose(self, other: 'Matrix', tol: float = 1e-9) -> bool:
        return self.shape == other.shape and bool(
            np.allclose(self._data, other._data, rtol=0.0, atol=tol)
        )

    # ------------------------------------------------------------------
    # Operators
    # ------------------------------------------------------------------

    def __add__(self, other: 'Matrix') -> 'Matrix':
        return self.add(other)

    def __sub__(self, other: 'Matrix') -> 'Matrix':
        return self.subtract(other)

    def __matmul__(self, other: 'Matrix') -> 'Matrix':
        return self.multiply(other)

    def __mul__(self, k: float) -> 'Matrix':
        if isinstance(k, Matrix):
            return NotImplemented
        return self.scalar_multiply(k)

    __rmul__ = __mul__

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Matrix):
            return NotImplemented
        return self.shape == other.shape and bool(np.array_equal(self._data, other._data))

    __hash__ = None

    def __repr__(self) -> str:
        return f"Matrix({self.rows}x{self.cols}, {self.to_list()})"
