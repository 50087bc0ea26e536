from typing import Optional, Tuple, Type

import numpy as np
from scipy.sparse import coo_matrix

from observation.errors import SerializationError


def _consistency_error(
    values: np.ndarray, indices: np.ndarray, shape: Tuple[int, ...]
) -> Optional[str]:
    if len(shape) != 2 or any(s < 0 for s in shape):
        return f"shape must be two non negative dimensions, got {shape}"
    if values.ndim != 1:
        return f"values must be one dimensional, got {values.ndim} dimensions"
    if indices.ndim != 2 or indices.shape[0] != 2:
        return f"indices must have shape (2, nnz), got {indices.shape}"
    if indices.shape[1] != values.shape[0]:
        return (
            f"{values.shape[0]} values do not match {indices.shape[1]} index columns"
        )
    if indices.size > 0:
        if indices.min() < 0:
            return "indices must be non negative"
        if indices[0].max() >= shape[0] or indices[1].max() >= shape[1]:
            return f"indices out of range for shape {shape}"
    return None


class SparseCOOMatrix:
    """
    Sparse matrix in the coordinate format.

    `indices` has one column per non zero coefficient; row 0 holds the row
    (constraint) index and row 1 the column (variable) index.
    """

    def __init__(self, values, indices, shape: Tuple[int, int]):
        values = np.asarray(values, dtype=np.float64)
        indices = np.asarray(indices, dtype=np.int64)
        if indices.size == 0:
            indices = indices.reshape(2, 0)
        shape = tuple(int(s) for s in shape)
        self._check(values, indices, shape, ValueError)
        self.values = values
        self.indices = indices
        self.shape = shape

    @staticmethod
    def _check(values, indices, shape, error: Type[Exception]) -> None:
        message = _consistency_error(values, indices, shape)
        if message is not None:
            raise error(message)

    @classmethod
    def empty(cls, shape: Tuple[int, int]) -> "SparseCOOMatrix":
        return cls(np.zeros(0), np.zeros((2, 0), dtype=np.int64), shape)

    @classmethod
    def from_scipy(cls, matrix) -> "SparseCOOMatrix":
        matrix = coo_matrix(matrix)
        return cls(matrix.data, np.vstack([matrix.row, matrix.col]), matrix.shape)

    @property
    def nnz(self) -> int:
        return int(self.values.shape[0])

    def copy(self) -> "SparseCOOMatrix":
        return SparseCOOMatrix(self.values.copy(), self.indices.copy(), self.shape)

    def to_scipy(self) -> coo_matrix:
        return coo_matrix((self.values, (self.indices[0], self.indices[1])), shape=self.shape)

    def to_dense(self) -> np.ndarray:
        # duplicated entries are summed, as scipy does
        return self.to_scipy().toarray()

    def __eq__(self, other) -> bool:
        if not isinstance(other, SparseCOOMatrix):
            return NotImplemented
        return (
            self.shape == other.shape
            and np.array_equal(self.indices, other.indices)
            and np.array_equal(self.values, other.values, equal_nan=True)
        )

    __hash__ = None

    def __getstate__(self):
        return {"values": self.values, "indices": self.indices, "shape": self.shape}

    def __setstate__(self, state) -> None:
        try:
            values = np.asarray(state["values"], dtype=np.float64)
            indices = np.asarray(state["indices"], dtype=np.int64)
            shape = tuple(int(s) for s in state["shape"])
        except (KeyError, TypeError, ValueError) as e:
            raise SerializationError(f"Malformed sparse matrix state: {e}") from e
        if indices.size == 0:
            indices = indices.reshape(2, 0)
        self._check(values, indices, shape, SerializationError)
        self.values = values
        self.indices = indices
        self.shape = shape

    def __repr__(self) -> str:
        return f"SparseCOOMatrix(shape={self.shape}, nnz={self.nnz})"
