import pickle
from pathlib import Path
from typing import Any, Optional, Tuple, Union

import numpy as np

from observation.common import SCIP_INF
from observation.errors import SerializationError
from observation.sparse import SparseCOOMatrix


def is_finite(values: np.ndarray) -> np.ndarray:
    """True where a bound or row side exists (SCIP reports missing ones as +/- 1e20 or inf)."""
    values = np.asarray(values, dtype=np.float64)
    return np.abs(values) < SCIP_INF


def feasible_fraction(values: np.ndarray, tolerance: float) -> np.ndarray:
    """Fractional part of LP values, 0 when within `tolerance` below an integer."""
    return np.maximum(values - np.floor(values + tolerance), 0.0)


def feasible_equal(a: np.ndarray, b: np.ndarray, tolerance: float) -> np.ndarray:
    """Relative comparison as SCIP does it; infinite values are never equal."""
    a = np.asarray(a, dtype=np.float64)
    b = np.asarray(b, dtype=np.float64)
    with np.errstate(invalid="ignore"):
        scale = np.maximum(np.maximum(np.abs(a), np.abs(b)), 1.0)
        close = np.abs(a - b) <= tolerance * scale
    return close & np.isfinite(a) & np.isfinite(b)


def type_flags(types: np.ndarray) -> np.ndarray:
    """One-hot encoding of variable types, columns ordered binary, integer, implicit integer, continuous."""
    flags = np.zeros((len(types), 4), dtype=np.float64)
    flags[np.arange(len(types)), np.asarray(types, dtype=np.int64)] = 1.0
    return flags


def inequality_rows(
    matrix: SparseCOOMatrix, lhs: np.ndarray, rhs: np.ndarray
) -> Tuple[np.ndarray, np.ndarray, np.ndarray, np.ndarray]:
    """
    Split `lhs <= a x <= rhs` rows into `<=` rows, one per finite side.

    Returns `(row_of, sign, edge_rows, edge_entries)`: the source row and sign
    (-1 for a left side, +1 for a right side) of every split row, then, for
    every edge of the split matrix, its split row and the position of its
    coefficient in `matrix.values`. Split rows keep the source order, left side
    first.
    """
    sides = np.stack([is_finite(lhs), is_finite(rhs)], axis=1)
    row_of, side = np.nonzero(sides)
    sign = np.where(side == 0, -1.0, 1.0)

    n_rows = matrix.shape[0]
    rows = matrix.indices[0]
    order = np.argsort(rows, kind="stable")
    counts = np.bincount(rows, minlength=n_rows)
    starts = np.concatenate([[0], np.cumsum(counts)[:-1]]).astype(np.int64)

    lengths = counts[row_of]
    edge_rows = np.repeat(np.arange(len(row_of)), lengths)
    offsets = np.arange(lengths.sum()) - np.repeat(np.cumsum(lengths) - lengths, lengths)
    edge_entries = order[np.repeat(starts[row_of], lengths) + offsets]
    return row_of, sign, edge_rows, edge_entries


def check_features(
    array: Any, n_columns: Optional[int], what: str, ndim: int = 2
) -> np.ndarray:
    try:
        array = np.asarray(array, dtype=np.float64)
    except (TypeError, ValueError) as e:
        raise SerializationError(f"{what} is not numeric: {e}") from e
    if array.ndim != ndim:
        raise SerializationError(f"{what} must have {ndim} dimensions, got {array.ndim}")
    if n_columns is not None and array.shape[-1] != n_columns:
        raise SerializationError(
            f"{what} must have {n_columns} columns, got {array.shape[-1]}"
        )
    return array


def save_observation(observation: Any, path: Union[str, Path]) -> None:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "wb") as f:
        pickle.dump(observation, f, protocol=4)


def load_observation(path: Union[str, Path]) -> Any:
    with open(path, "rb") as f:
        try:
            return pickle.load(f)
        except (pickle.UnpicklingError, EOFError) as e:
            raise SerializationError(f"{path} is not a serialized observation: {e}") from e
