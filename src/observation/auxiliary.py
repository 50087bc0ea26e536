"""Direct readouts of solver fields: focus node metadata and knapsack item data."""

from typing import Optional

import numpy as np

from observation.base import EpisodeState
from observation.common import NOT_APPLICABLE
from observation.errors import InvalidSolverStateError, SerializationError
from observation.utils import is_finite
from solver.base import SolverState, VarType

_FOCUS_NODE_FIELDS = (
    "number",
    "depth",
    "lowerbound",
    "estimate",
    "n_added_conss",
    "n_vars",
    "nlpcands",
    "npseudocands",
    "parent_number",
    "parent_lowerbound",
)


class FocusNodeObs:
    """Metadata of the node being processed. Parent fields are None / NOT_APPLICABLE at the root."""

    def __init__(
        self,
        number: int,
        depth: int,
        lowerbound: float,
        estimate: float,
        n_added_conss: int,
        n_vars: int,
        nlpcands: int,
        npseudocands: int,
        parent_number: Optional[int] = None,
        parent_lowerbound: float = NOT_APPLICABLE,
    ):
        self.number = number
        self.depth = depth
        self.lowerbound = lowerbound
        self.estimate = estimate
        self.n_added_conss = n_added_conss
        self.n_vars = n_vars
        self.nlpcands = nlpcands
        self.npseudocands = npseudocands
        self.parent_number = parent_number
        self.parent_lowerbound = parent_lowerbound

    def copy(self) -> "FocusNodeObs":
        return FocusNodeObs(**self.__getstate__())

    def __eq__(self, other) -> bool:
        if not isinstance(other, FocusNodeObs):
            return NotImplemented
        mine, theirs = self.__getstate__(), other.__getstate__()
        for field in _FOCUS_NODE_FIELDS:
            a, b = mine[field], theirs[field]
            if isinstance(a, float) and isinstance(b, float) and np.isnan(a) and np.isnan(b):
                continue
            if a != b:
                return False
        return True

    __hash__ = None

    def __getstate__(self):
        return {field: getattr(self, field) for field in _FOCUS_NODE_FIELDS}

    def __setstate__(self, state) -> None:
        try:
            missing = [field for field in _FOCUS_NODE_FIELDS if field not in state]
        except TypeError as e:
            raise SerializationError(f"Malformed FocusNodeObs state: {e}") from e
        if missing:
            raise SerializationError(f"FocusNodeObs state is missing {missing}")
        for field in _FOCUS_NODE_FIELDS:
            setattr(self, field, state[field])

    def __repr__(self) -> str:
        return f"FocusNodeObs(number={self.number}, depth={self.depth}, lowerbound={self.lowerbound})"


class FocusNode:
    """Reads the metadata of the focus node. Fails when the solver is not at a node."""

    def __init__(self):
        self._episode = EpisodeState("FocusNode")

    def reset(self, model: SolverState) -> None:
        self._episode.begin()

    def extract(self, model: SolverState, done: bool) -> FocusNodeObs:
        self._episode.require_ready()
        node = model.focus_node()
        if node is None:
            raise InvalidSolverStateError("FocusNode needs a focus node, the solver is not solving one")
        nlpcands = len(model.lp_branch_candidates()) if model.has_lp_solution() else 0
        return FocusNodeObs(
            number=node.number,
            depth=node.depth,
            lowerbound=node.lowerbound,
            estimate=node.estimate,
            n_added_conss=node.n_added_conss,
            n_vars=model.n_variables(),
            nlpcands=nlpcands,
            npseudocands=len(model.pseudo_branch_candidates()),
            parent_number=node.parent_number,
            parent_lowerbound=(
                NOT_APPLICABLE if node.parent_lowerbound is None else node.parent_lowerbound
            ),
        )


def knapsack_rows(model: SolverState) -> np.ndarray:
    """
    Indices of the problem constraints that are knapsack constraints.

    A knapsack constraint has only binary variables with nonnegative
    coefficients, a finite nonnegative right hand side and no left hand side.
    Set packing constraints (all coefficients and right hand side equal to 1)
    are excluded.
    """
    matrix = model.constraint_matrix()
    n_constraints = matrix.shape[0]
    rows, cols = matrix.indices
    lhs = np.asarray(model.constraint_lhs(), dtype=np.float64)
    rhs = np.asarray(model.constraint_rhs(), dtype=np.float64)
    binary = np.asarray(model.variable_types()) == VarType.BINARY

    violating = ~binary[cols] | (matrix.values < 0)
    has_violation = np.bincount(rows, violating.astype(np.float64), minlength=n_constraints) > 0
    not_unit = np.bincount(rows, (matrix.values != 1.0).astype(np.float64), minlength=n_constraints) > 0
    has_entries = np.bincount(rows, minlength=n_constraints) > 0

    knapsack = has_entries & ~has_violation
    knapsack &= is_finite(rhs) & (rhs >= 0) & ~is_finite(lhs)
    knapsack &= not_unit | (rhs != 1.0)
    return np.flatnonzero(knapsack)


def _first_knapsack_entries(model: SolverState):
    """For every variable in a knapsack row, the position of its entry in the first such row."""
    matrix = model.constraint_matrix()
    rows, cols = matrix.indices
    in_knapsack = np.isin(rows, knapsack_rows(model))
    entries = np.flatnonzero(in_knapsack)
    # first entry per variable, rows in constraint order
    entries = entries[np.lexsort((rows[entries], cols[entries]))]
    variables, first = np.unique(cols[entries], return_index=True)
    return variables, entries[first]


class Capacity:
    """Per variable, the capacity of the first knapsack constraint it appears in."""

    def __init__(self):
        self._episode = EpisodeState("Capacity")

    def reset(self, model: SolverState) -> None:
        self._episode.begin()

    def extract(self, model: SolverState, done: bool) -> np.ndarray:
        self._episode.require_ready()
        capacity = np.full(model.n_variables(), NOT_APPLICABLE)
        variables, entries = _first_knapsack_entries(model)
        rows = model.constraint_matrix().indices[0]
        capacity[variables] = np.asarray(model.constraint_rhs(), dtype=np.float64)[rows[entries]]
        return capacity


class Weight:
    """Per variable, its weight in the first knapsack constraint it appears in."""

    def __init__(self):
        self._episode = EpisodeState("Weight")

    def reset(self, model: SolverState) -> None:
        self._episode.begin()

    def extract(self, model: SolverState, done: bool) -> np.ndarray:
        self._episode.require_ready()
        weight = np.full(model.n_variables(), NOT_APPLICABLE)
        variables, entries = _first_knapsack_entries(model)
        weight[variables] = model.constraint_matrix().values[entries]
        return weight
