from dataclasses import dataclass
from enum import IntEnum
from typing import Optional, Protocol, Tuple

import numpy as np

from observation.sparse import SparseCOOMatrix


class VarType(IntEnum):
    BINARY = 0
    INTEGER = 1
    IMPLICIT_INTEGER = 2
    CONTINUOUS = 3


class BasisStatus(IntEnum):
    LOWER = 0
    BASIC = 1
    UPPER = 2
    ZERO = 3


DISCRETE_TYPES = (VarType.BINARY, VarType.INTEGER, VarType.IMPLICIT_INTEGER)


@dataclass(frozen=True)
class StrongBranchOutcome:
    """LP bounds of the two children obtained by strong branching on one variable."""

    down: float
    up: float
    down_valid: bool = True
    up_valid: bool = True
    down_infeasible: bool = False
    up_infeasible: bool = False
    lp_error: bool = False


@dataclass(frozen=True)
class NodeRecord:
    number: int
    depth: int
    lowerbound: float
    estimate: float
    n_added_conss: int
    parent_number: Optional[int] = None
    parent_lowerbound: Optional[float] = None


class SolverState(Protocol):
    """
    Read-only view of a paused solver.

    Variables are indexed by their probing index. Missing bounds and row sides
    are reported as +/- inf. LP accessors are only meaningful when
    `has_lp_solution()` is true. Directional pairs are returned as (down, up).
    """

    # variables
    def n_variables(self) -> int: ...

    def variable_types(self) -> np.ndarray: ...

    def objective_coefficients(self) -> np.ndarray: ...

    def lower_bounds(self) -> np.ndarray: ...

    def upper_bounds(self) -> np.ndarray: ...

    # problem constraints of the most recent presolved problem
    def constraint_matrix(self) -> SparseCOOMatrix: ...

    def constraint_lhs(self) -> np.ndarray: ...

    def constraint_rhs(self) -> np.ndarray: ...

    # LP relaxation at the focus node
    def has_lp_solution(self) -> bool: ...

    def lp_objective_value(self) -> float: ...

    def n_lps(self) -> int: ...

    def feasibility_tolerance(self) -> float: ...

    def lp_solution_values(self) -> np.ndarray: ...

    def reduced_costs(self) -> np.ndarray: ...

    def column_basis_status(self) -> np.ndarray: ...

    def column_ages(self) -> np.ndarray: ...

    def incumbent_values(self) -> Optional[np.ndarray]: ...

    def average_incumbent_values(self) -> Optional[np.ndarray]: ...

    def row_matrix(self) -> SparseCOOMatrix: ...

    def row_lhs(self) -> np.ndarray: ...

    def row_rhs(self) -> np.ndarray: ...

    def row_constants(self) -> np.ndarray: ...

    def row_activities(self) -> np.ndarray: ...

    def row_dual_values(self) -> np.ndarray: ...

    def row_ages(self) -> np.ndarray: ...

    # branching
    def lp_branch_candidates(self) -> np.ndarray: ...

    def pseudo_branch_candidates(self) -> np.ndarray: ...

    def strong_branch(self, variable: int, integral: bool) -> StrongBranchOutcome: ...

    def pseudocosts(self) -> Tuple[np.ndarray, np.ndarray]: ...

    def branching_counts(self) -> Tuple[np.ndarray, np.ndarray]: ...

    def cutoff_counts(self) -> Tuple[np.ndarray, np.ndarray]: ...

    def focus_node(self) -> Optional[NodeRecord]: ...
