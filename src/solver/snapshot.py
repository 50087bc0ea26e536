from dataclasses import dataclass, field
from typing import Dict, Optional, Tuple

import numpy as np

from observation.sparse import SparseCOOMatrix
from solver.base import BasisStatus, NodeRecord, StrongBranchOutcome, VarType


def _filled(n: int, value: float) -> np.ndarray:
    return np.full(n, value, dtype=np.float64)


@dataclass
class SolverSnapshot:
    """
    Solver state held in memory.

    Implements `SolverState` from plain arrays, either captured from a live
    solver (`ScipState.snapshot`) or written by hand. Only `types`, `objective`
    and `matrix` are required; everything else has a neutral default. Without
    `lp_rows`, the LP rows are the problem constraints. Without `lp_values`,
    there is no LP solution.
    """

    types: np.ndarray
    objective: np.ndarray
    matrix: SparseCOOMatrix
    lb: Optional[np.ndarray] = None
    ub: Optional[np.ndarray] = None
    lhs: Optional[np.ndarray] = None
    rhs: Optional[np.ndarray] = None

    lp_values: Optional[np.ndarray] = None
    lp_objective: float = 0.0
    lp_count: int = 0
    tolerance: float = 1e-6
    redcosts: Optional[np.ndarray] = None
    basis: Optional[np.ndarray] = None
    col_ages: Optional[np.ndarray] = None
    incumbent: Optional[np.ndarray] = None
    avg_incumbent: Optional[np.ndarray] = None
    lp_rows: Optional[SparseCOOMatrix] = None
    lp_lhs: Optional[np.ndarray] = None
    lp_rhs: Optional[np.ndarray] = None
    lp_constants: Optional[np.ndarray] = None
    activities: Optional[np.ndarray] = None
    duals: Optional[np.ndarray] = None
    lp_row_ages: Optional[np.ndarray] = None

    lp_candidates: Optional[np.ndarray] = None
    pseudo_candidates: Optional[np.ndarray] = None
    strong_branching: Dict[int, StrongBranchOutcome] = field(default_factory=dict)
    pc_down: Optional[np.ndarray] = None
    pc_up: Optional[np.ndarray] = None
    n_branchings_down: Optional[np.ndarray] = None
    n_branchings_up: Optional[np.ndarray] = None
    n_cutoffs_down: Optional[np.ndarray] = None
    n_cutoffs_up: Optional[np.ndarray] = None
    node: Optional[NodeRecord] = None

    def __post_init__(self):
        self.types = np.asarray(self.types, dtype=np.int64)
        self.objective = np.asarray(self.objective, dtype=np.float64)
        n = len(self.types)
        m = self.matrix.shape[0]
        if self.objective.shape != (n,):
            raise ValueError(f"objective must have {n} entries, got {self.objective.shape}")
        if self.matrix.shape[1] != n:
            raise ValueError(f"constraint matrix has {self.matrix.shape[1]} columns for {n} variables")

        binary = self.types == VarType.BINARY
        if self.lb is None:
            self.lb = np.where(binary, 0.0, -np.inf)
        if self.ub is None:
            self.ub = np.where(binary, 1.0, np.inf)
        if self.lhs is None:
            self.lhs = _filled(m, -np.inf)
        if self.rhs is None:
            self.rhs = _filled(m, np.inf)
        self.lb = np.asarray(self.lb, dtype=np.float64)
        self.ub = np.asarray(self.ub, dtype=np.float64)
        self.lhs = np.asarray(self.lhs, dtype=np.float64)
        self.rhs = np.asarray(self.rhs, dtype=np.float64)

        if self.lp_rows is None:
            self.lp_rows = self.matrix
            if self.lp_lhs is None:
                self.lp_lhs = self.lhs
            if self.lp_rhs is None:
                self.lp_rhs = self.rhs
        n_rows = self.lp_rows.shape[0]
        if self.lp_lhs is None:
            self.lp_lhs = _filled(n_rows, -np.inf)
        if self.lp_rhs is None:
            self.lp_rhs = _filled(n_rows, np.inf)
        if self.lp_constants is None:
            self.lp_constants = _filled(n_rows, 0.0)
        if self.lp_row_ages is None:
            self.lp_row_ages = np.zeros(n_rows, dtype=np.int64)
        if self.col_ages is None:
            self.col_ages = np.zeros(n, dtype=np.int64)

        if self.lp_values is not None:
            self.lp_values = np.asarray(self.lp_values, dtype=np.float64)
            if self.redcosts is None:
                self.redcosts = _filled(n, 0.0)
            if self.basis is None:
                self.basis = np.full(n, int(BasisStatus.BASIC), dtype=np.int64)
            self.basis = np.asarray(self.basis, dtype=np.int64)
            if self.activities is None:
                self.activities = self.lp_rows.to_scipy() @ self.lp_values + self.lp_constants
            if self.duals is None:
                self.duals = _filled(n_rows, 0.0)
            if self.lp_candidates is None:
                self.lp_candidates = self._fractional_discrete()

        if self.lp_candidates is None:
            self.lp_candidates = np.zeros(0, dtype=np.int64)
        if self.pseudo_candidates is None:
            discrete = self.types != VarType.CONTINUOUS
            self.pseudo_candidates = np.flatnonzero((self.lb < self.ub) & discrete)
        self.lp_candidates = np.asarray(self.lp_candidates, dtype=np.int64)
        self.pseudo_candidates = np.asarray(self.pseudo_candidates, dtype=np.int64)

        for name in (
            "pc_down",
            "pc_up",
            "n_branchings_down",
            "n_branchings_up",
            "n_cutoffs_down",
            "n_cutoffs_up",
        ):
            if getattr(self, name) is None:
                setattr(self, name, _filled(n, 0.0))

    def _fractional_discrete(self) -> np.ndarray:
        frac = self.lp_values - np.floor(self.lp_values + self.tolerance)
        return np.flatnonzero((frac > self.tolerance) & (self.types != VarType.CONTINUOUS))

    def _require_lp(self) -> None:
        if self.lp_values is None:
            raise RuntimeError("The snapshot has no LP solution")

    # variables
    def n_variables(self) -> int:
        return len(self.types)

    def variable_types(self) -> np.ndarray:
        return self.types

    def objective_coefficients(self) -> np.ndarray:
        return self.objective

    def lower_bounds(self) -> np.ndarray:
        return self.lb

    def upper_bounds(self) -> np.ndarray:
        return self.ub

    # problem constraints
    def constraint_matrix(self) -> SparseCOOMatrix:
        return self.matrix

    def constraint_lhs(self) -> np.ndarray:
        return self.lhs

    def constraint_rhs(self) -> np.ndarray:
        return self.rhs

    # LP relaxation
    def has_lp_solution(self) -> bool:
        return self.lp_values is not None

    def lp_objective_value(self) -> float:
        self._require_lp()
        return self.lp_objective

    def n_lps(self) -> int:
        return self.lp_count

    def feasibility_tolerance(self) -> float:
        return self.tolerance

    def lp_solution_values(self) -> np.ndarray:
        self._require_lp()
        return self.lp_values

    def reduced_costs(self) -> np.ndarray:
        self._require_lp()
        return self.redcosts

    def column_basis_status(self) -> np.ndarray:
        self._require_lp()
        return self.basis

    def column_ages(self) -> np.ndarray:
        return self.col_ages

    def incumbent_values(self) -> Optional[np.ndarray]:
        return self.incumbent

    def average_incumbent_values(self) -> Optional[np.ndarray]:
        return self.avg_incumbent

    def row_matrix(self) -> SparseCOOMatrix:
        return self.lp_rows

    def row_lhs(self) -> np.ndarray:
        return self.lp_lhs

    def row_rhs(self) -> np.ndarray:
        return self.lp_rhs

    def row_constants(self) -> np.ndarray:
        return self.lp_constants

    def row_activities(self) -> np.ndarray:
        self._require_lp()
        return self.activities

    def row_dual_values(self) -> np.ndarray:
        self._require_lp()
        return self.duals

    def row_ages(self) -> np.ndarray:
        return self.lp_row_ages

    # branching
    def lp_branch_candidates(self) -> np.ndarray:
        return self.lp_candidates

    def pseudo_branch_candidates(self) -> np.ndarray:
        return self.pseudo_candidates

    def strong_branch(self, variable: int, integral: bool) -> StrongBranchOutcome:
        """Recorded outcome for `variable`, or both children at the LP objective when none was recorded."""
        self._require_lp()
        if variable in self.strong_branching:
            return self.strong_branching[variable]
        return StrongBranchOutcome(down=self.lp_objective, up=self.lp_objective)

    def pseudocosts(self) -> Tuple[np.ndarray, np.ndarray]:
        return self.pc_down, self.pc_up

    def branching_counts(self) -> Tuple[np.ndarray, np.ndarray]:
        return self.n_branchings_down, self.n_branchings_up

    def cutoff_counts(self) -> Tuple[np.ndarray, np.ndarray]:
        return self.n_cutoffs_down, self.n_cutoffs_up

    def focus_node(self) -> Optional[NodeRecord]:
        return self.node
