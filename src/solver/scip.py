from typing import Dict, List, Optional, Tuple

import numpy as np
from loguru import logger
from pyscipopt import SCIP_BRANCHDIR, SCIP_LPSOLSTAT, SCIP_STAGE, Model

from observation.common import NOT_APPLICABLE, SCIP_INF
from observation.sparse import SparseCOOMatrix
from solver.base import BasisStatus, NodeRecord, StrongBranchOutcome, VarType
from solver.snapshot import SolverSnapshot

_VAR_TYPES = {
    "BINARY": VarType.BINARY,
    "INTEGER": VarType.INTEGER,
    "IMPLINT": VarType.IMPLICIT_INTEGER,
    "CONTINUOUS": VarType.CONTINUOUS,
}

_BASIS_STATUS = {
    "lower": BasisStatus.LOWER,
    "basic": BasisStatus.BASIC,
    "upper": BasisStatus.UPPER,
    "zero": BasisStatus.ZERO,
}


def _side(value: float) -> float:
    """Map SCIP's +/- 1e20 infinity to +/- inf."""
    if value >= SCIP_INF:
        return np.inf
    if value <= -SCIP_INF:
        return -np.inf
    return value


class ScipState:
    """
    `SolverState` backed by a live `pyscipopt.Model`, typically inside a branching callback.

    Variables are the transformed problem variables, in probing index order.
    Accessors query SCIP on every call; use `snapshot` to freeze a decision
    point.
    """

    def __init__(self, model: Model):
        self.model = model
        self._variables = None
        self._positions: Optional[Dict[str, int]] = None

    # helpers
    @property
    def variables(self) -> List:
        if self._variables is None:
            self._variables = list(self.model.getVars(transformed=True))
        return self._variables

    @property
    def positions(self) -> Dict[str, int]:
        if self._positions is None:
            self._positions = {v.name: i for i, v in enumerate(self.variables)}
        return self._positions

    def position(self, variable) -> int:
        return self.positions[variable.name]

    def _per_variable(self, read) -> np.ndarray:
        return np.array([read(v) for v in self.variables], dtype=np.float64)

    def _is_solving(self) -> bool:
        return self.model.getStage() == SCIP_STAGE.SOLVING

    # variables
    def n_variables(self) -> int:
        return len(self.variables)

    def variable_types(self) -> np.ndarray:
        return np.array([_VAR_TYPES[v.vtype()] for v in self.variables], dtype=np.int64)

    def objective_coefficients(self) -> np.ndarray:
        return self._per_variable(lambda v: v.getObj())

    def lower_bounds(self) -> np.ndarray:
        return self._per_variable(lambda v: _side(v.getLbLocal()))

    def upper_bounds(self) -> np.ndarray:
        return self._per_variable(lambda v: _side(v.getUbLocal()))

    # problem constraints
    def _linear_constraints(self):
        """Constraints with a linear representation: linear, knapsack, setppc, logicor and varbound."""
        conss = self.model.getConss()
        linear = [c for c in conss if c.isLinearType()]
        if len(linear) < len(conss):
            logger.debug("Skipping {} non linear constraints", len(conss) - len(linear))
        return linear

    def constraint_matrix(self) -> SparseCOOMatrix:
        positions = self.positions
        rows, cols, values = [], [], []
        conss = self._linear_constraints()
        for i, cons in enumerate(conss):
            variables = self.model.getConsVars(cons)
            coefs = self.model.getConsVals(cons)
            for var, coef in zip(variables, coefs):
                if coef == 0.0 or var.name not in positions:
                    continue
                rows.append(i)
                cols.append(positions[var.name])
                values.append(coef)
        return SparseCOOMatrix(
            np.array(values, dtype=np.float64),
            np.array([rows, cols], dtype=np.int64).reshape(2, -1),
            (len(conss), self.n_variables()),
        )

    def constraint_lhs(self) -> np.ndarray:
        return np.array(
            [_side(self.model.getLhs(c)) for c in self._linear_constraints()], dtype=np.float64
        )

    def constraint_rhs(self) -> np.ndarray:
        return np.array(
            [_side(self.model.getRhs(c)) for c in self._linear_constraints()], dtype=np.float64
        )

    # LP relaxation
    def has_lp_solution(self) -> bool:
        if not self._is_solving() or not self.model.isLPSolBasic():
            return False
        return self.model.getLPSolstat() == SCIP_LPSOLSTAT.OPTIMAL

    def lp_objective_value(self) -> float:
        return self.model.getLPObjVal()

    def n_lps(self) -> int:
        return self.model.getNLPs()

    def feasibility_tolerance(self) -> float:
        return self.model.feastol()

    def lp_solution_values(self) -> np.ndarray:
        return self._per_variable(lambda v: v.getLPSol())

    def reduced_costs(self) -> np.ndarray:
        return self._per_variable(lambda v: self.model.getVarRedcost(v))

    def _columns(self):
        return [(self.position(col.getVar()), col) for col in self.model.getLPColsData()]

    def column_basis_status(self) -> np.ndarray:
        # variables without a column are at their (zero) bound
        status = np.full(self.n_variables(), int(BasisStatus.ZERO), dtype=np.int64)
        for j, col in self._columns():
            status[j] = _BASIS_STATUS[col.getBasisStatus()]
        return status

    def column_ages(self) -> np.ndarray:
        ages = np.zeros(self.n_variables(), dtype=np.float64)
        for j, col in self._columns():
            ages[j] = col.getAge()
        return ages

    def incumbent_values(self) -> Optional[np.ndarray]:
        if self.model.getNSols() == 0:
            return None
        solution = self.model.getBestSol()
        return self._per_variable(lambda v: self.model.getSolVal(solution, v))

    def average_incumbent_values(self) -> Optional[np.ndarray]:
        if self.model.getNSols() == 0 or not hasattr(self.variables[0], "getAvgSol"):
            return None
        return self._per_variable(lambda v: v.getAvgSol())

    def _lp_rows(self):
        return self.model.getLPRowsData()

    def row_matrix(self) -> SparseCOOMatrix:
        rows, cols, values = [], [], []
        lp_rows = self._lp_rows()
        for i, row in enumerate(lp_rows):
            for col, coef in zip(row.getCols(), row.getVals()):
                rows.append(i)
                cols.append(self.position(col.getVar()))
                values.append(coef)
        return SparseCOOMatrix(
            np.array(values, dtype=np.float64),
            np.array([rows, cols], dtype=np.int64).reshape(2, -1),
            (len(lp_rows), self.n_variables()),
        )

    def row_lhs(self) -> np.ndarray:
        return np.array([_side(r.getLhs()) for r in self._lp_rows()], dtype=np.float64)

    def row_rhs(self) -> np.ndarray:
        return np.array([_side(r.getRhs()) for r in self._lp_rows()], dtype=np.float64)

    def row_constants(self) -> np.ndarray:
        return np.array([r.getConstant() for r in self._lp_rows()], dtype=np.float64)

    def row_activities(self) -> np.ndarray:
        return np.array(
            [self.model.getRowLPActivity(r) for r in self._lp_rows()], dtype=np.float64
        )

    def row_dual_values(self) -> np.ndarray:
        if hasattr(self.model, "getRowDualSol"):
            read = self.model.getRowDualSol
        else:
            read = lambda r: r.getDualsol()  # noqa: E731
        return np.array([read(r) for r in self._lp_rows()], dtype=np.float64)

    def row_ages(self) -> np.ndarray:
        return np.array([r.getAge() for r in self._lp_rows()], dtype=np.float64)

    # branching
    def lp_branch_candidates(self) -> np.ndarray:
        candidates, *_ = self.model.getLPBranchCands()
        return np.array([self.position(v) for v in candidates], dtype=np.int64)

    def pseudo_branch_candidates(self) -> np.ndarray:
        candidates, *_ = self.model.getPseudoBranchCands()
        return np.array([self.position(v) for v in candidates], dtype=np.int64)

    def strong_branch(self, variable: int, integral: bool) -> StrongBranchOutcome:
        var = self.variables[variable]
        self.model.startStrongbranch()
        try:
            (
                down,
                up,
                down_valid,
                up_valid,
                down_infeasible,
                up_infeasible,
                _,
                _,
                lp_error,
            ) = self.model.getVarStrongbranch(var, 2147483647, integral=integral)
        finally:
            self.model.endStrongbranch()
        return StrongBranchOutcome(
            down=down,
            up=up,
            down_valid=down_valid,
            up_valid=up_valid,
            down_infeasible=down_infeasible,
            up_infeasible=up_infeasible,
            lp_error=lp_error,
        )

    def _directional(self, read) -> Tuple[np.ndarray, np.ndarray]:
        return (
            self._per_variable(lambda v: read(v, SCIP_BRANCHDIR.DOWNWARDS)),
            self._per_variable(lambda v: read(v, SCIP_BRANCHDIR.UPWARDS)),
        )

    def pseudocosts(self) -> Tuple[np.ndarray, np.ndarray]:
        return self._directional(self.model.getVarPseudocost)

    def branching_counts(self) -> Tuple[np.ndarray, np.ndarray]:
        return self._directional(lambda v, direction: v.getNBranchings(direction))

    def cutoff_counts(self) -> Tuple[np.ndarray, np.ndarray]:
        # pyscipopt does not expose SCIPgetVarNCutoffs
        undefined = np.full(self.n_variables(), NOT_APPLICABLE)
        return undefined, undefined.copy()

    def focus_node(self) -> Optional[NodeRecord]:
        if not self._is_solving():
            return None
        node = self.model.getCurrentNode()
        if node is None:
            return None
        parent = node.getParent()
        return NodeRecord(
            number=node.getNumber(),
            depth=node.getDepth(),
            lowerbound=node.getLowerbound(),
            estimate=node.getEstimate(),
            n_added_conss=node.getNAddedConss(),
            parent_number=None if parent is None else parent.getNumber(),
            parent_lowerbound=None if parent is None else parent.getLowerbound(),
        )

    def snapshot(self) -> SolverSnapshot:
        """Copy the current state into a `SolverSnapshot`. Strong branching outcomes are not captured."""
        has_lp = self.has_lp_solution()
        pc_down, pc_up = self.pseudocosts()
        branchings_down, branchings_up = self.branching_counts()
        cutoffs_down, cutoffs_up = self.cutoff_counts()
        return SolverSnapshot(
            types=self.variable_types(),
            objective=self.objective_coefficients(),
            matrix=self.constraint_matrix(),
            lb=self.lower_bounds(),
            ub=self.upper_bounds(),
            lhs=self.constraint_lhs(),
            rhs=self.constraint_rhs(),
            lp_values=self.lp_solution_values() if has_lp else None,
            lp_objective=self.lp_objective_value() if has_lp else 0.0,
            lp_count=self.n_lps(),
            tolerance=self.feasibility_tolerance(),
            redcosts=self.reduced_costs() if has_lp else None,
            basis=self.column_basis_status() if has_lp else None,
            col_ages=self.column_ages(),
            incumbent=self.incumbent_values(),
            avg_incumbent=self.average_incumbent_values(),
            lp_rows=self.row_matrix(),
            lp_lhs=self.row_lhs(),
            lp_rhs=self.row_rhs(),
            lp_constants=self.row_constants(),
            activities=self.row_activities() if has_lp else None,
            duals=self.row_dual_values() if has_lp else None,
            lp_row_ages=self.row_ages(),
            lp_candidates=self.lp_branch_candidates() if has_lp else None,
            pseudo_candidates=self.pseudo_branch_candidates(),
            pc_down=pc_down,
            pc_up=pc_up,
            n_branchings_down=branchings_down,
            n_branchings_up=branchings_up,
            n_cutoffs_down=cutoffs_down,
            n_cutoffs_up=cutoffs_up,
            node=self.focus_node(),
        )
