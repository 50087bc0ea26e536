"""
Bipartite graph observations.

The problem is a bipartite graph: one node per variable, one node per `<=`
row, and an edge carrying the coefficient whenever a variable appears in a row.
Two sided rows are split into one `<=` row per finite side, left side first.
"""

from typing import NamedTuple

import numpy as np
from loguru import logger

from observation.base import EpisodeState
from observation.cache import StaticFeatureCache
from observation.common import (
    AGE_SCALE_OFFSET,
    DEFAULT_SETTINGS,
    NOT_APPLICABLE,
    MilpConstraintFeature,
    MilpVariableFeature,
    NodeRowFeature,
    NodeVariableFeature,
    Settings,
)
from observation.errors import SerializationError
from observation.sparse import SparseCOOMatrix
from observation.utils import (
    check_features,
    feasible_equal,
    feasible_fraction,
    inequality_rows,
    is_finite,
    type_flags,
)
from solver.base import DISCRETE_TYPES, SolverState

V = NodeVariableFeature
R = NodeRowFeature


class NodeBipartiteObs:
    """
    Bipartite graph of the LP relaxation at a branch-and-bound node.

    `variable_features` has one row per variable, ordered by probing index so
    that it can be indexed by branching actions. `row_features` has one row per
    `<=` LP row. `edge_features` is the scaled constraint matrix with rows for
    LP rows and columns for variables.
    """

    VariableFeatures = NodeVariableFeature
    RowFeatures = NodeRowFeature

    def __init__(
        self,
        variable_features: np.ndarray,
        row_features: np.ndarray,
        edge_features: SparseCOOMatrix,
    ):
        self.variable_features = variable_features
        self.row_features = row_features
        self.edge_features = edge_features

    def copy(self) -> "NodeBipartiteObs":
        return NodeBipartiteObs(
            self.variable_features.copy(),
            self.row_features.copy(),
            self.edge_features.copy(),
        )

    def __eq__(self, other) -> bool:
        if not isinstance(other, NodeBipartiteObs):
            return NotImplemented
        return (
            np.array_equal(self.variable_features, other.variable_features, equal_nan=True)
            and np.array_equal(self.row_features, other.row_features, equal_nan=True)
            and self.edge_features == other.edge_features
        )

    __hash__ = None

    def __getstate__(self):
        return {
            "variable_features": self.variable_features,
            "row_features": self.row_features,
            "edge_features": self.edge_features,
        }

    def __setstate__(self, state) -> None:
        try:
            variable_features = state["variable_features"]
            row_features = state["row_features"]
            edge_features = state["edge_features"]
        except (KeyError, TypeError) as e:
            raise SerializationError(f"Malformed NodeBipartiteObs state: {e}") from e
        self.variable_features = check_features(
            variable_features, len(NodeVariableFeature), "variable_features"
        )
        self.row_features = check_features(row_features, len(NodeRowFeature), "row_features")
        if not isinstance(edge_features, SparseCOOMatrix):
            raise SerializationError("edge_features must be a SparseCOOMatrix")
        expected = (self.row_features.shape[0], self.variable_features.shape[0])
        if edge_features.shape != expected:
            raise SerializationError(
                f"edge_features shape {edge_features.shape} does not match {expected}"
            )
        self.edge_features = edge_features

    def __repr__(self) -> str:
        return (
            f"NodeBipartiteObs(n_variables={self.variable_features.shape[0]}, "
            f"n_rows={self.row_features.shape[0]}, nnz={self.edge_features.nnz})"
        )


class _NodeStatic(NamedTuple):
    variable_features: np.ndarray  # (n_variables, n_features), dynamic columns unset
    row_features: np.ndarray  # (n_split_rows, n_features), dynamic columns unset
    edge_features: SparseCOOMatrix
    row_of: np.ndarray
    sign: np.ndarray
    row_norms: np.ndarray
    objective_norm: float


def _static_node_features(model: SolverState) -> _NodeStatic:
    n_variables = model.n_variables()
    objective = np.asarray(model.objective_coefficients(), dtype=np.float64)
    raw_objective_norm = float(np.linalg.norm(objective))
    objective_norm = raw_objective_norm if raw_objective_norm > 0 else 1.0

    variable_features = np.full((n_variables, len(V)), NOT_APPLICABLE)
    variable_features[:, V.objective] = objective / objective_norm
    variable_features[:, V.is_type_binary : V.is_type_continuous + 1] = type_flags(
        model.variable_types()
    )
    variable_features[:, V.has_lower_bound] = is_finite(model.lower_bounds())
    variable_features[:, V.has_upper_bound] = is_finite(model.upper_bounds())

    matrix = model.row_matrix()
    lhs = np.asarray(model.row_lhs(), dtype=np.float64)
    rhs = np.asarray(model.row_rhs(), dtype=np.float64)
    constants = np.asarray(model.row_constants(), dtype=np.float64)
    rows, cols = matrix.indices
    n_lp_rows = matrix.shape[0]

    raw_norms = np.sqrt(np.bincount(rows, matrix.values**2, minlength=n_lp_rows))
    row_norms = np.where(raw_norms > 0, raw_norms, 1.0)
    dot = np.bincount(rows, matrix.values * objective[cols], minlength=n_lp_rows)
    if raw_objective_norm > 0:
        cosine = np.where(raw_norms > 0, dot / (row_norms * raw_objective_norm), NOT_APPLICABLE)
    else:
        cosine = np.full(n_lp_rows, NOT_APPLICABLE)

    row_of, sign, edge_rows, edge_entries = inequality_rows(matrix, lhs, rhs)
    side = np.where(sign < 0, lhs[row_of], rhs[row_of])

    row_features = np.full((len(row_of), len(R)), NOT_APPLICABLE)
    row_features[:, R.bias] = sign * (side - constants[row_of]) / row_norms[row_of]
    row_features[:, R.objective_cosine_similarity] = sign * cosine[row_of]

    edge_values = matrix.values[edge_entries] * sign[edge_rows] / row_norms[row_of][edge_rows]
    edges = SparseCOOMatrix(
        edge_values,
        np.vstack([edge_rows, cols[edge_entries]]),
        (len(row_of), n_variables),
    )
    return _NodeStatic(
        variable_features, row_features, edges, row_of, sign, row_norms, objective_norm
    )


class NodeBipartite:
    """
    Bipartite graph observation function on branch-and-bound nodes.

    With `cache=True` the objective, variable types, bound presence, row bias,
    objective similarity and edges are computed on the first extraction of an
    episode and reused until the next reset. This is only correct when the LP
    rows do not change within the episode, in particular when cutting planes
    are disabled.
    """

    def __init__(self, cache: bool = False, settings: Settings = DEFAULT_SETTINGS):
        self.use_cache = cache
        self.settings = settings
        self.cache = StaticFeatureCache("NodeBipartite")
        self._episode = EpisodeState("NodeBipartite")

    def reset(self, model: SolverState) -> None:
        self.cache.invalidate()
        self._episode.begin()

    def _static(self, model: SolverState) -> _NodeStatic:
        if not self.use_cache:
            return _static_node_features(model)
        if self.settings.check_cache_structure:
            self.cache.track_structure(model.row_matrix())
        return self.cache.get_or_compute("static", lambda: _static_node_features(model))

    def extract(self, model: SolverState, done: bool) -> NodeBipartiteObs:
        self._episode.require_ready()
        static = self._static(model)
        variable_features = static.variable_features.copy()
        row_features = static.row_features.copy()
        tolerance = model.feasibility_tolerance()

        incumbent = model.incumbent_values()
        if incumbent is not None:
            variable_features[:, V.incumbent_value] = incumbent
        average_incumbent = model.average_incumbent_values()
        if average_incumbent is not None:
            variable_features[:, V.average_incumbent_value] = average_incumbent

        if not model.has_lp_solution():
            logger.debug("No LP solution at the focus node, LP features left not applicable")
            return NodeBipartiteObs(variable_features, row_features, static.edge_features.copy())

        age_scale = model.n_lps() + AGE_SCALE_OFFSET
        types = np.asarray(model.variable_types())
        values = np.asarray(model.lp_solution_values(), dtype=np.float64)
        lower = np.asarray(model.lower_bounds(), dtype=np.float64)
        upper = np.asarray(model.upper_bounds(), dtype=np.float64)
        discrete = np.isin(types, DISCRETE_TYPES)

        variable_features[:, V.normed_reduced_cost] = (
            np.asarray(model.reduced_costs(), dtype=np.float64) / static.objective_norm
        )
        variable_features[:, V.solution_value] = values
        variable_features[:, V.solution_frac] = np.where(
            discrete, feasible_fraction(values, tolerance), NOT_APPLICABLE
        )
        variable_features[:, V.is_solution_at_lower_bound] = is_finite(lower) & feasible_equal(
            values, lower, tolerance
        )
        variable_features[:, V.is_solution_at_upper_bound] = is_finite(upper) & feasible_equal(
            values, upper, tolerance
        )
        variable_features[:, V.scaled_age] = np.asarray(model.column_ages()) / age_scale
        basis = np.asarray(model.column_basis_status(), dtype=np.int64)
        variable_features[:, V.is_basis_lower : V.is_basis_zero + 1] = 0.0
        variable_features[np.arange(len(basis)), V.is_basis_lower + basis] = 1.0

        row_of, sign = static.row_of, static.sign
        lhs = np.asarray(model.row_lhs(), dtype=np.float64)[row_of]
        rhs = np.asarray(model.row_rhs(), dtype=np.float64)[row_of]
        activities = np.asarray(model.row_activities(), dtype=np.float64)[row_of]
        duals = np.asarray(model.row_dual_values(), dtype=np.float64)[row_of]
        side = np.where(sign < 0, lhs, rhs)
        row_features[:, R.is_tight] = feasible_equal(activities, side, tolerance)
        row_features[:, R.dual_solution_value] = (
            sign * duals / (static.row_norms[row_of] * static.objective_norm)
        )
        row_features[:, R.scaled_age] = np.asarray(model.row_ages())[row_of] / age_scale

        return NodeBipartiteObs(variable_features, row_features, static.edge_features.copy())


class MilpBipartiteObs:
    """
    Bipartite graph of the most recent presolved MILP.

    Rows of `constraint_features` are `<=` constraints, columns of
    `edge_features` are variables ordered by probing index.
    """

    VariableFeatures = MilpVariableFeature
    ConstraintFeatures = MilpConstraintFeature

    def __init__(
        self,
        variable_features: np.ndarray,
        constraint_features: np.ndarray,
        edge_features: SparseCOOMatrix,
    ):
        self.variable_features = variable_features
        self.constraint_features = constraint_features
        self.edge_features = edge_features

    def copy(self) -> "MilpBipartiteObs":
        return MilpBipartiteObs(
            self.variable_features.copy(),
            self.constraint_features.copy(),
            self.edge_features.copy(),
        )

    def __eq__(self, other) -> bool:
        if not isinstance(other, MilpBipartiteObs):
            return NotImplemented
        return (
            np.array_equal(self.variable_features, other.variable_features, equal_nan=True)
            and np.array_equal(
                self.constraint_features, other.constraint_features, equal_nan=True
            )
            and self.edge_features == other.edge_features
        )

    __hash__ = None

    def __getstate__(self):
        return {
            "variable_features": self.variable_features,
            "constraint_features": self.constraint_features,
            "edge_features": self.edge_features,
        }

    def __setstate__(self, state) -> None:
        try:
            variable_features = state["variable_features"]
            constraint_features = state["constraint_features"]
            edge_features = state["edge_features"]
        except (KeyError, TypeError) as e:
            raise SerializationError(f"Malformed MilpBipartiteObs state: {e}") from e
        self.variable_features = check_features(
            variable_features, len(MilpVariableFeature), "variable_features"
        )
        self.constraint_features = check_features(
            constraint_features, len(MilpConstraintFeature), "constraint_features"
        )
        if not isinstance(edge_features, SparseCOOMatrix):
            raise SerializationError("edge_features must be a SparseCOOMatrix")
        expected = (self.constraint_features.shape[0], self.variable_features.shape[0])
        if edge_features.shape != expected:
            raise SerializationError(
                f"edge_features shape {edge_features.shape} does not match {expected}"
            )
        self.edge_features = edge_features

    def __repr__(self) -> str:
        return (
            f"MilpBipartiteObs(n_variables={self.variable_features.shape[0]}, "
            f"n_constraints={self.constraint_features.shape[0]}, nnz={self.edge_features.nnz})"
        )


def _scale(magnitude: float) -> float:
    return magnitude if magnitude > 0 else 1.0


class MilpBipartite:
    """
    Bipartite graph observation function on the most recent presolved problem.

    With `normalize=True`, features are rescaled deterministically: the
    objective by its largest absolute coefficient, every row (coefficients and
    bias) by its largest absolute coefficient, and bound values by the largest
    finite absolute bound. A zero scale is replaced by 1.
    """

    def __init__(self, normalize: bool = False):
        self.normalize = normalize
        self._episode = EpisodeState("MilpBipartite")

    def reset(self, model: SolverState) -> None:
        self._episode.begin()

    def extract(self, model: SolverState, done: bool) -> MilpBipartiteObs:
        self._episode.require_ready()
        n_variables = model.n_variables()
        objective = np.asarray(model.objective_coefficients(), dtype=np.float64)
        lower = np.asarray(model.lower_bounds(), dtype=np.float64)
        upper = np.asarray(model.upper_bounds(), dtype=np.float64)
        has_lower = is_finite(lower)
        has_upper = is_finite(upper)

        matrix = model.constraint_matrix()
        lhs = np.asarray(model.constraint_lhs(), dtype=np.float64)
        rhs = np.asarray(model.constraint_rhs(), dtype=np.float64)
        row_of, sign, edge_rows, edge_entries = inequality_rows(matrix, lhs, rhs)
        bias = sign * np.where(sign < 0, lhs[row_of], rhs[row_of])
        edge_values = matrix.values[edge_entries] * sign[edge_rows]
        lower_values = np.where(has_lower, lower, NOT_APPLICABLE)
        upper_values = np.where(has_upper, upper, NOT_APPLICABLE)

        if self.normalize:
            objective = objective / _scale(np.abs(objective).max(initial=0.0))
            row_scale = np.zeros(len(row_of))
            np.maximum.at(row_scale, edge_rows, np.abs(edge_values))
            row_scale = np.where(row_scale > 0, row_scale, 1.0)
            edge_values = edge_values / row_scale[edge_rows]
            bias = bias / row_scale
            finite_bounds = np.concatenate([np.abs(lower[has_lower]), np.abs(upper[has_upper])])
            bound_scale = _scale(finite_bounds.max(initial=0.0))
            lower_values = lower_values / bound_scale
            upper_values = upper_values / bound_scale

        variable_features = np.empty((n_variables, len(MilpVariableFeature)))
        variable_features[:, MilpVariableFeature.objective] = objective
        variable_features[
            :, MilpVariableFeature.is_type_binary : MilpVariableFeature.is_type_continuous + 1
        ] = type_flags(model.variable_types())
        variable_features[:, MilpVariableFeature.has_lower_bound] = has_lower
        variable_features[:, MilpVariableFeature.has_upper_bound] = has_upper
        variable_features[:, MilpVariableFeature.lower_bound] = lower_values
        variable_features[:, MilpVariableFeature.upper_bound] = upper_values

        constraint_features = bias.reshape(-1, 1)
        edges = SparseCOOMatrix(
            edge_values,
            np.vstack([edge_rows, matrix.indices[1][edge_entries]]),
            (len(row_of), n_variables),
        )
        return MilpBipartiteObs(variable_features, constraint_features, edges)
