"""
Instance features from Hutter et al. (2011).

Hutter, Hoos and Leyton-Brown, "Sequential model-based optimization for
general algorithm configuration", LION 2011.
"""

import numpy as np
from loguru import logger

from observation.base import EpisodeState
from observation.common import NOT_APPLICABLE, HutterFeature
from observation.errors import SerializationError
from observation.stats import mean_std_min_max, safe_mean, safe_std
from observation.utils import check_features, is_finite
from solver.base import DISCRETE_TYPES, SolverState, VarType

H = HutterFeature


class Hutter2011Obs:
    """A vector of features globally characterizing the instance, indexed by `Features`."""

    Features = HutterFeature

    def __init__(self, features: np.ndarray):
        self.features = features

    def copy(self) -> "Hutter2011Obs":
        return Hutter2011Obs(self.features.copy())

    def __eq__(self, other) -> bool:
        if not isinstance(other, Hutter2011Obs):
            return NotImplemented
        return np.array_equal(self.features, other.features, equal_nan=True)

    __hash__ = None

    def __getstate__(self):
        return {"features": self.features}

    def __setstate__(self, state) -> None:
        try:
            features = state["features"]
        except (KeyError, TypeError) as e:
            raise SerializationError(f"Malformed Hutter2011Obs state: {e}") from e
        self.features = check_features(features, len(HutterFeature), "features", ndim=1)

    def __repr__(self) -> str:
        return f"Hutter2011Obs(n_features={self.features.shape[0]})"


class Hutter2011:
    """
    Instance features observation function.

    Graph and coefficient features are read from the constraints of the most
    recent presolved problem. LP features need a solved LP and are
    NOT_APPLICABLE otherwise. Nothing is cached.
    """

    def __init__(self):
        self._episode = EpisodeState("Hutter2011")

    def reset(self, model: SolverState) -> None:
        self._episode.begin()

    def extract(self, model: SolverState, done: bool) -> Hutter2011Obs:
        self._episode.require_ready()
        features = np.full(len(HutterFeature), NOT_APPLICABLE)

        n_variables = model.n_variables()
        matrix = model.constraint_matrix()
        n_constraints = matrix.shape[0]
        rows, cols = matrix.indices
        coefs = matrix.values
        nnz = matrix.nnz

        features[H.nb_variables] = n_variables
        features[H.nb_constraints] = n_constraints
        features[H.nb_nonzero_coefs] = nnz

        variable_degree = np.bincount(cols, minlength=n_variables).astype(np.float64)
        constraint_degree = np.bincount(rows, minlength=n_constraints).astype(np.float64)
        node_degree = np.concatenate([variable_degree, constraint_degree])

        mean, std, mn, mx = mean_std_min_max(variable_degree)
        features[H.variable_node_degree_mean] = mean
        features[H.variable_node_degree_max] = mx
        features[H.variable_node_degree_min] = mn
        features[H.variable_node_degree_std] = std
        mean, std, mn, mx = mean_std_min_max(constraint_degree)
        features[H.constraint_node_degree_mean] = mean
        features[H.constraint_node_degree_max] = mx
        features[H.constraint_node_degree_min] = mn
        features[H.constraint_node_degree_std] = std
        mean, std, mn, mx = mean_std_min_max(node_degree)
        features[H.node_degree_mean] = mean
        features[H.node_degree_max] = mx
        features[H.node_degree_min] = mn
        features[H.node_degree_std] = std
        if node_degree.size > 0:
            features[H.node_degree_25q] = np.percentile(node_degree, 25)
            features[H.node_degree_75q] = np.percentile(node_degree, 75)
        if n_variables > 0 and n_constraints > 0:
            features[H.edge_density] = nnz / (n_variables * n_constraints)

        types = np.asarray(model.variable_types())
        discrete = np.isin(types, DISCRETE_TYPES)
        if model.has_lp_solution():
            values = np.asarray(model.lp_solution_values(), dtype=np.float64)[discrete]
            slack = np.abs(values - np.round(values))
            if slack.size > 0:
                features[H.lp_slack_mean] = slack.mean()
                features[H.lp_slack_max] = slack.max()
                features[H.lp_slack_l2] = np.linalg.norm(slack)
            features[H.lp_objective_value] = model.lp_objective_value()
        else:
            logger.debug("No LP solution, Hutter2011 LP features left not applicable")

        objective = np.asarray(model.objective_coefficients(), dtype=np.float64)
        if n_constraints > 0:
            features[H.objective_coef_m_std] = safe_std(objective / n_constraints)
        supported = variable_degree > 0
        features[H.objective_coef_n_std] = safe_std(
            objective[supported] / variable_degree[supported]
        )
        features[H.objective_coef_sqrtn_std] = safe_std(
            objective[supported] / np.sqrt(variable_degree[supported])
        )

        lhs = np.asarray(model.constraint_lhs(), dtype=np.float64)
        rhs = np.asarray(model.constraint_rhs(), dtype=np.float64)
        bias = np.where(is_finite(rhs), rhs, np.where(is_finite(lhs), lhs, np.nan))
        entry_bias = bias[rows]
        normalized = entry_bias != 0
        normalized &= ~np.isnan(entry_bias)
        ratios = coefs[normalized] / entry_bias[normalized]
        features[H.constraint_coef_mean] = safe_mean(ratios)
        features[H.constraint_coef_std] = safe_std(ratios)

        # variation coefficient of absolute coefficients, per constraint
        magnitudes = np.abs(coefs)
        with np.errstate(invalid="ignore", divide="ignore"):
            row_mean = np.bincount(rows, magnitudes, minlength=n_constraints) / constraint_degree
            row_sq_mean = np.bincount(rows, magnitudes**2, minlength=n_constraints) / constraint_degree
        row_std = np.sqrt(np.maximum(row_sq_mean - row_mean**2, 0.0))
        has_entries = (constraint_degree > 0) & (row_mean > 0)
        variation = row_std[has_entries] / row_mean[has_entries]
        features[H.constraint_var_coef_mean] = safe_mean(variation)
        features[H.constraint_var_coef_std] = safe_std(variation)

        lower = np.asarray(model.lower_bounds(), dtype=np.float64)[discrete]
        upper = np.asarray(model.upper_bounds(), dtype=np.float64)[discrete]
        bounded = is_finite(lower) & is_finite(upper)
        support = upper[bounded] - lower[bounded] + 1.0
        features[H.discrete_vars_support_size_mean] = safe_mean(support)
        features[H.discrete_vars_support_size_std] = safe_std(support)
        if discrete.any():
            features[H.ratio_unbounded_discrete_vars] = np.count_nonzero(~bounded) / discrete.sum()
        if n_variables > 0:
            features[H.ratio_continuous_vars] = (
                np.count_nonzero(types == VarType.CONTINUOUS) / n_variables
            )

        return Hutter2011Obs(features)
