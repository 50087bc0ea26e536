"""
Per-variable branching features from Khalil et al. (2016).

Khalil, Le Bodic, Song, Nemhauser and Dilkina, "Learning to branch in mixed
integer programming", AAAI 2016.
"""

from typing import NamedTuple

import numpy as np
from loguru import logger

from observation.base import EpisodeState
from observation.cache import StaticFeatureCache
from observation.common import (
    DEFAULT_SETTINGS,
    KHALIL_N_DYNAMIC_FEATURES,
    KHALIL_N_STATIC_FEATURES,
    NOT_APPLICABLE,
    KhalilFeature,
    Settings,
)
from observation.errors import SerializationError
from observation.stats import (
    count_mean_std_min_max,
    count_sum_mean_std_min_max,
    mean_std_min_max,
    min_max,
    safe_divide,
    safe_ratio,
)
from observation.utils import check_features, feasible_equal, feasible_fraction, is_finite
from solver.base import SolverState

F = KhalilFeature


class Khalil2016Obs:
    """
    Branching candidate features.

    `features` has one row per variable, ordered by probing index. The first
    `n_static_features` columns only depend on the problem structure, the
    remaining `n_dynamic_features` on the current node. Dynamic columns of
    variables that are not branching candidates are NOT_APPLICABLE.
    """

    Features = KhalilFeature
    n_static_features = KHALIL_N_STATIC_FEATURES
    n_dynamic_features = KHALIL_N_DYNAMIC_FEATURES

    def __init__(self, features: np.ndarray):
        self.features = features

    def copy(self) -> "Khalil2016Obs":
        return Khalil2016Obs(self.features.copy())

    def __eq__(self, other) -> bool:
        if not isinstance(other, Khalil2016Obs):
            return NotImplemented
        return np.array_equal(self.features, other.features, equal_nan=True)

    __hash__ = None

    def __getstate__(self):
        return {"features": self.features}

    def __setstate__(self, state) -> None:
        try:
            features = state["features"]
        except (KeyError, TypeError) as e:
            raise SerializationError(f"Malformed Khalil2016Obs state: {e}") from e
        self.features = check_features(features, len(KhalilFeature), "features")

    def __repr__(self) -> str:
        return f"Khalil2016Obs(n_variables={self.features.shape[0]})"


class _Incidence(NamedTuple):
    """LP matrix sorted by column, with per-row aggregates."""

    rows: np.ndarray
    cols: np.ndarray
    values: np.ndarray
    col_starts: np.ndarray
    row_degree: np.ndarray
    row_pos_sum: np.ndarray
    row_neg_sum: np.ndarray
    row_abs_sum: np.ndarray
    row_bias: np.ndarray


def _incidence(model: SolverState) -> _Incidence:
    matrix = model.row_matrix()
    n_rows, n_variables = matrix.shape
    order = np.lexsort((matrix.indices[0], matrix.indices[1]))
    rows = matrix.indices[0][order]
    cols = matrix.indices[1][order]
    values = matrix.values[order]
    col_starts = np.concatenate([[0], np.cumsum(np.bincount(cols, minlength=n_variables))])

    lhs = np.asarray(model.row_lhs(), dtype=np.float64)
    rhs = np.asarray(model.row_rhs(), dtype=np.float64)
    constants = np.asarray(model.row_constants(), dtype=np.float64)
    # right hand side of the row, its left hand side for >= rows
    row_bias = np.where(
        is_finite(rhs), rhs - constants, np.where(is_finite(lhs), lhs - constants, np.nan)
    )
    return _Incidence(
        rows=rows,
        cols=cols,
        values=values,
        col_starts=col_starts.astype(np.int64),
        row_degree=np.bincount(rows, minlength=n_rows).astype(np.float64),
        row_pos_sum=np.bincount(rows, np.maximum(values, 0.0), minlength=n_rows),
        row_neg_sum=np.bincount(rows, np.maximum(-values, 0.0), minlength=n_rows),
        row_abs_sum=np.bincount(rows, np.abs(values), minlength=n_rows),
        row_bias=row_bias,
    )


def _static_features(model: SolverState, incidence: _Incidence) -> np.ndarray:
    n_variables = model.n_variables()
    objective = np.asarray(model.objective_coefficients(), dtype=np.float64)
    static = np.full((n_variables, KHALIL_N_STATIC_FEATURES), NOT_APPLICABLE)
    static[:, F.obj_coef] = objective
    static[:, F.obj_coef_pos_part] = np.maximum(objective, 0.0)
    static[:, F.obj_coef_neg_part] = np.maximum(-objective, 0.0)

    for j in range(n_variables):
        start, end = incidence.col_starts[j], incidence.col_starts[j + 1]
        coefs = incidence.values[start:end]
        degrees = incidence.row_degree[incidence.rows[start:end]]
        static[j, F.n_rows] = end - start
        static[j, F.rows_deg_mean : F.rows_deg_max + 1] = mean_std_min_max(degrees)
        static[j, F.rows_pos_coefs_count : F.rows_pos_coefs_max + 1] = count_mean_std_min_max(
            coefs[coefs > 0]
        )
        static[j, F.rows_neg_coefs_count : F.rows_neg_coefs_max + 1] = count_mean_std_min_max(
            coefs[coefs < 0]
        )
    return static


class Khalil2016:
    """
    Branching candidate features observation function.

    Candidates are the LP branching candidates, or the pseudo candidates when
    `pseudo_candidates` is true. Static columns are computed for every
    variable and cached for the episode; dynamic columns are recomputed at
    every extraction, for candidates only. A row is active when it is tight
    in the current LP solution or was tight at the previous one (age 0).
    """

    def __init__(self, pseudo_candidates: bool = False, settings: Settings = DEFAULT_SETTINGS):
        self.pseudo_candidates = pseudo_candidates
        self.settings = settings
        self.cache = StaticFeatureCache("Khalil2016")
        self._episode = EpisodeState("Khalil2016")

    def reset(self, model: SolverState) -> None:
        self.cache.invalidate()
        self._episode.begin()

    def _static(self, model: SolverState, incidence: _Incidence) -> np.ndarray:
        if self.settings.check_cache_structure:
            self.cache.track_structure(model.row_matrix())
        return self.cache.get_or_compute("static", lambda: _static_features(model, incidence))

    def extract(self, model: SolverState, done: bool) -> Khalil2016Obs:
        self._episode.require_ready()
        # rebuilt every call, the LP rows change when cuts are added
        incidence = _incidence(model)
        static = self._static(model, incidence)
        n_variables = model.n_variables()
        features = np.full((n_variables, len(KhalilFeature)), NOT_APPLICABLE)
        features[:, :KHALIL_N_STATIC_FEATURES] = static

        has_lp = model.has_lp_solution()
        if self.pseudo_candidates:
            candidates = np.asarray(model.pseudo_branch_candidates(), dtype=np.int64)
        elif has_lp:
            candidates = np.asarray(model.lp_branch_candidates(), dtype=np.int64)
        else:
            logger.warning("No LP solution, Khalil2016 has no LP branching candidates")
            candidates = np.zeros(0, dtype=np.int64)
        if candidates.size == 0:
            return Khalil2016Obs(features)

        tolerance = model.feasibility_tolerance()
        pc_down, pc_up = (np.asarray(a, dtype=np.float64) for a in model.pseudocosts())
        branch_down, branch_up = (np.asarray(a, dtype=np.float64) for a in model.branching_counts())
        cutoff_down, cutoff_up = (np.asarray(a, dtype=np.float64) for a in model.cutoff_counts())

        lower = np.asarray(model.lower_bounds(), dtype=np.float64)
        upper = np.asarray(model.upper_bounds(), dtype=np.float64)
        unfixed = ~feasible_equal(lower, upper, tolerance)
        row_dynamic_degree = np.bincount(
            incidence.rows,
            unfixed[incidence.cols].astype(np.float64),
            minlength=len(incidence.row_degree),
        )
        is_candidate = np.zeros(n_variables, dtype=bool)
        is_candidate[candidates] = True
        row_candidate_sum = np.bincount(
            incidence.rows,
            np.abs(incidence.values) * is_candidate[incidence.cols],
            minlength=len(incidence.row_degree),
        )

        if has_lp:
            values = np.asarray(model.lp_solution_values(), dtype=np.float64)
            lhs = np.asarray(model.row_lhs(), dtype=np.float64)
            rhs = np.asarray(model.row_rhs(), dtype=np.float64)
            activities = np.asarray(model.row_activities(), dtype=np.float64)
            duals = np.asarray(model.row_dual_values(), dtype=np.float64)
            tight = (is_finite(lhs) & feasible_equal(activities, lhs, tolerance)) | (
                is_finite(rhs) & feasible_equal(activities, rhs, tolerance)
            )
            active = tight | (np.asarray(model.row_ages()) == 0)

        for j in candidates:
            out = features[j]
            start, end = incidence.col_starts[j], incidence.col_starts[j + 1]
            rows = incidence.rows[start:end]
            coefs = incidence.values[start:end]

            if has_lp:
                frac = feasible_fraction(values[j : j + 1], tolerance)[0]
                out[F.slack] = min(frac, 1.0 - frac)
                out[F.ceil_dist] = max(np.ceil(values[j] - tolerance) - values[j], 0.0)

            up, down = pc_up[j], pc_down[j]
            out[F.pseudocost_up] = up
            out[F.pseudocost_down] = down
            out[F.pseudocost_ratio] = safe_ratio(up, down)
            out[F.pseudocost_sum] = up + down
            out[F.pseudocost_product] = up * down
            out[F.n_cutoff_up] = cutoff_up[j]
            out[F.n_cutoff_down] = cutoff_down[j]
            out[F.n_cutoff_up_ratio] = safe_ratio(cutoff_up[j], branch_up[j])
            out[F.n_cutoff_down_ratio] = safe_ratio(cutoff_down[j], branch_down[j])

            bias = incidence.row_bias[rows]
            positive_bias = bias > 0
            negative_bias = bias < 0
            out[F.coef_pos_rhs_ratio_min : F.coef_pos_rhs_ratio_max + 1] = min_max(
                coefs[positive_bias] / bias[positive_bias]
            )
            out[F.coef_neg_rhs_ratio_min : F.coef_neg_rhs_ratio_max + 1] = min_max(
                coefs[negative_bias] / bias[negative_bias]
            )

            pos_sum = incidence.row_pos_sum[rows]
            neg_sum = incidence.row_neg_sum[rows]
            positive = coefs > 0
            negative = coefs < 0
            magnitudes = np.abs(coefs)
            for first, sign_mask, totals in (
                (F.pos_coef_pos_coef_ratio_min, positive, pos_sum),
                (F.pos_coef_neg_coef_ratio_min, positive, neg_sum),
                (F.neg_coef_pos_coef_ratio_min, negative, pos_sum),
                (F.neg_coef_neg_coef_ratio_min, negative, neg_sum),
            ):
                mask = sign_mask & (totals > 0)
                out[first : first + 2] = min_max(magnitudes[mask] / totals[mask])

            if not has_lp:
                continue

            row_active = active[rows]
            dynamic_degrees = row_dynamic_degree[rows][row_active]
            mean, std, mn, mx = mean_std_min_max(dynamic_degrees)
            out[F.rows_dynamic_deg_mean : F.rows_dynamic_deg_max + 1] = (mean, std, mn, mx)
            out[F.rows_dynamic_deg_mean_ratio] = safe_ratio(mean, out[F.rows_deg_mean])
            out[F.rows_dynamic_deg_min_ratio] = safe_ratio(mn, out[F.rows_deg_min])
            out[F.rows_dynamic_deg_max_ratio] = safe_ratio(mx, out[F.rows_deg_max])

            active_rows = rows[row_active]
            active_coefs = coefs[row_active]
            weights = (
                np.ones(active_rows.size),
                safe_divide(1.0, incidence.row_abs_sum[active_rows]),
                safe_divide(1.0, row_candidate_sum[active_rows]),
                np.abs(duals[active_rows]),
            )
            for block, weight in zip(
                (
                    F.active_coef_weight1_count,
                    F.active_coef_weight2_count,
                    F.active_coef_weight3_count,
                    F.active_coef_weight4_count,
                ),
                weights,
            ):
                out[block : block + 6] = count_sum_mean_std_min_max(active_coefs * weight)

        return Khalil2016Obs(features)
