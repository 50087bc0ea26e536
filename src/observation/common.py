from dataclasses import dataclass
from enum import IntEnum
from typing import Tuple, Type

import numpy as np

# Marker for a feature that is undefined for an entity. Distinct from 0.
NOT_APPLICABLE = np.nan

SCIP_INF = 1e20
# Added to the number of LPs before scaling ages, so early ages stay small.
AGE_SCALE_OFFSET = 5.0


def is_not_applicable(values) -> np.ndarray:
    return np.isnan(values)


def feature_names(features: Type[IntEnum]) -> Tuple[str, ...]:
    """Feature names ordered by column index."""
    return tuple(f.name for f in sorted(features, key=int))


@dataclass(frozen=True)
class Settings:
    # SCIP branching score: "p" (product) or "s" (weighted sum)
    score_function: str = "p"
    score_epsilon: float = 1e-6
    score_weight: float = 0.167
    # fingerprint the nonzero pattern on every cached extraction
    check_cache_structure: bool = False


DEFAULT_SETTINGS = Settings()


class NodeVariableFeature(IntEnum):
    objective = 0
    is_type_binary = 1
    is_type_integer = 2
    is_type_implicit_integer = 3
    is_type_continuous = 4
    has_lower_bound = 5
    has_upper_bound = 6
    normed_reduced_cost = 7
    solution_value = 8
    solution_frac = 9
    is_solution_at_lower_bound = 10
    is_solution_at_upper_bound = 11
    scaled_age = 12
    incumbent_value = 13
    average_incumbent_value = 14
    is_basis_lower = 15
    is_basis_basic = 16
    is_basis_upper = 17
    is_basis_zero = 18


class NodeRowFeature(IntEnum):
    bias = 0
    objective_cosine_similarity = 1
    is_tight = 2
    dual_solution_value = 3
    scaled_age = 4


class MilpVariableFeature(IntEnum):
    objective = 0
    is_type_binary = 1
    is_type_integer = 2
    is_type_implicit_integer = 3
    is_type_continuous = 4
    has_lower_bound = 5
    has_upper_bound = 6
    lower_bound = 7
    upper_bound = 8


class MilpConstraintFeature(IntEnum):
    bias = 0


class KhalilFeature(IntEnum):
    # static
    obj_coef = 0
    obj_coef_pos_part = 1
    obj_coef_neg_part = 2
    n_rows = 3
    rows_deg_mean = 4
    rows_deg_stddev = 5
    rows_deg_min = 6
    rows_deg_max = 7
    rows_pos_coefs_count = 8
    rows_pos_coefs_mean = 9
    rows_pos_coefs_stddev = 10
    rows_pos_coefs_min = 11
    rows_pos_coefs_max = 12
    rows_neg_coefs_count = 13
    rows_neg_coefs_mean = 14
    rows_neg_coefs_stddev = 15
    rows_neg_coefs_min = 16
    rows_neg_coefs_max = 17
    # dynamic
    slack = 18
    ceil_dist = 19
    pseudocost_up = 20
    pseudocost_down = 21
    pseudocost_ratio = 22
    pseudocost_sum = 23
    pseudocost_product = 24
    n_cutoff_up = 25
    n_cutoff_down = 26
    n_cutoff_up_ratio = 27
    n_cutoff_down_ratio = 28
    rows_dynamic_deg_mean = 29
    rows_dynamic_deg_stddev = 30
    rows_dynamic_deg_min = 31
    rows_dynamic_deg_max = 32
    rows_dynamic_deg_mean_ratio = 33
    rows_dynamic_deg_min_ratio = 34
    rows_dynamic_deg_max_ratio = 35
    coef_pos_rhs_ratio_min = 36
    coef_pos_rhs_ratio_max = 37
    coef_neg_rhs_ratio_min = 38
    coef_neg_rhs_ratio_max = 39
    pos_coef_pos_coef_ratio_min = 40
    pos_coef_pos_coef_ratio_max = 41
    pos_coef_neg_coef_ratio_min = 42
    pos_coef_neg_coef_ratio_max = 43
    neg_coef_pos_coef_ratio_min = 44
    neg_coef_pos_coef_ratio_max = 45
    neg_coef_neg_coef_ratio_min = 46
    neg_coef_neg_coef_ratio_max = 47
    active_coef_weight1_count = 48
    active_coef_weight1_sum = 49
    active_coef_weight1_mean = 50
    active_coef_weight1_stddev = 51
    active_coef_weight1_min = 52
    active_coef_weight1_max = 53
    active_coef_weight2_count = 54
    active_coef_weight2_sum = 55
    active_coef_weight2_mean = 56
    active_coef_weight2_stddev = 57
    active_coef_weight2_min = 58
    active_coef_weight2_max = 59
    active_coef_weight3_count = 60
    active_coef_weight3_sum = 61
    active_coef_weight3_mean = 62
    active_coef_weight3_stddev = 63
    active_coef_weight3_min = 64
    active_coef_weight3_max = 65
    active_coef_weight4_count = 66
    active_coef_weight4_sum = 67
    active_coef_weight4_mean = 68
    active_coef_weight4_stddev = 69
    active_coef_weight4_min = 70
    active_coef_weight4_max = 71


KHALIL_N_STATIC_FEATURES = 18
KHALIL_N_DYNAMIC_FEATURES = 54


class HutterFeature(IntEnum):
    nb_variables = 0
    nb_constraints = 1
    nb_nonzero_coefs = 2
    variable_node_degree_mean = 3
    variable_node_degree_max = 4
    variable_node_degree_min = 5
    variable_node_degree_std = 6
    constraint_node_degree_mean = 7
    constraint_node_degree_max = 8
    constraint_node_degree_min = 9
    constraint_node_degree_std = 10
    node_degree_mean = 11
    node_degree_max = 12
    node_degree_min = 13
    node_degree_std = 14
    node_degree_25q = 15
    node_degree_75q = 16
    edge_density = 17
    lp_slack_mean = 18
    lp_slack_max = 19
    lp_slack_l2 = 20
    lp_objective_value = 21
    objective_coef_m_std = 22
    objective_coef_n_std = 23
    objective_coef_sqrtn_std = 24
    constraint_coef_mean = 25
    constraint_coef_std = 26
    constraint_var_coef_mean = 27
    constraint_var_coef_std = 28
    discrete_vars_support_size_mean = 29
    discrete_vars_support_size_std = 30
    ratio_unbounded_discrete_vars = 31
    ratio_continuous_vars = 32
