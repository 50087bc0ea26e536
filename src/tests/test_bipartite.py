"""
Unit tests for the bipartite graph observations.

Tests cover:
1. Edge matrix of the split `<=` rows
2. Static features and their caching across decision points
3. LP features at a node, and their absence without LP
4. The MILP bipartite graph and its normalization

Run with: pytest src/tests/test_bipartite.py -v
"""

import math
import sys
from pathlib import Path

# Add src to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

import numpy as np
import pytest

from conftest import small_lp_snapshot, small_snapshot
from observation.bipartite import MilpBipartite, NodeBipartite, NodeBipartiteObs
from observation.common import Settings
from observation.errors import ExtractorStateError
from observation.sparse import SparseCOOMatrix

V = NodeBipartiteObs.VariableFeatures
R = NodeBipartiteObs.RowFeatures

OBJECTIVE_NORM = math.sqrt(5.25)


def extract(function, model):
    function.reset(model)
    return function.extract(model, False)


class TestEdges:
    """Edge matrix of the split rows"""

    def test_one_sided_rows(self, snapshot):
        obs = extract(NodeBipartite(), snapshot)
        assert obs.edge_features.nnz == 3
        assert obs.edge_features.shape == (2, 3)
        assert obs.row_features.shape == (2, len(R))
        assert obs.variable_features.shape == (3, len(V))

    def test_edge_values_scaled_by_row_norm(self, snapshot):
        dense = extract(NodeBipartite(), snapshot).edge_features.to_dense()
        expected = np.array(
            [[1.0 / math.sqrt(5), 2.0 / math.sqrt(5), 0.0], [0.0, 0.0, -1.0]]
        )
        np.testing.assert_allclose(dense, expected)

    def test_two_sided_row_is_split(self):
        model = small_snapshot(lhs=[-1.0, 1.0], rhs=[4.0, np.inf])
        obs = extract(NodeBipartite(), model)
        assert obs.edge_features.shape == (3, 3)
        assert obs.edge_features.nnz == 5
        rows = obs.edge_features.indices[0]
        assert rows.min() >= 0 and rows.max() < 3
        dense = obs.edge_features.to_dense()
        # left hand side first, negated
        np.testing.assert_allclose(dense[0], -dense[1])
        np.testing.assert_allclose(
            obs.row_features[:2, R.bias], [1.0 / math.sqrt(5), 4.0 / math.sqrt(5)]
        )

    def test_no_constraints(self):
        model = small_snapshot(
            matrix=SparseCOOMatrix.empty((0, 3)), lhs=np.zeros(0), rhs=np.zeros(0)
        )
        obs = extract(NodeBipartite(), model)
        assert obs.edge_features.shape == (0, 3)
        assert obs.row_features.shape == (0, len(R))


class TestStaticFeatures:
    """Objective, types, bounds, bias and similarity"""

    def test_variable_features(self, snapshot):
        features = extract(NodeBipartite(), snapshot).variable_features
        np.testing.assert_allclose(
            features[:, V.objective], np.array([1.0, -2.0, 0.5]) / OBJECTIVE_NORM
        )
        np.testing.assert_array_equal(features[:, V.is_type_binary], [1, 0, 0])
        np.testing.assert_array_equal(features[:, V.is_type_integer], [0, 1, 0])
        np.testing.assert_array_equal(features[:, V.is_type_continuous], [0, 0, 1])
        np.testing.assert_array_equal(features[:, V.has_lower_bound], [1, 1, 1])
        np.testing.assert_array_equal(features[:, V.has_upper_bound], [1, 1, 0])

    def test_row_features(self, snapshot):
        features = extract(NodeBipartite(), snapshot).row_features
        np.testing.assert_allclose(features[:, R.bias], [4.0 / math.sqrt(5), -1.0 / 3.0])
        np.testing.assert_allclose(
            features[:, R.objective_cosine_similarity],
            [-3.0 / (math.sqrt(5) * OBJECTIVE_NORM), -1.5 / (3.0 * OBJECTIVE_NORM)],
        )

    def test_zero_objective(self):
        model = small_snapshot(objective=[0.0, 0.0, 0.0])
        obs = extract(NodeBipartite(), model)
        np.testing.assert_array_equal(obs.variable_features[:, V.objective], 0.0)
        assert np.isnan(obs.row_features[:, R.objective_cosine_similarity]).all()

    def test_cached_static_columns_identical(self, lp_snapshot):
        function = NodeBipartite(cache=True)
        function.reset(lp_snapshot)
        first = function.extract(lp_snapshot, False)
        second = function.extract(lp_snapshot, False)
        assert first == second
        uncached = extract(NodeBipartite(cache=False), lp_snapshot)
        assert first == uncached

    def test_cache_rebuilt_on_reset(self, lp_snapshot):
        function = NodeBipartite(cache=True)
        function.reset(lp_snapshot)
        function.extract(lp_snapshot, False)
        other = small_lp_snapshot(objective=[2.0, 0.0, 0.0])
        function.reset(other)
        obs = function.extract(other, False)
        np.testing.assert_allclose(obs.variable_features[:, V.objective], [1.0, 0.0, 0.0])

    def test_structure_check_rebuilds(self, lp_snapshot):
        function = NodeBipartite(cache=True, settings=Settings(check_cache_structure=True))
        function.reset(lp_snapshot)
        function.extract(lp_snapshot, False)
        changed = small_lp_snapshot(
            matrix=SparseCOOMatrix([1.0, 3.0], [[0, 1], [0, 2]], (2, 3))
        )
        obs = function.extract(changed, False)
        assert obs.edge_features.nnz == 2

    def test_returned_arrays_not_shared_with_cache(self, lp_snapshot):
        function = NodeBipartite(cache=True)
        function.reset(lp_snapshot)
        first = function.extract(lp_snapshot, False)
        first.variable_features[:] = 7.0
        second = function.extract(lp_snapshot, False)
        assert not (second.variable_features == 7.0).all()


class TestLPFeatures:
    """Features of the LP relaxation at the node"""

    def test_solution_features(self, lp_snapshot):
        features = extract(NodeBipartite(), lp_snapshot).variable_features
        np.testing.assert_allclose(features[:, V.solution_value], [0.5, 1.0, 1.0 / 3.0])
        assert features[0, V.solution_frac] == pytest.approx(0.5)
        assert features[1, V.solution_frac] == 0.0
        assert np.isnan(features[2, V.solution_frac])
        np.testing.assert_allclose(features[:, V.scaled_age], [0.0, 0.2, 0.1])
        np.testing.assert_allclose(
            features[:, V.normed_reduced_cost], [0.0, -1.0 / OBJECTIVE_NORM, 0.0]
        )

    def test_basis_one_hot(self, lp_snapshot):
        features = extract(NodeBipartite(), lp_snapshot).variable_features
        basis = features[:, V.is_basis_lower : V.is_basis_zero + 1]
        np.testing.assert_array_equal(basis.sum(axis=1), [1, 1, 1])
        np.testing.assert_array_equal(features[:, V.is_basis_basic], [1, 0, 1])
        np.testing.assert_array_equal(features[:, V.is_basis_lower], [0, 1, 0])

    def test_basis_identical_across_uncached_calls(self, lp_snapshot):
        function = NodeBipartite(cache=False)
        function.reset(lp_snapshot)
        first = function.extract(lp_snapshot, False).variable_features
        second = function.extract(lp_snapshot, False).variable_features
        np.testing.assert_array_equal(
            first[:, V.is_basis_lower : V.is_basis_zero + 1],
            second[:, V.is_basis_lower : V.is_basis_zero + 1],
        )

    def test_row_tightness_and_duals(self, lp_snapshot):
        features = extract(NodeBipartite(), lp_snapshot).row_features
        np.testing.assert_array_equal(features[:, R.is_tight], [0, 1])
        np.testing.assert_allclose(
            features[:, R.dual_solution_value], [0.0, -0.5 / (3.0 * OBJECTIVE_NORM)]
        )
        np.testing.assert_allclose(features[:, R.scaled_age], [0.3, 0.0])

    def test_no_lp_leaves_lp_columns_not_applicable(self, snapshot):
        obs = extract(NodeBipartite(), snapshot)
        for column in (V.solution_value, V.normed_reduced_cost, V.is_basis_basic, V.scaled_age):
            assert np.isnan(obs.variable_features[:, column]).all()
        assert np.isnan(obs.row_features[:, R.is_tight]).all()
        assert not np.isnan(obs.variable_features[:, V.objective]).any()

    def test_incumbent(self):
        model = small_lp_snapshot(incumbent=np.array([1.0, 2.0, 0.5]))
        features = extract(NodeBipartite(), model).variable_features
        np.testing.assert_array_equal(features[:, V.incumbent_value], [1.0, 2.0, 0.5])
        assert np.isnan(features[:, V.average_incumbent_value]).all()


class TestStateMachine:
    """Extraction requires a reset"""

    def test_extract_before_reset(self, snapshot):
        with pytest.raises(ExtractorStateError):
            NodeBipartite().extract(snapshot, False)

    def test_done_flag_is_informational(self, lp_snapshot):
        function = NodeBipartite()
        function.reset(lp_snapshot)
        assert function.extract(lp_snapshot, True) == function.extract(lp_snapshot, False)


class TestMilpBipartite:
    """Bipartite graph of the presolved problem"""

    def test_features(self, snapshot):
        obs = extract(MilpBipartite(), snapshot)
        F = obs.VariableFeatures
        np.testing.assert_array_equal(obs.variable_features[:, F.objective], [1.0, -2.0, 0.5])
        np.testing.assert_array_equal(obs.variable_features[:, F.upper_bound][:2], [1.0, 10.0])
        assert np.isnan(obs.variable_features[2, F.upper_bound])
        np.testing.assert_array_equal(obs.constraint_features[:, 0], [4.0, -1.0])
        np.testing.assert_array_equal(
            obs.edge_features.to_dense(), [[1.0, 2.0, 0.0], [0.0, 0.0, -3.0]]
        )

    def test_normalize(self, snapshot):
        obs = extract(MilpBipartite(normalize=True), snapshot)
        F = obs.VariableFeatures
        np.testing.assert_allclose(obs.variable_features[:, F.objective], [0.5, -1.0, 0.25])
        np.testing.assert_allclose(obs.constraint_features[:, 0], [2.0, -1.0 / 3.0])
        np.testing.assert_allclose(
            obs.edge_features.to_dense(), [[0.5, 1.0, 0.0], [0.0, 0.0, -1.0]]
        )
        np.testing.assert_allclose(obs.variable_features[:2, F.upper_bound], [0.1, 1.0])
        assert np.isnan(obs.variable_features[2, F.upper_bound])

    def test_normalize_is_deterministic(self, snapshot):
        function = MilpBipartite(normalize=True)
        assert extract(function, snapshot) == extract(function, snapshot)
