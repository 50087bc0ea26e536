"""
Integration tests of the extractors on a live SCIP model.

Run with: pytest src/tests/test_scip.py -v
"""

import sys
from pathlib import Path

# Add src to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

import numpy as np
import pytest

scip_py = pytest.importorskip("pyscipopt")

from observation.auxiliary import Capacity, knapsack_rows
from observation.bipartite import NodeBipartite
from observation.instance import Hutter2011, Hutter2011Obs
from observation.structural import Khalil2016, Khalil2016Obs
from solver.base import VarType
from solver.scip import ScipState


def make_model():
    """max x + y + z  s.t.  2x + 2y + 2z <= 3, binaries: the root LP is fractional."""
    model = scip_py.Model()
    model.hideOutput()
    x = model.addVar("x", vtype="B", obj=1.0)
    y = model.addVar("y", vtype="B", obj=1.0)
    z = model.addVar("z", vtype="B", obj=1.0)
    model.addCons(2 * x + 2 * y + 2 * z <= 3, name="capacity")
    model.setMaximize()
    model.setPresolve(scip_py.SCIP_PARAMSETTING.OFF)
    model.setHeuristics(scip_py.SCIP_PARAMSETTING.OFF)
    model.setSeparating(scip_py.SCIP_PARAMSETTING.OFF)
    return model


class Recorder(scip_py.Branchrule):
    """Captures the state at the first branching decision."""

    def __init__(self):
        self.records = []

    def branchexeclp(self, allowaddcons):
        if not self.records:
            state = ScipState(self.model)
            snapshot = state.snapshot()
            live = NodeBipartite()
            live.reset(state)
            frozen = NodeBipartite()
            frozen.reset(snapshot)
            self.records.append(
                (snapshot, live.extract(state, False), frozen.extract(snapshot, False))
            )
        return {"result": scip_py.SCIP_RESULT.DIDNOTRUN}


@pytest.fixture(scope="module")
def record():
    model = make_model()
    recorder = Recorder()
    model.includeBranchrule(
        recorder, "recorder", "records the first decision", priority=1000000, maxdepth=-1, maxbounddist=1
    )
    model.optimize()
    if not recorder.records:
        pytest.skip("SCIP solved the problem without branching")
    return recorder.records[0]


class TestProblemStage:
    """Accessors before solving"""

    def test_variables_and_constraints(self):
        state = ScipState(make_model())
        assert state.n_variables() == 3
        np.testing.assert_array_equal(state.variable_types(), [VarType.BINARY] * 3)
        matrix = state.constraint_matrix()
        assert matrix.shape == (1, 3)
        np.testing.assert_array_equal(matrix.to_dense(), [[2.0, 2.0, 2.0]])
        assert np.isneginf(state.constraint_lhs()[0])
        assert state.constraint_rhs()[0] == 3.0
        assert not state.has_lp_solution()
        assert state.focus_node() is None


class TestBranchingDecision:
    """State captured inside a branching callback"""

    def test_snapshot(self, record):
        snapshot, _, _ = record
        assert snapshot.has_lp_solution()
        assert snapshot.n_variables() == 3
        assert snapshot.lp_branch_candidates().size > 0
        assert snapshot.focus_node() is not None

    def test_live_and_snapshot_observations_agree(self, record):
        _, live, frozen = record
        assert live == frozen

    def test_extractors_run_on_snapshot(self, record):
        snapshot, _, _ = record
        khalil = Khalil2016()
        khalil.reset(snapshot)
        features = khalil.extract(snapshot, False).features
        candidates = snapshot.lp_branch_candidates()
        assert not np.isnan(features[candidates, Khalil2016Obs.Features.slack]).any()

        hutter = Hutter2011()
        hutter.reset(snapshot)
        assert hutter.extract(snapshot, False).features[0] == 3

    def test_counts(self, record):
        snapshot, _, _ = record
        branch_down, branch_up = snapshot.branching_counts()
        assert not np.isnan(branch_down).any() and not np.isnan(branch_up).any()
        # SCIP does not report per variable cutoffs through pyscipopt
        cutoff_down, cutoff_up = snapshot.cutoff_counts()
        assert np.isnan(cutoff_down).all() and np.isnan(cutoff_up).all()

    def test_cutoff_features_not_applicable(self, record):
        snapshot, _, _ = record
        khalil = Khalil2016()
        khalil.reset(snapshot)
        features = khalil.extract(snapshot, False).features
        candidates = snapshot.lp_branch_candidates()
        assert np.isnan(features[candidates, Khalil2016Obs.Features.n_cutoff_up]).all()
        assert np.isnan(features[candidates, Khalil2016Obs.Features.n_cutoff_down_ratio]).all()


def make_presolved_model():
    """2 x0 + 3 x1 + 4 x2 + 5 x3 <= 7 and x0 + x1 + x2 + x3 >= 1, presolved."""
    model = scip_py.Model()
    model.hideOutput()
    x = [model.addVar(f"x{i}", vtype="B") for i in range(4)]
    model.addCons(2 * x[0] + 3 * x[1] + 4 * x[2] + 5 * x[3] <= 7, name="knapsack")
    model.addCons(x[0] + x[1] + x[2] + x[3] >= 1, name="cover")
    model.presolve()
    return model


class TestPresolvedProblem:
    """Constraints upgraded by presolve keep their rows"""

    def test_upgraded_constraints_are_read(self):
        model = make_presolved_model()
        handlers = {c.getConshdlrName() for c in model.getConss()}
        assert handlers - {"linear"}

        state = ScipState(model)
        matrix = state.constraint_matrix()
        assert matrix.shape == (len(model.getConss()), state.n_variables())
        assert np.all(np.bincount(matrix.indices[0], minlength=matrix.shape[0]) > 0)
        lhs, rhs = state.constraint_lhs(), state.constraint_rhs()
        assert lhs.shape == rhs.shape == (matrix.shape[0],)
        assert np.all(np.isfinite(lhs) | np.isfinite(rhs))

    def test_knapsack_capacity(self):
        state = ScipState(make_presolved_model())
        assert knapsack_rows(state).size > 0
        capacity = Capacity()
        capacity.reset(state)
        assert not np.isnan(capacity.extract(state, False)).all()

    def test_instance_features(self):
        state = ScipState(make_presolved_model())
        hutter = Hutter2011()
        hutter.reset(state)
        features = hutter.extract(state, False).features
        assert features[Hutter2011Obs.Features.nb_constraints] == len(state.model.getConss())
        assert features[Hutter2011Obs.Features.nb_nonzero_coefs] > 0
