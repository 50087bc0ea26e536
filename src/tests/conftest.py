import sys
from pathlib import Path

# Add src to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

import numpy as np
import pytest

from observation.sparse import SparseCOOMatrix
from solver.base import BasisStatus, NodeRecord, StrongBranchOutcome, VarType
from solver.snapshot import SolverSnapshot


def small_matrix() -> SparseCOOMatrix:
    """
    x0 + 2 x1       <= 4
              3 x2  >= 1
    """
    return SparseCOOMatrix(
        values=[1.0, 2.0, 3.0],
        indices=[[0, 0, 1], [0, 1, 2]],
        shape=(2, 3),
    )


def small_snapshot(**overrides) -> SolverSnapshot:
    """Three variables (binary, integer, continuous), two one sided constraints."""
    fields = dict(
        types=[VarType.BINARY, VarType.INTEGER, VarType.CONTINUOUS],
        objective=[1.0, -2.0, 0.5],
        matrix=small_matrix(),
        lb=[0.0, 0.0, 0.0],
        ub=[1.0, 10.0, np.inf],
        lhs=[-np.inf, 1.0],
        rhs=[4.0, np.inf],
    )
    fields.update(overrides)
    return SolverSnapshot(**fields)


def small_lp_snapshot(**overrides) -> SolverSnapshot:
    """`small_snapshot` at a node whose LP solution has x0 fractional."""
    fields = dict(
        lp_values=[0.5, 1.0, 1.0 / 3.0],
        lp_objective=-1.0,
        lp_count=5,
        redcosts=[0.0, -1.0, 0.0],
        basis=[BasisStatus.BASIC, BasisStatus.LOWER, BasisStatus.BASIC],
        col_ages=[0, 2, 1],
        duals=[0.0, 0.5],
        lp_row_ages=[3, 0],
        pc_down=[2.0, 1.0, 0.0],
        pc_up=[4.0, 3.0, 0.0],
        n_branchings_down=[4.0, 0.0, 0.0],
        n_branchings_up=[2.0, 0.0, 0.0],
        n_cutoffs_down=[1.0, 0.0, 0.0],
        n_cutoffs_up=[0.0, 0.0, 0.0],
        strong_branching={0: StrongBranchOutcome(down=1.0, up=-0.5)},
        node=NodeRecord(
            number=3,
            depth=1,
            lowerbound=-1.0,
            estimate=-0.5,
            n_added_conss=0,
            parent_number=1,
            parent_lowerbound=-1.5,
        ),
    )
    fields.update(overrides)
    return small_snapshot(**fields)


def knapsack_snapshot() -> SolverSnapshot:
    """
    2 x0 + 3 x1 + 4 x2      <= 5   knapsack
                  x2 + x3   <= 1   set packing
    x0 - x3                 <= 0   negative coefficient
    """
    matrix = SparseCOOMatrix(
        values=[2.0, 3.0, 4.0, 1.0, 1.0, 1.0, -1.0],
        indices=[[0, 0, 0, 1, 1, 2, 2], [0, 1, 2, 2, 3, 0, 3]],
        shape=(3, 4),
    )
    return SolverSnapshot(
        types=[VarType.BINARY] * 4,
        objective=[-1.0, -2.0, -3.0, -1.0],
        matrix=matrix,
        rhs=[5.0, 1.0, 0.0],
    )


@pytest.fixture
def snapshot() -> SolverSnapshot:
    return small_snapshot()


@pytest.fixture
def lp_snapshot() -> SolverSnapshot:
    return small_lp_snapshot()


@pytest.fixture
def knapsack() -> SolverSnapshot:
    return knapsack_snapshot()
