"""Per-variable branching scores, mostly used as imitation learning targets."""

import numpy as np
from loguru import logger

from observation.base import EpisodeState
from observation.common import DEFAULT_SETTINGS, NOT_APPLICABLE, Settings
from observation.errors import InvalidSolverStateError
from observation.utils import feasible_fraction
from solver.base import SolverState


def branch_score(down: float, up: float, settings: Settings = DEFAULT_SETTINGS) -> float:
    """Combine the gains of the two children into a single score, the way SCIP does."""
    if settings.score_function == "p":
        eps = settings.score_epsilon
        return max(down, eps) * max(up, eps)
    if settings.score_function == "s":
        mu = settings.score_weight
        return (1.0 - mu) * min(down, up) + mu * max(down, up)
    raise ValueError(f"Unknown score function '{settings.score_function}', expected 'p' or 's'")


def _require_lp(model: SolverState, owner: str) -> None:
    if not model.has_lp_solution():
        raise InvalidSolverStateError(f"{owner} needs a solved LP at the focus node")


class StrongBranchingScores:
    """
    Strong branching score of every branching candidate.

    Both children of each candidate are evaluated by the solver, which makes
    this the most expensive extractor by far. Meant as an offline supervision
    signal. Non-candidates get NOT_APPLICABLE.
    """

    def __init__(self, pseudo_candidates: bool = False, settings: Settings = DEFAULT_SETTINGS):
        self.pseudo_candidates = pseudo_candidates
        self.settings = settings
        self._episode = EpisodeState("StrongBranchingScores")

    def reset(self, model: SolverState) -> None:
        self._episode.begin()

    def extract(self, model: SolverState, done: bool) -> np.ndarray:
        self._episode.require_ready()
        _require_lp(model, "StrongBranchingScores")
        scores = np.full(model.n_variables(), NOT_APPLICABLE)
        if self.pseudo_candidates:
            candidates = model.pseudo_branch_candidates()
        else:
            candidates = model.lp_branch_candidates()
        if len(candidates) == 0:
            logger.debug("No branching candidates, strong branching scores are all not applicable")
            return scores

        lp_objective = model.lp_objective_value()
        for j in candidates:
            outcome = model.strong_branch(int(j), integral=self.pseudo_candidates)
            if outcome.lp_error:
                raise InvalidSolverStateError(f"LP error while strong branching on variable {j}")
            down_gain = max(outcome.down, lp_objective) - lp_objective
            up_gain = max(outcome.up, lp_objective) - lp_objective
            scores[j] = branch_score(down_gain, up_gain, self.settings)
        return scores


class Pseudocosts:
    """Pseudocost score of every LP branching candidate, NOT_APPLICABLE elsewhere."""

    def __init__(self, settings: Settings = DEFAULT_SETTINGS):
        self.settings = settings
        self._episode = EpisodeState("Pseudocosts")

    def reset(self, model: SolverState) -> None:
        self._episode.begin()

    def extract(self, model: SolverState, done: bool) -> np.ndarray:
        self._episode.require_ready()
        _require_lp(model, "Pseudocosts")
        scores = np.full(model.n_variables(), NOT_APPLICABLE)
        candidates = np.asarray(model.lp_branch_candidates(), dtype=np.int64)
        if candidates.size == 0:
            return scores

        values = np.asarray(model.lp_solution_values(), dtype=np.float64)[candidates]
        frac = feasible_fraction(values, model.feasibility_tolerance())
        pc_down, pc_up = (np.asarray(a, dtype=np.float64) for a in model.pseudocosts())
        for j, f in zip(candidates, frac):
            scores[j] = branch_score(pc_down[j] * f, pc_up[j] * (1.0 - f), self.settings)
        return scores
