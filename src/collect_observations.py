#!/usr/bin/env python
# -*- coding: utf-8 -*-
"""
Collect branching observations on MILP instances with SCIP.
"""

from __future__ import annotations

from pathlib import Path
from typing import List, Optional

import configargparse
import pyscipopt as scp
import tqdm
from loguru import logger

from data.common import CollectSettings, ProblemClass
from data.utils import sample_dir, sample_path
from observation.base import ObservationDict
from observation.bipartite import NodeBipartite
from observation.common import Settings
from observation.errors import ObservationError
from observation.instance import Hutter2011
from observation.scores import Pseudocosts, StrongBranchingScores
from observation.structural import Khalil2016
from observation.utils import save_observation
from solver.scip import ScipState


class ObservationBranchrule(scp.Branchrule):
    """
    Records observations at every LP branching decision, then lets SCIP branch.

    The extractors are reset at the first decision point of the instance. The
    branching itself is left to the next branching rule (result DIDNOTRUN).
    """

    def __init__(self, settings: CollectSettings, directory: Path, instance: Path):
        self.settings = settings
        self.directory = directory
        self.instance = instance
        if settings.scores == "strong":
            scores = StrongBranchingScores(settings.pseudo_candidates, settings.observation)
        elif settings.scores == "pseudocost":
            scores = Pseudocosts(settings.observation)
        else:
            raise ValueError(f"Unknown scores: {settings.scores}")
        self.observations = ObservationDict(
            {
                "node_observation": NodeBipartite(settings.cache_static, settings.observation),
                "khalil": Khalil2016(settings.pseudo_candidates, settings.observation),
                "scores": scores,
            }
        )
        self.instance_features = Hutter2011()
        self.n_samples = 0
        self.started = False

    def branchexeclp(self, allowaddcons):
        if self.n_samples >= self.settings.max_samples:
            return {"result": scp.SCIP_RESULT.DIDNOTRUN}

        state = ScipState(self.model)
        if not self.started:
            self.observations.reset(state)
            self.instance_features.reset(state)
            self.started = True

        try:
            sample = self.observations.extract(state, False)
        except ObservationError as e:
            logger.warning("[{}] skipping decision point: {}", self.instance.name, e)
            return {"result": scp.SCIP_RESULT.DIDNOTRUN}
        sample["instance_features"] = self.instance_features.extract(state, False)
        if self.settings.pseudo_candidates:
            sample["candidates"] = state.pseudo_branch_candidates()
        else:
            sample["candidates"] = state.lp_branch_candidates()
        save_observation(sample, sample_path(self.directory, self.instance.name, self.n_samples))
        self.n_samples += 1
        return {"result": scp.SCIP_RESULT.DIDNOTRUN}


def collect_instance(settings: CollectSettings, lp_path: Path, directory: Path) -> int:
    model = scp.Model()
    model.hideOutput()
    model.readProblem(str(lp_path))
    model.setParam("randomization/randomseedshift", settings.seed)
    model.setParam("limits/time", settings.time_limit)
    model.setParam("numerics/feastol", settings.feasibility_tolerance)
    if settings.disable_cuts:
        # the cached static features assume a fixed set of LP rows
        model.setParam("separating/maxrounds", 0)
        model.setParam("separating/maxroundsroot", 0)

    branchrule = ObservationBranchrule(settings, directory, lp_path)
    model.includeBranchrule(
        branchrule,
        "observations",
        "record branching observations",
        priority=1000000,
        maxdepth=-1,
        maxbounddist=1,
    )
    model.optimize()
    return branchrule.n_samples


def collect_observations(settings: CollectSettings) -> None:
    for problem in settings.problems:
        logger.info("Collecting observations for problem type: {}", problem)
        for split in settings.splits:
            instance_dir = settings.data_root / problem / "instance" / split
            lp_paths: List[Path] = sorted(instance_dir.rglob("*.lp"))
            logger.info("[{}] {} .lp files to process", split, len(lp_paths))

            directory = sample_dir(settings.data_root, problem, split)
            n_samples = 0
            for lp_path in tqdm.tqdm(lp_paths, desc=f"Collecting observations ({split})"):
                n_samples += collect_instance(settings, lp_path, directory)

            logger.success("[{}] {} samples written to {}", split, n_samples, directory)


def parse_settings(argv: Optional[List[str]] = None) -> CollectSettings:
    parser = configargparse.ArgumentParser(
        allow_abbrev=False,
        description="Collect branching observations",
    )
    parser.add_argument(
        "--configs", is_config_file=True, required=False, default="config.yml"
    )

    # Data
    d = parser.add_argument_group("data")
    d.add_argument(
        "--problems",
        type=str,
        nargs="+",
        default=[ProblemClass.INDEPENDANT_SET, ProblemClass.COMBINATORIAL_AUCTION],
        help="Problem type",
    )
    d.add_argument("--splits", type=str, nargs="+", default=["train", "val", "test"])
    d.add_argument("--data_root", type=str, default="../data")
    d.add_argument(
        "--max_samples", type=int, default=50, help="Decision points recorded per instance"
    )

    # Observations
    o = parser.add_argument_group("observation")
    o.add_argument("--scores", type=str, choices=["strong", "pseudocost"], default="strong")
    o.add_argument(
        "--pseudo_candidates",
        action="store_true",
        help="Use pseudo branching candidates instead of LP candidates",
    )
    o.add_argument(
        "--no_cache", action="store_true", help="Recompute static features at every node"
    )
    o.add_argument(
        "--check_cache_structure",
        action="store_true",
        help="Rebuild cached features when the nonzero pattern changes",
    )
    o.add_argument("--score_function", type=str, choices=["p", "s"], default="p")

    # SCIP
    s = parser.add_argument_group("scip")
    s.add_argument("--seed", type=int, default=0)
    s.add_argument("--time_limit", type=float, default=3600.0)
    s.add_argument("--feasibility_tolerance", type=float, default=1e-6)
    s.add_argument(
        "--keep_cuts",
        action="store_true",
        help="Do not disable cutting planes (also disables the static feature cache)",
    )

    args, _ = parser.parse_known_args(argv)

    cache_static = not args.no_cache
    if args.keep_cuts and cache_static:
        logger.warning("Cutting planes change the LP rows, static features will not be cached")
        cache_static = False

    return CollectSettings(
        problems=tuple(args.problems),
        splits=tuple(args.splits),
        data_root=Path(args.data_root),
        max_samples=args.max_samples,
        scores=args.scores,
        pseudo_candidates=args.pseudo_candidates,
        cache_static=cache_static,
        seed=args.seed,
        time_limit=args.time_limit,
        feasibility_tolerance=args.feasibility_tolerance,
        disable_cuts=not args.keep_cuts,
        observation=Settings(
            score_function=args.score_function,
            check_cache_structure=args.check_cache_structure,
        ),
    )


def collect() -> None:
    collect_observations(parse_settings())


if __name__ == "__main__":
    collect()
