from dataclasses import dataclass
from pathlib import Path
from typing import Tuple

from observation.common import DEFAULT_SETTINGS, Settings


@dataclass(frozen=True)
class CollectSettings:
    problems: Tuple[str, ...]  # ('IS','CA', 'SC', 'CFL')
    splits: Tuple[str, ...] = ("train", "val", "test")
    data_root: Path = Path("../data")
    # decision points recorded per instance
    max_samples: int = 50
    # strong branching ("strong") or pseudocost ("pseudocost") targets
    scores: str = "strong"
    pseudo_candidates: bool = False
    # reuse static features across the decision points of an instance
    cache_static: bool = True
    # SCIP
    seed: int = 0
    time_limit: float = 3600.0
    feasibility_tolerance: float = 1e-6
    disable_cuts: bool = True
    observation: Settings = DEFAULT_SETTINGS

    def __post_init__(self):
        if self.cache_static and not self.disable_cuts:
            raise ValueError("cache_static requires disable_cuts: cuts change the LP rows")


class ProblemClass:
    INDEPENDANT_SET = "IS"
    COMBINATORIAL_AUCTION = "CA"
    SET_COVER = "SC"
    CAPACITATED_FACILITY_LOCATION = "CFL"
