from typing import Any, Dict, Mapping, Protocol

from observation.errors import ExtractorStateError
from solver.base import SolverState


class ObservationFunction(Protocol):
    """
    Contract shared by every extractor.

    `reset` is called once per episode, before the first decision point, and is
    the only way into the ready state. `extract` is then called at every
    decision point; `done` tells whether it is the last one and does not change
    what is extracted.
    """

    def reset(self, model: SolverState) -> None: ...

    def extract(self, model: SolverState, done: bool) -> Any: ...


class EpisodeState:
    """Tracks whether an extractor was reset for the current episode."""

    def __init__(self, owner: str):
        self.owner = owner
        self.ready = False

    def begin(self) -> None:
        self.ready = True

    def require_ready(self) -> None:
        if not self.ready:
            raise ExtractorStateError(
                f"{self.owner}.extract called before {self.owner}.reset"
            )


class Nothing:
    """Extracts no observation."""

    def __init__(self):
        self._episode = EpisodeState(type(self).__name__)

    def reset(self, model: SolverState) -> None:
        self._episode.begin()

    def extract(self, model: SolverState, done: bool) -> None:
        self._episode.require_ready()
        return None


class ObservationDict:
    """Runs several extractors on the same model and returns their observations by name."""

    def __init__(self, functions: Mapping[str, ObservationFunction]):
        self.functions: Dict[str, ObservationFunction] = dict(functions)

    def reset(self, model: SolverState) -> None:
        for function in self.functions.values():
            function.reset(model)

    def extract(self, model: SolverState, done: bool) -> Dict[str, Any]:
        return {
            name: function.extract(model, done)
            for name, function in self.functions.items()
        }
