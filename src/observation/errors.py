class ObservationError(RuntimeError):
    """Base class for errors raised while extracting observations."""


class InvalidSolverStateError(ObservationError):
    """The solver has not produced the state an extractor needs (no LP, no focus node)."""


class ExtractorStateError(ObservationError):
    """`extract` was called before the extractor was reset for an episode."""


class SerializationError(ObservationError, ValueError):
    """A serialized observation does not describe a consistent value."""
