import hashlib
from typing import Any, Callable, Dict, Optional

import numpy as np
from loguru import logger

from observation.sparse import SparseCOOMatrix


def structure_fingerprint(matrix: SparseCOOMatrix) -> str:
    """Hash of the shape and nonzero pattern of a matrix (coefficients are ignored)."""
    digest = hashlib.sha1()
    digest.update(np.asarray(matrix.shape, dtype=np.int64).tobytes())
    digest.update(np.ascontiguousarray(matrix.indices, dtype=np.int64).tobytes())
    return digest.hexdigest()


class StaticFeatureCache:
    """
    Episode scoped store for features that do not change between decision points.

    Owned by a single extractor. `invalidate` empties it; the owner calls it on
    every reset. The cache cannot tell on its own that the problem structure
    changed, the optional fingerprint is a best-effort check on the nonzero
    pattern only.
    """

    def __init__(self, name: str = "static"):
        self.name = name
        self._entries: Dict[str, Any] = {}
        self._fingerprint: Optional[str] = None

    def invalidate(self) -> None:
        self._entries.clear()
        self._fingerprint = None

    @property
    def is_populated(self) -> bool:
        return bool(self._entries)

    def __contains__(self, key: str) -> bool:
        return key in self._entries

    def get_or_compute(self, key: str, compute: Callable[[], Any]) -> Any:
        if key not in self._entries:
            logger.debug("[{}] computing cached entry '{}'", self.name, key)
            self._entries[key] = compute()
        return self._entries[key]

    def bind_structure(self, matrix: SparseCOOMatrix) -> None:
        self._fingerprint = structure_fingerprint(matrix)

    def matches_structure(self, matrix: SparseCOOMatrix) -> bool:
        if self._fingerprint is None:
            return True
        return self._fingerprint == structure_fingerprint(matrix)

    def track_structure(self, matrix: SparseCOOMatrix) -> None:
        """Invalidate the cache if `matrix` no longer has the fingerprinted pattern, then fingerprint it."""
        if self.is_populated and not self.matches_structure(matrix):
            logger.warning(
                "[{}] nonzero pattern changed within the episode, rebuilding cache", self.name
            )
            self.invalidate()
        if not self.is_populated:
            self.bind_structure(matrix)
