"""
Unit tests for the episode scoped static feature cache.

Run with: pytest src/tests/test_cache.py -v
"""

import sys
from pathlib import Path

# Add src to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from observation.cache import StaticFeatureCache, structure_fingerprint
from observation.sparse import SparseCOOMatrix


def matrix(values=(1.0, 2.0), cols=(0, 1)) -> SparseCOOMatrix:
    return SparseCOOMatrix(list(values), [[0, 0], list(cols)], (1, 3))


class TestStaticFeatureCache:
    """Computation, reuse and invalidation"""

    def test_computes_once(self):
        cache = StaticFeatureCache("test")
        calls = []

        def compute():
            calls.append(1)
            return len(calls)

        assert cache.get_or_compute("a", compute) == 1
        assert cache.get_or_compute("a", compute) == 1
        assert len(calls) == 1
        assert "a" in cache
        assert cache.is_populated

    def test_invalidate_empties(self):
        cache = StaticFeatureCache()
        cache.get_or_compute("a", lambda: 1)
        cache.invalidate()
        assert not cache.is_populated
        assert "a" not in cache
        assert cache.get_or_compute("a", lambda: 2) == 2


class TestStructureTracking:
    """Best effort detection of a changed nonzero pattern"""

    def test_fingerprint_ignores_coefficients(self):
        assert structure_fingerprint(matrix((1.0, 2.0))) == structure_fingerprint(
            matrix((5.0, -1.0))
        )

    def test_fingerprint_sees_pattern(self):
        assert structure_fingerprint(matrix(cols=(0, 1))) != structure_fingerprint(
            matrix(cols=(0, 2))
        )

    def test_same_structure_keeps_entries(self):
        cache = StaticFeatureCache()
        cache.track_structure(matrix())
        cache.get_or_compute("a", lambda: 1)
        cache.track_structure(matrix((3.0, 4.0)))
        assert cache.get_or_compute("a", lambda: 2) == 1

    def test_changed_structure_invalidates(self):
        cache = StaticFeatureCache()
        cache.track_structure(matrix())
        cache.get_or_compute("a", lambda: 1)
        cache.track_structure(matrix(cols=(0, 2)))
        assert "a" not in cache
        assert cache.matches_structure(matrix(cols=(0, 2)))
