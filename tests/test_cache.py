"""Tests for the leaderboard query cache."""

from roundstats.infra.cache import QueryCache


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


class TestQueryCache:
    def test_set_and_get(self):
        cache = QueryCache()
        cache.set(("leaderboard", 1), {"rows": []})
        assert cache.get(("leaderboard", 1)) == {"rows": []}
        assert cache.get(("leaderboard", 2)) is None

    def test_entries_expire(self):
        clock = FakeClock()
        cache = QueryCache(ttl_seconds=60, clock=clock)
        cache.set("k", 1)

        clock.now = 59
        assert cache.get("k") == 1
        clock.now = 61
        assert cache.get("k") is None

    def test_zero_ttl_disables(self):
        cache = QueryCache(ttl_seconds=0)
        cache.set("k", 1)
        assert cache.get("k") is None

    def test_oldest_evicted(self):
        clock = FakeClock()
        cache = QueryCache(maxsize=2, clock=clock)
        cache.set("a", 1)
        clock.now = 1
        cache.set("b", 2)
        clock.now = 2
        cache.set("c", 3)

        assert cache.get("a") is None
        assert cache.get("b") == 2
        assert cache.get("c") == 3

    def test_get_or_compute(self):
        cache = QueryCache()
        calls = []

        def compute():
            calls.append(1)
            return "value"

        assert cache.get_or_compute("k", compute) == "value"
        assert cache.get_or_compute("k", compute) == "value"
        assert len(calls) == 1

    def test_clear_and_stats(self):
        cache = QueryCache()
        cache.set("a", 1)
        cache.get("a")
        cache.get("missing")

        stats = cache.stats()
        assert stats["total_entries"] == 1
        assert stats["valid_entries"] == 1
        assert stats["hits"] == 1
        assert stats["misses"] == 1

        cache.clear()
        assert cache.stats()["total_entries"] == 0
