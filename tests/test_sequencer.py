"""Tests for match id and match number assignment."""

import threading
from datetime import UTC, datetime

from roundstats.ingest.sequencer import (
    MatchIdentitySequencer,
    MatchNumberAllocator,
    generate_match_id,
)


class TestGenerateMatchId:
    def test_format(self):
        match_id = generate_match_id("de_dust2")
        assert len(match_id) == 32
        int(match_id, 16)

    def test_ids_differ(self):
        now = datetime(2024, 5, 1, 12, 0, tzinfo=UTC)
        ids = {generate_match_id("de_dust2", now) for _ in range(20)}
        # Random salt makes collisions at the same instant very unlikely
        assert len(ids) > 1


class TestMatchNumberAllocator:
    def test_seeds_from_storage_once(self):
        calls = []

        def load_max():
            calls.append(1)
            return 41

        allocator = MatchNumberAllocator(load_max)
        assert allocator.current is None
        assert allocator.next() == 42
        assert allocator.next() == 43
        assert allocator.current == 43
        assert len(calls) == 1

    def test_empty_storage_starts_at_one(self):
        allocator = MatchNumberAllocator(lambda: 0)
        assert allocator.next() == 1

    def test_reset_rereads_storage(self):
        maxima = iter([5, 10])
        allocator = MatchNumberAllocator(lambda: next(maxima))
        assert allocator.next() == 6
        allocator.reset()
        assert allocator.next() == 11

    def test_concurrent_allocation_is_unique(self):
        allocator = MatchNumberAllocator(lambda: 0)
        results = []
        lock = threading.Lock()

        def worker():
            for _ in range(50):
                number = allocator.next()
                with lock:
                    results.append(number)

        threads = [threading.Thread(target=worker) for _ in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert sorted(results) == list(range(1, 201))


class TestMatchIdentitySequencer:
    def test_start_match(self):
        sequencer = MatchIdentitySequencer(
            MatchNumberAllocator(lambda: 7),
            id_factory=lambda map_name, now: f"{map_name:0>32}"[-32:],
        )
        identity = sequencer.start_match("de_inferno")

        assert identity.match_number == 8
        assert identity.map_name == "de_inferno"
        assert identity.match_id.endswith("de_inferno")
        assert sequencer.started == [identity]

    def test_numbers_increase(self):
        sequencer = MatchIdentitySequencer(MatchNumberAllocator(lambda: 0))
        first = sequencer.start_match("de_mirage")
        second = sequencer.start_match("de_mirage")
        assert second.match_number == first.match_number + 1
        assert first.match_id != second.match_id
