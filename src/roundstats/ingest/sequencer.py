"""
Match identity assignment.

Every match gets an opaque id (an MD5 over map, date, a millisecond timestamp
and a random salt) and a match number. Ids only need to be unique; ordering
is carried by the match number, which is globally increasing across servers
and runs.
"""

import hashlib
import logging
import random
import threading
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime

logger = logging.getLogger(__name__)


def _utc_now() -> datetime:
    return datetime.now(UTC)


def generate_match_id(map_name: str, now: datetime | None = None) -> str:
    """Hash map, date, timestamp and salt into a 32-char hex match id."""
    now = now or _utc_now()
    timestamp_ms = int(now.timestamp() * 1000)
    salt = random.randint(1000, 9999)
    data = f"{map_name}_{now.date().isoformat()}_{timestamp_ms}_{salt}"
    return hashlib.md5(data.encode("utf-8")).hexdigest()


class MatchNumberAllocator:
    """
    Hands out strictly increasing match numbers.

    The storage maximum is queried once, on the first allocation, and the
    counter is kept in memory afterwards. One allocator is shared by all
    runs in a process so concurrent servers never receive the same number.
    """

    def __init__(self, load_max: Callable[[], int]):
        self._load_max = load_max
        self._current: int | None = None
        self._lock = threading.Lock()

    def next(self) -> int:
        with self._lock:
            if self._current is None:
                self._current = int(self._load_max() or 0)
                logger.info(f"Starting from match number: {self._current + 1}")
            self._current += 1
            return self._current

    @property
    def current(self) -> int | None:
        return self._current

    def reset(self) -> None:
        """Forget the cached maximum so the next allocation re-reads storage."""
        with self._lock:
            self._current = None


@dataclass(frozen=True)
class MatchIdentity:
    match_id: str
    match_number: int
    map_name: str


class MatchIdentitySequencer:
    """Starts new matches for one ingestion run."""

    def __init__(
        self,
        allocator: MatchNumberAllocator,
        clock: Callable[[], datetime] = _utc_now,
        id_factory: Callable[[str, datetime], str] = generate_match_id,
    ):
        self.allocator = allocator
        self.clock = clock
        self.id_factory = id_factory
        self.started: list[MatchIdentity] = []

    def start_match(self, map_name: str) -> MatchIdentity:
        match_number = self.allocator.next()
        identity = MatchIdentity(
            match_id=self.id_factory(map_name, self.clock()),
            match_number=match_number,
            map_name=map_name,
        )
        self.started.append(identity)
        logger.info(f"Match #{identity.match_number} on {map_name} - ID: {identity.match_id}")
        return identity
