"""
Round Statistics Log Parser

Scans dedicated-server log lines and extracts per-round player stat rows
from the structured payload the server prints at the end of each round:

    Loading map "de_dust2"
    JSON_BEGIN{
    "round_number" : "3",
    "map" : "de_dust2",
    "player_0" : "123456,2,800,5,2,1,540,40,2.5,90,1",
    }JSON_END

Player rows are comma-separated positional fields:
accountid, team, money, kills, deaths, assists, dmg, hsp, kdr, adr, mvp, ...

Match boundaries:
- Round 0 is warm-up and ignored.
- Round 1 after any higher round starts a new match.
- Player rows before a match and round are established are discarded.

The parser is a two-state machine (outside / inside the structured block)
so boundary handling can be tested without storage.
"""

from __future__ import annotations

import logging
import re
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum

from roundstats.core.errors import PlayerRowError, RunTimeoutError
from roundstats.core.models import RoundKey, RoundRecord, Team
from roundstats.ingest.sequencer import MatchIdentity, MatchIdentitySequencer

logger = logging.getLogger(__name__)


# ============================================================================
# Log Markers
# ============================================================================

MAP_LOAD_PATTERN = re.compile(r'Loading map "([^"]+)"')
BLOCK_START_MARKER = "JSON_BEGIN{"
BLOCK_END_MARKER = "}JSON_END"
ROUND_PATTERN = re.compile(r'"round_number"\s*:\s*"(\d+)"')
MAP_KEY_PATTERN = re.compile(r'"map"\s*:\s*"([^"]+)"')
PLAYER_PATTERN = re.compile(r'"player_\d+"\s*:\s*"(.+)"')

UNKNOWN_MAP = "unknown"
WARMUP_ROUND = 0

# Positional fields in a player row
FIELD_ACCOUNT_ID = 0
FIELD_TEAM = 1
FIELD_KILLS = 3
FIELD_DEATHS = 4
FIELD_ASSISTS = 5
FIELD_DAMAGE = 6
FIELD_KDR = 8
FIELD_MVP = 10
MIN_PLAYER_FIELDS = FIELD_MVP + 1

# How often (in lines) the run deadline is checked
DEADLINE_CHECK_INTERVAL = 500


class ParserState(Enum):
    OUTSIDE_STRUCTURED_BLOCK = "outside_structured_block"
    INSIDE_STRUCTURED_BLOCK = "inside_structured_block"


@dataclass(frozen=True)
class PlayerRow:
    """The consumed fields of one player stat row."""

    account_id: int
    team: Team
    kills: int
    deaths: int
    assists: int
    damage: float
    kdr: float
    mvp: int


@dataclass
class OpenMatch:
    """The match a parse starts inside of, when continuing a previous run."""

    identity: MatchIdentity
    round_number: int


@dataclass
class ParseResult:
    records: list[RoundRecord] = field(default_factory=list)
    map_name: str = UNKNOWN_MAP
    lines_scanned: int = 0
    duplicates_in_run: int = 0
    malformed_rows: int = 0
    ignored_rows: int = 0
    unterminated_block: bool = False
    matches_started: list[MatchIdentity] = field(default_factory=list)
    open_match: OpenMatch | None = None


def parse_account_id(raw: str) -> int:
    try:
        return int(raw.strip())
    except ValueError as e:
        raise PlayerRowError(f"non-numeric account id {raw!r}") from e


def parse_player_row(payload: str) -> PlayerRow:
    """
    Split a player row payload into its consumed fields.

    Raises:
        PlayerRowError: too few fields, a non-numeric field, or an unknown team
    """
    fields = [f.strip() for f in payload.split(",")]
    if len(fields) < MIN_PLAYER_FIELDS:
        raise PlayerRowError(f"expected at least {MIN_PLAYER_FIELDS} fields, got {len(fields)}")

    try:
        team_code = int(fields[FIELD_TEAM])
        kills = int(fields[FIELD_KILLS])
        deaths = int(fields[FIELD_DEATHS])
        assists = int(fields[FIELD_ASSISTS])
        damage = float(fields[FIELD_DAMAGE])
        kdr = float(fields[FIELD_KDR])
        mvp = int(fields[FIELD_MVP])
    except ValueError as e:
        raise PlayerRowError(f"non-numeric stat field: {e}") from e

    try:
        team = Team(team_code)
    except ValueError as e:
        raise PlayerRowError(f"unknown team code {team_code}") from e

    return PlayerRow(
        account_id=parse_account_id(fields[FIELD_ACCOUNT_ID]),
        team=team,
        kills=kills,
        deaths=deaths,
        assists=assists,
        damage=damage,
        kdr=kdr,
        mvp=mvp,
    )


class LogParser:
    """
    Stateful scan over the new lines of one server log.

    One parser instance is used for exactly one run; the in-run dedupe set
    and match state are owned by the instance and discarded with it.
    """

    def __init__(
        self,
        server_id: int,
        sequencer: MatchIdentitySequencer,
        clock: Callable[[], datetime] | None = None,
    ):
        self.server_id = server_id
        self.sequencer = sequencer
        self.clock = clock or (lambda: datetime.now(UTC))

        self.state = ParserState.OUTSIDE_STRUCTURED_BLOCK
        self.map_name = UNKNOWN_MAP
        self.current_match: MatchIdentity | None = None
        self.current_round = 0
        self._seen: set[RoundKey] = set()
        self._result = ParseResult()
        self._match_date = self.clock().date()

    def parse(
        self,
        lines: list[str],
        resume: OpenMatch | None = None,
        deadline: float | None = None,
    ) -> ParseResult:
        """
        Scan lines and return the round records they contain.

        Args:
            lines: Non-blank log lines after the checkpoint
            resume: Match to continue, if the previous run ended mid-match
            deadline: time.monotonic() value after which the scan aborts

        Raises:
            RunTimeoutError: the deadline passed mid-scan
        """
        if resume is not None:
            self.current_match = resume.identity
            self.current_round = resume.round_number
            self.map_name = resume.identity.map_name or UNKNOWN_MAP
            logger.debug(
                f"Server {self.server_id}: continuing match #{resume.identity.match_number} "
                f"from round {resume.round_number}"
            )

        for index, line in enumerate(lines):
            if deadline is not None and index % DEADLINE_CHECK_INTERVAL == 0:
                if time.monotonic() > deadline:
                    raise RunTimeoutError(
                        f"Parsing server {self.server_id} log exceeded deadline at line {index}"
                    )
            self.feed(line)
            self._result.lines_scanned += 1

        if self.state is ParserState.INSIDE_STRUCTURED_BLOCK:
            # Treated as closed at end of input
            logger.warning(
                f"Server {self.server_id}: structured block not terminated before end of input"
            )
            self._result.unterminated_block = True
            self.state = ParserState.OUTSIDE_STRUCTURED_BLOCK

        self._result.map_name = self.map_name
        self._result.matches_started = list(self.sequencer.started)
        if self.current_match is not None:
            self._result.open_match = OpenMatch(self.current_match, self.current_round)
        return self._result

    def feed(self, line: str) -> None:
        """Advance the state machine by one line."""
        if "Loading map" in line:
            map_match = MAP_LOAD_PATTERN.search(line)
            if map_match:
                self.map_name = map_match.group(1)
                logger.debug(f"Map detected: {self.map_name}")

        if BLOCK_START_MARKER in line:
            self.state = ParserState.INSIDE_STRUCTURED_BLOCK
            return

        if BLOCK_END_MARKER in line:
            self.state = ParserState.OUTSIDE_STRUCTURED_BLOCK
            return

        if self.state is ParserState.OUTSIDE_STRUCTURED_BLOCK:
            return

        if '"round_number"' in line:
            round_match = ROUND_PATTERN.search(line)
            if round_match:
                self._on_round(int(round_match.group(1)))
            return

        if '"map"' in line:
            map_match = MAP_KEY_PATTERN.search(line)
            if map_match:
                self.map_name = map_match.group(1)
            return

        if '"player_' in line:
            player_match = PLAYER_PATTERN.search(line)
            if player_match:
                self._on_player(player_match.group(1))

    # =========================================================================
    # Transitions
    # =========================================================================

    def _on_round(self, round_number: int) -> None:
        if round_number == WARMUP_ROUND:
            logger.debug(f"Server {self.server_id}: skipping warm-up round")
            return

        if self.current_match is not None and round_number == self.current_round:
            return

        if round_number == 1 and self.current_round > 1:
            logger.info(
                f"Server {self.server_id}: new match detected "
                f"(round reset from {self.current_round} to 1)"
            )
            self.current_match = None
            self._seen.clear()
        elif self.current_match is not None and round_number < self.current_round:
            logger.warning(
                f"Server {self.server_id}: round number went from {self.current_round} to "
                f"{round_number} without a reset to 1, keeping match "
                f"#{self.current_match.match_number}"
            )
        elif self.current_match is None and round_number > 1:
            logger.warning(
                f"Server {self.server_id}: first round seen is {round_number}, "
                f"starting a match that did not begin at round 1"
            )

        self.current_round = round_number

        if self.current_match is None:
            self.current_match = self.sequencer.start_match(self.map_name)

    def _on_player(self, payload: str) -> None:
        account_field = payload.split(",", 1)[0].strip()
        if account_field == "" or account_field == "0":
            self._result.ignored_rows += 1
            return

        try:
            row = parse_player_row(payload)
        except PlayerRowError as e:
            logger.warning(f"Server {self.server_id}: dropping malformed player row ({e}): {payload!r}")
            self._result.malformed_rows += 1
            return

        if row.account_id <= 0:
            logger.debug(f"Server {self.server_id}: ignoring invalid account id {row.account_id}")
            self._result.ignored_rows += 1
            return

        if self.current_match is None or self.current_round <= 0:
            logger.debug(
                f"Server {self.server_id}: player row for {row.account_id} before any round, ignored"
            )
            self._result.ignored_rows += 1
            return

        key = (row.account_id, self.current_match.match_id, self.current_round)
        if key in self._seen:
            logger.debug(
                f"Already emitted in this run: account={row.account_id}, round={self.current_round}"
            )
            self._result.duplicates_in_run += 1
            return
        self._seen.add(key)

        self._result.records.append(
            RoundRecord(
                account_id=row.account_id,
                team=row.team,
                kills=row.kills,
                deaths=row.deaths,
                assists=row.assists,
                damage=row.damage,
                kdr=row.kdr,
                mvp=row.mvp,
                map_name=self.map_name,
                round_number=self.current_round,
                match_id=self.current_match.match_id,
                match_number=self.current_match.match_number,
                match_date=self._match_date,
                match_datetime=self.clock(),
                server_id=self.server_id,
            )
        )
