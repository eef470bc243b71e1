"""
RoundStats Round Record Database.

Durable storage for per-round player statistics and the platform user
table used for identity joins.

Uses SQLAlchemy ORM; SQLite by default, any SQLAlchemy URL works.

Round records are write-once. The (account_id, match_id, round_number)
unique constraint is the persistent half of deduplication: a violating
insert is reported as SKIPPED_DUPLICATE, never overwritten.
"""

import logging
import time
from collections.abc import Iterable
from datetime import UTC, date, datetime
from pathlib import Path
from typing import Any

from sqlalchemy import (
    BigInteger,
    Boolean,
    Column,
    Date,
    DateTime,
    Float,
    Index,
    Integer,
    String,
    UniqueConstraint,
    and_,
    create_engine,
    event,
    func,
)
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

from roundstats.core.config import get_config
from roundstats.core.errors import RunTimeoutError, StorageError
from roundstats.core.models import InsertOutcome, RoundRecord, Team


def _utc_now() -> datetime:
    """Return current UTC time (timezone-aware)."""
    return datetime.now(UTC)


logger = logging.getLogger(__name__)

Base = declarative_base()

UNIQUE_ROUND_CONSTRAINT = "uq_round_player_match_round"


# =============================================================================
# Database Models
# =============================================================================


class RoundRecordRow(Base):
    """One player's cumulative stats at the end of one round."""

    __tablename__ = "round_records"

    id = Column(Integer, primary_key=True, autoincrement=True)
    account_id = Column(BigInteger, nullable=False, index=True)
    team = Column(Integer, nullable=False)  # 2 = T, 3 = CT

    # Match-to-date totals
    kills = Column(Integer, default=0)
    deaths = Column(Integer, default=0)
    assists = Column(Integer, default=0)
    damage = Column(Float, default=0.0)
    kdr = Column(Float, default=0.0)
    mvp = Column(Integer, default=0)

    map_name = Column(String(64), nullable=False, index=True)
    round_number = Column(Integer, nullable=False)
    match_id = Column(String(32), nullable=False, index=True)
    match_number = Column(Integer, nullable=False, index=True)
    match_date = Column(Date, nullable=False, index=True)
    match_datetime = Column(DateTime, default=_utc_now)
    server_id = Column(Integer, nullable=False, index=True)

    __table_args__ = (
        UniqueConstraint("account_id", "match_id", "round_number", name=UNIQUE_ROUND_CONSTRAINT),
        Index("idx_round_match_round", "match_id", "round_number"),
        Index("idx_round_server_number", "server_id", "match_number"),
    )

    @classmethod
    def from_record(cls, record: RoundRecord) -> "RoundRecordRow":
        return cls(
            account_id=record.account_id,
            team=int(record.team),
            kills=record.kills,
            deaths=record.deaths,
            assists=record.assists,
            damage=record.damage,
            kdr=record.kdr,
            mvp=record.mvp,
            map_name=record.map_name,
            round_number=record.round_number,
            match_id=record.match_id,
            match_number=record.match_number,
            match_date=record.match_date,
            match_datetime=record.match_datetime,
            server_id=record.server_id,
        )

    def to_record(self) -> RoundRecord:
        return RoundRecord(
            account_id=self.account_id,
            team=Team(self.team),
            kills=self.kills or 0,
            deaths=self.deaths or 0,
            assists=self.assists or 0,
            damage=self.damage or 0.0,
            kdr=self.kdr or 0.0,
            mvp=self.mvp or 0,
            map_name=self.map_name,
            round_number=self.round_number,
            match_id=self.match_id,
            match_number=self.match_number,
            match_date=self.match_date,
            match_datetime=self.match_datetime,
            server_id=self.server_id,
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for API responses."""
        return {
            "id": self.id,
            **self.to_record().to_dict(),
        }


class PlatformUser(Base):
    """
    A platform account that may have linked an external game profile.

    external_id holds whatever the linking flow stored: a steam64 id, a
    legacy STEAM_X:Y:Z id or a raw account id.
    """

    __tablename__ = "platform_users"

    id = Column(Integer, primary_key=True, autoincrement=True)
    username = Column(String(100), nullable=False)
    external_id = Column(String(32), index=True)
    display_name = Column(String(100))
    avatar_url = Column(String(500), default="")
    is_connected = Column(Boolean, default=False, index=True)
    created_at = Column(DateTime, default=_utc_now)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "username": self.username,
            "external_id": self.external_id,
            "display_name": self.display_name,
            "avatar_url": self.avatar_url or "",
            "is_connected": bool(self.is_connected),
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }


# =============================================================================
# Helpers
# =============================================================================


def is_unique_violation(error: IntegrityError) -> bool:
    """True when an IntegrityError comes from a uniqueness constraint."""
    message = str(error.orig).lower()
    return "unique" in message or "duplicate" in message


def _enable_sqlite_savepoints(engine) -> None:
    # pysqlite issues its own BEGIN lazily, which breaks SAVEPOINT; take over
    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql("BEGIN")


def _record_filters(
    server_id: int | None = None,
    start_date: date | None = None,
    end_date: date | None = None,
    account_ids: Iterable[int] | None = None,
    match_id: str | None = None,
) -> list:
    filters = []
    if server_id is not None:
        filters.append(RoundRecordRow.server_id == server_id)
    if start_date is not None:
        filters.append(RoundRecordRow.match_date >= start_date)
    if end_date is not None:
        filters.append(RoundRecordRow.match_date <= end_date)
    if account_ids is not None:
        filters.append(RoundRecordRow.account_id.in_(list(account_ids)))
    if match_id is not None:
        filters.append(RoundRecordRow.match_id == match_id)
    return filters


# =============================================================================
# Database Manager
# =============================================================================


class DatabaseManager:
    """Manages database connections and operations."""

    def __init__(self, database_url: str | None = None, echo: bool = False):
        """Initialize database connection."""
        if database_url is None:
            database_url = get_config().storage.database_url

        self.database_url = database_url
        self.is_sqlite = database_url.startswith("sqlite")

        engine_kwargs: dict[str, Any] = {"echo": echo}
        if self.is_sqlite:
            engine_kwargs["connect_args"] = {"check_same_thread": False}
            if database_url in ("sqlite://", "sqlite:///:memory:"):
                # One shared connection, or every session would see a new empty DB
                engine_kwargs["poolclass"] = StaticPool
            else:
                db_path = database_url.split("sqlite:///", 1)[-1]
                if db_path:
                    Path(db_path).expanduser().parent.mkdir(parents=True, exist_ok=True)

        self.engine = create_engine(database_url, **engine_kwargs)
        if self.is_sqlite:
            _enable_sqlite_savepoints(self.engine)

        self.SessionLocal = sessionmaker(bind=self.engine)

        Base.metadata.create_all(self.engine)

        logger.info(f"Database initialized at: {self.engine.url.render_as_string(hide_password=True)}")

    def get_session(self) -> Session:
        """Get a database session."""
        return self.SessionLocal()

    def dispose(self) -> None:
        self.engine.dispose()

    # =========================================================================
    # Round Record Writes
    # =========================================================================

    def insert(self, record: RoundRecord) -> InsertOutcome:
        """Insert one record in its own transaction."""
        inserted, _skipped = self.insert_many([record])
        return InsertOutcome.INSERTED if inserted else InsertOutcome.SKIPPED_DUPLICATE

    def insert_many(
        self, records: list[RoundRecord], deadline: float | None = None
    ) -> tuple[int, int]:
        """
        Insert records atomically, skipping uniqueness violations.

        Each record gets its own savepoint so a duplicate only discards that
        row. Any other failure rolls back every insert of the batch.

        Args:
            records: Records to insert, in order
            deadline: time.monotonic() value after which the batch is abandoned

        Returns:
            (inserted, skipped_duplicate)

        Raises:
            StorageError: non-uniqueness database failure
            RunTimeoutError: deadline passed before the batch committed
        """
        inserted = 0
        skipped = 0
        session = self.get_session()
        try:
            for record in records:
                if deadline is not None and time.monotonic() > deadline:
                    raise RunTimeoutError(
                        f"Insert batch exceeded deadline after {inserted + skipped} records"
                    )
                try:
                    with session.begin_nested():
                        session.add(RoundRecordRow.from_record(record))
                except IntegrityError as e:
                    if not is_unique_violation(e):
                        raise
                    logger.debug(
                        f"Skipping duplicate: account={record.account_id}, "
                        f"match={record.match_id}, round={record.round_number}"
                    )
                    skipped += 1
                    continue
                inserted += 1

            session.commit()
            return inserted, skipped

        except SQLAlchemyError as e:
            session.rollback()
            logger.error(f"Failed to insert round records: {e}")
            raise StorageError(f"Failed to insert round records: {e}", original=e) from e
        except RunTimeoutError:
            session.rollback()
            raise
        finally:
            session.close()

    # =========================================================================
    # Match Identity Queries
    # =========================================================================

    def get_max_match_number(self) -> int:
        session = self.get_session()
        try:
            return session.query(func.max(RoundRecordRow.match_number)).scalar() or 0
        except SQLAlchemyError as e:
            raise StorageError(f"Failed to read max match number: {e}", original=e) from e
        finally:
            session.close()

    def get_latest_match(self, server_id: int) -> dict | None:
        """Most recent stored match for a server, with its highest round."""
        session = self.get_session()
        try:
            latest = (
                session.query(RoundRecordRow)
                .filter(RoundRecordRow.server_id == server_id)
                .order_by(RoundRecordRow.match_number.desc(), RoundRecordRow.round_number.desc())
                .first()
            )
            if latest is None:
                return None
            return {
                "match_id": latest.match_id,
                "match_number": latest.match_number,
                "map_name": latest.map_name,
                "round_number": latest.round_number,
            }
        except SQLAlchemyError as e:
            raise StorageError(f"Failed to read latest match: {e}", original=e) from e
        finally:
            session.close()

    # =========================================================================
    # Round Record Reads
    # =========================================================================

    def fetch_records(
        self,
        server_id: int | None = None,
        start_date: date | None = None,
        end_date: date | None = None,
        account_ids: Iterable[int] | None = None,
        match_id: str | None = None,
    ) -> list[RoundRecord]:
        """Fetch round records matching all given filters."""
        session = self.get_session()
        try:
            query = session.query(RoundRecordRow).filter(
                *_record_filters(server_id, start_date, end_date, account_ids, match_id)
            )
            rows = query.order_by(
                RoundRecordRow.match_number, RoundRecordRow.round_number, RoundRecordRow.id
            ).all()
            return [row.to_record() for row in rows]
        finally:
            session.close()

    def count_records(self, server_id: int | None = None) -> int:
        session = self.get_session()
        try:
            query = session.query(func.count(RoundRecordRow.id))
            if server_id is not None:
                query = query.filter(RoundRecordRow.server_id == server_id)
            return query.scalar() or 0
        finally:
            session.close()

    def _final_round_subquery(self, session: Session, filters: list):
        return (
            session.query(
                RoundRecordRow.account_id.label("account_id"),
                RoundRecordRow.match_id.label("match_id"),
                func.max(RoundRecordRow.round_number).label("round_number"),
            )
            .filter(*filters)
            .group_by(RoundRecordRow.account_id, RoundRecordRow.match_id)
            .subquery()
        )

    def _final_round_join(self, final_round):
        return and_(
            RoundRecordRow.account_id == final_round.c.account_id,
            RoundRecordRow.match_id == final_round.c.match_id,
            RoundRecordRow.round_number == final_round.c.round_number,
        )

    def get_match_summary(self, match_id: str) -> dict | None:
        """Map, numbering and final-round totals for one match."""
        session = self.get_session()
        try:
            first = (
                session.query(RoundRecordRow)
                .filter(RoundRecordRow.match_id == match_id)
                .order_by(RoundRecordRow.round_number, RoundRecordRow.id)
                .first()
            )
            if first is None:
                return None

            total_rounds, player_count = (
                session.query(
                    func.max(RoundRecordRow.round_number),
                    func.count(func.distinct(RoundRecordRow.account_id)),
                )
                .filter(RoundRecordRow.match_id == match_id)
                .one()
            )

            final_round = self._final_round_subquery(session, [RoundRecordRow.match_id == match_id])
            kills, deaths, damage = (
                session.query(
                    func.sum(RoundRecordRow.kills),
                    func.sum(RoundRecordRow.deaths),
                    func.sum(RoundRecordRow.damage),
                )
                .select_from(RoundRecordRow)
                .join(final_round, self._final_round_join(final_round))
                .one()
            )

            return {
                "match_id": match_id,
                "map": first.map_name,
                "match_number": first.match_number,
                "match_date": first.match_date.isoformat() if first.match_date else None,
                "server_id": first.server_id,
                "total_rounds": total_rounds or 0,
                "total_kills": kills or 0,
                "total_deaths": deaths or 0,
                "total_damage": damage or 0,
                "player_count": player_count or 0,
            }
        finally:
            session.close()

    def get_global_stats(self) -> dict:
        """Get global statistics across all ingested rounds."""
        session = self.get_session()
        try:
            total_matches, unique_players, maps_played, last_match = session.query(
                func.count(func.distinct(RoundRecordRow.match_id)),
                func.count(func.distinct(RoundRecordRow.account_id)),
                func.count(func.distinct(RoundRecordRow.map_name)),
                func.max(RoundRecordRow.match_datetime),
            ).one()

            rounds_per_match = (
                session.query(func.max(RoundRecordRow.round_number).label("rounds"))
                .group_by(RoundRecordRow.match_id)
                .subquery()
            )
            total_rounds = session.query(func.sum(rounds_per_match.c.rounds)).scalar()

            final_round = self._final_round_subquery(session, [])
            total_kills, total_deaths = (
                session.query(func.sum(RoundRecordRow.kills), func.sum(RoundRecordRow.deaths))
                .select_from(RoundRecordRow)
                .join(final_round, self._final_round_join(final_round))
                .one()
            )

            return {
                "total_matches": total_matches or 0,
                "total_rounds": total_rounds or 0,
                "total_kills": total_kills or 0,
                "total_deaths": total_deaths or 0,
                "unique_players": unique_players or 0,
                "maps_played": maps_played or 0,
                "last_match": last_match.isoformat() if last_match else None,
            }
        finally:
            session.close()

    # =========================================================================
    # Platform Users
    # =========================================================================

    def add_platform_user(
        self,
        username: str,
        external_id: str | None = None,
        display_name: str | None = None,
        avatar_url: str = "",
        is_connected: bool = True,
    ) -> dict:
        """Create a platform user (seeding and tests; linking itself happens elsewhere)."""
        session = self.get_session()
        try:
            user = PlatformUser(
                username=username,
                external_id=external_id,
                display_name=display_name,
                avatar_url=avatar_url,
                is_connected=is_connected,
            )
            session.add(user)
            session.commit()
            return user.to_dict()
        except SQLAlchemyError as e:
            session.rollback()
            logger.error(f"Failed to add platform user: {e}")
            raise StorageError(f"Failed to add platform user: {e}", original=e) from e
        finally:
            session.close()

    def get_platform_user(self, user_id: int) -> dict | None:
        session = self.get_session()
        try:
            user = session.get(PlatformUser, user_id)
            return user.to_dict() if user else None
        finally:
            session.close()

    def get_linked_platform_users(self) -> list[dict]:
        """Users with a connected, non-empty external id."""
        session = self.get_session()
        try:
            users = (
                session.query(PlatformUser)
                .filter(
                    PlatformUser.is_connected.is_(True),
                    PlatformUser.external_id.isnot(None),
                    PlatformUser.external_id != "",
                )
                .order_by(PlatformUser.id)
                .all()
            )
            return [u.to_dict() for u in users]
        finally:
            session.close()

    def count_linked_platform_users(self) -> int:
        session = self.get_session()
        try:
            return (
                session.query(func.count(PlatformUser.id))
                .filter(
                    PlatformUser.is_connected.is_(True),
                    PlatformUser.external_id.isnot(None),
                    PlatformUser.external_id != "",
                )
                .scalar()
                or 0
            )
        finally:
            session.close()


# Global database instance (lazy initialization)
_db_manager: DatabaseManager | None = None


def get_db() -> DatabaseManager:
    """Get the global database manager instance."""
    global _db_manager
    if _db_manager is None:
        _db_manager = DatabaseManager()
    return _db_manager


def set_db(manager: DatabaseManager | None) -> None:
    """Replace the global database manager (tests, CLI overrides)."""
    global _db_manager
    _db_manager = manager
