"""Tests for round record storage."""

from datetime import UTC, date, datetime, timedelta

import pytest

from roundstats.core.errors import RunTimeoutError
from roundstats.core.models import InsertOutcome, RoundRecord, Team
from roundstats.infra.database import DatabaseManager

MATCH_A = "a" * 32
MATCH_B = "b" * 32


def make_record(
    account_id=111,
    match_id=MATCH_A,
    round_number=1,
    kills=0,
    deaths=0,
    match_number=1,
    server_id=1,
    map_name="de_dust2",
    match_date=date(2024, 6, 1),
):
    return RoundRecord(
        account_id=account_id,
        team=Team.TERRORIST,
        kills=kills,
        deaths=deaths,
        assists=0,
        damage=100.0 * round_number,
        kdr=float(kills),
        mvp=0,
        map_name=map_name,
        round_number=round_number,
        match_id=match_id,
        match_number=match_number,
        match_date=match_date,
        match_datetime=datetime(2024, 6, 1, 20, 0, tzinfo=UTC) + timedelta(minutes=round_number),
        server_id=server_id,
    )


@pytest.fixture
def db():
    manager = DatabaseManager("sqlite://")
    yield manager
    manager.dispose()


class TestUniqueness:
    def test_duplicate_stored_once(self, db):
        record = make_record(kills=3)
        assert db.insert(record) is InsertOutcome.INSERTED
        assert db.insert(record) is InsertOutcome.SKIPPED_DUPLICATE
        assert db.count_records() == 1

    def test_duplicate_in_batch(self, db):
        record = make_record()
        inserted, skipped = db.insert_many([record, make_record(round_number=2), record])
        assert (inserted, skipped) == (2, 1)
        assert db.count_records() == 2

    def test_duplicate_never_overwrites(self, db):
        db.insert(make_record(kills=3))
        db.insert(make_record(kills=99))
        stored = db.fetch_records()
        assert [r.kills for r in stored] == [3]

    def test_same_round_other_match_allowed(self, db):
        db.insert(make_record(match_id=MATCH_A))
        assert db.insert(make_record(match_id=MATCH_B, match_number=2)) is InsertOutcome.INSERTED


class TestAtomicity:
    def test_timeout_rolls_back_batch(self, db):
        records = [make_record(round_number=n) for n in (1, 2, 3)]
        with pytest.raises(RunTimeoutError):
            db.insert_many(records, deadline=0.0)
        assert db.count_records() == 0


class TestMatchQueries:
    def test_max_match_number(self, db):
        assert db.get_max_match_number() == 0
        db.insert_many(
            [make_record(match_number=4), make_record(match_id=MATCH_B, match_number=9)]
        )
        assert db.get_max_match_number() == 9

    def test_latest_match_per_server(self, db):
        db.insert_many(
            [
                make_record(match_number=1, round_number=1),
                make_record(match_number=1, round_number=2),
                make_record(match_id=MATCH_B, match_number=2, round_number=5, server_id=2),
            ]
        )
        latest = db.get_latest_match(1)
        assert latest == {
            "match_id": MATCH_A,
            "match_number": 1,
            "map_name": "de_dust2",
            "round_number": 2,
        }
        assert db.get_latest_match(3) is None

    def test_match_summary_uses_final_round(self, db):
        db.insert_many(
            [
                make_record(account_id=111, round_number=1, kills=1, deaths=0),
                make_record(account_id=111, round_number=2, kills=3, deaths=1),
                make_record(account_id=222, round_number=1, kills=0, deaths=1),
                make_record(account_id=222, round_number=2, kills=1, deaths=3),
            ]
        )
        summary = db.get_match_summary(MATCH_A)

        assert summary["total_rounds"] == 2
        assert summary["total_kills"] == 4
        assert summary["total_deaths"] == 4
        assert summary["player_count"] == 2
        assert summary["map"] == "de_dust2"
        assert db.get_match_summary(MATCH_B) is None


class TestFetch:
    def test_filters(self, db):
        db.insert_many(
            [
                make_record(account_id=111, server_id=1, match_date=date(2024, 6, 1)),
                make_record(
                    account_id=222,
                    server_id=2,
                    match_id=MATCH_B,
                    match_number=2,
                    match_date=date(2024, 6, 3),
                ),
            ]
        )

        assert [r.account_id for r in db.fetch_records(server_id=2)] == [222]
        assert [r.account_id for r in db.fetch_records(start_date=date(2024, 6, 2))] == [222]
        assert [r.account_id for r in db.fetch_records(end_date=date(2024, 6, 2))] == [111]
        assert [r.account_id for r in db.fetch_records(account_ids=[111])] == [111]
        assert [r.account_id for r in db.fetch_records(match_id=MATCH_B)] == [222]
        assert db.count_records(server_id=1) == 1

    def test_record_round_trip(self, db):
        original = make_record(kills=2, deaths=1)
        db.insert(original)
        stored = db.fetch_records()[0]

        assert stored.key == original.key
        assert stored.team is Team.TERRORIST
        assert stored.kills == 2
        assert stored.match_date == original.match_date


class TestGlobalStats:
    def test_empty(self, db):
        stats = db.get_global_stats()
        assert stats["total_matches"] == 0
        assert stats["total_rounds"] == 0
        assert stats["total_kills"] == 0
        assert stats["last_match"] is None

    def test_final_round_totals(self, db):
        db.insert_many(
            [
                make_record(account_id=111, round_number=1, kills=2),
                make_record(account_id=111, round_number=3, kills=5),
                make_record(account_id=222, round_number=3, kills=1, deaths=2),
                make_record(
                    account_id=111,
                    match_id=MATCH_B,
                    match_number=2,
                    round_number=2,
                    kills=4,
                    map_name="de_mirage",
                ),
            ]
        )
        stats = db.get_global_stats()

        assert stats["total_matches"] == 2
        assert stats["total_rounds"] == 5
        assert stats["total_kills"] == 10
        assert stats["total_deaths"] == 2
        assert stats["unique_players"] == 2
        assert stats["maps_played"] == 2


class TestPlatformUsers:
    def test_linked_users(self, db):
        linked = db.add_platform_user("alice", external_id="76561197960287930")
        db.add_platform_user("bob", external_id=None)
        db.add_platform_user("carol", external_id="STEAM_1:0:5", is_connected=False)

        users = db.get_linked_platform_users()
        assert [u["username"] for u in users] == ["alice"]
        assert db.count_linked_platform_users() == 1
        assert db.get_platform_user(linked["id"])["external_id"] == "76561197960287930"
        assert db.get_platform_user(9999) is None
