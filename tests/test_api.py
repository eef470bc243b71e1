"""Tests for the FastAPI web API."""

import pytest
from fastapi.testclient import TestClient

from roundstats.api import app
from roundstats.context import build_context, set_context
from roundstats.core.config import RoundStatsConfig
from roundstats.integrations.steam import SteamProfileClient

client = TestClient(app)

ALICE = 1001
BOB = 1002


def player_line(index, account_id, kills, deaths):
    return f'"player_{index}" : "{account_id},2,800,{kills},{deaths},0,100,50,1.0,90,0",'


def round_block(round_number, rows):
    lines = ["JSON_BEGIN{", f'"round_number" : "{round_number}",', '"map" : "de_inferno",']
    for index, (account_id, kills, deaths) in enumerate(rows):
        lines.append(player_line(index, account_id, kills, deaths))
    lines.append("}JSON_END")
    return lines


def fixture_log() -> bytes:
    lines = ['L 06/01/2024 - 20:00:00: Loading map "de_inferno"']
    lines += round_block(0, [(ALICE, 0, 0), (BOB, 0, 0)])
    lines += round_block(1, [(ALICE, 1, 0), (BOB, 0, 1), (0, 2, 0)])
    lines += round_block(2, [(ALICE, 3, 1), (BOB, 1, 3), (0, 2, 0)])
    lines += round_block(3, [(ALICE, 5, 1), (BOB, 1, 5), (0, 3, 1)])
    return ("\n".join(lines) + "\n").encode()


@pytest.fixture
def context(tmp_path):
    config = RoundStatsConfig()
    config.storage.database_url = f"sqlite:///{tmp_path / 'roundstats.db'}"
    config.ingestion.logs_dir = str(tmp_path / "logs")
    config.ingestion.server_ids = [1, 2]

    ctx = build_context(config, steam=SteamProfileClient(api_key=""))
    set_context(ctx)
    yield ctx
    set_context(None)
    ctx.close()


def upload(server_id=1, content=None):
    content = fixture_log() if content is None else content
    return client.post(
        f"/api/ingest/upload?server_id={server_id}",
        files={"logfile": ("console.log", content, "text/plain")},
    )


class TestHealthEndpoint:
    def test_health_returns_ok(self, context):
        response = client.get("/health")
        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "ok"
        assert isinstance(data["version"], str)


class TestUpload:
    def test_upload_processes_log(self, context):
        response = upload()

        assert response.status_code == 200
        data = response.json()
        assert data["success"] is True
        assert data["upload_info"]["server_id"] == 1
        assert data["upload_info"]["size"] == len(fixture_log())
        result = data["processing_result"]
        assert result["inserted"] == 6
        assert result["map"] == "de_inferno"
        assert (context.logs_dir / "latest_server1.log").read_bytes() == fixture_log()

    def test_same_upload_twice_is_idempotent(self, context):
        upload()
        response = upload()

        result = response.json()["processing_result"]
        assert result["inserted"] == 0
        assert result["message"] == "No new data to process"
        assert context.db.count_records() == 6

    def test_missing_server_id(self, context):
        response = client.post(
            "/api/ingest/upload",
            files={"logfile": ("console.log", fixture_log(), "text/plain")},
        )
        assert response.status_code == 400
        assert response.json()["detail"] == "Server ID is required"

    def test_invalid_server_id(self, context):
        assert upload(server_id=0).status_code == 400

    def test_empty_file(self, context):
        response = upload(content=b"")
        assert response.status_code == 400
        assert not (context.logs_dir / "latest_server1.log").exists()

    def test_too_large(self, context):
        context.config.ingestion.max_upload_bytes = 10
        response = upload()
        assert response.status_code == 413
        assert not (context.logs_dir / "latest_server1.log").exists()

    def test_run_in_progress(self, context):
        lock = context.scheduler._acquire(1, "interval")
        try:
            response = upload()
        finally:
            context.scheduler._release(lock)

        assert response.status_code == 409
        assert not (context.logs_dir / "latest_server1.log").exists()


class TestProcessAndStatus:
    def test_status_without_log(self, context):
        data = client.get("/api/ingest/status/1").json()
        assert data["status"] == "no-log-file"
        assert data["log_file_exists"] is False

    def test_status_lifecycle(self, context):
        upload()
        data = client.get("/api/ingest/status/1").json()
        assert data["status"] == "up-to-date"
        assert data["checkpoint"] == data["total_lines"]

        response = client.delete("/api/ingest/checkpoint/1")
        assert response.json()["deleted"] is True

        data = client.get("/api/ingest/status/1").json()
        assert data["status"] == "pending-processing"
        assert data["pending_lines"] == data["total_lines"]

    def test_reset_missing_checkpoint(self, context):
        response = client.delete("/api/ingest/checkpoint/2")
        assert response.status_code == 200
        assert response.json()["deleted"] is False

    def test_process_by_server_id(self, context):
        context.logs_dir.mkdir(parents=True, exist_ok=True)
        (context.logs_dir / "latest_server2.log").write_bytes(fixture_log())

        response = client.post("/api/ingest/process", json={"serverId": 2})

        assert response.status_code == 200
        assert response.json()["processing_result"]["inserted"] == 6

    def test_process_missing_log(self, context):
        response = client.post("/api/ingest/process", json={"server_id": 2})
        data = response.json()
        assert data["success"] is False
        assert data["processing_result"]["error"] == "Log file not found: latest_server2.log"

    def test_process_requires_server(self, context):
        assert client.post("/api/ingest/process", json={}).status_code == 400

    def test_scheduler_stats(self, context):
        upload()
        data = client.get("/api/ingest/scheduler").json()
        assert data["total_runs"] == 1
        assert data["total_inserted"] == 6
        assert data["server_ids"] == [1, 2]


class TestLeaderboardEndpoints:
    def test_leaderboard_after_upload(self, context):
        before = client.get("/api/leaderboard").json()
        assert before["leaderboard"] == []

        upload()
        data = client.get("/api/leaderboard").json()

        assert data["total_players"] == 2
        top = data["leaderboard"][0]
        assert top["account_id"] == ALICE
        assert top["display_name"] == f"Player {ALICE}"
        assert top["stats"]["total_kills"] == 5
        assert top["stats"]["rounds_played"] == 3

    def test_naive_debug_leaderboard(self, context):
        upload()
        data = client.get("/api/leaderboard/debug/naive").json()
        assert data["aggregation"] == "naive"
        assert data["leaderboard"][0]["stats"]["total_kills"] == 9

    def test_registered_leaderboard(self, context):
        upload()
        context.db.add_platform_user("bob", external_id=f"STEAM_1:0:{BOB // 2}")

        data = client.get("/api/leaderboard/registered").json()

        assert [row["username"] for row in data["leaderboard"]] == ["bob"]

    def test_query_validation(self, context):
        assert client.get("/api/leaderboard?limit=0").status_code == 422
        assert client.get("/api/leaderboard?server_id=0").status_code == 400
        response = client.get("/api/leaderboard?start_date=2024-06-05&end_date=2024-06-01")
        assert response.status_code == 400

    def test_player_detail(self, context):
        upload()
        user = context.db.add_platform_user("alice", external_id=str(ALICE))

        data = client.get(f"/api/leaderboard/player/{user['id']}").json()

        assert data["player"]["username"] == "alice"
        assert data["stats"]["total_kills"] == 5
        assert len(data["match_history"]) == 1

    def test_unknown_player(self, context):
        assert client.get("/api/leaderboard/player/424242").status_code == 404

    def test_global_stats(self, context):
        upload()
        data = client.get("/api/leaderboard/stats").json()
        assert data["stats"]["total_matches"] == 1
        assert data["stats"]["total_rounds"] == 3
        assert data["stats"]["total_kills"] == 6
        assert data["registered_players_count"] == 0

    def test_match_summary(self, context):
        upload()
        match_id = context.db.fetch_records()[0].match_id

        data = client.get(f"/api/leaderboard/match/{match_id}").json()
        assert data["total_rounds"] == 3
        assert data["player_count"] == 2

        assert client.get("/api/leaderboard/match/not-a-match").status_code == 400
        assert client.get(f"/api/leaderboard/match/{'f' * 32}").status_code == 404

    def test_player_debug(self, context):
        upload()
        data = client.get(f"/api/leaderboard/debug/{ALICE}").json()
        assert data["total_raw_entries"] == 3
        assert data["final_round_totals"]["total_kills"] == 5
        assert data["naive_totals"]["total_kills"] == 9


class TestCacheEndpoints:
    def test_stats_and_clear(self, context):
        client.get("/api/leaderboard")
        assert client.get("/cache/stats").json()["total_entries"] == 1

        response = client.post("/cache/clear")
        assert response.json() == {"success": True, "cleared": 1}
        assert client.get("/cache/stats").json()["total_entries"] == 0
