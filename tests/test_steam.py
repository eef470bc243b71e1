"""Tests for Steam profile lookups."""

import httpx

from roundstats.integrations.steam import PLAYER_SUMMARIES_PATH, SteamProfileClient


def player(steam_id, name):
    return {
        "steamid": steam_id,
        "personaname": name,
        "avatarfull": f"https://avatars.example.invalid/{steam_id}.jpg",
        "profileurl": f"https://steamcommunity.com/profiles/{steam_id}/",
    }


def client_with(handler, **kwargs):
    http_client = httpx.Client(transport=httpx.MockTransport(handler))
    return SteamProfileClient(api_key="test-key", http_client=http_client, **kwargs)


class TestGetPlayerSummaries:
    def test_profiles_parsed(self):
        requests = []

        def handler(request):
            requests.append(request)
            return httpx.Response(
                200, json={"response": {"players": [player("76561197960287930", "Rabscuttle")]}}
            )

        profiles = client_with(handler).get_player_summaries(["76561197960287930"])

        profile = profiles["76561197960287930"]
        assert profile.display_name == "Rabscuttle"
        assert profile.avatar_url.endswith("76561197960287930.jpg")
        assert requests[0].url.path == PLAYER_SUMMARIES_PATH
        assert requests[0].url.params["key"] == "test-key"
        assert requests[0].url.params["steamids"] == "76561197960287930"

    def test_requests_batched(self):
        seen_batches = []

        def handler(request):
            ids = request.url.params["steamids"].split(",")
            seen_batches.append(ids)
            return httpx.Response(
                200, json={"response": {"players": [player(i, f"p{i}") for i in ids]}}
            )

        ids = [str(76561197960265729 + n) for n in range(5)]
        profiles = client_with(handler, batch_size=2).get_player_summaries(ids + ids[:1])

        assert [len(b) for b in seen_batches] == [2, 2, 1]
        assert set(profiles) == set(ids)

    def test_no_api_key_skips_lookup(self):
        def handler(request):
            raise AssertionError("no request expected")

        client = SteamProfileClient(
            api_key="", http_client=httpx.Client(transport=httpx.MockTransport(handler))
        )
        assert client.enabled is False
        assert client.get_player_summaries(["76561197960287930"]) == {}

    def test_http_error_yields_nothing(self):
        def handler(request):
            return httpx.Response(500, text="server error")

        assert client_with(handler).get_player_summaries(["76561197960287930"]) == {}

    def test_invalid_json_yields_nothing(self):
        def handler(request):
            return httpx.Response(200, text="<html>not json</html>")

        assert client_with(handler).get_player_summaries(["76561197960287930"]) == {}

    def test_unexpected_response_shape_yields_nothing(self):
        def handler(request):
            return httpx.Response(200, json={"response": []})

        assert client_with(handler).get_player_summaries(["76561197960287930"]) == {}

    def test_top_level_list_yields_nothing(self):
        def handler(request):
            return httpx.Response(200, json=[{"steamid": "76561197960287930"}])

        assert client_with(handler).get_player_summaries(["76561197960287930"]) == {}

    def test_malformed_player_entries_skipped(self):
        def handler(request):
            players = ["x", None, player("76561197960287930", "Rabscuttle")]
            return httpx.Response(200, json={"response": {"players": players}})

        profiles = client_with(handler).get_player_summaries(["76561197960287930"])

        assert list(profiles) == ["76561197960287930"]

    def test_failed_batch_does_not_drop_others(self):
        def handler(request):
            ids = request.url.params["steamids"].split(",")
            if "76561197960265730" in ids:
                return httpx.Response(503)
            return httpx.Response(
                200, json={"response": {"players": [player(i, "ok") for i in ids]}}
            )

        ids = ["76561197960265729", "76561197960265730"]
        profiles = client_with(handler, batch_size=1).get_player_summaries(ids)
        assert set(profiles) == {"76561197960265729"}

    def test_batch_size_capped(self):
        client = SteamProfileClient(api_key="k", batch_size=500)
        assert client.batch_size == 100
