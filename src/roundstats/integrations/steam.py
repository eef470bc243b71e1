"""
Steam Web API profile lookups.

Used to put names and avatars on players who have not linked a platform
account. Lookups are best-effort: a missing API key, an HTTP failure or a
malformed response yields no profiles, never an exception, and callers fall
back to placeholder names.
"""

import logging
from dataclasses import dataclass
from typing import Any

import httpx

logger = logging.getLogger(__name__)

STEAM_API_BASE = "https://api.steampowered.com"
PLAYER_SUMMARIES_PATH = "/ISteamUser/GetPlayerSummaries/v0002/"

# Steam accepts at most 100 ids per GetPlayerSummaries call
MAX_IDS_PER_CALL = 100


@dataclass
class SteamProfile:
    """Public profile data for one steam64 id."""

    steam64_id: str
    display_name: str
    avatar_url: str = ""
    avatar_medium: str = ""
    profile_url: str = ""
    country_code: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "steam64_id": self.steam64_id,
            "display_name": self.display_name,
            "avatar": self.avatar_url,
            "avatar_medium": self.avatar_medium,
            "profile_url": self.profile_url,
            "country_code": self.country_code,
        }


def _profile_from_player(player: dict) -> SteamProfile | None:
    steam_id = str(player.get("steamid", ""))
    if not steam_id:
        return None
    return SteamProfile(
        steam64_id=steam_id,
        display_name=player.get("personaname", "") or "",
        avatar_url=player.get("avatarfull", "") or "",
        avatar_medium=player.get("avatarmedium", "") or "",
        profile_url=player.get("profileurl", "") or "",
        country_code=player.get("loccountrycode", "") or "",
    )


class SteamProfileClient:
    """
    Batch client for GetPlayerSummaries.

    Example:
        >>> client = SteamProfileClient(api_key="your-api-key")
        >>> profiles = client.get_player_summaries(["76561197960287930"])
        >>> profiles["76561197960287930"].display_name
    """

    def __init__(
        self,
        api_key: str | None = None,
        api_base: str = STEAM_API_BASE,
        timeout: float = 10.0,
        batch_size: int = MAX_IDS_PER_CALL,
        http_client: httpx.Client | None = None,
    ):
        """
        Args:
            api_key: Steam Web API key; lookups are disabled without one
            api_base: API root, overridable for tests
            timeout: Per-request timeout in seconds
            batch_size: Ids per request, capped at the API limit
            http_client: Pre-built client (tests inject a MockTransport)
        """
        self.api_key = api_key or ""
        self.api_base = api_base.rstrip("/")
        self.timeout = timeout
        self.batch_size = max(1, min(batch_size, MAX_IDS_PER_CALL))
        self._client = http_client

    @property
    def enabled(self) -> bool:
        return bool(self.api_key)

    def _get_client(self) -> httpx.Client:
        if self._client is None:
            self._client = httpx.Client(timeout=self.timeout)
        return self._client

    def close(self) -> None:
        if self._client is not None:
            self._client.close()
            self._client = None

    def get_player_summaries(self, steam64_ids: list[str]) -> dict[str, SteamProfile]:
        """
        Fetch profiles for many steam64 ids, batching requests.

        Returns:
            steam64 id -> SteamProfile for every id Steam knew about.
            Empty when lookups are disabled or every batch failed.
        """
        if not self.enabled:
            logger.debug("Steam API key not set, skipping profile lookup")
            return {}

        unique_ids = list(dict.fromkeys(str(s) for s in steam64_ids if s))
        profiles: dict[str, SteamProfile] = {}

        for start in range(0, len(unique_ids), self.batch_size):
            batch = unique_ids[start : start + self.batch_size]
            profiles.update(self._fetch_batch(batch))

        return profiles

    def _fetch_batch(self, batch: list[str]) -> dict[str, SteamProfile]:
        url = f"{self.api_base}{PLAYER_SUMMARIES_PATH}"
        params = {"key": self.api_key, "steamids": ",".join(batch)}

        try:
            resp = self._get_client().get(url, params=params)
            resp.raise_for_status()
            data = resp.json()
        except httpx.HTTPError as e:
            logger.warning(f"Steam profile lookup failed for {len(batch)} ids: {e}")
            return {}
        except ValueError as e:
            logger.warning(f"Steam profile lookup returned invalid JSON: {e}")
            return {}

        response = data.get("response") if isinstance(data, dict) else None
        players = response.get("players") if isinstance(response, dict) else None
        if not isinstance(players, list):
            logger.warning(f"Steam profile lookup returned an unexpected payload for {len(batch)} ids")
            return {}

        profiles = {}
        for player in players:
            if not isinstance(player, dict):
                logger.debug(f"Skipping malformed Steam player entry: {player!r}")
                continue
            profile = _profile_from_player(player)
            if profile is not None:
                profiles[profile.steam64_id] = profile

        logger.debug(f"Steam returned {len(profiles)}/{len(batch)} profiles")
        return profiles
