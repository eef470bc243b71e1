"""
Player identifier conversions.

The game server logs a raw 32-bit account id. Steam profiles use the 64-bit
id (account id offset by a fixed base) and older integrations store the
legacy "STEAM_X:Y:Z" form where account id = Z * 2 + Y.

Two platform users are known to produce the wrong account id through the
plain steam64 formula. Their corrected values live in an override table that
is passed in (see IdentityConfig.overrides) rather than baked into the
conversion. The table is a workaround: nobody has established yet whether
the stored steam64 strings for those users were themselves wrong.
"""

from __future__ import annotations

import re
from collections.abc import Mapping
from dataclasses import dataclass

STEAM64_BASE = 76561197960265728

# Known-bad steam64 -> account id conversions observed in production data
DEFAULT_STEAM64_OVERRIDES: dict[str, int] = {
    "76561199887711108": 1927445380,
    "76561199888807001": 1928541273,
}

STEAM64_PATTERN = re.compile(r"^\d{17}$")
LEGACY_ID_PATTERN = re.compile(r"^STEAM_([01]):([01]):(\d+)$")
ACCOUNT_ID_PATTERN = re.compile(r"^\d{1,10}$")


class IdFormat:
    STEAM64 = "steam64"
    LEGACY = "legacy"
    ACCOUNT = "account"


def account_id_to_steam64(account_id: int) -> str:
    """Convert a raw account id to its 17-digit steam64 string."""
    return str(STEAM64_BASE + int(account_id))


def steam64_to_account_id(steam64: str | int, overrides: Mapping[str, int] | None = None) -> int:
    """Convert a steam64 id to an account id, honouring the override table first."""
    if overrides is None:
        overrides = DEFAULT_STEAM64_OVERRIDES
    key = str(steam64).strip()
    if key in overrides:
        return int(overrides[key])
    return int(key) - STEAM64_BASE


def legacy_id_to_account_id(legacy_id: str) -> int:
    """Convert "STEAM_X:Y:Z" to an account id (Z * 2 + Y)."""
    match = LEGACY_ID_PATTERN.match(legacy_id.strip())
    if not match:
        raise ValueError(f"Not a legacy steam id: {legacy_id!r}")
    y = int(match.group(2))
    z = int(match.group(3))
    return z * 2 + y


def account_id_to_legacy_id(account_id: int, universe: int = 1) -> str:
    """Convert an account id to "STEAM_X:Y:Z"."""
    account_id = int(account_id)
    return f"STEAM_{universe}:{account_id % 2}:{account_id // 2}"


def detect_id_format(value: str) -> str | None:
    """Return which identifier space a stored id string belongs to, if any."""
    value = value.strip()
    if STEAM64_PATTERN.match(value):
        return IdFormat.STEAM64
    if LEGACY_ID_PATTERN.match(value):
        return IdFormat.LEGACY
    if ACCOUNT_ID_PATTERN.match(value):
        return IdFormat.ACCOUNT
    return None


def to_account_id(value: str | None, overrides: Mapping[str, int] | None = None) -> int | None:
    """Normalize an id in any of the three formats to an account id.

    Returns None for empty, unrecognized or non-positive values.
    """
    if not value:
        return None
    value = str(value).strip()
    fmt = detect_id_format(value)
    if fmt == IdFormat.STEAM64:
        account_id = steam64_to_account_id(value, overrides)
    elif fmt == IdFormat.LEGACY:
        account_id = legacy_id_to_account_id(value)
    elif fmt == IdFormat.ACCOUNT:
        account_id = int(value)
    else:
        return None
    return account_id if account_id > 0 else None


@dataclass
class PlayerIdentity:
    """Resolved identity for one account id; never stored by this package."""

    account_id: int
    steam64_id: str
    legacy_id: str
    platform_user_id: int | None = None
    username: str | None = None
    external_id: str | None = None
    display_name: str | None = None
    avatar_url: str = ""
    profile_url: str | None = None
    is_registered: bool = False
    has_steam_data: bool = False

    @classmethod
    def bare(cls, account_id: int) -> PlayerIdentity:
        return cls(
            account_id=account_id,
            steam64_id=account_id_to_steam64(account_id),
            legacy_id=account_id_to_legacy_id(account_id),
        )

    @property
    def resolved_name(self) -> str:
        return self.display_name or self.username or placeholder_name(self.account_id)

    def to_dict(self) -> dict:
        return {
            "account_id": self.account_id,
            "steam64_id": self.steam64_id,
            "legacy_id": self.legacy_id,
            "user_id": self.platform_user_id,
            "username": self.username or f"Player_{self.account_id}",
            "steam_id": self.external_id,
            "display_name": self.resolved_name,
            "avatar": self.avatar_url,
            "profile_url": self.profile_url,
            "is_registered": self.is_registered,
            "has_steam_data": self.has_steam_data,
        }


def placeholder_name(account_id: int) -> str:
    return f"Player {account_id}"
