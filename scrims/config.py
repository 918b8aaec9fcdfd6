"""
scrims.config — YAML Configuration Loader
==========================================

Reads ``config.yaml`` for the bot's identity and tuning settings.  Secrets
(``DISCORD_TOKEN``, ``DATABASE_URL``) never live here; they come from the
environment (``.env`` via python-dotenv).

Usage::

    from scrims.config import load_config

    cfg = load_config()          # reads ./config.yaml by default
    print(cfg.host_guild_id)     # 759894401957888031
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

import yaml

from scrims.constants import (
    DEFAULT_CACHE_LIFETIME,
    DEFAULT_MEMBER_CACHE_THRESHOLD,
    DEFAULT_OWNER_ID,
)


# ---------------------------------------------------------------------------
# Typed settings object
# ---------------------------------------------------------------------------
@dataclass(frozen=True, slots=True)
class ScrimsConfig:
    """Immutable configuration loaded from ``config.yaml``."""

    # Discord
    bot_prefix: str
    host_guild_id: int | None  # Guild whose roles back position inference

    # Whether this instance reconciles roles in the host guild
    serves_host: bool = True

    # Identity that bypasses every permission check (None disables)
    owner_id: int | None = DEFAULT_OWNER_ID

    # Permissions
    member_cache_threshold: int = DEFAULT_MEMBER_CACHE_THRESHOLD

    # Database
    user_cache_lifetime: int = DEFAULT_CACHE_LIFETIME  # seconds
    query_timeout: float = 10.0  # seconds


def _optional_int(value: object) -> int | None:
    return int(value) if value not in (None, "") else None


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------
def load_config(path: str | Path = "config.yaml") -> ScrimsConfig:
    """Read *path* and return a :class:`ScrimsConfig` instance.

    Raises
    ------
    FileNotFoundError
        If the YAML file doesn't exist.
    KeyError
        If a required key is missing from the YAML file.
    """
    config_path = Path(path)
    if not config_path.exists():
        raise FileNotFoundError(
            f"Configuration file not found: {config_path.resolve()}\n"
            "Hint: copy config.yaml.example → config.yaml and edit it."
        )

    with open(config_path, encoding="utf-8") as fh:
        raw: dict = yaml.safe_load(fh) or {}

    return ScrimsConfig(
        bot_prefix=raw.get("bot_prefix", "!"),
        host_guild_id=_optional_int(raw["host_guild_id"]),
        serves_host=bool(raw.get("serves_host", True)),
        owner_id=_optional_int(raw.get("owner_id", DEFAULT_OWNER_ID)),
        member_cache_threshold=int(raw.get("member_cache_threshold", DEFAULT_MEMBER_CACHE_THRESHOLD)),
        user_cache_lifetime=int(raw.get("user_cache_lifetime", DEFAULT_CACHE_LIFETIME)),
        query_timeout=float(raw.get("query_timeout", 10.0)),
    )
