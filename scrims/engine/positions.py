"""
scrims.engine.positions — Position Model Rows
==============================================

Cache-side rows of the ``positions``, ``position_roles``, ``user_positions``
and ``users`` tables.  Related rows resolve through the owning database
context (``row.client``), so a detached row (``client=None``) simply has no
relations.

Seniority: a *lower* ``level`` is more senior.  Positions without a level
are unranked and sort last.
"""

from __future__ import annotations

import time
from collections.abc import Mapping
from typing import TYPE_CHECKING, Any

from scrims.constants import BANNED_POSITION
from scrims.database import models
from scrims.engine.row import TableRow, TableSchema

if TYPE_CHECKING:
    import discord

__all__ = [
    "Position",
    "PositionRole",
    "UserPosition",
    "UserProfile",
    "position_sort_key",
]


def position_sort_key(position: Position) -> tuple[bool, int, str]:
    """Most senior first, unranked last, then by name."""
    level = position.get_field("level")
    ranked = isinstance(level, int)
    return (not ranked, level if ranked else 0, str(position.get_field("name") or ""))


def _table(client: Any, name: str) -> Any:
    table = getattr(client, name, None) if client is not None else None
    return getattr(table, "cache", None)


# ---------------------------------------------------------------------------
# Position
# ---------------------------------------------------------------------------
class Position(TableRow):
    schema = TableSchema.from_model(models.Position)

    id_position: int
    name: str
    level: int | None

    def __repr__(self) -> str:
        return f"<Position {self.get_field('name')!r} level={self.get_field('level')}>"

    @staticmethod
    def resolve(ref: Any) -> dict[str, Any]:
        """Selector for a position reference (id, name, row or mapping)."""
        if isinstance(ref, Position):
            return ref.to_selector()
        if isinstance(ref, Mapping):
            return dict(ref)
        if isinstance(ref, bool):
            raise TypeError(f"Not a position reference: {ref!r}")
        if isinstance(ref, int):
            return {"id_position": ref}
        if isinstance(ref, str):
            return {"name": ref}
        raise TypeError(f"Not a position reference: {ref!r}")

    @property
    def is_banned(self) -> bool:
        return self.get_field("name") == BANNED_POSITION

    @property
    def position_roles(self) -> list[PositionRole]:
        cache = _table(self.client, "position_roles")
        if cache is None:
            return []
        return cache.filter(lambda row: row.get_field("id_position") == self.get_field("id_position"))

    def get_roles(self, guild_id: int) -> list[PositionRole]:
        """Role bindings of this position in *guild_id*."""
        return [row for row in self.position_roles if row.get_field("guild_id") == guild_id]

    def get_role_ids(self, guild_id: int) -> list[int]:
        return [row.role_id for row in self.get_roles(guild_id)]

    def get_position_level_positions(self) -> list[Position]:
        """Positions at or above this one's seniority, most senior first.

        Unranked positions have no hierarchy and return an empty list.
        """
        level = self.get_field("level")
        if not isinstance(level, int):
            return []
        cache = _table(self.client, "positions")
        if cache is None:
            return [self]
        ranked = cache.filter(
            lambda row: isinstance(row.get_field("level"), int) and row.level <= level
        )
        return sorted(ranked, key=position_sort_key)


# ---------------------------------------------------------------------------
# PositionRole
# ---------------------------------------------------------------------------
class PositionRole(TableRow):
    schema = TableSchema.from_model(models.PositionRole)

    guild_id: int
    id_position: int
    role_id: int

    @property
    def position(self) -> Position | None:
        cache = _table(self.client, "positions")
        if cache is None:
            return None
        return cache.resolve(self.get_field("id_position"))

    @property
    def guild(self) -> discord.Guild | None:
        bot = self.bot
        return bot.get_guild(self.guild_id) if bot is not None else None

    @property
    def role(self) -> discord.Role | None:
        guild = self.guild
        return guild.get_role(self.role_id) if guild is not None else None


# ---------------------------------------------------------------------------
# UserPosition
# ---------------------------------------------------------------------------
class UserPosition(TableRow):
    """A ledger record.  It leaves the cache once ``expires_at`` has passed."""

    schema = TableSchema.from_model(models.UserPosition)

    user_id: int
    id_position: int
    given_at: int
    expires_at: int | None
    executor_id: int | None

    @property
    def position(self) -> Position | None:
        cache = _table(self.client, "positions")
        if cache is None:
            return None
        return cache.resolve(self.get_field("id_position"))

    @property
    def user(self) -> discord.User | None:
        bot = self.bot
        return bot.get_user(self.user_id) if bot is not None else None

    @property
    def is_permanent(self) -> bool:
        return self.get_field("expires_at") is None

    def is_expired(self, now: float | None = None) -> bool:
        expires_at = self.get_field("expires_at")
        if not isinstance(expires_at, int):
            return False
        return expires_at <= (time.time() if now is None else now)

    def is_cache_expired(self, now: float | None = None) -> bool:
        return self.is_expired(now) or super().is_cache_expired(now)


# ---------------------------------------------------------------------------
# UserProfile
# ---------------------------------------------------------------------------
class UserProfile(TableRow):
    schema = TableSchema.from_model(models.UserProfile)

    user_id: int
    username: str
    discriminator: int
    joined_at: int
    accent_color: int | None
    avatar: str | None

    @classmethod
    def data_from_user(cls, user: discord.abc.User) -> dict[str, Any]:
        """Column values describing a Discord user right now."""
        joined = getattr(user, "joined_at", None)
        accent = getattr(user, "accent_color", None)
        avatar = getattr(user, "avatar", None)
        try:
            discriminator = int(user.discriminator)
        except (TypeError, ValueError):
            discriminator = 0
        return {
            "user_id": user.id,
            "username": user.name,
            "discriminator": discriminator,
            "joined_at": int(joined.timestamp()) if joined is not None else int(time.time()),
            "accent_color": accent.value if accent is not None else None,
            "avatar": avatar.key if avatar is not None else None,
        }

    @property
    def user(self) -> discord.User | None:
        bot = self.bot
        return bot.get_user(self.user_id) if bot is not None else None
