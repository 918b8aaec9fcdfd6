"""
tests/conftest.py — Shared Test Fixtures
=========================================

* ``db_engine`` — in-memory SQLite with every Scrims table.
* Lightweight fakes of the discord.py objects the engine reads
  (guilds, roles, members, the bot) with the factory helpers
  ``make_guild`` / ``make_bot``, importable as ``from conftest import ...``.
* ``scrims_env`` — a database context whose caches hold a small position
  hierarchy bound to roles of a host guild.
"""

from __future__ import annotations

from types import SimpleNamespace
from unittest.mock import AsyncMock

import discord
import pytest
from sqlalchemy import BigInteger, Engine, create_engine
from sqlalchemy.ext.compiler import compiles
from sqlalchemy.pool import StaticPool

from scrims.database.client import ScrimsDatabase
from scrims.database.models import Base
from scrims.engine.permissions import PermissionsManager
from scrims.engine.positions import Position, PositionRole, UserPosition


# ---------------------------------------------------------------------------
# SQLite compatibility: BigInteger → INTEGER so autoincrement works
# ---------------------------------------------------------------------------
@compiles(BigInteger, "sqlite")
def _compile_bigint_as_integer(type_, compiler, **kw):
    return "INTEGER"


@pytest.fixture
def db_engine() -> Engine:
    """Create an in-memory SQLite engine with all Scrims tables.

    Uses StaticPool so all threads share the same in-memory database
    (required by ``asyncio.to_thread`` used in ``run_db``).
    """
    engine = create_engine(
        "sqlite://",
        echo=False,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    return engine


# ---------------------------------------------------------------------------
# Clock
# ---------------------------------------------------------------------------
class FakeClock:
    """Callable clock the tests move by hand."""

    def __init__(self, now: float = 1_700_000_000) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


# ---------------------------------------------------------------------------
# Discord fakes
# ---------------------------------------------------------------------------
class FakeRole:
    def __init__(self, role_id: int, guild: FakeGuild, *, assignable: bool = True) -> None:
        self.id = role_id
        self.guild = guild
        self.name = f"role-{role_id}"
        self._assignable = assignable

    def is_assignable(self) -> bool:
        return self._assignable


class FakeMember:
    def __init__(
        self,
        user_id: int,
        guild: FakeGuild,
        roles: list[FakeRole],
        *,
        permissions: discord.Permissions | None = None,
        bot: bool = False,
    ) -> None:
        self.id = user_id
        self.guild = guild
        self.roles = list(roles)
        self.bot = bot
        self.name = f"user{user_id}"
        self.display_name = self.name
        self.discriminator = "0"
        self.mention = f"<@{user_id}>"
        self.joined_at = None
        self.accent_color = None
        self.avatar = None
        self.guild_permissions = permissions or discord.Permissions.none()
        self.add_roles = AsyncMock()
        self.remove_roles = AsyncMock()

    def get_role(self, role_id: int) -> FakeRole | None:
        return next((role for role in self.roles if role.id == role_id), None)

    def with_roles(self, *roles: FakeRole) -> FakeMember:
        """A copy of this member holding exactly *roles* (for before/after diffs)."""
        return FakeMember(self.id, self.guild, list(roles), permissions=self.guild_permissions)


class FakeGuild:
    def __init__(self, guild_id: int, *, me_permissions: discord.Permissions | None = None) -> None:
        self.id = guild_id
        self._roles: dict[int, FakeRole] = {}
        self._members: dict[int, FakeMember] = {}
        self.me = SimpleNamespace(
            guild_permissions=me_permissions or discord.Permissions(manage_roles=True),
        )

    @property
    def members(self) -> list[FakeMember]:
        return list(self._members.values())

    def get_member(self, user_id: int) -> FakeMember | None:
        return self._members.get(user_id)

    def get_role(self, role_id: int) -> FakeRole | None:
        return self._roles.get(role_id)

    def add_role(self, role_id: int, *, assignable: bool = True) -> FakeRole:
        role = self._roles[role_id] = FakeRole(role_id, self, assignable=assignable)
        return role

    def add_member(self, user_id: int, *roles: FakeRole, **kwargs) -> FakeMember:
        member = self._members[user_id] = FakeMember(user_id, self, list(roles), **kwargs)
        return member

    def remove_member(self, user_id: int) -> None:
        self._members.pop(user_id, None)


def make_guild(guild_id: int, **kwargs) -> FakeGuild:
    return FakeGuild(guild_id, **kwargs)


def make_bot(*guilds: FakeGuild, bot_id: int = 1) -> SimpleNamespace:
    """A bot exposing ``get_guild`` / ``get_user`` over *guilds*."""
    by_id = {guild.id: guild for guild in guilds}

    def get_user(user_id: int):
        for guild in by_id.values():
            member = guild.get_member(user_id)
            if member is not None:
                return member
        return None

    return SimpleNamespace(
        user=SimpleNamespace(id=bot_id),
        get_guild=by_id.get,
        get_user=get_user,
    )


# ---------------------------------------------------------------------------
# Position hierarchy
# ---------------------------------------------------------------------------
HOST_ID = 100
OTHER_GUILD_ID = 200

BANNED, STAFF, MODERATOR, SUPPORT, SUPPORTER = 1, 2, 3, 4, 5

STAFF_ROLE, MODERATOR_ROLE, SUPPORT_ROLE, SUPPORTER_ROLE = 1001, 1002, 1003, 1004

# Members of the host guild
ALICE, BOB, CAROL, DAVE = 11, 12, 13, 14


def seed_positions(database: ScrimsDatabase) -> None:
    for id_position, name, level in (
        (BANNED, "banned", None),
        (STAFF, "staff", 1),
        (MODERATOR, "moderator", 2),
        (SUPPORT, "support", 3),
        (SUPPORTER, "supporter", None),
    ):
        database.positions.cache.push(
            Position({"id_position": id_position, "name": name, "level": level}, client=database)
        )
    for id_position, role_id in (
        (STAFF, STAFF_ROLE),
        (MODERATOR, MODERATOR_ROLE),
        (SUPPORT, SUPPORT_ROLE),
        (SUPPORTER, SUPPORTER_ROLE),
    ):
        database.position_roles.cache.push(
            PositionRole(
                {"guild_id": HOST_ID, "id_position": id_position, "role_id": role_id},
                client=database,
            )
        )


def give_record(
    database: ScrimsDatabase, user_id: int, id_position: int, *,
    given_at: int = 0, expires_at: int | None = None,
) -> UserPosition:
    return database.user_positions.cache.push(
        UserPosition(
            {
                "user_id": user_id,
                "id_position": id_position,
                "given_at": given_at,
                "expires_at": expires_at,
                "executor_id": None,
            },
            client=database,
        )
    )


@pytest.fixture
def scrims_env(db_engine, clock):
    """Seeded database context, host guild with four members, manager.

    Host members: ALICE (staff role), BOB (moderator role), CAROL (no
    roles), DAVE (support role, can manage roles).
    """
    guild = make_guild(HOST_ID)
    roles = {
        role_id: guild.add_role(role_id)
        for role_id in (STAFF_ROLE, MODERATOR_ROLE, SUPPORT_ROLE, SUPPORTER_ROLE)
    }
    guild.add_member(ALICE, roles[STAFF_ROLE])
    guild.add_member(BOB, roles[MODERATOR_ROLE])
    guild.add_member(CAROL)
    guild.add_member(DAVE, roles[SUPPORT_ROLE], permissions=discord.Permissions(manage_roles=True))

    bot = make_bot(guild)
    database = ScrimsDatabase(db_engine, bot=bot, clock=clock)
    seed_positions(database)
    manager = PermissionsManager(
        database, bot, host_guild_id=HOST_ID, owner_id=999, clock=clock,
    )
    return SimpleNamespace(
        database=database, bot=bot, guild=guild, roles=roles, manager=manager, clock=clock,
    )
