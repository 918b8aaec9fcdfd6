"""
scrims.engine.permissions — Permission & Position Decision Engine
==================================================================

Answers two questions for a user:

* **Does the user hold position X?** (:meth:`PermissionsManager.has_position`)
  1. Unknown position → ``INDETERMINATE``.
  2. Holding ``banned`` denies every other position.
  3. An active ledger record grants; a revoked position is denied.  A lapsed
     record counts as absent.
  4. Otherwise the host guild's roles decide; an uncached guild, a member
     cache that is not loaded, or a position without role bindings leave
     the answer ``INDETERMINATE``.

* **Does the user satisfy a requirement?** (:meth:`PermissionsManager.has_permission`)
  ``required_roles``, ``required_permissions`` and ``required_positions``
  must all hold.  ``position_level``, ``allowed_positions``,
  ``allowed_permissions``, ``allowed_roles`` and ``allowed_users`` form one
  disjunction: it passes when none of them is specified, otherwise at least
  one specified check must be true.  Indeterminate position checks never
  count as true.

The manager also reconciles Discord roles against positions (which bound
roles a member is missing or should not have) and turns member role changes
into ``update`` events carrying the gained and lost positions.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

import discord
from pydantic import BaseModel, ConfigDict, field_validator

from scrims.constants import (
    BANNED_POSITION,
    DEFAULT_MEMBER_CACHE_THRESHOLD,
    DEFAULT_OWNER_ID,
)
from scrims.engine.events import Observable
from scrims.engine.ledger import LedgerSnapshot, PositionLedger
from scrims.engine.positions import Position, PositionRole, UserPosition, position_sort_key
from scrims.engine.verdict import Verdict

if TYPE_CHECKING:
    from scrims.database.client import ScrimsDatabase

__all__ = [
    "PermissibleUser",
    "Permissions",
    "PermissionsManager",
    "PositionCheck",
    "PositionsUpdate",
    "Verdict",
]

logger = logging.getLogger(__name__)

PositionRef = int | str
LedgerSource = PositionLedger | LedgerSnapshot | None


# ---------------------------------------------------------------------------
# Requirement model
# ---------------------------------------------------------------------------
class Permissions(BaseModel):
    """Declarative requirement attached to a command or action.

    Positions are referenced by id (``int``) or name (``str``); roles and
    users by snowflake; Discord permissions by their discord.py flag name
    (``"manage_roles"``).
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    required_roles: tuple[int, ...] = ()
    required_permissions: tuple[str, ...] = ()
    required_positions: tuple[PositionRef, ...] = ()

    position_level: PositionRef | None = None
    allowed_positions: tuple[PositionRef, ...] = ()
    allowed_permissions: tuple[str, ...] = ()
    allowed_roles: tuple[int, ...] = ()
    allowed_users: tuple[int, ...] = ()

    @field_validator("required_permissions", "allowed_permissions")
    @classmethod
    def _known_permissions(cls, value: tuple[str, ...]) -> tuple[str, ...]:
        unknown = [name for name in value if name not in discord.Permissions.VALID_FLAGS]
        if unknown:
            raise ValueError(f"Unknown Discord permission(s): {', '.join(unknown)}")
        return value

    @classmethod
    def coerce(cls, spec: Permissions | Mapping[str, Any]) -> Permissions:
        if isinstance(spec, Permissions):
            return spec
        return cls.model_validate(dict(spec))


# ---------------------------------------------------------------------------
# Results & events
# ---------------------------------------------------------------------------
@dataclass(frozen=True, slots=True)
class PositionCheck:
    """Outcome of a position check.

    ``position`` is the resolved position (``None`` if unknown) and
    ``holding`` the ledger record that decided it, if any.
    """

    verdict: Verdict
    position: Position | None = None
    holding: UserPosition | None = None

    def __bool__(self) -> bool:
        raise TypeError("PositionCheck has no truth value; inspect .verdict")

    @property
    def granted(self) -> bool:
        return self.verdict is Verdict.GRANTED

    @property
    def denied(self) -> bool:
        return self.verdict is Verdict.DENIED


@dataclass(frozen=True, slots=True)
class PositionsUpdate:
    """Payload of the manager's ``update`` event."""

    member: PermissibleUser
    executor: discord.abc.User | None
    gained: tuple[Position, ...] = ()
    lost: tuple[Position, ...] = ()


@dataclass(frozen=True, slots=True)
class PermissibleUser:
    """A Discord user (or member) paired with their ledger.

    ``member`` is set when the user was resolved inside a guild; member-only
    checks (roles, guild permissions) fail without it.
    """

    user: discord.abc.User
    ledger: PositionLedger
    manager: PermissionsManager = field(repr=False)
    member: discord.Member | None = None

    @property
    def id(self) -> int:
        return self.user.id

    @property
    def positions(self) -> list[PositionCheck]:
        """Granted positions, most senior first."""
        return self.manager.get_permitted_positions(self.id, self.ledger)

    def has_permission(self, spec: Permissions | Mapping[str, Any]) -> bool:
        return self.manager.has_permission(self.id, self.ledger, self.member, spec)

    def has_position(self, ref: Position | PositionRef) -> PositionCheck:
        return self.manager.has_position(self.id, self.ledger, ref)


# ---------------------------------------------------------------------------
# Manager
# ---------------------------------------------------------------------------
class PermissionsManager(Observable):
    """Decision engine over the position caches and the gateway state.

    Emits ``update`` with a :class:`PositionsUpdate` when a member's role
    change moved them into or out of a position.
    """

    def __init__(
        self,
        database: ScrimsDatabase,
        bot: Any = None,
        *,
        host_guild_id: int | None = None,
        owner_id: int | None = DEFAULT_OWNER_ID,
        member_cache_threshold: int = DEFAULT_MEMBER_CACHE_THRESHOLD,
        clock: Callable[[], float] = time.time,
    ) -> None:
        super().__init__()
        self.database = database
        self.bot = bot
        self.host_guild_id = host_guild_id
        self.owner_id = owner_id
        self.member_cache_threshold = member_cache_threshold
        self._clock = clock
        # guild_id → banned user ids; absent guild = ban list not loaded
        self._bans: dict[int, set[int]] = {}

    # -------------------------------------------------------------------
    # Lookups
    # -------------------------------------------------------------------
    @property
    def positions(self) -> list[Position]:
        return self.database.positions.cache.values()

    def _resolve_guild(self, guild_id: int | None) -> discord.Guild | None:
        if guild_id is None or self.bot is None:
            return None
        return self.bot.get_guild(guild_id)

    def resolve_position(self, ref: Position | PositionRef | None) -> Position | None:
        if ref is None:
            return None
        return self.database.positions.cache.find(Position.resolve(ref))

    # -------------------------------------------------------------------
    # Ledgers & permissible users
    # -------------------------------------------------------------------
    def resolve_ledger(self, user_id: int, source: LedgerSource = None) -> PositionLedger:
        """The ledger of *user_id* from *source*, or from the cached records."""
        if isinstance(source, PositionLedger):
            return source
        if isinstance(source, LedgerSnapshot):
            return source.for_user(user_id)
        records = self.database.user_positions.cache.filter(
            lambda row: row.get_field("user_id") == user_id
        )
        return PositionLedger(user_id, records, clock=self._clock)

    async def fetch_ledger(self, user_id: int) -> PositionLedger:
        records = await self.database.user_positions.fetch({"user_id": user_id})
        return PositionLedger(user_id, records, clock=self._clock)

    async def fetch_snapshot(self) -> LedgerSnapshot:
        records = await self.database.user_positions.fetch()
        return LedgerSnapshot(records, clock=self._clock)

    def permissify_user(self, user: discord.abc.User, ledger: LedgerSource = None) -> PermissibleUser:
        return PermissibleUser(user=user, ledger=self.resolve_ledger(user.id, ledger), manager=self)

    def permissify_member(self, member: discord.Member, ledger: LedgerSource = None) -> PermissibleUser:
        return PermissibleUser(
            user=member, ledger=self.resolve_ledger(member.id, ledger), manager=self, member=member,
        )

    async def fetch_permissify_user(self, user: discord.abc.User) -> PermissibleUser:
        return self.permissify_user(user, await self.fetch_ledger(user.id))

    async def fetch_permissify_member(self, member: discord.Member) -> PermissibleUser:
        return self.permissify_member(member, await self.fetch_ledger(member.id))

    # -------------------------------------------------------------------
    # Bans
    # -------------------------------------------------------------------
    def set_bans(self, guild_id: int, user_ids: Iterable[int]) -> None:
        self._bans[guild_id] = set(user_ids)
        logger.info("Loaded %d bans for guild %s", len(self._bans[guild_id]), guild_id)

    def on_ban(self, guild_id: int, user_id: int) -> None:
        if guild_id in self._bans:
            self._bans[guild_id].add(user_id)

    def on_unban(self, guild_id: int, user_id: int) -> None:
        if guild_id in self._bans:
            self._bans[guild_id].discard(user_id)

    def is_banned(self, guild_id: int, user_id: int | None) -> bool | None:
        """``None`` when the guild's ban list has not been loaded."""
        bans = self._bans.get(guild_id)
        if bans is None or user_id is None:
            return None
        return user_id in bans

    # -------------------------------------------------------------------
    # Guild state
    # -------------------------------------------------------------------
    def has_role(self, guild_id: int, user_id: int | None, role_id: int) -> Verdict:
        guild = self._resolve_guild(guild_id)
        if guild is None:
            return Verdict.INDETERMINATE
        # Member cache not (fully) loaded
        if len(guild.members) < self.member_cache_threshold:
            return Verdict.INDETERMINATE
        member = guild.get_member(user_id) if user_id is not None else None
        if member is None:
            return Verdict.DENIED
        return Verdict.of(member.get_role(role_id) is not None)

    def get_guild_position_roles(
        self, guild_id: int, position: Position | PositionRef | None = None,
    ) -> list[PositionRole]:
        """Role bindings in *guild_id*, optionally only those of *position*."""
        rows = self.database.position_roles.cache.filter(
            lambda row: row.get_field("guild_id") == guild_id
        )
        if position is None:
            return rows
        resolved = self.resolve_position(position)
        if resolved is None:
            return []
        return [row for row in rows if row.id_position == resolved.id_position]

    def get_position_required_roles(
        self, guild_id: int, position: Position | PositionRef,
    ) -> list[discord.Role]:
        """Existing Discord roles bound to *position* in *guild_id*."""
        roles = (row.role for row in self.get_guild_position_roles(guild_id, position))
        return [role for role in roles if role is not None]

    def has_guild_position(
        self, guild_id: int, user_id: int | None, position: Position | PositionRef,
    ) -> Verdict:
        """Whether the guild's roles (or ban list, for ``banned``) grant *position*."""
        resolved = self.resolve_position(position)
        if resolved is None:
            return Verdict.INDETERMINATE
        if resolved.is_banned:
            return Verdict.of(self.is_banned(guild_id, user_id))

        results = [
            self.has_role(guild_id, user_id, role.id)
            for role in self.get_position_required_roles(guild_id, resolved)
        ]
        if any(result is Verdict.GRANTED for result in results):
            return Verdict.GRANTED
        if not results or any(result is Verdict.INDETERMINATE for result in results):
            return Verdict.INDETERMINATE
        return Verdict.DENIED

    def get_member_positions(self, member: discord.Member) -> list[Position]:
        """Positions whose bound roles *member* currently holds."""
        found: dict[int, Position] = {}
        for row in self.get_guild_position_roles(member.guild.id):
            position = row.position
            if position is None or position.id_position in found:
                continue
            if member.get_role(row.role_id) is not None:
                found[position.id_position] = position
        return list(found.values())

    # -------------------------------------------------------------------
    # Positions
    # -------------------------------------------------------------------
    def has_position(
        self,
        user_id: int | None,
        ledger: LedgerSource,
        position: Position | PositionRef,
        *,
        _seen: frozenset[int] = frozenset(),
    ) -> PositionCheck:
        resolved = self.resolve_position(position)
        if resolved is None:
            return PositionCheck(Verdict.INDETERMINATE)
        seen = _seen | {resolved.id_position}

        if not resolved.is_banned:
            banned = self.resolve_position(BANNED_POSITION)
            if banned is not None and banned.id_position not in seen:
                if self.has_position(user_id, ledger, banned, _seen=seen).granted:
                    return PositionCheck(Verdict.DENIED, resolved)

        if ledger is not None and user_id is not None:
            user_ledger = self.resolve_ledger(user_id, ledger)
            verdict = user_ledger.check(resolved)
            if verdict is not Verdict.INDETERMINATE:
                return PositionCheck(verdict, resolved, user_ledger.get(resolved))

        if self.host_guild_id is None or user_id is None:
            return PositionCheck(Verdict.INDETERMINATE, resolved)
        return PositionCheck(self.has_guild_position(self.host_guild_id, user_id, resolved), resolved)

    def has_position_level(
        self, user_id: int | None, ledger: LedgerSource, position_level: Position | PositionRef | None,
    ) -> bool | None:
        """Whether the user holds a position at least as senior.

        ``None`` when the level position is unknown or unranked.
        """
        position = self.resolve_position(position_level)
        if position is None:
            return None
        return self._has_allowed_positions(user_id, ledger, position.get_position_level_positions())

    def get_permitted_positions(self, user_id: int | None, ledger: LedgerSource) -> list[PositionCheck]:
        """Granted positions, most senior first."""
        checks = (
            self.has_position(user_id, ledger, position)
            for position in sorted(self.positions, key=position_sort_key)
        )
        return [check for check in checks if check.granted]

    # -------------------------------------------------------------------
    # Requirements
    # -------------------------------------------------------------------
    def has_permission(
        self,
        user_id: int | None,
        ledger: LedgerSource,
        member: discord.Member | None,
        permissions: Permissions | Mapping[str, Any],
    ) -> bool:
        spec = Permissions.coerce(permissions)

        if user_id is None and ledger is None:
            return False
        if self.owner_id is not None and user_id == self.owner_id:
            return True

        if not self._has_required_roles(member, spec.required_roles):
            return False
        if not self._has_required_permissions(member, spec.required_permissions):
            return False
        if not self._has_required_positions(user_id, ledger, spec.required_positions):
            return False

        # An unknown or unranked level position is not applicable (None)
        allowed = (
            self.has_position_level(user_id, ledger, spec.position_level),
            self._has_allowed_positions(user_id, ledger, spec.allowed_positions),
            self._has_allowed_permissions(member, spec.allowed_permissions),
            self._has_allowed_roles(member, spec.allowed_roles),
            self._has_allowed_users(user_id, spec.allowed_users),
        )
        if all(result is None for result in allowed):
            return True
        return any(result is True for result in allowed)

    def get_permission_roles(self, guild_id: int, permissions: Permissions | Mapping[str, Any]) -> list[int]:
        """Every role id in *guild_id* a requirement refers to, directly or via positions."""
        spec = Permissions.coerce(permissions)
        roles: list[int] = [*spec.required_roles, *spec.allowed_roles]

        refs: list[Any] = [*spec.required_positions, *spec.allowed_positions]
        level = self.resolve_position(spec.position_level)
        if level is not None:
            refs.extend(level.get_position_level_positions())

        for ref in refs:
            position = self.resolve_position(ref)
            if position is not None:
                roles.extend(position.get_role_ids(guild_id))
        return list(dict.fromkeys(roles))

    def _has_required_roles(self, member: discord.Member | None, roles: tuple[int, ...]) -> bool:
        if member is None:
            return not roles
        return all(member.get_role(role_id) is not None for role_id in roles)

    def _has_allowed_roles(self, member: discord.Member | None, roles: tuple[int, ...]) -> bool | None:
        if not roles:
            return None
        if member is None:
            return False
        return any(member.get_role(role_id) is not None for role_id in roles)

    def _has_allowed_users(self, user_id: int | None, users: tuple[int, ...]) -> bool | None:
        if not users:
            return None
        return user_id in users

    @staticmethod
    def _member_has(member: discord.Member, name: str) -> bool:
        perms = member.guild_permissions
        return perms.administrator or getattr(perms, name)

    def _has_required_permissions(self, member: discord.Member | None, names: tuple[str, ...]) -> bool:
        if member is None:
            return not names
        return all(self._member_has(member, name) for name in names)

    def _has_allowed_permissions(self, member: discord.Member | None, names: tuple[str, ...]) -> bool | None:
        if not names:
            return None
        if member is None:
            return False
        return any(self._member_has(member, name) for name in names)

    def _has_required_positions(self, user_id: int | None, ledger: LedgerSource, refs: Iterable[Any]) -> bool:
        return all(self.has_position(user_id, ledger, ref).granted for ref in refs)

    def _has_allowed_positions(self, user_id: int | None, ledger: LedgerSource, refs: Iterable[Any]) -> bool | None:
        refs = list(refs)
        if not refs:
            return None
        return any(self.has_position(user_id, ledger, ref).granted for ref in refs)

    # -------------------------------------------------------------------
    # Role reconciliation
    # -------------------------------------------------------------------
    @staticmethod
    def can_manage_role(role: discord.Role) -> bool:
        """Whether the bot may add or remove *role* from members."""
        me = role.guild.me
        if me is None or not role.is_assignable():
            return False
        perms = me.guild_permissions
        return perms.administrator or perms.manage_roles

    def _position_checks(
        self, member: discord.Member, ledger: LedgerSource, rows: Iterable[PositionRole],
    ) -> dict[int, PositionCheck]:
        checks: dict[int, PositionCheck] = {}
        for row in rows:
            if row.id_position not in checks and row.position is not None:
                checks[row.id_position] = self.has_position(member.id, ledger, row.position)
        return checks

    def get_permitted_position_roles(self, member: discord.Member, ledger: LedgerSource) -> list[PositionRole]:
        """Bindings in the member's guild whose position the member holds."""
        rows = self.get_guild_position_roles(member.guild.id)
        checks = self._position_checks(member, ledger, rows)
        return [row for row in rows if row.id_position in checks and checks[row.id_position].granted]

    def get_missing_position_roles(self, member: discord.Member, ledger: LedgerSource) -> list[PositionRole]:
        """Permitted roles the member lacks and the bot can give."""
        return [
            row for row in self.get_permitted_position_roles(member, ledger)
            if member.get_role(row.role_id) is None
            and row.role is not None
            and self.can_manage_role(row.role)
        ]

    def get_forbidden_position_roles(self, member: discord.Member, ledger: LedgerSource) -> list[PositionRole]:
        """Bindings whose position the member is explicitly denied."""
        rows = self.get_guild_position_roles(member.guild.id)
        checks = self._position_checks(member, ledger, rows)
        permitted = {
            row.role_id for row in rows
            if row.id_position in checks and checks[row.id_position].granted
        }
        return [
            row for row in rows
            if row.role_id not in permitted
            and row.id_position in checks
            and checks[row.id_position].denied
        ]

    def get_wrong_position_roles(self, member: discord.Member, ledger: LedgerSource) -> list[PositionRole]:
        """Forbidden roles the member holds and the bot can take away."""
        return [
            row for row in self.get_forbidden_position_roles(member, ledger)
            if member.get_role(row.role_id) is not None
            and row.role is not None
            and self.can_manage_role(row.role)
        ]

    # -------------------------------------------------------------------
    # Gateway reaction
    # -------------------------------------------------------------------
    async def on_role_change(
        self,
        before: discord.Member,
        after: discord.Member,
        executor: discord.abc.User | None = None,
    ) -> PositionsUpdate | None:
        """Emit ``update`` if a role change moved *after* into or out of a position.

        Changes made by the bot itself are ignored.
        """
        bot_user = getattr(self.bot, "user", None)
        if executor is not None and bot_user is not None and executor.id == bot_user.id:
            return None

        old = self.get_member_positions(before)
        new = self.get_member_positions(after)
        old_ids = {position.id_position for position in old}
        new_ids = {position.id_position for position in new}
        gained = tuple(position for position in new if position.id_position not in old_ids)
        lost = tuple(position for position in old if position.id_position not in new_ids)
        if not gained and not lost:
            return None

        member = await self.fetch_permissify_member(after)
        update = PositionsUpdate(member=member, executor=executor, gained=gained, lost=lost)
        logger.info(
            "Positions of %s changed: +%s -%s",
            after.id,
            [position.name for position in gained],
            [position.name for position in lost],
        )
        self.emit("update", update)
        return update
