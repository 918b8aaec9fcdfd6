"""
scrims.bot.host — Host Guild Manager
=====================================

The host guild is the community whose roles stand in for positions when a
user has no ledger record.  :class:`HostGuildManager` turns everything that
can change a user's positions into one ``permissions_update`` event:

* ledger records created, removed or expired (``database.ipc``),
* role bindings of the host guild created or removed,
* a member's role change that moved them across a position
  (the permissions manager's ``update``),
* bans, unbans and members leaving the host guild.

The position-sync cog listens for ``permissions_update`` and fixes the
member's roles.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

import discord

from scrims.engine.events import Observable
from scrims.engine.positions import Position, PositionRole, UserPosition
from scrims.engine.verdict import Verdict

if TYPE_CHECKING:
    from scrims.bot.core import ScrimsBot
    from scrims.database.client import ScrimsDatabase
    from scrims.database.ipc import ChangeMessage
    from scrims.engine.permissions import PermissibleUser, PermissionsManager, PositionsUpdate

logger = logging.getLogger(__name__)

PERMISSIONS_UPDATE = "permissions_update"


@dataclass(frozen=True, slots=True)
class PermissionsUpdate:
    """Payload of ``permissions_update``.

    ``expiration`` is the ``expires_at`` of a newly given position, if any.
    """

    user: PermissibleUser
    executor_id: int | None = None
    expiration: int | None = None


class HostGuildManager(Observable):
    def __init__(self, bot: ScrimsBot, host_id: int) -> None:
        super().__init__()
        self.bot = bot
        self.host_id = host_id
        self._unsubscribers: list = []

    def __repr__(self) -> str:
        return f"<HostGuildManager host={self.host_id}>"

    @property
    def database(self) -> ScrimsDatabase:
        return self.bot.database

    @property
    def permissions(self) -> PermissionsManager:
        return self.bot.permissions

    @property
    def guild(self) -> discord.Guild | None:
        return self.bot.get_guild(self.host_id)

    @property
    def position_roles(self) -> list[PositionRole]:
        return self.permissions.get_guild_position_roles(self.host_id)

    def get_member(self, user_id: int) -> discord.Member | None:
        guild = self.guild
        return guild.get_member(user_id) if guild is not None else None

    def has_role(self, user_id: int, role_id: int) -> Verdict:
        return self.permissions.has_role(self.host_id, user_id, role_id)

    def is_banned(self, user_id: int) -> bool | None:
        return self.permissions.is_banned(self.host_id, user_id)

    def is_role_configured(self, id_position: int) -> bool:
        return any(row.id_position == id_position for row in self.position_roles)

    def has_position(self, user_id: int, position: Position | int | str) -> Verdict:
        return self.permissions.has_guild_position(self.host_id, user_id, position)

    def get_position_required_roles(self, position: Position | int | str) -> list[discord.Role]:
        return self.permissions.get_position_required_roles(self.host_id, position)

    def get_member_positions(self, user_id: int) -> list[Position]:
        member = self.get_member(user_id)
        return self.permissions.get_member_positions(member) if member is not None else []

    # -------------------------------------------------------------------
    # Subscriptions
    # -------------------------------------------------------------------
    def attach(self) -> None:
        """Subscribe to the database change channel and the permissions manager."""
        if self._unsubscribers:
            return
        ipc = self.database.ipc
        self._unsubscribers = [
            ipc.subscribe("user_positions_create", self.on_position_create),
            ipc.subscribe("user_positions_remove", self.on_position_remove),
            ipc.subscribe("user_positions_expire", self.on_position_expire),
            ipc.subscribe("position_roles_create", self.on_position_role_change),
            ipc.subscribe("position_roles_remove", self.on_position_role_change),
            self.permissions.subscribe("update", self.on_positions_change),
        ]
        logger.info("Host guild manager attached (host=%s)", self.host_id)

    def detach(self) -> None:
        for unsubscribe in self._unsubscribers:
            unsubscribe()
        self._unsubscribers = []

    # -------------------------------------------------------------------
    # Handlers
    # -------------------------------------------------------------------
    async def on_position_create(self, message: ChangeMessage) -> None:
        executor_id = message.executor_id
        if executor_id is None:
            executor_id = message.row.get("executor_id")
        await self.on_position_change(True, message, executor_id)

    async def on_position_remove(self, message: ChangeMessage) -> None:
        await self.on_position_change(False, message, message.executor_id)

    async def on_position_expire(self, message: ChangeMessage) -> None:
        await self.on_position_change(False, message, None)

    async def on_position_change(self, exists: bool, message: ChangeMessage, executor_id: int | None) -> None:
        record = UserPosition(message.row, client=self.database)
        user = record.user
        if user is None:
            return
        ledger = await self.permissions.fetch_ledger(record.user_id)
        if not exists:
            ledger.revoke(record)
        elif record.id_position not in ledger:
            ledger.add(record)
        expiration = record.get_field("expires_at") if exists else None
        self.emit(
            PERMISSIONS_UPDATE,
            PermissionsUpdate(self.permissions.permissify_user(user, ledger), executor_id, expiration),
        )

    async def on_position_role_change(self, message: ChangeMessage) -> None:
        if message.row.get("guild_id") != self.host_id:
            return
        guild = self.guild
        if guild is None:
            return
        snapshot = await self.permissions.fetch_snapshot()
        for member in guild.members:
            self.emit(
                PERMISSIONS_UPDATE,
                PermissionsUpdate(self.permissions.permissify_user(member, snapshot), message.executor_id),
            )

    async def on_positions_change(self, update: PositionsUpdate) -> None:
        member = update.member.member
        if member is None or member.guild.id != self.host_id:
            return
        executor_id = update.executor.id if update.executor is not None else None
        self.emit(PERMISSIONS_UPDATE, PermissionsUpdate(update.member, executor_id))

    async def on_member_remove(self, member: discord.Member) -> None:
        if member.guild.id != self.host_id:
            return
        user = await self.permissions.fetch_permissify_user(member)
        self.emit(PERMISSIONS_UPDATE, PermissionsUpdate(user))

    async def on_ban_change(
        self, guild: discord.Guild, user: discord.abc.User, executor: discord.abc.User | None = None,
    ) -> None:
        if guild.id != self.host_id:
            return
        permissible = await self.permissions.fetch_permissify_user(user)
        self.emit(
            PERMISSIONS_UPDATE,
            PermissionsUpdate(permissible, executor.id if executor is not None else None),
        )
