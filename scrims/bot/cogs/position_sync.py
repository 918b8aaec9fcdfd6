"""
scrims.bot.cogs.position_sync — Role Reconciliation in the Host Guild
======================================================================

Listens for the host manager's ``permissions_update`` and brings the
member's host-guild roles in line with their positions: bound roles of
granted positions are added, bound roles of denied positions are removed.
Indeterminate positions are left alone.

Only active when this instance serves the host guild.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

import discord
from discord.ext import commands

from scrims.bot.host import PERMISSIONS_UPDATE, PermissionsUpdate

if TYPE_CHECKING:
    from scrims.bot.core import ScrimsBot

logger = logging.getLogger(__name__)


class PositionSync(commands.Cog, name="PositionSync"):
    """Applies missing position roles and removes wrong ones."""

    def __init__(self, bot: ScrimsBot) -> None:
        self.bot = bot
        self._unsubscribe = None

    async def cog_load(self) -> None:
        if self.bot.host is not None and self.bot.cfg.serves_host:
            self._unsubscribe = self.bot.host.subscribe(PERMISSIONS_UPDATE, self.on_permissions_update)

    async def cog_unload(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None

    async def on_permissions_update(self, update: PermissionsUpdate) -> None:
        try:
            await self.sync_member(update)
        except Exception:
            logger.exception("Role sync failed for %s", update.user.id)

    async def sync_member(self, update: PermissionsUpdate) -> tuple[int, int]:
        """Fix one member's roles.  Returns (roles added, roles removed)."""
        host = self.bot.host
        member = host.get_member(update.user.id) if host is not None else None
        if member is None:
            return (0, 0)

        permissions = self.bot.permissions
        ledger = update.user.ledger
        missing = [row.role for row in permissions.get_missing_position_roles(member, ledger)]
        wrong = [row.role for row in permissions.get_wrong_position_roles(member, ledger)]

        try:
            if missing:
                await member.add_roles(*missing, reason="Position roles sync")
            if wrong:
                await member.remove_roles(*wrong, reason="Position roles sync")
        except discord.HTTPException:
            logger.exception("Discord rejected role sync for %s", member.id)
            return (0, 0)

        if missing or wrong:
            logger.info(
                "Synced roles of %s: +%s -%s (executor=%s)",
                member.id,
                [role.name for role in missing],
                [role.name for role in wrong],
                update.executor_id,
            )
        return (len(missing), len(wrong))


async def setup(bot: ScrimsBot) -> None:
    await bot.add_cog(PositionSync(bot))
