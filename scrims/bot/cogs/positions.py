"""
scrims.bot.cogs.positions — Position Slash Commands
====================================================

- /positions view — the positions a member holds, most senior first
- /positions give — record a (optionally time-limited) position for a member
- /positions take — remove a member's position record

``give`` and ``take`` write the ledger; the host guild roles follow through
the ``permissions_update`` the change triggers.  Both require the Manage
Roles permission (or a bypass identity).
"""

from __future__ import annotations

import logging
import time
from typing import TYPE_CHECKING, Optional

import discord
from discord import app_commands
from discord.ext import commands

from scrims.bot.checks import MissingPermissions, permissible, requires, send_missing_permissions
from scrims.engine.positions import position_sort_key

if TYPE_CHECKING:
    from scrims.bot.core import ScrimsBot

logger = logging.getLogger(__name__)

SECONDS_PER_DAY = 24 * 60 * 60

MANAGE_POSITIONS = {"required_permissions": ("manage_roles",)}


class Positions(commands.GroupCog, group_name="positions", group_description="View and manage positions."):
    def __init__(self, bot: ScrimsBot) -> None:
        self.bot = bot
        super().__init__()

    async def position_autocomplete(
        self, interaction: discord.Interaction, current: str,
    ) -> list[app_commands.Choice[str]]:
        positions = sorted(self.bot.permissions.positions, key=position_sort_key)
        return [
            app_commands.Choice(name=position.name, value=position.name)
            for position in positions
            if current.lower() in position.name.lower()
        ][:25]

    # -------------------------------------------------------------------
    # /positions view
    # -------------------------------------------------------------------
    @app_commands.command(name="view", description="Show the positions a member holds.")
    @app_commands.describe(member="The member to inspect (default: you)")
    async def view(self, interaction: discord.Interaction, member: discord.Member | None = None) -> None:
        if member is None:
            user = permissible(interaction)
        else:
            user = self.bot.permissions.permissify_member(member)

        checks = user.positions
        if not checks:
            await interaction.response.send_message(
                f"**{user.user.display_name}** holds no positions.", ephemeral=True,
            )
            return

        lines = []
        for check in checks:
            line = f"• **{check.position.name}**"
            expires_at = check.holding.get_field("expires_at") if check.holding is not None else None
            if isinstance(expires_at, int):
                line += f" (expires <t:{expires_at}:R>)"
            lines.append(line)

        embed = discord.Embed(
            title=f"Positions of {user.user.display_name}",
            description="\n".join(lines),
            color=discord.Color.blurple(),
        )
        await interaction.response.send_message(embed=embed, ephemeral=True)

    # -------------------------------------------------------------------
    # /positions give
    # -------------------------------------------------------------------
    @app_commands.command(name="give", description="Give a position to a member.")
    @app_commands.describe(
        member="The member receiving the position",
        position="Position name",
        days="Days until the position expires (default: permanent)",
    )
    @app_commands.autocomplete(position=position_autocomplete)
    @requires(MANAGE_POSITIONS)
    async def give(
        self,
        interaction: discord.Interaction,
        member: discord.Member,
        position: str,
        days: Optional[app_commands.Range[int, 1, 3650]] = None,
    ) -> None:
        resolved = self.bot.permissions.resolve_position(position)
        if resolved is None:
            await interaction.response.send_message(f"❌ Unknown position **{position}**.", ephemeral=True)
            return

        now = int(time.time())
        data = {
            "user_id": member.id,
            "id_position": resolved.id_position,
            "given_at": now,
            "expires_at": now + days * SECONDS_PER_DAY if days else None,
            "executor_id": interaction.user.id,
        }
        selector = {"user_id": member.id, "id_position": resolved.id_position}
        user_positions = self.bot.database.user_positions

        existing = await user_positions.fetch(selector)
        if existing:
            await user_positions.update(selector, data, executor_id=interaction.user.id)
        else:
            await user_positions.create(data, executor_id=interaction.user.id)

        logger.info(
            "%s gave %s to %s (days=%s)", interaction.user.id, resolved.name, member.id, days,
        )
        suffix = f" for {days} day(s)" if days else ""
        await interaction.response.send_message(
            f"✅ Gave **{resolved.name}** to {member.mention}{suffix}.", ephemeral=True,
        )

    # -------------------------------------------------------------------
    # /positions take
    # -------------------------------------------------------------------
    @app_commands.command(name="take", description="Take a position from a member.")
    @app_commands.describe(member="The member losing the position", position="Position name")
    @app_commands.autocomplete(position=position_autocomplete)
    @requires(MANAGE_POSITIONS)
    async def take(self, interaction: discord.Interaction, member: discord.Member, position: str) -> None:
        resolved = self.bot.permissions.resolve_position(position)
        if resolved is None:
            await interaction.response.send_message(f"❌ Unknown position **{position}**.", ephemeral=True)
            return

        removed = await self.bot.database.user_positions.remove(
            {"user_id": member.id, "id_position": resolved.id_position},
            executor_id=interaction.user.id,
        )
        if not removed:
            await interaction.response.send_message(
                f"{member.mention} has no **{resolved.name}** record.", ephemeral=True,
            )
            return

        logger.info("%s took %s from %s", interaction.user.id, resolved.name, member.id)
        await interaction.response.send_message(
            f"✅ Took **{resolved.name}** from {member.mention}.", ephemeral=True,
        )

    # -------------------------------------------------------------------
    # Error handler for missing permissions
    # -------------------------------------------------------------------
    async def cog_app_command_error(
        self, interaction: discord.Interaction, error: app_commands.AppCommandError
    ) -> None:
        if isinstance(error, (MissingPermissions, app_commands.CheckFailure)):
            await send_missing_permissions(interaction)
        else:
            raise error


async def setup(bot: ScrimsBot) -> None:
    await bot.add_cog(Positions(bot))
