"""
scrims.bot.checks — Permission Requirements for Slash Commands
===============================================================

``@requires({...})`` attaches a :class:`~scrims.engine.permissions.Permissions`
requirement to an app command.  The requirement is validated when the
command is defined, so a typo in a permission name fails at import time
rather than on the first invocation.

A user who does not satisfy it (including an indeterminate position check)
gets :class:`MissingPermissions`, which cogs answer with
:func:`send_missing_permissions`.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import TYPE_CHECKING, Any

import discord
from discord import app_commands

from scrims.engine.permissions import PermissibleUser, Permissions

if TYPE_CHECKING:
    from scrims.bot.core import ScrimsBot

logger = logging.getLogger(__name__)

MISSING_PERMISSIONS_MESSAGE = "🔒 You are missing the required permissions to use this command."


class MissingPermissions(app_commands.CheckFailure):
    """The invoking user does not satisfy the command's requirement."""

    def __init__(self, requirement: Permissions) -> None:
        super().__init__("missing_permissions")
        self.requirement = requirement


def permissible(interaction: discord.Interaction) -> PermissibleUser:
    """The invoking user with their cached ledger."""
    bot: ScrimsBot = interaction.client  # type: ignore[assignment]
    if isinstance(interaction.user, discord.Member):
        return bot.permissions.permissify_member(interaction.user)
    return bot.permissions.permissify_user(interaction.user)


def requires(spec: Permissions | Mapping[str, Any]):
    """App-command check enforcing *spec*."""
    requirement = Permissions.coerce(spec)

    async def predicate(interaction: discord.Interaction) -> bool:
        if not permissible(interaction).has_permission(requirement):
            logger.info(
                "User %s denied /%s",
                interaction.user.id,
                interaction.command.qualified_name if interaction.command else "?",
            )
            raise MissingPermissions(requirement)
        return True

    return app_commands.check(predicate)


async def send_missing_permissions(interaction: discord.Interaction) -> None:
    if interaction.response.is_done():
        await interaction.followup.send(MISSING_PERMISSIONS_MESSAGE, ephemeral=True)
    else:
        await interaction.response.send_message(MISSING_PERMISSIONS_MESSAGE, ephemeral=True)
