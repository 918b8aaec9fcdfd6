"""
scrims.bot.cogs.tasks — Periodic Background Tasks
==================================================

Scheduled jobs that run on ``discord.ext.tasks`` loops:

- **Cache sweep** — every :data:`~scrims.constants.SWEEP_INTERVAL` seconds,
  evicts expired rows from every row cache (lapsed ledger records raise
  ``user_positions_expire``, which the host manager turns into role syncs).
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from discord.ext import commands, tasks

from scrims.constants import SWEEP_INTERVAL

if TYPE_CHECKING:
    from scrims.bot.core import ScrimsBot

logger = logging.getLogger(__name__)


class PeriodicTasks(commands.Cog):
    """Cog for scheduled background maintenance tasks."""

    def __init__(self, bot: ScrimsBot) -> None:
        self.bot = bot

    async def cog_load(self) -> None:
        """Start task loops when the cog is loaded."""
        self.sweep_loop.start()

    async def cog_unload(self) -> None:
        """Cancel task loops on unload."""
        self.sweep_loop.cancel()

    # -------------------------------------------------------------------
    # Cache sweep
    # -------------------------------------------------------------------
    @tasks.loop(seconds=SWEEP_INTERVAL)
    async def sweep_loop(self):
        """Evict expired cache rows."""
        try:
            self.bot.database.sweep()
        except Exception:
            logger.exception("Cache sweep failed", extra={"task": "sweep"})

    @sweep_loop.before_loop
    async def _wait_sweep(self):
        await self.bot.wait_until_ready()


async def setup(bot: ScrimsBot) -> None:
    await bot.add_cog(PeriodicTasks(bot))
