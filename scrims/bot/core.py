"""
scrims.bot.core — Bot Instance & Cog Loader
============================================

:class:`ScrimsBot` is a ``commands.Bot`` that carries the project-wide
state so every cog can reach it through ``self.bot``:

* ``bot.cfg``          — the parsed :class:`~scrims.config.ScrimsConfig`
* ``bot.database``     — the :class:`~scrims.database.client.ScrimsDatabase`
* ``bot.permissions``  — the :class:`~scrims.engine.permissions.PermissionsManager`
* ``bot.host``         — the :class:`~scrims.bot.host.HostGuildManager`
  (``None`` without a host guild)

Startup order: cogs are loaded in ``setup_hook``, the database connects
(positions, role bindings and ledger are cached in full) before the gateway
login, and ``on_ready`` syncs the slash commands and loads ban lists.
"""

from __future__ import annotations

import logging
import os

import discord
from discord.ext import commands

from scrims.bot.host import HostGuildManager
from scrims.config import ScrimsConfig
from scrims.database.client import ScrimsDatabase
from scrims.engine.permissions import PermissionsManager

logger = logging.getLogger(__name__)

# Cog modules to load on startup
EXTENSIONS: list[str] = [
    "scrims.bot.cogs.membership",
    "scrims.bot.cogs.positions",
    "scrims.bot.cogs.position_sync",
    "scrims.bot.cogs.tasks",
]


class ScrimsBot(commands.Bot):
    """Custom Bot subclass that carries project-wide state."""

    def __init__(self, cfg: ScrimsConfig, database: ScrimsDatabase) -> None:
        # GUILD_MEMBERS (privileged) keeps the member cache the role checks
        # depend on; presences and message content are not needed.
        intents = discord.Intents.default()
        intents.members = True
        intents.presences = False

        super().__init__(command_prefix=cfg.bot_prefix, intents=intents)

        self.cfg = cfg
        self.database = database
        database.bot = self

        self.permissions = PermissionsManager(
            database,
            self,
            host_guild_id=cfg.host_guild_id,
            owner_id=cfg.owner_id,
            member_cache_threshold=cfg.member_cache_threshold,
        )
        self.host: HostGuildManager | None = (
            HostGuildManager(self, cfg.host_guild_id) if cfg.host_guild_id else None
        )

    # -----------------------------------------------------------------------
    # Lifecycle hooks
    # -----------------------------------------------------------------------
    async def setup_hook(self) -> None:
        """Connect the database and load every cog.

        A cog that fails to load is logged and skipped.
        """
        await self.database.connect()
        if self.host is not None:
            self.host.attach()

        for ext in EXTENSIONS:
            try:
                await self.load_extension(ext)
                logger.info("Loaded extension: %s", ext)
            except Exception as exc:
                logger.error("Failed to load extension %s: %s", ext, exc)

    async def on_ready(self) -> None:
        """Fired when the bot has connected and the cache is populated."""
        assert self.user is not None  # guaranteed after on_ready
        logger.info("Logged in as %s (ID: %s)", self.user.name, self.user.id)

        # --- Slash-command sync ---------------------------------------------
        dev_guild_id = os.getenv("DEV_GUILD_ID")
        if dev_guild_id:
            guild = discord.Object(id=int(dev_guild_id))
            self.tree.copy_global_to(guild=guild)
            synced = await self.tree.sync(guild=guild)
            logger.info("Synced %d commands to dev guild %s", len(synced), dev_guild_id)
        else:
            synced = await self.tree.sync()
            logger.info("Synced %d commands globally", len(synced))

        await self._load_bans()

    async def close(self) -> None:
        """Graceful shutdown — stop the change listener and the gateway."""
        logger.info("Bot shutting down…")
        if self.host is not None:
            self.host.detach()
        await self.database.close()
        await super().close()

    # -----------------------------------------------------------------------
    # Ban lists (back the "banned" position)
    # -----------------------------------------------------------------------
    async def _load_bans(self) -> None:
        for guild in self.guilds:
            try:
                banned = [entry.user.id async for entry in guild.bans(limit=None)]
            except discord.Forbidden:
                logger.warning("Missing ban list access in guild %s — bans unknown", guild.id)
                continue
            except discord.HTTPException:
                logger.exception("Failed to load bans of guild %s", guild.id)
                continue
            self.permissions.set_bans(guild.id, banned)
