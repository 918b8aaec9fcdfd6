"""
scrims.bot.cogs.membership — Member Roles, Bans & Profiles
===========================================================

Feeds gateway membership events into the permission engine:

* role changes → :meth:`PermissionsManager.on_role_change`, with the
  executor looked up in the audit log,
* bans / unbans → the ban lists behind the ``banned`` position, then a
  host ``permissions_update``,
* members leaving the host guild → host ``permissions_update``.

It also keeps the ``users`` table in step with Discord: a profile is
created when a member joins (or when the bot joins a guild) and updated
when a name or avatar changes.

Requires the GUILD_MEMBERS privileged intent.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

import discord
from discord.ext import commands

from scrims.engine.positions import UserProfile

if TYPE_CHECKING:
    from scrims.bot.core import ScrimsBot

logger = logging.getLogger(__name__)

# How many recent audit-log entries to scan for an executor
AUDIT_LOG_SCAN = 5

# Profile columns refreshed from Discord; accent colors are only sent on
# explicit fetches so they are kept from creation
PROFILE_FIELDS = ("username", "discriminator", "avatar")


class Membership(commands.Cog, name="Membership"):
    """Reacts to member role changes, bans, joins and leaves."""

    def __init__(self, bot: ScrimsBot) -> None:
        self.bot = bot

    # -------------------------------------------------------------------
    # Audit log
    # -------------------------------------------------------------------
    async def find_executor(
        self, guild: discord.Guild, action: discord.AuditLogAction, target_id: int,
    ) -> discord.abc.User | None:
        """Who performed the latest *action* on *target_id*, if visible."""
        try:
            async for entry in guild.audit_logs(limit=AUDIT_LOG_SCAN, action=action):
                if entry.target is not None and entry.target.id == target_id:
                    return entry.user
        except discord.Forbidden:
            logger.debug("No audit log access in guild %s", guild.id)
        return None

    # -------------------------------------------------------------------
    # Roles
    # -------------------------------------------------------------------
    @commands.Cog.listener()
    async def on_member_update(self, before: discord.Member, after: discord.Member) -> None:
        try:
            if {role.id for role in before.roles} != {role.id for role in after.roles}:
                executor = await self.find_executor(
                    after.guild, discord.AuditLogAction.member_role_update, after.id,
                )
                await self.bot.permissions.on_role_change(before, after, executor)
        except Exception:
            logger.exception(
                "Error processing role change for %s", after.id,
                extra={"event_type": "member_update", "user_id": after.id},
            )

    # -------------------------------------------------------------------
    # Bans
    # -------------------------------------------------------------------
    @commands.Cog.listener()
    async def on_member_ban(self, guild: discord.Guild, user: discord.User | discord.Member) -> None:
        try:
            self.bot.permissions.on_ban(guild.id, user.id)
            if self.bot.host is not None:
                executor = await self.find_executor(guild, discord.AuditLogAction.ban, user.id)
                await self.bot.host.on_ban_change(guild, user, executor)
        except Exception:
            logger.exception("Error processing ban of %s in %s", user.id, guild.id)

    @commands.Cog.listener()
    async def on_member_unban(self, guild: discord.Guild, user: discord.User) -> None:
        try:
            self.bot.permissions.on_unban(guild.id, user.id)
            if self.bot.host is not None:
                executor = await self.find_executor(guild, discord.AuditLogAction.unban, user.id)
                await self.bot.host.on_ban_change(guild, user, executor)
        except Exception:
            logger.exception("Error processing unban of %s in %s", user.id, guild.id)

    # -------------------------------------------------------------------
    # Join / leave
    # -------------------------------------------------------------------
    @commands.Cog.listener()
    async def on_member_join(self, member: discord.Member) -> None:
        try:
            if member.bot:
                return
            if member.guild.id != self.bot.cfg.host_guild_id or self.bot.cfg.serves_host:
                await self.ensure_profile(member)
            logger.info("Member joined: %s (ID: %d)", member.display_name, member.id)
        except Exception:
            logger.exception(
                "Error processing member_join for %s", member.id,
                extra={"event_type": "member_join", "user_id": member.id},
            )

    @commands.Cog.listener()
    async def on_member_remove(self, member: discord.Member) -> None:
        try:
            if self.bot.host is not None:
                await self.bot.host.on_member_remove(member)
        except Exception:
            logger.exception(
                "Error processing member_leave for %s", member.id,
                extra={"event_type": "member_leave", "user_id": member.id},
            )

    @commands.Cog.listener()
    async def on_guild_join(self, guild: discord.Guild) -> None:
        try:
            await self.initialize_guild_members(guild)
        except Exception:
            logger.exception("Error initializing profiles of guild %s", guild.id)

    @commands.Cog.listener()
    async def on_user_update(self, before: discord.User, after: discord.User) -> None:
        try:
            await self.update_profile(after)
        except Exception:
            logger.exception("Error updating profile of %s", after.id)

    # -------------------------------------------------------------------
    # Profiles
    # -------------------------------------------------------------------
    async def initialize_guild_members(self, guild: discord.Guild) -> int:
        """Create missing profiles for every cached member.  Returns the count created."""
        profiles = await self.bot.database.users.fetch_map(None, "user_id")
        created = 0
        for member in guild.members:
            if member.bot or member.id in profiles:
                continue
            await self.bot.database.users.create(UserProfile.data_from_user(member))
            created += 1
        logger.info("Initialized %d profiles in guild %s", created, guild.id)
        return created

    async def ensure_profile(self, user: discord.abc.User) -> UserProfile:
        users = self.bot.database.users
        profile = users.cache.find(user.id)
        if profile is None:
            found = await users.fetch({"user_id": user.id})
            profile = found[0] if found else None
        if profile is None:
            return await users.create(UserProfile.data_from_user(user))
        await self.update_profile(user, profile)
        return profile

    async def update_profile(self, user: discord.abc.User, profile: UserProfile | None = None) -> None:
        """Write changed name / avatar fields of an existing profile."""
        users = self.bot.database.users
        if profile is None:
            profile = users.cache.find(user.id)
        if profile is None:
            return
        current = UserProfile.data_from_user(user)
        changes = {
            key: current[key] for key in PROFILE_FIELDS
            if profile.get_field(key) != current[key]
        }
        if changes:
            await users.update({"user_id": user.id}, changes)


async def setup(bot: ScrimsBot) -> None:
    await bot.add_cog(Membership(bot))
