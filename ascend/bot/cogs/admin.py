"""
ascend.bot.cogs.admin — Admin Slash Commands
=============================================

- /xp give | take                — manual grant / penalty
- /levelconfig show | set | reward | multiplier | ignore | notify | reset
- /levels reset-user | reset-server | sync-roles

All commands require the configured ``admin_role_id`` (or Manage Server when
no admin role is configured).  Replies are ephemeral.
"""

from __future__ import annotations

import json
import logging
from typing import TYPE_CHECKING

import discord
from discord import app_commands
from discord.ext import commands

from ascend.engine.events import ActivitySource
from ascend.engine.guild_settings import settings_to_dict

if TYPE_CHECKING:
    from ascend.bot.core import AscendBot

logger = logging.getLogger(__name__)

# Scalar settings editable through /levelconfig set
SCALAR_SETTINGS: list[str] = [
    "xp_per_message",
    "xp_per_voice_minute",
    "message_cooldown_seconds",
    "role_removal_strategy",
    "leaderboard_style",
    "enable_penalty_system",
    "rank_card_background",
]


def is_admin():
    """Check for the configured admin role, else the Manage Server permission."""
    async def predicate(interaction: discord.Interaction) -> bool:
        bot: AscendBot = interaction.client  # type: ignore[assignment]
        user = interaction.user
        if not isinstance(user, discord.Member):
            return False
        admin_role_id = bot.cfg.admin_role_id
        if admin_role_id is not None:
            return any(role.id == admin_role_id for role in user.roles)
        return user.guild_permissions.manage_guild
    return app_commands.check(predicate)


class Admin(commands.Cog, name="Admin"):
    """Leveling administration."""

    xp = app_commands.Group(name="xp", description="Adjust member experience.", guild_only=True)
    levelconfig = app_commands.Group(
        name="levelconfig", description="Configure leveling for this server.", guild_only=True,
    )
    levels = app_commands.Group(
        name="levels", description="Reset and repair leveling data.", guild_only=True,
    )

    def __init__(self, bot: AscendBot) -> None:
        self.bot = bot

    async def cog_app_command_error(
        self, interaction: discord.Interaction, error: app_commands.AppCommandError,
    ) -> None:
        if isinstance(error, app_commands.CheckFailure):
            message = "⛔ You don't have permission to do that."
        else:
            original = getattr(error, "original", error)
            if isinstance(original, ValueError):
                message = f"❌ {original}"
            else:
                logger.exception("Admin command failed", exc_info=original)
                message = "❌ Something went wrong. Check the bot logs."
        if interaction.response.is_done():
            await interaction.followup.send(message, ephemeral=True)
        else:
            await interaction.response.send_message(message, ephemeral=True)

    # -------------------------------------------------------------------
    # /xp
    # -------------------------------------------------------------------
    @xp.command(name="give", description="Grant XP to a member.")
    @app_commands.describe(member="Who receives the XP", amount="Positive amount of XP")
    @is_admin()
    async def xp_give(
        self, interaction: discord.Interaction, member: discord.Member,
        amount: app_commands.Range[int, 1],
    ) -> None:
        result = await self.bot.ledger.grant_experience(
            interaction.guild_id, member.id, amount, ActivitySource.MANUAL,
        )
        if not result.applied:
            await interaction.response.send_message(
                "⚠️ The grant could not be applied. Try again.", ephemeral=True,
            )
            return
        level_note = (
            f" and reached **Level {result.new_level}**" if result.leveled_up else ""
        )
        await interaction.response.send_message(
            f"✅ {member.mention} received **{amount:,} XP**{level_note}.", ephemeral=True,
        )

    @xp.command(name="take", description="Remove XP from a member (penalty system).")
    @app_commands.describe(member="Who loses the XP", amount="Positive amount", reason="Why")
    @is_admin()
    async def xp_take(
        self, interaction: discord.Interaction, member: discord.Member,
        amount: app_commands.Range[int, 1], reason: str = "Manual penalty",
    ) -> None:
        user = await self.bot.activity.apply_penalty(
            interaction.guild_id, member.id, amount, reason,
        )
        if user is None:
            await interaction.response.send_message(
                "ℹ️ The penalty system is disabled for this server "
                "(`/levelconfig set enable_penalty_system true`).",
                ephemeral=True,
            )
            return
        await interaction.response.send_message(
            f"✅ {member.mention} now has **{user.xp:,} XP** (Level {user.level}).",
            ephemeral=True,
        )

    # -------------------------------------------------------------------
    # /levelconfig
    # -------------------------------------------------------------------
    @levelconfig.command(name="show", description="Show the effective configuration.")
    @is_admin()
    async def config_show(self, interaction: discord.Interaction) -> None:
        guild_id = interaction.guild_id
        settings = await self.bot.configs.get_config(guild_id)
        provenance = await self.bot.configs.provenance(guild_id)
        lines = []
        for name, value in settings_to_dict(settings).items():
            marker = "•" if provenance[name] == "override" else "◦"
            lines.append(f"{marker} `{name}` = `{json.dumps(value, ensure_ascii=False)}`")
        embed = discord.Embed(
            title="Leveling configuration",
            description="\n".join(lines)[:4000],
            color=discord.Color.blurple(),
        )
        embed.set_footer(text="• server override   ◦ default")
        await interaction.response.send_message(embed=embed, ephemeral=True)

    @levelconfig.command(name="set", description="Set a scalar setting.")
    @app_commands.describe(setting="Setting name", value="New value (leave empty to reset to default)")
    @app_commands.choices(setting=[app_commands.Choice(name=s, value=s) for s in SCALAR_SETTINGS])
    @is_admin()
    async def config_set(
        self, interaction: discord.Interaction, setting: str, value: str | None = None,
    ) -> None:
        await self.bot.configs.update_config(interaction.guild_id, {setting: value})
        shown = value if value is not None else "default"
        await interaction.response.send_message(f"✅ `{setting}` → `{shown}`", ephemeral=True)

    @levelconfig.command(name="reward", description="Map a level to a reward role.")
    @app_commands.describe(level="Required level", role="Role to award (omit to remove the mapping)")
    @is_admin()
    async def config_reward(
        self, interaction: discord.Interaction, level: app_commands.Range[int, 1],
        role: discord.Role | None = None,
    ) -> None:
        await self.bot.configs.set_level_reward(
            interaction.guild_id, level, str(role.id) if role else None,
        )
        if role:
            message = f"✅ Level {level} now awards {role.mention}."
        else:
            message = f"✅ Level {level} no longer awards a role."
        await interaction.response.send_message(message, ephemeral=True)

    @levelconfig.command(name="multiplier", description="Set a role or channel XP multiplier.")
    @app_commands.describe(
        role="Role to boost", channel="Channel to boost",
        factor="Multiplier (omit to remove)",
    )
    @is_admin()
    async def config_multiplier(
        self,
        interaction: discord.Interaction,
        role: discord.Role | None = None,
        channel: discord.abc.GuildChannel | None = None,
        factor: float | None = None,
    ) -> None:
        if (role is None) == (channel is None):
            raise ValueError("Pick exactly one of role or channel.")
        if factor is not None and factor < 0:
            raise ValueError("Multiplier must be zero or positive.")
        kind, target = ("role", role) if role else ("channel", channel)
        await self.bot.configs.set_multiplier(interaction.guild_id, kind, str(target.id), factor)
        shown = f"×{factor}" if factor is not None else "removed"
        await interaction.response.send_message(
            f"✅ {target.mention} multiplier {shown}.", ephemeral=True,
        )

    @levelconfig.command(name="ignore", description="Exclude a role or channel from earning XP.")
    @app_commands.describe(
        role="Role to ignore", channel="Channel to ignore",
        ignored="True to ignore, False to stop ignoring",
    )
    @is_admin()
    async def config_ignore(
        self,
        interaction: discord.Interaction,
        role: discord.Role | None = None,
        channel: discord.abc.GuildChannel | None = None,
        ignored: bool = True,
    ) -> None:
        if (role is None) == (channel is None):
            raise ValueError("Pick exactly one of role or channel.")
        kind, target = ("role", role) if role else ("channel", channel)
        await self.bot.configs.set_ignored(interaction.guild_id, kind, str(target.id), ignored)
        state = "ignored" if ignored else "no longer ignored"
        await interaction.response.send_message(f"✅ {target.mention} {state}.", ephemeral=True)

    @levelconfig.command(name="notify", description="Configure level-up announcements.")
    @app_commands.describe(
        enabled="Announce level-ups",
        channel="Announcement channel (omit to keep current)",
        message="Template: {user_mention} {username} {user_id} {level} {rank} {guild_name}",
    )
    @is_admin()
    async def config_notify(
        self,
        interaction: discord.Interaction,
        enabled: bool | None = None,
        channel: discord.TextChannel | None = None,
        message: str | None = None,
    ) -> None:
        changes: dict[str, object] = {}
        if enabled is not None:
            changes["level_up_enabled"] = enabled
        if channel is not None:
            changes["level_up_channel_id"] = str(channel.id)
        if message is not None:
            changes["level_up_message"] = message
        if not changes:
            raise ValueError("Nothing to change.")
        await self.bot.configs.update_config(interaction.guild_id, changes)
        await interaction.response.send_message("✅ Announcement settings updated.", ephemeral=True)

    @levelconfig.command(name="reset", description="Revert every setting to the defaults.")
    @is_admin()
    async def config_reset(self, interaction: discord.Interaction) -> None:
        removed = await self.bot.configs.delete_config(interaction.guild_id)
        message = "✅ Configuration reset to defaults." if removed else "ℹ️ Already on defaults."
        await interaction.response.send_message(message, ephemeral=True)

    # -------------------------------------------------------------------
    # /levels
    # -------------------------------------------------------------------
    @levels.command(name="reset-user", description="Zero a member's XP and level.")
    @is_admin()
    async def reset_user(self, interaction: discord.Interaction, member: discord.Member) -> None:
        existed = await self.bot.ledger.reset_user(interaction.guild_id, member.id)
        message = (
            f"✅ {member.mention}'s level data was reset." if existed
            else f"ℹ️ {member.mention} had no level data."
        )
        await interaction.response.send_message(message, ephemeral=True)

    @levels.command(name="reset-server", description="Delete ALL level data for this server.")
    @app_commands.describe(confirm="Type True to confirm")
    @is_admin()
    async def reset_server(self, interaction: discord.Interaction, confirm: bool = False) -> None:
        if not confirm:
            await interaction.response.send_message(
                "⚠️ This deletes every member's XP. Re-run with `confirm: True`.", ephemeral=True,
            )
            return
        deleted = await self.bot.ledger.reset_server(interaction.guild_id)
        await interaction.response.send_message(
            f"✅ Removed {deleted:,} level records.", ephemeral=True,
        )

    @levels.command(name="sync-roles", description="Re-apply reward roles for a member's level.")
    @is_admin()
    async def sync_roles(self, interaction: discord.Interaction, member: discord.Member) -> None:
        await interaction.response.defer(ephemeral=True)
        diff = await self.bot.roles.sync_member(interaction.guild_id, member.id)
        if diff is None:
            await interaction.followup.send("⚠️ Could not read the member's roles.", ephemeral=True)
            return
        await interaction.followup.send(
            f"✅ Roles synced: +{len(diff.add)} / -{len(diff.remove)}.", ephemeral=True,
        )


async def setup(bot: AscendBot) -> None:
    await bot.add_cog(Admin(bot))
