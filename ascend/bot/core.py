"""
ascend.bot.core — Bot Instance & Service Wiring
================================================

:class:`AscendBot` owns every long-lived object: the DB engine, the TTL
cache, the event bus and the services built on them.  Cogs reach them via
``self.bot.ledger``, ``self.bot.configs`` and so on.

Subscribers wired here:
  level_increased  → RoleRewardService, LevelUpAnnouncer
  level_decreased  → RoleRewardService
  operation_failed → warning log
"""

from __future__ import annotations

import logging
import os

import discord
from discord.ext import commands
from sqlalchemy import Engine

from ascend.bot.gateway import (
    DiscordNotifier,
    DiscordPresenceSource,
    DiscordRoleGateway,
    voice_members_of,
)
from ascend.config import AscendConfig
from ascend.engine.bus import EventBus, EventType, OperationFailed
from ascend.engine.cache import TTLCache
from ascend.services.activity_service import ActivityService
from ascend.services.announcement_service import LevelUpAnnouncer
from ascend.services.guild_config_service import GuildConfigStore
from ascend.services.ledger_service import LevelLedger
from ascend.services.role_service import RoleRewardService
from ascend.services.voice_service import VoiceAccumulator

logger = logging.getLogger(__name__)

# Cog modules to load on startup.
EXTENSIONS: list[str] = [
    "ascend.bot.cogs.activity",
    "ascend.bot.cogs.voice",
    "ascend.bot.cogs.meta",
    "ascend.bot.cogs.admin",
]


def _log_failure(event: OperationFailed) -> None:
    logger.warning(
        "Operation %s failed (guild=%s user=%s): %s",
        event.operation, event.guild_id, event.user_id, event.detail,
    )


class AscendBot(commands.Bot):
    """Custom Bot subclass that carries the leveling services.

    Parameters
    ----------
    cfg:
        The parsed :class:`AscendConfig` from ``config.yaml``.
    engine:
        A SQLAlchemy :class:`Engine` connected to PostgreSQL.
    """

    def __init__(self, cfg: AscendConfig, engine: Engine) -> None:
        intents = discord.Intents.default()
        intents.message_content = True    # Privileged: empty-content check
        intents.members = True            # Privileged: member cache for roles
        intents.voice_states = True
        intents.presences = False

        super().__init__(command_prefix=cfg.bot_prefix, intents=intents)

        self.cfg = cfg
        self.engine = engine
        self.cache = TTLCache(default_ttl=cfg.cache_ttl_seconds)
        self.bus = EventBus()

        self.configs = GuildConfigStore(
            engine, self.cache, self.bus,
            defaults=cfg.guild_defaults, ttl=cfg.config_cache_ttl_seconds,
        )
        self.ledger = LevelLedger(engine, self.cache, self.bus, ttl=cfg.cache_ttl_seconds)
        self.activity = ActivityService(self.ledger, self.configs)
        self.voice = VoiceAccumulator(
            self.activity,
            DiscordPresenceSource(self),
            sweep_interval_ms=cfg.voice_sweep_minutes * 60_000,
        )
        self.notifier = DiscordNotifier(self)
        self.roles = RoleRewardService(self.configs, self.ledger, self.bus, DiscordRoleGateway(self))
        self.announcer = LevelUpAnnouncer(self.configs, self.ledger, self.bus, self.notifier)

        self.roles.register()
        self.announcer.register()
        self.bus.subscribe(EventType.OPERATION_FAILED, _log_failure)
        self._voice_seeded = False

    # -----------------------------------------------------------------------
    # Lifecycle hooks
    # -----------------------------------------------------------------------
    async def setup_hook(self) -> None:
        """Load cogs; one broken cog shouldn't take down the whole bot."""
        for ext in EXTENSIONS:
            try:
                await self.load_extension(ext)
                logger.info("Loaded extension: %s", ext)
            except Exception as exc:
                logger.error("Failed to load extension %s: %s", ext, exc)

    async def on_ready(self) -> None:
        """Fired when the bot has connected and the cache is populated."""
        assert self.user is not None
        logger.info("Logged in as %s (ID: %s)", self.user.name, self.user.id)

        dev_guild_id = os.getenv("DEV_GUILD_ID")
        if dev_guild_id:
            guild = discord.Object(id=int(dev_guild_id))
            self.tree.copy_global_to(guild=guild)
            synced = await self.tree.sync(guild=guild)
            logger.info("Synced %d commands to dev guild %s", len(synced), dev_guild_id)
        else:
            synced = await self.tree.sync()
            logger.info("Synced %d commands globally", len(synced))

        # on_ready also fires after reconnects; only the first one seeds the table
        if not self._voice_seeded:
            self.voice.rebuild(voice_members_of(list(self.guilds)))
            self._voice_seeded = True

    async def close(self) -> None:
        """Graceful shutdown: flush voice time before the gateway closes."""
        logger.info("Bot shutting down…")
        try:
            await self.voice.shutdown()
        except Exception:
            logger.exception("Voice flush on shutdown failed")
        await super().close()
