"""
ascend.config — YAML Configuration Loader
==========================================

``config.yaml`` carries infrastructure settings (prefix, admin role, cache
and sweep tuning) plus an optional ``guild_defaults`` block that replaces
the built-in per-guild defaults.  Per-guild overrides live in the
``guild_configs`` table.

Usage::

    from ascend.config import load_config

    cfg = load_config()               # reads ./config.yaml by default
    print(cfg.guild_defaults.xp_per_message)
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path

import yaml

from ascend.engine.cache import CONFIG_TTL_SECONDS, DEFAULT_TTL_SECONDS
from ascend.engine.guild_settings import DEFAULT_GUILD_SETTINGS, GuildSettings, build_defaults


@dataclass(frozen=True, slots=True)
class AscendConfig:
    """Immutable configuration loaded from ``config.yaml``."""

    # Discord
    bot_prefix: str = "!"
    admin_role_id: int | None = None  # None → fall back to Manage Server permission

    # Dashboard API
    api_port: int = 8000

    # Tuning
    cache_ttl_seconds: int = DEFAULT_TTL_SECONDS
    config_cache_ttl_seconds: int = CONFIG_TTL_SECONDS
    voice_sweep_minutes: int = 5

    # Defaults layer for every guild
    guild_defaults: GuildSettings = field(default=DEFAULT_GUILD_SETTINGS)


def load_config(path: str | Path = "config.yaml") -> AscendConfig:
    """Read *path* and return an :class:`AscendConfig`.

    Raises
    ------
    FileNotFoundError
        If the YAML file doesn't exist.
    ValueError
        If ``guild_defaults`` names an unknown setting or an uncoercible value.
    """
    config_path = Path(path)
    if not config_path.exists():
        raise FileNotFoundError(
            f"Configuration file not found: {config_path.resolve()}\n"
            "Hint: copy config.yaml.example → config.yaml and edit it."
        )

    with open(config_path, encoding="utf-8") as fh:
        raw: dict = yaml.safe_load(fh) or {}

    return AscendConfig(
        bot_prefix=raw.get("bot_prefix", "!"),
        admin_role_id=int(raw["admin_role_id"]) if raw.get("admin_role_id") else None,
        api_port=int(raw.get("api_port", 8000)),
        cache_ttl_seconds=int(raw.get("cache_ttl_seconds", DEFAULT_TTL_SECONDS)),
        config_cache_ttl_seconds=int(raw.get("config_cache_ttl_seconds", CONFIG_TTL_SECONDS)),
        voice_sweep_minutes=max(1, int(raw.get("voice_sweep_minutes", 5))),
        guild_defaults=build_defaults(raw.get("guild_defaults")),
    )
