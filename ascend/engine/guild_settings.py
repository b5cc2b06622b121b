"""
ascend.engine.guild_settings — Effective Guild Settings
========================================================

Per-guild tuning is two layers:

1. **Defaults** — :data:`DEFAULT_GUILD_SETTINGS`, optionally overlaid by the
   ``guild_defaults`` block in ``config.yaml``.
2. **Override** — the sparse ``guild_configs`` row.  A ``None`` field means
   "inherit the default".

:func:`resolve_settings` merges them into an immutable :class:`GuildSettings`.
:func:`normalize_settings` is the single place raw input (slash commands,
API bodies, YAML, DB JSON) is coerced into typed values.  No DB I/O here.
"""

from __future__ import annotations

import enum
import logging
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field, fields, replace
from typing import Any

logger = logging.getLogger(__name__)

MAX_MESSAGE_TEMPLATE_LENGTH = 1000

DEFAULT_LEVEL_UP_MESSAGE = (
    "\U0001f389 Congratulations {user_mention}! You've reached **Level {level}**!"
)


class RoleRemovalStrategy(enum.StrEnum):
    """What happens to lower reward roles when a higher one is earned."""
    KEEP_ALL = "keep_all"
    HIGHEST_ONLY = "highest_only"
    REMOVE_PREVIOUS = "remove_previous"


class LeaderboardStyle(enum.StrEnum):
    CARD = "card"
    TEXT = "text"


@dataclass(frozen=True, slots=True)
class GuildSettings:
    """Effective configuration for one guild.  Never mutated; use ``replace``."""

    # Accrual
    xp_per_message: int = 15
    xp_per_voice_minute: int = 5
    message_cooldown_seconds: int = 60

    # Notifications
    level_up_enabled: bool = True
    level_up_channel_id: str | None = None
    level_up_message: str = DEFAULT_LEVEL_UP_MESSAGE

    # Role rewards: required level → role id
    level_role_rewards: dict[int, str] = field(default_factory=dict)
    role_removal_strategy: RoleRemovalStrategy = RoleRemovalStrategy.KEEP_ALL

    # Exclusions and multipliers, keyed by role / channel id strings
    ignored_role_ids: tuple[str, ...] = ()
    ignored_channel_ids: tuple[str, ...] = ()
    role_multipliers: dict[str, float] = field(default_factory=dict)
    channel_multipliers: dict[str, float] = field(default_factory=dict)

    # Misc
    enable_penalty_system: bool = False
    leaderboard_style: LeaderboardStyle = LeaderboardStyle.CARD
    rank_card_background: str | None = None


DEFAULT_GUILD_SETTINGS = GuildSettings()

SETTING_FIELDS: tuple[str, ...] = tuple(f.name for f in fields(GuildSettings))


# ---------------------------------------------------------------------------
# Coercion helpers
# ---------------------------------------------------------------------------
def _snowflake(value: Any) -> str:
    """Normalize a Discord id (int or numeric string) to its string form."""
    text = str(value).strip()
    if not text.isdigit():
        raise ValueError(f"Invalid Discord id: {value!r}")
    return str(int(text))


def _int_at_least(name: str, value: Any, minimum: int) -> int:
    if isinstance(value, bool):
        raise ValueError(f"{name} must be an integer")
    try:
        number = int(value)
    except (TypeError, ValueError):
        raise ValueError(f"{name} must be an integer, got {value!r}") from None
    if number < minimum:
        logger.warning("%s=%d below minimum, clamped to %d", name, number, minimum)
        return minimum
    return number


def _boolean(name: str, value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str) and value.strip().lower() in {"true", "yes", "on", "1"}:
        return True
    if isinstance(value, str) and value.strip().lower() in {"false", "no", "off", "0"}:
        return False
    if isinstance(value, int):
        return bool(value)
    raise ValueError(f"{name} must be a boolean, got {value!r}")


def _enum_or_default(name: str, enum_type: type[enum.StrEnum], value: Any, default):
    try:
        return enum_type(str(value).strip().lower())
    except ValueError:
        logger.warning("Invalid %s %r, falling back to %s", name, value, default)
        return default


def _id_list(name: str, values: Any) -> tuple[str, ...]:
    if isinstance(values, (str, int)):
        values = [values]
    # dict.fromkeys keeps first-seen order while deduplicating
    return tuple(dict.fromkeys(_snowflake(v) for v in values))


def _multiplier_map(name: str, raw: Any) -> dict[str, float]:
    result: dict[str, float] = {}
    for key, value in dict(raw).items():
        try:
            target = _snowflake(key)
            factor = float(value)
        except (TypeError, ValueError):
            logger.warning("Skipping invalid %s entry %r → %r", name, key, value)
            continue
        result[target] = max(0.0, factor)
    return result


def _reward_map(raw: Any) -> dict[int, str]:
    result: dict[int, str] = {}
    for key, value in dict(raw).items():
        try:
            level = int(key)
            role_id = _snowflake(value)
        except (TypeError, ValueError):
            logger.warning("Skipping invalid level reward %r → %r", key, value)
            continue
        if level < 1:
            logger.warning("Skipping level reward for level %d (< 1)", level)
            continue
        result[level] = role_id
    return dict(sorted(result.items()))


def _template(value: Any) -> str:
    text = str(value)
    if len(text) > MAX_MESSAGE_TEMPLATE_LENGTH:
        logger.warning(
            "Level-up message truncated from %d to %d chars",
            len(text), MAX_MESSAGE_TEMPLATE_LENGTH,
        )
        text = text[:MAX_MESSAGE_TEMPLATE_LENGTH]
    return text


# field name → coercer
_COERCERS: dict[str, Callable[[Any], Any]] = {
    "xp_per_message": lambda v: _int_at_least("xp_per_message", v, 0),
    "xp_per_voice_minute": lambda v: _int_at_least("xp_per_voice_minute", v, 0),
    "message_cooldown_seconds": lambda v: _int_at_least("message_cooldown_seconds", v, 1),
    "level_up_enabled": lambda v: _boolean("level_up_enabled", v),
    "enable_penalty_system": lambda v: _boolean("enable_penalty_system", v),
    "level_up_channel_id": _snowflake,
    "level_up_message": _template,
    "level_role_rewards": _reward_map,
    "role_removal_strategy": lambda v: _enum_or_default(
        "role_removal_strategy", RoleRemovalStrategy, v, RoleRemovalStrategy.KEEP_ALL,
    ),
    "leaderboard_style": lambda v: _enum_or_default(
        "leaderboard_style", LeaderboardStyle, v, LeaderboardStyle.CARD,
    ),
    "ignored_role_ids": lambda v: _id_list("ignored_role_ids", v),
    "ignored_channel_ids": lambda v: _id_list("ignored_channel_ids", v),
    "role_multipliers": lambda v: _multiplier_map("role_multipliers", v),
    "channel_multipliers": lambda v: _multiplier_map("channel_multipliers", v),
    "rank_card_background": str,
}


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------
def normalize_settings(raw: Mapping[str, Any]) -> dict[str, Any]:
    """Coerce raw input into typed override values.

    ``None`` is preserved and means "clear the override".

    Raises
    ------
    ValueError
        On an unknown key or a value that cannot be coerced at all.
        Invalid enum values are *not* errors; they fall back to the default.
    """
    normalized: dict[str, Any] = {}
    for name, value in raw.items():
        if name not in SETTING_FIELDS:
            raise ValueError(f"Unknown guild setting: {name!r}")
        normalized[name] = None if value is None else _COERCERS[name](value)
    return normalized


def resolve_settings(
    default: GuildSettings, override: Mapping[str, Any],
) -> GuildSettings:
    """Merge *override* on top of *default*.  ``None`` entries inherit."""
    present = {k: v for k, v in override.items() if v is not None}
    return replace(default, **present)


def settings_provenance(
    default: GuildSettings, override: Mapping[str, Any],
) -> dict[str, str]:
    """Report, per field, whether the effective value is ``default`` or ``override``."""
    return {
        name: "override" if override.get(name) is not None else "default"
        for name in SETTING_FIELDS
    }


def build_defaults(raw: Mapping[str, Any] | None = None) -> GuildSettings:
    """Build the defaults layer from an optional ``guild_defaults`` mapping."""
    if not raw:
        return DEFAULT_GUILD_SETTINGS
    return resolve_settings(DEFAULT_GUILD_SETTINGS, normalize_settings(raw))


def to_storage(name: str, value: Any) -> Any:
    """Convert a normalized value into its JSON/column representation."""
    if value is None:
        return None
    if name == "level_role_rewards":
        return {str(level): role for level, role in value.items()}
    if isinstance(value, tuple):
        return list(value)
    if isinstance(value, enum.StrEnum):
        return value.value
    if isinstance(value, dict):
        return dict(value)
    return value


def settings_to_dict(settings: GuildSettings) -> dict[str, Any]:
    """JSON-friendly dump of effective settings (API responses, ``/levelconfig show``)."""
    return {name: to_storage(name, getattr(settings, name)) for name in SETTING_FIELDS}
