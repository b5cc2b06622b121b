"""
ascend.api.routes.admin — Guild configuration & resets (JWT admin)
===================================================================

Edits made here reach a running bot once its config cache entry expires
(``config_cache_ttl_seconds``).
"""

from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, HTTPException
from pydantic import BaseModel, ConfigDict

from ascend.api.deps import AdminDep, ServicesDep
from ascend.engine.guild_settings import settings_to_dict

router = APIRouter(prefix="/admin/guilds", tags=["admin"])
logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Pydantic schemas
# ---------------------------------------------------------------------------
class GuildConfigPatch(BaseModel):
    """Partial update.  Explicit ``null`` clears the override for that field."""

    model_config = ConfigDict(extra="forbid")

    xp_per_message: int | None = None
    xp_per_voice_minute: int | None = None
    message_cooldown_seconds: int | None = None
    level_up_enabled: bool | None = None
    level_up_channel_id: str | None = None
    level_up_message: str | None = None
    level_role_rewards: dict[str, str] | None = None
    # Free-form so invalid values are coerced to the default, not rejected
    role_removal_strategy: str | None = None
    ignored_role_ids: list[str] | None = None
    ignored_channel_ids: list[str] | None = None
    role_multipliers: dict[str, float] | None = None
    channel_multipliers: dict[str, float] | None = None
    enable_penalty_system: bool | None = None
    leaderboard_style: str | None = None
    rank_card_background: str | None = None


class ResetRequest(BaseModel):
    user_id: str | None = None


async def _config_payload(services, guild_id: int, settings=None) -> dict[str, Any]:
    settings = settings or await services.configs.get_config(guild_id)
    return {
        "guild_id": str(guild_id),
        "settings": settings_to_dict(settings),
        "provenance": await services.configs.provenance(guild_id),
    }


@router.get("/{guild_id}/config")
async def get_guild_config(guild_id: int, services: ServicesDep, admin: AdminDep):
    return await _config_payload(services, guild_id)


@router.patch("/{guild_id}/config")
async def patch_guild_config(
    guild_id: int, body: GuildConfigPatch, services: ServicesDep, admin: AdminDep,
):
    changes = body.model_dump(exclude_unset=True)
    try:
        settings = await services.configs.update_config(guild_id, changes)
    except ValueError as exc:
        raise HTTPException(422, str(exc))
    logger.info("Admin %s updated guild %s config: %s", admin.get("sub"), guild_id, sorted(changes))
    return await _config_payload(services, guild_id, settings)


@router.delete("/{guild_id}/config")
async def delete_guild_config(guild_id: int, services: ServicesDep, admin: AdminDep):
    removed = await services.configs.delete_config(guild_id)
    return {"deleted": removed}


@router.post("/{guild_id}/reset")
async def reset_levels(
    guild_id: int, body: ResetRequest, services: ServicesDep, admin: AdminDep,
):
    if body.user_id is not None:
        if not body.user_id.isdigit():
            raise HTTPException(422, "user_id must be a Discord id")
        existed = await services.ledger.reset_user(guild_id, int(body.user_id))
        return {"reset": "user", "user_id": body.user_id, "existed": existed}
    deleted = await services.ledger.reset_server(guild_id)
    logger.warning("Admin %s reset all levels in guild %s", admin.get("sub"), guild_id)
    return {"reset": "server", "deleted": deleted}
