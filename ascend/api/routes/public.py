"""
ascend.api.routes.public — Unauthenticated read endpoints
==========================================================
"""

from __future__ import annotations

from fastapi import APIRouter, Query

from ascend.api.deps import ServicesDep
from ascend.constants import LEADERBOARD_DEFAULT_LIMIT, level_progress
from ascend.engine.records import UserLevelSnapshot

router = APIRouter(prefix="/guilds", tags=["public"])


def _user_payload(user: UserLevelSnapshot) -> dict:
    return {
        "user_id": str(user.user_id),
        "xp": user.xp,
        "level": user.level,
        "total_messages": user.total_messages,
        "voice_minutes": user.total_voice_ms // 60_000,
    }


@router.get("/{guild_id}/leaderboard")
async def get_leaderboard(
    guild_id: int,
    services: ServicesDep,
    limit: int = Query(LEADERBOARD_DEFAULT_LIMIT),
):
    entries = await services.ledger.leaderboard(guild_id, limit)
    return {
        "guild_id": str(guild_id),
        "entries": [
            {"position": i, **_user_payload(e)} for i, e in enumerate(entries, start=1)
        ],
    }


@router.get("/{guild_id}/users/{user_id}")
async def get_user(guild_id: int, user_id: int, services: ServicesDep):
    user = await services.ledger.get_user_level_data(guild_id, user_id)
    progress = level_progress(user.xp)
    return {
        **_user_payload(user),
        "rank": await services.ledger.rank(guild_id, user_id),
        "next_level_xp": progress.next_level_xp,
        "xp_to_next_level": progress.remaining,
    }
