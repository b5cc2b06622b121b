"""
ascend.api.deps — FastAPI dependency injection
===============================================
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import Annotated

import jwt
from fastapi import Depends, Header, HTTPException, status
from jwt.exceptions import InvalidTokenError
from sqlalchemy import Engine

from ascend.config import AscendConfig, load_config
from ascend.database.engine import create_db_engine
from ascend.engine.bus import EventBus, EventType
from ascend.engine.cache import TTLCache
from ascend.services.guild_config_service import GuildConfigStore
from ascend.services.ledger_service import LevelLedger

logger = logging.getLogger(__name__)

_WEAK_SECRETS = frozenset({
    "change-me",
    "secret",
    "dev",
    "",
})

_MIN_SECRET_LENGTH = 32

JWT_ALGORITHM = "HS256"


def _load_jwt_secret() -> str:
    """Load and validate JWT_SECRET from the environment.

    Raises RuntimeError at import time if the secret is missing, a known weak
    default, or shorter than 32 characters.
    """
    secret = os.getenv("JWT_SECRET", "")
    if not secret:
        raise RuntimeError(
            "JWT_SECRET environment variable is not set. "
            "Generate one with: python -c \"import secrets; print(secrets.token_urlsafe(64))\""
        )
    if secret in _WEAK_SECRETS:
        raise RuntimeError(
            f"JWT_SECRET is set to a known weak default ('{secret}'). "
            "Please set a strong, unique secret."
        )
    if len(secret) < _MIN_SECRET_LENGTH:
        raise RuntimeError(
            f"JWT_SECRET is too short ({len(secret)} chars). "
            f"Minimum length is {_MIN_SECRET_LENGTH} characters."
        )
    return secret


JWT_SECRET: str = _load_jwt_secret()


@dataclass(frozen=True, slots=True)
class Services:
    ledger: LevelLedger
    configs: GuildConfigStore


@lru_cache(maxsize=1)
def get_engine() -> Engine:
    return create_db_engine()


@lru_cache(maxsize=1)
def get_config() -> AscendConfig:
    path = Path(os.getenv("ASCEND_CONFIG", "config.yaml"))
    if not path.exists():
        logger.warning("%s not found, API running on built-in guild defaults", path)
        return AscendConfig()
    return load_config(path)


def build_services(engine: Engine, cfg: AscendConfig) -> Services:
    """Ledger + config store with their own cache and bus (API process)."""
    cache = TTLCache(default_ttl=cfg.cache_ttl_seconds)
    bus = EventBus()
    bus.subscribe(
        EventType.OPERATION_FAILED,
        lambda e: logger.warning("Operation %s failed: %s", e.operation, e.detail),
    )
    return Services(
        ledger=LevelLedger(engine, cache, bus, ttl=cfg.cache_ttl_seconds),
        configs=GuildConfigStore(
            engine, cache, bus,
            defaults=cfg.guild_defaults, ttl=cfg.config_cache_ttl_seconds,
        ),
    )


@lru_cache(maxsize=1)
def get_services() -> Services:
    return build_services(get_engine(), get_config())


def get_current_admin(
    authorization: Annotated[str | None, Header()] = None,
) -> dict:
    """Validate JWT and return admin user payload. Raises 401 if invalid."""
    if not authorization or not authorization.startswith("Bearer "):
        raise HTTPException(status.HTTP_401_UNAUTHORIZED, "Missing token")
    token = authorization.split(" ", 1)[1]
    try:
        payload = jwt.decode(token, JWT_SECRET, algorithms=[JWT_ALGORITHM])
    except InvalidTokenError:
        raise HTTPException(status.HTTP_401_UNAUTHORIZED, "Invalid token")
    if not payload.get("is_admin"):
        raise HTTPException(status.HTTP_403_FORBIDDEN, "Not admin")
    return payload


ServicesDep = Annotated[Services, Depends(get_services)]
AdminDep = Annotated[dict, Depends(get_current_admin)]
