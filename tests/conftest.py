"""
tests/conftest.py — Shared Test Fixtures
=========================================
"""

from __future__ import annotations

import os

# ---------------------------------------------------------------------------
# Ensure a valid JWT_SECRET is always set for test runs.
# This must happen before any import of ascend.api.deps which validates
# the secret at module-load time.
# ---------------------------------------------------------------------------
_TEST_JWT_SECRET = "test-secret-for-pytest-only-" + "x" * 40  # > 32 chars
os.environ.setdefault("JWT_SECRET", _TEST_JWT_SECRET)

import pytest  # noqa: E402
from sqlalchemy import Engine, create_engine  # noqa: E402
from sqlalchemy.dialects.postgresql import JSONB as PG_JSONB  # noqa: E402

from ascend.database.models import Base  # noqa: E402
from ascend.engine.bus import EventBus  # noqa: E402
from ascend.engine.cache import TTLCache  # noqa: E402
from ascend.services.guild_config_service import GuildConfigStore  # noqa: E402
from ascend.services.ledger_service import LevelLedger  # noqa: E402

_sqlite_compat_registered = False


def _register_sqlite_compat():
    """Render PG JSONB as TEXT and BigInteger as INTEGER on SQLite (idempotent).

    INTEGER keeps ``autoincrement`` working for BigInteger primary keys.
    """
    global _sqlite_compat_registered
    if _sqlite_compat_registered:
        return
    from sqlalchemy import BigInteger
    from sqlalchemy.ext.compiler import compiles

    @compiles(PG_JSONB, "sqlite")
    def _compile_jsonb_as_text(type_, compiler, **kw):
        return "TEXT"

    @compiles(BigInteger, "sqlite")
    def _compile_bigint_as_integer(type_, compiler, **kw):
        return "INTEGER"

    _sqlite_compat_registered = True


_register_sqlite_compat()


class EventRecorder:
    """Subscribe to every event type and keep what was published."""

    def __init__(self, bus: EventBus) -> None:
        from ascend.engine.bus import EventType

        self.events: list = []
        for event_type in EventType:
            bus.subscribe(event_type, self.events.append)

    def of(self, event_type) -> list:
        return [e for e in self.events if e.event_type == event_type]


@pytest.fixture
def db_engine() -> Engine:
    """In-memory SQLite engine with all Ascend tables.

    StaticPool shares the single in-memory database across the worker
    threads ``run_db`` uses.
    """
    from sqlalchemy.pool import StaticPool

    engine = create_engine(
        "sqlite://",
        echo=False,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    return engine


@pytest.fixture
def cache() -> TTLCache:
    return TTLCache()


@pytest.fixture
def bus() -> EventBus:
    return EventBus()


@pytest.fixture
def recorder(bus) -> EventRecorder:
    return EventRecorder(bus)


@pytest.fixture
def ledger(db_engine, cache, bus) -> LevelLedger:
    return LevelLedger(db_engine, cache, bus)


@pytest.fixture
def configs(db_engine, cache, bus) -> GuildConfigStore:
    return GuildConfigStore(db_engine, cache, bus)


@pytest.fixture
def admin_token():
    """Generate a valid admin JWT for use in API integration tests."""
    return make_admin_token()


def make_admin_token(sub: str = "99999", is_admin: bool = True) -> str:
    """Create a JWT.  Usable as both a fixture and a factory function."""
    import jwt

    from ascend.api.deps import JWT_ALGORITHM, JWT_SECRET

    return jwt.encode(
        {"sub": sub, "username": "FixtureAdmin", "is_admin": is_admin},
        JWT_SECRET,
        algorithm=JWT_ALGORITHM,
    )


@pytest.fixture
def api_services(db_engine):
    from ascend.api.deps import build_services
    from ascend.config import AscendConfig

    return build_services(db_engine, AscendConfig())


@pytest.fixture
def client(api_services):
    """FastAPI TestClient backed by the in-memory database."""
    from fastapi.testclient import TestClient

    from ascend.api.deps import get_services
    from ascend.api.main import app

    services = api_services
    app.dependency_overrides[get_services] = lambda: services
    try:
        yield TestClient(app, raise_server_exceptions=False)
    finally:
        app.dependency_overrides.clear()
