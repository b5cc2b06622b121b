"""
ascend.database.models — SQLAlchemy 2.0 Data Models
====================================================

Tables:
- user_levels    — Per-(guild, user) experience ledger
- guild_configs  — Sparse per-guild override layer (NULL = inherit default)
"""

from __future__ import annotations

from datetime import UTC, datetime

from sqlalchemy import (
    BigInteger,
    Boolean,
    DateTime,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


def utcnow() -> datetime:
    """Timezone-aware now with microsecond precision (leaderboard tie-break)."""
    return datetime.now(UTC)


# ---------------------------------------------------------------------------
# Base
# ---------------------------------------------------------------------------
class Base(DeclarativeBase):
    """Shared base for all Ascend ORM models."""


# ---------------------------------------------------------------------------
# user_levels
# ---------------------------------------------------------------------------
class UserLevel(Base):
    """Experience ledger row.  ``level`` is always derived from ``xp``."""

    __tablename__ = "user_levels"
    __table_args__ = (
        UniqueConstraint("guild_id", "user_id", name="uq_user_levels_guild_user"),
        Index("ix_user_levels_guild_xp", "guild_id", "xp", "updated_at"),
    )

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    guild_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    user_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    xp: Mapped[int] = mapped_column(BigInteger, default=0, nullable=False)
    level: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    last_message_at_ms: Mapped[int] = mapped_column(BigInteger, default=0, nullable=False)
    total_messages: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    total_voice_ms: Mapped[int] = mapped_column(BigInteger, default=0, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(),
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False,
    )

    def __repr__(self) -> str:
        return (
            f"<UserLevel guild={self.guild_id} user={self.user_id} "
            f"xp={self.xp} level={self.level}>"
        )


# ---------------------------------------------------------------------------
# guild_configs
# ---------------------------------------------------------------------------
class GuildConfig(Base):
    """Per-guild overrides.  Every tunable column is nullable."""

    __tablename__ = "guild_configs"

    guild_id: Mapped[int] = mapped_column(BigInteger, primary_key=True)

    xp_per_message: Mapped[int | None] = mapped_column(Integer)
    xp_per_voice_minute: Mapped[int | None] = mapped_column(Integer)
    message_cooldown_seconds: Mapped[int | None] = mapped_column(Integer)

    level_up_enabled: Mapped[bool | None] = mapped_column(Boolean)
    level_up_channel_id: Mapped[str | None] = mapped_column(String(32))
    level_up_message: Mapped[str | None] = mapped_column(Text)

    # {"5": "role id", ...}
    level_role_rewards: Mapped[dict | None] = mapped_column(JSONB)
    role_removal_strategy: Mapped[str | None] = mapped_column(String(32))

    ignored_role_ids: Mapped[list | None] = mapped_column(JSONB)
    ignored_channel_ids: Mapped[list | None] = mapped_column(JSONB)
    role_multipliers: Mapped[dict | None] = mapped_column(JSONB)
    channel_multipliers: Mapped[dict | None] = mapped_column(JSONB)

    enable_penalty_system: Mapped[bool | None] = mapped_column(Boolean)
    leaderboard_style: Mapped[str | None] = mapped_column(String(16))
    rank_card_background: Mapped[str | None] = mapped_column(Text)

    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow,
    )

    def __repr__(self) -> str:
        return f"<GuildConfig guild={self.guild_id}>"
