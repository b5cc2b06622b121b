"""Create user_levels and guild_configs

Per-(guild, user) experience ledger and the sparse per-guild override
layer.  Map and list settings are JSONB with string keys.

Revision ID: 3c1f0a7b9e42
Revises:
Create Date: 2026-10-19 00:00:00.000000
"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers
revision = "3c1f0a7b9e42"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "user_levels",
        sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=True),
        sa.Column("guild_id", sa.BigInteger(), nullable=False),
        sa.Column("user_id", sa.BigInteger(), nullable=False),
        sa.Column("xp", sa.BigInteger(), nullable=False, server_default="0"),
        sa.Column("level", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("last_message_at_ms", sa.BigInteger(), nullable=False, server_default="0"),
        sa.Column("total_messages", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("total_voice_ms", sa.BigInteger(), nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.UniqueConstraint("guild_id", "user_id", name="uq_user_levels_guild_user"),
    )
    op.create_index(
        "ix_user_levels_guild_xp", "user_levels", ["guild_id", "xp", "updated_at"],
    )

    op.create_table(
        "guild_configs",
        sa.Column("guild_id", sa.BigInteger(), primary_key=True),
        sa.Column("xp_per_message", sa.Integer()),
        sa.Column("xp_per_voice_minute", sa.Integer()),
        sa.Column("message_cooldown_seconds", sa.Integer()),
        sa.Column("level_up_enabled", sa.Boolean()),
        sa.Column("level_up_channel_id", sa.String(32)),
        sa.Column("level_up_message", sa.Text()),
        sa.Column("level_role_rewards", postgresql.JSONB()),
        sa.Column("role_removal_strategy", sa.String(32)),
        sa.Column("ignored_role_ids", postgresql.JSONB()),
        sa.Column("ignored_channel_ids", postgresql.JSONB()),
        sa.Column("role_multipliers", postgresql.JSONB()),
        sa.Column("channel_multipliers", postgresql.JSONB()),
        sa.Column("enable_penalty_system", sa.Boolean()),
        sa.Column("leaderboard_style", sa.String(16)),
        sa.Column("rank_card_background", sa.Text()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )


def downgrade() -> None:
    op.drop_table("guild_configs")
    op.drop_index("ix_user_levels_guild_xp", table_name="user_levels")
    op.drop_table("user_levels")
