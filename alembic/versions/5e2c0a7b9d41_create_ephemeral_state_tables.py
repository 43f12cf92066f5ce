"""Create ephemeral state tables

Revision ID: 5e2c0a7b9d41
Revises:
Create Date: 2026-10-12 09:00:00.000000

"""
from collections.abc import Sequence

import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "5e2c0a7b9d41"
down_revision: str | Sequence[str] | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    """Create presence, typing, notification, receipt, activity, vote,
    leaderboard, and shared-post tables."""
    op.create_table(
        "presence",
        sa.Column("actor_id", sa.String(64), primary_key=True),
        sa.Column("status", sa.String(10), nullable=False),
        sa.Column("last_seen_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("current_context", sa.String(100), nullable=True),
        sa.Column("device_id", sa.String(128), nullable=True),
        sa.Column("device_class", sa.String(10), nullable=True),
    )
    op.create_index("ix_presence_status", "presence", ["status"])
    op.create_index("ix_presence_last_seen", "presence", ["last_seen_at"])

    op.create_table(
        "typing_indicators",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("conversation_id", sa.String(64), nullable=False),
        sa.Column("actor_id", sa.String(64), nullable=False),
        sa.Column("display_name", sa.String(100), nullable=True),
        sa.Column("display_image", sa.String(500), nullable=True),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint(
            "conversation_id", "actor_id", name="uq_typing_conversation_actor",
        ),
    )
    op.create_index("ix_typing_actor", "typing_indicators", ["actor_id"])
    op.create_index("ix_typing_expires_at", "typing_indicators", ["expires_at"])

    op.create_table(
        "live_notifications",
        sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=True),
        sa.Column("recipient_id", sa.String(64), nullable=False),
        sa.Column("actor_id", sa.String(64), nullable=True),
        sa.Column("actor_name", sa.String(100), nullable=True),
        sa.Column("actor_image", sa.String(500), nullable=True),
        sa.Column("kind", sa.String(30), nullable=False),
        sa.Column("title", sa.String(200), nullable=False),
        sa.Column("body", sa.Text(), nullable=False),
        sa.Column("metadata", postgresql.JSONB(), nullable=True),
        sa.Column("is_read", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("source_id", sa.String(128), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index(
        "ix_live_notifications_recipient_time",
        "live_notifications",
        ["recipient_id", "created_at"],
    )
    op.create_index(
        "ix_live_notifications_recipient_unread",
        "live_notifications",
        ["recipient_id", "is_read"],
    )
    op.create_index("ix_live_notifications_source", "live_notifications", ["source_id"])
    op.create_index(
        "ix_live_notifications_created_at", "live_notifications", ["created_at"],
    )

    op.create_table(
        "message_read_receipts",
        sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=True),
        sa.Column("message_id", sa.String(64), nullable=False),
        sa.Column("conversation_id", sa.String(64), nullable=False),
        sa.Column("reader_id", sa.String(64), nullable=False),
        sa.Column("read_at", sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint("message_id", "reader_id", name="uq_receipts_message_reader"),
    )
    op.create_index(
        "ix_receipts_conversation_reader",
        "message_read_receipts",
        ["conversation_id", "reader_id"],
    )
    op.create_index("ix_receipts_reader", "message_read_receipts", ["reader_id"])

    op.create_table(
        "friend_activity",
        sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=True),
        sa.Column("actor_id", sa.String(64), nullable=False),
        sa.Column("actor_name", sa.String(100), nullable=True),
        sa.Column("actor_image", sa.String(500), nullable=True),
        sa.Column("kind", sa.String(30), nullable=False),
        sa.Column("target_id", sa.String(64), nullable=True),
        sa.Column("target_kind", sa.String(20), nullable=True),
        sa.Column("preview", sa.String(500), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index(
        "ix_friend_activity_actor_time", "friend_activity", ["actor_id", "created_at"],
    )
    op.create_index(
        "ix_friend_activity_actor_kind_target",
        "friend_activity",
        ["actor_id", "kind", "target_id"],
    )
    op.create_index("ix_friend_activity_expires_at", "friend_activity", ["expires_at"])

    op.create_table(
        "gathering_votes",
        sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=True),
        sa.Column("gathering_id", sa.String(64), nullable=False),
        sa.Column("voter_id", sa.String(64), nullable=False),
        sa.Column("voter_name", sa.String(100), nullable=True),
        sa.Column("category", sa.String(10), nullable=False),
        sa.Column("option_id", sa.String(64), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint(
            "gathering_id", "voter_id", "category", name="uq_gathering_votes_ballot",
        ),
    )
    op.create_index(
        "ix_gathering_votes_gathering_option",
        "gathering_votes",
        ["gathering_id", "option_id"],
    )
    op.create_index("ix_gathering_votes_voter", "gathering_votes", ["voter_id"])

    op.create_table(
        "referral_leaderboard",
        sa.Column("actor_id", sa.String(64), primary_key=True),
        sa.Column("display_name", sa.String(100), nullable=False),
        sa.Column("display_image", sa.String(500), nullable=True),
        sa.Column("total_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("weekly_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("monthly_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("week_id", sa.String(8), nullable=False),
        sa.Column("month_id", sa.String(7), nullable=False),
        sa.Column("last_updated_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_referral_leaderboard_total", "referral_leaderboard", ["total_count"])
    op.create_index(
        "ix_referral_leaderboard_weekly", "referral_leaderboard", ["weekly_count"],
    )
    op.create_index(
        "ix_referral_leaderboard_monthly", "referral_leaderboard", ["monthly_count"],
    )

    op.create_table(
        "shared_posts",
        sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=True),
        sa.Column("sender_id", sa.String(64), nullable=False),
        sa.Column("sender_name", sa.String(100), nullable=True),
        sa.Column("sender_image", sa.String(500), nullable=True),
        sa.Column("recipient_id", sa.String(64), nullable=False),
        sa.Column("post_id", sa.String(64), nullable=False),
        sa.Column("preview", postgresql.JSONB(), nullable=True),
        sa.Column("is_read", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index(
        "ix_shared_posts_conversation",
        "shared_posts",
        ["sender_id", "recipient_id", "created_at"],
    )
    op.create_index(
        "ix_shared_posts_recipient_unread", "shared_posts", ["recipient_id", "is_read"],
    )


def downgrade() -> None:
    """Drop every ephemeral state table."""
    op.drop_table("shared_posts")
    op.drop_table("referral_leaderboard")
    op.drop_table("gathering_votes")
    op.drop_table("friend_activity")
    op.drop_table("message_read_receipts")
    op.drop_table("live_notifications")
    op.drop_table("typing_indicators")
    op.drop_table("presence")
