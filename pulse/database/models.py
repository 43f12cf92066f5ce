"""
pulse.database.models — SQLAlchemy 2.0 Data Models
===================================================

Every table here holds *ephemeral* state: facts with a short, well-defined
lifetime that clients watch live.  Users, posts, messages, and gatherings
live in the durable relational store; this schema only keeps their string
identifiers.

Tables:
- presence               — One row per actor: online/away/offline + heartbeat
- typing_indicators      — (conversation, actor) flags with a 5 s expiry
- live_notifications     — Per-recipient in-app feed with read state
- message_read_receipts  — Insert-only (message, reader) acknowledgements
- friend_activity        — Social actions shown to friends for 24 h
- gathering_votes        — One current ballot per (gathering, voter, category)
- referral_leaderboard   — All-time / weekly / monthly referral counters
- shared_posts           — Posts shared between friends, with read state
"""

from __future__ import annotations

import enum
from datetime import datetime

from sqlalchemy import (
    BigInteger,
    Boolean,
    DateTime,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


# ---------------------------------------------------------------------------
# Base
# ---------------------------------------------------------------------------
class Base(DeclarativeBase):
    """Shared base for all Pulse ORM models."""


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------
class PresenceStatus(enum.StrEnum):
    ONLINE = "online"
    AWAY = "away"
    OFFLINE = "offline"


class DeviceClass(enum.StrEnum):
    IOS = "ios"
    ANDROID = "android"
    WEB = "web"


class NotificationKind(enum.StrEnum):
    """Notification types (mirrors the durable store's NotificationType)."""
    POST_LIKE = "POST_LIKE"
    COMMENT = "COMMENT"
    COMMENT_LIKE = "COMMENT_LIKE"
    FOLLOW = "FOLLOW"
    FRIEND_REQUEST = "FRIEND_REQUEST"
    FRIEND_ACCEPTED = "FRIEND_ACCEPTED"
    FRIEND_POST = "FRIEND_POST"
    MESSAGE = "MESSAGE"
    POST_MENTION = "POST_MENTION"
    GENERAL = "GENERAL"


class ActivityKind(enum.StrEnum):
    POSTED = "posted"
    LIKED_POST = "liked_post"
    COMMENTED = "commented"
    FOLLOWED = "followed"
    JOINED_GATHERING = "joined_gathering"
    SHARED_PLACE = "shared_place"


class TargetKind(enum.StrEnum):
    POST = "post"
    COMMENT = "comment"
    USER = "user"
    GATHERING = "gathering"
    PLACE = "place"


class VoteCategory(enum.StrEnum):
    """The three independent decisions a gathering votes on."""
    VENUE = "venue"
    DATE = "date"
    TIME = "time"


# ---------------------------------------------------------------------------
# Presence — one row per actor, overwritten on every heartbeat
# ---------------------------------------------------------------------------
class Presence(Base):
    __tablename__ = "presence"

    actor_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    status: Mapped[str] = mapped_column(
        String(10), nullable=False, default=PresenceStatus.ONLINE.value
    )
    last_seen_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    current_context: Mapped[str | None] = mapped_column(String(100), default=None)
    device_id: Mapped[str | None] = mapped_column(String(128), default=None)
    device_class: Mapped[str | None] = mapped_column(String(10), default=None)

    __table_args__ = (
        Index("ix_presence_status", "status"),
        Index("ix_presence_last_seen", "last_seen_at"),
    )

    def __repr__(self) -> str:
        return f"<Presence actor={self.actor_id!r} status={self.status!r}>"


# ---------------------------------------------------------------------------
# TypingIndicator — ephemeral "is typing" flag per conversation + actor
# ---------------------------------------------------------------------------
class TypingIndicator(Base):
    """A typing flag that dies on its own.

    ``expires_at`` is always ``started_at + TYPING_TTL``.  Stop-typing is an
    optimisation; expiry is the only guaranteed way an indicator ends.
    """
    __tablename__ = "typing_indicators"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    conversation_id: Mapped[str] = mapped_column(String(64), nullable=False)
    actor_id: Mapped[str] = mapped_column(String(64), nullable=False)
    display_name: Mapped[str | None] = mapped_column(String(100), default=None)
    display_image: Mapped[str | None] = mapped_column(String(500), default=None)
    started_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        UniqueConstraint(
            "conversation_id", "actor_id", name="uq_typing_conversation_actor",
        ),
        Index("ix_typing_actor", "actor_id"),
        Index("ix_typing_expires_at", "expires_at"),
    )

    def __repr__(self) -> str:
        return (
            f"<TypingIndicator conversation={self.conversation_id!r} "
            f"actor={self.actor_id!r}>"
        )


# ---------------------------------------------------------------------------
# LiveNotification — in-app notification feed
# ---------------------------------------------------------------------------
class LiveNotification(Base):
    """In-app notification, a UI convenience layer over the durable event.

    ``source_id`` points at the durable notification row so re-delivered
    events can be detected before a second insert.
    """
    __tablename__ = "live_notifications"

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    recipient_id: Mapped[str] = mapped_column(String(64), nullable=False)
    actor_id: Mapped[str | None] = mapped_column(String(64), default=None)
    actor_name: Mapped[str | None] = mapped_column(String(100), default=None)
    actor_image: Mapped[str | None] = mapped_column(String(500), default=None)
    kind: Mapped[str] = mapped_column(String(30), nullable=False)
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    body: Mapped[str] = mapped_column(Text, nullable=False)
    metadata_: Mapped[dict | None] = mapped_column("metadata", JSONB, nullable=True)
    is_read: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    source_id: Mapped[str | None] = mapped_column(String(128), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        Index("ix_live_notifications_recipient_time", "recipient_id", "created_at"),
        Index("ix_live_notifications_recipient_unread", "recipient_id", "is_read"),
        Index("ix_live_notifications_source", "source_id"),
        Index("ix_live_notifications_created_at", "created_at"),
    )

    def __repr__(self) -> str:
        return (
            f"<LiveNotification id={self.id} recipient={self.recipient_id!r} "
            f"kind={self.kind!r} read={self.is_read}>"
        )


# ---------------------------------------------------------------------------
# ReadReceipt — insert-only acknowledgement
# ---------------------------------------------------------------------------
class ReadReceipt(Base):
    """One row per (message, reader).  Never updated.

    "Unread" is the absence of a row, which keeps the write path a plain
    insert-if-absent.
    """
    __tablename__ = "message_read_receipts"

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    message_id: Mapped[str] = mapped_column(String(64), nullable=False)
    conversation_id: Mapped[str] = mapped_column(String(64), nullable=False)
    reader_id: Mapped[str] = mapped_column(String(64), nullable=False)
    read_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        UniqueConstraint("message_id", "reader_id", name="uq_receipts_message_reader"),
        Index("ix_receipts_conversation_reader", "conversation_id", "reader_id"),
        Index("ix_receipts_reader", "reader_id"),
    )

    def __repr__(self) -> str:
        return f"<ReadReceipt message={self.message_id!r} reader={self.reader_id!r}>"


# ---------------------------------------------------------------------------
# FriendActivity — short-lived social feed entries
# ---------------------------------------------------------------------------
class FriendActivity(Base):
    __tablename__ = "friend_activity"

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    actor_id: Mapped[str] = mapped_column(String(64), nullable=False)
    actor_name: Mapped[str | None] = mapped_column(String(100), default=None)
    actor_image: Mapped[str | None] = mapped_column(String(500), default=None)
    kind: Mapped[str] = mapped_column(String(30), nullable=False)
    target_id: Mapped[str | None] = mapped_column(String(64), default=None)
    target_kind: Mapped[str | None] = mapped_column(String(20), default=None)
    preview: Mapped[str | None] = mapped_column(String(500), default=None)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        Index("ix_friend_activity_actor_time", "actor_id", "created_at"),
        Index("ix_friend_activity_actor_kind_target", "actor_id", "kind", "target_id"),
        Index("ix_friend_activity_expires_at", "expires_at"),
    )

    def __repr__(self) -> str:
        return (
            f"<FriendActivity id={self.id} actor={self.actor_id!r} "
            f"kind={self.kind!r} target={self.target_id!r}>"
        )


# ---------------------------------------------------------------------------
# GatheringVote — a voter's single current ballot per category
# ---------------------------------------------------------------------------
class GatheringVote(Base):
    __tablename__ = "gathering_votes"

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    gathering_id: Mapped[str] = mapped_column(String(64), nullable=False)
    voter_id: Mapped[str] = mapped_column(String(64), nullable=False)
    voter_name: Mapped[str | None] = mapped_column(String(100), default=None)
    category: Mapped[str] = mapped_column(String(10), nullable=False)
    option_id: Mapped[str] = mapped_column(String(64), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        UniqueConstraint(
            "gathering_id", "voter_id", "category",
            name="uq_gathering_votes_ballot",
        ),
        Index("ix_gathering_votes_gathering_option", "gathering_id", "option_id"),
        Index("ix_gathering_votes_voter", "voter_id"),
    )

    def __repr__(self) -> str:
        return (
            f"<GatheringVote gathering={self.gathering_id!r} voter={self.voter_id!r} "
            f"{self.category}={self.option_id!r}>"
        )


# ---------------------------------------------------------------------------
# LeaderboardEntry — referral counters with lazily-reset windows
# ---------------------------------------------------------------------------
class LeaderboardEntry(Base):
    """Referral counters per actor.

    ``week_id``/``month_id`` record which window the windowed counters
    belong to.  A write in a newer window zeroes the counter before
    incrementing; the scheduled reset sweeps do the same for idle actors.
    """
    __tablename__ = "referral_leaderboard"

    actor_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    display_name: Mapped[str] = mapped_column(String(100), nullable=False)
    display_image: Mapped[str | None] = mapped_column(String(500), default=None)
    total_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    weekly_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    monthly_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    week_id: Mapped[str] = mapped_column(String(8), nullable=False)
    month_id: Mapped[str] = mapped_column(String(7), nullable=False)
    last_updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        Index("ix_referral_leaderboard_total", "total_count"),
        Index("ix_referral_leaderboard_weekly", "weekly_count"),
        Index("ix_referral_leaderboard_monthly", "monthly_count"),
    )

    def __repr__(self) -> str:
        return f"<LeaderboardEntry actor={self.actor_id!r} total={self.total_count}>"


# ---------------------------------------------------------------------------
# SharedPost — a post shared from one friend to another
# ---------------------------------------------------------------------------
class SharedPost(Base):
    __tablename__ = "shared_posts"

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    sender_id: Mapped[str] = mapped_column(String(64), nullable=False)
    sender_name: Mapped[str | None] = mapped_column(String(100), default=None)
    sender_image: Mapped[str | None] = mapped_column(String(500), default=None)
    recipient_id: Mapped[str] = mapped_column(String(64), nullable=False)
    post_id: Mapped[str] = mapped_column(String(64), nullable=False)
    preview: Mapped[dict | None] = mapped_column(JSONB, nullable=True)
    is_read: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        Index("ix_shared_posts_conversation", "sender_id", "recipient_id", "created_at"),
        Index("ix_shared_posts_recipient_unread", "recipient_id", "is_read"),
    )

    def __repr__(self) -> str:
        return (
            f"<SharedPost id={self.id} {self.sender_id!r}→{self.recipient_id!r} "
            f"post={self.post_id!r}>"
        )
