"""Models describing chat messages and their delivery lifecycle."""

from __future__ import annotations

import enum
from datetime import datetime

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    ColumnElement,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    and_,
    func,
    or_,
)
from sqlalchemy.orm import Mapped, mapped_column

from parley.db.session import Base
from parley.db.time import UTCDateTime, utcnow


class MessageState(enum.Enum):
    """Lifecycle state derived from a message's flat delivery fields."""

    PENDING_SEND = "pending_send"
    PENDING_EXPIRE = "pending_expire"
    LIVE = "live"
    EXPIRED = "expired"
    DELETED = "deleted"


class Message(Base):
    """A direct or group message with scheduling, burnout and soft deletion."""

    __tablename__ = "message"
    __table_args__ = (
        CheckConstraint(
            "(recipient_id IS NULL AND group_id IS NOT NULL)"
            " OR (recipient_id IS NOT NULL AND group_id IS NULL)",
            name="ck_message_single_destination",
        ),
        Index("ix_message_due_send", "is_scheduled", "scheduled_at"),
        Index("ix_message_due_expiry", "is_burnout", "expire_at"),
        Index("ix_message_conversation_time", "conversation_id", "created_at"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, nullable=False)

    sender_id: Mapped[int] = mapped_column(Integer, ForeignKey("user_account.id"), nullable=False)
    recipient_id: Mapped[int | None] = mapped_column(
        Integer, ForeignKey("user_account.id"), nullable=True
    )
    group_id: Mapped[int | None] = mapped_column(
        Integer, ForeignKey("chat_group.id"), nullable=True, index=True
    )
    conversation_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("conversation.id"), nullable=False
    )

    text: Mapped[str] = mapped_column(Text, nullable=False)
    client_token: Mapped[str | None] = mapped_column(String(128), nullable=True)

    delivered: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    is_scheduled: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    scheduled_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    is_burnout: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    expire_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    deleted_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    is_edited: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    @property
    def is_group(self) -> bool:
        """Return True when the message is addressed to a group."""
        return self.group_id is not None

    @property
    def effective_time(self) -> datetime:
        """Instant the message became (or becomes) visible to recipients."""
        return self.scheduled_at or self.created_at

    @property
    def state(self) -> MessageState:
        """Return the lifecycle state implied by the stored fields."""
        if self.deleted_at is not None:
            # Expiry never redacts the payload; user deletion always does.
            if self.is_burnout and not self.is_edited:
                return MessageState.EXPIRED
            return MessageState.DELETED
        if self.is_scheduled:
            return MessageState.PENDING_SEND
        if self.is_burnout:
            return MessageState.PENDING_EXPIRE
        return MessageState.LIVE

    def is_eligible_at(self, now: datetime) -> bool:
        """Return True if the message may be shown or used as a preview at ``now``."""
        if self.deleted_at is not None:
            return False
        if self.is_scheduled and (self.scheduled_at is None or self.scheduled_at > now):
            return False
        if self.is_burnout and (self.expire_at is None or self.expire_at <= now):
            return False
        return True

    @classmethod
    def eligible_at(cls, now: datetime) -> ColumnElement[bool]:
        """SQL form of :meth:`is_eligible_at`."""
        return and_(
            cls.deleted_at.is_(None),
            or_(cls.is_scheduled.is_(False), cls.scheduled_at <= now),
            or_(cls.is_burnout.is_(False), cls.expire_at > now),
        )

    @classmethod
    def due_for_send(cls, now: datetime) -> ColumnElement[bool]:
        """Selection predicate for scheduled messages whose instant has passed."""
        return and_(
            cls.is_scheduled.is_(True),
            cls.scheduled_at <= now,
            cls.deleted_at.is_(None),
        )

    @classmethod
    def due_for_expiry(cls, now: datetime) -> ColumnElement[bool]:
        """Selection predicate for burnout messages whose window has closed."""
        return and_(
            cls.is_burnout.is_(True),
            cls.expire_at <= now,
            cls.deleted_at.is_(None),
        )

    @classmethod
    def effective_time_expr(cls) -> ColumnElement[datetime]:
        """SQL ordering key matching :attr:`effective_time`."""
        return func.coalesce(cls.scheduled_at, cls.created_at)
