"""Models describing conversation threads and their participants."""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import Boolean, ForeignKey, Integer, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from parley.db.session import Base
from parley.db.time import UTCDateTime, utcnow

if TYPE_CHECKING:
    from .message import Message


def direct_key(user_a: int, user_b: int) -> str:
    """Return the canonical key for an unordered pair of users."""
    low, high = sorted((user_a, user_b))
    return f"{low}:{high}"


class Conversation(Base):
    """Durable thread binding a fixed participant set.

    ``last_message_id`` is a precomputed preview pointer maintained by the
    conversation projector; it never references a deleted, future-scheduled
    or expired burnout message.
    """

    __tablename__ = "conversation"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    is_group: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    # Exactly one of these identifies the thread; both are unique.
    direct_key: Mapped[str | None] = mapped_column(String(64), unique=True, nullable=True)
    group_id: Mapped[int | None] = mapped_column(
        Integer, ForeignKey("chat_group.id"), unique=True, nullable=True
    )
    last_message_id: Mapped[int | None] = mapped_column(
        Integer,
        ForeignKey("message.id", use_alter=True, name="fk_conversation_last_message"),
        nullable=True,
    )
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime, default=utcnow, onupdate=utcnow, nullable=False
    )

    participants: Mapped[list[ConversationParticipant]] = relationship(
        "ConversationParticipant",
        back_populates="conversation",
        cascade="all, delete-orphan",
        order_by="ConversationParticipant.user_id",
    )
    last_message: Mapped[Message | None] = relationship(
        "Message", foreign_keys=[last_message_id], post_update=True
    )

    @property
    def participant_ids(self) -> list[int]:
        """Return the user ids bound to this conversation."""
        return [p.user_id for p in self.participants]


class ConversationParticipant(Base):
    """Join table mapping users into conversations."""

    __tablename__ = "conversation_participant"

    conversation_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("conversation.id", ondelete="CASCADE"), primary_key=True
    )
    user_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("user_account.id"), primary_key=True, index=True
    )

    conversation: Mapped[Conversation] = relationship("Conversation", back_populates="participants")
