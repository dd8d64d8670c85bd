"""SQLAlchemy models for groups and their membership."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import Boolean, ForeignKey, Integer, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from parley.db.session import Base
from parley.db.time import UTCDateTime, utcnow


class Group(Base):
    """Named set of users administered outside the delivery engine."""

    __tablename__ = "chat_group"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(50), nullable=False)
    creator_id: Mapped[int] = mapped_column(Integer, ForeignKey("user_account.id"), nullable=False)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, nullable=False)
    deleted_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)

    members: Mapped[list[GroupMember]] = relationship(
        "GroupMember",
        back_populates="group",
        cascade="all, delete-orphan",
        order_by="GroupMember.user_id",
    )

    @property
    def member_ids(self) -> list[int]:
        """Return the user ids of every current member."""
        return [member.user_id for member in self.members]

    def is_admin(self, user_id: int) -> bool:
        """Return True if the user created the group or holds an admin seat."""
        if self.creator_id == user_id:
            return True
        return any(m.user_id == user_id and m.is_admin for m in self.members)


class GroupMember(Base):
    """Join table mapping users into groups."""

    __tablename__ = "group_member"

    group_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("chat_group.id", ondelete="CASCADE"), primary_key=True
    )
    user_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("user_account.id", ondelete="CASCADE"), primary_key=True
    )
    is_admin: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    group: Mapped[Group] = relationship("Group", back_populates="members")
