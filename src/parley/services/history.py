"""Read paths for conversation history and inbox previews.

All reads apply the same visibility rule as the conversation projector; a
requester may optionally also see their own not-yet-sent scheduled messages.
"""

from __future__ import annotations

import logging
from datetime import datetime

from sqlalchemy import and_, or_, select
from sqlalchemy.orm import Session

from parley.core.errors import NotFoundError, PermissionDeniedError
from parley.core.settings import settings
from parley.db.time import utcnow
from parley.models import (
    Conversation,
    ConversationParticipant,
    Group,
    GroupMember,
    Message,
    User,
    direct_key,
)
from parley.schemas.message import HistoryMessage, InboxEntry
from parley.services.projector import ConversationProjector

logger = logging.getLogger(__name__)


def to_history_message(message: Message, sender: User | None) -> HistoryMessage:
    """Convert a Message ORM instance to its read-path schema."""
    return HistoryMessage(
        id=message.id,
        conversation_id=message.conversation_id,
        sender_id=message.sender_id,
        sender_name=sender.fullname if sender is not None else "Unknown",
        recipient_id=message.recipient_id,
        group_id=message.group_id,
        text=message.text,
        time=message.effective_time,
        is_burnout=message.is_burnout,
        expire_at=message.expire_at,
        is_scheduled=message.is_scheduled,
        scheduled_at=message.scheduled_at,
        delivered=message.delivered,
        is_edited=message.is_edited,
    )


def _visibility(user_id: int, now: datetime, include_own_scheduled: bool):
    visible = Message.eligible_at(now)
    if not include_own_scheduled:
        return visible
    own_pending = and_(
        Message.sender_id == user_id,
        Message.deleted_at.is_(None),
        Message.is_scheduled.is_(True),
        or_(Message.is_burnout.is_(False), Message.expire_at > now),
    )
    return or_(visible, own_pending)


def _load(db: Session, conversation_id: int, user_id: int, now: datetime, include_own_scheduled: bool):
    stmt = (
        select(Message, User)
        .join(User, User.id == Message.sender_id, isouter=True)
        .where(
            Message.conversation_id == conversation_id,
            _visibility(user_id, now, include_own_scheduled),
        )
        .order_by(Message.effective_time_expr().desc(), Message.id.desc())
        .limit(settings.history_limit)
    )
    # Keep the newest page, returned oldest first.
    rows = list(db.execute(stmt))
    rows.reverse()
    return [to_history_message(message, sender) for message, sender in rows]


def direct_history(
    db: Session,
    user_id: int,
    other_user_id: int,
    *,
    include_own_scheduled: bool = False,
    now: datetime | None = None,
) -> list[HistoryMessage]:
    """Return the visible messages exchanged between two users, oldest first.

    Raises:
        NotFoundError: The other user does not exist.
    """
    now = now or utcnow()
    if db.get(User, other_user_id) is None:
        raise NotFoundError("User not found")
    conversation = db.scalars(
        select(Conversation).where(Conversation.direct_key == direct_key(user_id, other_user_id))
    ).first()
    if conversation is None:
        return []
    return _load(db, conversation.id, user_id, now, include_own_scheduled)


def group_history(
    db: Session,
    group_id: int,
    user_id: int,
    *,
    include_own_scheduled: bool = False,
    now: datetime | None = None,
) -> list[HistoryMessage]:
    """Return the visible messages of a group, oldest first.

    Raises:
        NotFoundError: The group does not exist.
        PermissionDeniedError: The requester is not a member.
    """
    now = now or utcnow()
    group = db.get(Group, group_id)
    if group is None or group.deleted_at is not None:
        raise NotFoundError("Group not found")
    if user_id not in group.member_ids:
        raise PermissionDeniedError("Not a group member")
    conversation = db.scalars(
        select(Conversation).where(Conversation.group_id == group_id)
    ).first()
    if conversation is None:
        return []
    return _load(db, conversation.id, user_id, now, include_own_scheduled)


def inbox(
    db: Session,
    user_id: int,
    *,
    projector: ConversationProjector | None = None,
    now: datetime | None = None,
) -> list[InboxEntry]:
    """Return the user's conversations with their preview message, newest first.

    A pointer that became ineligible since it was last projected (for example
    a burnout message expiring between sweeps) is recomputed before use.
    """
    now = now or utcnow()
    projector = projector or ConversationProjector()
    # Group threads follow current membership, not the participant snapshot.
    direct_ids = select(ConversationParticipant.conversation_id).where(
        ConversationParticipant.user_id == user_id
    )
    group_ids = select(GroupMember.group_id).where(GroupMember.user_id == user_id)
    conversations = db.scalars(
        select(Conversation).where(
            or_(
                and_(Conversation.is_group.is_(False), Conversation.id.in_(direct_ids)),
                and_(Conversation.is_group.is_(True), Conversation.group_id.in_(group_ids)),
            )
        )
    ).all()

    entries: list[tuple[datetime, InboxEntry]] = []
    for conversation in conversations:
        preview = (
            db.get(Message, conversation.last_message_id)
            if conversation.last_message_id is not None
            else None
        )
        if preview is not None and not preview.is_eligible_at(now):
            logger.debug("Stale preview on conversation %s; re-projecting", conversation.id)
            preview = projector.project(db, conversation.id, now)
        if preview is None and not conversation.is_group:
            continue

        entry = InboxEntry(conversation_id=conversation.id, is_group=conversation.is_group)
        if conversation.is_group and conversation.group_id is not None:
            group = db.get(Group, conversation.group_id)
            if group is None or group.deleted_at is not None:
                continue
            entry.group_id = group.id
            entry.group_name = group.name
        else:
            peer_id = next((uid for uid in conversation.participant_ids if uid != user_id), user_id)
            peer = db.get(User, peer_id)
            if peer is not None:
                entry.peer_id = peer.id
                entry.peer_name = peer.fullname
                entry.peer_email = peer.email
        if preview is not None:
            entry.last_message = to_history_message(preview, db.get(User, preview.sender_id))
        entries.append((preview.effective_time if preview else conversation.created_at, entry))

    entries.sort(key=lambda item: item[0], reverse=True)
    return [entry for _, entry in entries[: settings.inbox_limit]]
