"""Delivery router: validate, persist and route messages.

The router owns the immediate send path and message deletion. The push
logic (:meth:`DeliveryRouter.deliver`) is shared with the lifecycle
scheduler so deferred messages reach recipients exactly like immediate ones.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Protocol

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from parley.core.errors import (
    NotFoundError,
    PermissionDeniedError,
    TransientStoreError,
    ValidationError,
)
from parley.core.settings import settings
from parley.db.session import commit
from parley.db.time import as_utc, utcnow
from parley.models import (
    Conversation,
    ConversationParticipant,
    Group,
    Message,
    MessageState,
    User,
    direct_key,
)
from parley.schemas.events import (
    MESSAGE_DELETED,
    MESSAGE_EXPIRED,
    MESSAGE_RECEIVED,
    DeleteAck,
    MessageDeletedEvent,
    MessageExpiredEvent,
    MessageReceivedEvent,
    SendAck,
)
from parley.schemas.message import DeleteMessageCommand, SendMessageCommand
from parley.services.presence import PresenceRegistry
from parley.services.projector import ConversationProjector

logger = logging.getLogger(__name__)


class TimerHooks(Protocol):
    """Receives freshly persisted messages so per-message timers can be armed."""

    def arm(self, message: Message) -> None:
        ...


def _future_or_none(value: datetime | None, now: datetime) -> datetime | None:
    """Return ``value`` in UTC if it lies strictly after ``now``."""
    if value is None:
        return None
    value = as_utc(value)
    return value if value > now else None


class DeliveryRouter:
    """Entry point for send and delete commands."""

    def __init__(
        self,
        presence: PresenceRegistry,
        projector: ConversationProjector | None = None,
        *,
        timers: TimerHooks | None = None,
    ) -> None:
        """Initialize the router.

        Args:
            presence: Registry used to reach online users.
            projector: Projector refreshed after visible changes.
            timers: Optional hook notified of every persisted message.
        """
        self.presence = presence
        self.projector = projector or ConversationProjector()
        self.timers = timers

    # -- send -----------------------------------------------------------------

    async def send(
        self, db: Session, command: SendMessageCommand, now: datetime | None = None
    ) -> SendAck:
        """Persist a message and deliver it now or leave it for the scheduler.

        Raises:
            ValidationError: Text is empty or the destination is not exactly one of
                recipient/group.
            NotFoundError: Sender, recipient or group cannot be resolved.
            PermissionDeniedError: Group sender is not a member of the group.
            TransientStoreError: The message store rejected a write.
        """
        now = now or utcnow()
        token = command.client_token

        if not command.text or not command.text.strip():
            raise ValidationError("Message text is required", client_token=token)
        if (command.recipient_email is None) == (command.group_id is None):
            raise ValidationError(
                "Exactly one of recipient or group is required", client_token=token
            )

        sender = db.get(User, command.sender_id)
        if sender is None:
            raise NotFoundError("Sender not found", client_token=token)

        scheduled_at = _future_or_none(command.scheduled_at, now)
        if command.scheduled_at is not None and scheduled_at is None:
            logger.warning(
                "Schedule time %s is not in the future; sending now", command.scheduled_at
            )
        expire_at = _future_or_none(command.expire_at, now)
        if command.expire_at is not None and expire_at is None:
            logger.warning(
                "Burnout time %s is not in the future; ignoring burnout", command.expire_at
            )

        recipient_id: int | None = None
        if command.group_id is not None:
            group = self._resolve_group(db, command.group_id, token)
            if sender.id not in group.member_ids:
                raise PermissionDeniedError("Sender is not a group member", client_token=token)
            conversation = self._group_conversation(db, group)
        else:
            recipient = db.scalars(
                select(User).where(User.email == command.recipient_email)
            ).first()
            if recipient is None:
                raise NotFoundError("Recipient not found", client_token=token)
            recipient_id = recipient.id
            conversation = self._direct_conversation(db, sender.id, recipient.id)

        message = Message(
            created_at=now,
            sender_id=sender.id,
            recipient_id=recipient_id,
            group_id=command.group_id,
            conversation_id=conversation.id,
            text=command.text,
            client_token=token,
            delivered=False,
            is_scheduled=scheduled_at is not None,
            scheduled_at=scheduled_at,
            is_burnout=expire_at is not None,
            expire_at=expire_at,
        )
        db.add(message)
        commit(db)
        db.refresh(message)
        logger.info(
            "Stored message %s in conversation %s (scheduled=%s, burnout=%s)",
            message.id,
            conversation.id,
            message.is_scheduled,
            message.is_burnout,
        )

        if not message.is_scheduled:
            await self.deliver(db, message, sender=sender)
            self.projector.project(db, conversation.id, now)

        if self.timers is not None:
            self.timers.arm(message)

        return SendAck(
            client_token=token,
            message_id=message.id,
            conversation_id=conversation.id,
            time=message.created_at,
            is_scheduled=message.is_scheduled,
            scheduled_at=message.scheduled_at,
            is_burnout=message.is_burnout,
            expire_at=message.expire_at,
            delivered=message.delivered,
        )

    def _resolve_group(self, db: Session, group_id: int, token: str | None = None) -> Group:
        group = db.get(Group, group_id)
        if group is None or group.deleted_at is not None:
            raise NotFoundError("Group not found", client_token=token)
        return group

    def _direct_conversation(self, db: Session, sender_id: int, recipient_id: int) -> Conversation:
        """Return the conversation of a user pair, creating it on first contact."""
        key = direct_key(sender_id, recipient_id)
        stmt = select(Conversation).where(Conversation.direct_key == key)
        conversation = db.scalars(stmt).first()
        if conversation is not None:
            return conversation

        conversation = Conversation(
            is_group=False,
            direct_key=key,
            participants=[
                ConversationParticipant(user_id=user_id)
                for user_id in sorted({sender_id, recipient_id})
            ],
        )
        return self._create_conversation(db, conversation, stmt)

    def _group_conversation(self, db: Session, group: Group) -> Conversation:
        """Return the group's conversation, syncing participants to current membership."""
        stmt = select(Conversation).where(Conversation.group_id == group.id)
        conversation = db.scalars(stmt).first()
        member_ids = set(group.member_ids)
        if conversation is None:
            conversation = Conversation(
                is_group=True,
                group_id=group.id,
                participants=[
                    ConversationParticipant(user_id=user_id) for user_id in sorted(member_ids)
                ],
            )
            return self._create_conversation(db, conversation, stmt)

        current = set(conversation.participant_ids)
        if current != member_ids:
            for participant in list(conversation.participants):
                if participant.user_id not in member_ids:
                    conversation.participants.remove(participant)
            for user_id in sorted(member_ids - current):
                conversation.participants.append(ConversationParticipant(user_id=user_id))
            commit(db)
            logger.info("Refreshed participants of group conversation %s", conversation.id)
        return conversation

    def _create_conversation(self, db: Session, conversation: Conversation, stmt) -> Conversation:
        db.add(conversation)
        try:
            db.commit()
        except IntegrityError:
            # Another request created it first; reuse theirs.
            db.rollback()
            existing = db.scalars(stmt).first()
            if existing is None:
                raise TransientStoreError("Could not create conversation") from None
            return existing
        except SQLAlchemyError as exc:
            db.rollback()
            raise TransientStoreError("Message store unavailable") from exc
        db.refresh(conversation)
        logger.info("Created conversation %s", conversation.id)
        return conversation

    # -- push -----------------------------------------------------------------

    def recipient_ids(self, db: Session, message: Message) -> list[int]:
        """Return the users a message is pushed to (never the sender).

        Raises:
            NotFoundError: The message's group or recipient no longer exists.
        """
        if message.group_id is not None:
            group = self._resolve_group(db, message.group_id)
            return [uid for uid in group.member_ids if uid != message.sender_id]
        if message.recipient_id is None or db.get(User, message.recipient_id) is None:
            raise NotFoundError("Recipient not found")
        return [message.recipient_id]

    async def deliver(self, db: Session, message: Message, *, sender: User | None = None) -> bool:
        """Push ``message`` to every reachable recipient.

        ``delivered`` flips true once at least one push succeeded.

        Returns:
            True if any recipient received the push.
        """
        sender = sender or db.get(User, message.sender_id)
        if sender is None:
            raise NotFoundError("Sender not found")

        payload = MessageReceivedEvent(
            id=message.id,
            conversation_id=message.conversation_id,
            group_id=message.group_id,
            sender_id=sender.id,
            sender_name=sender.fullname,
            text=message.text,
            time=message.effective_time,
            is_burnout=message.is_burnout,
            expire_at=message.expire_at,
            is_scheduled=message.is_scheduled,
            scheduled_at=message.scheduled_at,
        ).to_wire()

        reached = 0
        for user_id in self.recipient_ids(db, message):
            if await self.presence.push(user_id, MESSAGE_RECEIVED, payload):
                reached += 1
            else:
                logger.debug("User %s offline for message %s", user_id, message.id)

        if reached and not message.delivered:
            message.delivered = True
            commit(db)
        return reached > 0

    async def notify_expired(self, db: Session, message: Message) -> int:
        """Tell reachable participants that a burnout message expired.

        Group messages notify every member; direct messages notify both ends.

        Returns:
            Number of users reached.
        """
        if message.group_id is not None:
            group = db.get(Group, message.group_id)
            targets = group.member_ids if group is not None else []
        else:
            targets = [message.sender_id, message.recipient_id]

        payload = MessageExpiredEvent(message_id=message.id, group_id=message.group_id).to_wire()
        reached = 0
        for user_id in dict.fromkeys(uid for uid in targets if uid is not None):
            if await self.presence.push(user_id, MESSAGE_EXPIRED, payload):
                reached += 1
        return reached

    # -- delete ---------------------------------------------------------------

    async def delete(
        self, db: Session, command: DeleteMessageCommand, now: datetime | None = None
    ) -> DeleteAck:
        """Redact a message on behalf of its sender or a group admin.

        Raises:
            NotFoundError: The message does not exist or is already deleted.
            ValidationError: ``group_id`` does not match the message's group.
            PermissionDeniedError: Requester is neither the sender nor an admin.
        """
        now = now or utcnow()
        message = db.get(Message, command.message_id)
        if message is None or message.state in (MessageState.DELETED, MessageState.EXPIRED):
            raise NotFoundError("Message not found")
        if command.group_id is not None and message.group_id != command.group_id:
            raise ValidationError("Group mismatch")

        group = db.get(Group, message.group_id) if message.group_id is not None else None
        is_sender = message.sender_id == command.requester_id
        is_admin = group is not None and group.is_admin(command.requester_id)
        if not (is_sender or is_admin):
            logger.warning(
                "Permission denied for user %s to delete message %s",
                command.requester_id,
                message.id,
            )
            raise PermissionDeniedError("Permission denied")

        previous = message.state
        message.text = settings.deleted_message_placeholder
        message.is_edited = True
        message.deleted_at = now
        commit(db)
        logger.info(
            "Message %s deleted by user %s (was %s)", message.id, command.requester_id, previous.value
        )

        self.projector.project(db, message.conversation_id, now)

        if group is not None:
            targets = group.member_ids
        else:
            targets = [message.sender_id, message.recipient_id]
        payload = MessageDeletedEvent(
            message_id=message.id,
            group_id=message.group_id,
            deleted_by=command.requester_id,
            deleted_by_admin=is_admin,
            deleted_at=now,
        ).to_wire()
        for user_id in dict.fromkeys(targets):
            if user_id is None or user_id == command.requester_id:
                continue
            await self.presence.push(user_id, MESSAGE_DELETED, payload)

        return DeleteAck(message_id=message.id, deleted_at=now)
