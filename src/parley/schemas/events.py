"""Outbound events pushed to connected clients."""

from __future__ import annotations

from datetime import datetime

from .common import WireModel

MESSAGE_RECEIVED = "message-received"
MESSAGE_EXPIRED = "message-expired"
MESSAGE_DELETED = "message-deleted"
MESSAGE_SENT = "message-sent"
MESSAGE_ERROR = "message-error"
MESSAGE_DELETE_SUCCESS = "message-delete-success"
MESSAGE_DELETE_ERROR = "message-delete-error"
JOINED = "joined"


class MessageReceivedEvent(WireModel):
    """A message pushed to an online recipient."""

    id: int
    conversation_id: int
    group_id: int | None = None
    sender_id: int
    sender_name: str
    text: str
    time: datetime
    is_burnout: bool
    expire_at: datetime | None = None
    is_scheduled: bool
    scheduled_at: datetime | None = None


class MessageExpiredEvent(WireModel):
    """A burnout message reached its expiry and must leave the view."""

    message_id: int
    group_id: int | None = None


class MessageDeletedEvent(WireModel):
    """A message was redacted by its sender or a group admin."""

    message_id: int
    group_id: int | None = None
    deleted_by: int
    deleted_by_admin: bool
    deleted_at: datetime


class SendAck(WireModel):
    """Acknowledgment returned to the sender after persistence."""

    client_token: str | None = None
    message_id: int
    conversation_id: int
    time: datetime
    is_scheduled: bool
    scheduled_at: datetime | None = None
    is_burnout: bool
    expire_at: datetime | None = None
    delivered: bool


class DeleteAck(WireModel):
    """Acknowledgment returned to the requester of a deletion."""

    message_id: int
    deleted_at: datetime


class ErrorEvent(WireModel):
    """Named failure reported to the caller of a command."""

    code: str
    message: str
    client_token: str | None = None
    message_id: int | None = None
