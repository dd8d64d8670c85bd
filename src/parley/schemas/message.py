"""Message-related Pydantic schemas."""

from __future__ import annotations

from datetime import datetime

from pydantic import Field, field_validator

from .common import WireModel


class SendMessageCommand(WireModel):
    """Inbound send request handed to the delivery router.

    Exactly one of ``recipient_email`` and ``group_id`` must be provided; the
    router enforces that rule so the failure surfaces as a named error.
    """

    sender_id: int
    text: str = Field(..., description="Plain text message content")
    recipient_email: str | None = Field(None, description="Lookup key of a direct recipient")
    group_id: int | None = Field(None, description="Destination group")
    scheduled_at: datetime | None = Field(None, description="Deferred delivery instant")
    expire_at: datetime | None = Field(None, description="Burnout instant")
    client_token: str | None = Field(None, description="Caller-supplied reconciliation token")


class DeleteMessageCommand(WireModel):
    """Inbound request to redact a message."""

    message_id: int
    requester_id: int
    group_id: int | None = None


class SendMessageRequest(WireModel):
    """REST body for sending; the sender comes from the bearer token."""

    text: str
    recipient_email: str | None = None
    group_id: int | None = None
    scheduled_at: datetime | None = None
    expire_at: datetime | None = None
    client_token: str | None = None

    @field_validator("recipient_email")
    @classmethod
    def strip_email(cls, value: str | None) -> str | None:
        """Normalize surrounding whitespace in the lookup key."""
        return value.strip() if value is not None else None


class HistoryMessage(WireModel):
    """A message as returned by the history read paths."""

    id: int
    conversation_id: int
    sender_id: int
    sender_name: str
    recipient_id: int | None = None
    group_id: int | None = None
    text: str
    time: datetime
    is_burnout: bool
    expire_at: datetime | None = None
    is_scheduled: bool
    scheduled_at: datetime | None = None
    delivered: bool
    is_edited: bool


class InboxEntry(WireModel):
    """One conversation preview row of a user's inbox."""

    conversation_id: int
    is_group: bool
    group_id: int | None = None
    group_name: str | None = None
    peer_id: int | None = None
    peer_name: str | None = None
    peer_email: str | None = None
    last_message: HistoryMessage | None = None
