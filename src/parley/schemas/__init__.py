"""Pydantic schemas for commands, events and API payloads."""

from .events import (
    DeleteAck,
    ErrorEvent,
    MessageDeletedEvent,
    MessageExpiredEvent,
    MessageReceivedEvent,
    SendAck,
)
from .message import (
    DeleteMessageCommand,
    HistoryMessage,
    InboxEntry,
    SendMessageCommand,
)

__all__ = [
    "DeleteAck",
    "DeleteMessageCommand",
    "ErrorEvent",
    "HistoryMessage",
    "InboxEntry",
    "MessageDeletedEvent",
    "MessageExpiredEvent",
    "MessageReceivedEvent",
    "SendAck",
    "SendMessageCommand",
]
