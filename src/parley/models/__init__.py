"""SQLAlchemy models for the Parley application."""

from .conversation import Conversation, ConversationParticipant, direct_key
from .group import Group, GroupMember
from .message import Message, MessageState
from .user import User

__all__ = [
    "Conversation", "ConversationParticipant", "direct_key",
    "Group", "GroupMember",
    "Message", "MessageState",
    "User",
]
