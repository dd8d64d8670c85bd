"""API endpoint modules for version 1."""

from .messages import router as messages_router
from .system import router as system_router

__all__ = [
    "messages_router",
    "system_router",
]
