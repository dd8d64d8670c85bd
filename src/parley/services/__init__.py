"""Business logic services for the Parley application."""

from .delivery import DeliveryRouter
from .presence import Connection, PresenceRegistry
from .projector import ConversationProjector
from .scheduler import LifecycleScheduler, SweepReport

__all__ = [
    "Connection",
    "ConversationProjector",
    "DeliveryRouter",
    "LifecycleScheduler",
    "PresenceRegistry",
    "SweepReport",
]
