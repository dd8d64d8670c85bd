"""In-memory presence registry mapping users to their live connection.

Only the last connection a user joined with is remembered. The registry is
held on the application state and injected wherever pushes happen, so tests
can swap in deterministic connections.
"""

from __future__ import annotations

import logging
import threading
from typing import Any, Protocol

logger = logging.getLogger(__name__)


class Connection(Protocol):
    """Anything able to deliver a named event to one client."""

    async def send_event(self, event: str, payload: dict[str, Any]) -> None:
        """Deliver ``payload`` under ``event``; raise on transport failure."""
        ...


class PresenceRegistry:
    """Last-write-wins map of user id to connection handle."""

    def __init__(self) -> None:
        self._connections: dict[int, Connection] = {}
        self._lock = threading.Lock()

    def register(self, user_id: int, connection: Connection) -> None:
        """Bind ``connection`` to ``user_id``, replacing any earlier binding."""
        with self._lock:
            previous = self._connections.get(user_id)
            self._connections[user_id] = connection
        if previous is not None and previous is not connection:
            logger.info("User %s re-joined; previous connection superseded", user_id)
        logger.debug("Registered connection for user %s", user_id)

    def lookup(self, user_id: int) -> Connection | None:
        """Return the connection of ``user_id`` or None when offline."""
        return self._connections.get(user_id)

    def unregister(self, connection: Connection) -> int | None:
        """Remove the entry bound to ``connection``.

        Disconnects only know the handle, so this scans for it. Unknown
        handles are ignored.

        Returns:
            The user id that was unbound, or None when nothing matched.
        """
        with self._lock:
            for user_id, bound in self._connections.items():
                if bound is connection:
                    del self._connections[user_id]
                    logger.debug("Removed mapping for user %s", user_id)
                    return user_id
        return None

    def online_user_ids(self) -> list[int]:
        """Return a snapshot of the currently bound user ids."""
        with self._lock:
            return sorted(self._connections)

    async def push(self, user_id: int, event: str, payload: dict[str, Any]) -> bool:
        """Send an event to ``user_id`` if reachable.

        Returns:
            True when the connection accepted the event, False when the user
            is offline or the send failed.
        """
        connection = self.lookup(user_id)
        if connection is None:
            return False
        try:
            await connection.send_event(event, payload)
        except (OSError, RuntimeError) as exc:
            logger.warning("Push of %s to user %s failed: %s", event, user_id, exc)
            return False
        return True
