"""Conversation preview projection.

The last-message pointer of a conversation is a cache of "the most recent
message anyone may currently see". Scheduled and burnout messages move in
and out of that set purely with the passage of time, so the pointer is
always recomputed from the message store rather than patched.
"""

from __future__ import annotations

import logging
from datetime import datetime

from sqlalchemy import select
from sqlalchemy.orm import Session

from parley.db.session import commit
from parley.db.time import utcnow
from parley.models import Conversation, Message

logger = logging.getLogger(__name__)


class ConversationProjector:
    """Recomputes conversation preview pointers."""

    def latest_eligible(
        self, db: Session, conversation_id: int, now: datetime
    ) -> Message | None:
        """Return the newest message of a conversation visible at ``now``."""
        stmt = (
            select(Message)
            .where(Message.conversation_id == conversation_id, Message.eligible_at(now))
            .order_by(Message.effective_time_expr().desc(), Message.id.desc())
            .limit(1)
        )
        return db.scalars(stmt).first()

    def project(
        self, db: Session, conversation_id: int, now: datetime | None = None
    ) -> Message | None:
        """Point the conversation at its latest eligible message, or clear it.

        Safe to call redundantly; the result depends only on stored state and
        ``now``.

        Returns:
            The message now referenced by the pointer, if any.
        """
        now = now or utcnow()
        conversation = db.get(Conversation, conversation_id)
        if conversation is None:
            logger.warning("Cannot project missing conversation %s", conversation_id)
            return None

        latest = self.latest_eligible(db, conversation_id, now)
        latest_id = latest.id if latest is not None else None
        if conversation.last_message_id != latest_id:
            conversation.last_message_id = latest_id
            commit(db)
            logger.debug(
                "Conversation %s preview now points at %s", conversation_id, latest_id
            )
        return latest
