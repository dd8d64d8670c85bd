"""Background lifecycle processing for scheduled and burnout messages.

This module provides the LifecycleScheduler class. A recurring sweep promotes
due scheduled messages to sent and retires expired burnout messages; optional
single-shot timers fire the same transitions at a message's exact instant.

Every transition starts with a conditional UPDATE that is committed before
anything is pushed. Whoever wins that update owns the transition, so
overlapping sweeps and timers deliver a message at most once.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import Iterator
from dataclasses import dataclass, field
from datetime import datetime

from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from parley.core.errors import DeliveryError, TransientStoreError
from parley.core.settings import settings
from parley.db.session import SessionLocal, commit
from parley.db.time import utcnow
from parley.models import Message
from parley.services.delivery import DeliveryRouter

logger = logging.getLogger(__name__)

# Fire timers slightly late so the due predicate already matches.
TIMER_SLACK_SECONDS = 0.05


@dataclass
class SweepReport:
    """Outcome of one sweep tick."""

    sent: list[int] = field(default_factory=list)
    expired: list[int] = field(default_factory=list)
    failed: list[int] = field(default_factory=list)


class LifecycleScheduler:
    """Periodically sweeps the message store for due lifecycle transitions.

    The worker runs in the background and handles:

    - Promoting due scheduled messages and pushing them to online recipients
    - Soft-deleting expired burnout messages and notifying participants
    - Refreshing the preview pointer of every touched conversation
    """

    def __init__(
        self,
        router: DeliveryRouter,
        db_session: Session | None = None,
        *,
        interval: float | None = None,
    ) -> None:
        """Initialize the scheduler.

        Args:
            router: Router whose push logic delivers promoted messages.
            db_session: Optional database session. If None, creates new sessions as needed.
            interval: Sweep period in seconds; defaults to the configured value.
        """
        self.router = router
        self.interval = max(0.1, float(interval or settings.sweep_interval_seconds))
        self._db_session = db_session
        self._task: asyncio.Task[None] | None = None
        self._stopping = asyncio.Event()
        self._timers: dict[tuple[str, int], asyncio.TimerHandle] = {}
        self._timer_tasks: set[asyncio.Task[bool]] = set()

    @property
    def running(self) -> bool:
        """Return True while the sweep loop is active."""
        return self._task is not None and not self._task.done()

    async def start(self) -> None:
        """Start the background sweep loop."""
        if not self.running:
            self._stopping.clear()
            self._task = asyncio.create_task(self._run())
            logger.info("Lifecycle scheduler started (every %.1f seconds)", self.interval)

    async def stop(self) -> None:
        """Stop the sweep loop and cancel pending timers."""
        for handle in self._timers.values():
            handle.cancel()
        self._timers.clear()
        for task in list(self._timer_tasks):
            task.cancel()

        if self._task is None:
            return
        self._stopping.set()
        await self._task
        self._task = None
        logger.info("Lifecycle scheduler stopped")

    async def _run(self) -> None:
        while not self._stopping.is_set():
            try:
                await self.sweep_once()
            except (TransientStoreError, SQLAlchemyError) as e:
                logger.warning("Sweep aborted by store error: %s", e)
            except (ValueError, TypeError, KeyError, AttributeError) as e:
                logger.error("Sweep encountered data processing error: %s", e, exc_info=True)

            with contextlib.suppress(TimeoutError):
                await asyncio.wait_for(self._stopping.wait(), timeout=self.interval)

    @contextlib.contextmanager
    def _session(self, db: Session | None = None) -> Iterator[Session]:
        if db is not None:
            yield db
        elif self._db_session is not None:
            yield self._db_session
        else:
            with SessionLocal() as db:
                yield db

    async def sweep_once(
        self, now: datetime | None = None, db: Session | None = None
    ) -> SweepReport:
        """Run one sweep: all due sends first, then all due expiries."""
        now = now or utcnow()
        report = SweepReport()
        with self._session(db) as session:
            due_sends = session.scalars(
                select(Message.id)
                .where(Message.due_for_send(now))
                .order_by(Message.scheduled_at, Message.id)
                .limit(settings.sweep_batch_size)
            ).all()
            for message_id in due_sends:
                await self._send_one(session, message_id, now, report)

            due_expiries = session.scalars(
                select(Message.id)
                .where(Message.due_for_expiry(now))
                .order_by(Message.expire_at, Message.id)
                .limit(settings.sweep_batch_size)
            ).all()
            for message_id in due_expiries:
                await self._expire_one(session, message_id, now, report)

        if report.sent or report.expired or report.failed:
            logger.info(
                "Sweep finished: %d sent, %d expired, %d failed",
                len(report.sent),
                len(report.expired),
                len(report.failed),
            )
        return report

    async def _send_one(
        self, db: Session, message_id: int, now: datetime, report: SweepReport | None = None
    ) -> bool:
        try:
            result = db.execute(
                update(Message)
                .where(Message.id == message_id, Message.due_for_send(now))
                .values(is_scheduled=False)
                .execution_options(synchronize_session=False)
            )
            commit(db)
        except (TransientStoreError, SQLAlchemyError):
            db.rollback()
            logger.warning("Scheduled message %s left pending for next sweep", message_id)
            if report is not None:
                report.failed.append(message_id)
            return False
        if result.rowcount != 1:
            # Already claimed by another sweep or timer.
            return False

        message = db.get(Message, message_id)
        if message is None:  # pragma: no cover - row vanished after the claim
            return False
        db.refresh(message)
        if report is not None:
            report.sent.append(message_id)

        try:
            delivered = await self.router.deliver(db, message)
        except DeliveryError as e:
            # The flag stays flipped; unrecoverable data must not loop forever.
            logger.error("Failed to deliver scheduled message %s: %s", message_id, e, exc_info=True)
            return True
        finally:
            self.router.projector.project(db, message.conversation_id, now)
        logger.info(
            "Scheduled message %s sent (delivered=%s, state=%s)",
            message_id,
            delivered,
            message.state.value,
        )
        return True

    async def _expire_one(
        self, db: Session, message_id: int, now: datetime, report: SweepReport | None = None
    ) -> bool:
        try:
            result = db.execute(
                update(Message)
                .where(Message.id == message_id, Message.due_for_expiry(now))
                .values(deleted_at=now)
                .execution_options(synchronize_session=False)
            )
            commit(db)
        except (TransientStoreError, SQLAlchemyError):
            db.rollback()
            logger.warning("Burnout message %s left pending for next sweep", message_id)
            if report is not None:
                report.failed.append(message_id)
            return False
        if result.rowcount != 1:
            return False

        message = db.get(Message, message_id)
        if message is None:  # pragma: no cover - row vanished after the claim
            return False
        db.refresh(message)
        if report is not None:
            report.expired.append(message_id)
        logger.info(
            "Marked burnout message %s as deleted (expired at %s)", message_id, message.expire_at
        )

        try:
            await self.router.notify_expired(db, message)
        except DeliveryError as e:
            logger.error("Failed to finish expiry of message %s: %s", message_id, e, exc_info=True)
        finally:
            self.router.projector.project(db, message.conversation_id, now)
        return True

    async def fire_send(self, message_id: int, now: datetime | None = None) -> bool:
        """Run the send transition for one message if it is due."""
        with self._session() as db:
            return await self._send_one(db, message_id, now or utcnow())

    async def fire_expiry(self, message_id: int, now: datetime | None = None) -> bool:
        """Run the expiry transition for one message if it is due."""
        with self._session() as db:
            return await self._expire_one(db, message_id, now or utcnow())

    def arm(self, message: Message) -> None:
        """Arm single-shot timers for a message's scheduled and expiry instants.

        Instants further away than the configured horizon are left to the
        sweep. Must be called from within the event loop.
        """
        now = utcnow()
        if message.is_scheduled and message.scheduled_at is not None:
            self._arm_timer("send", message.id, message.scheduled_at, now)
        if message.is_burnout and message.expire_at is not None:
            self._arm_timer("expire", message.id, message.expire_at, now)

    def pending_timers(self) -> list[tuple[str, int]]:
        """Return the (kind, message id) pairs with an armed timer."""
        return sorted(self._timers)

    def _arm_timer(self, kind: str, message_id: int, due: datetime, now: datetime) -> None:
        delay = (due - now).total_seconds()
        if delay > settings.timer_horizon_seconds:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.debug("No running loop; %s timer for message %s left to sweep", kind, message_id)
            return

        key = (kind, message_id)
        previous = self._timers.pop(key, None)
        if previous is not None:
            previous.cancel()
        self._timers[key] = loop.call_later(
            max(0.0, delay) + TIMER_SLACK_SECONDS, self._fire, kind, message_id
        )
        logger.debug("Armed %s timer for message %s in %.2f seconds", kind, message_id, delay)

    def _fire(self, kind: str, message_id: int) -> None:
        self._timers.pop((kind, message_id), None)
        if kind == "send":
            coro = self.fire_send(message_id)
        else:
            coro = self.fire_expiry(message_id)
        task = asyncio.create_task(coro)
        self._timer_tasks.add(task)
        task.add_done_callback(self._timer_done)

    def _timer_done(self, task: asyncio.Task[bool]) -> None:
        self._timer_tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("Lifecycle timer failed: %s", exc, exc_info=exc)
