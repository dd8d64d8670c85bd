from __future__ import annotations

from datetime import timedelta

import pytest

from parley.models import Conversation, Message
from parley.schemas.message import SendMessageCommand


async def _send(router, db, sender, recipient, now, text="hi", **extra):
    command = SendMessageCommand(
        sender_id=sender.id, recipient_email=recipient.email, text=text, **extra
    )
    return await router.send(db, command, now=now)


@pytest.mark.asyncio
async def test_pointer_follows_latest_visible_message(db_session, router, projector, alice, bob, now):
    first = await _send(router, db_session, alice, bob, now, text="one")
    second = await _send(router, db_session, bob, alice, now + timedelta(seconds=5), text="two")

    conversation = db_session.get(Conversation, first.conversation_id)
    assert conversation.last_message_id == second.message_id
    assert projector.project(db_session, conversation.id, now + timedelta(seconds=6)).id == second.message_id


@pytest.mark.asyncio
async def test_pointer_skips_future_scheduled_message(db_session, router, projector, alice, bob, now):
    visible = await _send(router, db_session, alice, bob, now, text="now")
    pending = await _send(
        router, db_session, alice, bob, now, text="later", scheduled_at=now + timedelta(minutes=5)
    )

    latest = projector.project(db_session, visible.conversation_id, now + timedelta(minutes=1))
    assert latest.id == visible.message_id

    # Once the instant passes the scheduled message becomes the preview.
    latest = projector.project(db_session, visible.conversation_id, now + timedelta(minutes=6))
    assert latest.id == pending.message_id


@pytest.mark.asyncio
async def test_pointer_skips_expired_burnout_and_clears(db_session, router, projector, alice, bob, now):
    ack = await _send(
        router, db_session, alice, bob, now, text="poof", expire_at=now + timedelta(seconds=10)
    )
    conversation_id = ack.conversation_id
    assert db_session.get(Conversation, conversation_id).last_message_id == ack.message_id

    assert projector.project(db_session, conversation_id, now + timedelta(seconds=11)) is None
    assert db_session.get(Conversation, conversation_id).last_message_id is None


@pytest.mark.asyncio
async def test_pointer_skips_deleted_message(db_session, router, projector, alice, bob, now):
    older = await _send(router, db_session, alice, bob, now, text="keep")
    newer = await _send(router, db_session, alice, bob, now + timedelta(seconds=1), text="drop")

    message = db_session.get(Message, newer.message_id)
    message.deleted_at = now + timedelta(seconds=2)
    db_session.commit()

    latest = projector.project(db_session, older.conversation_id, now + timedelta(seconds=3))
    assert latest.id == older.message_id


@pytest.mark.asyncio
async def test_projection_is_idempotent(db_session, router, projector, alice, bob, now):
    ack = await _send(router, db_session, alice, bob, now)
    at = now + timedelta(seconds=1)

    first = projector.project(db_session, ack.conversation_id, at)
    second = projector.project(db_session, ack.conversation_id, at)

    assert first.id == second.id
    assert db_session.get(Conversation, ack.conversation_id).last_message_id == first.id


def test_project_missing_conversation_returns_none(db_session, projector, now):
    assert projector.project(db_session, 4242, now) is None


@pytest.mark.asyncio
async def test_scheduled_message_orders_by_its_send_instant(db_session, router, projector, alice, bob, now):
    scheduled = await _send(
        router, db_session, alice, bob, now, text="early bird", scheduled_at=now + timedelta(minutes=1)
    )
    # Created later but visible earlier than the scheduled instant.
    immediate = await _send(router, db_session, bob, alice, now + timedelta(seconds=30), text="reply")

    latest = projector.project(db_session, immediate.conversation_id, now + timedelta(minutes=2))
    assert latest.id == scheduled.message_id

