from __future__ import annotations

from datetime import timedelta

import pytest

from parley.core.errors import NotFoundError, PermissionDeniedError
from parley.core.settings import settings
from parley.models import Conversation, GroupMember
from parley.schemas.message import DeleteMessageCommand, SendMessageCommand
from parley.services import history


def direct(sender, recipient, text="hello", **extra) -> SendMessageCommand:
    return SendMessageCommand(
        sender_id=sender.id, recipient_email=recipient.email, text=text, **extra
    )


@pytest.mark.asyncio
async def test_direct_history_is_oldest_first_and_symmetric(db_session, router, alice, bob, now):
    first = await router.send(db_session, direct(alice, bob, text="hi"), now=now)
    second = await router.send(db_session, direct(bob, alice, text="hey"), now=now + timedelta(seconds=1))

    for viewer, other in ((alice, bob), (bob, alice)):
        messages = history.direct_history(db_session, viewer.id, other.id, now=now + timedelta(seconds=2))
        assert [m.id for m in messages] == [first.message_id, second.message_id]

    entry = history.direct_history(db_session, alice.id, bob.id, now=now + timedelta(seconds=2))[1]
    assert entry.sender_name == "Bob Roe"
    assert entry.text == "hey"


@pytest.mark.asyncio
async def test_history_hides_pending_and_deleted_messages(db_session, router, alice, bob, now):
    kept = await router.send(db_session, direct(alice, bob, text="kept"), now=now)
    await router.send(
        db_session, direct(alice, bob, text="later", scheduled_at=now + timedelta(hours=1)), now=now
    )
    removed = await router.send(db_session, direct(alice, bob, text="removed"), now=now)
    await router.delete(
        db_session, DeleteMessageCommand(message_id=removed.message_id, requester_id=alice.id), now=now
    )

    messages = history.direct_history(db_session, bob.id, alice.id, now=now + timedelta(minutes=1))

    assert [m.id for m in messages] == [kept.message_id]


@pytest.mark.asyncio
async def test_sender_may_include_own_pending_messages(db_session, router, alice, bob, now):
    await router.send(db_session, direct(alice, bob, text="now"), now=now)
    pending = await router.send(
        db_session, direct(alice, bob, text="later", scheduled_at=now + timedelta(hours=1)), now=now
    )
    at = now + timedelta(minutes=1)

    own = history.direct_history(db_session, alice.id, bob.id, include_own_scheduled=True, now=at)
    theirs = history.direct_history(db_session, bob.id, alice.id, include_own_scheduled=True, now=at)

    assert pending.message_id in [m.id for m in own]
    assert own[-1].is_scheduled is True
    assert pending.message_id not in [m.id for m in theirs]


def test_direct_history_with_unknown_user(db_session, alice):
    with pytest.raises(NotFoundError):
        history.direct_history(db_session, alice.id, 9999)


def test_direct_history_without_conversation_is_empty(db_session, alice, bob):
    assert history.direct_history(db_session, alice.id, bob.id) == []


@pytest.mark.asyncio
async def test_group_history_for_members_only(db_session, router, alice, bob, group, user_factory, now):
    ack = await router.send(
        db_session, SendMessageCommand(sender_id=bob.id, group_id=group.id, text="hello team"), now=now
    )

    messages = history.group_history(db_session, group.id, alice.id, now=now + timedelta(seconds=1))
    assert [m.id for m in messages] == [ack.message_id]
    assert messages[0].group_id == group.id

    outsider = user_factory("Frank Outside")
    with pytest.raises(PermissionDeniedError):
        history.group_history(db_session, group.id, outsider.id)
    with pytest.raises(NotFoundError):
        history.group_history(db_session, 9999, alice.id)


@pytest.mark.asyncio
async def test_inbox_lists_newest_conversation_first(db_session, router, alice, bob, carol, group, now):
    await router.send(db_session, direct(bob, alice, text="from bob"), now=now)
    await router.send(
        db_session,
        SendMessageCommand(sender_id=carol.id, group_id=group.id, text="group news"),
        now=now + timedelta(seconds=10),
    )

    entries = history.inbox(db_session, alice.id, now=now + timedelta(seconds=20))

    assert [entry.is_group for entry in entries] == [True, False]
    assert entries[0].group_name == "Weekend Plans"
    assert entries[0].last_message.text == "group news"
    assert entries[1].peer_id == bob.id
    assert entries[1].peer_email == bob.email
    assert entries[1].last_message.text == "from bob"


@pytest.mark.asyncio
async def test_inbox_reprojects_stale_preview(db_session, router, alice, bob, now):
    stay = await router.send(db_session, direct(alice, bob, text="stays"), now=now)
    burn = await router.send(
        db_session,
        direct(alice, bob, text="burns", expire_at=now + timedelta(seconds=10)),
        now=now + timedelta(seconds=1),
    )
    assert db_session.get(Conversation, stay.conversation_id).last_message_id == burn.message_id

    # No sweep has run, but the burnout window closed.
    entries = history.inbox(db_session, bob.id, now=now + timedelta(seconds=30))

    assert entries[0].last_message.id == stay.message_id
    assert db_session.get(Conversation, stay.conversation_id).last_message_id == stay.message_id


@pytest.mark.asyncio
async def test_inbox_skips_direct_conversations_without_preview(db_session, router, alice, bob, now):
    await router.send(
        db_session, direct(alice, bob, scheduled_at=now + timedelta(hours=1)), now=now
    )

    assert history.inbox(db_session, bob.id, now=now + timedelta(minutes=1)) == []


@pytest.mark.asyncio
async def test_history_keeps_the_newest_page(db_session, router, alice, bob, now, monkeypatch):
    monkeypatch.setattr(settings, "history_limit", 2)
    sent = []
    for offset, text in enumerate(["one", "two", "three"]):
        ack = await router.send(
            db_session, direct(alice, bob, text=text), now=now + timedelta(seconds=offset)
        )
        sent.append(ack.message_id)

    messages = history.direct_history(db_session, bob.id, alice.id, now=now + timedelta(minutes=1))

    assert [m.id for m in messages] == sent[1:]
    assert [m.text for m in messages] == ["two", "three"]


@pytest.mark.asyncio
async def test_inbox_follows_group_membership_swap(
    db_session, router, alice, bob, carol, group, user_factory, now
):
    await router.send(
        db_session, SendMessageCommand(sender_id=alice.id, group_id=group.id, text="hello"), now=now
    )

    # One member leaves and another joins, so the head count is unchanged.
    dave = user_factory("Dave Joiner")
    db_session.delete(db_session.get(GroupMember, (group.id, carol.id)))
    db_session.add(GroupMember(group_id=group.id, user_id=dave.id))
    db_session.commit()

    ack = await router.send(
        db_session,
        SendMessageCommand(sender_id=alice.id, group_id=group.id, text="secret"),
        now=now + timedelta(seconds=1),
    )
    at = now + timedelta(seconds=2)

    assert history.inbox(db_session, carol.id, now=at) == []
    dave_inbox = history.inbox(db_session, dave.id, now=at)
    assert [entry.last_message.text for entry in dave_inbox] == ["secret"]

    conversation = db_session.get(Conversation, ack.conversation_id)
    assert sorted(conversation.participant_ids) == sorted([alice.id, bob.id, dave.id])
