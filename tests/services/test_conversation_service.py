"""Tests for ConversationService behaviour and read-state bookkeeping."""

from __future__ import annotations

import uuid
from datetime import timedelta

import pytest
from sqlalchemy import func, select

from parley.db.time import utcnow
from parley.models import ConversationParticipant, Message
from parley.services.errors import NotFoundError, UnauthorizedError, ValidationFailure


def _unread_for(service, user_id, conversation_id) -> int:
    for summary in service.list_user_conversations(user_id):
        if summary.id == conversation_id:
            return summary.unread_count
    raise AssertionError("conversation not listed")


@pytest.mark.asyncio
async def test_creator_is_always_a_participant(conversation_service, alice, bob) -> None:
    """The creator joins even when omitted from the participant list."""
    summary = await conversation_service.create_conversation(alice, [bob.user_id])

    member_ids = {participant.user_id for participant in summary.participants}
    assert member_ids == {alice.user_id, bob.user_id}


@pytest.mark.asyncio
async def test_duplicate_participant_ids_are_collapsed(
    conversation_service, db_session, alice, bob
) -> None:
    summary = await conversation_service.create_conversation(
        alice, [bob.user_id, bob.user_id, alice.user_id]
    )

    count = db_session.scalar(
        select(func.count())
        .select_from(ConversationParticipant)
        .where(ConversationParticipant.conversation_id == summary.id)
    )
    assert count == 2


@pytest.mark.asyncio
async def test_create_requires_participants(conversation_service, alice) -> None:
    with pytest.raises(ValidationFailure):
        await conversation_service.create_conversation(alice, [])


@pytest.mark.asyncio
async def test_creator_snapshot_comes_from_token_claims(conversation_service, alice, bob) -> None:
    summary = await conversation_service.create_conversation(alice, [bob.user_id])

    creator = next(p for p in summary.participants if p.user_id == alice.user_id)
    other = next(p for p in summary.participants if p.user_id == bob.user_id)
    assert creator.username == "alice"
    assert creator.display_name == "Alice Liddell"
    assert creator.avatar_url == alice.avatar_url
    # No identity service configured: the other participant has an empty snapshot.
    assert other.username is None


@pytest.mark.asyncio
async def test_untitled_conversation_derives_display_title(
    conversation_service, alice, bob
) -> None:
    summary = await conversation_service.create_conversation(alice, [bob.user_id], title="  ")

    assert summary.title is None
    assert summary.display_title == str(bob.user_id)


@pytest.mark.asyncio
async def test_blank_initial_message_is_ignored(conversation_service, db_session, alice, bob) -> None:
    summary = await conversation_service.create_conversation(
        alice, [bob.user_id], initial_message="   "
    )

    assert summary.last_message is None
    assert summary.last_message_at is None
    assert db_session.scalar(select(func.count()).select_from(Message)) == 0


@pytest.mark.asyncio
async def test_scenario_initial_message_then_mark_read(conversation_service, alice, bob) -> None:
    """Initial message is unread for the recipient until they mark the conversation read."""
    summary = await conversation_service.create_conversation(
        alice, [bob.user_id], initial_message="hi"
    )

    detail = conversation_service.get_conversation_detail(summary.id, bob.user_id)
    assert [message.content for message in detail.messages] == ["hi"]
    assert _unread_for(conversation_service, bob.user_id, summary.id) == 1
    assert _unread_for(conversation_service, alice.user_id, summary.id) == 0

    assert conversation_service.mark_conversation_read(summary.id, bob.user_id) is True
    assert _unread_for(conversation_service, bob.user_id, summary.id) == 0


@pytest.mark.asyncio
async def test_unread_count_counts_only_others_after_cursor(
    conversation_service, message_service, alice, bob
) -> None:
    summary = await conversation_service.create_conversation(alice, [bob.user_id])

    await message_service.send_message(alice.user_id, summary.id, "one")
    await message_service.send_message(alice.user_id, summary.id, "two")
    await message_service.send_message(bob.user_id, summary.id, "reply")
    await message_service.send_message(alice.user_id, summary.id, "three")

    # Bob's reply advanced his cursor past "one" and "two".
    assert _unread_for(conversation_service, bob.user_id, summary.id) == 1
    assert _unread_for(conversation_service, alice.user_id, summary.id) == 0


@pytest.mark.asyncio
async def test_null_read_cursor_counts_every_message_from_others(
    conversation_service, message_service, alice, bob, carol
) -> None:
    summary = await conversation_service.create_conversation(
        alice, [bob.user_id, carol.user_id]
    )
    await message_service.send_message(alice.user_id, summary.id, "from alice")
    await message_service.send_message(bob.user_id, summary.id, "from bob")

    assert _unread_for(conversation_service, carol.user_id, summary.id) == 2


@pytest.mark.asyncio
async def test_mark_read_never_moves_cursor_backward(
    conversation_service, message_service, db_session, alice, bob
) -> None:
    summary = await conversation_service.create_conversation(alice, [bob.user_id])
    await message_service.send_message(alice.user_id, summary.id, "hello")

    conversation_service.mark_conversation_read(summary.id, bob.user_id)
    cursor = db_session.get(ConversationParticipant, (summary.id, bob.user_id)).last_read_at

    conversation_service.mark_conversation_read(
        summary.id, bob.user_id, cursor - timedelta(hours=1)
    )
    participant = db_session.get(ConversationParticipant, (summary.id, bob.user_id))
    assert participant.last_read_at == cursor
    assert _unread_for(conversation_service, bob.user_id, summary.id) == 0


@pytest.mark.asyncio
async def test_mark_read_clamps_future_timestamps(
    conversation_service, db_session, alice, bob
) -> None:
    summary = await conversation_service.create_conversation(alice, [bob.user_id])

    conversation_service.mark_conversation_read(
        summary.id, bob.user_id, utcnow() + timedelta(days=1)
    )

    participant = db_session.get(ConversationParticipant, (summary.id, bob.user_id))
    assert participant.last_read_at <= utcnow()


@pytest.mark.asyncio
async def test_mark_read_requires_membership(conversation_service, alice, bob, carol) -> None:
    summary = await conversation_service.create_conversation(alice, [bob.user_id])

    with pytest.raises(UnauthorizedError):
        conversation_service.mark_conversation_read(summary.id, carol.user_id)


@pytest.mark.asyncio
async def test_unread_conversations_count(
    conversation_service, message_service, alice, bob, carol
) -> None:
    first = await conversation_service.create_conversation(alice, [bob.user_id])
    second = await conversation_service.create_conversation(carol, [bob.user_id])
    await conversation_service.create_conversation(alice, [bob.user_id])

    await message_service.send_message(alice.user_id, first.id, "ping")
    await message_service.send_message(carol.user_id, second.id, "pong")
    await message_service.send_message(carol.user_id, second.id, "pong again")

    assert conversation_service.get_unread_conversations_count(bob.user_id) == 2
    conversation_service.mark_conversation_read(first.id, bob.user_id)
    assert conversation_service.get_unread_conversations_count(bob.user_id) == 1
    assert conversation_service.get_unread_conversations_count(alice.user_id) == 0


@pytest.mark.asyncio
async def test_list_orders_by_most_recent_activity(
    conversation_service, message_service, alice, bob, carol
) -> None:
    older = await conversation_service.create_conversation(alice, [bob.user_id])
    newer = await conversation_service.create_conversation(alice, [carol.user_id])

    listed = [summary.id for summary in conversation_service.list_user_conversations(alice.user_id)]
    assert listed == [newer.id, older.id]

    await message_service.send_message(bob.user_id, older.id, "bump")
    listed = [summary.id for summary in conversation_service.list_user_conversations(alice.user_id)]
    assert listed == [older.id, newer.id]


@pytest.mark.asyncio
async def test_list_is_paginated(conversation_service, alice, bob) -> None:
    for _ in range(3):
        await conversation_service.create_conversation(alice, [bob.user_id])

    first_page = conversation_service.list_user_conversations(alice.user_id, page=1, page_size=2)
    second_page = conversation_service.list_user_conversations(alice.user_id, page=2, page_size=2)

    assert len(first_page) == 2
    assert len(second_page) == 1
    assert {s.id for s in first_page}.isdisjoint({s.id for s in second_page})


def test_list_rejects_invalid_page(conversation_service, alice) -> None:
    with pytest.raises(ValidationFailure):
        conversation_service.list_user_conversations(alice.user_id, page=0)


def test_detail_of_missing_conversation(conversation_service, alice) -> None:
    with pytest.raises(NotFoundError):
        conversation_service.get_conversation_detail(uuid.uuid4(), alice.user_id)


@pytest.mark.asyncio
async def test_detail_requires_membership(conversation_service, alice, bob, carol) -> None:
    summary = await conversation_service.create_conversation(alice, [bob.user_id])

    with pytest.raises(UnauthorizedError):
        conversation_service.get_conversation_detail(summary.id, carol.user_id)


@pytest.mark.asyncio
async def test_detail_returns_latest_messages_oldest_first(
    conversation_service, message_service, alice, bob
) -> None:
    summary = await conversation_service.create_conversation(alice, [bob.user_id])
    for index in range(5):
        await message_service.send_message(alice.user_id, summary.id, f"m{index}")

    detail = conversation_service.get_conversation_detail(
        summary.id, bob.user_id, message_limit=3
    )
    assert [message.content for message in detail.messages] == ["m2", "m3", "m4"]


@pytest.mark.asyncio
async def test_add_participant_is_idempotent(
    conversation_service, db_session, alice, bob, carol
) -> None:
    summary = await conversation_service.create_conversation(alice, [bob.user_id])

    first = await conversation_service.add_participant(alice.user_id, summary.id, carol.user_id)
    second = await conversation_service.add_participant(alice.user_id, summary.id, carol.user_id)

    assert first.user_id == second.user_id == carol.user_id
    count = db_session.scalar(
        select(func.count())
        .select_from(ConversationParticipant)
        .where(
            ConversationParticipant.conversation_id == summary.id,
            ConversationParticipant.user_id == carol.user_id,
        )
    )
    assert count == 1


@pytest.mark.asyncio
async def test_add_participant_requires_membership(
    conversation_service, alice, bob, carol
) -> None:
    summary = await conversation_service.create_conversation(alice, [bob.user_id])

    with pytest.raises(UnauthorizedError):
        await conversation_service.add_participant(carol.user_id, summary.id, carol.user_id)


@pytest.mark.asyncio
async def test_add_participant_to_missing_conversation(conversation_service, alice, bob) -> None:
    with pytest.raises(NotFoundError):
        await conversation_service.add_participant(alice.user_id, uuid.uuid4(), bob.user_id)


@pytest.mark.asyncio
async def test_removed_participant_loses_access(
    conversation_service, alice, bob, carol
) -> None:
    summary = await conversation_service.create_conversation(
        alice, [bob.user_id, carol.user_id]
    )

    assert await conversation_service.remove_participant(
        alice.user_id, summary.id, carol.user_id
    ) is True

    with pytest.raises(UnauthorizedError):
        conversation_service.get_conversation_detail(summary.id, carol.user_id)
    detail = conversation_service.get_conversation_detail(summary.id, bob.user_id)
    assert carol.user_id not in {participant.user_id for participant in detail.participants}


@pytest.mark.asyncio
async def test_participant_can_leave(conversation_service, alice, bob) -> None:
    summary = await conversation_service.create_conversation(alice, [bob.user_id])

    assert await conversation_service.remove_participant(
        bob.user_id, summary.id, bob.user_id
    ) is True
    assert conversation_service.list_user_conversations(bob.user_id) == []


@pytest.mark.asyncio
async def test_remove_non_participant_returns_false(
    conversation_service, alice, bob, carol
) -> None:
    summary = await conversation_service.create_conversation(alice, [bob.user_id])

    assert await conversation_service.remove_participant(
        alice.user_id, summary.id, carol.user_id
    ) is False


@pytest.mark.asyncio
async def test_outsider_cannot_remove_others(conversation_service, alice, bob, carol) -> None:
    summary = await conversation_service.create_conversation(alice, [bob.user_id])

    with pytest.raises(UnauthorizedError):
        await conversation_service.remove_participant(carol.user_id, summary.id, bob.user_id)
