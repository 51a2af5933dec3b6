"""Tests for claim-and-pair matchmaking and search loops."""

import asyncio
from uuid import UUID

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError

from app.db.models import Chat, Profile
from app.services.events import CHAT_CREATED, event_broker, user_topic
from app.services.matchmaker import canonical_pair, matchmaker

from conftest import make_user


async def _active_chats(session_factory) -> list[Chat]:
    async with session_factory() as s:
        result = await s.execute(select(Chat).where(Chat.active.is_(True)))
        return list(result.scalars())


async def _is_searching(session_factory, user_id: UUID) -> bool:
    async with session_factory() as s:
        return (await s.get(Profile, user_id)).is_searching


def test_canonical_pair_orders_ids():
    low, high = UUID(int=5), UUID(int=9)
    assert canonical_pair(high, low) == (low, high)
    assert canonical_pair(low, high) == (low, high)


async def test_tick_without_candidates_creates_nothing(db, session_factory):
    alone = await make_user(db, "Alone", searching=True)
    alone_id = alone.id

    assert await matchmaker.search_tick(db, alone_id) is None
    await db.rollback()
    assert await _active_chats(session_factory) == []
    assert await _is_searching(session_factory, alone_id)


async def test_tick_ignores_user_not_searching(db, session_factory):
    idle = await make_user(db, "Idle")
    await make_user(db, "Eager", searching=True)

    assert await matchmaker.search_tick(db, idle.id) is None
    await db.rollback()
    assert await _active_chats(session_factory) == []


async def test_tick_pairs_in_canonical_order_and_clears_both_flags(db, session_factory):
    high = await make_user(db, "Zoya", user_id=UUID(int=20), searching=True)
    low = await make_user(db, "Arun", user_id=UUID(int=10), searching=True)

    chat = await matchmaker.search_tick(db, high.id)
    await db.commit()

    assert chat is not None
    assert (chat.user1_id, chat.user2_id) == (low.id, high.id)
    assert chat.stage == 0
    assert chat.active
    assert not await _is_searching(session_factory, high.id)
    assert not await _is_searching(session_factory, low.id)


async def test_tick_is_idempotent_when_pair_already_active(db, session_factory):
    a = await make_user(db, "Asha", user_id=UUID(int=1), searching=True)
    b = await make_user(db, "Bilal", user_id=UUID(int=2), searching=True)
    db.add(Chat(user1_id=a.id, user2_id=b.id))
    await db.commit()

    assert await matchmaker.search_tick(db, b.id) is None
    await db.rollback()
    assert len(await _active_chats(session_factory)) == 1


async def test_candidates_with_active_chat_are_skipped(db, session_factory):
    a = await make_user(db, "Asha", user_id=UUID(int=1))
    b = await make_user(db, "Bilal", user_id=UUID(int=2), searching=True)
    c = await make_user(db, "Chitra", user_id=UUID(int=3), searching=True)
    db.add(Chat(user1_id=a.id, user2_id=b.id))
    await db.commit()

    # Bilal's radar flag is stale; only Chitra is really available
    assert await matchmaker.search_tick(db, c.id) is None
    await db.rollback()
    assert len(await _active_chats(session_factory)) == 1


async def test_stale_flag_of_chatting_user_never_opens_second_chat(db, session_factory):
    a = await make_user(db, "Asha", user_id=UUID(int=1))
    b = await make_user(db, "Bilal", user_id=UUID(int=2), searching=True)
    await make_user(db, "Chitra", user_id=UUID(int=3), searching=True)
    db.add(Chat(user1_id=a.id, user2_id=b.id))
    await db.commit()

    # Bilal is chatting with Asha but his radar flag was left on
    assert await matchmaker.search_tick(db, b.id) is None
    await db.commit()

    chats = await _active_chats(session_factory)
    assert [(c.user1_id, c.user2_id) for c in chats] == [(a.id, b.id)]
    assert not await _is_searching(session_factory, b.id)
    assert await _is_searching(session_factory, UUID(int=3))


async def test_sequential_ticks_from_both_sides_create_one_chat(session_factory, loops):
    async with session_factory() as s:
        a = await make_user(s, "Asha", searching=True)
        b = await make_user(s, "Bilal", searching=True)

    first = await loops.tick(a.id)
    second = await loops.tick(b.id)

    assert first is not None
    assert second is None
    assert len(await _active_chats(session_factory)) == 1


async def test_concurrent_ticks_create_one_chat(session_factory, loops):
    async with session_factory() as s:
        a = await make_user(s, "Asha", searching=True)
        b = await make_user(s, "Bilal", searching=True)

    # SQLite may refuse the losing writer outright instead of letting it
    # reach the unique index; either way it must not create a chat
    results = await asyncio.gather(loops.tick(a.id), loops.tick(b.id), return_exceptions=True)

    assert sum(isinstance(r, Chat) for r in results) == 1
    chats = await _active_chats(session_factory)
    assert len(chats) == 1
    assert {chats[0].user1_id, chats[0].user2_id} == {a.id, b.id}


async def test_unique_index_rejects_second_active_chat_for_pair(db, pair):
    a, b = pair
    db.add(Chat(user1_id=a.id, user2_id=b.id))
    await db.commit()

    db.add(Chat(user1_id=a.id, user2_id=b.id))
    with pytest.raises(IntegrityError):
        await db.commit()


async def test_ended_chat_does_not_block_rematch(db, session_factory, pair):
    a, b = pair
    db.add(Chat(user1_id=a.id, user2_id=b.id, active=False, stage=2))
    for user in pair:
        (await db.get(Profile, user.id)).is_searching = True
    await db.commit()

    chat = await matchmaker.search_tick(db, a.id)
    await db.commit()

    assert chat is not None
    async with session_factory() as s:
        total = (await s.execute(select(func.count()).select_from(Chat))).scalar()
    assert total == 2


# =============================================================================
# SEARCH LOOPS
# =============================================================================


async def test_loops_pair_two_searchers_and_stop(session_factory, loops):
    async with session_factory() as s:
        a = await make_user(s, "Asha", searching=True)
        b = await make_user(s, "Bilal", searching=True)

    async with event_broker.subscription(user_topic(a.id)) as a_feed, \
            event_broker.subscription(user_topic(b.id)) as b_feed:
        loops.start(a.id)
        loops.start(b.id)

        a_event = await asyncio.wait_for(a_feed.get(), timeout=2)
        b_event = await asyncio.wait_for(b_feed.get(), timeout=2)

    assert a_event["event"] == CHAT_CREATED
    assert b_event["data"]["id"] == a_event["data"]["id"]

    for _ in range(100):
        if not loops.is_running(a.id) and not loops.is_running(b.id):
            break
        await asyncio.sleep(0.01)
    assert not loops.is_running(a.id)
    assert not loops.is_running(b.id)
    assert len(await _active_chats(session_factory)) == 1


async def test_loop_stops_immediately_on_request(session_factory, loops):
    async with session_factory() as s:
        a = await make_user(s, "Asha", searching=True)

    loops.start(a.id)
    assert loops.is_running(a.id)

    loops.stop(a.id)
    assert not loops.is_running(a.id)
    await asyncio.sleep(0.05)
    assert await _active_chats(session_factory) == []


async def test_loop_exits_when_flag_cleared_elsewhere(session_factory, loops):
    async with session_factory() as s:
        a = await make_user(s, "Asha", searching=True)

    loops.start(a.id)
    async with session_factory() as s:
        (await s.get(Profile, a.id)).is_searching = False
        await s.commit()

    for _ in range(100):
        if not loops.is_running(a.id):
            break
        await asyncio.sleep(0.01)
    assert not loops.is_running(a.id)
