"""Tests for the connection state machine and queries."""

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from models import Connection, ConnectionPrivacy, RemovedConnection, UserBlock
from services import RateLimiter, set_rate_limiter
from services.connections import (
    accept_connection,
    add_connection,
    cancel_connection,
    check_connection_status,
    decline_connection,
    get_accepted_peer_ids,
    get_my_connections,
    get_mutual_connections,
    get_received_requests,
    get_sent_requests,
    remove_connection,
)
from services.errors import Conflict, Forbidden, InvalidArgument, NotFound, TooManyRequests


class CountingRedis:
    def __init__(self) -> None:
        self.data: dict[str, int] = {}

    async def incr(self, key: str) -> int:
        self.data[key] = self.data.get(key, 0) + 1
        return self.data[key]

    async def expire(self, key: str, ttl: int) -> None:
        return None


class UnavailableRedis:
    async def incr(self, key: str) -> int:
        raise RedisConnectionError("redis is down")

    async def expire(self, key: str, ttl: int) -> None:  # pragma: no cover - never reached
        return None


async def _connected(session: AsyncSession, first_id: str, second_id: str) -> str:
    connection = await add_connection(session, first_id, second_id)
    await accept_connection(session, connection.id, second_id)
    return connection.id


@pytest.mark.asyncio
async def test_request_then_accept(db_session: AsyncSession, make_user):
    alice = await make_user("alice")
    bob = await make_user("bob")

    connection = await add_connection(db_session, alice.id, bob.id)
    assert connection.status == "pending"
    status = await check_connection_status(db_session, bob.id, alice.id)
    assert status.status == "pending"
    assert status.sent_by == alice.id

    with pytest.raises(Forbidden):
        await accept_connection(db_session, connection.id, alice.id)

    accepted = await accept_connection(db_session, connection.id, bob.id)
    assert accepted.status == "accepted"
    assert await get_accepted_peer_ids(db_session, alice.id) == {bob.id}

    with pytest.raises(Conflict):
        await accept_connection(db_session, connection.id, bob.id)


@pytest.mark.asyncio
async def test_existing_pair_conflicts_in_either_direction(db_session: AsyncSession, make_user):
    alice = await make_user("alice")
    bob = await make_user("bob")
    await add_connection(db_session, alice.id, bob.id)

    with pytest.raises(Conflict, match="status: pending"):
        await add_connection(db_session, alice.id, bob.id)
    with pytest.raises(Conflict, match="status: pending"):
        await add_connection(db_session, bob.id, alice.id)


@pytest.mark.asyncio
@pytest.mark.parametrize("receiver_blocks", [True, False])
async def test_block_vetoes_connection(
    db_session: AsyncSession, make_user, receiver_blocks: bool
):
    alice = await make_user("alice")
    bob = await make_user("bob")
    blocker, blocked = (bob, alice) if receiver_blocks else (alice, bob)
    db_session.add(UserBlock(blocker_id=blocker.id, blocked_id=blocked.id))
    await db_session.commit()

    with pytest.raises(Conflict):
        await add_connection(db_session, alice.id, bob.id)


@pytest.mark.asyncio
async def test_receiver_privacy_gate(db_session: AsyncSession, make_user):
    alice = await make_user("alice")
    mutual = await make_user("mutual")
    closed = await make_user("closed", connection_privacy=ConnectionPrivacy.NOBODY.value)
    picky = await make_user("picky", connection_privacy=ConnectionPrivacy.FRIEND_TO_FRIEND.value)

    with pytest.raises(InvalidArgument):
        await add_connection(db_session, alice.id, closed.id)
    with pytest.raises(InvalidArgument):
        await add_connection(db_session, alice.id, picky.id)

    await _connected(db_session, alice.id, mutual.id)
    await _connected(db_session, picky.id, mutual.id)

    connection = await add_connection(db_session, alice.id, picky.id)
    assert connection.received_by == picky.id


@pytest.mark.asyncio
async def test_decline_deletes_edge(db_session: AsyncSession, make_user):
    alice = await make_user("alice")
    bob = await make_user("bob")
    connection = await add_connection(db_session, alice.id, bob.id)

    with pytest.raises(Forbidden):
        await decline_connection(db_session, connection.id, alice.id)

    declined = await decline_connection(db_session, connection.id, bob.id)

    assert declined.status == "declined"
    assert (await check_connection_status(db_session, alice.id, bob.id)).status == "none"
    with pytest.raises(NotFound):
        await decline_connection(db_session, connection.id, bob.id)
    again = await add_connection(db_session, alice.id, bob.id)
    assert again.status == "pending"


@pytest.mark.asyncio
async def test_cancel_is_sender_only(db_session: AsyncSession, make_user):
    alice = await make_user("alice")
    bob = await make_user("bob")
    connection = await add_connection(db_session, alice.id, bob.id)

    with pytest.raises(Forbidden):
        await cancel_connection(db_session, connection.id, bob.id)
    await cancel_connection(db_session, connection.id, alice.id)

    result = await db_session.execute(select(Connection))
    assert result.scalars().all() == []


@pytest.mark.asyncio
async def test_remove_records_marker(db_session: AsyncSession, make_user):
    alice = await make_user("alice")
    bob = await make_user("bob")
    carol = await make_user("carol")
    connection_id = await _connected(db_session, alice.id, bob.id)
    pending = await add_connection(db_session, alice.id, carol.id)

    with pytest.raises(Conflict):
        await remove_connection(db_session, pending.id, alice.id)
    with pytest.raises(Forbidden):
        await remove_connection(db_session, connection_id, carol.id)

    await remove_connection(db_session, connection_id, bob.id)

    markers = await db_session.execute(select(RemovedConnection))
    assert [(m.user_id, m.removed_user_id) for m in markers.scalars().all()] == [
        (bob.id, alice.id)
    ]
    assert await get_accepted_peer_ids(db_session, alice.id) == set()


@pytest.mark.asyncio
async def test_mutual_connections(db_session: AsyncSession, make_user):
    alice = await make_user("alice")
    bob = await make_user("bob")
    shared = [await make_user(f"shared{index}") for index in range(3)]
    only_alice = await make_user("only_alice")
    for user in shared:
        await _connected(db_session, alice.id, user.id)
        await _connected(db_session, user.id, bob.id)
    await _connected(db_session, alice.id, only_alice.id)

    mutual = await get_mutual_connections(db_session, alice.id, bob.id)

    assert mutual == sorted(user.id for user in shared)
    assert mutual == await get_mutual_connections(db_session, bob.id, alice.id)


@pytest.mark.asyncio
async def test_connection_lists(db_session: AsyncSession, make_user):
    alice = await make_user("alice")
    bob = await make_user("bob")
    carol = await make_user("carol")
    dave = await make_user("dave")
    await _connected(db_session, alice.id, bob.id)
    await add_connection(db_session, carol.id, alice.id)
    await add_connection(db_session, alice.id, dave.id)

    mine = await get_my_connections(db_session, alice.id)
    received = await get_received_requests(db_session, alice.id)
    sent = await get_sent_requests(db_session, alice.id)

    assert mine.total_results == 1
    assert {mine.results[0]["sent_by"]["id"], mine.results[0]["received_by"]["id"]} == {
        alice.id,
        bob.id,
    }
    assert received.total_results == 1
    assert received.results[0]["sent_by"]["username"] == carol.username
    assert sent.total_results == 1
    assert sent.results[0]["received_by"]["username"] == dave.username


@pytest.mark.asyncio
async def test_rate_limit_rejects_excess_requests(db_session: AsyncSession, make_user):
    alice = await make_user("alice")
    bob = await make_user("bob")
    carol = await make_user("carol")
    set_rate_limiter(RateLimiter(CountingRedis(), limit=1, window_seconds=60))

    await add_connection(db_session, alice.id, bob.id)
    with pytest.raises(TooManyRequests):
        await add_connection(db_session, alice.id, carol.id)


@pytest.mark.asyncio
async def test_rate_limiter_outage_allows_requests(db_session: AsyncSession, make_user):
    alice = await make_user("alice")
    bob = await make_user("bob")
    set_rate_limiter(RateLimiter(UnavailableRedis(), limit=1, window_seconds=60))

    connection = await add_connection(db_session, alice.id, bob.id)

    assert connection.status == "pending"
