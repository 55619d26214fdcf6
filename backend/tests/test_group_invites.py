"""Tests for group invites."""

import pytest
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from models import Group, GroupInvite, InviteStatus
from services.blocks import block_user
from services.errors import Conflict, Forbidden, InvalidArgument, NotFound
from services.groups import (
    accept_group_invite,
    create_group,
    decline_group_invite,
    get_group,
    get_group_invites,
    join_group,
    send_group_invite,
)


async def _invite_status(session: AsyncSession, invite_id: str) -> str:
    result = await session.execute(select(GroupInvite.status).where(GroupInvite.id == invite_id))
    return result.scalar_one()


@pytest.mark.asyncio
async def test_send_invite_rules(db_session: AsyncSession, make_user):
    owner = await make_user("owner")
    alice = await make_user("alice")
    outsider = await make_user("outsider")
    mallory = await make_user("mallory")
    group = await create_group(db_session, owner.id, name="Secret", privacy="private")

    invite = await send_group_invite(db_session, group.id, owner.id, alice.id)
    assert invite.status == InviteStatus.PENDING.value
    assert invite.to_user_id == alice.id

    with pytest.raises(Conflict):
        await send_group_invite(db_session, group.id, owner.id, alice.id)
    with pytest.raises(Forbidden):
        await send_group_invite(db_session, group.id, outsider.id, alice.id)
    with pytest.raises(InvalidArgument):
        await send_group_invite(db_session, group.id, owner.id, owner.id)
    with pytest.raises(NotFound):
        await send_group_invite(db_session, "missing", owner.id, alice.id)

    await block_user(db_session, mallory.id, owner.id)
    with pytest.raises(Conflict):
        await send_group_invite(db_session, group.id, owner.id, mallory.id)


@pytest.mark.asyncio
async def test_cannot_invite_a_member(db_session: AsyncSession, make_user):
    owner = await make_user("owner")
    alice = await make_user("alice")
    group = await create_group(db_session, owner.id, name="Hikers")
    await join_group(db_session, group.id, alice.id)

    with pytest.raises(Conflict):
        await send_group_invite(db_session, group.id, owner.id, alice.id)


@pytest.mark.asyncio
async def test_accept_invite_joins_private_group(db_session: AsyncSession, make_user):
    owner = await make_user("owner")
    alice = await make_user("alice")
    bob = await make_user("bob")
    group = await create_group(db_session, owner.id, name="Secret", privacy="private")
    invite = await send_group_invite(db_session, group.id, owner.id, alice.id)

    with pytest.raises(Forbidden):
        await accept_group_invite(db_session, invite.id, bob.id)

    joined = await accept_group_invite(db_session, invite.id, alice.id)

    assert joined.participant_count == 2
    assert alice.id in joined.members
    assert joined.pending_members == []
    assert await _invite_status(db_session, invite.id) == InviteStatus.ACCEPTED.value
    with pytest.raises(Conflict):
        await accept_group_invite(db_session, invite.id, alice.id)


@pytest.mark.asyncio
async def test_accept_invite_clears_pending_request(db_session: AsyncSession, make_user):
    owner = await make_user("owner")
    co_member = await make_user("co_member")
    alice = await make_user("alice")
    group = await create_group(db_session, owner.id, name="Secret", privacy="private")
    await join_group(db_session, group.id, alice.id)
    first = await send_group_invite(db_session, group.id, owner.id, alice.id)

    pending = await join_group(db_session, group.id, co_member.id)
    assert co_member.id in pending.pending_members

    joined = await accept_group_invite(db_session, first.id, alice.id)

    assert alice.id in joined.members
    assert alice.id not in joined.pending_members
    assert joined.pending_members == [co_member.id]
    stored = await db_session.execute(select(Group.participant_count).where(Group.id == group.id))
    assert stored.scalar_one() == 2
    assert (await get_group(db_session, group.id)).participant_count == 2


@pytest.mark.asyncio
async def test_accept_answers_every_pending_invite_into_the_group(
    db_session: AsyncSession, make_user
):
    owner = await make_user("owner")
    bob = await make_user("bob")
    alice = await make_user("alice")
    group = await create_group(db_session, owner.id, name="Hikers")
    await join_group(db_session, group.id, bob.id)
    from_owner = await send_group_invite(db_session, group.id, owner.id, alice.id)
    from_bob = await send_group_invite(db_session, group.id, bob.id, alice.id)

    await accept_group_invite(db_session, from_bob.id, alice.id)

    assert await _invite_status(db_session, from_owner.id) == InviteStatus.ACCEPTED.value
    assert await _invite_status(db_session, from_bob.id) == InviteStatus.ACCEPTED.value
    with pytest.raises(Conflict):
        await decline_group_invite(db_session, from_owner.id, alice.id)


@pytest.mark.asyncio
async def test_decline_invite(db_session: AsyncSession, make_user):
    owner = await make_user("owner")
    alice = await make_user("alice")
    group = await create_group(db_session, owner.id, name="Secret", privacy="private")
    invite = await send_group_invite(db_session, group.id, owner.id, alice.id)

    with pytest.raises(Forbidden):
        await decline_group_invite(db_session, invite.id, owner.id)

    declined = await decline_group_invite(db_session, invite.id, alice.id)

    assert declined.status == InviteStatus.DECLINED.value
    assert (await get_group(db_session, group.id)).participant_count == 1
    with pytest.raises(Conflict):
        await accept_group_invite(db_session, invite.id, alice.id)
    with pytest.raises(NotFound):
        await decline_group_invite(db_session, "missing", alice.id)


@pytest.mark.asyncio
async def test_get_group_invites_lists_pending_with_sender_and_group(
    db_session: AsyncSession, make_user
):
    owner = await make_user("owner")
    alice = await make_user("alice")
    hikers = await create_group(db_session, owner.id, name="Hikers")
    readers = await create_group(db_session, owner.id, name="Readers")
    await send_group_invite(db_session, hikers.id, owner.id, alice.id)
    declined = await send_group_invite(db_session, readers.id, owner.id, alice.id)
    await decline_group_invite(db_session, declined.id, alice.id)

    page = await get_group_invites(db_session, alice.id)

    assert page.total_results == 1
    row = page.results[0]
    assert row["group_id"]["id"] == hikers.id
    assert row["group_id"]["name"] == "Hikers"
    assert row["from_user_id"]["id"] == owner.id
    assert row["from_user_id"]["username"] == owner.username
    assert row["to_user_id"] == alice.id
