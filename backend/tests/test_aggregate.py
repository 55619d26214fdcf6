"""Tests for the aggregation pipeline compiler and aggregate pagination."""

import pytest
from sqlalchemy.ext.asyncio import AsyncSession

from models import Connection, ConnectionStatus, User, build_pair_key
from services.errors import InvalidArgument
from services.query import (
    COLLECTION_ALIASES,
    Count,
    Limit,
    Lookup,
    Match,
    PaginateOptions,
    Pipeline,
    PopulateOption,
    Project,
    Skip,
    Sort,
    Unwind,
    aggregate,
    aggregate_paginate,
    collection_for_field,
    register_collection_alias,
)

MISSING_USER_ID = "00000000-0000-0000-0000-000000000000"


async def _connect(session: AsyncSession, sent_by: str, received_by: str, status: str) -> None:
    session.add(
        Connection(
            sent_by=sent_by,
            received_by=received_by,
            status=status,
            pair_key=build_pair_key(sent_by, received_by),
        )
    )
    await session.commit()


@pytest.mark.asyncio
async def test_lookup_without_unwind_yields_lists(db_session: AsyncSession, make_user):
    alice = await make_user("alice")
    bob = await make_user("bob")
    await _connect(db_session, alice.id, bob.id, ConnectionStatus.PENDING.value)
    # SQLite does not enforce foreign keys here, which lets us model a dangling reference.
    await _connect(db_session, MISSING_USER_ID, bob.id, ConnectionStatus.PENDING.value)

    pipeline = Pipeline().append(
        Sort("created_at"),
        Lookup(from_collection="users", local_field="sent_by", as_field="sender", select="username"),
    )
    documents = await aggregate(db_session, Connection, pipeline)

    senders = sorted((doc["sender"] for doc in documents), key=len)
    assert senders[0] == []
    assert senders[1] == [{"id": alice.id, "username": alice.username}]


@pytest.mark.asyncio
async def test_unwind_drops_unmatched_unless_preserved(db_session: AsyncSession, make_user):
    alice = await make_user("alice")
    bob = await make_user("bob")
    await _connect(db_session, alice.id, bob.id, ConnectionStatus.PENDING.value)
    await _connect(db_session, MISSING_USER_ID, bob.id, ConnectionStatus.PENDING.value)

    lookup = Lookup(from_collection="users", local_field="sent_by", as_field="sender")
    dropped = await aggregate(
        db_session, Connection, Pipeline().append(lookup, Unwind("$sender"))
    )
    preserved = await aggregate(
        db_session,
        Connection,
        Pipeline().append(lookup, Unwind("$sender", preserve_null_and_empty_arrays=True)),
    )

    assert len(dropped) == 1
    assert dropped[0]["sender"]["username"] == alice.username
    assert len(preserved) == 2
    assert None in [doc["sender"] for doc in preserved]


@pytest.mark.asyncio
async def test_match_after_limit_applies_to_limited_rows(db_session: AsyncSession, make_user):
    users = [await make_user(f"user{index}") for index in range(5)]
    last = sorted(user.username for user in users)[-1]

    before = Pipeline().append(Match({"username": last}), Sort("username"), Limit(2))
    after = Pipeline().append(Sort("username"), Limit(2), Match({"username": last}))

    assert [doc["username"] for doc in await aggregate(db_session, User, before)] == [last]
    assert await aggregate(db_session, User, after) == []


@pytest.mark.asyncio
async def test_skip_and_limit_keep_sort_order(db_session: AsyncSession, make_user):
    users = [await make_user(f"user{index}") for index in range(6)]
    names = sorted(user.username for user in users)

    pipeline = Pipeline().append(Sort("username"), Skip(1), Limit(4), Skip(1), Limit(2))
    documents = await aggregate(db_session, User, pipeline)

    assert [doc["username"] for doc in documents] == names[2:4]


@pytest.mark.asyncio
async def test_count_stage(db_session: AsyncSession, make_user):
    await make_user("alice", country="FR")
    await make_user("bob", country="FR")

    counted = await aggregate(
        db_session, User, Pipeline().append(Match({"country": "FR"}), Count("matches"))
    )
    nothing = await aggregate(
        db_session, User, Pipeline().append(Match({"country": "DE"}), Count())
    )

    assert counted == [{"matches": 2}]
    assert nothing == []


@pytest.mark.asyncio
async def test_count_must_be_last(db_session: AsyncSession):
    with pytest.raises(InvalidArgument):
        await aggregate(db_session, User, Pipeline().append(Count(), Match({"country": "FR"})))


@pytest.mark.asyncio
async def test_project_restricts_fields(db_session: AsyncSession, make_user):
    await make_user("alice", country="FR")

    documents = await aggregate(db_session, User, Pipeline().append(Project("username country")))

    assert set(documents[0]) == {"id", "username", "country"}


@pytest.mark.asyncio
async def test_unwind_requires_lookup(db_session: AsyncSession):
    with pytest.raises(InvalidArgument):
        await aggregate(db_session, Connection, Pipeline().append(Unwind("$sent_by")))


@pytest.mark.asyncio
async def test_aggregate_paginate_populates_aliased_fields(db_session: AsyncSession, make_user):
    alice = await make_user("alice")
    bob = await make_user("bob")
    carol = await make_user("carol")
    await _connect(db_session, alice.id, carol.id, ConnectionStatus.PENDING.value)
    await _connect(db_session, bob.id, carol.id, ConnectionStatus.PENDING.value)
    await _connect(db_session, alice.id, bob.id, ConnectionStatus.ACCEPTED.value)

    pipeline = Pipeline().append(Match({"received_by": carol.id}))
    options = PaginateOptions(
        limit=1,
        sort_by="-created_at",
        populate=[PopulateOption(path="sent_by", select="username")],
    )
    first = await aggregate_paginate(db_session, Connection, pipeline, options)
    second = await aggregate_paginate(
        db_session, Connection, pipeline, options.model_copy(update={"page": 2})
    )

    assert first.total_results == second.total_results == 2
    assert first.total_pages == 2
    senders = {first.results[0]["sent_by"]["username"], second.results[0]["sent_by"]["username"]}
    assert senders == {alice.username, bob.username}
    assert first.results[0]["received_by"] == carol.id


@pytest.mark.asyncio
async def test_unknown_collection_is_rejected(db_session: AsyncSession):
    pipeline = Pipeline().append(
        Lookup(from_collection="planets", local_field="sent_by", as_field="planet")
    )
    with pytest.raises(InvalidArgument):
        await aggregate(db_session, Connection, pipeline)


def test_collection_aliases_are_extensible():
    assert collection_for_field("sent_by") == "users"
    assert collection_for_field("groups") == "groups"

    register_collection_alias("owner_id", "users")
    try:
        assert collection_for_field("owner_id") == "users"
    finally:
        COLLECTION_ALIASES.pop("owner_id")
