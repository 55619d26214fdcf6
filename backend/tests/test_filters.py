"""Tests for filter-object compilation."""

import pytest
from sqlalchemy.ext.asyncio import AsyncSession

from models import User
from services.errors import InvalidArgument
from services.query import PaginateOptions, compile_filter, paginate, table_column_resolver

RESOLVE_USER_COLUMN = table_column_resolver(User.__table__)


async def _usernames(session: AsyncSession, filters: dict) -> set[str]:
    page = await paginate(session, User, filters, PaginateOptions(limit=100))
    return {row["username"] for row in page.results}


@pytest.mark.asyncio
async def test_field_operators(db_session: AsyncSession, make_user):
    alice = await make_user("alice", country="FR", age_range="25-34")
    bob = await make_user("bob", country="DE", age_range="35-44")
    carol = await make_user("carol")

    assert await _usernames(db_session, {"country": "FR"}) == {alice.username}
    assert await _usernames(db_session, {"country": {"$ne": "FR"}}) == {
        bob.username,
        carol.username,
    }
    assert await _usernames(db_session, {"country": {"$in": ["FR", "DE"]}}) == {
        alice.username,
        bob.username,
    }
    assert await _usernames(db_session, {"country": {"$nin": ["FR"]}}) == {
        bob.username,
        carol.username,
    }
    assert await _usernames(db_session, {"age_range": {"$gte": "30"}}) == {bob.username}
    assert await _usernames(db_session, {"country": None}) == {carol.username}


@pytest.mark.asyncio
async def test_empty_in_matches_nothing_and_empty_nin_matches_everything(
    db_session: AsyncSession, make_user
):
    await make_user("alice")
    await make_user("bob")

    assert await _usernames(db_session, {"id": {"$in": []}}) == set()
    assert len(await _usernames(db_session, {"id": {"$nin": []}})) == 2


@pytest.mark.asyncio
async def test_or_and_combinations(db_session: AsyncSession, make_user):
    alice = await make_user("alice", country="FR", profession="chef")
    bob = await make_user("bob", country="DE", profession="chef")
    await make_user("carol", country="DE", profession="pilot")

    either = {"$or": [{"country": "FR"}, {"profession": "chef"}]}
    assert await _usernames(db_session, either) == {alice.username, bob.username}

    both = {"$and": [{"country": "DE"}, {"profession": "chef"}]}
    assert await _usernames(db_session, both) == {bob.username}


def test_unknown_field_is_rejected():
    with pytest.raises(InvalidArgument):
        compile_filter({"shoe_size": 42}, RESOLVE_USER_COLUMN)


def test_unknown_operator_is_rejected():
    with pytest.raises(InvalidArgument):
        compile_filter({"country": {"$regex": "F.*"}}, RESOLVE_USER_COLUMN)
    with pytest.raises(InvalidArgument):
        compile_filter({"$nor": [{"country": "FR"}]}, RESOLVE_USER_COLUMN)


def test_logical_operators_need_a_non_empty_list():
    with pytest.raises(InvalidArgument):
        compile_filter({"$or": []}, RESOLVE_USER_COLUMN)
    with pytest.raises(InvalidArgument):
        compile_filter({"$and": {"country": "FR"}}, RESOLVE_USER_COLUMN)


def test_in_operand_must_be_a_list():
    with pytest.raises(InvalidArgument):
        compile_filter({"country": {"$in": "FR"}}, RESOLVE_USER_COLUMN)
