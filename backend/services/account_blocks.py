"""Block-state predicates shared by every relationship service."""

from __future__ import annotations

from dataclasses import dataclass
from typing import cast

from sqlalchemy import and_, delete, exists, or_, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.sql import ColumnElement

from models import Connection, Follow, UserBlock, build_pair_key

from .query.common import eq


def _block_between(first_id: object, second_id: object) -> ColumnElement[bool]:
    return or_(
        and_(eq(UserBlock.blocker_id, first_id), eq(UserBlock.blocked_id, second_id)),
        and_(eq(UserBlock.blocker_id, second_id), eq(UserBlock.blocked_id, first_id)),
    )


def build_not_blocked_either_direction_filter(
    *,
    viewer_id: str,
    candidate_user_id_column: ColumnElement[str],
) -> ColumnElement[bool]:
    """Return SQL predicate ensuring viewer/candidate pair has no block either way."""
    block_exists = exists(select(1).where(_block_between(viewer_id, candidate_user_id_column)))
    return cast(ColumnElement[bool], ~block_exists)


@dataclass(slots=True)
class BlockState:
    is_blocked: bool
    is_blocked_by: bool


async def get_block_state(
    session: AsyncSession,
    *,
    viewer_id: str,
    target_id: str,
) -> BlockState:
    if viewer_id == target_id:
        return BlockState(is_blocked=False, is_blocked_by=False)

    result = await session.execute(select(UserBlock).where(_block_between(viewer_id, target_id)))
    rows = result.scalars().all()
    is_blocked = any(
        row.blocker_id == viewer_id and row.blocked_id == target_id for row in rows
    )
    is_blocked_by = any(
        row.blocker_id == target_id and row.blocked_id == viewer_id for row in rows
    )
    return BlockState(is_blocked=is_blocked, is_blocked_by=is_blocked_by)


async def are_users_blocked(
    session: AsyncSession,
    *,
    user_id: str,
    other_user_id: str,
) -> bool:
    state = await get_block_state(
        session,
        viewer_id=user_id,
        target_id=other_user_id,
    )
    return state.is_blocked or state.is_blocked_by


async def list_blocked_peer_ids(session: AsyncSession, user_id: str) -> set[str]:
    """Ids of users ``user_id`` blocked or was blocked by."""
    result = await session.execute(
        select(UserBlock.blocker_id, UserBlock.blocked_id).where(
            or_(eq(UserBlock.blocker_id, user_id), eq(UserBlock.blocked_id, user_id))
        )
    )
    return {
        blocked_id if blocker_id == user_id else blocker_id
        for blocker_id, blocked_id in result.all()
    }


async def delete_relationship_edges(
    session: AsyncSession,
    *,
    first_user_id: str,
    second_user_id: str,
) -> None:
    """Drop follow edges both ways and any connection for the pair (uncommitted)."""
    await session.execute(
        delete(Follow).where(
            or_(
                and_(
                    eq(Follow.follower_id, first_user_id),
                    eq(Follow.followed_id, second_user_id),
                ),
                and_(
                    eq(Follow.follower_id, second_user_id),
                    eq(Follow.followed_id, first_user_id),
                ),
            )
        )
    )
    await session.execute(
        delete(Connection).where(
            eq(Connection.pair_key, build_pair_key(first_user_id, second_user_id))
        )
    )


__all__ = [
    "BlockState",
    "are_users_blocked",
    "build_not_blocked_either_direction_filter",
    "delete_relationship_edges",
    "get_block_state",
    "list_blocked_peer_ids",
]
