"""Block and unblock users."""

from __future__ import annotations

import logging

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from db.errors import is_unique_violation
from models import UserBlock

from .account_blocks import delete_relationship_edges
from .errors import Conflict, InvalidArgument, NotFound
from .query import PaginateOptions, PaginateResult, PopulateOption, paginate
from .query.common import eq
from .relationship_validator import validate_users
from .schemas import BlockRead

logger = logging.getLogger(__name__)

PEER_SUMMARY_FIELDS = "username display_name avatar_url"


async def block_user(session: AsyncSession, blocker_id: str, blocked_id: str) -> BlockRead:
    """Block ``blocked_id`` and clear follow and connection edges both ways."""
    await validate_users(session, blocker_id, blocked_id, "Block")

    block = UserBlock(blocker_id=blocker_id, blocked_id=blocked_id)
    await delete_relationship_edges(
        session,
        first_user_id=blocker_id,
        second_user_id=blocked_id,
    )
    session.add(block)
    try:
        await session.commit()
    except IntegrityError as exc:
        await session.rollback()
        if is_unique_violation(exc):
            raise Conflict("User is already blocked") from exc
        raise

    logger.info(
        "User blocked",
        extra={"blocker_id": blocker_id, "blocked_id": blocked_id},
    )
    return BlockRead.model_validate(block)


async def unblock_user(session: AsyncSession, blocker_id: str, blocked_id: str) -> None:
    if blocker_id == blocked_id:
        raise InvalidArgument("You cannot unblock yourself")

    result = await session.execute(
        select(UserBlock).where(
            eq(UserBlock.blocker_id, blocker_id),
            eq(UserBlock.blocked_id, blocked_id),
        )
    )
    block = result.scalar_one_or_none()
    if block is None:
        raise NotFound("Block not found")

    await session.delete(block)
    await session.commit()
    logger.info(
        "User unblocked",
        extra={"blocker_id": blocker_id, "blocked_id": blocked_id},
    )


async def get_blocked_users(
    session: AsyncSession,
    user_id: str,
    options: PaginateOptions | None = None,
) -> PaginateResult:
    """Page through the users ``user_id`` has blocked, newest first."""
    options = (options or PaginateOptions()).with_defaults(
        sort_by="-created_at",
        populate=[PopulateOption(path="blocked_id", select=PEER_SUMMARY_FIELDS)],
    )
    return await paginate(session, UserBlock, {"blocker_id": user_id}, options)


__all__ = ["block_user", "get_blocked_users", "unblock_user"]
