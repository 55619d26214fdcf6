"""Directed follow edges."""

from __future__ import annotations

import logging

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from db.errors import is_unique_violation
from models import Follow

from .errors import Conflict, NotFound
from .query import PaginateOptions, PaginateResult, PopulateOption, paginate
from .query.common import eq
from .relationship_validator import validate_users
from .schemas import FollowCounts, FollowRead

logger = logging.getLogger(__name__)

PEER_SUMMARY_FIELDS = "username display_name avatar_url"


async def is_following(
    session: AsyncSession,
    *,
    follower_id: str,
    followed_id: str,
) -> bool:
    result = await session.execute(
        select(Follow.id).where(
            eq(Follow.follower_id, follower_id),
            eq(Follow.followed_id, followed_id),
        )
    )
    return result.scalar_one_or_none() is not None


async def follow_user(session: AsyncSession, follower_id: str, followed_id: str) -> FollowRead:
    await validate_users(session, follower_id, followed_id, "Follow")

    if await is_following(session, follower_id=follower_id, followed_id=followed_id):
        raise Conflict("You are already following this user")

    follow = Follow(follower_id=follower_id, followed_id=followed_id)
    session.add(follow)
    try:
        await session.commit()
    except IntegrityError as exc:
        await session.rollback()
        if is_unique_violation(exc):
            raise Conflict("You are already following this user") from exc
        raise

    logger.info(
        "User followed",
        extra={"follower_id": follower_id, "followed_id": followed_id},
    )
    return FollowRead.model_validate(follow)


async def unfollow_user(session: AsyncSession, follower_id: str, followed_id: str) -> None:
    result = await session.execute(
        select(Follow).where(
            eq(Follow.follower_id, follower_id),
            eq(Follow.followed_id, followed_id),
        )
    )
    follow = result.scalar_one_or_none()
    if follow is None:
        raise NotFound("You are not following this user")

    await session.delete(follow)
    await session.commit()


async def get_followers(
    session: AsyncSession,
    user_id: str,
    options: PaginateOptions | None = None,
) -> PaginateResult:
    options = (options or PaginateOptions()).with_defaults(
        sort_by="-created_at",
        populate=[PopulateOption(path="follower_id", select=PEER_SUMMARY_FIELDS)],
    )
    return await paginate(session, Follow, {"followed_id": user_id}, options)


async def get_following(
    session: AsyncSession,
    user_id: str,
    options: PaginateOptions | None = None,
) -> PaginateResult:
    options = (options or PaginateOptions()).with_defaults(
        sort_by="-created_at",
        populate=[PopulateOption(path="followed_id", select=PEER_SUMMARY_FIELDS)],
    )
    return await paginate(session, Follow, {"follower_id": user_id}, options)


async def get_follow_counts(session: AsyncSession, user_id: str) -> FollowCounts:
    followers = await session.execute(
        select(func.count()).select_from(Follow).where(eq(Follow.followed_id, user_id))
    )
    following = await session.execute(
        select(func.count()).select_from(Follow).where(eq(Follow.follower_id, user_id))
    )
    return FollowCounts(
        followers=int(followers.scalar_one()),
        following=int(following.scalar_one()),
    )


__all__ = [
    "follow_user",
    "get_follow_counts",
    "get_followers",
    "get_following",
    "is_following",
    "unfollow_user",
]
