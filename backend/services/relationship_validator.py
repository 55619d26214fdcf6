"""Shared pre-checks for actions between two users."""

from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from models import User

from .account_blocks import are_users_blocked
from .errors import Conflict, InvalidArgument, NotFound
from .query.common import eq


async def get_active_user(session: AsyncSession, user_id: str) -> User | None:
    """Return the user unless missing or soft-deleted."""
    result = await session.execute(
        select(User).where(eq(User.id, user_id), eq(User.is_deleted, False))
    )
    return result.scalar_one_or_none()


async def validate_users(
    session: AsyncSession,
    initiator_id: str,
    target_id: str,
    action: str,
) -> tuple[User, User]:
    """Load both parties of ``action`` and reject impossible pairs.

    ``action`` is a capitalised verb ("Follow", "Connect", "Block", ...) used
    in error messages.
    """
    initiator = await get_active_user(session, initiator_id)
    if initiator is None:
        raise NotFound(f"{action} initiator user not found")
    target = await get_active_user(session, target_id)
    if target is None:
        raise NotFound(f"{action} target user not found")

    if initiator.id == target.id:
        raise InvalidArgument(f"You cannot {action.lower()} yourself")

    if await are_users_blocked(session, user_id=initiator.id, other_user_id=target.id):
        raise Conflict(f"{action} is not allowed between blocked users")

    return initiator, target


__all__ = ["get_active_user", "validate_users"]
