"""People and group suggestions."""

from __future__ import annotations

from collections import Counter
from datetime import timedelta
from typing import Any

from sqlalchemy import exists, false, func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from core import settings
from models import (
    Connection,
    ConnectionStatus,
    Group,
    GroupMember,
    GroupPrivacy,
    MembershipStatus,
    PrivacyVisibility,
    RemovedConnection,
    User,
)
from models.base import utcnow

from .account_blocks import build_not_blocked_either_direction_filter, list_blocked_peer_ids
from .connections import get_accepted_peer_ids
from .errors import InvalidArgument, NotFound
from .query import (
    PaginateOptions,
    PaginateResult,
    compile_filter,
    paginate,
    parse_paginate_options,
    parse_sort,
    table_column_resolver,
)
from .query.common import eq, gather_page_and_count, gte, in_, model_table, not_in
from .relationship_validator import get_active_user
from .schemas import GroupSuggestionPage

SUGGESTION_FIELDS = "id username display_name avatar_url"
DEFAULT_PEOPLE_SORT = "-created_at"
DEFAULT_GROUP_SORT = "-participant_count"
# Friend-of-friend candidates kept after ranking by shared peers.
FRIEND_OF_FRIEND_LIMIT = 100
ACTIVE_USER_FILTER = {"is_deleted": False, "is_banned": False, "is_blocked": False}

# Profile attributes that can match two users when both made them public.
MATCHABLE_ATTRIBUTES = ("location_name", "country", "profession", "age_range")


def build_attribute_clauses(user: User) -> list[dict[str, Any]]:
    """One filter per attribute ``user`` shares publicly."""
    clauses: list[dict[str, Any]] = []
    for attribute in MATCHABLE_ATTRIBUTES:
        value = getattr(user, attribute)
        visibility = getattr(user, f"{attribute}_visibility")
        if visibility != PrivacyVisibility.PUBLIC.value or not value:
            continue
        clauses.append(
            {
                attribute: value,
                f"{attribute}_visibility": PrivacyVisibility.PUBLIC.value,
            }
        )
    return clauses


async def _recently_removed_peer_ids(session: AsyncSession, user_id: str) -> set[str]:
    cutoff = utcnow() - timedelta(days=settings.removed_connection_ttl_days)
    result = await session.execute(
        select(RemovedConnection.user_id, RemovedConnection.removed_user_id).where(
            or_(
                eq(RemovedConnection.user_id, user_id),
                eq(RemovedConnection.removed_user_id, user_id),
            ),
            gte(RemovedConnection.removed_at, cutoff),
        )
    )
    return {
        removed_user_id if remover_id == user_id else remover_id
        for remover_id, removed_user_id in result.all()
    }


async def _recently_requested_peer_ids(session: AsyncSession, user_id: str) -> set[str]:
    cutoff = utcnow() - timedelta(hours=settings.connection_request_cooldown_hours)
    result = await session.execute(
        select(Connection.received_by).where(
            eq(Connection.sent_by, user_id),
            eq(Connection.status, ConnectionStatus.PENDING.value),
            gte(Connection.created_at, cutoff),
        )
    )
    return set(result.scalars().all())


async def get_excluded_user_ids(session: AsyncSession, user_id: str) -> set[str]:
    excluded = {user_id}
    excluded |= await get_accepted_peer_ids(session, user_id)
    excluded |= await list_blocked_peer_ids(session, user_id)
    excluded |= await _recently_removed_peer_ids(session, user_id)
    excluded |= await _recently_requested_peer_ids(session, user_id)
    return excluded


async def rank_friends_of_friends(
    session: AsyncSession,
    peer_ids: set[str],
    excluded: set[str],
) -> list[tuple[str, int]]:
    """Users connected to the given peers, most shared peers first.

    Returns ``(user_id, mutual_count)`` pairs, ties broken by id, capped at
    ``FRIEND_OF_FRIEND_LIMIT``. Excluded users are never counted.
    """
    if not peer_ids:
        return []

    result = await session.execute(
        select(Connection.sent_by, Connection.received_by).where(
            eq(Connection.status, ConnectionStatus.ACCEPTED.value),
            or_(in_(Connection.sent_by, peer_ids), in_(Connection.received_by, peer_ids)),
        )
    )
    mutual_counts: Counter[str] = Counter()
    for sent_by, received_by in result.all():
        if sent_by in peer_ids and received_by not in excluded:
            mutual_counts[received_by] += 1
        if received_by in peer_ids and sent_by not in excluded:
            mutual_counts[sent_by] += 1

    ranked = sorted(mutual_counts.items(), key=lambda item: (-item[1], item[0]))
    return ranked[:FRIEND_OF_FRIEND_LIMIT]


async def _friends_of_friends_page(
    session: AsyncSession,
    ranked: list[tuple[str, int]],
    clauses: list[dict[str, Any]],
    options: PaginateOptions,
) -> PaginateResult:
    users = model_table(User)
    filters: dict[str, Any] = {"id": {"$in": [user_id for user_id, _ in ranked]}}
    filters.update(ACTIVE_USER_FILTER)
    if clauses:
        filters["$or"] = clauses

    eligible = await session.execute(
        select(users.c.id).where(compile_filter(filters, table_column_resolver(users)))
    )
    eligible_ids = set(eligible.scalars().all())
    ordered = [(user_id, count) for user_id, count in ranked if user_id in eligible_ids]
    page = ordered[options.skip : options.skip + options.limit]

    rows: dict[str, dict[str, Any]] = {}
    if page:
        result = await session.execute(
            select(*(users.c[name] for name in SUGGESTION_FIELDS.split())).where(
                in_(users.c.id, [user_id for user_id, _ in page])
            )
        )
        rows = {row["id"]: dict(row) for row in result.mappings()}

    return PaginateResult.build(
        [{**rows[user_id], "mutual_count": count} for user_id, count in page],
        page=options.page,
        limit=options.limit,
        total_results=len(ordered),
    )


async def suggest_people(
    session: AsyncSession,
    user_id: str,
    options: PaginateOptions | None = None,
) -> PaginateResult:
    """Suggest users ``user_id`` may know.

    With accepted connections, candidates are friends of friends ranked by
    how many peers they share with the user (``mutual_count``), narrowed to
    users sharing a public attribute when the user has any. Without
    connections, or when no peer leads to a candidate, users sharing at least
    one public profile attribute are suggested instead.
    """
    options = (options or PaginateOptions()).with_defaults(sort_by=DEFAULT_PEOPLE_SORT)
    user = await get_active_user(session, user_id)
    if user is None:
        raise NotFound("User not found")

    clauses = build_attribute_clauses(user)
    peer_ids = await get_accepted_peer_ids(session, user_id)
    excluded: set[str] | None = None
    if peer_ids:
        excluded = await get_excluded_user_ids(session, user_id)
        ranked = await rank_friends_of_friends(session, peer_ids, excluded)
        if ranked:
            return await _friends_of_friends_page(session, ranked, clauses, options)

    if not clauses:
        return PaginateResult.empty(options)

    if excluded is None:
        excluded = await get_excluded_user_ids(session, user_id)
    filters = {"id": {"$nin": sorted(excluded)}, **ACTIVE_USER_FILTER, "$or": clauses}
    return await paginate(
        session,
        User,
        filters,
        options.model_copy(update={"select": SUGGESTION_FIELDS, "populate": []}),
    )


async def suggest_groups(
    session: AsyncSession,
    user_id: str,
    page: int = 1,
    limit: int | None = None,
    sort_by: str | None = None,
) -> GroupSuggestionPage:
    """Suggest groups the user is not part of.

    A group qualifies when it is public, shares the user's public location,
    or counts one of the user's connections among its members.
    """
    raw_options: dict[str, Any] = {"page": page}
    if limit is not None:
        raw_options["limit"] = limit
    options = parse_paginate_options(raw_options)

    user = await get_active_user(session, user_id)
    if user is None:
        raise NotFound("User not found")

    joined = await session.execute(
        select(GroupMember.group_id).where(eq(GroupMember.user_id, user_id))
    )
    joined_group_ids = set(joined.scalars().all())
    peer_ids = await get_accepted_peer_ids(session, user_id)

    candidates = [eq(Group.privacy, GroupPrivacy.PUBLIC.value)]
    if user.location_name and user.location_name_visibility == PrivacyVisibility.PUBLIC.value:
        candidates.append(eq(Group.location_name, user.location_name))
    if peer_ids:
        candidates.append(
            exists(
                select(1).where(
                    eq(GroupMember.group_id, Group.id),
                    eq(GroupMember.status, MembershipStatus.MEMBER.value),
                    in_(GroupMember.user_id, peer_ids),
                )
            )
        )

    criteria = [
        eq(Group.is_deleted, False),
        or_(false(), *candidates),
        build_not_blocked_either_direction_filter(
            viewer_id=user_id,
            candidate_user_id_column=Group.creator_id,
        ),
    ]
    if joined_group_ids:
        criteria.append(not_in(Group.id, joined_group_ids))

    table = model_table(Group)
    order: list[Any] = []
    for field, descending in parse_sort(sort_by or DEFAULT_GROUP_SORT):
        if field not in table.c:
            raise InvalidArgument(f"Unknown sort field '{field}'")
        order.append(table.c[field].desc() if descending else table.c[field])
    order.append(table.c.id)

    page_stmt = (
        select(*table.c)
        .where(*criteria)
        .order_by(*order)
        .offset(options.skip)
        .limit(options.limit)
    )
    count_stmt = select(func.count()).select_from(table).where(*criteria)

    async def load_page(page_session: AsyncSession) -> list[dict[str, Any]]:
        result = await page_session.execute(page_stmt)
        return [dict(row) for row in result.mappings()]

    async def load_count(count_session: AsyncSession) -> int:
        result = await count_session.execute(count_stmt)
        return int(result.scalar_one())

    results, total = await gather_page_and_count(session, load_page, load_count)
    return GroupSuggestionPage(
        results=results,
        page=options.page,
        limit=options.limit,
        total=total,
    )


__all__ = [
    "FRIEND_OF_FRIEND_LIMIT",
    "MATCHABLE_ATTRIBUTES",
    "build_attribute_clauses",
    "get_excluded_user_ids",
    "rank_friends_of_friends",
    "suggest_groups",
    "suggest_people",
]
