"""Groups, membership requests and member roles."""

from __future__ import annotations

import logging

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from models import (
    Group,
    GroupInvite,
    GroupMember,
    GroupPrivacy,
    GroupRole,
    InviteStatus,
    MembershipStatus,
)
from models.base import utcnow

from .errors import Conflict, Forbidden, InvalidArgument, NotFound
from .group_roster import GroupRoster
from .query import (
    Lookup,
    Match,
    PaginateOptions,
    PaginateResult,
    Pipeline,
    PopulateOption,
    Unwind,
    aggregate_paginate,
    paginate,
)
from .query.common import eq
from .relationship_validator import get_active_user, validate_users
from .schemas import GroupInviteRead, GroupRead

logger = logging.getLogger(__name__)


def _group_read(group: Group, roster: GroupRoster) -> GroupRead:
    return GroupRead(
        id=group.id,
        creator_id=group.creator_id,
        name=group.name,
        description=group.description,
        location_name=group.location_name,
        privacy=group.privacy,
        participant_count=roster.participant_count,
        version=group.version,
        admins=roster.admins,
        co_leaders=roster.co_leaders,
        members=roster.members,
        pending_members=roster.pending_members,
        created_at=group.created_at,
    )


def _privacy(value: GroupPrivacy | str) -> str:
    try:
        return GroupPrivacy(value).value
    except ValueError:
        raise InvalidArgument(f"Unknown group privacy '{value}'") from None


async def _load_group(session: AsyncSession, group_id: str) -> tuple[Group, GroupRoster]:
    result = await session.execute(
        select(Group)
        .where(eq(Group.id, group_id), eq(Group.is_deleted, False))
        .execution_options(populate_existing=True)
    )
    group = result.scalar_one_or_none()
    if group is None:
        raise NotFound("Group not found")
    return group, await GroupRoster.load(session, group)


def _require_admin(roster: GroupRoster, user_id: str) -> None:
    if not roster.is_admin(user_id):
        raise Forbidden("Only group admins can perform this action")


async def create_group(
    session: AsyncSession,
    creator_id: str,
    *,
    name: str,
    description: str = "",
    location_name: str | None = None,
    privacy: GroupPrivacy | str = GroupPrivacy.PUBLIC,
) -> GroupRead:
    if await get_active_user(session, creator_id) is None:
        raise NotFound("Group creator not found")
    name = name.strip()
    if not name:
        raise InvalidArgument("Group name is required")

    group = Group(
        creator_id=creator_id,
        name=name,
        description=description,
        location_name=location_name,
        privacy=_privacy(privacy),
        participant_count=1,
    )
    roster = GroupRoster(group)
    roster.add_member(creator_id, GroupRole.ADMIN)
    await roster.save_new(session, group)

    logger.info("Group created", extra={"group_id": group.id, "creator_id": creator_id})
    return _group_read(group, roster)


async def get_group(session: AsyncSession, group_id: str) -> GroupRead:
    group, roster = await _load_group(session, group_id)
    return _group_read(group, roster)


async def update_group(
    session: AsyncSession,
    group_id: str,
    user_id: str,
    *,
    name: str | None = None,
    description: str | None = None,
    location_name: str | None = None,
    privacy: GroupPrivacy | str | None = None,
) -> GroupRead:
    group, roster = await _load_group(session, group_id)
    _require_admin(roster, user_id)

    if name is not None:
        if not name.strip():
            raise InvalidArgument("Group name is required")
        group.name = name.strip()
    if description is not None:
        group.description = description
    if location_name is not None:
        group.location_name = location_name or None
    if privacy is not None:
        group.privacy = _privacy(privacy)
    group.updated_at = utcnow()

    await roster.save(session, group)
    return _group_read(group, roster)


async def delete_group(session: AsyncSession, group_id: str, user_id: str) -> None:
    group, roster = await _load_group(session, group_id)
    if group.creator_id != user_id:
        raise Forbidden("Only the group creator can delete the group")

    group.is_deleted = True
    group.updated_at = utcnow()
    await roster.save(session, group)
    logger.info("Group deleted", extra={"group_id": group_id, "user_id": user_id})


async def join_group(session: AsyncSession, group_id: str, user_id: str) -> GroupRead:
    """Join a public group, or ask to join a private one."""
    group, roster = await _load_group(session, group_id)
    if roster.is_pending(user_id):
        raise Conflict("A join request is already pending")
    if user_id in roster:
        raise Conflict("You are already a member of this group")
    await validate_users(session, user_id, group.creator_id, "Join group")

    if group.privacy == GroupPrivacy.PUBLIC.value:
        roster.add_member(user_id)
    else:
        roster.add_pending(user_id)
    await roster.save(session, group)

    logger.info(
        "Group join",
        extra={"group_id": group_id, "user_id": user_id, "pending": roster.is_pending(user_id)},
    )
    return _group_read(group, roster)


async def leave_group(session: AsyncSession, group_id: str, user_id: str) -> GroupRead:
    group, roster = await _load_group(session, group_id)
    if user_id == group.creator_id:
        raise Forbidden("The group creator cannot leave the group")
    if not roster.is_member(user_id):
        raise Conflict("You are not a member of this group")

    roster.remove(user_id)
    await roster.save(session, group)
    logger.info("Group left", extra={"group_id": group_id, "user_id": user_id})
    return _group_read(group, roster)


async def approve_join_request(
    session: AsyncSession,
    group_id: str,
    admin_id: str,
    user_id: str,
) -> GroupRead:
    group, roster = await _load_group(session, group_id)
    _require_admin(roster, admin_id)
    await validate_users(session, user_id, admin_id, "Approve")

    roster.approve(user_id)
    await roster.save(session, group)
    logger.info(
        "Group join request approved",
        extra={"group_id": group_id, "user_id": user_id, "admin_id": admin_id},
    )
    return _group_read(group, roster)


async def reject_join_request(
    session: AsyncSession,
    group_id: str,
    admin_id: str,
    user_id: str,
) -> GroupRead:
    group, roster = await _load_group(session, group_id)
    _require_admin(roster, admin_id)
    if not roster.is_pending(user_id):
        raise NotFound("Join request not found")

    roster.remove(user_id)
    await roster.save(session, group)
    logger.info(
        "Group join request rejected",
        extra={"group_id": group_id, "user_id": user_id, "admin_id": admin_id},
    )
    return _group_read(group, roster)


async def remove_member(
    session: AsyncSession,
    group_id: str,
    admin_id: str,
    user_id: str,
) -> GroupRead:
    group, roster = await _load_group(session, group_id)
    _require_admin(roster, admin_id)
    if not roster.is_member(user_id):
        raise NotFound("User is not a member of this group")

    roster.remove(user_id)
    await roster.save(session, group)
    logger.info(
        "Group member removed",
        extra={"group_id": group_id, "user_id": user_id, "admin_id": admin_id},
    )
    return _group_read(group, roster)


async def _change_role(
    session: AsyncSession,
    group_id: str,
    admin_id: str,
    user_id: str,
    *,
    expected: tuple[GroupRole, ...],
    role: GroupRole,
    action: str,
) -> GroupRead:
    group, roster = await _load_group(session, group_id)
    _require_admin(roster, admin_id)
    await validate_users(session, user_id, admin_id, action)
    if user_id == group.creator_id:
        raise Forbidden("The group creator's role cannot be changed")
    current = roster.role_of(user_id)
    if current is None:
        raise Conflict("User is not a member of this group")
    if current not in expected:
        raise Conflict(f"User is already {current.value}")

    roster.set_role(user_id, role)
    await roster.save(session, group)
    logger.info(
        "Group role changed",
        extra={"group_id": group_id, "user_id": user_id, "role": role.value, "admin_id": admin_id},
    )
    return _group_read(group, roster)


async def promote_to_admin(
    session: AsyncSession, group_id: str, admin_id: str, user_id: str
) -> GroupRead:
    return await _change_role(
        session, group_id, admin_id, user_id,
        expected=(GroupRole.MEMBER, GroupRole.CO_LEADER), role=GroupRole.ADMIN, action="Promote",
    )


async def demote_admin(
    session: AsyncSession, group_id: str, admin_id: str, user_id: str
) -> GroupRead:
    return await _change_role(
        session, group_id, admin_id, user_id,
        expected=(GroupRole.ADMIN,), role=GroupRole.MEMBER, action="Demote",
    )


async def promote_to_co_leader(
    session: AsyncSession, group_id: str, admin_id: str, user_id: str
) -> GroupRead:
    return await _change_role(
        session, group_id, admin_id, user_id,
        expected=(GroupRole.MEMBER,), role=GroupRole.CO_LEADER, action="Promote",
    )


async def demote_co_leader(
    session: AsyncSession, group_id: str, admin_id: str, user_id: str
) -> GroupRead:
    return await _change_role(
        session, group_id, admin_id, user_id,
        expected=(GroupRole.CO_LEADER,), role=GroupRole.MEMBER, action="Demote",
    )


async def get_my_groups(
    session: AsyncSession,
    user_id: str,
    options: PaginateOptions | None = None,
) -> PaginateResult:
    """Groups created by ``user_id``."""
    options = (options or PaginateOptions()).with_defaults(sort_by="-created_at")
    return await paginate(
        session, Group, {"creator_id": user_id, "is_deleted": False}, options
    )


async def get_joined_groups(
    session: AsyncSession,
    user_id: str,
    options: PaginateOptions | None = None,
) -> PaginateResult:
    """Memberships of ``user_id`` with the group embedded, newest first."""
    options = (options or PaginateOptions()).with_defaults(sort_by="-created_at")
    pipeline = Pipeline().append(
        Match({"user_id": user_id, "status": MembershipStatus.MEMBER.value}),
        Lookup(from_collection="groups", local_field="group_id", as_field="group"),
        Unwind("$group"),
        Match({"group.is_deleted": False}),
    )
    return await aggregate_paginate(session, GroupMember, pipeline, options)


INVITE_POPULATE = [
    PopulateOption(path="group_id", select="name privacy participant_count"),
    PopulateOption(path="from_user_id", select="username display_name avatar_url"),
]


async def _load_invite(session: AsyncSession, invite_id: str) -> GroupInvite:
    invite = await session.get(GroupInvite, invite_id, populate_existing=True)
    if invite is None:
        raise NotFound("Invite not found")
    return invite


def _require_invitee(invite: GroupInvite, user_id: str) -> None:
    if invite.to_user_id != user_id:
        raise Forbidden("Only the invited user can answer this invite")
    if invite.status != InviteStatus.PENDING.value:
        raise Conflict(f"Invite is already {invite.status}")


async def send_group_invite(
    session: AsyncSession,
    group_id: str,
    from_user_id: str,
    to_user_id: str,
) -> GroupInviteRead:
    """Invite ``to_user_id`` into a group ``from_user_id`` belongs to."""
    group, roster = await _load_group(session, group_id)
    await validate_users(session, from_user_id, to_user_id, "Invite")
    if not roster.is_member(from_user_id):
        raise Forbidden("Only group members can send invites")
    if roster.is_member(to_user_id):
        raise Conflict("User is already a member of this group")

    existing = await session.execute(
        select(GroupInvite.id).where(
            eq(GroupInvite.group_id, group.id),
            eq(GroupInvite.from_user_id, from_user_id),
            eq(GroupInvite.to_user_id, to_user_id),
            eq(GroupInvite.status, InviteStatus.PENDING.value),
        )
    )
    if existing.first() is not None:
        raise Conflict("Invite already sent")

    invite = GroupInvite(group_id=group.id, from_user_id=from_user_id, to_user_id=to_user_id)
    session.add(invite)
    await session.commit()
    logger.info(
        "Group invite sent",
        extra={"group_id": group.id, "from_user_id": from_user_id, "to_user_id": to_user_id},
    )
    return GroupInviteRead.model_validate(invite)


async def accept_group_invite(session: AsyncSession, invite_id: str, user_id: str) -> GroupRead:
    """Join the invited group, whatever its privacy.

    A pending join request of the same user is approved, and every pending
    invite of the user into that group is answered at once.
    """
    invite = await _load_invite(session, invite_id)
    _require_invitee(invite, user_id)
    group, roster = await _load_group(session, invite.group_id)
    if roster.is_member(user_id):
        raise Conflict("You are already a member of this group")
    await validate_users(session, user_id, group.creator_id, "Join group")

    if roster.is_pending(user_id):
        roster.approve(user_id)
    else:
        roster.add_member(user_id)
    await session.execute(
        update(GroupInvite)
        .where(
            eq(GroupInvite.group_id, group.id),
            eq(GroupInvite.to_user_id, user_id),
            eq(GroupInvite.status, InviteStatus.PENDING.value),
        )
        .values(status=InviteStatus.ACCEPTED.value, updated_at=utcnow())
    )
    await roster.save(session, group)

    logger.info(
        "Group invite accepted",
        extra={"group_id": group.id, "invite_id": invite_id, "user_id": user_id},
    )
    return _group_read(group, roster)


async def decline_group_invite(
    session: AsyncSession, invite_id: str, user_id: str
) -> GroupInviteRead:
    invite = await _load_invite(session, invite_id)
    _require_invitee(invite, user_id)

    invite.status = InviteStatus.DECLINED.value
    invite.updated_at = utcnow()
    await session.commit()
    logger.info(
        "Group invite declined",
        extra={"group_id": invite.group_id, "invite_id": invite_id, "user_id": user_id},
    )
    return GroupInviteRead.model_validate(invite)


async def get_group_invites(
    session: AsyncSession,
    user_id: str,
    options: PaginateOptions | None = None,
) -> PaginateResult:
    """Pending invites received by ``user_id``, with group and sender populated."""
    options = (options or PaginateOptions()).with_defaults(
        sort_by="-created_at", populate=INVITE_POPULATE
    )
    return await paginate(
        session,
        GroupInvite,
        {"to_user_id": user_id, "status": InviteStatus.PENDING.value},
        options,
    )


__all__ = [
    "accept_group_invite",
    "approve_join_request",
    "create_group",
    "decline_group_invite",
    "delete_group",
    "demote_admin",
    "demote_co_leader",
    "get_group",
    "get_group_invites",
    "get_joined_groups",
    "get_my_groups",
    "join_group",
    "leave_group",
    "promote_to_admin",
    "promote_to_co_leader",
    "reject_join_request",
    "remove_member",
    "send_group_invite",
    "update_group",
]
