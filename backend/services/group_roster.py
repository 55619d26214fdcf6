"""In-memory view of a group's membership with a versioned save."""

from __future__ import annotations

import logging
from collections.abc import Iterable

from sqlalchemy import delete, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.attributes import set_committed_value

from models import Group, GroupMember, GroupRole, MembershipStatus
from models.base import utcnow

from .errors import Conflict, Forbidden, NotFound
from .query.common import eq, in_, model_table

logger = logging.getLogger(__name__)


class GroupRoster:
    """Ordered role sets of one group.

    Every membership change goes through ``add_member``, ``add_pending``,
    ``approve``, ``remove`` or ``set_role``; ``save`` persists only what
    changed. The creator is always an admin member.
    """

    def __init__(self, group: Group, rows: Iterable[GroupMember] = ()) -> None:
        self.group_id = group.id
        self.creator_id = group.creator_id
        self._rows: dict[str, GroupMember] = {
            row.user_id: row for row in sorted(rows, key=lambda row: row.position)
        }
        self._added: set[str] = set()
        self._removed: set[str] = set()
        self._next_position = max((row.position for row in self._rows.values()), default=-1) + 1

    @classmethod
    async def load(cls, session: AsyncSession, group: Group) -> GroupRoster:
        result = await session.execute(
            select(GroupMember)
            .where(eq(GroupMember.group_id, group.id))
            .order_by(GroupMember.position)
            .execution_options(populate_existing=True)
        )
        return cls(group, result.scalars().all())

    def _users(self, *, status: MembershipStatus, role: GroupRole | None = None) -> list[str]:
        return [
            user_id
            for user_id, row in self._rows.items()
            if row.status == status.value and (role is None or row.role == role.value)
        ]

    @property
    def admins(self) -> list[str]:
        return self._users(status=MembershipStatus.MEMBER, role=GroupRole.ADMIN)

    @property
    def co_leaders(self) -> list[str]:
        return self._users(status=MembershipStatus.MEMBER, role=GroupRole.CO_LEADER)

    @property
    def members(self) -> list[str]:
        """Every active member, whatever the role."""
        return self._users(status=MembershipStatus.MEMBER)

    @property
    def pending_members(self) -> list[str]:
        return self._users(status=MembershipStatus.PENDING)

    @property
    def participant_count(self) -> int:
        return len(self.members)

    def __contains__(self, user_id: object) -> bool:
        return user_id in self._rows

    def is_member(self, user_id: str) -> bool:
        row = self._rows.get(user_id)
        return row is not None and row.status == MembershipStatus.MEMBER.value

    def is_pending(self, user_id: str) -> bool:
        row = self._rows.get(user_id)
        return row is not None and row.status == MembershipStatus.PENDING.value

    def is_admin(self, user_id: str) -> bool:
        return self.is_member(user_id) and self._rows[user_id].role == GroupRole.ADMIN.value

    def role_of(self, user_id: str) -> GroupRole | None:
        if not self.is_member(user_id):
            return None
        return GroupRole(self._rows[user_id].role)

    def _insert(self, user_id: str, status: MembershipStatus, role: GroupRole) -> None:
        if user_id in self._rows:
            if self.is_pending(user_id):
                raise Conflict("A join request is already pending")
            raise Conflict("User is already a member of this group")
        self._rows[user_id] = GroupMember(
            group_id=self.group_id,
            user_id=user_id,
            status=status.value,
            role=role.value,
            position=self._next_position,
        )
        self._next_position += 1
        self._added.add(user_id)
        self._removed.discard(user_id)

    def add_member(self, user_id: str, role: GroupRole = GroupRole.MEMBER) -> None:
        self._insert(user_id, MembershipStatus.MEMBER, role)

    def add_pending(self, user_id: str) -> None:
        self._insert(user_id, MembershipStatus.PENDING, GroupRole.MEMBER)

    def approve(self, user_id: str) -> None:
        if not self.is_pending(user_id):
            raise NotFound("Join request not found")
        row = self._rows[user_id]
        row.status = MembershipStatus.MEMBER.value
        row.updated_at = utcnow()

    def remove(self, user_id: str) -> None:
        if user_id == self.creator_id:
            raise Forbidden("The group creator cannot be removed")
        if user_id not in self._rows:
            raise NotFound("User is not part of this group")
        del self._rows[user_id]
        if user_id in self._added:
            self._added.discard(user_id)
        else:
            self._removed.add(user_id)

    def set_role(self, user_id: str, role: GroupRole) -> None:
        if not self.is_member(user_id):
            raise Conflict("User is not a member of this group")
        if user_id == self.creator_id and role is not GroupRole.ADMIN:
            raise Forbidden("The group creator must remain an admin")
        row = self._rows[user_id]
        if row.role == role.value:
            raise Conflict(f"User is already {role.value}")
        row.role = role.value
        row.updated_at = utcnow()

    async def save_new(self, session: AsyncSession, group: Group) -> None:
        """Insert a group that has never been saved together with its roster."""
        group.participant_count = self.participant_count
        session.add(group)
        for user_id in self._added:
            session.add(self._rows[user_id])
        await session.commit()
        self._added.clear()

    async def save(self, session: AsyncSession, group: Group) -> None:
        """Persist the roster and bump the group version in one transaction.

        Raises ``Conflict`` when the group row changed since it was loaded.
        """
        loaded_version = group.version
        groups = model_table(Group)
        result = await session.execute(
            update(groups)
            .where(eq(groups.c.id, group.id), eq(groups.c.version, loaded_version))
            .values(
                version=loaded_version + 1,
                participant_count=self.participant_count,
                updated_at=utcnow(),
            )
        )
        if result.rowcount == 0:
            await session.rollback()
            logger.warning(
                "Stale group version on save",
                extra={"group_id": group.id, "version": loaded_version},
            )
            raise Conflict("Group was modified concurrently, reload and retry")

        if self._removed:
            await session.execute(
                delete(GroupMember).where(
                    eq(GroupMember.group_id, group.id),
                    in_(GroupMember.user_id, self._removed),
                )
            )
        for user_id in self._added:
            session.add(self._rows[user_id])
        await session.commit()

        set_committed_value(group, "version", loaded_version + 1)
        set_committed_value(group, "participant_count", self.participant_count)
        self._added.clear()
        self._removed.clear()


__all__ = ["GroupRoster"]
