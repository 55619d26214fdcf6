"""Group and group membership models."""

from __future__ import annotations

from datetime import datetime
from enum import Enum

from sqlalchemy import Boolean, Column, ForeignKey, Index, Integer, String, Text, text
from sqlmodel import Field, SQLModel

from .base import created_at_column, id_column, new_id, updated_at_column, utcnow


class GroupPrivacy(str, Enum):
    PUBLIC = "public"
    PRIVATE = "private"


class MembershipStatus(str, Enum):
    MEMBER = "member"
    PENDING = "pending"


class GroupRole(str, Enum):
    ADMIN = "admin"
    CO_LEADER = "co_leader"
    MEMBER = "member"


class Group(SQLModel, table=True):
    """A user-created group; role sets live in ``group_members``."""

    __tablename__ = "groups"
    __table_args__ = (
        Index("ix_groups_privacy_participants", "privacy", "participant_count"),
    )

    id: str = Field(default_factory=new_id, sa_column=id_column())
    creator_id: str = Field(
        sa_column=Column(
            String(36),
            ForeignKey("users.id", ondelete="CASCADE"),
            nullable=False,
            index=True,
        )
    )
    name: str = Field(sa_column=Column(String(120), nullable=False))
    description: str = Field(
        default="", sa_column=Column(Text, nullable=False, server_default="")
    )
    location_name: str | None = Field(
        default=None, sa_column=Column(String(120), nullable=True, index=True)
    )
    privacy: str = Field(
        default=GroupPrivacy.PUBLIC.value,
        sa_column=Column(String(16), nullable=False, server_default="public"),
    )
    participant_count: int = Field(
        default=0, sa_column=Column(Integer, nullable=False, server_default="0")
    )
    is_deleted: bool = Field(
        default=False,
        sa_column=Column(Boolean, nullable=False, server_default=text("false")),
    )
    # Bumped on every roster save; writers compare it to detect lost updates.
    version: int = Field(default=1, sa_column=Column(Integer, nullable=False, server_default="1"))
    created_at: datetime = Field(default_factory=utcnow, sa_column=created_at_column())
    updated_at: datetime = Field(default_factory=utcnow, sa_column=updated_at_column())


class GroupMember(SQLModel, table=True):
    """Membership (or pending join request) of a user in a group."""

    __tablename__ = "group_members"
    __table_args__ = (
        Index("ix_group_members_user_status", "user_id", "status"),
    )

    group_id: str = Field(
        sa_column=Column(
            String(36),
            ForeignKey("groups.id", ondelete="CASCADE"),
            primary_key=True,
        )
    )
    user_id: str = Field(
        sa_column=Column(
            String(36),
            ForeignKey("users.id", ondelete="CASCADE"),
            primary_key=True,
        )
    )
    status: str = Field(
        default=MembershipStatus.MEMBER.value,
        sa_column=Column(String(16), nullable=False, server_default="member"),
    )
    role: str = Field(
        default=GroupRole.MEMBER.value,
        sa_column=Column(String(16), nullable=False, server_default="member"),
    )
    # Orders role sets by join time.
    position: int = Field(default=0, sa_column=Column(Integer, nullable=False, server_default="0"))
    created_at: datetime = Field(default_factory=utcnow, sa_column=created_at_column())
    updated_at: datetime = Field(default_factory=utcnow, sa_column=updated_at_column())
