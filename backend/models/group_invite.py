"""Group invitation model."""

from __future__ import annotations

from datetime import datetime
from enum import Enum

from sqlalchemy import CheckConstraint, Column, ForeignKey, Index, String
from sqlmodel import Field, SQLModel

from .base import created_at_column, id_column, new_id, updated_at_column, utcnow


class InviteStatus(str, Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    DECLINED = "declined"


class GroupInvite(SQLModel, table=True):
    """A member's invitation for another user to join a group."""

    __tablename__ = "group_invites"
    __table_args__ = (
        CheckConstraint(
            "from_user_id <> to_user_id", name="ck_group_invites_no_self_invite"
        ),
        Index("ix_group_invites_group_to_status", "group_id", "to_user_id", "status"),
        Index("ix_group_invites_to_status", "to_user_id", "status"),
    )

    id: str = Field(default_factory=new_id, sa_column=id_column())
    group_id: str = Field(
        sa_column=Column(
            String(36),
            ForeignKey("groups.id", ondelete="CASCADE"),
            nullable=False,
        )
    )
    from_user_id: str = Field(
        sa_column=Column(
            String(36),
            ForeignKey("users.id", ondelete="CASCADE"),
            nullable=False,
        )
    )
    to_user_id: str = Field(
        sa_column=Column(
            String(36),
            ForeignKey("users.id", ondelete="CASCADE"),
            nullable=False,
        )
    )
    status: str = Field(
        default=InviteStatus.PENDING.value,
        sa_column=Column(String(16), nullable=False, server_default="pending"),
    )
    created_at: datetime = Field(default_factory=utcnow, sa_column=created_at_column())
    updated_at: datetime = Field(default_factory=utcnow, sa_column=updated_at_column())
