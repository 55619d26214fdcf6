"""Connection edge model."""

from __future__ import annotations

from datetime import datetime
from enum import Enum

from sqlalchemy import CheckConstraint, Column, ForeignKey, Index, String
from sqlmodel import Field, SQLModel

from .base import created_at_column, id_column, new_id, updated_at_column, utcnow


class ConnectionStatus(str, Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    # Declined and removed edges are deleted; these values are advisory only.
    DECLINED = "declined"
    REMOVED = "removed"


def build_pair_key(first_user_id: str, second_user_id: str) -> str:
    """Order-independent key for an unordered user pair."""
    low, high = sorted((first_user_id, second_user_id))
    return f"{low}:{high}"


class Connection(SQLModel, table=True):
    """Mutual connection between two users, created as a pending request."""

    __tablename__ = "connections"
    __table_args__ = (
        CheckConstraint("sent_by <> received_by", name="ck_connections_no_self_connection"),
        Index("ix_connections_sent_by_status", "sent_by", "status"),
        Index("ix_connections_received_by_status", "received_by", "status"),
    )

    id: str = Field(default_factory=new_id, sa_column=id_column())
    sent_by: str = Field(
        sa_column=Column(
            String(36),
            ForeignKey("users.id", ondelete="CASCADE"),
            nullable=False,
        )
    )
    received_by: str = Field(
        sa_column=Column(
            String(36),
            ForeignKey("users.id", ondelete="CASCADE"),
            nullable=False,
        )
    )
    status: str = Field(
        default=ConnectionStatus.PENDING.value,
        sa_column=Column(String(16), nullable=False, server_default="pending"),
    )
    # At most one edge may exist for an unordered pair.
    pair_key: str = Field(sa_column=Column(String(73), nullable=False, unique=True))
    created_at: datetime = Field(default_factory=utcnow, sa_column=created_at_column())
    updated_at: datetime = Field(default_factory=utcnow, sa_column=updated_at_column())
