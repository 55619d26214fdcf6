"""Marker for recently removed connections."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import Column, DateTime, ForeignKey, String, func
from sqlmodel import Field, SQLModel

from .base import created_at_column, updated_at_column, utcnow


class RemovedConnection(SQLModel, table=True):
    """Records that ``user_id`` removed ``removed_user_id`` from their connections.

    Rows are considered expired once ``removed_at`` is older than the configured
    TTL; expired rows are ignored by readers and pruned by a maintenance script.
    """

    __tablename__ = "removed_connections"

    user_id: str = Field(
        sa_column=Column(
            String(36),
            ForeignKey("users.id", ondelete="CASCADE"),
            primary_key=True,
        )
    )
    removed_user_id: str = Field(
        sa_column=Column(
            String(36),
            ForeignKey("users.id", ondelete="CASCADE"),
            primary_key=True,
            index=True,
        )
    )
    removed_at: datetime = Field(
        default_factory=utcnow,
        sa_column=Column(
            DateTime(timezone=True), server_default=func.now(), nullable=False, index=True
        ),
    )
    created_at: datetime = Field(default_factory=utcnow, sa_column=created_at_column())
    updated_at: datetime = Field(default_factory=utcnow, sa_column=updated_at_column())
