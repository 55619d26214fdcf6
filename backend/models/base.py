"""Shared column helpers for SQLModel tables."""

from __future__ import annotations

from datetime import datetime, timezone
from uuid import uuid4

from sqlalchemy import Column, DateTime, String, func


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_id() -> str:
    return str(uuid4())


def id_column() -> Column:
    return Column(String(36), primary_key=True)


def created_at_column() -> Column:
    return Column(DateTime(timezone=True), server_default=func.now(), nullable=False)


def updated_at_column() -> Column:
    return Column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )
