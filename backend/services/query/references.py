"""Resolve populate/lookup fields to the collection they reference."""

from __future__ import annotations

from sqlalchemy import Table
from sqlalchemy.sql import ColumnElement
from sqlmodel import SQLModel

import models  # noqa: F401  (registers every table on SQLModel.metadata)
from services.errors import InvalidArgument

IDENTITY_FIELD = "id"

# Reference fields whose name differs from the collection they point at.
COLLECTION_ALIASES: dict[str, str] = {
    "sent_by": "users",
    "received_by": "users",
    "follower_id": "users",
    "followed_id": "users",
    "blocker_id": "users",
    "blocked_id": "users",
    "creator_id": "users",
    "user_id": "users",
    "removed_user_id": "users",
    "group_id": "groups",
    "from_user_id": "users",
    "to_user_id": "users",
}


def register_collection_alias(field: str, collection: str) -> None:
    """Map ``field`` to ``collection`` for populate and lookup stages."""
    COLLECTION_ALIASES[field] = collection


def collection_for_field(field: str) -> str:
    """Return the collection referenced by ``field``; defaults to the field name."""
    return COLLECTION_ALIASES.get(field, field)


def resolve_collection(name: str) -> Table:
    table = SQLModel.metadata.tables.get(name)
    if table is None:
        raise InvalidArgument(f"Unknown collection '{name}'")
    return table


def identity_column(table: Table) -> ColumnElement[str]:
    try:
        return table.c[IDENTITY_FIELD]
    except KeyError:
        raise InvalidArgument(f"Collection '{table.name}' has no identity field") from None


__all__ = [
    "COLLECTION_ALIASES",
    "IDENTITY_FIELD",
    "collection_for_field",
    "identity_column",
    "register_collection_alias",
    "resolve_collection",
]
