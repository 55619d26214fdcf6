"""User domain model."""

from __future__ import annotations

from datetime import datetime
from enum import Enum

from sqlalchemy import Boolean, Column, String, text
from sqlmodel import Field, SQLModel

from .base import created_at_column, id_column, new_id, updated_at_column, utcnow


class PrivacyVisibility(str, Enum):
    PUBLIC = "public"
    FRIENDS = "friends"
    ONLY_ME = "only_me"


class ConnectionPrivacy(str, Enum):
    """Who may send the user a connection request."""

    PUBLIC = "public"
    FRIEND_TO_FRIEND = "friend_to_friend"
    NOBODY = "nobody"


class User(SQLModel, table=True):
    """Registered application user.

    Profile attributes used for suggestions each carry their own visibility
    setting; only ``public`` attributes take part in matching.
    """

    __tablename__ = "users"

    id: str = Field(default_factory=new_id, sa_column=id_column())
    username: str = Field(
        sa_column=Column(String(30), unique=True, nullable=False, index=True)
    )
    display_name: str | None = Field(
        default=None, sa_column=Column(String(80), nullable=True)
    )
    avatar_url: str | None = Field(
        default=None, sa_column=Column(String(255), nullable=True)
    )

    location_name: str | None = Field(
        default=None, sa_column=Column(String(120), nullable=True)
    )
    country: str | None = Field(default=None, sa_column=Column(String(80), nullable=True))
    profession: str | None = Field(
        default=None, sa_column=Column(String(80), nullable=True)
    )
    age_range: str | None = Field(default=None, sa_column=Column(String(16), nullable=True))

    location_name_visibility: str = Field(
        default=PrivacyVisibility.FRIENDS.value,
        sa_column=Column(String(16), nullable=False, server_default="friends"),
    )
    country_visibility: str = Field(
        default=PrivacyVisibility.FRIENDS.value,
        sa_column=Column(String(16), nullable=False, server_default="friends"),
    )
    profession_visibility: str = Field(
        default=PrivacyVisibility.PUBLIC.value,
        sa_column=Column(String(16), nullable=False, server_default="public"),
    )
    age_range_visibility: str = Field(
        default=PrivacyVisibility.FRIENDS.value,
        sa_column=Column(String(16), nullable=False, server_default="friends"),
    )
    connection_privacy: str = Field(
        default=ConnectionPrivacy.PUBLIC.value,
        sa_column=Column(String(24), nullable=False, server_default="public"),
    )

    is_deleted: bool = Field(
        default=False,
        sa_column=Column(Boolean, nullable=False, server_default=text("false")),
    )
    is_banned: bool = Field(
        default=False,
        sa_column=Column(Boolean, nullable=False, server_default=text("false")),
    )
    is_blocked: bool = Field(
        default=False,
        sa_column=Column(Boolean, nullable=False, server_default=text("false")),
    )
    created_at: datetime = Field(default_factory=utcnow, sa_column=created_at_column())
    updated_at: datetime = Field(default_factory=utcnow, sa_column=updated_at_column())
