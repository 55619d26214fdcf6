"""Read models returned by the relationship services."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field


class _ReadModel(BaseModel):
    model_config = ConfigDict(from_attributes=True)


class FollowRead(_ReadModel):
    id: str
    follower_id: str
    followed_id: str
    created_at: datetime


class FollowCounts(BaseModel):
    followers: int
    following: int


class BlockRead(_ReadModel):
    blocker_id: str
    blocked_id: str
    created_at: datetime


class ConnectionRead(_ReadModel):
    id: str
    sent_by: str
    received_by: str
    status: str
    created_at: datetime
    updated_at: datetime


class ConnectionStatusRead(BaseModel):
    status: Literal["none", "pending", "accepted"]
    connection_id: str | None = None
    # Set for pending requests: who has to answer.
    sent_by: str | None = None


class GroupRead(BaseModel):
    id: str
    creator_id: str
    name: str
    description: str
    location_name: str | None
    privacy: str
    participant_count: int
    version: int
    admins: list[str] = Field(default_factory=list)
    co_leaders: list[str] = Field(default_factory=list)
    members: list[str] = Field(default_factory=list)
    pending_members: list[str] = Field(default_factory=list)
    created_at: datetime


class GroupInviteRead(_ReadModel):
    id: str
    group_id: str
    from_user_id: str
    to_user_id: str
    status: str
    created_at: datetime
    updated_at: datetime


class GroupSuggestionPage(BaseModel):
    results: list[dict[str, Any]]
    page: int
    limit: int
    total: int


__all__ = [
    "BlockRead",
    "ConnectionRead",
    "ConnectionStatusRead",
    "FollowCounts",
    "FollowRead",
    "GroupInviteRead",
    "GroupRead",
    "GroupSuggestionPage",
]
