"""SQLModel models package."""

from .connection import Connection, ConnectionStatus, build_pair_key
from .follow import Follow
from .group import Group, GroupMember, GroupPrivacy, GroupRole, MembershipStatus
from .group_invite import GroupInvite, InviteStatus
from .removed_connection import RemovedConnection
from .user import ConnectionPrivacy, PrivacyVisibility, User
from .user_block import UserBlock

__all__ = [
    "User",
    "PrivacyVisibility",
    "ConnectionPrivacy",
    "Follow",
    "Connection",
    "ConnectionStatus",
    "build_pair_key",
    "UserBlock",
    "RemovedConnection",
    "Group",
    "GroupMember",
    "GroupPrivacy",
    "GroupRole",
    "MembershipStatus",
    "GroupInvite",
    "InviteStatus",
]
