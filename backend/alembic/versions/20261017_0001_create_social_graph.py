"""Create social graph tables."""

from collections.abc import Sequence

from alembic import op
import sqlalchemy as sa

revision: str = "20261017_0001"
down_revision: str | None = None
branch_labels: Sequence[str] | None = None
depends_on: Sequence[str] | None = None

TIMESTAMP_DEFAULT = sa.text("CURRENT_TIMESTAMP")


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=TIMESTAMP_DEFAULT,
            nullable=False,
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            server_default=TIMESTAMP_DEFAULT,
            nullable=False,
        ),
    ]


def _user_fk(column: str) -> sa.ForeignKeyConstraint:
    return sa.ForeignKeyConstraint([column], ["users.id"], ondelete="CASCADE")


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("username", sa.String(length=30), nullable=False),
        sa.Column("display_name", sa.String(length=80), nullable=True),
        sa.Column("avatar_url", sa.String(length=255), nullable=True),
        sa.Column("location_name", sa.String(length=120), nullable=True),
        sa.Column("country", sa.String(length=80), nullable=True),
        sa.Column("profession", sa.String(length=80), nullable=True),
        sa.Column("age_range", sa.String(length=16), nullable=True),
        sa.Column(
            "location_name_visibility",
            sa.String(length=16),
            server_default="friends",
            nullable=False,
        ),
        sa.Column(
            "country_visibility",
            sa.String(length=16),
            server_default="friends",
            nullable=False,
        ),
        sa.Column(
            "profession_visibility",
            sa.String(length=16),
            server_default="public",
            nullable=False,
        ),
        sa.Column(
            "age_range_visibility",
            sa.String(length=16),
            server_default="friends",
            nullable=False,
        ),
        sa.Column(
            "connection_privacy",
            sa.String(length=24),
            server_default="public",
            nullable=False,
        ),
        sa.Column("is_deleted", sa.Boolean(), server_default=sa.text("false"), nullable=False),
        sa.Column("is_banned", sa.Boolean(), server_default=sa.text("false"), nullable=False),
        sa.Column("is_blocked", sa.Boolean(), server_default=sa.text("false"), nullable=False),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_users_username", "users", ["username"], unique=True)

    op.create_table(
        "follows",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("follower_id", sa.String(length=36), nullable=False),
        sa.Column("followed_id", sa.String(length=36), nullable=False),
        *_timestamps(),
        sa.CheckConstraint("follower_id <> followed_id", name="ck_follows_no_self_follow"),
        _user_fk("follower_id"),
        _user_fk("followed_id"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("follower_id", "followed_id", name="uq_follows_pair"),
    )
    op.create_index("ix_follows_follower_id", "follows", ["follower_id"], unique=False)
    op.create_index("ix_follows_followed_id", "follows", ["followed_id"], unique=False)

    op.create_table(
        "connections",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("sent_by", sa.String(length=36), nullable=False),
        sa.Column("received_by", sa.String(length=36), nullable=False),
        sa.Column("status", sa.String(length=16), server_default="pending", nullable=False),
        sa.Column("pair_key", sa.String(length=73), nullable=False),
        *_timestamps(),
        sa.CheckConstraint("sent_by <> received_by", name="ck_connections_no_self_connection"),
        _user_fk("sent_by"),
        _user_fk("received_by"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("pair_key"),
    )
    op.create_index(
        "ix_connections_sent_by_status",
        "connections",
        ["sent_by", "status"],
        unique=False,
    )
    op.create_index(
        "ix_connections_received_by_status",
        "connections",
        ["received_by", "status"],
        unique=False,
    )

    op.create_table(
        "user_blocks",
        sa.Column("blocker_id", sa.String(length=36), nullable=False),
        sa.Column("blocked_id", sa.String(length=36), nullable=False),
        *_timestamps(),
        sa.CheckConstraint("blocker_id <> blocked_id", name="ck_user_blocks_no_self_block"),
        _user_fk("blocker_id"),
        _user_fk("blocked_id"),
        sa.PrimaryKeyConstraint("blocker_id", "blocked_id"),
    )
    op.create_index(
        "ix_user_blocks_blocked_blocker",
        "user_blocks",
        ["blocked_id", "blocker_id"],
        unique=False,
    )

    op.create_table(
        "removed_connections",
        sa.Column("user_id", sa.String(length=36), nullable=False),
        sa.Column("removed_user_id", sa.String(length=36), nullable=False),
        sa.Column(
            "removed_at",
            sa.DateTime(timezone=True),
            server_default=TIMESTAMP_DEFAULT,
            nullable=False,
        ),
        *_timestamps(),
        _user_fk("user_id"),
        _user_fk("removed_user_id"),
        sa.PrimaryKeyConstraint("user_id", "removed_user_id"),
    )
    op.create_index(
        "ix_removed_connections_removed_user_id",
        "removed_connections",
        ["removed_user_id"],
        unique=False,
    )
    op.create_index(
        "ix_removed_connections_removed_at",
        "removed_connections",
        ["removed_at"],
        unique=False,
    )

    op.create_table(
        "groups",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("creator_id", sa.String(length=36), nullable=False),
        sa.Column("name", sa.String(length=120), nullable=False),
        sa.Column("description", sa.Text(), server_default="", nullable=False),
        sa.Column("location_name", sa.String(length=120), nullable=True),
        sa.Column("privacy", sa.String(length=16), server_default="public", nullable=False),
        sa.Column("participant_count", sa.Integer(), server_default="0", nullable=False),
        sa.Column("is_deleted", sa.Boolean(), server_default=sa.text("false"), nullable=False),
        sa.Column("version", sa.Integer(), server_default="1", nullable=False),
        *_timestamps(),
        _user_fk("creator_id"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_groups_creator_id", "groups", ["creator_id"], unique=False)
    op.create_index("ix_groups_location_name", "groups", ["location_name"], unique=False)
    op.create_index(
        "ix_groups_privacy_participants",
        "groups",
        ["privacy", "participant_count"],
        unique=False,
    )

    op.create_table(
        "group_members",
        sa.Column("group_id", sa.String(length=36), nullable=False),
        sa.Column("user_id", sa.String(length=36), nullable=False),
        sa.Column("status", sa.String(length=16), server_default="member", nullable=False),
        sa.Column("role", sa.String(length=16), server_default="member", nullable=False),
        sa.Column("position", sa.Integer(), server_default="0", nullable=False),
        *_timestamps(),
        sa.ForeignKeyConstraint(["group_id"], ["groups.id"], ondelete="CASCADE"),
        _user_fk("user_id"),
        sa.PrimaryKeyConstraint("group_id", "user_id"),
    )
    op.create_index(
        "ix_group_members_user_status",
        "group_members",
        ["user_id", "status"],
        unique=False,
    )


def downgrade() -> None:
    op.drop_index("ix_group_members_user_status", table_name="group_members")
    op.drop_table("group_members")
    op.drop_index("ix_groups_privacy_participants", table_name="groups")
    op.drop_index("ix_groups_location_name", table_name="groups")
    op.drop_index("ix_groups_creator_id", table_name="groups")
    op.drop_table("groups")
    op.drop_index("ix_removed_connections_removed_at", table_name="removed_connections")
    op.drop_index("ix_removed_connections_removed_user_id", table_name="removed_connections")
    op.drop_table("removed_connections")
    op.drop_index("ix_user_blocks_blocked_blocker", table_name="user_blocks")
    op.drop_table("user_blocks")
    op.drop_index("ix_connections_received_by_status", table_name="connections")
    op.drop_index("ix_connections_sent_by_status", table_name="connections")
    op.drop_table("connections")
    op.drop_index("ix_follows_followed_id", table_name="follows")
    op.drop_index("ix_follows_follower_id", table_name="follows")
    op.drop_table("follows")
    op.drop_index("ix_users_username", table_name="users")
    op.drop_table("users")
