"""Tests for the removed-connection prune script."""

from datetime import timedelta

import pytest
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from models import RemovedConnection
from models.base import utcnow
from scripts import prune_removed_connections as prune_script


def test_parse_non_negative_int_accepts_zero() -> None:
    parsed = prune_script._parse_non_negative_int(
        "0",
        default=123,
        label="REMOVED_CONNECTION_TTL_DAYS",
    )
    assert parsed == 0


def test_parse_non_negative_int_rejects_negative_values() -> None:
    with pytest.raises(ValueError):
        prune_script._parse_non_negative_int(
            "-1",
            default=123,
            label="REMOVED_CONNECTION_TTL_DAYS",
        )


def test_parse_positive_int_rejects_zero() -> None:
    with pytest.raises(ValueError):
        prune_script._parse_positive_int(
            "0",
            default=123,
            label="REMOVED_CONNECTION_PRUNE_BATCH_SIZE",
        )


def test_parse_positive_int_uses_default_for_blank_values() -> None:
    assert (
        prune_script._parse_positive_int(
            "  ",
            default=500,
            label="REMOVED_CONNECTION_PRUNE_BATCH_SIZE",
        )
        == 500
    )


@pytest.mark.asyncio
async def test_run_deletes_only_expired_markers(
    db_session: AsyncSession,
    session_maker: async_sessionmaker[AsyncSession],
    make_user,
    monkeypatch,
) -> None:
    alice = await make_user("alice")
    peers = [await make_user(f"peer{index}") for index in range(4)]
    expired_at = utcnow() - timedelta(days=10)
    db_session.add_all(
        [
            RemovedConnection(user_id=alice.id, removed_user_id=peers[0].id, removed_at=expired_at),
            RemovedConnection(user_id=alice.id, removed_user_id=peers[1].id, removed_at=expired_at),
            RemovedConnection(user_id=peers[2].id, removed_user_id=alice.id, removed_at=expired_at),
            RemovedConnection(user_id=alice.id, removed_user_id=peers[3].id),
        ]
    )
    await db_session.commit()
    monkeypatch.setenv(prune_script.TTL_DAYS_ENV, "7")
    monkeypatch.setenv(prune_script.PRUNE_BATCH_SIZE_ENV, "2")

    deleted = await prune_script.run(session_maker)

    assert deleted == 3
    remaining = await db_session.execute(select(RemovedConnection.removed_user_id))
    assert remaining.scalars().all() == [peers[3].id]


@pytest.mark.asyncio
async def test_run_respects_row_budget(
    db_session: AsyncSession,
    session_maker: async_sessionmaker[AsyncSession],
    make_user,
    monkeypatch,
) -> None:
    alice = await make_user("alice")
    peers = [await make_user(f"peer{index}") for index in range(3)]
    expired_at = utcnow() - timedelta(days=60)
    db_session.add_all(
        [
            RemovedConnection(user_id=alice.id, removed_user_id=peer.id, removed_at=expired_at)
            for peer in peers
        ]
    )
    await db_session.commit()
    monkeypatch.setenv(prune_script.TTL_DAYS_ENV, "30")
    monkeypatch.setenv(prune_script.MAX_ROWS_PER_RUN_ENV, "2")

    assert await prune_script.run(session_maker) == 2
