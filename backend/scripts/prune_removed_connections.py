"""Maintenance script to prune expired removed-connection markers.

Markers older than the TTL are already ignored by suggestion queries; this
script deletes them in bounded batches.

Usage:
    python scripts/prune_removed_connections.py

Environment overrides:
    REMOVED_CONNECTION_TTL_DAYS=30
    REMOVED_CONNECTION_PRUNE_BATCH_SIZE=500
    REMOVED_CONNECTION_MAX_ROWS_PER_RUN=5000
    REMOVED_CONNECTION_MAX_ELAPSED_SECONDS=30
"""

from __future__ import annotations

import asyncio
import os
import sys
from datetime import datetime, timedelta
from pathlib import Path
from time import perf_counter
from typing import Any, cast

from sqlalchemy import delete, select, tuple_
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.sql import ColumnElement

ROOT_DIR = Path(__file__).resolve().parents[1]
if str(ROOT_DIR) not in sys.path:
    sys.path.append(str(ROOT_DIR))

from core import settings  # noqa: E402
from db.session import AsyncSessionMaker  # noqa: E402
from models import RemovedConnection  # noqa: E402
from models.base import utcnow  # noqa: E402

TTL_DAYS_ENV = "REMOVED_CONNECTION_TTL_DAYS"
PRUNE_BATCH_SIZE_ENV = "REMOVED_CONNECTION_PRUNE_BATCH_SIZE"
MAX_ROWS_PER_RUN_ENV = "REMOVED_CONNECTION_MAX_ROWS_PER_RUN"
MAX_ELAPSED_SECONDS_ENV = "REMOVED_CONNECTION_MAX_ELAPSED_SECONDS"
DEFAULT_PRUNE_BATCH_SIZE = 500
DEFAULT_MAX_ROWS_PER_RUN = 5000
DEFAULT_MAX_ELAPSED_SECONDS = 30


def _parse_positive_int(raw_value: str | None, *, default: int, label: str) -> int:
    if raw_value is None or raw_value.strip() == "":
        return default
    try:
        parsed = int(raw_value)
    except ValueError as exc:
        raise ValueError(f"{label} must be an integer") from exc
    if parsed <= 0:
        raise ValueError(f"{label} must be positive")
    return parsed


def _parse_non_negative_int(raw_value: str | None, *, default: int, label: str) -> int:
    if raw_value is None or raw_value.strip() == "":
        return default
    try:
        parsed = int(raw_value)
    except ValueError as exc:
        raise ValueError(f"{label} must be an integer") from exc
    if parsed < 0:
        raise ValueError(f"{label} must be non-negative")
    return parsed


def _lt(column: Any, value: Any) -> ColumnElement[bool]:
    return cast(ColumnElement[bool], column < value)


async def prune_expired_batch(
    session: AsyncSession,
    *,
    cutoff: datetime,
    batch_size: int,
) -> int:
    """Delete up to ``batch_size`` markers removed before ``cutoff``."""
    result = await session.execute(
        select(RemovedConnection.user_id, RemovedConnection.removed_user_id)
        .where(_lt(RemovedConnection.removed_at, cutoff))
        .order_by(RemovedConnection.removed_at)
        .limit(batch_size)
    )
    keys = [tuple(row) for row in result.all()]
    if not keys:
        return 0

    await session.execute(
        delete(RemovedConnection).where(
            tuple_(RemovedConnection.user_id, RemovedConnection.removed_user_id).in_(keys)
        )
    )
    await session.commit()
    return len(keys)


async def run(session_factory: async_sessionmaker[AsyncSession] = AsyncSessionMaker) -> int:
    ttl_days = _parse_non_negative_int(
        os.getenv(TTL_DAYS_ENV),
        default=settings.removed_connection_ttl_days,
        label=TTL_DAYS_ENV,
    )
    batch_size = _parse_positive_int(
        os.getenv(PRUNE_BATCH_SIZE_ENV),
        default=DEFAULT_PRUNE_BATCH_SIZE,
        label=PRUNE_BATCH_SIZE_ENV,
    )
    max_rows_per_run = _parse_positive_int(
        os.getenv(MAX_ROWS_PER_RUN_ENV),
        default=DEFAULT_MAX_ROWS_PER_RUN,
        label=MAX_ROWS_PER_RUN_ENV,
    )
    max_elapsed_seconds = _parse_positive_int(
        os.getenv(MAX_ELAPSED_SECONDS_ENV),
        default=DEFAULT_MAX_ELAPSED_SECONDS,
        label=MAX_ELAPSED_SECONDS_ENV,
    )

    cutoff = utcnow() - timedelta(days=ttl_days)
    started_at = perf_counter()
    rows_deleted = 0
    batches = 0
    stop_reason = "completed"

    async with session_factory() as session:
        while True:
            remaining_row_budget = max_rows_per_run - rows_deleted
            if remaining_row_budget <= 0:
                stop_reason = "max_rows"
                break
            if perf_counter() - started_at >= max_elapsed_seconds:
                stop_reason = "max_elapsed_seconds"
                break

            deleted_rows = await prune_expired_batch(
                session,
                cutoff=cutoff,
                batch_size=min(batch_size, remaining_row_budget),
            )
            if deleted_rows == 0:
                break
            batches += 1
            rows_deleted += deleted_rows

    elapsed_ms = int((perf_counter() - started_at) * 1000)
    print(
        "Removed connection prune complete: "
        f"ttl_days={ttl_days}, batches={batches}, rows_deleted={rows_deleted}, "
        f"elapsed_ms={elapsed_ms}, stop_reason={stop_reason}"
    )
    return rows_deleted


def main() -> None:
    asyncio.run(run())


if __name__ == "__main__":
    main()
