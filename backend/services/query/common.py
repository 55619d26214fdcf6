"""Shared SQLAlchemy helpers for the query engines."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable, Collection
from typing import Any, TypeVar, cast

from sqlalchemy import Table
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.sql import ColumnElement
from sqlmodel import SQLModel

T = TypeVar("T")
U = TypeVar("U")


def eq(column: Any, value: Any) -> ColumnElement[bool]:
    """Typed equality expression helper."""
    return cast(ColumnElement[bool], column == value)


def gte(column: Any, value: Any) -> ColumnElement[bool]:
    return cast(ColumnElement[bool], column >= value)


def in_(column: Any, values: Collection[Any]) -> ColumnElement[bool]:
    return cast(ColumnElement[bool], cast(Any, column).in_(values))


def not_in(column: Any, values: Collection[Any]) -> ColumnElement[bool]:
    return cast(ColumnElement[bool], cast(Any, column).not_in(values))


def desc(column: Any) -> Any:
    """Typed descending ordering helper."""
    return cast(Any, column).desc()


def model_table(model: type[SQLModel]) -> Table:
    return cast(Table, cast(Any, model).__table__)


def _sees_only_committed_state(session: AsyncSession) -> bool:
    sync_session = session.sync_session
    return not (
        session.in_transaction()
        or sync_session.new
        or sync_session.dirty
        or sync_session.deleted
    )


async def gather_page_and_count(
    session: AsyncSession,
    load_page: Callable[[AsyncSession], Awaitable[T]],
    load_count: Callable[[AsyncSession], Awaitable[U]],
) -> tuple[T, U]:
    """Run the page query and the count query over the same database state.

    An AsyncSession cannot run two statements at once, so when the caller's
    session has no open transaction the count runs concurrently on a sibling
    session bound to the same engine. Otherwise both run in turn on the
    caller's session, so rows it flushed but has not committed are counted.
    A failure in either query cancels the other and is re-raised as-is.
    """
    if session.bind is None or not _sees_only_committed_state(session):
        page = await load_page(session)
        return page, await load_count(session)

    async with AsyncSession(session.bind, expire_on_commit=False) as count_session:
        page_task = asyncio.ensure_future(load_page(session))
        count_task = asyncio.ensure_future(load_count(count_session))
        try:
            page, count = await asyncio.gather(page_task, count_task)
        except BaseException:
            for task in (page_task, count_task):
                task.cancel()
            await asyncio.gather(page_task, count_task, return_exceptions=True)
            raise
    return page, count
