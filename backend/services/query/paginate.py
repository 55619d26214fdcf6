"""Offset pagination over a single table."""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from sqlalchemy import Table, func, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.sql import ColumnElement
from sqlmodel import SQLModel

from services.errors import InvalidArgument

from .common import desc, gather_page_and_count, model_table
from .filters import compile_filter, table_column_resolver
from .options import PaginateOptions, PaginateResult, PopulateOption, parse_select, parse_sort
from .references import (
    IDENTITY_FIELD,
    collection_for_field,
    identity_column,
    resolve_collection,
)


def _selected_columns(table: Table, select_fields: str | None) -> list[ColumnElement[Any]]:
    names = [column.name for column in table.c]
    spec = parse_select(select_fields)
    if spec is not None:
        names = spec.pick(names, keep=[column.name for column in table.primary_key])
    return [table.c[name] for name in names]


def _order_by(table: Table, sort_by: str | None) -> list[Any]:
    order: list[Any] = []
    sorted_names: set[str] = set()
    for field, descending in parse_sort(sort_by):
        if field not in table.c:
            raise InvalidArgument(f"Unknown sort field '{field}'")
        order.append(desc(table.c[field]) if descending else table.c[field])
        sorted_names.add(field)
    # Primary key tie-breakers keep page boundaries stable.
    order.extend(column for column in table.primary_key if column.name not in sorted_names)
    return order


async def _populate(
    session: AsyncSession,
    results: list[dict[str, Any]],
    option: PopulateOption,
) -> None:
    path = option.path
    if not results or path not in results[0]:
        return

    target = resolve_collection(collection_for_field(path))
    target_identity = identity_column(target)
    columns = _selected_columns(target, option.select)
    if IDENTITY_FIELD not in {column.name for column in columns}:
        columns.insert(0, target_identity)

    referenced_ids = {row[path] for row in results if row[path] is not None}
    found: dict[Any, dict[str, Any]] = {}
    if referenced_ids:
        rows = await session.execute(
            select(*columns).where(target_identity.in_(referenced_ids))
        )
        found = {row[IDENTITY_FIELD]: dict(row) for row in rows.mappings()}

    for row in results:
        row[path] = found.get(row[path])


async def paginate(
    session: AsyncSession,
    model: type[SQLModel],
    filters: Mapping[str, Any] | None = None,
    options: PaginateOptions | None = None,
) -> PaginateResult:
    """Return one page of ``model`` rows matching ``filters``.

    ``total_results`` comes from a separate count over the same filter, so it
    does not depend on ``page`` or ``limit``.
    """
    options = options or PaginateOptions()
    table = model_table(model)
    criteria = compile_filter(filters, table_column_resolver(table))

    page_stmt = (
        select(*_selected_columns(table, options.select))
        .where(criteria)
        .order_by(*_order_by(table, options.sort_by))
        .offset(options.skip)
        .limit(options.limit)
    )
    count_stmt = select(func.count()).select_from(table).where(criteria)

    async def load_page(page_session: AsyncSession) -> list[dict[str, Any]]:
        result = await page_session.execute(page_stmt)
        return [dict(row) for row in result.mappings()]

    async def load_count(count_session: AsyncSession) -> int:
        result = await count_session.execute(count_stmt)
        return int(result.scalar_one())

    results, total_results = await gather_page_and_count(session, load_page, load_count)

    for option in options.populate:
        await _populate(session, results, option)

    return PaginateResult.build(
        results,
        page=options.page,
        limit=options.limit,
        total_results=total_results,
    )


__all__ = ["paginate"]
