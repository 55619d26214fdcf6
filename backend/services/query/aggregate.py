"""Compile and run aggregation pipelines, and paginate over them."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

from sqlalchemy import Select, Table, false, func, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.sql import ColumnElement
from sqlalchemy.sql.expression import FromClause
from sqlmodel import SQLModel

from services.errors import InvalidArgument

from .common import gather_page_and_count, model_table
from .filters import compile_filter
from .options import DEFAULT_SORT, PaginateOptions, PaginateResult, parse_select, parse_sort
from .pipeline import Count, Limit, Lookup, Match, Pipeline, Project, Skip, Sort, Unwind
from .references import collection_for_field, resolve_collection

COUNT_FIELD = "total"


def _label(path: str) -> str:
    return path.replace(".", "__")


@dataclass(slots=True)
class _LookupState:
    foreign_field: str
    unwound: bool = False
    # True when the local field was not available, so nothing can match.
    empty: bool = False


class PipelineCompiler:
    """Translate pipeline stages into one SELECT statement.

    Lookups are left outer joins; their columns are addressed with dotted
    paths (``sent_by.username``) and reshaped into nested documents. Stages
    that must apply after a skip/limit (a later match, sort, skip or lookup)
    wrap what came before in a subquery so stage order is preserved.
    """

    def __init__(self, table: Table) -> None:
        self.source: FromClause = table
        self.columns: dict[str, ColumnElement[Any]] = {column.name: column for column in table.c}
        self.lookups: dict[str, _LookupState] = {}
        self.where: list[ColumnElement[bool]] = []
        self.order: list[tuple[ColumnElement[Any], bool]] = []
        self.offset: int | None = None
        self.limit: int | None = None
        self.count_field: str | None = None
        self._subqueries = 0

    def compile(self, pipeline: Pipeline) -> PipelineCompiler:
        for stage in pipeline:
            if self.count_field is not None:
                raise InvalidArgument("Count must be the final pipeline stage")
            if isinstance(stage, Match):
                self._match(stage)
            elif isinstance(stage, Sort):
                self._sort(stage)
            elif isinstance(stage, Skip):
                self._skip(stage)
            elif isinstance(stage, Limit):
                self._limit(stage)
            elif isinstance(stage, Project):
                self._project(stage)
            elif isinstance(stage, Lookup):
                self._lookup(stage)
            elif isinstance(stage, Unwind):
                self._unwind(stage)
            elif isinstance(stage, Count):
                self.count_field = stage.field
            else:
                raise InvalidArgument(f"Unsupported pipeline stage {stage!r}")
        return self

    def resolve(self, path: str) -> ColumnElement[Any]:
        try:
            return self.columns[path]
        except KeyError:
            raise InvalidArgument(f"Unknown field '{path}'") from None

    @property
    def _paged(self) -> bool:
        return self.offset is not None or self.limit is not None

    def _match(self, stage: Match) -> None:
        if self._paged:
            self._wrap()
        self.where.append(compile_filter(stage.filters, self.resolve))

    def _sort(self, stage: Sort) -> None:
        if self._paged:
            self._wrap()
        order = [(self.resolve(field), descending) for field, descending in parse_sort(stage.sort_by)]
        sorted_paths = {field for field, _ in parse_sort(stage.sort_by)}
        if "id" in self.columns and "id" not in sorted_paths:
            order.append((self.columns["id"], False))
        self.order = order

    def _skip(self, stage: Skip) -> None:
        if self.limit is not None:
            self._wrap()
        self.offset = (self.offset or 0) + stage.count

    def _limit(self, stage: Limit) -> None:
        self.limit = stage.count if self.limit is None else min(self.limit, stage.count)

    def _project(self, stage: Project) -> None:
        spec = parse_select(stage.select)
        if spec is None:
            return
        picked = spec.pick(self._available_paths(), keep=["id"])
        kept_tops = {path.split(".", 1)[0] for path in picked}
        self.lookups = {name: state for name, state in self.lookups.items() if name in kept_tops}
        # A kept lookup always carries its join key so documents can be shaped.
        picked.extend(
            f"{name}.{state.foreign_field}"
            for name, state in self.lookups.items()
            if not state.empty and f"{name}.{state.foreign_field}" not in picked
        )
        self.columns = {path: self.columns[path] for path in picked if path in self.columns}

    def _available_paths(self) -> list[str]:
        paths = list(self.columns)
        paths.extend(name for name, state in self.lookups.items() if state.empty)
        return paths

    def _lookup(self, stage: Lookup) -> None:
        if self._paged:
            self._wrap()
        target = resolve_collection(stage.from_collection)
        if stage.foreign_field not in target.c:
            raise InvalidArgument(
                f"Unknown field '{stage.foreign_field}' on '{stage.from_collection}'"
            )
        local = self.columns.get(stage.local_field)
        self._drop_path(stage.as_field)

        if local is None:
            self.lookups[stage.as_field] = _LookupState(stage.foreign_field, empty=True)
            return

        names = [column.name for column in target.c]
        spec = parse_select(stage.select)
        if spec is not None:
            names = spec.pick(names, keep=[stage.foreign_field])
        if stage.foreign_field not in names:
            names.insert(0, stage.foreign_field)

        self._subqueries += 1
        joined = target.alias(f"lookup_{self._subqueries}")
        self.source = self.source.outerjoin(joined, local == joined.c[stage.foreign_field])
        for name in names:
            self.columns[f"{stage.as_field}.{name}"] = joined.c[name]
        self.lookups[stage.as_field] = _LookupState(stage.foreign_field)

    def _unwind(self, stage: Unwind) -> None:
        state = self.lookups.get(stage.field)
        if state is None:
            raise InvalidArgument(f"Cannot unwind '{stage.field}': not a lookup field")
        state.unwound = True
        if stage.preserve_null_and_empty_arrays:
            return
        if self._paged:
            self._wrap()
        if state.empty:
            self.where.append(false())
        else:
            self.where.append(self.columns[f"{stage.field}.{state.foreign_field}"].is_not(None))

    def _drop_path(self, name: str) -> None:
        prefix = f"{name}."
        self.columns = {
            path: column
            for path, column in self.columns.items()
            if path != name and not path.startswith(prefix)
        }
        self.lookups.pop(name, None)

    def _wrap(self) -> None:
        """Freeze the stages so far into a subquery."""
        inner = self._select(
            [column.label(f"_sort_{index}") for index, (column, _) in enumerate(self.order)]
        )
        self._subqueries += 1
        subquery = inner.subquery(f"stage_{self._subqueries}")
        self.source = subquery
        self.columns = {path: subquery.c[_label(path)] for path in self.columns}
        self.order = [
            (subquery.c[f"_sort_{index}"], descending)
            for index, (_, descending) in enumerate(self.order)
        ]
        self.where = []
        self.offset = None
        self.limit = None

    def _select(self, extra_columns: list[Any] | None = None) -> Select[Any]:
        if not self.columns:
            raise InvalidArgument("Pipeline projects no fields")
        stmt = select(
            *(column.label(_label(path)) for path, column in self.columns.items()),
            *(extra_columns or []),
        ).select_from(self.source)
        if self.where:
            stmt = stmt.where(*self.where)
        if self.order:
            stmt = stmt.order_by(
                *(column.desc() if descending else column.asc() for column, descending in self.order)
            )
        if self.offset:
            stmt = stmt.offset(self.offset)
        if self.limit is not None:
            stmt = stmt.limit(self.limit)
        return stmt

    def statement(self) -> Select[Any]:
        stmt = self._select()
        if self.count_field is not None:
            return select(func.count().label(self.count_field)).select_from(stmt.subquery())
        return stmt

    def to_document(self, row: Mapping[str, Any]) -> dict[str, Any]:
        document: dict[str, Any] = {}
        for path in self.columns:
            value = row[_label(path)]
            top, _, nested = path.partition(".")
            if nested:
                document.setdefault(top, {})[nested] = value
            else:
                document[path] = value

        for name, state in self.lookups.items():
            joined = document.get(name)
            matched = isinstance(joined, dict) and joined.get(state.foreign_field) is not None
            if state.unwound:
                document[name] = joined if matched else None
            else:
                document[name] = [joined] if matched else []
        return document


def compile_pipeline(model: type[SQLModel], pipeline: Pipeline) -> PipelineCompiler:
    return PipelineCompiler(model_table(model)).compile(pipeline)


async def aggregate(
    session: AsyncSession,
    model: type[SQLModel],
    pipeline: Pipeline,
) -> list[dict[str, Any]]:
    """Run ``pipeline`` over ``model`` and return the resulting documents.

    A trailing ``Count`` yields ``[{field: n}]``, or no document when nothing
    matched.
    """
    compiled = compile_pipeline(model, pipeline)
    result = await session.execute(compiled.statement())
    if compiled.count_field is not None:
        total = int(result.scalar_one())
        return [{compiled.count_field: total}] if total else []
    return [compiled.to_document(row) for row in result.mappings()]


def build_page_pipeline(pipeline: Pipeline, options: PaginateOptions) -> Pipeline:
    """Derive the results branch: sort, skip, limit, projection and populates."""
    page = pipeline.append(
        Sort(options.sort_by or DEFAULT_SORT),
        Skip(options.skip),
        Limit(options.limit),
    )
    if options.select:
        page = page.append(Project(options.select))
    for option in options.populate:
        page = page.append(
            Lookup(
                from_collection=collection_for_field(option.path),
                local_field=option.path,
                as_field=option.path,
                select=option.select,
            ),
            Unwind(option.path, preserve_null_and_empty_arrays=True),
        )
    return page


async def aggregate_paginate(
    session: AsyncSession,
    model: type[SQLModel],
    pipeline: Pipeline,
    options: PaginateOptions | None = None,
) -> PaginateResult:
    """Paginate the output of ``pipeline``.

    The count branch and the page branch are both derived from ``pipeline``
    and run concurrently; neither sees the other's stages.
    """
    options = options or PaginateOptions()
    count_pipeline = pipeline.append(Count(COUNT_FIELD))
    page_pipeline = build_page_pipeline(pipeline, options)

    async def load_page(page_session: AsyncSession) -> list[dict[str, Any]]:
        return await aggregate(page_session, model, page_pipeline)

    async def load_count(count_session: AsyncSession) -> int:
        counted = await aggregate(count_session, model, count_pipeline)
        return int(counted[0][COUNT_FIELD]) if counted else 0

    results, total_results = await gather_page_and_count(session, load_page, load_count)
    return PaginateResult.build(
        results,
        page=options.page,
        limit=options.limit,
        total_results=total_results,
    )


__all__ = [
    "COUNT_FIELD",
    "PipelineCompiler",
    "aggregate",
    "aggregate_paginate",
    "build_page_pipeline",
    "compile_pipeline",
]
