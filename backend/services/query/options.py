"""Pagination options, projection/sort parsing and the result envelope."""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from math import ceil
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from core import settings
from services.errors import InvalidArgument

DEFAULT_SORT = "created_at"


class PopulateOption(BaseModel):
    """Replace the foreign key at ``path`` with the referenced record."""

    model_config = ConfigDict(frozen=True)

    path: str
    select: str | None = None


class PaginateOptions(BaseModel):
    page: int = Field(default=1, ge=1)
    limit: int = Field(default_factory=lambda: settings.default_page_limit, ge=1)
    sort_by: str | None = None
    select: str | None = None
    populate: list[PopulateOption] = Field(default_factory=list)

    @field_validator("limit")
    @classmethod
    def _cap_limit(cls, value: int) -> int:
        return min(value, settings.max_page_limit)

    @property
    def skip(self) -> int:
        return (self.page - 1) * self.limit

    def with_defaults(
        self,
        *,
        sort_by: str | None = None,
        populate: Sequence[PopulateOption] | None = None,
    ) -> PaginateOptions:
        """Return a copy filling in a default sort and a fixed populate list."""
        update: dict[str, Any] = {}
        if sort_by is not None and not self.sort_by:
            update["sort_by"] = sort_by
        if populate is not None:
            update["populate"] = list(populate)
        return self.model_copy(update=update)


def parse_paginate_options(raw: Mapping[str, Any] | None) -> PaginateOptions:
    """Build options from loosely typed input such as query-string values."""
    try:
        return PaginateOptions.model_validate(dict(raw or {}))
    except ValidationError as exc:
        raise InvalidArgument(f"Invalid pagination options: {exc.errors()[0]['msg']}") from exc


class PaginateResult(BaseModel):
    results: list[Any]
    page: int
    limit: int
    total_pages: int
    total_results: int

    @classmethod
    def build(
        cls,
        results: list[Any],
        *,
        page: int,
        limit: int,
        total_results: int,
    ) -> PaginateResult:
        return cls(
            results=results,
            page=page,
            limit=limit,
            total_pages=ceil(total_results / limit),
            total_results=total_results,
        )

    @classmethod
    def empty(cls, options: PaginateOptions) -> PaginateResult:
        return cls.build([], page=options.page, limit=options.limit, total_results=0)


@dataclass(frozen=True, slots=True)
class SelectSpec:
    """Parsed ``select`` string: an inclusion or an exclusion field list."""

    fields: tuple[str, ...]
    exclude: bool

    def pick(self, available: Sequence[str], *, keep: Sequence[str] = ()) -> list[str]:
        """Return the ``available`` names chosen by this spec, in their order."""
        chosen = set(self.fields)
        known = set(available) | {name.split(".", 1)[0] for name in available}
        unknown = sorted(chosen - known)
        if unknown:
            raise InvalidArgument(f"Unknown select field(s): {', '.join(unknown)}")

        picked: list[str] = []
        for name in available:
            selected = name in chosen or name.split(".", 1)[0] in chosen
            if self.exclude:
                selected = not selected
            else:
                selected = selected or name in keep
            if selected:
                picked.append(name)
        if not picked:
            raise InvalidArgument("Select would remove every field")
        return picked


def parse_select(select: str | None) -> SelectSpec | None:
    """Parse ``"a b"`` (inclusion) or ``"-a -b"`` (exclusion)."""
    if select is None:
        return None
    tokens = select.split()
    if not tokens:
        return None
    excluded = [token.startswith("-") for token in tokens]
    if any(excluded) and not all(excluded):
        raise InvalidArgument("Select cannot mix included and excluded fields")
    fields = tuple(token.lstrip("-") for token in tokens)
    if any(not field for field in fields):
        raise InvalidArgument("Select contains an empty field name")
    return SelectSpec(fields=fields, exclude=all(excluded))


def parse_sort(sort_by: str | None) -> list[tuple[str, bool]]:
    """Parse ``"-created_at name"`` into ``[(field, descending), ...]``."""
    tokens = (sort_by or DEFAULT_SORT).replace(",", " ").split()
    order: list[tuple[str, bool]] = []
    for token in tokens:
        field = token.lstrip("-+")
        if not field:
            raise InvalidArgument(f"Invalid sort field '{token}'")
        order.append((field, token.startswith("-")))
    return order


__all__ = [
    "DEFAULT_SORT",
    "PaginateOptions",
    "PaginateResult",
    "PopulateOption",
    "SelectSpec",
    "parse_paginate_options",
    "parse_select",
    "parse_sort",
]
