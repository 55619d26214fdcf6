"""Aggregation pipeline stages.

Pipelines are immutable: ``append`` and ``extend`` return a new pipeline, so
a base pipeline can be shared between derived pipelines (for example a page
branch and a count branch) without one seeing the other's stages.
"""

from __future__ import annotations

from collections.abc import Iterable, Iterator, Mapping
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Union

from services.errors import InvalidArgument


@dataclass(frozen=True, slots=True)
class Match:
    filters: Mapping[str, Any]

    def __post_init__(self) -> None:
        object.__setattr__(self, "filters", MappingProxyType(dict(self.filters)))


@dataclass(frozen=True, slots=True)
class Sort:
    sort_by: str


@dataclass(frozen=True, slots=True)
class Skip:
    count: int

    def __post_init__(self) -> None:
        if self.count < 0:
            raise InvalidArgument("Skip count must be non-negative")


@dataclass(frozen=True, slots=True)
class Limit:
    count: int

    def __post_init__(self) -> None:
        if self.count < 1:
            raise InvalidArgument("Limit count must be positive")


@dataclass(frozen=True, slots=True)
class Project:
    select: str


@dataclass(frozen=True, slots=True)
class Lookup:
    """Left join ``from_collection`` where ``local_field`` equals ``foreign_field``."""

    from_collection: str
    local_field: str
    as_field: str
    select: str | None = None
    foreign_field: str = "id"


@dataclass(frozen=True, slots=True)
class Unwind:
    path: str
    preserve_null_and_empty_arrays: bool = False

    @property
    def field(self) -> str:
        return self.path.removeprefix("$")


@dataclass(frozen=True, slots=True)
class Count:
    field: str = "total"


Stage = Union[Match, Sort, Skip, Limit, Project, Lookup, Unwind, Count]


@dataclass(frozen=True, slots=True)
class Pipeline:
    stages: tuple[Stage, ...] = field(default=())

    def append(self, *stages: Stage) -> Pipeline:
        return Pipeline(self.stages + stages)

    def extend(self, stages: Iterable[Stage]) -> Pipeline:
        return Pipeline(self.stages + tuple(stages))

    def __iter__(self) -> Iterator[Stage]:
        return iter(self.stages)

    def __len__(self) -> int:
        return len(self.stages)


__all__ = [
    "Count",
    "Limit",
    "Lookup",
    "Match",
    "Pipeline",
    "Project",
    "Skip",
    "Sort",
    "Stage",
    "Unwind",
]
