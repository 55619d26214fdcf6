"""Compile filter objects (plain mappings) into SQL predicates.

A filter object maps field paths to either a literal, compared for equality,
or to an operator mapping::

    {"status": "accepted", "$or": [{"sent_by": uid}, {"received_by": uid}]}
    {"id": {"$nin": excluded_ids}, "age": {"$gte": 18}}

Supported field operators are ``$eq``, ``$ne``, ``$in``, ``$nin``, ``$gt``,
``$gte``, ``$lt`` and ``$lte``; ``$or`` and ``$and`` combine nested filter
objects at any level.
"""

from __future__ import annotations

from collections.abc import Callable, Mapping, Sequence
from enum import Enum
from typing import Any

from sqlalchemy import and_, false, or_, true
from sqlalchemy.sql import ColumnElement
from sqlalchemy.sql.expression import FromClause

from services.errors import InvalidArgument

ColumnResolver = Callable[[str], ColumnElement[Any]]

_RANGE_OPERATORS = {
    "$gt": lambda column, value: column > value,
    "$gte": lambda column, value: column >= value,
    "$lt": lambda column, value: column < value,
    "$lte": lambda column, value: column <= value,
}
_LOGICAL_OPERATORS = {"$or": or_, "$and": and_}


def table_column_resolver(table: FromClause) -> ColumnResolver:
    """Resolve plain column names against ``table``."""

    def resolve(path: str) -> ColumnElement[Any]:
        try:
            return table.c[path]
        except KeyError:
            raise InvalidArgument(f"Unknown field '{path}'") from None

    return resolve


def compile_filter(
    filters: Mapping[str, Any] | None,
    resolve_column: ColumnResolver,
) -> ColumnElement[bool]:
    """Return a single predicate equivalent to ``filters``."""
    if not filters:
        return true()

    clauses: list[ColumnElement[bool]] = []
    for key, value in filters.items():
        if key in _LOGICAL_OPERATORS:
            branches = _compile_branches(key, value, resolve_column)
            clauses.append(_LOGICAL_OPERATORS[key](*branches))
        elif key.startswith("$"):
            raise InvalidArgument(f"Unsupported filter operator '{key}'")
        else:
            clauses.append(_compile_field(resolve_column(key), key, value))
    return and_(true(), *clauses)


def _compile_branches(
    operator: str,
    value: Any,
    resolve_column: ColumnResolver,
) -> list[ColumnElement[bool]]:
    if isinstance(value, (str, bytes)) or not isinstance(value, Sequence) or not value:
        raise InvalidArgument(f"'{operator}' expects a non-empty list of filters")
    branches: list[ColumnElement[bool]] = []
    for branch in value:
        if not isinstance(branch, Mapping):
            raise InvalidArgument(f"'{operator}' expects a non-empty list of filters")
        branches.append(compile_filter(branch, resolve_column))
    return branches


def _is_operator_mapping(value: Any) -> bool:
    return (
        isinstance(value, Mapping)
        and bool(value)
        and all(isinstance(key, str) and key.startswith("$") for key in value)
    )


def _compile_field(column: ColumnElement[Any], path: str, value: Any) -> ColumnElement[bool]:
    if not _is_operator_mapping(value):
        return _equals(column, _plain(value))

    clauses: list[ColumnElement[bool]] = []
    for operator, operand in value.items():
        if operator == "$eq":
            clauses.append(_equals(column, _plain(operand)))
        elif operator == "$ne":
            clauses.append(_not_equals(column, _plain(operand)))
        elif operator == "$in":
            values = _operand_list(path, operator, operand)
            clauses.append(column.in_(values) if values else false())
        elif operator == "$nin":
            values = _operand_list(path, operator, operand)
            if values:
                # Missing values never equal a listed one.
                clauses.append(or_(column.is_(None), column.not_in(values)))
        elif operator in _RANGE_OPERATORS:
            if operand is None:
                raise InvalidArgument(f"'{operator}' on '{path}' needs a value")
            clauses.append(_RANGE_OPERATORS[operator](column, _plain(operand)))
        else:
            raise InvalidArgument(f"Unsupported operator '{operator}' on '{path}'")
    return and_(true(), *clauses)


def _equals(column: ColumnElement[Any], value: Any) -> ColumnElement[bool]:
    if value is None:
        return column.is_(None)
    return column == value


def _not_equals(column: ColumnElement[Any], value: Any) -> ColumnElement[bool]:
    if value is None:
        return column.is_not(None)
    return or_(column.is_(None), column != value)


def _operand_list(path: str, operator: str, operand: Any) -> list[Any]:
    if isinstance(operand, (str, bytes, Mapping)) or not isinstance(
        operand, (Sequence, set, frozenset)
    ):
        raise InvalidArgument(f"'{operator}' on '{path}' expects a list")
    return [_plain(item) for item in operand]


def _plain(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    return value


__all__ = ["ColumnResolver", "compile_filter", "table_column_resolver"]
