"""
Predicate translator: Query -> parameterized SQL filter.

Each predicate becomes one comparison against the fetch view's column, with the
literal converted to the column's stored kind before any I/O. Column names
come from the closed HistoryColumn enum; values are always bound parameters.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, NamedTuple, Tuple

from pydantic import TypeAdapter, ValidationError

from wuhistory.domain.models import SlotType, WorkUnitResult
from wuhistory.domain.query import HistoryColumn, Predicate, Query, QueryOperator
from wuhistory.errors import QueryTranslationError
from wuhistory.infrastructure.schema import format_timestamp


class ColumnKind(str, Enum):
    STRING = "string"
    INTEGER = "integer"
    REAL = "real"
    DATETIME = "datetime"


COLUMN_KINDS: Dict[HistoryColumn, ColumnKind] = {
    HistoryColumn.ID: ColumnKind.INTEGER,
    HistoryColumn.PROJECT_ID: ColumnKind.INTEGER,
    HistoryColumn.PROJECT_RUN: ColumnKind.INTEGER,
    HistoryColumn.PROJECT_CLONE: ColumnKind.INTEGER,
    HistoryColumn.PROJECT_GEN: ColumnKind.INTEGER,
    HistoryColumn.NAME: ColumnKind.STRING,
    HistoryColumn.PATH: ColumnKind.STRING,
    HistoryColumn.USERNAME: ColumnKind.STRING,
    HistoryColumn.TEAM: ColumnKind.INTEGER,
    HistoryColumn.CORE_VERSION: ColumnKind.REAL,
    HistoryColumn.FRAMES_COMPLETED: ColumnKind.INTEGER,
    HistoryColumn.FRAME_TIME: ColumnKind.INTEGER,
    HistoryColumn.RESULT: ColumnKind.INTEGER,
    HistoryColumn.ASSIGNED: ColumnKind.DATETIME,
    HistoryColumn.FINISHED: ColumnKind.DATETIME,
    HistoryColumn.WORK_UNIT_NAME: ColumnKind.STRING,
    HistoryColumn.K_FACTOR: ColumnKind.REAL,
    HistoryColumn.CORE: ColumnKind.STRING,
    HistoryColumn.FRAMES: ColumnKind.INTEGER,
    HistoryColumn.ATOMS: ColumnKind.INTEGER,
    HistoryColumn.BASE_CREDIT: ColumnKind.REAL,
    HistoryColumn.PREFERRED_DAYS: ColumnKind.REAL,
    HistoryColumn.MAXIMUM_DAYS: ColumnKind.REAL,
    HistoryColumn.SLOT_TYPE: ColumnKind.STRING,
}

_SQL_OPERATORS: Dict[QueryOperator, str] = {
    QueryOperator.EQUAL: "=",
    QueryOperator.NOT_EQUAL: "<>",
    QueryOperator.GREATER_THAN: ">",
    QueryOperator.GREATER_THAN_OR_EQUAL: ">=",
    QueryOperator.LESS_THAN: "<",
    QueryOperator.LESS_THAN_OR_EQUAL: "<=",
    QueryOperator.LIKE: "LIKE",
    QueryOperator.NOT_LIKE: "NOT LIKE",
}

_PATTERN_OPERATORS = frozenset({QueryOperator.LIKE, QueryOperator.NOT_LIKE})

_ADAPTERS: Dict[ColumnKind, TypeAdapter] = {
    ColumnKind.STRING: TypeAdapter(str),
    ColumnKind.INTEGER: TypeAdapter(int),
    ColumnKind.REAL: TypeAdapter(float),
    ColumnKind.DATETIME: TypeAdapter(datetime),
}


class TranslatedQuery(NamedTuple):
    """A WHERE clause body (without the keyword) and its positional parameters."""

    where: str
    params: Tuple[Any, ...]


def _coerce_enum_value(column: HistoryColumn, value: Any) -> Any:
    # Enum members and their names are accepted for the enum-backed columns.
    if column is HistoryColumn.RESULT:
        if isinstance(value, WorkUnitResult):
            return int(value)
        if isinstance(value, str) and value.strip().upper() in WorkUnitResult.__members__:
            return int(WorkUnitResult[value.strip().upper()])
    if column is HistoryColumn.SLOT_TYPE and isinstance(value, SlotType):
        return value.value
    return value


def convert_value(column: HistoryColumn, value: Any) -> Any:
    """
    Convert a predicate literal to the bound parameter for `column`.

    Raises QueryTranslationError when the value does not fit the column kind.
    """
    kind = COLUMN_KINDS[column]
    value = _coerce_enum_value(column, value)
    if isinstance(value, bool):
        raise QueryTranslationError(
            f"Boolean {value!r} is not valid for column {column.value} ({kind.value})",
            metadata={"column": column.value, "kind": kind.value, "value": repr(value)},
        )
    if kind is ColumnKind.STRING and isinstance(value, (int, float)):
        value = str(value)
    elif isinstance(value, str) and kind is not ColumnKind.STRING:
        value = value.strip()
    try:
        converted = _ADAPTERS[kind].validate_python(value, strict=False)
    except ValidationError as exc:
        raise QueryTranslationError(
            f"Value {value!r} is not valid for column {column.value} ({kind.value})",
            metadata={"column": column.value, "kind": kind.value, "value": repr(value)},
        ) from exc
    if kind is ColumnKind.DATETIME:
        return format_timestamp(converted)
    return converted


def translate_predicate(predicate: Predicate) -> Tuple[str, Any]:
    column = predicate.column
    if column not in COLUMN_KINDS:
        raise QueryTranslationError(
            f"Unknown column {column!r}", metadata={"column": str(column)}
        )
    operator = predicate.operator
    if operator in _PATTERN_OPERATORS and COLUMN_KINDS[column] is not ColumnKind.STRING:
        raise QueryTranslationError(
            f"Operator {operator.value} requires a string column; {column.value} is "
            f"{COLUMN_KINDS[column].value}",
            metadata={"column": column.value, "operator": operator.value},
        )
    param = convert_value(column, predicate.value)
    return f"[{column.value}] {_SQL_OPERATORS[operator]} ?", param


def translate(query: Query) -> TranslatedQuery:
    """
    Translate a query into `(where, params)`.

    An empty query yields an empty clause and no parameters.
    """
    clauses: List[str] = []
    params: List[Any] = []
    for predicate in query.predicates:
        clause, param = translate_predicate(predicate)
        clauses.append(clause)
        params.append(param)
    return TranslatedQuery(" AND ".join(clauses), tuple(params))


__all__ = [
    "COLUMN_KINDS",
    "ColumnKind",
    "TranslatedQuery",
    "convert_value",
    "translate",
    "translate_predicate",
]
