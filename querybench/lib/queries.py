"""Supported query shapes.

Each shape expresses one query intent twice: as query acceleration SQL run
against every stored object, and as KQL run against the warehouse's
external table. A shape also knows how to parse the per-object rows, how
to merge them across objects, and how to reduce the warehouse table to a
value comparable with the merged storage result.

The set is closed: ``build_query`` dispatches on the query-type tag and
raises UnsupportedQueryError for anything else.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from collections import Counter
from enum import Enum
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Sequence, Type

import pandas as pd

from querybench.lib.errors import ConfigurationError, UnsupportedQueryError
from querybench.lib.records import (
    LOG_SCHEMA,
    Column,
    CountRow,
    KeyedValueRow,
    LogRow,
    RangeRow,
    ValueRow,
    column_for,
    parse_timestamp,
)

logger = logging.getLogger(__name__)

__all__ = [
    "QueryType",
    "QueryShape",
    "TotalCount",
    "FilterCount",
    "TimeFilterCount",
    "MinMax",
    "MaxBy",
    "Distinct",
    "PointFilter",
    "build_query",
    "external_table_ref",
]

STORAGE_SOURCE = "BlobStorage"


class QueryType(str, Enum):
    TOTAL_COUNT = "total_count"
    FILTER_COUNT = "filter_count"
    TIME_FILTER_COUNT = "time_filter_count"
    MIN_MAX = "min_max"
    MAX_BY = "max_by"
    DISTINCT = "distinct"
    POINT_FILTER = "point_filter"

    @classmethod
    def from_tag(cls, tag: Any) -> "QueryType":
        """Resolve ``total_count``, ``TotalCount`` or ``totalcount``."""
        if isinstance(tag, QueryType):
            return tag
        normalized = str(tag).strip().replace("_", "").replace("-", "").lower()
        for member in cls:
            if member.value.replace("_", "") == normalized:
                return member
        raise UnsupportedQueryError(
            f"Query type '{tag}' is not supported",
            query_type=str(tag),
            supported=[m.value for m in cls],
        )


def external_table_ref(table: str) -> str:
    return f"external_table('{table}')"


def _sql_literal(value: str) -> str:
    return "'" + value.replace("'", "''") + "'"


def _kql_literal(field: str, value: str) -> str:
    kind = LOG_SCHEMA[field]
    if kind == "guid":
        return f"guid({value})"
    if kind == "datetime":
        return f"datetime({value})"
    return "'" + value.replace("\\", "\\\\").replace("'", "\\'") + "'"


def _require_field(parameters: Mapping[str, Any], key: str, default: Optional[str]) -> str:
    field = parameters.get(key, default)
    if field is None:
        raise ConfigurationError(f"Query parameter '{key}' is required", field=key)
    field = str(field)
    if field not in LOG_SCHEMA:
        raise ConfigurationError(
            f"Unknown column '{field}'; expected one of {', '.join(LOG_SCHEMA)}",
            field=key,
            value=field,
        )
    return field


def _require_value(parameters: Mapping[str, Any], key: str, default: Optional[str]) -> str:
    value = parameters.get(key, default)
    if value is None or str(value) == "":
        raise ConfigurationError(f"Query parameter '{key}' is required", field=key)
    return str(value)


class QueryShape(ABC):
    """One query intent, rendered for both systems."""

    query_type: QueryType
    factory: Callable[..., Any]

    def __init__(self, parameters: Optional[Mapping[str, Any]] = None) -> None:
        self.parameters: Dict[str, Any] = dict(parameters or {})

    @property
    @abstractmethod
    def columns(self) -> Sequence[Column]:
        """Columns of the storage-side scan output, in order."""

    @abstractmethod
    def storage_query(self) -> str:
        ...

    @abstractmethod
    def warehouse_query(self, table: str) -> str:
        ...

    @abstractmethod
    def aggregate(self, per_object: Sequence[Sequence[Any]]) -> Any:
        """Merge the records of every scanned object into one result."""

    @abstractmethod
    def reduce_table(self, frame: pd.DataFrame) -> Any:
        """Reduce the warehouse result to the form ``aggregate`` returns."""

    def same_result(self, storage_value: Any, warehouse_value: Any) -> bool:
        return storage_value == warehouse_value

    def describe(self) -> Dict[str, Any]:
        return {"query_type": self.query_type.value, "parameters": self.parameters}


class _CountShape(QueryShape):
    factory = CountRow

    @property
    def columns(self) -> Sequence[Column]:
        return [Column("count", "long")]

    def _where_sql(self) -> str:
        return ""

    def _where_kql(self) -> str:
        return ""

    def storage_query(self) -> str:
        return f"SELECT COUNT(*) FROM {STORAGE_SOURCE}{self._where_sql()}"

    def warehouse_query(self, table: str) -> str:
        return f"{external_table_ref(table)}{self._where_kql()} | count"

    def aggregate(self, per_object: Sequence[Sequence[CountRow]]) -> int:
        return sum(row.count for rows in per_object for row in rows)

    def reduce_table(self, frame: pd.DataFrame) -> int:
        if frame.empty:
            return 0
        return int(frame.iloc[0, 0])


class TotalCount(_CountShape):
    query_type = QueryType.TOTAL_COUNT


class FilterCount(_CountShape):
    """Rows where a column equals a value (default: Level = 'Error')."""

    query_type = QueryType.FILTER_COUNT

    def __init__(self, parameters: Optional[Mapping[str, Any]] = None) -> None:
        super().__init__(parameters)
        self.field = _require_field(self.parameters, "field", "Level")
        self.value = _require_value(self.parameters, "value", "Error")

    def _where_sql(self) -> str:
        return f" WHERE {self.field} = {_sql_literal(self.value)}"

    def _where_kql(self) -> str:
        return f" | where {self.field} == {_kql_literal(self.field, self.value)}"


class TimeFilterCount(_CountShape):
    """Rows whose timestamp column is later than a threshold."""

    query_type = QueryType.TIME_FILTER_COUNT

    def __init__(self, parameters: Optional[Mapping[str, Any]] = None) -> None:
        super().__init__(parameters)
        self.field = _require_field(self.parameters, "field", "Timestamp")
        if LOG_SCHEMA[self.field] != "datetime":
            raise ConfigurationError(
                f"Column '{self.field}' is not a timestamp", field="field", value=self.field
            )
        raw = _require_value(self.parameters, "threshold", None)
        try:
            threshold = parse_timestamp(raw)
        except ValueError as exc:
            raise ConfigurationError(
                f"Invalid threshold: {exc}", field="threshold", value=raw
            ) from exc
        self.threshold = threshold.strftime("%Y-%m-%dT%H:%M:%S.%fZ")

    def _where_sql(self) -> str:
        return f" WHERE {self.field} > TO_TIMESTAMP('{self.threshold}')"

    def _where_kql(self) -> str:
        return f" | where {self.field} > datetime({self.threshold})"


class MinMax(QueryShape):
    """Smallest and largest value of a column (default: Timestamp)."""

    query_type = QueryType.MIN_MAX
    factory = RangeRow

    def __init__(self, parameters: Optional[Mapping[str, Any]] = None) -> None:
        super().__init__(parameters)
        self.field = _require_field(self.parameters, "field", "Timestamp")

    @property
    def columns(self) -> Sequence[Column]:
        return [
            column_for(self.field, alias=f"min_{self.field}", nullable=True),
            column_for(self.field, alias=f"max_{self.field}", nullable=True),
        ]

    def storage_query(self) -> str:
        return f"SELECT MIN({self.field}), MAX({self.field}) FROM {STORAGE_SOURCE}"

    def warehouse_query(self, table: str) -> str:
        return (
            f"{external_table_ref(table)} "
            f"| summarize Min = min({self.field}), Max = max({self.field})"
        )

    def aggregate(self, per_object: Sequence[Sequence[RangeRow]]) -> RangeRow:
        rows = [row for rows in per_object for row in rows]
        minimums = [row.minimum for row in rows if row.minimum is not None]
        maximums = [row.maximum for row in rows if row.maximum is not None]
        return RangeRow(
            minimum=min(minimums) if minimums else None,
            maximum=max(maximums) if maximums else None,
        )

    def reduce_table(self, frame: pd.DataFrame) -> RangeRow:
        if frame.empty:
            return RangeRow(minimum=None, maximum=None)
        low, high = self.columns
        return RangeRow(
            minimum=low.coerce(frame.iloc[0, 0]),
            maximum=high.coerce(frame.iloc[0, 1]),
        )


class MaxBy(QueryShape):
    """Largest value of a column per distinct key (default: max Timestamp by Level).

    Query acceleration has no GROUP BY, so each object returns its raw
    (key, value) pairs and the grouping happens after the join.
    """

    query_type = QueryType.MAX_BY
    factory = KeyedValueRow

    def __init__(self, parameters: Optional[Mapping[str, Any]] = None) -> None:
        super().__init__(parameters)
        self.key = _require_field(self.parameters, "key", "Level")
        self.field = _require_field(self.parameters, "field", "Timestamp")

    @property
    def columns(self) -> Sequence[Column]:
        return [column_for(self.key), column_for(self.field, nullable=True)]

    def storage_query(self) -> str:
        return f"SELECT {self.key}, {self.field} FROM {STORAGE_SOURCE}"

    def warehouse_query(self, table: str) -> str:
        return (
            f"{external_table_ref(table)} "
            f"| summarize Max = max({self.field}) by {self.key}"
        )

    def aggregate(self, per_object: Sequence[Sequence[KeyedValueRow]]) -> Dict[Any, Any]:
        result: Dict[Any, Any] = {}
        for rows in per_object:
            for row in rows:
                if row.value is None:
                    result.setdefault(row.key, None)
                    continue
                current = result.get(row.key)
                if current is None or row.value > current:
                    result[row.key] = row.value
        return result

    def reduce_table(self, frame: pd.DataFrame) -> Dict[Any, Any]:
        key_column, value_column = self.columns
        return {
            key_column.coerce(key): value_column.coerce(value)
            for key, value in zip(frame.iloc[:, 0], frame.iloc[:, 1])
        }


class Distinct(QueryShape):
    """Distinct values of a column (default: Component)."""

    query_type = QueryType.DISTINCT
    factory = ValueRow

    def __init__(self, parameters: Optional[Mapping[str, Any]] = None) -> None:
        super().__init__(parameters)
        self.field = _require_field(self.parameters, "field", "Component")

    @property
    def columns(self) -> Sequence[Column]:
        return [column_for(self.field)]

    def storage_query(self) -> str:
        return f"SELECT {self.field} FROM {STORAGE_SOURCE}"

    def warehouse_query(self, table: str) -> str:
        return f"{external_table_ref(table)} | distinct {self.field}"

    def aggregate(self, per_object: Sequence[Sequence[ValueRow]]) -> set:
        return {row.value for rows in per_object for row in rows}

    def reduce_table(self, frame: pd.DataFrame) -> set:
        if frame.empty:
            return set()
        column = self.columns[0]
        return {column.coerce(value) for value in frame.iloc[:, 0]}


class PointFilter(QueryShape):
    """Full rows matching an opaque identifier (default column: EventId)."""

    query_type = QueryType.POINT_FILTER
    factory = LogRow

    def __init__(self, parameters: Optional[Mapping[str, Any]] = None) -> None:
        super().__init__(parameters)
        self.field = _require_field(self.parameters, "field", "EventId")
        self.value = _require_value(self.parameters, "value", None)

    @property
    def columns(self) -> Sequence[Column]:
        return [column_for(name) for name in LOG_SCHEMA]

    def storage_query(self) -> str:
        return f"SELECT * FROM {STORAGE_SOURCE} WHERE {self.field} = {_sql_literal(self.value)}"

    def warehouse_query(self, table: str) -> str:
        return (
            f"{external_table_ref(table)} "
            f"| where {self.field} == {_kql_literal(self.field, self.value)}"
        )

    def aggregate(self, per_object: Sequence[Sequence[LogRow]]) -> List[LogRow]:
        return [row for rows in per_object for row in rows]

    def reduce_table(self, frame: pd.DataFrame) -> List[LogRow]:
        columns = self.columns
        return [
            LogRow(*(column.coerce(value) for column, value in zip(columns, values)))
            for values in frame.itertuples(index=False, name=None)
        ]

    def same_result(self, storage_value: Iterable[LogRow], warehouse_value: Iterable[LogRow]) -> bool:
        # Row order differs between the two systems
        return Counter(storage_value) == Counter(warehouse_value)


SHAPES: Dict[QueryType, Type[QueryShape]] = {
    shape.query_type: shape
    for shape in (TotalCount, FilterCount, TimeFilterCount, MinMax, MaxBy, Distinct, PointFilter)
}


def build_query(tag: Any, parameters: Optional[Mapping[str, Any]] = None) -> QueryShape:
    """Instantiate the shape registered for ``tag``.

    Raises:
        UnsupportedQueryError: ``tag`` names no supported shape
        ConfigurationError: ``parameters`` are invalid for the shape
    """
    query_type = QueryType.from_tag(tag)
    return SHAPES[query_type](parameters)
