"""Typed rows parsed from server-side scan output.

Scan output is headerless CSV with a fixed column order per query shape.
Each line maps positionally onto a row record; lines that cannot be
converted are skipped and reported as ScanError diagnostics keyed by the
byte offset of the line, the column name and a description.
"""

from __future__ import annotations

import csv
import io
import uuid
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterator, List, Optional, Sequence, Tuple

import pandas as pd

from querybench.lib.errors import ScanError

__all__ = [
    "LOG_SCHEMA",
    "Column",
    "CountRow",
    "KeyedValueRow",
    "LogRow",
    "RangeRow",
    "ValueRow",
    "column_for",
    "kql_schema",
    "parse_rows",
    "parse_timestamp",
]

# Column name -> Kusto type for the exported log records
LOG_SCHEMA: Dict[str, str] = {
    "Timestamp": "datetime",
    "Instance": "string",
    "Node": "string",
    "Level": "string",
    "Component": "string",
    "EventId": "guid",
    "Detail": "string",
}


def kql_schema() -> str:
    """Schema clause used by externaldata and external table definitions."""
    return ", ".join(f"{name}: {kind}" for name, kind in LOG_SCHEMA.items())


def parse_timestamp(value: str) -> pd.Timestamp:
    ts = pd.Timestamp(value)
    if ts.tzinfo is None:
        return ts.tz_localize("UTC")
    return ts.tz_convert("UTC")


_CONVERTERS: Dict[str, Callable[[str], Any]] = {
    "datetime": parse_timestamp,
    "string": str,
    "guid": uuid.UUID,
    "long": int,
}


@dataclass(frozen=True)
class Column:
    name: str
    kind: str
    nullable: bool = False

    def convert(self, raw: str) -> Any:
        if raw == "":
            if self.nullable or self.kind == "string":
                return None if self.nullable else ""
            raise ValueError("empty value")
        return _CONVERTERS[self.kind](raw)

    def coerce(self, value: Any) -> Any:
        """Convert a value already typed by another system (e.g. a DataFrame cell)."""
        if value is None or (not isinstance(value, str) and pd.isna(value)):
            return None
        if isinstance(value, str):
            return self.convert(value)
        if self.kind == "datetime":
            return parse_timestamp(value)
        if self.kind == "guid":
            return uuid.UUID(str(value))
        if self.kind == "long":
            return int(value)
        return str(value)


def column_for(field: str, *, alias: Optional[str] = None, nullable: bool = False) -> Column:
    """Column of the log schema, optionally renamed."""
    return Column(name=alias or field, kind=LOG_SCHEMA[field], nullable=nullable)


@dataclass(frozen=True)
class CountRow:
    count: int


@dataclass(frozen=True)
class RangeRow:
    minimum: Any
    maximum: Any


@dataclass(frozen=True)
class ValueRow:
    value: Any


@dataclass(frozen=True)
class KeyedValueRow:
    key: Any
    value: Any


@dataclass(frozen=True)
class LogRow:
    timestamp: pd.Timestamp
    instance: str
    node: str
    level: str
    component: str
    event_id: uuid.UUID
    detail: str


class _LineFeed:
    """Line iterator that tracks the byte offset consumed so far."""

    def __init__(self, text: str) -> None:
        # Record separators only; form feeds and the like stay inside fields
        self._lines = io.StringIO(text, newline="")
        self.offset = 0

    def __iter__(self) -> "_LineFeed":
        return self

    def __next__(self) -> str:
        line = next(self._lines)
        self.offset += len(line.encode("utf-8"))
        return line


def _rows_with_offsets(text: str) -> Iterator[Tuple[int, List[str]]]:
    feed = _LineFeed(text)
    reader = csv.reader(feed)
    while True:
        start = feed.offset
        try:
            row = next(reader)
        except StopIteration:
            return
        if row:
            yield start, row


def parse_rows(
    text: str,
    columns: Sequence[Column],
    factory: Callable[..., Any],
    *,
    object_name: Optional[str] = None,
) -> Tuple[List[Any], List[ScanError]]:
    """Parse headerless CSV into row records.

    Args:
        text: Scan output
        columns: Expected columns, in output order
        factory: Record constructor taking one positional argument per column
        object_name: Object the output came from, for diagnostics

    Returns:
        (records, diagnostics)
    """
    records: List[Any] = []
    diagnostics: List[ScanError] = []

    for offset, fields in _rows_with_offsets(text):
        if len(fields) != len(columns):
            diagnostics.append(
                ScanError(
                    f"expected {len(columns)} fields, found {len(fields)}",
                    object_name=object_name,
                    position=offset,
                    name=None,
                )
            )
            continue

        values = []
        for column, raw in zip(columns, fields):
            try:
                values.append(column.convert(raw))
            except (ValueError, TypeError, OverflowError) as exc:
                diagnostics.append(
                    ScanError(
                        f"cannot read {raw!r} as {column.kind}: {exc}",
                        object_name=object_name,
                        position=offset,
                        name=column.name,
                    )
                )
                break
        else:
            records.append(factory(*values))

    return records, diagnostics
