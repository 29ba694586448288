"""Dual-system query harness.

Runs one query intent against both tiers and reports the two results
side by side:

1. Storage: list the objects under the location, drop zero-length ones,
   scan every remaining object concurrently with query acceleration, wait
   for all scans (any scan that raises fails the comparison), then merge
   the per-object rows with the shape's aggregation.
2. Warehouse: recreate an external table over the location, run the KQL
   once cold and once warm, and keep the warm result table.

Per-object diagnostics (malformed rows, service-reported errors) travel
with each scan's result and never abort the other scans.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Union

import pandas as pd

from querybench.lib.discovery import BlobEnumerator
from querybench.lib.errors import ScanError
from querybench.lib.observability import PhaseTimings
from querybench.lib.queries import QueryShape
from querybench.lib.records import kql_schema, parse_rows
from querybench.lib.storage.base import ObjectStore, SourceObject
from querybench.lib.storage.location import BlobLocation
from querybench.lib.warehouse import Warehouse

logger = logging.getLogger(__name__)

__all__ = [
    "DEFAULT_EXTERNAL_TABLE",
    "DualQueryHarness",
    "QueryComparison",
    "ScanOutcome",
    "StorageResult",
    "WarehouseResult",
    "render_create_external_table",
    "render_drop_external_table",
]

DEFAULT_EXTERNAL_TABLE = "QueryBenchLogs"


@dataclass
class ScanOutcome:
    """Rows and diagnostics produced by scanning one object."""

    source: SourceObject
    records: List[Any] = field(default_factory=list)
    diagnostics: List[ScanError] = field(default_factory=list)


@dataclass
class StorageResult:
    value: Any
    object_count: int
    diagnostics: List[ScanError]
    blob_retrieval_seconds: float
    query_seconds: float


@dataclass
class WarehouseResult:
    table: pd.DataFrame
    value: Any
    cold_seconds: float
    warm_seconds: float


@dataclass
class QueryComparison:
    """Both results of one query intent plus their timings."""

    query: QueryShape
    location: str
    storage: StorageResult
    warehouse: WarehouseResult

    @property
    def matches(self) -> bool:
        return self.query.same_result(self.storage.value, self.warehouse.value)

    @property
    def diagnostics(self) -> List[ScanError]:
        return self.storage.diagnostics

    def summary(self) -> Dict[str, Any]:
        return {
            **self.query.describe(),
            "location": self.location,
            "objects_scanned": self.storage.object_count,
            "storage_result": _display(self.storage.value),
            "warehouse_result": _display(self.warehouse.value),
            "matches": self.matches,
            "diagnostics": len(self.storage.diagnostics),
            "timing": {
                "blob_retrieval_seconds": round(self.storage.blob_retrieval_seconds, 3),
                "storage_query_seconds": round(self.storage.query_seconds, 3),
                "warehouse_cold_seconds": round(self.warehouse.cold_seconds, 3),
                "warehouse_warm_seconds": round(self.warehouse.warm_seconds, 3),
            },
        }


def _display(value: Any) -> Any:
    if isinstance(value, (set, frozenset)):
        return sorted((str(v) for v in value))
    if isinstance(value, dict):
        return {str(k): str(v) for k, v in value.items()}
    if isinstance(value, (int, float, str)) or value is None:
        return value
    if isinstance(value, list):
        return [str(v) for v in value]
    return str(value)


def render_drop_external_table(table: str) -> str:
    return f".drop external table {table} ifexists"


def render_create_external_table(table: str, location: str) -> str:
    return (
        f".create external table {table} ({kql_schema()})\n"
        "kind=storage\n"
        "dataformat=parquet\n"
        "(\n"
        f"    h@'{location.rstrip('/')};impersonate'\n"
        ")"
    )


class DualQueryHarness:
    """Executes equivalent queries against storage and the warehouse.

    Args:
        store: Object store holding the columnar files
        warehouse: Warehouse the external table is created in
        database: Warehouse database
        external_table: Name of the external table (dropped and recreated
            on every comparison)
        max_parallel_scans: Upper bound on concurrent scans; None scans
            every object at once
    """

    def __init__(
        self,
        store: ObjectStore,
        warehouse: Warehouse,
        database: str,
        *,
        external_table: str = DEFAULT_EXTERNAL_TABLE,
        max_parallel_scans: Optional[int] = None,
    ) -> None:
        self.store = store
        self.warehouse = warehouse
        self.database = database
        self.external_table = external_table
        self.max_parallel_scans = max_parallel_scans
        self.enumerator = BlobEnumerator(store)

    async def compare(
        self, location: Union[str, BlobLocation], query: QueryShape
    ) -> QueryComparison:
        location_text = str(location).rstrip("/")
        storage = await self.query_storage(location, query)
        warehouse = await self.query_warehouse(location_text, query)
        return QueryComparison(
            query=query,
            location=location_text,
            storage=storage,
            warehouse=warehouse,
        )

    async def _scan(
        self,
        obj: SourceObject,
        query: QueryShape,
        query_text: str,
        semaphore: Optional[asyncio.Semaphore],
    ) -> ScanOutcome:
        if semaphore is not None:
            async with semaphore:
                result = await self.store.scan_object(obj, query_text)
        else:
            result = await self.store.scan_object(obj, query_text)

        records, parse_errors = parse_rows(
            result.text, query.columns, query.factory, object_name=obj.name
        )
        return ScanOutcome(
            source=obj,
            records=records,
            diagnostics=list(result.errors) + parse_errors,
        )

    async def scan_all(
        self, objects: Sequence[SourceObject], query: QueryShape
    ) -> List[ScanOutcome]:
        """Scan every object concurrently; fails if any single scan raises."""
        query_text = query.storage_query()
        semaphore = (
            asyncio.Semaphore(self.max_parallel_scans) if self.max_parallel_scans else None
        )
        return list(
            await asyncio.gather(
                *(self._scan(obj, query, query_text, semaphore) for obj in objects)
            )
        )

    async def query_storage(
        self, location: Union[str, BlobLocation], query: QueryShape
    ) -> StorageResult:
        timings = PhaseTimings()

        with timings.time_phase("blob_retrieval"):
            listed = await self.enumerator.enumerate(location)
            objects = [obj for obj in listed if obj.size != 0]

        with timings.time_phase("storage_query"):
            outcomes = await self.scan_all(objects, query)

        diagnostics: List[ScanError] = []
        for outcome in outcomes:
            for diagnostic in outcome.diagnostics:
                logger.warning(
                    "Error: %s @ %s: %s: %s",
                    outcome.source.name,
                    diagnostic.position,
                    diagnostic.name,
                    diagnostic.description,
                )
            diagnostics.extend(outcome.diagnostics)

        value = query.aggregate([outcome.records for outcome in outcomes])

        blob_retrieval = timings.get("blob_retrieval") or 0.0
        query_seconds = timings.get("storage_query") or 0.0
        logger.info("Blob retrieval: %.3fs", blob_retrieval)
        logger.info("Query: %.3fs", query_seconds)
        logger.info("# of blobs: %d", len(objects))

        return StorageResult(
            value=value,
            object_count=len(objects),
            diagnostics=diagnostics,
            blob_retrieval_seconds=blob_retrieval,
            query_seconds=query_seconds,
        )

    async def query_warehouse(self, location: str, query: QueryShape) -> WarehouseResult:
        await self.warehouse.execute_command(
            self.database, render_drop_external_table(self.external_table)
        )
        await self.warehouse.execute_command(
            self.database, render_create_external_table(self.external_table, location)
        )

        query_text = query.warehouse_query(self.external_table)
        timings = PhaseTimings()

        with timings.time_phase("cold"):
            await self.warehouse.execute_query(self.database, query_text)
        with timings.time_phase("warm"):
            table = await self.warehouse.execute_query(self.database, query_text)

        cold = timings.get("cold") or 0.0
        warm = timings.get("warm") or 0.0
        logger.info("Warehouse query (cold): %.3fs", cold)
        logger.info("Warehouse query (warm): %.3fs", warm)

        return WarehouseResult(
            table=table,
            value=query.reduce_table(table),
            cold_seconds=cold,
            warm_seconds=warm,
        )
