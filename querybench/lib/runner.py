"""Top-level operations and the configuration run loop.

``run_data_prep`` and ``run_query_comparison`` are the two operations a
configuration entry maps onto. ``run_config`` walks every entry of a
loaded configuration; a failure is scoped to its entry, logged, recorded
in the report and the loop moves on.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Union

from azure.core.exceptions import AzureError
from azure.kusto.data.exceptions import KustoError

from querybench.lib.config_loader import DataPrepConfig, QueryConfig, RootConfig
from querybench.lib.discovery import BlobEnumerator
from querybench.lib.errors import ExportError, QueryBenchError
from querybench.lib.export import ExportJob, ExportSubmitter
from querybench.lib.harness import DualQueryHarness, QueryComparison
from querybench.lib.partition import BatchGroup, partition
from querybench.lib.queries import build_query
from querybench.lib.storage.base import ObjectStore
from querybench.lib.storage.location import BlobLocation
from querybench.lib.warehouse import Warehouse

logger = logging.getLogger(__name__)

__all__ = [
    "DataPrepSummary",
    "RunReport",
    "run_config",
    "run_data_prep",
    "run_query_comparison",
]

# Expected failures of an entry; anything else is logged with a traceback
ENTRY_ERRORS = (QueryBenchError, AzureError, KustoError)


@dataclass
class DataPrepSummary:
    """Outcome of one data-prep entry."""

    source: str
    destination: str
    object_count: int
    groups: List[BatchGroup] = field(default_factory=list)
    jobs: List[ExportJob] = field(default_factory=list)
    failures: List[ExportError] = field(default_factory=list)

    @property
    def group_count(self) -> int:
        return len(self.groups)

    @property
    def ok(self) -> bool:
        return not self.failures

    def to_dict(self) -> Dict[str, Any]:
        return {
            "source": self.source,
            "destination": self.destination,
            "objects": self.object_count,
            "groups": self.group_count,
            "written": [job.destination for job in self.jobs],
            "failed": [failure.destination for failure in self.failures],
        }


@dataclass
class RunReport:
    data_prep: List[DataPrepSummary] = field(default_factory=list)
    comparisons: List[QueryComparison] = field(default_factory=list)
    failures: List[Dict[str, Any]] = field(default_factory=list)
    skipped: bool = False

    @property
    def ok(self) -> bool:
        return not self.failures and all(s.ok for s in self.data_prep)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "skipped": self.skipped,
            "data_prep": [s.to_dict() for s in self.data_prep],
            "queries": [c.summary() for c in self.comparisons],
            "failures": self.failures,
        }


async def run_data_prep(
    source: Union[str, BlobLocation],
    destination: str,
    target_bytes: Optional[int],
    enumerator: BlobEnumerator,
    submitter: ExportSubmitter,
    *,
    max_parallel: int = 1,
) -> DataPrepSummary:
    """Convert every raw object under ``source`` into Parquet under ``destination``.

    Groups are submitted in order, ``max_parallel`` at a time. A group that
    fails permanently is recorded in the summary and the remaining groups
    still run.

    Raises:
        DiscoveryError: ``source`` could not be listed
    """
    objects = await enumerator.enumerate(source)
    groups = partition(objects, destination, target_bytes)

    logger.info("From %s: %d blobs", source, len(objects))
    logger.info("To %s: %d blobs", destination, len(groups))

    summary = DataPrepSummary(
        source=str(source),
        destination=destination,
        object_count=len(objects),
        groups=groups,
    )

    semaphore = asyncio.Semaphore(max(1, max_parallel))

    async def _submit(group: BatchGroup) -> Union[ExportJob, ExportError]:
        async with semaphore:
            try:
                return await submitter.submit(group)
            except ExportError as exc:
                return exc

    for outcome in await asyncio.gather(*(_submit(group) for group in groups)):
        if isinstance(outcome, ExportError):
            summary.failures.append(outcome)
        else:
            summary.jobs.append(outcome)

    if summary.failures:
        logger.error(
            "%d of %d export(s) to %s failed",
            len(summary.failures),
            len(groups),
            destination,
        )
    return summary


async def run_query_comparison(
    source: Union[str, BlobLocation],
    query_type: Any,
    harness: DualQueryHarness,
    parameters: Optional[Mapping[str, Any]] = None,
) -> QueryComparison:
    """Run one query intent against storage and the warehouse.

    Raises:
        UnsupportedQueryError: ``query_type`` names no supported shape
        ConfigurationError: ``parameters`` are invalid for the shape
        DiscoveryError: ``source`` could not be listed
    """
    query = build_query(query_type, parameters)
    logger.info("Running %s against %s", query.query_type.value, source)

    comparison = await harness.compare(source, query)

    summary = comparison.summary()
    logger.info(
        "%s: storage=%s warehouse=%s matches=%s",
        summary["query_type"],
        summary["storage_result"],
        summary["warehouse_result"],
        summary["matches"],
        extra={"comparison": summary},
    )
    if not comparison.matches:
        logger.warning(
            "%s results differ between storage and warehouse", summary["query_type"]
        )
    return comparison


def _record_failure(
    report: RunReport, kind: str, index: int, entry: Any, exc: BaseException
) -> None:
    failure: Dict[str, Any] = {"entry": f"{kind}[{index}]", "source": entry.source}
    if isinstance(exc, QueryBenchError):
        failure.update(exc.to_dict())
    else:
        failure.update({"error_type": type(exc).__name__, "message": str(exc)})
    logger.error(
        "%s entry %d failed: %s",
        kind,
        index,
        exc,
        exc_info=not isinstance(exc, ENTRY_ERRORS),
        extra={"failure": failure},
    )
    report.failures.append(failure)


async def run_config(
    config: RootConfig,
    store: ObjectStore,
    warehouse: Warehouse,
    *,
    only: Optional[str] = None,
    submitter: Optional[ExportSubmitter] = None,
) -> RunReport:
    """Run every data-prep entry, then every query entry.

    Args:
        config: Loaded configuration
        store: Object store for listing and scans
        warehouse: Warehouse for exports and comparison queries
        only: ``"data-prep"`` or ``"queries"`` to run one half
        submitter: Export submitter override (retry policy)
    """
    report = RunReport()

    if not config.has_warehouse:
        logger.info("No warehouse configured (cluster_uri/database); skipping run")
        report.skipped = True
        return report

    database = config.database or ""
    enumerator = BlobEnumerator(store)
    submitter = submitter or ExportSubmitter(warehouse, database)
    harness = DualQueryHarness(
        store,
        warehouse,
        database,
        external_table=config.external_table,
        max_parallel_scans=config.max_parallel_scans,
    )

    if only in (None, "data-prep"):
        for index, prep in enumerate(config.data_prep):
            await _run_prep_entry(report, index, prep, enumerator, submitter, config)

    if only in (None, "queries"):
        for index, entry in enumerate(config.queries):
            await _run_query_entry(report, index, entry, harness)

    return report


async def _run_prep_entry(
    report: RunReport,
    index: int,
    prep: DataPrepConfig,
    enumerator: BlobEnumerator,
    submitter: ExportSubmitter,
    config: RootConfig,
) -> None:
    try:
        summary = await run_data_prep(
            prep.source,
            prep.destination,
            prep.target_bytes,
            enumerator,
            submitter,
            max_parallel=config.max_parallel_exports,
        )
    except Exception as exc:
        _record_failure(report, "data_prep", index, prep, exc)
        return
    report.data_prep.append(summary)


async def _run_query_entry(
    report: RunReport,
    index: int,
    entry: QueryConfig,
    harness: DualQueryHarness,
) -> None:
    try:
        comparison = await run_query_comparison(
            entry.source, entry.query_type, harness, entry.parameters
        )
    except Exception as exc:
        _record_failure(report, "queries", index, entry, exc)
        return
    report.comparisons.append(comparison)
