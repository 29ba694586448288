"""Submission of export commands, one per batch group.

Each group becomes one ``.export`` control command that reads the group's
raw CSV blobs through ``externaldata`` and writes snappy-compressed
Parquet to the group's destination. Failed submissions are classified by
an injected predicate: transient failures resubmit the identical command
until it succeeds or fails permanently; permanent failures raise
ExportError for that group.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional

import tenacity
from tenacity.wait import wait_base

from querybench.lib.errors import ExportError
from querybench.lib.partition import BatchGroup
from querybench.lib.records import kql_schema
from querybench.lib.warehouse import Warehouse, is_transient_failure

logger = logging.getLogger(__name__)

__all__ = [
    "ExportJob",
    "ExportStatus",
    "ExportSubmitter",
    "SIZE_LIMIT_BYTES",
    "render_export_command",
]

# Ceiling per destination Parquet file (1 GiB)
SIZE_LIMIT_BYTES = 1073741824


class ExportStatus(str, Enum):
    PENDING = "pending"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


@dataclass
class ExportJob:
    """A batch group bound to its rendered command.

    Only ExportSubmitter writes ``status``, ``attempts`` and ``error``.
    """

    group: BatchGroup
    command: str
    status: ExportStatus = ExportStatus.PENDING
    attempts: int = 0
    error: Optional[str] = None

    @property
    def destination(self) -> str:
        return self.group.destination

    def to_dict(self) -> dict:
        return {
            "group": self.group.index,
            "destination": self.destination,
            "objects": len(self.group.members),
            "status": self.status.value,
            "attempts": self.attempts,
            "error": self.error,
        }


def _impersonated(uri: str) -> str:
    return f"h@'{uri};impersonate'"


def render_export_command(group: BatchGroup, size_limit: int = SIZE_LIMIT_BYTES) -> str:
    """Render the export control command for ``group``."""
    sources = ", ".join(_impersonated(uri) for uri in group.source_uris)
    return (
        ".export compressed to parquet (\n"
        f"    {_impersonated(group.destination)}\n"
        ") with (\n"
        f"    sizeLimit = {size_limit},\n"
        "    namePrefix = '1',\n"
        "    compressionType = 'snappy',\n"
        "    distributed = false,\n"
        "    useNativeParquetWriter = true\n"
        ")\n"
        "<|\n"
        f"externaldata({kql_schema()})\n"
        f"[{sources}]\n"
        "with(format = 'csv')"
    )


class ExportSubmitter:
    """Submits export commands with retry on transient failure.

    Args:
        warehouse: Bulk command executor
        database: Database the commands run in
        is_transient: Failure classification; defaults to the warehouse's
        wait: Tenacity wait strategy between attempts
        size_limit: Size ceiling per destination file

    Retries are unbounded. Callers that need a ceiling wrap ``submit``
    (for example in ``asyncio.wait_for``).
    """

    def __init__(
        self,
        warehouse: Warehouse,
        database: str,
        *,
        is_transient: Callable[[BaseException], bool] = is_transient_failure,
        wait: Optional[wait_base] = None,
        size_limit: int = SIZE_LIMIT_BYTES,
    ) -> None:
        self.warehouse = warehouse
        self.database = database
        self.is_transient = is_transient
        self.wait = wait if wait is not None else tenacity.wait_exponential(
            multiplier=0.5, max=30.0
        )
        self.size_limit = size_limit

    def prepare(self, group: BatchGroup) -> ExportJob:
        return ExportJob(group=group, command=render_export_command(group, self.size_limit))

    async def submit(self, group: BatchGroup) -> ExportJob:
        """Submit one group and wait for the outcome.

        Returns:
            The job, SUCCEEDED

        Raises:
            ExportError: the command failed permanently; ``exc.job`` is FAILED
        """
        job = self.prepare(group)

        async def _attempt() -> None:
            job.attempts += 1
            await self.warehouse.execute_command(self.database, job.command)

        def _before_sleep(retry_state: tenacity.RetryCallState) -> None:
            exception = retry_state.outcome.exception() if retry_state.outcome else None
            logger.warning(
                "Export to %s attempt %d failed transiently: %s. Retrying in %.1fs...",
                job.destination,
                retry_state.attempt_number,
                exception,
                retry_state.next_action.sleep if retry_state.next_action else 0,
            )

        retrying = tenacity.AsyncRetrying(
            stop=tenacity.stop_never,
            wait=self.wait,
            retry=tenacity.retry_if_exception(self.is_transient),
            before_sleep=_before_sleep,
            reraise=True,
        )

        try:
            await retrying(_attempt)
        except Exception as exc:
            job.status = ExportStatus.FAILED
            job.error = str(exc)
            logger.error(
                "Export to %s failed permanently after %d attempt(s): %s",
                job.destination,
                job.attempts,
                exc,
            )
            raise ExportError(
                f"Export to {job.destination} failed",
                destination=job.destination,
                attempts=job.attempts,
                cause=exc,
                job=job,
            ) from exc

        job.status = ExportStatus.SUCCEEDED
        logger.info("Wrote '%s'", job.destination)
        return job
