"""Tests for export command rendering and submission with retry."""

from __future__ import annotations

import asyncio

import pytest
from azure.kusto.data.exceptions import KustoNetworkError, KustoThrottlingError

from querybench.lib.errors import ExportError, TransientSubmissionError
from querybench.lib.export import (
    SIZE_LIMIT_BYTES,
    ExportStatus,
    ExportSubmitter,
    render_export_command,
)
from querybench.lib.partition import BatchGroup
from tests.conftest import PARQUET, RAW, FakeWarehouse, make_objects


@pytest.fixture
def group() -> BatchGroup:
    members = tuple(make_objects(RAW, [("a.csv.gz", 10), ("b.csv.gz", 20)]))
    return BatchGroup(index=0, members=members, destination=f"{PARQUET}/0")


class TestRenderExportCommand:
    def test_writes_snappy_parquet_to_destination(self, group: BatchGroup) -> None:
        command = render_export_command(group)

        assert command.startswith(".export compressed to parquet (")
        assert f"h@'{PARQUET}/0;impersonate'" in command
        assert f"sizeLimit = {SIZE_LIMIT_BYTES}" in command
        assert "compressionType = 'snappy'" in command
        assert "namePrefix = '1'" in command
        assert "distributed = false" in command
        assert "useNativeParquetWriter = true" in command

    def test_reads_every_member_as_csv(self, group: BatchGroup) -> None:
        command = render_export_command(group)

        assert (
            f"[h@'{RAW}/a.csv.gz;impersonate', h@'{RAW}/b.csv.gz;impersonate']" in command
        )
        assert "externaldata(Timestamp: datetime, Instance: string" in command
        assert "EventId: guid, Detail: string)" in command
        assert command.endswith("with(format = 'csv')")

    def test_custom_size_limit(self, group: BatchGroup) -> None:
        assert "sizeLimit = 1024," in render_export_command(group, size_limit=1024)


class TestExportSubmitter:
    def test_success_on_first_attempt(self, group: BatchGroup, no_wait) -> None:
        warehouse = FakeWarehouse()
        submitter = ExportSubmitter(warehouse, "logs", wait=no_wait)

        job = asyncio.run(submitter.submit(group))

        assert job.status is ExportStatus.SUCCEEDED
        assert job.attempts == 1
        assert warehouse.commands == [("logs", job.command)]

    @pytest.mark.parametrize("failures", [1, 3, 7])
    def test_transient_failures_are_retried(
        self, group: BatchGroup, no_wait, failures: int
    ) -> None:
        warehouse = FakeWarehouse(
            command_failures=[TransientSubmissionError("throttled")] * failures
        )
        submitter = ExportSubmitter(warehouse, "logs", wait=no_wait)

        job = asyncio.run(submitter.submit(group))

        assert job.status is ExportStatus.SUCCEEDED
        assert job.attempts == failures + 1
        assert len(warehouse.commands) == failures + 1
        # Every retry resubmits the identical command
        assert len({text for _, text in warehouse.commands}) == 1

    def test_throttling_and_network_failures_are_retried(
        self, group: BatchGroup, no_wait
    ) -> None:
        warehouse = FakeWarehouse(
            command_failures=[
                KustoThrottlingError("throttled", None),
                KustoNetworkError("https://bench.kusto.windows.net"),
            ]
        )
        submitter = ExportSubmitter(warehouse, "logs", wait=no_wait)

        job = asyncio.run(submitter.submit(group))

        assert job.status is ExportStatus.SUCCEEDED
        assert job.attempts == 3

    def test_permanent_failure_is_not_retried(self, group: BatchGroup, no_wait) -> None:
        warehouse = FakeWarehouse(command_failures=[ValueError("bad schema")])
        submitter = ExportSubmitter(warehouse, "logs", wait=no_wait)

        with pytest.raises(ExportError) as exc_info:
            asyncio.run(submitter.submit(group))

        err = exc_info.value
        assert err.destination == f"{PARQUET}/0"
        assert err.attempts == 1
        assert isinstance(err.cause, ValueError)
        assert err.job.status is ExportStatus.FAILED
        assert "bad schema" in err.job.error
        assert len(warehouse.commands) == 1

    def test_permanent_failure_after_transient_ones(
        self, group: BatchGroup, no_wait
    ) -> None:
        warehouse = FakeWarehouse(
            command_failures=[
                TransientSubmissionError("throttled"),
                TransientSubmissionError("throttled"),
                RuntimeError("forbidden"),
            ]
        )
        submitter = ExportSubmitter(warehouse, "logs", wait=no_wait)

        with pytest.raises(ExportError) as exc_info:
            asyncio.run(submitter.submit(group))

        assert exc_info.value.attempts == 3

    def test_injected_classification(self, group: BatchGroup, no_wait) -> None:
        warehouse = FakeWarehouse(command_failures=[KeyError("x"), KeyError("y")])
        submitter = ExportSubmitter(
            warehouse,
            "logs",
            wait=no_wait,
            is_transient=lambda exc: isinstance(exc, KeyError),
        )

        job = asyncio.run(submitter.submit(group))

        assert job.attempts == 3

    def test_retries_log_warning(self, group: BatchGroup, no_wait, caplog) -> None:
        warehouse = FakeWarehouse(command_failures=[TransientSubmissionError("busy")])
        submitter = ExportSubmitter(warehouse, "logs", wait=no_wait)

        with caplog.at_level("WARNING", logger="querybench.lib.export"):
            asyncio.run(submitter.submit(group))

        assert any("attempt 1 failed transiently" in r.getMessage() for r in caplog.records)

    def test_prepare_does_not_submit(self, group: BatchGroup) -> None:
        warehouse = FakeWarehouse()
        job = ExportSubmitter(warehouse, "logs").prepare(group)

        assert job.status is ExportStatus.PENDING
        assert job.attempts == 0
        assert warehouse.commands == []
        assert job.to_dict()["objects"] == 2
