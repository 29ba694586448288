"""Tests for the Kusto warehouse adapter and failure classification."""

from __future__ import annotations

import asyncio
from unittest.mock import Mock, patch

import pandas as pd
import pytest
import requests
from azure.kusto.data.exceptions import (
    KustoApiError,
    KustoNetworkError,
    KustoThrottlingError,
)

from querybench.lib.errors import ConfigurationError, TransientSubmissionError
from querybench.lib.warehouse import KustoWarehouse, is_transient_failure


def _kusto_api_error(permanent: bool) -> Mock:
    error = Mock(spec=KustoApiError)
    error.get_api_error.return_value.permanent = permanent
    return error


class TestIsTransientFailure:
    @pytest.mark.parametrize(
        "exc",
        [
            TransientSubmissionError("throttled"),
            requests.ConnectionError("reset"),
            requests.Timeout("slow"),
            ConnectionResetError("reset"),
            TimeoutError("slow"),
            KustoThrottlingError("throttled", None),
            KustoNetworkError("https://bench.kusto.windows.net"),
        ],
    )
    def test_transient(self, exc) -> None:
        assert is_transient_failure(exc)

    @pytest.mark.parametrize(
        "exc",
        [ValueError("bad"), ConfigurationError("bad"), KeyError("missing")],
    )
    def test_permanent(self, exc) -> None:
        assert not is_transient_failure(exc)

    def test_kusto_api_error_uses_permanence_flag(self) -> None:
        assert is_transient_failure(_kusto_api_error(permanent=False))
        assert not is_transient_failure(_kusto_api_error(permanent=True))


class TestKustoWarehouse:
    def test_command_uses_management_endpoint(self) -> None:
        client = Mock()
        warehouse = KustoWarehouse(client)

        asyncio.run(warehouse.execute_command("logs", ".drop external table T ifexists"))

        client.execute_mgmt.assert_called_once_with("logs", ".drop external table T ifexists")
        client.execute_query.assert_not_called()

    @patch("querybench.lib.warehouse.dataframe_from_result_table")
    def test_query_returns_primary_result(self, mock_to_frame) -> None:
        client = Mock()
        primary = Mock()
        client.execute_query.return_value.primary_results = [primary]
        mock_to_frame.return_value = pd.DataFrame({"Count": [3]})
        warehouse = KustoWarehouse(client)

        frame = asyncio.run(warehouse.execute_query("logs", "T | count"))

        client.execute_query.assert_called_once_with("logs", "T | count")
        mock_to_frame.assert_called_once_with(primary)
        assert frame["Count"].tolist() == [3]

    def test_command_failure_propagates(self) -> None:
        client = Mock()
        client.execute_mgmt.side_effect = TimeoutError("slow")
        warehouse = KustoWarehouse(client)

        with pytest.raises(TimeoutError):
            asyncio.run(warehouse.execute_command("logs", ".show tables"))

    @pytest.mark.parametrize(
        "cause",
        [
            KustoThrottlingError("throttled", None),
            KustoNetworkError("https://bench.kusto.windows.net"),
        ],
    )
    def test_unprocessed_command_raises_transient_error(self, cause) -> None:
        client = Mock()
        client.execute_mgmt.side_effect = cause
        warehouse = KustoWarehouse(client)

        with pytest.raises(TransientSubmissionError) as exc_info:
            asyncio.run(warehouse.execute_command("logs", ".show tables"))

        assert exc_info.value.__cause__ is cause
        assert exc_info.value.details["cause_type"] == type(cause).__name__
        assert is_transient_failure(exc_info.value)
