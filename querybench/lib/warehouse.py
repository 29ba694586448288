"""Warehouse client: control commands and queries against Azure Data Explorer.

``Warehouse`` is the interface the export submitter and the query harness
depend on. ``KustoWarehouse`` implements it with azure-kusto-data; the
Kusto client is synchronous, so each call runs on the event loop's thread
pool.
"""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod

import pandas as pd
import requests
from azure.kusto.data import KustoClient
from azure.kusto.data.exceptions import (
    KustoApiError,
    KustoNetworkError,
    KustoThrottlingError,
)
from azure.kusto.data.helpers import dataframe_from_result_table

from querybench.lib.errors import TransientSubmissionError

logger = logging.getLogger(__name__)

__all__ = ["Warehouse", "KustoWarehouse", "is_transient_failure"]


def is_transient_failure(exc: BaseException) -> bool:
    """Classify a failed command as transient (retry) or permanent.

    Kusto API errors carry their own permanence flag. Throttling and
    network-level failures are transient. Anything else is permanent.
    """
    if isinstance(exc, TransientSubmissionError):
        return True
    if isinstance(exc, (KustoThrottlingError, KustoNetworkError)):
        return True
    if isinstance(exc, KustoApiError):
        return not exc.get_api_error().permanent
    if isinstance(exc, (requests.ConnectionError, requests.Timeout)):
        return True
    return isinstance(exc, (ConnectionError, TimeoutError))


class Warehouse(ABC):
    """Bulk command executor and query endpoint of the warehouse."""

    @abstractmethod
    async def execute_command(self, database: str, command_text: str) -> None:
        """Run a control command. Raises on failure."""

    @abstractmethod
    async def execute_query(self, database: str, query_text: str) -> pd.DataFrame:
        """Run a query and return its primary result as a table."""


class KustoWarehouse(Warehouse):
    """Warehouse backed by an Azure Data Explorer cluster."""

    def __init__(self, client: KustoClient) -> None:
        self.client = client

    def _command_blocking(self, database: str, command_text: str) -> None:
        logger.debug("Executing control command on %s: %s", database, command_text)
        try:
            self.client.execute_mgmt(database, command_text)
        except (KustoThrottlingError, KustoNetworkError) as exc:
            raise TransientSubmissionError(
                f"Control command on {database} was not processed: {exc}",
                details={"cause_type": type(exc).__name__},
            ) from exc

    async def execute_command(self, database: str, command_text: str) -> None:
        await asyncio.to_thread(self._command_blocking, database, command_text)

    def _query_blocking(self, database: str, query_text: str) -> pd.DataFrame:
        logger.debug("Executing query on %s: %s", database, query_text)
        response = self.client.execute_query(database, query_text)
        return dataframe_from_result_table(response.primary_results[0])

    async def execute_query(self, database: str, query_text: str) -> pd.DataFrame:
        return await asyncio.to_thread(self._query_blocking, database, query_text)

    def close(self) -> None:
        self.client.close()
