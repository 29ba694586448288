"""Pytest configuration and fixtures."""

from __future__ import annotations

import asyncio
import logging
from typing import Dict, Iterable, List, Optional, Sequence, Tuple, Union

import pandas as pd
import pytest
import tenacity

from querybench.lib.storage.base import ObjectStore, ScanResult, SourceObject
from querybench.lib.storage.location import BlobLocation
from querybench.lib.warehouse import Warehouse

ACCOUNT = "https://logsacct.blob.core.windows.net"
RAW = f"{ACCOUNT}/raw/2021"
PARQUET = f"{ACCOUNT}/parquet/2021"


def make_objects(
    location: str, entries: Iterable[Tuple[str, Optional[int]]]
) -> List[SourceObject]:
    """Build listed objects under ``location`` from (relative name, size) pairs."""
    parsed = BlobLocation.parse(location)
    objects = []
    for name, size in entries:
        full_name = f"{parsed.prefix}/{name}" if parsed.prefix else name
        objects.append(
            SourceObject(name=full_name, uri=parsed.object_uri(full_name), size=size)
        )
    return objects


class FakeObjectStore(ObjectStore):
    """In-memory object store.

    ``listings`` maps a location string to its objects; ``outputs`` maps an
    object name to the scan output (text, ScanResult, or an exception to raise).
    """

    def __init__(
        self,
        listings: Optional[Dict[str, Sequence[SourceObject]]] = None,
        outputs: Optional[Dict[str, Union[str, ScanResult, BaseException]]] = None,
        list_error: Optional[BaseException] = None,
    ) -> None:
        self.listings = {k.rstrip("/"): list(v) for k, v in (listings or {}).items()}
        self.outputs = dict(outputs or {})
        self.list_error = list_error
        self.listed: List[str] = []
        self.scanned: List[str] = []
        self.scan_queries: List[str] = []
        self.in_flight = 0
        self.max_in_flight = 0

    async def list_objects(self, location: BlobLocation) -> List[SourceObject]:
        self.listed.append(str(location))
        if self.list_error is not None:
            raise self.list_error
        return list(self.listings.get(str(location), []))

    async def scan_object(self, obj: SourceObject, query_text: str) -> ScanResult:
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            await asyncio.sleep(0)
            self.scanned.append(obj.name)
            self.scan_queries.append(query_text)
            output = self.outputs.get(obj.name, "")
            if isinstance(output, BaseException):
                raise output
            if isinstance(output, ScanResult):
                return output
            return ScanResult(text=output)
        finally:
            self.in_flight -= 1


class FakeWarehouse(Warehouse):
    """Records every command and query.

    ``command_failures`` are raised by successive ``execute_command`` calls
    (None entries succeed); ``failing_destinations`` maps a destination to
    the exception raised for every command that writes to it.
    """

    def __init__(
        self,
        table: Optional[pd.DataFrame] = None,
        command_failures: Optional[List[Optional[BaseException]]] = None,
        failing_destinations: Optional[Dict[str, BaseException]] = None,
    ) -> None:
        self.table = table if table is not None else pd.DataFrame()
        self.command_failures = list(command_failures or [])
        self.failing_destinations = dict(failing_destinations or {})
        self.commands: List[Tuple[str, str]] = []
        self.queries: List[Tuple[str, str]] = []

    async def execute_command(self, database: str, command_text: str) -> None:
        self.commands.append((database, command_text))
        for destination, exc in self.failing_destinations.items():
            if f"h@'{destination};impersonate'\n)" in command_text:
                raise exc
        if self.command_failures:
            failure = self.command_failures.pop(0)
            if failure is not None:
                raise failure

    async def execute_query(self, database: str, query_text: str) -> pd.DataFrame:
        self.queries.append((database, query_text))
        return self.table


@pytest.fixture
def no_wait():
    return tenacity.wait_none()


@pytest.fixture
def restore_logging():
    """Put the root logger back the way pytest configured it."""
    root = logging.getLogger()
    handlers = list(root.handlers)
    level = root.level
    quieted = {name: logging.getLogger(name).level for name in ("azure", "urllib3")}
    yield root
    for handler in list(root.handlers):
        if handler not in handlers:
            handler.close()
        root.removeHandler(handler)
    for handler in handlers:
        root.addHandler(handler)
    root.setLevel(level)
    for name, value in quieted.items():
        logging.getLogger(name).setLevel(value)
