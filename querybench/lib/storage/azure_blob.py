"""Azure Blob Storage object store.

Listing goes through ``ContainerClient.list_blobs`` (the SDK pages
transparently); scans go through blob query acceleration
(``BlobClient.query_blob``) with Parquet input and headerless CSV output.

The SDK clients are synchronous; every remote call is handed to the event
loop's default thread pool so callers can fan scans out with asyncio.
"""

from __future__ import annotations

import asyncio
import logging
import threading
from typing import Any, Dict, List, Optional

import tenacity
from azure.core.exceptions import (
    AzureError,
    ClientAuthenticationError,
    HttpResponseError,
    ResourceNotFoundError,
)
from azure.storage.blob import (
    BlobQueryError,
    BlobServiceClient,
    DelimitedTextDialect,
    QuickQueryDialect,
)

from querybench.lib.errors import DiscoveryError, ScanError
from querybench.lib.storage.base import ObjectStore, ScanResult, SourceObject
from querybench.lib.storage.location import BlobLocation

logger = logging.getLogger(__name__)

__all__ = ["AzureBlobStore", "OUTPUT_DIALECT"]

# Rows come back as plain CSV without a header line
OUTPUT_DIALECT = DelimitedTextDialect(
    delimiter=",",
    quotechar='"',
    lineterminator="\n",
    escapechar="",
    has_header=False,
)

LIST_ATTEMPTS = 3


def _is_retryable_listing_error(exc: BaseException) -> bool:
    if isinstance(exc, (ClientAuthenticationError, ResourceNotFoundError)):
        return False
    if isinstance(exc, HttpResponseError) and exc.status_code in (401, 403, 404):
        return False
    return isinstance(exc, AzureError)


def _decode_scan_output(
    payload: bytes, object_name: str, errors: List[ScanError]
) -> str:
    try:
        return payload.decode("utf-8")
    except UnicodeDecodeError as exc:
        logger.warning("Scan output of %s is not valid UTF-8: %s", object_name, exc)
        errors.append(
            ScanError(
                f"invalid UTF-8 in scan output: {exc.reason}",
                object_name=object_name,
                position=exc.start,
                name="DecodeError",
            )
        )
        return payload.decode("utf-8", errors="replace")


class AzureBlobStore(ObjectStore):
    """Object store backed by Azure Blob Storage.

    Args:
        credential: Token credential (see ``querybench.lib.auth``) or any
            credential accepted by ``BlobServiceClient``
        input_format: Query acceleration input dialect, Parquet by default
        client_options: Extra keyword arguments for ``BlobServiceClient``
    """

    def __init__(
        self,
        credential: Any,
        *,
        input_format: Any = QuickQueryDialect.Parquet,
        client_options: Optional[Dict[str, Any]] = None,
    ) -> None:
        self.credential = credential
        self.input_format = input_format
        self.client_options = client_options or {}
        self._clients: Dict[str, BlobServiceClient] = {}
        self._lock = threading.Lock()

    def _service_client(self, account_url: str) -> BlobServiceClient:
        with self._lock:
            client = self._clients.get(account_url)
            if client is None:
                logger.debug("Creating blob service client for %s", account_url)
                client = BlobServiceClient(
                    account_url=account_url,
                    credential=self.credential,
                    **self.client_options,
                )
                self._clients[account_url] = client
            return client

    def _list_blocking(self, location: BlobLocation) -> List[SourceObject]:
        container = self._service_client(location.account_url).get_container_client(
            location.container
        )

        # Whole path segments only: "2021" must not match "2021-archive/"
        name_prefix = f"{location.prefix}/" if location.prefix else None

        def _once() -> List[SourceObject]:
            return [
                SourceObject(
                    name=blob.name,
                    uri=location.object_uri(blob.name),
                    size=blob.size,
                )
                for blob in container.list_blobs(name_starts_with=name_prefix)
            ]

        retryer = tenacity.Retrying(
            stop=tenacity.stop_after_attempt(LIST_ATTEMPTS),
            wait=tenacity.wait_exponential(multiplier=0.5, max=8.0),
            retry=tenacity.retry_if_exception(_is_retryable_listing_error),
            before_sleep=lambda state: logger.warning(
                "Listing %s attempt %d/%d failed: %s",
                location,
                state.attempt_number,
                LIST_ATTEMPTS,
                state.outcome.exception() if state.outcome else None,
            ),
            reraise=True,
        )

        try:
            return retryer(_once)
        except AzureError as exc:
            logger.error("Azure list failed [%s]: %s", location, exc)
            raise DiscoveryError(
                f"Unable to list objects under {location}",
                location=str(location),
                cause=exc,
            ) from exc

    async def list_objects(self, location: BlobLocation) -> List[SourceObject]:
        return await asyncio.to_thread(self._list_blocking, location)

    def _scan_blocking(self, obj: SourceObject, query_text: str) -> ScanResult:
        location = BlobLocation.parse(obj.uri)
        blob = self._service_client(location.account_url).get_blob_client(
            location.container, obj.name
        )
        errors: List[ScanError] = []

        def _on_error(error: BlobQueryError) -> None:
            errors.append(
                ScanError(
                    error.description or "query error",
                    object_name=obj.name,
                    position=error.position,
                    name=error.error,
                )
            )

        reader = blob.query_blob(
            query_text,
            blob_format=self.input_format,
            output_format=OUTPUT_DIALECT,
            on_error=_on_error,
        )
        payload = reader.readall()
        if isinstance(payload, bytes):
            text = _decode_scan_output(payload, obj.name, errors)
        else:
            text = payload
        return ScanResult(text=text, errors=errors)

    async def scan_object(self, obj: SourceObject, query_text: str) -> ScanResult:
        return await asyncio.to_thread(self._scan_blocking, obj, query_text)

    def close(self) -> None:
        with self._lock:
            for client in self._clients.values():
                client.close()
            self._clients.clear()
