"""Abstract object store interface.

Defines what the enumerator and the query harness need from a storage
tier: a complete listing under a location and a server-side scan of one
object.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import List, Optional

from querybench.lib.errors import ScanError
from querybench.lib.storage.location import BlobLocation

__all__ = ["ObjectStore", "ScanResult", "SourceObject"]


@dataclass(frozen=True)
class SourceObject:
    """One listed object.

    ``uri`` is the fully-qualified path (account, container and name);
    ``size`` is None when the listing did not report a content length.
    """

    name: str
    uri: str
    size: Optional[int] = None


@dataclass
class ScanResult:
    """Raw output of a server-side scan of one object.

    ``text`` holds the delimited rows (no header); ``errors`` holds what the
    service reported through its error channel while producing them.
    """

    text: str
    errors: List[ScanError] = field(default_factory=list)


class ObjectStore(ABC):
    """Storage tier client used by the core pipelines.

    Both operations are coroutines; implementations backed by blocking SDKs
    run the blocking call on the event loop's thread pool.
    """

    @abstractmethod
    async def list_objects(self, location: BlobLocation) -> List[SourceObject]:
        """Return every object at or below ``location``, in listing order.

        Pagination is resolved before returning.
        """

    @abstractmethod
    async def scan_object(self, obj: SourceObject, query_text: str) -> ScanResult:
        """Run ``query_text`` server-side against ``obj``."""
