"""Enumeration of the objects under a source location."""

from __future__ import annotations

import logging
from typing import List, Union

from querybench.lib.errors import DiscoveryError
from querybench.lib.storage.base import ObjectStore, SourceObject
from querybench.lib.storage.location import BlobLocation

logger = logging.getLogger(__name__)

__all__ = ["BlobEnumerator"]


class BlobEnumerator:
    """Lists every object at or below a source location.

    The listing is returned as one complete, order-stable list. Stores raise
    DiscoveryError for unreachable or unauthorized locations; socket-level
    failures that escape a store are converted here.
    """

    def __init__(self, store: ObjectStore) -> None:
        self.store = store

    async def enumerate(self, location: Union[str, BlobLocation]) -> List[SourceObject]:
        if isinstance(location, str):
            location = BlobLocation.parse(location)

        try:
            objects = await self.store.list_objects(location)
        except OSError as exc:
            raise DiscoveryError(
                f"Unable to list objects under {location}",
                location=str(location),
                cause=exc,
            ) from exc

        logger.debug("Listed %d objects under %s", len(objects), location)
        return list(objects)
