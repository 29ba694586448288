"""Object store abstraction.

Usage:
    from querybench.lib.storage import AzureBlobStore, BlobLocation

    store = AzureBlobStore(credential)
    objects = await store.list_objects(
        BlobLocation.parse("https://account.blob.core.windows.net/parquet/2021")
    )
"""

from querybench.lib.storage.azure_blob import AzureBlobStore
from querybench.lib.storage.base import ObjectStore, ScanResult, SourceObject
from querybench.lib.storage.location import BlobLocation

__all__ = [
    "AzureBlobStore",
    "BlobLocation",
    "ObjectStore",
    "ScanResult",
    "SourceObject",
]
