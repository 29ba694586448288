"""Parsing of blob storage location URIs."""

from __future__ import annotations

from dataclasses import dataclass
from urllib.parse import urlparse

from querybench.lib.errors import ConfigurationError

__all__ = ["BlobLocation"]


@dataclass(frozen=True)
class BlobLocation:
    """A storage container plus a sub-prefix within it.

    Accepted forms:
        https://account.blob.core.windows.net/container/some/prefix
        abfss://container@account.dfs.core.windows.net/some/prefix

    The abfss form is mapped onto the blob endpoint of the same account.
    """

    account_url: str
    container: str
    prefix: str = ""

    @classmethod
    def parse(cls, uri: str) -> "BlobLocation":
        uri = (uri or "").strip()
        parsed = urlparse(uri)

        if parsed.scheme in ("abfs", "abfss", "wasb", "wasbs"):
            if "@" not in parsed.netloc:
                raise ConfigurationError(
                    "Location must name the container as container@account",
                    field="location",
                    value=uri,
                )
            container, host = parsed.netloc.split("@", 1)
            account = host.split(".")[0]
            return cls(
                account_url=f"https://{account}.blob.core.windows.net",
                container=container,
                prefix=parsed.path.strip("/"),
            )

        if parsed.scheme not in ("http", "https") or not parsed.netloc:
            raise ConfigurationError(
                "Location must be an https:// or abfss:// URI",
                field="location",
                value=uri,
            )

        path_parts = parsed.path.strip("/").split("/", 1)
        container = path_parts[0]
        if not container:
            raise ConfigurationError(
                "Location must include a container name",
                field="location",
                value=uri,
            )
        prefix = path_parts[1] if len(path_parts) > 1 else ""

        return cls(
            account_url=f"{parsed.scheme}://{parsed.netloc}",
            container=container,
            prefix=prefix,
        )

    @property
    def container_url(self) -> str:
        return f"{self.account_url}/{self.container}"

    def object_uri(self, name: str) -> str:
        """Fully-qualified URI of an object in this location's container."""
        return f"{self.container_url}/{name.lstrip('/')}"

    def __str__(self) -> str:
        if self.prefix:
            return f"{self.container_url}/{self.prefix}"
        return self.container_url
