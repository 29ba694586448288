"""Credential selection for storage and warehouse clients.

Both clients authenticate as the same identity, chosen by a closed set of
authentication modes:

- ``az_cli``: the identity logged in with ``az login``
- ``browser``: interactive browser login, with a persistent token cache
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import Any

from azure.core.credentials import TokenCredential
from azure.identity import (
    AzureCliCredential,
    InteractiveBrowserCredential,
    TokenCachePersistenceOptions,
)
from azure.kusto.data import KustoConnectionStringBuilder

from querybench.lib.errors import ConfigurationError

logger = logging.getLogger(__name__)

__all__ = [
    "AuthenticationMode",
    "get_storage_credential",
    "get_kusto_connection_string",
]


class AuthenticationMode(str, Enum):
    AZ_CLI = "az_cli"
    BROWSER = "browser"

    @classmethod
    def parse(cls, value: Any) -> "AuthenticationMode":
        """Accept ``az_cli``, ``AzCli`` or ``azcli`` style spellings."""
        if isinstance(value, AuthenticationMode):
            return value
        normalized = str(value).strip().replace("_", "").replace("-", "").lower()
        for mode in cls:
            if mode.value.replace("_", "") == normalized:
                return mode
        raise ConfigurationError(
            f"Authentication mode not supported: '{value}'",
            field="authentication_mode",
            value=value,
            suggestion=f"Use one of: {', '.join(m.value for m in cls)}",
        )


def get_storage_credential(mode: AuthenticationMode) -> TokenCredential:
    if mode is AuthenticationMode.AZ_CLI:
        return AzureCliCredential()
    if mode is AuthenticationMode.BROWSER:
        return InteractiveBrowserCredential(
            cache_persistence_options=TokenCachePersistenceOptions()
        )
    raise ConfigurationError(
        f"Authentication mode not supported: '{mode}'", field="authentication_mode"
    )


def get_kusto_connection_string(
    cluster_uri: str, mode: AuthenticationMode
) -> KustoConnectionStringBuilder:
    if mode is AuthenticationMode.AZ_CLI:
        return KustoConnectionStringBuilder.with_az_cli_authentication(cluster_uri)
    if mode is AuthenticationMode.BROWSER:
        return KustoConnectionStringBuilder.with_interactive_login(cluster_uri)
    raise ConfigurationError(
        f"Authentication mode not supported: '{mode}'", field="authentication_mode"
    )
