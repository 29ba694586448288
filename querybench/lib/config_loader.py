"""YAML configuration loader.

Example YAML:
    authentication_mode: az_cli
    cluster_uri: https://mycluster.westus.kusto.windows.net
    database: logs

    data_prep:
      - source: https://${STORAGE_ACCOUNT}.blob.core.windows.net/raw/2021
        destination: https://${STORAGE_ACCOUNT}.blob.core.windows.net/parquet/2021
        blob_size_target_mb: 256

    queries:
      - source: https://${STORAGE_ACCOUNT}.blob.core.windows.net/parquet/2021
        query_type: total_count
      - source: https://${STORAGE_ACCOUNT}.blob.core.windows.net/parquet/2021
        query_type: filter_count
        parameters:
          field: Level
          value: Warning

Usage:
    from querybench.lib.config_loader import load_config
    config = load_config("./bench.yaml")
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import yaml

from querybench.lib.auth import AuthenticationMode
from querybench.lib.env import expand_config
from querybench.lib.errors import ConfigurationError
from querybench.lib.harness import DEFAULT_EXTERNAL_TABLE

logger = logging.getLogger(__name__)

__all__ = [
    "DataPrepConfig",
    "QueryConfig",
    "RootConfig",
    "load_config",
    "parse_config",
]

MEGABYTE = 1024 * 1024


@dataclass
class DataPrepConfig:
    source: str
    destination: str
    blob_size_target_mb: Optional[int] = None

    @property
    def target_bytes(self) -> Optional[int]:
        if self.blob_size_target_mb is None:
            return None
        return self.blob_size_target_mb * MEGABYTE


@dataclass
class QueryConfig:
    source: str
    query_type: str
    parameters: Dict[str, Any] = field(default_factory=dict)


@dataclass
class RootConfig:
    authentication_mode: AuthenticationMode = AuthenticationMode.AZ_CLI
    cluster_uri: Optional[str] = None
    database: Optional[str] = None
    external_table: str = DEFAULT_EXTERNAL_TABLE
    max_parallel_exports: int = 1
    max_parallel_scans: Optional[int] = None
    data_prep: List[DataPrepConfig] = field(default_factory=list)
    queries: List[QueryConfig] = field(default_factory=list)

    @property
    def has_warehouse(self) -> bool:
        return bool(self.cluster_uri and self.database)


def _require_str(entry: Dict[str, Any], key: str, where: str) -> str:
    value = entry.get(key)
    if not isinstance(value, str) or not value.strip():
        raise ConfigurationError(
            f"{where}: '{key}' is required", field=f"{where}.{key}", value=value
        )
    return value.strip()


def _optional_positive_int(value: Any, field_name: str) -> Optional[int]:
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
        raise ConfigurationError(
            f"'{field_name}' must be a positive integer", field=field_name, value=value
        )
    return value


def _parse_data_prep(entries: Any) -> List[DataPrepConfig]:
    if entries is None:
        return []
    if not isinstance(entries, list):
        raise ConfigurationError("'data_prep' must be a list", field="data_prep")

    result = []
    for idx, entry in enumerate(entries):
        where = f"data_prep[{idx}]"
        if not isinstance(entry, dict):
            raise ConfigurationError(f"{where} must be a mapping", field=where)
        result.append(
            DataPrepConfig(
                source=_require_str(entry, "source", where),
                destination=_require_str(entry, "destination", where),
                blob_size_target_mb=_optional_positive_int(
                    entry.get("blob_size_target_mb"), f"{where}.blob_size_target_mb"
                ),
            )
        )
    return result


def _parse_queries(entries: Any) -> List[QueryConfig]:
    if entries is None:
        return []
    if not isinstance(entries, list):
        raise ConfigurationError("'queries' must be a list", field="queries")

    result = []
    for idx, entry in enumerate(entries):
        where = f"queries[{idx}]"
        if not isinstance(entry, dict):
            raise ConfigurationError(f"{where} must be a mapping", field=where)
        parameters = entry.get("parameters") or {}
        if not isinstance(parameters, dict):
            raise ConfigurationError(
                f"{where}.parameters must be a mapping", field=f"{where}.parameters"
            )
        # Tags are resolved when the entry runs so one bad tag only skips its entry
        result.append(
            QueryConfig(
                source=_require_str(entry, "source", where),
                query_type=_require_str(entry, "query_type", where),
                parameters=dict(parameters),
            )
        )
    return result


def parse_config(data: Dict[str, Any]) -> RootConfig:
    """Build a RootConfig from an already-loaded mapping."""
    if not isinstance(data, dict):
        raise ConfigurationError("Configuration root must be a mapping")

    data = expand_config(data)

    config = RootConfig(
        authentication_mode=AuthenticationMode.parse(
            data.get("authentication_mode", AuthenticationMode.AZ_CLI.value)
        ),
        cluster_uri=data.get("cluster_uri"),
        database=data.get("database"),
        external_table=data.get("external_table") or DEFAULT_EXTERNAL_TABLE,
        max_parallel_exports=_optional_positive_int(
            data.get("max_parallel_exports", 1), "max_parallel_exports"
        )
        or 1,
        max_parallel_scans=_optional_positive_int(
            data.get("max_parallel_scans"), "max_parallel_scans"
        ),
        data_prep=_parse_data_prep(data.get("data_prep")),
        queries=_parse_queries(data.get("queries")),
    )

    if (config.data_prep or config.queries) and not config.has_warehouse:
        logger.warning(
            "cluster_uri and database are not both set; data prep and queries will be skipped"
        )

    return config


def load_config(path: Union[str, Path]) -> RootConfig:
    """Load and validate a YAML configuration file."""
    path = Path(path)
    if not path.exists():
        raise ConfigurationError(
            f"Configuration file not found: {path}", field="config", value=str(path)
        )

    with path.open("r", encoding="utf-8") as handle:
        try:
            data = yaml.safe_load(handle) or {}
        except yaml.YAMLError as exc:
            raise ConfigurationError(
                f"Invalid YAML in {path}: {exc}", field="config", value=str(path)
            ) from exc

    logger.debug("Loaded configuration from %s", path)
    return parse_config(data)
