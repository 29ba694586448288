"""Querybench library modules.

Data prep (enumeration, partitioning, export submission), the query shapes
and the dual-query harness, plus configuration, credentials and logging.
"""

from querybench.lib.config_loader import DataPrepConfig, QueryConfig, RootConfig, load_config
from querybench.lib.discovery import BlobEnumerator
from querybench.lib.env import expand_config, load_env_file
from querybench.lib.errors import (
    ConfigurationError,
    DiscoveryError,
    ExportError,
    QueryBenchError,
    ScanError,
    TransientSubmissionError,
    UnsupportedQueryError,
)
from querybench.lib.export import ExportJob, ExportStatus, ExportSubmitter
from querybench.lib.harness import DualQueryHarness, QueryComparison
from querybench.lib.partition import BatchGroup, partition
from querybench.lib.queries import QueryShape, QueryType, build_query
from querybench.lib.runner import RunReport, run_config, run_data_prep, run_query_comparison

__all__ = [
    # Configuration
    "DataPrepConfig",
    "QueryConfig",
    "RootConfig",
    "load_config",
    "expand_config",
    "load_env_file",
    # Errors
    "ConfigurationError",
    "DiscoveryError",
    "ExportError",
    "QueryBenchError",
    "ScanError",
    "TransientSubmissionError",
    "UnsupportedQueryError",
    # Data prep
    "BatchGroup",
    "BlobEnumerator",
    "ExportJob",
    "ExportStatus",
    "ExportSubmitter",
    "partition",
    "run_data_prep",
    # Queries
    "DualQueryHarness",
    "QueryComparison",
    "QueryShape",
    "QueryType",
    "build_query",
    "run_query_comparison",
    # Run loop
    "RunReport",
    "run_config",
]
