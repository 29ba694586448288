"""CLI entry point for benchmark runs.

Usage:
    python -m querybench bench.yaml
    python -m querybench bench.yaml --only data-prep
    python -m querybench bench.yaml --only queries --output-json results.json

Exit codes:
    0  every entry ran
    1  at least one entry (or one export group) failed
    2  the configuration could not be loaded
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import List, Optional

from azure.kusto.data import KustoClient

from querybench import __version__
from querybench.lib.auth import get_kusto_connection_string, get_storage_credential
from querybench.lib.config_loader import RootConfig, load_config
from querybench.lib.env import load_env_file
from querybench.lib.errors import ConfigurationError
from querybench.lib.logging import setup_logging
from querybench.lib.runner import RunReport, run_config
from querybench.lib.storage.azure_blob import AzureBlobStore
from querybench.lib.warehouse import KustoWarehouse

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_CONFIG = 2


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="querybench",
        description="Convert raw log blobs to Parquet and compare storage-side scans with warehouse queries",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
    # Run data prep, then every query comparison
    querybench bench.yaml

    # Only convert raw blobs to Parquet
    querybench bench.yaml --only data-prep

    # Only run comparisons and keep the results
    querybench bench.yaml --only queries --output-json results.json
        """,
    )
    parser.add_argument("config", help="Path to the YAML configuration file")
    parser.add_argument(
        "--only",
        choices=["data-prep", "queries"],
        help="Run only the data-prep entries or only the query entries",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Enable verbose logging",
    )
    parser.add_argument(
        "--json-log",
        action="store_true",
        help="Output logs in JSON format (for log aggregation systems)",
    )
    parser.add_argument(
        "--log-file",
        help="Write logs to a file in addition to console",
    )
    parser.add_argument(
        "--output-json",
        help="Write the run report (exports and comparison summaries) to this file",
    )
    parser.add_argument(
        "--env-file",
        help="Load environment variables from this .env file before reading the config",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    return parser


async def _execute(config: RootConfig, only: Optional[str]) -> RunReport:
    if not config.has_warehouse:
        logger.info("No warehouse configured (cluster_uri/database); skipping run")
        return RunReport(skipped=True)

    credential = get_storage_credential(config.authentication_mode)
    store = AzureBlobStore(credential)
    kcsb = get_kusto_connection_string(config.cluster_uri or "", config.authentication_mode)
    warehouse = KustoWarehouse(KustoClient(kcsb))
    try:
        return await run_config(config, store, warehouse, only=only)
    finally:
        store.close()
        warehouse.close()


def write_report(report: RunReport, path: str) -> None:
    output = Path(path)
    output.parent.mkdir(parents=True, exist_ok=True)
    output.write_text(json.dumps(report.to_dict(), indent=2, default=str), encoding="utf-8")
    logger.info("Wrote run report to %s", output)


def main(argv: Optional[List[str]] = None) -> None:
    """Main entry point for the CLI."""
    args = build_parser().parse_args(argv)

    setup_logging(
        verbose=args.verbose,
        json_format=args.json_log,
        log_file=args.log_file,
    )

    if args.env_file:
        if not load_env_file(args.env_file, override=False):
            logger.warning("No variables loaded from %s", args.env_file)
    else:
        load_env_file()

    try:
        config = load_config(args.config)
    except ConfigurationError as e:
        logger.error("Invalid configuration: %s", e)
        sys.exit(EXIT_CONFIG)

    try:
        report = asyncio.run(_execute(config, args.only))
    except ConfigurationError as e:
        logger.error("Invalid configuration: %s", e)
        sys.exit(EXIT_CONFIG)
    except KeyboardInterrupt:
        print("\nInterrupted by user")
        sys.exit(130)

    if args.output_json:
        write_report(report, args.output_json)

    if not report.ok:
        logger.error("Run finished with %d failed entries", _failed_count(report))
        sys.exit(EXIT_FAILED)
    sys.exit(EXIT_OK)


def _failed_count(report: RunReport) -> int:
    return len(report.failures) + sum(1 for s in report.data_prep if not s.ok)


if __name__ == "__main__":
    main()
