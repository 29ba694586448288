"""Parquet conversion and dual-query benchmarking for log data in blob storage.

Raw gzip-compressed CSV logs are converted to Parquet through warehouse
export commands; the same query is then answered twice, once by scanning
the Parquet objects with query acceleration and once through a warehouse
external table, and the two results and timings are compared.

Usage:
    python -m querybench bench.yaml
    python -m querybench bench.yaml --only queries
"""

__version__ = "1.0.0"

__all__ = ["__version__"]
