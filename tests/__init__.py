"""Querybench test suite."""
