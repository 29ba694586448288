"""Structured exception hierarchy for querybench.

Errors are scoped to the smallest unit that can fail on its own: one
export group, one object scan, one query entry. Each carries structured
details for logging.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional

__all__ = [
    "QueryBenchError",
    "ConfigurationError",
    "DiscoveryError",
    "ExportError",
    "ScanError",
    "TransientSubmissionError",
    "UnsupportedQueryError",
]


class QueryBenchError(Exception):
    """Base exception for all querybench errors."""

    def __init__(
        self,
        message: str,
        *,
        details: Optional[Dict[str, Any]] = None,
        suggestion: Optional[str] = None,
    ) -> None:
        self.details = details or {}
        self.suggestion = suggestion

        parts = [message]
        if details:
            parts.append("\nDetails:")
            parts.extend(f"  {k}: {v}" for k, v in details.items())
        if suggestion:
            parts.append(f"\nSuggestion: {suggestion}")

        super().__init__("\n".join(parts) if len(parts) > 1 else message)
        self.message = message

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for structured logging."""
        return {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "details": self.details,
            "suggestion": self.suggestion,
        }


class ConfigurationError(QueryBenchError):
    """Invalid or incomplete configuration."""

    def __init__(
        self,
        message: str,
        *,
        field: Optional[str] = None,
        value: Any = None,
        **kwargs: Any,
    ) -> None:
        self.field = field
        self.value = value

        details = kwargs.pop("details", {})
        if field:
            details["field"] = field
        if value is not None:
            details["value"] = str(value)

        super().__init__(message, details=details, **kwargs)


class DiscoveryError(QueryBenchError):
    """Listing a source location failed (unreachable host or unauthorized).

    Fatal to the enclosing data-prep or query entry.
    """

    def __init__(
        self,
        message: str,
        *,
        location: Optional[str] = None,
        cause: Optional[BaseException] = None,
        **kwargs: Any,
    ) -> None:
        self.location = location
        self.cause = cause

        details = kwargs.pop("details", {})
        if location:
            details["location"] = location
        if cause is not None:
            details["cause"] = str(cause)
            details["cause_type"] = type(cause).__name__

        suggestion = kwargs.pop("suggestion", None)
        if not suggestion:
            suggestion = (
                "Check that the storage account is reachable and that the "
                "selected authentication mode has list permission on the container."
            )

        super().__init__(message, details=details, suggestion=suggestion, **kwargs)


class ExportError(QueryBenchError):
    """Permanent failure submitting one export group.

    Halts that group only; the remaining groups are still submitted.
    """

    def __init__(
        self,
        message: str,
        *,
        destination: Optional[str] = None,
        attempts: Optional[int] = None,
        cause: Optional[BaseException] = None,
        job: Any = None,
        **kwargs: Any,
    ) -> None:
        self.job = job
        self.destination = destination
        self.attempts = attempts
        self.cause = cause

        details = kwargs.pop("details", {})
        if destination:
            details["destination"] = destination
        if attempts is not None:
            details["attempts"] = attempts
        if cause is not None:
            details["cause"] = str(cause)
            details["cause_type"] = type(cause).__name__

        super().__init__(message, details=details, **kwargs)


class ScanError(QueryBenchError):
    """Malformed data reported while scanning one object.

    Never raised by the harness; instances are collected as diagnostics
    alongside the usable rows of a scan.
    """

    def __init__(
        self,
        description: str,
        *,
        object_name: Optional[str] = None,
        position: Optional[int] = None,
        name: Optional[str] = None,
    ) -> None:
        self.description = description
        self.object_name = object_name
        self.position = position
        self.name = name

        details: Dict[str, Any] = {}
        if object_name:
            details["object"] = object_name
        if position is not None:
            details["position"] = position
        if name:
            details["name"] = name

        super().__init__(description, details=details)


class UnsupportedQueryError(QueryBenchError):
    """Unrecognized query-type tag. Fatal to one query entry only."""

    def __init__(
        self,
        message: str,
        *,
        query_type: Optional[str] = None,
        supported: Optional[List[str]] = None,
        **kwargs: Any,
    ) -> None:
        self.query_type = query_type

        details = kwargs.pop("details", {})
        if query_type is not None:
            details["query_type"] = query_type
        if supported:
            details["supported"] = ", ".join(supported)

        super().__init__(message, details=details, **kwargs)


class TransientSubmissionError(QueryBenchError):
    """A control command failed in a way that a blind retry may fix.

    Drives the export retry loop and never reaches the caller.
    """
