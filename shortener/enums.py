"""Shared enums for the short-link service.

This module defines all status and state enums used across the codebase.
Using enums instead of string literals provides type safety and prevents typos.
"""

from enum import StrEnum

__all__ = ["CacheStatus", "ErrorKind", "HealthStatus", "RequestStatus"]


class HealthStatus(StrEnum):
    """Health check status values."""

    HEALTHY = "healthy"
    UNHEALTHY = "unhealthy"

    @classmethod
    def from_bool(cls, ok: bool) -> "HealthStatus":
        return cls.HEALTHY if ok else cls.UNHEALTHY


class RequestStatus(StrEnum):
    """Request status values for metrics and logging."""

    SUCCESS = "success"
    DEDUPLICATED = "deduplicated"
    VALIDATION_ERROR = "validation_error"
    NOT_FOUND = "not_found"
    EXHAUSTED = "exhausted"
    ERROR = "error"


class CacheStatus(StrEnum):
    """Cache status values for metrics."""

    HIT = "true"
    MISS = "false"


class ErrorKind(StrEnum):
    """Failure kinds surfaced by the resolution engine.

    Each value maps to one distinct external response; callers branch on the
    kind instead of on exception classes or message text.
    """

    INVALID_INPUT = "invalid_input"
    NOT_FOUND = "not_found"
    CODE_GENERATION_EXHAUSTED = "code_generation_exhausted"
    BACKEND_FAILURE = "backend_failure"
