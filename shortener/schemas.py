"""Pydantic schemas for request/response validation in the short-link API.

Schema Hierarchy
=================
::
    CreateUrlRequest (Input)
    └─ long_url: str (non-blank, ≤ MAX_URL_LENGTH, valid once normalized)

    CreateUrlResponse (Output)
    ├─ id: int
    ├─ long_url: str
    ├─ short_code: str
    ├─ short_url: str (computed)
    └─ created_at: datetime

    HealthResponse (Output)
    ├─ status / database / cache: HealthStatus

    ErrorResponse (Output)
    ├─ status: int
    ├─ error: str
    ├─ message: str
    └─ timestamp: datetime

    AdminTaskResponse / AdminStatisticsResponse (Output)

Key Behaviours
===============
- Length and URL syntax are checked on the same normalized form the engine
  stores, so ``example.com/x`` and ``http://localhost:8080/x`` are accepted.
- The engine re-validates blank and length rules; the schema only rejects
  early with a 422.
"""

import datetime
from typing import Any, Optional

import validators
from pydantic import BaseModel, field_validator

from shortener.config import get_settings
from shortener.enums import HealthStatus
from shortener.url_service import normalize_url

__all__ = [
    "AdminStatisticsResponse",
    "AdminTaskResponse",
    "CreateUrlRequest",
    "CreateUrlResponse",
    "ErrorResponse",
    "HealthResponse",
]

settings = get_settings()


class CreateUrlRequest(BaseModel):
    long_url: str

    @field_validator("long_url")
    @classmethod
    def validate_long_url(cls, v: str) -> str:
        if not v or not v.strip():
            raise ValueError("Long URL cannot be blank")
        normalized = normalize_url(v)
        if len(normalized) > settings.MAX_URL_LENGTH:
            raise ValueError(f"Long URL cannot exceed {settings.MAX_URL_LENGTH} characters")
        # simple_host admits single-label hosts such as localhost or intranet names.
        if not validators.url(normalized, simple_host=True):
            raise ValueError("Long URL must be a valid URL")
        return v


class CreateUrlResponse(BaseModel):
    id: int
    long_url: str
    short_code: str
    short_url: str
    created_at: datetime.datetime

    model_config = {"from_attributes": True}


class HealthResponse(BaseModel):
    status: HealthStatus
    database: HealthStatus
    cache: HealthStatus


class ErrorResponse(BaseModel):
    status: int
    error: str
    message: str
    timestamp: datetime.datetime


class AdminTaskResponse(BaseModel):
    status: str = "success"
    message: str
    result: Optional[Any] = None
    timestamp: datetime.datetime


class AdminStatisticsResponse(BaseModel):
    status: str = "success"
    statistics: str
    timestamp: datetime.datetime
