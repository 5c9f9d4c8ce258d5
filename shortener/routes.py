"""FastAPI route definitions for the short-link REST API.

API Endpoint Overview
=====================
::
    GET  /health
        └─ HealthResponse (200)

    POST /api/v1/urls
        ├─ CreateUrlRequest (request body)
        └─ CreateUrlResponse (201) or 400/422/500/503

    GET  /api/v1/admin/statistics
    GET  /api/v1/admin/tasks/info
    POST /api/v1/admin/tasks/cleanup
    POST /api/v1/admin/tasks/statistics

    GET  /:short_code
        └─ 302 Redirect or 400/404

Error Mapping
=============
::
    ErrorKind.INVALID_INPUT              → 400
    ErrorKind.NOT_FOUND                  → 404
    ErrorKind.CODE_GENERATION_EXHAUSTED  → 500
    ErrorKind.BACKEND_FAILURE            → 503

Key Behaviours
===============
- Handlers only translate HTTP to engine calls; all short-link rules live in
  ``UrlMappingService``.
- ``ShortenerError`` is turned into an ``ErrorResponse`` body by
  ``shortener_error_handler``, registered on the app in ``shortener.main``.
- Overall health follows the database; the cache is reported but optional.
"""

import datetime

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse, RedirectResponse
from sqlalchemy import text

from shortener.dependencies import (
    RequestContext,
    get_maintenance_service,
    get_request_context,
    get_url_service,
)
from shortener.enums import ErrorKind, HealthStatus
from shortener.exceptions import ShortenerError
from shortener.maintenance import TASKS_INFO, MaintenanceService
from shortener.schemas import (
    AdminStatisticsResponse,
    AdminTaskResponse,
    CreateUrlRequest,
    CreateUrlResponse,
    ErrorResponse,
    HealthResponse,
)
from shortener.url_service import UrlMappingService

__all__ = ["admin_router", "router", "shortener_error_handler"]

router = APIRouter()
admin_router = APIRouter(prefix="/api/v1/admin", tags=["admin"])

_ERROR_RESPONSES = {
    ErrorKind.INVALID_INPUT: (400, "Invalid request", None),
    ErrorKind.NOT_FOUND: (404, "Short code not found", None),
    ErrorKind.CODE_GENERATION_EXHAUSTED: (
        500,
        "Unable to generate short code",
        "Unable to generate a unique short code after maximum attempts. Please try again.",
    ),
    ErrorKind.BACKEND_FAILURE: (
        503,
        "Service unavailable",
        "An unexpected error occurred. Please try again later.",
    ),
}


def _now() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


async def shortener_error_handler(request: Request, exc: ShortenerError) -> JSONResponse:
    status_code, error, public_message = _ERROR_RESPONSES[exc.kind]
    body = ErrorResponse(
        status=status_code,
        error=error,
        message=public_message or exc.message,
        timestamp=_now(),
    )
    return JSONResponse(status_code=status_code, content=body.model_dump(mode="json"))


@router.get("/health", response_model=HealthResponse, tags=["health"])
async def health_check(ctx: RequestContext = Depends(get_request_context)) -> HealthResponse:
    db_status = HealthStatus.HEALTHY
    try:
        await ctx.database.execute(text("SELECT 1"))
    except Exception as e:
        ctx.logger.error(f"Database health check failed: {e}")
        db_status = HealthStatus.UNHEALTHY

    cache_status = HealthStatus.from_bool(await ctx.cache.is_available())

    ctx.logger.debug(f"Health check completed: database={db_status.value}, cache={cache_status.value}")
    return HealthResponse(status=db_status, database=db_status, cache=cache_status)


@router.post("/api/v1/urls", response_model=CreateUrlResponse, status_code=201, tags=["urls"])
async def create_short_url(
    payload: CreateUrlRequest,
    ctx: RequestContext = Depends(get_request_context),
    service: UrlMappingService = Depends(get_url_service),
) -> CreateUrlResponse:
    ctx.audit_logger.info(f"URL_CREATION_REQUEST - IP: {ctx.client_ip}, URL: {payload.long_url}")

    mapping = await service.create_short_url(payload.long_url)
    short_url = f"{ctx.settings.BASE_URL}/{mapping.short_code}"

    ctx.audit_logger.info(
        f"URL_CREATION_SUCCESS - IP: {ctx.client_ip}, URL: {payload.long_url}, "
        f"ShortCode: {mapping.short_code}, ShortUrl: {short_url}"
    )
    return CreateUrlResponse(
        id=mapping.id,
        long_url=mapping.long_url,
        short_code=mapping.short_code,
        short_url=short_url,
        created_at=mapping.created_at,
    )


@admin_router.get("/statistics", response_model=AdminStatisticsResponse)
async def get_statistics(
    ctx: RequestContext = Depends(get_request_context),
    maintenance: MaintenanceService = Depends(get_maintenance_service),
) -> AdminStatisticsResponse:
    ctx.audit_logger.info("ADMIN_STATS_REQUEST - Endpoint: /admin/statistics")
    statistics = await maintenance.get_current_statistics()
    return AdminStatisticsResponse(statistics=statistics, timestamp=_now())


@admin_router.post("/tasks/statistics", response_model=AdminTaskResponse)
async def trigger_statistics(
    ctx: RequestContext = Depends(get_request_context),
    maintenance: MaintenanceService = Depends(get_maintenance_service),
) -> AdminTaskResponse:
    ctx.audit_logger.info("ADMIN_MANUAL_STATS - Triggered by admin endpoint")
    statistics = await maintenance.trigger_statistics_collection()
    return AdminTaskResponse(
        message="Statistics collection triggered successfully",
        result=statistics.summary() if statistics else None,
        timestamp=_now(),
    )


@admin_router.post("/tasks/cleanup", response_model=AdminTaskResponse)
async def trigger_cleanup(
    ctx: RequestContext = Depends(get_request_context),
    maintenance: MaintenanceService = Depends(get_maintenance_service),
) -> AdminTaskResponse:
    ctx.audit_logger.info("ADMIN_MANUAL_CLEANUP - Triggered by admin endpoint")
    deleted_count = await maintenance.trigger_cleanup()
    return AdminTaskResponse(
        message="Cleanup operation triggered successfully",
        result={"deleted_count": deleted_count},
        timestamp=_now(),
    )


@admin_router.get("/tasks/info")
async def get_tasks_info(ctx: RequestContext = Depends(get_request_context)) -> dict:
    tasks = {
        key: {**info, "interval_seconds": getattr(ctx.settings, info["setting"])}
        for key, info in TASKS_INFO.items()
    }
    return {"status": "success", "scheduledTasks": tasks, "timestamp": _now().isoformat()}


@router.get("/{short_code}", tags=["redirect"])
async def redirect_to_long_url(
    short_code: str,
    ctx: RequestContext = Depends(get_request_context),
    service: UrlMappingService = Depends(get_url_service),
) -> RedirectResponse:
    ctx.audit_logger.info(f"URL_REDIRECT_REQUEST - IP: {ctx.client_ip}, ShortCode: {short_code}")

    long_url = await service.resolve(short_code)

    ctx.logger.info(f"Redirecting {short_code} to {long_url} in {ctx.get_duration():.1f}ms")
    return RedirectResponse(url=long_url, status_code=302)
