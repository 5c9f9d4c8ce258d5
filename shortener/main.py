"""FastAPI application entry point for the short-link service.

Application Lifecycle Diagram
============================
::
    ┌─────────────┐
    │  uvicorn    │
    │  startup    │
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ lifespan()  │
    │ init_db()   │
    │ services    │
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ Serve HTTP  │
    │ requests    │
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ lifespan()  │
    │ shutdown:   │
    │ close Redis │
    │ close_db()  │
    └─────────────┘

How to Use
===========
**Run with uvicorn**::
    uvicorn shortener.main:app --host 0.0.0.0 --port 8080

**Shorten and follow a link**::
    curl -X POST http://localhost:8080/api/v1/urls \
         -H "Content-Type: application/json" \
         -d '{"long_url": "example.com/docs"}'
    curl -i http://localhost:8080/aB3xY9

Key Behaviours
===============
- Tables are created on startup.
- ``/metrics`` is registered before the catch-all redirect route.
- Engine errors are rendered by ``shortener_error_handler``.
- The periodic sweep runs in ``shortener.worker``, not in the web process.
"""

__all__ = ["app"]

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from prometheus_fastapi_instrumentator import Instrumentator

from shortener.config import get_settings
from shortener.database import close_db, init_db
from shortener.dependencies import _service_manager
from shortener.exceptions import ShortenerError
from shortener.routes import admin_router, router, shortener_error_handler

settings = get_settings()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    # Startup
    await init_db()
    await _service_manager.initialize()
    yield
    # Shutdown
    await _service_manager.cleanup()
    await close_db()


app = FastAPI(
    title=settings.APP_NAME,
    version="1.0.0",
    description="Short link allocation and resolution API",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.add_exception_handler(ShortenerError, shortener_error_handler)

Instrumentator(
    should_group_status_codes=True,
    should_ignore_untemplated=False,
    should_respect_env_var=False,
).instrument(app).expose(app)

app.include_router(admin_router)
app.include_router(router)
