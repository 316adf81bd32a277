"""
PawMatch — FastAPI Application Entry Point

Mounts the matches API under ``/api/v1``.  Startup and the deep health
probe both check that the tables the match stores query are present, so a
half-migrated database shows up before the first feed request fails.
"""

from __future__ import annotations

import logging
import time
from contextlib import asynccontextmanager
from typing import AsyncIterator

import structlog
from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint

from app.api.router import router as api_router
from app.config import get_settings
from app.database import engine, missing_tables
from app.services.match_store import MATCH_STORE_TABLES

settings = get_settings()

structlog.configure(
    processors=[
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.format_exc_info,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.JSONRenderer(),
    ],
    wrapper_class=structlog.make_filtering_bound_logger(
        getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO)
    ),
    cache_logger_on_first_use=True,
)

logger = structlog.get_logger("pawmatch")


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    logger.info("startup_begin", environment=settings.ENVIRONMENT)

    missing = await missing_tables(MATCH_STORE_TABLES)
    if missing:
        logger.warning("match_store_tables_missing", tables=missing)
    else:
        logger.info("match_store_tables_present", count=len(MATCH_STORE_TABLES))

    yield

    await engine.dispose()
    logger.info("shutdown_complete")


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Bind method and path to every log line emitted while serving a
    request, then log the outcome."""

    async def dispatch(
        self,
        request: Request,
        call_next: RequestResponseEndpoint,
    ) -> Response:
        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(
            method=request.method,
            path=request.url.path,
        )
        start = time.perf_counter()
        try:
            response = await call_next(request)
        except Exception:
            logger.exception("request_failed", duration_ms=_elapsed_ms(start))
            raise

        logger.info(
            "request_handled",
            status=response.status_code,
            duration_ms=_elapsed_ms(start),
        )
        return response


def _elapsed_ms(start: float) -> float:
    return round((time.perf_counter() - start) * 1000, 2)


app = FastAPI(
    title="PawMatch",
    description="Dog companion matching: matches and conversations",
    version="1.0.0",
    lifespan=lifespan,
    docs_url=None if settings.is_production else "/docs",
    redoc_url=None,
)

app.add_middleware(RequestLoggingMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.allowed_origins_list,
    allow_credentials=True,
    allow_methods=["GET", "POST"],
    allow_headers=["*"],
)

app.include_router(api_router, prefix="/api/v1")


@app.get("/health", tags=["health"])
async def health_liveness() -> dict:
    return {"status": "healthy"}


@app.get("/health/deep", tags=["health"])
async def health_deep() -> dict:
    """Readiness: the database answers and holds every match-store table."""
    try:
        missing = await missing_tables(MATCH_STORE_TABLES)
    except Exception as exc:
        logger.error("health_db_failure", error=str(exc))
        return {"status": "degraded", "database": f"error: {exc}", "missing_tables": []}

    return {
        "status": "degraded" if missing else "healthy",
        "database": "connected",
        "missing_tables": missing,
    }
