# ruff: noqa: I001

import logging
import os

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from marketplace_analytics.api.router import api_router
from marketplace_analytics.config import settings
from marketplace_analytics.core.observability import (
    analytics_retrieval_exception_handler,
    global_exception_handler,
    request_logging_middleware,
    unknown_period_exception_handler,
    uptime_seconds,
    utc_now_iso,
)
from marketplace_analytics.database import POOL_CONFIG, engine
from marketplace_analytics.services.analytics_periods import UnknownPeriodError
from marketplace_analytics.services.analytics_store import AnalyticsRetrievalError

api_prefix = settings.api_prefix.rstrip("/")

logger = logging.getLogger("marketplace")
logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s %(message)s")

app = FastAPI(
    title=settings.app_name,
    docs_url="/docs" if settings.enable_docs else None,
    redoc_url="/redoc" if settings.enable_docs else None,
    openapi_url=(f"{api_prefix}/openapi.json" if api_prefix else "/openapi.json")
    if settings.enable_docs
    else None,
)

# Expose logger and CORS origins for middleware/handlers without circular imports.
app.state.logger = logger
app.state.settings_cors_origins = list(settings.cors_origins or [])

# AnalyticsTimeoutError subclasses AnalyticsRetrievalError; one handler maps both.
app.add_exception_handler(AnalyticsRetrievalError, analytics_retrieval_exception_handler)
app.add_exception_handler(UnknownPeriodError, unknown_period_exception_handler)
app.add_exception_handler(Exception, global_exception_handler)

# Request-level logging + request correlation id.
app.middleware("http")(request_logging_middleware)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["GET"],
    allow_headers=["*"],
)

app.include_router(api_router, prefix=api_prefix)


@app.on_event("startup")
def _log_runtime_config():
    try:
        pool_status = engine.pool.status()
    except Exception:
        pool_status = None

    logger.info(
        "runtime_config",
        extra={
            "pid": os.getpid(),
            "environment": settings.environment,
            "web_concurrency": os.getenv("WEB_CONCURRENCY"),
            "db_pool": POOL_CONFIG,
            "db_pool_status": pool_status,
            "strict_periods": settings.analytics_strict_periods,
            "overview_timeout_s": settings.analytics_overview_timeout_seconds,
        },
    )


@app.get("/", tags=["meta"])
def root():
    docs_path = (
        (f"{api_prefix}/openapi.json" if api_prefix else "/openapi.json")
        if settings.enable_docs
        else None
    )
    return {"message": settings.app_name, "docs": docs_path}


@app.get("/health", tags=["meta"])
@app.get("/healthz", tags=["meta"])
def healthcheck():
    """Liveness probe. Keep payload stable for monitoring systems."""

    return {
        "status": "ok",
        "service": settings.app_name,
        "environment": settings.environment,
        "time": utc_now_iso(),
        "uptime_seconds": round(uptime_seconds(), 2),
        "version": settings.build_version,
    }
