from __future__ import annotations

import asyncio
import logging
import os
import re
import time
import uuid
from collections import defaultdict, deque
from datetime import datetime, timezone
from threading import Lock
from typing import Callable, Deque

from fastapi import Request
from fastapi.responses import JSONResponse
from starlette.responses import Response

from marketplace_analytics.services.analytics_periods import UnknownPeriodError, allowed_period_tokens
from marketplace_analytics.services.analytics_store import AnalyticsRetrievalError, AnalyticsTimeoutError

_APP_START_MONOTONIC = time.monotonic()

_LATENCY_WINDOW = int(os.getenv("LATENCY_METRICS_WINDOW", "200"))
_LATENCY_LOG_EVERY = int(os.getenv("LATENCY_METRICS_LOG_EVERY", "50"))
_LATENCY_LOCK = Lock()
_LATENCY_BUCKETS: dict[str, Deque[float]] = defaultdict(lambda: deque(maxlen=_LATENCY_WINDOW))

# Each overview issues a dozen store reads; cap how many run at once per worker.
_OVERVIEW_CONCURRENCY_LIMIT = int(os.getenv("OVERVIEW_CONCURRENCY_LIMIT", "0"))
_OVERVIEW_QUEUE_TIMEOUT_MS = int(os.getenv("OVERVIEW_QUEUE_TIMEOUT_MS", "200"))
_QUEUE_WAIT_LOG_MS = int(os.getenv("CONCURRENCY_QUEUE_LOG_MS", "50"))

_SLOW_REQUEST_MS = int(os.getenv("SLOW_REQUEST_MS", "2000"))

_OVERVIEW_SEMAPHORE: asyncio.Semaphore | None = None

_CRITICAL_ENDPOINTS: list[tuple[str, re.Pattern[str], str]] = [
    ("GET", re.compile(r"/analytics/buyer/[^/]+/(overview|summary)$"), "analytics.buyer.overview"),
    ("GET", re.compile(r"/analytics/seller/[^/]+/(overview|summary)$"), "analytics.seller.overview"),
    ("GET", re.compile(r"/analytics/buyer/[^/]+/timeline$"), "analytics.buyer.timeline"),
    ("GET", re.compile(r"/analytics/seller/[^/]+/lifecycle$"), "analytics.seller.lifecycle"),
]

_LIVENESS_PATHS = {"/health", "/healthz"}


def _critical_label_for(method: str, path: str) -> str | None:
    for m, pattern, label in _CRITICAL_ENDPOINTS:
        if method == m and pattern.search(path):
            return label
    return None


def _pool_status() -> str | None:
    try:
        from marketplace_analytics.database import engine

        return engine.pool.status()
    except Exception:
        return None


def _overview_semaphore() -> asyncio.Semaphore | None:
    global _OVERVIEW_SEMAPHORE
    if _OVERVIEW_CONCURRENCY_LIMIT <= 0:
        return None
    if _OVERVIEW_SEMAPHORE is None:
        _OVERVIEW_SEMAPHORE = asyncio.Semaphore(_OVERVIEW_CONCURRENCY_LIMIT)
    return _OVERVIEW_SEMAPHORE


def _percentile(values: list[float], pct: float) -> float:
    if not values:
        return 0.0
    s = sorted(values)
    k = int(round((pct / 100.0) * (len(s) - 1)))
    k = max(0, min(k, len(s) - 1))
    return float(s[k])


def _record_latency(label: str | None, duration_ms: float, logger: logging.Logger | None = None) -> None:
    if not label:
        return
    with _LATENCY_LOCK:
        bucket = _LATENCY_BUCKETS[label]
        bucket.append(float(duration_ms))
        if len(bucket) < _LATENCY_LOG_EVERY:
            return
        if len(bucket) % _LATENCY_LOG_EVERY != 0:
            return
        values = list(bucket)
    if logger:
        logger.info(
            "http_latency",
            extra={
                "endpoint": label,
                "p50_ms": round(_percentile(values, 50), 2),
                "p95_ms": round(_percentile(values, 95), 2),
                "p99_ms": round(_percentile(values, 99), 2),
                "window": len(values),
            },
        )


def uptime_seconds() -> float:
    return max(0.0, time.monotonic() - _APP_START_MONOTONIC)


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).replace(tzinfo=None).isoformat(timespec="seconds") + "Z"


def _request_id(request: Request) -> str:
    return request.headers.get("x-request-id") or str(uuid.uuid4())


def _app_logger(request: Request) -> logging.Logger:
    return getattr(request.app.state, "logger", None) or logging.getLogger("marketplace")


async def analytics_retrieval_exception_handler(request: Request, exc: AnalyticsRetrievalError) -> JSONResponse:
    """Store failures surface as a generic 503; the cause was logged at the store."""
    request_id = _request_id(request)
    timed_out = isinstance(exc, AnalyticsTimeoutError)
    _app_logger(request).warning(
        "analytics_request_failed",
        extra={
            "request_id": request_id,
            "path": request.url.path,
            "entity": exc.entity,
            "operation": exc.operation,
            "timed_out": timed_out,
        },
    )
    return JSONResponse(
        status_code=504 if timed_out else 503,
        content={
            "detail": "Failed to fetch analytics",
            "request_id": request_id,
            "code": "analytics_timeout" if timed_out else "analytics_unavailable",
        },
        headers={"X-Request-ID": request_id},
    )


async def unknown_period_exception_handler(request: Request, exc: UnknownPeriodError) -> JSONResponse:
    request_id = _request_id(request)
    return JSONResponse(
        status_code=422,
        content={
            "detail": str(exc),
            "request_id": request_id,
            "code": "invalid_period",
            "allowed": allowed_period_tokens(),
        },
        headers={"X-Request-ID": request_id},
    )


async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """
    Global exception handler that returns a structured error response.

    Unhandled exceptions are logged with their traceback; the client only sees
    a generic message and the request id.
    """
    request_id = _request_id(request)
    extra = {
        "request_id": request_id,
        "method": request.method,
        "path": request.url.path,
        "exception_type": type(exc).__name__,
    }
    _app_logger(request).exception("unhandled_exception", extra=extra)

    headers = {"X-Request-ID": request_id}

    # Attach CORS headers when the request Origin is allowed, otherwise browsers
    # report real 500s as opaque CORS errors.
    origin = request.headers.get("origin")
    if origin:
        allowed = set(getattr(request.app.state, "settings_cors_origins", None) or [])
        if origin in allowed or "*" in allowed:
            headers.update(
                {
                    "Access-Control-Allow-Origin": origin,
                    "Access-Control-Allow-Credentials": "true",
                    "Vary": "Origin",
                }
            )

    return JSONResponse(
        status_code=500,
        content={
            "detail": "Internal server error. Please try again later.",
            "request_id": request_id,
            "code": "INTERNAL_SERVER_ERROR",
        },
        headers=headers,
    )


async def request_logging_middleware(request: Request, call_next: Callable) -> Response:
    """Request-level logging middleware.

    Adds/propagates X-Request-ID and measures request duration.
    Does not log request/response bodies.
    """
    logger = _app_logger(request)
    request_id = _request_id(request)

    start = time.perf_counter()
    label = _critical_label_for(request.method, request.url.path)
    semaphore = _overview_semaphore() if label and label.endswith(".overview") else None
    acquired = False

    if semaphore is not None:
        wait_start = time.perf_counter()
        try:
            await asyncio.wait_for(semaphore.acquire(), timeout=_OVERVIEW_QUEUE_TIMEOUT_MS / 1000.0)
            acquired = True
        except asyncio.TimeoutError:
            logger.warning(
                "concurrency_queue_timeout",
                extra={"endpoint": label, "queue_timeout_ms": _OVERVIEW_QUEUE_TIMEOUT_MS},
            )
            return JSONResponse(
                status_code=503,
                content={
                    "detail": "Server busy. Try again.",
                    "request_id": request_id,
                    "code": "CONCURRENCY_QUEUE_TIMEOUT",
                },
                headers={"X-Request-ID": request_id},
            )
        wait_ms = (time.perf_counter() - wait_start) * 1000.0
        if wait_ms >= _QUEUE_WAIT_LOG_MS:
            logger.info("concurrency_queue_wait", extra={"endpoint": label, "wait_ms": round(wait_ms, 2)})

    try:
        response: Response = await call_next(request)
    except Exception:
        duration_ms = (time.perf_counter() - start) * 1000.0
        _record_latency(label, duration_ms, logger)
        logger.exception(
            "http_request_failed",
            extra={
                "request_id": request_id,
                "method": request.method,
                "path": request.url.path,
                "duration_ms": round(duration_ms, 2),
            },
        )
        raise
    else:
        duration_ms = (time.perf_counter() - start) * 1000.0
        _record_latency(label, duration_ms, logger)

        if duration_ms >= _SLOW_REQUEST_MS:
            logger.info(
                "slow_request",
                extra={
                    "request_id": request_id,
                    "method": request.method,
                    "path": request.url.path,
                    "duration_ms": round(duration_ms, 2),
                    "pool_status": _pool_status(),
                },
            )

        if request.url.path not in _LIVENESS_PATHS:
            logger.info(
                "http_request",
                extra={
                    "request_id": request_id,
                    "method": request.method,
                    "path": request.url.path,
                    "endpoint": label,
                    "status_code": response.status_code,
                    "duration_ms": round(duration_ms, 2),
                },
            )

        response.headers.setdefault("X-Request-ID", request_id)
        return response
    finally:
        if acquired and semaphore is not None:
            semaphore.release()
