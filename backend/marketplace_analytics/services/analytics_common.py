from __future__ import annotations

import asyncio
import logging
import time
from datetime import datetime, timezone
from typing import Any, Awaitable, Iterable

logger = logging.getLogger("marketplace.analytics")

SECONDS_PER_HOUR = 3600.0
SECONDS_PER_DAY = 86400.0


async def fan_out(*aws: Awaitable[Any], role: str, actor_id: str, period: str) -> list[Any]:
    """Run independent metric computations concurrently and join them.

    All-or-nothing: the first failure propagates and no partial result is returned.
    The remaining parts are cancelled before the error is re-raised. A store read
    already running on a worker thread still finishes there, but its result is
    discarded.
    """
    start = time.perf_counter()
    tasks = [asyncio.ensure_future(aw) for aw in aws]
    try:
        results = await asyncio.gather(*tasks)
    except BaseException as exc:
        for task in tasks:
            if not task.done():
                task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        if not isinstance(exc, Exception):
            raise
        logger.warning(
            "analytics_overview_failed",
            extra={
                "role": role,
                "actor_id": actor_id,
                "period": period,
                "exception_type": type(exc).__name__,
                "error": str(exc),
                "cancelled_parts": sum(1 for task in tasks if task.cancelled()),
            },
        )
        raise
    logger.info(
        "analytics_overview_computed",
        extra={
            "role": role,
            "actor_id": actor_id,
            "period": period,
            "parts": len(results),
            "duration_ms": round((time.perf_counter() - start) * 1000.0, 2),
        },
    )
    return list(results)


def elapsed_values(
    pairs: Iterable[tuple[datetime | None, datetime | None]],
    *,
    unit_seconds: float,
    metric: str,
) -> list[float]:
    """Durations `later - earlier` in the given unit, skipping incomplete pairs.

    Negative durations are data anomalies; they are dropped and logged, not clamped.
    """
    values: list[float] = []
    negatives = 0
    for earlier, later in pairs:
        if earlier is None or later is None:
            continue
        seconds = (_as_utc(later) - _as_utc(earlier)).total_seconds()
        if seconds < 0:
            negatives += 1
            continue
        values.append(seconds / unit_seconds)
    if negatives:
        logger.warning("analytics_negative_duration", extra={"metric": metric, "count": negatives})
    return values


def _as_utc(ts: datetime) -> datetime:
    # SQLite hands back naive datetimes; they are stored as UTC.
    if ts.tzinfo is None:
        return ts.replace(tzinfo=timezone.utc)
    return ts.astimezone(timezone.utc)


def utc_day(ts: datetime) -> str:
    return _as_utc(ts).date().isoformat()
