from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

logger = logging.getLogger("marketplace.analytics")

DEFAULT_PERIOD = "month"

PERIOD_DAYS: dict[str, int] = {
    "week": 7,
    "month": 30,
    "quarter": 90,
    "year": 365,
}

# Short tokens sent by the seller dashboard.
PERIOD_ALIASES: dict[str, str] = {
    "7d": "week",
    "30d": "month",
    "90d": "quarter",
    "12m": "year",
}

# Gap between the previous window's end and the current window's start.
_WINDOW_TICK = timedelta(milliseconds=1)


class UnknownPeriodError(ValueError):
    def __init__(self, token: str | None):
        self.token = token
        super().__init__(f"Unknown analytics period: {token!r}")


@dataclass(frozen=True)
class AnalyticsPeriod:
    period: str
    start_date: datetime
    end_date: datetime
    prev_start_date: datetime
    prev_end_date: datetime

    @property
    def current(self) -> tuple[datetime, datetime]:
        return (self.start_date, self.end_date)

    @property
    def previous(self) -> tuple[datetime, datetime]:
        return (self.prev_start_date, self.prev_end_date)


def allowed_period_tokens() -> list[str]:
    return [*PERIOD_DAYS.keys(), *PERIOD_ALIASES.keys()]


def normalize_period_token(token: str | None, *, strict: bool = False) -> str:
    """Map a raw period token to one of week|month|quarter|year.

    Unknown tokens fall back to "month" unless `strict` is set.
    """
    raw = str(token or "").strip().lower()
    if not raw:
        return DEFAULT_PERIOD
    if raw in PERIOD_DAYS:
        return raw
    if raw in PERIOD_ALIASES:
        return PERIOD_ALIASES[raw]
    if strict:
        raise UnknownPeriodError(token)
    logger.info("analytics_period_fallback", extra={"token": raw, "period": DEFAULT_PERIOD})
    return DEFAULT_PERIOD


def resolve_period(
    token: str | None,
    *,
    now: datetime | None = None,
    strict: bool = False,
) -> AnalyticsPeriod:
    period = normalize_period_token(token, strict=strict)
    days = timedelta(days=PERIOD_DAYS[period])

    end_date = now or datetime.now(timezone.utc)
    start_date = end_date - days
    prev_end_date = start_date - _WINDOW_TICK
    prev_start_date = prev_end_date - days

    return AnalyticsPeriod(
        period=period,
        start_date=start_date,
        end_date=end_date,
        prev_start_date=prev_start_date,
        prev_end_date=prev_end_date,
    )
