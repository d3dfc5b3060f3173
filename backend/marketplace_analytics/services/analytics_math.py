from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Any, Hashable, Iterable, List, Optional

OTHERS_LABEL = "Others"


def round_half_up(value: float, digits: int = 0) -> float:
    """Round with .5 going up, independent of float banker's rounding."""
    factor = 10**digits
    return math.floor(float(value) * factor + 0.5) / factor


def round_percent(value: float, digits: int = 1) -> float | int:
    rounded = round_half_up(value, digits)
    return int(rounded) if digits == 0 else rounded


def calculate_trend(current: float, previous: float) -> float:
    """Percentage change from `previous` to `current`, one decimal.

    A zero baseline yields 100 for new activity and 0 for none.
    """
    if previous == 0:
        return 100.0 if current > 0 else 0.0
    return round_half_up((current - previous) / previous * 100, 1)


def safe_rate(numerator: float, denominator: float, *, digits: int = 1) -> float | int:
    if not denominator:
        return 0 if digits == 0 else 0.0
    return round_percent(numerator / denominator * 100, digits)


def safe_mean(values: Iterable[float], *, digits: int = 1) -> float:
    items = list(values)
    if not items:
        return 0.0
    return round_half_up(sum(items) / len(items), digits)


def money(value: float) -> float:
    return round_half_up(value or 0.0, 2)


@dataclass
class BucketInput:
    label: str
    value: float
    count: int = 0
    key: Optional[Hashable] = None


@dataclass
class BucketEntry:
    label: str
    value: float
    count: int
    percentage: float | int
    key: Optional[Hashable] = None
    is_overflow: bool = False


def top_n_with_overflow(
    items: Iterable[BucketInput],
    limit: int,
    *,
    overflow_label: str | None = OTHERS_LABEL,
    percentage_digits: int = 1,
) -> List[BucketEntry]:
    """Keep the `limit` largest buckets and fold the rest into one overflow entry.

    Sorting is stable, so equal values keep insertion order. Percentages are taken
    over the total of all input values, including any dropped remainder when no
    overflow label is given. A zero total gives every entry 0%.
    """
    ordered = sorted(list(items), key=lambda b: b.value, reverse=True)
    total = sum(b.value for b in ordered)

    def _pct(value: float) -> float | int:
        if total == 0:
            return 0 if percentage_digits == 0 else 0.0
        return round_percent(value / total * 100, percentage_digits)

    head = ordered[:limit] if limit >= 0 else ordered
    rest = ordered[len(head) :]

    out = [
        BucketEntry(label=b.label, value=b.value, count=b.count, percentage=_pct(b.value), key=b.key)
        for b in head
    ]
    if rest and overflow_label is not None:
        rest_value = sum(b.value for b in rest)
        out.append(
            BucketEntry(
                label=overflow_label,
                value=rest_value,
                count=sum(b.count for b in rest),
                percentage=_pct(rest_value),
                is_overflow=True,
            )
        )
    return out


def enum_value(value: Any) -> Any:
    return value.value if hasattr(value, "value") else value
