import pytest

from marketplace_analytics.services.analytics_math import (
    BucketInput,
    calculate_trend,
    money,
    round_half_up,
    safe_mean,
    safe_rate,
    top_n_with_overflow,
)


@pytest.mark.parametrize(
    "current,previous,expected",
    [
        (150, 100, 50.0),
        (50, 100, -50.0),
        (10, 0, 100.0),
        (0, 0, 0.0),
        (1, 3, -66.7),
        (2, 3, -33.3),
    ],
)
def test_calculate_trend(current, previous, expected):
    assert calculate_trend(current, previous) == expected


def test_round_half_up_does_not_use_bankers_rounding():
    assert round_half_up(2.5) == 3
    assert round_half_up(0.25, 1) == 0.3
    assert round_half_up(66.666, 0) == 67
    assert money(0.125) == 0.13
    assert money(None) == 0.0


def test_safe_rate_zero_denominator():
    assert safe_rate(5, 0) == 0.0
    assert safe_rate(5, 0, digits=0) == 0
    assert safe_rate(20, 30, digits=0) == 67
    assert isinstance(safe_rate(20, 30, digits=0), int)
    assert safe_rate(1, 3) == 33.3


def test_safe_mean():
    assert safe_mean([]) == 0.0
    assert safe_mean([1.0, 2.0, 4.0]) == 2.3


def test_top_n_folds_remainder_into_others():
    items = [BucketInput(label=f"s{i}", value=float(v), count=1) for i, v in enumerate([5, 50, 10, 40, 1, 30, 20, 15, 8, 2])]

    buckets = top_n_with_overflow(items, 8)

    assert len(buckets) == 9
    assert [b.label for b in buckets[:3]] == ["s1", "s3", "s5"]
    others = buckets[-1]
    assert others.label == "Others"
    assert others.is_overflow
    assert others.value == 3.0  # 2 + 1
    assert others.count == 2
    assert sum(b.value for b in buckets) == sum(i.value for i in items)
    assert sum(b.percentage for b in buckets) == pytest.approx(100, abs=0.5)


def test_top_n_ties_keep_insertion_order():
    items = [BucketInput(label=name, value=10.0) for name in ["a", "b", "c"]]
    assert [b.label for b in top_n_with_overflow(items, 2)] == ["a", "b", "Others"]


def test_top_n_zero_total_gives_zero_percentages():
    items = [BucketInput(label="a", value=0.0), BucketInput(label="b", value=0.0)]
    buckets = top_n_with_overflow(items, 5)
    assert [b.percentage for b in buckets] == [0.0, 0.0]


def test_top_n_without_overflow_drops_remainder():
    items = [BucketInput(label=str(i), value=float(i)) for i in range(1, 9)]
    buckets = top_n_with_overflow(items, 6, overflow_label=None)
    assert len(buckets) == 6
    assert not any(b.is_overflow for b in buckets)
    # Percentages stay relative to the full total, including the dropped tail.
    assert buckets[0].percentage == round_half_up(8 / 36 * 100, 1)


def test_integer_percentages():
    items = [BucketInput(label="Riyadh", value=2, count=2), BucketInput(label="Jeddah", value=1, count=1)]
    buckets = top_n_with_overflow(items, 5, overflow_label=None, percentage_digits=0)
    assert [(b.label, b.percentage) for b in buckets] == [("Riyadh", 67), ("Jeddah", 33)]
