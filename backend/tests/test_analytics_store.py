import asyncio
import logging

import pytest
from sqlalchemy import create_engine
from sqlalchemy.exc import TimeoutError as SATimeoutError
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from conftest import NOW, TestingSessionLocal, days_ago
from marketplace_analytics import models
from marketplace_analytics.services.analytics_periods import resolve_period
from marketplace_analytics.services.analytics_store import (
    NOT_NULL,
    AnalyticsRetrievalError,
    SqlAlchemyAnalyticsStore,
)


def test_aggregate_sums_and_counts_within_window(store, seed):
    window = resolve_period("month", now=NOW)
    seed.order("b1", "s1", days_ago(1), total_price=100.0)
    seed.order("b1", "s1", days_ago(10), total_price=50.5)
    seed.order("b1", "s1", days_ago(45), total_price=999.0)  # previous window
    seed.order("b2", "s1", days_ago(2), total_price=70.0)  # other buyer

    current = asyncio.run(store.aggregate("order", "total_price", filters={"buyer_id": "b1"}, window=window.current))
    previous = asyncio.run(store.aggregate("order", "total_price", filters={"buyer_id": "b1"}, window=window.previous))

    assert (current.sum, current.count) == (150.5, 2)
    assert (previous.sum, previous.count) == (999.0, 1)


def test_aggregate_on_empty_set_is_zero(store):
    result = asyncio.run(store.aggregate("order", "total_price", filters={"buyer_id": "nobody"}))
    assert result.sum == 0.0
    assert result.count == 0


def test_window_is_inclusive_on_both_ends(store, seed):
    window = resolve_period("week", now=NOW)
    seed.order("b1", "s1", window.start_date)
    seed.order("b1", "s1", window.end_date)

    assert asyncio.run(store.count("order", filters={"buyer_id": "b1"}, window=window.current)) == 2


def test_set_and_not_null_filters(store, seed):
    rfq = seed.rfq("b1", days_ago(3))
    seed.order("b1", "s1", days_ago(1), status=models.OrderStatus.delivered, rfq_id=rfq.id)
    seed.order("b1", "s1", days_ago(1), status=models.OrderStatus.cancelled)
    seed.order("b1", "s1", days_ago(1), status=models.OrderStatus.shipped)

    in_flight = asyncio.run(
        store.count(
            "order",
            filters={"buyer_id": "b1", "status": {models.OrderStatus.shipped, models.OrderStatus.delivered}},
        )
    )
    from_rfq = asyncio.run(store.count("order", filters={"buyer_id": "b1", "rfq_id": NOT_NULL}))

    assert in_flight == 2
    assert from_rfq == 1


def test_dotted_filter_joins_relationship(store, seed):
    mine = seed.rfq("buyer-a", days_ago(5))
    other = seed.rfq("buyer-b", days_ago(5))
    seed.quote(mine, "s1", days_ago(4))
    seed.quote(mine, "s2", days_ago(3))
    seed.quote(other, "s1", days_ago(4))

    count = asyncio.run(store.count("quote", filters={"rfq.buyer_id": "buyer-a"}))
    rows = asyncio.run(
        store.find_many(
            "quote",
            ("seller_id", "rfq.created_at"),
            filters={"rfq.buyer_id": "buyer-a"},
            order_by="-created_at",
        )
    )

    assert count == 2
    assert [r["seller_id"] for r in rows] == ["s2", "s1"]
    assert all(r["rfq.created_at"] is not None for r in rows)


def test_group_by_returns_distinct_values_in_first_seen_order(store, seed):
    seed.order("b2", "s1", days_ago(5))
    seed.order("b1", "s1", days_ago(4))
    seed.order("b2", "s1", days_ago(3))

    assert asyncio.run(store.group_by("order", "buyer_id", filters={"seller_id": "s1"})) == ["b2", "b1"]


def test_dimension_lookups(store, seed):
    named = seed.seller(display_name="Gulf Steel", country="AE")
    unnamed = seed.seller(display_name=None, country=None)
    item = seed.item(category="Aluminium")

    names = asyncio.run(store.seller_display_names([named.id, unnamed.id, "missing"]))
    countries = asyncio.run(store.seller_countries([named.id]))
    categories = asyncio.run(store.item_categories([item.id, None]))

    assert names == {named.id: "Gulf Steel"}
    assert countries == {named.id: "AE"}
    assert categories == {item.id: "Aluminium"}
    assert asyncio.run(store.seller_display_names([])) == {}
    assert asyncio.run(store.seller_exists(named.id)) is True
    assert asyncio.run(store.seller_exists("missing")) is False


def test_unknown_entity_is_a_programming_error(store):
    with pytest.raises(ValueError):
        asyncio.run(store.count("shipment"))


def test_database_failure_is_wrapped():
    # No tables exist on this engine, so every read fails at the driver.
    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        future=True,
    )
    broken = SqlAlchemyAnalyticsStore(sessionmaker(bind=engine, future=True))

    with pytest.raises(AnalyticsRetrievalError) as exc_info:
        asyncio.run(broken.aggregate("order", "total_price", filters={"seller_id": "s1"}))

    assert exc_info.value.entity == "order"
    assert exc_info.value.operation == "aggregate"
    assert exc_info.value.__cause__ is not None


class _PoolExhaustedStore(SqlAlchemyAnalyticsStore):
    async def _run(self, entity, operation, fn):
        def _checkout(db):
            raise SATimeoutError("QueuePool limit of size 10 overflow 10 reached, connection timed out")

        return await super()._run(entity, operation, _checkout)


def test_pool_timeout_is_logged_with_pool_status(caplog):
    exhausted = _PoolExhaustedStore(TestingSessionLocal)

    with caplog.at_level(logging.ERROR, logger="marketplace.analytics.store"):
        with pytest.raises(AnalyticsRetrievalError) as exc_info:
            asyncio.run(exhausted.count("order", filters={"seller_id": "s1"}))

    assert isinstance(exc_info.value.__cause__, SATimeoutError)
    assert (exc_info.value.entity, exc_info.value.operation) == ("order", "count")
    records = [r for r in caplog.records if r.getMessage() == "db_pool_timeout"]
    assert len(records) == 1
    assert records[0].entity == "order"
    assert hasattr(records[0], "pool_status")
    assert not [r for r in caplog.records if r.getMessage() == "analytics_store_query_failed"]
