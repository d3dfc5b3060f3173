import asyncio
from datetime import datetime, timedelta, timezone

import pytest
from fastapi.testclient import TestClient

from conftest import TestingSessionLocal
from marketplace_analytics import models
from marketplace_analytics.api import deps
from marketplace_analytics.config import settings
from marketplace_analytics.main import app
from marketplace_analytics.services.analytics_store import AnalyticsRetrievalError, SqlAlchemyAnalyticsStore

SELLER = "seller-1"
BUYER = "buyer-1"


def _recent(**delta) -> datetime:
    return datetime.now(timezone.utc) - timedelta(**delta)


class _BrokenStore(SqlAlchemyAnalyticsStore):
    async def _run(self, entity, operation, fn):
        raise AnalyticsRetrievalError("database unavailable", entity=entity, operation=operation)


@pytest.fixture
def client():
    app.dependency_overrides[deps.get_analytics_store] = lambda: SqlAlchemyAnalyticsStore(TestingSessionLocal)
    return TestClient(app)


def test_buyer_overview_is_camel_cased(client, seed):
    acme = seed.seller(display_name="Acme Metals")
    rfq = seed.rfq(BUYER, _recent(days=2))
    seed.quote(rfq, acme.id, _recent(days=2) + timedelta(hours=3))
    seed.order(BUYER, acme.id, _recent(days=1), total_price=1200.0, rfq_id=rfq.id)

    res = client.get(f"/api/analytics/buyer/{BUYER}/overview", params={"period": "week"})

    assert res.status_code == 200
    body = res.json()
    assert set(body) == {"kpis", "spendByCategory", "topSuppliers", "rfqFunnel", "timeline", "period"}
    assert body["period"] == "week"
    assert body["kpis"]["totalSpend"] == 1200.0
    assert body["kpis"]["avgResponseTime"] == 3.0
    assert body["spendByCategory"][0]["category"] == "Acme Metals"
    assert body["rfqFunnel"]["rfqToQuoteRate"] == 100.0
    assert res.headers.get("X-Request-ID")


def test_buyer_summary_matches_overview(client, seed):
    seed.order(BUYER, "s1", _recent(days=1), total_price=10.0)

    overview = client.get(f"/api/analytics/buyer/{BUYER}/overview").json()
    summary = client.get(f"/api/analytics/buyer/{BUYER}/summary").json()

    assert summary["kpis"] == overview["kpis"]
    assert summary["period"] == "month"


def test_buyer_sub_metric_endpoints(client, seed):
    item = seed.item(category="Valves")
    seed.order(BUYER, "s1", _recent(days=1), item_id=item.id, quantity=2, unit_price=25.0, total_price=50.0)

    assert client.get(f"/api/analytics/buyer/{BUYER}/kpis").json()["rfqsSent"] == 0
    assert client.get(f"/api/analytics/buyer/{BUYER}/spend-by-supplier").json()[0]["orderCount"] == 1
    assert client.get(f"/api/analytics/buyer/{BUYER}/spend-by-category").json() == [
        {"category": "Valves", "amount": 50.0, "percentage": 100.0}
    ]
    performance = client.get(f"/api/analytics/buyer/{BUYER}/supplier-performance", params={"limit": 1}).json()
    assert performance[0]["supplierName"] == "Unknown Supplier"
    assert client.get(f"/api/analytics/buyer/{BUYER}/rfq-funnel").json()["rfqsSent"] == 0
    assert client.get(f"/api/analytics/buyer/{BUYER}/timeline").json()[0]["orders"] == 1


def test_supplier_performance_rejects_bad_limit(client):
    res = client.get(f"/api/analytics/buyer/{BUYER}/supplier-performance", params={"limit": 0})
    assert res.status_code == 422


def test_seller_overview_and_sub_metrics(client, seed):
    seed.seller(id=SELLER, display_name="Acme Metals")
    seed.order(
        "b1",
        SELLER,
        _recent(days=3),
        total_price=400.0,
        quantity=4,
        unit_price=100.0,
        item_id="i-1",
        item_name="Rebar",
        city="Riyadh",
        status=models.OrderStatus.delivered,
    )

    overview = client.get(f"/api/analytics/seller/{SELLER}/overview", params={"period": "30d"})
    assert overview.status_code == 200
    body = overview.json()
    assert body["period"] == "month"
    assert body["kpis"]["revenue"] == 400.0
    assert body["kpis"]["winRate"] == 0
    assert body["topProducts"][0]["name"] == "Rebar"
    assert body["regionDistribution"][0]["region"] == "Riyadh"
    assert body["lifecycleMetrics"]["ordersByStatus"] == {"delivered": 1}

    assert client.get(f"/api/analytics/seller/{SELLER}/kpis").json()["orders"] == 1
    assert client.get(f"/api/analytics/seller/{SELLER}/revenue-by-category").json()[0]["category"] == "Other"
    assert client.get(f"/api/analytics/seller/{SELLER}/top-products").json()[0]["itemId"] == "i-1"
    assert [s["percent"] for s in client.get(f"/api/analytics/seller/{SELLER}/conversion").json()] == [100, 0, 0]
    assert client.get(f"/api/analytics/seller/{SELLER}/regions").json()[0]["percentage"] == 100
    assert client.get(f"/api/analytics/seller/{SELLER}/lifecycle").json()["fulfillmentRate"] == 100


def test_seller_summary_without_profile_is_zeroed(client, seed):
    # Orders exist but there is no seller profile.
    seed.order("b1", "unregistered", _recent(days=1), total_price=999.0)

    res = client.get("/api/analytics/seller/unregistered/summary", params={"period": "quarter"})

    assert res.status_code == 200
    body = res.json()
    assert body["period"] == "quarter"
    assert body["kpis"]["revenue"] == 0.0
    assert [s["percent"] for s in body["conversionFunnel"]] == [100, 0, 0]
    assert body["lifecycleMetrics"]["topBuyers"] == []


def test_seller_summary_with_profile_computes_overview(client, seed):
    seed.seller(id=SELLER)
    seed.order("b1", SELLER, _recent(days=1), total_price=75.0)

    body = client.get(f"/api/analytics/seller/{SELLER}/summary").json()

    assert body["kpis"]["revenue"] == 75.0


def test_unknown_period_falls_back_to_month(client):
    res = client.get(f"/api/analytics/buyer/{BUYER}/overview", params={"period": "fortnight"})
    assert res.status_code == 200
    assert res.json()["period"] == "month"


def test_unknown_period_rejected_in_strict_mode(client, monkeypatch):
    monkeypatch.setattr(settings, "analytics_strict_periods", True)

    res = client.get(f"/api/analytics/seller/{SELLER}/overview", params={"period": "fortnight"})

    assert res.status_code == 422
    body = res.json()
    assert body["code"] == "invalid_period"
    assert "30d" in body["allowed"]


def test_store_failure_maps_to_503(seed):
    app.dependency_overrides[deps.get_analytics_store] = lambda: _BrokenStore(TestingSessionLocal)
    client = TestClient(app)

    res = client.get(f"/api/analytics/buyer/{BUYER}/overview")

    assert res.status_code == 503
    body = res.json()
    assert body["code"] == "analytics_unavailable"
    assert body["detail"] == "Failed to fetch analytics"
    assert body["request_id"]


def test_overview_timeout_maps_to_504(monkeypatch):
    class _SlowStore(SqlAlchemyAnalyticsStore):
        async def _run(self, entity, operation, fn):
            await asyncio.sleep(1)
            return await super()._run(entity, operation, fn)

    monkeypatch.setattr(settings, "analytics_overview_timeout_seconds", 0.05)
    app.dependency_overrides[deps.get_analytics_store] = lambda: _SlowStore(TestingSessionLocal)

    res = TestClient(app).get(f"/api/analytics/seller/{SELLER}/overview")

    assert res.status_code == 504
    assert res.json()["code"] == "analytics_timeout"


def test_health_endpoints(client):
    live = client.get("/health")
    ready = client.get("/api/health/ready")

    assert live.status_code == 200
    assert live.json()["status"] == "ok"
    assert live.json()["environment"] == "test"
    assert ready.status_code == 200
    assert ready.json()["database"] == "ok"
