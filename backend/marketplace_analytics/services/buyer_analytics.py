from __future__ import annotations

import asyncio
from datetime import datetime

from marketplace_analytics import models
from marketplace_analytics.config import Settings, settings
from marketplace_analytics.schemas.analytics import (
    BuyerKPIs,
    BuyerOverview,
    BuyerTrends,
    CategorySpend,
    RfqFunnel,
    SupplierPerformance,
    SupplierSpend,
    TimelinePoint,
)
from marketplace_analytics.services.analytics_common import (
    SECONDS_PER_HOUR,
    elapsed_values,
    fan_out,
    utc_day,
)
from marketplace_analytics.services.analytics_math import (
    BucketInput,
    calculate_trend,
    money,
    safe_mean,
    safe_rate,
    top_n_with_overflow,
)
from marketplace_analytics.services.analytics_periods import AnalyticsPeriod, resolve_period
from marketplace_analytics.services.analytics_store import NOT_NULL, SqlAlchemyAnalyticsStore

# Orders that represent realized spend; pending/cancelled/failed/refunded do not.
CONFIRMED_SPEND_STATUSES = frozenset(
    {
        models.OrderStatus.confirmed,
        models.OrderStatus.processing,
        models.OrderStatus.shipped,
        models.OrderStatus.delivered,
        models.OrderStatus.closed,
    }
)

SUPPLIER_SPEND_LIMIT = 8
CATEGORY_SPEND_LIMIT = 6
TOP_SUPPLIERS_LIMIT = 5

UNKNOWN_SUPPLIER = "Unknown Supplier"
UNKNOWN_CATEGORY = "Other"


class BuyerAnalyticsService:
    def __init__(self, store: SqlAlchemyAnalyticsStore, *, config: Settings = settings):
        self.store = store
        self.config = config

    async def get_overview(
        self,
        buyer_id: str,
        period: str | None = "month",
        *,
        now: datetime | None = None,
        strict: bool = False,
    ) -> BuyerOverview:
        dates = resolve_period(period, now=now, strict=strict)
        kpis, spend, suppliers, funnel, timeline = await fan_out(
            self.get_kpis(buyer_id, dates),
            self.get_spend_by_supplier(buyer_id, dates),
            self.get_top_suppliers(buyer_id, dates),
            self.get_rfq_funnel(buyer_id, dates),
            self.get_timeline(buyer_id, dates),
            role="buyer",
            actor_id=buyer_id,
            period=dates.period,
        )
        return BuyerOverview(
            kpis=kpis,
            spend_by_category=spend,
            top_suppliers=suppliers,
            rfq_funnel=funnel,
            timeline=timeline,
            period=dates.period,
        )

    async def get_kpis(self, buyer_id: str, dates: AnalyticsPeriod) -> BuyerKPIs:
        scope = {"buyer_id": buyer_id}
        current, previous, rfqs, prev_rfqs, quotes = await asyncio.gather(
            self.store.aggregate("order", "total_price", filters=scope, window=dates.current),
            self.store.aggregate("order", "total_price", filters=scope, window=dates.previous),
            self.store.count("rfq", filters=scope, window=dates.current),
            self.store.count("rfq", filters=scope, window=dates.previous),
            self.store.find_many(
                "quote",
                ("created_at", "rfq.created_at"),
                filters={"rfq.buyer_id": buyer_id},
                window=dates.current,
            ),
        )

        response_hours = elapsed_values(
            ((q["rfq.created_at"], q["created_at"]) for q in quotes),
            unit_seconds=SECONDS_PER_HOUR,
            metric="buyer_response_time",
        )

        return BuyerKPIs(
            total_spend=money(current.sum),
            rfqs_sent=rfqs,
            avg_response_time=safe_mean(response_hours),
            savings_vs_market=self.config.analytics_savings_vs_market,
            currency=self.config.analytics_currency,
            trends=BuyerTrends(
                spend=calculate_trend(current.sum, previous.sum),
                rfqs=calculate_trend(rfqs, prev_rfqs),
                response_time=self.config.analytics_response_time_trend,
                savings=self.config.analytics_savings_trend,
            ),
        )

    async def get_spend_by_supplier(self, buyer_id: str, dates: AnalyticsPeriod) -> list[SupplierSpend]:
        orders = await self.store.find_many(
            "order",
            ("seller_id", "total_price"),
            filters={"buyer_id": buyer_id, "status": CONFIRMED_SPEND_STATUSES},
            window=dates.current,
        )

        per_seller: dict[str, list[float]] = {}
        for order in orders:
            stats = per_seller.setdefault(str(order["seller_id"]), [0.0, 0])
            stats[0] += float(order["total_price"] or 0.0)
            stats[1] += 1

        names = await self.store.seller_display_names(per_seller.keys())
        buckets = top_n_with_overflow(
            [
                BucketInput(label=names.get(sid, UNKNOWN_SUPPLIER), value=amount, count=count, key=sid)
                for sid, (amount, count) in per_seller.items()
            ],
            SUPPLIER_SPEND_LIMIT,
        )
        return [
            SupplierSpend(
                category=b.label,
                supplier_id=b.key,
                amount=money(b.value),
                percentage=b.percentage,
                order_count=b.count,
                avg_order_value=money(b.value / b.count) if b.count else 0.0,
            )
            for b in buckets
        ]

    async def get_spend_by_category(self, buyer_id: str, dates: AnalyticsPeriod) -> list[CategorySpend]:
        """Line-level spend (quantity x unit price) grouped by item category."""
        orders = await self.store.find_many(
            "order",
            ("item_id", "quantity", "unit_price"),
            filters={"buyer_id": buyer_id},
            window=dates.current,
        )
        categories = await self.store.item_categories(o["item_id"] for o in orders)

        per_category: dict[str, float] = {}
        for order in orders:
            category = categories.get(str(order["item_id"]), UNKNOWN_CATEGORY)
            amount = (order["quantity"] or 0) * float(order["unit_price"] or 0.0)
            per_category[category] = per_category.get(category, 0.0) + amount

        buckets = top_n_with_overflow(
            [BucketInput(label=c, value=v) for c, v in per_category.items()],
            CATEGORY_SPEND_LIMIT,
            overflow_label=None,
        )
        return [CategorySpend(category=b.label, amount=money(b.value), percentage=b.percentage) for b in buckets]

    async def get_top_suppliers(
        self,
        buyer_id: str,
        dates: AnalyticsPeriod,
        *,
        limit: int = TOP_SUPPLIERS_LIMIT,
    ) -> list[SupplierPerformance]:
        orders = await self.store.find_many(
            "order",
            ("seller_id", "total_price", "status", "health_status"),
            filters={"buyer_id": buyer_id},
            window=dates.current,
        )

        stats: dict[str, dict] = {}
        for order in orders:
            entry = stats.setdefault(
                str(order["seller_id"]), {"orders": 0, "spend": 0.0, "on_time": 0}
            )
            entry["orders"] += 1
            entry["spend"] += float(order["total_price"] or 0.0)
            if (
                order["status"] == models.OrderStatus.delivered
                or order["health_status"] == models.OrderHealthStatus.on_track
            ):
                entry["on_time"] += 1

        ranked = sorted(stats.items(), key=lambda kv: kv[1]["spend"], reverse=True)[: max(0, limit)]
        seller_ids = [sid for sid, _ in ranked]
        names, countries = await asyncio.gather(
            self.store.seller_display_names(seller_ids),
            self.store.seller_countries(seller_ids),
        )

        return [
            SupplierPerformance(
                supplier_id=sid,
                supplier_name=names.get(sid, UNKNOWN_SUPPLIER),
                country=countries.get(sid),
                total_orders=entry["orders"],
                total_spend=money(entry["spend"]),
                on_time_delivery_rate=safe_rate(entry["on_time"], entry["orders"], digits=0),
                quality_score=self.config.analytics_supplier_quality_score,
                response_time=self.config.analytics_supplier_response_time,
                rfq_win_rate=self.config.analytics_supplier_win_rate,
            )
            for sid, entry in ranked
        ]

    async def get_rfq_funnel(self, buyer_id: str, dates: AnalyticsPeriod) -> RfqFunnel:
        rfqs, quotes, orders = await asyncio.gather(
            self.store.count("rfq", filters={"buyer_id": buyer_id}, window=dates.current),
            self.store.count("quote", filters={"rfq.buyer_id": buyer_id}, window=dates.current),
            self.store.count(
                "order", filters={"buyer_id": buyer_id, "rfq_id": NOT_NULL}, window=dates.current
            ),
        )
        return RfqFunnel(
            rfqs_sent=rfqs,
            quotes_received=quotes,
            orders_placed=orders,
            rfq_to_quote_rate=safe_rate(quotes, rfqs),
            quote_to_order_rate=safe_rate(orders, quotes),
            overall_conversion_rate=safe_rate(orders, rfqs),
        )

    async def get_timeline(self, buyer_id: str, dates: AnalyticsPeriod) -> list[TimelinePoint]:
        """Daily spend/orders/RFQs; days without activity are omitted."""
        orders, rfqs = await asyncio.gather(
            self.store.find_many(
                "order",
                ("created_at", "total_price"),
                filters={"buyer_id": buyer_id},
                window=dates.current,
                order_by="created_at",
            ),
            self.store.find_many(
                "rfq",
                ("created_at",),
                filters={"buyer_id": buyer_id},
                window=dates.current,
                order_by="created_at",
            ),
        )

        daily: dict[str, dict] = {}
        for order in orders:
            day = daily.setdefault(utc_day(order["created_at"]), {"spend": 0.0, "orders": 0, "rfqs": 0})
            day["spend"] += float(order["total_price"] or 0.0)
            day["orders"] += 1
        for rfq in rfqs:
            day = daily.setdefault(utc_day(rfq["created_at"]), {"spend": 0.0, "orders": 0, "rfqs": 0})
            day["rfqs"] += 1

        return [
            TimelinePoint(date=d, spend=money(v["spend"]), orders=v["orders"], rfqs=v["rfqs"])
            for d, v in sorted(daily.items())
        ]
