from __future__ import annotations

import asyncio
import json
import logging
from datetime import datetime
from typing import Optional

from marketplace_analytics import models
from marketplace_analytics.config import Settings, settings
from marketplace_analytics.schemas.analytics import (
    CategoryRevenue,
    FunnelStage,
    LifecycleMetrics,
    RegionShare,
    SellerKPIs,
    SellerOverview,
    SellerTrends,
    TopBuyer,
    TopProduct,
)
from marketplace_analytics.services.analytics_common import (
    SECONDS_PER_DAY,
    SECONDS_PER_HOUR,
    elapsed_values,
    fan_out,
)
from marketplace_analytics.services.analytics_math import (
    BucketInput,
    calculate_trend,
    enum_value,
    money,
    safe_mean,
    safe_rate,
    top_n_with_overflow,
)
from marketplace_analytics.services.analytics_periods import AnalyticsPeriod, resolve_period
from marketplace_analytics.services.analytics_store import NOT_NULL, SqlAlchemyAnalyticsStore

logger = logging.getLogger("marketplace.analytics")

# Delivered but not yet settled by the buyer.
UNPAID_PAYMENT_STATUSES = frozenset(
    {
        models.PaymentStatus.unpaid,
        models.PaymentStatus.authorized,
        models.PaymentStatus.pending_conf,
    }
)
FULFILLED_STATUSES = frozenset({models.OrderStatus.delivered, models.OrderStatus.closed})

CATEGORY_REVENUE_LIMIT = 6
TOP_PRODUCTS_LIMIT = 5
TOP_REGIONS_LIMIT = 5
TOP_BUYERS_LIMIT = 5

UNKNOWN_CATEGORY = "Other"
UNKNOWN_PRODUCT = "Unknown Product"
UNKNOWN_SKU = "N/A"
UNKNOWN_REGION = "Unknown"
UNKNOWN_BUYER = "Unknown Buyer"

FUNNEL_STAGES = ("RFQs Received", "Quotes Sent", "Orders Won")


def parse_shipping_city(raw: Optional[str]) -> Optional[str]:
    """City from a JSON shipping address, or None when it cannot be read."""
    if not raw:
        return None
    try:
        address = json.loads(raw)
    except (TypeError, ValueError, RecursionError):
        return None
    if not isinstance(address, dict):
        return None
    city = address.get("city")
    if not isinstance(city, str) or not city.strip():
        return None
    return city.strip()


def region_for(raw: Optional[str]) -> str:
    return parse_shipping_city(raw) or UNKNOWN_REGION


def empty_funnel() -> list[FunnelStage]:
    return [
        FunnelStage(stage=FUNNEL_STAGES[0], value=0, percent=100),
        FunnelStage(stage=FUNNEL_STAGES[1], value=0, percent=0),
        FunnelStage(stage=FUNNEL_STAGES[2], value=0, percent=0),
    ]


def empty_seller_overview(period: str, *, currency: str = "SAR") -> SellerOverview:
    return SellerOverview(
        kpis=SellerKPIs(currency=currency),
        conversion_funnel=empty_funnel(),
        period=period,
    )


class SellerAnalyticsService:
    def __init__(self, store: SqlAlchemyAnalyticsStore, *, config: Settings = settings):
        self.store = store
        self.config = config

    async def get_overview(
        self,
        seller_id: str,
        period: str | None = "month",
        *,
        now: datetime | None = None,
        strict: bool = False,
    ) -> SellerOverview:
        dates = resolve_period(period, now=now, strict=strict)
        kpis, categories, products, funnel, regions, lifecycle = await fan_out(
            self.get_kpis(seller_id, dates),
            self.get_revenue_by_category(seller_id, dates),
            self.get_top_products(seller_id, dates),
            self.get_conversion_funnel(seller_id, dates),
            self.get_region_distribution(seller_id, dates),
            self.get_lifecycle_metrics(seller_id, dates),
            role="seller",
            actor_id=seller_id,
            period=dates.period,
        )
        return SellerOverview(
            kpis=kpis,
            revenue_by_category=categories,
            top_products=products,
            conversion_funnel=funnel,
            region_distribution=regions,
            lifecycle_metrics=lifecycle,
            period=dates.period,
        )

    async def get_kpis(self, seller_id: str, dates: AnalyticsPeriod) -> SellerKPIs:
        scope = {"seller_id": seller_id}
        accepted = {"seller_id": seller_id, "status": models.QuoteStatus.accepted}
        (
            current,
            previous,
            buyers,
            prev_buyers,
            rfqs,
            prev_rfqs,
            won,
            prev_won,
        ) = await asyncio.gather(
            self.store.aggregate("order", "total_price", filters=scope, window=dates.current),
            self.store.aggregate("order", "total_price", filters=scope, window=dates.previous),
            self.store.group_by("order", "buyer_id", filters=scope, window=dates.current),
            self.store.group_by("order", "buyer_id", filters=scope, window=dates.previous),
            self.store.count("rfq", filters=scope, window=dates.current),
            self.store.count("rfq", filters=scope, window=dates.previous),
            self.store.count("quote", filters=accepted, window=dates.current),
            self.store.count("quote", filters=accepted, window=dates.previous),
        )

        win_rate = safe_rate(won, rfqs, digits=0)
        prev_win_rate = safe_rate(prev_won, prev_rfqs, digits=0)

        return SellerKPIs(
            revenue=money(current.sum),
            orders=current.count,
            new_buyers=len(buyers),
            win_rate=win_rate,
            currency=self.config.analytics_currency,
            trends=SellerTrends(
                revenue=calculate_trend(current.sum, previous.sum),
                orders=calculate_trend(current.count, previous.count),
                buyers=calculate_trend(len(buyers), len(prev_buyers)),
                win_rate=calculate_trend(win_rate, prev_win_rate),
            ),
        )

    async def get_revenue_by_category(self, seller_id: str, dates: AnalyticsPeriod) -> list[CategoryRevenue]:
        """Line-level revenue (quantity x unit price, not the stored total) per item category."""
        orders = await self.store.find_many(
            "order",
            ("item_id", "quantity", "unit_price"),
            filters={"seller_id": seller_id},
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
            CATEGORY_REVENUE_LIMIT,
            overflow_label=None,
        )
        return [CategoryRevenue(category=b.label, amount=money(b.value), percentage=b.percentage) for b in buckets]

    async def get_top_products(self, seller_id: str, dates: AnalyticsPeriod) -> list[TopProduct]:
        orders = await self.store.find_many(
            "order",
            ("item_id", "item_name", "item_sku", "quantity", "unit_price"),
            filters={"seller_id": seller_id},
            window=dates.current,
        )

        products: dict[str, dict] = {}
        for order in orders:
            entry = products.setdefault(
                str(order["item_id"]),
                {
                    "name": order["item_name"] or UNKNOWN_PRODUCT,
                    "sku": order["item_sku"] or UNKNOWN_SKU,
                    "revenue": 0.0,
                    "orders": 0,
                },
            )
            entry["revenue"] += (order["quantity"] or 0) * float(order["unit_price"] or 0.0)
            entry["orders"] += 1

        ranked = sorted(products.items(), key=lambda kv: kv[1]["revenue"], reverse=True)
        return [
            TopProduct(
                item_id=item_id,
                name=entry["name"],
                sku=entry["sku"],
                revenue=money(entry["revenue"]),
                orders=entry["orders"],
            )
            for item_id, entry in ranked[:TOP_PRODUCTS_LIMIT]
        ]

    async def get_conversion_funnel(self, seller_id: str, dates: AnalyticsPeriod) -> list[FunnelStage]:
        rfqs, quotes, won = await asyncio.gather(
            self.store.count("rfq", filters={"seller_id": seller_id}, window=dates.current),
            self.store.count("quote", filters={"seller_id": seller_id}, window=dates.current),
            self.store.count(
                "order", filters={"seller_id": seller_id, "rfq_id": NOT_NULL}, window=dates.current
            ),
        )
        return [
            FunnelStage(stage=FUNNEL_STAGES[0], value=rfqs, percent=100),
            FunnelStage(stage=FUNNEL_STAGES[1], value=quotes, percent=safe_rate(quotes, rfqs, digits=0)),
            FunnelStage(stage=FUNNEL_STAGES[2], value=won, percent=safe_rate(won, rfqs, digits=0)),
        ]

    async def get_region_distribution(self, seller_id: str, dates: AnalyticsPeriod) -> list[RegionShare]:
        orders = await self.store.find_many(
            "order",
            ("shipping_address",),
            filters={"seller_id": seller_id},
            window=dates.current,
        )

        counts: dict[str, int] = {}
        unreadable = 0
        for order in orders:
            raw = order["shipping_address"]
            region = region_for(raw)
            if raw and region == UNKNOWN_REGION:
                unreadable += 1
            counts[region] = counts.get(region, 0) + 1
        if unreadable:
            logger.debug(
                "analytics_address_unparseable",
                extra={"seller_id": seller_id, "count": unreadable},
            )

        buckets = top_n_with_overflow(
            [BucketInput(label=r, value=c, count=c) for r, c in counts.items()],
            TOP_REGIONS_LIMIT,
            overflow_label=None,
            percentage_digits=0,
        )
        return [RegionShare(region=b.label, orders=b.count, percentage=b.percentage) for b in buckets]

    async def get_lifecycle_metrics(self, seller_id: str, dates: AnalyticsPeriod) -> LifecycleMetrics:
        receivables, orders, invoices, payments = await asyncio.gather(
            self.store.aggregate(
                "order",
                "total_price",
                filters={
                    "seller_id": seller_id,
                    "status": models.OrderStatus.delivered,
                    "payment_status": UNPAID_PAYMENT_STATUSES,
                },
            ),
            self.store.find_many(
                "order",
                ("buyer_id", "buyer_name", "buyer_company", "total_price", "status", "shipped_at", "delivered_at"),
                filters={"seller_id": seller_id},
                window=dates.current,
            ),
            self.store.find_many(
                "invoice",
                ("issued_at", "paid_at"),
                filters={"seller_id": seller_id},
                window=dates.current,
            ),
            self.store.find_many(
                "payment",
                ("created_at", "confirmed_at"),
                filters={"seller_id": seller_id},
                window=dates.current,
            ),
        )

        delivery_days = elapsed_values(
            ((o["shipped_at"], o["delivered_at"]) for o in orders),
            unit_seconds=SECONDS_PER_DAY,
            metric="seller_delivery_days",
        )
        payment_delay_days = elapsed_values(
            ((i["issued_at"], i["paid_at"]) for i in invoices),
            unit_seconds=SECONDS_PER_DAY,
            metric="seller_payment_delay_days",
        )
        confirmation_hours = elapsed_values(
            ((p["created_at"], p["confirmed_at"]) for p in payments),
            unit_seconds=SECONDS_PER_HOUR,
            metric="seller_payment_confirmation_hours",
        )

        by_status: dict[str, int] = {}
        fulfilled = 0
        buyers: dict[str, dict] = {}
        for order in orders:
            status = enum_value(order["status"])
            by_status[status] = by_status.get(status, 0) + 1
            if order["status"] in FULFILLED_STATUSES:
                fulfilled += 1

            entry = buyers.setdefault(
                str(order["buyer_id"]),
                {
                    "name": order["buyer_name"] or order["buyer_company"] or UNKNOWN_BUYER,
                    "spend": 0.0,
                    "orders": 0,
                },
            )
            entry["spend"] += float(order["total_price"] or 0.0)
            entry["orders"] += 1

        ranked = sorted(buyers.items(), key=lambda kv: kv[1]["spend"], reverse=True)

        return LifecycleMetrics(
            outstanding_receivables=money(receivables.sum),
            avg_delivery_days=safe_mean(delivery_days),
            avg_payment_delay_days=safe_mean(payment_delay_days),
            avg_payment_confirmation_hours=safe_mean(confirmation_hours),
            fulfillment_rate=safe_rate(fulfilled, len(orders), digits=0),
            orders_by_status=by_status,
            top_buyers=[
                TopBuyer(
                    buyer_id=buyer_id,
                    name=entry["name"],
                    total_spend=money(entry["spend"]),
                    orders=entry["orders"],
                )
                for buyer_id, entry in ranked[:TOP_BUYERS_LIMIT]
            ],
        )
