from __future__ import annotations

from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

PeriodName = Literal["week", "month", "quarter", "year"]


class AnalyticsModel(BaseModel):
    # Dashboard clients consume camelCase keys.
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ---- Buyer ----


class BuyerTrends(AnalyticsModel):
    spend: float = 0.0
    rfqs: float = 0.0
    response_time: float = 0.0
    savings: float = 0.0


class BuyerKPIs(AnalyticsModel):
    total_spend: float = 0.0
    rfqs_sent: int = 0
    avg_response_time: float = 0.0
    savings_vs_market: float = 0.0
    currency: str = "SAR"
    trends: BuyerTrends = Field(default_factory=BuyerTrends)


class SupplierSpend(AnalyticsModel):
    category: str
    supplier_id: Optional[str] = None
    amount: float
    percentage: float
    order_count: int
    avg_order_value: float


class CategorySpend(AnalyticsModel):
    category: str
    amount: float
    percentage: float


class SupplierPerformance(AnalyticsModel):
    supplier_id: str
    supplier_name: str
    country: Optional[str] = None
    total_orders: int
    total_spend: float
    on_time_delivery_rate: int
    quality_score: float
    response_time: float
    rfq_win_rate: float


class RfqFunnel(AnalyticsModel):
    rfqs_sent: int = 0
    quotes_received: int = 0
    orders_placed: int = 0
    rfq_to_quote_rate: float = 0.0
    quote_to_order_rate: float = 0.0
    overall_conversion_rate: float = 0.0


class TimelinePoint(AnalyticsModel):
    date: str
    spend: float
    orders: int
    rfqs: int


class BuyerOverview(AnalyticsModel):
    kpis: BuyerKPIs
    spend_by_category: List[SupplierSpend] = Field(default_factory=list)
    top_suppliers: List[SupplierPerformance] = Field(default_factory=list)
    rfq_funnel: RfqFunnel = Field(default_factory=RfqFunnel)
    timeline: List[TimelinePoint] = Field(default_factory=list)
    period: PeriodName


# ---- Seller ----


class SellerTrends(AnalyticsModel):
    revenue: float = 0.0
    orders: float = 0.0
    buyers: float = 0.0
    win_rate: float = 0.0


class SellerKPIs(AnalyticsModel):
    revenue: float = 0.0
    orders: int = 0
    new_buyers: int = 0
    win_rate: int = 0
    currency: str = "SAR"
    trends: SellerTrends = Field(default_factory=SellerTrends)


class CategoryRevenue(AnalyticsModel):
    category: str
    amount: float
    percentage: float


class TopProduct(AnalyticsModel):
    item_id: str
    name: str
    sku: str
    revenue: float
    orders: int


class FunnelStage(AnalyticsModel):
    stage: str
    value: int
    percent: int


class RegionShare(AnalyticsModel):
    region: str
    percentage: int
    orders: int


class TopBuyer(AnalyticsModel):
    buyer_id: str
    name: str
    total_spend: float
    orders: int


class LifecycleMetrics(AnalyticsModel):
    outstanding_receivables: float = 0.0
    avg_delivery_days: float = 0.0
    avg_payment_delay_days: float = 0.0
    avg_payment_confirmation_hours: float = 0.0
    fulfillment_rate: int = 0
    orders_by_status: Dict[str, int] = Field(default_factory=dict)
    top_buyers: List[TopBuyer] = Field(default_factory=list)


class SellerOverview(AnalyticsModel):
    kpis: SellerKPIs
    revenue_by_category: List[CategoryRevenue] = Field(default_factory=list)
    top_products: List[TopProduct] = Field(default_factory=list)
    conversion_funnel: List[FunnelStage] = Field(default_factory=list)
    region_distribution: List[RegionShare] = Field(default_factory=list)
    lifecycle_metrics: LifecycleMetrics = Field(default_factory=LifecycleMetrics)
    period: PeriodName
