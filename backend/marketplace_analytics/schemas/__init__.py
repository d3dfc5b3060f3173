from marketplace_analytics.schemas.analytics import (
    BuyerKPIs,
    BuyerOverview,
    BuyerTrends,
    CategoryRevenue,
    CategorySpend,
    FunnelStage,
    LifecycleMetrics,
    RegionShare,
    RfqFunnel,
    SellerKPIs,
    SellerOverview,
    SellerTrends,
    SupplierPerformance,
    SupplierSpend,
    TimelinePoint,
    TopBuyer,
    TopProduct,
)

__all__ = [
    "BuyerKPIs",
    "BuyerOverview",
    "BuyerTrends",
    "CategoryRevenue",
    "CategorySpend",
    "FunnelStage",
    "LifecycleMetrics",
    "RegionShare",
    "RfqFunnel",
    "SellerKPIs",
    "SellerOverview",
    "SellerTrends",
    "SupplierPerformance",
    "SupplierSpend",
    "TimelinePoint",
    "TopBuyer",
    "TopProduct",
]
