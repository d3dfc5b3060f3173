from marketplace_analytics.services.analytics_store import (
    AnalyticsRetrievalError,
    AnalyticsTimeoutError,
    SqlAlchemyAnalyticsStore,
)
from marketplace_analytics.services.buyer_analytics import BuyerAnalyticsService
from marketplace_analytics.services.seller_analytics import SellerAnalyticsService

__all__ = [
    "AnalyticsRetrievalError",
    "AnalyticsTimeoutError",
    "BuyerAnalyticsService",
    "SellerAnalyticsService",
    "SqlAlchemyAnalyticsStore",
]
