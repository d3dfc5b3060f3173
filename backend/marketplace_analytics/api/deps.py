from fastapi import Depends

from marketplace_analytics.config import settings
from marketplace_analytics.database import SessionLocal
from marketplace_analytics.services.analytics_store import SqlAlchemyAnalyticsStore
from marketplace_analytics.services.buyer_analytics import BuyerAnalyticsService
from marketplace_analytics.services.seller_analytics import SellerAnalyticsService


def get_analytics_store() -> SqlAlchemyAnalyticsStore:
    """Store bound to the application's session factory; tests override this."""
    return SqlAlchemyAnalyticsStore(SessionLocal)


_STORE_DEP = Depends(get_analytics_store)


def get_buyer_analytics(store: SqlAlchemyAnalyticsStore = _STORE_DEP) -> BuyerAnalyticsService:
    return BuyerAnalyticsService(store, config=settings)


def get_seller_analytics(store: SqlAlchemyAnalyticsStore = _STORE_DEP) -> SellerAnalyticsService:
    return SellerAnalyticsService(store, config=settings)
