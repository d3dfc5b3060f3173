"""Analytics API routes.

Read-only dashboards for the two marketplace roles. Every payload is keyed in
camelCase to match the frontend analytics types.
"""

from __future__ import annotations

import asyncio
from typing import Awaitable, List, TypeVar

from fastapi import APIRouter, Depends, Query

from marketplace_analytics.api.deps import get_analytics_store, get_buyer_analytics, get_seller_analytics
from marketplace_analytics.config import settings
from marketplace_analytics.schemas.analytics import (
    BuyerKPIs,
    BuyerOverview,
    CategoryRevenue,
    CategorySpend,
    FunnelStage,
    LifecycleMetrics,
    RegionShare,
    RfqFunnel,
    SellerKPIs,
    SellerOverview,
    SupplierPerformance,
    SupplierSpend,
    TimelinePoint,
    TopProduct,
)
from marketplace_analytics.services.analytics_periods import AnalyticsPeriod, DEFAULT_PERIOD, resolve_period
from marketplace_analytics.services.analytics_store import AnalyticsTimeoutError, SqlAlchemyAnalyticsStore
from marketplace_analytics.services.buyer_analytics import TOP_SUPPLIERS_LIMIT, BuyerAnalyticsService
from marketplace_analytics.services.seller_analytics import SellerAnalyticsService, empty_seller_overview

router = APIRouter(prefix="/analytics", tags=["analytics"])

T = TypeVar("T")

_buyer_dep = Depends(get_buyer_analytics)
_seller_dep = Depends(get_seller_analytics)
_store_dep = Depends(get_analytics_store)
_period_query = Query(DEFAULT_PERIOD, description="week|month|quarter|year or 7d|30d|90d|12m")


def _window(period: str | None) -> AnalyticsPeriod:
    return resolve_period(period, strict=settings.analytics_strict_periods)


async def _bounded(aw: Awaitable[T], *, operation: str) -> T:
    timeout = settings.analytics_overview_timeout_seconds
    if not timeout:
        return await aw
    try:
        return await asyncio.wait_for(aw, timeout=timeout)
    except asyncio.TimeoutError:
        raise AnalyticsTimeoutError(
            f"Analytics {operation} exceeded {timeout}s", entity="overview", operation=operation
        ) from None


# ---- Buyer ----


@router.get("/buyer/{buyer_id}/overview", response_model=BuyerOverview)
async def buyer_overview(
    buyer_id: str,
    period: str | None = _period_query,
    service: BuyerAnalyticsService = _buyer_dep,
):
    return await _bounded(
        service.get_overview(buyer_id, period, strict=settings.analytics_strict_periods),
        operation="buyer_overview",
    )


@router.get("/buyer/{buyer_id}/summary", response_model=BuyerOverview)
async def buyer_summary(
    buyer_id: str,
    period: str | None = _period_query,
    service: BuyerAnalyticsService = _buyer_dep,
):
    return await buyer_overview(buyer_id, period, service)


@router.get("/buyer/{buyer_id}/kpis", response_model=BuyerKPIs)
async def buyer_kpis(buyer_id: str, period: str | None = _period_query, service: BuyerAnalyticsService = _buyer_dep):
    return await service.get_kpis(buyer_id, _window(period))


@router.get("/buyer/{buyer_id}/spend-by-supplier", response_model=List[SupplierSpend])
async def buyer_spend_by_supplier(
    buyer_id: str,
    period: str | None = _period_query,
    service: BuyerAnalyticsService = _buyer_dep,
):
    return await service.get_spend_by_supplier(buyer_id, _window(period))


@router.get("/buyer/{buyer_id}/spend-by-category", response_model=List[CategorySpend])
async def buyer_spend_by_category(
    buyer_id: str,
    period: str | None = _period_query,
    service: BuyerAnalyticsService = _buyer_dep,
):
    return await service.get_spend_by_category(buyer_id, _window(period))


@router.get("/buyer/{buyer_id}/supplier-performance", response_model=List[SupplierPerformance])
async def buyer_supplier_performance(
    buyer_id: str,
    period: str | None = _period_query,
    limit: int = Query(TOP_SUPPLIERS_LIMIT, ge=1, le=50),
    service: BuyerAnalyticsService = _buyer_dep,
):
    return await service.get_top_suppliers(buyer_id, _window(period), limit=limit)


@router.get("/buyer/{buyer_id}/rfq-funnel", response_model=RfqFunnel)
async def buyer_rfq_funnel(
    buyer_id: str,
    period: str | None = _period_query,
    service: BuyerAnalyticsService = _buyer_dep,
):
    return await service.get_rfq_funnel(buyer_id, _window(period))


@router.get("/buyer/{buyer_id}/timeline", response_model=List[TimelinePoint])
async def buyer_timeline(
    buyer_id: str,
    period: str | None = _period_query,
    service: BuyerAnalyticsService = _buyer_dep,
):
    return await service.get_timeline(buyer_id, _window(period))


# ---- Seller ----


@router.get("/seller/{seller_id}/overview", response_model=SellerOverview)
async def seller_overview(
    seller_id: str,
    period: str | None = _period_query,
    service: SellerAnalyticsService = _seller_dep,
):
    return await _bounded(
        service.get_overview(seller_id, period, strict=settings.analytics_strict_periods),
        operation="seller_overview",
    )


@router.get("/seller/{seller_id}/summary", response_model=SellerOverview)
async def seller_summary(
    seller_id: str,
    period: str | None = _period_query,
    service: SellerAnalyticsService = _seller_dep,
    store: SqlAlchemyAnalyticsStore = _store_dep,
):
    # Sellers without a profile get the zeroed dashboard rather than an error.
    dates = _window(period)
    if not await store.seller_exists(seller_id):
        return empty_seller_overview(dates.period, currency=settings.analytics_currency)
    return await seller_overview(seller_id, dates.period, service)


@router.get("/seller/{seller_id}/kpis", response_model=SellerKPIs)
async def seller_kpis(
    seller_id: str,
    period: str | None = _period_query,
    service: SellerAnalyticsService = _seller_dep,
):
    return await service.get_kpis(seller_id, _window(period))


@router.get("/seller/{seller_id}/revenue-by-category", response_model=List[CategoryRevenue])
async def seller_revenue_by_category(
    seller_id: str,
    period: str | None = _period_query,
    service: SellerAnalyticsService = _seller_dep,
):
    return await service.get_revenue_by_category(seller_id, _window(period))


@router.get("/seller/{seller_id}/top-products", response_model=List[TopProduct])
async def seller_top_products(
    seller_id: str,
    period: str | None = _period_query,
    service: SellerAnalyticsService = _seller_dep,
):
    return await service.get_top_products(seller_id, _window(period))


@router.get("/seller/{seller_id}/conversion", response_model=List[FunnelStage])
async def seller_conversion(
    seller_id: str,
    period: str | None = _period_query,
    service: SellerAnalyticsService = _seller_dep,
):
    return await service.get_conversion_funnel(seller_id, _window(period))


@router.get("/seller/{seller_id}/regions", response_model=List[RegionShare])
async def seller_regions(
    seller_id: str,
    period: str | None = _period_query,
    service: SellerAnalyticsService = _seller_dep,
):
    return await service.get_region_distribution(seller_id, _window(period))


@router.get("/seller/{seller_id}/lifecycle", response_model=LifecycleMetrics)
async def seller_lifecycle(
    seller_id: str,
    period: str | None = _period_query,
    service: SellerAnalyticsService = _seller_dep,
):
    return await service.get_lifecycle_metrics(seller_id, _window(period))
