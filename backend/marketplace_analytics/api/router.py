from fastapi import APIRouter

from marketplace_analytics.api.routes import analytics, health

api_router = APIRouter()
api_router.include_router(health.router)
api_router.include_router(analytics.router)
