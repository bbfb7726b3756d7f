"""
Admin / observability endpoints
===============================

GET /api/v1/admin/subscribers -- live tracking connections by role
GET /api/v1/admin/health      -- simple health check
"""

from fastapi import APIRouter, Depends, Request

from src.api.dependencies import get_registry
from src.api.middleware import limiter
from src.api.schemas import HealthResponse, SubscriberStats
from src.config import settings
from src.realtime.broadcaster import SubscriberRegistry

router = APIRouter(prefix="/admin", tags=["admin"])


@router.get(
    "/subscribers",
    response_model=SubscriberStats,
    summary="Connected tracking subscribers",
)
@limiter.limit(settings.rate_limit)
async def subscribers(
    request: Request,
    registry: SubscriberRegistry = Depends(get_registry),
):
    return SubscriberStats(**registry.stats())


@router.get("/health", response_model=HealthResponse, summary="Health check")
async def health():
    return HealthResponse()
