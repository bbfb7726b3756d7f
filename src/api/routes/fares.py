"""
Fare endpoints
==============

POST /api/v1/fares/quote -- itemised price for a distance / duration
"""

from fastapi import APIRouter, Depends, Request

from src.api.dependencies import get_fare_calculator
from src.api.middleware import limiter
from src.api.schemas import FareBreakdownResponse, FareQuoteRequest
from src.config import settings
from src.domain.pricing import FareCalculator

router = APIRouter(prefix="/fares", tags=["fares"])


@router.post("/quote", response_model=FareBreakdownResponse, summary="Quote a fare")
@limiter.limit(settings.rate_limit)
async def quote(
    request: Request,
    body: FareQuoteRequest,
    fares: FareCalculator = Depends(get_fare_calculator),
):
    breakdown = fares.breakdown(
        body.distance_km,
        body.duration_min,
        service_type=body.service_type,
        deposit=body.deposit,
        rounding=body.rounding,
    )
    return FareBreakdownResponse.model_validate(breakdown)
