"""
Analytics API Routes
"""
from fastapi import APIRouter, Depends
from pydantic import BaseModel

from delivery_market.api.dependencies import get_analytics_service
from delivery_market.domain.services.analytics_service import AnalyticsService

router = APIRouter()


class SellerAnalyticsResponse(BaseModel):
    seller_id: str
    total_deliveries: int
    total_spent: int
    cod_deliveries: int
    prepaid_deliveries: int
    completed_deliveries: int
    pending_deliveries: int
    average_rating: float


class DriverEarningsResponse(BaseModel):
    driver_id: str
    daily: int
    weekly: int
    monthly: int
    cod_earnings: int
    prepaid_earnings: int
    total_earnings: int


@router.get(
    "/sellers/{seller_id}",
    response_model=SellerAnalyticsResponse,
    summary="Seller dashboard counters",
)
async def seller_analytics(
    seller_id: str,
    service: AnalyticsService = Depends(get_analytics_service),
) -> SellerAnalyticsResponse:
    analytics = await service.seller_analytics(seller_id)
    return SellerAnalyticsResponse(seller_id=seller_id, **analytics.__dict__)


@router.get(
    "/drivers/{driver_id}",
    response_model=DriverEarningsResponse,
    summary="Driver earnings today, this week (from Sunday) and this month",
)
async def driver_earnings(
    driver_id: str,
    service: AnalyticsService = Depends(get_analytics_service),
) -> DriverEarningsResponse:
    earnings = await service.driver_earnings(driver_id)
    return DriverEarningsResponse(driver_id=driver_id, **earnings.__dict__)
