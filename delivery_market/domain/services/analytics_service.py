"""
Analytics Service - seller dashboard counters and driver earnings windows

Driver earnings are bucketed by when the delivery was delivered (its
delivered tracking entry), not by when it was created. Weeks start on
Sunday.
"""
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from delivery_market.core.clock import utcnow
from delivery_market.db.delivery_store import DeliveryStore, PartyRole
from delivery_market.db.models.delivery import DeliveryStatus, PaymentType


@dataclass(frozen=True)
class SellerAnalytics:
    total_deliveries: int
    total_spent: int
    cod_deliveries: int
    prepaid_deliveries: int
    completed_deliveries: int
    pending_deliveries: int
    average_rating: float


@dataclass(frozen=True)
class DriverEarnings:
    daily: int
    weekly: int
    monthly: int
    cod_earnings: int
    prepaid_earnings: int
    total_earnings: int


def period_starts(now: datetime) -> tuple[datetime, datetime, datetime]:
    """(start of day, start of week [Sunday], start of month)"""
    start_of_day = now.replace(hour=0, minute=0, second=0, microsecond=0)
    # weekday(): Monday=0 … Sunday=6
    days_since_sunday = (start_of_day.weekday() + 1) % 7
    start_of_week = start_of_day - timedelta(days=days_since_sunday)
    start_of_month = start_of_day.replace(day=1)
    return start_of_day, start_of_week, start_of_month


class AnalyticsService:
    """Read-only aggregates over deliveries"""

    def __init__(self, db: AsyncSession):
        self.store = DeliveryStore(db)

    async def seller_analytics(self, seller_id: str) -> SellerAnalytics:
        deliveries = await self.store.query_by_party(PartyRole.SELLER, seller_id)
        ratings = [d.feedback.rating for d in deliveries if d.feedback is not None]
        completed = sum(1 for d in deliveries if d.status == DeliveryStatus.DELIVERED)

        return SellerAnalytics(
            total_deliveries=len(deliveries),
            total_spent=sum(d.fee for d in deliveries),
            cod_deliveries=sum(1 for d in deliveries if d.payment_type == PaymentType.CASH_ON_DELIVERY),
            prepaid_deliveries=sum(1 for d in deliveries if d.payment_type == PaymentType.PREPAID),
            completed_deliveries=completed,
            pending_deliveries=len(deliveries) - completed,
            average_rating=sum(ratings) / len(ratings) if ratings else 0.0,
        )

    async def driver_earnings(self, driver_id: str, now: Optional[datetime] = None) -> DriverEarnings:
        now = now or utcnow()
        start_of_day, start_of_week, start_of_month = period_starts(now)

        deliveries = [
            d for d in await self.store.query_by_party(PartyRole.DRIVER, driver_id)
            if d.status == DeliveryStatus.DELIVERED
        ]

        def since(start: datetime) -> int:
            return sum(d.fee for d in deliveries if d.delivered_at and d.delivered_at >= start)

        return DriverEarnings(
            daily=since(start_of_day),
            weekly=since(start_of_week),
            monthly=since(start_of_month),
            cod_earnings=sum(d.fee for d in deliveries if d.payment_type == PaymentType.CASH_ON_DELIVERY),
            prepaid_earnings=sum(d.fee for d in deliveries if d.payment_type == PaymentType.PREPAID),
            total_earnings=sum(d.fee for d in deliveries),
        )
