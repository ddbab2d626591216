"""
Request-scoped dependencies for the API routes.

The change feed is owned by the application (app.state.feed); services get
it explicitly instead of reaching for a module-level global.
"""
from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from delivery_market.db.change_feed import ChangeFeed
from delivery_market.db.database import get_db
from delivery_market.domain.services import (
    AnalyticsService,
    ClaimService,
    DeliveryCompletionService,
    DeliveryService,
    WalletService,
)


def get_feed(request: Request) -> ChangeFeed:
    return request.app.state.feed


def get_delivery_service(
    db: AsyncSession = Depends(get_db),
    feed: ChangeFeed = Depends(get_feed),
) -> DeliveryService:
    return DeliveryService(db, feed)


def get_claim_service(
    db: AsyncSession = Depends(get_db),
    feed: ChangeFeed = Depends(get_feed),
) -> ClaimService:
    return ClaimService(db, feed)


def get_completion_service(
    db: AsyncSession = Depends(get_db),
    feed: ChangeFeed = Depends(get_feed),
) -> DeliveryCompletionService:
    return DeliveryCompletionService(db, feed)


def get_wallet_service(
    db: AsyncSession = Depends(get_db),
    feed: ChangeFeed = Depends(get_feed),
) -> WalletService:
    return WalletService(db, feed)


def get_analytics_service(db: AsyncSession = Depends(get_db)) -> AnalyticsService:
    return AnalyticsService(db)
