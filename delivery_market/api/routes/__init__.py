"""
API Routes
"""
from fastapi import APIRouter

from delivery_market.api.routes.analytics import router as analytics_router
from delivery_market.api.routes.deliveries import router as deliveries_router
from delivery_market.api.routes.wallets import router as wallets_router

router = APIRouter()

router.include_router(deliveries_router, prefix="/deliveries", tags=["Deliveries"])
router.include_router(wallets_router, prefix="/wallets", tags=["Wallets"])
router.include_router(analytics_router, prefix="/analytics", tags=["Analytics"])
