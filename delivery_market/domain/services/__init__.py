"""
Domain Services
"""
from delivery_market.domain.services.analytics_service import AnalyticsService
from delivery_market.domain.services.claim_service import ClaimService
from delivery_market.domain.services.completion_service import DeliveryCompletionService
from delivery_market.domain.services.delivery_service import DeliveryService
from delivery_market.domain.services.event_service import EventPublisher
from delivery_market.domain.services.wallet_service import WalletService

__all__ = [
    "AnalyticsService",
    "ClaimService",
    "DeliveryCompletionService",
    "DeliveryService",
    "EventPublisher",
    "WalletService",
]
