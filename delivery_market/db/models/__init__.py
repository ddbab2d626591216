"""
Database Models
"""
from delivery_market.db.models.delivery import (
    Delivery,
    DeliveryFeedback,
    DeliveryStatus,
    FeedbackAuthor,
    PaymentType,
    ProofOfDelivery,
    ProofType,
    TrackingEntry,
)
from delivery_market.db.models.wallet import TransactionType, Wallet, WalletTransaction

__all__ = [
    "Delivery",
    "DeliveryFeedback",
    "DeliveryStatus",
    "FeedbackAuthor",
    "PaymentType",
    "ProofOfDelivery",
    "ProofType",
    "TrackingEntry",
    "TransactionType",
    "Wallet",
    "WalletTransaction",
]
