"""
Detached, read-only views of stored documents.

Stores hand these out instead of live ORM rows so that callers and feed
subscribers never hold objects bound to a database session. Role-specific
data is nested (driver assignment, proof, feedback) instead of being a
row of optional columns.
"""
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict

from delivery_market.db.models.delivery import (
    Delivery,
    DeliveryStatus,
    FeedbackAuthor,
    PaymentType,
    ProofType,
)
from delivery_market.db.models.wallet import CREDIT_TYPES, TransactionType, Wallet, WalletTransaction


class _Snapshot(BaseModel):
    model_config = ConfigDict(frozen=True)


class Coordinate(_Snapshot):
    lat: float
    lng: float


class ItemDetails(_Snapshot):
    name: str
    size: str
    weight_kg: float
    fragile: bool


class DriverAssignment(_Snapshot):
    driver_id: str
    name: str
    phone: Optional[str] = None


class TrackingPoint(_Snapshot):
    status: DeliveryStatus
    timestamp: datetime
    location: Optional[Coordinate] = None


class ProofSnapshot(_Snapshot):
    proof_type: ProofType
    payload: str
    uploaded_by: str
    timestamp: datetime


class FeedbackSnapshot(_Snapshot):
    rating: int
    comment: str
    given_by: FeedbackAuthor
    timestamp: datetime


def _coordinate(lat: Optional[float], lng: Optional[float]) -> Optional[Coordinate]:
    if lat is None or lng is None:
        return None
    return Coordinate(lat=lat, lng=lng)


class DeliverySnapshot(_Snapshot):
    id: str
    seller_id: str
    seller_name: str
    driver: Optional[DriverAssignment] = None
    pickup_address: str
    dropoff_address: str
    current_location: Optional[Coordinate] = None
    item: ItemDetails
    payment_type: PaymentType
    fee: int
    status: DeliveryStatus
    tracking_history: tuple[TrackingPoint, ...]
    proof_of_delivery: Optional[ProofSnapshot] = None
    feedback: Optional[FeedbackSnapshot] = None
    created_at: datetime
    updated_at: datetime

    @property
    def driver_id(self) -> Optional[str]:
        return self.driver.driver_id if self.driver else None

    @property
    def delivered_at(self) -> Optional[datetime]:
        for point in reversed(self.tracking_history):
            if point.status == DeliveryStatus.DELIVERED:
                return point.timestamp
        return None

    @classmethod
    def from_model(cls, delivery: Delivery) -> "DeliverySnapshot":
        driver = None
        if delivery.driver_id:
            driver = DriverAssignment(
                driver_id=delivery.driver_id,
                name=delivery.driver_name or "",
                phone=delivery.driver_phone,
            )

        proof = None
        if delivery.proof_of_delivery is not None:
            p = delivery.proof_of_delivery
            proof = ProofSnapshot(
                proof_type=p.proof_type,
                payload=p.payload,
                uploaded_by=p.uploaded_by,
                timestamp=p.timestamp,
            )

        feedback = None
        if delivery.feedback is not None:
            f = delivery.feedback
            feedback = FeedbackSnapshot(
                rating=f.rating,
                comment=f.comment,
                given_by=f.given_by,
                timestamp=f.timestamp,
            )

        return cls(
            id=delivery.id,
            seller_id=delivery.seller_id,
            seller_name=delivery.seller_name,
            driver=driver,
            pickup_address=delivery.pickup_address,
            dropoff_address=delivery.dropoff_address,
            current_location=_coordinate(delivery.current_lat, delivery.current_lng),
            item=ItemDetails(
                name=delivery.item_name,
                size=delivery.item_size,
                weight_kg=delivery.item_weight_kg,
                fragile=delivery.item_fragile,
            ),
            payment_type=delivery.payment_type,
            fee=delivery.fee,
            status=delivery.status,
            tracking_history=tuple(
                TrackingPoint(
                    status=entry.status,
                    timestamp=entry.timestamp,
                    location=_coordinate(entry.lat, entry.lng),
                )
                for entry in delivery.tracking_history
            ),
            proof_of_delivery=proof,
            feedback=feedback,
            created_at=delivery.created_at,
            updated_at=delivery.updated_at,
        )


class TransactionSnapshot(_Snapshot):
    id: str
    sequence: int
    transaction_type: TransactionType
    amount: int
    description: str
    delivery_id: Optional[str] = None
    timestamp: datetime

    @property
    def signed_amount(self) -> int:
        if self.transaction_type in CREDIT_TYPES:
            return self.amount
        return -self.amount

    @classmethod
    def from_model(cls, txn: WalletTransaction) -> "TransactionSnapshot":
        return cls(
            id=txn.id,
            sequence=txn.sequence,
            transaction_type=txn.transaction_type,
            amount=txn.amount,
            description=txn.description,
            delivery_id=txn.delivery_id,
            timestamp=txn.timestamp,
        )


class WalletSnapshot(_Snapshot):
    user_id: str
    balance: int
    version: int
    # oldest first, as stored
    transactions: tuple[TransactionSnapshot, ...]
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_model(cls, wallet: Wallet) -> "WalletSnapshot":
        return cls(
            user_id=wallet.user_id,
            balance=wallet.balance,
            version=wallet.version,
            transactions=tuple(TransactionSnapshot.from_model(t) for t in wallet.transactions),
            created_at=wallet.created_at,
            updated_at=wallet.updated_at,
        )
