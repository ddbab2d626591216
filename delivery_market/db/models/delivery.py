"""
Delivery Model - Transport jobs and their tracking history
"""
import enum
import uuid
from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    Enum as SQLEnum,
    Float,
    ForeignKey,
    Integer,
    SmallInteger,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship

from delivery_market.db.database import Base


def generate_delivery_id() -> str:
    """Opaque delivery identifier"""
    return uuid.uuid4().hex


class DeliveryStatus(str, enum.Enum):
    PENDING = "pending"
    ASSIGNED = "assigned"
    PICKED_UP = "picked_up"
    IN_TRANSIT = "in_transit"
    DELIVERED = "delivered"


class PaymentType(str, enum.Enum):
    PREPAID = "prepaid"
    CASH_ON_DELIVERY = "cash_on_delivery"


class ProofType(str, enum.Enum):
    SIGNATURE = "signature"
    PHOTO = "photo"


class FeedbackAuthor(str, enum.Enum):
    CUSTOMER = "customer"
    SELLER = "seller"


class Delivery(Base):
    """Delivery record"""

    __tablename__ = "deliveries"

    id = Column(String(32), primary_key=True, default=generate_delivery_id)

    # Seller info (immutable)
    seller_id = Column(String(128), nullable=False, index=True)
    seller_name = Column(String(200), nullable=False)

    # Driver info - נקבע רק בתפיסה
    driver_id = Column(String(128), nullable=True, index=True)
    driver_name = Column(String(200), nullable=True)
    driver_phone = Column(String(32), nullable=True)

    # Route
    pickup_address = Column(String(500), nullable=False)
    dropoff_address = Column(String(500), nullable=False)
    current_lat = Column(Float, nullable=True)
    current_lng = Column(Float, nullable=True)

    # Item
    item_name = Column(String(200), nullable=False)
    item_size = Column(String(50), nullable=False, default="small")
    item_weight_kg = Column(Float, nullable=False)
    item_fragile = Column(Boolean, nullable=False, default=False)

    # Commercial - fee is fixed at creation
    payment_type = Column(SQLEnum(PaymentType), nullable=False)
    fee = Column(Integer, nullable=False)

    status = Column(SQLEnum(DeliveryStatus), nullable=False, default=DeliveryStatus.PENDING, index=True)

    created_at = Column(DateTime, nullable=False)
    updated_at = Column(DateTime, nullable=False)

    tracking_history = relationship(
        "TrackingEntry",
        order_by="TrackingEntry.sequence",
        lazy="selectin",
    )
    proof_of_delivery = relationship("ProofOfDelivery", uselist=False, lazy="selectin")
    feedback = relationship("DeliveryFeedback", uselist=False, lazy="selectin")


class TrackingEntry(Base):
    """One status transition; append-only"""

    __tablename__ = "tracking_entries"

    id = Column(Integer, primary_key=True, autoincrement=True)
    delivery_id = Column(String(32), ForeignKey("deliveries.id"), nullable=False, index=True)
    sequence = Column(Integer, nullable=False)
    status = Column(SQLEnum(DeliveryStatus), nullable=False)
    timestamp = Column(DateTime, nullable=False)
    lat = Column(Float, nullable=True)
    lng = Column(Float, nullable=True)

    # שתי כתיבות מקבילות לאותו מיקום בהיסטוריה - רק אחת תצליח
    __table_args__ = (
        UniqueConstraint("delivery_id", "sequence", name="uq_tracking_delivery_sequence"),
    )


class ProofOfDelivery(Base):
    """Write-once proof attached to a delivered delivery"""

    __tablename__ = "proofs_of_delivery"

    id = Column(Integer, primary_key=True, autoincrement=True)
    delivery_id = Column(String(32), ForeignKey("deliveries.id"), nullable=False, unique=True)
    proof_type = Column(SQLEnum(ProofType), nullable=False)
    payload = Column(Text, nullable=False)  # encoded image / data URL
    uploaded_by = Column(String(128), nullable=False)
    timestamp = Column(DateTime, nullable=False)


class DeliveryFeedback(Base):
    """Write-once rating attached to a delivered delivery"""

    __tablename__ = "delivery_feedback"

    id = Column(Integer, primary_key=True, autoincrement=True)
    delivery_id = Column(String(32), ForeignKey("deliveries.id"), nullable=False, unique=True)
    rating = Column(SmallInteger, nullable=False)
    comment = Column(Text, nullable=False, default="")
    given_by = Column(SQLEnum(FeedbackAuthor), nullable=False)
    timestamp = Column(DateTime, nullable=False)
