"""
Wallet Models - Balance and immutable transaction history
"""
import enum
import uuid
from sqlalchemy import (
    Column,
    DateTime,
    Enum as SQLEnum,
    ForeignKey,
    Integer,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship

from delivery_market.db.database import Base


def generate_transaction_id() -> str:
    return f"txn_{uuid.uuid4().hex}"


class TransactionType(str, enum.Enum):
    DEPOSIT = "deposit"
    WITHDRAWAL = "withdrawal"
    COD_SETTLEMENT = "cod_settlement"
    EARNING = "earning"


# סוגים שמגדילים את היתרה; withdrawal מקטין
CREDIT_TYPES = frozenset({
    TransactionType.DEPOSIT,
    TransactionType.EARNING,
    TransactionType.COD_SETTLEMENT,
})


class Wallet(Base):
    """Current balance per user"""

    __tablename__ = "wallets"

    user_id = Column(String(128), primary_key=True)
    balance = Column(Integer, nullable=False, default=0)
    # number of ledger entries; every append is conditional on it
    version = Column(Integer, nullable=False, default=0)

    created_at = Column(DateTime, nullable=False)
    updated_at = Column(DateTime, nullable=False)

    transactions = relationship(
        "WalletTransaction",
        order_by="WalletTransaction.sequence",
        lazy="selectin",
    )


class WalletTransaction(Base):
    """Immutable ledger entry"""

    __tablename__ = "wallet_transactions"

    id = Column(String(40), primary_key=True, default=generate_transaction_id)
    user_id = Column(String(128), ForeignKey("wallets.user_id"), nullable=False, index=True)
    sequence = Column(Integer, nullable=False)

    transaction_type = Column(SQLEnum(TransactionType), nullable=False)
    amount = Column(Integer, nullable=False)  # always positive; sign comes from the type
    description = Column(String(500), nullable=False)
    delivery_id = Column(String(32), nullable=True, index=True)
    timestamp = Column(DateTime, nullable=False)

    __table_args__ = (
        UniqueConstraint("user_id", "sequence", name="uq_wallet_transaction_sequence"),
    )
