"""
Wallet Service - Driver balance and append-only ledger

Every balance change is one ledger append committed together with the new
balance, conditional on the wallet version that was read. On a version
conflict the append is retried against a fresh read, up to
WALLET_WRITE_RETRIES times.

Crediting the same delivery twice is NOT rejected unless
WALLET_REJECT_DUPLICATE_CREDITS is enabled: the caller that observed the
transition to delivered is responsible for crediting exactly once.
"""
from dataclasses import dataclass
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from delivery_market.core.config import settings
from delivery_market.core.exceptions import (
    ConflictError,
    DuplicateCreditError,
    InsufficientFundsError,
    ValidationError,
)
from delivery_market.core.logging import get_logger, log_async_operation
from delivery_market.core.validation import TextSanitizer, require_text
from delivery_market.db.change_feed import ChangeFeed, OnChange, OnError, Subscription
from delivery_market.db.models.wallet import CREDIT_TYPES, TransactionType, WalletTransaction
from delivery_market.db.wallet_store import WalletStore
from delivery_market.domain.snapshots import TransactionSnapshot, WalletSnapshot

logger = get_logger(__name__)

# סוגי זיכוי שמותרים ב-credit(); הפקדה עוברת דרך deposit()
DELIVERY_CREDIT_TYPES = frozenset({TransactionType.EARNING, TransactionType.COD_SETTLEMENT})


def credit_description(delivery_id: str, kind: TransactionType) -> str:
    short_id = delivery_id[:8]
    if kind == TransactionType.COD_SETTLEMENT:
        return f"COD Collection - Delivery #{short_id}"
    return f"Delivery Fee - Delivery #{short_id}"


def _require_amount(amount: int) -> int:
    if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
        raise ValidationError("amount must be a positive integer", field="amount")
    return amount


@dataclass(frozen=True)
class EarningsSummary:
    total: int
    cod_collections: int
    prepaid_earnings: int
    deposits: int
    withdrawals: int


@dataclass(frozen=True)
class LedgerAudit:
    user_id: str
    stored_balance: int
    computed_balance: int
    transaction_count: int
    version: int

    @property
    def consistent(self) -> bool:
        return self.stored_balance == self.computed_balance and self.version == self.transaction_count


class WalletService:
    """Service for managing driver wallets"""

    def __init__(self, db: AsyncSession, feed: Optional[ChangeFeed] = None):
        self.db = db
        self.store = WalletStore(db, feed)

    async def _append(
        self,
        user_id: str,
        transaction_type: TransactionType,
        amount: int,
        description: str,
        delivery_id: Optional[str] = None,
    ) -> WalletSnapshot:
        is_credit = transaction_type in CREDIT_TYPES
        attempts = settings.WALLET_WRITE_RETRIES

        for attempt in range(1, attempts + 1):
            if is_credit:
                wallet = await self.store.get_or_create(user_id)
            else:
                wallet = await self.store.get(user_id)
                balance = wallet.balance if wallet else 0
                if wallet is None or amount > balance:
                    raise InsufficientFundsError(user_id, balance, amount)

            if (
                delivery_id
                and is_credit
                and settings.WALLET_REJECT_DUPLICATE_CREDITS
                and await self.store.find_transactions(user_id, delivery_id, transaction_type)
            ):
                raise DuplicateCreditError(user_id, delivery_id, transaction_type.value)

            signed = amount if is_credit else -amount
            transaction = WalletTransaction(
                transaction_type=transaction_type,
                amount=amount,
                description=description,
                delivery_id=delivery_id,
            )
            try:
                return await self.store.append_transaction_and_set_balance(
                    user_id,
                    transaction,
                    wallet.balance + signed,
                    wallet.version,
                )
            except ConflictError:
                logger.warning(
                    "התנגשות בכתיבה לארנק - מנסה שוב",
                    extra_data={
                        "user_id": user_id,
                        "attempt": attempt,
                        "max_attempts": attempts,
                        "transaction_type": transaction_type.value,
                    },
                )
                if attempt == attempts:
                    raise

    @log_async_operation("wallet_credit")
    async def credit(
        self,
        user_id: str,
        amount: int,
        related_delivery_id: str,
        kind: TransactionType,
    ) -> int:
        """
        Credit a driver for a delivery; creates the wallet if absent.

        Returns the new balance.
        """
        user_id = require_text(user_id, "user_id", max_length=128)
        _require_amount(amount)
        related_delivery_id = require_text(related_delivery_id, "related_delivery_id", max_length=32)
        try:
            kind = TransactionType(kind)
        except ValueError:
            raise ValidationError(f"Unknown credit kind: {kind}", field="kind") from None
        if kind not in DELIVERY_CREDIT_TYPES:
            raise ValidationError("kind must be earning or cod_settlement", field="kind")

        wallet = await self._append(
            user_id,
            kind,
            amount,
            credit_description(related_delivery_id, kind),
            delivery_id=related_delivery_id,
        )
        logger.info(
            "ארנק זוכה",
            extra_data={
                "user_id": user_id,
                "delivery_id": related_delivery_id,
                "kind": kind.value,
                "amount": amount,
                "balance": wallet.balance,
            },
        )
        return wallet.balance

    @log_async_operation("wallet_deposit")
    async def deposit(self, user_id: str, amount: int, description: str = "Deposit") -> int:
        user_id = require_text(user_id, "user_id", max_length=128)
        _require_amount(amount)
        wallet = await self._append(
            user_id,
            TransactionType.DEPOSIT,
            amount,
            TextSanitizer.sanitize(description, max_length=500) or "Deposit",
        )
        logger.info(
            "הפקדה לארנק",
            extra_data={"user_id": user_id, "amount": amount, "balance": wallet.balance},
        )
        return wallet.balance

    @log_async_operation("wallet_debit")
    async def debit(self, user_id: str, amount: int, description: str = "Withdrawal") -> int:
        """Withdraw `amount`; raises InsufficientFundsError if it exceeds the balance"""
        user_id = require_text(user_id, "user_id", max_length=128)
        _require_amount(amount)
        wallet = await self._append(
            user_id,
            TransactionType.WITHDRAWAL,
            amount,
            TextSanitizer.sanitize(description, max_length=500) or "Withdrawal",
        )
        logger.info(
            "משיכה מהארנק",
            extra_data={"user_id": user_id, "amount": amount, "balance": wallet.balance},
        )
        return wallet.balance

    withdraw = debit

    async def get_balance(self, user_id: str) -> int:
        """קבלת יתרה נוכחית - 0 אם אין ארנק, בלי ליצור אותו"""
        wallet = await self.store.get(user_id)
        return wallet.balance if wallet else 0

    async def get_wallet(self, user_id: str) -> Optional[WalletSnapshot]:
        return await self.store.get(user_id)

    async def get_history(
        self,
        user_id: str,
        limit: Optional[int] = None,
        offset: int = 0,
    ) -> list[TransactionSnapshot]:
        """Ledger entries, most recent first"""
        limit = settings.HISTORY_PAGE_SIZE if limit is None else limit
        if limit <= 0:
            raise ValidationError("limit must be positive", field="limit")
        if offset < 0:
            raise ValidationError("offset must not be negative", field="offset")
        return await self.store.history(user_id, limit=limit, offset=offset)

    async def earnings_summary(self, user_id: str) -> EarningsSummary:
        wallet = await self.store.get(user_id)
        totals = {t: 0 for t in TransactionType}
        for txn in (wallet.transactions if wallet else ()):
            totals[txn.transaction_type] += txn.amount

        return EarningsSummary(
            total=sum(v for t, v in totals.items() if t != TransactionType.WITHDRAWAL),
            cod_collections=totals[TransactionType.COD_SETTLEMENT],
            prepaid_earnings=totals[TransactionType.EARNING],
            deposits=totals[TransactionType.DEPOSIT],
            withdrawals=totals[TransactionType.WITHDRAWAL],
        )

    async def audit(self, user_id: str) -> LedgerAudit:
        """Recompute the balance from the ledger and compare with the stored one"""
        wallet = await self.store.get(user_id)
        if wallet is None:
            return LedgerAudit(user_id, 0, 0, 0, 0)

        audit = LedgerAudit(
            user_id=user_id,
            stored_balance=wallet.balance,
            computed_balance=sum(t.signed_amount for t in wallet.transactions),
            transaction_count=len(wallet.transactions),
            version=wallet.version,
        )
        if not audit.consistent:
            logger.error(
                "אי התאמה בין יתרת הארנק ליומן התנועות",
                extra_data={
                    "user_id": user_id,
                    "stored_balance": audit.stored_balance,
                    "computed_balance": audit.computed_balance,
                    "transaction_count": audit.transaction_count,
                    "version": audit.version,
                },
            )
        return audit

    async def subscribe_wallet(
        self,
        user_id: str,
        on_change: OnChange,
        on_error: Optional[OnError] = None,
    ) -> Subscription:
        return await self.store.subscribe_wallet(user_id, on_change, on_error)
