"""
Wallet Store - balance plus append-only ledger.

A transaction insert and the matching balance change commit in the same
database transaction. The UPDATE is conditional on the wallet version the
caller read, so two concurrent appends cannot both apply against the same
starting balance; the loser gets ConflictError and must re-read.
"""
from typing import Optional

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from delivery_market.core.clock import utcnow
from delivery_market.core.exceptions import ConflictError
from delivery_market.core.logging import get_logger
from delivery_market.db.change_feed import ChangeFeed, OnChange, OnError, Subscription
from delivery_market.db.models.wallet import TransactionType, Wallet, WalletTransaction
from delivery_market.domain.snapshots import TransactionSnapshot, WalletSnapshot

logger = get_logger(__name__)

WALLETS = "wallets"


class WalletStore:
    """Wallet persistence"""

    def __init__(self, db: AsyncSession, feed: Optional[ChangeFeed] = None):
        self.db = db
        self.feed = feed

    async def get(self, user_id: str) -> Optional[WalletSnapshot]:
        result = await self.db.execute(
            select(Wallet)
            .where(Wallet.user_id == user_id)
            .options(selectinload(Wallet.transactions))
            .execution_options(populate_existing=True)
        )
        wallet = result.scalar_one_or_none()
        return WalletSnapshot.from_model(wallet) if wallet else None

    async def create(self, user_id: str) -> WalletSnapshot:
        """Create an empty wallet; if another writer created it first, return theirs"""
        now = utcnow()
        self.db.add(Wallet(user_id=user_id, balance=0, version=0, created_at=now, updated_at=now))
        try:
            await self.db.commit()
        except IntegrityError:
            await self.db.rollback()
            logger.debug("Wallet already created concurrently", extra_data={"user_id": user_id})
            return await self.get(user_id)

        snapshot = await self.get(user_id)
        self._publish(snapshot)
        return snapshot

    async def get_or_create(self, user_id: str) -> WalletSnapshot:
        wallet = await self.get(user_id)
        if wallet is None:
            wallet = await self.create(user_id)
        return wallet

    def _publish(self, snapshot: WalletSnapshot) -> None:
        if self.feed is not None:
            self.feed.publish(WALLETS, snapshot)

    async def append_transaction_and_set_balance(
        self,
        user_id: str,
        transaction: WalletTransaction,
        new_balance: int,
        expected_version: int,
    ) -> WalletSnapshot:
        """
        Append `transaction` and set the balance, atomically.

        Applies only while the wallet is still at `expected_version`;
        otherwise nothing is written and ConflictError is raised.
        """
        now = utcnow()
        result = await self.db.execute(
            update(Wallet)
            .where(Wallet.user_id == user_id, Wallet.version == expected_version)
            .values(balance=new_balance, version=expected_version + 1, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            await self.db.rollback()
            raise ConflictError(
                f"Wallet {user_id} changed concurrently",
                details={"user_id": user_id, "expected_version": expected_version},
            )

        transaction.user_id = user_id
        transaction.sequence = expected_version + 1
        if transaction.timestamp is None:
            transaction.timestamp = now
        self.db.add(transaction)

        try:
            await self.db.commit()
        except IntegrityError:
            await self.db.rollback()
            raise ConflictError(
                f"Wallet {user_id} changed concurrently",
                details={"user_id": user_id, "expected_version": expected_version},
            ) from None

        snapshot = await self.get(user_id)
        self._publish(snapshot)
        return snapshot

    async def find_transactions(
        self,
        user_id: str,
        delivery_id: str,
        transaction_type: TransactionType,
    ) -> list[TransactionSnapshot]:
        result = await self.db.execute(
            select(WalletTransaction).where(
                WalletTransaction.user_id == user_id,
                WalletTransaction.delivery_id == delivery_id,
                WalletTransaction.transaction_type == transaction_type,
            )
        )
        return [TransactionSnapshot.from_model(t) for t in result.scalars().all()]

    async def history(self, user_id: str, limit: int, offset: int = 0) -> list[TransactionSnapshot]:
        """Ledger page, newest first"""
        result = await self.db.execute(
            select(WalletTransaction)
            .where(WalletTransaction.user_id == user_id)
            .order_by(WalletTransaction.sequence.desc())
            .offset(offset)
            .limit(limit)
        )
        return [TransactionSnapshot.from_model(t) for t in result.scalars().all()]

    async def subscribe_wallet(
        self,
        user_id: str,
        on_change: OnChange,
        on_error: Optional[OnError] = None,
    ) -> Subscription:
        if self.feed is None:
            raise RuntimeError("WalletStore was created without a change feed")

        subscription = self.feed.register(
            WALLETS,
            lambda w: w.user_id == user_id,
            key_of=lambda w: w.user_id,
            on_change=on_change,
            on_error=on_error,
        )
        try:
            wallet = await self.get(user_id)
        except Exception as e:
            logger.error(
                "Initial load for subscription failed",
                extra_data={"collection": WALLETS, "user_id": user_id, "error": str(e)},
                exc_info=True,
            )
            subscription.fail(e)
            return subscription

        subscription.start([wallet] if wallet else [])
        return subscription
