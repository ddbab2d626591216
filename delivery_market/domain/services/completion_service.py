"""
Completion Service - in_transit → delivered, then exactly one wallet credit

advance() does not touch the wallet. This service is the
integrating caller: it performs the final transition and, only when that
transition succeeded, credits the bound driver once with the delivery fee.
Both steps run under the caller-side timeout; a timeout is surfaced as-is
so the caller re-checks the delivery and the ledger before retrying.
"""
from dataclasses import dataclass
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from delivery_market.core.exceptions import InvalidTransitionError
from delivery_market.core.logging import get_logger
from delivery_market.core.timeouts import run_with_timeout
from delivery_market.db.change_feed import ChangeFeed
from delivery_market.db.models.delivery import DeliveryStatus, PaymentType
from delivery_market.db.models.wallet import TransactionType
from delivery_market.domain.services.delivery_service import DeliveryService
from delivery_market.domain.services.event_service import EventPublisher
from delivery_market.domain.services.wallet_service import WalletService
from delivery_market.domain.snapshots import Coordinate, DeliverySnapshot

logger = get_logger(__name__)


@dataclass(frozen=True)
class CompletionResult:
    delivery: DeliverySnapshot
    credited_amount: int
    credit_kind: TransactionType
    balance: int


def credit_kind_for(payment_type: PaymentType) -> TransactionType:
    if payment_type == PaymentType.CASH_ON_DELIVERY:
        return TransactionType.COD_SETTLEMENT
    return TransactionType.EARNING


class DeliveryCompletionService:
    """Marks a delivery delivered and pays the driver"""

    def __init__(
        self,
        db: AsyncSession,
        feed: Optional[ChangeFeed] = None,
        events: Optional[EventPublisher] = None,
    ):
        self.deliveries = DeliveryService(db, feed, events)
        self.wallets = WalletService(db, feed)

    async def complete(
        self,
        delivery_id: str,
        driver_id: str,
        location: Optional[Coordinate] = None,
    ) -> CompletionResult:
        current = await self.deliveries.require_delivery(delivery_id)
        if current.status != DeliveryStatus.IN_TRANSIT:
            raise InvalidTransitionError(
                delivery_id,
                current.status.value,
                DeliveryStatus.DELIVERED.value,
            )

        delivered = await run_with_timeout(
            self.deliveries.advance(delivery_id, driver_id, location, from_status=DeliveryStatus.IN_TRANSIT),
            "advance_delivery",
        )

        # המעבר ל-delivered הצליח בקריאה הזו בלבד - זיכוי יחיד
        kind = credit_kind_for(delivered.payment_type)
        driver_id = delivered.driver_id
        balance = await run_with_timeout(
            self.wallets.credit(driver_id, delivered.fee, delivery_id, kind),
            "wallet_credit",
        )

        logger.info(
            "משלוח הושלם והנהג זוכה",
            extra_data={
                "delivery_id": delivery_id,
                "driver_id": driver_id,
                "fee": delivered.fee,
                "kind": kind.value,
            },
        )
        return CompletionResult(
            delivery=delivered,
            credited_amount=delivered.fee,
            credit_kind=kind,
            balance=balance,
        )

    async def advance(
        self,
        delivery_id: str,
        driver_id: str,
        location: Optional[Coordinate] = None,
    ) -> DeliverySnapshot:
        """
        One step forward for request handlers.

        Steps before in_transit are plain DeliveryService.advance calls,
        pinned to the status read here. The last step goes through
        complete(), so no handler can reach delivered without the credit.
        """
        current = await self.deliveries.require_delivery(delivery_id)
        if current.status == DeliveryStatus.IN_TRANSIT:
            result = await self.complete(delivery_id, driver_id, location)
            return result.delivery

        return await run_with_timeout(
            self.deliveries.advance(delivery_id, driver_id, location, from_status=current.status),
            "advance_delivery",
        )
