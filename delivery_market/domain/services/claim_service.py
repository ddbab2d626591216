"""
Claim Service - Atomic binding of a driver to a pending delivery

Two drivers may race for the same delivery. The claim is a single
conditional UPDATE:

1. Read the delivery and verify status is PENDING
2. UPDATE ... SET driver, status=ASSIGNED WHERE id = :id AND status = 'pending'
3. Insert the ASSIGNED tracking entry in the same transaction
4. Commit, or roll back if step 2 matched no row

Exactly one claim matches the row; every other claim gets
DeliveryAlreadyClaimedError and nothing of it is written.
"""
from dataclasses import dataclass
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from delivery_market.core.clock import utcnow
from delivery_market.core.exceptions import (
    ConflictError,
    DeliveryAlreadyClaimedError,
    DeliveryNotFoundError,
)
from delivery_market.core.logging import get_logger, log_async_operation, mask_phone
from delivery_market.core.validation import optional_text, require_text
from delivery_market.db.change_feed import ChangeFeed
from delivery_market.db.delivery_store import DeliveryStore
from delivery_market.db.models.delivery import DeliveryStatus, TrackingEntry
from delivery_market.domain.services.event_service import EventPublisher
from delivery_market.domain.snapshots import DeliverySnapshot

logger = get_logger(__name__)


@dataclass(frozen=True)
class DriverInfo:
    driver_id: str
    name: str
    phone: Optional[str] = None


class ClaimService:
    """Service for claiming pending deliveries"""

    def __init__(
        self,
        db: AsyncSession,
        feed: Optional[ChangeFeed] = None,
        events: Optional[EventPublisher] = None,
    ):
        self.db = db
        self.store = DeliveryStore(db, feed)
        self.events = events or EventPublisher()

    @log_async_operation("claim_delivery")
    async def claim(self, delivery_id: str, driver: DriverInfo) -> DeliverySnapshot:
        """
        Bind `driver` to a pending delivery and move it to ASSIGNED.

        Raises DeliveryAlreadyClaimedError (a ConflictError) when the
        delivery is no longer pending, including when another driver won
        the race between our read and our write.
        """
        driver_id = require_text(driver.driver_id, "driver_id", max_length=128)
        driver_name = require_text(driver.name, "driver_name", max_length=200)
        driver_phone = optional_text(driver.phone, max_length=32)

        delivery = await self.store.get(delivery_id)
        if delivery is None:
            raise DeliveryNotFoundError(delivery_id)

        if delivery.status != DeliveryStatus.PENDING:
            raise DeliveryAlreadyClaimedError(delivery_id, delivery.status.value)

        try:
            claimed = await self.store.update_conditional(
                delivery_id,
                DeliveryStatus.PENDING,
                {
                    "driver_id": driver_id,
                    "driver_name": driver_name,
                    "driver_phone": driver_phone,
                    "status": DeliveryStatus.ASSIGNED,
                },
                TrackingEntry(status=DeliveryStatus.ASSIGNED, timestamp=utcnow()),
            )
        except ConflictError:
            # נהג אחר תפס את המשלוח בין הקריאה לכתיבה
            current = await self.store.get(delivery_id)
            current_status = current.status.value if current else "unknown"
            logger.warning(
                "תפיסת משלוח נכשלה - נתפס במקביל",
                extra_data={
                    "delivery_id": delivery_id,
                    "driver_id": driver_id,
                    "current_status": current_status,
                    "winner_driver_id": current.driver_id if current else None,
                },
            )
            raise DeliveryAlreadyClaimedError(delivery_id, current_status) from None

        logger.info(
            "משלוח נתפס",
            extra_data={
                "delivery_id": delivery_id,
                "driver_id": driver_id,
                "driver_phone": mask_phone(driver_phone),
            },
        )
        await self.events.delivery_claimed(delivery_id, driver_id)
        return claimed
