"""
Delivery Store - persistence for delivery documents.

Every write either fully commits or fully rolls back; committed writes are
published to the change feed as DeliverySnapshot documents. State changes
go through update_conditional, an optimistic compare-and-set on the current
status: the UPDATE only matches while the row is still in the status the
caller last read.
"""
import enum
from typing import Any, Callable, Optional

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from delivery_market.core.clock import utcnow
from delivery_market.core.exceptions import AttachmentExistsError, ConflictError
from delivery_market.core.logging import get_logger
from delivery_market.db.change_feed import ChangeFeed, OnChange, OnError, Subscription
from delivery_market.db.models.delivery import (
    Delivery,
    DeliveryFeedback,
    DeliveryStatus,
    ProofOfDelivery,
    TrackingEntry,
)
from delivery_market.domain.delivery_states import ACTIVE_STATUSES
from delivery_market.domain.snapshots import DeliverySnapshot

logger = get_logger(__name__)

DELIVERIES = "deliveries"


class PartyRole(str, enum.Enum):
    SELLER = "seller"
    DRIVER = "driver"


def delivery_with_relations() -> list:
    """options לטעינת המסמך המלא: היסטוריה, הוכחת מסירה ומשוב."""
    return [
        selectinload(Delivery.tracking_history),
        selectinload(Delivery.proof_of_delivery),
        selectinload(Delivery.feedback),
    ]


def _newest_first(snapshot: DeliverySnapshot):
    return (snapshot.created_at, snapshot.id)


class DeliveryStore:
    """Delivery persistence with conditional updates and live queries"""

    def __init__(self, db: AsyncSession, feed: Optional[ChangeFeed] = None):
        self.db = db
        self.feed = feed

    # ==================== Reads ====================

    async def _select(self, *criteria) -> list[Delivery]:
        # populate_existing: a row read earlier in this session must not
        # shadow what another writer committed since
        result = await self.db.execute(
            select(Delivery)
            .where(*criteria)
            .options(*delivery_with_relations())
            .order_by(Delivery.created_at.desc(), Delivery.id.desc())
            .execution_options(populate_existing=True)
        )
        return list(result.scalars().all())

    async def get(self, delivery_id: str) -> Optional[DeliverySnapshot]:
        rows = await self._select(Delivery.id == delivery_id)
        return DeliverySnapshot.from_model(rows[0]) if rows else None

    async def query_by_status(self, status: DeliveryStatus) -> list[DeliverySnapshot]:
        """Deliveries in `status`, newest first"""
        rows = await self._select(Delivery.status == status)
        return [DeliverySnapshot.from_model(d) for d in rows]

    async def query_by_party(self, role: PartyRole, user_id: str) -> list[DeliverySnapshot]:
        """Deliveries where `user_id` is the seller or the bound driver, newest first"""
        column = Delivery.seller_id if role == PartyRole.SELLER else Delivery.driver_id
        rows = await self._select(column == user_id)
        return [DeliverySnapshot.from_model(d) for d in rows]

    async def query_active_for_driver(self, driver_id: str) -> list[DeliverySnapshot]:
        rows = await self._select(
            Delivery.driver_id == driver_id,
            Delivery.status.in_(list(ACTIVE_STATUSES)),
        )
        return [DeliverySnapshot.from_model(d) for d in rows]

    # ==================== Writes ====================

    def _publish(self, snapshot: DeliverySnapshot) -> None:
        if self.feed is not None:
            self.feed.publish(DELIVERIES, snapshot)

    async def create(self, delivery: Delivery) -> DeliverySnapshot:
        """Insert a new delivery together with its initial tracking entries"""
        return (await self.create_many([delivery]))[0]

    async def create_many(self, deliveries: list[Delivery]) -> list[DeliverySnapshot]:
        """Insert all deliveries in one transaction; none are stored if any fails"""
        self.db.add_all(deliveries)
        try:
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise

        ids = [d.id for d in deliveries]
        snapshots = []
        for delivery_id in ids:
            snapshot = await self.get(delivery_id)
            snapshots.append(snapshot)
            self._publish(snapshot)
        return snapshots

    async def _next_sequence(self, delivery_id: str) -> int:
        result = await self.db.execute(
            select(func.coalesce(func.max(TrackingEntry.sequence), 0))
            .where(TrackingEntry.delivery_id == delivery_id)
        )
        return int(result.scalar_one()) + 1

    async def update_conditional(
        self,
        delivery_id: str,
        expected_status: DeliveryStatus,
        patch: dict[str, Any],
        tracking_entry: Optional[TrackingEntry] = None,
    ) -> DeliverySnapshot:
        """
        Apply `patch` only if the delivery is still in `expected_status`.

        The patch and the optional tracking entry commit together or not at
        all. Raises ConflictError when another writer got there first.
        """
        now = utcnow()
        result = await self.db.execute(
            update(Delivery)
            .where(Delivery.id == delivery_id, Delivery.status == expected_status)
            .values(**patch, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            await self.db.rollback()
            raise ConflictError(
                f"Delivery {delivery_id} is no longer {expected_status.value}",
                details={"delivery_id": delivery_id, "expected_status": expected_status.value},
            )

        if tracking_entry is not None:
            tracking_entry.delivery_id = delivery_id
            tracking_entry.sequence = await self._next_sequence(delivery_id)
            if tracking_entry.timestamp is None:
                tracking_entry.timestamp = now
            self.db.add(tracking_entry)

        try:
            await self.db.commit()
        except IntegrityError:
            await self.db.rollback()
            raise ConflictError(
                f"Concurrent tracking write on delivery {delivery_id}",
                details={"delivery_id": delivery_id},
            ) from None

        snapshot = await self.get(delivery_id)
        self._publish(snapshot)
        return snapshot

    async def update_location_for_driver(self, driver_id: str, lat: float, lng: float) -> list[DeliverySnapshot]:
        """Set current location on every active delivery bound to `driver_id`"""
        result = await self.db.execute(
            select(Delivery.id).where(
                Delivery.driver_id == driver_id,
                Delivery.status.in_(list(ACTIVE_STATUSES)),
            )
        )
        ids = list(result.scalars().all())
        if not ids:
            return []

        await self.db.execute(
            update(Delivery)
            .where(Delivery.id.in_(ids), Delivery.status.in_(list(ACTIVE_STATUSES)))
            .values(current_lat=lat, current_lng=lng, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        await self.db.commit()

        snapshots = []
        for delivery_id in ids:
            snapshot = await self.get(delivery_id)
            snapshots.append(snapshot)
            self._publish(snapshot)
        return snapshots

    async def _attach(self, delivery_id: str, row: Any, attachment: str) -> DeliverySnapshot:
        # delivered הוא סופי, כך שהבדיקה בשירות לא יכולה להתיישן כאן;
        # המגבלה הייחודית על delivery_id היא שמונעת כתיבה שנייה
        result = await self.db.execute(
            update(Delivery)
            .where(Delivery.id == delivery_id, Delivery.status == DeliveryStatus.DELIVERED)
            .values(updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            await self.db.rollback()
            raise ConflictError(
                f"Delivery {delivery_id} is not delivered",
                details={"delivery_id": delivery_id},
            )

        self.db.add(row)
        try:
            await self.db.commit()
        except IntegrityError:
            await self.db.rollback()
            raise AttachmentExistsError(delivery_id, attachment) from None

        snapshot = await self.get(delivery_id)
        self._publish(snapshot)
        return snapshot

    async def attach_proof(self, delivery_id: str, proof: ProofOfDelivery) -> DeliverySnapshot:
        proof.delivery_id = delivery_id
        return await self._attach(delivery_id, proof, "proof_of_delivery")

    async def attach_feedback(self, delivery_id: str, feedback: DeliveryFeedback) -> DeliverySnapshot:
        feedback.delivery_id = delivery_id
        return await self._attach(delivery_id, feedback, "feedback")

    # ==================== Live queries ====================

    async def _subscribe(
        self,
        matches: Callable[[DeliverySnapshot], bool],
        load: Callable[[], Any],
        on_change: OnChange,
        on_error: Optional[OnError],
    ) -> Subscription:
        if self.feed is None:
            raise RuntimeError("DeliveryStore was created without a change feed")

        # registration comes first so writes during the initial load are buffered
        subscription = self.feed.register(
            DELIVERIES,
            matches,
            key_of=lambda d: d.id,
            on_change=on_change,
            on_error=on_error,
            sort_key=_newest_first,
            reverse=True,
        )
        try:
            initial = await load()
        except Exception as e:
            logger.error(
                "Initial load for subscription failed",
                extra_data={"collection": DELIVERIES, "error": str(e)},
                exc_info=True,
            )
            subscription.fail(e)
            return subscription

        subscription.start(initial)
        return subscription

    async def subscribe_status(
        self,
        status: DeliveryStatus,
        on_change: OnChange,
        on_error: Optional[OnError] = None,
    ) -> Subscription:
        return await self._subscribe(
            lambda d: d.status == status,
            lambda: self.query_by_status(status),
            on_change,
            on_error,
        )

    async def subscribe_party(
        self,
        role: PartyRole,
        user_id: str,
        on_change: OnChange,
        on_error: Optional[OnError] = None,
    ) -> Subscription:
        if role == PartyRole.SELLER:
            matches = lambda d: d.seller_id == user_id  # noqa: E731
        else:
            matches = lambda d: d.driver_id == user_id  # noqa: E731
        return await self._subscribe(
            matches,
            lambda: self.query_by_party(role, user_id),
            on_change,
            on_error,
        )

    async def subscribe_delivery(
        self,
        delivery_id: str,
        on_change: OnChange,
        on_error: Optional[OnError] = None,
    ) -> Subscription:
        async def load() -> list[DeliverySnapshot]:
            snapshot = await self.get(delivery_id)
            return [snapshot] if snapshot else []

        return await self._subscribe(
            lambda d: d.id == delivery_id,
            load,
            on_change,
            on_error,
        )
