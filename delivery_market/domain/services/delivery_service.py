"""
Delivery Service - Delivery creation and the forward-only status lifecycle

Claiming a pending delivery lives in ClaimService; everything after the
claim (advance, proof, feedback, driver location) lives here.
"""
from dataclasses import dataclass, field
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from delivery_market.core.clock import utcnow
from delivery_market.core.exceptions import (
    AttachmentExistsError,
    AuthorizationError,
    ConflictError,
    DeliveryNotFoundError,
    InvalidTransitionError,
    ValidationError,
)
from delivery_market.core.logging import get_logger, log_async_operation
from delivery_market.core.validation import CoordinateValidator, TextSanitizer, require_text
from delivery_market.db.change_feed import ChangeFeed, OnChange, OnError, Subscription
from delivery_market.db.delivery_store import DeliveryStore, PartyRole
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
from delivery_market.domain.delivery_states import next_status
from delivery_market.domain.services.event_service import EventPublisher
from delivery_market.domain.services.fee_calculator import compute_fee, estimate_distance_km
from delivery_market.domain.snapshots import Coordinate, DeliverySnapshot

logger = get_logger(__name__)

MAX_PROOF_PAYLOAD_LENGTH = 5_000_000
MAX_FEEDBACK_COMMENT_LENGTH = 1000


@dataclass(frozen=True)
class SellerInfo:
    seller_id: str
    name: str


@dataclass(frozen=True)
class RouteInfo:
    pickup_address: str
    dropoff_address: str
    pickup_location: Optional[Coordinate] = None
    dropoff_location: Optional[Coordinate] = None
    # מרחק מפורש גובר על הערכה מקואורדינטות
    distance_km: Optional[float] = None


@dataclass(frozen=True)
class ItemInfo:
    name: str
    weight_kg: float
    size: str = "small"
    fragile: bool = False


@dataclass(frozen=True)
class DeliveryOrder:
    """One row of a bulk create"""
    route: RouteInfo
    item: ItemInfo
    payment_type: PaymentType = field(default=PaymentType.PREPAID)


class DeliveryService:
    """Service for managing deliveries"""

    def __init__(
        self,
        db: AsyncSession,
        feed: Optional[ChangeFeed] = None,
        events: Optional[EventPublisher] = None,
    ):
        self.db = db
        self.store = DeliveryStore(db, feed)
        self.events = events or EventPublisher()

    # ==================== Creation ====================

    def _build(
        self,
        seller: SellerInfo,
        route: RouteInfo,
        item: ItemInfo,
        payment_type: PaymentType,
    ) -> Delivery:
        seller_id = require_text(seller.seller_id, "seller_id", max_length=128)
        seller_name = require_text(seller.name, "seller_name", max_length=200)
        pickup_address = require_text(route.pickup_address, "pickup_address")
        dropoff_address = require_text(route.dropoff_address, "dropoff_address")
        item_name = require_text(item.name, "item_name", max_length=200)

        try:
            payment_type = PaymentType(payment_type)
        except ValueError:
            raise ValidationError(f"Unknown payment type: {payment_type}", field="payment_type") from None

        for name, location in (("pickup_location", route.pickup_location), ("dropoff_location", route.dropoff_location)):
            if location is not None:
                CoordinateValidator.require(location.lat, location.lng, field=name)

        distance_km = route.distance_km
        if distance_km is None:
            distance_km = estimate_distance_km(route.pickup_location, route.dropoff_location)

        fee = compute_fee(distance_km, item.weight_kg, item.fragile, payment_type)

        now = utcnow()
        return Delivery(
            seller_id=seller_id,
            seller_name=seller_name,
            pickup_address=pickup_address,
            dropoff_address=dropoff_address,
            item_name=item_name,
            item_size=TextSanitizer.sanitize(item.size, max_length=50) or "small",
            item_weight_kg=item.weight_kg,
            item_fragile=bool(item.fragile),
            payment_type=payment_type,
            fee=fee,
            status=DeliveryStatus.PENDING,
            created_at=now,
            updated_at=now,
            tracking_history=[
                TrackingEntry(sequence=1, status=DeliveryStatus.PENDING, timestamp=now),
            ],
        )

    @log_async_operation("create_delivery")
    async def create_delivery(
        self,
        seller: SellerInfo,
        route: RouteInfo,
        item: ItemInfo,
        payment_type: PaymentType = PaymentType.PREPAID,
    ) -> DeliverySnapshot:
        """
        Create a pending delivery with its fee fixed and one pending tracking entry.

        Raises ValidationError when seller identity, either address or the
        item name is missing, or when the fee inputs are invalid.
        """
        delivery = await self.store.create(self._build(seller, route, item, payment_type))

        logger.info(
            "משלוח חדש נוצר",
            extra_data={
                "delivery_id": delivery.id,
                "seller_id": delivery.seller_id,
                "fee": delivery.fee,
                "payment_type": delivery.payment_type.value,
            },
        )
        await self.events.delivery_created(delivery.id, delivery.fee, delivery.payment_type.value)
        return delivery

    @log_async_operation("create_bulk_deliveries")
    async def create_bulk(self, seller: SellerInfo, orders: list[DeliveryOrder]) -> list[DeliverySnapshot]:
        """Validate every order first, then store all of them in one transaction"""
        if not orders:
            raise ValidationError("At least one delivery is required", field="orders")

        models = []
        for index, order in enumerate(orders):
            try:
                models.append(self._build(seller, order.route, order.item, order.payment_type))
            except ValidationError as e:
                e.details["index"] = index
                raise

        deliveries = await self.store.create_many(models)

        logger.info(
            "נוצרו משלוחים במרוכז",
            extra_data={"seller_id": seller.seller_id, "count": len(deliveries)},
        )
        for delivery in deliveries:
            await self.events.delivery_created(delivery.id, delivery.fee, delivery.payment_type.value)
        return deliveries

    # ==================== Reads ====================

    async def get_delivery(self, delivery_id: str) -> Optional[DeliverySnapshot]:
        """Get delivery by ID"""
        return await self.store.get(delivery_id)

    async def require_delivery(self, delivery_id: str) -> DeliverySnapshot:
        delivery = await self.store.get(delivery_id)
        if delivery is None:
            raise DeliveryNotFoundError(delivery_id)
        return delivery

    async def get_pending_deliveries(self) -> list[DeliverySnapshot]:
        """Deliveries waiting for a driver, newest first"""
        return await self.store.query_by_status(DeliveryStatus.PENDING)

    async def get_seller_deliveries(self, seller_id: str) -> list[DeliverySnapshot]:
        return await self.store.query_by_party(PartyRole.SELLER, seller_id)

    async def get_driver_deliveries(self, driver_id: str) -> list[DeliverySnapshot]:
        return await self.store.query_by_party(PartyRole.DRIVER, driver_id)

    async def get_active_deliveries(self, driver_id: str) -> list[DeliverySnapshot]:
        return await self.store.query_active_for_driver(driver_id)

    # ==================== Lifecycle ====================

    @log_async_operation("advance_delivery")
    async def advance(
        self,
        delivery_id: str,
        acting_driver_id: str,
        location: Optional[Coordinate] = None,
        from_status: Optional[DeliveryStatus] = None,
    ) -> DeliverySnapshot:
        """
        Move the delivery one step forward and append a tracking entry.

        Does not credit the wallet; DeliveryCompletionService does that
        after observing the transition to delivered. `from_status` pins the
        step to the status the caller saw: if the delivery has moved on
        since, InvalidTransitionError is raised instead of taking a later step.
        """
        acting_driver_id = require_text(acting_driver_id, "driver_id", max_length=128)
        delivery = await self.require_delivery(delivery_id)

        if from_status is not None and delivery.status != from_status:
            raise InvalidTransitionError(
                delivery_id,
                delivery.status.value,
                message=(
                    f"Delivery {delivery_id} is {delivery.status.value}, "
                    f"not {DeliveryStatus(from_status).value}; refresh and retry"
                ),
            )

        target = next_status(delivery.status)
        if target is None:
            reason = "not claimed yet" if delivery.status == DeliveryStatus.PENDING else "already delivered"
            raise InvalidTransitionError(
                delivery_id,
                delivery.status.value,
                message=f"Delivery {delivery_id} cannot advance: {reason}",
            )

        if delivery.driver_id != acting_driver_id:
            logger.warning(
                "ניסיון לקדם משלוח על ידי נהג שאינו משויך",
                extra_data={
                    "delivery_id": delivery_id,
                    "acting_driver_id": acting_driver_id,
                    "bound_driver_id": delivery.driver_id,
                },
            )
            raise AuthorizationError(
                "Only the assigned driver can advance this delivery",
                details={"delivery_id": delivery_id},
            )

        patch = {"status": target}
        entry = TrackingEntry(status=target, timestamp=utcnow())
        if location is not None:
            CoordinateValidator.require(location.lat, location.lng)
            patch.update(current_lat=location.lat, current_lng=location.lng)
            entry.lat, entry.lng = location.lat, location.lng

        try:
            updated = await self.store.update_conditional(delivery_id, delivery.status, patch, entry)
        except ConflictError:
            logger.warning(
                "מעבר סטטוס נכשל - המשלוח השתנה במקביל",
                extra_data={
                    "delivery_id": delivery_id,
                    "expected_status": delivery.status.value,
                    "target_status": target.value,
                },
            )
            raise InvalidTransitionError(
                delivery_id,
                delivery.status.value,
                target.value,
                message=f"Delivery {delivery_id} changed concurrently; refresh and retry",
            ) from None

        logger.info(
            "סטטוס משלוח עודכן",
            extra_data={
                "delivery_id": delivery_id,
                "from_status": delivery.status.value,
                "to_status": target.value,
                "driver_id": acting_driver_id,
            },
        )
        await self.events.status_changed(delivery_id, target)
        return updated

    def _require_delivered(self, delivery: DeliverySnapshot, attachment: str) -> None:
        if delivery.status != DeliveryStatus.DELIVERED:
            raise InvalidTransitionError(
                delivery.id,
                delivery.status.value,
                message=f"{attachment} can only be attached to a delivered delivery",
            )

    @log_async_operation("attach_proof_of_delivery")
    async def attach_proof(
        self,
        delivery_id: str,
        proof_type: ProofType,
        payload: str,
        uploaded_by: str,
    ) -> DeliverySnapshot:
        """Write-once proof of delivery; only the bound driver may upload it"""
        try:
            proof_type = ProofType(proof_type)
        except ValueError:
            raise ValidationError(f"Unknown proof type: {proof_type}", field="proof_type") from None
        if not payload or not payload.strip():
            raise ValidationError("payload is required", field="payload")
        if len(payload) > MAX_PROOF_PAYLOAD_LENGTH:
            raise ValidationError("payload is too large", field="payload")
        # אותה נורמליזציה כמו בתפיסה, אחרת ההשוואה לנהג המשויך נכשלת
        uploaded_by = require_text(uploaded_by, "uploaded_by", max_length=128)

        delivery = await self.require_delivery(delivery_id)
        self._require_delivered(delivery, "Proof of delivery")
        if delivery.driver_id != uploaded_by:
            raise AuthorizationError(
                "Only the assigned driver can upload proof of delivery",
                details={"delivery_id": delivery_id},
            )
        if delivery.proof_of_delivery is not None:
            raise AttachmentExistsError(delivery_id, "proof_of_delivery")

        updated = await self.store.attach_proof(
            delivery_id,
            ProofOfDelivery(
                proof_type=proof_type,
                payload=payload,
                uploaded_by=uploaded_by,
                timestamp=utcnow(),
            ),
        )
        logger.info(
            "הוכחת מסירה נשמרה",
            extra_data={"delivery_id": delivery_id, "proof_type": proof_type.value},
        )
        return updated

    @log_async_operation("attach_feedback")
    async def attach_feedback(
        self,
        delivery_id: str,
        rating: int,
        comment: str,
        given_by: FeedbackAuthor,
    ) -> DeliverySnapshot:
        """Write-once feedback; the first submission is kept"""
        if isinstance(rating, bool) or not isinstance(rating, int) or not 1 <= rating <= 5:
            raise ValidationError("rating must be an integer between 1 and 5", field="rating")
        try:
            given_by = FeedbackAuthor(given_by)
        except ValueError:
            raise ValidationError(f"Unknown feedback author: {given_by}", field="given_by") from None

        delivery = await self.require_delivery(delivery_id)
        self._require_delivered(delivery, "Feedback")
        if delivery.feedback is not None:
            raise AttachmentExistsError(delivery_id, "feedback")

        updated = await self.store.attach_feedback(
            delivery_id,
            DeliveryFeedback(
                rating=rating,
                comment=TextSanitizer.sanitize(comment, max_length=MAX_FEEDBACK_COMMENT_LENGTH),
                given_by=given_by,
                timestamp=utcnow(),
            ),
        )
        logger.info(
            "משוב נשמר",
            extra_data={"delivery_id": delivery_id, "rating": rating, "given_by": given_by.value},
        )
        return updated

    async def update_driver_location(self, driver_id: str, location: Coordinate) -> int:
        """Set current location on the driver's active deliveries; returns how many were updated"""
        driver_id = require_text(driver_id, "driver_id", max_length=128)
        CoordinateValidator.require(location.lat, location.lng)

        updated = await self.store.update_location_for_driver(driver_id, location.lat, location.lng)
        logger.debug(
            "מיקום נהג עודכן",
            extra_data={"driver_id": driver_id, "deliveries": len(updated)},
        )
        return len(updated)

    # ==================== Live queries ====================

    async def subscribe_pending(self, on_change: OnChange, on_error: Optional[OnError] = None) -> Subscription:
        return await self.store.subscribe_status(DeliveryStatus.PENDING, on_change, on_error)

    async def subscribe_party(
        self,
        role: PartyRole,
        user_id: str,
        on_change: OnChange,
        on_error: Optional[OnError] = None,
    ) -> Subscription:
        return await self.store.subscribe_party(role, user_id, on_change, on_error)

    async def subscribe_delivery(
        self,
        delivery_id: str,
        on_change: OnChange,
        on_error: Optional[OnError] = None,
    ) -> Subscription:
        return await self.store.subscribe_delivery(delivery_id, on_change, on_error)
