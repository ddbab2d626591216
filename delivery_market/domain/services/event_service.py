"""
Event Service - outbound delivery events for external collaborators.

Publishes plain JSON events to Redis Pub/Sub; notification transport
(push, toast, websocket) subscribes on the other side.

Event types:
- delivery_created: new pending delivery (notify online drivers)
- delivery_claimed: a driver claimed a delivery (notify the seller)
- delivery_status_changed: any forward transition after the claim
- delivery_delivered: delivery reached delivered (proof prompt, wallet credit)
"""
import enum
import json
from datetime import datetime, timezone
from typing import Any, Optional

from delivery_market.core.config import settings
from delivery_market.core.logging import get_logger
from delivery_market.core.redis_client import get_redis
from delivery_market.db.models.delivery import DeliveryStatus

logger = get_logger(__name__)


class EventType(str, enum.Enum):
    DELIVERY_CREATED = "delivery_created"
    DELIVERY_CLAIMED = "delivery_claimed"
    DELIVERY_STATUS_CHANGED = "delivery_status_changed"
    DELIVERY_DELIVERED = "delivery_delivered"


def channel_name(event_type: EventType) -> str:
    """שם ערוץ Pub/Sub לסוג אירוע"""
    return f"{settings.EVENTS_CHANNEL_PREFIX}:{event_type.value}"


class EventPublisher:
    """Publishes delivery events; never fails the business operation"""

    async def publish(
        self,
        event_type: EventType,
        delivery_id: str,
        status: DeliveryStatus,
        data: Optional[dict[str, Any]] = None,
    ) -> None:
        try:
            payload = {
                "type": event_type.value,
                "delivery_id": delivery_id,
                "status": DeliveryStatus(status).value,
                "timestamp": datetime.now(timezone.utc).isoformat(),
                "data": data or {},
            }
            message = json.dumps(payload, ensure_ascii=False, default=str)

            redis = await get_redis()
            await redis.publish(channel_name(event_type), message)

            logger.info(
                "אירוע פורסם",
                extra_data={
                    "delivery_id": delivery_id,
                    "event_type": event_type.value,
                },
            )
        except Exception as e:
            # הפעולה העסקית כבר committed - כשלון בפרסום רק נרשם
            logger.error(
                "כשלון בפרסום אירוע",
                extra_data={
                    "delivery_id": delivery_id,
                    "event_type": event_type.value,
                    "error": str(e),
                },
                exc_info=True,
            )

    async def delivery_created(self, delivery_id: str, fee: int, payment_type: str) -> None:
        await self.publish(
            EventType.DELIVERY_CREATED,
            delivery_id,
            DeliveryStatus.PENDING,
            {"fee": fee, "payment_type": payment_type},
        )

    async def delivery_claimed(self, delivery_id: str, driver_id: str) -> None:
        await self.publish(
            EventType.DELIVERY_CLAIMED,
            delivery_id,
            DeliveryStatus.ASSIGNED,
            {"driver_id": driver_id},
        )

    async def status_changed(self, delivery_id: str, status: DeliveryStatus) -> None:
        await self.publish(EventType.DELIVERY_STATUS_CHANGED, delivery_id, status)
        if status == DeliveryStatus.DELIVERED:
            await self.publish(EventType.DELIVERY_DELIVERED, delivery_id, status)
