"""
בדיקות לפרסום אירועי משלוח ל-Redis
"""
import logging

import pytest

from delivery_market.db.models.delivery import DeliveryStatus
from delivery_market.domain.services.event_service import (
    EventPublisher,
    EventType,
    channel_name,
)


@pytest.mark.unit
def test_channel_name_uses_prefix():
    assert channel_name(EventType.DELIVERY_CLAIMED) == "delivery_events:delivery_claimed"


@pytest.mark.unit
async def test_publish_payload(fake_redis):
    await EventPublisher().delivery_created("d1", 1875, "prepaid")

    channel, payload = fake_redis.published[0]
    assert channel == "delivery_events:delivery_created"
    assert payload["type"] == "delivery_created"
    assert payload["delivery_id"] == "d1"
    assert payload["status"] == "pending"
    assert payload["data"] == {"fee": 1875, "payment_type": "prepaid"}
    assert "timestamp" in payload


@pytest.mark.unit
async def test_delivered_emits_two_events(fake_redis):
    await EventPublisher().status_changed("d1", DeliveryStatus.DELIVERED)

    assert [p["type"] for p in fake_redis.events()] == [
        "delivery_status_changed",
        "delivery_delivered",
    ]


@pytest.mark.unit
async def test_intermediate_status_emits_one_event(fake_redis):
    await EventPublisher().status_changed("d1", DeliveryStatus.PICKED_UP)

    assert [p["type"] for p in fake_redis.events()] == ["delivery_status_changed"]


@pytest.mark.unit
async def test_publish_failure_is_logged_not_raised(fake_redis, caplog):
    fake_redis.fail_publish = True

    with caplog.at_level(logging.ERROR):
        await EventPublisher().delivery_claimed("d1", "driver-1")

    assert fake_redis.published == []
    assert "כשלון בפרסום אירוע" in caplog.text


@pytest.mark.unit
async def test_business_operation_survives_redis_outage(fake_redis, delivery_factory, delivery_service):
    fake_redis.fail_publish = True

    delivery = await delivery_factory()

    assert (await delivery_service.get_delivery(delivery.id)) is not None
