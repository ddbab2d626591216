"""
Unit tests for the delivery status table.
"""
import pytest

from delivery_market.db.models.delivery import DeliveryStatus
from delivery_market.domain.delivery_states import (
    ACTIVE_STATUSES,
    STATUS_ORDER,
    is_terminal,
    is_valid_history,
    next_status,
    status_rank,
)


@pytest.mark.unit
class TestNextStatus:

    @pytest.mark.parametrize(
        "current,expected",
        [
            (DeliveryStatus.ASSIGNED, DeliveryStatus.PICKED_UP),
            (DeliveryStatus.PICKED_UP, DeliveryStatus.IN_TRANSIT),
            (DeliveryStatus.IN_TRANSIT, DeliveryStatus.DELIVERED),
        ],
    )
    def test_successor_table(self, current, expected):
        assert next_status(current) == expected

    def test_pending_has_no_successor_for_advance(self):
        # pending → assigned only through a claim
        assert next_status(DeliveryStatus.PENDING) is None

    def test_delivered_is_terminal(self):
        assert next_status(DeliveryStatus.DELIVERED) is None
        assert is_terminal(DeliveryStatus.DELIVERED)
        assert not is_terminal(DeliveryStatus.IN_TRANSIT)

    def test_accepts_raw_values(self):
        assert next_status("assigned") == DeliveryStatus.PICKED_UP


@pytest.mark.unit
def test_status_order_matches_rank():
    assert [status_rank(s) for s in STATUS_ORDER] == [0, 1, 2, 3, 4]


@pytest.mark.unit
def test_active_statuses():
    assert ACTIVE_STATUSES == {
        DeliveryStatus.ASSIGNED,
        DeliveryStatus.PICKED_UP,
        DeliveryStatus.IN_TRANSIT,
    }


@pytest.mark.unit
@pytest.mark.parametrize(
    "history,valid",
    [
        (list(STATUS_ORDER), True),
        ([DeliveryStatus.PENDING], True),
        ([DeliveryStatus.PENDING, DeliveryStatus.ASSIGNED], True),
        ([], False),
        ([DeliveryStatus.ASSIGNED], False),
        ([DeliveryStatus.PENDING, DeliveryStatus.PICKED_UP], False),
        ([DeliveryStatus.PENDING, DeliveryStatus.ASSIGNED, DeliveryStatus.ASSIGNED], False),
        ([DeliveryStatus.PENDING, DeliveryStatus.ASSIGNED, DeliveryStatus.PENDING], False),
    ],
)
def test_is_valid_history(history, valid):
    assert is_valid_history(history) is valid
