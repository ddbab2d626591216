"""
Delivery lifecycle: strictly linear, forward-only.

    pending → assigned → picked_up → in_transit → delivered

`pending → assigned` happens only through a claim; `advance` walks the
rest of the chain one step at a time. `delivered` is terminal.
"""
from typing import Iterable, Optional

from delivery_market.db.models.delivery import DeliveryStatus

STATUS_ORDER: tuple[DeliveryStatus, ...] = (
    DeliveryStatus.PENDING,
    DeliveryStatus.ASSIGNED,
    DeliveryStatus.PICKED_UP,
    DeliveryStatus.IN_TRANSIT,
    DeliveryStatus.DELIVERED,
)

# advance() successor table; pending moves only through a claim
NEXT_STATUS: dict[DeliveryStatus, DeliveryStatus] = {
    DeliveryStatus.ASSIGNED: DeliveryStatus.PICKED_UP,
    DeliveryStatus.PICKED_UP: DeliveryStatus.IN_TRANSIT,
    DeliveryStatus.IN_TRANSIT: DeliveryStatus.DELIVERED,
}

# סטטוסים שבהם הנהג בדרך - מקבלים עדכוני מיקום
ACTIVE_STATUSES = frozenset({
    DeliveryStatus.ASSIGNED,
    DeliveryStatus.PICKED_UP,
    DeliveryStatus.IN_TRANSIT,
})

_RANK = {status: index for index, status in enumerate(STATUS_ORDER)}


def status_rank(status: DeliveryStatus) -> int:
    return _RANK[DeliveryStatus(status)]


def next_status(current: DeliveryStatus) -> Optional[DeliveryStatus]:
    """The unique status advance() moves to, or None when advance is illegal."""
    return NEXT_STATUS.get(DeliveryStatus(current))


def is_terminal(status: DeliveryStatus) -> bool:
    return DeliveryStatus(status) == DeliveryStatus.DELIVERED


def is_valid_history(statuses: Iterable[DeliveryStatus]) -> bool:
    """True when the history starts at pending and moves one step at a time."""
    ranks = [status_rank(s) for s in statuses]
    if not ranks or ranks[0] != 0:
        return False
    return all(b == a + 1 for a, b in zip(ranks, ranks[1:]))
