"""Linear status machines for payments, payouts and bookings."""
from typing import Dict, FrozenSet

from app.errors import InvalidStatusTransition

PAYMENT_TRANSITIONS: Dict[str, FrozenSet[str]] = {
    "pending": frozenset({"succeeded", "failed"}),
    "succeeded": frozenset({"refunded"}),
    "failed": frozenset(),
    "refunded": frozenset(),
}

PAYOUT_TRANSITIONS: Dict[str, FrozenSet[str]] = {
    "pending": frozenset({"processing", "paid", "failed"}),
    "processing": frozenset({"paid", "failed"}),
    # failed payouts are re-driven by the retry job
    "failed": frozenset({"processing"}),
    "paid": frozenset(),
}

BOOKING_TRANSITIONS: Dict[str, FrozenSet[str]] = {
    "pending": frozenset({"confirmed", "cancelled"}),
    "confirmed": frozenset({"completed", "cancelled"}),
    "completed": frozenset(),
    "cancelled": frozenset(),
}


def apply_transition(record, new_status: str, allowed: Dict[str, FrozenSet[str]], label: str) -> bool:
    """
    Move ``record.status`` to *new_status*.

    Returns False when the record already has that status, so repeated
    deliveries are no-ops. Raises InvalidStatusTransition for a move the
    machine does not allow.
    """
    current = record.status
    if current == new_status:
        return False
    if new_status not in allowed.get(current, frozenset()):
        raise InvalidStatusTransition(
            f"Cannot move {label} from {current} to {new_status}",
            current_status=current,
            requested_status=new_status,
        )
    record.status = new_status
    return True
