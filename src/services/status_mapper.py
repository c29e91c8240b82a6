"""Map Square fulfillment, order and payment states to a customer status.

Fulfillment status and payment status are two independent axes. Payment
only overrides the customer-facing status for refunds and failed payments,
and approval nudges a brand-new order into progress once.
"""

from typing import get_args

from src.models.order import OrderStatus as CustomerStatus
from src.models.order import PaymentStatus

NEW = "New"
IN_PROGRESS = "In Progress"
READY = "Ready"
PICKED_UP = "Picked Up"
COMPLETED = "Completed"
CANCELED = "Canceled"
REFUNDED = "Refunded"

TERMINAL_STATUSES = frozenset({PICKED_UP, CANCELED, REFUNDED, COMPLETED})

# Non-terminal statuses only move forward
STATUS_RANK = {NEW: 0, IN_PROGRESS: 1, READY: 2}

FULFILLMENT_STATUS_MAP: dict[str, CustomerStatus] = {
    "PROPOSED": IN_PROGRESS,
    "RESERVED": IN_PROGRESS,
    "PREPARED": READY,
    "COMPLETED": PICKED_UP,
    "CANCELED": CANCELED,
}

ORDER_STATE_MAP: dict[str, CustomerStatus] = {
    "DRAFT": NEW,
    "OPEN": IN_PROGRESS,
    "COMPLETED": COMPLETED,
    "CANCELED": CANCELED,
}

PAYMENT_STATUSES = frozenset(get_args(PaymentStatus))
PAYMENT_CANCEL_STATUSES = frozenset({"CANCELED", "FAILED", "VOIDED"})
PAYMENT_SUCCESS_STATUSES = frozenset({"APPROVED", "COMPLETED"})

# Spellings seen across Square APIs and older integrations
PAYMENT_STATUS_ALIASES = {
    "CANCELLED": "CANCELED",
    "CAPTURED": "COMPLETED",
    "AUTHORIZED": "APPROVED",
    "REFUND": "REFUNDED",
}


def map_status(fulfillment_state: str | None, order_state: str | None) -> CustomerStatus:
    """Map fulfillment and coarse order state to a customer status.

    Fulfillment state wins when present and recognized; otherwise the
    order state is used. Unknown input maps to New.

    Args:
        fulfillment_state: Square fulfillment state (e.g. PREPARED).
        order_state: Square order state (e.g. OPEN).

    Returns:
        CustomerStatus: Customer-facing status.
    """
    if fulfillment_state:
        mapped = FULFILLMENT_STATUS_MAP.get(fulfillment_state.upper())
        if mapped:
            return mapped
    if order_state:
        mapped = ORDER_STATE_MAP.get(order_state.upper())
        if mapped:
            return mapped
    return NEW


def normalize_payment_status(raw: str | None) -> str | None:
    """Normalize a raw payment status to the stored payment status values."""
    if not raw:
        return None
    value = raw.strip().upper()
    value = PAYMENT_STATUS_ALIASES.get(value, value)
    return value if value in PAYMENT_STATUSES else None


def apply_payment_override(status: CustomerStatus, payment_status: str | None) -> CustomerStatus:
    """Apply the payment axis on top of a fulfillment-derived status."""
    if payment_status == "REFUNDED":
        return REFUNDED
    if payment_status in PAYMENT_CANCEL_STATUSES:
        return CANCELED
    if payment_status in PAYMENT_SUCCESS_STATUSES and status == NEW:
        return IN_PROGRESS
    return status


def resolve_status(
    current: CustomerStatus | None,
    fulfillment_state: str | None,
    order_state: str | None,
    payment_status: str | None,
) -> CustomerStatus:
    """Compute the next customer status for an order.

    Terminal statuses are sticky: once an order is Picked Up, Completed,
    Canceled or Refunded, later events never move it. Non-terminal
    statuses never move backwards, so a late delivery of an older
    fulfillment state (PROPOSED after PREPARED) keeps the order Ready.

    Args:
        current: Status currently stored, or None for a new order.
        fulfillment_state: Fulfillment state from the event or fetched order.
        order_state: Coarse order state.
        payment_status: Normalized payment status, if known.

    Returns:
        CustomerStatus: Status to store.
    """
    if current in TERMINAL_STATUSES:
        return current

    if fulfillment_state or order_state:
        status = map_status(fulfillment_state, order_state)
        if current in STATUS_RANK and STATUS_RANK.get(status, len(STATUS_RANK)) < STATUS_RANK[current]:
            status = current
    else:
        status = current or NEW
    return apply_payment_override(status, payment_status)
