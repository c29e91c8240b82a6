"""Normalize Square webhook envelopes into a canonical event shape.

Square has delivered the same logical event in several envelope shapes over
time. Each shape is handled by a small matcher that either returns a
``CanonicalEvent`` or ``None``; matchers are tried in a fixed precedence
order per event family.
"""

from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

from src.core.errors import MalformedPayloadError

ORDER_UPDATED = "order.updated"
PAYMENT_CREATED = "payment.created"
PAYMENT_UPDATED = "payment.updated"

ORDER_EVENT_TYPES = frozenset({ORDER_UPDATED})
PAYMENT_EVENT_TYPES = frozenset({PAYMENT_CREATED, PAYMENT_UPDATED})
SUPPORTED_EVENT_TYPES = ORDER_EVENT_TYPES | PAYMENT_EVENT_TYPES

# Keys under data.object that wrap an order fragment, in precedence order
ORDER_FRAGMENT_KEYS = ("order_updated", "order_created", "order")


@dataclass(frozen=True)
class CanonicalEvent:
    """A webhook event reduced to the fields reconciliation needs."""

    type: str
    external_order_id: str | None
    order_fragment: dict[str, Any] = field(default_factory=dict)
    payment_fragment: dict[str, Any] | None = None
    event_id: str | None = None

    @property
    def is_payment_event(self) -> bool:
        return self.type in PAYMENT_EVENT_TYPES


ShapeMatcher = Callable[[str, dict[str, Any], str | None], CanonicalEvent | None]


def _order_id_of(fragment: dict[str, Any]) -> str | None:
    return fragment.get("id") or fragment.get("order_id") or fragment.get("orderId")


def _match_nested_order(event_type: str, data: dict[str, Any], event_id: str | None) -> CanonicalEvent | None:
    """data.object.<order_updated|order_created|order> = fragment."""
    obj = data.get("object")
    if not isinstance(obj, dict):
        return None
    for key in ORDER_FRAGMENT_KEYS:
        fragment = obj.get(key)
        if isinstance(fragment, dict):
            order_id = data.get("id") or _order_id_of(fragment)
            if not order_id:
                return None
            return CanonicalEvent(event_type, str(order_id), fragment, None, event_id)
    return None


def _match_flat_order(event_type: str, data: dict[str, Any], event_id: str | None) -> CanonicalEvent | None:
    """data.object is the order itself."""
    obj = data.get("object")
    if not isinstance(obj, dict) or not obj:
        return None
    order_id = _order_id_of(obj) or data.get("id")
    if not order_id:
        return None
    return CanonicalEvent(event_type, str(order_id), obj, None, event_id)


def _match_order_stub(event_type: str, data: dict[str, Any], event_id: str | None) -> CanonicalEvent | None:
    """Only data.id is present; the order has to be fetched."""
    order_id = data.get("id")
    if not order_id:
        return None
    return CanonicalEvent(event_type, str(order_id), {}, None, event_id)


def _payment_order_id(payment: dict[str, Any]) -> str | None:
    order_id = payment.get("order_id") or payment.get("orderId")
    return str(order_id) if order_id else None


def _match_nested_payment(event_type: str, data: dict[str, Any], event_id: str | None) -> CanonicalEvent | None:
    """data.object.payment = fragment."""
    obj = data.get("object")
    if not isinstance(obj, dict) or not isinstance(obj.get("payment"), dict):
        return None
    payment = obj["payment"]
    if not (payment.get("id") or data.get("id")):
        return None
    return CanonicalEvent(event_type, _payment_order_id(payment), {}, payment, event_id)


def _match_flat_payment(event_type: str, data: dict[str, Any], event_id: str | None) -> CanonicalEvent | None:
    """data.object is the payment itself."""
    obj = data.get("object")
    if not isinstance(obj, dict) or not obj.get("id"):
        return None
    return CanonicalEvent(event_type, _payment_order_id(obj), {}, obj, event_id)


def _match_payment_stub(event_type: str, data: dict[str, Any], event_id: str | None) -> CanonicalEvent | None:
    """Only data.id (the payment id) is present."""
    payment_id = data.get("id")
    if not payment_id:
        return None
    return CanonicalEvent(event_type, None, {}, {"id": str(payment_id)}, event_id)


ORDER_SHAPES: tuple[ShapeMatcher, ...] = (_match_nested_order, _match_flat_order, _match_order_stub)
PAYMENT_SHAPES: tuple[ShapeMatcher, ...] = (_match_nested_payment, _match_flat_payment, _match_payment_stub)


def normalize(envelope: Any) -> CanonicalEvent:
    """Parse a webhook envelope into a CanonicalEvent.

    Args:
        envelope: Decoded JSON body of the webhook delivery.

    Returns:
        CanonicalEvent: The first shape that matches.

    Raises:
        MalformedPayloadError: If the envelope is not an object, lacks
            ``type``/``data``, has an unsupported type, or no shape yields an id.
    """
    if not isinstance(envelope, dict):
        raise MalformedPayloadError("Webhook body must be a JSON object")

    event_type = envelope.get("type")
    data = envelope.get("data")
    if not event_type or not isinstance(data, dict):
        raise MalformedPayloadError("Webhook body is missing type or data")

    if event_type in ORDER_EVENT_TYPES:
        shapes = ORDER_SHAPES
    elif event_type in PAYMENT_EVENT_TYPES:
        shapes = PAYMENT_SHAPES
    else:
        raise MalformedPayloadError(f"Unsupported event type: {event_type}")

    event_id = envelope.get("event_id")
    for matcher in shapes:
        event = matcher(event_type, data, event_id)
        if event is not None:
            return event

    raise MalformedPayloadError(f"No order or payment id found in {event_type} event")
