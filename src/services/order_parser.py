"""Parse Square order fragments and decide whether they can be reconciled.

Webhook fragments arrive in snake_case; SDK-shaped payloads replayed by
older tooling use camelCase. Every lookup here accepts both.
"""

import logging
from dataclasses import dataclass, field
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any

from src.models.order import ContactSnapshot

logger = logging.getLogger(__name__)

CENTS = Decimal("0.01")
ZERO = Decimal("0.00")

# Square tender card statuses mapped to our payment status axis
TENDER_STATUS_TO_PAYMENT = {
    "AUTHORIZED": "APPROVED",
    "CAPTURED": "COMPLETED",
    "VOIDED": "VOIDED",
    "FAILED": "FAILED",
}


def _get(data: dict[str, Any] | None, *keys: str) -> Any:
    """Return the first present, non-None value among alternative keys."""
    if not data:
        return None
    for key in keys:
        value = data.get(key)
        if value is not None:
            return value
    return None


def money_to_decimal(money: dict[str, Any] | None) -> Decimal:
    """Convert a Square Money object (minor units) to a 2-place Decimal."""
    amount = _get(money, "amount")
    if amount in (None, ""):
        return ZERO
    try:
        return (Decimal(str(amount)) / 100).quantize(CENTS, rounding=ROUND_HALF_UP)
    except InvalidOperation:
        return ZERO


def _parse_quantity(raw: Any) -> int:
    try:
        quantity = int(Decimal(str(raw)))
    except (InvalidOperation, ValueError, TypeError):
        return 1
    return quantity if quantity >= 1 else 1


def _parse_version(raw: Any) -> int | None:
    try:
        return int(raw) if raw is not None else None
    except (ValueError, TypeError):
        return None


@dataclass(frozen=True)
class LineItem:
    """One order line as reported by Square."""

    uid: str
    catalog_object_id: str | None
    name: str
    quantity: int
    item_type: str
    base_price: Decimal
    total: Decimal

    @property
    def subtotal(self) -> Decimal:
        """Line total, falling back to unit price times quantity."""
        if self.total > 0:
            return self.total
        return (self.base_price * self.quantity).quantize(CENTS)


@dataclass(frozen=True)
class ContactInfo:
    """Recipient identity extracted from fulfillment or shipping data."""

    email: str | None = None
    first_name: str | None = None
    last_name: str | None = None
    phone: str | None = None
    fulfillment_type: str = "PICKUP"
    pickup_at: str | None = None

    @property
    def normalized_email(self) -> str | None:
        if not self.email:
            return None
        return self.email.strip().lower() or None

    def to_snapshot(self) -> ContactSnapshot:
        """Render as the JSON snapshot stored on the order row."""
        return ContactSnapshot(
            first_name=self.first_name or "",
            last_name=self.last_name or "",
            email=self.normalized_email or "",
            phone=self.phone or "",
            fulfillment_type=self.fulfillment_type,
            pickup_at=self.pickup_at,
        )


@dataclass(frozen=True)
class ParsedOrder:
    """Canonical order used by the reconciliation writer."""

    external_order_id: str
    state: str | None = None
    fulfillment_state: str | None = None
    reference_id: str | None = None
    line_items: list[LineItem] = field(default_factory=list)
    subtotal: Decimal = ZERO
    tax: Decimal = ZERO
    shipping: Decimal = ZERO
    total: Decimal = ZERO
    contact: ContactInfo | None = None
    shipping_method: str = "pickup"
    metadata: dict[str, Any] = field(default_factory=dict)
    note: str = ""
    payment_status: str | None = None
    version: int | None = None
    is_complete: bool = False

    @property
    def order_number(self) -> str:
        """Human-readable order number."""
        if self.reference_id:
            return self.reference_id
        return f"ORD-{self.external_order_id[:8].upper()}"


def parse_line_items(fragment: dict[str, Any] | None) -> list[LineItem]:
    """Extract line items from an order fragment."""
    raw_items = _get(fragment, "line_items", "lineItems") or []
    items = []
    for index, item in enumerate(raw_items):
        if not isinstance(item, dict):
            continue
        items.append(
            LineItem(
                uid=_get(item, "uid") or f"item-{index}",
                catalog_object_id=_get(item, "catalog_object_id", "catalogObjectId"),
                name=_get(item, "name") or "Unknown Item",
                quantity=_parse_quantity(_get(item, "quantity") or "1"),
                item_type=str(_get(item, "item_type", "itemType") or "ITEM").upper(),
                base_price=money_to_decimal(_get(item, "base_price_money", "basePriceMoney")),
                total=money_to_decimal(_get(item, "total_money", "totalMoney")),
            )
        )
    return items


def _order_total(fragment: dict[str, Any] | None) -> Decimal:
    net_amounts = _get(fragment, "net_amounts", "netAmounts") or {}
    total = money_to_decimal(_get(net_amounts, "total_money", "totalMoney"))
    if total > 0:
        return total
    return money_to_decimal(_get(fragment, "total_money", "totalMoney"))


def is_sufficient(fragment: dict[str, Any] | None) -> bool:
    """Decide whether an order fragment carries enough data to reconcile.

    A fragment is sufficient only with at least one line item and either a
    non-zero order total or, failing that, non-zero per-item totals. Minimal
    "state changed" notifications fail this check and must be replaced by
    an authoritative fetch before any financial data is written.

    Args:
        fragment: Order fragment from a webhook or API response.

    Returns:
        bool: True if the fragment can be reconciled as-is.
    """
    items = parse_line_items(fragment)
    if not items:
        return False
    if _order_total(fragment) > 0:
        return True
    return any(item.total > 0 for item in items)


def _first_fulfillment(fragment: dict[str, Any]) -> dict[str, Any] | None:
    fulfillments = _get(fragment, "fulfillments") or []
    return fulfillments[0] if fulfillments and isinstance(fulfillments[0], dict) else None


def _fulfillment_type(fulfillment: dict[str, Any]) -> str:
    return str(_get(fulfillment, "type", "fulfillment_type", "fulfillmentType") or "").upper()


def _split_name(display_name: str | None) -> tuple[str | None, str | None]:
    if not display_name or not display_name.strip():
        return None, None
    parts = display_name.strip().split()
    return parts[0], " ".join(parts[1:]) or None


def _contact_from_recipient(recipient: dict[str, Any], fulfillment_type: str, pickup_at: str | None = None) -> ContactInfo | None:
    email = _get(recipient, "email_address", "emailAddress", "email")
    phone = _get(recipient, "phone_number", "phoneNumber")
    first_name, last_name = _split_name(_get(recipient, "display_name", "displayName"))
    address = _get(recipient, "address") or {}
    first_name = first_name or _get(address, "first_name", "firstName")
    last_name = last_name or _get(address, "last_name", "lastName")

    if not (email or phone or first_name):
        return None
    return ContactInfo(
        email=email,
        first_name=first_name,
        last_name=last_name,
        phone=phone,
        fulfillment_type=fulfillment_type,
        pickup_at=pickup_at,
    )


def extract_contact(fragment: dict[str, Any]) -> tuple[ContactInfo | None, str]:
    """Extract recipient contact info and the fulfillment method.

    Pickup recipients take precedence over shipping contacts.

    Returns:
        tuple: (contact or None, "pickup" | "delivery")
    """
    fulfillments = [f for f in (_get(fragment, "fulfillments") or []) if isinstance(f, dict)]
    pickup = next((f for f in fulfillments if _fulfillment_type(f) == "PICKUP"), None)

    if pickup is not None:
        details = _get(pickup, "pickup_details", "pickupDetails") or {}
        recipient = _get(details, "recipient") or {}
        pickup_at = _get(details, "pickup_at", "pickupAt")
        return _contact_from_recipient(recipient, "PICKUP", pickup_at), "pickup"

    for fulfillment in fulfillments:
        details = _get(fulfillment, "shipment_details", "shipmentDetails", "delivery_details", "deliveryDetails") or {}
        recipient = _get(details, "recipient")
        if recipient:
            return _contact_from_recipient(recipient, "SHIPPING"), "delivery"

    shipping_address = _get(fragment, "shipping_address", "shippingAddress")
    if shipping_address:
        recipient = _get(shipping_address, "recipient") or {}
        contact = _contact_from_recipient(
            {
                "email_address": _get(shipping_address, "email", "email_address") or _get(recipient, "email_address", "emailAddress"),
                "phone_number": _get(recipient, "phone_number", "phoneNumber"),
                "display_name": _get(recipient, "display_name", "displayName"),
                "address": shipping_address,
            },
            "SHIPPING",
        )
        return contact, "delivery"

    if fulfillments:
        return None, "delivery"
    return None, "pickup"


def extract_payment_status(fragment: dict[str, Any]) -> str | None:
    """Derive payment status from an order's tenders and refunds."""
    refunds = _get(fragment, "refunds") or []
    if any(str(_get(r, "status") or "").upper() in ("APPROVED", "COMPLETED") for r in refunds if isinstance(r, dict)):
        return "REFUNDED"

    for tender in _get(fragment, "tenders") or []:
        if not isinstance(tender, dict):
            continue
        card_details = _get(tender, "card_details", "cardDetails") or {}
        card_status = str(_get(card_details, "status") or "").upper()
        if card_status in TENDER_STATUS_TO_PAYMENT:
            return TENDER_STATUS_TO_PAYMENT[card_status]
        if str(_get(tender, "type") or "").upper() == "CASH":
            return "COMPLETED"
    return None


def parse_order(external_order_id: str, fragment: dict[str, Any] | None) -> ParsedOrder:
    """Parse an order fragment into the canonical order.

    Args:
        external_order_id: Square order id the fragment belongs to.
        fragment: Order object from a webhook or the Orders API.

    Returns:
        ParsedOrder: Canonical order. ``is_complete`` records the
        completeness gate's verdict on this fragment.
    """
    fragment = fragment or {}
    line_items = parse_line_items(fragment)

    net_amounts = _get(fragment, "net_amounts", "netAmounts") or {}
    total = _order_total(fragment)
    if total == 0 and line_items:
        total = sum((item.subtotal for item in line_items), ZERO)
    tax = money_to_decimal(_get(net_amounts, "tax_money", "taxMoney") or _get(fragment, "total_tax_money", "totalTaxMoney"))
    shipping = money_to_decimal(
        _get(net_amounts, "service_charge_money", "serviceChargeMoney")
        or _get(fragment, "total_service_charge_money", "totalServiceChargeMoney")
    )

    fulfillment = _first_fulfillment(fragment)
    fulfillment_state = _get(fulfillment, "state", "fulfillment_state", "fulfillmentState")
    state = _get(fragment, "state", "order_state")
    contact, shipping_method = extract_contact(fragment)

    return ParsedOrder(
        external_order_id=external_order_id,
        state=str(state).upper() if state else None,
        fulfillment_state=str(fulfillment_state).upper() if fulfillment_state else None,
        reference_id=_get(fragment, "reference_id", "referenceId"),
        line_items=line_items,
        subtotal=(total - tax - shipping).quantize(CENTS),
        tax=tax,
        shipping=shipping,
        total=total.quantize(CENTS),
        contact=contact,
        shipping_method=shipping_method,
        metadata=_get(fragment, "metadata") or {},
        note=_get(fragment, "note") or "",
        payment_status=extract_payment_status(fragment),
        version=_parse_version(_get(fragment, "version")),
        is_complete=is_sufficient(fragment),
    )
