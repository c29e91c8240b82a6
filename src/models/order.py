"""Order model type definitions for database operations."""

from datetime import datetime
from decimal import Decimal
from typing import Literal, TypedDict
from uuid import UUID


# Customer-facing order status values matching the database enum
OrderStatus = Literal[
    "New",
    "In Progress",
    "Ready",
    "Picked Up",
    "Completed",
    "Canceled",
    "Refunded",
]

# Payment status values, stored independently of OrderStatus
PaymentStatus = Literal["PENDING", "APPROVED", "COMPLETED", "CANCELED", "FAILED", "VOIDED", "REFUNDED"]

ShippingMethod = Literal["pickup", "delivery"]


class ContactSnapshot(TypedDict, total=False):
    """Recipient contact info denormalized onto the order row.

    Stored in the pickup_details JSONB column.
    """

    first_name: str
    last_name: str
    email: str
    phone: str
    fulfillment_type: Literal["PICKUP", "SHIPPING"]
    pickup_at: str | None


class Order(TypedDict):
    """Order table row representation.

    Maps directly to the orders table schema.
    """

    id: UUID
    square_order_id: str | None
    order_number: str
    customer_id: UUID | None
    status: OrderStatus
    payment_status: PaymentStatus | None
    square_payment_id: str | None
    subtotal: Decimal
    tax: Decimal
    shipping: Decimal
    total: Decimal
    shipping_method: ShippingMethod
    pickup_details: ContactSnapshot | None
    square_version: int | None
    inventory_deducted_at: datetime | None
    created_at: datetime
    updated_at: datetime


class OrderItem(TypedDict):
    """order_items table row representation."""

    id: int
    order_id: UUID
    product_id: str
    quantity: int
    price: Decimal
    subtotal: Decimal
    created_at: datetime
