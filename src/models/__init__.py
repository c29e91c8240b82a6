"""Database model type definitions."""

from src.models.customer import Customer
from src.models.order import ContactSnapshot, Order, OrderItem, OrderStatus, PaymentStatus

__all__ = [
    "ContactSnapshot",
    "Customer",
    "Order",
    "OrderItem",
    "OrderStatus",
    "PaymentStatus",
]
