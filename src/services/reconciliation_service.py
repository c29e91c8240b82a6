"""Idempotent writes of reconciled orders to the system of record."""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Literal
from uuid import uuid4

from postgrest.exceptions import APIError as PostgrestAPIError
from supabase import Client

from src.core.errors import StoreWriteConflictError
from src.core.supabase import get_supabase_client, is_unique_violation
from src.models.order import Order
from src.services.order_parser import LineItem, ParsedOrder
from src.services.status_mapper import normalize_payment_status, resolve_status

logger = logging.getLogger(__name__)

ReconcileAction = Literal["created", "updated"]


@dataclass(frozen=True)
class ReconcileResult:
    """Outcome of one reconciliation pass."""

    action: ReconcileAction
    order_id: str
    order_number: str
    status: str
    previous_status: str | None = None
    payment_status: str | None = None
    previous_payment_status: str | None = None
    customer_id: str | None = None
    items_written: int | None = None

    @property
    def status_changed(self) -> bool:
        return self.status != self.previous_status

    def to_dict(self) -> dict[str, Any]:
        return {
            "action": self.action,
            "order_id": self.order_id,
            "order_number": self.order_number,
            "status": self.status,
            "previous_status": self.previous_status,
            "payment_status": self.payment_status,
            "previous_payment_status": self.previous_payment_status,
            "items_written": self.items_written,
        }


def _money(value: Decimal) -> str:
    return str(value.quantize(Decimal("0.01")))


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class ReconciliationWriter:
    """Create-or-update orders keyed by the Square order id.

    Every pass is re-entrant: replaying the same event converges on the
    same row state. ``orders.square_order_id`` is unique in the store, so a
    concurrent creator loses the insert and falls through to the update.
    """

    def __init__(self, client: Client | None = None) -> None:
        """Initialize writer with a Supabase client."""
        self.client = client or get_supabase_client()

    def get_order_by_external_id(self, external_order_id: str) -> Order | None:
        """Look up a local order by its Square order id."""
        response = (
            self.client.table("orders")
            .select("*")
            .eq("square_order_id", external_order_id)
            .limit(1)
            .execute()
        )
        return response.data[0] if response.data else None

    async def reconcile(
        self,
        external_order_id: str,
        order: ParsedOrder,
        customer_id: str | None,
        payment_status: str | None = None,
        payment_id: str | None = None,
    ) -> ReconcileResult:
        """Reconcile a canonical order into the orders and order_items tables.

        Args:
            external_order_id: Square order id.
            order: Canonical order. When ``order.is_complete`` is False the
                stored totals and items of an existing order are kept. When
                its ``version`` is older than the stored one, only the
                customer link and an explicit payment status are applied.
            customer_id: Resolved customer, or None for a guest order.
            payment_status: Payment status carried by the event, if any.
            payment_id: Square payment id carried by the event, if any.

        Returns:
            ReconcileResult: Whether the order was created or updated, and
            its status before and after.
        """
        explicit_payment = normalize_payment_status(payment_status)

        existing = self.get_order_by_external_id(external_order_id)
        if existing is None:
            try:
                return self._create(
                    external_order_id, order, customer_id, explicit_payment or order.payment_status, payment_id
                )
            except StoreWriteConflictError:
                logger.info("Order %s created concurrently, applying as update", external_order_id)
                existing = self.get_order_by_external_id(external_order_id)
                if existing is None:
                    raise

        return self._update(existing, order, customer_id, explicit_payment, payment_id)

    def _create(
        self,
        external_order_id: str,
        order: ParsedOrder,
        customer_id: str | None,
        payment_status: str | None,
        payment_id: str | None,
    ) -> ReconcileResult:
        status = resolve_status(None, order.fulfillment_state, order.state, payment_status)
        order_id = str(uuid4())
        row = {
            "id": order_id,
            "square_order_id": external_order_id,
            "order_number": order.order_number,
            "customer_id": customer_id,
            "status": status,
            "payment_status": payment_status or "PENDING",
            "square_payment_id": payment_id,
            "square_version": order.version,
            "subtotal": _money(order.subtotal),
            "tax": _money(order.tax),
            "shipping": _money(order.shipping),
            "total": _money(order.total),
            "shipping_method": order.shipping_method,
            "pickup_details": order.contact.to_snapshot() if order.contact else None,
        }

        try:
            self.client.table("orders").insert(row).execute()
        except PostgrestAPIError as e:
            if is_unique_violation(e):
                raise StoreWriteConflictError(f"Order {external_order_id} already exists") from e
            raise

        items_written = self.replace_items(order_id, order.line_items) if order.line_items else 0
        logger.info(
            "Created order %s for Square order %s (status: %s, items: %d)",
            order_id,
            external_order_id,
            status,
            items_written,
        )
        return ReconcileResult(
            action="created",
            order_id=order_id,
            order_number=row["order_number"],
            status=status,
            payment_status=row["payment_status"],
            customer_id=customer_id,
            items_written=items_written,
        )

    def _update(
        self,
        existing: Order,
        order: ParsedOrder,
        customer_id: str | None,
        explicit_payment: str | None,
        payment_id: str | None,
    ) -> ReconcileResult:
        stored_version = existing.get("square_version")
        stale = order.version is not None and stored_version is not None and order.version < stored_version
        if stale:
            logger.info(
                "Order %s: fragment version %d is older than stored version %d, keeping stored order state",
                existing["id"],
                order.version,
                stored_version,
            )

        payment_status = explicit_payment or (None if stale else order.payment_status)
        # A recorded refund is final for the payment axis
        if existing.get("payment_status") == "REFUNDED":
            payment_status = None
        effective_payment = payment_status or existing.get("payment_status")
        if stale:
            status = resolve_status(existing.get("status"), None, None, effective_payment)
        else:
            status = resolve_status(existing.get("status"), order.fulfillment_state, order.state, effective_payment)

        updates: dict[str, Any] = {"status": status, "updated_at": _now()}
        if payment_status:
            updates["payment_status"] = payment_status
        if payment_id:
            updates["square_payment_id"] = payment_id
        if customer_id and customer_id != existing.get("customer_id"):
            updates["customer_id"] = customer_id
        rewrite = order.is_complete and not stale
        if not stale:
            if order.version is not None:
                updates["square_version"] = order.version
            if order.contact:
                updates["pickup_details"] = order.contact.to_snapshot()
        if rewrite:
            updates.update({
                "subtotal": _money(order.subtotal),
                "tax": _money(order.tax),
                "shipping": _money(order.shipping),
                "total": _money(order.total),
                "shipping_method": order.shipping_method,
            })

        self.client.table("orders").update(updates).eq("id", existing["id"]).execute()

        items_written = None
        if rewrite:
            items_written = self.replace_items(existing["id"], order.line_items)
        elif not order.is_complete:
            logger.info("Order %s: fragment has no financial data, keeping stored totals and items", existing["id"])

        logger.info(
            "Updated order %s (status: %s -> %s)",
            existing["id"],
            existing.get("status"),
            status,
        )
        return ReconcileResult(
            action="updated",
            order_id=existing["id"],
            order_number=existing.get("order_number") or order.order_number,
            status=status,
            previous_status=existing.get("status"),
            payment_status=updates.get("payment_status", existing.get("payment_status")),
            previous_payment_status=existing.get("payment_status"),
            customer_id=updates.get("customer_id", existing.get("customer_id")),
            items_written=items_written,
        )

    async def apply_payment(
        self,
        order_row: Order,
        payment_status: str | None,
        payment_id: str | None = None,
    ) -> ReconcileResult:
        """Apply a payment event to an existing order.

        Only the payment axis changes here. Refunds and failed payments
        override the customer status; approval moves New to In Progress.
        A recorded refund is never replaced by a later payment status.

        Args:
            order_row: Current orders row.
            payment_status: Raw payment status from the event.
            payment_id: Square payment id.

        Returns:
            ReconcileResult: Always an update.
        """
        normalized = normalize_payment_status(payment_status)
        if order_row.get("payment_status") == "REFUNDED" and normalized != "REFUNDED":
            logger.info("Order %s is refunded, ignoring payment status %s", order_row["id"], normalized)
            normalized = None
        current = order_row.get("status")
        status = resolve_status(current, None, None, normalized or order_row.get("payment_status"))

        updates: dict[str, Any] = {"status": status, "updated_at": _now()}
        if normalized:
            updates["payment_status"] = normalized
        if payment_id:
            updates["square_payment_id"] = payment_id

        self.client.table("orders").update(updates).eq("id", order_row["id"]).execute()
        logger.info(
            "Applied payment %s to order %s (payment: %s, status: %s -> %s)",
            payment_id,
            order_row["id"],
            normalized,
            current,
            status,
        )
        return ReconcileResult(
            action="updated",
            order_id=order_row["id"],
            order_number=order_row.get("order_number", ""),
            status=status,
            previous_status=current,
            payment_status=updates.get("payment_status", order_row.get("payment_status")),
            previous_payment_status=order_row.get("payment_status"),
            customer_id=order_row.get("customer_id"),
        )

    def replace_items(self, order_id: str, line_items: list[LineItem]) -> int:
        """Replace the full item set of an order in one atomic store call.

        Lines that are not catalog items, or that reference a product
        missing from the local catalog, are skipped.

        Args:
            order_id: Local order id.
            line_items: Parsed line items.

        Returns:
            int: Number of item rows written.
        """
        items = self._catalog_items(order_id, line_items)
        self.client.rpc(
            "replace_order_items",
            {"p_order_id": order_id, "p_items": items},
        ).execute()
        return len(items)

    def _catalog_items(self, order_id: str, line_items: list[LineItem]) -> list[dict[str, Any]]:
        candidates = [item for item in line_items if item.item_type == "ITEM" and item.catalog_object_id]
        skipped = len(line_items) - len(candidates)
        if skipped:
            logger.info("Order %s: %d line(s) without a catalog reference skipped", order_id, skipped)
        if not candidates:
            return []

        product_ids = sorted({item.catalog_object_id for item in candidates})
        response = self.client.table("products").select("id").in_("id", product_ids).execute()
        known = {row["id"] for row in response.data or []}

        items = []
        for item in candidates:
            if item.catalog_object_id not in known:
                logger.warning(
                    "Order %s: product %s (%s) not in catalog, skipping line",
                    order_id,
                    item.catalog_object_id,
                    item.name,
                )
                continue
            items.append({
                "product_id": item.catalog_object_id,
                "quantity": item.quantity,
                "price": _money(item.base_price),
                "subtotal": _money(item.subtotal),
            })
        return items
