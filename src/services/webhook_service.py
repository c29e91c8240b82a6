"""Square webhook processing: fetch, identity, reconciliation, side effects."""

import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any

from supabase import Client

from src.core.errors import UpstreamFetchError
from src.core.square import SquareOrdersClient, get_square_client
from src.core.supabase import get_supabase_client
from src.services.alert_service import Alert
from src.services.event_normalizer import CanonicalEvent
from src.services.identity_service import IdentityReconciler
from src.services.inventory_service import InventoryService, should_deduct
from src.services.notification_service import (
    Notification,
    NotificationDispatcher,
    get_notification_dispatcher,
)
from src.services.order_parser import ParsedOrder, is_sufficient, money_to_decimal, parse_order
from src.services.reconciliation_service import ReconcileResult, ReconciliationWriter
from src.services.status_mapper import IN_PROGRESS, NEW, TERMINAL_STATUSES, READY

logger = logging.getLogger(__name__)

STATUS_EMAIL_STATUSES = frozenset({READY}) | TERMINAL_STATUSES


@dataclass
class WebhookOutcome:
    """Result of processing one webhook delivery."""

    event_type: str
    results: list[dict[str, Any]] = field(default_factory=list)

    @property
    def processed(self) -> int:
        return sum(1 for result in self.results if result.get("action") != "skipped")


def payment_status_of(payment: dict[str, Any]) -> str | None:
    """Read the payment status, treating a fully refunded payment as REFUNDED."""
    refunded = money_to_decimal(payment.get("refunded_money") or payment.get("refundedMoney"))
    total = money_to_decimal(
        payment.get("total_money") or payment.get("totalMoney")
        or payment.get("amount_money") or payment.get("amountMoney")
    )
    if refunded > 0 and refunded >= total:
        return "REFUNDED"
    return payment.get("status")


class WebhookService:
    """Turns canonical events into reconciled orders.

    Upstream fetch failures never fail a delivery: the best available
    fragment is reconciled instead. Inventory and notifications run after
    the order is written and cannot change the outcome.
    """

    def __init__(
        self,
        client: Client | None = None,
        square: SquareOrdersClient | None = None,
        dispatcher: NotificationDispatcher | None = None,
    ) -> None:
        self.client = client or get_supabase_client()
        self.square = square or get_square_client()
        self.dispatcher = dispatcher or get_notification_dispatcher()
        self.identity = IdentityReconciler(self.client)
        self.writer = ReconciliationWriter(self.client)
        self.inventory = InventoryService(self.client)

    async def process(self, event: CanonicalEvent) -> WebhookOutcome:
        """Process one canonical event.

        Args:
            event: Normalized webhook event.

        Returns:
            WebhookOutcome: Per-order results for the response body.
        """
        outcome = WebhookOutcome(event_type=event.type)

        if event.is_payment_event:
            result = await self.handle_payment_event(event)
        else:
            result = await self.handle_order_event(event)

        if result is None:
            outcome.results.append({
                "square_order_id": event.external_order_id,
                "action": "skipped",
            })
        else:
            outcome.results.append({"square_order_id": event.external_order_id, **result.to_dict()})
        return outcome

    async def _fetch_authoritative(self, external_order_id: str) -> dict[str, Any] | None:
        try:
            return await self.square.fetch_order(external_order_id)
        except UpstreamFetchError as e:
            logger.warning("Could not fetch Square order %s: %s", external_order_id, str(e))
            return None

    async def handle_order_event(self, event: CanonicalEvent) -> ReconcileResult:
        """Reconcile an order.updated event.

        Sparse fragments are replaced by the full order from Square. If the
        fetch fails the fragment is reconciled as-is; the writer then keeps
        stored totals and items of an existing order.
        """
        fragment = event.order_fragment
        if not is_sufficient(fragment):
            logger.info("Order %s fragment is sparse, fetching full order", event.external_order_id)
            fetched = await self._fetch_authoritative(event.external_order_id)
            if fetched:
                fragment = fetched
            else:
                logger.warning("Reconciling order %s from sparse fragment", event.external_order_id)

        return await self.reconcile_order(event.external_order_id, fragment)

    async def handle_payment_event(self, event: CanonicalEvent) -> ReconcileResult | None:
        """Apply a payment.created / payment.updated event.

        Known orders get the payment axis applied. Unknown orders are
        fetched from Square and created; without an order id or a
        successful fetch the event is skipped.
        """
        payment = event.payment_fragment or {}
        external_order_id = event.external_order_id
        if not external_order_id:
            logger.info("Payment %s has no order id, nothing to reconcile", payment.get("id"))
            return None

        payment_status = payment_status_of(payment)
        payment_id = payment.get("id")

        existing = self.writer.get_order_by_external_id(external_order_id)
        if existing is not None:
            result = await self.writer.apply_payment(existing, payment_status, payment_id)
            await self._after_reconcile(result)
            return result

        fetched = await self._fetch_authoritative(external_order_id)
        if not fetched:
            logger.warning(
                "Payment %s references unknown order %s that could not be fetched, skipping",
                payment_id,
                external_order_id,
            )
            return None

        return await self.reconcile_order(external_order_id, fetched, payment_status, payment_id)

    async def reconcile_order(
        self,
        external_order_id: str,
        fragment: dict[str, Any],
        payment_status: str | None = None,
        payment_id: str | None = None,
    ) -> ReconcileResult:
        """Parse, resolve identity, write, then run side effects.

        Also used by the order sync job with full orders from Square.
        """
        order = parse_order(external_order_id, fragment)
        customer_id = await self.identity.resolve(order.metadata, order)
        result = await self.writer.reconcile(
            external_order_id,
            order,
            customer_id,
            payment_status=payment_status,
            payment_id=payment_id,
        )
        await self._after_reconcile(result, order)
        return result

    async def _after_reconcile(self, result: ReconcileResult, order: ParsedOrder | None = None) -> None:
        if should_deduct(result):
            try:
                await self.inventory.deduct_for_order(result.order_id)
            except Exception as e:
                logger.error("Failed to update inventory for order %s: %s", result.order_id, str(e))
                self.dispatcher.notify(Notification(
                    kind="alert",
                    order_id=result.order_id,
                    alert=Alert(
                        title="Inventory Sync Failure",
                        message=f"Failed to update inventory for order {result.order_number}",
                        priority="high",
                        context=str(e),
                        fields={"Order ID": result.order_id, "Status": result.status},
                        recommended_actions=[
                            "Verify product stock counts against the Square dashboard",
                            "Clear orders.inventory_deducted_at to let the next event retry",
                        ],
                    ),
                ))

        self._queue_customer_notification(result, order)

    def _queue_customer_notification(self, result: ReconcileResult, order: ParsedOrder | None) -> None:
        confirmation = result.status == IN_PROGRESS and result.previous_status in (None, NEW)
        status_change = result.status_changed and result.status in STATUS_EMAIL_STATUSES
        if not (confirmation or status_change):
            return

        to_email, customer_name = self._recipient(result, order)
        if confirmation:
            items, subtotal, tax, total = self._confirmation_lines(result, order)
            self.dispatcher.notify(Notification(
                kind="confirmation",
                order_id=result.order_id,
                to_email=to_email,
                order_number=result.order_number,
                customer_name=customer_name,
                status=result.status,
                items=items,
                subtotal=subtotal,
                tax=tax,
                total=total,
            ))
        else:
            self.dispatcher.notify(Notification(
                kind="status_change",
                order_id=result.order_id,
                to_email=to_email,
                order_number=result.order_number,
                customer_name=customer_name,
                status=result.status,
            ))

    def _recipient(self, result: ReconcileResult, order: ParsedOrder | None) -> tuple[str | None, str | None]:
        """Pick the email recipient: order contact, stored snapshot, then the linked customer."""
        if order is not None and order.contact and order.contact.normalized_email:
            return order.contact.normalized_email, order.contact.first_name

        response = self.client.table("orders").select("pickup_details").eq("id", result.order_id).limit(1).execute()
        snapshot = (response.data[0].get("pickup_details") if response.data else None) or {}
        if snapshot.get("email"):
            return snapshot["email"], snapshot.get("first_name") or None

        if result.customer_id:
            response = (
                self.client.table("customers")
                .select("email, first_name")
                .eq("id", result.customer_id)
                .limit(1)
                .execute()
            )
            if response.data:
                return response.data[0].get("email"), response.data[0].get("first_name")
        return None, None

    def _confirmation_lines(
        self,
        result: ReconcileResult,
        order: ParsedOrder | None,
    ) -> tuple[list[dict[str, Any]], Decimal, Decimal, Decimal]:
        if order is not None and order.is_complete:
            items = [
                {"name": item.name, "quantity": item.quantity, "subtotal": item.subtotal}
                for item in order.line_items
                if item.item_type == "ITEM"
            ]
            return items, order.subtotal, order.tax, order.total

        order_response = (
            self.client.table("orders")
            .select("subtotal, tax, total")
            .eq("id", result.order_id)
            .limit(1)
            .execute()
        )
        row = order_response.data[0] if order_response.data else {}
        items_response = self.client.table("order_items").select("*").eq("order_id", result.order_id).execute()
        rows = items_response.data or []

        names: dict[str, str] = {}
        product_ids = sorted({row["product_id"] for row in rows})
        if product_ids:
            products = self.client.table("products").select("id, name").in_("id", product_ids).execute()
            names = {p["id"]: p.get("name") or p["id"] for p in products.data or []}

        items = [
            {
                "name": names.get(item["product_id"], item["product_id"]),
                "quantity": item["quantity"],
                "subtotal": item["subtotal"],
            }
            for item in rows
        ]
        return (
            items,
            Decimal(str(row.get("subtotal") or "0")),
            Decimal(str(row.get("tax") or "0")),
            Decimal(str(row.get("total") or "0")),
        )
