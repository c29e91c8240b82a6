"""Product stock deduction for paid or collected orders."""

import logging
from datetime import datetime, timezone

from supabase import Client

from src.core.supabase import get_supabase_client
from src.services.reconciliation_service import ReconcileResult
from src.services.status_mapper import COMPLETED, PICKED_UP, PAYMENT_SUCCESS_STATUSES

logger = logging.getLogger(__name__)

DEDUCT_ON_STATUSES = frozenset({PICKED_UP, COMPLETED})


def should_deduct(result: ReconcileResult) -> bool:
    """Check whether a reconciled order has reached a stock-consuming state."""
    return result.payment_status in PAYMENT_SUCCESS_STATUSES or result.status in DEDUCT_ON_STATUSES


class InventoryService:
    """Decrements products.stock_count at most once per order."""

    def __init__(self, client: Client | None = None) -> None:
        """Initialize inventory service with a Supabase client."""
        self.client = client or get_supabase_client()

    def _claim(self, order_id: str) -> bool:
        """Mark the order as deducted if no earlier pass has done so."""
        response = (
            self.client.table("orders")
            .update({"inventory_deducted_at": datetime.now(timezone.utc).isoformat()})
            .eq("id", order_id)
            .is_("inventory_deducted_at", "null")
            .execute()
        )
        return bool(response.data)

    def _release(self, order_id: str) -> None:
        self.client.table("orders").update({"inventory_deducted_at": None}).eq("id", order_id).execute()

    def _has_items(self, order_id: str) -> bool:
        response = self.client.table("order_items").select("id").eq("order_id", order_id).limit(1).execute()
        return bool(response.data)

    async def deduct_for_order(self, order_id: str) -> int:
        """Deduct item quantities of an order from product stock.

        Orders without stored items (created from a sparse fragment) are
        left unclaimed so a later pass with the full order deducts them.
        Otherwise the order row is claimed first through a conditional
        update on ``inventory_deducted_at``, so replays and concurrent
        deliveries deduct once. All item lines are decremented in one store
        call (floored at zero). If that call fails or touches no product
        the claim is released.

        Args:
            order_id: Local order id.

        Returns:
            int: Number of products updated (0 if already deducted or
            nothing to deduct).
        """
        if not self._has_items(order_id):
            logger.info("Order %s has no items yet, deferring inventory deduction", order_id)
            return 0

        if not self._claim(order_id):
            logger.debug("Inventory for order %s already deducted", order_id)
            return 0

        try:
            response = self.client.rpc("decrement_order_stock", {"p_order_id": order_id}).execute()
        except Exception:
            self._release(order_id)
            raise

        updated = response.data or 0
        if not updated:
            logger.warning("No catalog items found for order %s, releasing inventory claim", order_id)
            self._release(order_id)
        else:
            logger.info("Inventory updated for order %s: %d products", order_id, updated)
        return updated
