"""Out-of-band order sync and reconciliation checks against Square."""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any

from supabase import Client

from src.core.config import Settings, get_settings
from src.core.errors import NotifierError
from src.core.square import SquareOrdersClient, get_square_client
from src.core.supabase import get_supabase_client
from src.services.alert_service import Alert, AlertService
from src.services.order_parser import extract_payment_status, money_to_decimal
from src.services.reconciliation_service import ReconcileResult
from src.services.status_mapper import PAYMENT_SUCCESS_STATUSES
from src.services.webhook_service import WebhookService

logger = logging.getLogger(__name__)

# Square order states that can carry a captured payment
PAID_ORDER_STATES = ["OPEN", "COMPLETED"]

MAX_ALERT_ORDERS = 10


@dataclass
class SyncSummary:
    """Counts from one sync run."""

    fetched: int = 0
    created: int = 0
    updated: int = 0
    failed: int = 0
    errors: list[dict[str, str]] = field(default_factory=list)


@dataclass(frozen=True)
class MissingOrder:
    """A paid Square order with no local row."""

    square_order_id: str
    order_number: str | None
    created_at: str | None
    total: str


@dataclass
class ReconciliationReport:
    """Result of comparing paid Square orders with local orders."""

    checked: int
    missing: list[MissingOrder]
    window_start: datetime
    window_end: datetime
    alert_sent: bool = False


class OrderSyncService:
    """Runs Square orders through the same reconciliation path as webhooks."""

    def __init__(
        self,
        client: Client | None = None,
        square: SquareOrdersClient | None = None,
        webhook_service: WebhookService | None = None,
        alert_service: AlertService | None = None,
        settings: Settings | None = None,
    ) -> None:
        self.settings = settings or get_settings()
        self.client = client or get_supabase_client()
        self.square = square or get_square_client()
        self.webhook_service = webhook_service or WebhookService(self.client, self.square)
        self.alert_service = alert_service or AlertService()

    def _location_id(self, location_id: str | None) -> str:
        location = location_id or self.settings.square_location_id
        if not location:
            raise ValueError("Square location id is not configured")
        return location

    async def sync_order(self, square_order_id: str) -> ReconcileResult | None:
        """Fetch one order from Square and reconcile it.

        Returns:
            ReconcileResult | None: None if Square has no such order.
        """
        order = await self.square.fetch_order(square_order_id)
        if not order:
            return None
        return await self.webhook_service.reconcile_order(square_order_id, order)

    async def sync_recent_orders(
        self,
        hours: int | None = None,
        location_id: str | None = None,
    ) -> SyncSummary:
        """Reconcile every order created in the lookback window.

        A failure on one order is recorded and the run continues.

        Args:
            hours: Lookback window. Defaults to ORDER_SYNC_LOOKBACK_HOURS.
            location_id: Square location. Defaults to SQUARE_LOCATION_ID.

        Returns:
            SyncSummary: Created/updated/failed counts.

        Raises:
            UpstreamFetchError: If the order list cannot be retrieved.
            ValueError: If no location id is available.
        """
        location = self._location_id(location_id)
        end_at = datetime.now(timezone.utc)
        start_at = end_at - timedelta(hours=hours or self.settings.order_sync_lookback_hours)

        orders = await self.square.list_orders(start_at, end_at, location)
        summary = SyncSummary(fetched=len(orders))

        for order in orders:
            square_order_id = order.get("id")
            if not square_order_id:
                continue
            try:
                result = await self.webhook_service.reconcile_order(square_order_id, order)
            except Exception as e:
                logger.error("Failed to sync Square order %s: %s", square_order_id, str(e))
                summary.failed += 1
                summary.errors.append({"square_order_id": square_order_id, "error": str(e)})
                continue

            if result.action == "created":
                summary.created += 1
            else:
                summary.updated += 1

        logger.info(
            "Order sync complete: %d fetched, %d created, %d updated, %d failed",
            summary.fetched,
            summary.created,
            summary.updated,
            summary.failed,
        )
        return summary

    async def find_missing_orders(
        self,
        days: int | None = None,
        location_id: str | None = None,
        send_alert: bool = False,
    ) -> ReconciliationReport:
        """Find paid Square orders that never reached the orders table.

        Args:
            days: Lookback window. Defaults to RECONCILIATION_LOOKBACK_DAYS.
            location_id: Square location. Defaults to SQUARE_LOCATION_ID.
            send_alert: Send a Slack summary when orders are missing.

        Returns:
            ReconciliationReport: Paid orders checked and those missing locally.
        """
        location = self._location_id(location_id)
        end_at = datetime.now(timezone.utc)
        start_at = end_at - timedelta(days=days or self.settings.reconciliation_lookback_days)

        orders = await self.square.list_orders(start_at, end_at, location, states=PAID_ORDER_STATES)
        paid = [
            order for order in orders
            if order.get("id") and extract_payment_status(order) in PAYMENT_SUCCESS_STATUSES
        ]

        known: set[str] = set()
        if paid:
            response = (
                self.client.table("orders")
                .select("square_order_id")
                .in_("square_order_id", [order["id"] for order in paid])
                .execute()
            )
            known = {row["square_order_id"] for row in response.data or []}

        missing = [self._missing_order(order) for order in paid if order["id"] not in known]
        report = ReconciliationReport(
            checked=len(paid),
            missing=missing,
            window_start=start_at,
            window_end=end_at,
        )

        if missing:
            logger.warning("%d paid Square orders missing from the orders table", len(missing))
            if send_alert:
                report.alert_sent = await self._send_missing_alert(report)
        return report

    @staticmethod
    def _missing_order(order: dict[str, Any]) -> MissingOrder:
        net_amounts = order.get("net_amounts") or {}
        total = money_to_decimal(net_amounts.get("total_money") or order.get("total_money"))
        return MissingOrder(
            square_order_id=order["id"],
            order_number=order.get("reference_id"),
            created_at=order.get("created_at"),
            total=str(total),
        )

    async def _send_missing_alert(self, report: ReconciliationReport) -> bool:
        listed = report.missing[:MAX_ALERT_ORDERS]
        fields = {
            order.square_order_id: f"{order.order_number or '-'} (${order.total}, {order.created_at or 'unknown'})"
            for order in listed
        }
        if len(report.missing) > MAX_ALERT_ORDERS:
            fields["More"] = f"{len(report.missing) - MAX_ALERT_ORDERS} more not shown"

        alert = Alert(
            title="Orders Missing From Database",
            message=f"{len(report.missing)} of {report.checked} paid Square orders have no local order row.",
            priority="critical",
            route="/api/v1/admin/orders/reconciliation-check",
            context=f"Window: {report.window_start.isoformat()} to {report.window_end.isoformat()}",
            fields=fields,
            recommended_actions=[
                "Check webhook delivery logs in the Square Developer Dashboard",
                "Run POST /api/v1/admin/orders/sync to backfill",
            ],
        )
        try:
            return await self.alert_service.send(alert)
        except NotifierError as e:
            logger.error("Failed to send reconciliation alert: %s", str(e))
            return False
