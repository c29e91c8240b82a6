"""Fire-and-forget delivery of customer emails and operational alerts.

Reconciliation only enqueues; a background worker started in the app
lifespan drains the queue. Delivery failures are logged and never reach
the webhook response.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Literal

from src.core.errors import NotifierError
from src.services.alert_service import Alert, AlertService
from src.services.email_service import EmailService

logger = logging.getLogger(__name__)

NotificationKind = Literal["confirmation", "status_change", "alert"]

DEFAULT_QUEUE_SIZE = 1000
SHUTDOWN_DRAIN_SECONDS = 5.0


@dataclass
class Notification:
    """A message for the outbound queue."""

    kind: NotificationKind
    order_id: str | None = None
    to_email: str | None = None
    order_number: str | None = None
    customer_name: str | None = None
    status: str | None = None
    items: list[dict[str, Any]] = field(default_factory=list)
    subtotal: Decimal = Decimal("0.00")
    tax: Decimal = Decimal("0.00")
    total: Decimal = Decimal("0.00")
    alert: Alert | None = None


class NotificationDispatcher:
    """Queue plus worker that delivers notifications off the request path."""

    def __init__(
        self,
        email_service: EmailService | None = None,
        alert_service: AlertService | None = None,
        maxsize: int = DEFAULT_QUEUE_SIZE,
    ) -> None:
        self._email_service = email_service
        self._alert_service = alert_service
        self._queue: asyncio.Queue[Notification] = asyncio.Queue(maxsize=maxsize)
        self._worker_task: asyncio.Task | None = None

    @property
    def email_service(self) -> EmailService:
        if self._email_service is None:
            self._email_service = EmailService()
        return self._email_service

    @property
    def alert_service(self) -> AlertService:
        if self._alert_service is None:
            self._alert_service = AlertService()
        return self._alert_service

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    def notify(self, notification: Notification) -> bool:
        """Enqueue a notification without waiting for delivery.

        Returns:
            bool: False if the queue is full and the notification was dropped.
        """
        try:
            self._queue.put_nowait(notification)
        except asyncio.QueueFull:
            logger.error(
                "Notification queue full, dropping %s notification for order %s",
                notification.kind,
                notification.order_id,
            )
            return False
        return True

    async def start(self) -> None:
        """Start the background delivery worker."""
        if self._worker_task is None:
            self._worker_task = asyncio.create_task(self._worker_loop())
            logger.info("Notification worker started")

    async def stop(self) -> None:
        """Drain pending notifications briefly, then stop the worker."""
        if self._worker_task is None:
            return
        try:
            await asyncio.wait_for(self._queue.join(), timeout=SHUTDOWN_DRAIN_SECONDS)
        except asyncio.TimeoutError:
            logger.warning("Notification worker stopped with %d pending", self._queue.qsize())
        self._worker_task.cancel()
        try:
            await self._worker_task
        except asyncio.CancelledError:
            pass
        self._worker_task = None
        logger.info("Notification worker stopped")

    async def _worker_loop(self) -> None:
        while True:
            notification = await self._queue.get()
            try:
                await self.deliver(notification)
            except Exception as e:
                logger.error(
                    "Failed to deliver %s notification for order %s: %s",
                    notification.kind,
                    notification.order_id,
                    str(e),
                )
            finally:
                self._queue.task_done()

    async def deliver(self, notification: Notification) -> None:
        """Deliver one notification.

        Raises:
            NotifierError: If the notification cannot be delivered.
        """
        if notification.kind == "alert":
            if notification.alert is None:
                raise NotifierError("Alert notification without alert payload")
            await self.alert_service.send(notification.alert)
            return

        if not notification.to_email:
            logger.info(
                "No email for order %s, skipping %s notification",
                notification.order_id,
                notification.kind,
            )
            return

        if notification.kind == "confirmation":
            result = await self.email_service.send_order_confirmation_email(
                to_email=notification.to_email,
                order_number=notification.order_number or "",
                customer_name=notification.customer_name,
                items=notification.items,
                subtotal=notification.subtotal,
                tax=notification.tax,
                total=notification.total,
            )
        elif notification.kind == "status_change":
            result = await self.email_service.send_order_status_email(
                to_email=notification.to_email,
                order_number=notification.order_number or "",
                customer_name=notification.customer_name,
                status=notification.status or "",
            )
        else:
            raise NotifierError(f"Unknown notification kind: {notification.kind}")

        if not result.get("success") and result.get("error") != "Email not configured":
            raise NotifierError(result.get("error") or "Email delivery failed")


# Global singleton instance
_dispatcher: NotificationDispatcher | None = None


def get_notification_dispatcher() -> NotificationDispatcher:
    """Get or create the global notification dispatcher."""
    global _dispatcher
    if _dispatcher is None:
        _dispatcher = NotificationDispatcher()
    return _dispatcher


async def init_notification_dispatcher() -> NotificationDispatcher:
    """Start the notification worker. Call at app startup."""
    dispatcher = get_notification_dispatcher()
    await dispatcher.start()
    return dispatcher


async def shutdown_notification_dispatcher() -> None:
    """Stop the notification worker. Call at app shutdown."""
    global _dispatcher
    if _dispatcher:
        await _dispatcher.stop()
        _dispatcher = None
