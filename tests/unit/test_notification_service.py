"""Unit tests for notification delivery: dispatcher, email, and Slack alerts."""

import json
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import pytest

from src.core.errors import NotifierError
from src.services.alert_service import Alert, AlertService, build_slack_payload
from src.services.email_service import EmailService
from src.services.notification_service import Notification, NotificationDispatcher


@pytest.fixture
def email_service() -> MagicMock:
    service = MagicMock()
    service.send_order_confirmation_email = AsyncMock(return_value={"success": True, "email_id": "em_1"})
    service.send_order_status_email = AsyncMock(return_value={"success": True, "email_id": "em_2"})
    return service


@pytest.fixture
def alert_service() -> MagicMock:
    service = MagicMock()
    service.send = AsyncMock(return_value=True)
    return service


class TestDispatcher:
    """Tests for NotificationDispatcher."""

    def test_notify_drops_when_full(self, email_service, alert_service) -> None:
        dispatcher = NotificationDispatcher(email_service, alert_service, maxsize=1)

        assert dispatcher.notify(Notification(kind="status_change", order_id="o-1")) is True
        assert dispatcher.notify(Notification(kind="status_change", order_id="o-2")) is False
        assert dispatcher.pending == 1

    @pytest.mark.asyncio
    async def test_deliver_confirmation(self, email_service, alert_service) -> None:
        dispatcher = NotificationDispatcher(email_service, alert_service)

        await dispatcher.deliver(Notification(
            kind="confirmation",
            order_id="o-1",
            to_email="jane@example.com",
            order_number="ORD-1001",
            customer_name="Jane",
            items=[{"name": "Blue Train LP", "quantity": 1, "subtotal": Decimal("21.65")}],
            subtotal=Decimal("36.94"),
            tax=Decimal("3.06"),
            total=Decimal("40.00"),
        ))

        kwargs = email_service.send_order_confirmation_email.await_args.kwargs
        assert kwargs["to_email"] == "jane@example.com"
        assert kwargs["total"] == Decimal("40.00")
        email_service.send_order_status_email.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_deliver_status_change(self, email_service, alert_service) -> None:
        dispatcher = NotificationDispatcher(email_service, alert_service)

        await dispatcher.deliver(Notification(
            kind="status_change", order_id="o-1", to_email="jane@example.com", order_number="ORD-1001", status="Ready",
        ))

        assert email_service.send_order_status_email.await_args.kwargs["status"] == "Ready"

    @pytest.mark.asyncio
    async def test_deliver_without_email_is_skipped(self, email_service, alert_service) -> None:
        dispatcher = NotificationDispatcher(email_service, alert_service)

        await dispatcher.deliver(Notification(kind="confirmation", order_id="o-1"))

        email_service.send_order_confirmation_email.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_deliver_alert(self, email_service, alert_service) -> None:
        dispatcher = NotificationDispatcher(email_service, alert_service)
        alert = Alert(title="Inventory Sync Failure", message="boom")

        await dispatcher.deliver(Notification(kind="alert", alert=alert))

        alert_service.send.assert_awaited_once_with(alert)

    @pytest.mark.asyncio
    async def test_failed_email_raises(self, email_service, alert_service) -> None:
        email_service.send_order_status_email.return_value = {"success": False, "error": "rate limited"}
        dispatcher = NotificationDispatcher(email_service, alert_service)

        with pytest.raises(NotifierError):
            await dispatcher.deliver(Notification(kind="status_change", to_email="jane@example.com", status="Ready"))

    @pytest.mark.asyncio
    async def test_unconfigured_email_is_not_an_error(self, email_service, alert_service) -> None:
        email_service.send_order_status_email.return_value = {"success": False, "error": "Email not configured"}
        dispatcher = NotificationDispatcher(email_service, alert_service)

        await dispatcher.deliver(Notification(kind="status_change", to_email="jane@example.com", status="Ready"))

    @pytest.mark.asyncio
    async def test_worker_drains_queue_and_survives_failures(self, email_service, alert_service) -> None:
        email_service.send_order_status_email.side_effect = [RuntimeError("smtp down"), {"success": True}]
        dispatcher = NotificationDispatcher(email_service, alert_service)

        await dispatcher.start()
        dispatcher.notify(Notification(kind="status_change", order_id="o-1", to_email="a@example.com", status="Ready"))
        dispatcher.notify(Notification(kind="status_change", order_id="o-2", to_email="b@example.com", status="Ready"))
        await dispatcher.stop()

        assert email_service.send_order_status_email.await_count == 2
        assert dispatcher.pending == 0


class TestSlackPayload:
    """Tests for build_slack_payload."""

    def test_blocks(self) -> None:
        alert = Alert(
            title="Unhandled Server Error",
            message="KeyError: 'id'",
            priority="critical",
            error_id="err_0123456789abcdef",
            route="POST /api/v1/webhooks/square",
            recommended_actions=["Check logs"],
        )

        payload = build_slack_payload(alert, "production")

        assert payload["text"] == ":red_circle: Unhandled Server Error"
        summary = payload["blocks"][1]["fields"]
        assert any("err_0123456789abcdef" in f["text"] for f in summary)
        assert any("production" in f["text"] for f in summary)
        assert "1. Check logs" in payload["blocks"][-1]["text"]["text"]

    def test_fields_chunked_by_ten(self) -> None:
        alert = Alert(title="Missing orders", message="12 missing", fields={f"Order {i}": i for i in range(12)})

        payload = build_slack_payload(alert)

        field_sections = [b for b in payload["blocks"][2:] if "fields" in b]
        assert [len(b["fields"]) for b in field_sections] == [10, 2]


class TestAlertService:
    """Tests for AlertService.send."""

    @pytest.mark.asyncio
    async def test_unconfigured_returns_false(self) -> None:
        service = AlertService(webhook_url="")

        assert await service.send(Alert(title="t", message="m")) is False

    @pytest.mark.asyncio
    async def test_posts_payload(self) -> None:
        bodies = []

        def handler(request: httpx.Request) -> httpx.Response:
            bodies.append(json.loads(request.content))
            return httpx.Response(200, text="ok")

        service = AlertService(webhook_url="https://hooks.slack.test/T000", transport=httpx.MockTransport(handler))

        assert await service.send(Alert(title="Inventory Sync Failure", message="m", priority="high")) is True
        assert bodies[0]["text"] == ":red_circle: Inventory Sync Failure"

    @pytest.mark.asyncio
    async def test_rejected_raises(self) -> None:
        service = AlertService(
            webhook_url="https://hooks.slack.test/T000",
            transport=httpx.MockTransport(lambda request: httpx.Response(404, text="no_service")),
        )

        with pytest.raises(NotifierError):
            await service.send(Alert(title="t", message="m"))


class TestEmailService:
    """Tests for EmailService."""

    @pytest.mark.asyncio
    async def test_unconfigured(self) -> None:
        with patch("src.services.email_service.get_settings") as mock_settings:
            mock_settings.return_value.resend_api_key = ""
            mock_settings.return_value.store_name = "Vinyl Shop"
            mock_settings.return_value.frontend_url = "https://shop.example.com"
            service = EmailService()

        result = await service.send_order_status_email("jane@example.com", "ORD-1001", "Jane", "Ready")

        assert result == {"success": False, "error": "Email not configured"}

    @pytest.mark.asyncio
    async def test_confirmation_sent_through_resend(self) -> None:
        with patch("src.services.email_service.get_settings") as mock_settings:
            mock_settings.return_value.resend_api_key = "re_test"
            mock_settings.return_value.email_from_address = "orders@example.com"
            mock_settings.return_value.frontend_url = "https://shop.example.com"
            mock_settings.return_value.store_name = "Vinyl Shop"
            service = EmailService()

        with patch("src.services.email_service.resend.Emails.send", return_value={"id": "em_1"}) as mock_send:
            result = await service.send_order_confirmation_email(
                to_email="jane@example.com",
                order_number="ORD-1001",
                customer_name="Jane",
                items=[{"name": "Blue Train LP", "quantity": 1, "subtotal": "21.65"}],
                subtotal=Decimal("36.94"),
                tax=Decimal("3.06"),
                total=Decimal("40.00"),
            )

        assert result == {"success": True, "email_id": "em_1"}
        params = mock_send.call_args.args[0]
        assert params["to"] == ["jane@example.com"]
        assert "ORD-1001" in params["subject"]
        assert "$40.00" in params["html"]

    @pytest.mark.asyncio
    async def test_resend_failure_is_reported(self) -> None:
        with patch("src.services.email_service.get_settings") as mock_settings:
            mock_settings.return_value.resend_api_key = "re_test"
            mock_settings.return_value.email_from_address = "orders@example.com"
            mock_settings.return_value.frontend_url = "https://shop.example.com"
            mock_settings.return_value.store_name = "Vinyl Shop"
            service = EmailService()

        with patch("src.services.email_service.resend.Emails.send", side_effect=Exception("invalid key")):
            result = await service.send_order_status_email("jane@example.com", "ORD-1001", "Jane", "Picked Up")

        assert result == {"success": False, "error": "invalid key"}
