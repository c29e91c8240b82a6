"""Email service using Resend for order emails."""

import html
import logging
from decimal import Decimal
from typing import Any

import resend

from src.core.config import get_settings

logger = logging.getLogger(__name__)

STATUS_LABELS = {
    "New": "Order Received",
    "In Progress": "Order Processing",
    "Ready": "Ready for Pickup",
    "Picked Up": "Order Picked Up",
    "Completed": "Order Completed",
    "Canceled": "Order Canceled",
    "Refunded": "Order Refunded",
}

STATUS_MESSAGES = {
    "Ready": "Your order is ready! Bring a photo ID when you come to collect it.",
    "Picked Up": "Thanks for picking up your order. Enjoy!",
    "Completed": "Your order is complete. Thank you for shopping with us.",
    "Canceled": "Your order was canceled. If you were charged, the payment will be voided or refunded.",
    "Refunded": "Your payment has been refunded. Refunds can take 5-10 business days to appear.",
}

STATUS_COLORS = {
    "Ready": "#00B3A4",
    "Picked Up": "#00B3A4",
    "Completed": "#00B3A4",
    "Canceled": "#EF4444",
    "Refunded": "#F59E0B",
}


def _format_money(value: Decimal | str | float) -> str:
    return f"${Decimal(str(value)):.2f}"


class EmailService:
    """Service for sending order emails via Resend."""

    def __init__(self) -> None:
        """Initialize email service with Resend API key."""
        settings = get_settings()
        resend.api_key = settings.resend_api_key
        self.from_email = settings.email_from_address
        self.frontend_url = settings.frontend_url
        self.store_name = settings.store_name
        self.enabled = bool(settings.resend_api_key)

    def _send(self, to_email: str, subject: str, html_content: str, text_content: str, kind: str) -> dict[str, Any]:
        if not self.enabled:
            logger.info("Resend not configured, skipping %s email to %s", kind, to_email)
            return {"success": False, "error": "Email not configured"}

        try:
            response = resend.Emails.send({
                "from": self.from_email,
                "to": [to_email],
                "subject": subject,
                "html": html_content,
                "text": text_content,
            })

            logger.info("%s email sent to %s, id: %s", kind, to_email, response.get("id"))
            return {"success": True, "email_id": response.get("id")}

        except Exception as e:
            logger.error("Failed to send %s email to %s: %s", kind, to_email, str(e))
            return {"success": False, "error": str(e)}

    async def send_order_confirmation_email(
        self,
        to_email: str,
        order_number: str,
        customer_name: str | None,
        items: list[dict[str, Any]],
        subtotal: Decimal,
        tax: Decimal,
        total: Decimal,
    ) -> dict[str, Any]:
        """Send an order confirmation email.

        Args:
            to_email: Recipient email address.
            order_number: Human-readable order number.
            customer_name: Recipient first name (optional).
            items: Lines with ``name``, ``quantity`` and ``subtotal``.
            subtotal: Order subtotal.
            tax: Order tax.
            total: Order total.

        Returns:
            dict: ``success`` flag with the Resend email id or an error.
        """
        name = html.escape(customer_name or "there")
        order_url = f"{self.frontend_url}/orders/{order_number}"

        rows = "".join(
            f"""
            <tr>
                <td style="padding: 8px 0;">{html.escape(str(item.get("name", "Item")))} &times; {item.get("quantity", 1)}</td>
                <td style="padding: 8px 0; text-align: right;">{_format_money(item.get("subtotal", 0))}</td>
            </tr>"""
            for item in items
        )

        html_content = f"""
<!DOCTYPE html>
<html>
<head>
    <meta charset="utf-8">
    <title>Order Confirmed</title>
</head>
<body style="font-family: -apple-system, BlinkMacSystemFont, 'Segoe UI', Roboto, sans-serif; line-height: 1.6; color: #333; max-width: 600px; margin: 0 auto; padding: 20px;">
    <h1 style="font-size: 22px;">Thanks for your order, {name}!</h1>
    <p>We've received order <strong>{html.escape(order_number)}</strong> and are getting it ready.</p>

    <table style="width: 100%; border-collapse: collapse; border-top: 1px solid #e5e7eb; margin: 20px 0;">
        {rows}
        <tr style="border-top: 1px solid #e5e7eb;">
            <td style="padding: 8px 0;">Subtotal</td>
            <td style="padding: 8px 0; text-align: right;">{_format_money(subtotal)}</td>
        </tr>
        <tr>
            <td style="padding: 8px 0;">Tax</td>
            <td style="padding: 8px 0; text-align: right;">{_format_money(tax)}</td>
        </tr>
        <tr>
            <td style="padding: 8px 0;"><strong>Total</strong></td>
            <td style="padding: 8px 0; text-align: right;"><strong>{_format_money(total)}</strong></td>
        </tr>
    </table>

    <p>We'll email you again when your order is ready for pickup.</p>
    <p><a href="{order_url}" style="color: #00B3A4;">View your order</a></p>
</body>
</html>
"""

        lines = "\n".join(
            f"- {item.get('name', 'Item')} x {item.get('quantity', 1)}: {_format_money(item.get('subtotal', 0))}"
            for item in items
        )
        text_content = f"""
Thanks for your order, {customer_name or "there"}!

Order {order_number}

{lines}

Subtotal: {_format_money(subtotal)}
Tax: {_format_money(tax)}
Total: {_format_money(total)}

We'll email you again when your order is ready for pickup.
{order_url}
"""

        return self._send(
            to_email,
            f"Order {order_number} confirmed - {self.store_name}",
            html_content,
            text_content,
            "Order confirmation",
        )

    async def send_order_status_email(
        self,
        to_email: str,
        order_number: str,
        customer_name: str | None,
        status: str,
    ) -> dict[str, Any]:
        """Send an order status update email.

        Args:
            to_email: Recipient email address.
            order_number: Human-readable order number.
            customer_name: Recipient first name (optional).
            status: New customer-facing status.

        Returns:
            dict: ``success`` flag with the Resend email id or an error.
        """
        label = STATUS_LABELS.get(status, status)
        message = STATUS_MESSAGES.get(status, "")
        color = STATUS_COLORS.get(status, "#A855F7")
        order_url = f"{self.frontend_url}/orders/{order_number}"

        html_content = f"""
<!DOCTYPE html>
<html>
<head>
    <meta charset="utf-8">
    <title>Order Status Update</title>
</head>
<body style="font-family: -apple-system, BlinkMacSystemFont, 'Segoe UI', Roboto, sans-serif; line-height: 1.6; color: #333; max-width: 600px; margin: 0 auto; padding: 20px;">
    <p>Hi {html.escape(customer_name or "there")}, your order status has been updated:</p>
    <div style="border-left: 4px solid {color}; padding: 16px 20px; background: #f9fafb; border-radius: 8px;">
        <p style="margin: 0 0 8px 0; color: {color}; font-size: 18px; font-weight: 600;">
            Order {html.escape(order_number)}: {label}
        </p>
        <p style="margin: 0;">{message}</p>
    </div>
    <p><a href="{order_url}" style="color: #00B3A4;">View your order</a></p>
</body>
</html>
"""

        text_content = f"""
Hi {customer_name or "there"}, your order status has been updated:

Order {order_number}: {label}
{message}

{order_url}
"""

        return self._send(
            to_email,
            f"Order {order_number}: {label}",
            html_content,
            text_content,
            "Order status",
        )
