"""Operational alerts delivered to a Slack incoming webhook."""

import logging
from dataclasses import dataclass, field
from typing import Any, Literal

import httpx

from src.core.config import get_settings
from src.core.errors import NotifierError

logger = logging.getLogger(__name__)

AlertPriority = Literal["critical", "high", "medium", "low"]

_PRIORITY_LABEL = {
    "critical": (":red_circle:", "CRITICAL"),
    "high": (":red_circle:", "HIGH PRIORITY"),
    "medium": (":large_yellow_circle:", "MEDIUM PRIORITY"),
    "low": (":large_green_circle:", "LOW PRIORITY"),
}


@dataclass
class Alert:
    """An operational alert for the on-call channel."""

    title: str
    message: str
    priority: AlertPriority = "medium"
    error_id: str | None = None
    route: str | None = None
    context: str | None = None
    fields: dict[str, Any] = field(default_factory=dict)
    recommended_actions: list[str] = field(default_factory=list)


def build_slack_payload(alert: Alert, app_env: str = "development") -> dict[str, Any]:
    """Format an alert as a Slack Block Kit message."""
    emoji, label = _PRIORITY_LABEL.get(alert.priority, _PRIORITY_LABEL["medium"])
    title = f"{emoji} {alert.title}"

    summary_fields = [{"type": "mrkdwn", "text": f"*Priority:*\n{label}"}]
    summary_fields.append({"type": "mrkdwn", "text": f"*Environment:*\n{app_env}"})
    if alert.route:
        summary_fields.append({"type": "mrkdwn", "text": f"*Route:*\n`{alert.route}`"})
    if alert.error_id:
        summary_fields.append({"type": "mrkdwn", "text": f"*Error ID:*\n`{alert.error_id}`"})

    blocks: list[dict[str, Any]] = [
        {"type": "header", "text": {"type": "plain_text", "text": title[:150]}},
        {"type": "section", "fields": summary_fields},
        {"type": "section", "text": {"type": "mrkdwn", "text": alert.message}},
    ]

    if alert.context:
        blocks.append({"type": "context", "elements": [{"type": "mrkdwn", "text": alert.context}]})

    if alert.fields:
        # Slack allows at most 10 fields per section
        items = [{"type": "mrkdwn", "text": f"*{key}:*\n{value}"} for key, value in alert.fields.items()]
        for start in range(0, len(items), 10):
            blocks.append({"type": "section", "fields": items[start:start + 10]})

    if alert.recommended_actions:
        actions = "\n".join(f"{i}. {action}" for i, action in enumerate(alert.recommended_actions, start=1))
        blocks.append({"type": "section", "text": {"type": "mrkdwn", "text": f"*Recommended actions:*\n{actions}"}})

    return {"text": title, "blocks": blocks}


class AlertService:
    """Sends alerts to Slack. Unconfigured webhooks log instead."""

    def __init__(
        self,
        webhook_url: str | None = None,
        timeout_seconds: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        settings = get_settings()
        self.webhook_url = settings.slack_webhook_url if webhook_url is None else webhook_url
        self.timeout_seconds = timeout_seconds or settings.alert_timeout_seconds
        self.app_env = settings.app_env
        self._transport = transport

    @property
    def is_configured(self) -> bool:
        return bool(self.webhook_url)

    async def send(self, alert: Alert) -> bool:
        """Deliver an alert.

        Args:
            alert: Alert to deliver.

        Returns:
            bool: True if Slack accepted the message, False if no webhook
            is configured.

        Raises:
            NotifierError: If Slack rejects the message or is unreachable.
        """
        if not self.is_configured:
            logger.warning("Slack not configured, alert not sent: %s - %s", alert.title, alert.message)
            return False

        payload = build_slack_payload(alert, self.app_env)
        try:
            async with httpx.AsyncClient(timeout=self.timeout_seconds, transport=self._transport) as client:
                response = await client.post(self.webhook_url, json=payload)
        except httpx.HTTPError as e:
            raise NotifierError(f"Slack alert delivery failed: {e}") from e

        if response.status_code != 200:
            raise NotifierError(f"Slack API error: {response.status_code}")

        logger.info("Slack alert sent: %s", alert.title)
        return True
