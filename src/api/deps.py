"""FastAPI dependency injection functions."""

import hmac
from typing import Annotated

from fastapi import Depends, Header

from src.api.middleware.error_handler import AuthenticationError, AuthorizationError
from src.core.config import get_settings
from src.services.order_sync_service import OrderSyncService
from src.services.signature_service import SignatureVerifier
from src.services.webhook_service import WebhookService


def get_signature_verifier() -> SignatureVerifier:
    """Build the webhook signature verifier from settings."""
    return SignatureVerifier()


def get_webhook_service() -> WebhookService:
    """Build the webhook processing service."""
    return WebhookService()


def get_order_sync_service() -> OrderSyncService:
    """Build the order sync service."""
    return OrderSyncService()


async def require_admin_key(
    authorization: Annotated[str | None, Header(description="Bearer admin API key")] = None,
) -> None:
    """Require the admin API key in the Authorization header.

    Raises:
        AuthorizationError: 403 if no admin key is configured.
        AuthenticationError: 401 if the header is missing or the key is wrong.
    """
    admin_key = get_settings().admin_api_key
    if not admin_key:
        raise AuthorizationError("Admin API is not configured")

    if not authorization:
        raise AuthenticationError("Authorization header required")

    parts = authorization.split()
    if len(parts) != 2 or parts[0].lower() != "bearer":
        raise AuthenticationError("Invalid authorization header format. Expected: Bearer <key>")

    if not hmac.compare_digest(parts[1].encode("utf-8"), admin_key.encode("utf-8")):
        raise AuthenticationError("Invalid admin API key")


Verifier = Annotated[SignatureVerifier, Depends(get_signature_verifier)]
WebhookProcessor = Annotated[WebhookService, Depends(get_webhook_service)]
OrderSync = Annotated[OrderSyncService, Depends(get_order_sync_service)]
AdminKey = Annotated[None, Depends(require_admin_key)]
