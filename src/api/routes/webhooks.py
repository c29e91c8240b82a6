"""Webhook API routes for Square order and payment events."""

import json
import logging

from fastapi import APIRouter, Request, status

from src.api.deps import Verifier, WebhookProcessor
from src.api.middleware.error_handler import AuthorizationError, BadRequestError
from src.core.errors import MalformedPayloadError, SignatureInvalidError
from src.schemas.webhook import WebhookOrderResult, WebhookResponse
from src.services.event_normalizer import SUPPORTED_EVENT_TYPES, normalize

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/webhooks", tags=["webhooks"])

# Square's current header first, then the legacy one
SIGNATURE_HEADERS = ("x-square-hmacsha256-signature", "x-square-signature")


@router.post(
    "/square",
    response_model=WebhookResponse,
    status_code=status.HTTP_200_OK,
    responses={
        400: {"description": "Malformed JSON or missing type/data"},
        403: {"description": "Missing or invalid signature"},
        500: {"description": "Unexpected failure; body carries a correlation id"},
    },
    summary="Handle Square webhooks",
    description="Receives Square order and payment events and reconciles them into the orders tables.",
)
async def square_webhook(
    request: Request,
    verifier: Verifier,
    service: WebhookProcessor,
) -> WebhookResponse:
    """Handle a Square webhook delivery.

    The signature is checked against the raw body bytes before anything
    parses them. Unsupported event types are acknowledged and ignored.

    Handles:
    - order.updated: reconcile order status, totals, items and customer
    - payment.created / payment.updated: apply the payment status

    Args:
        request: FastAPI request object for reading raw body and headers.
        verifier: Webhook signature verifier.
        service: Webhook processing service.

    Returns:
        WebhookResponse: Acknowledgment with per-order results.

    Raises:
        AuthorizationError: 403 if the signature is missing or invalid.
        BadRequestError: 400 if the body is not a valid event.
    """
    raw_body = await request.body()

    signature = next((request.headers.get(h) for h in SIGNATURE_HEADERS if request.headers.get(h)), None)
    try:
        verifier.require(raw_body, signature)
    except SignatureInvalidError as e:
        raise AuthorizationError(str(e)) from e

    try:
        envelope = json.loads(raw_body)
    except ValueError as e:
        raise BadRequestError("Invalid JSON body") from e

    if not isinstance(envelope, dict) or not envelope.get("type") or not isinstance(envelope.get("data"), dict):
        raise BadRequestError("Webhook body is missing type or data")

    event_type = envelope["type"]
    if event_type not in SUPPORTED_EVENT_TYPES:
        logger.debug("Ignoring unsupported webhook event type: %s", event_type)
        return WebhookResponse(event_type=event_type, processed=0)

    try:
        event = normalize(envelope)
    except MalformedPayloadError as e:
        raise BadRequestError(str(e)) from e

    logger.info(
        "Processing Square webhook %s for order %s (event: %s)",
        event.type,
        event.external_order_id,
        event.event_id,
    )
    outcome = await service.process(event)

    return WebhookResponse(
        event_type=outcome.event_type,
        processed=outcome.processed,
        results=[WebhookOrderResult(**result) for result in outcome.results],
    )
