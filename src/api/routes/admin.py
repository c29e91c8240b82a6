"""Admin job endpoints: order sync and reconciliation check."""

import logging

from fastapi import APIRouter, Query

from src.api.deps import AdminKey, OrderSync
from src.api.middleware.error_handler import BadRequestError, NotFoundError, UpstreamError
from src.core.errors import UpstreamFetchError
from src.schemas.order_sync import (
    MissingOrderResponse,
    OrderSyncRequest,
    OrderSyncResponse,
    ReconciliationCheckResponse,
    SyncError,
)
from src.schemas.webhook import WebhookOrderResult

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/admin/orders", tags=["admin"])


@router.post(
    "/sync",
    response_model=OrderSyncResponse | WebhookOrderResult,
    summary="Sync orders from Square",
    description="Reconcile recent Square orders, or one order by id, through the webhook reconciliation path.",
)
async def sync_orders(
    _: AdminKey,
    service: OrderSync,
    body: OrderSyncRequest | None = None,
) -> OrderSyncResponse | WebhookOrderResult:
    """Run the order sync job.

    Args:
        service: Order sync service.
        body: Optional single order id, lookback window and location.

    Returns:
        OrderSyncResponse | WebhookOrderResult: Run summary, or the single
        order's result when ``square_order_id`` is given.

    Raises:
        NotFoundError: If a single requested order does not exist in Square.
        UpstreamError: If Square cannot be reached.
        BadRequestError: If no Square location is configured.
    """
    body = body or OrderSyncRequest()

    try:
        if body.square_order_id:
            result = await service.sync_order(body.square_order_id)
            if result is None:
                raise NotFoundError(f"Square order {body.square_order_id} not found")
            return WebhookOrderResult(square_order_id=body.square_order_id, **result.to_dict())

        summary = await service.sync_recent_orders(hours=body.hours, location_id=body.location_id)
    except UpstreamFetchError as e:
        raise UpstreamError(str(e)) from e
    except ValueError as e:
        raise BadRequestError(str(e)) from e

    return OrderSyncResponse(
        fetched=summary.fetched,
        created=summary.created,
        updated=summary.updated,
        failed=summary.failed,
        errors=[SyncError(**error) for error in summary.errors],
    )


async def _reconciliation_check(
    service: OrderSync,
    days: int | None,
    location_id: str | None,
    send_alert: bool,
) -> ReconciliationCheckResponse:
    try:
        report = await service.find_missing_orders(days=days, location_id=location_id, send_alert=send_alert)
    except UpstreamFetchError as e:
        raise UpstreamError(str(e)) from e
    except ValueError as e:
        raise BadRequestError(str(e)) from e

    return ReconciliationCheckResponse(
        checked=report.checked,
        missing_count=len(report.missing),
        missing=[MissingOrderResponse.model_validate(order) for order in report.missing],
        window_start=report.window_start,
        window_end=report.window_end,
        alert_sent=report.alert_sent,
    )


@router.get(
    "/reconciliation-check",
    response_model=ReconciliationCheckResponse,
    summary="Check for missing orders",
    description="List paid Square orders with no local order row. Sends no alerts.",
)
async def get_reconciliation_check(
    _: AdminKey,
    service: OrderSync,
    days: int | None = Query(default=None, ge=1, le=90),
    location_id: str | None = Query(default=None),
) -> ReconciliationCheckResponse:
    """Report missing orders without alerting."""
    return await _reconciliation_check(service, days, location_id, send_alert=False)


@router.post(
    "/reconciliation-check",
    response_model=ReconciliationCheckResponse,
    summary="Run missing order check",
    description="List paid Square orders with no local order row and alert Slack if any are found.",
)
async def run_reconciliation_check(
    _: AdminKey,
    service: OrderSync,
    days: int | None = Query(default=None, ge=1, le=90),
    location_id: str | None = Query(default=None),
) -> ReconciliationCheckResponse:
    """Report missing orders and send a Slack alert when there are any."""
    return await _reconciliation_check(service, days, location_id, send_alert=True)
