"""Global error handling middleware for consistent error responses."""

import logging
import traceback
import uuid
from typing import Any, Callable

from fastapi import HTTPException, Request, Response, status
from fastapi.responses import JSONResponse

from src.schemas.common import ErrorResponse
from src.services.alert_service import Alert
from src.services.notification_service import Notification, get_notification_dispatcher

logger = logging.getLogger(__name__)

CORRELATION_HEADER = "X-Request-ID"


class APIError(Exception):
    """Base exception for API errors.

    Use this class to raise application-specific errors that should
    be returned to the client with a specific status code and message.
    """

    def __init__(
        self,
        message: str,
        status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR,
        error_type: str = "api_error",
        details: list[dict[str, Any]] | None = None,
    ) -> None:
        """Initialize API error.

        Args:
            message: Human-readable error message.
            status_code: HTTP status code to return.
            error_type: Error category/type for client handling.
            details: Optional additional error details.
        """
        self.message = message
        self.status_code = status_code
        self.error_type = error_type
        self.details = details
        super().__init__(message)


class BadRequestError(APIError):
    """Malformed request body."""

    def __init__(self, message: str = "Bad request", details: list[dict[str, Any]] | None = None) -> None:
        super().__init__(
            message=message,
            status_code=status.HTTP_400_BAD_REQUEST,
            error_type="bad_request",
            details=details,
        )


class AuthenticationError(APIError):
    """Authentication failure error."""

    def __init__(self, message: str = "Authentication required", details: list[dict[str, Any]] | None = None) -> None:
        super().__init__(
            message=message,
            status_code=status.HTTP_401_UNAUTHORIZED,
            error_type="authentication_error",
            details=details,
        )


class AuthorizationError(APIError):
    """Authorization failure error."""

    def __init__(self, message: str = "Access denied", details: list[dict[str, Any]] | None = None) -> None:
        super().__init__(
            message=message,
            status_code=status.HTTP_403_FORBIDDEN,
            error_type="authorization_error",
            details=details,
        )


class NotFoundError(APIError):
    """Resource not found error."""

    def __init__(self, message: str = "Resource not found", details: list[dict[str, Any]] | None = None) -> None:
        super().__init__(
            message=message,
            status_code=status.HTTP_404_NOT_FOUND,
            error_type="not_found",
            details=details,
        )


class UpstreamError(APIError):
    """The POS platform could not serve a request we depend on."""

    def __init__(self, message: str = "Upstream service unavailable", details: list[dict[str, Any]] | None = None) -> None:
        super().__init__(
            message=message,
            status_code=status.HTTP_502_BAD_GATEWAY,
            error_type="upstream_error",
            details=details,
        )


def new_correlation_id() -> str:
    """Generate a correlation id for an error without an inbound request id."""
    return f"err_{uuid.uuid4().hex[:16]}"


def create_error_response(
    error_type: str,
    message: str,
    status_code: int,
    details: list[dict[str, Any]] | None = None,
    request_id: str | None = None,
) -> JSONResponse:
    """Create a standardized JSON error response.

    Args:
        error_type: Error category for client handling.
        message: Human-readable error description.
        status_code: HTTP status code.
        details: Optional error details.
        request_id: Optional request ID for tracing.

    Returns:
        JSONResponse: Formatted error response.
    """
    error_response = ErrorResponse.from_exception(
        error_type=error_type,
        message=message,
        details=details,
        request_id=request_id,
    )
    response = JSONResponse(
        status_code=status_code,
        content=error_response.model_dump(mode="json", exclude_none=True),
    )
    if request_id:
        response.headers[CORRELATION_HEADER] = request_id
    return response


def _alert_unhandled(request: Request, error: Exception, correlation_id: str) -> None:
    """Queue an operational alert carrying the same correlation id as the response."""
    get_notification_dispatcher().notify(Notification(
        kind="alert",
        alert=Alert(
            title="Unhandled Error",
            message=f"{type(error).__name__}: {error}",
            priority="high" if request.url.path.startswith("/api/v1/webhooks") else "medium",
            error_id=correlation_id,
            route=f"{request.method} {request.url.path}",
            recommended_actions=[
                f"Search logs for {correlation_id}",
                "Square redelivers failed webhooks; confirm the order converges after the fix",
            ],
        ),
    ))


async def error_handler_middleware(request: Request, call_next: Callable[[Request], Any]) -> Response:
    """Middleware to catch and format all exceptions.

    Ensures consistent error response format across the application.
    Unhandled exceptions get a correlation id that is returned to the
    caller, logged, and attached to the operational alert.

    Args:
        request: The incoming request.
        call_next: Next middleware or route handler.

    Returns:
        Response: Either the successful response or formatted error response.
    """
    # Extract request ID if present (can be set by upstream middleware/load balancer)
    request_id = request.headers.get(CORRELATION_HEADER)

    try:
        response = await call_next(request)
        return response

    except APIError as e:
        # Application-specific errors - log at warning level
        logger.warning(
            "API error: %s - %s",
            e.error_type,
            e.message,
            extra={"request_id": request_id, "status_code": e.status_code},
        )
        return create_error_response(
            error_type=e.error_type,
            message=e.message,
            status_code=e.status_code,
            details=e.details,
            request_id=request_id,
        )

    except HTTPException as e:
        # FastAPI HTTP exceptions
        logger.warning(
            "HTTP exception: %s - %s",
            e.status_code,
            e.detail,
            extra={"request_id": request_id},
        )
        return create_error_response(
            error_type="http_error",
            message=str(e.detail),
            status_code=e.status_code,
            request_id=request_id,
        )

    except Exception as e:
        correlation_id = request_id or new_correlation_id()
        logger.error(
            "Unhandled exception [%s]: %s\n%s",
            correlation_id,
            str(e),
            traceback.format_exc(),
            extra={"request_id": correlation_id},
        )
        _alert_unhandled(request, e, correlation_id)
        return create_error_response(
            error_type="internal_error",
            message="An unexpected error occurred",
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            request_id=correlation_id,
        )
