"""Square Orders API client used to fetch authoritative order data."""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any

import httpx
from tenacity import (
    retry,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from src.core.config import Settings, get_settings
from src.core.errors import UpstreamFetchError

logger = logging.getLogger(__name__)

# One retry after the first failure
MAX_ATTEMPTS = 2
MIN_WAIT_SECONDS = 0.2
MAX_WAIT_SECONDS = 1

SEARCH_PAGE_SIZE = 100


@dataclass(frozen=True)
class SquareClientConfig:
    """Connection settings for the Square Orders API."""

    access_token: str
    base_url: str
    api_version: str
    timeout_seconds: float = 5.0

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> "SquareClientConfig":
        """Build the client config from application settings."""
        settings = settings or get_settings()
        return cls(
            access_token=settings.square_access_token.strip(),
            base_url=settings.square_base_url,
            api_version=settings.square_api_version,
            timeout_seconds=settings.square_request_timeout_seconds,
        )

    @property
    def is_configured(self) -> bool:
        """Check whether an access token is available."""
        return bool(self.access_token)


def _is_retryable(error: BaseException) -> bool:
    """Retry transport failures and 5xx responses, nothing else."""
    if not isinstance(error, UpstreamFetchError):
        return False
    return error.status_code is None or error.status_code >= 500


class SquareOrdersClient:
    """Thin async client for the two Square order capabilities we consume.

    ``fetch_order`` retrieves one full order by id; ``list_orders`` searches
    orders created within a time range at a location. Both run with the
    configured timeout and retry once on transient failures.
    """

    def __init__(
        self,
        config: SquareClientConfig | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Initialize the client.

        Args:
            config: Square connection settings. Defaults to application settings.
            transport: Optional httpx transport, used by tests.
        """
        self.config = config or SquareClientConfig.from_settings()
        self._transport = transport

    def _headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self.config.access_token}",
            "Square-Version": self.config.api_version,
            "Content-Type": "application/json",
        }

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.config.base_url,
            headers=self._headers(),
            timeout=self.config.timeout_seconds,
            transport=self._transport,
        )

    @retry(
        retry=retry_if_exception(_is_retryable),
        stop=stop_after_attempt(MAX_ATTEMPTS),
        wait=wait_exponential(multiplier=MIN_WAIT_SECONDS, min=MIN_WAIT_SECONDS, max=MAX_WAIT_SECONDS),
        reraise=True,
    )
    async def _request(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        """Send a request, mapping transport and server failures to UpstreamFetchError."""
        try:
            async with self._client() as client:
                response = await client.request(method, path, **kwargs)
        except httpx.TransportError as e:
            logger.warning("Square request %s %s failed: %s", method, path, str(e))
            raise UpstreamFetchError(f"Square request failed: {e}") from e

        if response.status_code >= 500:
            logger.warning("Square request %s %s returned %d", method, path, response.status_code)
            raise UpstreamFetchError(
                f"Square returned {response.status_code}",
                status_code=response.status_code,
            )
        return response

    async def fetch_order(self, order_id: str) -> dict[str, Any] | None:
        """Fetch a complete order by its Square id.

        Args:
            order_id: Square order id.

        Returns:
            dict | None: The order object, or None if Square has no such order
            or the client is not configured.

        Raises:
            UpstreamFetchError: If Square is unreachable after the retry, or
                rejects the request for a reason other than not-found.
        """
        if not self.config.is_configured:
            logger.warning("Square access token not configured - cannot fetch order %s", order_id)
            return None

        response = await self._request("GET", f"/v2/orders/{order_id}")

        if response.status_code == 404:
            logger.info("Square order %s not found", order_id)
            return None
        if response.status_code >= 400:
            raise UpstreamFetchError(
                f"Square rejected order fetch with {response.status_code}",
                status_code=response.status_code,
            )

        order = response.json().get("order")
        if not order:
            logger.warning("Square order fetch for %s returned no order body", order_id)
            return None
        return order

    async def list_orders(
        self,
        start_at: datetime,
        end_at: datetime,
        location_id: str,
        states: list[str] | None = None,
    ) -> list[dict[str, Any]]:
        """Search orders created within a time range at one location.

        Args:
            start_at: Inclusive lower bound on order creation time.
            end_at: Upper bound on order creation time.
            location_id: Square location id.
            states: Optional order state filter (e.g. ["COMPLETED"]).

        Returns:
            list[dict]: All matching orders across result pages.

        Raises:
            UpstreamFetchError: If any page cannot be retrieved.
        """
        if not self.config.is_configured:
            logger.warning("Square access token not configured - cannot list orders")
            return []

        query_filter: dict[str, Any] = {
            "date_time_filter": {
                "created_at": {
                    "start_at": start_at.isoformat(),
                    "end_at": end_at.isoformat(),
                }
            }
        }
        if states:
            query_filter["state_filter"] = {"states": states}

        orders: list[dict[str, Any]] = []
        cursor: str | None = None

        while True:
            body: dict[str, Any] = {
                "location_ids": [location_id],
                "query": {"filter": query_filter},
                "limit": SEARCH_PAGE_SIZE,
            }
            if cursor:
                body["cursor"] = cursor

            response = await self._request("POST", "/v2/orders/search", json=body)
            if response.status_code >= 400:
                raise UpstreamFetchError(
                    f"Square rejected order search with {response.status_code}",
                    status_code=response.status_code,
                )

            data = response.json()
            orders.extend(data.get("orders") or [])
            cursor = data.get("cursor")
            if not cursor:
                break

        logger.info("Fetched %d orders from Square for location %s", len(orders), location_id)
        return orders

    async def check_connection(self) -> dict[str, Any]:
        """Check that the Square API accepts our credentials."""
        if not self.config.is_configured:
            return {"healthy": False, "error": "Square access token not configured"}
        try:
            async with self._client() as client:
                response = await client.get("/v2/locations")
            if response.status_code >= 400:
                return {"healthy": False, "error": f"Square returned {response.status_code}"}
            return {"healthy": True}
        except httpx.HTTPError as e:
            return {"healthy": False, "error": str(e)}


def get_square_client() -> SquareOrdersClient:
    """Create a Square orders client from application settings."""
    return SquareOrdersClient(SquareClientConfig.from_settings())
