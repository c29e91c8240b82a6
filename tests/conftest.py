"""Pytest configuration and fixtures."""

import copy
import itertools
import os
import uuid
from collections.abc import Callable, Generator
from typing import Any
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from fastapi.testclient import TestClient
from postgrest.exceptions import APIError as PostgrestAPIError

# Set test environment variables before importing application modules
os.environ.setdefault("APP_ENV", "test")
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("SUPABASE_URL", "https://test-project.supabase.co")
os.environ.setdefault("SUPABASE_SECRET_KEY", "test-secret-key")
os.environ.setdefault("SQUARE_ACCESS_TOKEN", "test-square-token")
os.environ.setdefault("SQUARE_LOCATION_ID", "LOC123")
os.environ.setdefault("SQUARE_WEBHOOK_SIGNATURE_KEY", "test-signature-key")
os.environ.setdefault("ADMIN_API_KEY", "test-admin-key")

UNIQUE_COLUMNS = {
    "orders": ("square_order_id",),
    "customers": ("email",),
}


class FakeResponse:
    """Mimics the postgrest APIResponse shape used by services."""

    def __init__(self, data: Any) -> None:
        self.data = data


class FakeQuery:
    """Chainable query builder over an in-memory table."""

    def __init__(self, db: "FakeSupabase", table: str) -> None:
        self.db = db
        self.table_name = table
        self.operation = "select"
        self.payload: Any = None
        self.filters: list[Callable[[dict[str, Any]], bool]] = []
        self.row_limit: int | None = None

    def select(self, *_: Any, **__: Any) -> "FakeQuery":
        self.operation = "select"
        return self

    def insert(self, payload: dict[str, Any] | list[dict[str, Any]]) -> "FakeQuery":
        self.operation = "insert"
        self.payload = payload
        return self

    def update(self, payload: dict[str, Any]) -> "FakeQuery":
        self.operation = "update"
        self.payload = payload
        return self

    def delete(self) -> "FakeQuery":
        self.operation = "delete"
        return self

    def eq(self, column: str, value: Any) -> "FakeQuery":
        self.filters.append(lambda row: row.get(column) == value)
        return self

    def in_(self, column: str, values: list[Any]) -> "FakeQuery":
        allowed = set(values)
        self.filters.append(lambda row: row.get(column) in allowed)
        return self

    def is_(self, column: str, value: str) -> "FakeQuery":
        if value == "null":
            self.filters.append(lambda row: row.get(column) is None)
        else:
            self.filters.append(lambda row: row.get(column) is not None)
        return self

    def limit(self, count: int) -> "FakeQuery":
        self.row_limit = count
        return self

    def _matching(self) -> list[dict[str, Any]]:
        rows = self.db.tables.setdefault(self.table_name, [])
        return [row for row in rows if all(check(row) for check in self.filters)]

    def execute(self) -> FakeResponse:
        if self.operation == "insert":
            rows = self.payload if isinstance(self.payload, list) else [self.payload]
            return FakeResponse([self.db.insert_row(self.table_name, row) for row in rows])

        if self.operation == "update":
            matched = self._matching()
            for row in matched:
                row.update(copy.deepcopy(self.payload))
            return FakeResponse(copy.deepcopy(matched))

        if self.operation == "delete":
            matched = self._matching()
            self.db.tables[self.table_name] = [r for r in self.db.tables[self.table_name] if r not in matched]
            return FakeResponse(copy.deepcopy(matched))

        matched = self._matching()
        if self.row_limit is not None:
            matched = matched[: self.row_limit]
        return FakeResponse(copy.deepcopy(matched))


class FakeRpc:
    def __init__(self, db: "FakeSupabase", name: str, params: dict[str, Any]) -> None:
        self.db = db
        self.name = name
        self.params = params

    def execute(self) -> FakeResponse:
        self.db.rpc_calls.append((self.name, copy.deepcopy(self.params)))
        handler = getattr(self.db, f"_rpc_{self.name}")
        return FakeResponse(handler(**self.params))


class FakeSupabase:
    """In-memory stand-in for the Supabase client.

    Enforces the unique constraints on orders.square_order_id and
    customers.email, and implements the two store functions.
    """

    def __init__(self) -> None:
        self.tables: dict[str, list[dict[str, Any]]] = {
            "orders": [],
            "order_items": [],
            "customers": [],
            "products": [],
        }
        self.rpc_calls: list[tuple[str, dict[str, Any]]] = []
        self.before_insert: list[Callable[[str, dict[str, Any]], None]] = []
        self._item_ids = itertools.count(1)

    def table(self, name: str) -> FakeQuery:
        return FakeQuery(self, name)

    def rpc(self, name: str, params: dict[str, Any]) -> FakeRpc:
        return FakeRpc(self, name, params)

    def insert_row(self, table: str, row: dict[str, Any]) -> dict[str, Any]:
        for hook in list(self.before_insert):
            hook(table, row)

        stored = copy.deepcopy(row)
        if "id" not in stored:
            stored["id"] = next(self._item_ids) if table == "order_items" else str(uuid.uuid4())

        existing = self.tables.setdefault(table, [])
        for column in UNIQUE_COLUMNS.get(table, ()):
            value = stored.get(column)
            if value is not None and any(r.get(column) == value for r in existing):
                raise PostgrestAPIError({
                    "code": "23505",
                    "message": f'duplicate key value violates unique constraint "{table}_{column}_key"',
                    "details": None,
                    "hint": None,
                })

        existing.append(stored)
        return copy.deepcopy(stored)

    def rows(self, table: str, **filters: Any) -> list[dict[str, Any]]:
        return [r for r in self.tables.get(table, []) if all(r.get(k) == v for k, v in filters.items())]

    def _rpc_replace_order_items(self, p_order_id: str, p_items: list[dict[str, Any]]) -> int:
        self.tables["order_items"] = [r for r in self.tables["order_items"] if r["order_id"] != p_order_id]
        for item in p_items:
            self.tables["order_items"].append({"id": next(self._item_ids), "order_id": p_order_id, **item})
        return len(p_items)

    def _rpc_decrement_order_stock(self, p_order_id: str) -> int:
        totals: dict[str, int] = {}
        for item in self.rows("order_items", order_id=p_order_id):
            totals[item["product_id"]] = totals.get(item["product_id"], 0) + item["quantity"]
        updated = 0
        for product in self.tables["products"]:
            if product["id"] in totals:
                product["stock_count"] = max(0, product.get("stock_count", 0) - totals[product["id"]])
                updated += 1
        return updated


@pytest.fixture(scope="session")
def test_settings() -> Generator[Any, None, None]:
    """Provide test settings with cleared cache.

    Yields:
        Settings: Test configuration settings.
    """
    from src.core.config import get_settings

    get_settings.cache_clear()

    settings = get_settings()
    yield settings

    get_settings.cache_clear()


@pytest.fixture
def fake_db() -> FakeSupabase:
    """Provide an in-memory Supabase double seeded with two catalog products."""
    db = FakeSupabase()
    db.tables["products"] = [
        {"id": "CAT_VINYL_1", "name": "Blue Train LP", "stock_count": 5},
        {"id": "CAT_VINYL_2", "name": "Kind of Blue LP", "stock_count": 3},
    ]
    return db


@pytest.fixture
def mock_square() -> AsyncMock:
    """Provide a mocked Square orders client."""
    square = AsyncMock()
    square.fetch_order.return_value = None
    square.list_orders.return_value = []
    return square


@pytest.fixture
def mock_dispatcher() -> MagicMock:
    """Provide a mocked notification dispatcher."""
    dispatcher = MagicMock()
    dispatcher.notify.return_value = True
    return dispatcher


@pytest.fixture
def mock_supabase_client() -> Generator[MagicMock, None, None]:
    """Provide a mocked Supabase client for health checks.

    Yields:
        MagicMock: Mocked Supabase client for testing.
    """
    mock_client = MagicMock()

    mock_response = MagicMock()
    mock_response.data = []
    mock_client.table.return_value.select.return_value.limit.return_value.execute.return_value = (
        mock_response
    )

    with patch("src.core.supabase.get_supabase_client", return_value=mock_client):
        yield mock_client


@pytest.fixture
def client(mock_supabase_client: MagicMock) -> Generator[TestClient, None, None]:
    """Provide a test client for the FastAPI application.

    Args:
        mock_supabase_client: Mocked Supabase client fixture.

    Yields:
        TestClient: FastAPI test client.
    """
    from src.main import app

    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


def build_square_order(
    order_id: str = "sq_123",
    fulfillment_state: str | None = "PROPOSED",
    state: str = "OPEN",
    tender_status: str | None = "AUTHORIZED",
    email: str | None = "jane@example.com",
    display_name: str | None = "Jane Doe",
    phone: str | None = "+15555550100",
    metadata: dict[str, Any] | None = None,
    note: str | None = None,
) -> dict[str, Any]:
    """Build a complete Square order: two vinyl lines totalling $40.00."""
    order: dict[str, Any] = {
        "id": order_id,
        "location_id": "LOC123",
        "reference_id": "ORD-1001",
        "state": state,
        "created_at": "2026-10-17T15:00:00Z",
        "line_items": [
            {
                "uid": "li_1",
                "catalog_object_id": "CAT_VINYL_1",
                "name": "Blue Train LP",
                "quantity": "1",
                "item_type": "ITEM",
                "base_price_money": {"amount": 2000, "currency": "USD"},
                "total_money": {"amount": 2165, "currency": "USD"},
            },
            {
                "uid": "li_2",
                "catalog_object_id": "CAT_VINYL_2",
                "name": "Kind of Blue LP",
                "quantity": "1",
                "item_type": "ITEM",
                "base_price_money": {"amount": 1694, "currency": "USD"},
                "total_money": {"amount": 1835, "currency": "USD"},
            },
        ],
        "net_amounts": {
            "total_money": {"amount": 4000, "currency": "USD"},
            "tax_money": {"amount": 306, "currency": "USD"},
            "service_charge_money": {"amount": 0, "currency": "USD"},
        },
        "total_money": {"amount": 4000, "currency": "USD"},
    }
    if fulfillment_state:
        recipient: dict[str, Any] = {}
        if email:
            recipient["email_address"] = email
        if display_name:
            recipient["display_name"] = display_name
        if phone:
            recipient["phone_number"] = phone
        order["fulfillments"] = [
            {
                "uid": "ful_1",
                "type": "PICKUP",
                "state": fulfillment_state,
                "pickup_details": {"recipient": recipient, "pickup_at": "2026-10-18T17:00:00Z"},
            }
        ]
    if tender_status:
        order["tenders"] = [{"id": "tnd_1", "type": "CARD", "card_details": {"status": tender_status}}]
    if metadata is not None:
        order["metadata"] = metadata
    if note is not None:
        order["note"] = note
    return order


@pytest.fixture
def square_order() -> Callable[..., dict[str, Any]]:
    """Provide the Square order builder."""
    return build_square_order
