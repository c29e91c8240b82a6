"""Unit tests for the reconciliation writer."""

from decimal import Decimal

import pytest

from src.services.order_parser import parse_order
from src.services.reconciliation_service import ReconciliationWriter


def _items(fake_db, order_id):
    return sorted(
        ((r["product_id"], r["quantity"], r["price"], r["subtotal"]) for r in fake_db.rows("order_items", order_id=order_id)),
    )


class TestReconcileCreate:
    """Tests for the create path."""

    @pytest.mark.asyncio
    async def test_creates_order_and_items(self, fake_db, square_order) -> None:
        order = parse_order("sq_123", square_order(fulfillment_state=None, state="DRAFT"))

        result = await ReconciliationWriter(fake_db).reconcile("sq_123", order, None)

        assert result.action == "created"
        assert result.status == "In Progress"
        row = fake_db.rows("orders", square_order_id="sq_123")[0]
        assert row["id"] == result.order_id
        assert row["order_number"] == "ORD-1001"
        assert row["payment_status"] == "APPROVED"
        assert row["total"] == "40.00"
        assert Decimal(row["total"]) == Decimal(row["subtotal"]) + Decimal(row["tax"]) + Decimal(row["shipping"])
        assert row["customer_id"] is None
        assert len(fake_db.rows("order_items", order_id=result.order_id)) == 2

    @pytest.mark.asyncio
    async def test_contact_snapshot_stored(self, fake_db, square_order) -> None:
        order = parse_order("sq_123", square_order())

        result = await ReconciliationWriter(fake_db).reconcile("sq_123", order, "c-1")

        row = fake_db.rows("orders", id=result.order_id)[0]
        assert row["customer_id"] == "c-1"
        assert row["pickup_details"]["email"] == "jane@example.com"
        assert row["pickup_details"]["first_name"] == "Jane"
        assert row["shipping_method"] == "pickup"

    @pytest.mark.asyncio
    async def test_unknown_product_line_is_skipped(self, fake_db, square_order) -> None:
        fragment = square_order()
        fragment["line_items"][1]["catalog_object_id"] = "CAT_DELETED"
        order = parse_order("sq_123", fragment)

        result = await ReconciliationWriter(fake_db).reconcile("sq_123", order, None)

        assert result.items_written == 1
        assert [r["product_id"] for r in fake_db.rows("order_items", order_id=result.order_id)] == ["CAT_VINYL_1"]

    @pytest.mark.asyncio
    async def test_custom_amount_lines_are_skipped(self, fake_db, square_order) -> None:
        fragment = square_order()
        fragment["line_items"].append({
            "uid": "li_custom",
            "name": "Gift wrap",
            "quantity": "1",
            "item_type": "CUSTOM_AMOUNT",
            "total_money": {"amount": 300},
        })
        order = parse_order("sq_123", fragment)

        result = await ReconciliationWriter(fake_db).reconcile("sq_123", order, None)

        assert result.items_written == 2

    @pytest.mark.asyncio
    async def test_concurrent_create_falls_through_to_update(self, fake_db, square_order) -> None:
        writer = ReconciliationWriter(fake_db)

        def concurrent_creator(table, row):
            if table == "orders" and not fake_db.rows("orders", square_order_id=row["square_order_id"]):
                fake_db.tables["orders"].append({
                    "id": "winner-id",
                    "square_order_id": row["square_order_id"],
                    "order_number": "ORD-1001",
                    "status": "New",
                    "payment_status": "PENDING",
                })

        fake_db.before_insert.append(concurrent_creator)
        order = parse_order("sq_123", square_order())

        result = await writer.reconcile("sq_123", order, None)

        assert result.action == "updated"
        assert result.order_id == "winner-id"
        assert len(fake_db.rows("orders", square_order_id="sq_123")) == 1
        assert len(fake_db.rows("order_items", order_id="winner-id")) == 2


class TestReconcileUpdate:
    """Tests for the update path."""

    @pytest.mark.asyncio
    async def test_replay_is_idempotent(self, fake_db, square_order) -> None:
        writer = ReconciliationWriter(fake_db)
        order = parse_order("sq_123", square_order())

        first = await writer.reconcile("sq_123", order, None)
        orders_after_first = [dict(r) for r in fake_db.rows("orders")]
        items_after_first = _items(fake_db, first.order_id)

        second = await writer.reconcile("sq_123", order, None)

        assert second.action == "updated"
        assert second.order_id == first.order_id
        assert second.status_changed is False
        assert len(fake_db.rows("orders")) == 1
        assert _items(fake_db, first.order_id) == items_after_first
        ignored = {"updated_at"}
        assert [{k: v for k, v in r.items() if k not in ignored} for r in fake_db.rows("orders")] == [
            {k: v for k, v in r.items() if k not in ignored} for r in orders_after_first
        ]

    @pytest.mark.asyncio
    async def test_items_replaced_not_appended(self, fake_db, square_order) -> None:
        writer = ReconciliationWriter(fake_db)
        first = await writer.reconcile("sq_123", parse_order("sq_123", square_order()), None)

        await writer.reconcile("sq_123", parse_order("sq_123", square_order(fulfillment_state="PREPARED")), None)

        assert len(fake_db.rows("order_items", order_id=first.order_id)) == 2
        replace_calls = [call for call in fake_db.rpc_calls if call[0] == "replace_order_items"]
        assert len(replace_calls) == 2

    @pytest.mark.asyncio
    async def test_sparse_update_keeps_totals_and_items(self, fake_db, square_order) -> None:
        writer = ReconciliationWriter(fake_db)
        first = await writer.reconcile("sq_123", parse_order("sq_123", square_order()), None)

        sparse = parse_order("sq_123", {"state": "OPEN", "fulfillments": [{"type": "PICKUP", "state": "PREPARED"}]})
        result = await writer.reconcile("sq_123", sparse, None)

        row = fake_db.rows("orders", id=first.order_id)[0]
        assert result.status == "Ready"
        assert row["total"] == "40.00"
        assert row["pickup_details"]["email"] == "jane@example.com"
        assert len(fake_db.rows("order_items", order_id=first.order_id)) == 2

    @pytest.mark.asyncio
    async def test_contact_snapshot_last_reconciliation_wins(self, fake_db, square_order) -> None:
        writer = ReconciliationWriter(fake_db)
        first = await writer.reconcile("sq_123", parse_order("sq_123", square_order()), None)

        corrected = parse_order("sq_123", square_order(phone="+15555559999"))
        await writer.reconcile("sq_123", corrected, None)

        assert fake_db.rows("orders", id=first.order_id)[0]["pickup_details"]["phone"] == "+15555559999"

    @pytest.mark.asyncio
    async def test_existing_customer_link_kept_when_unresolved(self, fake_db, square_order) -> None:
        writer = ReconciliationWriter(fake_db)
        first = await writer.reconcile("sq_123", parse_order("sq_123", square_order()), "c-1")

        await writer.reconcile("sq_123", parse_order("sq_123", square_order()), None)

        assert fake_db.rows("orders", id=first.order_id)[0]["customer_id"] == "c-1"

    @pytest.mark.asyncio
    async def test_existing_payment_status_used_for_override(self, fake_db, square_order) -> None:
        writer = ReconciliationWriter(fake_db)
        first = await writer.reconcile("sq_123", parse_order("sq_123", square_order()), None)
        fake_db.rows("orders", id=first.order_id)[0]["payment_status"] = "REFUNDED"
        fake_db.rows("orders", id=first.order_id)[0]["status"] = "Ready"

        result = await writer.reconcile(
            "sq_123",
            parse_order("sq_123", square_order(fulfillment_state="PREPARED", tender_status=None)),
            None,
        )

        assert result.status == "Refunded"

    @pytest.mark.asyncio
    async def test_older_fulfillment_delivery_keeps_ready(self, fake_db, square_order) -> None:
        writer = ReconciliationWriter(fake_db)
        proposed = parse_order("sq_123", square_order(fulfillment_state="PROPOSED"))
        await writer.reconcile("sq_123", proposed, None)
        ready = await writer.reconcile("sq_123", parse_order("sq_123", square_order(fulfillment_state="PREPARED")), None)

        replay = await writer.reconcile("sq_123", proposed, None)

        assert ready.status == "Ready"
        assert (replay.previous_status, replay.status) == ("Ready", "Ready")
        assert fake_db.rows("orders", id=ready.order_id)[0]["status"] == "Ready"

    @pytest.mark.asyncio
    async def test_older_version_keeps_stored_order_state(self, fake_db, square_order) -> None:
        writer = ReconciliationWriter(fake_db)
        current = square_order(fulfillment_state="PREPARED", phone="+15555559999")
        current["version"] = 4
        first = await writer.reconcile("sq_123", parse_order("sq_123", current), None)

        older = square_order(fulfillment_state="PROPOSED")
        older["version"] = 2
        older["line_items"] = older["line_items"][:1]
        older["net_amounts"]["total_money"] = {"amount": 2165}
        older["total_money"] = {"amount": 2165}
        result = await writer.reconcile("sq_123", parse_order("sq_123", older), "c-1")

        row = fake_db.rows("orders", id=first.order_id)[0]
        assert result.status == "Ready"
        assert result.items_written is None
        assert row["square_version"] == 4
        assert row["total"] == "40.00"
        assert row["pickup_details"]["phone"] == "+15555559999"
        assert row["customer_id"] == "c-1"
        assert len(fake_db.rows("order_items", order_id=first.order_id)) == 2

    @pytest.mark.asyncio
    async def test_newer_version_is_stored(self, fake_db, square_order) -> None:
        writer = ReconciliationWriter(fake_db)
        first_fragment = square_order()
        first_fragment["version"] = 1
        first = await writer.reconcile("sq_123", parse_order("sq_123", first_fragment), None)

        newer = square_order(fulfillment_state="PREPARED")
        newer["version"] = 3
        result = await writer.reconcile("sq_123", parse_order("sq_123", newer), None)

        assert result.status == "Ready"
        assert result.items_written == 2
        assert fake_db.rows("orders", id=first.order_id)[0]["square_version"] == 3


class TestApplyPayment:
    """Tests for ReconciliationWriter.apply_payment."""

    @pytest.mark.asyncio
    async def test_voided_payment_cancels_ready_order(self, fake_db) -> None:
        fake_db.tables["orders"].append({
            "id": "o-1",
            "square_order_id": "sq_123",
            "order_number": "ORD-1001",
            "status": "Ready",
            "payment_status": "APPROVED",
        })

        result = await ReconciliationWriter(fake_db).apply_payment(fake_db.rows("orders")[0], "VOIDED", "pay_1")

        row = fake_db.rows("orders", id="o-1")[0]
        assert result.status == "Canceled"
        assert row["status"] == "Canceled"
        assert row["payment_status"] == "VOIDED"
        assert row["square_payment_id"] == "pay_1"

    @pytest.mark.asyncio
    async def test_approved_payment_moves_new_once(self, fake_db) -> None:
        fake_db.tables["orders"].append({"id": "o-1", "square_order_id": "sq_1", "status": "New", "payment_status": None})
        writer = ReconciliationWriter(fake_db)

        first = await writer.apply_payment(fake_db.rows("orders", id="o-1")[0], "APPROVED")
        second = await writer.apply_payment(fake_db.rows("orders", id="o-1")[0], "COMPLETED")

        assert (first.previous_status, first.status) == ("New", "In Progress")
        assert (second.previous_status, second.status) == ("In Progress", "In Progress")
        assert fake_db.rows("orders", id="o-1")[0]["payment_status"] == "COMPLETED"

    @pytest.mark.asyncio
    async def test_refund_not_replaced_by_later_payment_status(self, fake_db) -> None:
        fake_db.tables["orders"].append({
            "id": "o-1",
            "square_order_id": "sq_123",
            "order_number": "ORD-1001",
            "status": "Refunded",
            "payment_status": "REFUNDED",
        })

        result = await ReconciliationWriter(fake_db).apply_payment(fake_db.rows("orders")[0], "COMPLETED", "pay_1")

        row = fake_db.rows("orders", id="o-1")[0]
        assert (row["status"], row["payment_status"]) == ("Refunded", "REFUNDED")
        assert result.payment_status == "REFUNDED"
        assert result.to_dict()["previous_payment_status"] == "REFUNDED"
        assert result.to_dict()["items_written"] is None
