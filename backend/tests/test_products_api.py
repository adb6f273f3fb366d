"""
API Integration Tests — items, column moves, reject/restore.
"""

import pytest
from httpx import AsyncClient
from sqlalchemy.exc import SQLAlchemyError

from supply_chain import transfers

MISSING_ID = "00000000-0000-0000-0000-000000000099"


@pytest.mark.asyncio
class TestProductsAPI:

    async def test_create_product_lands_in_first_column(self, client: AsyncClient, boards):
        resp = await client.post(
            "/api/v1/products/",
            json={
                "kanban_id": str(boards["order"].kanban_id),
                "name": "Pipette Tips",
                "sku": "PIP-200",
                "quantity": 5,
                "unit_price": 12.5,
                "tags": ["lab"],
            },
        )
        assert resp.status_code == 201
        data = resp.json()
        assert data["column_status"] == "New Request"
        assert data["status"] == "active"
        assert data["tags"] == ["lab"]
        assert float(data["unit_price"]) == 12.5

        resp = await client.get(f"/api/v1/products/{data['product_id']}")
        assert resp.status_code == 200
        assert resp.json()["sku"] == "PIP-200"

    async def test_create_on_missing_board(self, client: AsyncClient):
        resp = await client.post("/api/v1/products/", json={"kanban_id": MISSING_ID, "name": "Ghost"})
        assert resp.status_code == 404

    async def test_get_product_not_found(self, client: AsyncClient):
        resp = await client.get(f"/api/v1/products/{MISSING_ID}")
        assert resp.status_code == 404


@pytest.mark.asyncio
class TestMoveAPI:

    async def test_move_within_board(self, client: AsyncClient, boards, make_product):
        product = await make_product(boards["order"])
        resp = await client.put(
            f"/api/v1/products/{product.product_id}/move", json={"column_status": "In Review", "notes": "quote in"}
        )
        assert resp.status_code == 200
        data = resp.json()
        assert data["outcome"] == "moved"
        assert data["product"]["column_status"] == "In Review"
        assert data["log_id"] is not None
        assert data["warning"] is None

    async def test_move_to_purchased_hands_off(self, client: AsyncClient, boards, make_product):
        product = await make_product(boards["order"])
        resp = await client.put(f"/api/v1/products/{product.product_id}/move", json={"column_status": "Purchased"})

        assert resp.status_code == 200
        data = resp.json()
        assert data["outcome"] == "transferred"
        assert data["origin_product_id"] == str(product.product_id)
        assert data["product"]["kanban_id"] == str(boards["receive"].kanban_id)
        assert data["product"]["column_status"] == "Purchased"

        origin = (await client.get(f"/api/v1/products/{product.product_id}")).json()
        assert origin["status"] == "transferred"

        logs = (await client.get(f"/api/v1/transfer-logs/product/{product.product_id}")).json()
        assert logs[0]["transferType"] == "automatic"
        assert logs[0]["transferredBy"] == "buyer@invenflow.test"

    async def test_invalid_column_returns_reason(self, client: AsyncClient, boards, make_product):
        product = await make_product(boards["order"])
        resp = await client.put(f"/api/v1/products/{product.product_id}/move", json={"column_status": "Stored"})
        assert resp.status_code == 422
        assert resp.json()["detail"]["reason"] == "InvalidColumn"

    async def test_stored_without_location(self, client: AsyncClient, boards, make_product):
        product = await make_product(boards["receive"])
        resp = await client.put(f"/api/v1/products/{product.product_id}/move", json={"column_status": "Stored"})
        assert resp.status_code == 422
        assert resp.json()["detail"]["reason"] == "MissingLocation"

    async def test_stored_with_location(self, client: AsyncClient, boards, make_product):
        product = await make_product(boards["receive"])
        resp = await client.put(
            f"/api/v1/products/{product.product_id}/move",
            json={"column_status": "Stored", "location_id": str(boards["location"].location_id)},
        )
        assert resp.status_code == 200
        assert resp.json()["product"]["stock_level"] == 0
        assert resp.json()["product"]["location_id"] == str(boards["location"].location_id)

    async def test_move_missing_product(self, client: AsyncClient):
        resp = await client.put(f"/api/v1/products/{MISSING_ID}/move", json={"column_status": "In Review"})
        assert resp.status_code == 404

    async def test_store_failure_returns_503(self, client: AsyncClient, boards, make_product, monkeypatch):
        product = await make_product(boards["order"])

        async def failing_record_transfer(db, entry):
            raise SQLAlchemyError("connection reset")

        monkeypatch.setattr(transfers, "record_transfer", failing_record_transfer)

        resp = await client.put(f"/api/v1/products/{product.product_id}/move", json={"column_status": "Purchased"})
        assert resp.status_code == 503

    async def test_unresolved_hand_off_returns_warning(self, client: AsyncClient):
        board = (await client.post("/api/v1/kanbans/", json={"name": "Solo Orders", "kind": "order"})).json()
        product = (
            await client.post("/api/v1/products/", json={"kanban_id": board["kanban_id"], "name": "Beakers"})
        ).json()

        resp = await client.put(f"/api/v1/products/{product['product_id']}/move", json={"column_status": "Purchased"})
        assert resp.status_code == 200
        data = resp.json()
        assert data["outcome"] == "moved"
        assert "No receive board resolved" in data["warning"]


    async def test_reused_request_id_is_refused(self, client: AsyncClient, boards, make_product):
        first = await make_product(boards["order"])
        second = await make_product(boards["order"], name="Face Shields")
        await client.put(
            f"/api/v1/products/{first.product_id}/move", json={"column_status": "In Review", "request_id": "r1"}
        )

        resp = await client.put(
            f"/api/v1/products/{second.product_id}/move", json={"column_status": "Purchased", "request_id": "r1"}
        )
        assert resp.status_code == 422
        assert resp.json()["detail"]["reason"] == "DuplicateRequest"

        resp = await client.get(f"/api/v1/products/{second.product_id}")
        assert resp.json()["status"] == "active"
        assert resp.json()["column_status"] == "New Request"

        logs = (await client.get("/api/v1/transfer-logs/", params={"transferType": "automatic"})).json()
        assert logs == []

    async def test_retried_hand_off_is_idempotent(self, client: AsyncClient, boards, make_product):
        product = await make_product(boards["order"])
        body = {"column_status": "Purchased", "request_id": "po-9"}

        first = await client.put(f"/api/v1/products/{product.product_id}/move", json=body)
        retry = await client.put(f"/api/v1/products/{product.product_id}/move", json=body)

        assert retry.status_code == 200
        assert retry.json()["outcome"] == "transferred"
        assert retry.json()["log_id"] == first.json()["log_id"]
        assert retry.json()["product"]["product_id"] == first.json()["product"]["product_id"]


@pytest.mark.asyncio
class TestUpdateAPI:

    async def test_edit_keeps_column(self, client: AsyncClient, boards, make_product, clock):
        product = await make_product(boards["order"])
        before = (await client.get(f"/api/v1/products/{product.product_id}")).json()
        clock.advance(hours=1)

        resp = await client.put(
            f"/api/v1/products/{product.product_id}",
            json={"supplier": "LabCorp", "priority": "high", "tags": ["bulk"], "stock_level": 3, "notes": "rush"},
        )
        assert resp.status_code == 200
        data = resp.json()
        assert data["supplier"] == "LabCorp"
        assert data["priority"] == "high"
        assert data["tags"] == ["bulk"]
        assert data["stock_level"] == 3
        assert data["notes"] == "rush"
        assert data["name"] == before["name"]
        assert data["column_status"] == before["column_status"]
        assert data["status"] == "active"

        resp = await client.get(f"/api/v1/products/{product.product_id}/threshold")
        assert resp.json()["time_in_column"] == "1h 0m"

    async def test_edited_preferred_board_changes_hand_off_target(self, client: AsyncClient, boards, make_product):
        cold_room = (await client.post("/api/v1/kanbans/", json={"name": "Cold Room", "kind": "receive"})).json()
        product = await make_product(boards["order"])

        resp = await client.put(
            f"/api/v1/products/{product.product_id}",
            json={"preferred_receive_kanban_id": cold_room["kanban_id"]},
        )
        assert resp.status_code == 200

        resp = await client.put(f"/api/v1/products/{product.product_id}/move", json={"column_status": "Purchased"})
        assert resp.json()["product"]["kanban_id"] == cold_room["kanban_id"]

    async def test_preferred_order_board_rejected(self, client: AsyncClient, boards, make_product):
        product = await make_product(boards["order"])
        resp = await client.put(
            f"/api/v1/products/{product.product_id}",
            json={"preferred_receive_kanban_id": str(boards["order"].kanban_id)},
        )
        assert resp.status_code == 422
        assert resp.json()["detail"]["reason"] == "NotReceiveBoard"

    async def test_column_fields_cannot_be_edited(self, client: AsyncClient, boards, make_product):
        product = await make_product(boards["order"])
        resp = await client.put(f"/api/v1/products/{product.product_id}", json={"column_status": "Purchased"})
        assert resp.status_code == 200
        assert resp.json()["column_status"] == "New Request"

    async def test_null_name_rejected(self, client: AsyncClient, boards, make_product):
        product = await make_product(boards["order"])
        resp = await client.put(f"/api/v1/products/{product.product_id}", json={"name": None})
        assert resp.status_code == 422

    async def test_stored_item_keeps_location(self, client: AsyncClient, boards, make_product):
        product = await make_product(boards["receive"])
        await client.put(
            f"/api/v1/products/{product.product_id}/move",
            json={"column_status": "Stored", "location_id": str(boards["location"].location_id)},
        )

        resp = await client.put(f"/api/v1/products/{product.product_id}", json={"location_id": None})
        assert resp.status_code == 422
        assert resp.json()["detail"]["reason"] == "MissingLocation"

    async def test_transferred_item_is_read_only(self, client: AsyncClient, boards, make_product):
        product = await make_product(boards["order"])
        await client.put(f"/api/v1/products/{product.product_id}/move", json={"column_status": "Purchased"})

        resp = await client.put(f"/api/v1/products/{product.product_id}", json={"notes": "late"})
        assert resp.status_code == 422
        assert resp.json()["detail"]["reason"] == "ItemClosed"

    async def test_update_missing_product(self, client: AsyncClient):
        resp = await client.put(f"/api/v1/products/{MISSING_ID}", json={"notes": "ghost"})
        assert resp.status_code == 404


@pytest.mark.asyncio
class TestRejectRestoreAPI:

    async def test_reject_and_restore(self, client: AsyncClient, boards, make_product, clock):
        product = await make_product(boards["order"])
        await client.put(f"/api/v1/products/{product.product_id}/move", json={"column_status": "In Review"})

        resp = await client.post(f"/api/v1/products/{product.product_id}/reject", json={"reason": "Duplicate"})
        assert resp.status_code == 200
        assert resp.json()["is_rejected"] is True

        resp = await client.put(f"/api/v1/products/{product.product_id}/move", json={"column_status": "Purchased"})
        assert resp.json()["detail"]["reason"] == "ItemRejected"

        clock.advance(hours=1)
        resp = await client.post(f"/api/v1/products/{product.product_id}/restore")
        assert resp.status_code == 200
        restored = resp.json()["product"]
        assert restored["column_status"] == "New Request"
        assert restored["is_rejected"] is False

    async def test_restore_active_item(self, client: AsyncClient, boards, make_product):
        product = await make_product(boards["order"])
        resp = await client.post(f"/api/v1/products/{product.product_id}/restore")
        assert resp.status_code == 422
        assert resp.json()["detail"]["reason"] == "NotRejected"

    async def test_reject_transferred_item(self, client: AsyncClient, boards, make_product):
        product = await make_product(boards["order"])
        await client.put(f"/api/v1/products/{product.product_id}/move", json={"column_status": "Purchased"})

        resp = await client.post(f"/api/v1/products/{product.product_id}/reject", json={})
        assert resp.status_code == 422
        assert resp.json()["detail"]["reason"] == "ItemClosed"


@pytest.mark.asyncio
class TestThresholdAPI:

    async def test_product_threshold(self, client: AsyncClient, boards, make_product, clock):
        product = await make_product(boards["order"])
        clock.advance(hours=3)

        resp = await client.get(f"/api/v1/products/{product.product_id}/threshold")
        assert resp.status_code == 200
        data = resp.json()
        assert data["time_in_column"] == "3h 0m"
        assert data["applied_rule"]["id"] == "warn"

    async def test_product_threshold_without_match(self, client: AsyncClient, boards, make_product):
        product = await make_product(boards["order"])
        resp = await client.get(f"/api/v1/products/{product.product_id}/threshold")
        assert resp.json()["applied_rule"] is None

    async def test_scalar_rule_config_means_no_rule(self, client: AsyncClient, test_db, boards, make_product, clock):
        boards["order"].threshold_rules = 7
        await test_db.commit()
        product = await make_product(boards["order"])
        clock.advance(hours=3)

        resp = await client.get(f"/api/v1/products/{product.product_id}/threshold")
        assert resp.status_code == 200
        assert resp.json()["applied_rule"] is None
