"""
Tests for the order engine with the remote store active.
"""

from unittest.mock import patch

import pytest
from bson import ObjectId
from pymongo.errors import ServerSelectionTimeoutError
from sqlalchemy import select

from pos_shared.utils.exceptions import ConflictError, InsufficientStockError
from pos_api.models import DiningTable, Order, OutboxEvent, Product


def _payload(ids, **extra):
    payload = {
        "items": [
            {"product": ids["product_a"], "quantity": 2},
            {"product": ids["product_b"], "quantity": 1},
        ],
        "table": ids["table"],
        "orderType": "dine-in",
    }
    payload.update(extra)
    return payload


class TestMongoOrderStore:
    """Orders written to the remote store and mirrored locally."""

    def test_create_order_remote_first(self, remote_order_service, remote_db, mirrored_remote, db_session):
        ids = mirrored_remote
        order = remote_order_service.create_order(ids["branch"], _payload(ids), cashier_id=ids["cashier"])

        assert ObjectId.is_valid(order["_id"])
        assert order["orderNumber"] == "MAIN-20240105-0001"
        assert order["finalTotal"] == 20.70

        remote_order = remote_db["orders"].find_one({"_id": ObjectId(order["_id"])})
        assert remote_order["branch"] == ObjectId(ids["branch"])
        assert remote_order["items"][0]["product"] == ObjectId(ids["product_a"])
        assert remote_db["products"].find_one({"_id": ObjectId(ids["product_a"])})["stock"] == 8
        assert remote_db["products"].find_one({"_id": ObjectId(ids["product_b"])})["stock"] == 2
        table = remote_db["tables"].find_one({"_id": ObjectId(ids["table"])})
        assert table["status"] == "occupied"
        assert table["currentSession"]["waiter"] == ObjectId(ids["cashier"])

        # Mirrored into the local store as synced rows
        db_session.expire_all()
        local_order = db_session.scalar(select(Order).where(Order.remote_id == order["_id"]))
        assert local_order is not None
        assert local_order.synced is True
        assert len(local_order.items) == 2
        local_a = db_session.scalar(select(Product).where(Product.remote_id == ids["product_a"]))
        assert local_a.stock == 8
        assert local_a.synced is True

        events = db_session.scalars(select(OutboxEvent)).all()
        assert [event.event_type for event in events] == ["order-created"]
        assert events[0].branch == "MAIN"

    def test_insufficient_stock_leaves_remote_untouched(self, remote_order_service, remote_db, mirrored_remote):
        ids = mirrored_remote
        payload = _payload(ids)
        payload["items"][1]["quantity"] = 5

        with pytest.raises(InsufficientStockError):
            remote_order_service.create_order(ids["branch"], payload)

        assert remote_db["products"].find_one({"_id": ObjectId(ids["product_a"])})["stock"] == 10
        assert remote_db["orders"].count_documents({}) == 0

    def test_table_conflict_compensates(self, remote_order_service, remote_db, mirrored_remote, db_session):
        """Without server transactions the recorded mutations are undone."""
        ids = mirrored_remote
        remote_db["tables"].update_one({"_id": ObjectId(ids["table"])}, {"$set": {"status": "occupied"}})

        with pytest.raises(ConflictError, match="Table T1 is not available"):
            remote_order_service.create_order(ids["branch"], _payload(ids))

        product_a = remote_db["products"].find_one({"_id": ObjectId(ids["product_a"])})
        product_b = remote_db["products"].find_one({"_id": ObjectId(ids["product_b"])})
        assert product_a["stock"] == 10
        assert product_a["salesCount"] == 0
        assert product_b["stock"] == 3
        assert remote_db["orders"].count_documents({}) == 0
        assert db_session.scalars(select(OutboxEvent)).all() == []

    def test_cancel_and_pay_flow(self, remote_order_service, remote_db, mirrored_remote):
        ids = mirrored_remote
        branch_id = ids["branch"]
        first = remote_order_service.create_order(branch_id, _payload(ids, customer=ids["customer"]))

        result = remote_order_service.process_payment(branch_id, first["_id"], {"amount": 25})
        assert result.change == 4.30
        customer = remote_db["customers"].find_one({"_id": ObjectId(ids["customer"])})
        assert customer["loyaltyPoints"] == 20
        assert customer["totalOrders"] == 1
        assert remote_db["tables"].find_one({"_id": ObjectId(ids["table"])})["status"] == "available"

        second = remote_order_service.create_order(branch_id, _payload(ids))
        assert second["orderNumber"] == "MAIN-20240105-0002"
        cancelled = remote_order_service.update_order_status(branch_id, second["_id"], {"status": "cancelled"})
        assert cancelled["status"] == "cancelled"
        # First order keeps its stock, the cancelled one gives it back
        assert remote_db["products"].find_one({"_id": ObjectId(ids["product_a"])})["stock"] == 8

    def test_delete_order_removes_mirror(self, remote_order_service, remote_db, mirrored_remote, db_session):
        ids = mirrored_remote
        order = remote_order_service.create_order(ids["branch"], _payload(ids))

        remote_order_service.delete_order(ids["branch"], order["_id"])

        assert remote_db["orders"].count_documents({}) == 0
        db_session.expire_all()
        assert db_session.scalar(select(Order).where(Order.remote_id == order["_id"])) is None
        assert db_session.scalar(select(Product).where(Product.remote_id == ids["product_b"])).stock == 3

    def test_remote_outage_falls_back_to_local(self, remote_order_service, remote, mirrored_remote, db_session):
        """An unreachable remote store degrades the call to the local store."""
        ids = mirrored_remote

        with patch.object(remote, "collection", side_effect=ServerSelectionTimeoutError("timed out")):
            order = remote_order_service.create_order(ids["branch"], _payload(ids))

        assert order["_id"].startswith("local-")
        assert order["finalTotal"] == 20.70

        db_session.expire_all()
        row = db_session.scalar(select(Order).where(Order.order_number == order["orderNumber"]))
        assert row.synced is False
        local_table = db_session.scalar(select(DiningTable).where(DiningTable.remote_id == ids["table"]))
        assert local_table.status == "occupied"
        assert local_table.synced is False

    def test_local_ids_route_to_local_store(self, remote_order_service, remote, mirrored_remote, db_session):
        ids = mirrored_remote
        with patch.object(remote, "collection", side_effect=ServerSelectionTimeoutError("timed out")):
            order = remote_order_service.create_order(ids["branch"], _payload(ids))

        # The remote store is back but does not know local-<n> ids
        updated = remote_order_service.update_order_status(ids["branch"], order["_id"], {"status": "confirmed"})
        assert updated["_id"] == order["_id"]
        assert updated["status"] == "confirmed"
