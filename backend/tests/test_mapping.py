"""
Tests for the row <-> document mapping and the remote conversion helpers.
"""

from datetime import datetime, timezone

import pytest
from bson import ObjectId

from pos_shared.utils.exceptions import ValidationError
from pos_api.models import DiningTable, Order, OrderItem, Product
from pos_api.stores.mapping import (
    ORDERS,
    PRODUCTS,
    SYNC_ORDER,
    TABLES,
    USERS,
    UnresolvedReferenceError,
    apply_document,
    coerce_datetime,
    external_id,
    get_mapping,
    local_marker,
    natural_key_values,
    parse_local_marker,
    to_document,
    unknown_keys,
)
from pos_api.stores.remote import document_to_bson, filter_to_bson, from_bson, to_remote_datetime

BRANCH_REMOTE = "65a0c0ffee0000000000aaaa"
WAITER_REMOTE = "65a0c0ffee0000000000bbbb"
PRODUCT_REMOTE = "65a0c0ffee0000000000cccc"


class DictRefs:
    """Resolver over a fixed table of (entity, local id) <-> remote id."""

    def __init__(self, table):
        self._out = dict(table)
        self._in = {(entity, remote): local for (entity, local), remote in table.items()}

    def to_external(self, target, local_id):
        return self._out.get((target, local_id), local_marker(local_id))

    def to_local(self, target, external):
        local_id = parse_local_marker(external)
        if local_id is not None:
            return local_id
        return self._in.get((target, external))


@pytest.fixture
def refs():
    return DictRefs({("branches", 1): BRANCH_REMOTE, ("users", 7): WAITER_REMOTE, ("products", 4): PRODUCT_REMOTE})


class TestIds:
    def test_local_marker_round_trip(self):
        assert local_marker(12) == "local-12"
        assert parse_local_marker("local-12") == 12

    @pytest.mark.parametrize("value", ["local-", "local-x", "12", BRANCH_REMOTE, None, 12])
    def test_parse_local_marker_rejects(self, value):
        assert parse_local_marker(value) is None

    def test_external_id_prefers_remote(self):
        assert external_id(Product(id=3, remote_id=PRODUCT_REMOTE)) == PRODUCT_REMOTE
        assert external_id(Product(id=3)) == "local-3"


class TestCoerceDatetime:
    def test_naive_is_utc(self):
        assert coerce_datetime(datetime(2024, 1, 5, 12, 0)) == datetime(2024, 1, 5, 12, 0, tzinfo=timezone.utc)

    def test_iso_string_with_z(self):
        value = coerce_datetime("2024-01-05T09:00:00-03:00")
        assert value == datetime(2024, 1, 5, 12, 0, tzinfo=timezone.utc)
        assert coerce_datetime("2024-01-05T12:00:00Z") == value

    @pytest.mark.parametrize("value", ["yesterday", 1704456000])
    def test_invalid(self, value):
        with pytest.raises(ValidationError, match="Invalid datetime"):
            coerce_datetime(value)


class TestToDocument:
    def test_table_without_session(self, refs):
        table = DiningTable(id=2, number="T1", status="available", branch_id=1)

        doc = to_document(TABLES, table, refs)

        assert doc["_id"] == "local-2"
        assert doc["branch"] == BRANCH_REMOTE
        assert doc["currentSession"] is None

    def test_table_with_session(self, refs):
        started = datetime(2024, 1, 5, 12, 0, tzinfo=timezone.utc)
        table = DiningTable(
            id=2,
            remote_id="65a0c0ffee0000000000dddd",
            number="T1",
            status="occupied",
            branch_id=1,
            session_started_at=started,
            session_waiter_id=7,
        )

        doc = to_document(TABLES, table, refs)

        assert doc["_id"] == "65a0c0ffee0000000000dddd"
        assert doc["currentSession"] == {"startedAt": started, "customers": None, "waiter": WAITER_REMOTE}

    def test_order_embeds_items(self, refs):
        order = Order(id=5, order_number="MAIN-20240105-0001", branch_id=1, final_total=20.7)
        order.items = [OrderItem(product_id=4, product_name="Product A", quantity=2, price=5.0, total=10.0, position=0)]

        doc = to_document(ORDERS, order, refs)

        assert doc["orderNumber"] == "MAIN-20240105-0001"
        assert doc["items"][0]["product"] == PRODUCT_REMOTE
        assert doc["items"][0]["quantity"] == 2
        assert doc["customer"] is None


class TestApplyDocument:
    def test_copies_present_keys_only(self, refs):
        product = Product(id=4, name="Product A", price=5.0, stock=10, branch_id=1)

        apply_document(PRODUCTS, product, {"price": 6.5, "isAvailable": 0}, refs)

        assert product.price == 6.5
        assert product.is_available is False
        assert product.stock == 10
        assert product.name == "Product A"

    def test_resolves_references(self, refs):
        table = DiningTable()

        apply_document(
            TABLES,
            table,
            {"number": "T9", "branch": BRANCH_REMOTE, "currentSession": {"waiter": WAITER_REMOTE, "customers": 3}},
            refs,
        )

        assert table.branch_id == 1
        assert table.session_waiter_id == 7
        assert table.session_customers == 3

    def test_null_session_clears_fields(self, refs):
        table = DiningTable(session_waiter_id=7, session_customers=2)

        apply_document(TABLES, table, {"currentSession": None}, refs)

        assert table.session_waiter_id is None
        assert table.session_customers is None

    def test_unknown_reference(self, refs):
        with pytest.raises(UnresolvedReferenceError) as exc_info:
            apply_document(PRODUCTS, Product(), {"branch": "65a0c0ffee0000000000ffff"}, refs)
        assert exc_info.value.target == "branches"

    def test_items_replace_children(self, refs):
        order = Order()

        apply_document(ORDERS, order, {"items": [{"product": PRODUCT_REMOTE, "quantity": 1, "price": 5.0}]}, refs)

        assert len(order.items) == 1
        assert order.items[0].product_id == 4
        assert order.items[0].position == 0


class TestRegistry:
    def test_natural_keys(self):
        assert natural_key_values(PRODUCTS, {"sku": "SKU-A", "branch": BRANCH_REMOTE}) == [
            {"sku": "SKU-A", "branch": BRANCH_REMOTE}
        ]
        assert natural_key_values(PRODUCTS, {"sku": "", "branch": BRANCH_REMOTE}) == []
        assert natural_key_values(USERS, {"username": "ana"}) == [{"username": "ana"}]

    def test_unknown_keys(self):
        assert unknown_keys(TABLES, {"number": "T1", "currentSession": None, "floor": 2}) == ["floor"]

    def test_unknown_entity(self):
        with pytest.raises(ValidationError, match="Unknown entity 'invoices'"):
            get_mapping("invoices")

    def test_sync_order_is_parent_first(self):
        names = [mapping.name for mapping in SYNC_ORDER]
        for mapping in SYNC_ORDER:
            for spec in mapping.refs + mapping.child_refs:
                if spec.target != mapping.name:
                    assert names.index(spec.target) < names.index(mapping.name), (mapping.name, spec.target)


class TestRemoteConversion:
    def test_document_to_bson(self):
        created = datetime(2024, 1, 5, 12, 0, 0, 123456, tzinfo=timezone.utc)
        doc = {
            "_id": "65a0c0ffee0000000000eeee",
            "branch": BRANCH_REMOTE,
            "items": [{"product": PRODUCT_REMOTE, "quantity": 1}],
            "createdAt": created,
        }

        out = document_to_bson(ORDERS, doc)

        assert out["_id"] == ObjectId("65a0c0ffee0000000000eeee")
        assert out["branch"] == ObjectId(BRANCH_REMOTE)
        assert out["items"][0]["product"] == ObjectId(PRODUCT_REMOTE)
        assert out["createdAt"].microsecond == 123000
        assert doc["items"][0]["product"] == PRODUCT_REMOTE

    def test_nested_reference_converted(self):
        out = document_to_bson(TABLES, {"currentSession": {"waiter": WAITER_REMOTE, "customers": 2}})
        assert out["currentSession"]["waiter"] == ObjectId(WAITER_REMOTE)

    def test_filter_to_bson(self):
        out = filter_to_bson(PRODUCTS, {"id": {"$in": [PRODUCT_REMOTE]}, "branch": BRANCH_REMOTE, "stock": {"$gt": 0}})

        assert out == {
            "_id": {"$in": [ObjectId(PRODUCT_REMOTE)]},
            "branch": ObjectId(BRANCH_REMOTE),
            "stock": {"$gt": 0},
        }

    def test_from_bson(self):
        doc = from_bson({"_id": ObjectId(BRANCH_REMOTE), "items": [{"at": datetime(2024, 1, 5)}]})

        assert doc["_id"] == BRANCH_REMOTE
        assert doc["items"][0]["at"].tzinfo is timezone.utc

    def test_to_remote_datetime(self):
        value = datetime(2024, 1, 5, 12, 0, 0, 999999)
        assert to_remote_datetime(value).microsecond == 999000
