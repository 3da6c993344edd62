"""
Order engine invariants under concurrent callers and arbitrary operation
sequences: stock never goes negative and a table is occupied exactly while
one open dine-in order holds it.
"""

from concurrent.futures import ThreadPoolExecutor
from threading import Barrier

import pytest
from hypothesis import given, settings, strategies as st
from sqlalchemy import func, select
from sqlalchemy.pool import StaticPool

from pos_shared.config.constants import OrderStatus, OrderType, TableStatus
from pos_shared.infrastructure.db import create_local_engine, create_session_factory
from pos_shared.utils.exceptions import AppException, ConflictError, InsufficientStockError
from pos_api.models import Base, Branch, DiningTable, Order, Product
from pos_api.services.orders import OrderService, SqlOrderStore
from pos_api.stores.mapping import local_marker


def _seed(factory, stock):
    with factory() as db:
        branch = Branch(name="Main Branch", code="MAIN", settings={"taxRate": 10, "serviceCharge": 5, "timezone": "UTC"})
        db.add(branch)
        db.flush()
        product = Product(branch_id=branch.id, name="Last Cake", price=5.0, stock=stock, is_available=True)
        table = DiningTable(branch_id=branch.id, number="T1", status=TableStatus.AVAILABLE)
        db.add_all([product, table])
        db.commit()
        return local_marker(branch.id), product.id, table.id


def _payload(product_id, quantity=1, table_id=None):
    payload = {
        "items": [{"product": local_marker(product_id), "quantity": quantity}],
        "orderType": OrderType.TAKEAWAY,
    }
    if table_id is not None:
        payload["orderType"] = OrderType.DINE_IN
        payload["table"] = local_marker(table_id)
    return payload


@pytest.fixture
def file_factory(tmp_path):
    """Local store on a real file so each thread gets its own connection."""
    engine = create_local_engine(f"sqlite:///{tmp_path / 'pos.db'}")
    Base.metadata.create_all(bind=engine)
    try:
        yield create_session_factory(engine)
    finally:
        engine.dispose()


def _race(service, branch_id, payloads):
    barrier = Barrier(len(payloads))

    def attempt(payload):
        barrier.wait()
        try:
            return service.create_order(branch_id, payload)
        except AppException as e:
            return e

    with ThreadPoolExecutor(max_workers=len(payloads)) as pool:
        return list(pool.map(attempt, payloads))


class TestConcurrentCreateOrder:
    def test_last_unit_sold_once(self, file_factory):
        branch_id, product_id, _ = _seed(file_factory, stock=1)
        service = OrderService(SqlOrderStore(file_factory))

        results = _race(service, branch_id, [_payload(product_id), _payload(product_id)])

        orders = [r for r in results if isinstance(r, dict)]
        errors = [r for r in results if isinstance(r, AppException)]
        assert len(orders) == 1
        assert len(errors) == 1
        with file_factory() as db:
            assert db.get(Product, product_id).stock == 0
            assert db.scalar(select(func.count()).select_from(Order)) == 1

    def test_table_claimed_once(self, file_factory):
        branch_id, product_id, table_id = _seed(file_factory, stock=10)
        service = OrderService(SqlOrderStore(file_factory))

        results = _race(
            service,
            branch_id,
            [_payload(product_id, table_id=table_id), _payload(product_id, table_id=table_id)],
        )

        orders = [r for r in results if isinstance(r, dict)]
        assert len(orders) == 1
        with file_factory() as db:
            assert db.get(DiningTable, table_id).status == TableStatus.OCCUPIED
            # The losing order gave its unit back
            assert db.get(Product, product_id).stock == 9
            assert db.scalar(select(func.count()).select_from(Order)) == 1


# =============================================================================
# Operation sequences
# =============================================================================

INITIAL_STOCK = 6

create_ops = st.tuples(st.just("create"), st.integers(min_value=1, max_value=4), st.booleans())
order_ops = st.tuples(st.sampled_from(["cancel", "pay", "delete"]), st.integers(min_value=0, max_value=7))
operations = st.lists(st.one_of(create_ops, order_ops), max_size=15)


class _Model:
    """What the order engine should hold after each accepted call."""

    def __init__(self):
        self.orders = []

    def taken(self):
        return sum(o["quantity"] for o in self.orders if o["status"] != OrderStatus.CANCELLED)

    def table_holders(self):
        return [o for o in self.orders if o["dine_in"] and o["status"] not in OrderStatus.TERMINAL]


def _apply(service, branch_id, product_id, table_id, model, op):
    kind = op[0]
    if kind == "create":
        _, quantity, dine_in = op
        expect_ok = quantity <= INITIAL_STOCK - model.taken() and not (dine_in and model.table_holders())
        try:
            order = service.create_order(branch_id, _payload(product_id, quantity, table_id if dine_in else None))
        except (InsufficientStockError, ConflictError):
            assert not expect_ok
            return
        assert expect_ok
        model.orders.append(
            {"_id": order["_id"], "quantity": quantity, "dine_in": dine_in, "status": order["status"]}
        )
        return

    if not model.orders:
        return
    target = model.orders[op[1] % len(model.orders)]
    if kind == "delete":
        service.delete_order(branch_id, target["_id"])
        model.orders.remove(target)
        return

    open_order = target["status"] not in OrderStatus.TERMINAL
    try:
        if kind == "cancel":
            service.update_order_status(branch_id, target["_id"], {"status": OrderStatus.CANCELLED})
        else:
            service.process_payment(branch_id, target["_id"], {"amount": 1000})
    except ConflictError:
        assert not open_order
        return
    assert open_order
    target["status"] = OrderStatus.CANCELLED if kind == "cancel" else OrderStatus.COMPLETED


def _check(factory, product_id, table_id, model):
    with factory() as db:
        stock = db.get(Product, product_id).stock
        table = db.get(DiningTable, table_id)
        assert stock >= 0
        assert stock == INITIAL_STOCK - model.taken()
        holders = model.table_holders()
        assert len(holders) <= 1
        expected = TableStatus.OCCUPIED if holders else TableStatus.AVAILABLE
        assert table.status == expected
        open_dine_in = db.scalar(
            select(func.count())
            .select_from(Order)
            .where(
                Order.table_id == table_id,
                Order.order_type == OrderType.DINE_IN,
                Order.status.not_in(sorted(OrderStatus.TERMINAL)),
            )
        )
        assert open_dine_in == len(holders)


class TestOrderSequences:
    @given(ops=operations)
    @settings(max_examples=40, deadline=None)
    def test_stock_and_table_stay_consistent(self, ops):
        engine = create_local_engine("sqlite:///:memory:", poolclass=StaticPool)
        Base.metadata.create_all(bind=engine)
        factory = create_session_factory(engine)
        try:
            branch_id, product_id, table_id = _seed(factory, stock=INITIAL_STOCK)
            service = OrderService(SqlOrderStore(factory))
            model = _Model()
            for op in ops:
                _apply(service, branch_id, product_id, table_id, model, op)
                _check(factory, product_id, table_id, model)
        finally:
            engine.dispose()
