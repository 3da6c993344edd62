"""
Pytest configuration and fixtures for backend tests.
"""

from datetime import datetime, timezone

import mongomock
import pytest
from bson import ObjectId
from sqlalchemy.pool import StaticPool

from pos_shared.infrastructure.db import create_local_engine, create_session_factory
from pos_api.models import Base, Branch, Customer, DiningTable, Product, Supplier, User
from pos_api.services.connectivity import ConnectivityMonitor
from pos_api.services.ledger import FinanceService, LedgerService
from pos_api.services.orders import MongoOrderStore, OrderService, SqlOrderStore
from pos_api.services.purchasing import PurchaseService
from pos_api.services.sync import SyncService
from pos_api.stores.local import LocalStore
from pos_api.stores.remote import RemoteStore
from pos_api.stores.selector import EngineConfig, EngineSelector


FIXED_NOW = datetime(2024, 1, 5, 12, 0, tzinfo=timezone.utc)


def fixed_clock() -> datetime:
    return FIXED_NOW


# SQLite in-memory database shared by every session of a test
engine = create_local_engine("sqlite:///:memory:", poolclass=StaticPool)
TestingSessionLocal = create_session_factory(engine)


@pytest.fixture(scope="function")
def session_factory():
    """
    Fresh local store for each test.
    Every session opened by the code under test sees the same database.
    """
    Base.metadata.create_all(bind=engine)
    try:
        yield TestingSessionLocal
    finally:
        Base.metadata.drop_all(bind=engine)


@pytest.fixture(scope="function")
def db_session(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


# =============================================================================
# Local seed data
# =============================================================================


@pytest.fixture
def seed_branch(db_session):
    """Branch MAIN: 10% tax, 5% service charge."""
    branch = Branch(
        name="Main Branch",
        code="MAIN",
        settings={"taxRate": 10, "serviceCharge": 5, "timezone": "UTC"},
    )
    db_session.add(branch)
    db_session.commit()
    return branch


@pytest.fixture
def seed_cashier(db_session, seed_branch):
    user = User(
        name="Test Cashier",
        email="cashier@test.com",
        role="cashier",
        branch_id=seed_branch.id,
    )
    db_session.add(user)
    db_session.commit()
    return user


@pytest.fixture
def seed_products(db_session, seed_branch):
    """Product A (5.00, stock 10) and Product B (8.00, stock 3)."""
    product_a = Product(
        branch_id=seed_branch.id,
        name="Product A",
        price=5.00,
        stock=10,
        is_available=True,
        active=True,
        sku="SKU-A",
        sales_count=0,
    )
    product_b = Product(
        branch_id=seed_branch.id,
        name="Product B",
        price=8.00,
        stock=3,
        is_available=True,
        active=True,
        sku="SKU-B",
        sales_count=0,
    )
    db_session.add_all([product_a, product_b])
    db_session.commit()
    return product_a, product_b


@pytest.fixture
def seed_table(db_session, seed_branch):
    table = DiningTable(branch_id=seed_branch.id, number="T1", status="available")
    db_session.add(table)
    db_session.commit()
    return table


@pytest.fixture
def seed_customer(db_session, seed_branch):
    customer = Customer(branch_id=seed_branch.id, name="Ana Perez", phone="555-0100")
    db_session.add(customer)
    db_session.commit()
    return customer


@pytest.fixture
def seed_supplier(db_session, seed_branch):
    supplier = Supplier(branch_id=seed_branch.id, name="Fresh Foods")
    db_session.add(supplier)
    db_session.commit()
    return supplier


# =============================================================================
# Remote store and connectivity
# =============================================================================


@pytest.fixture
def remote_db():
    client = mongomock.MongoClient()
    try:
        yield client["pos_test"]
    finally:
        client.close()


@pytest.fixture
def remote(remote_db):
    store = RemoteStore(remote_db)
    store.ensure_indexes()
    return store


@pytest.fixture
def online_monitor():
    monitor = ConnectivityMonitor(probe=lambda: None, timeout_seconds=1.0)
    monitor.check_connectivity()
    return monitor


@pytest.fixture
def offline_monitor():
    return ConnectivityMonitor(probe=None)


@pytest.fixture
def sync_service(session_factory, remote, online_monitor):
    return SyncService(session_factory, remote, online_monitor, batch_size=100)


@pytest.fixture
def seed_remote(remote_db):
    """
    Remote documents for branch MAIN: a cashier, products A and B, table
    T1 and a customer. Returns the ids as strings.
    """
    created = datetime(2024, 1, 1, 9, 0)
    ids = {
        "branch": ObjectId(),
        "cashier": ObjectId(),
        "product_a": ObjectId(),
        "product_b": ObjectId(),
        "table": ObjectId(),
        "customer": ObjectId(),
    }
    stamps = {"createdAt": created, "updatedAt": created}
    remote_db["branches"].insert_one({
        "_id": ids["branch"],
        "name": "Main Branch",
        "branchCode": "MAIN",
        "settings": {"taxRate": 10, "serviceCharge": 5, "timezone": "UTC"},
        "isActive": True,
        **stamps,
    })
    remote_db["users"].insert_one({
        "_id": ids["cashier"],
        "name": "Remote Cashier",
        "email": "remote.cashier@test.com",
        "role": "cashier",
        "branch": ids["branch"],
        "isActive": True,
        **stamps,
    })
    remote_db["products"].insert_many([
        {
            "_id": ids["product_a"],
            "name": "Product A",
            "price": 5.0,
            "stock": 10,
            "isAvailable": True,
            "active": True,
            "sku": "SKU-A",
            "salesCount": 0,
            "branch": ids["branch"],
            **stamps,
        },
        {
            "_id": ids["product_b"],
            "name": "Product B",
            "price": 8.0,
            "stock": 3,
            "isAvailable": True,
            "active": True,
            "sku": "SKU-B",
            "salesCount": 0,
            "branch": ids["branch"],
            **stamps,
        },
    ])
    remote_db["tables"].insert_one({
        "_id": ids["table"],
        "number": "T1",
        "capacity": 4,
        "status": "available",
        "currentSession": None,
        "branch": ids["branch"],
        **stamps,
    })
    remote_db["customers"].insert_one({
        "_id": ids["customer"],
        "name": "Remote Customer",
        "phone": "555-0200",
        "branch": ids["branch"],
        "totalOrders": 0,
        "totalSpent": 0.0,
        "loyaltyPoints": 0,
        **stamps,
    })
    return {key: str(value) for key, value in ids.items()}


@pytest.fixture
def mirrored_remote(seed_remote, sync_service):
    """Remote seed pulled into the local mirror."""
    sync_service.sync_down()
    return seed_remote


# =============================================================================
# Order engine
# =============================================================================


@pytest.fixture
def order_service(session_factory):
    """Order engine over the local store only."""
    return OrderService(SqlOrderStore(session_factory), clock=fixed_clock)


@pytest.fixture
def mongo_selector(online_monitor):
    return EngineSelector(EngineConfig(preferred_engine="mongo", remote_configured=True), online_monitor)


@pytest.fixture
def remote_order_service(session_factory, remote, mongo_selector):
    """Order engine with the remote store active and the local store as fallback."""
    local = LocalStore(session_factory)
    return OrderService(
        SqlOrderStore(session_factory),
        MongoOrderStore(remote, local, transactions_enabled=False),
        mongo_selector,
        clock=fixed_clock,
    )


@pytest.fixture
def now():
    return FIXED_NOW


# =============================================================================
# Branch-scoped services
# =============================================================================


@pytest.fixture
def purchase_service(session_factory):
    return PurchaseService(session_factory, clock=fixed_clock)


@pytest.fixture
def ledger_service(session_factory):
    return LedgerService(session_factory, clock=fixed_clock)


@pytest.fixture
def finance_service(session_factory):
    return FinanceService(session_factory, clock=fixed_clock)
