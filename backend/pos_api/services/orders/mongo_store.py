"""
Order store over the remote document database.

Stock and table preconditions are part of the update filters
(``stock: {$gte: qty}``, ``status: "available"``) so each check-and-mutate
is a single atomic document operation.

When ``transactions_enabled`` the unit of work runs inside a client session
transaction. Every mutation is also recorded in a compensation log; without
server transactions a failing unit of work replays that log backwards so
no partial mutation survives.

After commit the touched documents are mirrored into the local store and
the queued notifications are written to the local outbox table. Mirror
failures are logged; the next pull repairs them.
"""

from __future__ import annotations

import re
from collections import defaultdict
from contextlib import ExitStack, contextmanager
from decimal import Decimal
from typing import Any, Callable, Iterator

from bson import ObjectId
from pymongo import ReturnDocument
from pymongo.errors import DuplicateKeyError, PyMongoError
from sqlalchemy.exc import SQLAlchemyError

from pos_shared.config.constants import Engines, TableStatus
from pos_shared.config.logging import orders_logger as logger
from pos_shared.config.settings import settings
from pos_shared.utils.exceptions import NotFoundError, StoreUnavailableError

from pos_api.models import Branch, utcnow
from pos_api.services.events import write_outbox_event
from pos_api.stores.local import LocalStore
from pos_api.stores.mapping import ORDERS, SYNC_ORDER
from pos_api.stores.remote import RemoteStore, document_to_bson, from_bson, to_object_id

from .aggregate import BranchInfo, CustomerInfo, OrderAggregate, OrderLine, ProductInfo, TableInfo
from .store import DuplicateOrderNumberError, OrderStore, OrderUnitOfWork
from .totals import money, to_decimal

Undo = Callable[[], Any]


def _oid(value: Any) -> ObjectId | None:
    converted = to_object_id(value) if value is not None else None
    return converted if isinstance(converted, ObjectId) else None


class MongoOrderUnitOfWork(OrderUnitOfWork):
    def __init__(self, remote: RemoteStore, branch: dict[str, Any], session=None):
        self._remote = remote
        self._branch = branch
        self._session = session
        self._undo: list[tuple[str, Undo]] = []
        self._touched: dict[str, set[str]] = defaultdict(set)
        self._deleted: dict[str, set[str]] = defaultdict(set)
        self._events: list[tuple[str, str, dict[str, Any]]] = []

    @property
    def branch_code(self) -> str:
        return self._branch.get("branchCode")

    def _col(self, entity: str):
        return self._remote.collection(entity)

    def _record(self, description: str, undo: Undo) -> None:
        self._undo.append((description, undo))

    def _touch(self, entity: str, key: str) -> None:
        self._touched[entity].add(str(key))

    def _scoped(self, entity: str, label: str, external: str) -> dict[str, Any]:
        oid = _oid(external)
        doc = None
        if oid is not None:
            doc = self._col(entity).find_one(
                {"_id": oid, "branch": self._branch["_id"]}, session=self._session
            )
        if doc is None:
            raise NotFoundError(label, external, branch=self.branch_code)
        return doc

    def compensate(self) -> None:
        """Undo recorded mutations, newest first."""
        while self._undo:
            description, undo = self._undo.pop()
            try:
                undo()
            except PyMongoError as e:
                logger.error("Compensation step failed", step=description, error=str(e))

    # -------------------------------------------------------------------------

    def get_branch(self) -> BranchInfo:
        blob = Branch(settings=self._branch.get("settings") or {})
        return BranchInfo(
            key=str(self._branch["_id"]),
            code=self.branch_code,
            tax_rate=blob.tax_rate,
            service_charge_rate=blob.service_charge_rate,
            timezone=blob.timezone,
            currency=blob.currency,
        )

    def get_user(self, user_id: str) -> str:
        return str(self._scoped("users", "User", user_id)["_id"])

    # Products ---------------------------------------------------------------

    def get_product(self, product_id: str) -> ProductInfo:
        doc = self._scoped("products", "Product", product_id)
        return ProductInfo(
            key=str(doc["_id"]),
            name=doc.get("name"),
            price=float(doc.get("price") or 0),
            stock=int(doc.get("stock") or 0),
            is_available=doc.get("isAvailable", True),
            active=doc.get("active", True),
        )

    def decrement_stock(self, product: ProductInfo, quantity: int) -> bool:
        oid = ObjectId(product.key)
        updated = self._col("products").find_one_and_update(
            {"_id": oid, "stock": {"$gte": quantity}},
            {"$inc": {"stock": -quantity, "salesCount": quantity}, "$set": {"updatedAt": utcnow()}},
            session=self._session,
        )
        if updated is None:
            return False
        self._record(
            f"restock {product.key}",
            lambda: self._col("products").update_one(
                {"_id": oid}, {"$inc": {"stock": quantity, "salesCount": -quantity}}
            ),
        )
        self._touch("products", product.key)
        return True

    def increment_stock(self, product_key: str, quantity: int) -> None:
        oid = ObjectId(product_key)
        previous = self._col("products").find_one({"_id": oid}, session=self._session)
        if previous is None:
            logger.warning("Stock restore skipped, product no longer exists", product_id=product_key)
            return
        sales_count = int(previous.get("salesCount") or 0)
        self._col("products").update_one(
            {"_id": oid},
            {
                "$inc": {"stock": quantity},
                "$set": {"salesCount": max(sales_count - quantity, 0), "updatedAt": utcnow()},
            },
            session=self._session,
        )
        self._record(
            f"undo restock {product_key}",
            lambda: self._col("products").update_one(
                {"_id": oid}, {"$inc": {"stock": -quantity}, "$set": {"salesCount": sales_count}}
            ),
        )
        self._touch("products", product_key)

    # Tables -----------------------------------------------------------------

    def get_table(self, table_id: str) -> TableInfo:
        doc = self._scoped("tables", "Table", table_id)
        return TableInfo(key=str(doc["_id"]), number=str(doc.get("number")), status=doc.get("status"))

    def _set_table(self, table_key: str, expected_status: str, changes: dict[str, Any]) -> bool:
        oid = ObjectId(table_key)
        previous = self._col("tables").find_one_and_update(
            {"_id": oid, "status": expected_status},
            {"$set": {**changes, "updatedAt": utcnow()}},
            return_document=ReturnDocument.BEFORE,
            session=self._session,
        )
        if previous is None:
            return False
        restore = {"status": previous.get("status"), "currentSession": previous.get("currentSession")}
        self._record(
            f"restore table {table_key}",
            lambda: self._col("tables").update_one({"_id": oid}, {"$set": restore}),
        )
        self._touch("tables", table_key)
        return True

    def claim_table(self, table: TableInfo, guests: int | None, waiter_key: Any) -> bool:
        return self._set_table(
            table.key,
            TableStatus.AVAILABLE,
            {
                "status": TableStatus.OCCUPIED,
                "currentSession": {
                    "startedAt": utcnow(),
                    "customers": guests,
                    "waiter": _oid(waiter_key),
                },
            },
        )

    def release_table(self, table_key: str) -> None:
        self._set_table(
            table_key,
            TableStatus.OCCUPIED,
            {"status": TableStatus.AVAILABLE, "currentSession": None},
        )

    # Customers --------------------------------------------------------------

    def get_customer(self, customer_id: str) -> CustomerInfo:
        doc = self._scoped("customers", "Customer", customer_id)
        return CustomerInfo(key=str(doc["_id"]), name=doc.get("name"), phone=doc.get("phone"))

    def find_customer_by_phone(self, phone: str) -> CustomerInfo | None:
        doc = self._col("customers").find_one(
            {"branch": self._branch["_id"], "phone": phone}, session=self._session
        )
        if doc is None:
            return None
        return CustomerInfo(key=str(doc["_id"]), name=doc.get("name"), phone=doc.get("phone"))

    def create_customer(self, name: str, phone: str) -> CustomerInfo:
        now = utcnow()
        result = self._col("customers").insert_one(
            {
                "name": name,
                "phone": phone,
                "branch": self._branch["_id"],
                "currentBalance": 0.0,
                "totalDebit": 0.0,
                "totalCredit": 0.0,
                "totalOrders": 0,
                "totalSpent": 0.0,
                "loyaltyPoints": 0,
                "createdAt": now,
                "updatedAt": now,
            },
            session=self._session,
        )
        oid = result.inserted_id
        self._record(f"delete customer {oid}", lambda: self._col("customers").delete_one({"_id": oid}))
        self._touch("customers", oid)
        return CustomerInfo(key=str(oid), name=name, phone=phone)

    def credit_customer(self, customer_key: str, amount: Decimal, points: int) -> None:
        oid = ObjectId(customer_key)
        previous = self._col("customers").find_one({"_id": oid}, session=self._session)
        if previous is None:
            logger.warning("Customer credit skipped, customer no longer exists", customer_id=customer_key)
            return
        restore = {
            key: previous.get(key)
            for key in ("totalOrders", "totalSpent", "loyaltyPoints", "lastOrder")
        }
        self._col("customers").update_one(
            {"_id": oid},
            {
                "$set": {
                    "totalOrders": int(previous.get("totalOrders") or 0) + 1,
                    "totalSpent": float(money(to_decimal(previous.get("totalSpent")) + amount)),
                    "loyaltyPoints": int(previous.get("loyaltyPoints") or 0) + points,
                    "lastOrder": utcnow(),
                    "updatedAt": utcnow(),
                }
            },
            session=self._session,
        )
        self._record(
            f"restore customer {customer_key}",
            lambda: self._col("customers").update_one({"_id": oid}, {"$set": restore}),
        )
        self._touch("customers", customer_key)

    # Orders -----------------------------------------------------------------

    def order_numbers_with_prefix(self, prefix: str) -> list[str]:
        cursor = self._col("orders").find(
            {"orderNumber": {"$regex": "^" + re.escape(prefix)}},
            {"orderNumber": 1},
            session=self._session,
        )
        return [doc["orderNumber"] for doc in cursor]

    def insert_order(self, order: OrderAggregate) -> OrderAggregate:
        now = utcnow()
        body = document_to_bson(ORDERS, _order_to_document(order, str(self._branch["_id"])))
        body["createdAt"] = now
        body["updatedAt"] = now
        try:
            result = self._col("orders").insert_one(body, session=self._session)
        except DuplicateKeyError as e:
            raise DuplicateOrderNumberError(order.order_number) from e
        oid = result.inserted_id
        self._record(f"delete order {oid}", lambda: self._col("orders").delete_one({"_id": oid}))
        order.key = str(oid)
        self._touch("orders", oid)
        return order

    def load_order(self, order_id: str) -> OrderAggregate:
        return _document_to_order(from_bson(self._scoped("orders", "Order", order_id)))

    def save_order(self, order: OrderAggregate) -> OrderAggregate:
        oid = ObjectId(order.key)
        previous = self._col("orders").find_one({"_id": oid}, session=self._session)
        body = document_to_bson(ORDERS, _order_to_document(order, str(self._branch["_id"])))
        body["createdAt"] = previous.get("createdAt") or utcnow()
        body["updatedAt"] = utcnow()
        self._col("orders").replace_one({"_id": oid}, body, session=self._session)
        self._record(f"restore order {oid}", lambda: self._col("orders").replace_one({"_id": oid}, previous))
        self._touch("orders", oid)
        return order

    def delete_order(self, order: OrderAggregate) -> None:
        oid = ObjectId(order.key)
        previous = self._col("orders").find_one_and_delete({"_id": oid}, session=self._session)
        if previous is not None:
            self._record(f"reinsert order {oid}", lambda: self._col("orders").insert_one(previous))
        self._touched["orders"].discard(str(oid))
        self._deleted["orders"].add(str(oid))

    def order_document(self, order: OrderAggregate) -> dict[str, Any]:
        doc = self._col("orders").find_one({"_id": ObjectId(order.key)}, session=self._session)
        return from_bson(doc)

    # Notifications ----------------------------------------------------------

    def emit(self, event_type: str, aggregate_type: str, document: dict[str, Any]) -> None:
        self._events.append((event_type, aggregate_type, document))

    # After commit -----------------------------------------------------------

    def mirror_locally(self, local: LocalStore) -> None:
        for mapping in SYNC_ORDER:
            for remote_id in sorted(self._touched.get(mapping.name, ())):
                try:
                    doc = self._remote.find_one(mapping.name, {"_id": remote_id})
                    if doc is not None:
                        local.mirror(mapping.name, doc)
                except (StoreUnavailableError, SQLAlchemyError) as e:
                    logger.error(
                        "Local mirror after commit failed",
                        entity=mapping.name,
                        remote_id=remote_id,
                        error=str(e),
                    )
            for remote_id in sorted(self._deleted.get(mapping.name, ())):
                try:
                    local.delete_by_remote_id(mapping.name, remote_id)
                except SQLAlchemyError as e:
                    logger.error(
                        "Local delete after commit failed",
                        entity=mapping.name,
                        remote_id=remote_id,
                        error=str(e),
                    )

    def publish_events(self, local: LocalStore) -> None:
        if not self._events:
            return
        try:
            with local.session_factory() as db:
                for event_type, aggregate_type, document in self._events:
                    write_outbox_event(
                        db,
                        branch=self.branch_code,
                        event_type=event_type,
                        aggregate_type=aggregate_type,
                        aggregate_id=document["_id"],
                        payload=document,
                    )
                db.commit()
        except SQLAlchemyError as e:
            logger.error(
                "Could not queue notifications",
                events=[event for event, _, _ in self._events],
                error=str(e),
            )


def _order_to_document(order: OrderAggregate, branch_id: str) -> dict[str, Any]:
    return {
        "orderNumber": order.order_number,
        "orderType": order.order_type,
        "status": order.status,
        "kitchenStatus": order.kitchen_status,
        "customer": order.customer_key,
        "customerName": order.customer_name,
        "customerPhone": order.customer_phone,
        "table": order.table_key,
        "tableNumber": order.table_number,
        "subtotal": order.subtotal,
        "tax": order.tax,
        "serviceCharge": order.service_charge,
        "discount": order.discount,
        "tip": order.tip,
        "finalTotal": order.final_total,
        "paymentMethod": order.payment_method,
        "paymentStatus": order.payment_status,
        "cashier": order.cashier_key,
        "notes": order.notes,
        "kitchenNotes": order.kitchen_notes,
        "servedAt": order.served_at,
        "completedAt": order.completed_at,
        "paidAt": order.paid_at,
        "branch": branch_id,
        "items": [
            {
                "product": line.product_key,
                "productName": line.product_name,
                "quantity": line.quantity,
                "price": line.price,
                "total": line.total,
                "notes": line.notes,
            }
            for line in order.items
        ],
    }


def _document_to_order(doc: dict[str, Any]) -> OrderAggregate:
    return OrderAggregate(
        key=doc["_id"],
        order_number=doc["orderNumber"],
        branch_key=doc.get("branch"),
        order_type=doc.get("orderType"),
        status=doc.get("status"),
        kitchen_status=doc.get("kitchenStatus"),
        customer_key=doc.get("customer"),
        customer_name=doc.get("customerName"),
        customer_phone=doc.get("customerPhone"),
        table_key=doc.get("table"),
        table_number=doc.get("tableNumber"),
        subtotal=float(doc.get("subtotal") or 0),
        tax=float(doc.get("tax") or 0),
        service_charge=float(doc.get("serviceCharge") or 0),
        discount=float(doc.get("discount") or 0),
        tip=float(doc.get("tip") or 0),
        final_total=float(doc.get("finalTotal") or 0),
        payment_method=doc.get("paymentMethod"),
        payment_status=doc.get("paymentStatus"),
        cashier_key=doc.get("cashier"),
        notes=doc.get("notes"),
        kitchen_notes=doc.get("kitchenNotes"),
        served_at=doc.get("servedAt"),
        completed_at=doc.get("completedAt"),
        paid_at=doc.get("paidAt"),
        items=[
            OrderLine(
                product_key=item.get("product"),
                product_name=item.get("productName"),
                quantity=int(item.get("quantity") or 0),
                price=float(item.get("price") or 0),
                total=float(item.get("total") or 0),
                notes=item.get("notes"),
            )
            for item in doc.get("items") or []
        ],
    )


class MongoOrderStore(OrderStore):
    name = Engines.MONGO

    def __init__(
        self,
        remote: RemoteStore,
        local: LocalStore,
        transactions_enabled: bool | None = None,
    ):
        self._remote = remote
        self._local = local
        if transactions_enabled is None:
            transactions_enabled = settings.remote_transactions_enabled
        self._transactions = transactions_enabled

    @contextmanager
    def unit_of_work(self, branch_id: str, operation: str) -> Iterator[MongoOrderUnitOfWork]:
        uow: MongoOrderUnitOfWork | None = None
        try:
            with ExitStack() as stack:
                session = None
                if self._transactions:
                    session = stack.enter_context(self._remote.client.start_session())
                    stack.enter_context(session.start_transaction())
                branch_oid = _oid(branch_id)
                branch = None
                if branch_oid is not None:
                    branch = self._remote.collection("branches").find_one({"_id": branch_oid}, session=session)
                if branch is None:
                    raise NotFoundError("Branch", branch_id)
                uow = MongoOrderUnitOfWork(self._remote, branch, session)
                yield uow
        except Exception as e:
            # An aborted server transaction already discarded the writes
            if uow is not None and not self._transactions:
                uow.compensate()
            if isinstance(e, PyMongoError):
                logger.warning("Remote order transaction failed", operation=operation, error=str(e))
                raise StoreUnavailableError(operation, str(e)) from e
            raise
        uow.mirror_locally(self._local)
        uow.publish_events(self._local)
