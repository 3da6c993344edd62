"""
Order store over the local SQLite mirror.

One SQLAlchemy transaction per unit of work. Stock and table preconditions
are checked by the UPDATE statements that apply them, so two interleaved
orders can never both take the last unit or the same table. Every write
marks the row unsynced and queues it for the next push in the same
transaction; notifications go to the outbox table in that transaction too.
"""

from __future__ import annotations

from contextlib import contextmanager
from decimal import Decimal
from typing import Any, Iterator

from sqlalchemy import case, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from pos_shared.config.constants import Engines, TableStatus
from pos_shared.config.logging import orders_logger as logger
from pos_shared.utils.exceptions import NotFoundError, TransactionAbortedError

from pos_api.models import Branch, Customer, DiningTable, Order, OrderItem, Product, User, utcnow
from pos_api.services.events import write_outbox_event
from pos_api.stores import sync_queue
from pos_api.stores.local import LocalRefs, row_document
from pos_api.stores.mapping import ORDERS

from .aggregate import BranchInfo, CustomerInfo, OrderAggregate, OrderLine, ProductInfo, TableInfo
from .store import DuplicateOrderNumberError, OrderStore, OrderUnitOfWork
from .totals import money, to_decimal


class SqlOrderUnitOfWork(OrderUnitOfWork):
    def __init__(self, db: Session, branch: Branch):
        self._db = db
        self._branch = branch
        self._refs = LocalRefs(db)

    def _scoped(self, model: type, entity: str, label: str, external: str) -> Any:
        local_id = self._refs.to_local(entity, str(external))
        row = self._db.get(model, local_id) if local_id is not None else None
        if row is None or row.branch_id != self._branch.id:
            raise NotFoundError(label, external, branch=self._branch.code)
        return row

    def _touch(self, entity: str, row_id: int) -> None:
        sync_queue.queue_upsert(self._db, entity, row_id)

    def get_branch(self) -> BranchInfo:
        branch = self._branch
        return BranchInfo(
            key=branch.id,
            code=branch.code,
            tax_rate=branch.tax_rate,
            service_charge_rate=branch.service_charge_rate,
            timezone=branch.timezone,
            currency=branch.currency,
        )

    def get_user(self, user_id: str) -> int:
        return self._scoped(User, "users", "User", user_id).id

    # Products ---------------------------------------------------------------

    def get_product(self, product_id: str) -> ProductInfo:
        row = self._scoped(Product, "products", "Product", product_id)
        return ProductInfo(
            key=row.id,
            name=row.name,
            price=row.price,
            stock=row.stock,
            is_available=row.is_available,
            active=row.active,
        )

    def decrement_stock(self, product: ProductInfo, quantity: int) -> bool:
        result = self._db.execute(
            update(Product)
            .where(Product.id == product.key, Product.stock >= quantity)
            .values(
                stock=Product.stock - quantity,
                sales_count=Product.sales_count + quantity,
                synced=False,
                updated_at=utcnow(),
            )
            .execution_options(synchronize_session="fetch")
        )
        if result.rowcount != 1:
            return False
        self._touch("products", product.key)
        return True

    def increment_stock(self, product_key: int, quantity: int) -> None:
        result = self._db.execute(
            update(Product)
            .where(Product.id == product_key)
            .values(
                stock=Product.stock + quantity,
                sales_count=case(
                    (Product.sales_count >= quantity, Product.sales_count - quantity),
                    else_=0,
                ),
                synced=False,
                updated_at=utcnow(),
            )
            .execution_options(synchronize_session="fetch")
        )
        if result.rowcount != 1:
            logger.warning("Stock restore skipped, product no longer exists", product_id=product_key)
            return
        self._touch("products", product_key)

    # Tables -----------------------------------------------------------------

    def get_table(self, table_id: str) -> TableInfo:
        row = self._scoped(DiningTable, "tables", "Table", table_id)
        return TableInfo(key=row.id, number=row.number, status=row.status)

    def claim_table(self, table: TableInfo, guests: int | None, waiter_key: Any) -> bool:
        result = self._db.execute(
            update(DiningTable)
            .where(DiningTable.id == table.key, DiningTable.status == TableStatus.AVAILABLE)
            .values(
                status=TableStatus.OCCUPIED,
                session_started_at=utcnow(),
                session_customers=guests,
                session_waiter_id=waiter_key,
                synced=False,
                updated_at=utcnow(),
            )
            .execution_options(synchronize_session="fetch")
        )
        if result.rowcount != 1:
            return False
        self._touch("tables", table.key)
        return True

    def release_table(self, table_key: int) -> None:
        result = self._db.execute(
            update(DiningTable)
            .where(DiningTable.id == table_key, DiningTable.status == TableStatus.OCCUPIED)
            .values(
                status=TableStatus.AVAILABLE,
                session_started_at=None,
                session_customers=None,
                session_waiter_id=None,
                synced=False,
                updated_at=utcnow(),
            )
            .execution_options(synchronize_session="fetch")
        )
        if result.rowcount == 1:
            self._touch("tables", table_key)

    # Customers --------------------------------------------------------------

    def get_customer(self, customer_id: str) -> CustomerInfo:
        row = self._scoped(Customer, "customers", "Customer", customer_id)
        return CustomerInfo(key=row.id, name=row.name, phone=row.phone)

    def find_customer_by_phone(self, phone: str) -> CustomerInfo | None:
        row = self._db.scalar(
            select(Customer).where(Customer.branch_id == self._branch.id, Customer.phone == phone)
        )
        return CustomerInfo(key=row.id, name=row.name, phone=row.phone) if row else None

    def create_customer(self, name: str, phone: str) -> CustomerInfo:
        row = Customer(branch_id=self._branch.id, name=name, phone=phone, synced=False)
        self._db.add(row)
        self._db.flush()
        self._touch("customers", row.id)
        return CustomerInfo(key=row.id, name=row.name, phone=row.phone)

    def credit_customer(self, customer_key: int, amount: Decimal, points: int) -> None:
        row = self._db.get(Customer, customer_key)
        if row is None:
            logger.warning("Customer credit skipped, customer no longer exists", customer_id=customer_key)
            return
        row.total_orders = (row.total_orders or 0) + 1
        row.total_spent = float(money(to_decimal(row.total_spent) + amount))
        row.loyalty_points = (row.loyalty_points or 0) + points
        row.last_order_at = utcnow()
        row.mark_dirty()
        self._touch("customers", row.id)

    # Orders -----------------------------------------------------------------

    def order_numbers_with_prefix(self, prefix: str) -> list[str]:
        return list(
            self._db.scalars(
                select(Order.order_number).where(Order.order_number.startswith(prefix, autoescape=True))
            )
        )

    def insert_order(self, order: OrderAggregate) -> OrderAggregate:
        row = Order(branch_id=self._branch.id, synced=False)
        _apply_aggregate(row, order, replace_items=True)
        self._db.add(row)
        try:
            self._db.flush()
        except IntegrityError as e:
            if "order_number" in str(e.orig):
                raise DuplicateOrderNumberError(order.order_number) from e
            raise
        self._touch("orders", row.id)
        order.key = row.id
        return order

    def load_order(self, order_id: str) -> OrderAggregate:
        return _to_aggregate(self._scoped(Order, "orders", "Order", order_id))

    def save_order(self, order: OrderAggregate) -> OrderAggregate:
        row = self._db.get(Order, order.key)
        items_changed = _line_signature(order.items) != _row_signature(row.items)
        _apply_aggregate(row, order, replace_items=items_changed)
        row.mark_dirty()
        self._db.flush()
        self._touch("orders", row.id)
        return order

    def delete_order(self, order: OrderAggregate) -> None:
        row = self._db.get(Order, order.key)
        if row.remote_id:
            sync_queue.queue_delete(self._db, "orders", row.id, row.remote_id)
        else:
            sync_queue.complete_upserts(self._db, "orders", row.id)
        self._db.delete(row)
        self._db.flush()

    def order_document(self, order: OrderAggregate) -> dict[str, Any]:
        return row_document(self._db, ORDERS, self._db.get(Order, order.key))

    # Notifications ----------------------------------------------------------

    def emit(self, event_type: str, aggregate_type: str, document: dict[str, Any]) -> None:
        write_outbox_event(
            self._db,
            branch=self._branch.code,
            event_type=event_type,
            aggregate_type=aggregate_type,
            aggregate_id=document["_id"],
            payload=document,
        )


def _line_signature(lines: list[OrderLine]) -> list[tuple]:
    return [(line.product_key, line.quantity, line.price, line.notes) for line in lines]


def _row_signature(items: list[OrderItem]) -> list[tuple]:
    return [(item.product_id, item.quantity, item.price, item.notes) for item in items]


def _apply_aggregate(row: Order, order: OrderAggregate, replace_items: bool) -> None:
    row.order_number = order.order_number
    row.order_type = order.order_type
    row.status = order.status
    row.kitchen_status = order.kitchen_status
    row.customer_id = order.customer_key
    row.customer_name = order.customer_name
    row.customer_phone = order.customer_phone
    row.table_id = order.table_key
    row.table_number = order.table_number
    row.subtotal = order.subtotal
    row.tax = order.tax
    row.service_charge = order.service_charge
    row.discount = order.discount
    row.tip = order.tip
    row.final_total = order.final_total
    row.payment_method = order.payment_method
    row.payment_status = order.payment_status
    row.cashier_id = order.cashier_key
    row.notes = order.notes
    row.kitchen_notes = order.kitchen_notes
    row.served_at = order.served_at
    row.completed_at = order.completed_at
    row.paid_at = order.paid_at
    if replace_items:
        row.items = [
            OrderItem(
                product_id=line.product_key,
                product_name=line.product_name,
                quantity=line.quantity,
                price=line.price,
                total=line.total,
                notes=line.notes,
                position=position,
            )
            for position, line in enumerate(order.items)
        ]


def _to_aggregate(row: Order) -> OrderAggregate:
    return OrderAggregate(
        key=row.id,
        order_number=row.order_number,
        branch_key=row.branch_id,
        order_type=row.order_type,
        status=row.status,
        kitchen_status=row.kitchen_status,
        customer_key=row.customer_id,
        customer_name=row.customer_name,
        customer_phone=row.customer_phone,
        table_key=row.table_id,
        table_number=row.table_number,
        subtotal=row.subtotal,
        tax=row.tax,
        service_charge=row.service_charge,
        discount=row.discount,
        tip=row.tip,
        final_total=row.final_total,
        payment_method=row.payment_method,
        payment_status=row.payment_status,
        cashier_key=row.cashier_id,
        notes=row.notes,
        kitchen_notes=row.kitchen_notes,
        served_at=row.served_at,
        completed_at=row.completed_at,
        paid_at=row.paid_at,
        items=[
            OrderLine(
                product_key=item.product_id,
                product_name=item.product_name,
                quantity=item.quantity,
                price=item.price,
                total=item.total,
                notes=item.notes,
            )
            for item in row.items
        ],
    )


class SqlOrderStore(OrderStore):
    name = Engines.SQLITE

    def __init__(self, session_factory: sessionmaker):
        self._session_factory = session_factory

    @contextmanager
    def unit_of_work(self, branch_id: str, operation: str) -> Iterator[SqlOrderUnitOfWork]:
        db = self._session_factory()
        try:
            with db.begin():
                branch_key = LocalRefs(db).to_local("branches", str(branch_id))
                branch = db.get(Branch, branch_key) if branch_key is not None else None
                if branch is None:
                    raise NotFoundError("Branch", branch_id)
                yield SqlOrderUnitOfWork(db, branch)
        except IntegrityError as e:
            if "order_number" in str(e.orig):
                raise DuplicateOrderNumberError("") from e
            raise TransactionAbortedError(operation, str(e.orig), store=self.name) from e
        except SQLAlchemyError as e:
            raise TransactionAbortedError(operation, str(e), store=self.name) from e
        finally:
            db.close()
