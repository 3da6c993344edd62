"""
Order transaction engine.

Every operation runs inside one unit of work of an OrderStore, so stock,
tables, customers and the order itself change together or not at all.
The engine only sees the OrderAggregate; each store serializes it.

Store choice per call: the remote store when it is the active engine,
otherwise the local one. A remote store that becomes unreachable during
the unit of work (StoreUnavailableError) has nothing left behind, so the
call is replayed against the local store. Calls naming ``local-<n>`` ids
always go to the local store.

Status machine:

    pending -> confirmed -> preparing -> ready -> served -> completed
    any non-terminal state -> cancelled

Forward skips are allowed; completed and cancelled are terminal.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, TypeVar

from pos_shared.config.constants import (
    Engines,
    Events,
    KitchenStatus,
    OrderStatus,
    OrderType,
    PaymentStatus,
    WALK_IN_CUSTOMER_NAME,
)
from pos_shared.config.logging import orders_logger as logger
from pos_shared.utils.exceptions import (
    ConflictError,
    InsufficientStockError,
    InvalidTransitionError,
    StoreUnavailableError,
    TransactionAbortedError,
    ValidationError,
)
from pos_shared.utils.schemas import (
    CreateOrderInput,
    OrderItemInput,
    OrderStatusInput,
    PaymentInput,
    UpdateOrderInput,
    parse_payload,
)

from pos_api.models import utcnow
from pos_api.services.data_layer import mentions_local_ids
from pos_api.stores.selector import EngineSelector

from .aggregate import OrderAggregate, OrderLine
from .numbering import next_number, order_number_prefix
from .store import DuplicateOrderNumberError, OrderStore, OrderUnitOfWork
from .totals import compute_totals, line_total, money

T = TypeVar("T")

MAX_NUMBER_ATTEMPTS = 3


@dataclass(frozen=True)
class PaymentResult:
    order: dict[str, Any]
    change: float

    def to_dict(self) -> dict[str, Any]:
        return {"order": self.order, "change": self.change}


def check_transition(current: str, target: str) -> None:
    """
    Raises:
        ConflictError: ``current`` is terminal or ``target`` moves backwards.
    """
    if current in OrderStatus.TERMINAL:
        raise ConflictError(f"Order is already {current}", status=current)
    if target == OrderStatus.CANCELLED or target == current:
        return
    if OrderStatus.FLOW.index(target) < OrderStatus.FLOW.index(current):
        raise InvalidTransitionError("order", current, target)


class OrderService:
    """
    create_order / update_order_status / process_payment / update_order /
    delete_order / get_order, each atomic against one store.
    """

    def __init__(
        self,
        local_store: OrderStore,
        remote_store: OrderStore | None = None,
        selector: EngineSelector | None = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self._local = local_store
        self._remote = remote_store
        self._selector = selector
        self._clock = clock

    # -------------------------------------------------------------------------
    # Store selection
    # -------------------------------------------------------------------------

    def _stores_for(self, *hints: Any) -> list[OrderStore]:
        if (
            self._remote is not None
            and self._selector is not None
            and self._selector.active_engine() == Engines.MONGO
            and not mentions_local_ids(list(hints))
        ):
            return [self._remote, self._local]
        return [self._local]

    def _execute(
        self,
        operation: str,
        branch_id: str,
        work: Callable[[OrderUnitOfWork], T],
        *hints: Any,
    ) -> T:
        stores = self._stores_for(branch_id, *hints)
        for position, store in enumerate(stores):
            try:
                with store.unit_of_work(branch_id, operation) as uow:
                    result = work(uow)
                return result
            except StoreUnavailableError as e:
                if position == len(stores) - 1:
                    raise TransactionAbortedError(operation, e.reason, store=store.name) from e
                logger.warning(
                    "Order store unavailable, retrying on local store",
                    operation=operation,
                    store=store.name,
                    reason=e.reason,
                )
        raise TransactionAbortedError(operation, "no order store available")

    # -------------------------------------------------------------------------
    # Helpers shared by the operations
    # -------------------------------------------------------------------------

    def _take_stock(self, uow: OrderUnitOfWork, items: list[OrderItemInput]) -> list[OrderLine]:
        """
        Validate every requested product first, then decrement. Any failure
        aborts the unit of work, so no decrement survives.
        """
        products = {}
        demand: dict[str, int] = {}
        for item in items:
            product = products.get(item.product) or uow.get_product(item.product)
            if not product.sellable:
                raise ValidationError(f"Product {product.name} is not available", product=product.name)
            products[item.product] = product
            demand[item.product] = demand.get(item.product, 0) + item.quantity

        for product_id, quantity in demand.items():
            product = products[product_id]
            if product.stock < quantity:
                raise InsufficientStockError(product.name, product.stock, quantity)

        for product_id, quantity in demand.items():
            product = products[product_id]
            if not uow.decrement_stock(product, quantity):
                # Stock changed between the read and the conditional update
                current = uow.get_product(product_id)
                raise InsufficientStockError(product.name, current.stock, quantity)

        return [
            OrderLine(
                product_key=products[item.product].key,
                product_name=products[item.product].name,
                quantity=item.quantity,
                price=float(money(products[item.product].price)),
                total=float(line_total(products[item.product].price, item.quantity)),
                notes=item.notes,
            )
            for item in items
        ]

    @staticmethod
    def _restock(uow: OrderUnitOfWork, order: OrderAggregate) -> None:
        for line in order.items:
            uow.increment_stock(line.product_key, line.quantity)

    @staticmethod
    def _free_table(uow: OrderUnitOfWork, order: OrderAggregate) -> None:
        if order.holds_table:
            uow.release_table(order.table_key)

    @staticmethod
    def _recompute(uow: OrderUnitOfWork, order: OrderAggregate) -> None:
        branch = uow.get_branch()
        totals = compute_totals(
            [line.total for line in order.items],
            branch.tax_rate,
            branch.service_charge_rate,
            order.discount,
            order.tip,
        )
        if totals.final_total < 0:
            raise ValidationError(
                f"Discount {totals.discount:.2f} exceeds the order total",
                discount=float(totals.discount),
            )
        order.apply_totals(totals)

    # -------------------------------------------------------------------------
    # Operations
    # -------------------------------------------------------------------------

    def create_order(self, branch_id: str, payload: Any, cashier_id: str | None = None) -> dict[str, Any]:
        """
        Create an order: take stock, resolve the customer, claim the table
        (dine-in), compute totals and allocate the order number.

        Raises:
            ValidationError: bad payload, unavailable product, insufficient stock.
            NotFoundError: product, table or customer not in the branch.
            ConflictError: table not available.
        """
        data = parse_payload(CreateOrderInput, payload)
        hints = (data.model_dump(), cashier_id)

        for attempt in range(1, MAX_NUMBER_ATTEMPTS + 1):
            try:
                order = self._execute(
                    "create_order",
                    branch_id,
                    lambda uow: self._create(uow, data, cashier_id),
                    *hints,
                )
            except DuplicateOrderNumberError as e:
                logger.warning("Order number collision, retrying", order_number=e.order_number, attempt=attempt)
                continue
            logger.info("Order created", order_number=order["orderNumber"], branch=branch_id)
            return order
        raise ConflictError("Could not allocate a unique order number, please retry")

    def _create(self, uow: OrderUnitOfWork, data: CreateOrderInput, cashier_id: str | None) -> dict[str, Any]:
        branch = uow.get_branch()
        cashier_key = uow.get_user(cashier_id) if cashier_id else None
        lines = self._take_stock(uow, data.items)

        customer_key = None
        customer_name = data.customer_name or WALK_IN_CUSTOMER_NAME
        customer_phone = data.customer_phone
        if data.customer:
            customer = uow.get_customer(data.customer)
        elif data.customer_phone:
            customer = uow.find_customer_by_phone(data.customer_phone)
            if customer is None and data.customer_name:
                customer = uow.create_customer(data.customer_name, data.customer_phone)
        else:
            customer = None
        if customer is not None:
            customer_key, customer_name, customer_phone = customer.key, customer.name, customer.phone

        table_key = table_number = None
        if data.order_type == OrderType.DINE_IN and data.table:
            table = uow.get_table(data.table)
            if not uow.claim_table(table, data.guests, cashier_key):
                raise ConflictError(f"Table {table.number} is not available", table=table.number)
            table_key, table_number = table.key, table.number
        elif data.table:
            logger.info("Table ignored for non dine-in order", order_type=data.order_type)

        prefix = order_number_prefix(branch.code, self._clock(), branch.timezone)
        order = OrderAggregate(
            order_number=next_number(prefix, uow.order_numbers_with_prefix(prefix)),
            branch_key=branch.key,
            order_type=data.order_type,
            customer_key=customer_key,
            customer_name=customer_name,
            customer_phone=customer_phone,
            table_key=table_key,
            table_number=table_number,
            discount=data.discount,
            tip=data.tip,
            payment_method=data.payment_method,
            cashier_key=cashier_key,
            notes=data.notes,
            kitchen_notes=data.kitchen_notes,
            items=lines,
        )
        self._recompute(uow, order)
        uow.insert_order(order)
        document = uow.order_document(order)
        uow.emit(Events.ORDER_CREATED, "order", document)
        return document

    def update_order_status(self, branch_id: str, order_id: str, payload: Any) -> dict[str, Any]:
        """
        Move the order along the status machine and/or set the kitchen status.

        Cancelling restores stock and frees the table. Completing stamps the
        completion time, marks the order paid and frees the table. A kitchen
        status of ``ready`` lifts the order status to at least ``ready``.
        """
        data = parse_payload(OrderStatusInput, payload)

        def work(uow: OrderUnitOfWork) -> dict[str, Any]:
            order = uow.load_order(order_id)
            now = self._clock()
            if order.is_terminal:
                raise ConflictError(
                    f"Order {order.order_number} is already {order.status}",
                    order=order.order_number,
                )

            if data.status is not None and data.status != order.status:
                check_transition(order.status, data.status)
                if data.status in OrderStatus.TERMINAL:
                    self._free_table(uow, order)
                if data.status == OrderStatus.CANCELLED:
                    self._restock(uow, order)
                elif data.status == OrderStatus.COMPLETED:
                    order.completed_at = now
                    order.payment_status = PaymentStatus.PAID
                    order.paid_at = order.paid_at or now
                elif data.status == OrderStatus.SERVED:
                    order.served_at = order.served_at or now
                order.status = data.status

            if data.kitchen_status is not None:
                order.kitchen_status = data.kitchen_status
                if (
                    data.kitchen_status == KitchenStatus.READY
                    and not order.is_terminal
                    and OrderStatus.FLOW.index(order.status) < OrderStatus.FLOW.index(OrderStatus.READY)
                ):
                    order.status = OrderStatus.READY

            uow.save_order(order)
            document = uow.order_document(order)
            uow.emit(Events.ORDER_STATUS_UPDATED, "order", document)
            return document

        document = self._execute("update_order_status", branch_id, work, order_id)
        logger.info(
            "Order status updated",
            order_number=document["orderNumber"],
            status=document["status"],
            kitchen_status=document["kitchenStatus"],
        )
        return document

    def process_payment(self, branch_id: str, order_id: str, payload: Any) -> PaymentResult:
        """
        Settle the order: paid, completed, table freed and the customer
        credited with floor(finalTotal) loyalty points.

        Raises:
            ConflictError: already paid or cancelled.
            ValidationError: amount below the final total.
        """
        data = parse_payload(PaymentInput, payload)
        amount = money(data.amount)

        def work(uow: OrderUnitOfWork) -> PaymentResult:
            order = uow.load_order(order_id)
            if order.is_paid:
                raise ConflictError(f"Order {order.order_number} is already paid", order=order.order_number)
            if order.status == OrderStatus.CANCELLED:
                raise ConflictError(f"Order {order.order_number} is cancelled", order=order.order_number)
            total = money(order.final_total)
            if amount < total:
                raise ValidationError(
                    f"Payment amount {amount:.2f} is less than order total {total:.2f}",
                    amount=float(amount),
                    final_total=float(total),
                )

            now = self._clock()
            self._free_table(uow, order)
            order.payment_status = PaymentStatus.PAID
            order.payment_method = data.method
            order.paid_at = now
            order.status = OrderStatus.COMPLETED
            order.completed_at = now
            if order.customer_key is not None:
                uow.credit_customer(order.customer_key, total, math.floor(total))

            uow.save_order(order)
            document = uow.order_document(order)
            uow.emit(Events.ORDER_PAID, "order", document)
            return PaymentResult(order=document, change=float(money(amount - total)))

        result = self._execute("process_payment", branch_id, work, order_id)
        logger.info(
            "Order paid",
            order_number=result.order["orderNumber"],
            method=data.method,
            change=result.change,
        )
        return result

    def update_order(self, branch_id: str, order_id: str, payload: Any) -> dict[str, Any]:
        """
        Replace items and/or notes of an open order. New items are stocked
        against the current stock plus what the old items had taken.
        """
        data = parse_payload(UpdateOrderInput, payload)

        def work(uow: OrderUnitOfWork) -> dict[str, Any]:
            order = uow.load_order(order_id)
            if order.is_terminal or order.is_paid:
                raise ConflictError(
                    f"Order {order.order_number} can no longer be modified",
                    order=order.order_number,
                    status=order.status,
                )
            if data.items is not None:
                self._restock(uow, order)
                order.items = self._take_stock(uow, data.items)
            if data.notes is not None:
                order.notes = data.notes
            if data.kitchen_notes is not None:
                order.kitchen_notes = data.kitchen_notes
            if data.discount is not None:
                order.discount = data.discount
            if data.tip is not None:
                order.tip = data.tip
            self._recompute(uow, order)

            uow.save_order(order)
            document = uow.order_document(order)
            uow.emit(Events.ORDER_UPDATED, "order", document)
            return document

        hints = (order_id, data.model_dump())
        document = self._execute("update_order", branch_id, work, *hints)
        logger.info("Order updated", order_number=document["orderNumber"], total=document["finalTotal"])
        return document

    def delete_order(self, branch_id: str, order_id: str) -> dict[str, Any]:
        """
        Remove the order and its items. Stock comes back unless the order was
        already cancelled; a table still held by the order is freed.
        """

        def work(uow: OrderUnitOfWork) -> dict[str, Any]:
            order = uow.load_order(order_id)
            if order.status != OrderStatus.CANCELLED:
                self._restock(uow, order)
            self._free_table(uow, order)
            document = uow.order_document(order)
            uow.delete_order(order)
            uow.emit(Events.ORDER_DELETED, "order", document)
            return document

        document = self._execute("delete_order", branch_id, work, order_id)
        logger.info("Order deleted", order_number=document["orderNumber"])
        return document

    def get_order(self, branch_id: str, order_id: str) -> dict[str, Any]:
        return self._execute(
            "get_order",
            branch_id,
            lambda uow: uow.order_document(uow.load_order(order_id)),
            order_id,
        )


