"""
Storage interface of the order engine.

The engine runs every top-level operation inside one unit of work obtained
from an OrderStore. A unit of work commits when the ``with`` block exits
normally and leaves no mutation behind when it exits with an exception.

Ids passed in are external ids (remote ObjectId hex or ``local-<n>``);
``key`` values handed back are store-internal and only ever passed back to
the same unit of work.

Error contract for implementations:
- business errors (ValidationError, NotFoundError, ConflictError) propagate
- the remote store being unreachable raises StoreUnavailableError
- an order number taken concurrently raises DuplicateOrderNumberError
- any other storage failure raises TransactionAbortedError
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from contextlib import AbstractContextManager
from decimal import Decimal
from typing import Any

from .aggregate import BranchInfo, CustomerInfo, OrderAggregate, ProductInfo, TableInfo


class DuplicateOrderNumberError(Exception):
    """The generated order number was committed by someone else first."""

    def __init__(self, order_number: str):
        self.order_number = order_number
        super().__init__(f"Order number {order_number} already exists")


class OrderUnitOfWork(ABC):
    """Atomic view of one branch's products, tables, customers and orders."""

    @abstractmethod
    def get_branch(self) -> BranchInfo: ...

    @abstractmethod
    def get_user(self, user_id: str) -> Any:
        """Key of a user of this branch. Raises NotFoundError."""

    # Products ---------------------------------------------------------------

    @abstractmethod
    def get_product(self, product_id: str) -> ProductInfo:
        """Raises NotFoundError when the product is not in this branch."""

    @abstractmethod
    def decrement_stock(self, product: ProductInfo, quantity: int) -> bool:
        """
        Conditional decrement (stock >= quantity) in one statement.
        False when the stock is no longer sufficient.
        """

    @abstractmethod
    def increment_stock(self, product_key: Any, quantity: int) -> None: ...

    # Tables -----------------------------------------------------------------

    @abstractmethod
    def get_table(self, table_id: str) -> TableInfo: ...

    @abstractmethod
    def claim_table(self, table: TableInfo, guests: int | None, waiter_key: Any) -> bool:
        """Conditional available -> occupied. False when the table is taken."""

    @abstractmethod
    def release_table(self, table_key: Any) -> None:
        """occupied -> available, session cleared."""

    # Customers --------------------------------------------------------------

    @abstractmethod
    def get_customer(self, customer_id: str) -> CustomerInfo: ...

    @abstractmethod
    def find_customer_by_phone(self, phone: str) -> CustomerInfo | None: ...

    @abstractmethod
    def create_customer(self, name: str, phone: str) -> CustomerInfo: ...

    @abstractmethod
    def credit_customer(self, customer_key: Any, amount: Decimal, points: int) -> None:
        """Add a paid order to the customer's lifetime totals."""

    # Orders -----------------------------------------------------------------

    @abstractmethod
    def order_numbers_with_prefix(self, prefix: str) -> list[str]: ...

    @abstractmethod
    def insert_order(self, order: OrderAggregate) -> OrderAggregate: ...

    @abstractmethod
    def load_order(self, order_id: str) -> OrderAggregate:
        """Raises NotFoundError when the order is not in this branch."""

    @abstractmethod
    def save_order(self, order: OrderAggregate) -> OrderAggregate: ...

    @abstractmethod
    def delete_order(self, order: OrderAggregate) -> None: ...

    @abstractmethod
    def order_document(self, order: OrderAggregate) -> dict[str, Any]: ...

    # Notifications ----------------------------------------------------------

    @abstractmethod
    def emit(self, event_type: str, aggregate_type: str, document: dict[str, Any]) -> None:
        """Queue one notification; it only leaves if the unit of work commits."""


class OrderStore(ABC):
    name: str

    @abstractmethod
    def unit_of_work(self, branch_id: str, operation: str) -> AbstractContextManager[OrderUnitOfWork]: ...
