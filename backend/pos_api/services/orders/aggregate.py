"""
Order aggregate.

Storage-independent view of an order and of the rows the order engine
touches. ``key`` fields are opaque store identifiers (an integer primary
key in the local store, an ObjectId hex string in the remote store); the
engine never inspects them.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from pos_shared.config.constants import (
    KitchenStatus,
    OrderStatus,
    OrderType,
    PaymentStatus,
)

from .totals import OrderTotals


@dataclass(frozen=True)
class BranchInfo:
    key: Any
    code: str
    tax_rate: float
    service_charge_rate: float
    timezone: str
    currency: str


@dataclass(frozen=True)
class ProductInfo:
    key: Any
    name: str
    price: float
    stock: int
    is_available: bool = True
    active: bool = True

    @property
    def sellable(self) -> bool:
        return self.is_available and self.active


@dataclass(frozen=True)
class TableInfo:
    key: Any
    number: str
    status: str


@dataclass(frozen=True)
class CustomerInfo:
    key: Any
    name: str
    phone: str | None = None


@dataclass
class OrderLine:
    product_key: Any
    product_name: str
    quantity: int
    price: float
    total: float
    notes: str | None = None


@dataclass
class OrderAggregate:
    order_number: str
    branch_key: Any
    order_type: str = OrderType.DINE_IN
    status: str = OrderStatus.PENDING
    kitchen_status: str = KitchenStatus.PENDING
    customer_key: Any = None
    customer_name: str | None = None
    customer_phone: str | None = None
    table_key: Any = None
    table_number: str | None = None
    subtotal: float = 0.0
    tax: float = 0.0
    service_charge: float = 0.0
    discount: float = 0.0
    tip: float = 0.0
    final_total: float = 0.0
    payment_method: str | None = None
    payment_status: str = PaymentStatus.PENDING
    cashier_key: Any = None
    notes: str | None = None
    kitchen_notes: str | None = None
    served_at: datetime | None = None
    completed_at: datetime | None = None
    paid_at: datetime | None = None
    items: list[OrderLine] = field(default_factory=list)
    key: Any = None

    @property
    def is_terminal(self) -> bool:
        return self.status in OrderStatus.TERMINAL

    @property
    def is_paid(self) -> bool:
        return self.payment_status == PaymentStatus.PAID

    @property
    def holds_table(self) -> bool:
        """True while this order keeps its table occupied."""
        return (
            self.order_type == OrderType.DINE_IN
            and self.table_key is not None
            and not self.is_terminal
        )

    def apply_totals(self, totals: OrderTotals) -> None:
        self.subtotal = float(totals.subtotal)
        self.tax = float(totals.tax)
        self.service_charge = float(totals.service_charge)
        self.discount = float(totals.discount)
        self.tip = float(totals.tip)
        self.final_total = float(totals.final_total)
