"""
SQLAlchemy ORM Models Package (local store).

- base: Base, SyncMixin, UtcDateTime
- branch: Branch
- user: User
- catalog: Product
- customer: Customer, CustomerLedgerEntry
- table: DiningTable
- order: Order, OrderItem
- purchasing: Supplier, Purchase, PurchaseItem, PurchaseOrder, PurchaseOrderItem
- finance: FinanceEntry, Expense
- license: License
- outbox: OutboxEvent, SyncOutboxEntry, SyncLog
"""

from .base import Base, SyncMixin, UtcDateTime, utcnow
from .branch import Branch
from .user import User
from .catalog import Product
from .customer import Customer, CustomerLedgerEntry
from .table import DiningTable
from .order import Order, OrderItem
from .purchasing import Supplier, Purchase, PurchaseItem, PurchaseOrder, PurchaseOrderItem
from .finance import FinanceEntry, Expense
from .license import License
from .outbox import (
    OutboxEvent,
    OutboxStatus,
    SyncOutboxEntry,
    SyncOperation,
    SyncEntryStatus,
    SyncLog,
)

__all__ = [
    "Base",
    "SyncMixin",
    "UtcDateTime",
    "utcnow",
    "Branch",
    "User",
    "Product",
    "Customer",
    "CustomerLedgerEntry",
    "DiningTable",
    "Order",
    "OrderItem",
    "Supplier",
    "Purchase",
    "PurchaseItem",
    "PurchaseOrder",
    "PurchaseOrderItem",
    "FinanceEntry",
    "Expense",
    "License",
    "OutboxEvent",
    "OutboxStatus",
    "SyncOutboxEntry",
    "SyncOperation",
    "SyncEntryStatus",
    "SyncLog",
]
