"""
Centralized constants for the backend application.

Usage:
    from pos_shared.config.constants import OrderStatus, TableStatus

    if order.status in OrderStatus.TERMINAL:
        ...
"""

from typing import Final


# =============================================================================
# Storage engines
# =============================================================================


class Engines:
    """Storage engine names."""

    SQLITE: Final[str] = "sqlite"
    MONGO: Final[str] = "mongo"

    ALL: Final[tuple[str, ...]] = (SQLITE, MONGO)


# =============================================================================
# User Roles
# =============================================================================


class Roles:
    """User role constants."""

    ADMIN: Final[str] = "admin"
    MANAGER: Final[str] = "manager"
    CASHIER: Final[str] = "cashier"
    CHEF: Final[str] = "chef"
    WAITER: Final[str] = "waiter"

    ALL: Final[tuple[str, ...]] = (ADMIN, MANAGER, CASHIER, CHEF, WAITER)


# =============================================================================
# Order state machine
# =============================================================================


class OrderStatus:
    """Order lifecycle status. FLOW is linear, CANCELLED reachable from any non-terminal state."""

    PENDING: Final[str] = "pending"
    CONFIRMED: Final[str] = "confirmed"
    PREPARING: Final[str] = "preparing"
    READY: Final[str] = "ready"
    SERVED: Final[str] = "served"
    COMPLETED: Final[str] = "completed"
    CANCELLED: Final[str] = "cancelled"

    FLOW: Final[tuple[str, ...]] = (PENDING, CONFIRMED, PREPARING, READY, SERVED, COMPLETED)
    ALL: Final[tuple[str, ...]] = FLOW + (CANCELLED,)
    TERMINAL: Final[frozenset[str]] = frozenset({COMPLETED, CANCELLED})


class KitchenStatus:
    """Kitchen preparation sub-state, independent of OrderStatus."""

    PENDING: Final[str] = "pending"
    PREPARING: Final[str] = "preparing"
    READY: Final[str] = "ready"
    SERVED: Final[str] = "served"

    ALL: Final[tuple[str, ...]] = (PENDING, PREPARING, READY, SERVED)


class OrderType:
    DINE_IN: Final[str] = "dine-in"
    TAKEAWAY: Final[str] = "takeaway"
    DELIVERY: Final[str] = "delivery"

    ALL: Final[tuple[str, ...]] = (DINE_IN, TAKEAWAY, DELIVERY)


class PaymentStatus:
    PENDING: Final[str] = "pending"
    PAID: Final[str] = "paid"
    REFUNDED: Final[str] = "refunded"
    FAILED: Final[str] = "failed"


class PaymentMethod:
    CASH: Final[str] = "cash"
    CARD: Final[str] = "card"
    MOBILE: Final[str] = "mobile"
    CREDIT: Final[str] = "credit"
    BANK: Final[str] = "bank"

    ALL: Final[tuple[str, ...]] = (CASH, CARD, MOBILE, CREDIT, BANK)


class TableStatus:
    """Table status. The order engine only moves between AVAILABLE and OCCUPIED."""

    AVAILABLE: Final[str] = "available"
    OCCUPIED: Final[str] = "occupied"
    RESERVED: Final[str] = "reserved"
    CLEANING: Final[str] = "cleaning"
    MAINTENANCE: Final[str] = "maintenance"

    ALL: Final[tuple[str, ...]] = (AVAILABLE, OCCUPIED, RESERVED, CLEANING, MAINTENANCE)


# =============================================================================
# Purchasing
# =============================================================================


class PurchaseOrderStatus:
    DRAFT: Final[str] = "draft"
    PENDING: Final[str] = "pending"
    APPROVED: Final[str] = "approved"
    RECEIVED: Final[str] = "received"
    CANCELLED: Final[str] = "cancelled"

    ALL: Final[tuple[str, ...]] = (DRAFT, PENDING, APPROVED, RECEIVED, CANCELLED)
    TERMINAL: Final[frozenset[str]] = frozenset({RECEIVED, CANCELLED})


class PurchaseStatus:
    SUBMITTED: Final[str] = "submitted"
    RECEIVED: Final[str] = "received"


# =============================================================================
# Ledger / finance
# =============================================================================


class LedgerTransactionType:
    """Debit subtracts from the running balance, credit adds."""

    DEBIT: Final[str] = "debit"
    CREDIT: Final[str] = "credit"

    ALL: Final[tuple[str, ...]] = (DEBIT, CREDIT)


class FinanceType:
    INCOME: Final[str] = "income"
    EXPENSE: Final[str] = "expense"

    ALL: Final[tuple[str, ...]] = (INCOME, EXPENSE)


# =============================================================================
# Notification event names
# =============================================================================


class Events:
    ORDER_CREATED: Final[str] = "order-created"
    ORDER_STATUS_UPDATED: Final[str] = "order-status-updated"
    ORDER_PAID: Final[str] = "order-paid"
    ORDER_UPDATED: Final[str] = "order-updated"
    ORDER_DELETED: Final[str] = "order-deleted"
    PURCHASE_CREATED: Final[str] = "purchase-created"
    PURCHASE_ORDER_CREATED: Final[str] = "purchase-order-created"
    PURCHASE_ORDER_SUBMITTED: Final[str] = "purchase-order-submitted"
    PURCHASE_ORDER_APPROVED: Final[str] = "purchase-order-approved"
    PURCHASE_ORDER_CANCELLED: Final[str] = "purchase-order-cancelled"
    STOCK_UPDATED: Final[str] = "stock-updated"
    LEDGER_ENTRY_CREATED: Final[str] = "ledger-entry-created"
    FINANCE_ENTRY_CREATED: Final[str] = "finance-entry-created"


# =============================================================================
# Defaults
# =============================================================================


WALK_IN_CUSTOMER_NAME: Final[str] = "Walking Customer"
LOCAL_ID_PREFIX: Final[str] = "local-"
ORDER_SEQUENCE_WIDTH: Final[int] = 4


class Limits:
    DEFAULT_PAGE_SIZE: Final[int] = 50
    MAX_PAGE_SIZE: Final[int] = 500
