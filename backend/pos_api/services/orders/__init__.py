"""
Order transaction engine.
"""

from .aggregate import BranchInfo, CustomerInfo, OrderAggregate, OrderLine, ProductInfo, TableInfo
from .engine import OrderService, PaymentResult, check_transition
from .mongo_store import MongoOrderStore
from .sql_store import SqlOrderStore
from .store import DuplicateOrderNumberError, OrderStore, OrderUnitOfWork

__all__ = [
    "OrderService",
    "PaymentResult",
    "check_transition",
    "OrderStore",
    "OrderUnitOfWork",
    "SqlOrderStore",
    "MongoOrderStore",
    "DuplicateOrderNumberError",
    "OrderAggregate",
    "OrderLine",
    "BranchInfo",
    "CustomerInfo",
    "ProductInfo",
    "TableInfo",
]
