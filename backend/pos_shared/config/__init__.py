"""
Configuration module: Settings, logging, constants.
"""

from pos_shared.config.settings import settings, get_settings, Settings, LOCAL_DATABASE_URL
from pos_shared.config.logging import get_logger, setup_logging
from pos_shared.config.constants import (
    Engines,
    Roles,
    OrderStatus,
    KitchenStatus,
    OrderType,
    PaymentStatus,
    TableStatus,
    Events,
    Limits,
)

__all__ = [
    # settings
    "settings",
    "get_settings",
    "Settings",
    "LOCAL_DATABASE_URL",
    # logging
    "get_logger",
    "setup_logging",
    # constants
    "Engines",
    "Roles",
    "OrderStatus",
    "KitchenStatus",
    "OrderType",
    "PaymentStatus",
    "TableStatus",
    "Events",
    "Limits",
]
