"""
Notification outbox: transactional write + background publisher.
"""

from .outbox_service import write_outbox_event
from .outbox_processor import OutboxProcessor

__all__ = [
    "write_outbox_event",
    "OutboxProcessor",
]
