"""
Synchronization between the local mirror and the remote store.
"""

from .scheduler import SyncScheduler
from .service import SyncReport, SyncRunStatus, SyncService

__all__ = [
    "SyncReport",
    "SyncRunStatus",
    "SyncScheduler",
    "SyncService",
]
