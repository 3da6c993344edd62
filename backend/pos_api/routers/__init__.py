"""
HTTP routers.
- /api/health - Health checks
- /api/sync/* - Synchronization status, trigger and engine preference
"""

from .health import router as health_router
from .sync import router as sync_router

__all__ = ["health_router", "sync_router"]
