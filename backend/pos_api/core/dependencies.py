"""
FastAPI dependencies resolving services from the application container.

Usage:
    @router.get("/status")
    def sync_status(sync: SyncService = Depends(get_sync_service)):
        return sync.status()
"""

from fastapi import Request

from pos_api.core.container import Container
from pos_api.services.sync import SyncService
from pos_api.stores.selector import EngineSelector


def get_container(request: Request) -> Container:
    return request.app.state.container


def get_sync_service(request: Request) -> SyncService:
    return get_container(request).sync


def get_selector(request: Request) -> EngineSelector:
    return get_container(request).selector
