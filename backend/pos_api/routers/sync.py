"""
Synchronization endpoints: status, manual trigger and engine preference.
"""

import asyncio

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from pos_shared.config.constants import Engines
from pos_shared.config.logging import sync_logger as logger
from pos_api.core.dependencies import get_selector, get_sync_service
from pos_api.services.sync import SyncService
from pos_api.stores.selector import EngineSelector


router = APIRouter(prefix="/api/sync", tags=["sync"])


class EnginePreference(BaseModel):
    engine: str


@router.get("/status")
def sync_status(sync: SyncService = Depends(get_sync_service)):
    """Connectivity, pending counts per entity and the last run."""
    return sync.status()


@router.post("/trigger")
async def trigger_sync(sync: SyncService = Depends(get_sync_service)):
    """
    Run one push + pull now. Returns a skipped report when offline or when
    a run is already in progress.
    """
    report = await asyncio.to_thread(sync.trigger_sync)
    logger.info("Manual sync finished", status=report.status)
    return report.to_dict()


@router.post("/engine")
def set_engine(body: EnginePreference, selector: EngineSelector = Depends(get_selector)):
    config = selector.set_preferred_engine(body.engine)
    return {
        "preferred_engine": config.preferred_engine,
        "active_engine": selector.active_engine(),
        "available_engines": list(Engines.ALL),
    }
