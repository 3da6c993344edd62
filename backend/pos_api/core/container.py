"""
Application object graph.

Everything the routers and background tasks need is built once here from
explicit settings, so tests can build a container over an in-memory local
store and a mongomock remote without touching module globals.
"""

from __future__ import annotations

from dataclasses import dataclass

from pymongo.database import Database
from sqlalchemy.orm import sessionmaker

from pos_shared.config.settings import Settings
from pos_shared.config.logging import get_logger

from pos_api.services.connectivity import ConnectivityMonitor
from pos_api.services.data_layer import UnifiedDataLayer
from pos_api.services.events import OutboxProcessor
from pos_api.services.ledger import FinanceService, LedgerService
from pos_api.services.orders import MongoOrderStore, OrderService, SqlOrderStore
from pos_api.services.purchasing import PurchaseService
from pos_api.services.sync import SyncScheduler, SyncService
from pos_api.stores.local import LocalStore
from pos_api.stores.remote import RemoteStore
from pos_api.stores.selector import EngineConfig, EngineSelector

logger = get_logger(__name__)


@dataclass
class Container:
    settings: Settings
    session_factory: sessionmaker
    local: LocalStore
    remote: RemoteStore | None
    monitor: ConnectivityMonitor
    selector: EngineSelector
    data: UnifiedDataLayer
    sync: SyncService
    scheduler: SyncScheduler
    orders: OrderService
    purchasing: PurchaseService
    ledger: LedgerService
    finance: FinanceService
    outbox: OutboxProcessor


def build_container(
    settings: Settings,
    session_factory: sessionmaker,
    remote_database: Database | None = None,
    monitor: ConnectivityMonitor | None = None,
) -> Container:
    local = LocalStore(session_factory)
    remote = RemoteStore(remote_database) if remote_database is not None else None

    if monitor is None:
        client = remote.client if remote is not None else None
        monitor = ConnectivityMonitor.for_client(
            client, timeout_seconds=settings.connectivity_probe_timeout_seconds
        )

    config = EngineConfig(
        preferred_engine=settings.preferred_engine,
        remote_configured=remote is not None,
    )
    selector = EngineSelector(config, monitor)
    sync = SyncService(session_factory, remote, monitor, batch_size=settings.sync_batch_size)

    remote_orders = (
        MongoOrderStore(remote, local, transactions_enabled=settings.remote_transactions_enabled)
        if remote is not None
        else None
    )

    logger.info(
        "Container built",
        preferred_engine=config.preferred_engine,
        remote_configured=config.remote_configured,
    )
    return Container(
        settings=settings,
        session_factory=session_factory,
        local=local,
        remote=remote,
        monitor=monitor,
        selector=selector,
        data=UnifiedDataLayer(local, remote, selector),
        sync=sync,
        scheduler=SyncScheduler(sync, interval_seconds=settings.sync_interval_seconds),
        orders=OrderService(SqlOrderStore(session_factory), remote_orders, selector),
        purchasing=PurchaseService(session_factory),
        ledger=LedgerService(session_factory),
        finance=FinanceService(session_factory),
        outbox=OutboxProcessor(session_factory),
    )
