"""
Remote document store connection.

Builds the pymongo client used by the remote store wrapper and the
connectivity monitor. Every driver timeout is bounded by
``remote_timeout_ms`` so an unreachable cluster never hangs a caller.
"""

from __future__ import annotations

import threading

from pymongo import MongoClient
from pymongo.database import Database

from pos_shared.config.settings import settings
from pos_shared.config.logging import get_logger

logger = get_logger(__name__)

_client: MongoClient | None = None
_client_lock = threading.Lock()


def create_remote_client(uri: str, timeout_ms: int | None = None) -> MongoClient:
    """Create a client. Connection is lazy, nothing is contacted here."""
    timeout = timeout_ms if timeout_ms is not None else settings.remote_timeout_ms
    return MongoClient(
        uri,
        serverSelectionTimeoutMS=timeout,
        connectTimeoutMS=timeout,
        socketTimeoutMS=timeout,
        retryWrites=True,
        tz_aware=True,
    )


def get_remote_client() -> MongoClient | None:
    """
    Get the process-wide client, or None when no remote is configured.
    """
    global _client
    if not settings.remote_configured:
        return None
    if _client is None:
        with _client_lock:
            if _client is None:
                _client = create_remote_client(settings.remote_store_uri)
                logger.info(
                    "Remote client created",
                    database=settings.remote_database_name,
                    timeout_ms=settings.remote_timeout_ms,
                )
    return _client


def get_remote_database() -> Database | None:
    client = get_remote_client()
    if client is None:
        return None
    return client[settings.remote_database_name]


def close_remote_client() -> None:
    global _client
    with _client_lock:
        if _client is not None:
            _client.close()
            _client = None
            logger.info("Remote client closed")
