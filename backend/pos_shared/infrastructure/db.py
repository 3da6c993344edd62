"""
Local SQLite store: engine and sessions.

The file is always available. It is opened in WAL mode with foreign keys
enforced, so readers keep working while the sync pass writes.
"""

from collections.abc import Iterator
from contextlib import contextmanager

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from pos_shared.config.settings import settings, LOCAL_DATABASE_URL

_PRAGMAS = ("foreign_keys=ON", "journal_mode=WAL", "busy_timeout=5000")


def _on_connect(dbapi_connection, connection_record) -> None:
    cursor = dbapi_connection.cursor()
    for pragma in _PRAGMAS:
        cursor.execute(f"PRAGMA {pragma}")
    cursor.close()


def create_local_engine(url: str = LOCAL_DATABASE_URL, **kwargs) -> Engine:
    """
    Engine for the local store.

    Keyword arguments go to ``create_engine``; tests pass
    ``poolclass=StaticPool`` to share one in-memory database.
    """
    connect_args = kwargs.pop("connect_args", {})
    if url.startswith("sqlite"):
        # The sync scheduler runs passes in worker threads
        connect_args.setdefault("check_same_thread", False)

    local_engine = create_engine(url, connect_args=connect_args, echo=settings.local_database_echo, **kwargs)
    if local_engine.dialect.name == "sqlite":
        event.listen(local_engine, "connect", _on_connect)
    return local_engine


def create_session_factory(bind: Engine) -> sessionmaker:
    # Documents are built from rows after commit
    return sessionmaker(bind=bind, autoflush=False, expire_on_commit=False)


engine = create_local_engine()
SessionLocal = create_session_factory(engine)


@contextmanager
def get_db_context(factory: sessionmaker | None = None) -> Iterator[Session]:
    """Session that is closed on exit; committing is up to the caller."""
    db = (factory or SessionLocal)()
    try:
        yield db
    finally:
        db.close()
