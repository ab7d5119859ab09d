"""Database engine layer for the DEX rollup engine.

Provides a sync engine (psycopg2) for the ingestion process, Alembic
migrations and one-off scripts. Ingestion is strictly sequential, so there
is no async engine. The engine is built on first use so that importing the
package (tests, dry runs against the in-memory repository) never needs a
database driver. Session factories use autoflush=False and
expire_on_commit=False for explicit transaction control.
"""

from typing import Optional

from sqlalchemy import Engine, create_engine
from sqlalchemy.orm import Session, sessionmaker

from .config import settings

_sync_engine: Optional[Engine] = None
_sync_session_factory: Optional[sessionmaker] = None


def get_sync_engine() -> Engine:
    """Return the process-wide sync engine, creating it on first call."""
    global _sync_engine
    if _sync_engine is None:
        _sync_engine = create_engine(
            settings.sync_database_url,
            pool_size=settings.db_pool_size,
            pool_pre_ping=settings.db_pool_pre_ping,
            echo=settings.debug,
        )
    return _sync_engine


def get_session_factory() -> sessionmaker:
    """Session factory bound to :func:`get_sync_engine`."""
    global _sync_session_factory
    if _sync_session_factory is None:
        _sync_session_factory = sessionmaker(
            get_sync_engine(),
            autoflush=False,
            expire_on_commit=False,
        )
    return _sync_session_factory


def get_sync_session() -> Session:
    """Get a sync session for scripts and migrations.

    Caller is responsible for closing the session::

        session = get_sync_session()
        try:
            ...
        finally:
            session.close()
    """
    return get_session_factory()()
