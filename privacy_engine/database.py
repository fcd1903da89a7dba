"""
Async engine and session factory for the ``sql`` storage backend.

The lifespan calls init_db() once when ``storage_backend`` is ``sql``. The
SQL repositories and SqlAuditEmitter then open one short session per
operation from get_session_factory(), so every write is its own
transaction and the version check in ``save`` is evaluated against
committed state. The readiness probe pings through get_engine().
"""

from __future__ import annotations

import structlog
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

from privacy_engine.config import Settings, get_settings

log = structlog.get_logger(__name__)


class Base(DeclarativeBase):
    """Metadata shared by the request, consent, policy and audit tables."""


_engine: AsyncEngine | None = None
_session_factory: async_sessionmaker[AsyncSession] | None = None


def init_db(settings: Settings | None = None) -> None:
    global _engine, _session_factory
    cfg = settings or get_settings()
    _engine = create_async_engine(
        cfg.database_url,
        echo=cfg.db_echo_sql,
        pool_pre_ping=True,
    )
    # Snapshots are mapped to domain records after commit
    _session_factory = async_sessionmaker(_engine, expire_on_commit=False)
    log.info("privacy.database.initialized", url=cfg.database_url.split("@")[-1])


async def close_db() -> None:
    global _engine, _session_factory
    if _engine is not None:
        await _engine.dispose()
        log.info("privacy.database.closed")
    _engine = None
    _session_factory = None


def get_engine() -> AsyncEngine:
    if _engine is None:
        raise RuntimeError("Database not initialized. Call init_db() first.")
    return _engine


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    if _session_factory is None:
        raise RuntimeError("Database not initialized. Call init_db() first.")
    return _session_factory
