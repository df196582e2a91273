"""
Database Session Management

The authorization store is read on every decision, so the engine is built
once per process and every request gets its own AsyncSession.
"""

import logging
import ssl
from typing import Any, AsyncGenerator, Dict, Optional

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import NullPool

from steward.api.config import Settings, settings

logger = logging.getLogger(__name__)

_engine: Optional[AsyncEngine] = None
_session_maker: Optional[async_sessionmaker] = None


def build_ssl_context(ca_file: Optional[str] = None) -> ssl.SSLContext:
    """Verifying client context, optionally pinned to a private CA bundle."""
    return ssl.create_default_context(cafile=ca_file)


def engine_connect_args(config: Settings) -> Dict[str, Any]:
    """Driver connect arguments derived from settings."""
    if not config.DATABASE_SSL:
        return {}
    return {"ssl": build_ssl_context(config.DATABASE_SSL_CA_FILE)}


def get_engine() -> AsyncEngine:
    """Engine for settings.DATABASE_URL, created on first use."""
    global _engine

    if _engine is None:
        logger.info(
            "Connecting to authorization store (ssl=%s)", settings.DATABASE_SSL
        )
        _engine = create_async_engine(
            settings.DATABASE_URL,
            echo=settings.DATABASE_ECHO,
            poolclass=NullPool,
            connect_args=engine_connect_args(settings),
        )

    return _engine


def get_session_maker() -> async_sessionmaker:
    """Session factory bound to the shared engine."""
    global _session_maker

    if _session_maker is None:
        _session_maker = async_sessionmaker(
            get_engine(),
            class_=AsyncSession,
            expire_on_commit=False,
            autoflush=False,
        )

    return _session_maker


async def init_db() -> None:
    """Open the store; create tables only in DEBUG (migrations own the schema)."""
    from steward.api.db.models import Base

    async with get_engine().begin() as conn:
        if settings.DEBUG:
            logger.info("DEBUG mode: creating missing tables")
            await conn.run_sync(Base.metadata.create_all)


async def close_db() -> None:
    """Dispose of the engine and forget the session factory."""
    global _engine, _session_maker

    if _engine is None:
        return

    await _engine.dispose()
    _engine = None
    _session_maker = None
    logger.info("Authorization store connection closed")


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """
    Request-scoped session. The unit of work commits when the handler
    returns and rolls back if it raises.
    """
    async with get_session_maker()() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
