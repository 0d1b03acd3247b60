"""
Async SQLAlchemy session factory.
"""

from __future__ import annotations

import logging
from typing import Any, Dict

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from config.settings import config
from database.models import Base

logger = logging.getLogger(__name__)


def _engine_options(database_url: str) -> Dict[str, Any]:
    if database_url.startswith("sqlite"):
        return {}
    return {"pool_size": 10, "max_overflow": 20, "pool_recycle": 3600, "pool_pre_ping": True}


engine = create_async_engine(
    config.database_url,
    echo=False,
    **_engine_options(config.database_url),
)

async_session_factory = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


async def init_models(bind: AsyncEngine = engine) -> None:
    """Create missing tables and indexes (idempotent)."""
    async with bind.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def ping_database(
    session_factory: async_sessionmaker[AsyncSession] = async_session_factory,
) -> bool:
    """Return True when the database answers a trivial query."""
    try:
        async with session_factory() as session:
            await session.execute(text("SELECT 1"))
        return True
    except (SQLAlchemyError, OSError) as exc:
        logger.warning("Database not reachable: %s", exc.__class__.__name__)
        return False
