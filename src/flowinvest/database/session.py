"""
Engine and session wiring for the record store.
"""

from __future__ import annotations

import logging

from sqlalchemy.engine.url import make_url
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from flowinvest.config import Settings
from flowinvest.database.models import Base
from flowinvest.database.store import RecordStore

logger = logging.getLogger(__name__)


def create_engine_from_settings(settings: Settings) -> AsyncEngine:
    if not settings.DATABASE_URL:
        raise ValueError("DATABASE_URL is not configured")
    safe_url = make_url(settings.DATABASE_URL).render_as_string(hide_password=True)
    logger.debug("Creating async engine for %s", safe_url)
    return create_async_engine(settings.DATABASE_URL, echo=False, pool_pre_ping=True)


def get_session_maker(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(bind=engine, expire_on_commit=False)


def build_record_store(settings: Settings) -> RecordStore | None:
    """Return a store bound to ``DATABASE_URL``, or None when persistence is off."""
    if not settings.DATABASE_URL:
        logger.info("DATABASE_URL not set; record persistence routes are disabled.")
        return None
    return RecordStore(get_session_maker(create_engine_from_settings(settings)))


async def init_models(engine: AsyncEngine) -> None:
    """Create the record tables if they do not exist."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
