"""PostgreSQL access for the progress store.

DATABASE_URL set (``postgresql+asyncpg://...``): one async engine per
process and a session factory that PgProgressDatabase draws a session
from for every transaction.

DATABASE_URL unset: ``engine`` and ``async_session_factory`` stay None
and the service runs on InMemoryProgressDatabase instead.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

from lms.core.config import SETTINGS

logger = logging.getLogger(__name__)


class Base(DeclarativeBase):
    pass


engine: AsyncEngine | None = None
async_session_factory: async_sessionmaker[AsyncSession] | None = None

if SETTINGS.database_url:
    engine = create_async_engine(
        SETTINGS.database_url,
        echo=SETTINGS.is_dev and SETTINGS.log_level == "debug",
        pool_size=5,
        max_overflow=10,
        # Connections idle behind a proxy get cut; check before handing out.
        pool_pre_ping=True,
    )
    # Rows are copied into frozen dataclasses before commit; nothing is
    # read from ORM objects afterwards.
    async_session_factory = async_sessionmaker(engine, expire_on_commit=False)


@asynccontextmanager
async def lifespan_db():
    if engine is None:
        logger.info("DATABASE_URL not set, progress state is in-memory only")
        yield
        return

    logger.info(
        "Progress database: %s", engine.url.render_as_string(hide_password=True)
    )
    try:
        yield
    finally:
        await engine.dispose()
        logger.info("Database engine disposed")
