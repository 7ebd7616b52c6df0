"""Database connection and session management."""

import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from rental_occupancy.db.models import Base

logger = logging.getLogger(__name__)


class Database:
    """Owns the async engine and hands out sessions."""

    def __init__(self, database_url: str, echo: bool = False):
        self.url = database_url
        connect_args = {"timeout": 30} if database_url.startswith("sqlite") else {}
        self.engine = create_async_engine(
            database_url,
            echo=echo,
            connect_args=connect_args,
        )
        self.session_maker = async_sessionmaker(
            self.engine,
            class_=AsyncSession,
            expire_on_commit=False,
        )

    async def init(self) -> None:
        """Initialize the database, creating all tables."""
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info("Database ready at %s", self.engine.url.render_as_string(hide_password=True))

    async def dispose(self) -> None:
        await self.engine.dispose()

    async def ping(self) -> bool:
        """Check that the database answers a trivial query."""
        async with self.engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
        return True

    @asynccontextmanager
    async def session(self) -> AsyncGenerator[AsyncSession, None]:
        """Get a database session as a context manager."""
        async with self.session_maker() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise
