"""
Async SQLAlchemy plumbing for the conversation store.

A :class:`Database` is created explicitly from :class:`parley_chat.config.ChatConfig`
and owns its engine and session factory; there are no module-level engines.
"""
import asyncio

from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.orm import declarative_base

from parley_chat.config import normalize_database_url
from parley_chat.utils.logger import get_logger

logger = get_logger()

# Base class for models
Base = declarative_base()


class Database:
    """Engine and session factory for one database URL."""

    def __init__(self, url: str, echo: bool = False):
        self.url = normalize_database_url(url)
        self.engine = create_async_engine(self.url, echo=echo)
        self.SessionLocal = async_sessionmaker(
            bind=self.engine, class_=AsyncSession, expire_on_commit=False
        )
        self._schema_ready = False
        self._schema_lock = asyncio.Lock()

    def session(self) -> AsyncSession:
        """Open a new session; use as ``async with db.session() as session``."""
        return self.SessionLocal()

    async def ensure_schema(self) -> None:
        """Create any missing tables (idempotent, serialised across coroutines)."""
        # Import models so they are registered with Base.metadata
        import parley_chat.db_models  # noqa: F401

        async with self._schema_lock:
            if self._schema_ready:
                return
            async with self.engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)
            self._schema_ready = True
            logger.debug(f"Schema ensured for {self.url}")

    async def dispose(self) -> None:
        await self.engine.dispose()
