import logging
from typing import AsyncIterator
from fastapi import Request
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker, AsyncSession, AsyncEngine
from .config import settings
from .base import Base

log = logging.getLogger(__name__)

class Database:
    """Explicitly constructed store handle. The process entry point owns init/close."""

    def __init__(self, dsn: str | None = None, *, echo: bool = False):
        self.dsn = dsn or settings.POSTGRES_DSN
        connect_args = {}
        if "+asyncpg" in self.dsn:
            connect_args = {"timeout": settings.DB_TIMEOUT_SECONDS, "command_timeout": settings.DB_TIMEOUT_SECONDS}
        elif "+aiosqlite" in self.dsn:
            connect_args = {"timeout": settings.DB_TIMEOUT_SECONDS}
        self.engine: AsyncEngine = create_async_engine(self.dsn, pool_pre_ping=True, echo=echo, connect_args=connect_args)
        self.sessionmaker = async_sessionmaker(self.engine, expire_on_commit=False, class_=AsyncSession)

    async def init(self, manage: str | None = None):
        # In "create_all" mode build the schema here; otherwise migrations own it.
        import telecare.modules.models  # noqa: F401  (register every table on Base.metadata)
        if (manage or settings.DB_MANAGE).lower() == "create_all":
            async with self.engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)
        log.info("Database initialised (%s)", self.engine.url.render_as_string(hide_password=True))

    async def close(self):
        await self.engine.dispose()

    def session(self) -> AsyncSession:
        return self.sessionmaker()

async def get_session(request: Request) -> AsyncIterator[AsyncSession]:
    db: Database = request.app.state.db
    async with db.session() as session:
        yield session
