"""
Database connection and session management.
"""

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlmodel import SQLModel

from analytics.core.config import get_settings

settings = get_settings()

engine = create_async_engine(
    settings.database_url,
    echo=settings.debug,
    future=True,
)

async_session_factory = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


async def init_db(bind: AsyncEngine | None = None):
    """Create the events and async_jobs tables if they do not exist."""
    # Registers the table models on SQLModel.metadata.
    import analytics.models  # noqa: F401

    async with (bind or engine).begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)


async def ping(session_factory: async_sessionmaker[AsyncSession] = async_session_factory) -> None:
    """Round-trip a trivial statement. Raises if the database is unreachable."""
    async with session_factory() as session:
        await session.execute(text("SELECT 1"))
