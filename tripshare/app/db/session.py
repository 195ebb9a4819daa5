"""
Engine, session factory and declarative base for the trip store.

Every datetime column holds naive UTC (see core.clock). Sessions are
opened with expire_on_commit disabled so service code can keep reading
rows after TripStore.atomic() commits.
"""

from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.orm import declarative_base
from tripshare.app.core.config import settings


def _engine_options(url: str) -> dict:
    # SQLite drivers reject QueuePool sizing arguments
    if url.startswith("sqlite"):
        return {"echo": settings.db_echo}
    return {
        "echo": settings.db_echo,
        "pool_size": settings.db_pool_size,
        "max_overflow": settings.db_max_overflow,
        "pool_pre_ping": True,
    }


engine = create_async_engine(settings.database_url, **_engine_options(settings.database_url))

AsyncSessionLocal = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autoflush=False,
)

Base = declarative_base()


async def get_db():
    """Request-scoped session; the store decides when to commit."""
    async with AsyncSessionLocal() as session:
        yield session
