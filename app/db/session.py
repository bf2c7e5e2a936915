from typing import Any, AsyncIterator, Dict

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import declarative_base

from app.core.config import settings


def _engine_options(url: str) -> Dict[str, Any]:
    if url.startswith("sqlite"):
        # File or in-memory SQLite (local runs, tests): no server-side idle timeouts.
        return {"echo": False, "future": True}
    # pool_pre_ping: check connection is alive before use (avoids "connection is closed" errors
    # when DB or network closed idle connections).
    # pool_recycle: discard connections after this many seconds to avoid stale connections.
    return {"echo": False, "future": True, "pool_pre_ping": True, "pool_recycle": 300}


engine: AsyncEngine = create_async_engine(settings.database_url, **_engine_options(settings.database_url))

# expire_on_commit=False: aggregates read attributes after the write path has committed.
AsyncSessionLocal = async_sessionmaker(
    bind=engine,
    class_=AsyncSession,
    expire_on_commit=False,
)

Base = declarative_base()


async def get_db() -> AsyncIterator[AsyncSession]:
    async with AsyncSessionLocal() as session:
        yield session
