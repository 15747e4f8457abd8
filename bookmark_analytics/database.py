"""
Bookmark Analytics — Async SQLAlchemy database setup.

Engines are built on demand for the hosted backend; nothing here connects
at import time.
"""

from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine
from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    pass


def build_engine(database_url: str, key: str = "") -> AsyncEngine:
    """Create an async engine; ``key`` fills in the password when the URL has none."""
    url = make_url(database_url)
    if key and not url.password and "sqlite" not in url.drivername:
        url = url.set(password=key)

    return create_async_engine(
        url,
        echo=False,
        # pool settings only for postgres
        **(
            {}
            if "sqlite" in url.drivername
            else {
                "pool_size": 5,
                "max_overflow": 10,
                "pool_pre_ping": True,       # test connections before use (survives sleep/wake)
                "pool_recycle": 300,          # recycle connections every 5 min to avoid stale FDs
            }
        ),
    )


async def init_db(engine: AsyncEngine) -> None:
    """Create all tables (used in lifespan and tests)."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def close_db(engine: AsyncEngine) -> None:
    await engine.dispose()
