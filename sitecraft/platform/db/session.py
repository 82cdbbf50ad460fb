from typing import Any, Dict

from sqlalchemy import create_engine
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import NullPool

from sitecraft.platform.config import settings


def _pool_options(db_url: str, pool_size: int, max_overflow: int) -> Dict[str, Any]:
    # SQLite pools do not accept sizing arguments; open a connection per session instead
    if db_url.startswith("sqlite"):
        return {"poolclass": NullPool}
    return {
        "pool_size": pool_size,
        "max_overflow": max_overflow,  # (burst capacity)
        "pool_timeout": 30,
        "pool_recycle": 1800,
    }


def to_sync_url(db_url: str) -> str:
    """Convert an async driver URL to its sync counterpart for Celery workers."""
    if db_url.startswith("postgresql+asyncpg://"):
        return db_url.replace("postgresql+asyncpg://", "postgresql://")
    if db_url.startswith("sqlite+aiosqlite://"):
        return db_url.replace("sqlite+aiosqlite://", "sqlite://")
    return db_url


engine = create_async_engine(
    settings.DATABASE_URL,
    echo=False,
    future=True,
    pool_pre_ping=True,
    **_pool_options(settings.DATABASE_URL, pool_size=20, max_overflow=30),
)
SessionLocal = async_sessionmaker(engine, expire_on_commit=False, autoflush=False, autocommit=False)


async def get_db():
    async with SessionLocal() as session:
        yield session


def create_sync_session_factory(db_url: str = None) -> sessionmaker:
    """
    Build a sync session factory for pipeline processes.

    The orchestrator and the Celery tasks own one factory per process; it is
    disposed together with its engine at worker shutdown.
    """
    db_url = to_sync_url(db_url or settings.DATABASE_URL)
    sync_engine = create_engine(
        db_url,
        pool_pre_ping=True,
        **_pool_options(db_url, pool_size=25, max_overflow=25),
    )
    return sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False, bind=sync_engine)
