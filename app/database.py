"""Database Connection and Session Management"""

import re

from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker
from sqlalchemy.orm import declarative_base
from typing import AsyncGenerator, Dict, Tuple

from app.config import settings


def asyncpg_url(url: str) -> Tuple[str, Dict[str, str]]:
    """
    Convert a postgresql:// URL for asyncpg. asyncpg takes the libpq sslmode
    as its `ssl` connect argument rather than as a URL parameter.
    """
    url = url.replace("postgresql://", "postgresql+asyncpg://")
    connect_args = {}
    sslmode = re.search(r"[?&]sslmode=(disable|allow|prefer|require|verify-ca|verify-full)", url, re.I)
    if sslmode:
        connect_args["ssl"] = sslmode.group(1).lower()
    url = re.sub(r"[?&]sslmode=[^&]*", "", url, flags=re.I)
    if "?" not in url and "&" in url:
        url = url.replace("&", "?", 1)
    return url, connect_args


database_url, connect_args = asyncpg_url(settings.DATABASE_URL)

# Create async engine with connection pooling (pool_pre_ping detects stale connections)
engine = create_async_engine(
    database_url,
    connect_args=connect_args,
    pool_pre_ping=True,
    pool_size=settings.DB_POOL_SIZE,
    max_overflow=settings.DB_MAX_OVERFLOW,
    pool_timeout=settings.DB_POOL_TIMEOUT,
    pool_recycle=settings.DB_POOL_RECYCLE,
    echo=settings.DEBUG,
    future=True,
)

# Create async session factory
AsyncSessionLocal = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autocommit=False,
    autoflush=False,
)

# Base class for declarative models
Base = declarative_base()


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """
    Dependency function to get database session.
    
    Yields:
        AsyncSession: Database session
        
    Example:
        ```python
        @router.get("/organisations/{org_id}/status")
        async def get_status(db: AsyncSession = Depends(get_db)):
            # Use db session here
            pass
        ```
    """
    async with AsyncSessionLocal() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()


async def init_db() -> None:
    """Initialize database tables (for development only)"""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def close_db() -> None:
    """Close database connections"""
    await engine.dispose()
