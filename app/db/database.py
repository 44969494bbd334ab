"""
Database Connection and Session Management
"""
from typing import Any

from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.orm import declarative_base

from app.core.config import settings


def _engine_options(database_url: str) -> dict[str, Any]:
    """אפשרויות engine לפי דיאלקט — statement_timeout רלוונטי רק ל-PostgreSQL"""
    options: dict[str, Any] = {"echo": settings.DEBUG, "pool_pre_ping": True}
    if database_url.startswith("postgresql+asyncpg"):
        options["connect_args"] = {
            "server_settings": {
                "statement_timeout": str(settings.DB_STATEMENT_TIMEOUT_MS),
                "lock_timeout": str(settings.DB_STATEMENT_TIMEOUT_MS),
            }
        }
    return options


engine = create_async_engine(settings.DATABASE_URL, **_engine_options(settings.DATABASE_URL))

AsyncSessionLocal = async_sessionmaker(
    bind=engine,
    class_=AsyncSession,
    expire_on_commit=False
)

Base = declarative_base()


async def get_db() -> AsyncSession:
    """Dependency for getting database session"""
    async with AsyncSessionLocal() as session:
        try:
            yield session
        finally:
            await session.close()
