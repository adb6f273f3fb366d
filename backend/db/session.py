"""
InvenFlow Database Session Management

Async SQLAlchemy engine and session factory.
"""

from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.orm import DeclarativeBase
from core.config import get_settings

settings = get_settings()

# SQLite (local runs, tests) uses a static pool and rejects pool sizing.
_pool_kwargs = (
    {}
    if settings.database_url.startswith("sqlite")
    else {"pool_size": 20, "max_overflow": 10, "pool_pre_ping": True}
)

engine = create_async_engine(
    settings.database_url,
    echo=settings.database_echo,
    **_pool_kwargs,
)

AsyncSessionLocal = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


class Base(DeclarativeBase):
    """Declarative base for all SQLAlchemy models."""
    pass
