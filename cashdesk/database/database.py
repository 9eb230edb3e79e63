from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import declarative_base
from sqlalchemy.pool import NullPool
from cashdesk.core.config import settings
import logging

logger = logging.getLogger(__name__)

Base = declarative_base()


def build_engine(url: str, **kwargs) -> AsyncEngine:
    """Crea el engine asíncrono de la aplicación."""
    if settings.ENVIRONMENT == "test":
        kwargs.setdefault("poolclass", NullPool)
    elif url.startswith("postgresql"):
        kwargs.setdefault("pool_size", 10)
        kwargs.setdefault("max_overflow", 20)
    return create_async_engine(
        url,
        pool_pre_ping=True,
        echo=settings.DEBUG,
        **kwargs
    )


def build_sessionmaker(engine: AsyncEngine) -> async_sessionmaker:
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False
    )


async def init_models(engine: AsyncEngine) -> None:
    """Create tables (development only, production uses migrations)."""
    # Models register themselves on Base.metadata when imported
    import cashdesk.modules.cash_register.models  # noqa: F401
    import cashdesk.modules.sales.models  # noqa: F401
    import cashdesk.modules.settings.models  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Database tables verified")
