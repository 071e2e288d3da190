

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from counselflow.core.config import settings

engine = create_async_engine(
    settings.postgres_url,
    echo=settings.app_debug,
    pool_size=5,
    max_overflow=5,
    pool_pre_ping=True,
)

async_session_factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
