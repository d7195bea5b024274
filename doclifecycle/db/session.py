from collections.abc import AsyncGenerator

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from doclifecycle.core.settings import settings
from doclifecycle.db.url import normalize_database_url

engine = create_async_engine(
    normalize_database_url(settings.database_url),
    future=True,
    echo=settings.database_echo,
    pool_pre_ping=True,
)
AsyncSessionLocal = async_sessionmaker(engine, expire_on_commit=False, autoflush=False)


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    async with AsyncSessionLocal() as session:
        yield session
