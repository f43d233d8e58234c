from collections.abc import AsyncGenerator
from urllib.parse import urlsplit, urlunsplit

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from app.core.settings import settings


def normalize_database_url(url: str) -> str:
    """Route plain postgres URLs through the async psycopg driver."""
    url = (url or "").strip()
    parts = urlsplit(url)
    if parts.scheme in {"postgres", "postgresql", "postgresql+asyncpg"}:
        parts = parts._replace(scheme="postgresql+psycopg")
    return urlunsplit(parts)


engine = create_async_engine(normalize_database_url(settings.database_url), future=True, echo=False)
AsyncSessionLocal = async_sessionmaker(engine, expire_on_commit=False, autoflush=False)


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    async with AsyncSessionLocal() as session:
        yield session
