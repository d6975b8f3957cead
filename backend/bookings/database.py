"""
Database Engine and Session Factory

Async SQLAlchemy engine built from Settings.database_url. A plain
`sqlite:///` URL is switched to the aiosqlite driver so that the same
setting works for the API process and the Celery worker.
"""

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from bookings.config import get_settings

settings = get_settings()


def async_database_url(url: str) -> str:
    return url.replace("sqlite:///", "sqlite+aiosqlite:///")


engine = create_async_engine(async_database_url(settings.database_url), echo=False)
async_session = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


class Base(DeclarativeBase):
    pass


async def init_db():
    # Register every table on Base.metadata before creating them
    import bookings.models  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
