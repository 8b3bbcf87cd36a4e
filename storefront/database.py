from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from storefront.config import settings
from storefront.infrastructure.db_schema import metadata


def build_engine(url: str):
    return create_async_engine(url, pool_pre_ping=True)


engine = build_engine(settings.DATABASE_URL or "sqlite+aiosqlite:///./storefront.db")
AsyncSessionLocal = async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)


async def create_tables(bind=engine):
    async with bind.begin() as conn:
        await conn.run_sync(metadata.create_all)
