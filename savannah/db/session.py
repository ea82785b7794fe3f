from typing import Optional

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from savannah.core.config import settings
from savannah.db.models import Base

_engine: Optional[AsyncEngine] = None
_SessionLocal: Optional[async_sessionmaker[AsyncSession]] = None


def get_sessionmaker(url: Optional[str] = None) -> async_sessionmaker[AsyncSession]:
    global _engine, _SessionLocal
    if _SessionLocal is None:
        _engine = create_async_engine(url or settings.DB_URL, pool_pre_ping=True)
        _SessionLocal = async_sessionmaker(bind=_engine, class_=AsyncSession, expire_on_commit=False)
    return _SessionLocal


async def init_models(engine: AsyncEngine) -> None:
    # tests and local dev; production goes through alembic
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def dispose_engine():
    global _engine, _SessionLocal
    if _engine is not None:
        await _engine.dispose()
    _engine = None
    _SessionLocal = None
