import asyncio

from alembic import context
from sqlalchemy.ext.asyncio import create_async_engine

from savannah.core.config import settings
from savannah.db.models import Base

target_metadata = Base.metadata


def run_migrations_offline():
    context.configure(url=settings.DB_URL, target_metadata=target_metadata, literal_binds=True)
    with context.begin_transaction():
        context.run_migrations()


def _run(connection):
    context.configure(connection=connection, target_metadata=target_metadata)
    with context.begin_transaction():
        context.run_migrations()


async def run_migrations_online():
    engine = create_async_engine(settings.DB_URL)
    async with engine.connect() as conn:
        await conn.run_sync(_run)
    await engine.dispose()


if context.is_offline_mode():
    run_migrations_offline()
else:
    asyncio.run(run_migrations_online())
