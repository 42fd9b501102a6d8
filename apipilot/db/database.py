# === apipilot/db/database.py ===

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import declarative_base
from apipilot.core.config import settings

engine = create_async_engine(settings.DATABASE_URL, echo=settings.DATABASE_ECHO)

async_session = async_sessionmaker(
    engine, expire_on_commit=False, class_=AsyncSession
)

Base = declarative_base()

async def create_db_and_tables(bind=None):
    # import models so they register on Base.metadata
    from apipilot.models import (  # noqa: F401
        project, document, discovered_api, endpoint,
        api_configuration, execution_record, insight,
    )

    async with (bind or engine).begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
