from __future__ import annotations

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from timekeeper.config import settings
from timekeeper.models import Base


def make_engine(database_url: str) -> AsyncEngine:
  return create_async_engine(database_url, pool_pre_ping=not database_url.startswith("sqlite"))


def make_session_factory(bind: AsyncEngine) -> async_sessionmaker[AsyncSession]:
  # Stores hand ORM objects back to callers after the session closes.
  return async_sessionmaker(bind, expire_on_commit=False)


engine = make_engine(settings.database_url)
SessionLocal = make_session_factory(engine)


async def init_models(bind: AsyncEngine | None = None) -> None:
  async with (bind or engine).begin() as conn:
    await conn.run_sync(Base.metadata.create_all)
