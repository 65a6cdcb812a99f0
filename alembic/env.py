from __future__ import annotations

import asyncio

from alembic import context
from sqlalchemy.engine import Connection

from timekeeper.config import settings
from timekeeper.db import make_engine
from timekeeper.models import Base

target_metadata = Base.metadata


def run_migrations_offline() -> None:
  context.configure(url=settings.database_url, target_metadata=target_metadata, literal_binds=True)
  with context.begin_transaction():
    context.run_migrations()


def _run(connection: Connection) -> None:
  context.configure(connection=connection, target_metadata=target_metadata, render_as_batch=connection.dialect.name == "sqlite")
  with context.begin_transaction():
    context.run_migrations()


async def run_migrations_online() -> None:
  engine = make_engine(settings.database_url)
  async with engine.connect() as connection:
    await connection.run_sync(_run)
  await engine.dispose()


if context.is_offline_mode():
  run_migrations_offline()
else:
  asyncio.run(run_migrations_online())
