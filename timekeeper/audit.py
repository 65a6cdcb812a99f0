from __future__ import annotations

from typing import Any

from fastapi.encoders import jsonable_encoder
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from timekeeper.models import AuditEvent


async def write_audit(
  db: AsyncSession,
  *,
  event_type: str,
  entity_type: str,
  entity_id: str | None,
  task_id: str | None = None,
  payload: dict[str, Any] | None = None,
) -> None:
  safe_payload = jsonable_encoder(payload or {})
  ev = AuditEvent(
    task_id=task_id,
    event_type=event_type,
    entity_type=entity_type,
    entity_id=entity_id,
    payload=safe_payload,
  )
  db.add(ev)


class AuditLog:
  """Writes audit events in their own transaction, for callers that hold no session."""

  def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
    self._sessions = session_factory

  async def record(
    self,
    *,
    event_type: str,
    entity_type: str,
    entity_id: str | None,
    task_id: str | None = None,
    payload: dict[str, Any] | None = None,
  ) -> None:
    async with self._sessions() as db:
      await write_audit(
        db,
        event_type=event_type,
        entity_type=entity_type,
        entity_id=entity_id,
        task_id=task_id,
        payload=payload,
      )
      await db.commit()

  async def latest(self, *, event_types: tuple[str, ...], entity_id: str | None = None) -> AuditEvent | None:
    if not event_types:
      return None
    async with self._sessions() as db:
      q = select(AuditEvent).where(AuditEvent.event_type.in_(event_types))
      if entity_id is not None:
        q = q.where(AuditEvent.entity_id == entity_id)
      res = await db.execute(q.order_by(AuditEvent.created_at.desc()).limit(1))
      return res.scalars().first()
