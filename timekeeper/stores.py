from __future__ import annotations

from collections.abc import Iterable
from datetime import datetime, timedelta
from typing import Any

from sqlalchemy import Select, delete, func, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from timekeeper.audit import write_audit
from timekeeper.models import ProviderIntegration, Task, utcnow

DEFAULT_MAX_AGE = timedelta(hours=1)


class DuplicateExternalTaskError(RuntimeError):
  def __init__(self, provider: str | None, external_id: str | None) -> None:
    super().__init__(f"Task already linked to {provider}:{external_id}")
    self.provider = provider
    self.external_id = external_id


class IntegrationStore:
  """
  Persisted provider connections.

  Every call runs in its own session and transaction, so concurrent integration
  syncs can share one store instance.
  """

  def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
    self._sessions = session_factory

  async def get_by_id(self, integration_id: str) -> ProviderIntegration | None:
    async with self._sessions() as db:
      res = await db.execute(select(ProviderIntegration).where(ProviderIntegration.id == integration_id))
      return res.scalar_one_or_none()

  async def get_all(self) -> list[ProviderIntegration]:
    async with self._sessions() as db:
      res = await db.execute(select(ProviderIntegration).order_by(ProviderIntegration.created_at.desc()))
      return list(res.scalars().all())

  async def add(self, integration: ProviderIntegration) -> ProviderIntegration:
    async with self._sessions() as db:
      db.add(integration)
      await db.flush()
      await write_audit(
        db,
        event_type="integration.created",
        entity_type="ProviderIntegration",
        entity_id=integration.id,
        payload={
          "provider": integration.provider,
          "organizationUrl": integration.organization_url,
          "projectName": integration.project_name,
          "tokenHint": integration.token_hint,
        },
      )
      await db.commit()
      return integration

  async def update(self, integration: ProviderIntegration) -> ProviderIntegration:
    async with self._sessions() as db:
      merged = await db.merge(integration)
      await db.commit()
      return merged

  async def delete(self, integration_id: str) -> bool:
    async with self._sessions() as db:
      res = await db.execute(delete(ProviderIntegration).where(ProviderIntegration.id == integration_id))
      if not res.rowcount:
        await db.rollback()
        return False
      await write_audit(db, event_type="integration.deleted", entity_type="ProviderIntegration", entity_id=integration_id)
      await db.commit()
      return True

  async def get_by_provider(self, provider: str) -> list[ProviderIntegration]:
    async with self._sessions() as db:
      res = await db.execute(
        select(ProviderIntegration)
        .where(ProviderIntegration.provider == provider)
        .order_by(ProviderIntegration.created_at.desc())
      )
      return list(res.scalars().all())

  async def get_active_by_provider(self, provider: str) -> list[ProviderIntegration]:
    async with self._sessions() as db:
      res = await db.execute(
        select(ProviderIntegration)
        .where(ProviderIntegration.provider == provider, ProviderIntegration.is_active.is_(True))
        .order_by(func.coalesce(ProviderIntegration.last_sync_at, ProviderIntegration.created_at).desc())
      )
      return list(res.scalars().all())

  async def get_all_active(self) -> list[ProviderIntegration]:
    async with self._sessions() as db:
      res = await db.execute(
        select(ProviderIntegration)
        .where(ProviderIntegration.is_active.is_(True))
        .order_by(
          ProviderIntegration.provider.asc(),
          func.coalesce(ProviderIntegration.last_sync_at, ProviderIntegration.created_at).desc(),
        )
      )
      return list(res.scalars().all())

  async def _set_active(self, *conditions: Any, active: bool) -> int:
    async with self._sessions() as db:
      res = await db.execute(
        update(ProviderIntegration).where(*conditions).values(is_active=active, updated_at=utcnow())
      )
      await db.commit()
      return int(res.rowcount or 0)

  async def deactivate_all(self) -> int:
    return await self._set_active(ProviderIntegration.is_active.is_(True), active=False)

  async def deactivate_by_provider(self, provider: str) -> int:
    return await self._set_active(
      ProviderIntegration.provider == provider, ProviderIntegration.is_active.is_(True), active=False
    )

  async def activate(self, integration_id: str) -> bool:
    changed = await self._set_active(ProviderIntegration.id == integration_id, active=True)
    return changed > 0

  async def deactivate(self, integration_id: str) -> bool:
    changed = await self._set_active(ProviderIntegration.id == integration_id, active=False)
    return changed > 0

  async def update_last_sync(self, integration_id: str, last_sync: datetime) -> None:
    await self.update_last_sync_bulk([integration_id], last_sync)

  async def update_last_sync_bulk(self, ids: Iterable[str], last_sync: datetime) -> None:
    id_list = list(dict.fromkeys(ids))
    if not id_list:
      return
    async with self._sessions() as db:
      await db.execute(
        update(ProviderIntegration)
        .where(ProviderIntegration.id.in_(id_list))
        .values(last_sync_at=last_sync, updated_at=utcnow())
      )
      await write_audit(
        db,
        event_type="integration.synced",
        entity_type="ProviderIntegration",
        entity_id=None,
        payload={"ids": id_list, "lastSyncAt": last_sync},
      )
      await db.commit()

  def _due_query(self, max_age: timedelta | None, now: datetime | None) -> Select:
    cutoff = (now or utcnow()) - (max_age if max_age is not None else DEFAULT_MAX_AGE)
    return (
      select(ProviderIntegration)
      .where(
        ProviderIntegration.is_active.is_(True),
        or_(ProviderIntegration.last_sync_at.is_(None), ProviderIntegration.last_sync_at < cutoff),
      )
      .order_by(ProviderIntegration.last_sync_at.is_(None).desc(), ProviderIntegration.last_sync_at.asc())
    )

  async def get_due_for_sync(self, max_age: timedelta | None = None, now: datetime | None = None) -> list[ProviderIntegration]:
    async with self._sessions() as db:
      res = await db.execute(self._due_query(max_age, now))
      return list(res.scalars().all())

  async def get_by_provider_due_for_sync(
    self, provider: str, max_age: timedelta | None = None, now: datetime | None = None
  ) -> list[ProviderIntegration]:
    async with self._sessions() as db:
      res = await db.execute(self._due_query(max_age, now).where(ProviderIntegration.provider == provider))
      return list(res.scalars().all())

  async def get_active_count_by_provider(self, provider: str) -> int:
    async with self._sessions() as db:
      res = await db.execute(
        select(func.count(ProviderIntegration.id)).where(
          ProviderIntegration.provider == provider, ProviderIntegration.is_active.is_(True)
        )
      )
      return int(res.scalar_one() or 0)

  async def get_active_count_by_all_providers(self) -> dict[str, int]:
    async with self._sessions() as db:
      res = await db.execute(
        select(ProviderIntegration.provider, func.count(ProviderIntegration.id))
        .where(ProviderIntegration.is_active.is_(True))
        .group_by(ProviderIntegration.provider)
      )
      return {provider: int(count) for provider, count in res.all()}

  async def get_recently_stale(self, time_frame: timedelta | None = None, now: datetime | None = None) -> list[ProviderIntegration]:
    # No per-integration failure column: "stale" means synced once, not since the cutoff.
    cutoff = (now or utcnow()) - (time_frame or timedelta(days=1))
    async with self._sessions() as db:
      res = await db.execute(
        select(ProviderIntegration)
        .where(
          ProviderIntegration.is_active.is_(True),
          ProviderIntegration.last_sync_at.is_not(None),
          ProviderIntegration.last_sync_at < cutoff,
        )
        .order_by(ProviderIntegration.last_sync_at.desc())
      )
      return list(res.scalars().all())


class TaskStore:
  def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
    self._sessions = session_factory

  async def get_all(self) -> list[Task]:
    async with self._sessions() as db:
      res = await db.execute(select(Task).order_by(Task.created_at.desc()))
      return list(res.scalars().all())

  async def get_by_id(self, task_id: str) -> Task | None:
    async with self._sessions() as db:
      res = await db.execute(select(Task).where(Task.id == task_id))
      return res.scalar_one_or_none()

  async def get_by_title_fuzzy(self, title: str) -> list[Task]:
    needle = (title or "").strip().lower()
    if not needle:
      return []
    async with self._sessions() as db:
      res = await db.execute(
        select(Task).where(func.lower(Task.title).contains(needle, autoescape=True)).order_by(Task.created_at.desc())
      )
      return list(res.scalars().all())

  async def get_linked(self, provider: str, marker_tag: str) -> list[Task]:
    async with self._sessions() as db:
      res = await db.execute(
        select(Task)
        .where(or_(Task.external_provider == provider, Task.tags.contains(f"{marker_tag}:", autoescape=True)))
        .order_by(Task.created_at.asc())
      )
      return list(res.scalars().all())

  async def search(self, term: str) -> list[Task]:
    needle = (term or "").strip()
    if not needle:
      return []
    async with self._sessions() as db:
      res = await db.execute(
        select(Task)
        .where(
          or_(
            Task.title.contains(needle, autoescape=True),
            Task.description.contains(needle, autoescape=True),
            Task.tags.contains(needle, autoescape=True),
          )
        )
        .order_by(Task.created_at.desc())
      )
      return list(res.scalars().all())

  async def add(
    self,
    task: Task,
    *,
    audit_event: str = "task.created",
    payload: dict[str, Any] | None = None,
  ) -> Task:
    async with self._sessions() as db:
      db.add(task)
      try:
        await db.flush()
      except IntegrityError as exc:
        await db.rollback()
        raise DuplicateExternalTaskError(task.external_provider, task.external_id) from exc
      await write_audit(
        db,
        event_type=audit_event,
        entity_type="Task",
        entity_id=task.id,
        task_id=task.id,
        payload=payload or {"title": task.title},
      )
      await db.commit()
      return task

  async def update(
    self,
    task: Task,
    *,
    audit_event: str = "task.updated",
    payload: dict[str, Any] | None = None,
  ) -> Task:
    async with self._sessions() as db:
      merged = await db.merge(task)
      await write_audit(
        db,
        event_type=audit_event,
        entity_type="Task",
        entity_id=task.id,
        task_id=task.id,
        payload=payload or {"status": task.status},
      )
      await db.commit()
      return merged
