from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import select

from timekeeper.models import AuditEvent, Task
from timekeeper.stores import DuplicateExternalTaskError
from tests.conftest import add_integration

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


@pytest.mark.anyio
async def test_due_for_sync_window_and_ordering(integration_store):
  recent = await add_integration(integration_store, last_sync_at=NOW - timedelta(minutes=30))
  stale = await add_integration(integration_store, last_sync_at=NOW - timedelta(hours=2))
  staler = await add_integration(integration_store, last_sync_at=NOW - timedelta(hours=5))
  never = await add_integration(integration_store)
  await add_integration(integration_store, is_active=False)

  due = await integration_store.get_due_for_sync(timedelta(hours=1), now=NOW)

  assert [i.id for i in due] == [never.id, staler.id, stale.id]
  assert recent.id not in {i.id for i in due}
  gh_due = await integration_store.get_by_provider_due_for_sync("GitHub", timedelta(hours=1), now=NOW)
  assert gh_due == []


@pytest.mark.anyio
async def test_bulk_last_sync_only_touches_given_ids(integration_store, session_factory):
  a = await add_integration(integration_store)
  b = await add_integration(integration_store)

  await integration_store.update_last_sync_bulk([a.id], NOW)

  assert (await integration_store.get_by_id(a.id)).last_sync_at == NOW
  assert (await integration_store.get_by_id(b.id)).last_sync_at is None
  async with session_factory() as db:
    res = await db.execute(select(AuditEvent).where(AuditEvent.event_type == "integration.synced"))
    assert res.scalar_one().payload["ids"] == [a.id]


@pytest.mark.anyio
async def test_activation_and_counts(integration_store):
  a = await add_integration(integration_store)
  b = await add_integration(integration_store)
  g = await add_integration(integration_store, provider="GitHub", organization_url="acme")

  assert await integration_store.get_active_count_by_all_providers() == {"AzureDevOps": 2, "GitHub": 1}
  assert await integration_store.deactivate(a.id) is True
  assert await integration_store.get_active_count_by_provider("AzureDevOps") == 1
  assert [i.id for i in await integration_store.get_active_by_provider("AzureDevOps")] == [b.id]

  assert await integration_store.deactivate_by_provider("AzureDevOps") == 1
  assert {i.id for i in await integration_store.get_all_active()} == {g.id}
  assert await integration_store.activate(a.id) is True
  assert await integration_store.activate("missing") is False
  assert await integration_store.deactivate_all() == 2
  assert await integration_store.get_all_active() == []


@pytest.mark.anyio
async def test_delete_and_recently_stale(integration_store):
  old = await add_integration(integration_store, last_sync_at=NOW - timedelta(days=3))
  await add_integration(integration_store, last_sync_at=NOW - timedelta(hours=1))

  stale = await integration_store.get_recently_stale(timedelta(days=1), now=NOW)
  assert [i.id for i in stale] == [old.id]

  assert await integration_store.delete(old.id) is True
  assert await integration_store.delete(old.id) is False
  assert await integration_store.get_by_id(old.id) is None


@pytest.mark.anyio
async def test_task_unique_external_ref(task_store):
  await task_store.add(Task(title="[DevOps] A", external_provider="AzureDevOps", external_id="1"))
  await task_store.add(Task(title="[GitHub] A", external_provider="GitHub", external_id="1"))
  await task_store.add(Task(title="manual one"))
  await task_store.add(Task(title="manual two"))

  with pytest.raises(DuplicateExternalTaskError):
    await task_store.add(Task(title="[DevOps] A again", external_provider="AzureDevOps", external_id="1"))
  assert len(await task_store.get_all()) == 4


@pytest.mark.anyio
async def test_fuzzy_title_linked_and_search(task_store):
  await task_store.add(Task(title="[DevOps] Fix Login", tags="DevOps:3,Azure"))
  await task_store.add(Task(title="[GitHub] Docs", external_provider="GitHub", external_id="4", tags="GitHub:4"))
  await task_store.add(Task(title="Water plants", description="balcony 100%"))

  assert [t.title for t in await task_store.get_by_title_fuzzy("fix login")] == ["[DevOps] Fix Login"]
  assert await task_store.get_by_title_fuzzy("  ") == []
  assert [t.title for t in await task_store.get_linked("AzureDevOps", "DevOps")] == ["[DevOps] Fix Login"]
  assert [t.title for t in await task_store.get_linked("GitHub", "GitHub")] == ["[GitHub] Docs"]
  assert [t.title for t in await task_store.search("100%")] == ["Water plants"]


@pytest.mark.anyio
async def test_task_update_persists_and_audits(task_store, session_factory):
  task = await task_store.add(Task(title="t"))
  task.status = "Completed"
  await task_store.update(task, audit_event="task.status.synced", payload={"to": "Completed"})

  assert (await task_store.get_by_id(task.id)).status == "Completed"
  async with session_factory() as db:
    res = await db.execute(select(AuditEvent).where(AuditEvent.event_type == "task.status.synced"))
    assert res.scalar_one().task_id == task.id
