from __future__ import annotations

import asyncio

import pytest
from sqlalchemy import select

from timekeeper.models import AuditEvent, Task
from timekeeper.providers.base import RemoteWorkItem
from timekeeper.sync.reconciler import SyncReconciler
from tests.conftest import add_integration
from tests.fakes import FakeProviderClient, item


def _by_external_id(tasks: list[Task]) -> dict[str, Task]:
  return {t.external_id: t for t in tasks}


@pytest.mark.anyio
async def test_first_sync_creates_tasks_with_markers_and_inferred_priority(integration_store, task_store):
  integ = await add_integration(integration_store)
  client = FakeProviderClient("AzureDevOps", [item(1, "Fix bug", type="Bug"), item(2, "Add feature", type="Feature")])
  reconciler = SyncReconciler(client=client, tasks=task_store)

  result = await reconciler.sync_new_items(integ)

  assert result.is_success, result.message
  assert (result.created_count, result.skipped_count, result.error_count) == (2, 0, 0)
  assert result.message == "Sync completed: 2 created, 0 skipped, 0 errors."

  tasks = _by_external_id(await task_store.get_all())
  assert set(tasks) == {"1", "2"}
  bug, feature = tasks["1"], tasks["2"]
  assert "DevOps:1" in bug.tags.split(",")
  assert "DevOps:2" in feature.tags.split(",")
  assert bug.priority == "High"
  assert bug.estimated_time_minutes == 120
  assert feature.priority == "Low"
  assert feature.estimated_time_minutes == 960
  assert bug.title == "[DevOps] Fix bug"
  assert bug.description.startswith("Azure DevOps Work Item #1")
  assert bug.category == "DevOps Integration"
  assert bug.external_provider == "AzureDevOps"
  assert bug.status == "Pending"


@pytest.mark.anyio
async def test_second_sync_with_same_items_creates_nothing(integration_store, task_store):
  integ = await add_integration(integration_store)
  client = FakeProviderClient("AzureDevOps", [item(1, "One", type="Task"), item(2, "Two"), item(3, "Three")])
  reconciler = SyncReconciler(client=client, tasks=task_store)

  first = await reconciler.sync_new_items(integ)
  second = await reconciler.sync_new_items(integ)

  assert first.created_count == 3
  assert second.created_count == 0
  assert second.skipped_count == 3
  assert len(await task_store.get_all()) == 3


@pytest.mark.anyio
async def test_type_inference_for_user_story_and_unknown(integration_store, task_store):
  integ = await add_integration(integration_store)
  client = FakeProviderClient("AzureDevOps", [item(5, "Story", type="User Story"), item(6, "Odd", type="Impediment")])
  await SyncReconciler(client=client, tasks=task_store).sync_new_items(integ)

  tasks = _by_external_id(await task_store.get_all())
  assert (tasks["5"].priority, tasks["5"].estimated_time_minutes) == ("Medium", 480)
  assert (tasks["6"].priority, tasks["6"].estimated_time_minutes) == ("Medium", 240)


@pytest.mark.anyio
async def test_empty_fetch_is_trivial_success(integration_store, task_store):
  integ = await add_integration(integration_store)
  result = await SyncReconciler(client=FakeProviderClient("AzureDevOps"), tasks=task_store).sync_new_items(integ)
  assert result.is_success
  assert result.message == "No work items found to sync."
  assert result.created_count == 0


@pytest.mark.anyio
async def test_malformed_items_are_counted_without_aborting_batch(integration_store, task_store):
  integ = await add_integration(integration_store)
  client = FakeProviderClient(
    "AzureDevOps",
    [
      RemoteWorkItem(id="", title="No id"),
      RemoteWorkItem(id="abc", title="Bad id"),
      RemoteWorkItem(id="8", title="   "),
      item(9, "Good one", type="Bug"),
    ],
  )
  result = await SyncReconciler(client=client, tasks=task_store).sync_new_items(integ)

  assert result.is_success
  assert result.created_count == 1
  assert result.error_count == 3
  assert len(result.errors) == 3
  assert [t.external_id for t in await task_store.get_all()] == ["9"]


@pytest.mark.anyio
async def test_fetch_exception_becomes_failed_result(integration_store, task_store):
  integ = await add_integration(integration_store)
  client = FakeProviderClient("AzureDevOps")
  client.fetch_error = RuntimeError("boom")

  result = await SyncReconciler(client=client, tasks=task_store).sync_new_items(integ)

  assert result.is_success is False
  assert result.message == "Sync failed: boom"


@pytest.mark.anyio
async def test_legacy_tag_marker_counts_as_imported(integration_store, task_store):
  integ = await add_integration(integration_store)
  await task_store.add(Task(title="[DevOps] Old", tags="DevOps:3,Azure,Bug"))
  client = FakeProviderClient("AzureDevOps", [item(3, "Old"), item(4, "New")])

  result = await SyncReconciler(client=client, tasks=task_store).sync_new_items(integ)

  assert (result.created_count, result.skipped_count) == (1, 1)


@pytest.mark.anyio
async def test_title_fallback_detects_task_referencing_remote_id(integration_store, task_store):
  integ = await add_integration(integration_store, provider="GitHub", organization_url="acme", project_name="web")
  await task_store.add(Task(title="[GitHub] Login broken", description="GitHub Issue #17\nimported by hand"))
  client = FakeProviderClient("GitHub", [item(17, "Login broken", state="open"), item(170, "Login broken again", state="open")])

  result = await SyncReconciler(client=client, tasks=task_store).sync_new_items(integ)

  assert result.skipped_count == 1
  assert result.created_count == 1
  created = [t for t in await task_store.get_all() if t.external_id]
  assert [t.external_id for t in created] == ["170"]
  assert created[0].category == "GitHub Integration"
  assert "GitHub:170" in created[0].tags


@pytest.mark.anyio
async def test_closed_remote_item_is_imported_as_completed(integration_store, task_store):
  integ = await add_integration(integration_store, provider="GitHub", organization_url="acme", project_name="web")
  client = FakeProviderClient("GitHub", [item(2, "Already done", state="closed")])
  await SyncReconciler(client=client, tasks=task_store).sync_new_items(integ)
  (task,) = await task_store.get_all()
  assert task.status == "Completed"


@pytest.mark.anyio
async def test_concurrent_syncs_for_same_provider_do_not_duplicate(integration_store, task_store):
  a = await add_integration(integration_store, organization_url="https://dev.azure.com/a")
  b = await add_integration(integration_store, organization_url="https://dev.azure.com/b")
  client = FakeProviderClient("AzureDevOps", [item(i, f"Item {i}") for i in range(1, 6)])
  reconciler = SyncReconciler(client=client, tasks=task_store)

  ra, rb = await asyncio.gather(reconciler.sync_new_items(a), reconciler.sync_new_items(b))

  assert ra.created_count + rb.created_count == 5
  assert ra.skipped_count + rb.skipped_count == 5
  assert len(await task_store.get_all()) == 5


@pytest.mark.anyio
async def test_import_writes_audit_event(integration_store, task_store, session_factory):
  integ = await add_integration(integration_store)
  client = FakeProviderClient("AzureDevOps", [item(11, "Audited")])
  await SyncReconciler(client=client, tasks=task_store).sync_new_items(integ)

  async with session_factory() as db:
    res = await db.execute(select(AuditEvent).where(AuditEvent.event_type == "task.imported"))
    events = res.scalars().all()
  assert len(events) == 1
  assert events[0].payload["externalId"] == "11"
