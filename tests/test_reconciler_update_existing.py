from __future__ import annotations

import pytest

from timekeeper.models import Task
from timekeeper.sync.reconciler import SyncReconciler
from tests.conftest import add_integration
from tests.fakes import FakeProviderClient, item


async def _linked_task(task_store, remote_id: str, *, status: str = "Pending", provider: str = "AzureDevOps") -> Task:
  tag = "DevOps" if provider == "AzureDevOps" else provider
  return await task_store.add(
    Task(
      title=f"[{tag}] Item {remote_id}",
      status=status,
      tags=f"{tag}:{remote_id}",
      external_provider=provider,
      external_id=remote_id,
    )
  )


@pytest.mark.anyio
@pytest.mark.parametrize(
  "remote_state,expected",
  [
    ("New", "Pending"),
    ("Active", "InProgress"),
    ("Resolved", "InProgress"),
    ("Closed", "Completed"),
    ("Done", "Completed"),
    ("Something Else", "Pending"),
  ],
)
async def test_status_follows_remote_state(integration_store, task_store, remote_state, expected):
  integ = await add_integration(integration_store)
  task = await _linked_task(task_store, "1", status="OnHold")
  client = FakeProviderClient("AzureDevOps")
  client.remote["1"] = item(1, "Item 1", state=remote_state)

  result = await SyncReconciler(client=client, tasks=task_store).update_existing_from_remote(integ)

  assert result.is_success, result.message
  stored = await task_store.get_by_id(task.id)
  assert stored.status == expected
  assert result.updated_count == 1


@pytest.mark.anyio
async def test_unchanged_and_missing_items(integration_store, task_store):
  integ = await add_integration(integration_store)
  await _linked_task(task_store, "1", status="InProgress")
  await _linked_task(task_store, "2", status="Pending")
  await _linked_task(task_store, "3", status="Pending")
  client = FakeProviderClient("AzureDevOps")
  client.remote["1"] = item(1, "Item 1", state="Active")
  client.remote["2"] = item(2, "Item 2", state="Closed")
  client.fetch_by_id_errors["3"] = RuntimeError("network down")

  result = await SyncReconciler(client=client, tasks=task_store).update_existing_from_remote(integ)

  assert result.is_success
  assert result.updated_count == 1
  assert result.skipped_count == 1
  assert result.error_count == 0
  assert result.message == "Update completed: 1 updated, 1 unchanged, 0 errors."
  assert sorted(client.fetched_ids) == ["1", "2", "3"]


@pytest.mark.anyio
async def test_no_linked_tasks_is_trivial_success(integration_store, task_store):
  integ = await add_integration(integration_store)
  await task_store.add(Task(title="Groceries", tags="home"))

  result = await SyncReconciler(client=FakeProviderClient("AzureDevOps"), tasks=task_store).update_existing_from_remote(integ)

  assert result.is_success
  assert result.message == "No provider-synced tasks found to update."


@pytest.mark.anyio
async def test_requires_active_integration(integration_store, task_store):
  integ = await add_integration(integration_store, is_active=False)
  await _linked_task(task_store, "1")
  reconciler = SyncReconciler(client=FakeProviderClient("AzureDevOps"), tasks=task_store)

  inactive = await reconciler.update_existing_from_remote(integ)
  missing = await reconciler.update_existing_from_remote(None)

  assert inactive.is_success is False
  assert inactive.message == "No active integration found."
  assert missing.message == "No active integration found."


@pytest.mark.anyio
async def test_only_tasks_of_own_provider_are_considered(integration_store, task_store):
  integ = await add_integration(integration_store)
  await _linked_task(task_store, "5", provider="GitHub")
  legacy = await task_store.add(Task(title="[DevOps] Legacy", tags="DevOps:6,Azure"))
  client = FakeProviderClient("AzureDevOps")
  client.remote["6"] = item(6, "Legacy", state="Done")

  result = await SyncReconciler(client=client, tasks=task_store).update_existing_from_remote(integ)

  assert client.fetched_ids == ["6"]
  assert result.updated_count == 1
  assert (await task_store.get_by_id(legacy.id)).status == "Completed"


@pytest.mark.anyio
async def test_full_sync_combines_import_and_update(integration_store, task_store):
  integ = await add_integration(integration_store)
  existing = await _linked_task(task_store, "1", status="Pending")
  client = FakeProviderClient("AzureDevOps", [item(1, "Item 1", state="Active"), item(2, "Item 2", state="New")])

  result = await SyncReconciler(client=client, tasks=task_store).sync(integ)

  assert result.is_success
  assert result.created_count == 1
  assert result.updated_count == 1
  # Items from the bulk fetch are reused instead of being fetched one by one.
  assert client.fetched_ids == []
  assert (await task_store.get_by_id(existing.id)).status == "InProgress"
