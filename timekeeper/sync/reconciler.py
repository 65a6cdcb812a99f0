from __future__ import annotations

import asyncio
import logging
import re
from dataclasses import dataclass
from typing import Protocol

from timekeeper.models import ProviderIntegration, Task, utcnow
from timekeeper.providers.base import ProviderClient, RemoteWorkItem
from timekeeper.security import decrypt_integration_secret
from timekeeper.stores import DuplicateExternalTaskError, TaskStore
from timekeeper.sync.mapping import estimate_minutes, infer_priority, map_remote_state
from timekeeper.sync.markers import external_ref, format_marker, has_marker, imported_ids, join_tags, marker_tag_for
from timekeeper.sync.results import SyncResult

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class ProviderProfile:
  """How tasks imported from one provider are titled, described and tagged."""

  provider: str
  marker_tag: str
  label: str
  id_phrase: str
  category: str

  def reference(self, remote_id: str) -> str:
    return f"{self.id_phrase} #{remote_id}"

  def mentions(self, text: str | None, remote_id: str) -> bool:
    if not text:
      return False
    return re.search(re.escape(self.reference(remote_id)) + r"(?!\d)", text) is not None

  def build_task(self, item: RemoteWorkItem, *, remote_id: str, title: str) -> Task:
    lines = [self.reference(remote_id)]
    if item.state:
      lines.append(f"State: {item.state}")
    if item.url:
      lines.append(item.url)
    if item.description and item.description.strip():
      lines.extend(["", item.description.strip()])
    return Task(
      title=f"[{self.marker_tag}] {title}",
      description="\n".join(lines),
      status=map_remote_state(item.state).value,
      priority=infer_priority(item.type).value,
      category=self.category,
      tags=join_tags(format_marker(self.marker_tag, remote_id), self.label, item.type),
      estimated_time_minutes=estimate_minutes(item.type),
      actual_time_minutes=0,
      external_provider=self.provider,
      external_id=remote_id,
      external_url=item.url,
      external_project=item.project,
    )


PROFILES: dict[str, ProviderProfile] = {
  "AzureDevOps": ProviderProfile(
    provider="AzureDevOps",
    marker_tag="DevOps",
    label="Azure",
    id_phrase="Azure DevOps Work Item",
    category="DevOps Integration",
  ),
  "GitHub": ProviderProfile(
    provider="GitHub",
    marker_tag="GitHub",
    label="GitHub",
    id_phrase="GitHub Issue",
    category="GitHub Integration",
  ),
}


def profile_for(provider: str) -> ProviderProfile:
  p = PROFILES.get(provider)
  if p is not None:
    return p
  tag = marker_tag_for(provider)
  return ProviderProfile(provider=provider, marker_tag=tag, label=provider, id_phrase=f"{provider} Item", category=f"{provider} Integration")


class SyncExecutor(Protocol):
  """The orchestrator's view of a provider: test a connection, run one integration's sync."""

  provider: str

  async def test_connection(self, integration: ProviderIntegration) -> bool: ...

  async def sync(self, integration: ProviderIntegration) -> SyncResult: ...


class SyncReconciler:
  """
  Pulls one provider's work items and reconciles them with local tasks.

  Public operations never raise; failures come back as an unsuccessful SyncResult.
  Imports for the provider run under one lock so two integrations syncing the same
  provider cannot both create a task for the same remote item.
  """

  def __init__(self, *, client: ProviderClient, tasks: TaskStore, profile: ProviderProfile | None = None) -> None:
    self.client = client
    self.tasks = tasks
    self.provider = client.provider
    self.profile = profile or profile_for(client.provider)
    self._import_lock = asyncio.Lock()

  async def test_connection(self, integration: ProviderIntegration) -> bool:
    credential = decrypt_integration_secret(integration.credential_encrypted)
    return await self.client.test_connection(integration.organization_url, credential)

  async def sync(self, integration: ProviderIntegration) -> SyncResult:
    fetched: dict[str, RemoteWorkItem] = {}
    created = await self._sync_new_items(integration, fetched)
    updated = await self._update_existing(integration, fetched)
    return created.combine(updated)

  async def sync_new_items(self, integration: ProviderIntegration) -> SyncResult:
    return await self._sync_new_items(integration, None)

  async def update_existing_from_remote(self, integration: ProviderIntegration | None) -> SyncResult:
    return await self._update_existing(integration, None)

  async def _sync_new_items(
    self, integration: ProviderIntegration, fetched: dict[str, RemoteWorkItem] | None
  ) -> SyncResult:
    try:
      credential = decrypt_integration_secret(integration.credential_encrypted)
      items = await self.client.fetch_work_items(integration.organization_url, credential, integration.project_name)
      if fetched is not None:
        fetched.update({i.id.strip(): i for i in items if i.id and i.id.strip()})
      if not items:
        return SyncResult(message="No work items found to sync.")

      result = SyncResult()
      async with self._import_lock:
        seen = imported_ids(await self.tasks.get_all(), self.provider)
        for item in items:
          try:
            await self._import_one(item, seen, result)
          except Exception as exc:
            log.warning("%s item %r failed to import: %s", self.provider, item.id, exc)
            result.add_error(f"Item {item.id or '?'}: {exc}")

      result.message = (
        f"Sync completed: {result.created_count} created, {result.skipped_count} skipped, {result.error_count} errors."
      )
      log.info("%s integration %s: %s", self.provider, integration.id, result.message)
      return result
    except Exception as exc:
      log.exception("%s sync of new items failed for integration %s", self.provider, integration.id)
      return SyncResult.failure(f"Sync failed: {exc}")

  async def _import_one(self, item: RemoteWorkItem, seen: set[str], result: SyncResult) -> None:
    remote_id = (item.id or "").strip()
    title = (item.title or "").strip()
    if not remote_id.isdigit():
      result.add_error(f"Skipping work item with unparseable id {item.id!r}.")
      return
    if not title:
      result.add_error(f"Skipping work item {remote_id}: missing title.")
      return
    if remote_id in seen or await self._exists_by_title(title, remote_id):
      seen.add(remote_id)
      result.skipped_count += 1
      return

    task = self.profile.build_task(item, remote_id=remote_id, title=title)
    try:
      await self.tasks.add(
        task,
        audit_event="task.imported",
        payload={"provider": self.provider, "externalId": remote_id, "title": task.title},
      )
    except DuplicateExternalTaskError:
      seen.add(remote_id)
      result.skipped_count += 1
      return
    seen.add(remote_id)
    result.created_count += 1
    result.created_items.append(f"#{remote_id} {title}")

  async def _exists_by_title(self, title: str, remote_id: str) -> bool:
    for t in await self.tasks.get_by_title_fuzzy(title):
      if self.profile.mentions(t.description, remote_id) or has_marker(t.tags, self.profile.marker_tag, remote_id):
        return True
    return False

  async def _update_existing(
    self, integration: ProviderIntegration | None, fetched: dict[str, RemoteWorkItem] | None
  ) -> SyncResult:
    try:
      linked = [t for t in await self.tasks.get_linked(self.provider, self.profile.marker_tag) if external_ref(t, self.provider)]
      if not linked:
        return SyncResult(message="No provider-synced tasks found to update.")
      if integration is None or not integration.is_active:
        return SyncResult.failure("No active integration found.")

      credential = decrypt_integration_secret(integration.credential_encrypted)
      result = SyncResult()
      for task in linked:
        try:
          await self._update_one(task, integration, credential, fetched, result)
        except Exception as exc:
          log.warning("%s task %s failed to update: %s", self.provider, task.id, exc)
          result.add_error(f"Task {task.title}: {exc}")

      result.message = (
        f"Update completed: {result.updated_count} updated, {result.skipped_count} unchanged, {result.error_count} errors."
      )
      return result
    except Exception as exc:
      log.exception("%s update of existing tasks failed", self.provider)
      return SyncResult.failure(f"Update failed: {exc}")

  async def _update_one(
    self,
    task: Task,
    integration: ProviderIntegration,
    credential: str,
    fetched: dict[str, RemoteWorkItem] | None,
    result: SyncResult,
  ) -> None:
    remote_id = external_ref(task, self.provider)
    if remote_id is None:
      return
    item = fetched.get(remote_id) if fetched else None
    if item is not None and item.project and task.external_project and item.project != task.external_project:
      item = None
    if item is None:
      try:
        item = await self.client.fetch_work_item_by_id(
          integration.organization_url,
          credential,
          remote_id,
          project=task.external_project or integration.project_name,
        )
      except Exception as exc:
        log.info("%s item %s could not be fetched, leaving task %s as is: %s", self.provider, remote_id, task.id, exc)
        return
    if item is None:
      return

    status = map_remote_state(item.state).value
    if status == task.status:
      result.skipped_count += 1
      return
    previous = task.status
    task.status = status
    task.updated_at = utcnow()
    await self.tasks.update(
      task,
      audit_event="task.status.synced",
      payload={"provider": self.provider, "externalId": remote_id, "from": previous, "to": status, "remoteState": item.state},
    )
    result.updated_count += 1
    result.updated_items.append(f"{task.title}: {previous} -> {status}")
