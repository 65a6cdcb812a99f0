from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Iterable, Mapping
from datetime import datetime

from timekeeper.audit import AuditLog
from timekeeper.models import ProviderIntegration, utcnow
from timekeeper.stores import IntegrationStore
from timekeeper.sync.reconciler import SyncExecutor
from timekeeper.sync.results import FailedSync, MultiProviderSyncResult, SyncOptions, SyncResult

log = logging.getLogger(__name__)


class IntegrationOrchestrator:
  """
  Runs integration syncs across providers.

  Provider groups run one after another in priority order. Inside a group the
  integrations run concurrently, at most `options.concurrent_syncs` at a time, and
  one integration failing never stops its siblings. Only integrations that synced
  successfully get their last-sync timestamp bumped.
  """

  def __init__(
    self,
    *,
    integrations: IntegrationStore,
    executors: Mapping[str, SyncExecutor] | Iterable[SyncExecutor],
    audit: AuditLog | None = None,
    clock: Callable[[], datetime] = utcnow,
  ) -> None:
    self.integrations = integrations
    if isinstance(executors, Mapping):
      self._executors: dict[str, SyncExecutor] = dict(executors)
    else:
      self._executors = {e.provider: e for e in executors}
    self.audit = audit
    self._clock = clock

  def available_providers(self) -> list[str]:
    defaults = SyncOptions()
    return sorted(self._executors, key=lambda p: (defaults.priority_of(p), p))

  def executor_for(self, provider: str) -> SyncExecutor | None:
    return self._executors.get(provider)

  async def select_due(self, options: SyncOptions) -> list[ProviderIntegration]:
    if options.force_sync:
      return await self.integrations.get_all_active()
    return await self.integrations.get_due_for_sync(options.max_age, now=self._clock())

  async def run_smart_sync(self, options: SyncOptions | None = None) -> MultiProviderSyncResult:
    options = options or SyncOptions()
    result = MultiProviderSyncResult(started_at=self._clock())
    try:
      due = await self.select_due(options)
      if due:
        log.info("Smart sync: %d integration(s) due", len(due))
        await self._run_groups(due, options, result)
        await self._bump_timestamps(result)
      else:
        log.info("Smart sync: nothing due")
    except Exception as exc:
      log.exception("Smart sync aborted")
      result.global_error = result.global_error or f"Sync failed: {exc}"
      return await self._finish("smart", result, aborted=True)
    return await self._finish("smart", result)

  async def run_emergency_sync(self) -> MultiProviderSyncResult:
    return await self.run_smart_sync(SyncOptions.emergency())

  async def sync_provider(self, provider: str, options: SyncOptions | None = None) -> MultiProviderSyncResult:
    options = options or SyncOptions()
    result = MultiProviderSyncResult(started_at=self._clock())
    if provider not in self._executors:
      result.global_error = f"Provider {provider} not found"
      return await self._finish("provider", result, aborted=True)
    try:
      active = await self.integrations.get_active_by_provider(provider)
      if active:
        result.merge(await self.sync_group(provider, active, options))
        await self._bump_timestamps(result)
    except Exception as exc:
      log.exception("Sync of provider %s aborted", provider)
      result.global_error = result.global_error or f"Sync failed: {exc}"
      return await self._finish("provider", result, aborted=True)
    return await self._finish("provider", result)

  async def sync_specific_integrations(
    self, ids: Iterable[str], options: SyncOptions | None = None
  ) -> MultiProviderSyncResult:
    options = options or SyncOptions.for_selection()
    result = MultiProviderSyncResult(started_at=self._clock())
    try:
      selected: list[ProviderIntegration] = []
      for integration_id in dict.fromkeys(ids):
        integration = await self.integrations.get_by_id(integration_id)
        if integration is not None and integration.is_active:
          selected.append(integration)
      if selected:
        await self._run_groups(selected, options, result)
      await self._bump_timestamps(result)
    except Exception as exc:
      log.exception("Selected-integration sync aborted")
      result.global_error = result.global_error or f"Sync failed: {exc}"
      return await self._finish("selection", result, aborted=True)
    return await self._finish("selection", result)

  async def sync_group(
    self, provider: str, integrations: list[ProviderIntegration], options: SyncOptions
  ) -> MultiProviderSyncResult:
    group = MultiProviderSyncResult(started_at=self._clock())
    executor = self._executors.get(provider)
    if executor is None:
      group.global_error = f"No sync service registered for provider {provider}"
      return group.complete(self._clock(), aborted=True)

    semaphore = asyncio.Semaphore(options.concurrent_syncs)

    async def bounded(integration: ProviderIntegration) -> SyncResult:
      async with semaphore:
        return await self._sync_one(executor, integration, options)

    outcomes = await asyncio.gather(*(bounded(i) for i in integrations))
    for integration, outcome in zip(integrations, outcomes):
      group.results[integration.id] = outcome
      if outcome.is_success:
        group.successful_syncs.append(integration)
      else:
        group.failed_syncs.append(FailedSync(integration=integration, error=_error_text(outcome)))
    log.info(
      "%s: %d succeeded, %d failed", provider, len(group.successful_syncs), len(group.failed_syncs)
    )
    return group.complete(self._clock())

  async def _sync_one(self, executor: SyncExecutor, integration: ProviderIntegration, options: SyncOptions) -> SyncResult:
    async def attempt() -> SyncResult:
      if not options.skip_test_connection and not await executor.test_connection(integration):
        return SyncResult.failure("Connection failed")
      return await executor.sync(integration)

    timeout = options.sync_timeout.total_seconds() if options.sync_timeout else None
    try:
      async with asyncio.timeout(timeout) as scope:
        return await attempt()
    except TimeoutError as exc:
      if not scope.expired():
        return _crashed(integration, exc)
      log.warning("%s integration %s timed out after %ss", integration.provider, integration.id, timeout)
      return SyncResult.failure(f"Sync timed out after {timeout:g}s")
    except Exception as exc:
      return _crashed(integration, exc)

  async def _run_groups(
    self, integrations: list[ProviderIntegration], options: SyncOptions, result: MultiProviderSyncResult
  ) -> None:
    groups: dict[str, list[ProviderIntegration]] = {}
    for integration in integrations:
      groups.setdefault(integration.provider, []).append(integration)
    for provider in sorted(groups, key=lambda p: (options.priority_of(p), p)):
      result.merge(await self.sync_group(provider, groups[provider], options))

  async def _bump_timestamps(self, result: MultiProviderSyncResult) -> None:
    ids = result.successful_ids
    if ids:
      await self.integrations.update_last_sync_bulk(ids, self._clock())

  async def _finish(self, kind: str, result: MultiProviderSyncResult, *, aborted: bool = False) -> MultiProviderSyncResult:
    result.complete(self._clock(), aborted=aborted)
    if self.audit is not None:
      try:
        await self.audit.record(
          event_type="sync.run.completed",
          entity_type="SyncRun",
          entity_id=None,
          payload={
            "kind": kind,
            "success": result.success,
            "succeeded": result.successful_ids,
            "failed": [{"id": f.integration.id, "error": f.error} for f in result.failed_syncs],
            "globalError": result.global_error,
          },
        )
      except Exception:
        log.exception("Could not record sync run audit event")
    return result


def _crashed(integration: ProviderIntegration, exc: Exception) -> SyncResult:
  log.exception("%s integration %s failed", integration.provider, integration.id)
  return SyncResult.failure(str(exc) or exc.__class__.__name__)


def _error_text(outcome: SyncResult) -> str:
  if outcome.message:
    return outcome.message
  if outcome.errors:
    return outcome.errors[0]
  return "Sync failed"
