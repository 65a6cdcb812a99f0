from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Mapping

from timekeeper.config import settings
from timekeeper.models import ProviderIntegration, utcnow

DEFAULT_PROVIDER_PRIORITIES: dict[str, int] = {"GitHub": 1, "AzureDevOps": 2}
UNKNOWN_PROVIDER_PRIORITY = 99


@dataclass
class SyncResult:
  is_success: bool = True
  message: str = ""
  created_count: int = 0
  updated_count: int = 0
  skipped_count: int = 0
  error_count: int = 0
  created_items: list[str] = field(default_factory=list)
  updated_items: list[str] = field(default_factory=list)
  errors: list[str] = field(default_factory=list)

  @classmethod
  def failure(cls, message: str) -> SyncResult:
    return cls(is_success=False, message=message, errors=[message])

  def add_error(self, message: str) -> None:
    self.error_count += 1
    self.errors.append(message)

  def combine(self, other: SyncResult) -> SyncResult:
    return SyncResult(
      is_success=self.is_success and other.is_success,
      message=" ".join(m for m in (self.message, other.message) if m),
      created_count=self.created_count + other.created_count,
      updated_count=self.updated_count + other.updated_count,
      skipped_count=self.skipped_count + other.skipped_count,
      error_count=self.error_count + other.error_count,
      created_items=[*self.created_items, *other.created_items],
      updated_items=[*self.updated_items, *other.updated_items],
      errors=[*self.errors, *other.errors],
    )

  def to_dict(self) -> dict[str, Any]:
    return {
      "isSuccess": self.is_success,
      "message": self.message,
      "createdCount": self.created_count,
      "updatedCount": self.updated_count,
      "skippedCount": self.skipped_count,
      "errorCount": self.error_count,
      "createdItems": list(self.created_items),
      "updatedItems": list(self.updated_items),
      "errors": list(self.errors),
    }


@dataclass
class FailedSync:
  integration: ProviderIntegration
  error: str


@dataclass
class MultiProviderSyncResult:
  """
  Outcome of one orchestration run across providers.

  `success` follows the run rule: at least one integration succeeded, or nothing failed.
  A run that aborted (unknown provider, unexpected exception) is never successful.
  Results from independently executed provider groups are folded in with `merge`.
  """

  success: bool = True
  successful_syncs: list[ProviderIntegration] = field(default_factory=list)
  failed_syncs: list[FailedSync] = field(default_factory=list)
  global_error: str | None = None
  started_at: datetime = field(default_factory=utcnow)
  finished_at: datetime | None = None
  results: dict[str, SyncResult] = field(default_factory=dict)

  @classmethod
  def failure(cls, message: str, *, started_at: datetime | None = None) -> MultiProviderSyncResult:
    out = cls(success=False, global_error=message)
    if started_at is not None:
      out.started_at = started_at
    return out

  def merge(self, other: MultiProviderSyncResult) -> None:
    self.successful_syncs.extend(other.successful_syncs)
    self.failed_syncs.extend(other.failed_syncs)
    self.results.update(other.results)
    if not self.global_error and other.global_error:
      self.global_error = other.global_error

  def complete(self, finished_at: datetime | None = None, *, aborted: bool = False) -> MultiProviderSyncResult:
    self.success = not aborted and (len(self.successful_syncs) > 0 or len(self.failed_syncs) == 0)
    self.finished_at = finished_at or utcnow()
    return self

  @property
  def duration(self) -> timedelta | None:
    if self.finished_at is None:
      return None
    return self.finished_at - self.started_at

  @property
  def successful_ids(self) -> list[str]:
    return [i.id for i in self.successful_syncs]

  def to_dict(self) -> dict[str, Any]:
    return {
      "success": self.success,
      "globalError": self.global_error,
      "startedAt": self.started_at,
      "finishedAt": self.finished_at,
      "durationSeconds": self.duration.total_seconds() if self.duration is not None else None,
      "successfulSyncs": [{"id": i.id, "provider": i.provider} for i in self.successful_syncs],
      "failedSyncs": [{"id": f.integration.id, "provider": f.integration.provider, "error": f.error} for f in self.failed_syncs],
      "results": {k: v.to_dict() for k, v in self.results.items()},
    }


@dataclass(frozen=True)
class SyncOptions:
  max_age: timedelta = field(default_factory=lambda: timedelta(minutes=settings.sync_max_age_minutes))
  force_sync: bool = False
  concurrent_syncs: int = field(default_factory=lambda: settings.sync_concurrency)
  skip_test_connection: bool = False
  retry_failed_connections: bool = False
  sync_timeout: timedelta | None = field(default_factory=lambda: timedelta(seconds=settings.sync_timeout_seconds))
  provider_priorities: Mapping[str, int] = field(default_factory=lambda: dict(DEFAULT_PROVIDER_PRIORITIES))

  def __post_init__(self) -> None:
    if self.concurrent_syncs < 1:
      raise ValueError("concurrent_syncs must be at least 1")

  @classmethod
  def emergency(cls) -> SyncOptions:
    return cls(
      max_age=timedelta(minutes=5),
      concurrent_syncs=1,
      skip_test_connection=False,
      retry_failed_connections=True,
    )

  @classmethod
  def for_selection(cls, **overrides: Any) -> SyncOptions:
    overrides.setdefault("concurrent_syncs", settings.sync_selection_concurrency)
    return cls(**overrides)

  def priority_of(self, provider: str) -> int:
    if provider in self.provider_priorities:
      return self.provider_priorities[provider]
    return DEFAULT_PROVIDER_PRIORITIES.get(provider, UNKNOWN_PROVIDER_PRIORITY)
