from __future__ import annotations

from datetime import datetime, timedelta
from typing import Any

from pydantic import BaseModel, Field, field_validator

from timekeeper.models import ProviderIntegration
from timekeeper.sync.results import MultiProviderSyncResult, SyncOptions, SyncResult


class IntegrationCreateIn(BaseModel):
  provider: str
  organizationUrl: str = ""
  credential: str = Field(min_length=1)
  projectName: str | None = None
  verify: bool = True
  deactivateOthers: bool = False

  @field_validator("provider")
  @classmethod
  def _strip_provider(cls, v: str) -> str:
    s = (v or "").strip()
    if not s:
      raise ValueError("provider is required")
    return s


class IntegrationOut(BaseModel):
  id: str
  provider: str
  organizationUrl: str
  projectName: str | None
  isActive: bool
  tokenHint: str
  createdAt: datetime
  updatedAt: datetime
  lastSyncAt: datetime | None

  @classmethod
  def from_model(cls, i: ProviderIntegration) -> IntegrationOut:
    return cls(
      id=i.id,
      provider=i.provider,
      organizationUrl=i.organization_url,
      projectName=i.project_name,
      isActive=bool(i.is_active),
      tokenHint=i.token_hint or "",
      createdAt=i.created_at,
      updatedAt=i.updated_at,
      lastSyncAt=i.last_sync_at,
    )


class ConnectionCheckOut(BaseModel):
  id: str
  provider: str
  organizationUrl: str
  ok: bool
  error: str | None = None


class ProjectListIn(BaseModel):
  provider: str
  organizationUrl: str = ""
  credential: str = Field(min_length=1)


class IntegrationStatusOut(BaseModel):
  providers: dict[str, int]
  integrations: list[IntegrationOut]
  lastRun: dict[str, Any] | None = None


class SyncOptionsIn(BaseModel):
  maxAgeMinutes: int | None = Field(default=None, ge=0)
  forceSync: bool = False
  concurrentSyncs: int | None = Field(default=None, ge=1, le=32)
  skipTestConnection: bool = False
  retryFailedConnections: bool = False
  syncTimeoutSeconds: float | None = Field(default=None, gt=0)
  providerPriorities: dict[str, int] | None = None

  def to_options(self, *, selection: bool = False) -> SyncOptions:
    kwargs: dict[str, Any] = {
      "force_sync": self.forceSync,
      "skip_test_connection": self.skipTestConnection,
      "retry_failed_connections": self.retryFailedConnections,
    }
    if self.maxAgeMinutes is not None:
      kwargs["max_age"] = timedelta(minutes=self.maxAgeMinutes)
    if self.concurrentSyncs is not None:
      kwargs["concurrent_syncs"] = self.concurrentSyncs
    if self.syncTimeoutSeconds is not None:
      kwargs["sync_timeout"] = timedelta(seconds=self.syncTimeoutSeconds)
    if self.providerPriorities:
      kwargs["provider_priorities"] = dict(self.providerPriorities)
    if selection:
      return SyncOptions.for_selection(**kwargs)
    return SyncOptions(**kwargs)


class SyncSelectionIn(SyncOptionsIn):
  ids: list[str] = Field(min_length=1)


class SyncResultOut(BaseModel):
  isSuccess: bool
  message: str
  createdCount: int
  updatedCount: int
  skippedCount: int
  errorCount: int
  createdItems: list[str]
  updatedItems: list[str]
  errors: list[str]

  @classmethod
  def from_result(cls, r: SyncResult) -> SyncResultOut:
    return cls(**r.to_dict())


class SyncedIntegrationOut(BaseModel):
  id: str
  provider: str


class FailedSyncOut(BaseModel):
  id: str
  provider: str
  error: str


class MultiProviderSyncOut(BaseModel):
  success: bool
  globalError: str | None
  startedAt: datetime
  finishedAt: datetime | None
  durationSeconds: float | None
  successfulSyncs: list[SyncedIntegrationOut]
  failedSyncs: list[FailedSyncOut]
  results: dict[str, SyncResultOut]

  @classmethod
  def from_result(cls, r: MultiProviderSyncResult) -> MultiProviderSyncOut:
    return cls.model_validate(r.to_dict())
