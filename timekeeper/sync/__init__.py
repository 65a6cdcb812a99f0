from __future__ import annotations

from timekeeper.sync.orchestrator import IntegrationOrchestrator
from timekeeper.sync.reconciler import PROFILES, ProviderProfile, SyncExecutor, SyncReconciler
from timekeeper.sync.results import FailedSync, MultiProviderSyncResult, SyncOptions, SyncResult

__all__ = [
  "PROFILES",
  "FailedSync",
  "IntegrationOrchestrator",
  "MultiProviderSyncResult",
  "ProviderProfile",
  "SyncExecutor",
  "SyncOptions",
  "SyncReconciler",
  "SyncResult",
]
