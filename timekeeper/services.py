from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from timekeeper.audit import AuditLog
from timekeeper.integrations import IntegrationService
from timekeeper.providers import ProviderClient, default_clients
from timekeeper.stores import IntegrationStore, TaskStore
from timekeeper.sync.orchestrator import IntegrationOrchestrator
from timekeeper.sync.reconciler import SyncReconciler


@dataclass
class Services:
  integrations: IntegrationStore
  tasks: TaskStore
  audit: AuditLog
  reconcilers: dict[str, SyncReconciler]
  orchestrator: IntegrationOrchestrator
  integration_service: IntegrationService


def build_services(
  session_factory: async_sessionmaker[AsyncSession],
  *,
  clients: Mapping[str, ProviderClient] | None = None,
) -> Services:
  """Wire stores, reconcilers and the orchestrator. One reconciler per provider."""
  clients = dict(clients) if clients is not None else default_clients()
  integrations = IntegrationStore(session_factory)
  tasks = TaskStore(session_factory)
  audit = AuditLog(session_factory)
  reconcilers = {name: SyncReconciler(client=client, tasks=tasks) for name, client in clients.items()}
  return Services(
    integrations=integrations,
    tasks=tasks,
    audit=audit,
    reconcilers=reconcilers,
    orchestrator=IntegrationOrchestrator(integrations=integrations, executors=reconcilers, audit=audit),
    integration_service=IntegrationService(store=integrations, clients=clients, audit=audit),
  )
