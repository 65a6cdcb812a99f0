from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass

from timekeeper.audit import AuditLog
from timekeeper.models import ProviderIntegration
from timekeeper.providers.base import ProviderClient
from timekeeper.security import decrypt_integration_secret, encrypt_secret, token_hint
from timekeeper.stores import IntegrationStore

log = logging.getLogger(__name__)


class IntegrationNotFoundError(LookupError):
  def __init__(self, integration_id: str) -> None:
    super().__init__(f"Integration {integration_id} not found")
    self.integration_id = integration_id


class UnknownProviderError(ValueError):
  def __init__(self, provider: str) -> None:
    super().__init__(f"Unknown provider: {provider}")
    self.provider = provider


class ConnectionTestFailedError(RuntimeError):
  pass


@dataclass
class ConnectionCheck:
  integration: ProviderIntegration
  ok: bool
  error: str | None = None


class IntegrationService:
  """Configure and inspect provider integrations. Running syncs is the orchestrator's job."""

  def __init__(
    self,
    *,
    store: IntegrationStore,
    clients: Mapping[str, ProviderClient],
    audit: AuditLog | None = None,
  ) -> None:
    self.store = store
    self.clients = dict(clients)
    self.audit = audit

  def available_providers(self) -> list[str]:
    return sorted(self.clients)

  def _client(self, provider: str) -> ProviderClient:
    client = self.clients.get(provider)
    if client is None:
      raise UnknownProviderError(provider)
    return client

  async def _record(self, event_type: str, integration_id: str, payload: dict | None = None) -> None:
    if self.audit is not None:
      await self.audit.record(
        event_type=event_type,
        entity_type="ProviderIntegration",
        entity_id=integration_id,
        payload=payload,
      )

  async def provider_statistics(self) -> dict[str, int]:
    counts = await self.store.get_active_count_by_all_providers()
    out = {p: 0 for p in self.available_providers()}
    out.update(counts)
    return out

  async def configure(
    self,
    provider: str,
    organization_url: str,
    credential: str,
    project_name: str | None = None,
    *,
    verify: bool = True,
    deactivate_others: bool = False,
  ) -> ProviderIntegration:
    client = self._client(provider)
    org = (organization_url or "").strip().rstrip("/")
    secret = (credential or "").strip()
    if not secret:
      raise ValueError("credential is required")
    if provider != "GitHub" and not org:
      raise ValueError("organizationUrl is required")

    if verify and not await client.test_connection(org, secret):
      raise ConnectionTestFailedError(f"Could not connect to {provider} at {org or 'api'}; check the URL and token.")

    if deactivate_others:
      n = await self.store.deactivate_by_provider(provider)
      if n:
        log.info("Deactivated %d existing %s integration(s)", n, provider)

    integration = ProviderIntegration(
      provider=provider,
      organization_url=org,
      credential_encrypted=encrypt_secret(secret),
      token_hint=token_hint(secret),
      project_name=(project_name or "").strip() or None,
      is_active=True,
    )
    integration = await self.store.add(integration)
    log.info("Configured %s integration %s (%s)", provider, integration.id, integration.token_hint)
    return integration

  async def list_integrations(self, *, active_only: bool = False) -> list[ProviderIntegration]:
    if active_only:
      return await self.store.get_all_active()
    return await self.store.get_all()

  async def get(self, integration_id: str, provider: str | None = None) -> ProviderIntegration:
    integration = await self.store.get_by_id(integration_id)
    if integration is None or (provider is not None and integration.provider != provider):
      raise IntegrationNotFoundError(integration_id)
    return integration

  async def activate(self, integration_id: str) -> ProviderIntegration:
    if not await self.store.activate(integration_id):
      raise IntegrationNotFoundError(integration_id)
    await self._record("integration.activated", integration_id)
    return await self.get(integration_id)

  async def deactivate(self, integration_id: str) -> ProviderIntegration:
    if not await self.store.deactivate(integration_id):
      raise IntegrationNotFoundError(integration_id)
    await self._record("integration.deactivated", integration_id)
    return await self.get(integration_id)

  async def remove(self, integration_id: str) -> None:
    integration = await self.get(integration_id)
    if integration.is_active:
      await self.store.deactivate(integration_id)
    if not await self.store.delete(integration_id):
      raise IntegrationNotFoundError(integration_id)
    log.info("Removed %s integration %s", integration.provider, integration_id)

  async def _check(self, integration: ProviderIntegration) -> ConnectionCheck:
    try:
      client = self._client(integration.provider)
      credential = decrypt_integration_secret(integration.credential_encrypted)
      ok = await client.test_connection(integration.organization_url, credential)
      check = ConnectionCheck(integration=integration, ok=ok, error=None if ok else "Connection failed")
    except Exception as exc:
      check = ConnectionCheck(integration=integration, ok=False, error=str(exc))
    await self._record(
      "integration.connection.test.ok" if check.ok else "integration.connection.test.error",
      integration.id,
      {"provider": integration.provider, "error": check.error} if check.error else {"provider": integration.provider},
    )
    return check

  async def test_connection(self, integration_id: str) -> ConnectionCheck:
    return await self._check(await self.get(integration_id))

  async def test_all_connections(self) -> list[ConnectionCheck]:
    checks: list[ConnectionCheck] = []
    for integration in await self.store.get_all_active():
      checks.append(await self._check(integration))
    return checks

  async def list_projects(self, provider: str, organization_url: str, credential: str) -> list[str]:
    return await self._client(provider).list_projects((organization_url or "").strip().rstrip("/"), credential.strip())
