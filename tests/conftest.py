from __future__ import annotations

import sys
from pathlib import Path

import pytest
from httpx import ASGITransport, AsyncClient

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
  sys.path.insert(0, str(ROOT))

from timekeeper.audit import AuditLog
from timekeeper.db import init_models, make_engine, make_session_factory
from timekeeper.deps import get_services
from timekeeper.main import app
from timekeeper.models import ProviderIntegration
from timekeeper.security import encrypt_secret, token_hint
from timekeeper.services import build_services
from timekeeper.stores import IntegrationStore, TaskStore
from tests.fakes import FakeProviderClient


@pytest.fixture(scope="session")
def anyio_backend() -> str:
  return "asyncio"


@pytest.fixture
async def session_factory(tmp_path):
  engine = make_engine(f"sqlite+aiosqlite:///{tmp_path / 'timekeeper_test.db'}")
  await init_models(engine)
  yield make_session_factory(engine)
  await engine.dispose()


@pytest.fixture
def integration_store(session_factory) -> IntegrationStore:
  return IntegrationStore(session_factory)


@pytest.fixture
def task_store(session_factory) -> TaskStore:
  return TaskStore(session_factory)


@pytest.fixture
def audit_log(session_factory) -> AuditLog:
  return AuditLog(session_factory)


@pytest.fixture
def fake_clients() -> dict[str, FakeProviderClient]:
  return {
    "GitHub": FakeProviderClient("GitHub"),
    "AzureDevOps": FakeProviderClient("AzureDevOps"),
  }


@pytest.fixture
def services(session_factory, fake_clients):
  return build_services(session_factory, clients=fake_clients)


@pytest.fixture
async def client(services) -> AsyncClient:
  app.dependency_overrides[get_services] = lambda: services
  transport = ASGITransport(app=app)
  async with AsyncClient(transport=transport, base_url="http://localhost") as c:
    yield c
  app.dependency_overrides.clear()


async def add_integration(
  store: IntegrationStore,
  *,
  provider: str = "AzureDevOps",
  organization_url: str = "https://dev.azure.com/acme",
  credential: str = "pat-secret-value",
  project_name: str | None = "Alpha",
  is_active: bool = True,
  last_sync_at=None,
) -> ProviderIntegration:
  return await store.add(
    ProviderIntegration(
      provider=provider,
      organization_url=organization_url,
      credential_encrypted=encrypt_secret(credential),
      token_hint=token_hint(credential),
      project_name=project_name,
      is_active=is_active,
      last_sync_at=last_sync_at,
    )
  )
