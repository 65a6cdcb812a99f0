from __future__ import annotations

import pytest
from sqlalchemy import select

from timekeeper.models import AuditEvent, ProviderIntegration


@pytest.mark.anyio
async def test_integration_crud_and_connection_test(client, fake_clients, session_factory):
  created = await client.post(
    "/integrations",
    json={
      "provider": "AzureDevOps",
      "organizationUrl": "https://dev.azure.com/acme/",
      "credential": "pat-top-secret-token",
      "projectName": "Alpha",
    },
  )
  assert created.status_code == 201, created.text
  integ = created.json()
  assert integ["organizationUrl"] == "https://dev.azure.com/acme"
  assert integ["tokenHint"] == "…-token"
  assert integ["isActive"] is True
  assert "credential" not in integ

  async with session_factory() as db:
    row = (await db.execute(select(ProviderIntegration))).scalar_one()
    assert "pat-top-secret-token" not in row.credential_encrypted

  listed = await client.get("/integrations")
  assert [i["id"] for i in listed.json()] == [integ["id"]]

  tested = await client.post(f"/integrations/{integ['id']}/test")
  assert tested.status_code == 200, tested.text
  assert tested.json()["ok"] is True

  fake_clients["AzureDevOps"].connection_ok = False
  failed = await client.post("/integrations/test-all")
  assert failed.status_code == 200
  assert failed.json()[0]["ok"] is False
  assert failed.json()[0]["error"] == "Connection failed"

  off = await client.post(f"/integrations/{integ['id']}/deactivate")
  assert off.json()["isActive"] is False
  active = await client.get("/integrations", params={"activeOnly": "true"})
  assert active.json() == []
  on = await client.post(f"/integrations/{integ['id']}/activate")
  assert on.json()["isActive"] is True

  deleted = await client.delete(f"/integrations/{integ['id']}")
  assert deleted.status_code == 200
  assert deleted.json() == {"ok": True}
  missing = await client.get(f"/integrations/{integ['id']}")
  assert missing.status_code == 404

  async with session_factory() as db:
    events = (await db.execute(select(AuditEvent.event_type))).scalars().all()
  for expected in (
    "integration.created",
    "integration.connection.test.ok",
    "integration.connection.test.error",
    "integration.deactivated",
    "integration.activated",
    "integration.deleted",
  ):
    assert expected in events


@pytest.mark.anyio
async def test_create_rejects_failed_connection_and_unknown_provider(client, fake_clients):
  fake_clients["GitHub"].connection_ok = False
  bad_conn = await client.post("/integrations", json={"provider": "GitHub", "organizationUrl": "acme", "credential": "ghp_x"})
  assert bad_conn.status_code == 400
  assert "Could not connect to GitHub" in bad_conn.json()["detail"]

  unknown = await client.post("/integrations", json={"provider": "Trello", "organizationUrl": "x", "credential": "y"})
  assert unknown.status_code == 400
  assert unknown.json()["detail"] == "Unknown provider: Trello"

  skipped = await client.post(
    "/integrations", json={"provider": "GitHub", "organizationUrl": "acme", "credential": "ghp_x", "verify": False}
  )
  assert skipped.status_code == 201


@pytest.mark.anyio
async def test_deactivate_others_and_provider_stats(client):
  for org in ("a", "b"):
    res = await client.post(
      "/integrations",
      json={"provider": "AzureDevOps", "organizationUrl": org, "credential": "pat", "deactivateOthers": True},
    )
    assert res.status_code == 201, res.text

  providers = await client.get("/integrations/providers")
  assert providers.json() == {"providers": ["AzureDevOps", "GitHub"], "activeCounts": {"AzureDevOps": 1, "GitHub": 0}}

  status = await client.get("/integrations/status")
  assert status.status_code == 200
  body = status.json()
  assert body["providers"]["AzureDevOps"] == 1
  assert len(body["integrations"]) == 2
  assert body["lastRun"] is None


@pytest.mark.anyio
async def test_list_projects(client):
  res = await client.post("/integrations/projects", json={"provider": "AzureDevOps", "organizationUrl": "acme", "credential": "pat"})
  assert res.status_code == 200
  assert res.json() == {"projects": ["Alpha", "Beta"]}


@pytest.mark.anyio
async def test_health_and_version(client):
  assert (await client.get("/health")).json() == {"ok": True}
  assert "version" in (await client.get("/version")).json()
