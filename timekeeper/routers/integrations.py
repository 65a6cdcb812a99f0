from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, status

from timekeeper.deps import get_integration_service, get_services
from timekeeper.integrations import ConnectionCheck, ConnectionTestFailedError, IntegrationService
from timekeeper.schemas import (
  ConnectionCheckOut,
  IntegrationCreateIn,
  IntegrationOut,
  IntegrationStatusOut,
  ProjectListIn,
)
from timekeeper.services import Services

router = APIRouter(prefix="/integrations", tags=["integrations"])


def _check_out(c: ConnectionCheck) -> ConnectionCheckOut:
  return ConnectionCheckOut(
    id=c.integration.id,
    provider=c.integration.provider,
    organizationUrl=c.integration.organization_url,
    ok=c.ok,
    error=c.error,
  )


@router.get("", response_model=list[IntegrationOut])
async def list_integrations(
  activeOnly: bool = False,
  svc: IntegrationService = Depends(get_integration_service),
) -> list[IntegrationOut]:
  return [IntegrationOut.from_model(i) for i in await svc.list_integrations(active_only=activeOnly)]


@router.get("/providers")
async def list_providers(svc: IntegrationService = Depends(get_integration_service)) -> dict:
  return {"providers": svc.available_providers(), "activeCounts": await svc.provider_statistics()}


@router.post("", response_model=IntegrationOut, status_code=status.HTTP_201_CREATED)
async def create_integration(
  payload: IntegrationCreateIn,
  svc: IntegrationService = Depends(get_integration_service),
) -> IntegrationOut:
  try:
    integration = await svc.configure(
      payload.provider,
      payload.organizationUrl,
      payload.credential,
      payload.projectName,
      verify=payload.verify,
      deactivate_others=payload.deactivateOthers,
    )
  except (ConnectionTestFailedError, ValueError) as e:
    raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e)) from e
  return IntegrationOut.from_model(integration)


@router.post("/projects")
async def list_projects(
  payload: ProjectListIn,
  svc: IntegrationService = Depends(get_integration_service),
) -> dict:
  try:
    projects = await svc.list_projects(payload.provider, payload.organizationUrl, payload.credential)
  except ValueError as e:
    raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e)) from e
  return {"projects": projects}


@router.get("/status", response_model=IntegrationStatusOut)
async def integrations_status(services: Services = Depends(get_services)) -> IntegrationStatusOut:
  svc = services.integration_service
  last = await services.audit.latest(event_types=("sync.run.completed",))
  return IntegrationStatusOut(
    providers=await svc.provider_statistics(),
    integrations=[IntegrationOut.from_model(i) for i in await svc.list_integrations()],
    lastRun=({"at": last.created_at, **(last.payload or {})} if last else None),
  )


@router.post("/test-all", response_model=list[ConnectionCheckOut])
async def test_all_connections(svc: IntegrationService = Depends(get_integration_service)) -> list[ConnectionCheckOut]:
  return [_check_out(c) for c in await svc.test_all_connections()]


@router.get("/{integration_id}", response_model=IntegrationOut)
async def get_integration(
  integration_id: str,
  svc: IntegrationService = Depends(get_integration_service),
) -> IntegrationOut:
  return IntegrationOut.from_model(await svc.get(integration_id))


@router.post("/{integration_id}/test", response_model=ConnectionCheckOut)
async def test_connection(
  integration_id: str,
  svc: IntegrationService = Depends(get_integration_service),
) -> ConnectionCheckOut:
  return _check_out(await svc.test_connection(integration_id))


@router.post("/{integration_id}/activate", response_model=IntegrationOut)
async def activate_integration(
  integration_id: str,
  svc: IntegrationService = Depends(get_integration_service),
) -> IntegrationOut:
  return IntegrationOut.from_model(await svc.activate(integration_id))


@router.post("/{integration_id}/deactivate", response_model=IntegrationOut)
async def deactivate_integration(
  integration_id: str,
  svc: IntegrationService = Depends(get_integration_service),
) -> IntegrationOut:
  return IntegrationOut.from_model(await svc.deactivate(integration_id))


@router.delete("/{integration_id}")
async def delete_integration(
  integration_id: str,
  svc: IntegrationService = Depends(get_integration_service),
) -> dict:
  await svc.remove(integration_id)
  return {"ok": True}
