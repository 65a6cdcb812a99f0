from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, status

from timekeeper.deps import get_orchestrator, get_services
from timekeeper.models import ProviderIntegration
from timekeeper.schemas import MultiProviderSyncOut, SyncOptionsIn, SyncResultOut, SyncSelectionIn
from timekeeper.services import Services
from timekeeper.sync.orchestrator import IntegrationOrchestrator
from timekeeper.sync.reconciler import SyncReconciler

router = APIRouter(prefix="/sync", tags=["sync"])


@router.post("/smart", response_model=MultiProviderSyncOut)
async def smart_sync(
  payload: SyncOptionsIn | None = None,
  orchestrator: IntegrationOrchestrator = Depends(get_orchestrator),
) -> MultiProviderSyncOut:
  options = payload.to_options() if payload else None
  return MultiProviderSyncOut.from_result(await orchestrator.run_smart_sync(options))


@router.post("/emergency", response_model=MultiProviderSyncOut)
async def emergency_sync(orchestrator: IntegrationOrchestrator = Depends(get_orchestrator)) -> MultiProviderSyncOut:
  return MultiProviderSyncOut.from_result(await orchestrator.run_emergency_sync())


@router.post("/providers/{provider}", response_model=MultiProviderSyncOut)
async def provider_sync(
  provider: str,
  payload: SyncOptionsIn | None = None,
  orchestrator: IntegrationOrchestrator = Depends(get_orchestrator),
) -> MultiProviderSyncOut:
  options = payload.to_options() if payload else None
  return MultiProviderSyncOut.from_result(await orchestrator.sync_provider(provider, options))


@router.post("/integrations", response_model=MultiProviderSyncOut)
async def selected_sync(
  payload: SyncSelectionIn,
  orchestrator: IntegrationOrchestrator = Depends(get_orchestrator),
) -> MultiProviderSyncOut:
  result = await orchestrator.sync_specific_integrations(payload.ids, payload.to_options(selection=True))
  return MultiProviderSyncOut.from_result(result)


async def _reconciler_for(services: Services, integration_id: str) -> tuple[SyncReconciler, ProviderIntegration]:
  integration = await services.integration_service.get(integration_id)
  reconciler = services.reconcilers.get(integration.provider)
  if reconciler is None:
    raise HTTPException(
      status_code=status.HTTP_400_BAD_REQUEST,
      detail=f"No sync service registered for provider {integration.provider}",
    )
  return reconciler, integration


@router.post("/integrations/{integration_id}/new-items", response_model=SyncResultOut)
async def sync_new_items(integration_id: str, services: Services = Depends(get_services)) -> SyncResultOut:
  reconciler, integration = await _reconciler_for(services, integration_id)
  return SyncResultOut.from_result(await reconciler.sync_new_items(integration))


@router.post("/integrations/{integration_id}/update-existing", response_model=SyncResultOut)
async def update_existing(integration_id: str, services: Services = Depends(get_services)) -> SyncResultOut:
  reconciler, integration = await _reconciler_for(services, integration_id)
  return SyncResultOut.from_result(await reconciler.update_existing_from_remote(integration))
