from __future__ import annotations

import asyncio
import logging

from fastapi import FastAPI
from fastapi.responses import JSONResponse

from timekeeper.config import settings
from timekeeper.db import init_models
from timekeeper.deps import get_services
from timekeeper.integrations import IntegrationNotFoundError, UnknownProviderError
from timekeeper.logging_config import configure_logging
from timekeeper.providers.base import ProviderApiError
from timekeeper.routers.integrations import router as integrations_router
from timekeeper.routers.sync import router as sync_router
from timekeeper.security import IntegrationSecretDecryptError

log = logging.getLogger(__name__)

app = FastAPI(title="Timekeeper Sync API", version="0.1.0")


@app.exception_handler(ProviderApiError)
async def _provider_api_error_handler(_, exc: ProviderApiError) -> JSONResponse:
  return JSONResponse(
    status_code=400,
    content={"detail": {"message": exc.message, "statusCode": exc.status_code, "provider": exc.details}},
  )


@app.exception_handler(IntegrationSecretDecryptError)
async def _integration_secret_error_handler(_, exc: IntegrationSecretDecryptError) -> JSONResponse:
  return JSONResponse(status_code=400, content={"detail": str(exc)})


@app.exception_handler(UnknownProviderError)
async def _unknown_provider_handler(_, exc: UnknownProviderError) -> JSONResponse:
  return JSONResponse(status_code=400, content={"detail": str(exc)})


@app.exception_handler(IntegrationNotFoundError)
async def _integration_not_found_handler(_, exc: IntegrationNotFoundError) -> JSONResponse:
  return JSONResponse(status_code=404, content={"detail": "Integration not found"})


app.include_router(integrations_router)
app.include_router(sync_router)


@app.get("/health")
async def health() -> dict:
  return {"ok": True}


@app.get("/version")
async def version() -> dict:
  return {"version": settings.app_version, "buildSha": settings.build_sha}


_auto_sync_task: asyncio.Task | None = None


async def _auto_sync_loop() -> None:
  while True:
    await asyncio.sleep(max(10, int(settings.auto_sync_interval_seconds)))
    try:
      result = await get_services().orchestrator.run_smart_sync()
      log.info(
        "Auto sync: success=%s ok=%d failed=%d",
        result.success,
        len(result.successful_syncs),
        len(result.failed_syncs),
      )
    except Exception:
      # Keep the loop alive; the next tick retries.
      log.exception("Auto sync tick failed")


@app.on_event("startup")
async def _startup() -> None:
  global _auto_sync_task
  configure_logging()
  if settings.auto_create_schema:
    await init_models()
  if settings.fernet_key.strip() == "AAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAA=":
    log.warning("FERNET_KEY is the placeholder value; stored credentials are not protected")
  if settings.auto_sync_enabled and _auto_sync_task is None:
    _auto_sync_task = asyncio.create_task(_auto_sync_loop())


@app.on_event("shutdown")
async def _shutdown() -> None:
  global _auto_sync_task
  if _auto_sync_task is not None:
    _auto_sync_task.cancel()
    _auto_sync_task = None
