from __future__ import annotations

from functools import lru_cache

from fastapi import Depends

from timekeeper.db import SessionLocal
from timekeeper.integrations import IntegrationService
from timekeeper.services import Services, build_services
from timekeeper.sync.orchestrator import IntegrationOrchestrator


@lru_cache(maxsize=1)
def get_services() -> Services:
  return build_services(SessionLocal)


def get_orchestrator(services: Services = Depends(get_services)) -> IntegrationOrchestrator:
  return services.orchestrator


def get_integration_service(services: Services = Depends(get_services)) -> IntegrationService:
  return services.integration_service
