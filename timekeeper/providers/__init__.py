from __future__ import annotations

from timekeeper.providers.azure_devops import AzureDevOpsProviderClient
from timekeeper.providers.base import ProviderApiError, ProviderClient, RemoteWorkItem
from timekeeper.providers.github import GitHubProviderClient


def default_clients() -> dict[str, ProviderClient]:
  clients: list[ProviderClient] = [GitHubProviderClient(), AzureDevOpsProviderClient()]
  return {c.provider: c for c in clients}


__all__ = [
  "AzureDevOpsProviderClient",
  "GitHubProviderClient",
  "ProviderApiError",
  "ProviderClient",
  "RemoteWorkItem",
  "default_clients",
]
