from __future__ import annotations

import logging
from typing import Any
from urllib.parse import quote

import httpx

from timekeeper.config import settings
from timekeeper.providers.base import (
  ProviderApiError,
  RemoteWorkItem,
  as_text,
  normalize_base_url,
  parse_datetime,
  request_json,
)

log = logging.getLogger(__name__)

PROVIDER = "AzureDevOps"

WORK_ITEM_FIELDS = [
  "System.Id",
  "System.Title",
  "System.State",
  "System.WorkItemType",
  "System.Description",
  "System.TeamProject",
  "System.ChangedDate",
]

_OPEN_ITEMS_WHERE = "[System.State] <> 'Closed' AND [System.State] <> 'Removed'"


def organization_base_url(organization: str) -> str:
  o = (organization or "").strip().rstrip("/")
  if o and "/" not in o and "." not in o:
    return f"https://dev.azure.com/{o}"
  return normalize_base_url(o)


def build_wiql(project: str | None) -> str:
  where = _OPEN_ITEMS_WHERE
  if project:
    where = f"[System.TeamProject] = @project AND {where}"
  return (
    "SELECT [System.Id], [System.Title], [System.State], [System.WorkItemType] "
    "FROM WorkItems "
    f"WHERE {where} "
    "ORDER BY [System.ChangedDate] DESC"
  )


def work_item_from_payload(payload: dict[str, Any], *, base_url: str) -> RemoteWorkItem:
  fields = payload.get("fields") if isinstance(payload.get("fields"), dict) else {}
  wid = as_text(payload.get("id")) or as_text(fields.get("System.Id"))
  project = fields.get("System.TeamProject") if isinstance(fields.get("System.TeamProject"), str) else None
  links = payload.get("_links") if isinstance(payload.get("_links"), dict) else {}
  html = links.get("html", {}).get("href") if isinstance(links.get("html"), dict) else None
  if not html and wid and project:
    html = f"{base_url}/{quote(project)}/_workitems/edit/{wid}"
  description = fields.get("System.Description")
  return RemoteWorkItem(
    id=wid,
    title=as_text(fields.get("System.Title")),
    state=as_text(fields.get("System.State")),
    description=description if isinstance(description, str) else None,
    type=as_text(fields.get("System.WorkItemType")) or None,
    url=html,
    project=project,
    updated_at=parse_datetime(fields.get("System.ChangedDate")),
    raw=payload,
  )


class AzureDevOpsProviderClient:
  provider = PROVIDER

  def __init__(
    self,
    *,
    api_version: str | None = None,
    batch_size: int | None = None,
    user_agent: str | None = None,
    timeout: float | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
  ) -> None:
    self.api_version = api_version or settings.azure_devops_api_version
    self.batch_size = max(1, min(200, batch_size or settings.azure_devops_batch_size))
    self.user_agent = user_agent or settings.user_agent
    self.timeout = timeout if timeout is not None else settings.http_timeout_seconds
    self._transport = transport

  def _client(self, organization: str, credential: str) -> httpx.AsyncClient:
    pat = (credential or "").strip()
    if not pat:
      raise ValueError("credential is required")
    return httpx.AsyncClient(
      base_url=organization_base_url(organization),
      auth=("", pat),
      timeout=self.timeout,
      transport=self._transport,
      headers={"Accept": "application/json", "User-Agent": self.user_agent},
    )

  async def _projects(self, client: httpx.AsyncClient) -> list[str]:
    data = await request_json(
      client, "GET", "/_apis/projects", params={"api-version": self.api_version}, fallback="Azure DevOps request failed"
    )
    values = data.get("value") if isinstance(data, dict) else None
    if not isinstance(values, list):
      return []
    return [v["name"] for v in values if isinstance(v, dict) and isinstance(v.get("name"), str)]

  async def test_connection(self, organization: str, credential: str) -> bool:
    try:
      async with self._client(organization, credential) as client:
        return len(await self._projects(client)) > 0
    except (ProviderApiError, httpx.HTTPError, ValueError) as exc:
      log.warning("Azure DevOps connection test failed for %s: %s", organization, exc)
      return False

  async def list_projects(self, organization: str, credential: str) -> list[str]:
    async with self._client(organization, credential) as client:
      return await self._projects(client)

  async def _query_ids(self, client: httpx.AsyncClient, project: str | None) -> list[int]:
    path = f"/{quote(project)}/_apis/wit/wiql" if project else "/_apis/wit/wiql"
    data = await request_json(
      client,
      "POST",
      path,
      params={"api-version": self.api_version},
      json={"query": build_wiql(project)},
      fallback="Azure DevOps WIQL query failed",
    )
    refs = data.get("workItems") if isinstance(data, dict) else None
    if not isinstance(refs, list):
      return []
    return [r["id"] for r in refs if isinstance(r, dict) and isinstance(r.get("id"), int)]

  async def fetch_work_items(
    self, organization: str, credential: str, project: str | None = None
  ) -> list[RemoteWorkItem]:
    scope = (project or "").strip() or None
    async with self._client(organization, credential) as client:
      base_url = str(client.base_url).rstrip("/")
      ids = await self._query_ids(client, scope)
      items: list[RemoteWorkItem] = []
      for i in range(0, len(ids), self.batch_size):
        batch = ids[i : i + self.batch_size]
        data = await request_json(
          client,
          "GET",
          "/_apis/wit/workitems",
          params={
            "ids": ",".join(str(x) for x in batch),
            "fields": ",".join(WORK_ITEM_FIELDS),
            "errorPolicy": "Omit",
            "api-version": self.api_version,
          },
          fallback="Azure DevOps work item batch failed",
        )
        values = data.get("value") if isinstance(data, dict) else None
        for v in values or []:
          # errorPolicy=Omit yields null entries for items that vanished between query and fetch.
          if isinstance(v, dict):
            items.append(work_item_from_payload(v, base_url=base_url))
    log.info("Azure DevOps returned %d work items for %s", len(items), scope or organization)
    return items

  async def fetch_work_item_by_id(
    self, organization: str, credential: str, remote_id: str, project: str | None = None
  ) -> RemoteWorkItem | None:
    async with self._client(organization, credential) as client:
      base_url = str(client.base_url).rstrip("/")
      try:
        data = await request_json(
          client,
          "GET",
          f"/_apis/wit/workitems/{quote(str(remote_id))}",
          params={"api-version": self.api_version},
          fallback="Azure DevOps request failed",
        )
      except ProviderApiError as e:
        if e.status_code == 404:
          return None
        raise
    if not isinstance(data, dict):
      return None
    return work_item_from_payload(data, base_url=base_url)
