from __future__ import annotations

import logging
from typing import Any
from urllib.parse import urlparse

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

PROVIDER = "GitHub"
PER_PAGE = 50

# Checked in order; the first label match wins.
_LABEL_TYPES: tuple[tuple[str, str], ...] = (
  ("bug", "Bug"),
  ("user story", "User Story"),
  ("story", "User Story"),
  ("feature", "Feature"),
  ("enhancement", "Feature"),
  ("task", "Task"),
)


def parse_owner(organization: str) -> str:
  """
  Accepts "acme", "github.com/acme" or "https://github.com/acme[/repo]" and returns "acme".
  """
  s = (organization or "").strip().rstrip("/")
  if not s:
    return ""
  if "://" not in s and "/" not in s:
    return s
  parsed = urlparse(s if "://" in s else "https://" + s)
  parts = [p for p in parsed.path.split("/") if p]
  return parts[0] if parts else ""


def infer_issue_type(labels: Any) -> str:
  names: list[str] = []
  if isinstance(labels, list):
    for lb in labels:
      if isinstance(lb, dict) and isinstance(lb.get("name"), str):
        names.append(lb["name"].strip().lower())
      elif isinstance(lb, str):
        names.append(lb.strip().lower())
  for needle, kind in _LABEL_TYPES:
    if any(needle in n for n in names):
      return kind
  return "Issue"


def _repo_from_url(url: Any) -> str | None:
  if not isinstance(url, str) or "/repos/" not in url:
    return None
  tail = url.split("/repos/", 1)[1].split("/")
  if len(tail) < 2:
    return None
  return f"{tail[0]}/{tail[1]}"


def issue_to_work_item(issue: dict[str, Any], *, project: str | None = None) -> RemoteWorkItem:
  return RemoteWorkItem(
    id=as_text(issue.get("number")),
    title=as_text(issue.get("title")),
    state=as_text(issue.get("state")),
    description=issue.get("body") if isinstance(issue.get("body"), str) else None,
    type=infer_issue_type(issue.get("labels")),
    url=issue.get("html_url") if isinstance(issue.get("html_url"), str) else None,
    project=project or _repo_from_url(issue.get("repository_url")),
    updated_at=parse_datetime(issue.get("updated_at")),
    raw=issue,
  )


class GitHubProviderClient:
  provider = PROVIDER

  def __init__(
    self,
    *,
    base_url: str | None = None,
    user_agent: str | None = None,
    timeout: float | None = None,
    max_pages: int | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
  ) -> None:
    self.base_url = normalize_base_url(base_url or settings.github_api_url, default="https://api.github.com")
    self.user_agent = user_agent or settings.user_agent
    self.timeout = timeout if timeout is not None else settings.http_timeout_seconds
    self.max_pages = max(1, max_pages if max_pages is not None else settings.github_max_pages)
    self._transport = transport

  def _client(self, credential: str) -> httpx.AsyncClient:
    token = (credential or "").strip()
    if not token:
      raise ValueError("credential is required")
    return httpx.AsyncClient(
      base_url=self.base_url,
      timeout=self.timeout,
      transport=self._transport,
      headers={
        "Accept": "application/vnd.github+json",
        "Authorization": f"Bearer {token}",
        "X-GitHub-Api-Version": "2022-11-28",
        "User-Agent": self.user_agent,
      },
    )

  async def _login(self, client: httpx.AsyncClient) -> str:
    data = await request_json(client, "GET", "/user", fallback="GitHub request failed")
    if isinstance(data, dict) and isinstance(data.get("login"), str):
      return data["login"]
    raise ProviderApiError(status_code=502, message="GitHub did not return the authenticated user")

  async def _repo_path(self, client: httpx.AsyncClient, organization: str, project: str) -> str:
    repo = project.strip().strip("/")
    if "/" in repo:
      return repo
    owner = parse_owner(organization) or await self._login(client)
    return f"{owner}/{repo}"

  async def _paginate(self, client: httpx.AsyncClient, path: str, params: dict[str, Any]) -> list[dict[str, Any]]:
    out: list[dict[str, Any]] = []
    url: str | None = path
    query: dict[str, Any] | None = params
    for _ in range(self.max_pages):
      if url is None:
        break
      res = await client.get(url, params=query)
      if res.status_code >= 400:
        raise ProviderApiError(status_code=res.status_code, message=f"GitHub request failed ({res.status_code})")
      data = res.json() if res.content else []
      if isinstance(data, list):
        out.extend(x for x in data if isinstance(x, dict))
      nxt = res.links.get("next", {}).get("url")
      url = nxt if isinstance(nxt, str) and nxt else None
      # The next link already carries the query string.
      query = None
    return out

  async def test_connection(self, organization: str, credential: str) -> bool:
    try:
      async with self._client(credential) as client:
        await self._login(client)
      return True
    except (ProviderApiError, httpx.HTTPError, ValueError) as exc:
      log.warning("GitHub connection test failed for %s: %s", organization or "(user)", exc)
      return False

  async def fetch_work_items(
    self, organization: str, credential: str, project: str | None = None
  ) -> list[RemoteWorkItem]:
    async with self._client(credential) as client:
      params = {"state": "open", "per_page": PER_PAGE}
      if project and project.strip():
        repo = await self._repo_path(client, organization, project)
        issues = await self._paginate(client, f"/repos/{repo}/issues", params)
      else:
        repo = None
        issues = await self._paginate(client, "/issues", {**params, "filter": "assigned"})
    items = [issue_to_work_item(i, project=repo) for i in issues if "pull_request" not in i]
    log.info("GitHub returned %d issues for %s", len(items), repo or parse_owner(organization) or "(assigned)")
    return items

  async def fetch_work_item_by_id(
    self, organization: str, credential: str, remote_id: str, project: str | None = None
  ) -> RemoteWorkItem | None:
    if not project or not project.strip():
      raise ValueError("GitHub issues can only be fetched by number within a repository")
    async with self._client(credential) as client:
      repo = await self._repo_path(client, organization, project)
      try:
        data = await request_json(client, "GET", f"/repos/{repo}/issues/{remote_id}", fallback="GitHub request failed")
      except ProviderApiError as e:
        if e.status_code in (404, 410):
          return None
        raise
    if not isinstance(data, dict):
      return None
    return issue_to_work_item(data, project=repo)

  async def list_projects(self, organization: str, credential: str) -> list[str]:
    owner = parse_owner(organization)
    async with self._client(credential) as client:
      if owner:
        try:
          repos = await self._paginate(client, f"/orgs/{owner}/repos", {"per_page": 100, "sort": "updated"})
        except ProviderApiError as e:
          if e.status_code != 404:
            raise
          repos = await self._paginate(client, f"/users/{owner}/repos", {"per_page": 100, "sort": "updated"})
      else:
        repos = await self._paginate(client, "/user/repos", {"per_page": 100, "sort": "updated"})
    return [r["full_name"] for r in repos if isinstance(r.get("full_name"), str)]
