from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Protocol

import httpx
from dateutil import parser as date_parser


def normalize_base_url(base_url: str, *, default: str | None = None) -> str:
  b = (base_url or "").strip().rstrip("/")
  if not b:
    if default is None:
      raise ValueError("organizationUrl is required")
    b = default
  if not (b.startswith("http://") or b.startswith("https://")):
    b = "https://" + b
  return b


class ProviderApiError(RuntimeError):
  def __init__(self, *, status_code: int, message: str, details: dict[str, Any] | None = None) -> None:
    super().__init__(message)
    self.status_code = status_code
    self.message = message
    self.details = details or {}


@dataclass
class RemoteWorkItem:
  """A provider issue or work item, already normalised by its client."""

  id: str
  title: str
  state: str = ""
  description: str | None = None
  type: str | None = None
  url: str | None = None
  project: str | None = None
  updated_at: datetime | None = None
  raw: dict[str, Any] = field(default_factory=dict, repr=False)


class ProviderClient(Protocol):
  provider: str

  async def test_connection(self, organization: str, credential: str) -> bool: ...

  async def fetch_work_items(
    self, organization: str, credential: str, project: str | None = None
  ) -> list[RemoteWorkItem]: ...

  async def fetch_work_item_by_id(
    self, organization: str, credential: str, remote_id: str, project: str | None = None
  ) -> RemoteWorkItem | None: ...

  async def list_projects(self, organization: str, credential: str) -> list[str]: ...


def _extract_error(payload: Any, fallback: str) -> tuple[str, dict[str, Any]]:
  if isinstance(payload, dict):
    msg = payload.get("message") or payload.get("Message") or payload.get("error")
    if isinstance(msg, str) and msg.strip():
      return msg.strip()[:500], {k: v for k, v in payload.items() if k in ("documentation_url", "typeKey", "errorCode", "errors")}
    return fallback, {}
  if isinstance(payload, str) and payload.strip():
    return payload.strip()[:500], {}
  return fallback, {}


async def request_json(client: httpx.AsyncClient, method: str, path: str, *, fallback: str, **kwargs: Any) -> Any:
  r = await client.request(method, path, **kwargs)
  if r.status_code >= 400:
    try:
      payload = r.json()
    except ValueError:
      payload = (r.text or "")[:800]
    msg, details = _extract_error(payload, fallback)
    raise ProviderApiError(status_code=r.status_code, message=msg, details=details)
  if r.status_code == 204 or not r.content:
    return None
  return r.json()


def parse_datetime(value: Any) -> datetime | None:
  if not isinstance(value, str) or not value.strip():
    return None
  try:
    return date_parser.isoparse(value)
  except ValueError:
    return None


def as_text(value: Any) -> str:
  if value is None:
    return ""
  if isinstance(value, bool):
    return ""
  if isinstance(value, (int, str)):
    return str(value).strip()
  return ""
