from __future__ import annotations

import re
from typing import Iterable

from timekeeper.models import Task

# Provider name -> tag prefix written into Task.tags ("DevOps:123", "GitHub:45").
PROVIDER_TAGS: dict[str, str] = {
  "AzureDevOps": "DevOps",
  "GitHub": "GitHub",
}


def marker_tag_for(provider: str) -> str:
  return PROVIDER_TAGS.get(provider, provider)


def format_marker(tag: str, remote_id: str) -> str:
  return f"{tag}:{remote_id}"


def _marker_re(tag: str) -> re.Pattern[str]:
  return re.compile(rf"(?:^|[,\s]){re.escape(tag)}:(\d+)(?=$|[,\s])")


def parse_marker(tags: str | None, tag: str) -> str | None:
  """Remote id from the first `<tag>:<digits>` entry in a comma separated tag string."""
  if not tags:
    return None
  m = _marker_re(tag).search(tags)
  return m.group(1) if m else None


def has_marker(tags: str | None, tag: str, remote_id: str) -> bool:
  if not tags:
    return False
  return any(m.group(1) == remote_id for m in _marker_re(tag).finditer(tags))


def external_ref(task: Task, provider: str) -> str | None:
  """
  The remote id a task is linked to for `provider`.

  The structured columns win; tasks written before they existed still carry the
  tag marker, which is read as a fallback.
  """
  if task.external_provider == provider and task.external_id:
    return task.external_id
  if task.external_provider and task.external_provider != provider:
    return None
  return parse_marker(task.tags, marker_tag_for(provider))


def imported_ids(tasks: Iterable[Task], provider: str) -> set[str]:
  out: set[str] = set()
  for t in tasks:
    ref = external_ref(t, provider)
    if ref:
      out.add(ref)
  return out


def join_tags(*parts: str | None) -> str:
  seen: list[str] = []
  for p in parts:
    v = (p or "").strip()
    if v and v not in seen:
      seen.append(v)
  return ",".join(seen)
