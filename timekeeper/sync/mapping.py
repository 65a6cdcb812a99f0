from __future__ import annotations

from timekeeper.models import Priority, TaskStatus

# Checked in order against the lower-cased work item type.
_TYPE_TABLE: tuple[tuple[str, Priority, int], ...] = (
  ("bug", Priority.HIGH, 120),
  ("task", Priority.MEDIUM, 240),
  ("user story", Priority.MEDIUM, 480),
  ("feature", Priority.LOW, 960),
)
_DEFAULT_PRIORITY = Priority.MEDIUM
_DEFAULT_ESTIMATE = 240

_STATE_TABLE: dict[str, TaskStatus] = {
  "new": TaskStatus.PENDING,
  "active": TaskStatus.IN_PROGRESS,
  "resolved": TaskStatus.IN_PROGRESS,
  "closed": TaskStatus.COMPLETED,
  "done": TaskStatus.COMPLETED,
}


def _match(item_type: str | None) -> tuple[Priority, int]:
  t = (item_type or "").strip().lower()
  if t:
    for needle, priority, minutes in _TYPE_TABLE:
      if needle in t:
        return priority, minutes
  return _DEFAULT_PRIORITY, _DEFAULT_ESTIMATE


def infer_priority(item_type: str | None) -> Priority:
  return _match(item_type)[0]


def estimate_minutes(item_type: str | None) -> int:
  return _match(item_type)[1]


def map_remote_state(state: str | None) -> TaskStatus:
  return _STATE_TABLE.get((state or "").strip().lower(), TaskStatus.PENDING)
