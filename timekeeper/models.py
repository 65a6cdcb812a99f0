from __future__ import annotations

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from sqlalchemy import JSON, Boolean, DateTime, Integer, String, Text, TypeDecorator, UniqueConstraint
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


def utcnow() -> datetime:
  return datetime.now(timezone.utc)


def _uuid() -> str:
  return str(uuid.uuid4())


class UtcDateTime(TypeDecorator):
  """Timezone-aware UTC datetimes on every backend (SQLite drops the offset)."""

  impl = DateTime(timezone=True)
  cache_ok = True

  def process_bind_param(self, value: datetime | None, dialect: Any) -> datetime | None:
    if value is None:
      return None
    if value.tzinfo is None:
      return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)

  def process_result_value(self, value: datetime | None, dialect: Any) -> datetime | None:
    if value is None:
      return None
    if value.tzinfo is None:
      return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class TaskStatus(str, Enum):
  PENDING = "Pending"
  IN_PROGRESS = "InProgress"
  ON_HOLD = "OnHold"
  COMPLETED = "Completed"
  CANCELLED = "Cancelled"


class Priority(str, Enum):
  LOW = "Low"
  MEDIUM = "Medium"
  HIGH = "High"
  CRITICAL = "Critical"


class Base(DeclarativeBase):
  pass


class ProviderIntegration(Base):
  __tablename__ = "provider_integrations"

  id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
  provider: Mapped[str] = mapped_column(String, nullable=False, index=True)
  organization_url: Mapped[str] = mapped_column(String, nullable=False)
  credential_encrypted: Mapped[str] = mapped_column(Text, nullable=False)
  token_hint: Mapped[str] = mapped_column(String, nullable=False, default="")
  project_name: Mapped[str | None] = mapped_column(String, nullable=True)
  is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
  created_at: Mapped[datetime] = mapped_column(UtcDateTime(), default=utcnow, nullable=False)
  updated_at: Mapped[datetime] = mapped_column(UtcDateTime(), default=utcnow, onupdate=utcnow, nullable=False)
  last_sync_at: Mapped[datetime | None] = mapped_column(UtcDateTime(), nullable=True)

  def __repr__(self) -> str:
    return f"<ProviderIntegration {self.provider} {self.organization_url} id={self.id}>"


class Task(Base):
  __tablename__ = "tasks"
  __table_args__ = (UniqueConstraint("external_provider", "external_id", name="ux_tasks_external_ref"),)

  id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
  title: Mapped[str] = mapped_column(String, nullable=False)
  description: Mapped[str | None] = mapped_column(Text, nullable=True)
  status: Mapped[str] = mapped_column(String, nullable=False, default=TaskStatus.PENDING.value)
  priority: Mapped[str] = mapped_column(String, nullable=False, default=Priority.MEDIUM.value)
  category: Mapped[str | None] = mapped_column(String, nullable=True)
  tags: Mapped[str | None] = mapped_column(String, nullable=True)
  due_date: Mapped[datetime | None] = mapped_column(UtcDateTime(), nullable=True)
  estimated_time_minutes: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
  actual_time_minutes: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
  external_provider: Mapped[str | None] = mapped_column(String, nullable=True)
  external_id: Mapped[str | None] = mapped_column(String, nullable=True)
  external_url: Mapped[str | None] = mapped_column(String, nullable=True)
  external_project: Mapped[str | None] = mapped_column(String, nullable=True)
  created_at: Mapped[datetime] = mapped_column(UtcDateTime(), default=utcnow, nullable=False)
  updated_at: Mapped[datetime] = mapped_column(UtcDateTime(), default=utcnow, onupdate=utcnow, nullable=False)

  @property
  def is_completed(self) -> bool:
    return self.status == TaskStatus.COMPLETED.value


class AuditEvent(Base):
  __tablename__ = "audit_events"

  id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
  task_id: Mapped[str | None] = mapped_column(String(36), nullable=True, index=True)
  event_type: Mapped[str] = mapped_column(String, nullable=False, index=True)
  entity_type: Mapped[str] = mapped_column(String, nullable=False)
  entity_id: Mapped[str | None] = mapped_column(String, nullable=True)
  payload: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)
  created_at: Mapped[datetime] = mapped_column(UtcDateTime(), default=utcnow, nullable=False)
