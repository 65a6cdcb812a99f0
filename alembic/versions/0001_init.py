"""init

Revision ID: 0001_init
Revises:
Create Date: 2026-10-18
"""

from alembic import op
import sqlalchemy as sa

revision = "0001_init"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
  op.create_table(
    "provider_integrations",
    sa.Column("id", sa.String(length=36), primary_key=True),
    sa.Column("provider", sa.String(), nullable=False),
    sa.Column("organization_url", sa.String(), nullable=False),
    sa.Column("credential_encrypted", sa.Text(), nullable=False),
    sa.Column("token_hint", sa.String(), nullable=False, server_default=""),
    sa.Column("project_name", sa.String(), nullable=True),
    sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
    sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
    sa.Column("last_sync_at", sa.DateTime(timezone=True), nullable=True),
  )
  op.create_index("ix_provider_integrations_provider", "provider_integrations", ["provider"], unique=False)

  op.create_table(
    "tasks",
    sa.Column("id", sa.String(length=36), primary_key=True),
    sa.Column("title", sa.String(), nullable=False),
    sa.Column("description", sa.Text(), nullable=True),
    sa.Column("status", sa.String(), nullable=False, server_default="Pending"),
    sa.Column("priority", sa.String(), nullable=False, server_default="Medium"),
    sa.Column("category", sa.String(), nullable=True),
    sa.Column("tags", sa.String(), nullable=True),
    sa.Column("due_date", sa.DateTime(timezone=True), nullable=True),
    sa.Column("estimated_time_minutes", sa.Integer(), nullable=False, server_default="0"),
    sa.Column("actual_time_minutes", sa.Integer(), nullable=False, server_default="0"),
    sa.Column("external_provider", sa.String(), nullable=True),
    sa.Column("external_id", sa.String(), nullable=True),
    sa.Column("external_url", sa.String(), nullable=True),
    sa.Column("external_project", sa.String(), nullable=True),
    sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
    sa.UniqueConstraint("external_provider", "external_id", name="ux_tasks_external_ref"),
  )

  op.create_table(
    "audit_events",
    sa.Column("id", sa.String(length=36), primary_key=True),
    sa.Column("task_id", sa.String(length=36), nullable=True),
    sa.Column("event_type", sa.String(), nullable=False),
    sa.Column("entity_type", sa.String(), nullable=False),
    sa.Column("entity_id", sa.String(), nullable=True),
    sa.Column("payload", sa.JSON(), nullable=False),
    sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
  )
  op.create_index("ix_audit_events_task_id", "audit_events", ["task_id"], unique=False)
  op.create_index("ix_audit_events_event_type", "audit_events", ["event_type"], unique=False)


def downgrade() -> None:
  op.drop_index("ix_audit_events_event_type", table_name="audit_events")
  op.drop_index("ix_audit_events_task_id", table_name="audit_events")
  op.drop_table("audit_events")
  op.drop_table("tasks")
  op.drop_index("ix_provider_integrations_provider", table_name="provider_integrations")
  op.drop_table("provider_integrations")
