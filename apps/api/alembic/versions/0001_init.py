"""init

Revision ID: 0001_init
Revises:
Create Date: 2026-10-19
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

revision = "0001_init"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
  op.create_table(
    "roles",
    sa.Column("id", sa.Integer(), primary_key=True),
    sa.Column("name", sa.String(), nullable=False, unique=True),
    sa.Column("is_admin", sa.Boolean(), nullable=False, server_default=sa.false()),
  )

  op.create_table(
    "users",
    sa.Column("id", postgresql.UUID(as_uuid=False), primary_key=True),
    sa.Column("email", sa.String(), nullable=False),
    sa.Column("password_hash", sa.String(), nullable=False),
    sa.Column("name", sa.String(), nullable=False),
    sa.Column("role_id", sa.Integer(), sa.ForeignKey("roles.id"), nullable=False),
    sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
  )
  op.create_index("ix_users_email", "users", ["email"], unique=True)
  op.create_index("ix_users_role_id", "users", ["role_id"], unique=False)

  op.create_table(
    "projects",
    sa.Column("id", postgresql.UUID(as_uuid=False), primary_key=True),
    sa.Column("name", sa.String(), nullable=False, unique=True),
    sa.Column("description", sa.Text(), nullable=True),
    sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
  )

  op.create_table(
    "project_members",
    sa.Column("project_id", postgresql.UUID(as_uuid=False), sa.ForeignKey("projects.id", ondelete="CASCADE"), primary_key=True),
    sa.Column("user_id", postgresql.UUID(as_uuid=False), sa.ForeignKey("users.id", ondelete="CASCADE"), primary_key=True),
  )

  # (name, project_id) uniqueness is installed by 0002 after existing duplicates are merged.
  op.create_table(
    "statuses",
    sa.Column("id", sa.Integer(), primary_key=True),
    sa.Column("name", sa.String(), nullable=False),
    sa.Column("position", sa.Integer(), nullable=False, server_default="0"),
    sa.Column("project_id", postgresql.UUID(as_uuid=False), sa.ForeignKey("projects.id"), nullable=True),
  )
  op.create_index("ix_statuses_project_id", "statuses", ["project_id"], unique=False)

  op.create_table(
    "priorities",
    sa.Column("id", sa.Integer(), primary_key=True),
    sa.Column("name", sa.String(), nullable=False, unique=True),
    sa.Column("weight", sa.Integer(), nullable=False),
  )

  op.create_table(
    "task_types",
    sa.Column("id", sa.Integer(), primary_key=True),
    sa.Column("name", sa.String(), nullable=False, unique=True),
  )

  op.create_table(
    "tasks",
    sa.Column("id", postgresql.UUID(as_uuid=False), primary_key=True),
    sa.Column("title", sa.String(), nullable=False),
    sa.Column("description", sa.Text(), nullable=True),
    sa.Column("status_id", sa.Integer(), sa.ForeignKey("statuses.id"), nullable=False),
    sa.Column("priority_id", sa.Integer(), sa.ForeignKey("priorities.id"), nullable=False),
    sa.Column("type_id", sa.Integer(), sa.ForeignKey("task_types.id"), nullable=True),
    sa.Column("project_id", postgresql.UUID(as_uuid=False), sa.ForeignKey("projects.id"), nullable=True),
    sa.Column("author_id", postgresql.UUID(as_uuid=False), sa.ForeignKey("users.id"), nullable=False),
    sa.Column("assignee_id", postgresql.UUID(as_uuid=False), sa.ForeignKey("users.id"), nullable=True),
    sa.Column("parent_id", postgresql.UUID(as_uuid=False), sa.ForeignKey("tasks.id", ondelete="SET NULL"), nullable=True),
    sa.Column("start_date", sa.DateTime(timezone=True), nullable=False),
    sa.Column("due_date", sa.DateTime(timezone=True), nullable=False),
    sa.Column("spent_minutes", sa.Integer(), nullable=False, server_default="0"),
    sa.Column("estimated_minutes", sa.Integer(), nullable=False, server_default="0"),
    sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
  )
  op.create_index("ix_tasks_project_id", "tasks", ["project_id"], unique=False)
  op.create_index("ix_tasks_assignee_id", "tasks", ["assignee_id"], unique=False)

  op.create_table(
    "task_comments",
    sa.Column("id", postgresql.UUID(as_uuid=False), primary_key=True),
    sa.Column("task_id", postgresql.UUID(as_uuid=False), sa.ForeignKey("tasks.id", ondelete="CASCADE"), nullable=False),
    sa.Column("author_id", postgresql.UUID(as_uuid=False), sa.ForeignKey("users.id"), nullable=False),
    sa.Column("body", sa.Text(), nullable=False),
    sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
  )
  op.create_index("ix_task_comments_task_id", "task_comments", ["task_id"], unique=False)

  op.create_table(
    "task_history",
    sa.Column("id", postgresql.UUID(as_uuid=False), primary_key=True),
    sa.Column("task_id", postgresql.UUID(as_uuid=False), nullable=False),
    sa.Column("task_title", sa.String(), nullable=True),
    sa.Column("action", sa.String(), nullable=False),
    sa.Column("old_value", postgresql.JSONB(astext_type=sa.Text()), nullable=True),
    sa.Column("new_value", postgresql.JSONB(astext_type=sa.Text()), nullable=True),
    sa.Column("author_id", postgresql.UUID(as_uuid=False), sa.ForeignKey("users.id"), nullable=True),
    sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
  )
  op.create_index("ix_task_history_task_id", "task_history", ["task_id"], unique=False)

  op.create_table(
    "audit_events",
    sa.Column("id", postgresql.UUID(as_uuid=False), primary_key=True),
    sa.Column("actor_id", postgresql.UUID(as_uuid=False), sa.ForeignKey("users.id", ondelete="SET NULL"), nullable=True),
    sa.Column("event_type", sa.String(), nullable=False),
    sa.Column("entity_type", sa.String(), nullable=False),
    sa.Column("entity_id", sa.String(), nullable=True),
    sa.Column("payload", postgresql.JSONB(astext_type=sa.Text()), nullable=False),
    sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
  )
  op.create_index("ix_audit_events_created_at", "audit_events", ["created_at"], unique=False)


def downgrade() -> None:
  op.drop_index("ix_audit_events_created_at", table_name="audit_events")
  op.drop_table("audit_events")
  op.drop_index("ix_task_history_task_id", table_name="task_history")
  op.drop_table("task_history")
  op.drop_index("ix_task_comments_task_id", table_name="task_comments")
  op.drop_table("task_comments")
  op.drop_index("ix_tasks_assignee_id", table_name="tasks")
  op.drop_index("ix_tasks_project_id", table_name="tasks")
  op.drop_table("tasks")
  op.drop_table("task_types")
  op.drop_table("priorities")
  op.drop_index("ix_statuses_project_id", table_name="statuses")
  op.drop_table("statuses")
  op.drop_table("project_members")
  op.drop_table("projects")
  op.drop_index("ix_users_role_id", table_name="users")
  op.drop_index("ix_users_email", table_name="users")
  op.drop_table("users")
  op.drop_table("roles")
