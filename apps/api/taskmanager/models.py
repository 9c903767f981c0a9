from __future__ import annotations

import uuid
from datetime import datetime, timedelta, timezone
from typing import Any

from sqlalchemy import JSON, Boolean, DateTime, ForeignKey, Integer, String, Text, UniqueConstraint, Uuid
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


def utcnow() -> datetime:
  return datetime.now(timezone.utc)


def default_due_date() -> datetime:
  return utcnow() + timedelta(days=7)


def new_id() -> str:
  return str(uuid.uuid4())


def parse_uuid(value: object) -> str | None:
  """Canonical text form of a UUID, or None when `value` is not one."""
  if not isinstance(value, str):
    return None
  try:
    return str(uuid.UUID(value))
  except ValueError:
    return None


JsonDoc = JSON().with_variant(JSONB(), "postgresql")
UUIDStr = Uuid(as_uuid=False)


class Base(DeclarativeBase):
  pass


class Role(Base):
  __tablename__ = "roles"

  id: Mapped[int] = mapped_column(Integer, primary_key=True)
  name: Mapped[str] = mapped_column(String, nullable=False, unique=True)
  is_admin: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)


class User(Base):
  __tablename__ = "users"

  id: Mapped[str] = mapped_column(UUIDStr, primary_key=True, default=new_id)
  email: Mapped[str] = mapped_column(String, nullable=False, unique=True, index=True)
  password_hash: Mapped[str] = mapped_column(String, nullable=False)
  name: Mapped[str] = mapped_column(String, nullable=False)
  role_id: Mapped[int] = mapped_column(Integer, ForeignKey("roles.id"), nullable=False, index=True)
  created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)


class Project(Base):
  __tablename__ = "projects"

  id: Mapped[str] = mapped_column(UUIDStr, primary_key=True, default=new_id)
  name: Mapped[str] = mapped_column(String, nullable=False, unique=True)
  description: Mapped[str | None] = mapped_column(Text, nullable=True)
  created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)


class ProjectMember(Base):
  __tablename__ = "project_members"

  project_id: Mapped[str] = mapped_column(UUIDStr, ForeignKey("projects.id", ondelete="CASCADE"), primary_key=True)
  user_id: Mapped[str] = mapped_column(UUIDStr, ForeignKey("users.id", ondelete="CASCADE"), primary_key=True)


class Status(Base):
  __tablename__ = "statuses"
  __table_args__ = (UniqueConstraint("name", "project_id", name="ux_statuses_name_project"),)

  id: Mapped[int] = mapped_column(Integer, primary_key=True)
  name: Mapped[str] = mapped_column(String, nullable=False)
  position: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
  project_id: Mapped[str | None] = mapped_column(UUIDStr, ForeignKey("projects.id"), nullable=True, index=True)


class Priority(Base):
  __tablename__ = "priorities"

  id: Mapped[int] = mapped_column(Integer, primary_key=True)
  name: Mapped[str] = mapped_column(String, nullable=False, unique=True)
  weight: Mapped[int] = mapped_column(Integer, nullable=False)


class TaskType(Base):
  __tablename__ = "task_types"

  id: Mapped[int] = mapped_column(Integer, primary_key=True)
  name: Mapped[str] = mapped_column(String, nullable=False, unique=True)


class Task(Base):
  __tablename__ = "tasks"

  id: Mapped[str] = mapped_column(UUIDStr, primary_key=True, default=new_id)
  title: Mapped[str] = mapped_column(String, nullable=False)
  description: Mapped[str | None] = mapped_column(Text, nullable=True)
  status_id: Mapped[int] = mapped_column(Integer, ForeignKey("statuses.id"), nullable=False)
  priority_id: Mapped[int] = mapped_column(Integer, ForeignKey("priorities.id"), nullable=False)
  type_id: Mapped[int | None] = mapped_column(Integer, ForeignKey("task_types.id"), nullable=True)
  project_id: Mapped[str | None] = mapped_column(UUIDStr, ForeignKey("projects.id"), nullable=True, index=True)
  author_id: Mapped[str] = mapped_column(UUIDStr, ForeignKey("users.id"), nullable=False)
  assignee_id: Mapped[str | None] = mapped_column(UUIDStr, ForeignKey("users.id"), nullable=True, index=True)
  parent_id: Mapped[str | None] = mapped_column(UUIDStr, ForeignKey("tasks.id", ondelete="SET NULL"), nullable=True)
  start_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)
  due_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=default_due_date, nullable=False)
  spent_minutes: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
  estimated_minutes: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
  created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)
  updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)


class Comment(Base):
  __tablename__ = "task_comments"

  id: Mapped[str] = mapped_column(UUIDStr, primary_key=True, default=new_id)
  task_id: Mapped[str] = mapped_column(UUIDStr, ForeignKey("tasks.id", ondelete="CASCADE"), nullable=False, index=True)
  author_id: Mapped[str] = mapped_column(UUIDStr, ForeignKey("users.id"), nullable=False)
  body: Mapped[str] = mapped_column(Text, nullable=False)
  created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)
  updated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)


class HistoryEntry(Base):
  __tablename__ = "task_history"

  id: Mapped[str] = mapped_column(UUIDStr, primary_key=True, default=new_id)
  # No FK: entries outlive the task they describe.
  task_id: Mapped[str] = mapped_column(UUIDStr, nullable=False, index=True)
  task_title: Mapped[str | None] = mapped_column(String, nullable=True)
  action: Mapped[str] = mapped_column(String, nullable=False)
  old_value: Mapped[dict[str, Any] | None] = mapped_column(JsonDoc, nullable=True)
  new_value: Mapped[dict[str, Any] | None] = mapped_column(JsonDoc, nullable=True)
  author_id: Mapped[str | None] = mapped_column(UUIDStr, ForeignKey("users.id"), nullable=True)
  created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)


class AuditEvent(Base):
  __tablename__ = "audit_events"

  id: Mapped[str] = mapped_column(UUIDStr, primary_key=True, default=new_id)
  actor_id: Mapped[str | None] = mapped_column(UUIDStr, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
  event_type: Mapped[str] = mapped_column(String, nullable=False)
  entity_type: Mapped[str] = mapped_column(String, nullable=False)
  entity_id: Mapped[str | None] = mapped_column(String, nullable=True)
  payload: Mapped[dict[str, Any]] = mapped_column(JsonDoc, nullable=False, default=dict)
  created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)
