from __future__ import annotations

import re
from datetime import datetime, timezone
from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic import field_validator

from taskmanager.models import parse_uuid


_DATE_ONLY_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")


def _parse_dt_utc(value: object) -> object:
  if value is None:
    return None
  if isinstance(value, datetime):
    dt = value
  elif isinstance(value, str):
    s = value.strip()
    if not s:
      return None
    if _DATE_ONLY_RE.fullmatch(s):
      dt = datetime.fromisoformat(s)
    else:
      dt = datetime.fromisoformat(s.replace("Z", "+00:00"))
  else:
    return value

  if dt.tzinfo is None:
    return dt.replace(tzinfo=timezone.utc)
  return dt.astimezone(timezone.utc)


def _uuid_or_none(value: object) -> object:
  if value is None:
    return None
  if isinstance(value, list):
    return [_uuid_or_none(v) for v in value]
  parsed = parse_uuid(value)
  if parsed is None:
    raise ValueError("must be a UUID")
  return parsed


class RegisterIn(BaseModel):
  email: str = Field(min_length=3, max_length=320)
  password: str = Field(min_length=1, max_length=200)
  name: str = Field(min_length=1, max_length=120)


class LoginIn(BaseModel):
  email: str
  password: str


class TokenOut(BaseModel):
  token: str


class UserOut(BaseModel):
  id: str
  email: str
  name: str
  role: str
  is_admin: bool
  created_at: datetime


class MeUpdateIn(BaseModel):
  email: str | None = Field(default=None, min_length=3, max_length=320)
  name: str | None = Field(default=None, min_length=1, max_length=120)
  password: str | None = Field(default=None, min_length=1, max_length=200)


class UserCreateIn(BaseModel):
  email: str = Field(min_length=3, max_length=320)
  password: str = Field(min_length=1, max_length=200)
  name: str = Field(min_length=1, max_length=120)
  role: str = "user"


class UserUpdateIn(BaseModel):
  email: str | None = Field(default=None, min_length=3, max_length=320)
  name: str | None = Field(default=None, min_length=1, max_length=120)
  password: str | None = Field(default=None, min_length=1, max_length=200)
  role: str | None = Field(default=None, min_length=1, max_length=64)


class RoleIn(BaseModel):
  name: str = Field(min_length=1, max_length=64)
  is_admin: bool = False


class RoleUpdateIn(BaseModel):
  name: str | None = Field(default=None, min_length=1, max_length=64)
  is_admin: bool | None = None


class RoleOut(BaseModel):
  id: int
  name: str
  is_admin: bool


class ProjectCreateIn(BaseModel):
  name: str = Field(min_length=1, max_length=200)
  description: str | None = None
  member_ids: list[str] = []

  @field_validator("member_ids", mode="before")
  @classmethod
  def _ids_are_uuids(cls, v: object) -> object:
    return _uuid_or_none(v)


class ProjectUpdateIn(BaseModel):
  name: str | None = Field(default=None, min_length=1, max_length=200)
  description: str | None = None
  member_ids: list[str] | None = None

  @field_validator("member_ids", mode="before")
  @classmethod
  def _ids_are_uuids(cls, v: object) -> object:
    return _uuid_or_none(v)


class ProjectOut(BaseModel):
  id: str
  name: str
  description: str | None
  created_at: datetime
  member_ids: list[str]


class MemberOut(BaseModel):
  id: str
  name: str
  email: str


class StatusCreateIn(BaseModel):
  name: str = Field(min_length=1, max_length=120)
  position: int | None = None
  project_id: str | None = None

  @field_validator("project_id", mode="before")
  @classmethod
  def _ids_are_uuids(cls, v: object) -> object:
    return _uuid_or_none(v)


class StatusUpdateIn(BaseModel):
  name: str | None = Field(default=None, min_length=1, max_length=120)
  position: int | None = None


class StatusOut(BaseModel):
  id: int
  name: str
  position: int
  project_id: str | None


class PriorityOut(BaseModel):
  id: int
  name: str
  weight: int


class TaskTypeOut(BaseModel):
  id: int
  name: str


class UserRefOut(BaseModel):
  id: str
  name: str
  email: str
  role: str


class TaskCreateIn(BaseModel):
  title: str = Field(min_length=1, max_length=500)
  status_id: int
  priority_id: int
  description: str | None = None
  type_id: int | None = None
  project_id: str | None = None
  assignee_id: str | None = None
  parent_id: str | None = None
  start_date: datetime | None = None
  due_date: datetime | None = None
  spent_minutes: int = Field(default=0, ge=0)
  estimated_minutes: int = Field(default=0, ge=0)

  @field_validator("start_date", "due_date", mode="before")
  @classmethod
  def _dates_to_utc(cls, v: object) -> object:
    return _parse_dt_utc(v)

  @field_validator("project_id", "assignee_id", "parent_id", mode="before")
  @classmethod
  def _ids_are_uuids(cls, v: object) -> object:
    return _uuid_or_none(v)


class TaskUpdateIn(BaseModel):
  # Unknown keys are ignored; an update carrying none of these is rejected.
  model_config = ConfigDict(extra="ignore")

  title: str | None = Field(default=None, min_length=1, max_length=500)
  description: str | None = None
  status_id: int | None = None
  priority_id: int | None = None
  type_id: int | None = None
  project_id: str | None = None
  parent_id: str | None = None
  assignee_id: str | None = None
  start_date: datetime | None = None
  due_date: datetime | None = None
  spent_minutes: int | None = Field(default=None, ge=0)
  estimated_minutes: int | None = Field(default=None, ge=0)

  @field_validator("start_date", "due_date", mode="before")
  @classmethod
  def _dates_to_utc(cls, v: object) -> object:
    return _parse_dt_utc(v)

  @field_validator("project_id", "assignee_id", "parent_id", mode="before")
  @classmethod
  def _ids_are_uuids(cls, v: object) -> object:
    return _uuid_or_none(v)


class TaskOut(BaseModel):
  id: str
  title: str
  description: str | None
  status_id: int
  priority_id: int
  type_id: int | None
  project_id: str | None
  author_id: str
  assignee_id: str | None
  parent_id: str | None
  start_date: datetime
  due_date: datetime
  spent_minutes: int
  estimated_minutes: int
  created_at: datetime
  updated_at: datetime
  status_name: str | None = None
  priority_name: str | None = None
  type_name: str | None = None
  project_name: str | None = None
  author_name: str | None = None
  assignee_name: str | None = None


class CreatedOut(BaseModel):
  id: str


class CommentIn(BaseModel):
  body: str = Field(min_length=1, max_length=20000)


class CommentOut(BaseModel):
  id: str
  task_id: str
  author_id: str
  author_name: str | None
  body: str
  created_at: datetime
  updated_at: datetime | None = None


class HistoryOut(BaseModel):
  id: str
  task_id: str
  task_title: str | None
  action: str
  old_value: dict[str, Any] | None
  new_value: dict[str, Any] | None
  author_id: str | None
  author_name: str | None
  created_at: datetime


class TaskDetailOut(BaseModel):
  task: TaskOut
  comments: list[CommentOut]
  history: list[HistoryOut]


class AuditOut(BaseModel):
  id: str
  actor_id: str | None
  event_type: str
  entity_type: str
  entity_id: str | None
  payload: dict[str, Any]
  created_at: datetime
