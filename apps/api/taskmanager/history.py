from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from fastapi.encoders import jsonable_encoder

from taskmanager.models import Task

UPDATABLE_TASK_FIELDS = (
  "title",
  "description",
  "status_id",
  "priority_id",
  "type_id",
  "project_id",
  "parent_id",
  "assignee_id",
  "start_date",
  "due_date",
  "spent_minutes",
  "estimated_minutes",
)

# Fields that may be cleared with an explicit null.
NULLABLE_TASK_FIELDS = frozenset({"description", "type_id", "project_id", "parent_id", "assignee_id"})

_SNAPSHOT_FIELDS = ("id", "author_id", *UPDATABLE_TASK_FIELDS, "created_at", "updated_at")


def _normalize(value: Any) -> Any:
  # Some drivers hand back naive datetimes for timestamptz columns.
  if isinstance(value, datetime) and value.tzinfo is None:
    return value.replace(tzinfo=timezone.utc)
  if isinstance(value, datetime):
    return value.astimezone(timezone.utc)
  return value


def task_snapshot(t: Task) -> dict[str, Any]:
  return jsonable_encoder({name: _normalize(getattr(t, name)) for name in _SNAPSHOT_FIELDS})


def diff_fields(before: dict[str, Any], after: dict[str, Any], fields: list[str] | tuple[str, ...]) -> dict[str, dict[str, Any]]:
  """
  Return `{field: {"from": old, "to": new}}` for each field whose value changed.

  Values are compared after UTC normalization so a re-submitted timestamp does
  not register as a change.
  """
  out: dict[str, dict[str, Any]] = {}
  for name in fields:
    old = _normalize(before.get(name))
    new = _normalize(after.get(name))
    if old != new:
      out[name] = {"from": old, "to": new}
  return jsonable_encoder(out)
