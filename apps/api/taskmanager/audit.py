from __future__ import annotations

from typing import Any

from fastapi.encoders import jsonable_encoder
from sqlalchemy.ext.asyncio import AsyncSession

from taskmanager.models import AuditEvent, HistoryEntry


async def write_audit(
  db: AsyncSession,
  *,
  event_type: str,
  entity_type: str,
  entity_id: str | int | None,
  actor_id: str | None = None,
  payload: dict[str, Any] | None = None,
) -> None:
  safe_payload = jsonable_encoder(payload or {})
  ev = AuditEvent(
    actor_id=actor_id,
    event_type=event_type,
    entity_type=entity_type,
    entity_id=str(entity_id) if entity_id is not None else None,
    payload=safe_payload,
  )
  db.add(ev)


async def write_history(
  db: AsyncSession,
  *,
  task_id: str,
  action: str,
  author_id: str | None,
  task_title: str | None = None,
  old_value: dict[str, Any] | None = None,
  new_value: dict[str, Any] | None = None,
) -> HistoryEntry:
  """Append one history entry for a task; the caller commits it with the mutation it describes."""
  entry = HistoryEntry(
    task_id=task_id,
    task_title=task_title,
    action=action,
    old_value=jsonable_encoder(old_value) if old_value is not None else None,
    new_value=jsonable_encoder(new_value) if new_value is not None else None,
    author_id=author_id,
  )
  db.add(entry)
  return entry
