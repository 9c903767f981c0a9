from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from taskmanager.deps import Principal, get_db, require_admin
from taskmanager.models import AuditEvent
from taskmanager.schemas import AuditOut

router = APIRouter(prefix="/audit", tags=["audit"])


@router.get("", response_model=list[AuditOut])
async def list_audit(
  entity_type: str | None = None,
  entity_id: str | None = None,
  limit: int = 200,
  _: Principal = Depends(require_admin),
  db: AsyncSession = Depends(get_db),
) -> list[AuditOut]:
  q = select(AuditEvent).order_by(AuditEvent.created_at.desc()).limit(max(1, min(limit, 1000)))
  if entity_type:
    q = q.where(AuditEvent.entity_type == entity_type)
  if entity_id:
    q = q.where(AuditEvent.entity_id == entity_id)
  res = await db.execute(q)
  out = []
  for ev in res.scalars().all():
    out.append(
      AuditOut(
        id=ev.id,
        actor_id=ev.actor_id,
        event_type=ev.event_type,
        entity_type=ev.entity_type,
        entity_id=ev.entity_id,
        payload=ev.payload,
        created_at=ev.created_at,
      )
    )
  return out
