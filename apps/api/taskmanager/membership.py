from __future__ import annotations

import logging
from dataclasses import dataclass, field

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from taskmanager.audit import write_history
from taskmanager.history import task_snapshot
from taskmanager.models import ProjectMember, Task, User, utcnow

log = logging.getLogger(__name__)


@dataclass
class MembershipDelta:
  to_add: list[str] = field(default_factory=list)
  to_remove: list[str] = field(default_factory=list)
  unassigned_task_ids: list[str] = field(default_factory=list)

  @property
  def empty(self) -> bool:
    return not self.to_add and not self.to_remove


def compute_delta(current: set[str] | list[str], desired: set[str] | list[str]) -> MembershipDelta:
  cur = set(current)
  want = set(desired)
  return MembershipDelta(to_add=sorted(want - cur), to_remove=sorted(cur - want))


async def unknown_user_ids(db: AsyncSession, user_ids: list[str]) -> list[str]:
  wanted = set(user_ids)
  if not wanted:
    return []
  res = await db.execute(select(User.id).where(User.id.in_(wanted)))
  found = set(res.scalars().all())
  return sorted(wanted - found)


async def current_member_ids(db: AsyncSession, project_id: str) -> set[str]:
  res = await db.execute(select(ProjectMember.user_id).where(ProjectMember.project_id == project_id))
  return set(res.scalars().all())


async def reconcile_members(db: AsyncSession, *, project_id: str, desired: list[str], actor_id: str | None) -> MembershipDelta:
  """
  Bring a project's member set to `desired` inside the caller's transaction.

  A removed member is first cleared as assignee from every task of the project,
  then their membership row is deleted. Nothing is committed here.
  """
  delta = compute_delta(await current_member_ids(db, project_id), desired)

  for uid in delta.to_add:
    db.add(ProjectMember(project_id=project_id, user_id=uid))

  for uid in delta.to_remove:
    tres = await db.execute(select(Task).where(Task.project_id == project_id, Task.assignee_id == uid))
    for t in tres.scalars().all():
      before = task_snapshot(t)
      t.assignee_id = None
      t.updated_at = utcnow()
      await write_history(
        db,
        task_id=t.id,
        task_title=t.title,
        action="updated",
        author_id=actor_id,
        old_value=before,
        new_value={"assignee_id": {"from": uid, "to": None}},
      )
      delta.unassigned_task_ids.append(t.id)
    await db.flush()
    await db.execute(delete(ProjectMember).where(ProjectMember.project_id == project_id, ProjectMember.user_id == uid))

  if not delta.empty:
    log.info(
      "Project %s membership: +%d -%d (%d tasks unassigned)",
      project_id,
      len(delta.to_add),
      len(delta.to_remove),
      len(delta.unassigned_task_ids),
    )
  return delta
