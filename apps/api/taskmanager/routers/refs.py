from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Response, status
from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from taskmanager.audit import write_audit
from taskmanager.deps import Principal, get_current_user, get_db, require_admin
from taskmanager.membership import reconcile_members, unknown_user_ids
from taskmanager.models import Priority, Project, ProjectMember, Role, Status, Task, TaskType, User, new_id, parse_uuid
from taskmanager.schemas import (
  MemberOut,
  PriorityOut,
  ProjectCreateIn,
  ProjectOut,
  ProjectUpdateIn,
  StatusCreateIn,
  StatusOut,
  StatusUpdateIn,
  TaskTypeOut,
  UserRefOut,
)

router = APIRouter(prefix="/refs", tags=["refs"])


def _project_out(p: Project, member_ids: list[str]) -> ProjectOut:
  return ProjectOut(id=p.id, name=p.name, description=p.description, created_at=p.created_at, member_ids=sorted(member_ids))


def _status_out(s: Status) -> StatusOut:
  return StatusOut(id=s.id, name=s.name, position=s.position, project_id=s.project_id)


async def _get_project_or_404(db: AsyncSession, project_id: str) -> Project:
  p = None
  if parse_uuid(project_id):
    p = (await db.execute(select(Project).where(Project.id == project_id))).scalar_one_or_none()
  if not p:
    raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Project not found")
  return p


async def _member_ids(db: AsyncSession, project_id: str) -> list[str]:
  res = await db.execute(select(ProjectMember.user_id).where(ProjectMember.project_id == project_id))
  return list(res.scalars().all())


async def _ensure_project_name_free(db: AsyncSession, name: str, *, except_id: str | None = None) -> None:
  q = select(Project.id).where(Project.name == name)
  if except_id:
    q = q.where(Project.id != except_id)
  res = await db.execute(q)
  if res.scalar_one_or_none():
    raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Project exists")


async def _ensure_members_exist(db: AsyncSession, member_ids: list[str]) -> None:
  missing = await unknown_user_ids(db, member_ids)
  if missing:
    raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=f"Unknown member ids: {', '.join(missing)}")


@router.get("/projects", response_model=list[ProjectOut])
async def list_projects(_: Principal = Depends(get_current_user), db: AsyncSession = Depends(get_db)) -> list[ProjectOut]:
  res = await db.execute(select(Project).order_by(Project.name.asc()))
  projects = res.scalars().all()
  mres = await db.execute(select(ProjectMember.project_id, ProjectMember.user_id))
  members: dict[str, list[str]] = {}
  for project_id, user_id in mres.all():
    members.setdefault(project_id, []).append(user_id)
  return [_project_out(p, members.get(p.id, [])) for p in projects]


@router.get("/projects/{project_id}", response_model=ProjectOut)
async def get_project(project_id: str, _: Principal = Depends(get_current_user), db: AsyncSession = Depends(get_db)) -> ProjectOut:
  p = await _get_project_or_404(db, project_id)
  return _project_out(p, await _member_ids(db, p.id))


@router.get("/projects/{project_id}/members", response_model=list[MemberOut])
async def list_project_members(project_id: str, _: Principal = Depends(get_current_user), db: AsyncSession = Depends(get_db)) -> list[MemberOut]:
  await _get_project_or_404(db, project_id)
  res = await db.execute(
    select(User)
    .join(ProjectMember, ProjectMember.user_id == User.id)
    .where(ProjectMember.project_id == project_id)
    .order_by(User.name.asc())
  )
  return [MemberOut(id=u.id, name=u.name, email=u.email) for u in res.scalars().all()]


@router.post("/projects", response_model=ProjectOut, status_code=status.HTTP_201_CREATED)
async def create_project(payload: ProjectCreateIn, actor: Principal = Depends(require_admin), db: AsyncSession = Depends(get_db)) -> ProjectOut:
  name = payload.name.strip()
  if not name:
    raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="name is required")
  await _ensure_project_name_free(db, name)
  member_ids = sorted(set(payload.member_ids))
  await _ensure_members_exist(db, member_ids)

  p = Project(id=new_id(), name=name, description=payload.description)
  db.add(p)
  await db.flush()
  for uid in member_ids:
    db.add(ProjectMember(project_id=p.id, user_id=uid))
  await write_audit(
    db,
    event_type="project.created",
    entity_type="Project",
    entity_id=p.id,
    actor_id=actor.id,
    payload={"name": name, "memberIds": member_ids},
  )
  await db.commit()
  return _project_out(p, member_ids)


@router.patch("/projects/{project_id}", response_model=ProjectOut)
async def update_project(
  project_id: str,
  payload: ProjectUpdateIn,
  actor: Principal = Depends(require_admin),
  db: AsyncSession = Depends(get_db),
) -> ProjectOut:
  p = await _get_project_or_404(db, project_id)
  fields_set = payload.model_fields_set
  changed: dict = {}

  if payload.name is not None:
    name = payload.name.strip()
    if not name:
      raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="name is required")
    await _ensure_project_name_free(db, name, except_id=p.id)
    if name != p.name:
      changed["name"] = name
    p.name = name
  if "description" in fields_set:
    if payload.description != p.description:
      changed["description"] = payload.description
    p.description = payload.description

  if payload.member_ids is not None:
    desired = sorted(set(payload.member_ids))
    await _ensure_members_exist(db, desired)
    delta = await reconcile_members(db, project_id=p.id, desired=desired, actor_id=actor.id)
    if not delta.empty:
      changed["membersAdded"] = delta.to_add
      changed["membersRemoved"] = delta.to_remove
      changed["unassignedTaskIds"] = delta.unassigned_task_ids

  await write_audit(
    db,
    event_type="project.updated",
    entity_type="Project",
    entity_id=p.id,
    actor_id=actor.id,
    payload={"changed": sorted(changed.keys()), "fields": changed},
  )
  await db.commit()
  return _project_out(p, await _member_ids(db, p.id))


@router.delete("/projects/{project_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_project(project_id: str, actor: Principal = Depends(require_admin), db: AsyncSession = Depends(get_db)) -> Response:
  p = await _get_project_or_404(db, project_id)
  tres = await db.execute(select(func.count()).select_from(Task).where(Task.project_id == project_id))
  if (tres.scalar_one() or 0) > 0:
    raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Project has tasks")
  await db.execute(delete(Status).where(Status.project_id == project_id))
  await db.execute(delete(ProjectMember).where(ProjectMember.project_id == project_id))
  await db.execute(delete(Project).where(Project.id == project_id))
  await write_audit(db, event_type="project.deleted", entity_type="Project", entity_id=project_id, actor_id=actor.id, payload={"name": p.name})
  await db.commit()
  return Response(status_code=status.HTTP_204_NO_CONTENT)


async def _get_status_or_404(db: AsyncSession, status_id: int) -> Status:
  res = await db.execute(select(Status).where(Status.id == status_id))
  s = res.scalar_one_or_none()
  if not s:
    raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Status not found")
  return s


def _in_scope(project_id: str | None):
  # SQL NULL never compares equal, so the global scope needs IS NULL.
  return Status.project_id.is_(None) if project_id is None else Status.project_id == project_id


async def _ensure_status_name_free(db: AsyncSession, name: str, project_id: str | None, *, except_id: int | None = None) -> None:
  q = select(Status.id).where(Status.name == name, _in_scope(project_id))
  if except_id is not None:
    q = q.where(Status.id != except_id)
  res = await db.execute(q)
  if res.first() is not None:
    raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Status exists")


@router.get("/statuses", response_model=list[StatusOut])
async def list_statuses(
  project_id: str | None = None,
  _: Principal = Depends(get_current_user),
  db: AsyncSession = Depends(get_db),
) -> list[StatusOut]:
  order = (Status.position.asc(), Status.id.asc())
  if project_id and parse_uuid(project_id):
    res = await db.execute(select(Status).where(Status.project_id == project_id).order_by(*order))
    scoped = res.scalars().all()
    if scoped:
      return [_status_out(s) for s in scoped]
  res = await db.execute(select(Status).where(Status.project_id.is_(None)).order_by(*order))
  return [_status_out(s) for s in res.scalars().all()]


@router.post("/statuses", response_model=StatusOut, status_code=status.HTTP_201_CREATED)
async def create_status(payload: StatusCreateIn, actor: Principal = Depends(require_admin), db: AsyncSession = Depends(get_db)) -> StatusOut:
  name = payload.name.strip()
  if not name:
    raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="name is required")
  if payload.project_id is not None:
    await _get_project_or_404(db, payload.project_id)
  await _ensure_status_name_free(db, name, payload.project_id)

  position = payload.position
  if position is None:
    pres = await db.execute(select(func.max(Status.position)).where(_in_scope(payload.project_id)))
    max_pos = pres.scalar_one()
    position = (max_pos + 1) if max_pos is not None else 1

  s = Status(name=name, position=position, project_id=payload.project_id)
  db.add(s)
  await db.flush()
  await write_audit(
    db,
    event_type="status.created",
    entity_type="Status",
    entity_id=s.id,
    actor_id=actor.id,
    payload={"name": name, "projectId": s.project_id, "position": position},
  )
  await db.commit()
  return _status_out(s)


@router.patch("/statuses/{status_id}", response_model=StatusOut)
async def update_status(
  status_id: int,
  payload: StatusUpdateIn,
  actor: Principal = Depends(require_admin),
  db: AsyncSession = Depends(get_db),
) -> StatusOut:
  s = await _get_status_or_404(db, status_id)
  if payload.name is not None:
    name = payload.name.strip()
    if not name:
      raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="name is required")
    await _ensure_status_name_free(db, name, s.project_id, except_id=s.id)
    s.name = name
  if payload.position is not None:
    s.position = payload.position
  await write_audit(
    db,
    event_type="status.updated",
    entity_type="Status",
    entity_id=s.id,
    actor_id=actor.id,
    payload={"name": s.name, "position": s.position},
  )
  await db.commit()
  return _status_out(s)


@router.delete("/statuses/{status_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_status(status_id: int, actor: Principal = Depends(require_admin), db: AsyncSession = Depends(get_db)) -> Response:
  s = await _get_status_or_404(db, status_id)
  tres = await db.execute(select(func.count()).select_from(Task).where(Task.status_id == status_id))
  if (tres.scalar_one() or 0) > 0:
    raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Status is in use")
  await db.execute(delete(Status).where(Status.id == status_id))
  await write_audit(db, event_type="status.deleted", entity_type="Status", entity_id=status_id, actor_id=actor.id, payload={"name": s.name})
  await db.commit()
  return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/priorities", response_model=list[PriorityOut])
async def list_priorities(_: Principal = Depends(get_current_user), db: AsyncSession = Depends(get_db)) -> list[PriorityOut]:
  res = await db.execute(select(Priority).order_by(Priority.weight.asc()))
  return [PriorityOut(id=p.id, name=p.name, weight=p.weight) for p in res.scalars().all()]


@router.get("/task-types", response_model=list[TaskTypeOut])
async def list_task_types(_: Principal = Depends(get_current_user), db: AsyncSession = Depends(get_db)) -> list[TaskTypeOut]:
  res = await db.execute(select(TaskType).order_by(TaskType.name.asc()))
  return [TaskTypeOut(id=t.id, name=t.name) for t in res.scalars().all()]


@router.get("/users", response_model=list[UserRefOut])
async def list_user_refs(_: Principal = Depends(get_current_user), db: AsyncSession = Depends(get_db)) -> list[UserRefOut]:
  res = await db.execute(select(User, Role.name).join(Role, Role.id == User.role_id).order_by(User.name.asc()))
  return [UserRefOut(id=u.id, name=u.name, email=u.email, role=role_name) for u, role_name in res.all()]
