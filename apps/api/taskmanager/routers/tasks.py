from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Response, status
from sqlalchemy import delete, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import aliased

from taskmanager.audit import write_history
from taskmanager.deps import Principal, get_current_user, get_db
from taskmanager.history import NULLABLE_TASK_FIELDS, UPDATABLE_TASK_FIELDS, diff_fields, task_snapshot
from taskmanager.models import Comment, HistoryEntry, Priority, Project, ProjectMember, Status, Task, TaskType, User, new_id, parse_uuid, utcnow
from taskmanager.realtime import TASK_STATUS_CHANGED, manager
from taskmanager.schemas import (
  CommentIn,
  CommentOut,
  CreatedOut,
  HistoryOut,
  TaskCreateIn,
  TaskDetailOut,
  TaskOut,
  TaskUpdateIn,
)

log = logging.getLogger(__name__)

router = APIRouter(tags=["tasks"])

Author = aliased(User)
Assignee = aliased(User)


def _task_select():
  return (
    select(
      Task,
      Status.name.label("status_name"),
      Priority.name.label("priority_name"),
      TaskType.name.label("type_name"),
      Project.name.label("project_name"),
      Author.name.label("author_name"),
      Assignee.name.label("assignee_name"),
    )
    .join(Status, Status.id == Task.status_id)
    .join(Priority, Priority.id == Task.priority_id)
    .outerjoin(TaskType, TaskType.id == Task.type_id)
    .outerjoin(Project, Project.id == Task.project_id)
    .outerjoin(Author, Author.id == Task.author_id)
    .outerjoin(Assignee, Assignee.id == Task.assignee_id)
  )


def _task_out(row: Any) -> TaskOut:
  t: Task = row[0]
  return TaskOut(
    id=t.id,
    title=t.title,
    description=t.description,
    status_id=t.status_id,
    priority_id=t.priority_id,
    type_id=t.type_id,
    project_id=t.project_id,
    author_id=t.author_id,
    assignee_id=t.assignee_id,
    parent_id=t.parent_id,
    start_date=t.start_date,
    due_date=t.due_date,
    spent_minutes=t.spent_minutes,
    estimated_minutes=t.estimated_minutes,
    created_at=t.created_at,
    updated_at=t.updated_at,
    status_name=row.status_name,
    priority_name=row.priority_name,
    type_name=row.type_name,
    project_name=row.project_name,
    author_name=row.author_name,
    assignee_name=row.assignee_name,
  )


def _task_not_found() -> HTTPException:
  return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Task not found")


async def _load_task_out(db: AsyncSession, task_id: str) -> TaskOut:
  row = None
  if parse_uuid(task_id):
    row = (await db.execute(_task_select().where(Task.id == task_id))).first()
  if not row:
    raise _task_not_found()
  return _task_out(row)


async def _get_task_or_404(db: AsyncSession, task_id: str) -> Task:
  t = None
  if parse_uuid(task_id):
    t = (await db.execute(select(Task).where(Task.id == task_id))).scalar_one_or_none()
  if not t:
    raise _task_not_found()
  return t


def _bad_request(detail: str) -> HTTPException:
  return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=detail)


async def _exists(db: AsyncSession, column, value: Any) -> bool:
  res = await db.execute(select(column).where(column == value))
  return res.first() is not None


async def _assert_parent_allowed(db: AsyncSession, *, task_id: str | None, parent_id: str) -> None:
  if task_id and parent_id == task_id:
    raise _bad_request("A task cannot be its own parent")
  if not await _exists(db, Task.id, parent_id):
    raise _bad_request("Invalid parent_id")
  if not task_id:
    return
  # Walk up from the new parent; meeting the task again means a cycle.
  seen: set[str] = set()
  cur: str | None = parent_id
  while cur and cur not in seen:
    if cur == task_id:
      raise _bad_request("parent_id would create a cycle")
    seen.add(cur)
    res = await db.execute(select(Task.parent_id).where(Task.id == cur))
    cur = res.scalar_one_or_none()


async def _validate_refs(db: AsyncSession, values: dict[str, Any], touched: set[str], *, task_id: str | None = None) -> None:
  """
  Check the references of a task's effective field values.

  `values` holds the values the task will have; only rules whose inputs are in
  `touched` are evaluated, so an update does not re-litigate untouched fields.
  """
  project_id = values.get("project_id")

  if "project_id" in touched and project_id is not None and not await _exists(db, Project.id, project_id):
    raise _bad_request("Invalid project_id")

  if touched & {"status_id", "project_id"}:
    sres = await db.execute(select(Status).where(Status.id == values.get("status_id")))
    st = sres.scalar_one_or_none()
    if not st:
      raise _bad_request("Invalid status_id")
    if st.project_id is not None and st.project_id != project_id:
      raise _bad_request("Status does not belong to the task's project")

  if "priority_id" in touched and not await _exists(db, Priority.id, values.get("priority_id")):
    raise _bad_request("Invalid priority_id")

  if "type_id" in touched and values.get("type_id") is not None and not await _exists(db, TaskType.id, values["type_id"]):
    raise _bad_request("Invalid type_id")

  assignee_id = values.get("assignee_id")
  if touched & {"assignee_id", "project_id"} and assignee_id is not None:
    if not await _exists(db, User.id, assignee_id):
      raise _bad_request("Invalid assignee_id")
    if project_id is not None:
      mres = await db.execute(
        select(ProjectMember.user_id).where(ProjectMember.project_id == project_id, ProjectMember.user_id == assignee_id)
      )
      if mres.first() is None:
        raise _bad_request("Assignee is not a member of the project")

  if "parent_id" in touched and values.get("parent_id") is not None:
    await _assert_parent_allowed(db, task_id=task_id, parent_id=values["parent_id"])


async def _default_project_id(db: AsyncSession) -> str | None:
  res = await db.execute(select(Project.id).order_by(Project.created_at.asc(), Project.name.asc()).limit(1))
  return res.scalar_one_or_none()


@router.get("/tasks", response_model=list[TaskOut])
async def list_tasks(
  status_id: int | None = None,
  priority_id: int | None = None,
  project_id: str | None = None,
  assignee_id: str | None = None,
  type_id: int | None = None,
  _: Principal = Depends(get_current_user),
  db: AsyncSession = Depends(get_db),
) -> list[TaskOut]:
  q = _task_select()
  if status_id is not None:
    q = q.where(Task.status_id == status_id)
  if priority_id is not None:
    q = q.where(Task.priority_id == priority_id)
  if project_id:
    if not parse_uuid(project_id):
      raise _bad_request("Invalid project_id")
    q = q.where(Task.project_id == project_id)
  if assignee_id:
    if not parse_uuid(assignee_id):
      raise _bad_request("Invalid assignee_id")
    q = q.where(Task.assignee_id == assignee_id)
  if type_id is not None:
    q = q.where(Task.type_id == type_id)
  res = await db.execute(q.order_by(Task.updated_at.desc()))
  return [_task_out(row) for row in res.all()]


@router.get("/tasks/{task_id}", response_model=TaskDetailOut)
async def get_task(task_id: str, _: Principal = Depends(get_current_user), db: AsyncSession = Depends(get_db)) -> TaskDetailOut:
  task = await _load_task_out(db, task_id)

  cres = await db.execute(
    select(Comment, User.name)
    .outerjoin(User, User.id == Comment.author_id)
    .where(Comment.task_id == task_id)
    .order_by(Comment.created_at.asc())
  )
  comments = [
    CommentOut(
      id=c.id,
      task_id=c.task_id,
      author_id=c.author_id,
      author_name=author_name,
      body=c.body,
      created_at=c.created_at,
      updated_at=c.updated_at,
    )
    for c, author_name in cres.all()
  ]

  hres = await db.execute(
    select(HistoryEntry, User.name)
    .outerjoin(User, User.id == HistoryEntry.author_id)
    .where(HistoryEntry.task_id == task_id)
    .order_by(HistoryEntry.created_at.asc())
  )
  history = [_history_out(h, author_name) for h, author_name in hres.all()]
  return TaskDetailOut(task=task, comments=comments, history=history)


def _history_out(h: HistoryEntry, author_name: str | None) -> HistoryOut:
  return HistoryOut(
    id=h.id,
    task_id=h.task_id,
    task_title=h.task_title,
    action=h.action,
    old_value=h.old_value,
    new_value=h.new_value,
    author_id=h.author_id,
    author_name=author_name,
    created_at=h.created_at,
  )


@router.get("/tasks/{task_id}/history", response_model=list[HistoryOut])
async def get_task_history(task_id: str, _: Principal = Depends(get_current_user), db: AsyncSession = Depends(get_db)) -> list[HistoryOut]:
  if not parse_uuid(task_id):
    raise _task_not_found()
  # Readable after the task itself is gone.
  res = await db.execute(
    select(HistoryEntry, User.name)
    .outerjoin(User, User.id == HistoryEntry.author_id)
    .where(HistoryEntry.task_id == task_id)
    .order_by(HistoryEntry.created_at.asc())
  )
  rows = res.all()
  if not rows:
    raise _task_not_found()
  return [_history_out(h, author_name) for h, author_name in rows]


@router.post("/tasks", response_model=CreatedOut, status_code=status.HTTP_201_CREATED)
async def create_task(payload: TaskCreateIn, user: Principal = Depends(get_current_user), db: AsyncSession = Depends(get_db)) -> CreatedOut:
  title = payload.title.strip()
  if not title:
    raise _bad_request("title is required")

  fields_set = payload.model_fields_set
  project_id = payload.project_id if "project_id" in fields_set else await _default_project_id(db)
  values = {
    "status_id": payload.status_id,
    "priority_id": payload.priority_id,
    "type_id": payload.type_id,
    "project_id": project_id,
    "assignee_id": payload.assignee_id,
    "parent_id": payload.parent_id,
  }
  await _validate_refs(db, values, set(values))

  t = Task(
    id=new_id(),
    title=title,
    description=payload.description,
    author_id=user.id,
    spent_minutes=payload.spent_minutes,
    estimated_minutes=payload.estimated_minutes,
    **values,
  )
  if payload.start_date is not None:
    t.start_date = payload.start_date
  if payload.due_date is not None:
    t.due_date = payload.due_date
  db.add(t)
  await write_history(
    db,
    task_id=t.id,
    task_title=t.title,
    action="created",
    author_id=user.id,
    new_value={"title": title, **values},
  )
  await db.commit()
  log.info("Task %s created by %s", t.id, user.id)
  return CreatedOut(id=t.id)


@router.patch("/tasks/{task_id}", response_model=TaskOut)
async def update_task(
  task_id: str,
  payload: TaskUpdateIn,
  user: Principal = Depends(get_current_user),
  db: AsyncSession = Depends(get_db),
) -> TaskOut:
  t = await _get_task_or_404(db, task_id)
  if not user.can_modify(t.author_id):
    raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Forbidden")

  fields = [name for name in UPDATABLE_TASK_FIELDS if name in payload.model_fields_set]
  if not fields:
    raise _bad_request("No fields")
  changes = {name: getattr(payload, name) for name in fields}
  for name, val in changes.items():
    if val is None and name not in NULLABLE_TASK_FIELDS:
      raise _bad_request(f"{name} cannot be null")
  if "title" in changes:
    changes["title"] = changes["title"].strip()
    if not changes["title"]:
      raise _bad_request("title is required")

  before = task_snapshot(t)
  effective = {**{name: getattr(t, name) for name in UPDATABLE_TASK_FIELDS}, **changes}
  await _validate_refs(db, effective, set(fields), task_id=t.id)

  for name, val in changes.items():
    setattr(t, name, val)
  t.updated_at = utcnow()

  diffs = diff_fields(before, task_snapshot(t), fields)
  await write_history(
    db,
    task_id=t.id,
    task_title=t.title,
    action="updated",
    author_id=user.id,
    old_value=before,
    new_value=diffs,
  )
  await db.commit()

  if "status_id" in diffs:
    await manager.broadcast(
      TASK_STATUS_CHANGED,
      {
        "taskId": t.id,
        "from": diffs["status_id"]["from"],
        "to": diffs["status_id"]["to"],
        "author": user.id,
        "changed_at": t.updated_at,
      },
    )
  return await _load_task_out(db, t.id)


@router.delete("/tasks/{task_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_task(task_id: str, user: Principal = Depends(get_current_user), db: AsyncSession = Depends(get_db)) -> Response:
  t = await _get_task_or_404(db, task_id)
  if not user.can_modify(t.author_id):
    raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Forbidden")

  await write_history(
    db,
    task_id=t.id,
    task_title=t.title,
    action="deleted",
    author_id=user.id,
    old_value=task_snapshot(t),
  )
  await db.flush()
  await db.execute(update(Task).where(Task.parent_id == task_id).values(parent_id=None))
  await db.execute(delete(Comment).where(Comment.task_id == task_id))
  await db.execute(delete(Task).where(Task.id == task_id))
  await db.commit()
  log.info("Task %s deleted by %s", task_id, user.id)
  return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/tasks/{task_id}/comments", response_model=CreatedOut, status_code=status.HTTP_201_CREATED)
async def add_comment(
  task_id: str,
  payload: CommentIn,
  user: Principal = Depends(get_current_user),
  db: AsyncSession = Depends(get_db),
) -> CreatedOut:
  t = await _get_task_or_404(db, task_id)
  body = payload.body.strip()
  if not body:
    raise _bad_request("body is required")
  c = Comment(id=new_id(), task_id=t.id, author_id=user.id, body=body)
  db.add(c)
  await write_history(
    db,
    task_id=t.id,
    task_title=t.title,
    action="comment_added",
    author_id=user.id,
    new_value={"body": body},
  )
  await db.commit()
  return CreatedOut(id=c.id)


async def _get_comment_or_404(db: AsyncSession, task_id: str, comment_id: str) -> tuple[Task, Comment]:
  t = await _get_task_or_404(db, task_id)
  c = None
  if parse_uuid(comment_id):
    res = await db.execute(select(Comment).where(Comment.id == comment_id, Comment.task_id == t.id))
    c = res.scalar_one_or_none()
  if not c:
    raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Comment not found")
  return t, c


@router.patch("/tasks/{task_id}/comments/{comment_id}", response_model=CommentOut)
async def update_comment(
  task_id: str,
  comment_id: str,
  payload: CommentIn,
  user: Principal = Depends(get_current_user),
  db: AsyncSession = Depends(get_db),
) -> CommentOut:
  t, c = await _get_comment_or_404(db, task_id, comment_id)
  if not user.can_modify(c.author_id):
    raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Forbidden")
  body = payload.body.strip()
  if not body:
    raise _bad_request("body is required")

  old_body = c.body
  c.body = body
  c.updated_at = utcnow()
  await write_history(
    db,
    task_id=t.id,
    task_title=t.title,
    action="comment_updated",
    author_id=user.id,
    old_value={"comment_id": c.id, "body": old_body},
    new_value={"comment_id": c.id, "body": body},
  )
  await db.commit()

  ares = await db.execute(select(User.name).where(User.id == c.author_id))
  return CommentOut(
    id=c.id,
    task_id=c.task_id,
    author_id=c.author_id,
    author_name=ares.scalar_one_or_none(),
    body=c.body,
    created_at=c.created_at,
    updated_at=c.updated_at,
  )


@router.delete("/tasks/{task_id}/comments/{comment_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_comment(
  task_id: str,
  comment_id: str,
  user: Principal = Depends(get_current_user),
  db: AsyncSession = Depends(get_db),
) -> Response:
  t, c = await _get_comment_or_404(db, task_id, comment_id)
  if not user.can_modify(c.author_id):
    raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Forbidden")
  await write_history(
    db,
    task_id=t.id,
    task_title=t.title,
    action="comment_deleted",
    author_id=user.id,
    old_value={"comment_id": c.id, "body": c.body},
  )
  await db.execute(delete(Comment).where(Comment.id == c.id))
  await db.commit()
  return Response(status_code=status.HTTP_204_NO_CONTENT)
