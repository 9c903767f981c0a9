from __future__ import annotations

import asyncio
import logging
import os
import secrets

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from taskmanager.audit import write_history
from taskmanager.config import settings
from taskmanager.db import SessionLocal
from taskmanager.logging_setup import setup_logging
from taskmanager.models import Priority, Project, ProjectMember, Role, Status, Task, TaskType, User, new_id
from taskmanager.security import hash_password

log = logging.getLogger(__name__)

ROLES = (("admin", True), ("user", False))
PRIORITIES = (("Low", 1), ("Medium", 2), ("High", 3))
TASK_TYPES = ("Bug", "Feature", "Epic")
GLOBAL_STATUSES = ("To Do", "In Progress", "Done")
DEFAULT_PROJECT = "General"
DEMO_STATUSES = ("Backlog", "In Progress", "Review", "Done")


def _bootstrap_password(env_key: str) -> tuple[str, bool]:
  configured = (os.getenv(env_key) or "").strip()
  if configured:
    return configured, False
  return secrets.token_urlsafe(14), True


def _flag(env_key: str) -> bool:
  return os.getenv(env_key, "").strip().lower() in ("1", "true", "yes", "y")


async def _ensure_roles(db: AsyncSession) -> dict[str, Role]:
  out: dict[str, Role] = {}
  for name, is_admin in ROLES:
    res = await db.execute(select(Role).where(Role.name == name))
    r = res.scalar_one_or_none()
    if not r:
      r = Role(name=name, is_admin=is_admin)
      db.add(r)
      await db.flush()
    out[name] = r
  return out


async def _ensure_user(db: AsyncSession, *, email: str, name: str, role: Role, password: str) -> tuple[User, bool]:
  res = await db.execute(select(User).where(User.email == email))
  u = res.scalar_one_or_none()
  if u:
    return u, False
  u = User(id=new_id(), email=email, name=name, role_id=role.id, password_hash=hash_password(password))
  db.add(u)
  await db.flush()
  return u, True


async def seed_reference_data(db: AsyncSession) -> list[str]:
  """
  Insert roles, priorities, task types, the global status set, the default
  project and the bootstrap administrator when missing. Safe to re-run.

  Returns `email=password` lines for accounts created by this call.
  """
  boot_lines: list[str] = []
  roles = await _ensure_roles(db)

  for name, weight in PRIORITIES:
    res = await db.execute(select(Priority.id).where(Priority.name == name))
    if res.scalar_one_or_none() is None:
      db.add(Priority(name=name, weight=weight))

  for name in TASK_TYPES:
    res = await db.execute(select(TaskType.id).where(TaskType.name == name))
    if res.scalar_one_or_none() is None:
      db.add(TaskType(name=name))

  for idx, name in enumerate(GLOBAL_STATUSES, start=1):
    res = await db.execute(select(Status.id).where(Status.name == name, Status.project_id.is_(None)))
    if res.scalar_one_or_none() is None:
      db.add(Status(name=name, position=idx, project_id=None))

  res = await db.execute(select(Project).where(Project.name == DEFAULT_PROJECT))
  project = res.scalar_one_or_none()
  if not project:
    project = Project(id=new_id(), name=DEFAULT_PROJECT, description="Default project")
    db.add(project)
    await db.flush()

  admin_email = settings.bootstrap_admin_email.strip().lower()
  admin_password, generated = _bootstrap_password("SEED_ADMIN_PASSWORD")
  admin, created = await _ensure_user(db, email=admin_email, name="Administrator", role=roles["admin"], password=admin_password)
  if created:
    boot_lines.append(f"{admin_email}={admin_password} (generated={str(generated).lower()})")
    db.add(ProjectMember(project_id=project.id, user_id=admin.id))

  if _flag("SEED_DEMO_DATA"):
    boot_lines.extend(await _seed_demo(db, project=project, admin=admin, user_role=roles["user"]))

  await db.flush()
  return boot_lines


async def _seed_demo(db: AsyncSession, *, project: Project, admin: User, user_role: Role) -> list[str]:
  lines: list[str] = []
  password, generated = _bootstrap_password("SEED_USER_PASSWORD")
  member, created = await _ensure_user(db, email="user@local", name="User", role=user_role, password=password)
  if created:
    lines.append(f"user@local={password} (generated={str(generated).lower()})")
    db.add(ProjectMember(project_id=project.id, user_id=member.id))

  sres = await db.execute(select(Status).where(Status.project_id == project.id))
  if not sres.scalars().first():
    for idx, name in enumerate(DEMO_STATUSES, start=1):
      db.add(Status(name=name, position=idx, project_id=project.id))
    await db.flush()

  tres = await db.execute(select(Task.id).where(Task.project_id == project.id).limit(1))
  if tres.scalar_one_or_none() is None:
    backlog = (await db.execute(select(Status).where(Status.project_id == project.id, Status.name == "Backlog"))).scalar_one()
    medium = (await db.execute(select(Priority).where(Priority.name == "Medium"))).scalar_one()
    feature = (await db.execute(select(TaskType).where(TaskType.name == "Feature"))).scalar_one()
    values = {
      "status_id": backlog.id,
      "priority_id": medium.id,
      "type_id": feature.id,
      "project_id": project.id,
      "assignee_id": member.id,
      "parent_id": None,
    }
    task = Task(id=new_id(), title="Welcome", description="A sample task. Change its status to see the board update.", author_id=admin.id, **values)
    db.add(task)
    await write_history(db, task_id=task.id, task_title=task.title, action="created", author_id=admin.id, new_value={"title": task.title, **values})
  return lines


async def seed() -> None:
  async with SessionLocal() as db:
    boot_lines = await seed_reference_data(db)
    await db.commit()
  if boot_lines:
    log.info("Seed created %d account(s)", len(boot_lines))
    for ln in boot_lines:
      print(f"  {ln}")
  else:
    log.info("Seed found existing data; nothing to create")


def main() -> None:
  setup_logging()
  asyncio.run(seed())


if __name__ == "__main__":
  main()
