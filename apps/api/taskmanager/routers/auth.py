from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Response, status
from sqlalchemy import delete, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from taskmanager.audit import write_audit
from taskmanager.config import settings
from taskmanager.deps import Principal, get_current_user, get_db, require_admin
from taskmanager.login_throttle import LoginThrottle, guard_login_address, guard_login_email, login_throttle
from taskmanager.models import AuditEvent, Comment, HistoryEntry, ProjectMember, Role, Task, User, parse_uuid
from taskmanager.schemas import (
  LoginIn,
  MeUpdateIn,
  RegisterIn,
  RoleIn,
  RoleOut,
  RoleUpdateIn,
  TokenOut,
  UserCreateIn,
  UserOut,
  UserUpdateIn,
)
from taskmanager.security import create_access_token, hash_password, verify_password

router = APIRouter(prefix="/auth", tags=["auth"])


def _normalize_email(email: str | None) -> str:
  return (email or "").strip().lower()


def _validate_email(email: str) -> None:
  if "@" not in email or email.startswith("@") or email.endswith("@"):
    raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid email")


def _required_name(value: str) -> str:
  name = value.strip()
  if not name:
    raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="name is required")
  return name


def _is_bootstrap_admin(u: User) -> bool:
  return u.email == _normalize_email(settings.bootstrap_admin_email)


def _user_out(u: User, r: Role) -> UserOut:
  return UserOut(id=u.id, email=u.email, name=u.name, role=r.name, is_admin=bool(r.is_admin), created_at=u.created_at)


def _role_out(r: Role) -> RoleOut:
  return RoleOut(id=r.id, name=r.name, is_admin=bool(r.is_admin))


async def _load_user(db: AsyncSession, user_id: str) -> tuple[User, Role]:
  row = None
  if parse_uuid(user_id):
    row = (await db.execute(select(User, Role).join(Role, Role.id == User.role_id).where(User.id == user_id))).first()
  if not row:
    raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")
  return row[0], row[1]


async def _role_by_name(db: AsyncSession, name: str) -> Role | None:
  res = await db.execute(select(Role).where(Role.name == name))
  return res.scalar_one_or_none()


async def _ensure_email_free(db: AsyncSession, email: str, *, except_user_id: str | None = None) -> None:
  q = select(User.id).where(User.email == email)
  if except_user_id:
    q = q.where(User.id != except_user_id)
  exists = await db.execute(q)
  if exists.scalar_one_or_none():
    raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Email exists")


@router.post("/register", response_model=TokenOut)
async def register(payload: RegisterIn, db: AsyncSession = Depends(get_db)) -> TokenOut:
  email = _normalize_email(payload.email)
  name = payload.name.strip()
  if not email or not payload.password or not name:
    raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Missing fields")
  _validate_email(email)
  await _ensure_email_free(db, email)

  role = await _role_by_name(db, settings.default_role_name)
  if not role:
    raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Default role is not configured")

  u = User(email=email, name=name, password_hash=hash_password(payload.password), role_id=role.id)
  db.add(u)
  await db.flush()
  await write_audit(db, event_type="auth.registered", entity_type="User", entity_id=u.id, actor_id=u.id, payload={"email": email})
  await db.commit()
  return TokenOut(token=create_access_token(user_id=u.id, email=u.email, role=role.name))


@router.post("/login", response_model=TokenOut)
async def login(payload: LoginIn, ip: str = Depends(guard_login_address), db: AsyncSession = Depends(get_db)) -> TokenOut:
  email = _normalize_email(payload.email)
  if email:
    guard_login_email(email)

  res = await db.execute(select(User, Role).join(Role, Role.id == User.role_id).where(User.email == email))
  row = res.first()
  if not row or not verify_password(payload.password, row[0].password_hash):
    login_throttle.record_failure(
      LoginThrottle.ip_key(ip),
      LoginThrottle.email_key(email),
      window_seconds=settings.login_failure_window_seconds,
    )
    await write_audit(db, event_type="auth.login.failed", entity_type="Auth", entity_id=None, payload={"email": email, "ip": ip})
    await db.commit()
    raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Bad credentials")
  u, r = row
  login_throttle.clear(LoginThrottle.email_key(email))
  return TokenOut(token=create_access_token(user_id=u.id, email=u.email, role=r.name))


@router.get("/me", response_model=UserOut)
async def me(user: Principal = Depends(get_current_user), db: AsyncSession = Depends(get_db)) -> UserOut:
  u, r = await _load_user(db, user.id)
  return _user_out(u, r)


@router.patch("/me", response_model=UserOut)
async def update_me(payload: MeUpdateIn, user: Principal = Depends(get_current_user), db: AsyncSession = Depends(get_db)) -> UserOut:
  fields_set = payload.model_fields_set
  if not fields_set & {"email", "name", "password"}:
    raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="No fields")
  u, r = await _load_user(db, user.id)

  if payload.email is not None:
    email = _normalize_email(payload.email)
    _validate_email(email)
    if _is_bootstrap_admin(u) and email != u.email:
      raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Bootstrap administrator email cannot change")
    await _ensure_email_free(db, email, except_user_id=u.id)
    u.email = email
  if payload.name is not None:
    u.name = _required_name(payload.name)
  if payload.password is not None:
    u.password_hash = hash_password(payload.password)

  await write_audit(
    db,
    event_type="user.updated",
    entity_type="User",
    entity_id=u.id,
    actor_id=user.id,
    payload={"changed": sorted(fields_set & {"email", "name", "password"})},
  )
  await db.commit()
  return _user_out(u, r)


@router.get("/users", response_model=list[UserOut])
async def list_users(_: Principal = Depends(require_admin), db: AsyncSession = Depends(get_db)) -> list[UserOut]:
  res = await db.execute(select(User, Role).join(Role, Role.id == User.role_id).order_by(User.created_at.asc()))
  return [_user_out(u, r) for u, r in res.all()]


@router.post("/users", response_model=UserOut, status_code=status.HTTP_201_CREATED)
async def create_user(payload: UserCreateIn, actor: Principal = Depends(require_admin), db: AsyncSession = Depends(get_db)) -> UserOut:
  email = _normalize_email(payload.email)
  name = payload.name.strip()
  if not email or not name:
    raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Missing fields")
  _validate_email(email)
  await _ensure_email_free(db, email)
  role = await _role_by_name(db, payload.role)
  if not role:
    raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Unknown role")

  u = User(email=email, name=name, password_hash=hash_password(payload.password), role_id=role.id)
  db.add(u)
  await db.flush()
  await write_audit(
    db, event_type="user.created", entity_type="User", entity_id=u.id, actor_id=actor.id, payload={"email": email, "role": role.name}
  )
  await db.commit()
  return _user_out(u, role)


@router.patch("/users/{user_id}", response_model=UserOut)
async def update_user(
  user_id: str,
  payload: UserUpdateIn,
  actor: Principal = Depends(require_admin),
  db: AsyncSession = Depends(get_db),
) -> UserOut:
  fields_set = payload.model_fields_set & {"email", "name", "password", "role"}
  if not fields_set:
    raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="No fields")
  u, r = await _load_user(db, user_id)

  if payload.role is not None and payload.role != r.name:
    role = await _role_by_name(db, payload.role)
    if not role:
      raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Unknown role")
    if _is_bootstrap_admin(u) and not role.is_admin:
      raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Bootstrap administrator must keep an admin role")
    u.role_id = role.id
    r = role
  if payload.email is not None:
    email = _normalize_email(payload.email)
    _validate_email(email)
    if _is_bootstrap_admin(u) and email != u.email:
      raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Bootstrap administrator email cannot change")
    await _ensure_email_free(db, email, except_user_id=u.id)
    u.email = email
  if payload.name is not None:
    u.name = _required_name(payload.name)
  if payload.password is not None:
    u.password_hash = hash_password(payload.password)

  await write_audit(
    db,
    event_type="user.updated",
    entity_type="User",
    entity_id=u.id,
    actor_id=actor.id,
    payload={"changed": sorted(fields_set), "role": r.name},
  )
  await db.commit()
  return _user_out(u, r)


@router.delete("/users/{user_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_user(
  user_id: str,
  reassign_to: str | None = None,
  actor: Principal = Depends(require_admin),
  db: AsyncSession = Depends(get_db),
) -> Response:
  u, _ = await _load_user(db, user_id)
  if actor.id == u.id:
    raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Cannot delete yourself")
  if _is_bootstrap_admin(u):
    raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Bootstrap administrator cannot be deleted")

  dest_id = parse_uuid(reassign_to) if reassign_to else actor.id
  if dest_id == u.id:
    raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="reassign_to must be a different user")
  dres = await db.execute(select(User.id).where(User.id == dest_id)) if dest_id else None
  if dres is None or not dres.scalar_one_or_none():
    raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid reassign_to user")

  # Authored rows cannot dangle; assignments and history authorship are cleared.
  await db.execute(update(Task).where(Task.author_id == u.id).values(author_id=dest_id))
  await db.execute(update(Comment).where(Comment.author_id == u.id).values(author_id=dest_id))
  await db.execute(update(Task).where(Task.assignee_id == u.id).values(assignee_id=None))
  await db.execute(update(HistoryEntry).where(HistoryEntry.author_id == u.id).values(author_id=None))
  await db.execute(update(AuditEvent).where(AuditEvent.actor_id == u.id).values(actor_id=None))
  await db.execute(delete(ProjectMember).where(ProjectMember.user_id == u.id))
  await db.execute(delete(User).where(User.id == u.id))
  await write_audit(
    db,
    event_type="user.deleted",
    entity_type="User",
    entity_id=u.id,
    actor_id=actor.id,
    payload={"email": u.email, "reassignedTo": dest_id},
  )
  await db.commit()
  return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/roles", response_model=list[RoleOut])
async def list_roles(_: Principal = Depends(require_admin), db: AsyncSession = Depends(get_db)) -> list[RoleOut]:
  res = await db.execute(select(Role).order_by(Role.id.asc()))
  return [_role_out(r) for r in res.scalars().all()]


@router.post("/roles", response_model=RoleOut, status_code=status.HTTP_201_CREATED)
async def create_role(payload: RoleIn, actor: Principal = Depends(require_admin), db: AsyncSession = Depends(get_db)) -> RoleOut:
  name = payload.name.strip()
  if not name:
    raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="name is required")
  if await _role_by_name(db, name):
    raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Role exists")
  r = Role(name=name, is_admin=payload.is_admin)
  db.add(r)
  await db.flush()
  await write_audit(db, event_type="role.created", entity_type="Role", entity_id=r.id, actor_id=actor.id, payload={"name": name, "isAdmin": r.is_admin})
  await db.commit()
  return _role_out(r)


@router.patch("/roles/{role_id}", response_model=RoleOut)
async def update_role(
  role_id: int,
  payload: RoleUpdateIn,
  actor: Principal = Depends(require_admin),
  db: AsyncSession = Depends(get_db),
) -> RoleOut:
  res = await db.execute(select(Role).where(Role.id == role_id))
  r = res.scalar_one_or_none()
  if not r:
    raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Role not found")

  if payload.name is not None:
    name = _required_name(payload.name)
    exists = await db.execute(select(Role.id).where(Role.name == name, Role.id != r.id))
    if exists.scalar_one_or_none():
      raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Role exists")
    r.name = name
  if payload.is_admin is not None:
    if r.is_admin and not payload.is_admin:
      bres = await db.execute(
        select(User.id).where(User.role_id == r.id, User.email == _normalize_email(settings.bootstrap_admin_email))
      )
      if bres.scalar_one_or_none():
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Bootstrap administrator must keep an admin role")
    r.is_admin = payload.is_admin

  await write_audit(db, event_type="role.updated", entity_type="Role", entity_id=r.id, actor_id=actor.id, payload={"name": r.name, "isAdmin": r.is_admin})
  await db.commit()
  return _role_out(r)


@router.delete("/roles/{role_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_role(role_id: int, actor: Principal = Depends(require_admin), db: AsyncSession = Depends(get_db)) -> Response:
  res = await db.execute(select(Role).where(Role.id == role_id))
  r = res.scalar_one_or_none()
  if not r:
    raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Role not found")
  ures = await db.execute(select(func.count()).select_from(User).where(User.role_id == role_id))
  if (ures.scalar_one() or 0) > 0:
    raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Role is in use")
  await db.execute(delete(Role).where(Role.id == role_id))
  await write_audit(db, event_type="role.deleted", entity_type="Role", entity_id=role_id, actor_id=actor.id, payload={"name": r.name})
  await db.commit()
  return Response(status_code=status.HTTP_204_NO_CONTENT)
