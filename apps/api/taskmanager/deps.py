from __future__ import annotations

from dataclasses import dataclass

from fastapi import Depends, HTTPException, Request, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from taskmanager.db import SessionLocal
from taskmanager.models import Role, User, parse_uuid
from taskmanager.security import InvalidTokenError, decode_access_token


@dataclass(frozen=True)
class Principal:
  """Caller identity plus the capabilities its role grants."""

  id: str
  email: str
  name: str
  role: str
  is_admin: bool

  def can_modify(self, author_id: str | None) -> bool:
    return self.is_admin or (author_id is not None and author_id == self.id)


async def get_db() -> AsyncSession:
  async with SessionLocal() as session:
    yield session


async def principal_from_token(token: str, db: AsyncSession) -> Principal:
  try:
    claims = decode_access_token(token)
  except InvalidTokenError:
    raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token")
  user_id = parse_uuid(claims.get("sub"))
  if not user_id:
    raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token")
  res = await db.execute(select(User, Role).join(Role, Role.id == User.role_id).where(User.id == user_id))
  row = res.first()
  if not row:
    raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="User not found")
  u, r = row
  return Principal(id=u.id, email=u.email, name=u.name, role=r.name, is_admin=bool(r.is_admin))


async def get_current_user(request: Request, db: AsyncSession = Depends(get_db)) -> Principal:
  auth = request.headers.get("authorization") or ""
  if not auth.lower().startswith("bearer "):
    raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="No token")
  token = auth.split(" ", 1)[1].strip()
  if not token:
    raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="No token")
  return await principal_from_token(token, db)


async def require_admin(user: Principal = Depends(get_current_user)) -> Principal:
  if not user.is_admin:
    raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Forbidden")
  return user


def client_ip(request: Request) -> str:
  return request.client.host if request.client else "unknown"
