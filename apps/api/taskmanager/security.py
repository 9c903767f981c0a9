from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any

from jose import JWTError, jwt
from passlib.context import CryptContext

from taskmanager.config import settings

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto", bcrypt__rounds=settings.bcrypt_rounds)


class InvalidTokenError(ValueError):
  pass


def hash_password(password: str) -> str:
  return pwd_context.hash(password)


def verify_password(password: str, password_hash: str) -> bool:
  return pwd_context.verify(password, password_hash)


def create_access_token(*, user_id: str, email: str, role: str, expires_minutes: int | None = None) -> str:
  minutes = expires_minutes if expires_minutes is not None else settings.access_token_expire_minutes
  now = datetime.now(timezone.utc)
  claims = {
    "sub": user_id,
    "email": email,
    "role": role,
    "iat": int(now.timestamp()),
    "exp": int((now + timedelta(minutes=minutes)).timestamp()),
  }
  return jwt.encode(claims, settings.jwt_secret, algorithm=settings.jwt_algorithm)


def decode_access_token(token: str) -> dict[str, Any]:
  try:
    claims = jwt.decode(token, settings.jwt_secret, algorithms=[settings.jwt_algorithm])
  except JWTError as exc:
    raise InvalidTokenError("Invalid token") from exc
  if not claims.get("sub"):
    raise InvalidTokenError("Invalid token")
  return claims
