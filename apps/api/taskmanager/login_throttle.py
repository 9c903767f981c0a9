from __future__ import annotations

import logging
import time
import uuid
from collections import deque
from threading import Lock

import redis
from fastapi import HTTPException, Request, status

from taskmanager.config import settings
from taskmanager.deps import client_ip

log = logging.getLogger(__name__)


class LoginThrottle:
  """
  Sliding-window lockout driven by failed logins only.

  A client address or an email that collects `limit` failures inside the
  window is refused until its oldest failure ages out; a successful login
  clears the email's record. Failures are kept in Redis sorted sets when a
  Redis URL is configured, otherwise in this process.
  """

  def __init__(self, redis_url: str | None = None) -> None:
    self._lock = Lock()
    self._failures: dict[str, deque[float]] = {}
    self._redis: redis.Redis | None = redis.Redis.from_url(redis_url, decode_responses=True) if redis_url else None

  @staticmethod
  def ip_key(ip: str) -> str:
    return f"login-failures:ip:{ip}"

  @staticmethod
  def email_key(email: str) -> str:
    return f"login-failures:email:{email}"

  def retry_after(self, key: str, *, limit: int, window_seconds: int) -> int:
    """Seconds until `key` may try again; 0 when it is not locked out."""
    now = time.time()
    if self._redis is not None:
      try:
        return self._retry_after_redis(key, now=now, limit=limit, window_seconds=window_seconds)
      except redis.RedisError:
        log.warning("Redis unavailable for login throttling; using in-process failure log")
    with self._lock:
      stamps = self._pruned(key, now=now, window_seconds=window_seconds)
      if not stamps or len(stamps) < limit:
        return 0
      return max(1, int(stamps[0] + window_seconds - now))

  def record_failure(self, *keys: str, window_seconds: int) -> None:
    now = time.time()
    if self._redis is not None:
      try:
        pipe = self._redis.pipeline()
        for key in keys:
          pipe.zadd(key, {f"{now}:{uuid.uuid4().hex}": now})
          pipe.expire(key, window_seconds)
        pipe.execute()
        return
      except redis.RedisError:
        log.warning("Redis unavailable for login throttling; using in-process failure log")
    with self._lock:
      for key in keys:
        self._failures.setdefault(key, deque()).append(now)

  def clear(self, key: str) -> None:
    if self._redis is not None:
      try:
        self._redis.delete(key)
      except redis.RedisError:
        log.warning("Redis unavailable; could not clear %s", key)
    with self._lock:
      self._failures.pop(key, None)

  def reset(self) -> None:
    with self._lock:
      self._failures.clear()

  def _pruned(self, key: str, *, now: float, window_seconds: int) -> deque[float] | None:
    stamps = self._failures.get(key)
    if stamps is None:
      return None
    while stamps and stamps[0] <= now - window_seconds:
      stamps.popleft()
    if not stamps:
      del self._failures[key]
    return stamps

  def _retry_after_redis(self, key: str, *, now: float, limit: int, window_seconds: int) -> int:
    pipe = self._redis.pipeline()
    pipe.zremrangebyscore(key, 0, now - window_seconds)
    pipe.zcard(key)
    pipe.zrange(key, 0, 0, withscores=True)
    _, count, oldest = pipe.execute()
    if int(count) < limit or not oldest:
      return 0
    return max(1, int(float(oldest[0][1]) + window_seconds - now))


login_throttle = LoginThrottle(settings.redis_url)


def _refuse(retry: int) -> HTTPException:
  return HTTPException(
    status_code=status.HTTP_429_TOO_MANY_REQUESTS,
    detail="Too many failed logins",
    headers={"Retry-After": str(retry)},
  )


async def guard_login_address(request: Request) -> str:
  """Dependency for the login route: refuses locked-out client addresses and returns the address."""
  ip = client_ip(request)
  retry = login_throttle.retry_after(
    LoginThrottle.ip_key(ip),
    limit=settings.login_max_failures_per_ip,
    window_seconds=settings.login_failure_window_seconds,
  )
  if retry:
    raise _refuse(retry)
  return ip


def guard_login_email(email: str) -> None:
  retry = login_throttle.retry_after(
    LoginThrottle.email_key(email),
    limit=settings.login_max_failures_per_email,
    window_seconds=settings.login_failure_window_seconds,
  )
  if retry:
    raise _refuse(retry)
