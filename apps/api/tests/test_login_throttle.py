from __future__ import annotations

import pytest
from httpx import AsyncClient

import taskmanager.login_throttle as throttle_module
from conftest import ADMIN_EMAIL, ADMIN_PASSWORD, admin_headers, create_user
from taskmanager.config import settings
from taskmanager.login_throttle import LoginThrottle


@pytest.fixture
def tight_limits():
  orig = (settings.login_max_failures_per_ip, settings.login_max_failures_per_email)
  yield settings
  settings.login_max_failures_per_ip, settings.login_max_failures_per_email = orig


async def _fail(client: AsyncClient, email: str) -> None:
  r = await client.post("/auth/login", json={"email": email, "password": "not-the-password"})
  assert r.status_code == 401, r.text


@pytest.mark.anyio
async def test_failed_logins_lock_out_the_email_even_with_right_password(client: AsyncClient, tight_limits) -> None:
  tight_limits.login_max_failures_per_email = 3
  for _ in range(3):
    await _fail(client, ADMIN_EMAIL)

  r = await client.post("/auth/login", json={"email": ADMIN_EMAIL, "password": ADMIN_PASSWORD})
  assert r.status_code == 429, r.text
  assert r.json() == {"error": "Too many failed logins"}
  assert 0 < int(r.headers["retry-after"]) <= settings.login_failure_window_seconds


@pytest.mark.anyio
async def test_successful_login_clears_email_failures(client: AsyncClient, tight_limits) -> None:
  tight_limits.login_max_failures_per_email = 3
  for _ in range(2):
    await _fail(client, ADMIN_EMAIL)
  await admin_headers(client)

  for _ in range(2):
    await _fail(client, ADMIN_EMAIL)
  await admin_headers(client)


@pytest.mark.anyio
async def test_address_lockout_spans_emails(client: AsyncClient, tight_limits) -> None:
  admin = await admin_headers(client)
  await create_user(client, admin, "bystander@local")
  tight_limits.login_max_failures_per_ip = 3
  for n in range(3):
    await _fail(client, f"guess{n}@local")

  r = await client.post("/auth/login", json={"email": "bystander@local", "password": "password123"})
  assert r.status_code == 429, r.text
  assert r.headers["retry-after"]


@pytest.mark.anyio
async def test_successful_logins_are_not_counted(client: AsyncClient, tight_limits) -> None:
  tight_limits.login_max_failures_per_ip = 2
  tight_limits.login_max_failures_per_email = 2
  for _ in range(5):
    await admin_headers(client)


@pytest.mark.anyio
async def test_failures_age_out_of_the_window(monkeypatch: pytest.MonkeyPatch) -> None:
  clock = [1000.0]
  monkeypatch.setattr(throttle_module.time, "time", lambda: clock[0])
  throttle = LoginThrottle()
  key = LoginThrottle.email_key("someone@local")

  throttle.record_failure(key, window_seconds=60)
  clock[0] += 30
  throttle.record_failure(key, window_seconds=60)
  assert throttle.retry_after(key, limit=2, window_seconds=60) == 30

  clock[0] += 31
  assert throttle.retry_after(key, limit=2, window_seconds=60) == 0
  throttle.clear(key)
  assert throttle.retry_after(key, limit=1, window_seconds=60) == 0
