from __future__ import annotations

import os
import shutil
import sys
import tempfile
from pathlib import Path

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy import select

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
  sys.path.insert(0, str(ROOT))

_TMP_DIR = Path(tempfile.mkdtemp(prefix="taskmanager_test_"))

# Settings are read at import time, so the test environment goes in first.
os.environ.setdefault("DATABASE_URL", f"sqlite+aiosqlite:///{_TMP_DIR / 'taskmanager_test.db'}")
os.environ.setdefault("JWT_SECRET", "test-secret-not-for-production")
os.environ.setdefault("BCRYPT_ROUNDS", "4")
os.environ.setdefault("SEED_ADMIN_PASSWORD", "admin1234")
os.environ.pop("SEED_DEMO_DATA", None)
os.environ.pop("REDIS_URL", None)

from taskmanager.config import settings
from taskmanager.db import SessionLocal, engine
from taskmanager.login_throttle import login_throttle
from taskmanager.main import app
from taskmanager.models import Base, Priority, Project, Status, TaskType, User
from taskmanager.realtime import manager
from taskmanager.seed import seed_reference_data

ADMIN_EMAIL = "admin@local"
ADMIN_PASSWORD = "admin1234"


def pytest_sessionfinish(session, exitstatus) -> None:
  shutil.rmtree(_TMP_DIR, ignore_errors=True)


@pytest.fixture(scope="session")
def anyio_backend() -> str:
  return "asyncio"


async def _reset_db() -> None:
  login_throttle.reset()
  async with engine.begin() as conn:
    await conn.run_sync(Base.metadata.drop_all)
    await conn.run_sync(Base.metadata.create_all)
  async with SessionLocal() as db:
    await seed_reference_data(db)
    await db.commit()
  await engine.dispose()


@pytest.fixture(autouse=True)
async def _clean_between_tests() -> None:
  if not settings.is_test_db():
    raise RuntimeError(
      "Refusing to run destructive tests against non-test DB. "
      "Set DATABASE_URL to a *_test database (e.g. taskmanager_test)."
    )
  await _reset_db()
  yield
  manager._connections.clear()
  await engine.dispose()


@pytest.fixture
async def client() -> AsyncClient:
  transport = ASGITransport(app=app)
  async with AsyncClient(transport=transport, base_url="http://localhost") as c:
    yield c


def auth_headers(token: str) -> dict[str, str]:
  return {"Authorization": f"Bearer {token}"}


async def login(client: AsyncClient, email: str, password: str) -> dict[str, str]:
  res = await client.post("/auth/login", json={"email": email, "password": password})
  assert res.status_code == 200, res.text
  token = res.json()["token"]
  assert token
  return auth_headers(token)


async def admin_headers(client: AsyncClient) -> dict[str, str]:
  return await login(client, ADMIN_EMAIL, ADMIN_PASSWORD)


async def create_user(
  client: AsyncClient,
  headers: dict[str, str],
  email: str,
  *,
  name: str | None = None,
  role: str = "user",
  password: str = "password123",
) -> str:
  res = await client.post(
    "/auth/users",
    json={"email": email, "name": name or email.split("@", 1)[0], "role": role, "password": password},
    headers=headers,
  )
  assert res.status_code == 201, res.text
  return res.json()["id"]


async def seeded_user_id(email: str) -> str:
  async with SessionLocal() as db:
    res = await db.execute(select(User).where(User.email == email))
    return res.scalar_one().id


async def ref_ids() -> dict[str, object]:
  """Ids of the seeded reference rows used by most task tests."""
  async with SessionLocal() as db:
    statuses = (await db.execute(select(Status).where(Status.project_id.is_(None)).order_by(Status.position.asc()))).scalars().all()
    priorities = (await db.execute(select(Priority).order_by(Priority.weight.asc()))).scalars().all()
    types = (await db.execute(select(TaskType).order_by(TaskType.name.asc()))).scalars().all()
    project = (await db.execute(select(Project).where(Project.name == "General"))).scalar_one()
    return {
      "statuses": {s.name: s.id for s in statuses},
      "priorities": {p.name: p.id for p in priorities},
      "types": {t.name: t.id for t in types},
      "project_id": project.id,
    }
