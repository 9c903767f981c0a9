from __future__ import annotations

import pytest
from httpx import AsyncClient

from conftest import ADMIN_EMAIL, admin_headers, create_user, login, ref_ids, seeded_user_id


@pytest.mark.anyio
async def test_admin_lists_and_updates_users(client: AsyncClient) -> None:
  admin = await admin_headers(client)
  uid = await create_user(client, admin, "promote.me@local", name="Promote Me")

  res = await client.get("/auth/users", headers=admin)
  assert res.status_code == 200, res.text
  emails = [u["email"] for u in res.json()]
  assert ADMIN_EMAIL in emails and "promote.me@local" in emails

  res = await client.patch(f"/auth/users/{uid}", json={"role": "admin", "name": "Promoted"}, headers=admin)
  assert res.status_code == 200, res.text
  body = res.json()
  assert body["role"] == "admin"
  assert body["is_admin"] is True
  assert body["name"] == "Promoted"

  res = await client.patch(f"/auth/users/{uid}", json={"role": "ghost"}, headers=admin)
  assert res.status_code == 400, res.text


@pytest.mark.anyio
async def test_bootstrap_admin_is_protected(client: AsyncClient) -> None:
  admin = await admin_headers(client)
  boot_id = await seeded_user_id(ADMIN_EMAIL)
  other_admin_id = await create_user(client, admin, "second.admin@local", role="admin")
  second = await login(client, "second.admin@local", "password123")

  res = await client.patch(f"/auth/users/{boot_id}", json={"role": "user"}, headers=second)
  assert res.status_code == 400, res.text

  res = await client.delete(f"/auth/users/{boot_id}", headers=second)
  assert res.status_code == 400, res.text

  res = await client.delete(f"/auth/users/{other_admin_id}", headers=second)
  assert res.status_code == 400, res.text
  assert res.json() == {"error": "Cannot delete yourself"}


@pytest.mark.anyio
async def test_delete_user_reassigns_authored_work(client: AsyncClient) -> None:
  admin = await admin_headers(client)
  admin_id = await seeded_user_id(ADMIN_EMAIL)
  refs = await ref_ids()
  uid = await create_user(client, admin, "leaver@local", name="Leaver")
  res = await client.patch(f"/refs/projects/{refs['project_id']}", json={"member_ids": [admin_id, uid]}, headers=admin)
  assert res.status_code == 200, res.text
  leaver = await login(client, "leaver@local", "password123")

  res = await client.post(
    "/tasks",
    json={
      "title": "Leaver's task",
      "status_id": refs["statuses"]["To Do"],
      "priority_id": refs["priorities"]["Low"],
      "assignee_id": uid,
    },
    headers=leaver,
  )
  assert res.status_code == 201, res.text
  task_id = res.json()["id"]
  res = await client.post(f"/tasks/{task_id}/comments", json={"body": "bye"}, headers=leaver)
  assert res.status_code == 201, res.text

  res = await client.delete(f"/auth/users/{uid}", headers=admin)
  assert res.status_code == 204, res.text

  detail = (await client.get(f"/tasks/{task_id}", headers=admin)).json()
  assert detail["task"]["author_id"] == admin_id
  assert detail["task"]["assignee_id"] is None
  assert [c["author_id"] for c in detail["comments"]] == [admin_id]
  assert all(h["author_id"] is None for h in detail["history"])

  project = (await client.get(f"/refs/projects/{refs['project_id']}", headers=admin)).json()
  assert project["member_ids"] == [admin_id]

  res = await client.post("/auth/login", json={"email": "leaver@local", "password": "password123"})
  assert res.status_code == 401


@pytest.mark.anyio
async def test_delete_user_reassign_target_must_exist(client: AsyncClient) -> None:
  admin = await admin_headers(client)
  uid = await create_user(client, admin, "stay@local")
  res = await client.delete(f"/auth/users/{uid}", params={"reassign_to": "00000000-0000-0000-0000-000000000000"}, headers=admin)
  assert res.status_code == 400, res.text

  res = await client.get("/auth/users", headers=admin)
  assert "stay@local" in [u["email"] for u in res.json()]
