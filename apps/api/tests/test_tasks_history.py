from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest
from httpx import AsyncClient

from conftest import ADMIN_EMAIL, admin_headers, create_user, login, ref_ids, seeded_user_id


async def _create_task(client: AsyncClient, headers: dict[str, str], refs: dict, **extra) -> str:
  payload = {
    "title": extra.pop("title", "Write docs"),
    "status_id": refs["statuses"]["To Do"],
    "priority_id": refs["priorities"]["Medium"],
    **extra,
  }
  res = await client.post("/tasks", json=payload, headers=headers)
  assert res.status_code == 201, res.text
  return res.json()["id"]


@pytest.mark.anyio
async def test_create_applies_defaults_and_records_created(client: AsyncClient) -> None:
  admin = await admin_headers(client)
  refs = await ref_ids()
  admin_id = await seeded_user_id(ADMIN_EMAIL)
  task_id = await _create_task(client, admin, refs, type_id=refs["types"]["Bug"])

  res = await client.get(f"/tasks/{task_id}", headers=admin)
  assert res.status_code == 200, res.text
  detail = res.json()
  task = detail["task"]
  assert task["project_id"] == refs["project_id"]
  assert task["project_name"] == "General"
  assert task["status_name"] == "To Do"
  assert task["priority_name"] == "Medium"
  assert task["type_name"] == "Bug"
  assert task["author_id"] == admin_id
  assert task["author_name"] == "Administrator"
  start = datetime.fromisoformat(task["start_date"].replace("Z", "+00:00"))
  due = datetime.fromisoformat(task["due_date"].replace("Z", "+00:00"))
  assert timedelta(days=6, hours=23) < due - start < timedelta(days=7, minutes=1)

  assert detail["comments"] == []
  assert [h["action"] for h in detail["history"]] == ["created"]
  created = detail["history"][0]
  assert created["author_name"] == "Administrator"
  assert created["new_value"]["title"] == "Write docs"
  assert created["new_value"]["status_id"] == refs["statuses"]["To Do"]
  assert created["new_value"]["project_id"] == refs["project_id"]


@pytest.mark.anyio
async def test_create_requires_title_status_priority(client: AsyncClient) -> None:
  admin = await admin_headers(client)
  refs = await ref_ids()
  res = await client.post("/tasks", json={"title": "No status", "priority_id": refs["priorities"]["Low"]}, headers=admin)
  assert res.status_code == 400, res.text
  assert "error" in res.json()

  res = await client.post("/tasks", json={"title": "Bad priority", "status_id": refs["statuses"]["To Do"], "priority_id": 999}, headers=admin)
  assert res.status_code == 400, res.text


@pytest.mark.anyio
async def test_update_single_field_records_diff(client: AsyncClient) -> None:
  admin = await admin_headers(client)
  refs = await ref_ids()
  task_id = await _create_task(client, admin, refs)

  res = await client.patch(f"/tasks/{task_id}", json={"priority_id": refs["priorities"]["High"]}, headers=admin)
  assert res.status_code == 200, res.text
  assert res.json()["priority_name"] == "High"

  history = (await client.get(f"/tasks/{task_id}", headers=admin)).json()["history"]
  assert [h["action"] for h in history] == ["created", "updated"]
  entry = history[1]
  assert entry["new_value"] == {"priority_id": {"from": refs["priorities"]["Medium"], "to": refs["priorities"]["High"]}}
  assert entry["old_value"]["priority_id"] == refs["priorities"]["Medium"]
  assert entry["old_value"]["title"] == "Write docs"


@pytest.mark.anyio
async def test_unchanged_values_are_left_out_of_diff(client: AsyncClient) -> None:
  admin = await admin_headers(client)
  refs = await ref_ids()
  task_id = await _create_task(client, admin, refs)

  res = await client.patch(f"/tasks/{task_id}", json={"title": "Write docs", "description": "now with text"}, headers=admin)
  assert res.status_code == 200, res.text
  history = (await client.get(f"/tasks/{task_id}", headers=admin)).json()["history"]
  assert history[-1]["new_value"] == {"description": {"from": None, "to": "now with text"}}


@pytest.mark.anyio
async def test_update_without_known_fields_is_rejected_without_history(client: AsyncClient) -> None:
  admin = await admin_headers(client)
  refs = await ref_ids()
  task_id = await _create_task(client, admin, refs)

  res = await client.patch(f"/tasks/{task_id}", json={"colour": "red", "author_id": "someone"}, headers=admin)
  assert res.status_code == 400, res.text
  assert res.json() == {"error": "No fields"}

  history = (await client.get(f"/tasks/{task_id}", headers=admin)).json()["history"]
  assert [h["action"] for h in history] == ["created"]


@pytest.mark.anyio
async def test_update_rejects_null_for_required_field(client: AsyncClient) -> None:
  admin = await admin_headers(client)
  refs = await ref_ids()
  task_id = await _create_task(client, admin, refs)

  res = await client.patch(f"/tasks/{task_id}", json={"status_id": None}, headers=admin)
  assert res.status_code == 400, res.text
  history = (await client.get(f"/tasks/{task_id}", headers=admin)).json()["history"]
  assert len(history) == 1


@pytest.mark.anyio
async def test_non_author_forbidden_admin_allowed(client: AsyncClient) -> None:
  admin = await admin_headers(client)
  refs = await ref_ids()
  await create_user(client, admin, "a@local")
  await create_user(client, admin, "b@local")
  a = await login(client, "a@local", "password123")
  b = await login(client, "b@local", "password123")

  task_id = await _create_task(client, a, refs, title="A's task")

  res = await client.patch(f"/tasks/{task_id}", json={"title": "hijacked"}, headers=b)
  assert res.status_code == 403, res.text
  res = await client.delete(f"/tasks/{task_id}", headers=b)
  assert res.status_code == 403, res.text

  res = await client.patch(f"/tasks/{task_id}", json={"title": "Admin edit"}, headers=admin)
  assert res.status_code == 200, res.text

  history = (await client.get(f"/tasks/{task_id}", headers=a)).json()["history"]
  assert [h["action"] for h in history] == ["created", "updated"]
  assert history[1]["author_name"] == "Administrator"
  assert history[1]["new_value"] == {"title": {"from": "A's task", "to": "Admin edit"}}


@pytest.mark.anyio
async def test_update_unknown_task_is_404(client: AsyncClient) -> None:
  admin = await admin_headers(client)
  res = await client.patch("/tasks/5f0c6d8e-0000-4000-8000-000000000000", json={"title": "x"}, headers=admin)
  assert res.status_code == 404, res.text


@pytest.mark.anyio
async def test_assignee_must_be_project_member(client: AsyncClient) -> None:
  admin = await admin_headers(client)
  refs = await ref_ids()
  outsider = await create_user(client, admin, "outsider@local")
  task_id = await _create_task(client, admin, refs)

  res = await client.patch(f"/tasks/{task_id}", json={"assignee_id": outsider}, headers=admin)
  assert res.status_code == 400, res.text

  admin_id = await seeded_user_id(ADMIN_EMAIL)
  res = await client.patch(f"/tasks/{task_id}", json={"assignee_id": admin_id}, headers=admin)
  assert res.status_code == 200, res.text
  assert res.json()["assignee_name"] == "Administrator"


@pytest.mark.anyio
async def test_status_must_belong_to_task_project(client: AsyncClient) -> None:
  admin = await admin_headers(client)
  refs = await ref_ids()
  res = await client.post("/refs/projects", json={"name": "Other"}, headers=admin)
  other = res.json()["id"]
  res = await client.post("/refs/statuses", json={"name": "Other Open", "project_id": other}, headers=admin)
  other_status = res.json()["id"]
  task_id = await _create_task(client, admin, refs)

  res = await client.patch(f"/tasks/{task_id}", json={"status_id": other_status}, headers=admin)
  assert res.status_code == 400, res.text

  res = await client.patch(f"/tasks/{task_id}", json={"status_id": other_status, "project_id": other}, headers=admin)
  assert res.status_code == 200, res.text
  assert res.json()["project_name"] == "Other"


@pytest.mark.anyio
async def test_parent_cycle_rejected(client: AsyncClient) -> None:
  admin = await admin_headers(client)
  refs = await ref_ids()
  parent = await _create_task(client, admin, refs, title="Parent")
  child = await _create_task(client, admin, refs, title="Child", parent_id=parent)

  res = await client.patch(f"/tasks/{parent}", json={"parent_id": child}, headers=admin)
  assert res.status_code == 400, res.text
  res = await client.patch(f"/tasks/{parent}", json={"parent_id": parent}, headers=admin)
  assert res.status_code == 400, res.text


@pytest.mark.anyio
async def test_list_filters_and_order(client: AsyncClient) -> None:
  admin = await admin_headers(client)
  refs = await ref_ids()
  first = await _create_task(client, admin, refs, title="First")
  second = await _create_task(client, admin, refs, title="Second", priority_id=refs["priorities"]["High"])

  res = await client.get("/tasks", headers=admin)
  assert res.status_code == 200, res.text
  assert [t["id"] for t in res.json()] == [second, first]

  res = await client.patch(f"/tasks/{first}", json={"spent_minutes": 15}, headers=admin)
  assert res.status_code == 200, res.text
  res = await client.get("/tasks", headers=admin)
  assert [t["id"] for t in res.json()] == [first, second]

  res = await client.get("/tasks", params={"priority_id": refs["priorities"]["High"]}, headers=admin)
  assert [t["title"] for t in res.json()] == ["Second"]


@pytest.mark.anyio
async def test_delete_keeps_history_and_detaches_children(client: AsyncClient) -> None:
  admin = await admin_headers(client)
  refs = await ref_ids()
  parent = await _create_task(client, admin, refs, title="Doomed")
  child = await _create_task(client, admin, refs, title="Survivor", parent_id=parent)
  await client.post(f"/tasks/{parent}/comments", json={"body": "last words"}, headers=admin)

  res = await client.delete(f"/tasks/{parent}", headers=admin)
  assert res.status_code == 204, res.text
  assert (await client.get(f"/tasks/{parent}", headers=admin)).status_code == 404

  res = await client.get(f"/tasks/{parent}/history", headers=admin)
  assert res.status_code == 200, res.text
  history = res.json()
  assert [h["action"] for h in history] == ["created", "comment_added", "deleted"]
  assert history[-1]["task_title"] == "Doomed"

  survivor = (await client.get(f"/tasks/{child}", headers=admin)).json()["task"]
  assert survivor["parent_id"] is None


@pytest.mark.anyio
async def test_comment_lifecycle_is_recorded(client: AsyncClient) -> None:
  admin = await admin_headers(client)
  refs = await ref_ids()
  await create_user(client, admin, "commenter@local", name="Commenter")
  await create_user(client, admin, "bystander@local")
  commenter = await login(client, "commenter@local", "password123")
  bystander = await login(client, "bystander@local", "password123")
  task_id = await _create_task(client, admin, refs)

  res = await client.post(f"/tasks/{task_id}/comments", json={"body": "first!"}, headers=commenter)
  assert res.status_code == 201, res.text
  comment_id = res.json()["id"]

  res = await client.patch(f"/tasks/{task_id}/comments/{comment_id}", json={"body": "edited"}, headers=bystander)
  assert res.status_code == 403, res.text
  res = await client.patch(f"/tasks/{task_id}/comments/{comment_id}", json={"body": "edited"}, headers=commenter)
  assert res.status_code == 200, res.text
  assert res.json()["author_name"] == "Commenter"

  detail = (await client.get(f"/tasks/{task_id}", headers=admin)).json()
  assert [(c["body"], c["author_name"]) for c in detail["comments"]] == [("edited", "Commenter")]

  res = await client.delete(f"/tasks/{task_id}/comments/{comment_id}", headers=admin)
  assert res.status_code == 204, res.text

  detail = (await client.get(f"/tasks/{task_id}", headers=admin)).json()
  assert detail["comments"] == []
  actions = [h["action"] for h in detail["history"]]
  assert actions == ["created", "comment_added", "comment_updated", "comment_deleted"]
  assert detail["history"][1]["new_value"] == {"body": "first!"}
