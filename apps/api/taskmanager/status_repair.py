from __future__ import annotations

import logging
from typing import Any

from sqlalchemy import text
from sqlalchemy.engine import Connection

log = logging.getLogger(__name__)


def duplicate_status_groups(conn: Connection) -> dict[tuple[str, Any], list[int]]:
  """Map each (name, project_id) pair that occurs more than once to its status ids, lowest first."""
  rows = conn.execute(text("SELECT id, name, project_id FROM statuses ORDER BY id ASC")).all()
  groups: dict[tuple[str, Any], list[int]] = {}
  for sid, name, project_id in rows:
    groups.setdefault((name, project_id), []).append(int(sid))
  return {key: ids for key, ids in groups.items() if len(ids) > 1}


def dedupe_statuses(conn: Connection) -> int:
  """
  Collapse statuses sharing a (name, project_id) pair onto the lowest id.

  Tasks pointing at a duplicate are re-pointed to the survivor before the
  duplicate is deleted. Null project ids group together. Returns the number of
  status rows removed; a second run on the same data removes nothing.
  """
  removed = 0
  for (name, project_id), ids in duplicate_status_groups(conn).items():
    keep, dupes = ids[0], ids[1:]
    for dup in dupes:
      conn.execute(text("UPDATE tasks SET status_id = :keep WHERE status_id = :dup"), {"keep": keep, "dup": dup})
      conn.execute(text("DELETE FROM statuses WHERE id = :dup"), {"dup": dup})
      removed += 1
    log.info("Merged %d duplicate status rows for %r (project=%s) into %d", len(dupes), name, project_id, keep)
  return removed
