"""merge duplicate statuses, then make (name, project_id) unique

Revision ID: 0002_status_dedupe_unique
Revises: 0001_init
Create Date: 2026-10-19
"""

from __future__ import annotations

from alembic import op

from taskmanager.status_repair import dedupe_statuses


revision = "0002_status_dedupe_unique"
down_revision = "0001_init"
branch_labels = None
depends_on = None


def upgrade() -> None:
  dedupe_statuses(op.get_bind())
  op.create_unique_constraint("ux_statuses_name_project", "statuses", ["name", "project_id"])


def downgrade() -> None:
  op.drop_constraint("ux_statuses_name_project", "statuses", type_="unique")
