from __future__ import annotations

import logging
from pathlib import Path

from alembic import command
from alembic.config import Config

log = logging.getLogger(__name__)

ALEMBIC_INI = Path(__file__).resolve().parent.parent / "alembic.ini"


def upgrade_to_head() -> None:
  """Apply pending Alembic revisions, including the one-time status dedupe."""
  cfg = Config(str(ALEMBIC_INI))
  cfg.attributes["configure_logger"] = False
  log.info("Running migrations from %s", ALEMBIC_INI)
  command.upgrade(cfg, "head")
  log.info("Migrations complete")
