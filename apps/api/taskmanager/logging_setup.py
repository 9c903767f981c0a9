from __future__ import annotations

import logging
import sys

from taskmanager.config import settings

_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"
_DATEFMT = "%Y-%m-%d %H:%M:%S"

_configured = False


def setup_logging(level_name: str | None = None) -> None:
  global _configured
  if _configured:
    return
  name = (level_name or settings.log_level or "INFO").upper()
  level = getattr(logging, name, logging.INFO)

  handler = logging.StreamHandler(sys.stdout)
  handler.setFormatter(logging.Formatter(_FORMAT, _DATEFMT))
  handler.setLevel(level)

  root = logging.getLogger("taskmanager")
  root.setLevel(level)
  root.addHandler(handler)
  root.propagate = False
  _configured = True
  root.info("Logging initialized at %s", name)
