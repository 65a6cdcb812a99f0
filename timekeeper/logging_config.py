from __future__ import annotations

import logging

from timekeeper.config import settings

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def configure_logging(level: str | None = None) -> None:
  name = (level or settings.log_level or "INFO").upper()
  logging.basicConfig(level=getattr(logging, name, logging.INFO), format=LOG_FORMAT)
  # httpx logs every request line at INFO.
  logging.getLogger("httpx").setLevel(logging.WARNING)
