"""Process-wide logging setup for the CLI and API entrypoints."""

from __future__ import annotations

import logging

from stratlens.config.settings import settings

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def configure_logging(level: str | None = None) -> None:
    root = logging.getLogger()
    root.setLevel((level or settings.log_level).upper())
    if any(getattr(h, "_stratlens", False) for h in root.handlers):
        return
    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    handler._stratlens = True  # type: ignore[attr-defined]
    root.addHandler(handler)
