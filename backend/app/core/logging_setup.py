from __future__ import annotations

import logging

from backend.app.core.config import settings

_configured = False


def configure_logging(level: str | None = None) -> None:
    """
    Configure le logger racine une seule fois par process.
    Les modules utilisent ensuite logging.getLogger(__name__).
    """
    global _configured
    if _configured:
        return

    level_name = (level or settings.LOG_LEVEL).upper()
    root = logging.getLogger()
    root.setLevel(getattr(logging, level_name, logging.INFO))

    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter(settings.LOG_FORMAT))
    root.addHandler(handler)

    _configured = True
