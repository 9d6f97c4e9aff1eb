from __future__ import annotations

import logging

_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


# PUBLIC_INTERFACE
def configure_logging(level: str = "INFO") -> None:
    """
    Configure root logging once for the service.

    Unknown level names fall back to INFO. APScheduler's executor logs every job run
    at INFO, so it is held at WARNING to keep the one-minute sweep from flooding output.
    """
    resolved = logging.getLevelName(level.upper())
    if not isinstance(resolved, int):
        resolved = logging.INFO
    logging.basicConfig(level=resolved, format=_FORMAT)
    logging.getLogger("apscheduler").setLevel(max(resolved, logging.WARNING))
