from __future__ import annotations

import logging
import sys

_HANDLER_NAME = "hmohunter-root-handler"


def configure_logging(level: str = "INFO") -> None:
    """
    Install one stdout handler on the root logger. Safe to call repeatedly
    (app factory + scripts both call it).
    """
    root = logging.getLogger()
    root.setLevel(getattr(logging, level.upper(), logging.INFO))

    for h in list(root.handlers):
        if getattr(h, "name", "") == _HANDLER_NAME:
            root.removeHandler(h)

    handler = logging.StreamHandler(sys.stdout)
    handler.name = _HANDLER_NAME
    handler.setFormatter(logging.Formatter("%(asctime)s | %(levelname)s | %(name)s | %(message)s"))
    root.addHandler(handler)

    # httpx logs every request at INFO; the geocoder makes a lot of them
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
