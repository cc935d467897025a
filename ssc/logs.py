from __future__ import annotations

import logging
import sys

from .settings import Settings

LOG_FORMAT = "%(asctime)s %(levelname)-7s %(name)s: %(message)s"
DATE_FORMAT = "%Y-%m-%dT%H:%M:%S%z"

_HANDLER_NAME = "ssc-stderr"


def resolve_level(cfg: Settings) -> int:
    """In-cluster runs log at INFO, local development at DEBUG."""
    if cfg.log_level:
        level = logging.getLevelName(cfg.log_level.strip().upper())
        if isinstance(level, int):
            return level
    return logging.INFO if cfg.in_cluster else logging.DEBUG


def init_logging(cfg: Settings) -> logging.Logger:
    root = logging.getLogger()
    for h in list(root.handlers):
        if h.get_name() == _HANDLER_NAME:
            root.removeHandler(h)

    handler = logging.StreamHandler(sys.stderr)
    handler.set_name(_HANDLER_NAME)
    handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT))
    root.addHandler(handler)
    root.setLevel(resolve_level(cfg))

    # The kubernetes client and websockets are chatty at DEBUG.
    for name in ("kubernetes", "urllib3", "websockets"):
        logging.getLogger(name).setLevel(max(root.level, logging.INFO))
    return logging.getLogger("ssc")
