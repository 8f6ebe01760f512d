from __future__ import annotations
import logging
import sys
from typing import IO, Optional

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
HANDLER_NAME = "spaceatlas"


def setup_logging(level: str = "WARNING", stream: Optional[IO[str]] = None) -> logging.Logger:
    """Attach one stream handler to the ``spaceatlas`` logger; safe to call twice."""
    logger = logging.getLogger("spaceatlas")
    logger.setLevel(level.upper())
    handler = next((h for h in logger.handlers if h.get_name() == HANDLER_NAME), None)
    if handler is None:
        handler = logging.StreamHandler(stream or sys.stderr)
        handler.set_name(HANDLER_NAME)
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        logger.addHandler(handler)
    elif stream is not None and isinstance(handler, logging.StreamHandler):
        handler.setStream(stream)
    return logger
