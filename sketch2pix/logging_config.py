"""Console (and optional file) logging for the `sketch2pix` logger.

Library modules only call `logging.getLogger(__name__)`; applications that want
to see load and transfer timings call `setup_logging` once.
"""
import logging
import sys
from typing import List, Optional, Union

from sketch2pix.config import Settings

LOG_FORMAT = "[%(levelname)s] %(name)s: %(message)s"


def _resolve_level(level: Optional[Union[int, str]]) -> int:
    if level is None:
        level = Settings.from_env().log_level
    if isinstance(level, int):
        return level
    resolved = logging.getLevelName(level.upper())
    return resolved if isinstance(resolved, int) else logging.INFO


def setup_logging(level: Optional[Union[int, str]] = None, log_file: Optional[str] = None) -> logging.Logger:
    """Attach fresh handlers to the `sketch2pix` logger and return it.

    `level` falls back to SKETCH2PIX_LOG_LEVEL. Calling again replaces the handlers.
    """
    level = _resolve_level(level)
    logger = logging.getLogger("sketch2pix")
    logger.setLevel(level)
    for old in list(logger.handlers):
        old.close()
        logger.removeHandler(old)

    handlers: List[logging.Handler] = [logging.StreamHandler(sys.stdout)]
    if log_file:
        handlers.append(logging.FileHandler(log_file, mode="w", encoding="utf-8"))
    for handler in handlers:
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        logger.addHandler(handler)

    logger.debug("Logging to %s", ", ".join(type(h).__name__ for h in handlers))
    return logger
