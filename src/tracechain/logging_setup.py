"""Logging setup — loguru sinks, with stdlib logging routed through them."""

from __future__ import annotations

import logging
import sys
from pathlib import Path
from typing import Optional, Union

from loguru import logger


class InterceptHandler(logging.Handler):
    """Forward stdlib log records to loguru at the matching level."""

    def emit(self, record: logging.LogRecord) -> None:
        level: Union[str, int]
        try:
            level = logger.level(record.levelname).name
        except ValueError:
            level = record.levelno

        # Skip logging's own frames so loguru reports the real caller
        frame, depth = logging.currentframe(), 2
        while frame.f_back and frame.f_code.co_filename == logging.__file__:
            frame = frame.f_back
            depth += 1

        logger.opt(depth=depth, exception=record.exc_info).log(
            level, record.getMessage()
        )


def setup_logging(level: str = "INFO", log_file: Optional[Path] = None) -> None:
    """Route stdlib logging through loguru and configure sinks.

    stderr always receives records at level and above. When log_file is
    given it is added as a second sink, rotated at 500 MB.
    """
    for handler in logging.root.handlers[:]:
        logging.root.removeHandler(handler)
    logging.basicConfig(handlers=[InterceptHandler()], level=0)

    logger.remove()
    logger.add(sys.stderr, level=level)
    if log_file is not None:
        logger.add(
            str(log_file),
            rotation="500 MB",
            compression="zip",
            level=level,
            backtrace=True,
            diagnose=False,
        )
