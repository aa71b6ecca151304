from __future__ import annotations

import sys
from typing import Optional

from loguru import logger


def configure_logging(level: str = "INFO", log_file: Optional[str] = None) -> None:
    """Replace the default loguru sink with one at ``level``.

    A rotating file sink is added when ``log_file`` is given.
    """
    logger.remove()
    logger.add(sys.stderr, level=level.upper())
    if log_file:
        logger.add(
            log_file,
            rotation="1 day",
            retention="30 days",
            compression="gz",
            level=level.upper(),
        )
