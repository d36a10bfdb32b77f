"""
Process logging setup for the admin API and the operator CLI.
"""

from __future__ import annotations

import logging
from typing import Optional

from .config import settings

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


def configure_logging(level: Optional[str] = None) -> None:
    logging.basicConfig(
        level=(level or settings.log_level).upper(),
        format=LOG_FORMAT,
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    # Engine SQL echo is controlled separately
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
