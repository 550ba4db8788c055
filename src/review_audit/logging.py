from __future__ import annotations

import logging
import os

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s"
LOG_LEVEL_ENV = "REVIEW_AUDIT_LOG_LEVEL"


def configure_logging(level: str = "INFO") -> None:
    effective = os.getenv(LOG_LEVEL_ENV) or level
    logging.basicConfig(level=effective.upper(), format=LOG_FORMAT)
    # asyncio logs every slow executor callback at DEBUG.
    logging.getLogger("asyncio").setLevel(logging.WARNING)
