from __future__ import annotations

import logging
import os
from typing import Optional

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"

_configured = False


def setup_logging(level: Optional[str] = None) -> None:
    """Configure root logging once; later calls only adjust the level."""
    global _configured
    level_name = (level or os.getenv("LOG_LEVEL", "INFO")).upper()
    root = logging.getLogger()
    if not _configured:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        root.addHandler(handler)
        _configured = True
    root.setLevel(getattr(logging, level_name, logging.INFO))
    # SDK request logs are noisy at INFO
    logging.getLogger("httpx").setLevel(logging.WARNING)
