from __future__ import annotations

import logging
import os
from typing import Optional


def setup_logging(level: Optional[str] = None) -> None:
    """Set the root level from `level` or GISTLINK_LOG_LEVEL (default INFO)."""

    effective_level = (level or os.environ.get("GISTLINK_LOG_LEVEL") or "INFO").upper()

    root = logging.getLogger()
    if not root.handlers:
        logging.basicConfig(
            level=effective_level,
            format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        )
    else:
        root.setLevel(effective_level)
    # aioice/aiortc are very chatty at DEBUG.
    logging.getLogger("aioice").setLevel(max(logging.getLogger().level, logging.INFO))
