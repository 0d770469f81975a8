from __future__ import annotations

import logging
from typing import Optional

from app.core.config import env_flag

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def configure_logging(debug: Optional[bool] = None) -> None:
    """Configure root logging once. WINE_DEBUG=1 switches to DEBUG level."""

    if debug is None:
        debug = env_flag("WINE_DEBUG")
    logging.basicConfig(level=logging.DEBUG if debug else logging.INFO, format=LOG_FORMAT)
    # httpx logs every request at INFO; keep it for debug runs only.
    logging.getLogger("httpx").setLevel(logging.DEBUG if debug else logging.WARNING)
