# chirp/core/logger.py

import logging
import sys

from chirp.core.config import settings

logger = logging.getLogger("chirp")
logger.setLevel(settings.LOG_LEVEL.upper())
logger.propagate = False  # Prevent log duplication

if not logger.handlers:
    handler = logging.StreamHandler(sys.stdout)
    formatter = logging.Formatter("[%(asctime)s] %(levelname)s %(name)s - %(message)s")
    handler.setFormatter(formatter)
    logger.addHandler(handler)
