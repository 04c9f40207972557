import logging
import os
import sys

# one shared logger for the whole engine; level from LOG_LEVEL
logger = logging.getLogger("homegrid")
logger.setLevel(os.getenv("LOG_LEVEL", "INFO").strip().upper() or "INFO")

if not logger.handlers:
    handler = logging.StreamHandler(sys.stdout)
    formatter = logging.Formatter(
        '%(asctime)s %(levelname)s [%(filename)s:%(lineno)d]: %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )
    handler.setFormatter(formatter)
    logger.addHandler(handler)

logger.propagate = False
