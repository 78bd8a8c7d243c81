import sys
from pathlib import Path

from loguru import logger

LOG_DIR = Path("logs")
LOG_FILE = LOG_DIR / "app.log"

# Remove default handler
logger.remove()

# Sink 1: Stderr (Human-readable)
logger.add(
    sys.stderr,
    level="INFO",
    format=(
        "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | "
        "<level>{level: <8}</level> | "
        "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - "
        "<level>{message}</level>"
    ),
)

# Ensure logs directory exists
LOG_DIR.mkdir(parents=True, exist_ok=True)

# Sink 2: File (JSON, Rotation, Retention)
logger.add(
    str(LOG_FILE),
    rotation="500 MB",
    retention="10 days",
    serialize=True,
    enqueue=True,
    level="INFO",
)

__all__ = ["logger"]
