"""
Logging setup shared by the API process and the standalone scheduler

- Rotating file (50MB per file, keep 7)
- Console output
- SQL and HTTP client noise reduced to warnings
"""
import logging
import os
from logging.handlers import RotatingFileHandler

from .config import settings

_configured = False


def setup_logging(log_name: str = "sdibridge", level: int = logging.INFO) -> None:
    """Configure root logging once per process"""
    global _configured
    if _configured:
        return

    os.makedirs(settings.LOGS_PATH, exist_ok=True)

    file_handler = RotatingFileHandler(
        os.path.join(settings.LOGS_PATH, f"{log_name}.log"),
        maxBytes=50 * 1024 * 1024,
        backupCount=7,
        encoding="utf-8",
    )
    file_handler.setLevel(level)
    file_handler.setFormatter(logging.Formatter(
        "%(asctime)s - %(levelname)s - %(name)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    ))

    console_handler = logging.StreamHandler()
    console_handler.setLevel(level)
    console_handler.setFormatter(logging.Formatter(
        "%(asctime)s - %(levelname)s - %(message)s",
        datefmt="%H:%M:%S",
    ))

    # Disable noisy loggers BEFORE basicConfig
    for noisy in ("sqlalchemy", "sqlalchemy.engine", "sqlalchemy.pool", "httpx", "httpcore", "apscheduler"):
        logging.getLogger(noisy).setLevel(logging.WARNING)

    logging.basicConfig(level=level, handlers=[file_handler, console_handler])
    _configured = True
