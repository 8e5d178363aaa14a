import copy
import logging
import sys
from typing import Dict, Any
from datetime import datetime, timezone
from fastapi import Request
from app.config import settings

LOG_FORMAT = '%(asctime)s | %(levelname)s | %(name)s | %(message)s'
DATE_FORMAT = '%Y-%m-%d %H:%M:%S'

# Third-party loggers that are too chatty at INFO
QUIET_LOGGERS = (
    "uvicorn.access",
    "asyncpg",
    "httpcore",
    "httpx",
    "urllib3",
    "firebase_admin",
    "google.auth",
    "cachecontrol",
)


class ColoredFormatter(logging.Formatter):
    """Console formatter that colors the level name"""

    COLORS = {
        'DEBUG': '\033[36m',    # Cyan
        'INFO': '\033[32m',     # Green
        'WARNING': '\033[33m',  # Yellow
        'ERROR': '\033[31m',    # Red
        'CRITICAL': '\033[35m', # Magenta
    }
    RESET = '\033[0m'

    def format(self, record):
        # Other handlers share the record, color a copy
        record = copy.copy(record)
        color = self.COLORS.get(record.levelname, '')
        record.levelname = f"{color}{record.levelname}{self.RESET}"
        return super().format(record)


def setup_logging() -> logging.Logger:
    """
    Configure the root logger once at startup.

    Colors are used only on an interactive terminal so container logs stay
    plain text. Level comes from LOG_LEVEL, DEBUG forces debug output.
    """
    level = logging.DEBUG if settings.debug else getattr(logging, settings.log_level.upper(), logging.INFO)

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.handlers.clear()

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(level)
    formatter_class = ColoredFormatter if sys.stdout.isatty() else logging.Formatter
    console_handler.setFormatter(formatter_class(LOG_FORMAT, datefmt=DATE_FORMAT))
    root_logger.addHandler(console_handler)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    return root_logger


def log_request_context(request: Request) -> Dict[str, Any]:
    """Context dict attached to error log records"""
    session = getattr(request.state, 'session_context', None)
    user_id = getattr(session, 'user_id', None)

    context = {
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "method": request.method,
        "path": request.url.path,
    }
    if user_id:
        context["user_id"] = user_id
    if request.query_params:
        context["query"] = str(request.query_params)

    return context
