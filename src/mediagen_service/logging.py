"""Logging setup shared by the API process and the Celery workers.

Standard-library loggers carry the job id in the message text; structlog
loggers in the task bodies bind it as a key, and anything bound through
``structlog.contextvars`` is merged into every event of the current task.
"""

from __future__ import annotations

import logging
import logging.config
from pathlib import Path
from typing import Any, Dict

import structlog

from .config import LoggingSettings

# Chatty HTTP/storage clients stay at WARNING unless the service runs at DEBUG.
NOISY_LOGGERS = ("urllib3", "minio", "celery.redirected", "httpx")

_configured = False


def _dict_config(settings: LoggingSettings, log_file: Path) -> Dict[str, Any]:
    level = settings.level.upper()
    library_level = level if level == "DEBUG" else "WARNING"
    return {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "job": {
                "format": "%(asctime)s %(process)d [%(levelname)s] %(name)s: %(message)s",
            },
        },
        "handlers": {
            "console": {
                "class": "logging.StreamHandler",
                "formatter": "job",
            },
            "job_file": {
                "class": "logging.handlers.RotatingFileHandler",
                "filename": str(log_file),
                "formatter": "job",
                "maxBytes": settings.max_log_file_size_mb * 1024 * 1024,
                "backupCount": settings.backup_count,
                "encoding": "utf-8",
            },
        },
        "loggers": {name: {"level": library_level} for name in NOISY_LOGGERS},
        "root": {"handlers": ["console", "job_file"], "level": level},
    }


def configure_logging(settings: LoggingSettings, *, component: str = "api", force: bool = False) -> None:
    """Write to the console and to ``{log_dir}/mediagen-{component}.log``.

    The API process and each worker process call this once; later calls are
    ignored unless ``force`` is set.
    """

    global _configured
    if _configured and not force:
        return

    log_dir = Path(settings.log_dir)
    log_dir.mkdir(parents=True, exist_ok=True)
    logging.config.dictConfig(_dict_config(settings, log_dir / f"mediagen-{component}.log"))

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.format_exc_info,
            structlog.dev.ConsoleRenderer(colors=False),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(getattr(logging, settings.level.upper(), logging.INFO)),
        cache_logger_on_first_use=True,
    )
    _configured = True
    logging.getLogger(__name__).debug("Logging configured for %s at %s", component, settings.level.upper())


__all__ = ["configure_logging"]
