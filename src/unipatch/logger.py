from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Optional

import structlog

if TYPE_CHECKING:
    from .settings import LoggingSettings

# Loggers whose level follows LoggingSettings.default_level
PRIMARY_LOGGERS = ("unipatch",)

_file_handler: Optional[logging.Handler] = None


def configure_logging(settings: Optional["LoggingSettings"] = None) -> None:
    """
    Apply logging settings: levels for our loggers, per-logger overrides and
    an optional log file. Safe to call more than once.
    """
    global _file_handler
    if settings is None:
        return

    default_level = logging.getLevelName(settings.default_level.value.upper())
    for name in PRIMARY_LOGGERS:
        logging.getLogger(name).setLevel(default_level)
    for name, level in settings.enabled_loggers.items():
        logging.getLogger(name).setLevel(logging.getLevelName(level.value.upper()))

    root_logger = logging.getLogger()
    if _file_handler is not None:
        root_logger.removeHandler(_file_handler)
        _file_handler.close()
        _file_handler = None
    if settings.log_file:
        _file_handler = logging.FileHandler(
            settings.log_file, mode="a", encoding="utf-8", delay=False
        )
        _file_handler.setFormatter(logging.Formatter("%(message)s"))
        root_logger.addHandler(_file_handler)


structlog.configure(
    wrapper_class=structlog.make_filtering_bound_logger(logging.NOTSET),
    logger_factory=structlog.stdlib.LoggerFactory(),
    cache_logger_on_first_use=True,
    processors=[
        structlog.processors.add_log_level,
        structlog.processors.StackInfoRenderer(),
        structlog.dev.set_exc_info,
        structlog.processors.TimeStamper(fmt="%Y-%m-%d %H:%M:%S", utc=False),
        structlog.dev.ConsoleRenderer(colors=False),
    ],
)

logger: structlog.BoundLogger = structlog.get_logger("unipatch")
