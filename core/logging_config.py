import logging
import time
from datetime import datetime
from enum import Enum
from logging.config import dictConfig
from typing import Any, Iterable, Optional, Sequence, Union

from .settings import get_settings

# Reading and poll-cycle context attached via `extra=`
MONITOR_EXTRA_KEYS = (
    "source_id",
    "location",
    "category",
    "temperature",
    "humidity",
    "observer",
    "reading_count",
    "error_count",
    "cycle_ms",
)

# Third-party loggers that log every request at INFO; one request per stored reading
QUIET_LOGGERS = ("httpx", "httpcore")

_configured = False


class ContextualFormatter(logging.Formatter):
    """
    Renders UTC timestamps and appends `key=value` pairs for the monitor's
    known `extra` fields, e.g.

        2025-08-01T12:00:00Z | WARNING | core.alert_gate | ALERT: ... | source_id=DANGER-SIM category=EXTREME
    """

    converter = time.gmtime

    def __init__(
        self,
        fmt: Optional[str] = None,
        datefmt: Optional[str] = None,
        style: str = "%",
        extra_keys: Optional[Iterable[str]] = None,
    ) -> None:
        super().__init__(fmt=fmt, datefmt=datefmt, style=style)
        self._extra_keys: Sequence[str] = tuple(extra_keys or MONITOR_EXTRA_KEYS)

    def format(self, record: logging.LogRecord) -> str:
        message = super().format(record)
        context = " ".join(
            f"{key}={_render(value)}"
            for key, value in ((key, getattr(record, key, None)) for key in self._extra_keys)
            if value is not None
        )
        return f"{message} | {context}" if context else message


def _render(value: Any) -> str:
    if isinstance(value, float):
        return f"{value:.2f}"
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, Enum):
        return str(value.value)
    return str(value)


def configure_logging(level: Union[str, int, None] = None, force: bool = False) -> None:
    """
    Configure process-wide logging from LOG_LEVEL (or `level`). Later calls
    are no-ops unless `force` is set.
    """
    global _configured
    if _configured and not force:
        return

    log_level = level if level is not None else get_settings().log_level

    dictConfig(
        {
            "version": 1,
            "disable_existing_loggers": False,
            "formatters": {
                "contextual": {
                    "()": "core.logging_config.ContextualFormatter",
                    "fmt": "%(asctime)sZ | %(levelname)s | %(name)s | %(message)s",
                    "datefmt": "%Y-%m-%dT%H:%M:%S",
                    "extra_keys": list(MONITOR_EXTRA_KEYS),
                }
            },
            "handlers": {
                "console": {
                    "class": "logging.StreamHandler",
                    "stream": "ext://sys.stderr",
                    "level": log_level,
                    "formatter": "contextual",
                }
            },
            "loggers": {name: {"level": "WARNING"} for name in QUIET_LOGGERS},
            "root": {"handlers": ["console"], "level": log_level},
        }
    )

    _configured = True
    logging.getLogger(__name__).debug("Logging configured at %s", log_level)
