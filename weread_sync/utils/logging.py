"""
Logging for WeRead Sync Service.

structlog renders to stdout; a database handler keeps recent records in the
sync_log table so the web API can serve them. Events logged while a sync
run is in progress carry the run id.
"""

import logging
import sys
from typing import Any, Dict, Optional

import structlog
from structlog.types import Processor

from weread_sync.db.database import get_db_session
from weread_sync.db.models import SyncLog

NOISY_LOGGERS = {
    "urllib3": logging.WARNING,
    "requests": logging.WARNING,
    "apscheduler": logging.WARNING,
    "waitress": logging.WARNING,
}

# Event dict keys that are not stored as details
_RESERVED_KEYS = {"event", "level", "timestamp", "logger", "sync_run_id", "exc_info", "_record", "_from_structlog"}


def setup_logging(level: str = "INFO", json_logs: bool = False) -> None:
    """
    Configure structlog and the root stdlib logger.

    Args:
        level: Root log level name
        json_logs: Render one JSON object per line instead of console output
    """
    shared_processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.stdlib.ExtraAdder(),
    ]

    structlog.configure(
        processors=shared_processors + [
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    renderer = structlog.processors.JSONRenderer() if json_logs else structlog.dev.ConsoleRenderer(colors=True)
    formatter = structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=shared_processors,
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            renderer,
        ],
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.addHandler(handler)
    root_logger.setLevel(getattr(logging, level.upper(), logging.INFO))

    for name, noisy_level in NOISY_LOGGERS.items():
        logging.getLogger(name).setLevel(noisy_level)


def _json_safe(value: Any) -> Any:
    if isinstance(value, (str, int, float, bool)) or value is None:
        return value
    return str(value)


def _split_event(record: logging.LogRecord) -> tuple:
    """Return (message, run id, details) for a structlog or plain stdlib record."""
    if not isinstance(record.msg, dict):
        return record.getMessage(), None, None

    event: Dict[str, Any] = record.msg
    details = {
        key: _json_safe(value)
        for key, value in event.items()
        if key not in _RESERVED_KEYS
    }
    return str(event.get("event", "")), event.get("sync_run_id"), details or None


class DatabaseLogHandler(logging.Handler):
    """
    Writes records to the sync_log table, keeping the newest max_logs rows.
    """

    def __init__(self, max_logs: int = 1000):
        super().__init__()
        self.max_logs = max_logs

    def emit(self, record: logging.LogRecord) -> None:
        try:
            message, sync_run_id, details = _split_event(record)

            with get_db_session() as session:
                entry = SyncLog(
                    level=record.levelname,
                    logger=record.name,
                    message=message,
                    details=details,
                    sync_run_id=sync_run_id,
                )
                session.add(entry)
                session.flush()

                cutoff = entry.id - self.max_logs
                if cutoff > 0:
                    session.query(SyncLog).filter(SyncLog.id <= cutoff).delete()

        except Exception:
            self.handleError(record)


def init_db_logging(max_logs: int = 1000) -> DatabaseLogHandler:
    """Attach the database handler to the root logger. Call after init_db()."""
    db_handler = DatabaseLogHandler(max_logs=max_logs)
    db_handler.setLevel(logging.INFO)
    logging.getLogger().addHandler(db_handler)
    return db_handler


def get_logger(name: str = __name__) -> structlog.stdlib.BoundLogger:
    """Get a configured logger instance."""
    return structlog.get_logger(name)


class SyncLogger:
    """
    Logger for one sync run.

    Used as a context manager, it binds the run id into the structlog
    context so events from the API clients are tagged with it too.
    """

    def __init__(self, sync_run_id: str, name: str = "weread_sync.sync"):
        self.sync_run_id = sync_run_id
        self.logger = get_logger(name).bind(sync_run_id=sync_run_id)
        self._bound: Optional[Dict[str, Any]] = None

    def __enter__(self) -> "SyncLogger":
        self._bound = structlog.contextvars.bind_contextvars(sync_run_id=self.sync_run_id)
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        structlog.contextvars.reset_contextvars(**self._bound)
        self._bound = None

    def info(self, message: str, /, **kwargs: Any) -> None:
        self.logger.info(message, **kwargs)

    def warning(self, message: str, **kwargs: Any) -> None:
        self.logger.warning(message, **kwargs)

    def error(self, message: str, **kwargs: Any) -> None:
        self.logger.error(message, **kwargs)

    def debug(self, message: str, **kwargs: Any) -> None:
        self.logger.debug(message, **kwargs)

    def exception(self, message: str, **kwargs: Any) -> None:
        """Log at error level with the current traceback."""
        self.logger.exception(message, **kwargs)
