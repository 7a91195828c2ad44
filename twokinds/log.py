"""
Logging Setup

Every module logs through the standard library (`logging.getLogger(__name__)`).
This module decides where those records go, based on LOGGER_TYPE:

- console:  StreamHandler to stderr
- database: DatabaseLogHandler only
- hybrid:   both (default)
- null:     nothing (useful for tests)

The database handler never blocks the caller and never raises into it:
each record becomes an insert task on the running event loop, and failed
inserts are reported through Handler.handleError.
"""

import asyncio
import json
import logging

from twokinds.models import LogEntry


LOGGER_NAME = "twokinds"

CONSOLE_FORMAT = "%(asctime)s %(levelname)-7s [%(name)s] %(message)s"

# Attributes present on every LogRecord; anything else came in via `extra=`
_RESERVED_ATTRS = set(vars(logging.LogRecord("", 0, "", 0, "", (), None))) | {
    "message", "asctime", "taskName",
}


def _record_details(record: logging.LogRecord) -> dict | None:
    """Collect `extra=` fields from a record as JSON-safe values."""
    extra = {
        key: value for key, value in record.__dict__.items()
        if key not in _RESERVED_ATTRS and not key.startswith("_")
    }
    if record.exc_info and record.exc_info[1] is not None:
        extra["exception"] = repr(record.exc_info[1])
    if not extra:
        return None
    # Round-trip through json so the JSON column never sees odd types
    return json.loads(json.dumps(extra, default=str))


class DatabaseLogHandler(logging.Handler):
    """
    Persist log records to the `logs` table without blocking.

    emit() only schedules the insert; the task is tracked so tests (and
    shutdown) can wait for outstanding writes with drain().
    """

    def __init__(self, session_factory=None, level=logging.NOTSET):
        super().__init__(level)
        self._session_factory = session_factory
        self._pending: set[asyncio.Task] = set()

    @property
    def session_factory(self):
        if self._session_factory is None:
            from twokinds.database import AsyncSessionLocal
            self._session_factory = AsyncSessionLocal
        return self._session_factory

    def emit(self, record: logging.LogRecord) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            # No loop (import time, scripts): the console handler covers it
            return

        try:
            entry = {
                "level": record.levelname.lower(),
                "context": record.name,
                "message": record.getMessage(),
                "details": _record_details(record),
            }
        except Exception:
            self.handleError(record)
            return

        task = loop.create_task(self._insert(entry, record))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _insert(self, entry: dict, record: logging.LogRecord) -> None:
        try:
            async with self.session_factory() as session:
                session.add(LogEntry(**entry))
                await session.commit()
        except Exception:
            self.handleError(record)

    async def drain(self) -> None:
        """Wait for every scheduled insert to finish."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)


def configure_logging(settings, session_factory=None) -> list[logging.Handler]:
    """
    Install handlers on the `twokinds` logger according to settings.

    Safe to call more than once: handlers installed by a previous call are
    replaced.

    Returns:
        The handlers that were installed
    """
    logger = logging.getLogger(LOGGER_NAME)
    for handler in list(logger.handlers):
        if getattr(handler, "_twokinds_managed", False):
            logger.removeHandler(handler)

    handlers: list[logging.Handler] = []
    if settings.LOGGER_TYPE in ("console", "hybrid"):
        console = logging.StreamHandler()
        console.setFormatter(logging.Formatter(CONSOLE_FORMAT))
        handlers.append(console)
    if settings.LOGGER_TYPE in ("database", "hybrid"):
        handlers.append(DatabaseLogHandler(session_factory))
    if settings.LOGGER_TYPE == "null":
        handlers.append(logging.NullHandler())

    for handler in handlers:
        handler._twokinds_managed = True
        logger.addHandler(handler)

    logger.setLevel(settings.LOGGER_MIN_LEVEL.upper())
    logger.propagate = False
    return handlers
