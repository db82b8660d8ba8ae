"""Structured logging helpers with correlation IDs.

Every module in :mod:`docsite` obtains its logger through :func:`get_logger`.
The returned :class:`LoggerAdapter` injects ``operation``, ``status`` and the
context-local ``correlation_id`` into each record so the :class:`JsonFormatter`
can emit one JSON object per line. Library modules never configure handlers;
the CLI calls :func:`setup_logging` once at the application boundary.

Examples
--------
>>> from docsite._shared.logging import get_logger, with_fields
>>> logger = get_logger(__name__)
>>> adapter = with_fields(logger, operation="clear", output_dir="/srv/site")
>>> adapter.info("Output tree cleared", extra={"removed": 3})
"""

from __future__ import annotations

import contextvars
import json
import logging
import sys
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from collections.abc import Mapping, MutableMapping
    from types import TracebackType

__all__ = [
    "CorrelationContext",
    "JsonFormatter",
    "LogValue",
    "LoggerAdapter",
    "StructuredLoggerAdapter",
    "get_correlation_id",
    "get_logger",
    "setup_logging",
    "with_fields",
]

type LogValue = Any

_correlation_id: contextvars.ContextVar[str | None] = contextvars.ContextVar(
    "docsite_correlation_id", default=None
)

_STANDARD_ATTRIBUTES = frozenset(
    {
        "name",
        "msg",
        "args",
        "created",
        "filename",
        "funcName",
        "levelname",
        "levelno",
        "lineno",
        "module",
        "msecs",
        "message",
        "pathname",
        "process",
        "processName",
        "relativeCreated",
        "thread",
        "threadName",
        "taskName",
        "exc_info",
        "exc_text",
        "stack_info",
    }
)


class JsonFormatter(logging.Formatter):
    """Render log records as single-line JSON documents.

    The payload always carries ``ts``, ``level``, ``name`` and ``message``;
    any JSON-compatible ``extra`` fields are appended. The context-local
    correlation id is added when the record does not carry one.
    """

    def format(self, record: logging.LogRecord) -> str:
        """Format ``record`` as JSON.

        Parameters
        ----------
        record : logging.LogRecord
            Record to render.

        Returns
        -------
        str
            JSON-encoded log entry.
        """
        data: dict[str, object] = {
            "ts": self.formatTime(record, "%Y-%m-%dT%H:%M:%S") + f".{int(record.msecs):03d}Z",
            "level": record.levelname,
            "name": record.name,
            "message": record.getMessage(),
        }
        for key, value in record.__dict__.items():
            if (
                key in _STANDARD_ATTRIBUTES
                or key in data
                or key.startswith("_")
                or value is None
                or not isinstance(value, (str, int, float, bool, list, dict))
            ):
                continue
            data[key] = value
        if "correlation_id" not in data:
            ctx_correlation_id = _correlation_id.get()
            if ctx_correlation_id is not None:
                data["correlation_id"] = ctx_correlation_id
        if record.exc_info:
            data["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(data, default=str)


class LoggerAdapter(logging.LoggerAdapter):  # type: ignore[type-arg]
    """Logger adapter that merges bound fields into every record.

    Parameters
    ----------
    logger : logging.Logger
        Base logger instance to wrap.
    extra : Mapping[str, object] | None, optional
        Fields bound to the adapter. Call-site ``extra`` values win on conflict.
    """

    logger: logging.Logger

    def __init__(self, logger: logging.Logger, extra: Mapping[str, object] | None = None) -> None:
        super().__init__(logger, dict(extra or {}))

    def process(self, msg: Any, kwargs: MutableMapping[str, Any]) -> tuple[Any, MutableMapping[str, Any]]:  # noqa: ANN401
        """Inject bound fields, correlation id and default status fields."""
        extra = dict(kwargs.get("extra") or {})
        for key, value in (self.extra or {}).items():
            extra.setdefault(key, value)
        if "correlation_id" not in extra:
            ctx_correlation_id = _correlation_id.get()
            if ctx_correlation_id is not None:
                extra["correlation_id"] = ctx_correlation_id
        extra.setdefault("operation", "unknown")
        kwargs["extra"] = extra
        return msg, kwargs

    def log(self, level: int, msg: object, *args: object, **kwargs: Any) -> None:  # noqa: ANN401
        """Log ``msg`` at ``level`` and derive ``status`` from the level when absent."""
        if not self.isEnabledFor(level):
            return
        extra = dict(kwargs.get("extra") or {})
        if "status" not in extra:
            if level >= logging.ERROR:
                extra["status"] = "error"
            elif level >= logging.WARNING:
                extra["status"] = "warning"
            else:
                extra["status"] = "success"
        kwargs["extra"] = extra
        msg, kwargs = self.process(msg, kwargs)
        self.logger.log(level, msg, *args, **kwargs)


StructuredLoggerAdapter = LoggerAdapter


def get_logger(name: str) -> LoggerAdapter:
    """Return a structured logger adapter for ``name``.

    A :class:`logging.NullHandler` is attached when the logger has no handlers
    so importing a library module never prints anything by itself.

    Parameters
    ----------
    name : str
        Logger name (typically ``__name__``).

    Returns
    -------
    LoggerAdapter
        Adapter with structured context injection.
    """
    logger = logging.getLogger(name)
    if not logger.handlers:
        logger.addHandler(logging.NullHandler())
    return LoggerAdapter(logger, {})


def with_fields(logger: logging.Logger | LoggerAdapter, **fields: LogValue) -> LoggerAdapter:
    """Return an adapter bound to ``fields`` on top of any fields ``logger`` already carries.

    Parameters
    ----------
    logger : logging.Logger | LoggerAdapter
        Base logger or adapter.
    **fields : LogValue
        Structured fields injected into every record.

    Returns
    -------
    LoggerAdapter
        New adapter with the merged fields.
    """
    if isinstance(logger, LoggerAdapter):
        merged = dict(logger.extra or {})
        merged.update(fields)
        return LoggerAdapter(logger.logger, merged)
    return LoggerAdapter(logger, fields)


def setup_logging(level: int | str = logging.INFO) -> None:
    """Configure the root logger to emit JSON lines on stderr, keeping stdout for command output.

    Parameters
    ----------
    level : int | str, optional
        Threshold level, either numeric or a level name. Defaults to ``INFO``.
    """
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(JsonFormatter())
    logging.basicConfig(level=level, handlers=[handler], force=True)


def get_correlation_id() -> str | None:
    """Return the correlation id of the current context, if any."""
    return _correlation_id.get()


class CorrelationContext:
    """Context manager scoping a correlation id and restoring the previous one.

    Examples
    --------
    >>> with CorrelationContext("run-42"):
    ...     assert get_correlation_id() == "run-42"
    """

    def __init__(self, correlation_id: str | None) -> None:
        self.correlation_id = correlation_id
        self._token: contextvars.Token[str | None] | None = None

    def __enter__(self) -> CorrelationContext:
        self._token = _correlation_id.set(self.correlation_id)
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        if self._token is not None:
            _correlation_id.reset(self._token)
            self._token = None
