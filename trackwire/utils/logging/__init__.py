"""structlog setup and logger factories for trackwire.

Every component takes an optional injected LoggerProtocol and otherwise
falls back to the logger bound in the current context. The host
application calls configure_logging() once; trackwire never configures
logging on import.

Credentials never reach a log line: fields named like a token, a refresh
token or an Authorization header are masked by a processor before
rendering.

Usage:
    from trackwire.utils.logging import configure_logging, get_component_logger

    configure_logging("DEBUG", json_output=False)
    logger = get_component_logger("DurableQueue")
    logger.info("queue_hydrated", restored=12)
"""

from __future__ import annotations

import logging
import sys
from contextvars import ContextVar
from typing import Any, MutableMapping, Optional, TextIO

import structlog

from trackwire.config.constants import PLATFORM_NAME, PLATFORM_VERSION
from trackwire.protocols import LoggerProtocol

_configured = False

_current_logger: ContextVar[Optional[LoggerProtocol]] = ContextVar(
    "trackwire_current_logger",
    default=None,
)

# Per-request chatter from the HTTP and socket libraries
_QUIET_LIBRARIES = ("httpx", "httpcore", "websockets", "asyncio")

_SECRET_FIELDS = frozenset({
    "token",
    "access_token",
    "refresh_token",
    "accesstoken",
    "refreshtoken",
    "authorization",
})
_MASK = "***"


def mask_credentials(
    _logger: Any, _method: str, event_dict: MutableMapping[str, Any]
) -> MutableMapping[str, Any]:
    """structlog processor replacing credential values with a mask."""
    for key in list(event_dict):
        if key.lower() in _SECRET_FIELDS and event_dict[key]:
            event_dict[key] = _MASK
        elif isinstance(event_dict[key], dict):
            event_dict[key] = {
                k: (_MASK if k.lower() in _SECRET_FIELDS and v else v)
                for k, v in event_dict[key].items()
            }
    return event_dict


class Logger:
    """LoggerProtocol over a structlog bound logger.

    bind() returns a new Logger chained on the bound one, so context
    accumulates the way structlog's own bind does.
    """

    def __init__(self, bound: Any = None, **context: Any):
        base = bound if bound is not None else structlog.get_logger(PLATFORM_NAME)
        self._bound = base.bind(**context) if context else base

    def debug(self, msg: str, **kwargs: Any) -> None:
        self._bound.debug(msg, **kwargs)

    def info(self, msg: str, **kwargs: Any) -> None:
        self._bound.info(msg, **kwargs)

    def warning(self, msg: str, **kwargs: Any) -> None:
        self._bound.warning(msg, **kwargs)

    def error(self, msg: str, **kwargs: Any) -> None:
        self._bound.error(msg, **kwargs)

    def exception(self, msg: str, **kwargs: Any) -> None:
        self._bound.exception(msg, **kwargs)

    def bind(self, **kwargs: Any) -> "Logger":
        return Logger(self._bound.bind(**kwargs))


def configure_logging(
    level: str = "INFO",
    *,
    json_output: bool = True,
    stream: Optional[TextIO] = None,
) -> bool:
    """Configure structlog and stdlib logging for the host application.

    Only the first call takes effect, so embedding trackwire in an app that
    already configured logging through an earlier AppContext is harmless.

    Args:
        level: Minimum level name (DEBUG, INFO, WARNING, ERROR)
        json_output: JSON lines when True, coloured console output otherwise
        stream: Destination for stdlib handlers (stdout if None)

    Returns:
        True when this call applied the configuration.
    """
    global _configured
    if _configured:
        return False

    log_level = logging.getLevelName(level.upper())
    if not isinstance(log_level, int):
        log_level = logging.INFO

    logging.basicConfig(level=log_level, format="%(message)s", stream=stream or sys.stdout)
    for name in _QUIET_LIBRARIES:
        logging.getLogger(name).setLevel(max(log_level, logging.WARNING))

    renderer = (
        structlog.processors.JSONRenderer(sort_keys=True)
        if json_output
        else structlog.dev.ConsoleRenderer(colors=True)
    )
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            mask_credentials,
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        cache_logger_on_first_use=True,
    )
    _configured = True
    return True


def reset_logging_configuration() -> None:
    """Allow the next configure_logging() call to apply again."""
    global _configured
    _configured = False
    structlog.reset_defaults()


def create_logger(component: str, **context: Any) -> LoggerProtocol:
    """Root logger for an AppContext, tagged with the library version."""
    return Logger(
        library=PLATFORM_NAME,
        library_version=PLATFORM_VERSION,
        component=component,
        **context,
    )


def get_current_logger() -> LoggerProtocol:
    """Logger bound in the current context, or a fresh default one."""
    logger = _current_logger.get()
    return logger if logger is not None else Logger()


def set_current_logger(logger: LoggerProtocol) -> None:
    _current_logger.set(logger)


def get_component_logger(
    component: str,
    logger: Optional[LoggerProtocol] = None,
) -> LoggerProtocol:
    """Bind a component name onto the injected or current logger.

    This is how every trackwire component obtains its logger.
    """
    return (logger or get_current_logger()).bind(component=component)


__all__ = [
    "Logger",
    "configure_logging",
    "create_logger",
    "get_component_logger",
    "get_current_logger",
    "mask_credentials",
    "reset_logging_configuration",
    "set_current_logger",
    "_current_logger",
]
