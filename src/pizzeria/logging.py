"""structlog setup for the controller: JSON lines on stderr via the stdlib bridge."""

import logging

import structlog

from pizzeria.core.errors import ConfigurationError

# Client libraries that log every request below WARNING.
CLIENT_LOGGERS = ("kubernetes", "urllib3")


def resolve_level(level: int | str) -> int:
    """Return the numeric level for a name in any case (``"debug"``) or a number."""
    if isinstance(level, int):
        return level
    name = level.strip().upper()
    if name.isdigit():
        return int(name)
    resolved = logging.getLevelNamesMapping().get(name)
    if resolved is None:
        raise ConfigurationError(f"unknown log level {level!r}", details={"log_level": level})
    return resolved


def configure_logging(level: int | str = logging.INFO) -> None:
    """Configure structlog/standard logging bridge.

    The Kubernetes client and urllib3 stay at WARNING unless the controller
    itself runs at DEBUG.
    """
    resolved = resolve_level(level)

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(level=resolved, format="%(message)s")
    for name in CLIENT_LOGGERS:
        logging.getLogger(name).setLevel(resolved if resolved <= logging.DEBUG else logging.WARNING)
