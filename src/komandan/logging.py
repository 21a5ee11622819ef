"""Logging utilities for komandan.

Every module logs through ``logging.getLogger(__name__)`` below the
``komandan`` logger. This module adds:
- A TRACE level that shows every remote command
- Console/file configuration driven by a -v count or a level name
- Scope and timing context managers
- Host/task-bound loggers for worker threads
"""

import logging
import time
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Generator

ROOT_LOGGER = "komandan"

DEFAULT_FORMAT = "%(levelname)s [%(name)s] %(message)s"
DEBUG_FORMAT = "%(asctime)s %(levelname)s [%(name)s:%(threadName)s] %(message)s"
TRACE_FORMAT = "%(asctime)s.%(msecs)03d %(levelname)s [%(name)s:%(threadName)s:%(lineno)d] %(message)s"

# More detailed than DEBUG
TRACE = 5
logging.addLevelName(TRACE, "TRACE")

VERBOSITY_LEVELS = {
    0: logging.WARNING,   # Default: warnings and errors only
    1: logging.INFO,      # -v: connections and unit outcomes
    2: logging.DEBUG,     # -vv: plan steps and transfers
    3: TRACE,             # -vvv: every remote command
}

SENSITIVE_PLACEHOLDER = "<command hidden: contains a secret>"


def get_level_from_verbosity(verbosity: int) -> int:
    """Convert a -v count to a logging level.

    Args:
        verbosity: Number of -v flags

    Returns:
        Logging level constant
    """
    return VERBOSITY_LEVELS[max(0, min(verbosity, 3))]


def get_level_from_name(level_name: str) -> int:
    """Convert a level name to a logging level.

    Args:
        level_name: trace, debug, info, warning, error or critical

    Returns:
        Logging level constant

    Raises:
        ValueError: If the level name is invalid
    """
    level_map = {
        "trace": TRACE,
        "debug": logging.DEBUG,
        "info": logging.INFO,
        "warning": logging.WARNING,
        "error": logging.ERROR,
        "critical": logging.CRITICAL,
    }
    level_lower = level_name.lower()
    if level_lower not in level_map:
        valid = ", ".join(level_map.keys())
        raise ValueError(f"Invalid log level: {level_name}. Valid levels: {valid}")
    return level_map[level_lower]


def configure_logging(
    level: int = logging.WARNING,
    format_string: str | None = None,
    debug: bool = False,
    log_file: str | Path | None = None,
    file_level: int | None = None,
) -> None:
    """Configure the ``komandan`` logger.

    Handlers previously installed by this function are replaced, so it
    can be called again to change the level. Loggers of other libraries
    are left alone.

    Args:
        level: Console logging level
        format_string: Custom console format (chosen from the level if None)
        debug: Use the detailed format regardless of level
        log_file: Optional path to also write logs to
        file_level: Level for the file handler (defaults to level)

    Example:
        >>> configure_logging(level=logging.INFO)
        >>> configure_logging(level=TRACE, log_file="/tmp/komandan.log")
    """
    if format_string is None:
        if level <= TRACE:
            format_string = TRACE_FORMAT
        elif debug or level <= logging.DEBUG:
            format_string = DEBUG_FORMAT
        else:
            format_string = DEFAULT_FORMAT

    logger = logging.getLogger(ROOT_LOGGER)
    logger.setLevel(min(level, file_level or level))
    logger.propagate = False

    for handler in logger.handlers[:]:
        logger.removeHandler(handler)
        handler.close()

    console_handler = logging.StreamHandler()
    console_handler.setLevel(level)
    console_handler.setFormatter(logging.Formatter(format_string))
    logger.addHandler(console_handler)

    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)

        file_handler = logging.FileHandler(log_path)
        file_handler.setLevel(file_level or level)
        # Files always get timestamps and thread names
        file_handler.setFormatter(logging.Formatter(TRACE_FORMAT))
        logger.addHandler(file_handler)


def log_command(logger: logging.Logger, label: str, command: str, sensitive: bool = False) -> None:
    """Log a remote command at TRACE level, hiding commands that embed secrets."""
    if logger.isEnabledFor(TRACE):
        logger.log(TRACE, f"[{label}] $ {SENSITIVE_PLACEHOLDER if sensitive else command}")


def _format_context(context: dict[str, Any]) -> str:
    return ", ".join(f"{k}={v}" for k, v in context.items() if v is not None)


@contextmanager
def log_scope(
    logger: logging.Logger,
    message: str,
    level: int = logging.INFO,
    **context: Any,
) -> Generator[None, None, None]:
    """Log entry and exit of a scope.

    Example:
        >>> with log_scope(logger, "Batch", hosts=10):
        ...     pass
        INFO: Entering: Batch (hosts=10)
        INFO: Exiting: Batch (hosts=10)
    """
    context_str = _format_context(context)
    full_message = f"{message} ({context_str})" if context_str else message

    logger.log(level, f"Entering: {full_message}")
    try:
        yield
    finally:
        logger.log(level, f"Exiting: {full_message}")


@contextmanager
def log_performance(
    logger: logging.Logger,
    operation: str,
    level: int = logging.INFO,
    threshold: float | None = None,
    **context: Any,
) -> Generator[None, None, None]:
    """Time an operation and log its duration.

    Args:
        logger: Logger instance to use
        operation: Description of the operation being timed
        level: Log level to use
        threshold: Only log if the duration reaches this many seconds
        **context: Additional context to include in the message
    """
    start_time = time.perf_counter()
    try:
        yield
    finally:
        duration = time.perf_counter() - start_time
        if threshold is None or duration >= threshold:
            full_message = f"{operation} completed in {duration:.3f}s"
            context_str = _format_context(context)
            if context_str:
                full_message += f" ({context_str})"
            logger.log(level, full_message)


class StructuredLogger:
    """Logger that appends fixed context, such as host and task, to messages.

    Instances are immutable; ``bind`` returns a new logger, so one can be
    handed to each worker thread without locking.

    Example:
        >>> log = get_logger("komandan.scheduler", host="web01")
        >>> log.bind(task="uptime").info("Unit finished")
        INFO [komandan.scheduler] Unit finished (host=web01, task=uptime)
    """

    def __init__(self, name: str, **context: Any) -> None:
        self.logger = logging.getLogger(name)
        self.context: dict[str, Any] = dict(context)

    def bind(self, **context: Any) -> "StructuredLogger":
        """A logger with additional context."""
        return StructuredLogger(self.logger.name, **{**self.context, **context})

    def _format_message(self, message: str, **extra: Any) -> str:
        context_str = _format_context({**self.context, **extra})
        return f"{message} ({context_str})" if context_str else message

    def log(self, level: int, message: str, **extra: Any) -> None:
        """Log a message at the given level."""
        if self.logger.isEnabledFor(level):
            self.logger.log(level, self._format_message(message, **extra))

    def trace(self, message: str, **extra: Any) -> None:
        self.log(TRACE, message, **extra)

    def debug(self, message: str, **extra: Any) -> None:
        self.log(logging.DEBUG, message, **extra)

    def info(self, message: str, **extra: Any) -> None:
        self.log(logging.INFO, message, **extra)

    def warning(self, message: str, **extra: Any) -> None:
        self.log(logging.WARNING, message, **extra)

    def error(self, message: str, **extra: Any) -> None:
        self.log(logging.ERROR, message, **extra)

    @contextmanager
    def performance(
        self,
        operation: str,
        level: int = logging.INFO,
        threshold: float | None = None,
    ) -> Generator[None, None, None]:
        """Time an operation, logging it with this logger's context."""
        with log_performance(self.logger, operation, level, threshold, **self.context):
            yield


def get_logger(name: str, **context: Any) -> StructuredLogger:
    """Get a structured logger.

    Args:
        name: Logger name (typically __name__)
        **context: Fixed context, e.g. host= and task=

    Returns:
        StructuredLogger instance
    """
    return StructuredLogger(name, **context)
