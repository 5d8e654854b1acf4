"""
Logging configuration for the Intelligence Graph service.

All package loggers hang off the ``intel_graph`` root logger. The root is
configured once, at process start, by ``setup_logging``; modules only
ever call ``get_logger(__name__)``.
"""

import logging
import sys
from logging.handlers import RotatingFileHandler
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from intel_graph.config.settings import LoggingSettings


ROOT_LOGGER_NAME = "intel_graph"

_DEFAULT_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
_DEFAULT_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

_logging_configured = False


def setup_logging(settings: "LoggingSettings | None" = None) -> logging.Logger:
    """
    Attach console and rotating-file handlers to the package root logger.

    Calling it again is a no-op until ``reset_logging`` is called.

    Args:
        settings: Logging configuration. None gives INFO to stdout.

    Returns:
        The package root logger
    """
    global _logging_configured

    logger = logging.getLogger(ROOT_LOGGER_NAME)
    if _logging_configured:
        return logger

    logger.handlers.clear()

    if settings is None:
        level = logging.INFO
        formatter = logging.Formatter(_DEFAULT_FORMAT, _DEFAULT_DATE_FORMAT)
        to_console = True
        file_path = None
    else:
        level = getattr(logging, settings.level)
        formatter = logging.Formatter(settings.format, settings.date_format)
        to_console = settings.log_to_console
        file_path = settings.file_path

    logger.setLevel(level)

    if to_console:
        console = logging.StreamHandler(sys.stdout)
        console.setLevel(level)
        console.setFormatter(formatter)
        logger.addHandler(console)

    if file_path is not None:
        file_path.parent.mkdir(parents=True, exist_ok=True)
        rotating = RotatingFileHandler(
            filename=str(file_path),
            maxBytes=settings.max_file_size_mb * 1024 * 1024,
            backupCount=settings.backup_count,
            encoding="utf-8",
        )
        rotating.setLevel(level)
        rotating.setFormatter(formatter)
        logger.addHandler(rotating)

    # Keep records out of the interpreter root logger.
    logger.propagate = False
    _logging_configured = True
    return logger


def get_logger(name: str | None = None) -> logging.Logger:
    """
    Return a logger below the package root.

    Example:
        >>> logger = get_logger(__name__)
        >>> logger.info("Snapshot complete")
    """
    if name is None:
        return logging.getLogger(ROOT_LOGGER_NAME)
    if name == ROOT_LOGGER_NAME or name.startswith(f"{ROOT_LOGGER_NAME}."):
        return logging.getLogger(name)
    return logging.getLogger(f"{ROOT_LOGGER_NAME}.{name}")


def reset_logging() -> None:
    """Close and drop all handlers so ``setup_logging`` can run again."""
    global _logging_configured

    logger = logging.getLogger(ROOT_LOGGER_NAME)
    for handler in list(logger.handlers):
        handler.close()
        logger.removeHandler(handler)
    logger.propagate = True
    _logging_configured = False


class LoggerAdapter(logging.LoggerAdapter):
    """
    Appends ``[key=value]`` pairs to every message.

    Used to tag log lines with tenant and snapshot ids inside background
    work, where the call stack no longer says whose work it is.
    """

    def process(self, msg: Any, kwargs: Any) -> tuple[Any, Any]:
        if self.extra:
            context_str = " ".join(f"[{k}={v}]" for k, v in self.extra.items())
            msg = f"{msg} {context_str}"
        return msg, kwargs


def get_logger_with_context(name: str | None = None, **context: Any) -> LoggerAdapter:
    """
    Get a logger whose messages carry the given context.

    Example:
        >>> log = get_logger_with_context(__name__, tenant="t1", snapshot="s1")
        >>> log.info("Generating")  # "Generating [tenant=t1] [snapshot=s1]"
    """
    return LoggerAdapter(get_logger(name), context)
