"""
Logging utilities for KohakuPort.

All modules obtain a logger through ``get_logger(__name__)``; the returned
object is a loguru logger bound to the module name. ``configure_logging``
installs the sinks once at process start and routes the standard library
``logging`` records (uvicorn, httpx, docker) into loguru.
"""

import inspect
import logging
import sys
import traceback

from loguru import logger as _logger

from kohakuport.models.enums import LogLevel

LOG_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | "
    "<level>{level: <8}</level> | "
    "<cyan>{extra[name]}</cyan> - <level>{message}</level>"
)

# Third-party loggers that are too chatty below WARNING unless FULL is requested
_NOISY_LOGGERS = ("httpx", "httpcore", "docker", "urllib3", "peewee")

_logger.configure(extra={"name": "kohakuport"})


class InterceptHandler(logging.Handler):
    """Forward standard library log records to loguru."""

    def emit(self, record: logging.LogRecord) -> None:
        try:
            level: str | int = _logger.level(record.levelname).name
        except ValueError:
            level = record.levelno

        # Find the caller that issued the logging call
        frame, depth = inspect.currentframe(), 0
        while frame and (depth == 0 or frame.f_code.co_filename == logging.__file__):
            frame = frame.f_back
            depth += 1

        _logger.bind(name=record.name).opt(
            depth=depth, exception=record.exc_info
        ).log(level, record.getMessage())


def _loguru_level(level: LogLevel) -> str:
    match level:
        case LogLevel.FULL:
            return "TRACE"
        case LogLevel.DEBUG:
            return "DEBUG"
        case LogLevel.WARNING:
            return "WARNING"
        case _:
            return "INFO"


def configure_logging(level: LogLevel = LogLevel.INFO, log_file: str = "") -> None:
    """
    Configure loguru sinks and intercept standard library logging.

    Must be called before uvicorn starts so its loggers are routed here.

    Args:
        level: Verbosity level.
        log_file: Optional file path for an additional rotating sink.
    """
    loguru_level = _loguru_level(level)

    _logger.remove()
    _logger.add(sys.stderr, level=loguru_level, format=LOG_FORMAT, enqueue=False)
    if log_file:
        _logger.add(
            log_file,
            level=loguru_level,
            format=LOG_FORMAT,
            rotation="10 MB",
            retention=5,
        )

    logging.basicConfig(handlers=[InterceptHandler()], level=0, force=True)
    for name in ("uvicorn", "uvicorn.error", "uvicorn.access", "fastapi"):
        std_logger = logging.getLogger(name)
        std_logger.handlers = [InterceptHandler()]
        std_logger.propagate = False

    noisy_level = logging.DEBUG if level == LogLevel.FULL else logging.WARNING
    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(noisy_level)


def get_logger(name: str):
    """Get a loguru logger bound to a module name."""
    return _logger.bind(name=name)


def format_traceback(exc: BaseException) -> str:
    """Render an exception with its traceback as a string."""
    return "".join(traceback.format_exception(type(exc), exc, exc.__traceback__))
