import logging
import os
import re
import sys
import uuid
from contextvars import ContextVar
from pathlib import Path
from typing import TYPE_CHECKING, Optional

from loguru import logger

from app.core.config import Environment, settings

if TYPE_CHECKING:
    from loguru import Record

# Request id of the request being handled, None outside requests
request_id_var: ContextVar[Optional[str]] = ContextVar("request_id", default=None)

LOG_DIR = Path("logs")
LOG_FILE = LOG_DIR / "app.log"

LOG_LEVELs = {
    50: "CRITICAL",
    40: "ERROR",
    30: "WARNING",
    20: "INFO",
    10: "DEBUG",
    5: "TRACE",
    0: "NOTSET",
}

# Compact JWS: base64url header starting with '{"', payload and signature
TOKEN_PATTERN = re.compile(r"eyJ[\w-]*\.[\w-]+\.[\w-]*")
MASKED_TOKEN = "<token>"

CONSOLE_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | "
    "<level>{level: <8}</level> | "
    "<magenta>PID:{extra[process_id]}</magenta> | "
    "<yellow>ReqID:{extra[request_id]}</yellow> | "
    "<cyan>{name}:{function}:{line}</cyan> | "
    "<level>{message}</level>"
)

FILE_FORMAT = (
    "{time:YYYY-MM-DD HH:mm:ss!UTC} | "
    "{level: <8} | "
    "PID:{extra[process_id]} | "
    "ReqID:{extra[request_id]} | "
    "{name}:{function}:{line} | "
    "{message}"
)


def mask_tokens(text: str) -> str:
    """
    Replace every signed token found in `text` with a placeholder.

    Args:
        text (str): Log message

    Returns:
        str: The message without token values
    """
    return TOKEN_PATTERN.sub(MASKED_TOKEN, text)


def correlation_filter(record: "Record") -> bool:
    """
    Attach the request id and process id to a log record and mask tokens in its message.

    Records written outside a request get a fresh id so every line stays traceable
    to one worker.

    Args:
        record (Record): Log record from Loguru.

    Returns:
        bool: Always True, no record is filtered out.
    """
    record["extra"]["request_id"] = request_id_var.get() or str(uuid.uuid4())[:8]
    record["extra"]["process_id"] = os.getpid()
    record["message"] = mask_tokens(record["message"])

    return True


def log_security_event(
    category: str,
    path: str,
    message: str,
    subject: str | None = None,
    level: str = "WARNING",
) -> None:
    """
    Write one security event line.

    The line reads `eventType=<category>, username=<subject or ->, path=<path>,
    message=<message>` so that failures can be searched by category and principal.
    """
    logger.opt(depth=1).log(
        level,
        f"eventType={category}, username={subject or '-'}, path={path}, message={message}",
    )


class InterceptHandler(logging.Handler):
    """
    Send records of the standard logging module to Loguru.
    Installed on Uvicorn's loggers by `configure_uvicorn_logging`.
    """

    def emit(self, record: logging.LogRecord):
        try:
            level = logger.level(record.levelname).name
        except ValueError:
            level = record.levelno

        # Skip the frames of the logging module itself
        frame = logging.currentframe()
        depth = 2
        while frame and frame.f_code.co_filename == logging.__file__:
            frame = frame.f_back
            depth += 1

        logger.opt(depth=depth, exception=record.exc_info).log(level, record.getMessage())


def _console_level(log_level: str) -> str | int:
    if settings.current_environment == Environment.DEV:
        return logging.DEBUG

    return log_level


def setup_logger():
    """
    Configure Loguru for the gateway workers.

    A colored console sink is always added. With `log_to_file` a rotating file sink
    (10 MB per file, kept 3 months, gzip compressed) is added as well. Both sinks are
    queue backed so several workers can share them. Variable values are only shown
    in tracebacks when `debug` is on, since they may hold token material.

    Call once on startup from the application lifespan.
    """
    logger.remove()

    log_level = LOG_LEVELs.get(settings.log_level, "INFO")

    logger.add(
        sys.stdout,
        format=CONSOLE_FORMAT,
        level=_console_level(log_level),
        colorize=True,
        enqueue=True,
        filter=correlation_filter,
    )

    if settings.log_to_file:
        LOG_DIR.mkdir(exist_ok=True)

        logger.add(
            LOG_FILE,
            format=FILE_FORMAT,
            level=log_level,
            rotation="10 MB",
            retention="3 months",
            compression="gz",
            enqueue=True,
            serialize=False,
            filter=correlation_filter,
            backtrace=True,
            diagnose=settings.debug,
        )

    logger.info(
        f"Logger initialized | "
        f"Environment: {settings.current_environment.value} | "
        f"Level: {log_level} | "
        f"File: {LOG_FILE if settings.log_to_file else 'disabled'}"
    )


def configure_uvicorn_logging():
    """
    Route Uvicorn's loggers through Loguru.

    Call after setup_logger().
    """
    # Loguru does the level filtering
    logging.basicConfig(handlers=[InterceptHandler()], level=0, force=True)

    for name in logging.root.manager.loggerDict.keys():
        if name.startswith("uvicorn"):
            logging.getLogger(name).handlers = [InterceptHandler()]
            logging.getLogger(name).propagate = False

    logger.debug("Uvicorn logging configured to use Loguru")


def shutdown_logger():
    """Flush queued log records on shutdown"""
    logger.info("Shutting down logger...")
    logger.complete()
