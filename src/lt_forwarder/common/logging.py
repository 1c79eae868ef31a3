"""Logging setup for the forwarder.

Logs are structured with structlog and routed through the standard library
so that handlers (console, file) are configured in one place. Log lines go
to stderr; stdout is left to the CLI for the public URL.

Per-connection context (the downstream peer) is bound with
``structlog.contextvars`` inside each forward task, so dial and relay lines
carry it without passing it around.
"""

import logging
import sys
from typing import TextIO

import structlog
from structlog.typing import Processor

# Loggers that are chatty at INFO about sockets we close on purpose
NOISY_LOGGERS = ("asyncio",)


def setup_logging(
    level: str = "INFO",
    json_format: bool = False,
    log_file: str | None = None,
    stream: TextIO | None = None,
) -> None:
    """Configure structured logging for the forwarder process.

    Args:
        level: Logging level name (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        json_format: Render one JSON object per line instead of console output
        log_file: Also append plain-text lines to this file
        stream: Console stream, stderr by default

    Raises:
        ValueError: If ``level`` is not a known level name
    """
    log_level = logging.getLevelName(level.upper())
    if not isinstance(log_level, int):
        raise ValueError(f"Unknown log level: {level}")

    root_logger = logging.getLogger()
    root_logger.handlers = []
    root_logger.setLevel(log_level)

    console_handler = logging.StreamHandler(stream or sys.stderr)
    console_handler.setLevel(log_level)
    console_handler.setFormatter(logging.Formatter("%(message)s"))
    root_logger.addHandler(console_handler)

    if log_file:
        file_handler = logging.FileHandler(log_file)
        file_handler.setLevel(log_level)
        file_handler.setFormatter(
            logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")
        )
        root_logger.addHandler(file_handler)

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(
            log_level if log_level <= logging.DEBUG else logging.WARNING
        )

    processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]
    if json_format:
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=_is_tty(stream)))

    structlog.configure(
        processors=processors,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )


def _is_tty(stream: TextIO | None) -> bool:
    target = stream or sys.stderr
    return hasattr(target, "isatty") and target.isatty()


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """Get a logger for a module (usually ``__name__``)."""
    return structlog.get_logger(name)  # type: ignore[no-any-return]
