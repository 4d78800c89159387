"""Logging configuration for the uupd command line."""

from __future__ import annotations

import logging
import sys
from typing import TYPE_CHECKING, TextIO

import structlog

if TYPE_CHECKING:
    from pathlib import Path

LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warning": logging.WARNING,
    "error": logging.ERROR,
}


def resolve_level(log_level: str, *, quiet: bool = False) -> int:
    """Map a level name to a ``logging`` level; ``quiet`` forces ERROR."""
    if quiet:
        return logging.ERROR
    return LEVELS.get(log_level.lower(), logging.INFO)


def configure_logging(
    log_level: str,
    *,
    json_output: bool = False,
    quiet: bool = False,
    log_file: Path | None = None,
    stream: TextIO | None = None,
    progress_bars: bool = False,
) -> None:
    """Configure structlog and standard logging with the specified level.

    Args:
        log_level: Log level string (debug, info, warning, error).
        json_output: Render one JSON object per line instead of console output.
        quiet: Only log errors.
        log_file: Append log lines to this file instead of stderr.
        stream: Explicit output stream, mainly for tests.
        progress_bars: Progress bars own the terminal. Only warnings and errors
            are logged to it meanwhile.
    """
    level = resolve_level(log_level, quiet=quiet)
    if progress_bars and log_file is None and stream is None:
        level = max(level, logging.WARNING)

    if stream is None:
        if log_file is not None:
            log_file.parent.mkdir(parents=True, exist_ok=True)
            stream = log_file.open("a")  # noqa: SIM115
        else:
            stream = sys.stderr

    logging.basicConfig(
        format="%(message)s",
        level=level,
        stream=stream,
        force=True,
    )

    renderer: structlog.typing.Processor
    if json_output:
        renderer = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=log_file is None and stream.isatty())

    structlog.configure(
        wrapper_class=structlog.make_filtering_bound_logger(level),
        processors=[
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso" if json_output else "%Y-%m-%d %H:%M:%S"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            renderer,
        ],
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=stream),
        cache_logger_on_first_use=False,
    )
