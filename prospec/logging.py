"""structlog configuration shared by the API process and the pricing client."""

from __future__ import annotations

import logging
import sys
from typing import IO

import structlog

from prospec.config import settings


class _TeeWriter:
    """Mirror log lines to stdout and an append-only JSON-lines file.

    A file that cannot be opened or written is dropped with a warning on
    stderr; stdout logging keeps going.
    """

    def __init__(self, file_path: str) -> None:
        self._file: IO[str] | None = None
        try:
            self._file = open(file_path, "a")  # noqa: SIM115
        except OSError as exc:
            print(f"WARNING: cannot open log file {file_path!r}: {exc}", file=sys.stderr)

    def _drop_file(self) -> None:
        self._file = None
        print("WARNING: log file write failed, file logging disabled", file=sys.stderr)

    def write(self, data: str) -> None:
        sys.stdout.write(data)
        if self._file is None:
            return
        try:
            self._file.write(data)
            self._file.flush()
        except (OSError, ValueError):
            self._drop_file()

    def flush(self) -> None:
        sys.stdout.flush()
        if self._file is None:
            return
        try:
            self._file.flush()
        except (OSError, ValueError):
            self._drop_file()


def _resolve_level(name: str) -> int:
    level = logging.getLevelName(name.upper())
    return level if isinstance(level, int) else logging.INFO


def configure_logging() -> None:
    """Configure structlog: console output in development, JSON lines elsewhere.

    LOG_FILE additionally tees every line into the given file.
    """
    renderer = (
        structlog.dev.ConsoleRenderer()
        if settings.environment == "development"
        else structlog.processors.JSONRenderer()
    )

    if settings.log_file:
        tee = _TeeWriter(settings.log_file)
        logger_factory = structlog.PrintLoggerFactory(file=tee)  # type: ignore[arg-type]
    else:
        logger_factory = structlog.PrintLoggerFactory()

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(_resolve_level(settings.log_level)),
        context_class=dict,
        logger_factory=logger_factory,
        cache_logger_on_first_use=True,
    )
