"""Structured logging for adstudio.

Console output is rendered by structlog (colored or JSON). Every event emitted
while a pipeline run is active carries that run's ``run_id`` and the project
phase it had reached, so interleaved runs can be told apart in one log stream.
"""

import logging
import sys
from contextlib import contextmanager
from contextvars import ContextVar
from typing import Iterator, Optional

import structlog

current_run_id: ContextVar[Optional[str]] = ContextVar("current_run_id", default=None)
current_phase: ContextVar[Optional[str]] = ContextVar("current_phase", default=None)

# Provider SDKs and HTTP stacks log every request at INFO
PROVIDER_LOGGERS = (
    "httpx",
    "httpcore",
    "aiohttp",
    "google_genai",
    "google_genai.models",
)


def add_pipeline_context(_logger, _method_name, event_dict):
    """Structlog processor that tags events with the active run and phase."""
    run_id = current_run_id.get()
    if run_id:
        event_dict.setdefault("run_id", run_id)
        phase = current_phase.get()
        if phase:
            event_dict.setdefault("phase", phase)
    return event_dict


def _formatter(shared_processors: list, renderer) -> structlog.stdlib.ProcessorFormatter:
    return structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=shared_processors,
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            renderer,
        ],
    )


def setup_logging(log_level: str = "INFO", json_output: bool = False, log_file: Optional[str] = None) -> None:
    """Configure structlog and the stdlib root logger.

    Args:
        log_level: Root level name. Unknown names fall back to INFO.
        json_output: Render console lines as JSON instead of colored text.
        log_file: Optional path that also receives every line as JSON.
    """
    shared_processors = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        add_pipeline_context,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]

    structlog.configure(
        processors=[
            *shared_processors,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    console_renderer = (
        structlog.processors.JSONRenderer() if json_output else structlog.dev.ConsoleRenderer(colors=True)
    )
    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setFormatter(_formatter(shared_processors, console_renderer))

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(console_handler)

    if log_file:
        file_handler = logging.FileHandler(log_file)
        file_handler.setFormatter(_formatter(shared_processors, structlog.processors.JSONRenderer()))
        root_logger.addHandler(file_handler)

    root_logger.setLevel(getattr(logging, log_level.upper(), logging.INFO))

    for logger_name in PROVIDER_LOGGERS:
        logging.getLogger(logger_name).setLevel(logging.WARNING)


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)


def set_run_context(run_id: str) -> None:
    """Mark the current task as running pipeline ``run_id``."""
    current_run_id.set(run_id)
    current_phase.set(None)


def set_phase_context(phase: str) -> None:
    current_phase.set(phase)


def clear_run_context() -> None:
    current_run_id.set(None)
    current_phase.set(None)


@contextmanager
def run_context(run_id: str) -> Iterator[None]:
    """Scope log correlation to one pipeline run."""
    set_run_context(run_id)
    try:
        yield
    finally:
        clear_run_context()
