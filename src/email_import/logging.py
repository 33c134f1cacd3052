"""
Structured logging configuration for the email import pipeline.

Uses structlog for structured, context-aware logging with:
- JSON output for production
- Pretty console output for development
- Per-stage timing
- Trace / provider / user propagation through context variables
"""

import logging
import sys
import time
from contextlib import contextmanager
from contextvars import ContextVar
from typing import Any, Generator

import structlog
from structlog.types import Processor

from .config import config

# Request-scoped values (trace_id, provider, user_id) added to every entry
_import_context: ContextVar[dict[str, Any]] = ContextVar('import_context', default={})


def add_context_info(
    logger: structlog.types.WrappedLogger,
    method_name: str,
    event_dict: dict[str, Any],
) -> dict[str, Any]:
    """Processor that adds the import context to log entries."""
    for key, value in _import_context.get().items():
        if value is not None:
            event_dict.setdefault(key, value)
    return event_dict


def configure_logging(
    json_output: bool = False,
    log_level: str | None = None,
) -> None:
    """
    Configure structlog for the application.

    Args:
        json_output: If True, output JSON logs (for production).
                    If False, output pretty console logs (for development).
        log_level: Override log level (defaults to config.LOG_LEVEL)
    """
    level = log_level or config.LOG_LEVEL
    level_num = getattr(logging, level.upper(), logging.INFO)

    logging.basicConfig(
        format='%(message)s',
        stream=sys.stdout,
        level=level_num,
    )

    shared_processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        add_context_info,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt='iso'),
        structlog.processors.StackInfoRenderer(),
    ]

    if json_output:
        processors: list[Processor] = [
            *shared_processors,
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ]
    else:
        processors = [
            *shared_processors,
            structlog.dev.ConsoleRenderer(colors=True),
        ]

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(level_num),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    """
    Get a structured logger instance.

    Args:
        name: Logger name (typically __name__)

    Returns:
        Configured structlog logger
    """
    return structlog.get_logger(name)


@contextmanager
def logging_context(
    trace_id: str | None = None,
    provider: str | None = None,
    user_id: int | None = None,
) -> Generator[None, None, None]:
    """
    Context manager for setting logging context variables.

    Values left as None keep whatever the enclosing context set.

    Usage:
        with logging_context(provider="google", user_id=42):
            logger.info("import.started")  # Includes provider and user_id
    """
    values = {'trace_id': trace_id, 'provider': provider, 'user_id': user_id}
    merged = {**_import_context.get(), **{k: v for k, v in values.items() if v is not None}}
    token = _import_context.set(merged)
    try:
        yield
    finally:
        _import_context.reset(token)


def set_user_id(user_id: int | None) -> None:
    """Update the user for the current context (the user can change mid-import)."""
    _import_context.set({**_import_context.get(), 'user_id': user_id})


class StageTimer:
    """
    Timer for tracking import stage durations.

    A stage that runs more than once (retries) accumulates its durations.

    Usage:
        timer = StageTimer()
        with timer.stage("headers"):
            ...
        timer.summary()
    """

    def __init__(self):
        self.stages: dict[str, float] = {}
        self.attempts: dict[str, int] = {}
        self.start_time: float = time.perf_counter()

    @contextmanager
    def stage(self, name: str) -> Generator[None, None, None]:
        """Time one attempt at a stage."""
        started = time.perf_counter()
        try:
            yield
        finally:
            elapsed = (time.perf_counter() - started) * 1000
            self.stages[name] = self.stages.get(name, 0.0) + elapsed
            self.attempts[name] = self.attempts.get(name, 0) + 1

    @property
    def total_ms(self) -> float:
        """Total elapsed time since timer creation in milliseconds."""
        return (time.perf_counter() - self.start_time) * 1000

    def summary(self) -> dict[str, Any]:
        """Get timing summary as a dictionary."""
        return {
            'total_ms': round(self.total_ms, 2),
            'stages': {k: round(v, 2) for k, v in self.stages.items()},
            'attempts': dict(self.attempts),
        }


# Initialize logging on module import (development mode by default)
# Production deployments should call configure_logging(json_output=True)
configure_logging(json_output=False)
