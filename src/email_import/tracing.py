"""
OpenTelemetry tracing helpers.

Only the OpenTelemetry API is used here; the hosting process decides which
TracerProvider and exporters are installed (tests install an SDK provider
with an in-memory exporter).
"""

from collections.abc import Generator
from contextlib import contextmanager
from typing import Any

from opentelemetry import trace
from opentelemetry.trace import Span, Status, StatusCode

from .config import config


def get_tracer() -> trace.Tracer:
    """Tracer for the import pipeline, named by TRACER_NAME."""
    return trace.get_tracer(config.TRACER_NAME)


@contextmanager
def start_span(name: str, attributes: dict[str, Any] | None = None) -> Generator[Span, None, None]:
    """
    Run a block inside a span.

    None-valued attributes are dropped. An exception escaping the block is
    recorded on the span, the span status is set to ERROR and the exception
    propagates.
    """
    attrs = {k: v for k, v in (attributes or {}).items() if v is not None}
    with get_tracer().start_as_current_span(
        name,
        attributes=attrs,
        record_exception=False,
        set_status_on_exception=False,
    ) as span:
        try:
            yield span
        except BaseException as e:
            span.record_exception(e)
            span.set_status(Status(StatusCode.ERROR, str(e)))
            raise


def mark_error(span: Span, error: BaseException) -> None:
    """Record a handled error on a span without re-raising it."""
    span.record_exception(error)
    span.set_status(Status(StatusCode.ERROR, str(error)))
