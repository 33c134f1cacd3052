"""
Rate-retry metrics.

Every measurement goes to an OpenTelemetry meter and to in-process counters;
the latter back the queue-size gauge and make a run's numbers inspectable.
"""

from __future__ import annotations

from collections import defaultdict
from collections.abc import Iterable
from functools import lru_cache
from typing import Any

from opentelemetry import metrics
from opentelemetry.metrics import CallbackOptions, Observation

METER_NAME = 'rate-retry'


class RateLimitMetrics:
    """Counters and histograms for the retry processor."""

    def __init__(self, meter: metrics.Meter | None = None):
        self._meter = meter or metrics.get_meter(METER_NAME)
        self.messages_processed: dict[tuple[str, int], int] = defaultdict(int)
        self.errors: dict[tuple[str, str], int] = defaultdict(int)
        self.queue_sizes: dict[tuple[str, int], int] = {}
        self.durations_ms: dict[str, list[float]] = defaultdict(list)

        self._processed_counter = self._meter.create_counter(
            'ai_rate_retry_messages_processed',
            description='Retried model requests processed',
        )
        self._error_counter = self._meter.create_counter(
            'ai_rate_retry_errors',
            description='Retry processing errors by type',
        )
        self._duration_histogram = self._meter.create_histogram(
            'ai_rate_retry_processing_duration',
            unit='ms',
            description='Time spent processing one retried request',
        )
        self._meter.create_observable_gauge(
            'ai_rate_retry_queue_size',
            callbacks=[self._observe_queue_sizes],
            description='Requests waiting per classification and generation',
        )

    def _observe_queue_sizes(self, options: CallbackOptions) -> Iterable[Observation]:
        for (classification, generation), size in list(self.queue_sizes.items()):
            yield Observation(size, {'classification': classification, 'generation': generation})

    def record_message_processed(self, classification: str, generation: int = 1) -> None:
        self.messages_processed[(classification, generation)] += 1
        self._processed_counter.add(1, {'classification': classification, 'generation': generation})

    def update_queue_size(self, size: int, classification: str, generation: int) -> None:
        self.queue_sizes[(classification, generation)] = size

    def record_error(self, error_type: str, classification: str) -> None:
        self.errors[(error_type, classification)] += 1
        self._error_counter.add(1, {'error_type': error_type, 'classification': classification})

    def record_processing_duration(self, duration_ms: float, classification: str) -> None:
        self.durations_ms[classification].append(duration_ms)
        self._duration_histogram.record(duration_ms, {'classification': classification})

    def snapshot(self) -> dict[str, Any]:
        """In-process counters as plain data."""
        return {
            'messages_processed': {f"{c}:gen{g}": n for (c, g), n in self.messages_processed.items()},
            'errors': {f"{t}:{c}": n for (t, c), n in self.errors.items()},
            'queue_sizes': {f"{c}:gen{g}": n for (c, g), n in self.queue_sizes.items()},
        }


@lru_cache
def get_rate_limit_metrics() -> RateLimitMetrics:
    """Process-wide metrics instance."""
    return RateLimitMetrics()
