"""
Rate-retry processor: drains the retry queues once.

Flow per run:
1. Generation 1, per classification: retry up to GEN1_BATCH_SIZE requests on
   the Azure model (Google when Azure is unavailable). A request that is rate
   limited again moves to generation 2 and takes its provider out of rotation
   for RATE_LIMIT_COOLDOWN_SECONDS; other failures are stored as
   ``server_error`` responses.
2. Generation 2, per classification: retry one request on the fallback model.
   Any failure is stored as a terminal ``will_not_retry`` response.

The run stops early once MAX_PROCESSING_TIME_SECONDS has elapsed. Dequeued
requests that were not answered, because time ran out or the queue failed,
go back to the head of their queue.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Callable
from typing import Any

import structlog

from .availability import ModelAvailability, get_model_availability, model_key, split_model_key
from .config import RateRetryConfig, rate_retry_config
from .errors import is_rate_limit_error
from .metrics import RateLimitMetrics, get_rate_limit_metrics
from .model_client import ModelClientFactory
from .models import (
    MODEL_CLASSIFICATIONS,
    ModelClassification,
    QueuedRequest,
    QueuedResponse,
    RateRetryResult,
    ResponseError,
)
from .queue_manager import RateLimitQueueManager

logger = structlog.get_logger(__name__)

GEN2_FALLBACK_MODEL = 'google:gemini-2.0-flash'


def generation_one_model(classification: ModelClassification) -> ModelClassification:
    """Text models used for a classification; only hifi and lofi have their own."""
    return classification if classification in ('hifi', 'lofi') else 'lofi'


class RateRetryProcessor:
    """
    Usage:
        processor = RateRetryProcessor(queue)
        result = await processor.process()
    """

    def __init__(
        self,
        queue: RateLimitQueueManager,
        model_factory: ModelClientFactory | None = None,
        availability: ModelAvailability | None = None,
        metrics: RateLimitMetrics | None = None,
        settings: RateRetryConfig | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.queue = queue
        self.availability = availability or get_model_availability()
        self.model_factory = model_factory or ModelClientFactory(availability=self.availability)
        self.metrics = metrics or get_rate_limit_metrics()
        self.settings = settings or rate_retry_config
        self._clock = clock
        self._started = 0.0

    def _elapsed(self) -> float:
        return self._clock() - self._started

    def _out_of_time(self) -> bool:
        return self._elapsed() >= self.settings.MAX_PROCESSING_TIME_SECONDS

    def _available_providers(self, classification: ModelClassification) -> tuple[bool, bool]:
        return (
            self.availability.is_model_available(model_key('azure', classification)),
            self.availability.is_model_available(model_key('google', classification)),
        )

    async def _run_request(
        self, key: str, request: QueuedRequest, max_tokens: int | None = None
    ) -> dict[str, Any]:
        client = self.model_factory.get_client(key)
        try:
            return await asyncio.wait_for(
                client.generate_text(request.request.messages, max_tokens=max_tokens),
                timeout=self.settings.REQUEST_TIMEOUT_SECONDS,
            )
        except asyncio.TimeoutError as e:
            raise TimeoutError('Request timeout') from e

    async def process(self) -> RateRetryResult:
        """Run one pass over both generations. Never raises."""
        self._started = self._clock()
        processed = 0
        logger.info('rate_retry.started')
        self.metrics.record_message_processed('system', 1)

        try:
            for classification in MODEL_CLASSIFICATIONS:
                if self._out_of_time():
                    logger.warning('rate_retry.time_budget_exhausted', generation=1)
                    break
                processed += await self._process_generation_one(classification)

            if not self._out_of_time():
                for classification in MODEL_CLASSIFICATIONS:
                    if self._out_of_time():
                        break
                    processed += await self._process_generation_two(classification)

        except Exception as e:
            duration_ms = int(self._elapsed() * 1000)
            logger.error(
                'rate_retry.failed',
                error=str(e),
                error_type=type(e).__name__,
                processed=processed,
                duration_ms=duration_ms,
            )
            self.metrics.record_error('processing_system_error', 'system')
            return RateRetryResult(
                success=False,
                processed=processed,
                duration_ms=duration_ms,
                error=str(e),
            )

        duration_ms = int(self._elapsed() * 1000)
        logger.info('rate_retry.completed', processed=processed, duration_ms=duration_ms)
        return RateRetryResult(success=True, processed=processed, duration_ms=duration_ms)

    def _generation_one_key(self, classification: ModelClassification) -> str | None:
        """Azure model for the classification, Google when Azure is out of rotation."""
        azure_available, google_available = self._available_providers(classification)
        if azure_available:
            provider = 'azure'
        elif google_available:
            provider = 'google'
        else:
            return None
        return model_key(provider, generation_one_model(classification))

    async def _process_generation_one(self, classification: ModelClassification) -> int:
        if self._generation_one_key(classification) is None:
            logger.warning('rate_retry.no_available_models', classification=classification)
            return 0

        queue_size = await self.queue.get_queue_size(1, classification)
        self.metrics.update_queue_size(queue_size, classification, 1)
        if queue_size == 0:
            return 0

        requests = await self.queue.dequeue_requests(1, classification, self.settings.GEN1_BATCH_SIZE)
        logger.info('rate_retry.gen1_batch', classification=classification, count=len(requests))

        processed = 0
        handled = 0
        try:
            for request in requests:
                # A rate limit earlier in the batch can take the provider out of rotation
                key = self._generation_one_key(classification)
                if key is None:
                    logger.warning('rate_retry.no_available_models', classification=classification)
                    break
                processed += await self._retry_generation_one(classification, key, request)
                handled += 1

                if self._out_of_time():
                    logger.error(
                        'rate_retry.time_budget_exhausted',
                        generation=1,
                        classification=classification,
                        requeued=len(requests) - handled,
                    )
                    break
        finally:
            # Dequeued requests that were not answered go back ahead of newer ones
            unhandled = requests[handled:]
            if unhandled:
                await self.queue.requeue_front(unhandled)
        return processed

    async def _retry_generation_one(
        self, classification: ModelClassification, key: str, request: QueuedRequest
    ) -> int:
        started = self._clock()
        try:
            result = await self._run_request(key, request)
        except Exception as e:
            logger.warning(
                'rate_retry.request_failed',
                request_id=request.id,
                model_key=key,
                error=str(e),
                error_type=type(e).__name__,
            )
            if is_rate_limit_error(e):
                provider, _ = split_model_key(key)
                self.availability.handle_rate_limit(provider, self.settings.RATE_LIMIT_COOLDOWN_SECONDS)
                await self.queue.enqueue_request(request.promoted())
                self.metrics.record_error('moved_to_gen2', classification)
            else:
                await self.queue.store_response(
                    QueuedResponse(
                        id=request.id,
                        error=ResponseError(type='server_error', message=str(e) or 'Unknown error'),
                    )
                )
                self.metrics.record_error('processing_error', classification)
            return 0

        await self.queue.store_response(QueuedResponse(id=request.id, response=result))
        self.metrics.record_processing_duration((self._clock() - started) * 1000, classification)
        self.metrics.record_message_processed(classification, 1)
        logger.debug('rate_retry.request_processed', request_id=request.id, model_key=key)
        return 1

    async def _process_generation_two(self, classification: ModelClassification) -> int:
        queue_size = await self.queue.get_queue_size(2, classification)
        self.metrics.update_queue_size(queue_size, classification, 2)
        if queue_size == 0:
            return 0

        if not self.availability.is_model_available(GEN2_FALLBACK_MODEL):
            logger.warning('rate_retry.fallback_unavailable', classification=classification)
            return 0

        requests = await self.queue.dequeue_requests(2, classification, self.settings.GEN2_BATCH_SIZE)
        processed = 0
        handled = 0
        try:
            for request in requests:
                processed += await self._retry_generation_two(classification, request)
                handled += 1
        finally:
            unhandled = requests[handled:]
            if unhandled:
                await self.queue.requeue_front(unhandled)
        return processed

    async def _retry_generation_two(self, classification: ModelClassification, request: QueuedRequest) -> int:
        logger.info('rate_retry.gen2_request', request_id=request.id, classification=classification)
        try:
            result = await self._run_request(
                GEN2_FALLBACK_MODEL, request, max_tokens=self.settings.GEN2_MAX_TOKENS
            )
        except Exception as e:
            logger.error(
                'rate_retry.gen2_request_failed',
                request_id=request.id,
                error=str(e),
                error_type=type(e).__name__,
            )
            await self.queue.store_response(
                QueuedResponse(
                    id=request.id,
                    error=ResponseError(
                        type='will_not_retry',
                        message=f"Gen-2 processing failed: {str(e) or 'Unknown error'}",
                    ),
                )
            )
            self.metrics.record_error('gen2_critical_failure', classification)
            return 0

        await self.queue.store_response(QueuedResponse(id=request.id, response=result))
        self.metrics.record_message_processed(classification, 2)
        return 1
