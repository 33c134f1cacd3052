"""
Tests for the rate-retry processor.

The queue, model clients and clock are in-memory doubles so a run is fully
deterministic.

Tests cover:
- Generation-1 retries on Azure, falling back to Google
- Rate-limited requests promoted to generation 2 and retried on the fallback model
- server_error / will_not_retry responses
- Classifications without an available model are left queued
- Rate-limited providers taken out of rotation for the rest of the run
- Processing time budget (unprocessed requests re-queued at the head, in order)
- Per-request timeout
- Queue failures reported as an unsuccessful run without losing dequeued requests
"""

import asyncio
from collections import defaultdict

import pytest

from rate_retry.availability import ModelAvailability
from rate_retry.config import RateRetryConfig
from rate_retry.errors import RateRetryError, RateRetryQueueError
from rate_retry.metrics import RateLimitMetrics
from rate_retry.models import QueuedRequest
from rate_retry.processor import GEN2_FALLBACK_MODEL, RateRetryProcessor, generation_one_model


class Settings(RateRetryConfig):
    MAX_PROCESSING_TIME_SECONDS = 600
    REQUEST_TIMEOUT_SECONDS = 720
    GEN1_BATCH_SIZE = 10
    GEN2_BATCH_SIZE = 1
    GEN2_MAX_TOKENS = 1000


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


class FakeQueue:
    def __init__(self):
        self.queues: dict[tuple[int, str], list[QueuedRequest]] = defaultdict(list)
        self.responses = {}

    async def enqueue_request(self, request):
        self.queues[(request.generation, request.model_classification)].append(request)

    async def dequeue_requests(self, generation, classification, max_count):
        queue = self.queues[(generation, classification)]
        taken = queue[:max_count]
        del queue[:max_count]
        return taken

    async def get_queue_size(self, generation, classification):
        return len(self.queues[(generation, classification)])

    async def requeue_front(self, requests):
        for request in reversed(requests):
            self.queues[(request.generation, request.model_classification)].insert(0, request)

    async def store_response(self, response):
        self.responses[response.id] = response


class FakeModel:
    def __init__(self, factory, key):
        self.factory = factory
        self.key = key

    async def generate_text(self, messages, max_tokens=None):
        self.factory.calls.append((self.key, max_tokens))
        self.factory.clock.now += self.factory.seconds_per_call
        outcome = self.factory.outcomes.get(self.key)
        if isinstance(outcome, BaseException):
            raise outcome
        if callable(outcome):
            return await outcome()
        return {'text': f"retried on {self.key}", 'modelKey': self.key}


class FakeFactory:
    def __init__(self, clock):
        self.clock = clock
        self.outcomes = {}
        self.calls: list[tuple[str, int | None]] = []
        self.seconds_per_call = 1.0

    def get_client(self, key):
        return FakeModel(self, key)


def _request(request_id: str, classification: str = 'hifi', generation: int = 1) -> QueuedRequest:
    return QueuedRequest(
        id=request_id,
        model_classification=classification,
        request={'messages': [{'role': 'user', 'content': 'Summarize the filing'}]},
        metadata={'generation': generation},
    )


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def queue():
    return FakeQueue()


@pytest.fixture
def factory(clock):
    return FakeFactory(clock)


@pytest.fixture
def metrics():
    return RateLimitMetrics()


def _processor(queue, factory, clock, metrics, providers=('azure', 'google'), settings=None):
    return RateRetryProcessor(
        queue=queue,
        model_factory=factory,
        availability=ModelAvailability(configured_providers=set(providers), clock=clock),
        metrics=metrics,
        settings=settings or Settings(),
        clock=clock,
    )


class TestGenerationOneModel:
    @pytest.mark.parametrize(
        'classification, expected',
        [('hifi', 'hifi'), ('lofi', 'lofi'), ('completions', 'lofi'), ('embedding', 'lofi')],
    )
    def test_mapping(self, classification, expected):
        assert generation_one_model(classification) == expected


class TestGenerationOne:
    @pytest.mark.asyncio
    async def test_retries_on_azure(self, queue, factory, clock, metrics):
        await queue.enqueue_request(_request('req-1'))
        await queue.enqueue_request(_request('req-2'))

        result = await _processor(queue, factory, clock, metrics).process()

        assert result.success is True
        assert result.processed == 2
        assert result.duration_ms == 2000
        assert [key for key, _ in factory.calls] == ['azure:hifi', 'azure:hifi']
        assert queue.responses['req-1'].response['modelKey'] == 'azure:hifi'
        assert metrics.messages_processed[('hifi', 1)] == 2
        assert metrics.messages_processed[('system', 1)] == 1

    @pytest.mark.asyncio
    async def test_google_when_azure_unavailable(self, queue, factory, clock, metrics):
        await queue.enqueue_request(_request('req-1', 'completions'))

        await _processor(queue, factory, clock, metrics, providers=('google',)).process()

        assert factory.calls == [('google:lofi', None)]

    @pytest.mark.asyncio
    async def test_no_available_model_leaves_queue(self, queue, factory, clock, metrics):
        await queue.enqueue_request(_request('req-1', 'lofi'))

        result = await _processor(queue, factory, clock, metrics, providers=()).process()

        assert result.success is True
        assert result.processed == 0
        assert len(queue.queues[(1, 'lofi')]) == 1
        assert factory.calls == []

    @pytest.mark.asyncio
    async def test_other_failure_stores_server_error(self, queue, factory, clock, metrics):
        factory.outcomes['azure:lofi'] = RuntimeError('context length exceeded')
        await queue.enqueue_request(_request('req-1', 'lofi'))

        result = await _processor(queue, factory, clock, metrics).process()

        response = queue.responses['req-1']
        assert response.error.type == 'server_error'
        assert response.error.message == 'context length exceeded'
        assert result.processed == 0
        assert metrics.errors[('processing_error', 'lofi')] == 1
        assert queue.queues[(2, 'lofi')] == []


class TestGenerationTwo:
    @pytest.mark.asyncio
    async def test_rate_limited_request_moves_to_generation_two(self, queue, factory, clock, metrics):
        factory.outcomes['azure:hifi'] = RateRetryError('Model rate limit exceeded')
        await queue.enqueue_request(_request('req-1'))

        result = await _processor(queue, factory, clock, metrics).process()

        assert factory.calls == [('azure:hifi', None), (GEN2_FALLBACK_MODEL, 1000)]
        assert queue.responses['req-1'].response['modelKey'] == GEN2_FALLBACK_MODEL
        assert result.processed == 1
        assert metrics.errors[('moved_to_gen2', 'hifi')] == 1
        assert metrics.messages_processed[('hifi', 2)] == 1

    @pytest.mark.asyncio
    async def test_one_request_per_classification(self, queue, factory, clock, metrics):
        await queue.enqueue_request(_request('req-1', 'embedding', generation=2))
        await queue.enqueue_request(_request('req-2', 'embedding', generation=2))

        await _processor(queue, factory, clock, metrics).process()

        assert set(queue.responses) == {'req-1'}
        assert [r.id for r in queue.queues[(2, 'embedding')]] == ['req-2']

    @pytest.mark.asyncio
    async def test_failure_is_terminal(self, queue, factory, clock, metrics):
        factory.outcomes[GEN2_FALLBACK_MODEL] = RuntimeError('boom')
        await queue.enqueue_request(_request('req-1', 'lofi', generation=2))

        await _processor(queue, factory, clock, metrics).process()

        response = queue.responses['req-1']
        assert response.error.type == 'will_not_retry'
        assert response.error.message == 'Gen-2 processing failed: boom'
        assert metrics.errors[('gen2_critical_failure', 'lofi')] == 1

    @pytest.mark.asyncio
    async def test_failure_without_message(self, queue, factory, clock, metrics):
        factory.outcomes[GEN2_FALLBACK_MODEL] = RuntimeError()
        await queue.enqueue_request(_request('req-1', 'lofi', generation=2))

        await _processor(queue, factory, clock, metrics).process()

        assert queue.responses['req-1'].error.message == 'Gen-2 processing failed: Unknown error'

    @pytest.mark.asyncio
    async def test_fallback_unavailable_leaves_queue(self, queue, factory, clock, metrics):
        await queue.enqueue_request(_request('req-1', 'hifi', generation=2))

        result = await _processor(queue, factory, clock, metrics, providers=('azure',)).process()

        assert result.processed == 0
        assert factory.calls == []
        assert [r.id for r in queue.queues[(2, 'hifi')]] == ['req-1']


class TestRateLimitCooldown:
    @pytest.mark.asyncio
    async def test_rest_of_batch_falls_back_to_google(self, queue, factory, clock, metrics):
        factory.outcomes['azure:hifi'] = RateRetryError('Model rate limit exceeded')
        await queue.enqueue_request(_request('req-1'))
        await queue.enqueue_request(_request('req-2'))

        await _processor(queue, factory, clock, metrics).process()

        assert factory.calls == [('azure:hifi', None), ('google:hifi', None), (GEN2_FALLBACK_MODEL, 1000)]
        assert queue.responses['req-2'].response['modelKey'] == 'google:hifi'

    @pytest.mark.asyncio
    async def test_next_classification_falls_back_to_google(self, queue, factory, clock, metrics):
        factory.outcomes['azure:hifi'] = RateRetryError('Model rate limit exceeded')
        await queue.enqueue_request(_request('req-1', 'hifi'))
        await queue.enqueue_request(_request('req-2', 'lofi'))
        processor = _processor(queue, factory, clock, metrics)

        await processor.process()

        assert factory.calls[:2] == [('azure:hifi', None), ('google:lofi', None)]
        assert processor.availability.is_model_available('azure:lofi') is False
        assert processor.availability.is_model_available('google:lofi') is True

    @pytest.mark.asyncio
    async def test_cooldown_expires(self, queue, factory, clock, metrics):
        factory.outcomes['azure:hifi'] = RateRetryError('Model rate limit exceeded')
        await queue.enqueue_request(_request('req-1'))
        processor = _processor(queue, factory, clock, metrics)

        await processor.process()
        clock.now += Settings.RATE_LIMIT_COOLDOWN_SECONDS

        assert processor.availability.is_model_available('azure:hifi') is True


class TestBudgets:
    @pytest.mark.asyncio
    async def test_time_budget_requeues_remaining(self, queue, factory, clock, metrics):
        factory.seconds_per_call = 400
        for index in range(3):
            await queue.enqueue_request(_request(f"req-{index}"))
        await queue.enqueue_request(_request('req-lofi', 'lofi'))
        await queue.enqueue_request(_request('req-gen2', 'hifi', generation=2))

        result = await _processor(queue, factory, clock, metrics).process()

        assert result.success is True
        assert result.processed == 2
        assert set(queue.responses) == {'req-0', 'req-1'}
        assert [r.id for r in queue.queues[(1, 'hifi')]] == ['req-2']
        assert [r.id for r in queue.queues[(1, 'lofi')]] == ['req-lofi']
        assert [r.id for r in queue.queues[(2, 'hifi')]] == ['req-gen2']

    @pytest.mark.asyncio
    async def test_request_timeout(self, queue, factory, clock, metrics):
        class FastTimeout(Settings):
            REQUEST_TIMEOUT_SECONDS = 0.01

        async def slow():
            await asyncio.sleep(1)

        factory.outcomes['azure:hifi'] = slow
        await queue.enqueue_request(_request('req-1'))

        await _processor(queue, factory, clock, metrics, settings=FastTimeout()).process()

        response = queue.responses['req-1']
        assert response.error.type == 'server_error'
        assert response.error.message == 'Request timeout'

    @pytest.mark.asyncio
    async def test_time_budget_keeps_queue_order(self, queue, factory, clock, metrics):
        factory.seconds_per_call = 400
        for index in range(12):
            await queue.enqueue_request(_request(f"req-{index}"))

        await _processor(queue, factory, clock, metrics).process()

        assert [r.id for r in queue.queues[(1, 'hifi')]] == [f"req-{index}" for index in range(2, 12)]


class TestSystemErrors:
    @pytest.mark.asyncio
    async def test_queue_failure(self, queue, factory, clock, metrics):
        async def broken(*args):
            raise RateRetryQueueError('Rate-retry queue error: Connection refused')

        queue.get_queue_size = broken

        result = await _processor(queue, factory, clock, metrics).process()

        assert result.success is False
        assert 'Connection refused' in result.error
        assert result.to_dict()['success'] is False
        assert metrics.errors[('processing_system_error', 'system')] == 1

    @pytest.mark.asyncio
    async def test_queue_failure_mid_batch_requeues_unanswered(self, queue, factory, clock, metrics):
        stored = queue.store_response

        async def flaky_store(response):
            if response.id == 'req-1':
                raise RateRetryQueueError('Rate-retry queue error: Connection reset')
            await stored(response)

        queue.store_response = flaky_store
        for index in range(3):
            await queue.enqueue_request(_request(f"req-{index}"))

        result = await _processor(queue, factory, clock, metrics).process()

        assert result.success is False
        assert 'Connection reset' in result.error
        assert set(queue.responses) == {'req-0'}
        assert [r.id for r in queue.queues[(1, 'hifi')]] == ['req-1', 'req-2']

    @pytest.mark.asyncio
    async def test_queue_failure_in_generation_two_requeues(self, queue, factory, clock, metrics):
        async def broken_store(response):
            raise RateRetryQueueError('Rate-retry queue error: Connection reset')

        queue.store_response = broken_store
        await queue.enqueue_request(_request('req-1', 'lofi', generation=2))

        result = await _processor(queue, factory, clock, metrics).process()

        assert result.success is False
        assert [r.id for r in queue.queues[(2, 'lofi')]] == ['req-1']
