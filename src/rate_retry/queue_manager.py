"""
Redis-backed rate-retry queue.

One FIFO list per (generation, classification) pair, plus one key per
processed response with a TTL so the original caller can poll for it.
"""

from __future__ import annotations

import redis.asyncio as redis
import structlog
from pydantic import ValidationError

from .config import rate_retry_config
from .errors import wrap_queue_error
from .models import Generation, ModelClassification, QueuedRequest, QueuedResponse

logger = structlog.get_logger(__name__)


class RateLimitQueueManager:
    """
    Queue of model requests that failed with a provider rate limit.

    Usage:
        queue = RateLimitQueueManager("redis://localhost:6379/0")
        await queue.enqueue_request(request)
        batch = await queue.dequeue_requests(1, "hifi", 10)
    """

    def __init__(
        self,
        redis_url: str | None = None,
        key_prefix: str | None = None,
        response_ttl_seconds: int | None = None,
        client: redis.Redis | None = None,
    ):
        """
        Args:
            redis_url: Redis connection URL (defaults to REDIS_URL)
            key_prefix: Prefix for every key this queue writes
            response_ttl_seconds: How long processed responses are kept
            client: Existing Redis client (tests pass a fake)
        """
        self.redis_url = redis_url or rate_retry_config.REDIS_URL
        self.key_prefix = key_prefix or rate_retry_config.QUEUE_KEY_PREFIX
        self.response_ttl_seconds = response_ttl_seconds or rate_retry_config.RESPONSE_TTL_SECONDS
        self._client = client

    async def get_client(self) -> redis.Redis:
        """Get or create the Redis client."""
        if self._client is None:
            self._client = redis.from_url(
                self.redis_url,
                encoding='utf-8',
                decode_responses=True,
            )
            logger.info('rate_retry_queue.connected')
        return self._client

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    def queue_key(self, generation: Generation, classification: ModelClassification) -> str:
        return f"{self.key_prefix}:gen{generation}:{classification}"

    def response_key(self, request_id: str) -> str:
        return f"{self.key_prefix}:response:{request_id}"

    async def enqueue_request(self, request: QueuedRequest) -> None:
        """Append a request to the queue for its generation and classification."""
        key = self.queue_key(request.generation, request.model_classification)
        try:
            client = await self.get_client()
            await client.rpush(key, request.to_json())
        except redis.RedisError as e:
            raise wrap_queue_error(e, context={'operation': 'enqueue', 'request_id': request.id}) from e
        logger.debug(
            'rate_retry_queue.enqueued',
            request_id=request.id,
            generation=request.generation,
            classification=request.model_classification,
        )

    async def requeue_front(self, requests: list[QueuedRequest]) -> None:
        """
        Put dequeued requests back at the head of their queues.

        Requests keep their relative order and stay ahead of anything
        enqueued since they were taken.
        """
        by_key: dict[str, list[str]] = {}
        for request in requests:
            key = self.queue_key(request.generation, request.model_classification)
            by_key.setdefault(key, []).append(request.to_json())
        if not by_key:
            return
        try:
            client = await self.get_client()
            for key, values in by_key.items():
                # LPUSH inserts one value at a time, so push the oldest last
                await client.lpush(key, *reversed(values))
        except redis.RedisError as e:
            raise wrap_queue_error(e, context={'operation': 'requeue', 'count': len(requests)}) from e
        logger.info('rate_retry_queue.requeued', count=len(requests))

    async def dequeue_requests(
        self,
        generation: Generation,
        classification: ModelClassification,
        max_count: int,
    ) -> list[QueuedRequest]:
        """
        Remove and return up to ``max_count`` requests, oldest first.

        Entries that cannot be parsed are dropped and logged.
        """
        if max_count <= 0:
            return []
        key = self.queue_key(generation, classification)
        try:
            client = await self.get_client()
            raw = await client.lpop(key, max_count)
        except redis.RedisError as e:
            raise wrap_queue_error(e, context={'operation': 'dequeue', 'key': key}) from e

        requests = []
        for item in raw or []:
            try:
                requests.append(QueuedRequest.model_validate_json(item))
            except ValidationError as e:
                logger.error('rate_retry_queue.invalid_entry', key=key, error=str(e))
        return requests

    async def get_queue_size(self, generation: Generation, classification: ModelClassification) -> int:
        key = self.queue_key(generation, classification)
        try:
            client = await self.get_client()
            return int(await client.llen(key))
        except redis.RedisError as e:
            raise wrap_queue_error(e, context={'operation': 'size', 'key': key}) from e

    async def store_response(self, response: QueuedResponse) -> None:
        """Store a processed response under its request id until the TTL expires."""
        try:
            client = await self.get_client()
            await client.set(
                self.response_key(response.id),
                response.to_json(),
                ex=self.response_ttl_seconds,
            )
        except redis.RedisError as e:
            raise wrap_queue_error(e, context={'operation': 'store_response', 'request_id': response.id}) from e

    async def get_response(self, request_id: str) -> QueuedResponse | None:
        try:
            client = await self.get_client()
            raw = await client.get(self.response_key(request_id))
        except redis.RedisError as e:
            raise wrap_queue_error(e, context={'operation': 'get_response', 'request_id': request_id}) from e
        if raw is None:
            return None
        return QueuedResponse.model_validate_json(raw)
