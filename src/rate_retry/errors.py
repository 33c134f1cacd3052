"""
Custom exceptions for the AI rate-retry queue.

Subclasses the base error hierarchy from email_import.errors.
"""

from typing import Any

import openai
import redis.asyncio as redis

from email_import.errors import ClientError


class RateRetryQueueError(ClientError):
    """The queue store (Redis) failed."""

    pass


class ModelError(ClientError):
    """Base class for model provider errors."""

    pass


class RateRetryError(ModelError):
    """The model provider rejected the request with a rate limit."""

    pass


class ModelUnavailableError(ModelError):
    """No configured, enabled model exists for the requested key."""

    pass


class ModelRequestError(ModelError):
    """The model provider failed for a reason other than rate limiting."""

    pass


def is_rate_limit_error(exc: BaseException) -> bool:
    """True for provider rate-limit failures, wrapped or not."""
    if isinstance(exc, (RateRetryError, openai.RateLimitError)):
        return True
    message = str(exc).lower()
    return 'rate limit' in message or 'rate_limit' in message or 'rateretry' in message


def wrap_model_error(exc: Exception, context: dict[str, Any] | None = None) -> ModelError:
    """
    Wrap a model provider exception in our typed error hierarchy.

    Args:
        exc: The original exception
        context: Additional context for debugging

    Returns:
        Typed ModelError subclass
    """
    ctx = context or {}
    ctx['original_error'] = str(exc)
    ctx['error_type'] = type(exc).__name__

    if is_rate_limit_error(exc):
        return RateRetryError(
            f"Model rate limit exceeded: {exc}",
            context=ctx,
        )
    return ModelRequestError(
        f"Model request failed: {exc}",
        context=ctx,
    )


def wrap_queue_error(exc: redis.RedisError, context: dict[str, Any] | None = None) -> RateRetryQueueError:
    ctx = context or {}
    ctx['original_error'] = str(exc)
    ctx['error_type'] = type(exc).__name__
    return RateRetryQueueError(f"Rate-retry queue error: {exc}", context=ctx)
