"""
AI Rate-Retry Queue

Retries model requests that were rejected with a provider rate limit, moving
repeat offenders to a second generation that runs on a fallback model.
"""

from .availability import ModelAvailability, get_model_availability
from .errors import (
    ModelUnavailableError,
    RateRetryError,
    RateRetryQueueError,
    wrap_model_error,
)
from .metrics import RateLimitMetrics
from .model_client import ChatModelClient, ModelClientFactory
from .models import (
    MODEL_CLASSIFICATIONS,
    QueuedRequest,
    QueuedResponse,
    RateRetryResult,
)
from .processor import RateRetryProcessor
from .queue_manager import RateLimitQueueManager

__all__ = [
    'ModelAvailability',
    'get_model_availability',
    'ModelUnavailableError',
    'RateRetryError',
    'RateRetryQueueError',
    'wrap_model_error',
    'RateLimitMetrics',
    'ChatModelClient',
    'ModelClientFactory',
    'MODEL_CLASSIFICATIONS',
    'QueuedRequest',
    'QueuedResponse',
    'RateRetryResult',
    'RateRetryProcessor',
    'RateLimitQueueManager',
]
