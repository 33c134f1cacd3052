"""
Rate-retry queue models.

Queue entries are stored as camelCase JSON so producers in other services can
read and write them.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

ModelClassification = Literal['hifi', 'lofi', 'completions', 'embedding']
MODEL_CLASSIFICATIONS: tuple[ModelClassification, ...] = ('hifi', 'lofi', 'completions', 'embedding')

Generation = Literal[1, 2]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class _QueueModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_json(self) -> str:
        return self.model_dump_json(by_alias=True, exclude_none=True)


class RequestMetadata(_QueueModel):
    """Retry bookkeeping; producers may add their own keys."""

    model_config = ConfigDict(extra='allow')

    generation: Generation = 1
    user_id: str | None = None
    chat_id: str | None = None


class ChatRequest(_QueueModel):
    """The original model call; only ``messages`` is interpreted."""

    model_config = ConfigDict(extra='allow')

    messages: list[dict[str, Any]] = Field(default_factory=list)


class QueuedRequest(_QueueModel):
    """A model request waiting to be retried."""

    id: str
    model_classification: ModelClassification
    request: ChatRequest = Field(default_factory=ChatRequest)
    metadata: RequestMetadata = Field(default_factory=RequestMetadata)
    queued_at: datetime = Field(default_factory=_utcnow)

    @property
    def generation(self) -> Generation:
        return self.metadata.generation

    def promoted(self) -> 'QueuedRequest':
        """Copy of this request moved to the generation-2 queue."""
        metadata = self.metadata.model_copy(update={'generation': 2})
        return self.model_copy(update={'metadata': metadata, 'queued_at': _utcnow()})


class ResponseError(_QueueModel):
    type: str = Field(..., description="'server_error' or 'will_not_retry'")
    message: str


class QueuedResponse(_QueueModel):
    """Outcome of a retried request, fetched later by the original caller."""

    id: str
    response: dict[str, Any] | None = None
    error: ResponseError | None = None
    processed_at: datetime = Field(default_factory=_utcnow)


@dataclass
class RateRetryResult:
    """Result of one processing run."""

    success: bool
    processed: int = 0
    duration_ms: int = 0
    timestamp: datetime = field(default_factory=_utcnow)
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        result: dict[str, Any] = {
            'success': self.success,
            'processed': self.processed,
            'duration': self.duration_ms,
            'timestamp': self.timestamp.isoformat(),
        }
        if self.error is not None:
            result['error'] = self.error
        return result
