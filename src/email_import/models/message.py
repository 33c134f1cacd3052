"""
Import state models.

An ImportSourceMessage is the unit of work that moves through the import
stages. Its ``stage`` mirrors the ``staging_message.stage`` column once the
message has been staged.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any
from uuid import UUID

from pydantic import BaseModel, Field

from .gmail import GmailMessage


class ImportStage(str, Enum):
    """Import stages, in the order a message moves through them."""

    NEW = 'new'
    STAGED = 'staged'
    HEADERS = 'headers'
    BODY = 'body'
    CONTACTS = 'contacts'
    ATTACHMENTS = 'attachments'
    COMPLETED = 'completed'


IMPORT_STAGE_ORDER: tuple[ImportStage, ...] = tuple(ImportStage)


class ImportStatus(str, Enum):
    """Import status of a provider message as seen from the database."""

    PENDING = 'pending'
    IN_PROGRESS = 'in-progress'
    IMPORTED = 'imported'


class ImportSourceMessage(BaseModel):
    """A provider message and where it is in the import."""

    provider_id: str = Field(..., description='Provider message id (e.g. Gmail message id)')
    stage: ImportStage = Field(default=ImportStage.NEW)
    id: UUID | None = Field(default=None, description='staging_message row id once staged')
    target_id: UUID | None = Field(default=None, description='Imported emails.email_id')
    document_id: int | None = Field(default=None, description='document_units.unit_id of the email')
    user_id: int | None = Field(default=None, description='User performing the import')
    raw: GmailMessage | None = Field(default=None, description='Provider payload')

    def to_summary(self) -> dict[str, Any]:
        """Serializable summary without the raw payload."""
        return {
            'providerId': self.provider_id,
            'stage': self.stage.value,
            'id': str(self.id) if self.id else None,
            'targetId': str(self.target_id) if self.target_id else None,
            'documentId': self.document_id,
            'userId': self.user_id,
        }


@dataclass
class ImportResponse:
    """Outcome of importing one message."""

    success: bool
    message: str
    data: ImportSourceMessage | None = None
    error: BaseException | None = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        result: dict[str, Any] = {
            'success': self.success,
            'message': self.message,
        }
        if self.data is not None:
            result['data'] = self.data.to_summary()
        if self.error is not None:
            result['error'] = str(self.error)
        return result
