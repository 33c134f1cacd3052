"""
Data models for the email import pipeline.
"""

from .contact import ContactInHeader, ParsedContact, RecipientType, StoredContact
from .gmail import GmailHeader, GmailMessage, GmailMessagePart, GmailMessagePartBody
from .message import (
    IMPORT_STAGE_ORDER,
    ImportResponse,
    ImportSourceMessage,
    ImportStage,
    ImportStatus,
)

__all__ = [
    'ContactInHeader',
    'ParsedContact',
    'RecipientType',
    'StoredContact',
    'GmailHeader',
    'GmailMessage',
    'GmailMessagePart',
    'GmailMessagePartBody',
    'IMPORT_STAGE_ORDER',
    'ImportResponse',
    'ImportSourceMessage',
    'ImportStage',
    'ImportStatus',
]
