"""
Contact models used while resolving senders and recipients.
"""

from enum import Enum

from pydantic import BaseModel, Field


class RecipientType(str, Enum):
    """Recipient role of a contact on an email."""

    TO = 'to'
    CC = 'cc'
    BCC = 'bcc'


class ContactInHeader(BaseModel):
    """A contact as it appears in an address header, e.g. ``"Jane" <jane@x.org>``."""

    email: str
    name: str | None = None

    def __str__(self) -> str:
        return self.name or self.email


class StoredContact(BaseModel):
    """A row from the contacts table."""

    contact_id: int
    email: str
    name: str | None = None


class ParsedContact(ContactInHeader):
    """A header contact tagged with the header it came from."""

    recipient_type: str = Field(..., description="'from', 'to', 'cc' or 'bcc'")
