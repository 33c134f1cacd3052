"""
Contact stage (``contacts``): record the email's recipients.
"""

from __future__ import annotations

from ..errors import DataIntegrityError
from ..headers import ParsedHeaderMap
from ..logging import get_logger
from ..models.contact import ParsedContact, RecipientType
from ..models.message import ImportStage
from ..repository import ContactRepository
from .base import StageOptions, StageProcessorContext, TransactionalStateManagerBase

logger = get_logger(__name__)


def map_recipients(headers: ParsedHeaderMap) -> list[ParsedContact]:
    """To, Cc and Bcc contacts tagged with their recipient type."""
    return [
        ParsedContact(email=c.email, name=c.name, recipient_type=kind.value)
        for kind in RecipientType
        for c in headers.get_all_contact_values(kind.value)
        if c.email
    ]


class ContactStageManager(TransactionalStateManagerBase):
    """
    Writes one email_recipients row per contact.

    A contact listed more than once keeps the first type it appears with,
    checking To before Cc before Bcc.
    """

    def __init__(self, stage: ImportStage, options: StageOptions):
        super().__init__(stage, options)
        self.contacts = ContactRepository(options.postgres)

    async def run(self, context: StageProcessorContext) -> StageProcessorContext:
        target = context.target
        if target is None or target.target_id is None:
            raise DataIntegrityError(
                'Cannot add recipients to an email that has not been inserted',
                context={'stage': context.current_stage.value},
            )
        headers = ParsedHeaderMap.from_headers(
            target.raw.payload.headers if target.raw and target.raw.payload else [],
            expand_arrays=True,
            parse_contacts=True,
        )
        recipients = map_recipients(headers)
        stored = await self.contacts.ensure_contacts(recipients)

        added: set[int] = set()
        for recipient in recipients:
            contact = stored.get(recipient.email.lower())
            if contact is None:
                raise DataIntegrityError(
                    'Not all recipients were found in the database',
                    context={'email': recipient.email},
                )
            if contact.contact_id in added:
                continue
            await self.contacts.add_email_recipient(
                contact.contact_id,
                target.target_id,
                RecipientType(recipient.recipient_type),
            )
            added.add(contact.contact_id)

        logger.info(
            'contact_stage.recipients_added',
            email_id=str(target.target_id),
            recipients=len(added),
        )
        return context
