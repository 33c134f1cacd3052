"""
Email stage (``staged``): create the emails row for a staged message.
"""

from __future__ import annotations

from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from uuid import UUID

from ..body import extract_body_text
from ..errors import DataIntegrityError
from ..headers import ParsedHeaderMap
from ..logging import get_logger
from ..models.message import ImportStage
from ..repository import ContactRepository, EmailRepository, ThreadRepository
from .base import StageOptions, StageProcessorContext, TransactionalStateManagerBase

logger = get_logger(__name__)

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def parse_sent_on(date_header: str | None) -> datetime:
    """Date header as a datetime; the epoch when missing or unparseable."""
    if not date_header:
        return EPOCH
    try:
        return parsedate_to_datetime(date_header)
    except (TypeError, ValueError):
        logger.warning('email_stage.invalid_date_header', date=date_header)
        return EPOCH


class EmailStageManager(TransactionalStateManagerBase):
    """
    Inserts the email, its document unit, and the contacts and thread it
    refers to. An email inserted by this stage is deleted on rollback.
    """

    def __init__(self, stage: ImportStage, options: StageOptions):
        super().__init__(stage, options)
        self.contacts = ContactRepository(options.postgres)
        self.threads = ThreadRepository(options.postgres)
        self.emails = EmailRepository(options.postgres)
        self._created_email_id: UUID | None = None

    async def run(self, context: StageProcessorContext) -> StageProcessorContext:
        target = context.target
        if target is None:
            raise DataIntegrityError(f"Expected source message: {context.current_stage.value}")
        if target.raw is None or target.raw.payload is None:
            raise DataIntegrityError(
                f"No valid payload found in the message: {context.current_stage.value}",
                context={'provider_id': target.provider_id},
            )
        if target.target_id is not None:
            # Email was inserted by an earlier attempt whose commit failed
            logger.info('email_stage.already_inserted', email_id=str(target.target_id))
            return context

        raw = target.raw
        headers = ParsedHeaderMap.from_headers(
            raw.payload.headers,
            expand_arrays=True,
            parse_contacts=True,
            extract_brackets=True,
        )

        sender = headers.get_first_contact_value('From')
        if sender is None or not sender.email:
            raise DataIntegrityError(
                f"No valid sender found in the message: {target.stage.value}",
                context={'provider_id': target.provider_id},
            )
        recipients = [
            contact
            for name in ('To', 'Cc', 'Bcc')
            for contact in headers.get_all_contact_values(name)
            if contact.email
        ]
        stored = await self.contacts.ensure_contacts([sender, *recipients])
        saved_sender = stored[sender.email.lower()]

        subject = headers.get_first_value_or_default('Subject', 'No Subject')
        global_message_id = headers.get_first_string_value('Message-ID')
        if global_message_id:
            global_message_id = global_message_id.strip('<>')
        thread_id = await self.threads.get_or_create(raw.thread_id, subject)

        email_id, document_id = await self.emails.create(
            sender_id=saved_sender.contact_id,
            subject=subject,
            email_contents=extract_body_text(raw.payload),
            sent_on=parse_sent_on(headers.get_first_string_value('Date')),
            thread_id=thread_id,
            parent_email_id=None,
            imported_from_id=raw.id,
            global_message_id=global_message_id,
        )
        self._created_email_id = email_id
        target.target_id = email_id
        target.document_id = document_id

        logger.info(
            'email_stage.email_inserted',
            email_id=str(email_id),
            thread_id=thread_id,
            document_id=document_id,
        )
        return context

    async def rollback(self) -> None:
        email_id = self._created_email_id if self.in_transaction else None
        target = self.open_target
        self._created_email_id = None
        try:
            if email_id is not None:
                await self.emails.delete(email_id)
                if target is not None:
                    target.target_id = None
                    target.document_id = None
                logger.info('email_stage.email_removed', email_id=str(email_id))
        finally:
            await super().rollback()
