"""
Attachment stage (``attachments``): record the message's attachments.
"""

from __future__ import annotations

from ..errors import DataIntegrityError
from ..logging import get_logger
from ..models.gmail import GmailMessagePart
from ..models.message import ImportStage
from ..repository import EmailRepository
from .base import StageOptions, StageProcessorContext, TransactionalStateManagerBase

logger = get_logger(__name__)


def attachment_parts(payload: GmailMessagePart | None) -> list[GmailMessagePart]:
    if payload is None:
        return []
    return [part for part in payload.walk() if part.is_attachment]


def provider_file_path(provider_id: str, part: GmailMessagePart) -> str:
    """Location of the attachment content at the provider."""
    body = part.body
    ref = (body.attachment_id if body else None) or part.part_id or ''
    return f"gmail://messages/{provider_id}/attachments/{ref}"


class AttachmentStageManager(TransactionalStateManagerBase):
    """
    Writes a staging_attachment row and an email_attachments row per
    attachment. Content is not downloaded here; email_attachments.file_path
    points at the provider copy.
    """

    def __init__(self, stage: ImportStage, options: StageOptions):
        super().__init__(stage, options)
        self.emails = EmailRepository(options.postgres)
        self._created: list[int] = []

    async def begin(self, context: StageProcessorContext) -> StageProcessorContext:
        await super().begin(context)
        self._created = []
        return context

    async def run(self, context: StageProcessorContext) -> StageProcessorContext:
        target = context.target
        if target is None or target.target_id is None or target.id is None:
            raise DataIntegrityError(
                'Cannot record attachments for an email that has not been inserted',
                context={'stage': context.current_stage.value},
            )
        parts = attachment_parts(target.raw.payload if target.raw else None)

        for index, part in enumerate(parts):
            size = part.body.size if part.body else 0
            mime_type = part.mime_type or 'application/octet-stream'
            await self.staging.add_staged_attachment(
                target.id,
                part_id=index,
                filename=part.filename,
                mime_type=mime_type,
                size=size,
                attachment_id=part.body.attachment_id if part.body else None,
            )
            attachment_id = await self.emails.add_attachment(
                target.target_id,
                file_name=part.filename or f"attachment-{index}",
                file_path=provider_file_path(target.provider_id, part),
                mime_type=mime_type,
                size=size,
            )
            self._created.append(attachment_id)

        logger.info(
            'attachment_stage.attachments_recorded',
            email_id=str(target.target_id),
            attachments=len(parts),
        )
        return context

    async def rollback(self) -> None:
        created = self._created if self.in_transaction else []
        self._created = []
        try:
            if created:
                await self.emails.delete_attachments(created)
        finally:
            await super().rollback()
