"""
Staging stage (``new``): fetch the provider message and stage it.
"""

from __future__ import annotations

from ..errors import InvalidImportArgumentsError, SourceNotFoundError
from ..logging import get_logger
from ..models.message import ImportStage
from .base import NULL_ID, StageOptions, StageProcessorContext, TransactionalStateManagerBase

logger = get_logger(__name__)


class StagingStageManager(TransactionalStateManagerBase):
    """
    Stages a provider message in staging_message.

    A message that is already staged is resumed: the stored state becomes the
    target and commit leaves the row alone, so the import picks up at the
    stage it had reached.
    """

    def __init__(self, stage: ImportStage, options: StageOptions):
        super().__init__(stage, options)
        self._resumed = False

    async def run(self, context: StageProcessorContext) -> StageProcessorContext:
        email_id = context.provider_email_id
        if not email_id or email_id == NULL_ID:
            raise InvalidImportArgumentsError('Missing provider email id')
        gmail = self.options.gmail
        if gmail is None:
            raise InvalidImportArgumentsError(
                'A provider client is required to stage a message',
                context={'email_id': email_id},
            )

        email_id = await gmail.resolve_message_id(email_id)
        user_id = self.options.user_id

        try:
            existing = await self.staging.get_current_state(email_id, user_id)
        except SourceNotFoundError:
            existing = None
        if existing is not None:
            self._resumed = True
            context.target = existing
            logger.info('staging.resumed', email_id=email_id, stage=existing.stage.value)
            return context

        message = await gmail.get_message(email_id)
        target = await self.staging.get_current_state(
            message.id or email_id, user_id, source=message
        )
        target.id = await self.staging.insert(target)
        self.track_created_row(target)
        context.target = target
        logger.info('staging.staged', email_id=target.provider_id, staging_id=str(target.id))
        return context

    async def commit(self, context: StageProcessorContext) -> StageProcessorContext:
        if self._resumed and self.in_transaction:
            self.close_without_changes()
            return context
        return await super().commit(context)
