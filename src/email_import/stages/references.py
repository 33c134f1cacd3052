"""
Reference stage (``body``): link the email into its conversation.
"""

from __future__ import annotations

from ..errors import DataIntegrityError
from ..headers import ParsedHeaderMap
from ..logging import get_logger
from ..models.message import ImportStage
from ..repository import EmailRepository
from .base import StageOptions, StageProcessorContext, TransactionalStateManagerBase

logger = get_logger(__name__)


class ReferenceStageManager(TransactionalStateManagerBase):
    """
    Sets the email's parent from In-Reply-To when the parent has already been
    imported, and adopts already imported replies to this email.

    Both updates only touch emails without a parent, so re-running the stage
    is harmless.
    """

    def __init__(self, stage: ImportStage, options: StageOptions):
        super().__init__(stage, options)
        self.emails = EmailRepository(options.postgres)

    async def run(self, context: StageProcessorContext) -> StageProcessorContext:
        target = context.target
        if target is None or target.target_id is None:
            raise DataIntegrityError(
                'Cannot link an email that has not been inserted',
                context={'stage': context.current_stage.value},
            )
        headers = ParsedHeaderMap.from_headers(
            target.raw.payload.headers if target.raw and target.raw.payload else [],
            extract_brackets=True,
        )

        in_reply_to = headers.get_first_string_value('In-Reply-To')
        if in_reply_to:
            parent_id = await self.emails.find_by_global_message_id(in_reply_to.strip())
            if parent_id is not None and parent_id != target.target_id:
                await self.emails.set_parent(target.target_id, parent_id)
                logger.info(
                    'reference_stage.parent_linked',
                    email_id=str(target.target_id),
                    parent_id=str(parent_id),
                )

        global_message_id = headers.get_first_string_value('Message-ID')
        if global_message_id:
            children = await self.emails.adopt_children(
                target.target_id, global_message_id.strip().strip('<>')
            )
            if children:
                logger.info(
                    'reference_stage.children_adopted',
                    email_id=str(target.target_id),
                    child_email_ids=[str(c) for c in children],
                )
        return context
