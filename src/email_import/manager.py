"""
Import manager: drives a message through every import stage.

Flow per message:
1. Stage the provider message (``new``)
2. Run each following stage under begin / run / commit
3. Roll back a failed stage; retry it in place if the failure was transient
4. Abort when a stage keeps coming back without progressing
"""

from __future__ import annotations

from uuid import uuid4

from .clients.gmail_client import GmailClient
from .clients.postgres_client import PostgresClient
from .config import config
from .errors import (
    EmailImportError,
    ImportRollbackError,
    ImportStageError,
    StageNotProgressingError,
    is_transient_error,
)
from .logging import StageTimer, get_logger, logging_context, set_user_id
from .models.message import ImportResponse, ImportSourceMessage, ImportStage
from .stages.base import NULL_ID, StageOptions, StageProcessorContext, calculate_next_stage
from .stages.manager_map import manager_map_factory
from .tracing import mark_error, start_span

logger = get_logger(__name__)


class DefaultImportManager:
    """
    Imports provider messages into the email store.

    Usage:
        manager = DefaultImportManager('google', postgres, gmail)
        response = await manager.import_email('18c2f...', user_id=42)
    """

    def __init__(
        self,
        provider: str,
        postgres_client: PostgresClient,
        gmail_client: GmailClient | None = None,
        max_stage_retries: int | None = None,
    ):
        """
        Args:
            provider: Mail provider name (only 'google' is supported)
            postgres_client: Connected Postgres client
            gmail_client: Provider client; required to stage new messages
            max_stage_retries: Repeats of one stage allowed before aborting
                               (defaults to IMPORT_MAX_STAGE_RETRIES)

        Raises:
            UnsupportedProviderError: provider has no stage managers
        """
        self.provider = provider
        self.postgres = postgres_client
        self.gmail = gmail_client
        self.max_stage_retries = (
            max_stage_retries if max_stage_retries is not None else config.IMPORT_MAX_STAGE_RETRIES
        )
        self._managers = manager_map_factory(provider)

    async def run_import_stage(
        self,
        target: ImportSourceMessage | None,
        email_id: str | None = None,
        user_id: int | None = None,
    ) -> ImportSourceMessage:
        """
        Run the stage ``target`` is at.

        Args:
            target: Message being imported; None before it has been staged
            email_id: Provider message id (used while target is None)
            user_id: User performing the import

        Returns:
            The target after the stage committed

        Raises:
            ImportRollbackError: The stage failed and so did its rollback
            ImportStageError: No manager exists for the stage, or the stage
                              left no target behind
        """
        stage = target.stage if target is not None else ImportStage.NEW
        factory = self._managers.get(stage)
        if factory is None:
            raise ImportStageError(
                f"No stage manager registered for stage {stage.value}",
                context={'provider': self.provider, 'stage': stage.value},
            )

        manager = factory(
            stage,
            StageOptions(
                postgres=self.postgres,
                provider=self.provider,
                gmail=self.gmail,
                user_id=user_id if user_id is not None else (target.user_id if target else None),
            ),
        )
        context = StageProcessorContext(
            provider_email_id=email_id or (target.provider_id if target else NULL_ID),
            current_stage=stage,
            next_stage=calculate_next_stage(stage),
            target=target,
        )

        span_name = (
            'Staging email for import' if stage == ImportStage.NEW else f"Import Stage: {stage.value}"
        )
        with start_span(span_name, {'stage': stage.value, 'emailId': context.provider_email_id}):
            try:
                await manager.begin(context)
                await manager.run(context)
                await manager.commit(context)
            except Exception as e:
                try:
                    await manager.rollback()
                except Exception as rollback_error:
                    logger.error(
                        'import.rollback_failed',
                        stage=stage.value,
                        error=str(e),
                        rollback_error=str(rollback_error),
                    )
                    raise ImportRollbackError(
                        'Import stage failed and could not be rolled back',
                        errors=[e, rollback_error],
                        context={'stage': stage.value},
                    ) from e
                raise

        if context.target is None:
            raise ImportStageError(
                f"Stage {stage.value} completed without a target",
                context={'stage': stage.value},
            )
        return context.target

    async def import_email(self, email_id: str, user_id: int | None = None) -> ImportResponse:
        """
        Import one provider message, running stages until it is completed.

        Never raises; failures are reported in the returned ImportResponse.
        """
        timer = StageTimer()
        target: ImportSourceMessage | None = None

        with logging_context(trace_id=str(uuid4()), provider=self.provider, user_id=user_id):
            with start_span(
                'Import Email',
                {'emailId': email_id, 'provider': self.provider, 'userId': user_id},
            ) as span:
                logger.info('import.started', email_id=email_id)
                try:
                    last_stage: ImportStage | None = None
                    repeats = 0
                    while True:
                        stage = target.stage if target is not None else ImportStage.NEW
                        if stage == ImportStage.COMPLETED:
                            break

                        if stage == last_stage:
                            repeats += 1
                            if repeats > self.max_stage_retries:
                                raise StageNotProgressingError(
                                    f"Import stage {stage.value} is not progressing",
                                    context={'stage': stage.value, 'attempts': repeats},
                                )
                            logger.warning('import.stage_repeated', stage=stage.value, attempt=repeats)
                        else:
                            last_stage = stage
                            repeats = 0

                        try:
                            with timer.stage(stage.value):
                                target = await self.run_import_stage(target, email_id, user_id)
                        except Exception as e:
                            if not is_transient_error(e):
                                raise
                            logger.warning(
                                'import.transient_stage_failure',
                                stage=stage.value,
                                error=str(e),
                                error_type=type(e).__name__,
                            )
                            continue

                        if target.user_id is not None:
                            set_user_id(target.user_id)
                            span.set_attribute('userId', target.user_id)
                        logger.info('import.stage_completed', stage=stage.value, next_stage=target.stage.value)

                except Exception as e:
                    mark_error(span, e)
                    message = e.message if isinstance(e, EmailImportError) else str(e)
                    logger.error(
                        'import.failed',
                        email_id=email_id,
                        error=str(e),
                        error_type=type(e).__name__,
                        **timer.summary(),
                    )
                    return ImportResponse(success=False, message=message, data=target, error=e)

                logger.info('import.completed', email_id=email_id, **timer.summary())
                return ImportResponse(success=True, message='Import successful', data=target)
