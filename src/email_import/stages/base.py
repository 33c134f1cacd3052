"""
Transactional base for import stage managers.

A stage manager moves one message through one import stage:

    begin(context) -> run(context) -> commit(context)

and calls rollback() if anything in between fails. The staging_message row
is the unit of atomicity: commit advances the row's stage (deleting the row
once the import completes) and rollback puts the row back to the stage it had
when begin() was called.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from uuid import UUID

from ..clients.gmail_client import GmailClient
from ..clients.postgres_client import PostgresClient
from ..errors import StageTransactionError
from ..logging import get_logger
from ..models.message import IMPORT_STAGE_ORDER, ImportSourceMessage, ImportStage
from ..repository import StagingRepository

logger = get_logger(__name__)

# Provider id used when an import is started without one
NULL_ID = '<<NULL>>'


def calculate_next_stage(stage: ImportStage | str) -> ImportStage:
    """
    The stage that follows ``stage``.

    ``completed`` is terminal and maps to itself.

    Raises:
        ValueError: stage is not an import stage
    """
    current = ImportStage(stage)
    index = IMPORT_STAGE_ORDER.index(current)
    if index == len(IMPORT_STAGE_ORDER) - 1:
        return current
    return IMPORT_STAGE_ORDER[index + 1]


@dataclass
class StageOptions:
    """Collaborators shared by every stage manager of one import."""

    postgres: PostgresClient
    provider: str
    gmail: GmailClient | None = None
    user_id: int | None = None


@dataclass
class StageProcessorContext:
    """State handed from stage to stage."""

    provider_email_id: str
    current_stage: ImportStage
    next_stage: ImportStage
    target: ImportSourceMessage | None = None
    account_id: int = -1


@dataclass
class _OpenTransaction:
    entry_stage: ImportStage
    staging_id: UUID | None
    target: ImportSourceMessage | None
    created_ids: list[UUID] = field(default_factory=list)


class TransactionalStateManagerBase:
    """
    Base class for a stage manager.

    Subclasses override run() (and, when they write rows that must be undone
    on failure, rollback()). A row inserted by the stage itself is registered
    with track_created_row() so rollback can remove it.
    """

    def __init__(self, stage: ImportStage, options: StageOptions):
        self.stage = ImportStage(stage)
        self.options = options
        self.staging = StagingRepository(options.postgres)
        self._txn: _OpenTransaction | None = None

    @property
    def in_transaction(self) -> bool:
        return self._txn is not None

    @property
    def open_target(self) -> ImportSourceMessage | None:
        """Target of the open transaction, if any."""
        return self._txn.target if self._txn else None

    async def begin(self, context: StageProcessorContext) -> StageProcessorContext:
        """
        Open the stage transaction.

        Raises:
            StageTransactionError: A transaction is already open
        """
        if self._txn is not None:
            raise StageTransactionError(
                'Stage transaction already in progress',
                context={'stage': self.stage.value},
            )
        target = context.target
        self._txn = _OpenTransaction(
            entry_stage=target.stage if target else context.current_stage,
            staging_id=target.id if target else None,
            target=target,
        )
        logger.debug(
            'stage.begin',
            stage=self.stage.value,
            staging_id=str(self._txn.staging_id) if self._txn.staging_id else None,
        )
        return context

    async def run(self, context: StageProcessorContext) -> StageProcessorContext:
        return context

    def track_created_row(self, target: ImportSourceMessage) -> None:
        """Remember the staging row inserted for ``target`` inside the open transaction."""
        if self._txn is None:
            raise StageTransactionError('No stage transaction in progress')
        if target.id is None:
            raise StageTransactionError('Staged message has no row id')
        self._txn.created_ids.append(target.id)
        if self._txn.target is None:
            self._txn.target = target

    async def commit(self, context: StageProcessorContext) -> StageProcessorContext:
        """
        Advance the staging row to ``context.next_stage``.

        Raises:
            StageTransactionError: No transaction is open, or there is no
                                   staging row to advance
        """
        if self._txn is None:
            raise StageTransactionError(
                'Cannot commit without an open stage transaction',
                context={'stage': self.stage.value},
            )
        target = context.target
        if target is None or target.id is None:
            raise StageTransactionError(
                'Cannot commit a stage without a staged message',
                context={'stage': self.stage.value},
            )

        if context.next_stage == ImportStage.COMPLETED:
            await self.staging.delete(target.id)
        else:
            await self.staging.update_stage(target.id, context.next_stage)
        target.stage = context.next_stage
        self._txn = None

        logger.debug(
            'stage.committed',
            stage=self.stage.value,
            next_stage=context.next_stage.value,
            staging_id=str(target.id),
        )
        return context

    def close_without_changes(self) -> None:
        """End the open transaction leaving the staging row as it is."""
        self._txn = None

    async def rollback(self) -> None:
        """
        Undo the open transaction; a no-op when none is open.

        The staging row's stage is restored to its value on entry. When no
        row existed on entry, rows the stage created are deleted instead.
        """
        txn = self._txn
        if txn is None:
            return
        self._txn = None
        try:
            if txn.staging_id is not None:
                await self.staging.update_stage(txn.staging_id, txn.entry_stage)
            else:
                for staging_id in txn.created_ids:
                    await self.staging.delete(staging_id)
        finally:
            if txn.target is not None:
                txn.target.stage = txn.entry_stage
                if txn.staging_id is None and txn.created_ids:
                    txn.target.id = None
            logger.info(
                'stage.rolled_back',
                stage=self.stage.value,
                entry_stage=txn.entry_stage.value,
            )
