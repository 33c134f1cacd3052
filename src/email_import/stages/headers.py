"""
Header stage (``headers``): store every message header as a document property.
"""

from __future__ import annotations

from uuid import UUID

from ..errors import (
    DataIntegrityError,
    EmailImportError,
    PartialSuccessResult,
    is_transient_error,
)
from ..headers import HeaderParser, extract_bracketed
from ..logging import get_logger
from ..models.message import ImportStage
from ..repository import (
    EMAIL_HEADER_CATEGORY_ID,
    EmailPropertyRepository,
    EmailPropertyTypeRepository,
)
from .base import StageOptions, StageProcessorContext, TransactionalStateManagerBase

logger = get_logger(__name__)

# Header property name -> type id, shared by every import in the process
_property_type_cache: dict[str, int] = {}

_ADDRESS_LIST = HeaderParser(split=',', parse=None)
_ID_LIST = HeaderParser(split=' ', parse=extract_bracketed)
_ID = HeaderParser(split=None, parse=extract_bracketed)

HEADERS_WITH_ARRAY_VALUES: dict[str, HeaderParser] = {
    'to': _ADDRESS_LIST,
    'cc': _ADDRESS_LIST,
    'bcc': _ADDRESS_LIST,
    'in-reply-to': _ID_LIST,
    'references': _ID_LIST,
    'return-path': _ID,
    'message-id': _ID,
}


def clear_property_type_cache() -> None:
    _property_type_cache.clear()


def header_property_values(name: str, value: str) -> list[str]:
    """Values to store for one header; list headers yield one value per item."""
    parser = HEADERS_WITH_ARRAY_VALUES.get(name.lower())
    if parser is None:
        return [value]
    parsed = parser.apply(value)
    items = parsed if isinstance(parsed, list) else [parsed]
    return [str(item).strip() for item in items if str(item).strip()]


class HeaderStageManager(TransactionalStateManagerBase):
    """Writes header properties; properties written by a failed attempt are removed."""

    def __init__(self, stage: ImportStage, options: StageOptions):
        super().__init__(stage, options)
        self.properties = EmailPropertyRepository(options.postgres)
        self.property_types = EmailPropertyTypeRepository(options.postgres)
        self._created: list[UUID] = []

    async def begin(self, context: StageProcessorContext) -> StageProcessorContext:
        await super().begin(context)
        self._created = []
        if not _property_type_cache:
            _property_type_cache.update(
                await self.property_types.list_for_category(EMAIL_HEADER_CATEGORY_ID)
            )
        return context

    async def _type_id(self, name: str) -> int:
        type_id = _property_type_cache.get(name)
        if type_id is None:
            type_id = await self.property_types.create(EMAIL_HEADER_CATEGORY_ID, name)
            _property_type_cache[name] = type_id
            logger.info('header_stage.property_type_created', name=name, type_id=type_id)
        return type_id

    async def run(self, context: StageProcessorContext) -> StageProcessorContext:
        target = context.target
        if target is None:
            raise DataIntegrityError(f"Expected source message: {context.current_stage.value}")
        if target.document_id is None:
            raise DataIntegrityError(
                'Cannot store headers before the email document exists',
                context={'provider_id': target.provider_id},
            )
        headers = target.raw.payload.headers if target.raw and target.raw.payload else []

        result = PartialSuccessResult()
        for header in headers:
            if not header.name or not header.value:
                result.add_skipped(header.name or 'Missing')
                continue
            try:
                type_id = await self._type_id(header.name)
                for value in header_property_values(header.name, header.value):
                    property_id = await self.properties.create(target.document_id, type_id, value)
                    self._created.append(property_id)
                result.add_success(header.name, data={'type_id': type_id})
            except EmailImportError as e:
                logger.warning('header_stage.header_failed', header=header.name, error=str(e))
                result.add_failure(e, item_id=header.name)

        if not result.all_succeeded:
            transient = next((r.error for r in result.failed if is_transient_error(r.error)), None)
            if transient is not None:
                raise transient
            raise DataIntegrityError(
                'An unexpected error occurred while processing email headers.',
                context=result.to_dict(),
            )

        logger.info(
            'header_stage.headers_stored',
            document_id=target.document_id,
            properties=len(self._created),
            **result.to_dict(),
        )
        return context

    async def rollback(self) -> None:
        created = self._created if self.in_transaction else []
        self._created = []
        try:
            if created:
                await self.properties.delete_many(created)
        finally:
            await super().rollback()
