"""
Postgres repositories used by the import stage managers.

Provides:
- StagingRepository: staging_message rows (the import state machine's record)
- ContactRepository: contacts and email_recipients
- ThreadRepository: threads keyed by provider thread id
- EmailRepository: emails, their document units, parent links, attachments
- EmailPropertyTypeRepository / EmailPropertyRepository: header properties
"""

from __future__ import annotations

import json
from datetime import datetime, timezone
from typing import Any
from uuid import UUID, uuid4

from .clients.postgres_client import PostgresClient
from .errors import (
    DataIntegrityError,
    EmailExistsError,
    ImportUnauthorizedError,
    SourceNotFoundError,
)
from .logging import get_logger
from .models.contact import ContactInHeader, RecipientType, StoredContact
from .models.gmail import GmailMessage
from .models.message import ImportSourceMessage, ImportStage, ImportStatus

logger = get_logger(__name__)

EMAIL_HEADER_CATEGORY_ID = 1


def _staging_stage_value(stage: ImportStage) -> str:
    """
    Map a pipeline stage onto the import_stage_type column.

    The column has no 'new' value (a row only exists once staged), and spells
    the terminal state 'complete'.
    """
    if stage == ImportStage.NEW:
        return ImportStage.STAGED.value
    if stage == ImportStage.COMPLETED:
        return 'complete'
    return stage.value


def _stage_from_column(value: str) -> ImportStage:
    if value == 'complete':
        return ImportStage.COMPLETED
    return ImportStage(value)


# =============================================================================
# Staging
# =============================================================================


class StagingRepository:
    """Reads and writes staging_message rows."""

    def __init__(self, postgres: PostgresClient):
        self.postgres = postgres

    async def get_current_state(
        self,
        email_id: str,
        user_id: int | None,
        source: GmailMessage | None = None,
    ) -> ImportSourceMessage:
        """
        Load where an import of ``email_id`` currently stands.

        Args:
            email_id: Provider message id
            user_id: User performing the import
            source: Freshly fetched provider copy; when given it replaces the
                    staged copy

        Returns:
            The staged state, or a 'new' state built from ``source`` when the
            message has not been staged yet

        Raises:
            EmailExistsError: The message was already imported
            SourceNotFoundError: Nothing staged and no source supplied
            ImportUnauthorizedError: Another user staged this message
        """
        message_field = '' if source is not None else ', to_json(s.message) AS message'
        row = await self.postgres.fetch_one(
            f"""
            SELECT s.external_id AS provider_id, s.stage, s.id, s.user_id,
                   m.email_id AS target_id, d.unit_id AS document_id{message_field}
            FROM emails m
            RIGHT JOIN staging_message s ON s.external_id = m.imported_from_id
            LEFT JOIN document_units d
              ON d.email_id = m.email_id AND d.document_type = 'email'
            WHERE s.external_id = :email_id
            LIMIT 1
            """,
            {'email_id': email_id},
        )
        if row is None:
            existing = await self.postgres.fetch_one(
                'SELECT email_id FROM emails WHERE imported_from_id = :email_id',
                {'email_id': email_id},
            )
            if existing is not None:
                raise EmailExistsError(
                    f"Message {email_id} has already been imported as email "
                    f"{existing['email_id']}; delete the email to re-import it.",
                    context={'email_id': email_id, 'target_id': str(existing['email_id'])},
                )
            if source is None:
                raise SourceNotFoundError(
                    f"Message id {email_id} not found.",
                    context={'email_id': email_id},
                )
            return ImportSourceMessage(
                provider_id=email_id,
                stage=ImportStage.NEW,
                user_id=user_id,
                raw=source,
            )

        if user_id is not None and row['user_id'] != user_id:
            raise ImportUnauthorizedError(
                'Unauthorized',
                context={'email_id': email_id, 'user_id': user_id},
            )

        raw: GmailMessage | None = source
        if raw is None and row.get('message'):
            message = row['message']
            raw = GmailMessage.model_validate(
                json.loads(message) if isinstance(message, str) else message
            )
        if raw is None:
            raise SourceNotFoundError(
                f"Message id {email_id} not found.",
                context={'email_id': email_id},
            )

        return ImportSourceMessage(
            provider_id=row['provider_id'],
            stage=_stage_from_column(row['stage']),
            id=row['id'],
            target_id=row['target_id'],
            document_id=row.get('document_id'),
            user_id=row['user_id'],
            raw=raw,
        )

    async def get_stage(self, staging_id: UUID) -> ImportStage | None:
        """Current stage of a staging row, or None if the row does not exist."""
        row = await self.postgres.fetch_one(
            'SELECT stage FROM staging_message WHERE id = :id',
            {'id': str(staging_id)},
        )
        return _stage_from_column(row['stage']) if row else None

    async def insert(self, target: ImportSourceMessage) -> UUID:
        """Stage a provider message; returns the new staging row id."""
        if target.raw is None:
            raise DataIntegrityError(
                'Cannot stage a message without a provider payload',
                context={'provider_id': target.provider_id},
            )
        staging_id = uuid4()
        await self.postgres.execute(
            """
            INSERT INTO staging_message (id, external_id, stage, message, user_id)
            VALUES (:id, :external_id, CAST(:stage AS import_stage_type),
                    CAST(:message AS jsonb), :user_id)
            """,
            {
                'id': str(staging_id),
                'external_id': target.provider_id,
                'stage': _staging_stage_value(target.stage),
                'message': json.dumps(target.raw.to_json_dict()),
                'user_id': target.user_id,
            },
        )
        logger.debug('staging.inserted', staging_id=str(staging_id), provider_id=target.provider_id)
        return staging_id

    async def update_stage(self, staging_id: UUID, stage: ImportStage) -> None:
        rows = await self.postgres.execute(
            """
            UPDATE staging_message SET stage = CAST(:stage AS import_stage_type)
            WHERE id = :id
            """,
            {'id': str(staging_id), 'stage': _staging_stage_value(stage)},
        )
        if rows == 0:
            raise DataIntegrityError(
                'Staging row disappeared while updating its stage',
                context={'staging_id': str(staging_id), 'stage': stage.value},
            )

    async def delete(self, staging_id: UUID) -> None:
        """Remove a staging row (staged attachments cascade)."""
        await self.postgres.execute(
            'DELETE FROM staging_message WHERE id = :id',
            {'id': str(staging_id)},
        )

    async def get_import_status(self, provider_id: str) -> tuple[ImportStatus, str | None]:
        """
        Import status of a provider message.

        Returns:
            (status, imported email id or None)
        """
        row = await self.postgres.fetch_one(
            """
            SELECT e.email_id, s.id AS staged_id
            FROM emails e
            FULL OUTER JOIN staging_message s ON e.imported_from_id = s.external_id
            WHERE e.imported_from_id = :provider_id OR s.external_id = :provider_id
            """,
            {'provider_id': provider_id},
        )
        if row is None:
            return ImportStatus.PENDING, None
        email_id = str(row['email_id']) if row.get('email_id') else None
        if row.get('staged_id'):
            return ImportStatus.IN_PROGRESS, email_id
        if email_id:
            return ImportStatus.IMPORTED, email_id
        return ImportStatus.PENDING, None

    async def add_staged_attachment(
        self,
        staging_id: UUID,
        part_id: int,
        filename: str | None,
        mime_type: str | None,
        size: int,
        attachment_id: str | None,
    ) -> None:
        await self.postgres.execute(
            """
            INSERT INTO staging_attachment (
                staging_message_id, "partId", filename, "mimeType", size, "attachmentId"
            ) VALUES (:staging_id, :part_id, :filename, :mime_type, :size, :attachment_id)
            ON CONFLICT (staging_message_id, "partId") DO NOTHING
            """,
            {
                'staging_id': str(staging_id),
                'part_id': part_id,
                'filename': filename,
                'mime_type': mime_type,
                'size': size,
                'attachment_id': attachment_id,
            },
        )


# =============================================================================
# Contacts
# =============================================================================


class ContactRepository:
    """contacts and email_recipients."""

    def __init__(self, postgres: PostgresClient):
        self.postgres = postgres

    async def get_contacts_by_emails(self, emails: list[str]) -> list[StoredContact]:
        if not emails:
            return []
        rows = await self.postgres.fetch_all(
            """
            SELECT contact_id, email, name FROM contacts
            WHERE lower(email) = ANY(:emails)
            """,
            {'emails': [e.lower() for e in emails]},
        )
        return [StoredContact(**row) for row in rows]

    async def ensure_contacts(self, contacts: list[ContactInHeader]) -> dict[str, StoredContact]:
        """
        Return stored contacts for every address, creating unknown ones.

        Returns:
            Mapping of lower-cased email → StoredContact
        """
        unique: dict[str, ContactInHeader] = {}
        for contact in contacts:
            unique.setdefault(contact.email.lower(), contact)

        found = {c.email.lower(): c for c in await self.get_contacts_by_emails(list(unique))}
        for key, contact in unique.items():
            if key in found:
                continue
            row = await self.postgres.fetch_one(
                """
                INSERT INTO contacts (name, email) VALUES (:name, :email)
                ON CONFLICT (email) DO UPDATE SET email = EXCLUDED.email
                RETURNING contact_id, email, name
                """,
                {'name': contact.name or contact.email, 'email': contact.email},
            )
            if row is None:
                raise DataIntegrityError(
                    'Failed to create contact',
                    context={'email': contact.email},
                )
            found[key] = StoredContact(**row)
            logger.info('contacts.created', contact_id=row['contact_id'])
        return found

    async def add_email_recipient(
        self,
        contact_id: int,
        email_id: UUID,
        recipient_type: RecipientType = RecipientType.TO,
    ) -> None:
        await self.postgres.execute(
            """
            INSERT INTO email_recipients (recipient_id, email_id, recipient_type)
            VALUES (:recipient_id, :email_id, CAST(:recipient_type AS recipient_type))
            ON CONFLICT DO NOTHING
            """,
            {
                'recipient_id': contact_id,
                'email_id': str(email_id),
                'recipient_type': recipient_type.value,
            },
        )


# =============================================================================
# Threads
# =============================================================================


class ThreadRepository:
    def __init__(self, postgres: PostgresClient):
        self.postgres = postgres

    async def get_or_create(self, external_id: str | None, subject: str) -> int | None:
        """Thread id for a provider thread, creating the thread if needed."""
        if not external_id:
            return None
        row = await self.postgres.fetch_one(
            'SELECT thread_id FROM threads WHERE external_id = :external_id',
            {'external_id': external_id},
        )
        if row is not None:
            return row['thread_id']
        row = await self.postgres.fetch_one(
            """
            INSERT INTO threads (external_id, subject, created_at)
            VALUES (:external_id, :subject, :created_at)
            RETURNING thread_id
            """,
            {
                'external_id': external_id,
                'subject': subject,
                'created_at': datetime.now(timezone.utc),
            },
        )
        if row is None:
            raise DataIntegrityError('Failed to create new thread.', context={'external_id': external_id})
        return row['thread_id']


# =============================================================================
# Emails
# =============================================================================


class EmailRepository:
    """emails and the rows that hang off them."""

    def __init__(self, postgres: PostgresClient):
        self.postgres = postgres

    async def create(
        self,
        sender_id: int,
        subject: str,
        email_contents: str,
        sent_on: datetime,
        thread_id: int | None,
        parent_email_id: UUID | None,
        imported_from_id: str | None,
        global_message_id: str | None,
    ) -> tuple[UUID, int]:
        """
        Insert an email and its document unit.

        Returns:
            (email_id, document_id)
        """
        email_row = await self.postgres.fetch_one(
            """
            INSERT INTO emails (
                sender_id, subject, email_contents, sent_timestamp,
                thread_id, parent_id, imported_from_id, global_message_id
            ) VALUES (
                :sender_id, :subject, :email_contents, :sent_timestamp,
                :thread_id, :parent_id, :imported_from_id, :global_message_id
            )
            RETURNING email_id
            """,
            {
                'sender_id': sender_id,
                'subject': subject,
                'email_contents': email_contents,
                'sent_timestamp': sent_on,
                'thread_id': thread_id,
                'parent_id': str(parent_email_id) if parent_email_id else None,
                'imported_from_id': imported_from_id,
                'global_message_id': global_message_id,
            },
        )
        if email_row is None:
            raise DataIntegrityError('Failed to insert email record')
        email_id = UUID(str(email_row['email_id']))

        unit_row = await self.postgres.fetch_one(
            """
            INSERT INTO document_units (email_id, content, document_type)
            VALUES (:email_id, :content, 'email')
            RETURNING unit_id
            """,
            {'email_id': str(email_id), 'content': email_contents},
        )
        if unit_row is None:
            await self.delete(email_id)
            raise DataIntegrityError(
                'Failed to insert document unit for email',
                context={'email_id': str(email_id)},
            )
        return email_id, unit_row['unit_id']

    async def delete(self, email_id: UUID) -> None:
        await self.postgres.execute(
            'DELETE FROM emails WHERE email_id = :email_id',
            {'email_id': str(email_id)},
        )

    async def find_by_global_message_id(self, global_message_id: str) -> UUID | None:
        row = await self.postgres.fetch_one(
            """
            SELECT email_id FROM emails
            WHERE global_message_id = :global_id OR global_message_id = :bracketed
            LIMIT 1
            """,
            {'global_id': global_message_id, 'bracketed': f"<{global_message_id}>"},
        )
        return UUID(str(row['email_id'])) if row else None

    async def set_parent(self, email_id: UUID, parent_id: UUID) -> None:
        await self.postgres.execute(
            """
            UPDATE emails SET parent_id = :parent_id
            WHERE email_id = :email_id AND parent_id IS NULL
            """,
            {'email_id': str(email_id), 'parent_id': str(parent_id)},
        )

    async def adopt_children(self, email_id: UUID, global_message_id: str) -> list[UUID]:
        """
        Point previously imported replies at this email.

        A reply is any email without a parent whose In-Reply-To header
        property names this email's id or Message-ID.

        Returns:
            Ids of the emails that were updated
        """
        rows = await self.postgres.fetch_all(
            """
            UPDATE emails SET parent_id = :email_id
            WHERE emails.parent_id IS NULL AND emails.email_id <> :email_id
              AND emails.email_id IN (
                SELECT E.email_id
                FROM emails E
                JOIN document_units D ON D.email_id = E.email_id
                JOIN document_property EP ON D.unit_id = EP.document_id
                JOIN email_property_type ET
                  ON EP.document_property_type_id = ET.document_property_type_id
                WHERE ET.property_name = 'In-Reply-To'
                  AND (EP.property_value = :email_id_text
                       OR EP.property_value = :global_id
                       OR EP.property_value = :bracketed)
              )
            RETURNING emails.email_id
            """,
            {
                'email_id': str(email_id),
                'email_id_text': str(email_id),
                'global_id': global_message_id,
                'bracketed': f"<{global_message_id}>",
            },
        )
        return [UUID(str(r['email_id'])) for r in rows]

    async def add_attachment(
        self,
        email_id: UUID,
        file_name: str,
        file_path: str,
        mime_type: str,
        size: int,
    ) -> int:
        row = await self.postgres.fetch_one(
            """
            INSERT INTO email_attachments (email_id, file_name, file_path, mime_type, size)
            VALUES (:email_id, :file_name, :file_path, :mime_type, :size)
            RETURNING attachment_id
            """,
            {
                'email_id': str(email_id),
                'file_name': file_name,
                'file_path': file_path,
                'mime_type': mime_type,
                'size': size,
            },
        )
        if row is None:
            raise DataIntegrityError(
                'Failed to insert attachment record',
                context={'email_id': str(email_id), 'file_name': file_name},
            )
        return row['attachment_id']

    async def delete_attachments(self, attachment_ids: list[int]) -> int:
        if not attachment_ids:
            return 0
        return await self.postgres.execute(
            'DELETE FROM email_attachments WHERE attachment_id = ANY(:ids)',
            {'ids': attachment_ids},
        )


# =============================================================================
# Email properties
# =============================================================================


class EmailPropertyTypeRepository:
    def __init__(self, postgres: PostgresClient):
        self.postgres = postgres

    async def list_for_category(self, category_id: int) -> dict[str, int]:
        """Property name → type id for every type in a category."""
        rows = await self.postgres.fetch_all(
            """
            SELECT document_property_type_id, property_name FROM email_property_type
            WHERE email_property_category_id = :category_id
            """,
            {'category_id': category_id},
        )
        return {r['property_name']: r['document_property_type_id'] for r in rows}

    async def create(self, category_id: int, name: str) -> int:
        row = await self.postgres.fetch_one(
            """
            INSERT INTO email_property_type (email_property_category_id, property_name, created_at)
            VALUES (:category_id, :name, :created_at)
            RETURNING document_property_type_id
            """,
            {
                'category_id': category_id,
                'name': name,
                'created_at': datetime.now(timezone.utc),
            },
        )
        if row is None:
            raise DataIntegrityError(
                'An unexpected failure occurred while creating a new email property type.',
                context={'name': name},
            )
        return row['document_property_type_id']


class EmailPropertyRepository:
    def __init__(self, postgres: PostgresClient):
        self.postgres = postgres

    async def create(self, document_id: int, type_id: int, value: str) -> UUID:
        property_id = uuid4()
        params: dict[str, Any] = {
            'property_id': str(property_id),
            'document_id': document_id,
            'type_id': type_id,
            'value': value,
            'created_on': datetime.now(timezone.utc),
        }
        await self.postgres.execute(
            """
            INSERT INTO document_property (
                property_id, document_id, document_property_type_id, property_value, created_on
            ) VALUES (:property_id, :document_id, :type_id, :value, :created_on)
            """,
            params,
        )
        return property_id

    async def delete_many(self, property_ids: list[UUID]) -> int:
        if not property_ids:
            return 0
        return await self.postgres.execute(
            'DELETE FROM document_property WHERE property_id = ANY(CAST(:ids AS uuid[]))',
            {'ids': [str(p) for p in property_ids]},
        )
