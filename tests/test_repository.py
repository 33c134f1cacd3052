"""
Tests for the import repositories.

Uses an AsyncMock in place of PostgresClient; assertions check the state the
repositories build from rows and the parameters they send.

Tests cover:
- StagingRepository.get_current_state branches (new, staged, exists, unauthorized, not found)
- Import status lookup
- Stage column mapping on insert / update
- Contact creation for unknown addresses
- Thread lookup without a provider thread id
- Email creation cleanup when the document unit insert fails
- Reply adoption
"""

import json
from unittest.mock import AsyncMock
from uuid import uuid4

import pytest

from conftest import make_gmail_message

from email_import.errors import (
    DataIntegrityError,
    EmailExistsError,
    ImportUnauthorizedError,
    SourceNotFoundError,
)
from email_import.models.contact import ContactInHeader, RecipientType
from email_import.models.message import ImportSourceMessage, ImportStage, ImportStatus
from email_import.repository import (
    ContactRepository,
    EmailPropertyRepository,
    EmailRepository,
    StagingRepository,
    ThreadRepository,
)

PROVIDER_ID = '18c2f0a1b2c3d4e5'


@pytest.fixture
def postgres():
    pg = AsyncMock()
    pg.fetch_one = AsyncMock(return_value=None)
    pg.fetch_all = AsyncMock(return_value=[])
    pg.execute = AsyncMock(return_value=1)
    return pg


# =============================================================================
# StagingRepository
# =============================================================================


class TestGetCurrentState:
    @pytest.mark.asyncio
    async def test_new_message_with_source(self, postgres, gmail_message):
        state = await StagingRepository(postgres).get_current_state(PROVIDER_ID, 42, source=gmail_message)

        assert state.stage == ImportStage.NEW
        assert state.provider_id == PROVIDER_ID
        assert state.user_id == 42
        assert state.raw is gmail_message
        assert state.id is None

    @pytest.mark.asyncio
    async def test_source_query_omits_staged_message(self, postgres, gmail_message):
        await StagingRepository(postgres).get_current_state(PROVIDER_ID, 42, source=gmail_message)

        sql = postgres.fetch_one.call_args_list[0].args[0]
        assert 'to_json(s.message)' not in sql

    @pytest.mark.asyncio
    async def test_already_imported(self, postgres, gmail_message):
        email_id = uuid4()
        postgres.fetch_one.side_effect = [None, {'email_id': email_id}]

        with pytest.raises(EmailExistsError) as exc_info:
            await StagingRepository(postgres).get_current_state(PROVIDER_ID, 42, source=gmail_message)

        assert exc_info.value.context['target_id'] == str(email_id)

    @pytest.mark.asyncio
    async def test_nothing_staged_and_no_source(self, postgres):
        with pytest.raises(SourceNotFoundError):
            await StagingRepository(postgres).get_current_state(PROVIDER_ID, 42)

    @pytest.mark.asyncio
    async def test_staged_by_another_user(self, postgres):
        postgres.fetch_one.return_value = {
            'provider_id': PROVIDER_ID,
            'stage': 'headers',
            'id': uuid4(),
            'user_id': 7,
            'target_id': None,
            'document_id': None,
            'message': json.dumps(make_gmail_message().to_json_dict()),
        }

        with pytest.raises(ImportUnauthorizedError) as exc_info:
            await StagingRepository(postgres).get_current_state(PROVIDER_ID, 42)

        assert exc_info.value.message == 'Unauthorized'

    @pytest.mark.asyncio
    async def test_resumes_staged_message(self, postgres):
        staging_id = uuid4()
        target_id = uuid4()
        postgres.fetch_one.return_value = {
            'provider_id': PROVIDER_ID,
            'stage': 'contacts',
            'id': staging_id,
            'user_id': 42,
            'target_id': target_id,
            'document_id': 311,
            'message': make_gmail_message().to_json_dict(),
        }

        state = await StagingRepository(postgres).get_current_state(PROVIDER_ID, 42)

        assert state.stage == ImportStage.CONTACTS
        assert state.id == staging_id
        assert state.target_id == target_id
        assert state.document_id == 311
        assert state.raw.id == PROVIDER_ID
        assert 'to_json(s.message)' in postgres.fetch_one.call_args.args[0]

    @pytest.mark.asyncio
    async def test_complete_column_value(self, postgres, gmail_message):
        postgres.fetch_one.return_value = {
            'provider_id': PROVIDER_ID,
            'stage': 'complete',
            'id': uuid4(),
            'user_id': 42,
            'target_id': uuid4(),
            'document_id': 5,
        }

        state = await StagingRepository(postgres).get_current_state(PROVIDER_ID, 42, source=gmail_message)

        assert state.stage == ImportStage.COMPLETED


class TestStagingWrites:
    @pytest.mark.asyncio
    async def test_insert_new_is_stored_as_staged(self, postgres, gmail_message):
        target = ImportSourceMessage(provider_id=PROVIDER_ID, user_id=42, raw=gmail_message)

        staging_id = await StagingRepository(postgres).insert(target)

        params = postgres.execute.call_args.args[1]
        assert params['id'] == str(staging_id)
        assert params['stage'] == 'staged'
        assert json.loads(params['message'])['id'] == PROVIDER_ID

    @pytest.mark.asyncio
    async def test_insert_requires_payload(self, postgres):
        with pytest.raises(DataIntegrityError):
            await StagingRepository(postgres).insert(ImportSourceMessage(provider_id=PROVIDER_ID))

    @pytest.mark.asyncio
    async def test_update_stage_completed_column_value(self, postgres):
        await StagingRepository(postgres).update_stage(uuid4(), ImportStage.COMPLETED)

        assert postgres.execute.call_args.args[1]['stage'] == 'complete'

    @pytest.mark.asyncio
    async def test_update_stage_missing_row(self, postgres):
        postgres.execute.return_value = 0

        with pytest.raises(DataIntegrityError):
            await StagingRepository(postgres).update_stage(uuid4(), ImportStage.BODY)


class TestImportStatus:
    @pytest.mark.asyncio
    async def test_pending(self, postgres):
        assert await StagingRepository(postgres).get_import_status(PROVIDER_ID) == (ImportStatus.PENDING, None)

    @pytest.mark.asyncio
    async def test_in_progress(self, postgres):
        email_id = uuid4()
        postgres.fetch_one.return_value = {'email_id': email_id, 'staged_id': uuid4()}

        status = await StagingRepository(postgres).get_import_status(PROVIDER_ID)

        assert status == (ImportStatus.IN_PROGRESS, str(email_id))

    @pytest.mark.asyncio
    async def test_imported(self, postgres):
        email_id = uuid4()
        postgres.fetch_one.return_value = {'email_id': email_id, 'staged_id': None}

        status = await StagingRepository(postgres).get_import_status(PROVIDER_ID)

        assert status == (ImportStatus.IMPORTED, str(email_id))


# =============================================================================
# Contacts, threads, emails
# =============================================================================


class TestContactRepository:
    @pytest.mark.asyncio
    async def test_creates_only_unknown_contacts(self, postgres):
        postgres.fetch_all.return_value = [{'contact_id': 1, 'email': 'Jane@Example.org', 'name': 'Jane'}]
        postgres.fetch_one.return_value = {'contact_id': 2, 'email': 'bob@example.org', 'name': 'Bob'}

        found = await ContactRepository(postgres).ensure_contacts(
            [
                ContactInHeader(email='jane@example.org', name='Jane'),
                ContactInHeader(email='bob@example.org', name='Bob'),
                ContactInHeader(email='BOB@example.org'),
            ]
        )

        assert set(found) == {'jane@example.org', 'bob@example.org'}
        assert found['bob@example.org'].contact_id == 2
        postgres.fetch_one.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_contact_name_defaults_to_email(self, postgres):
        postgres.fetch_one.return_value = {'contact_id': 3, 'email': 'carol@example.org', 'name': 'carol@example.org'}

        await ContactRepository(postgres).ensure_contacts([ContactInHeader(email='carol@example.org')])

        assert postgres.fetch_one.call_args.args[1]['name'] == 'carol@example.org'

    @pytest.mark.asyncio
    async def test_add_email_recipient_type(self, postgres):
        await ContactRepository(postgres).add_email_recipient(5, uuid4(), RecipientType.CC)

        assert postgres.execute.call_args.args[1]['recipient_type'] == 'cc'


class TestThreadRepository:
    @pytest.mark.asyncio
    async def test_no_provider_thread(self, postgres):
        assert await ThreadRepository(postgres).get_or_create(None, 'Hi') is None
        postgres.fetch_one.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_creates_missing_thread(self, postgres):
        postgres.fetch_one.side_effect = [None, {'thread_id': 12}]

        assert await ThreadRepository(postgres).get_or_create('thread-1', 'Hi') == 12


class TestEmailRepository:
    @pytest.mark.asyncio
    async def test_create_returns_email_and_document(self, postgres):
        email_id = uuid4()
        postgres.fetch_one.side_effect = [{'email_id': email_id}, {'unit_id': 311}]

        result = await EmailRepository(postgres).create(
            sender_id=1,
            subject='Hi',
            email_contents='Body',
            sent_on=None,
            thread_id=None,
            parent_email_id=None,
            imported_from_id=PROVIDER_ID,
            global_message_id='CAB123@mail.example.org',
        )

        assert result == (email_id, 311)

    @pytest.mark.asyncio
    async def test_create_removes_email_when_unit_fails(self, postgres):
        email_id = uuid4()
        postgres.fetch_one.side_effect = [{'email_id': email_id}, None]

        with pytest.raises(DataIntegrityError):
            await EmailRepository(postgres).create(
                sender_id=1,
                subject='Hi',
                email_contents='Body',
                sent_on=None,
                thread_id=None,
                parent_email_id=None,
                imported_from_id=PROVIDER_ID,
                global_message_id=None,
            )

        assert 'DELETE FROM emails' in postgres.execute.call_args.args[0]
        assert postgres.execute.call_args.args[1] == {'email_id': str(email_id)}

    @pytest.mark.asyncio
    async def test_find_by_global_message_id_matches_bracketed(self, postgres):
        await EmailRepository(postgres).find_by_global_message_id('CAB123@mail.example.org')

        params = postgres.fetch_one.call_args.args[1]
        assert params['bracketed'] == '<CAB123@mail.example.org>'

    @pytest.mark.asyncio
    async def test_adopt_children(self, postgres):
        child = uuid4()
        postgres.fetch_all.return_value = [{'email_id': child}]

        adopted = await EmailRepository(postgres).adopt_children(uuid4(), 'CAB123@mail.example.org')

        assert adopted == [child]

    @pytest.mark.asyncio
    async def test_delete_attachments_empty(self, postgres):
        assert await EmailRepository(postgres).delete_attachments([]) == 0
        postgres.execute.assert_not_awaited()


class TestEmailPropertyRepository:
    @pytest.mark.asyncio
    async def test_delete_many(self, postgres):
        ids = [uuid4(), uuid4()]
        postgres.execute.return_value = 2

        assert await EmailPropertyRepository(postgres).delete_many(ids) == 2
        assert postgres.execute.call_args.args[1] == {'ids': [str(i) for i in ids]}
