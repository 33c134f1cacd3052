"""
Pytest configuration and shared fixtures.

Key fixtures:
- database_url: Postgres URL for live tests (skipped when unset)
- gmail_message: A representative Gmail ``format=full`` message
- span_exporter: In-memory OpenTelemetry span exporter, cleared per test
- fake_staging: In-memory stand-in for StagingRepository

Unit tests run without any external service; live tests skip themselves
when credentials are absent.
"""

import base64
import os
import sys
from pathlib import Path
from uuid import UUID, uuid4

import pytest

# Add src to path for imports
src_path = Path(__file__).parent.parent / 'src'
sys.path.insert(0, str(src_path))

# Load environment variables
from dotenv import load_dotenv

env_file = Path(__file__).parent.parent / '.env'
if env_file.exists():
    load_dotenv(env_file)

from opentelemetry import trace
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import SimpleSpanProcessor
from opentelemetry.sdk.trace.export.in_memory_span_exporter import InMemorySpanExporter

from email_import.errors import DataIntegrityError
from email_import.models.gmail import GmailMessage
from email_import.models.message import ImportSourceMessage, ImportStage

# The global tracer provider can only be set once per process
_span_exporter = InMemorySpanExporter()
_tracer_provider = TracerProvider()
_tracer_provider.add_span_processor(SimpleSpanProcessor(_span_exporter))
trace.set_tracer_provider(_tracer_provider)


def b64(text: str) -> str:
    """Gmail-style base64url body data."""
    return base64.urlsafe_b64encode(text.encode('utf-8')).decode('ascii').rstrip('=')


def make_gmail_message(
    message_id: str = '18c2f0a1b2c3d4e5',
    thread_id: str = '18c2f0a1b2c3d000',
    headers: list[tuple[str, str]] | None = None,
    body: str = 'Please review the attached filing before Friday.',
    attachments: list[dict] | None = None,
) -> GmailMessage:
    """Build a Gmail message with a text/plain part and optional attachments."""
    if headers is None:
        headers = [
            ('From', '"Jane Doe" <jane@example.org>'),
            ('To', 'Bob Smith <bob@example.org>, carol@example.org'),
            ('Cc', 'Dan <dan@example.org>'),
            ('Subject', 'Quarterly filing'),
            ('Date', 'Tue, 14 Jan 2025 10:15:00 -0500'),
            ('Message-ID', '<CAB123@mail.example.org>'),
        ]
    parts = [
        {
            'partId': '0',
            'mimeType': 'text/plain',
            'filename': '',
            'headers': [{'name': 'Content-Type', 'value': 'text/plain; charset="UTF-8"'}],
            'body': {'size': len(body), 'data': b64(body)},
        }
    ]
    for index, attachment in enumerate(attachments or [], start=1):
        parts.append(
            {
                'partId': str(index),
                'mimeType': attachment.get('mimeType', 'application/pdf'),
                'filename': attachment['filename'],
                'headers': [],
                'body': {
                    'attachmentId': attachment.get('attachmentId', f"ANGjdJ{index}"),
                    'size': attachment.get('size', 1024),
                },
            }
        )
    return GmailMessage.model_validate(
        {
            'id': message_id,
            'threadId': thread_id,
            'labelIds': ['INBOX'],
            'snippet': body[:40],
            'payload': {
                'partId': '',
                'mimeType': 'multipart/mixed',
                'filename': '',
                'headers': [{'name': n, 'value': v} for n, v in headers],
                'body': {'size': 0},
                'parts': parts,
            },
        }
    )


class FakeStagingRepository:
    """In-memory staging rows keyed by id; mirrors StagingRepository's write API."""

    def __init__(self):
        self.rows: dict[UUID, ImportStage] = {}
        self.deleted: list[UUID] = []
        self.stage_updates: list[tuple[UUID, ImportStage]] = []

    async def insert(self, target: ImportSourceMessage) -> UUID:
        staging_id = uuid4()
        self.rows[staging_id] = ImportStage.STAGED if target.stage == ImportStage.NEW else target.stage
        return staging_id

    async def update_stage(self, staging_id: UUID, stage: ImportStage) -> None:
        if staging_id not in self.rows:
            raise DataIntegrityError('Staging row disappeared while updating its stage')
        self.rows[staging_id] = stage
        self.stage_updates.append((staging_id, stage))

    async def delete(self, staging_id: UUID) -> None:
        self.rows.pop(staging_id, None)
        self.deleted.append(staging_id)


@pytest.fixture
def database_url() -> str:
    """Get the Postgres URL from environment."""
    url = os.getenv('DATABASE_URL') or os.getenv('NEON_DATABASE_URL')
    if not url:
        pytest.skip('DATABASE_URL not set')
    return url


@pytest.fixture
def gmail_message() -> GmailMessage:
    return make_gmail_message()


@pytest.fixture
def span_exporter() -> InMemorySpanExporter:
    """Span exporter for the process-wide tracer provider, emptied for each test."""
    _span_exporter.clear()
    yield _span_exporter
    _span_exporter.clear()


@pytest.fixture
def fake_staging() -> FakeStagingRepository:
    return FakeStagingRepository()
