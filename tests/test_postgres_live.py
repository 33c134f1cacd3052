"""
Live integration tests for the Postgres client.

These tests hit a real database and are skipped unless DATABASE_URL is set.
Run with: pytest tests/test_postgres_live.py -v

Only read-only statements are issued.
"""

import pytest

from email_import.clients.postgres_client import PostgresClient
from email_import.errors import DatabaseError


class TestPostgresLive:
    """Round trips against a live database."""

    @pytest.mark.asyncio
    async def test_verify_connectivity(self, database_url: str):
        client = PostgresClient(database_url)
        await client.connect()
        try:
            assert await client.verify_connectivity() is True
        finally:
            await client.close()

    @pytest.mark.asyncio
    async def test_fetch_one_with_params(self, database_url: str):
        client = PostgresClient(database_url)
        await client.connect()
        try:
            row = await client.fetch_one('SELECT CAST(:value AS text) AS value', {'value': 'staged'})
            assert row == {'value': 'staged'}
        finally:
            await client.close()

    @pytest.mark.asyncio
    async def test_bad_sql_is_wrapped(self, database_url: str):
        client = PostgresClient(database_url)
        await client.connect()
        try:
            with pytest.raises(DatabaseError):
                await client.fetch_all('SELECT * FROM no_such_table_for_import_tests')
        finally:
            await client.close()
