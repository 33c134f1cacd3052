"""
External service clients for the email import pipeline.
"""

from .gmail_client import GmailClient
from .postgres_client import PostgresClient

__all__ = [
    'GmailClient',
    'PostgresClient',
]
