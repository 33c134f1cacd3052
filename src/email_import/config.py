"""
Configuration management for the email import pipeline.

Loads settings from environment variables with sensible defaults.
"""

import os
from pathlib import Path

from dotenv import load_dotenv

# Load .env file from project root
_project_root = Path(__file__).parent.parent.parent
_env_file = _project_root / '.env'
if _env_file.exists():
    load_dotenv(_env_file)


class Config:
    """Configuration settings loaded from environment."""

    # Postgres
    DATABASE_URL: str = os.getenv('DATABASE_URL', '') or os.getenv('NEON_DATABASE_URL', '')

    # Gmail provider
    GMAIL_API_BASE_URL: str = os.getenv(
        'GMAIL_API_BASE_URL', 'https://gmail.googleapis.com/gmail/v1'
    )
    GMAIL_HTTP_TIMEOUT_SECONDS: float = float(os.getenv('GMAIL_HTTP_TIMEOUT_SECONDS', '30'))

    # Import pipeline
    IMPORT_MAX_STAGE_RETRIES: int = int(os.getenv('IMPORT_MAX_STAGE_RETRIES', '3'))
    TRACER_NAME: str = os.getenv('TRACER_NAME', 'compliance-email-import')
    LOG_LEVEL: str = os.getenv('LOG_LEVEL', 'INFO')

    @classmethod
    def validate(cls) -> list[str]:
        """
        Validate that required configuration is present.

        Returns:
            List of missing required configuration keys
        """
        missing = []
        if not cls.DATABASE_URL:
            missing.append('DATABASE_URL')
        return missing


# Singleton config instance
config = Config()
