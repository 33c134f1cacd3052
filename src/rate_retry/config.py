"""
Configuration management for the AI rate-retry queue.

Loads REDIS_* and model provider settings from environment variables.
"""

import os
from pathlib import Path

from dotenv import load_dotenv

# Load .env file from project root (idempotent if already loaded by email_import)
_project_root = Path(__file__).parent.parent.parent
_env_file = _project_root / '.env'
if _env_file.exists():
    load_dotenv(_env_file)


class RateRetryConfig:
    """Configuration for the rate-retry queue, loaded from environment."""

    # Queue store
    REDIS_URL: str = os.getenv('REDIS_URL', 'redis://localhost:6379/0')
    QUEUE_KEY_PREFIX: str = os.getenv('RATE_RETRY_KEY_PREFIX', 'ai:rate-retry')
    RESPONSE_TTL_SECONDS: int = int(os.getenv('RATE_RETRY_RESPONSE_TTL_SECONDS', '86400'))

    # Processing budgets
    MAX_PROCESSING_TIME_SECONDS: float = float(os.getenv('RATE_RETRY_MAX_PROCESSING_SECONDS', '600'))
    REQUEST_TIMEOUT_SECONDS: float = float(os.getenv('RATE_RETRY_REQUEST_TIMEOUT_SECONDS', '720'))
    GEN1_BATCH_SIZE: int = int(os.getenv('RATE_RETRY_GEN1_BATCH_SIZE', '10'))
    GEN2_BATCH_SIZE: int = int(os.getenv('RATE_RETRY_GEN2_BATCH_SIZE', '1'))
    GEN2_MAX_TOKENS: int = int(os.getenv('RATE_RETRY_GEN2_MAX_TOKENS', '1000'))

    # Azure OpenAI
    AZURE_OPENAI_API_KEY: str = os.getenv('AZURE_OPENAI_API_KEY', '')
    AZURE_OPENAI_ENDPOINT: str = os.getenv('AZURE_OPENAI_ENDPOINT', '')
    AZURE_OPENAI_API_VERSION: str = os.getenv('AZURE_OPENAI_API_VERSION', '2024-10-21')
    AZURE_HIFI_DEPLOYMENT: str = os.getenv('AZURE_OPENAI_DEPLOYMENT_HIFI', 'gpt-4.1')
    AZURE_LOFI_DEPLOYMENT: str = os.getenv('AZURE_OPENAI_DEPLOYMENT_LOFI', 'gpt-4.1-mini')

    # Google Gemini (OpenAI-compatible endpoint)
    GOOGLE_API_KEY: str = os.getenv('GOOGLE_GENERATIVE_AI_API_KEY', '')
    GOOGLE_OPENAI_BASE_URL: str = os.getenv(
        'GOOGLE_OPENAI_BASE_URL',
        'https://generativelanguage.googleapis.com/v1beta/openai/',
    )
    GOOGLE_HIFI_MODEL: str = os.getenv('GOOGLE_MODEL_HIFI', 'gemini-2.5-pro')
    GOOGLE_LOFI_MODEL: str = os.getenv('GOOGLE_MODEL_LOFI', 'gemini-2.5-flash')

    # Rate-limit cooldown applied to a model that answered with a rate limit
    RATE_LIMIT_COOLDOWN_SECONDS: float = float(os.getenv('RATE_LIMIT_COOLDOWN_SECONDS', '300'))

    LOG_LEVEL: str = os.getenv('RATE_RETRY_LOG_LEVEL', 'INFO')

    @classmethod
    def validate(cls) -> list[str]:
        """
        Validate that required configuration is present.

        Returns:
            List of missing required configuration keys.
        """
        missing = []
        if not cls.REDIS_URL:
            missing.append('REDIS_URL')
        if not (cls.AZURE_OPENAI_API_KEY and cls.AZURE_OPENAI_ENDPOINT) and not cls.GOOGLE_API_KEY:
            missing.append('AZURE_OPENAI_API_KEY/AZURE_OPENAI_ENDPOINT or GOOGLE_GENERATIVE_AI_API_KEY')
        return missing


# Singleton config instance
rate_retry_config = RateRetryConfig()
