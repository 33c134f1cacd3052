"""
Chat model clients for retried requests.

Handles:
- Azure OpenAI deployments (AsyncAzureOpenAI)
- Google Gemini through its OpenAI-compatible endpoint (AsyncOpenAI)
- Retry with exponential backoff on connection failures
- Mapping provider errors onto RateRetryError / ModelRequestError
"""

from __future__ import annotations

from typing import Any

import openai
import structlog
from openai import AsyncAzureOpenAI, AsyncOpenAI
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from .availability import ModelAvailability, get_model_availability, split_model_key
from .config import RateRetryConfig, rate_retry_config
from .errors import ModelUnavailableError, wrap_model_error

logger = structlog.get_logger(__name__)


class ChatModelClient:
    """A chat completion client bound to one model key."""

    def __init__(self, client: AsyncOpenAI, model: str, key: str):
        """
        Args:
            client: OpenAI SDK client for the provider
            model: Model (or Azure deployment) name sent to the provider
            key: Model key, e.g. ``azure:hifi``
        """
        self._client = client
        self.model = model
        self.key = key

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=1, max=10),
        retry=retry_if_exception_type(openai.APIConnectionError),
        reraise=True,
    )
    async def _create(self, messages: list[dict[str, Any]], max_tokens: int | None):
        return await self._client.chat.completions.create(
            model=self.model,
            messages=messages,  # type: ignore
            max_tokens=max_tokens,
        )

    async def generate_text(
        self,
        messages: list[dict[str, Any]],
        max_tokens: int | None = None,
    ) -> dict[str, Any]:
        """
        Run a chat completion.

        Returns:
            Serializable result with the generated text, finish reason and usage

        Raises:
            RateRetryError: The provider answered with a rate limit
            ModelRequestError: Any other provider failure
        """
        try:
            response = await self._create(messages, max_tokens)
        except openai.OpenAIError as e:
            raise wrap_model_error(e, context={'model_key': self.key}) from e

        choice = response.choices[0] if response.choices else None
        usage = response.usage
        return {
            'text': (choice.message.content if choice else None) or '',
            'finishReason': choice.finish_reason if choice else None,
            'usage': {
                'promptTokens': usage.prompt_tokens if usage else None,
                'completionTokens': usage.completion_tokens if usage else None,
                'totalTokens': usage.total_tokens if usage else None,
            },
            'model': self.model,
            'modelKey': self.key,
        }


class ModelClientFactory:
    """
    Builds ChatModelClients for model keys.

    Classification keys (``azure:lofi``) map to configured deployments;
    any other model part (``google:gemini-2.0-flash``) is used as the model
    name directly.
    """

    def __init__(
        self,
        availability: ModelAvailability | None = None,
        settings: RateRetryConfig | None = None,
    ):
        self.availability = availability or get_model_availability()
        self.settings = settings or rate_retry_config
        self._provider_clients: dict[str, AsyncOpenAI] = {}

    def model_name(self, key: str) -> str:
        provider, model = split_model_key(key)
        names = {
            'azure': {
                'hifi': self.settings.AZURE_HIFI_DEPLOYMENT,
                'lofi': self.settings.AZURE_LOFI_DEPLOYMENT,
            },
            'google': {
                'hifi': self.settings.GOOGLE_HIFI_MODEL,
                'lofi': self.settings.GOOGLE_LOFI_MODEL,
            },
        }
        return names.get(provider, {}).get(model, model)

    def _provider_client(self, provider: str) -> AsyncOpenAI:
        client = self._provider_clients.get(provider)
        if client is not None:
            return client
        if provider == 'azure':
            client = AsyncAzureOpenAI(
                api_key=self.settings.AZURE_OPENAI_API_KEY,
                azure_endpoint=self.settings.AZURE_OPENAI_ENDPOINT,
                api_version=self.settings.AZURE_OPENAI_API_VERSION,
            )
        elif provider == 'google':
            client = AsyncOpenAI(
                api_key=self.settings.GOOGLE_API_KEY,
                base_url=self.settings.GOOGLE_OPENAI_BASE_URL,
            )
        else:
            raise ModelUnavailableError(f"Unknown model provider: {provider}", context={'provider': provider})
        self._provider_clients[provider] = client
        return client

    def get_client(self, key: str) -> ChatModelClient:
        """
        Client for a model key.

        Raises:
            ModelUnavailableError: The model is disabled or its provider is not configured
        """
        if not self.availability.is_model_available(key):
            raise ModelUnavailableError(f"Model {key} is currently unavailable", context={'model_key': key})
        provider, _ = split_model_key(key)
        return ChatModelClient(self._provider_client(provider), self.model_name(key), key)

    async def close(self) -> None:
        for client in self._provider_clients.values():
            await client.close()
        self._provider_clients.clear()
