"""
Gmail REST client used by the staging stage to fetch provider messages.

Handles:
- Full message retrieval (``format=full``)
- Lookup by RFC 822 Message-ID (ids containing ``@``)
- Retry with exponential backoff on transport failures
- Mapping provider status codes onto ImportSourceError causes
"""

from __future__ import annotations

from typing import Any

import httpx
import structlog
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from ..config import config
from ..errors import (
    EmailNotFoundError,
    ImportUnauthorizedError,
    InvalidImportArgumentsError,
    ProviderError,
)
from ..models.gmail import GmailMessage

logger = structlog.get_logger(__name__)


class GmailClient:
    """
    Async Gmail client acting on behalf of one user.

    Usage:
        async with GmailClient(access_token) as gmail:
            message = await gmail.get_message("18c2f...")
    """

    def __init__(
        self,
        access_token: str,
        base_url: str | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        """
        Initialize the client.

        Args:
            access_token: OAuth access token with gmail.readonly scope
            base_url: Gmail API root (defaults to GMAIL_API_BASE_URL)
            timeout: Per-request timeout in seconds
            transport: Optional httpx transport (tests use httpx.MockTransport)
        """
        if not access_token:
            raise InvalidImportArgumentsError('A provider access token is required')
        self._client = httpx.AsyncClient(
            base_url=(base_url or config.GMAIL_API_BASE_URL).rstrip('/'),
            timeout=timeout or config.GMAIL_HTTP_TIMEOUT_SECONDS,
            headers={'Authorization': f"Bearer {access_token}"},
            transport=transport,
        )

    async def __aenter__(self) -> GmailClient:
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    async def close(self) -> None:
        """Close the underlying HTTP client."""
        await self._client.aclose()

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=1, max=10),
        retry=retry_if_exception_type(httpx.TransportError),
        reraise=True,
    )
    async def _get(self, path: str, params: dict[str, Any] | None = None) -> httpx.Response:
        return await self._client.get(path, params=params)

    def _raise_for_status(self, response: httpx.Response, message_id: str) -> None:
        if response.is_success:
            return
        status = response.status_code
        context = {'message_id': message_id, 'status_code': status}
        if status == 404:
            raise EmailNotFoundError('Email not found', context=context)
        if status in (401, 403):
            raise ImportUnauthorizedError('Provider rejected the access token', context=context)
        raise ProviderError('Error retrieving email', context=context)

    async def resolve_message_id(self, message_id: str) -> str:
        """
        Turn an RFC 822 Message-ID into a Gmail message id.

        Ids without ``@`` are already Gmail ids and are returned unchanged.
        """
        if '@' not in message_id:
            return message_id
        response = await self._get(
            '/users/me/messages',
            params={'q': f"rfc822msgid:{message_id.strip('<>')}"},
        )
        self._raise_for_status(response, message_id)
        messages = response.json().get('messages') or []
        if not messages:
            raise EmailNotFoundError('Email not found', context={'message_id': message_id})
        return messages[0]['id']

    async def get_message(self, message_id: str) -> GmailMessage:
        """
        Fetch a full message.

        Args:
            message_id: Gmail message id or RFC 822 Message-ID

        Returns:
            Parsed GmailMessage

        Raises:
            InvalidImportArgumentsError: message_id is empty
            EmailNotFoundError: The provider has no such message
            ImportUnauthorizedError: The access token was rejected
            ProviderError: Any other provider failure
        """
        if not message_id:
            raise InvalidImportArgumentsError('Missing provider email id')

        gmail_id = await self.resolve_message_id(message_id)
        response = await self._get(f"/users/me/messages/{gmail_id}", params={'format': 'full'})
        self._raise_for_status(response, gmail_id)

        data = response.json()
        if not data:
            raise EmailNotFoundError('No email data returned', context={'message_id': gmail_id})

        logger.debug('gmail_client.message_fetched', message_id=gmail_id)
        return GmailMessage.model_validate(data)
