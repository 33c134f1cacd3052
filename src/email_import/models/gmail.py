"""
Gmail REST message models (``users.messages.get`` with ``format=full``).

The provider returns camelCase keys; the models accept either spelling and
serialize back to camelCase so a staged copy round-trips unchanged.
"""

from __future__ import annotations

import base64

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class _GmailModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra='ignore',
    )


class GmailHeader(_GmailModel):
    """A single ``name: value`` header line."""

    name: str | None = None
    value: str | None = None


class GmailMessagePartBody(_GmailModel):
    """Body of a message part; ``data`` is base64url encoded."""

    attachment_id: str | None = None
    size: int = 0
    data: str | None = None

    def decode(self) -> str:
        """Decode ``data`` to text (empty string when there is no data)."""
        if not self.data:
            return ''
        padded = self.data + '=' * (-len(self.data) % 4)
        return base64.urlsafe_b64decode(padded).decode('utf-8', errors='replace')


class GmailMessagePart(_GmailModel):
    """A MIME part; multipart parts nest further parts."""

    part_id: str | None = None
    mime_type: str | None = None
    filename: str | None = None
    headers: list[GmailHeader] = Field(default_factory=list)
    body: GmailMessagePartBody | None = None
    parts: list[GmailMessagePart] = Field(default_factory=list)

    def walk(self):
        """Yield this part and every nested part, depth first."""
        yield self
        for part in self.parts:
            yield from part.walk()

    @property
    def is_attachment(self) -> bool:
        return bool(self.filename) and bool(self.body and (self.body.attachment_id or self.body.data))


class GmailMessage(_GmailModel):
    """A full Gmail message as returned by the provider."""

    id: str | None = None
    thread_id: str | None = None
    label_ids: list[str] = Field(default_factory=list)
    snippet: str | None = None
    history_id: str | None = None
    internal_date: str | None = None
    size_estimate: int | None = None
    payload: GmailMessagePart | None = None

    def to_json_dict(self) -> dict:
        """Serialize in the provider's camelCase shape."""
        return self.model_dump(mode='json', by_alias=True, exclude_none=True)
