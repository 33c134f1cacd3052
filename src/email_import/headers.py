"""
Parsed email header map.

Collects message headers into a multi-valued, case-insensitive map, optionally
splitting address / message-id lists and parsing ``Name <email>`` contacts.
"""

from __future__ import annotations

import re
from collections.abc import Callable, Iterable, Iterator
from dataclasses import dataclass

from .models.contact import ContactInHeader
from .models.gmail import GmailHeader

HeaderValue = str | ContactInHeader

_CONTACT_PATTERN = re.compile(r'\s*(?:([^<]+)\s+)?<([^>]+)>')
_BRACKET_PATTERN = re.compile(r'<([^>]+)>')


def parse_contact(value: str) -> ContactInHeader:
    """Parse ``"Jane Doe" <jane@example.org>`` (or a bare address) into a contact."""
    match = _CONTACT_PATTERN.match(value)
    if match:
        name = match.group(1)
        name = name.replace('"', '').strip() if name else None
        return ContactInHeader(name=name or None, email=match.group(2).strip())
    return ContactInHeader(email=value.strip())


def extract_bracketed(value: str) -> str:
    """Return the text inside the first ``<...>``, or the value unchanged."""
    match = _BRACKET_PATTERN.search(value)
    return match.group(1) if match else value


@dataclass(frozen=True)
class HeaderParser:
    """How a header's raw value is split and parsed."""

    split: str | None
    parse: Callable[[str], HeaderValue] | None

    def apply(self, value: str) -> HeaderValue | list[HeaderValue]:
        parse = self.parse or (lambda x: x)
        if self.split:
            return [parse(part) for part in value.split(self.split)]
        if self.parse:
            return self.parse(value)
        return value


def make_parse_map(
    expand_arrays: bool = False,
    parse_contacts: bool = False,
    extract_brackets: bool = False,
) -> dict[str, HeaderParser]:
    """Build the header-name → parser map for the given options."""
    contact = HeaderParser(
        split=',' if expand_arrays else None,
        parse=parse_contact if parse_contacts else None,
    )
    bracket = HeaderParser(
        split=' ' if expand_arrays else None,
        parse=extract_bracketed if extract_brackets else None,
    )
    return {
        'to': contact,
        'cc': contact,
        'bcc': contact,
        'from': contact,
        'return-path': bracket,
        'message-id': bracket,
        'in-reply-to': bracket,
        'references': bracket,
    }


def value_as_string(value: HeaderValue) -> str:
    """A contact renders as its name when it has one, otherwise its email."""
    return value if isinstance(value, str) else str(value)


def value_as_contact(value: HeaderValue) -> ContactInHeader:
    return ContactInHeader(email=value) if isinstance(value, str) else value


class ParsedHeaderMap:
    """
    Multi-valued map of email headers.

    Header names are matched case-insensitively. A header that appears more
    than once (or whose value was split) holds a list of values.
    """

    def __init__(self) -> None:
        self._values: dict[str, HeaderValue | list[HeaderValue]] = {}

    @classmethod
    def from_headers(
        cls,
        headers: Iterable[GmailHeader] | None,
        expand_arrays: bool = False,
        parse_contacts: bool = False,
        extract_brackets: bool = False,
    ) -> ParsedHeaderMap:
        """
        Create a map from provider headers.

        Headers with an empty name or value are ignored.
        """
        parse_map = make_parse_map(
            expand_arrays=expand_arrays,
            parse_contacts=parse_contacts,
            extract_brackets=extract_brackets,
        )
        result = cls()
        for header in headers or ():
            if not header.name or not header.value:
                continue
            parser = parse_map.get(header.name.lower())
            value = parser.apply(header.value) if parser else header.value
            result._add(header.name, value)
        return result

    def _add(self, name: str, value: HeaderValue | list[HeaderValue]) -> None:
        key = name.lower()
        existing = self._values.get(key)
        if existing is None:
            self._values[key] = value
            return
        merged = existing if isinstance(existing, list) else [existing]
        if isinstance(value, list):
            merged.extend(value)
        else:
            merged.append(value)
        self._values[key] = merged

    def __contains__(self, name: object) -> bool:
        return isinstance(name, str) and name.lower() in self._values

    def __len__(self) -> int:
        return len(self._values)

    def __iter__(self) -> Iterator[str]:
        return iter(self._values)

    def get(self, name: str) -> HeaderValue | list[HeaderValue] | None:
        return self._values.get(name.lower())

    def get_first_value(self, name: str) -> HeaderValue | None:
        value = self.get(name)
        if isinstance(value, list):
            return value[0] if value else None
        return value

    def get_first_string_value(self, name: str) -> str | None:
        value = self.get_first_value(name)
        return value_as_string(value) if value else None

    def get_first_contact_value(self, name: str) -> ContactInHeader | None:
        value = self.get_first_value(name)
        return value_as_contact(value) if value else None

    def get_first_value_or_default(self, name: str, default: str) -> str:
        value = self.get_first_string_value(name)
        return value if value is not None else default

    def get_all_values(self, name: str) -> list[HeaderValue]:
        value = self.get(name)
        if isinstance(value, list):
            return list(value)
        return [value] if value else []

    def get_all_string_values(self, name: str) -> list[str]:
        return [value_as_string(v) for v in self.get_all_values(name)]

    def get_all_contact_values(self, name: str) -> list[ContactInHeader]:
        return [value_as_contact(v) for v in self.get_all_values(name)]

    def has_value(self, name: str, value: HeaderValue) -> bool:
        return value in self.get_all_values(name)

    def count_values(self, name: str) -> int:
        return len(self.get_all_values(name))

    def clear_values(self, name: str) -> None:
        self._values.pop(name.lower(), None)

    def clear_all_values(self) -> None:
        self._values.clear()
