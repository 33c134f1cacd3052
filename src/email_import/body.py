"""
Email body text extraction.

Pulls the readable text out of a provider message: text/plain parts are
decoded, quoted history below a reply header is dropped, ``>`` quoted lines
are removed and line breaks are folded. Messages with no text/plain part fall
back to the top-level body, converting HTML to text.
"""

import re

from bs4 import BeautifulSoup

from .models.gmail import GmailMessagePart

NO_TEXT_AVAILABLE = 'No text available for extraction'

_DAYS = (
    'Monday|Tuesday|Wednesday|Thursday|Friday|Saturday|Sunday|'
    'Mon|Tue|Wed|Thu|Fri|Sat|Sun'
)
_MONTHS = (
    'January|February|March|April|May|June|July|August|September|October|November|December|'
    'Jan|Feb|Mar|Apr|May|Jun|Jul|Aug|Sep|Oct|Nov|Dec'
)
REPLY_HEADER_PATTERN = re.compile(
    rf'^On\s(?:{_DAYS}),?\s*(?:{_MONTHS})\s\d{{1,2}},?\s\d{{4}}\s'
    r'(?:at\s\d{1,2}:\d{2}(?:\s?[APap][Mm])?)?\s.+?\s<[^>]+>\swrote:\s*$',
    re.IGNORECASE,
)
_SOFT_BREAK = re.compile(r'([\r\n]{1,2}\s*)(?![\r\n])')
_HARD_BREAK = re.compile(r'[\r\n]{2,}')


def get_content_parts(
    part: GmailMessagePart, expected_mime_type: str = 'text/plain'
) -> list[GmailMessagePart]:
    """Every part (this one included) of the given type that carries data."""
    found = []
    for candidate in part.walk():
        matches = candidate.mime_type == expected_mime_type or any(
            h.name == 'Content-Type' and (h.value or '').startswith(expected_mime_type)
            for h in candidate.headers
        )
        if matches and candidate.body and candidate.body.data:
            found.append(candidate)
    return found


def strip_reply_history(text: str) -> str:
    """Drop ``>`` quoted lines and everything from the first reply header on."""
    kept = []
    for line in text.split('\n'):
        if REPLY_HEADER_PATTERN.match(line):
            break
        if not line.startswith('>'):
            kept.append(line)
    return '\n'.join(kept)


def normalize_line_breaks(text: str) -> str:
    """Fold single line breaks into spaces; collapse runs of blank lines."""
    text = _SOFT_BREAK.sub(' ', text.strip())
    return _HARD_BREAK.sub('\n', text).strip()


def decode_and_normalize(part: GmailMessagePart) -> str:
    if not part.body or not part.body.data:
        return ''
    return normalize_line_breaks(strip_reply_history(part.body.decode()))


def html_to_text(html: str) -> str:
    return BeautifulSoup(html, 'html.parser').get_text()


def extract_body_text(payload: GmailMessagePart) -> str:
    """
    Readable body text of a message.

    Args:
        payload: The message's top-level MIME part

    Returns:
        Extracted text, or NO_TEXT_AVAILABLE when nothing could be extracted
    """
    body_text = '\n'.join(
        decode_and_normalize(part)
        for child in payload.parts
        for part in get_content_parts(child)
    ).strip()
    if body_text:
        return body_text

    result = decode_and_normalize(payload)
    if not result:
        return NO_TEXT_AVAILABLE
    if payload.mime_type == 'text/html':
        text = html_to_text(result).strip()
        if text:
            return text
    return result
