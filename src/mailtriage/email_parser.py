"""MIME parsing into normalized ``Message`` records."""

from __future__ import annotations

import html
import logging
import re
from datetime import datetime, timezone
from email.header import decode_header, make_header
from email.message import Message as MIMEMessage
from email.utils import parsedate_to_datetime

from mailtriage.models import Message

logger = logging.getLogger(__name__)


class EmailParser:
    """Parser for turning raw MIME messages into ``Message`` records."""

    def __init__(self, max_snippet_chars: int = 100):
        """Initialize the parser."""
        self.max_snippet_chars = max_snippet_chars

    def parse(self, uid: int | str, message: MIMEMessage) -> Message:
        """Parse an email message into a ``Message``."""
        body = self._extract_text_content(message)
        html_content = self._extract_html_content(message)

        return Message(
            id=str(uid),
            sender=self._decode_header(message.get("From", "")) or "Unknown",
            subject=self._decode_header(message.get("Subject", "")) or "No Subject",
            received_at=self._parse_date(message.get("Date", "")),
            snippet=body[: self.max_snippet_chars],
            body=body,
            html=html_content or None,
        )

    def _parse_date(self, value: str | None) -> datetime:
        """Parse the Date header, falling back to the current time."""
        if value:
            try:
                parsed = parsedate_to_datetime(str(value))
                if parsed is not None:
                    return parsed
            except (ValueError, TypeError):
                logger.debug(f"Unparseable Date header: {value!r}")
        return datetime.now(timezone.utc)

    def _decode_header(self, value: str | None) -> str:
        """Safely decode an email header."""
        if not value:
            return ""
        try:
            decoded = decode_header(value)
            return str(make_header(decoded))
        except Exception:
            # Fallback for malformed headers
            if isinstance(value, bytes):
                return value.decode("utf-8", errors="replace")
            return str(value)

    def _extract_text_content(self, message: MIMEMessage) -> str:
        """Extract plain text, converting HTML when no text part exists."""
        plain = self._find_part(message, "text/plain")
        if plain is not None:
            return self._decode_payload(plain).strip()

        html_part = self._find_part(message, "text/html")
        if html_part is not None:
            return self._html_to_text(self._decode_payload(html_part))

        return ""

    def _extract_html_content(self, message: MIMEMessage) -> str:
        """Extract the raw HTML body, if any."""
        html_part = self._find_part(message, "text/html")
        if html_part is None:
            return ""
        return self._decode_payload(html_part)

    def _find_part(self, message: MIMEMessage, content_type: str) -> MIMEMessage | None:
        """Return the first non-attachment part of the given type."""
        for part in message.walk():
            if part.is_multipart():
                continue
            disposition = str(part.get("Content-Disposition", ""))
            if "attachment" in disposition:
                continue
            if part.get_content_type() == content_type:
                return part
        return None

    def _decode_payload(self, part: MIMEMessage) -> str:
        """Safely decode message payload."""
        try:
            payload = part.get_payload(decode=True)
            if payload is None:
                return ""
            if isinstance(payload, bytes):
                charset = part.get_content_charset() or "utf-8"
                try:
                    return payload.decode(charset, errors="replace")
                except (LookupError, UnicodeDecodeError):
                    return payload.decode("utf-8", errors="replace")
            return str(payload)
        except Exception as e:
            logger.warning(f"Failed to decode payload: {e}")
            return ""

    def _html_to_text(self, html_content: str) -> str:
        """Simple HTML to text conversion."""
        # Remove script and style elements
        text = re.sub(r"<(script|style)[^>]*>.*?</\1>", "", html_content, flags=re.DOTALL | re.IGNORECASE)
        # Remove HTML tags
        text = re.sub(r"<[^>]+>", " ", text)
        # Decode HTML entities
        text = html.unescape(text)
        # Normalize whitespace
        text = re.sub(r"\s+", " ", text)
        return text.strip()
