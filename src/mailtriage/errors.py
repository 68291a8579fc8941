"""Error types raised across the triage pipeline."""

from __future__ import annotations


class TriageError(Exception):
    """Base class for mailtriage errors."""


class AuthError(TriageError):
    """Mailbox credentials are missing or were rejected by the server."""


class MailboxConnectionError(TriageError, ConnectionError):
    """The mailbox server could not be reached."""


class CompactionError(TriageError):
    """The compaction service failed; callers fall back to the original prompt."""


class ParseError(TriageError):
    """The model output did not contain a decodable JSON object."""


class UpstreamError(TriageError):
    """The completion service failed (network, auth, rate limit, bad payload)."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code
