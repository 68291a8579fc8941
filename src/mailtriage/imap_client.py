"""IMAP client for fetching unread mail."""

from __future__ import annotations

import email
import imaplib
import json
import logging
from typing import TYPE_CHECKING

from mailtriage.config import ImapConfig
from mailtriage.email_parser import EmailParser
from mailtriage.errors import AuthError, MailboxConnectionError

if TYPE_CHECKING:
    from mailtriage.models import Message

logger = logging.getLogger(__name__)


class IMAPClient:
    """Read-only IMAP client for triage."""

    def __init__(self, config: ImapConfig, username: str, password: str):
        """Initialize the IMAP client."""
        self.config = config
        self.username = username
        self._password = password
        self._connection: imaplib.IMAP4_SSL | None = None
        self._selected_folder: str | None = None
        self._parser = EmailParser()

    def __enter__(self) -> IMAPClient:
        """Connect on context entry."""
        self.connect()
        return self

    def __exit__(self, exc_type: type | None, exc_val: Exception | None, exc_tb: object) -> None:
        """Disconnect on context exit."""
        self.disconnect()

    def connect(self) -> None:
        """Connect and log in to the IMAP server.

        Raises:
            AuthError: If credentials are missing or rejected
            MailboxConnectionError: If unable to reach the IMAP server
        """
        if not self.username or not self._password:
            raise AuthError("Missing mailbox credentials")

        logger.info(json.dumps({"event": "connecting", "host": self.config.host, "port": self.config.port}))

        try:
            self._connection = imaplib.IMAP4_SSL(
                self.config.host,
                self.config.port,
                timeout=self.config.timeout,
            )
        except OSError as e:
            error_msg = f"Cannot connect to {self.config.host}:{self.config.port} - Check host, port, and network connection"
            logger.error(error_msg)
            raise MailboxConnectionError(error_msg) from e

        try:
            self._connection.login(self.username, self._password)
            logger.info(json.dumps({"event": "logged_in", "username": self.username}))
        except imaplib.IMAP4.error as e:
            self._drop_connection()
            error_str = str(e)
            if "AUTHENTICATIONFAILED" in error_str or "authentication" in error_str.lower() or "credentials" in error_str.lower():
                error_msg = f"Authentication failed for {self.username} - Check username and app password"
            else:
                error_msg = f"IMAP error during login: {e}"
            logger.error(error_msg)
            raise AuthError(error_msg) from e
        except OSError as e:
            self._drop_connection()
            error_msg = f"Connection lost during login: {e}"
            logger.error(error_msg)
            raise MailboxConnectionError(error_msg) from e

    def disconnect(self) -> None:
        """Disconnect from the IMAP server."""
        if self._connection:
            try:
                self._connection.logout()
            except (imaplib.IMAP4.error, OSError) as e:
                logger.warning(f"Error during logout: {e}")
            finally:
                self._drop_connection()

    def _drop_connection(self) -> None:
        self._connection = None
        self._selected_folder = None

    def select_folder(self, folder: str = "INBOX") -> None:
        """Select a folder read-only."""
        if not self._connection:
            raise RuntimeError("Not connected")

        logger.debug(f"Selecting folder: {folder}")
        try:
            status, data = self._connection.select(folder, readonly=True)
        except (imaplib.IMAP4.error, OSError) as e:
            raise MailboxConnectionError(f"Failed to select folder {folder}: {e}") from e

        if status != "OK":
            raise MailboxConnectionError(f"Failed to select folder {folder}: {data}")

        self._selected_folder = folder

    def search_unseen(self) -> list[int]:
        """Return UIDs of unseen messages in the selected folder, oldest first."""
        if not self._connection:
            raise RuntimeError("Not connected")

        if not self._selected_folder:
            raise RuntimeError("No folder selected")

        try:
            status, data = self._connection.uid("SEARCH", None, "UNSEEN")
        except (imaplib.IMAP4.error, OSError) as e:
            raise MailboxConnectionError(f"UNSEEN search failed: {e}") from e

        if status != "OK":
            logger.error(json.dumps({"event": "search_failed", "data": str(data)}))
            raise MailboxConnectionError(f"UNSEEN search failed: {data}")

        if not data or not data[0]:
            return []
        return [int(uid) for uid in data[0].split()]

    def get_unseen_messages(self, limit: int | None = None) -> list[Message]:
        """Fetch unseen messages, most recent first, without marking them read."""
        uids = list(reversed(self.search_unseen()))
        if limit is not None:
            uids = uids[:limit]

        logger.info(json.dumps({"event": "found_unseen", "count": len(uids)}))

        messages = []
        for uid in uids:
            message = self._fetch_message(uid)
            if message:
                messages.append(message)
        return messages

    def _fetch_message(self, uid: int) -> Message | None:
        """Fetch and parse a single message by UID without marking it as seen."""
        try:
            status, data = self._connection.uid("FETCH", str(uid), "(BODY.PEEK[])")
        except (imaplib.IMAP4.error, OSError) as e:
            raise MailboxConnectionError(f"Failed to fetch UID {uid}: {e}") from e

        if status != "OK" or not data or not isinstance(data[0], tuple):
            logger.warning(f"Failed to fetch message UID {uid}")
            return None

        try:
            raw_email = data[0][1]
            return self._parser.parse(uid, email.message_from_bytes(raw_email))
        except Exception as e:
            logger.error(f"Failed to parse email UID {uid}: {e}")
            return None


def fetch_unread(
    user: str,
    secret: str,
    limit: int | None = None,
    config: ImapConfig | None = None,
) -> list[Message]:
    """Fetch the most recent unread messages from the inbox.

    Raises:
        AuthError: If credentials are missing or rejected
        MailboxConnectionError: On transport failures
    """
    config = config or ImapConfig()
    if limit is None:
        limit = config.fetch_limit

    with IMAPClient(config, user, secret) as client:
        client.select_folder(config.inbox_folder)
        return client.get_unseen_messages(limit=limit)
