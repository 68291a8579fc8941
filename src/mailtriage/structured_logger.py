"""Structured audit logging for mailtriage."""

import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)


class StructuredLogger:
    """JSONL audit trail of triage activity."""

    def __init__(self, log_file: str | None = None):
        """Initialize structured logger.

        Args:
            log_file: Path to JSON log file for audit trail (None disables it)
        """
        self.log_file = Path(log_file) if log_file else None

    def log_event(self, event_type: str, data: dict[str, Any]) -> None:
        """Log a structured event.

        Args:
            event_type: Type of event (e.g., 'triage_completed', 'login')
            data: Event data
        """
        event = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "event_type": event_type,
            **data,
        }

        if self.log_file:
            try:
                with open(self.log_file, "a", encoding="utf-8") as f:
                    f.write(json.dumps(event) + "\n")
            except OSError as e:
                logger.error(f"Failed to write to audit log: {e}")

    def log_triage(
        self,
        message_id: str,
        category: str | None = None,
        action: str | None = None,
        parsed: bool | None = None,
        compacted: bool | None = None,
        error: str | None = None,
    ) -> None:
        """Log the outcome of triaging one message.

        Args:
            message_id: Mailbox-assigned message id
            category: Triage category (None on failure)
            action: Recommended action (None on failure)
            parsed: Whether the completion decoded cleanly
            compacted: Whether the compacted prompt was used
            error: Failure description when triage failed
        """
        self.log_event(
            "triage_failed" if error else "triage_completed",
            {
                "message_id": self._sanitize_for_json(message_id),
                "category": category,
                "action": action,
                "parsed": parsed,
                "compacted": compacted,
                "error": self._sanitize_for_json(error) if error else None,
            },
        )

    def log_batch(self, total: int, triaged: int, skipped: int, failed: int) -> None:
        """Log the end of a batch run."""
        self.log_event(
            "batch_finished",
            {"total": total, "triaged": triaged, "skipped": skipped, "failed": failed},
        )

    def log_fetch(self, mailbox_user: str, count: int) -> None:
        """Log a mailbox fetch."""
        self.log_event(
            "fetch",
            {"mailbox_user": self._sanitize_for_json(mailbox_user), "count": count},
        )

    def log_session(self, event_type: str, mailbox_user: str | None = None) -> None:
        """Log a login or logout."""
        self.log_event(
            event_type,
            {"mailbox_user": self._sanitize_for_json(mailbox_user) if mailbox_user else None},
        )

    def _sanitize_for_json(self, value: str) -> str:
        """Sanitize string for safe JSON logging.

        Args:
            value: String to sanitize

        Returns:
            Sanitized string
        """
        # json.dumps handles escaping, but limit length and remove control chars
        sanitized = ''.join(c for c in value if c.isprintable() or c in [' ', '\t'])
        if len(sanitized) > 500:
            sanitized = sanitized[:497] + "..."
        return sanitized
