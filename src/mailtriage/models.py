"""Data models shared by the fetcher, the triage pipeline and the web API."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


class Category(str, Enum):
    """Triage category."""

    URGENT = "Urgent"
    WORK = "Work"
    PERSONAL = "Personal"
    NEWSLETTER = "Newsletter"
    SPAM = "Spam"
    REVIEW = "Review"

    @classmethod
    def coerce(cls, value: object) -> Category:
        """Map a model-supplied value onto a category, defaulting to Review."""
        return _coerce(cls, value, cls.REVIEW)


class Action(str, Enum):
    """Recommended action for a triaged message."""

    REPLY = "Reply"
    ARCHIVE = "Archive"
    DELETE = "Delete"
    REVIEW = "Review"

    @classmethod
    def coerce(cls, value: object) -> Action:
        """Map a model-supplied value onto an action, defaulting to Review."""
        return _coerce(cls, value, cls.REVIEW)


def _coerce(enum_cls, value, default):
    if isinstance(value, enum_cls):
        return value
    if not isinstance(value, str):
        return default
    wanted = value.strip().lower()
    for member in enum_cls:
        if member.value.lower() == wanted:
            return member
    return default


class Message(BaseModel):
    """A fetched email, normalized for triage."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    id: str
    sender: str = Field(default="Unknown", alias="from")
    subject: str = "No Subject"
    received_at: datetime = Field(alias="receivedAt")
    snippet: str = ""
    body: str = ""
    html: str | None = None


class TriageResult(BaseModel):
    """Structured triage outcome for a single message."""

    model_config = ConfigDict(populate_by_name=True)

    message_id: str = Field(alias="messageId")
    category: Category = Category.REVIEW
    summary: str = Field(min_length=1)
    suggested_response: str | None = Field(default=None, alias="suggestedResponse")
    action: Action = Action.REVIEW


class SessionUser(BaseModel):
    """Credentials held for a logged-in user."""

    model_config = ConfigDict(populate_by_name=True)

    name: str
    mailbox_user: str = Field(alias="mailboxUser")
    mailbox_secret: str = Field(default="", alias="mailboxSecret", repr=False)


class SessionData(BaseModel):
    """Session contents stored in the signed cookie."""

    model_config = ConfigDict(populate_by_name=True)

    user: SessionUser | None = None
    is_logged_in: bool = Field(default=False, alias="isLoggedIn")


@dataclass
class BatchProgress:
    """Progress event emitted before each message in a batch is triaged."""

    current: int
    total: int
    message: str


@dataclass
class BatchItem:
    """Outcome of one message in a batch."""

    message_id: str
    result: TriageResult | None = None
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.result is not None
