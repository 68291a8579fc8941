"""Cookie-backed session store."""

from __future__ import annotations

import logging

from pydantic import ValidationError
from starlette.requests import Request

from mailtriage.models import SessionData

logger = logging.getLogger(__name__)


class SessionStore:
    """Typed access to the signed session cookie of one request."""

    def __init__(self, request: Request):
        self._session = request.session

    def load(self) -> SessionData | None:
        """Return the stored session, or None when there is none."""
        if not self._session:
            return None
        try:
            return SessionData.model_validate(dict(self._session))
        except ValidationError as e:
            logger.debug(f"Discarding unreadable session: {e}")
            return None

    def save(self, data: SessionData) -> None:
        """Replace the session contents."""
        self._session.clear()
        self._session.update(data.model_dump(by_alias=True))

    def destroy(self) -> None:
        """Drop the session; the cookie is expired on the response."""
        self._session.clear()
