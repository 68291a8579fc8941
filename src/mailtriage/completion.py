"""Completion client for the triage model (OpenAI-compatible chat API)."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

import httpx

from mailtriage.errors import UpstreamError

if TYPE_CHECKING:
    from mailtriage.config import CompletionConfig
    from mailtriage.models import Message

logger = logging.getLogger(__name__)


TRIAGE_PROMPT_TEMPLATE = """You are an expert email triage assistant.
Analyze the following email and provide a JSON response with exactly these fields:
- category: one of Urgent, Work, Personal, Newsletter, Spam
- summary: a brief 1-sentence summary of the content
- suggestedResponse: a suggested response if a reply is needed, otherwise null
- action: recommended action, one of Reply, Archive, Delete, Review

IMPORTANT: Return ONLY a valid JSON object. Do not include markdown formatting like ```json. Ensure "summary" is always populated.

Email Subject: {subject}
Email Sender: {sender}
Email Body:
{body}
"""


def build_prompt(message: Message, max_body_chars: int = 5000) -> str:
    """Render the triage prompt for a message, truncating the body."""
    return TRIAGE_PROMPT_TEMPLATE.format(
        subject=message.subject,
        sender=message.sender,
        body=message.body[:max_body_chars],
    )


class CompletionClient:
    """Client for the chat completions endpoint."""

    def __init__(
        self,
        config: CompletionConfig,
        transport: httpx.BaseTransport | None = None,
    ):
        """Initialize the completion client."""
        self.config = config
        self._transport = transport
        self._client: httpx.Client | None = None

    def _get_client(self) -> httpx.Client:
        """Get or create HTTP client."""
        if self._client is None:
            self._client = httpx.Client(
                base_url=self.config.base_url,
                timeout=self.config.timeout,
                transport=self._transport,
            )
        return self._client

    def close(self) -> None:
        """Close the HTTP client."""
        if self._client:
            self._client.close()
            self._client = None

    def __enter__(self) -> CompletionClient:
        """Context manager entry."""
        return self

    def __exit__(self, exc_type: type | None, exc_val: Exception | None, exc_tb: object) -> None:
        """Context manager exit."""
        self.close()

    def check_health(self, api_key: str) -> bool:
        """Check if the completion endpoint accepts our key."""
        try:
            response = self._get_client().get(
                "/models", headers={"Authorization": f"Bearer {api_key}"}
            )
            return response.status_code == 200
        except httpx.HTTPError as e:
            logger.warning(f"Completion health check failed: {e}")
            return False

    def complete(self, prompt: str, api_key: str) -> str:
        """Send the prompt as a single user message and return the raw text.

        Raises:
            UpstreamError: On network, HTTP or payload errors
        """
        if not api_key:
            raise UpstreamError("Missing completion API key")

        payload = {
            "model": self.config.model,
            "messages": [{"role": "user", "content": prompt}],
            "temperature": self.config.temperature,
            "max_completion_tokens": self.config.max_tokens,
            "top_p": self.config.top_p,
            "stop": None,
        }

        logger.debug(f"Calling completion API with model {self.config.model}")

        try:
            response = self._get_client().post(
                "/chat/completions",
                json=payload,
                headers={"Authorization": f"Bearer {api_key}"},
            )
        except httpx.TimeoutException as e:
            raise UpstreamError("Request timed out") from e
        except httpx.RequestError as e:
            raise UpstreamError(f"Request failed: {e}") from e

        if response.status_code != 200:
            raise UpstreamError(
                f"API error: {response.status_code} - {response.text[:200]}",
                status_code=response.status_code,
            )

        try:
            data = response.json()
            content = data["choices"][0]["message"].get("content")
        except (ValueError, KeyError, IndexError, TypeError, AttributeError) as e:
            raise UpstreamError(f"Malformed completion response: {e}") from e

        return content or ""
