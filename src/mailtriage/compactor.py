"""Prompt compaction through the ScaleDown API."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

import httpx

from mailtriage.errors import CompactionError

if TYPE_CHECKING:
    from mailtriage.config import CompactionConfig

logger = logging.getLogger(__name__)


class Compactor:
    """Client for the prompt compaction service.

    Compaction is an optimization only: ``maybe_compact`` always returns a
    usable prompt and never raises.
    """

    def __init__(
        self,
        config: CompactionConfig,
        transport: httpx.BaseTransport | None = None,
    ):
        """Initialize the compactor."""
        self.config = config
        self._transport = transport
        self._client: httpx.Client | None = None

    def _get_client(self) -> httpx.Client:
        """Get or create HTTP client."""
        if self._client is None:
            self._client = httpx.Client(
                timeout=self.config.timeout,
                transport=self._transport,
            )
        return self._client

    def close(self) -> None:
        """Close the HTTP client."""
        if self._client:
            self._client.close()
            self._client = None

    def __enter__(self) -> Compactor:
        """Context manager entry."""
        return self

    def __exit__(self, exc_type: type | None, exc_val: Exception | None, exc_tb: object) -> None:
        """Context manager exit."""
        self.close()

    def should_compact(self, text: str) -> bool:
        """Check whether text is long enough to be worth compacting."""
        return self.config.enabled and len(text) > self.config.threshold

    def maybe_compact(
        self,
        prompt: str,
        api_key: str,
        label: str = "",
        content: str | None = None,
    ) -> str:
        """Return a compacted prompt, or the original one on any failure.

        Args:
            prompt: Full prompt text
            api_key: Compaction service API key
            label: Identifier used in log lines (usually the message id)
            content: Variable part of the prompt measured against the
                threshold (the email body); defaults to the whole prompt
        """
        measured = prompt if content is None else content
        if not self.should_compact(measured):
            logger.debug(f"Skipping compaction for short content {label} ({len(measured)} chars)")
            return prompt

        try:
            compressed = self.compress(prompt, api_key)
        except CompactionError as e:
            logger.warning(f"Compaction failed for {label}, using original prompt: {e}")
            return prompt

        if len(compressed) <= self.config.min_length:
            logger.warning(
                f"Compacted prompt for {label} was empty or suspicious "
                f"({len(compressed)} chars), using original prompt"
            )
            return prompt

        return compressed

    def compress(self, prompt: str, api_key: str) -> str:
        """Call the compaction endpoint.

        Raises:
            CompactionError: On transport, HTTP or payload errors
        """
        payload = {
            "context": self.config.context,
            "prompt": prompt,
            "model": self.config.model,
            "scaledown": {"rate": "auto"},
        }
        headers = {"x-api-key": api_key, "Content-Type": "application/json"}

        try:
            response = self._get_client().post(self.config.url, json=payload, headers=headers)
        except httpx.TimeoutException as e:
            raise CompactionError("Request timed out") from e
        except httpx.RequestError as e:
            raise CompactionError(f"Request failed: {e}") from e

        if response.status_code != 200:
            raise CompactionError(f"API error: {response.status_code} - {response.text[:200]}")

        try:
            data = response.json()
        except ValueError as e:
            raise CompactionError(f"Invalid response body: {e}") from e

        results = data.get("results") if isinstance(data, dict) else None
        if not isinstance(results, dict):
            raise CompactionError("Response has no 'results' object")

        compressed = results.get("compressed_prompt")
        if compressed is None:
            compressed = ""
        if not isinstance(compressed, str):
            raise CompactionError("'compressed_prompt' is not a string")

        logger.info(
            f"Compaction tokens: {results.get('original_prompt_tokens', '?')} -> "
            f"{results.get('compressed_prompt_tokens', '?')}"
        )
        return compressed
