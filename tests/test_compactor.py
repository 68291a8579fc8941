"""Tests for prompt compaction."""

import json
from datetime import datetime, timezone

import httpx
import pytest

from mailtriage.compactor import Compactor
from mailtriage.completion import build_prompt
from mailtriage.config import CompactionConfig
from mailtriage.errors import CompactionError
from mailtriage.models import Message

RECEIVED = datetime(2024, 5, 1, 9, 30, tzinfo=timezone.utc)


def make_compactor(handler, **overrides) -> tuple[Compactor, list[httpx.Request]]:
    """Build a compactor whose HTTP calls go to ``handler``."""
    calls: list[httpx.Request] = []

    def recording_handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        return handler(request)

    config = CompactionConfig(**overrides)
    return Compactor(config, transport=httpx.MockTransport(recording_handler)), calls


def compressed_response(text: str) -> httpx.Response:
    return httpx.Response(
        200,
        json={
            "results": {
                "compressed_prompt": text,
                "original_prompt_tokens": 300,
                "compressed_prompt_tokens": 120,
            }
        },
    )


class TestMaybeCompact:
    """Tests for Compactor.maybe_compact."""

    def test_short_prompt_not_sent(self):
        compactor, calls = make_compactor(lambda r: compressed_response("x" * 100))
        prompt = "p" * 500

        assert compactor.maybe_compact(prompt, "key") is prompt
        assert calls == []

    def test_long_prompt_uses_compacted_text(self):
        compacted = "c" * 120
        compactor, calls = make_compactor(lambda r: compressed_response(compacted))

        assert compactor.maybe_compact("p" * 501, "key") == compacted
        assert len(calls) == 1

    def test_request_shape(self):
        compactor, calls = make_compactor(lambda r: compressed_response("c" * 80))
        prompt = "p" * 600

        compactor.maybe_compact(prompt, "secret-key")

        request = calls[0]
        assert str(request.url) == "https://api.scaledown.xyz/compress/raw/"
        assert request.headers["x-api-key"] == "secret-key"
        body = json.loads(request.content)
        assert body["prompt"] == prompt
        assert body["model"] == "gpt-4o"
        assert body["scaledown"] == {"rate": "auto"}
        assert body["context"]

    def test_degenerate_output_keeps_original(self):
        compactor, _ = make_compactor(lambda r: compressed_response("c" * 40))
        prompt = "p" * 600

        assert compactor.maybe_compact(prompt, "key") == prompt

    def test_exactly_min_length_keeps_original(self):
        compactor, _ = make_compactor(lambda r: compressed_response("c" * 50))
        prompt = "p" * 600

        assert compactor.maybe_compact(prompt, "key") == prompt

    def test_http_error_keeps_original(self):
        compactor, _ = make_compactor(lambda r: httpx.Response(503, text="busy"))
        prompt = "p" * 600

        assert compactor.maybe_compact(prompt, "key") == prompt

    def test_network_error_keeps_original(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        compactor, _ = make_compactor(handler)
        prompt = "p" * 600

        assert compactor.maybe_compact(prompt, "key") == prompt

    def test_malformed_body_keeps_original(self):
        compactor, _ = make_compactor(lambda r: httpx.Response(200, text="not json"))
        prompt = "p" * 600

        assert compactor.maybe_compact(prompt, "key") == prompt

    def test_short_content_in_long_prompt_not_sent(self):
        compactor, calls = make_compactor(lambda r: compressed_response("c" * 80))
        prompt = build_prompt(Message(id="1", received_at=RECEIVED, body="ok"))

        assert not compactor.should_compact("ok")
        assert compactor.maybe_compact(prompt, "key", content="ok") is prompt
        assert calls == []

    def test_long_content_sends_whole_prompt(self):
        compactor, calls = make_compactor(lambda r: compressed_response("c" * 80))
        body = "b" * 501
        prompt = build_prompt(Message(id="1", received_at=RECEIVED, body=body))

        assert compactor.maybe_compact(prompt, "key", content=body) == "c" * 80
        assert json.loads(calls[0].content)["prompt"] == prompt

    def test_disabled_never_calls_service(self):
        compactor, calls = make_compactor(lambda r: compressed_response("c" * 80), enabled=False)
        prompt = "p" * 2000

        assert compactor.maybe_compact(prompt, "key") == prompt
        assert calls == []


class TestCompress:
    """Tests for Compactor.compress error reporting."""

    def test_missing_results_raises(self):
        compactor, _ = make_compactor(lambda r: httpx.Response(200, json={"status": "ok"}))

        with pytest.raises(CompactionError):
            compactor.compress("prompt", "key")

    def test_http_status_raises(self):
        compactor, _ = make_compactor(lambda r: httpx.Response(401, text="bad key"))

        with pytest.raises(CompactionError, match="401"):
            compactor.compress("prompt", "key")
