"""Configuration management for mailtriage."""

from __future__ import annotations

import os
from pathlib import Path

import yaml
from pydantic import BaseModel, Field


class ImapConfig(BaseModel):
    """IMAP server configuration."""

    host: str = "imap.gmail.com"
    port: int = 993
    timeout: int = 30
    inbox_folder: str = "INBOX"
    fetch_limit: int = Field(
        default=20,
        description="Maximum number of unread messages returned per fetch (most recent first)",
    )


class CompletionConfig(BaseModel):
    """Language-model completion endpoint (OpenAI-compatible chat API)."""

    base_url: str = "https://api.groq.com/openai/v1"
    model: str = "openai/gpt-oss-120b"
    temperature: float = 0.3
    max_tokens: int = 8192
    top_p: float = 1.0
    max_body_chars: int = Field(
        default=5000,
        description="Email body characters included in the prompt",
    )
    timeout: int = 60
    api_key: str = Field(default="", repr=False)
    api_key_env: str = "GROQ_API_KEY"

    def get_api_key(self) -> str:
        """Return the API key, preferring the direct value over the environment."""
        if self.api_key:
            return self.api_key
        return os.environ.get(self.api_key_env, "")


class CompactionConfig(BaseModel):
    """Prompt compaction service configuration."""

    enabled: bool = True
    url: str = "https://api.scaledown.xyz/compress/raw/"
    model: str = "gpt-4o"
    context: str = "Email Triage and Categorization. usage: JSON output only."
    threshold: int = Field(
        default=500,
        description="Only prompts longer than this many characters are compacted",
    )
    min_length: int = Field(
        default=50,
        description="Compacted prompts of this length or shorter are discarded",
    )
    timeout: int = 30
    api_key: str = Field(default="", repr=False)
    api_key_env: str = "SCALEDOWN_API_KEY"

    def get_api_key(self, fallback: str = "") -> str:
        """Return the API key; the completion key is used when none is set."""
        if self.api_key:
            return self.api_key
        return os.environ.get(self.api_key_env, "") or fallback


class SessionConfig(BaseModel):
    """Cookie session configuration."""

    secret_key: str = Field(default="", repr=False)
    secret_key_env: str = "SECRET_COOKIE_PASSWORD"
    cookie_name: str = "email_triage_session"
    https_only: bool = False
    max_age: int = 14 * 24 * 60 * 60

    def get_secret_key(self) -> str:
        """Return the signing secret for session cookies."""
        if self.secret_key:
            return self.secret_key
        return os.environ.get(
            self.secret_key_env, "complex_password_at_least_32_characters_long"
        )


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: str = "INFO"
    log_file: str | None = None
    audit_file: str | None = "audit.jsonl"


class Config(BaseModel):
    """Main configuration."""

    imap: ImapConfig = Field(default_factory=lambda: ImapConfig())
    completion: CompletionConfig = Field(default_factory=lambda: CompletionConfig())
    compaction: CompactionConfig = Field(default_factory=lambda: CompactionConfig())
    session: SessionConfig = Field(default_factory=lambda: SessionConfig())
    logging: LoggingConfig = Field(default_factory=lambda: LoggingConfig())


def load_config(config_path: str | Path | None = None) -> Config:
    """Load configuration from a YAML file, or defaults when no path is given."""
    if config_path is None:
        return Config()

    config_path = Path(config_path)

    if not config_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    with open(config_path, "r", encoding="utf-8") as f:
        data = yaml.safe_load(f)

    return Config(**(data or {}))
