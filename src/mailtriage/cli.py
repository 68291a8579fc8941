"""Command-line interface for mailtriage."""

from __future__ import annotations

import logging
import sys
from pathlib import Path

import click
from rich.console import Console
from rich.logging import RichHandler
from rich.progress import BarColumn, MofNCompleteColumn, Progress, SpinnerColumn, TextColumn
from rich.table import Table

from mailtriage import __version__
from mailtriage.compactor import Compactor
from mailtriage.completion import CompletionClient
from mailtriage.config import Config, load_config
from mailtriage.errors import AuthError, MailboxConnectionError
from mailtriage.imap_client import fetch_unread
from mailtriage.models import BatchProgress, Message, TriageResult
from mailtriage.pipeline import TriagePipeline
from mailtriage.structured_logger import StructuredLogger

console = Console(width=200, soft_wrap=False)
logger = logging.getLogger("mailtriage")


def setup_logging(level: str, log_file: str | None = None) -> None:
    """Configure logging."""
    log_level = getattr(logging, level.upper(), logging.INFO)

    handlers: list[logging.Handler] = [
        RichHandler(
            console=console,
            show_time=True,
            show_path=False,
            rich_tracebacks=True,
            markup=False,
        )
    ]

    if log_file:
        file_handler = logging.FileHandler(log_file)
        file_handler.setFormatter(
            logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")
        )
        handlers.append(file_handler)

    logging.basicConfig(
        level=log_level,
        handlers=handlers,
        force=True,
    )

    # Suppress noisy loggers
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)


def _load(config: str | None) -> Config:
    try:
        return load_config(config)
    except Exception as e:
        console.print(f"[red]Error: {e}[/red]")
        sys.exit(1)


@click.group()
@click.version_option(version=__version__)
def cli() -> None:
    """mailtriage - Triage unread email with a language model."""
    pass


@cli.command()
@click.option("--config", "-c", type=click.Path(exists=True), default=None, help="Path to configuration YAML file")
@click.option("--host", default="127.0.0.1", help="Bind address")
@click.option("--port", "-p", type=int, default=8000, help="Bind port")
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose logging")
def serve(config: str | None, host: str, port: int, verbose: bool) -> None:
    """Run the web API."""
    import uvicorn

    from mailtriage.web.app import create_app

    cfg = _load(config)
    setup_logging("DEBUG" if verbose else cfg.logging.level, cfg.logging.log_file)

    console.print(f"[bold blue]mailtriage v{__version__}[/bold blue]")
    console.print(f"Listening on http://{host}:{port}")
    uvicorn.run(create_app(cfg), host=host, port=port, log_config=None)


@cli.command()
@click.option("--config", "-c", type=click.Path(exists=True), default=None, help="Path to configuration YAML file")
@click.option("--user", "-u", envvar="MAIL_USER", required=True, help="Mailbox username (env: MAIL_USER)")
@click.option(
    "--password",
    envvar="MAIL_PASSWORD",
    required=True,
    help="Mailbox app password (env: MAIL_PASSWORD)",
)
@click.option("--limit", "-l", type=int, default=None, help="Maximum messages to fetch (overrides config)")
@click.option("--batch", "-b", type=click.IntRange(min=1), default=None, help="Only triage the first N fetched messages")
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose logging")
def triage(
    config: str | None,
    user: str,
    password: str,
    limit: int | None,
    batch: int | None,
    verbose: bool,
) -> None:
    """Fetch unread mail and triage it."""
    cfg = _load(config)
    setup_logging("DEBUG" if verbose else cfg.logging.level, cfg.logging.log_file)

    api_key = cfg.completion.get_api_key()
    if not api_key:
        console.print(f"[red]Error: set {cfg.completion.api_key_env} or completion.api_key[/red]")
        sys.exit(1)

    try:
        with console.status(f"Fetching unread mail from {cfg.imap.host}..."):
            messages = fetch_unread(user, password, limit or cfg.imap.fetch_limit, cfg.imap)
    except AuthError as e:
        console.print(f"[red]Authentication failed: {e}[/red]")
        sys.exit(1)
    except MailboxConnectionError as e:
        console.print(f"[red]Connection failed: {e}[/red]")
        sys.exit(1)

    if not messages:
        console.print("[green]No unread messages[/green]")
        return

    selected = messages[:batch] if batch is not None else messages
    console.print(f"\n[bold]Triaging {len(selected)} messages...[/bold]\n")

    with Compactor(cfg.compaction) as compactor, CompletionClient(cfg.completion) as completion:
        pipeline = TriagePipeline(
            compactor,
            completion,
            api_key=api_key,
            compaction_api_key=cfg.compaction.get_api_key(fallback=api_key),
            max_body_chars=cfg.completion.max_body_chars,
            audit=StructuredLogger(cfg.logging.audit_file),
        )

        results: dict[str, TriageResult] = {}
        with Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            BarColumn(),
            MofNCompleteColumn(),
            console=console,
        ) as progress:
            task = progress.add_task("Initializing AI...", total=len(selected))

            def on_progress(event: BatchProgress) -> None:
                progress.update(task, completed=event.current - 1, total=event.total, description=event.message)

            pipeline.triage_batch(messages, results, on_progress=on_progress, limit=batch)
            progress.update(task, completed=len(selected), description="Done")

    _print_results_table(messages, results)

    missing = [m for m in selected if m.id not in results]
    if missing:
        console.print(f"[yellow]{len(missing)} message(s) could not be triaged; run again to retry[/yellow]")


def _print_results_table(messages: list[Message], results: dict[str, TriageResult]) -> None:
    """Print triage results to the console."""
    table = Table(title="Triage Results")
    table.add_column("UID", style="dim")
    table.add_column("From")
    table.add_column("Subject")
    table.add_column("Category")
    table.add_column("Action")
    table.add_column("Summary")

    for message in messages:
        result = results.get(message.id)
        if result is None:
            continue
        table.add_row(
            message.id,
            message.sender[:30],
            message.subject[:40],
            result.category.value,
            result.action.value,
            result.summary[:80],
        )

    console.print(table)


@cli.command()
@click.option("--config", "-c", type=click.Path(exists=True), default=None, help="Path to configuration YAML file")
def check(config: str | None) -> None:
    """Validate configuration and completion API access."""
    cfg = _load(config)
    console.print("[green][OK] Configuration valid[/green]")

    api_key = cfg.completion.get_api_key()
    if not api_key:
        console.print(f"[yellow][WARNING] No completion API key ({cfg.completion.api_key_env} not set)[/yellow]")
        sys.exit(1)

    console.print(f"\nChecking completion API at {cfg.completion.base_url}...")
    with CompletionClient(cfg.completion) as completion:
        if completion.check_health(api_key):
            console.print(f"[green][OK] Completion API reachable (model {cfg.completion.model})[/green]")
        else:
            console.print("[red]Completion API not available[/red]")
            sys.exit(1)

    state = "enabled" if cfg.compaction.enabled else "disabled"
    console.print(f"Compaction: {state} (threshold {cfg.compaction.threshold} chars)")


@cli.command()
@click.argument("output", type=click.Path())
def init_config(output: str) -> None:
    """Generate a sample configuration file."""
    sample_config = """# mailtriage configuration

imap:
  host: imap.gmail.com
  port: 993
  timeout: 30
  inbox_folder: INBOX
  fetch_limit: 20

completion:
  base_url: https://api.groq.com/openai/v1
  model: openai/gpt-oss-120b
  temperature: 0.3
  max_tokens: 8192
  max_body_chars: 5000
  # Read from environment variable (recommended)
  api_key_env: GROQ_API_KEY

compaction:
  enabled: true
  url: https://api.scaledown.xyz/compress/raw/
  threshold: 500
  min_length: 50
  # Falls back to the completion key when unset
  api_key_env: SCALEDOWN_API_KEY

session:
  secret_key_env: SECRET_COOKIE_PASSWORD
  cookie_name: email_triage_session
  https_only: false

logging:
  level: INFO
  # log_file: mailtriage.log
  audit_file: audit.jsonl
"""
    Path(output).write_text(sample_config)
    console.print(f"[green]Sample configuration written to {output}[/green]")
    console.print("\nNext steps:")
    console.print("1. Set GROQ_API_KEY and SECRET_COOKIE_PASSWORD")
    console.print("2. Run: mailtriage check --config " + output)
    console.print("3. Run: mailtriage serve --config " + output)


def main() -> None:
    """Main entry point."""
    cli()


if __name__ == "__main__":
    main()
