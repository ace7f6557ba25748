"""Command-line interface for MailSense.

Provides commands for configuration validation, database setup, message
analysis, usage reporting, and the assistant features.

Usage:
    python -m mailsense validate-config
    python -m mailsense init-db
    python -m mailsense add-message --subject "Policy renewal" --sender bob@example.com --body-file mail.txt
    python -m mailsense set-provider deepseek --api-key sk-... --activate
    python -m mailsense analyze 42 --instructions "Ignore the marketing footer"
    python -m mailsense usage-stats --days 7
"""

from __future__ import annotations

import asyncio
import sys
from collections.abc import Callable, Coroutine
from dataclasses import dataclass
from datetime import timedelta
from pathlib import Path
from typing import TYPE_CHECKING, Any, TypeVar

import click
from dotenv import load_dotenv
from rich.console import Console
from rich.table import Table

from mailsense.config import validate_config_file
from mailsense.core.logging import configure_logging

if TYPE_CHECKING:
    from mailsense.config_schema import AppConfig
    from mailsense.db.store import DatabaseStore

console = Console()

T = TypeVar("T")


@dataclass(frozen=True, slots=True)
class CLIDeps:
    """Shared dependencies initialized by _init_cli_deps()."""

    config: AppConfig
    store: DatabaseStore


async def _init_cli_deps() -> CLIDeps:
    """Load config and open the database.

    Prints an actionable error and exits with status 1 on failure.
    """
    from mailsense.config import get_config
    from mailsense.core.errors import ConfigLoadError, ConfigValidationError
    from mailsense.db.store import DatabaseStore

    try:
        config = get_config()
    except (ConfigLoadError, ConfigValidationError) as e:
        console.print(
            f"[red]Config error:[/red] {e}\n\n"
            "Fix config/config.yaml or point MAILSENSE_CONFIG_PATH at a valid file."
        )
        sys.exit(1)

    ctx = click.get_current_context(silent=True)
    if ctx is None or not ctx.find_root().params.get("debug"):
        configure_logging(log_level=config.logging.level, json_output=config.logging.json_output)

    db_path = Path(config.database.path)
    db_path.parent.mkdir(parents=True, exist_ok=True)
    store = DatabaseStore(db_path)
    await store.initialize()

    return CLIDeps(config=config, store=store)


def _run(coro_factory: Callable[[], Coroutine[Any, Any, T]]) -> T:
    """Run an async command body with the CLI's standard error handling."""
    from mailsense.core.errors import MailSenseError

    try:
        return asyncio.run(coro_factory())
    except KeyboardInterrupt:
        console.print("\n[yellow]Cancelled.[/yellow]")
        sys.exit(130)
    except SystemExit:
        raise
    except MailSenseError as e:
        console.print(f"\n[red]Error:[/red] {e}")
        sys.exit(1)


@click.group()
@click.option("--debug/--no-debug", default=False, help="Enable debug logging")
def cli(debug: bool) -> None:
    """MailSense - AI-powered email analysis and personal assistant."""
    log_level = "DEBUG" if debug else "INFO"
    # Human-readable output for the CLI
    configure_logging(log_level=log_level, json_output=False)


@cli.command("validate-config")
@click.option(
    "--config",
    "-c",
    "config_path",
    type=click.Path(exists=False, path_type=Path),
    default=None,
    help="Path to config file (default: config/config.yaml)",
)
def validate_config(config_path: Path | None) -> None:
    """Validate the configuration file.

    Checks that config.yaml exists and passes Pydantic schema validation.
    Reports specific errors for invalid fields.
    """
    console.print(f"Validating config: [cyan]{config_path or 'config/config.yaml'}[/cyan]")

    is_valid, message = validate_config_file(config_path)

    if is_valid:
        console.print(f"\n[green]✓[/green] {message}")
        sys.exit(0)
    else:
        console.print(f"\n[red]✗[/red] {message}")
        sys.exit(1)


@cli.command("init-db")
def init_db() -> None:
    """Create the database and all tables."""

    async def _init() -> None:
        from mailsense.db.models import verify_schema

        deps = await _init_cli_deps()
        ok = await verify_schema(deps.store.db_path)
        if ok:
            console.print(f"[green]✓[/green] Database ready at [cyan]{deps.store.db_path}[/cyan]")
        else:
            console.print("[red]✗[/red] Schema verification failed")
            sys.exit(1)

    _run(_init)


@cli.command("add-message")
@click.option("--subject", default=None, help="Email subject")
@click.option("--sender", "from_address", default=None, help="Sender address")
@click.option("--sender-name", "from_name", default=None, help="Sender display name")
@click.option(
    "--body-file",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    default=None,
    help="File holding the plain-text body (default: read stdin)",
)
@click.option("--source", default="cli", help="Source system name")
@click.option("--source-id", default=None, help="ID in the source system (default: generated)")
def add_message(
    subject: str | None,
    from_address: str | None,
    from_name: str | None,
    body_file: Path | None,
    source: str,
    source_id: str | None,
) -> None:
    """Store an email so it can be analyzed."""
    import uuid

    from mailsense.db.store import Message, utcnow

    body = body_file.read_text(encoding="utf-8") if body_file else sys.stdin.read()

    async def _add() -> None:
        deps = await _init_cli_deps()
        message_id = await deps.store.save_message(
            Message(
                source=source,
                source_id=source_id or uuid.uuid4().hex,
                subject=subject,
                from_name=from_name,
                from_address=from_address,
                received_at=utcnow(),
                body_plain=body,
            )
        )
        console.print(f"[green]✓[/green] Stored message [cyan]{message_id}[/cyan]")

    _run(_add)


@cli.command("set-provider")
@click.argument("provider")
@click.option("--api-key", default=None, help="Provider API key")
@click.option("--model", default=None, help="Pin a model (overrides smart routing)")
@click.option("--endpoint", default=None, help="Base URL override (e.g. a remote Ollama)")
@click.option("--activate/--no-activate", default=True, help="Make this the active provider")
def set_provider(
    provider: str,
    api_key: str | None,
    model: str | None,
    endpoint: str | None,
    activate: bool,
) -> None:
    """Store credentials and defaults for an AI provider."""
    from mailsense.db.store import ProviderSettings

    async def _set() -> None:
        deps = await _init_cli_deps()
        await deps.store.save_provider_settings(
            ProviderSettings(
                provider=provider.lower(),
                api_key=api_key,
                model=model,
                api_endpoint=endpoint,
                is_active=activate,
            )
        )
        state = "active" if activate else "saved"
        console.print(f"[green]✓[/green] Provider [cyan]{provider.lower()}[/cyan] {state}")

    _run(_set)


@cli.command("analyze")
@click.argument("message_id", type=int)
@click.option("--instructions", default=None, help="Corrections for the AI to prioritize")
def analyze(message_id: int, instructions: str | None) -> None:
    """Analyze a stored message and print the outcome."""
    from mailsense.engine.orchestrator import AnalysisOrchestrator

    async def _analyze() -> None:
        deps = await _init_cli_deps()
        orchestrator = AnalysisOrchestrator(deps.store, deps.config)

        with console.status(f"Analyzing message {message_id}..."):
            analysis = await orchestrator.run_analysis(message_id, instructions=instructions)

        if analysis is None:
            console.print(f"[red]Message {message_id} not found[/red]")
            sys.exit(1)

        if analysis.status != "completed":
            console.print(f"[red]✗ Analysis {analysis.id} failed[/red]\n{analysis.raw_response}")
            sys.exit(1)

        console.print(
            f"[green]✓[/green] Analysis [cyan]{analysis.id}[/cyan] completed with "
            f"[cyan]{analysis.model_used}[/cyan] "
            f"({analysis.complexity}, ${analysis.cost_usd:.6f}, {analysis.processing_time_ms} ms)"
        )

        table = Table(title="Extracted")
        table.add_column("Kind")
        table.add_column("Count", justify="right")
        table.add_row("Obligations", str(len(await deps.store.get_obligations(message_id=message_id))))
        table.add_row("Deadlines", str(len(await deps.store.get_deadlines(message_id=message_id))))
        table.add_row("Events", str(len(await deps.store.get_events(message_id=message_id))))
        table.add_row("Documents/links", str(len(await deps.store.get_attachments(message_id))))
        console.print(table)

    _run(_analyze)


@cli.command("usage-stats")
@click.option("--days", default=30, type=int, help="Number of days to report")
def usage_stats(days: int) -> None:
    """Show AI cost and savings over a period."""
    from mailsense.db.store import utcnow
    from mailsense.engine.usage import UsageTracker

    async def _stats() -> None:
        deps = await _init_cli_deps()
        tracker = UsageTracker(deps.store, deps.config.analysis.baseline_model)
        stats = await tracker.get_stats(since=utcnow() - timedelta(days=days))

        console.print(f"[bold]AI usage[/bold] ({stats.period})")
        console.print(f"  Requests:      {stats.total_requests}")
        console.print(f"  Total cost:    ${stats.total_cost:.4f}")
        console.print(f"  Baseline cost: ${stats.baseline_cost:.4f}")
        console.print(f"  Savings:       [green]${stats.total_savings:.4f}[/green]")
        console.print(f"  Avg latency:   {stats.avg_response_time_ms} ms")

        if stats.model_breakdown:
            table = Table(title="By model")
            table.add_column("Model")
            table.add_column("Requests", justify="right")
            for model, count in sorted(stats.model_breakdown.items(), key=lambda kv: -kv[1]):
                table.add_row(model, str(count))
            console.print(table)

    _run(_stats)


@cli.command("classify")
@click.argument("text")
@click.option(
    "--budget",
    type=click.Choice(["Premium", "Balanced", "Economy"], case_sensitive=False),
    default="Balanced",
    help="Budget mode",
)
def classify(text: str, budget: str) -> None:
    """Show how smart routing would handle a piece of content."""
    from mailsense.routing.classifier import BudgetMode, TaskClassifier

    classifier = TaskClassifier()
    mode = BudgetMode.parse(budget)
    complexity = classifier.classify_complexity(text)
    model = classifier.recommend_model(complexity, mode)
    savings = classifier.estimate_savings(complexity, mode)

    console.print(f"Complexity: [cyan]{complexity.value}[/cyan]")
    console.print(f"Model:      [cyan]{model}[/cyan] ({mode.value})")
    console.print(f"Estimated savings vs premium per 1k/500 tokens: ${savings:.6f}")


@cli.command("draft-reply")
@click.argument("message_id", type=int)
@click.option("--instructions", default=None, help="Guidance for the draft")
def draft_reply(message_id: int, instructions: str | None) -> None:
    """Draft a reply to a stored message."""
    from mailsense.engine.assistant import AssistantService

    async def _draft() -> None:
        deps = await _init_cli_deps()
        assistant = AssistantService(deps.store, deps.config)
        draft = await assistant.draft_reply(message_id, instructions)
        console.print(draft)

    _run(_draft)


@cli.command("ask")
@click.argument("question")
def ask(question: str) -> None:
    """Ask the assistant about your obligations, deadlines, and recent mail."""
    from mailsense.engine.assistant import AssistantService

    async def _ask() -> None:
        deps = await _init_cli_deps()
        assistant = AssistantService(deps.store, deps.config)
        console.print(await assistant.chat(question))

    _run(_ask)


def main() -> None:
    """Entry point for the CLI. Reads a .env file from the working directory first."""
    load_dotenv()
    cli()


if __name__ == "__main__":
    main()
