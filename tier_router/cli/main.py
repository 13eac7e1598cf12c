"""
CLI interface for Tier Router.

Provides command-line access to routing, usage and memory state.
"""

import os
import sys
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.table import Table

from tier_router.config.loader import DATA_PATH_ENV, load_config_or_default
from tier_router.core.dispatcher import Dispatcher
from tier_router.core.errors import InvalidTierError, TierRouterError
from tier_router.core.ledger import UsageLedger
from tier_router.core.memory import SessionMemory
from tier_router.core.pricing import calculate_cost
from tier_router.core.token_counter import TokenUsage
from tier_router.logging_setup import configure_logging
from tier_router.storage.db import DEFAULT_DB_PATH, initialize_schema

app = typer.Typer()
console = Console(no_color="NO_COLOR" in os.environ)

EXIT_CODE_PASS = 0
EXIT_CODE_FAIL = 1

DEFAULT_DATA_DIR = "data"


def _db_path() -> str:
    return str(Path(os.environ.get(DATA_PATH_ENV, DEFAULT_DATA_DIR)) / DEFAULT_DB_PATH)


def _build_dispatcher(strategy: Optional[str] = None) -> Dispatcher:
    """Dispatcher over the configured store, resuming the latest memory session."""
    config = load_config_or_default()
    db_path = _db_path()
    dispatcher = Dispatcher(
        config,
        UsageLedger(db_path),
        SessionMemory(db_path, resume=True),
    )
    if strategy:
        dispatcher.set_strategy(strategy)
    return dispatcher


def _format_currency(amount: float) -> str:
    return f"${amount:,.2f}"


@app.callback(invoke_without_command=True)
def main(
    ctx: typer.Context,
    log_level: Optional[str] = typer.Option(
        None,
        "--log-level",
        help="Log level (default: $TIER_ROUTER_LOG_LEVEL or WARNING)"
    ),
):
    """Tier Router CLI."""
    configure_logging(log_level)
    if ctx.invoked_subcommand is None:
        console.print("Tier Router - Use --help to see available commands")


@app.command()
def init():
    """Initialize the Tier Router database."""
    try:
        initialize_schema(_db_path())
        console.print(f"[green]✓[/] Database initialized at {_db_path()}")
        sys.exit(EXIT_CODE_PASS)
    except Exception as e:
        console.print(f"[red]Error initializing database:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)


@app.command()
def status(
    detailed: bool = typer.Option(
        False,
        "--detailed",
        "-d",
        help="Include per-tier and per-model usage"
    ),
):
    """Show strategy, active model and budget usage."""
    try:
        dispatcher = _build_dispatcher()
        snapshot = dispatcher.status(detailed=detailed)
    except (TierRouterError, OSError) as e:
        console.print(f"[red]Error:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)

    state = snapshot.state
    usage = snapshot.usage.rounded()
    console.print("\n[bold]Tier Router Status[/bold]")
    console.print("-" * 40)
    console.print(f"Strategy:     {state.strategy.value}")
    console.print(f"Current tier: {state.current_tier}")
    if snapshot.model:
        console.print(f"Model:        {snapshot.model.model_ref} ({snapshot.model.model_id})")
    else:
        console.print(f"[yellow]Model:        unresolved ({snapshot.model_error})[/]")

    console.print(f"\n[bold]Budget ({usage['period']})[/bold]")
    console.print(f"Spent:     {_format_currency(usage['spent_usd'])} / {_format_currency(usage['budget_usd'])}")
    console.print(f"Usage:     {usage['percent_used']:.1f}%")
    console.print(f"Remaining: {_format_currency(usage['remaining_usd'])}")
    for alert in snapshot.usage.triggered_alerts:
        console.print(f"[yellow]  {alert.percent:g}% threshold reached: {alert.action}[/]")
    if snapshot.usage.is_blocked:
        console.print("[red]High-cost tiers are blocked for the rest of the month[/]")

    if detailed:
        table = Table(title="Usage by tier")
        table.add_column("Tier")
        table.add_column("Cost", justify="right")
        table.add_column("Tokens", justify="right")
        for tier, bucket in snapshot.usage.by_tier.items():
            table.add_row(tier, f"${bucket.cost:.4f}", f"{bucket.tokens:,}")
        console.print(table)

        table = Table(title="Usage by model")
        table.add_column("Model")
        table.add_column("Cost", justify="right")
        table.add_column("Tokens", justify="right")
        for model_key, bucket in snapshot.usage.by_model.items():
            table.add_row(model_key, f"${bucket.cost:.4f}", f"{bucket.tokens:,}")
        console.print(table)

    sys.exit(EXIT_CODE_PASS)


@app.command()
def classify(
    task: str = typer.Argument(..., help="Task description to classify"),
    strategy: Optional[str] = typer.Option(
        None,
        "--strategy",
        "-s",
        help="Strategy to classify under (2-tier or 3-tier)"
    ),
    force_tier: Optional[str] = typer.Option(
        None,
        "--force-tier",
        help="Skip rules and check this tier against the budget"
    ),
):
    """
    Recommend a tier for a task.

    This is a read-only operation: the routing state and session memory
    are not changed.
    """
    try:
        dispatcher = _build_dispatcher(strategy)
        result = dispatcher.orchestrate(task, force_tier=force_tier, auto_switch=False)
        model = dispatcher.model_for(result.target_tier)
    except (TierRouterError, OSError) as e:
        console.print(f"[red]Error:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)

    console.print(f"[bold]Tier:[/bold]   {result.target_tier}")
    console.print(f"[bold]Model:[/bold]  {model.model_ref} ({model.model_id})")
    console.print(f"[bold]Reason:[/bold] {result.reason}")
    if result.budget_blocked:
        console.print(f"[yellow]Budget blocked {result.blocked_tier}; using {result.target_tier}[/]")
    sys.exit(EXIT_CODE_PASS)


@app.command()
def record(
    tier: str = typer.Option(..., "--tier", "-t", help="Tier that served the request"),
    input_tokens: int = typer.Option(..., "--input-tokens", help="Prompt tokens"),
    output_tokens: int = typer.Option(..., "--output-tokens", help="Completion tokens"),
    model_ref: Optional[str] = typer.Option(
        None,
        "--model-ref",
        "-m",
        help="provider:model reference (default: the tier's configured model)"
    ),
    summary: Optional[str] = typer.Option(None, "--summary", help="Short task description"),
    strategy: Optional[str] = typer.Option(None, "--strategy", "-s", help="Strategy the tier belongs to"),
):
    """Record usage that happened outside the SDK."""
    try:
        dispatcher = _build_dispatcher(strategy)
        if not dispatcher.policy.is_valid_tier(tier):
            raise InvalidTierError(tier, dispatcher.strategy.value, dispatcher.policy.available_tiers())
        ref = model_ref or dispatcher.config.tier_model_ref(dispatcher.strategy, tier)
        provider, model, model_config = dispatcher.config.resolve_model(ref)
        cost = calculate_cost(model_config, TokenUsage(input_tokens, output_tokens))
        dispatcher.ledger.record(
            provider=provider,
            model=model,
            tier=tier,
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            cost_usd=cost,
            task_summary=summary,
        )
    except (TierRouterError, ValueError, OSError) as e:
        console.print(f"[red]Error:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)

    console.print(f"[green]✓[/] Recorded {input_tokens + output_tokens:,} tokens on {tier} ({ref}): ${cost:.6f}")
    sys.exit(EXIT_CODE_PASS)


@app.command()
def memory():
    """Summarize the latest session memory."""
    try:
        summary = SessionMemory(_db_path(), resume=True).summary()
    except (TierRouterError, OSError) as e:
        console.print(f"[red]Error:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)

    console.print(f"\n[bold]Session {summary.session_id[:8]}[/bold]")
    console.print("-" * 40)
    console.print(f"Entries:      {summary.entry_count}")
    console.print(f"Success rate: {summary.success_rate}%")
    if summary.pattern_counts:
        table = Table(title="Task patterns")
        table.add_column("Pattern")
        table.add_column("Count", justify="right")
        for pattern, count in summary.pattern_counts.items():
            table.add_row(pattern, str(count))
        console.print(table)
    sys.exit(EXIT_CODE_PASS)


if __name__ == "__main__":
    app()
