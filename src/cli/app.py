"""Operator CLI for the generation orchestration core."""

import asyncio
import logging
import sys
from typing import Any, Awaitable, Callable, Optional

import click
from rich.console import Console
from rich.table import Table

from ..config.orchestration_config import OrchestrationConfig
from ..models.cache_models import CacheKind
from ..models.generation_models import (
    BudgetLevel,
    PlanTier,
    Purpose,
    QualityLevel,
    SpeedPreference,
    StylePreference,
)
from ..orchestration.errors import OrchestrationError
from ..services.orchestration_service import GenerationOrchestrator
from ..services.plan_provider import StaticPlanProvider

logger = logging.getLogger(__name__)

console = Console()


def _choices(enum_cls) -> click.Choice:
    return click.Choice([member.value for member in enum_cls])


def _run(
    action: Callable[[GenerationOrchestrator], Awaitable[Any]],
    plan: Optional[str] = None,
) -> Any:
    """
    Build an orchestrator from the environment, run one action, close it.

    Args:
        action: Coroutine function taking the orchestrator
        plan: Default plan tier for every user

    Returns:
        Whatever the action returns
    """

    async def runner():
        provider = StaticPlanProvider(default_tier=plan or PlanTier.BASIC)
        orchestrator = GenerationOrchestrator.from_config(
            OrchestrationConfig(),
            plan_provider=provider,
        )
        await orchestrator.start()
        try:
            return await action(orchestrator)
        finally:
            await orchestrator.aclose()

    try:
        return asyncio.run(runner())
    except OrchestrationError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)


@click.group()
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose logging")
def main(verbose: bool) -> None:
    """Headshot generation orchestrator operator tools."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    if not verbose:
        logging.getLogger("httpx").setLevel(logging.WARNING)
        logging.getLogger("httpcore").setLevel(logging.WARNING)


@main.command()
@click.option("--purpose", type=_choices(Purpose), default="professional")
@click.option("--quality", type=_choices(QualityLevel), default="standard")
@click.option("--speed", type=_choices(SpeedPreference), default="balanced")
@click.option("--budget", type=_choices(BudgetLevel), default="medium")
@click.option("--style", type=_choices(StylePreference), default="professional")
@click.option("--plan", type=_choices(PlanTier), default="basic")
@click.option("--count", type=click.IntRange(1, 10), default=1, help="Images per model")
@click.option("--user-id", default=None, help="Apply this user's preferences")
def select(
    purpose: str,
    quality: str,
    speed: str,
    budget: str,
    style: str,
    plan: str,
    count: int,
    user_id: Optional[str],
) -> None:
    """Rank models for a requirement set."""
    requirements = {
        "purpose": purpose,
        "quality": quality,
        "speed": speed,
        "budget": budget,
        "style": style,
        "output_count": count,
        "user_plan": plan,
    }
    selection = _run(
        lambda orchestrator: orchestrator.select_models(requirements, user_id=user_id),
        plan=plan,
    )

    table = Table(title="Model Selection", show_header=True)
    table.add_column("Rank", justify="right")
    table.add_column("Model", style="cyan")
    table.add_column("Confidence", justify="right")
    table.add_column("Est. Cost", justify="right")
    table.add_column("Est. Time (s)", justify="right")
    table.add_column("Reasoning", style="dim")

    for rank, candidate in enumerate(selection.candidates(), start=1):
        table.add_row(
            str(rank),
            candidate.model_id,
            f"{candidate.confidence:.2f}",
            f"${candidate.estimated_cost:.2f}",
            f"{candidate.estimated_latency:.0f}",
            "; ".join(candidate.reasoning),
        )

    console.print(table)
    if selection.cold_start:
        console.print("[yellow]No performance history yet; confidence is capped.[/yellow]")
    for recommendation in selection.recommendations:
        console.print(f"- {recommendation}")


@main.command("cache-stats")
@click.option("--limit", type=int, default=1000, help="Entries scanned per kind")
def cache_stats(limit: int) -> None:
    """Show live cache entries per kind."""

    async def action(orchestrator: GenerationOrchestrator):
        counts = {}
        for kind in CacheKind:
            entries = await orchestrator.list_cache_entries(kind=kind, limit=limit)
            counts[kind.value] = (
                len(entries),
                sum(e.access_count for e in entries),
            )
        return counts

    counts = _run(action)

    table = Table(title="Cache", show_header=True)
    table.add_column("Kind", style="cyan")
    table.add_column("Entries", justify="right")
    table.add_column("Hits", justify="right")
    for kind, (entries, hits) in counts.items():
        table.add_row(kind, str(entries), str(hits))
    console.print(table)


@main.command("clear-cache")
@click.option("--kind", type=_choices(CacheKind), default=None, help="Only this kind")
@click.confirmation_option(prompt="Clear cached entries?")
def clear_cache(kind: Optional[str]) -> None:
    """Remove cached entries."""
    removed = _run(lambda orchestrator: orchestrator.clear_cache(kind))
    console.print(f"Removed {removed} entries")


@main.command()
@click.argument("user_id")
@click.option("--plan", type=_choices(PlanTier), default="basic")
def usage(user_id: str, plan: str) -> None:
    """Show this month's quota usage for a user."""
    decisions = _run(lambda orchestrator: orchestrator.get_usage(user_id), plan=plan)

    table = Table(title=f"Usage for {user_id} ({plan})", show_header=True)
    table.add_column("Quota", style="cyan")
    table.add_column("Used", justify="right")
    table.add_column("Limit", justify="right")
    table.add_column("Remaining", justify="right")
    table.add_column("Resets")
    for quota_type, decision in decisions.items():
        table.add_row(
            quota_type,
            str(decision.used),
            str(decision.limit),
            str(decision.remaining),
            decision.period_end.strftime("%Y-%m-%d"),
        )
    console.print(table)


@main.command()
@click.argument("model_id")
@click.option("--days", type=click.IntRange(1, 365), default=None, help="Window in days")
def performance(model_id: str, days: Optional[int]) -> None:
    """Show recent performance for a model."""
    report = _run(lambda orchestrator: orchestrator.model_performance(model_id, days))

    table = Table(title=f"Performance: {model_id}", show_header=True)
    table.add_column("Metric", style="cyan")
    table.add_column("Value", justify="right")
    table.add_row("Samples", str(report.sample_size))
    table.add_row("Success rate", f"{report.success_rate:.1%}")
    table.add_row("Avg latency (ms)", f"{report.avg_latency:.0f}")
    table.add_row("Avg cost", f"${report.avg_cost:.2f}")
    table.add_row(
        "Avg quality",
        f"{report.avg_quality:.2f}" if report.avg_quality is not None else "-",
    )
    table.add_row("Trend", str(report.trend))
    for error_type, count in sorted(report.error_breakdown.items()):
        table.add_row(f"Errors: {error_type}", str(count))
    console.print(table)


if __name__ == "__main__":
    main()
