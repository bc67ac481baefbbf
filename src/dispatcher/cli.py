"""CLI entry point for the adaptive dispatcher."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import TYPE_CHECKING

import click
from rich.console import Console
from rich.table import Table

from dispatcher import __version__
from dispatcher.errors import ConfigError, NoExecutorsError

if TYPE_CHECKING:
    from dispatcher.engine.controller import DispatchController, DispatchResult

console = Console()


@click.group()
@click.version_option(version=__version__, prog_name="dispatch")
@click.option(
    "--config",
    "config_path",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="JSON config file (default: <data dir>/config.json)",
)
@click.option("-v", "--verbose", is_flag=True, help="Log every state transition")
@click.pass_context
def main(ctx: click.Context, config_path: Path | None, verbose: bool) -> None:
    """Adaptive dispatcher - route tasks to the executor that handles them best."""
    from dispatcher.logging_utils import configure_logging

    configure_logging(logging.DEBUG if verbose else logging.WARNING)
    ctx.obj = {"config_path": config_path}


def _get_controller(ctx: click.Context) -> DispatchController:
    from dispatcher.config import load_config
    from dispatcher.engine.controller import DispatchController

    try:
        config = load_config(ctx.obj["config_path"])
        return DispatchController.from_config(config)
    except ConfigError as e:
        raise click.ClickException(str(e)) from e


@main.command()
@click.pass_context
def init(ctx: click.Context) -> None:
    """Initialize dispatcher: create the data directory and database."""
    from dispatcher.config import CONFIG_FILENAME, load_config
    from dispatcher.storage.database import Database

    try:
        config = load_config(ctx.obj["config_path"])
    except ConfigError as e:
        raise click.ClickException(str(e)) from e

    db = Database(config.data_dir)
    db.ensure_tables()
    console.print(f"[green]Dispatcher initialized at {db.data_dir}[/green]")
    console.print(f"  Database:  {db.db_path}")
    console.print(f"  Config:    {ctx.obj['config_path'] or db.data_dir / CONFIG_FILENAME}")
    console.print(f"  Executors: {len(config.executors)}")


@main.command()
@click.argument("task")
@click.pass_context
def recommend(ctx: click.Context, task: str) -> None:
    """Preview which executor would handle TASK, without running it."""
    controller = _get_controller(ctx)
    try:
        rec = controller.recommend(task)
    except NoExecutorsError as e:
        raise click.ClickException(f"{e}. Declare executors in the config file.") from e

    console.print(f"[bold]Executor:[/bold]   {rec.executor_id}")
    console.print(f"[bold]Method:[/bold]     {rec.method.value}")
    console.print(f"[bold]Confidence:[/bold] {rec.confidence:.0%}")
    console.print(f"[dim]{rec.reasoning}[/dim]")

    if rec.alternatives:
        table = Table(title="Alternatives")
        table.add_column("Executor", style="cyan")
        table.add_column("Score", justify="right")
        for executor_id, score in rec.alternatives:
            table.add_row(executor_id, f"{score:.3f}")
        console.print(table)


@main.command()
@click.argument("task")
@click.option("--timeout", type=float, default=None, help="Stop starting attempts after N seconds")
@click.pass_context
def run(ctx: click.Context, task: str, timeout: float | None) -> None:
    """Dispatch TASK with validation, retries and learning."""
    controller = _get_controller(ctx)
    console.print(f"[bold cyan]Dispatch:[/bold cyan] {task}")
    result = controller.run(task, timeout=timeout)
    _print_result(result)
    if not result.success:
        ctx.exit(1)


@main.command()
@click.pass_context
def stats(ctx: click.Context) -> None:
    """Show aggregate statistics over the dispatch history."""
    controller = _get_controller(ctx)
    snapshot = controller.get_history_stats()

    if not snapshot["total_records"]:
        console.print("[dim]No dispatch history yet. Run a task first.[/dim]")
        return

    console.print(f"[bold]Records:[/bold]      {snapshot['total_records']}")
    console.print(f"[bold]Success rate:[/bold] {snapshot['success_rate']:.0%}")
    console.print(f"[bold]Avg quality:[/bold]  {snapshot['avg_quality']:.2f}/10")
    console.print(f"[bold]Executors:[/bold]    {snapshot['unique_executors']}")
    if snapshot["degraded"]:
        console.print(
            f"[yellow]Store degraded: {snapshot['pending_writes']} unsaved record(s)[/yellow]"
        )


@main.command()
@click.pass_context
def performance(ctx: click.Context) -> None:
    """Show per-executor performance counters."""
    controller = _get_controller(ctx)
    counters = controller.get_performance()

    if not counters:
        console.print("[dim]No executors registered and no history recorded.[/dim]")
        return

    table = Table(title="Executor Performance")
    table.add_column("Executor", style="cyan")
    table.add_column("Attempts", justify="right")
    table.add_column("Success", justify="right", style="green")
    table.add_column("Avg Quality", justify="right")
    table.add_column("Avg Duration", justify="right")
    table.add_column("Registered")

    for executor_id, data in counters.items():
        table.add_row(
            executor_id,
            str(data["attempts"]),
            f"{data['success_rate']:.0%}",
            f"{data['avg_quality']:.2f}",
            f"{data['avg_duration_ms']:.0f}ms",
            "yes" if data["registered"] else "[dim]retired[/dim]",
        )

    console.print(table)


@main.command()
@click.option("--limit", default=20, help="Number of entries to show")
@click.pass_context
def history(ctx: click.Context, limit: int) -> None:
    """Show the most recent dispatch attempts."""
    controller = _get_controller(ctx)
    records = controller.store.recent(limit)

    if not records:
        console.print("[dim]No dispatch history yet. Run a task first.[/dim]")
        return

    table = Table(title="Dispatch History")
    table.add_column("ID", justify="right")
    table.add_column("Executor", style="cyan")
    table.add_column("Quality")
    table.add_column("Success")
    table.add_column("Difficulty")
    table.add_column("Task", max_width=40)

    for record in records:
        table.add_row(
            str(record.record_id),
            record.executor_id,
            f"{record.quality_score:.1f}",
            "[green]yes[/green]" if record.success else "[red]no[/red]",
            f"{record.features.difficulty:.2f}",
            record.task_preview[:40],
        )

    console.print(table)


@main.command()
@click.argument("task")
@click.option("--top", default=3, help="Number of executors to show")
@click.pass_context
def similar(ctx: click.Context, task: str, top: int) -> None:
    """Show which executors did best on tasks similar to TASK."""
    controller = _get_controller(ctx)
    ranked = controller.best_for_similar(task, top_n=top)

    if not ranked:
        console.print("[dim]No similar tasks in history.[/dim]")
        return

    table = Table(title="Best Executors for Similar Tasks")
    table.add_column("Executor", style="cyan")
    table.add_column("Score", style="bold")
    table.add_column("Success")
    table.add_column("Avg Quality")
    table.add_column("Similarity")
    table.add_column("Attempts", justify="right")

    for row in ranked:
        table.add_row(
            row["executor_id"],
            f"{row['score']:.3f}",
            f"{row['success_rate']:.0%}",
            f"{row['avg_quality']:.2f}",
            f"{row['avg_similarity']:.2f}",
            str(row["attempts"]),
        )

    console.print(table)


def _print_result(result: DispatchResult) -> None:
    """Pretty-print a dispatch result."""
    meta = result.metadata
    status_color = "green" if result.success else "red"
    status = "accepted" if result.success else (result.error_kind or "failed")
    console.print(f"\n[bold {status_color}]Status: {status}[/bold {status_color}]")
    console.print(f"Executor: {meta.get('final_agent')} ({meta.get('method')})")
    console.print(
        f"Quality: {meta.get('final_quality', 0.0):.2f} "
        f"(threshold {meta.get('threshold', 0.0):.2f})"
    )
    console.print(f"Attempts: {meta.get('attempts', 0)}/{meta.get('max_attempts', 0)}")
    console.print(f"Duration: {meta.get('duration', 0.0):.2f}s")

    if result.error:
        console.print(f"[yellow]{result.error}[/yellow]")
    if meta.get("store_degraded"):
        console.print("[yellow]History store degraded; outcomes kept in memory[/yellow]")

    if result.answer:
        console.print("\n[bold]Answer:[/bold]")
        console.print(result.answer)


if __name__ == "__main__":
    main()
