"""
Rich CLI interface for ratepipe.

Inspects the effective configuration and runs synthetic batches through a
pipeline and a credential rotation limiter.
"""

from __future__ import annotations

import asyncio
import random
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.progress import BarColumn, Progress, SpinnerColumn, TaskProgressColumn, TextColumn, TimeRemainingColumn
from rich.table import Table

from ratepipe import __version__
from ratepipe.core.config import Settings, get_settings
from ratepipe.core.errors import PipelineCancelledError, ThrottleSignal
from ratepipe.queue.pipeline import WorkQueuePipeline
from ratepipe.queue.rotation import KeyRotationLimiter
from ratepipe.utils.logging import mask_credential, setup_logging
from ratepipe.utils.metrics import Metrics

app = typer.Typer(
    name="ratepipe",
    help="Rate-budgeted async work pipelines with credential rotation",
    no_args_is_help=True,
)
console = Console()


def load_settings(config_file: Optional[Path]) -> Settings:
    """Load settings from a YAML file, or from the environment."""
    if config_file is not None:
        return Settings.from_yaml(config_file)
    return get_settings()


@app.command()
def version():
    """Show version information."""
    console.print(f"[bold cyan]ratepipe[/bold cyan] v{__version__}")


@app.command()
def config(
    config_file: Optional[Path] = typer.Option(None, "--config", "-c", help="YAML settings file"),
):
    """Show the effective configuration."""
    settings = load_settings(config_file)

    table = Table(title="Effective Settings", show_header=True, header_style="bold magenta")
    table.add_column("Section", style="cyan")
    table.add_column("Setting", style="green")
    table.add_column("Value", justify="right")

    sections = {
        "budget": settings.budget,
        "pipeline": settings.pipeline,
        "rotation": settings.rotation,
        "engine": settings.engine,
    }
    for section, values in sections.items():
        for name, value in values.model_dump().items():
            if name == "credentials":
                value = ", ".join(mask_credential(c) for c in value) or "-"
            table.add_row(section, name, str(value))

    console.print(table)


@app.command()
def simulate(
    items: int = typer.Option(50, "--items", "-n", help="Number of work items"),
    throughput: int = typer.Option(15, "--throughput", "-t", help="Dispatch starts per second"),
    concurrency: int = typer.Option(10, "--concurrency", "-j", help="Maximum units in flight"),
    credentials: int = typer.Option(3, "--credentials", "-k", help="Number of synthetic credentials"),
    per_window: int = typer.Option(100, "--per-window", help="Budget per credential per window"),
    failure_rate: float = typer.Option(0.1, "--failure-rate", help="Chance a call fails (0.0-1.0)"),
    throttle_rate: float = typer.Option(0.02, "--throttle-rate", help="Chance a call is throttled"),
    latency: float = typer.Option(0.05, "--latency", help="Maximum simulated call latency (s)"),
    seed: Optional[int] = typer.Option(None, "--seed", help="Random seed"),
    config_file: Optional[Path] = typer.Option(None, "--config", "-c", help="YAML settings file"),
):
    """Run a synthetic batch and report per-item outcomes."""
    settings = load_settings(config_file)
    setup_logging(level="WARNING", json_format=False)
    rng = random.Random(seed)
    metrics = Metrics()

    budget = settings.budget.model_copy(update={"max_per_window": per_window})
    rotation = settings.rotation.model_copy(
        update={
            "credentials": [f"sim-key-{i:04d}-{rng.getrandbits(32):08x}" for i in range(credentials)],
            "cooldown_seconds": min(settings.rotation.cooldown_seconds, 2.0),
        }
    )
    pipeline_settings = settings.pipeline.model_copy(
        update={"throughput": throughput, "max_concurrency": concurrency}
    )

    limiter = KeyRotationLimiter.from_settings(rotation, budget, metrics=metrics)
    pipeline = WorkQueuePipeline.from_settings(pipeline_settings, metrics=metrics)

    async def call_remote(credential: str, item: int) -> str:
        await asyncio.sleep(rng.uniform(0, latency))
        roll = rng.random()
        if roll < throttle_rate:
            raise ThrottleSignal("429 Too Many Requests", credential=credential)
        if roll < throttle_rate + failure_rate:
            raise ConnectionError(f"Simulated failure for item {item}")
        return f"item-{item}"

    async def process(item: int) -> str:
        return await limiter.with_rate_limiting(lambda credential: call_remote(credential, item))

    async def run() -> int:
        failures = 0
        with Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            BarColumn(),
            TaskProgressColumn(),
            TimeRemainingColumn(),
            console=console,
            transient=True,
        ) as progress:
            task = None
            try:
                async for result in pipeline.stream(pipeline.map(range(items), process)):
                    if result.is_announcement:
                        task = progress.add_task("Processing", total=result.total)
                        continue
                    if not result.ok:
                        failures += 1
                        progress.console.print(
                            f"[red]Item {result.item.position} failed after "
                            f"{result.attempts} attempts: {result.error}[/red]"
                        )
                    progress.advance(task)
            except PipelineCancelledError as e:
                console.print(f"[yellow]Cancelled with {e.unfinished} item(s) unfinished[/yellow]")
        return failures

    failures = asyncio.run(run())
    summary = metrics.get_summary()

    table = Table(title="Batch Summary", show_header=True, header_style="bold magenta")
    table.add_column("Metric", style="cyan")
    table.add_column("Value", justify="right")
    for name in ("dispatched", "succeeded", "failed", "retried"):
        table.add_row(name, str(summary[name]))
    table.add_row("avg latency", f"{summary['avg_latency_ms']:.1f} ms")
    console.print(table)

    cred_table = Table(title="Credentials", show_header=True, header_style="bold magenta")
    cred_table.add_column("Credential", style="cyan")
    cred_table.add_column("Granted", justify="right")
    cred_table.add_column("Denied", justify="right")
    cred_table.add_column("Throttled", justify="right")
    for credential, counts in summary["credentials"].items():
        cred_table.add_row(
            mask_credential(credential),
            str(counts["granted"]),
            str(counts["denied"]),
            str(counts["throttled"]),
        )
    console.print(cred_table)

    if failures:
        console.print(f"\n[yellow]{failures} of {items} item(s) failed[/yellow]")
    else:
        console.print(f"\n[green]All {items} item(s) succeeded[/green]")


def main():
    """Entry point for the CLI."""
    app()


if __name__ == "__main__":
    main()
