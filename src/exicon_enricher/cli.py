#!/usr/bin/env python3
"""CLI for exicon-enricher: fetch, enrich and store F3 Exicon exercises.

Subcommands:
    fetch    Fetch and normalize posts (warms the API cache)
    enrich   Fetch, normalize and enrich; writes JSON/CSV snapshots
    upload   Upsert an existing snapshot into MongoDB
    run      enrich + upload in one go
    lexicon  Fetch Lexicon terms and upsert them into MongoDB

The CLI parses arguments, shows progress with Rich and presents errors. The
work itself is done by the pipeline stages.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import time
from collections.abc import Callable, Sequence
from pathlib import Path
from typing import Any

from dotenv import load_dotenv
from rich.console import Console
from rich.panel import Panel
from rich.progress import (
    BarColumn,
    MofNCompleteColumn,
    Progress,
    SpinnerColumn,
    TaskID,
    TextColumn,
    TimeElapsedColumn,
)
from rich.table import Table

from .config import EnrichmentConfig
from .exceptions import ExiconEnricherError
from .pipeline import (
    EnrichmentPipeline,
    PipelineContext,
    create_default_pipeline,
    create_fetch_pipeline,
    create_full_pipeline,
    create_lexicon_pipeline,
    create_upload_pipeline,
)
from .services import ServiceFactory

DEFAULT_LOG_FILE = "exicon_enricher.log"

PIPELINES: dict[str, Callable[[], EnrichmentPipeline]] = {
    "fetch": create_fetch_pipeline,
    "enrich": create_default_pipeline,
    "upload": create_upload_pipeline,
    "run": create_full_pipeline,
    "lexicon": create_lexicon_pipeline,
}

NOISY_LOGGERS = ("httpx", "httpcore", "openai", "pymongo")

console = Console()


def setup_logging(log_file: str = DEFAULT_LOG_FILE, verbose: bool = False) -> None:
    """Send detailed logs to log_file; the console is left to Rich."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        handlers=[logging.FileHandler(log_file, mode="w", encoding="utf-8")],
    )
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def create_progress() -> Progress:
    """Create a Rich progress bar with standard configuration."""
    return Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        BarColumn(),
        MofNCompleteColumn(),
        TimeElapsedColumn(),
        console=console,
    )


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    """Parse command-line arguments."""
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument("--config", type=str, default=None, help="Path to a TOML config file")
    common.add_argument(
        "--data-dir", type=str, default=None, help="Cache/snapshot root (default: data)"
    )
    common.add_argument("--stem", type=str, default="exicon", help="Snapshot file prefix")
    common.add_argument("--log-file", type=str, default=DEFAULT_LOG_FILE, help="Log file path")
    common.add_argument("-v", "--verbose", action="store_true", help="Debug-level logging")

    llm = argparse.ArgumentParser(add_help=False)
    llm.add_argument("--model", type=str, default=None, help="OpenAI model (default: o4-mini)")
    llm.add_argument("--batch-size", type=int, default=None, help="Items per LLM call (default: 20)")
    llm.add_argument(
        "--retries", type=int, default=None, help="Attempts per batch before defaults (default: 1)"
    )
    llm.add_argument("--debug", action="store_true", help="Dump every request/response as JSON")

    parser = argparse.ArgumentParser(
        description="Fetch, enrich and store F3 Exicon exercises",
        prog="exicon-enrich",
    )
    sub = parser.add_subparsers(dest="command", required=True)
    sub.add_parser("fetch", parents=[common], help="Fetch and normalize posts")
    sub.add_parser("enrich", parents=[common, llm], help="Fetch, normalize and enrich posts")
    upload = sub.add_parser("upload", parents=[common], help="Upsert a snapshot into MongoDB")
    upload.add_argument("--snapshot", type=str, default=None, help="Snapshot JSON to upload")
    sub.add_parser("run", parents=[common, llm], help="Enrich and upload in one run")
    sub.add_parser("lexicon", parents=[common], help="Fetch and upsert Lexicon terms")
    return parser.parse_args(argv)


def build_config(args: argparse.Namespace) -> EnrichmentConfig:
    """Load configuration and apply command-line overrides."""
    config = EnrichmentConfig.load(args.config)
    overrides: dict[str, Any] = {
        "data_dir": args.data_dir,
        "model": getattr(args, "model", None),
        "batch_size": getattr(args, "batch_size", None),
        "llm_retry_attempts": getattr(args, "retries", None),
    }
    if getattr(args, "debug", False):
        overrides["debug_mode"] = True
    config.update(**{k: v for k, v in overrides.items() if v is not None})
    return config


def display_header(command: str, config: EnrichmentConfig) -> None:
    """Display the header panel with run information."""
    console.print()
    console.print(
        Panel.fit(
            f"[bold cyan]{command}[/bold cyan]\n"
            f"[dim]Model: {config.model} · Batch size: {config.batch_size} · "
            f"Data: {config.data_dir}[/dim]",
            title="[bold]Exicon Enricher[/bold]",
            border_style="cyan",
        )
    )
    console.print()


def display_phase(phase_num: int, description: str) -> None:
    """Display a phase header."""
    console.print()
    console.print(Panel(f"[bold]Phase {phase_num}:[/bold] {description}", border_style="blue"))


def display_stage_result(stage_name: str, ctx: PipelineContext) -> None:
    """Print a one-line result for a finished stage."""
    if stage_name == "Fetch":
        console.print(f"[green]✓[/green] Fetched {len(ctx.details)}/{len(ctx.entries)} posts")
    elif stage_name == "Normalize":
        console.print(f"[green]✓[/green] {len(ctx.items)} unique exercises")
    elif stage_name == "Enrichment":
        console.print(f"[green]✓[/green] Enriched {len(ctx.enriched)} exercises")
    elif stage_name == "Load snapshot":
        console.print(f"[green]✓[/green] Loaded {len(ctx.enriched)} exercises")
    elif stage_name == "Store" and ctx.upsert_result is not None:
        console.print(
            f"[green]✓[/green] {ctx.upsert_result.upserted} upserted, "
            f"{ctx.upsert_result.errors} failed chunks"
        )
    elif stage_name == "Lexicon fetch":
        console.print(f"[green]✓[/green] {len(ctx.lexicon_items)} lexicon terms")
    elif stage_name == "Lexicon store" and ctx.lexicon_result is not None:
        console.print(
            f"[green]✓[/green] {ctx.lexicon_result.upserted} upserted, "
            f"{ctx.lexicon_result.errors} failed chunks"
        )


def display_summary(ctx: PipelineContext, elapsed_time: float) -> None:
    """Display the completion summary table."""
    minutes = int(elapsed_time // 60)
    seconds = int(elapsed_time % 60)
    time_formatted = f"{minutes}m {seconds}s" if minutes > 0 else f"{seconds}s"

    console.print()
    summary_table = Table(
        title="[bold green]✓ Processing Complete[/bold green]",
        show_header=True,
        header_style="bold cyan",
    )
    summary_table.add_column("Metric", style="cyan", width=24)
    summary_table.add_column("Value", style="green", justify="right")

    if ctx.entries:
        summary_table.add_row("Posts Listed", str(len(ctx.entries)))
        summary_table.add_row("Details Fetched", str(len(ctx.details)))
    if ctx.items:
        summary_table.add_row("Unique Exercises", str(len(ctx.items)))
    if ctx.run_report is not None:
        report = ctx.run_report
        summary_table.add_row("Batches", str(len(report.batches)))
        summary_table.add_row("Failed Batches", str(report.failed_batches))
        summary_table.add_row("Defaulted Items", str(report.defaulted_items))
        summary_table.add_row("Duplicate Results", str(report.duplicate_results))
        summary_table.add_row("Prompt Tokens", f"{report.usage.prompt_tokens:,}")
        summary_table.add_row("Completion Tokens", f"{report.usage.completion_tokens:,}")
        summary_table.add_row("Total Tokens", f"{report.usage.total_tokens:,}")
        summary_table.add_row("Estimated Cost", f"${report.usage.total_cost:.4f}")
    if ctx.upsert_result is not None:
        summary_table.add_row("Exercises Upserted", str(ctx.upsert_result.upserted))
        summary_table.add_row("Exercise Chunk Errors", str(ctx.upsert_result.errors))
    if ctx.lexicon_result is not None:
        summary_table.add_row("Lexicon Terms Upserted", str(ctx.lexicon_result.upserted))
        summary_table.add_row("Lexicon Chunk Errors", str(ctx.lexicon_result.errors))
    summary_table.add_row("Processing Time", time_formatted)

    console.print(summary_table)
    console.print()


def display_error(title: str, message: str) -> None:
    """Display an error panel."""
    console.print()
    console.print(
        Panel(
            message,
            title=f"[bold red]{title}[/bold red]",
            border_style="red",
        )
    )
    console.print()


async def run_pipeline(
    pipeline: EnrichmentPipeline, ctx: PipelineContext, factory: ServiceFactory
) -> None:
    """Run pipeline stages one by one with a progress bar per stage."""
    for i, stage in enumerate(pipeline.stages, 1):
        display_phase(i, stage.name)
        logging.info(f"PHASE {i}: {stage.name}")

        with create_progress() as progress:
            task: TaskID = progress.add_task(f"{stage.name}...", total=None)

            def on_progress(_stage: str, current: int, total: int, task: TaskID = task) -> None:
                progress.update(task, completed=current, total=total)

            ctx.progress_callback = on_progress
            await stage.execute(ctx, factory)
            progress.update(task, completed=1, total=1)

        display_stage_result(stage.name, ctx)


async def main_async(argv: Sequence[str] | None = None) -> None:
    """Parse arguments, build the pipeline for the subcommand and run it."""
    load_dotenv()
    args = parse_args(argv)
    setup_logging(args.log_file, verbose=args.verbose)
    start_time = time.time()

    config = build_config(args)
    factory = ServiceFactory(config=config)
    pipeline = PIPELINES[args.command]()
    ctx = PipelineContext(
        config=config,
        stem=args.stem,
        snapshot_path=Path(args.snapshot) if getattr(args, "snapshot", None) else None,
    )

    logging.info("=" * 80)
    logging.info(f"Command: {args.command}")
    logging.info(f"Config: {config.to_dict()}")
    logging.info("=" * 80)

    display_header(args.command, config)

    try:
        await run_pipeline(pipeline, ctx, factory)
    finally:
        await factory.aclose()

    elapsed_time = time.time() - start_time
    logging.info(f"COMPLETE in {elapsed_time:.1f}s")
    display_summary(ctx, elapsed_time)


def main(argv: Sequence[str] | None = None) -> None:
    """Entry point for the exicon-enrich command."""
    try:
        asyncio.run(main_async(argv))
    except KeyboardInterrupt:
        console.print()
        console.print(
            Panel(
                "[yellow]Processing interrupted by user[/yellow]\n\n"
                "[dim]Snapshots written so far are kept in the data directory.[/dim]",
                title="[bold yellow]Interrupted[/bold yellow]",
                border_style="yellow",
            )
        )
        console.print()
    except ExiconEnricherError as e:
        display_error(type(e).__name__, f"{e!s}\n\n[dim]See {DEFAULT_LOG_FILE} for details.[/dim]")
        logging.exception("Run aborted")
        raise SystemExit(1) from e
    except Exception as e:  # Intentional catch-all for CLI entry point
        display_error(
            "Error",
            f"[bold red]An unexpected error occurred:[/bold red]\n\n{e!s}\n\n"
            f"[dim]Check {DEFAULT_LOG_FILE} for detailed error information.[/dim]",
        )
        logging.exception("Unexpected error during processing")
        raise


if __name__ == "__main__":
    main()
