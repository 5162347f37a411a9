#!/usr/bin/env python
"""Rebuild or incrementally update the aggregated fighter and club records."""
from __future__ import annotations

import argparse
import asyncio
import sys
from datetime import UTC, datetime

from dotenv import load_dotenv
from rich.console import Console
from rich.table import Table

load_dotenv()

from records_engine.db.connection import dispose_engine, get_engine, get_session_factory
from records_engine.db.repositories import SqlDocumentStore, SqlEventSource
from records_engine.errors import RecordsEngineError
from records_engine.monitoring import get_query_stats
from records_engine.schemas.control import EventStatusReport, RecordTarget, RunReport
from records_engine.services.merge_controller import MergeController
from records_engine.services.run_lock import close_redis, get_run_lock
from records_engine.settings import configure_logging, get_settings

console = Console()

_TARGET_CHOICES = [target.value for target in RecordTarget] + ["all"]


def _parse_now(value: str | None) -> datetime | None:
    if value is None:
        return None
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed


def _targets(value: str) -> list[RecordTarget]:
    if value == "all":
        return list(RecordTarget)
    return [RecordTarget(value)]


def _print_report(report: RunReport) -> None:
    table = Table(title=f"{report.target.value} ({report.mode})", show_header=False)
    table.add_column("Metric", style="cyan")
    table.add_column("Value", justify="right")
    table.add_row("Events processed", str(report.events_processed))
    table.add_row("Events skipped", str(report.events_skipped))
    table.add_row("Records written", str(report.records_written))
    table.add_row("Skipped raw records", str(report.skipped_records))
    if report.target is RecordTarget.CLUBS:
        table.add_row("Skipped club names", str(report.skipped_clubs))
    if report.years:
        table.add_row("Years", ", ".join(report.years))
    console.print(table)
    for message in report.messages:
        console.print(f"[yellow]{message}[/yellow]")



def _print_event_status(status: EventStatusReport) -> None:
    table = Table(title=f"{status.target.value} recent events", show_header=False)
    table.add_column("Metric", style="cyan")
    table.add_column("Value", justify="right")
    table.add_row("Checked", str(status.total))
    table.add_row("Processed", str(status.processed))
    table.add_row("Ready to process", str(len(status.unprocessed_with_results)))
    table.add_row("Awaiting results", str(len(status.needs_results)))
    console.print(table)
    for event in status.needs_results:
        console.print(f"[yellow]  {event.date.isoformat()} {event.event_id} {event.name}[/yellow]")


async def main(args: argparse.Namespace) -> int:
    settings = get_settings()
    for warning in settings.optional_config_warnings():
        console.print(f"[yellow]⚠ {warning}[/yellow]")

    session_factory = get_session_factory()
    controller = MergeController(
        source=SqlEventSource(session_factory),
        store=SqlDocumentStore(session_factory),
        run_lock=await get_run_lock(settings),
        settings=settings,
        progress=lambda message: console.print(f"[dim]{message}[/dim]"),
    )
    now = _parse_now(args.now)

    try:
        for target in _targets(args.target):
            if args.command == "status":
                state, metadata = await controller.describe(target, now=now)
                console.print(f"[bold]{target.value}[/bold]: {state.value}")
                if metadata is not None:
                    console.print_json(metadata.model_dump_json())
                _print_event_status(await controller.event_status(target, limit=args.limit))
                continue

            if args.command == "run":
                report = await controller.run(target, now=now)
            elif args.command == "event":
                report = await controller.process_event(target, args.event_id, now=now)
            else:
                report = await controller.process_pending(target, now=now)
            _print_report(report)
    except RecordsEngineError as exc:
        retry_hint = "retry the failed unit" if exc.retryable else "manual action required"
        console.print(f"[red]✗ {exc.error_type.value}: {exc} ({retry_hint})[/red]")
        return 1
    finally:
        stats = get_query_stats(get_engine())
        if stats is not None and stats.statements:
            console.print(
                f"[dim]{stats.statements} statements, {stats.slow_statements} slow, "
                f"{stats.total_seconds:.2f}s total[/dim]"
            )
        await close_redis()
        await dispose_engine()

    console.print("[bold green]Done.[/bold green]")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument(
        "--target",
        choices=_TARGET_CHOICES,
        default="all",
        help="Record family to process (default: all)",
    )
    parser.add_argument(
        "--now",
        help="Override the current time (ISO 8601), e.g. to replay a year boundary",
    )
    subcommands = parser.add_subparsers(dest="command", required=True)
    subcommands.add_parser("run", help="Rebuild the baseline if needed, then merge the current year")
    event_parser = subcommands.add_parser("event", help="Fold a single event onto the current records")
    event_parser.add_argument("event_id")
    subcommands.add_parser("pending", help="Fold current-year events missing from the ledger")
    status_parser = subcommands.add_parser(
        "status", help="Show the baseline state and recent event status of each target"
    )
    status_parser.add_argument(
        "--limit", type=int, default=100, help="Number of recent events to check (default: 100)"
    )
    return parser


if __name__ == "__main__":
    configure_logging()
    sys.exit(asyncio.run(main(build_parser().parse_args())))
