"""
CLI Interface
=============
Command-line interface for the shift indexer and resolver.

Usage:
    python -m shiftbook.cli index <pdf_path> [options]
    python -m shiftbook.cli batch <directory> [options]
    python -m shiftbook.cli lookup <identifier> [--date dd-mm-yyyy]
    python -m shiftbook.cli shifts [--date dd-mm-yyyy]
    python -m shiftbook.cli stats [--date dd-mm-yyyy]
    python -m shiftbook.cli tokens <pdf_path> --page N
    python -m shiftbook.cli info <pdf_path>
"""

from __future__ import annotations

import json
import os
import sys
from pathlib import Path

import click
from rich.console import Console
from rich.panel import Panel
from rich.progress import (
    BarColumn,
    MofNCompleteColumn,
    Progress,
    SpinnerColumn,
    TextColumn,
    TimeElapsedColumn,
    TimeRemainingColumn,
)
from rich.table import Table

from . import __version__
from .columns import OffsetMode, classify_token, margin_offset, page_offset
from .errors import DocumentOpenError, PrefixMismatch, ShiftNotFound
from .indexer import IndexerConfig, ShiftIndexer, setup_logging
from .models import format_date, parse_date
from .resolver import TimetableResolver
from .statistics import StatisticsEngine
from .store import TimetableStore
from .token_extractor import PageStreamReader, extract_tokens

console = Console()


class DateParam(click.ParamType):
    """A dd-mm-yyyy date."""
    name = "dd-mm-yyyy"

    def convert(self, value, param, ctx):
        if value is None or not isinstance(value, str):
            return value
        try:
            return parse_date(value)
        except ValueError:
            self.fail(f"{value!r} is not a dd-mm-yyyy date", param, ctx)


DATE = DateParam()

collection_dir_option = click.option(
    "--collection-dir", "-c",
    default=None,
    help="Directory holding the timetable collections",
)


@click.group()
@click.version_option(version=__version__, prog_name="shiftbook")
def cli():
    """Shiftbook: shift-book PDF indexer and timetable resolver."""
    pass


@cli.command()
@click.argument("pdf_path", type=click.Path(exists=True))
@collection_dir_option
@click.option(
    "--offset-mode",
    default=OffsetMode.PARITY.value,
    type=click.Choice([m.value for m in OffsetMode]),
    help="How the horizontal column offset of a page is chosen",
)
@click.option(
    "--flush-trailing-row",
    is_flag=True,
    default=False,
    help="Also keep the last table row of a page",
)
@click.option(
    "--valid-from",
    default=None,
    type=DATE,
    help="Starting date for pages without an 'Ingangsdatum'",
)
@click.option(
    "--page-start",
    default=None,
    type=int,
    help="Start page (1-indexed)",
)
@click.option(
    "--page-end",
    default=None,
    type=int,
    help="End page (1-indexed, inclusive)",
)
@click.option(
    "--log-level",
    default="INFO",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"]),
    help="Logging level",
)
@click.option(
    "--log-file",
    default=None,
    help="Path to log file",
)
@click.option(
    "--json-output",
    is_flag=True,
    default=False,
    help="Output only the JSON result to stdout",
)
def index(
    pdf_path: str,
    collection_dir: str,
    offset_mode: str,
    flush_trailing_row: bool,
    valid_from,
    page_start: int,
    page_end: int,
    log_level: str,
    log_file: str,
    json_output: bool,
):
    """Index a shift-book PDF into the timetable collections."""

    if json_output:
        log_level = "ERROR"

    page_range = None
    if page_start is not None or page_end is not None:
        page_range = (page_start or 1, page_end or 99999)

    config = IndexerConfig(
        collection_dir=collection_dir,
        offset_mode=OffsetMode(offset_mode),
        flush_trailing_row=flush_trailing_row,
        default_date=valid_from,
        page_range=page_range,
        log_level=log_level,
        log_file=log_file,
    )

    if not json_output:
        console.print()
        console.print(
            Panel.fit(
                f"[bold cyan]Shiftbook Indexer v{__version__}[/]\n"
                f"[dim]Indexing: {os.path.basename(pdf_path)}[/]",
                border_style="cyan",
            )
        )
        console.print()

    try:
        indexer = ShiftIndexer(config)

        if json_output:
            result = indexer.index(pdf_path)
            print(json.dumps(result.model_dump(), indent=2, ensure_ascii=False))
            return

        with Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            BarColumn(),
            MofNCompleteColumn(),
            TimeElapsedColumn(),
            console=console,
        ) as progress:
            task = progress.add_task("Parsing pages...", total=None)

            def on_page(current, total):
                progress.update(task, completed=current, total=total)

            result = indexer.index(pdf_path, progress_callback=on_page)

        _display_index_result(result)

    except DocumentOpenError as e:
        console.print(f"[red]Error:[/] {e}")
        sys.exit(1)
    except Exception as e:
        console.print(f"[red]Unexpected error:[/] {e}")
        if log_level == "DEBUG":
            console.print_exception()
        sys.exit(1)


@cli.command()
@click.argument("directory", type=click.Path(exists=True))
@collection_dir_option
@click.option("--log-level", default="WARNING", help="Logging level")
@click.option(
    "--parallel", "-j",
    default=1,
    type=int,
    help="Number of documents indexed in parallel",
)
def batch(directory: str, collection_dir: str, log_level: str, parallel: int):
    """Index all PDFs in a directory."""

    pdf_files = sorted(Path(directory).glob("*.pdf"))

    if not pdf_files:
        console.print(f"[yellow]No PDF files found in: {directory}[/]")
        return

    console.print()
    console.print(
        Panel.fit(
            f"[bold cyan]Batch Shift Indexer[/]\n"
            f"[dim]Found {len(pdf_files)} PDFs in: {directory}[/]",
            border_style="cyan",
        )
    )
    console.print()

    indexer = ShiftIndexer(IndexerConfig(
        collection_dir=collection_dir, log_level=log_level
    ))

    with Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        BarColumn(),
        MofNCompleteColumn(),
        TimeRemainingColumn(),
        console=console,
    ) as progress:
        task = progress.add_task("Indexing PDFs...", total=len(pdf_files))
        results, errors = indexer.index_many(
            [str(p) for p in pdf_files], parallel=parallel
        )
        progress.update(task, completed=len(pdf_files))

    _display_batch_summary(results, errors)


@cli.command()
@click.argument("identifier")
@collection_dir_option
@click.option("--date", "on", default=None, type=DATE, help="Lookup date")
def lookup(identifier: str, collection_dir: str, on):
    """Show which timetable serves a shift."""
    setup_logging("WARNING")
    resolver = TimetableResolver(TimetableStore(collection_dir))

    try:
        location = resolver.lookup(identifier, on)
    except (ShiftNotFound, PrefixMismatch) as e:
        console.print(f"[red]{e.message}[/]")
        sys.exit(1)

    table = Table(title=f"Shift {location.identifier}", border_style="cyan")
    table.add_column("Property", style="bold")
    table.add_column("Value")
    table.add_row("Timetable", format_date(location.collection.valid_from))
    table.add_row("Source PDF", location.source_path or "(unknown)")
    table.add_row("Pages", ", ".join(str(p) for p in location.shift_data.pages))
    console.print(table)

    try:
        shift = resolver.load_shift(location)
    except FileNotFoundError:
        console.print("[yellow]No parsed body stored for this shift[/]")
        return

    _display_shift(shift)


@cli.command()
@collection_dir_option
@click.option("--date", "on", default=None, type=DATE, help="Lookup date")
def shifts(collection_dir: str, on):
    """List every shift reachable on a date."""
    setup_logging("WARNING")
    resolver = TimetableResolver(TimetableStore(collection_dir))

    table = Table(title="Valid Shifts", border_style="cyan")
    table.add_column("Shift", style="bold")
    table.add_column("Timetable")
    for shift in resolver.valid_shifts(on):
        table.add_row(shift.shift_number, format_date(shift.valid_from))
    console.print(table)


@cli.command()
@collection_dir_option
@click.option("--date", "on", default=None, type=DATE, help="Lookup date")
def stats(collection_dir: str, on):
    """Display collection statistics."""
    setup_logging("WARNING")
    store = TimetableStore(collection_dir)
    report = StatisticsEngine(store, TimetableResolver(store)).build(on)

    table = Table(title="Statistics", border_style="green")
    table.add_column("Metric", style="bold")
    table.add_column("Value", justify="right")
    table.add_row("Timetables", str(report.timetables))
    table.add_row("Active Timetables", str(report.active_timetables))
    table.add_row("Future Timetables", str(report.future_timetables))
    table.add_row("Shifts", str(report.shifts))
    table.add_row("Active Shifts", str(report.active_shifts))
    table.add_row("Inactive Shifts", str(report.inactive_shifts))
    table.add_row("Reachable Shifts", str(report.valid_shifts))
    table.add_row("Recent Timetable", report.recent_timetable or "-")
    table.add_row("Next Timetable", report.next_timetable or "-")
    table.add_row("Shifts With Errors", str(len(report.errored_shifts)))
    console.print(table)

    for path in report.errored_shifts:
        console.print(f"[yellow]⚠[/] {path}")


@cli.command()
@click.argument("pdf_path", type=click.Path(exists=True))
@click.option(
    "--page", "-p",
    required=True,
    type=click.IntRange(min=1),
    help="Page (1-indexed)",
)
@click.option(
    "--offset-mode",
    default=OffsetMode.PARITY.value,
    type=click.Choice([m.value for m in OffsetMode]),
    help="How the horizontal column offset of the page is chosen",
)
def tokens(pdf_path: str, page: int, offset_mode: str):
    """Dump the positioned tokens of one page."""
    try:
        stream = PageStreamReader(pdf_path).read_page(page)
    except (DocumentOpenError, IndexError) as e:
        console.print(f"[red]Error:[/] {e}")
        sys.exit(1)

    page_tokens, errors = extract_tokens(stream, page)
    if OffsetMode(offset_mode) == OffsetMode.MARGIN:
        offset = margin_offset(page_tokens)
    else:
        offset = page_offset(page - 1)

    table = Table(title=f"Page {page} (offset {offset})", border_style="cyan")
    table.add_column("Text", style="bold")
    table.add_column("X", justify="right")
    table.add_column("Y", justify="right")
    table.add_column("Column")
    for token in page_tokens:
        column = classify_token(token, offset)
        table.add_row(
            token.text,
            f"{token.x:.1f}",
            f"{token.y:.1f}",
            column.value if column else "-",
        )
    console.print(table)

    for error in errors:
        console.print(f"[red]✗[/] {error.message}")


@cli.command()
@click.argument("pdf_path", type=click.Path(exists=True))
def info(pdf_path: str):
    """Display PDF file information."""

    import fitz

    doc = fitz.open(pdf_path)

    console.print()
    table = Table(title="PDF Information", border_style="cyan")
    table.add_column("Property", style="bold")
    table.add_column("Value")

    table.add_row("File", os.path.basename(pdf_path))
    table.add_row("Pages", str(doc.page_count))
    table.add_row(
        "File Size",
        f"{os.path.getsize(pdf_path) / 1024 / 1024:.2f} MB",
    )

    metadata = doc.metadata or {}
    for key in ["title", "author", "subject", "creator", "producer"]:
        val = metadata.get(key, "")
        if val:
            table.add_row(key.title(), val)

    doc.close()
    console.print(table)
    console.print()


@cli.command()
@click.option("--host", default="0.0.0.0", help="Server host")
@click.option("--port", default=5000, type=int, help="Server port")
@click.option("--debug", is_flag=True, default=False, help="Debug mode")
@collection_dir_option
def serve(host: str, port: int, debug: bool, collection_dir: str):
    """Start the HTTP server."""
    from .server import run_server

    console.print()
    console.print(
        Panel.fit(
            f"[bold cyan]Shiftbook Server[/]\n"
            f"[dim]Starting on {host}:{port}[/]",
            border_style="cyan",
        )
    )
    console.print()

    run_server(host=host, port=port, debug=debug, collection_dir=collection_dir)


# ─── Display Helpers ──────────────────────────────────────────────────────────


def _display_index_result(result):
    console.print()

    table = Table(title="Index Result", border_style="cyan")
    table.add_column("Property", style="bold")
    table.add_column("Value")
    table.add_row("Source PDF", os.path.basename(result.source_pdf))
    table.add_row("Total Pages", str(result.total_pages))
    table.add_row("Parsed Pages", str(result.parsed_pages))
    table.add_row("Skipped Pages", str(len(result.skipped_pages)))
    table.add_row("Shifts", str(result.shift_count))
    table.add_row(
        "Shifts With Errors",
        f"[red]{result.error_count}[/]" if result.error_count else "0",
    )
    table.add_row("Merge Conflicts", str(len(result.conflicts)))
    console.print(table)
    console.print()

    if result.collections:
        collections = Table(title="Collections", border_style="green")
        collections.add_column("Valid From", style="bold")
        collections.add_column("File Id", justify="right")
        collections.add_column("Shifts", justify="right")
        for summary in result.collections:
            collections.add_row(
                format_date(summary.valid_from),
                str(summary.file_id),
                str(summary.shift_count),
            )
        console.print(collections)
        console.print()


def _display_shift(shift):
    table = Table(
        title=f"Dienst {shift.shift_number} ({shift.valid_on.value})",
        border_style="green",
    )
    table.add_column("Job", style="bold")
    table.add_column("Cycle", justify="right")
    table.add_column("Trip", justify="right")
    table.add_column("Start")
    table.add_column("From")
    table.add_column("To")
    table.add_column("End")

    for job in shift.jobs:
        job_type = job.job_type
        label = job_type.kind.value
        if job_type.line is not None:
            label = f"line {job_type.line}"
        elif job_type.drive_type is not None:
            label = job_type.drive_type.value.upper()
        elif job_type.message is not None:
            label = job_type.message.text

        table.add_row(
            label,
            _number(job.cycle),
            _number(job.trip),
            job.start.strftime("%H:%M") if job.start else "",
            job.start_location or "",
            job.end_location or "",
            job.end.strftime("%H:%M") if job.end else "",
        )

    console.print(table)
    for error in shift.parse_errors or []:
        console.print(f"[red]✗[/] {error.message}")


def _number(value) -> str:
    return "" if value is None else str(value)


def _display_batch_summary(results, errors):
    console.print()

    table = Table(title="Batch Indexing Summary", border_style="cyan")
    table.add_column("PDF", style="bold")
    table.add_column("Shifts", justify="right")
    table.add_column("Errors", justify="right")
    table.add_column("Status", justify="center")

    total_shifts = 0
    for result in results:
        total_shifts += result.shift_count
        status = "[green]✓[/]" if not result.error_count else "[yellow]⚠[/]"
        table.add_row(
            os.path.basename(result.source_pdf),
            str(result.shift_count),
            str(result.error_count),
            status,
        )

    for name, error in errors:
        table.add_row(os.path.basename(name), "-", "-", "[red]✗ FAILED[/]")

    console.print(table)
    console.print()
    console.print(
        f"[bold]Total:[/] {total_shifts} shifts from "
        f"{len(results)} PDFs, {len(errors)} failures"
    )
    console.print()


if __name__ == "__main__":
    cli()
