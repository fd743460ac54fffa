"""CLI interface for fusion-export using Typer.

This module provides the main entry point for the fusion-export tool, with
commands for running an export and checking the configuration.
"""

from __future__ import annotations

import asyncio
import os
import sys
from pathlib import Path
from typing import Optional

import typer
from dotenv import load_dotenv
from rich.console import Console
from rich.live import Live
from rich.table import Table

from .core.export_log import ExportLog
from .core.models import AuthContext, ExportJob, ExportStatus, TableDescriptor, TableExportResult
from .core.errors import ExportSetupError
from .core.orchestrator import Exporter, ExporterConfig
from .services.base import LoggingErrorReporter
from .services.fusiontables import FusionTablesClient
from .services.google_drive import GoogleDriveStore
from .utils.logging import mask_sensitive_data, setup_logging
from .utils.retry import RetryPolicy
from .utils.tables_file import parse_tables_file

# Load .env file if present
load_dotenv()

app = typer.Typer(
    name="fusion-export",
    help="Export Fusion Tables to Google Drive and record them in an archive index sheet.",
    add_completion=False,
)

console = Console()

# Seconds between two progress polls
POLL_INTERVAL = 4.0


def _format_status(status: ExportStatus) -> str:
    """Format status with color for rich output."""
    color_map = {
        ExportStatus.SUCCESS: "green",
        ExportStatus.ERROR: "red",
        ExportStatus.LOADING: "yellow",
    }
    color = color_map.get(status, "white")
    return f"[{color}]{status.value}[/{color}]"


def _format_size(size_mb: Optional[float]) -> str:
    if size_mb is None:
        return ""
    return f"~{size_mb:g} MB"


def _build_progress_table(
    tables: list[TableDescriptor],
    results: dict[str, TableExportResult],
) -> Table:
    """Render the current state of every table of an export."""
    table = Table(title="Export Progress")
    table.add_column("#", justify="right")
    table.add_column("Table", style="cyan", max_width=40)
    table.add_column("Status")
    table.add_column("Size", justify="right")
    table.add_column("Drive file", max_width=50)
    table.add_column("Error", style="red", max_width=40)

    for index, descriptor in enumerate(tables, start=1):
        result = results.get(descriptor.id)
        if result is None:
            table.add_row(str(index), descriptor.name, _format_status(ExportStatus.LOADING), "", "", "")
            continue
        table.add_row(
            str(index),
            descriptor.name,
            _format_status(result.status),
            _format_size(result.file_size) if result.is_terminal else "",
            result.drive_file.link if result.drive_file else "",
            result.error or "",
        )
    return table


async def _run_export(exporter: Exporter, job: ExportJob) -> dict[str, TableExportResult]:
    """Start an export and poll its progress until every table finished."""
    folder_id = await exporter.start_export(job)
    console.print(f"Exporting into Drive folder [cyan]{folder_id}[/cyan]\n")

    results: dict[str, TableExportResult] = {}
    with Live(_build_progress_table(list(job.tables), results), console=console) as live:
        while len(results) < len(job.tables):
            for result in exporter.get_updates(job.export_id):
                results[result.table_id] = result
            live.update(_build_progress_table(list(job.tables), results))
            if len(results) < len(job.tables):
                await asyncio.sleep(POLL_INTERVAL)

    await exporter.wait_for_export(job.export_id)
    return results


@app.command()
def run(
    tables_file: Path = typer.Option(
        ...,
        "--tables",
        "-t",
        help="File listing the tables to export (JSON, or one table id per line)",
    ),
    access_token: str = typer.Option(
        ...,
        "--access-token",
        envvar="GOOGLE_ACCESS_TOKEN",
        help="OAuth access token with Fusion Tables and Drive scopes",
    ),
    archive_folder: str = typer.Option(
        "Fusion Tables Archive",
        "--archive-folder",
        "-a",
        envvar="FUSION_EXPORT_ARCHIVE_FOLDER",
        help="Name of the Drive folder holding all exports",
    ),
    max_attempts: int = typer.Option(
        5,
        "--max-attempts",
        envvar="FUSION_EXPORT_MAX_ATTEMPTS",
        help="Maximum attempts per service call",
    ),
    log_dir: Optional[Path] = typer.Option(
        None,
        "--log-dir",
        help="Directory for log files",
    ),
    verbose: bool = typer.Option(
        False,
        "--verbose",
        "-v",
        help="Enable verbose logging",
    ),
) -> None:
    """
    Export the listed tables to Google Drive.

    Example:
        fusion-export run --tables tables.txt --access-token ya29...
    """
    try:
        tables = parse_tables_file(tables_file)
    except (FileNotFoundError, ValueError) as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1)

    if not tables:
        console.print("[yellow]No tables to export.[/yellow]")
        raise typer.Exit(0)

    logger = setup_logging(log_dir, verbose=verbose)

    try:
        config = ExporterConfig.from_env()
    except ValueError as e:
        console.print(f"[red]Invalid configuration:[/red] {e}")
        raise typer.Exit(1)
    config.archive_folder_name = archive_folder
    config.retry_policy = RetryPolicy(max_attempts=max_attempts)

    console.print("\n[bold cyan]Export Configuration[/bold cyan]")
    console.print(f"  Tables file:     {tables_file} ({len(tables)} table(s))")
    console.print(f"  Archive folder:  {config.archive_folder_name}")
    console.print(f"  Index sheet:     {config.index_sheet_name}")
    console.print(f"  Max attempts:    {max_attempts}")
    console.print(f"  Access token:    {mask_sensitive_data(access_token)}")
    console.print()

    exporter = Exporter(
        table_source=FusionTablesClient(logger=logger.getChild("fusiontables")),
        store=GoogleDriveStore(logger=logger.getChild("drive")),
        export_log=ExportLog(logger.getChild("export_log")),
        error_reporter=LoggingErrorReporter(logger.getChild("errors")),
        config=config,
        logger=logger,
    )
    job = ExportJob.create(tables, AuthContext(access_token))

    try:
        results = asyncio.run(_run_export(exporter, job))
    except KeyboardInterrupt:
        console.print("\n[yellow]Export interrupted by user.[/yellow]")
        raise typer.Exit(130)
    except ExportSetupError as e:
        console.print(f"[red]Export could not start:[/red] {e}")
        raise typer.Exit(1)

    succeeded = sum(1 for r in results.values() if r.status == ExportStatus.SUCCESS)
    failed = sum(1 for r in results.values() if r.status == ExportStatus.ERROR)

    console.print("\n[bold cyan]Export Summary[/bold cyan]")
    console.print(f"  Export id:     {job.export_id}")
    console.print(f"  Total tables:  {len(tables)}")
    console.print(f"  Succeeded:     [green]{succeeded}[/green]")
    console.print(f"  Failed:        [red]{failed}[/red]")
    console.print()

    if failed > 0:
        console.print("[yellow]Some tables failed. See the log for details.[/yellow]")
        raise typer.Exit(1)
    console.print("[green]All tables exported successfully![/green]")


@app.command()
def check() -> None:
    """
    Check dependencies and configuration.

    Verifies:
    - Python version
    - Required packages
    - Access token environment variable
    - Exporter settings read from the environment
    """
    table = Table(title="System Check")
    table.add_column("Component", style="cyan")
    table.add_column("Status")
    table.add_column("Details")

    all_ok = True

    py_version = sys.version_info
    py_ok = py_version >= (3, 10)
    table.add_row(
        "Python",
        "[green]OK[/green]" if py_ok else "[red]FAIL[/red]",
        f"{py_version.major}.{py_version.minor}.{py_version.micro}",
    )
    if not py_ok:
        all_ok = False

    packages = {
        "typer": "typer",
        "rich": "rich",
        "python-dotenv": "dotenv",
        "google-api-python-client": "googleapiclient",
        "google-auth": "google.auth",
    }
    for pkg, module in packages.items():
        try:
            __import__(module)
            table.add_row(f"Package: {pkg}", "[green]OK[/green]", "Installed")
        except ImportError:
            table.add_row(f"Package: {pkg}", "[red]FAIL[/red]", "Not installed")
            all_ok = False

    token = os.environ.get("GOOGLE_ACCESS_TOKEN")
    if token:
        table.add_row("GOOGLE_ACCESS_TOKEN", "[green]OK[/green]", f"Set ({mask_sensitive_data(token)})")
    else:
        table.add_row(
            "GOOGLE_ACCESS_TOKEN",
            "[yellow]WARN[/yellow]",
            "Not set - pass --access-token to 'run'",
        )

    try:
        config = ExporterConfig.from_env()
        table.add_row(
            "Configuration",
            "[green]OK[/green]",
            f"archive={config.archive_folder_name!r}, "
            f"fetch_concurrency={config.fetch_concurrency}, "
            f"max_attempts={config.retry_policy.max_attempts}",
        )
    except ValueError as e:
        table.add_row("Configuration", "[red]FAIL[/red]", str(e))
        all_ok = False

    console.print(table)

    if all_ok:
        console.print("\n[bold green]All checks passed![/bold green]")
    else:
        console.print("\n[bold yellow]Some checks failed or have warnings.[/bold yellow]")
        raise typer.Exit(1)


def main() -> None:
    """Main entry point for the CLI."""
    app()


if __name__ == "__main__":
    main()
