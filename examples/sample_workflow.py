#!/usr/bin/env python3
"""
Example: Using fusion_export programmatically.

This script demonstrates how to use the fusion_export library
directly in Python code instead of via CLI.

This is useful when you want to:
- Start exports from a larger workflow or a web handler
- Poll progress with your own rendering
- Inspect the rows written to the archive index sheet
"""

import asyncio
import os
import tempfile
from pathlib import Path

from fusion_export.core.index_sheet import DEFAULT_VISUALIZER_BASE_URI, build_table_rows
from fusion_export.core.models import (
    MIME_TYPE_SPREADSHEET,
    AuthContext,
    DriveFile,
    ExportJob,
    Style,
    TableDescriptor,
    TableExportResult,
)
from fusion_export.core.orchestrator import Exporter, ExporterConfig
from fusion_export.core.progress import ProgressPoller, ProgressStore
from fusion_export.services.fusiontables import FusionTablesClient
from fusion_export.services.google_drive import GoogleDriveStore
from fusion_export.utils.sizing import is_large, round_down_to_power_of_two
from fusion_export.utils.tables_file import parse_tables_file


def example_parse_tables_file():
    """
    Example 1: Parsing a Tables File

    Shows the plain-text format: one table id or URL per line, optional name.
    """
    print("\n=== Example 1: Parse Tables File ===\n")

    content = """# Tables to archive
1abcDEF_ghijklmnop, City parks
https://fusiontables.google.com/DataSource?docid=2zyxWVU_tsrqponml
1abcDEF_ghijklmnop, Duplicate entry (ignored)
"""

    with tempfile.NamedTemporaryFile(mode="w", suffix=".txt", delete=False) as f:
        f.write(content)
        temp_path = Path(f.name)

    try:
        for table in parse_tables_file(temp_path):
            print(f"  {table.id}  {table.name}")
            print(f"    source: {table.source_link}")
    finally:
        temp_path.unlink()


def example_index_rows():
    """
    Example 2: Index Sheet Rows

    Shows how many rows an exported table gets in the archive index.
    """
    print("\n=== Example 2: Index Sheet Rows ===\n")

    table = TableDescriptor(id="1abcDEF_ghijklmnop", name="City parks")
    drive_file = DriveFile(id="1DriveFileId", name="City parks.csv", mime_type=MIME_TYPE_SPREADSHEET)
    styles = [
        Style(id=1, definition={"markerOptions": {"iconName": "small_green"}}),
        Style(id=2, definition={"polygonOptions": {"fillColor": "#00ff00"}}),
    ]

    for has_geometry_data, table_styles in [(False, styles), (True, styles), (True, styles[:1])]:
        rows = build_table_rows(
            table,
            drive_file,
            table_styles,
            has_geometry_data=has_geometry_data,
            is_large=False,
            visualizer_base_uri=DEFAULT_VISUALIZER_BASE_URI,
            exported_at="2019-03-01T12:00:00+00:00",
        )
        print(f"  geometry={has_geometry_data}, styles={len(table_styles)} -> {len(rows)} row(s)")
        for row in rows:
            print(f"    {row[4]}")


def example_size_buckets():
    """
    Example 3: Size Classification

    Tables above 20 MB are flagged as large; sizes are bucketed for analytics.
    """
    print("\n=== Example 3: Size Buckets ===\n")

    for size_mb in [0.4, 9, 16, 20, 25]:
        print(
            f"  {size_mb:>5} MB -> bucket {round_down_to_power_of_two(size_mb):g} MB, "
            f"large={is_large(size_mb)}"
        )


def example_progress_polling():
    """
    Example 4: Progress Polling

    Shows how a poller delivers each finished table once.
    """
    print("\n=== Example 4: Progress Polling ===\n")

    store = ProgressStore()
    tables = [TableDescriptor(id=f"table{i}abcdefgh", name=f"Table {i}") for i in range(3)]
    for table in tables:
        store.record_status("demo", table.id, TableExportResult.loading(table))

    poller = ProgressPoller(store, "demo")
    print(f"  First poll: {len(poller.poll())} update(s)")

    store.record_status("demo", tables[1].id, TableExportResult.failure(tables[1], "Quota exceeded"))
    for result in poller.poll():
        print(f"  Update: {result.to_dict()}")

    print(f"  Stats: {store.get_stats('demo')}")


async def example_run_export(tables_file: Path, access_token: str):
    """
    Example 5: Running an Export

    Requires a real OAuth access token with Fusion Tables and Drive scopes.
    """
    print("\n=== Example 5: Run Export ===\n")

    exporter = Exporter(
        table_source=FusionTablesClient(),
        store=GoogleDriveStore(),
        config=ExporterConfig.from_env(),
    )
    job = ExportJob.create(parse_tables_file(tables_file), AuthContext(access_token))

    folder_id = await exporter.start_export(job)
    print(f"  Exporting {len(job.tables)} table(s) into folder {folder_id}")

    while not exporter.progress.is_complete(job.export_id):
        for result in exporter.get_updates(job.export_id):
            print(f"  {result.table_name}: {result.status.value} {result.error or ''}")
        await asyncio.sleep(2)

    for result in exporter.get_updates(job.export_id):
        print(f"  {result.table_name}: {result.status.value} {result.error or ''}")
    await exporter.wait_for_export(job.export_id)


def main():
    """Run all examples."""
    print("=" * 60)
    print("fusion_export Library Usage Examples")
    print("=" * 60)

    # Run examples that don't require network/external resources
    example_parse_tables_file()
    example_index_rows()
    example_size_buckets()
    example_progress_polling()

    # This one needs a real token and talks to Google APIs
    token = os.environ.get("GOOGLE_ACCESS_TOKEN")
    tables_file = Path("tables.txt")
    if token and tables_file.exists():
        asyncio.run(example_run_export(tables_file, token))

    print("\n" + "=" * 60)
    print("Examples completed!")
    print("=" * 60)


if __name__ == "__main__":
    main()
