"""Tests for the command line interface."""

from typer.testing import CliRunner

from fusion_export.cli import _build_progress_table, _format_size, app
from fusion_export.core.models import TableDescriptor, TableExportResult

runner = CliRunner()


def test_run_with_missing_tables_file(tmp_path):
    result = runner.invoke(
        app, ["run", "--tables", str(tmp_path / "missing.txt"), "--access-token", "ya29.token"]
    )

    assert result.exit_code == 1
    assert "Tables file not found" in result.output


def test_run_with_empty_tables_file(tmp_path):
    path = tmp_path / "tables.txt"
    path.write_text("# nothing yet\n", encoding="utf-8")

    result = runner.invoke(app, ["run", "--tables", str(path), "--access-token", "ya29.token"])

    assert result.exit_code == 0
    assert "No tables to export" in result.output


def test_max_attempts_read_from_environment(tmp_path):
    path = tmp_path / "tables.txt"
    path.write_text("tableAAAAAAAA\n", encoding="utf-8")

    result = runner.invoke(
        app,
        ["run", "--tables", str(path), "--access-token", "ya29.token"],
        env={"FUSION_EXPORT_MAX_ATTEMPTS": "many"},
    )

    assert result.exit_code == 2


def test_invalid_fetch_concurrency(tmp_path):
    path = tmp_path / "tables.txt"
    path.write_text("tableAAAAAAAA\n", encoding="utf-8")

    result = runner.invoke(
        app,
        ["run", "--tables", str(path), "--access-token", "ya29.token", "--log-dir", str(tmp_path)],
        env={"FUSION_EXPORT_FETCH_CONCURRENCY": "0"},
    )

    assert result.exit_code == 1
    assert "fetch_concurrency" in result.output


def test_progress_table_rows():
    tables = [
        TableDescriptor(id="tableAAAAAAAA", name="A"),
        TableDescriptor(id="tableBBBBBBBB", name="B"),
    ]
    results = {"tableBBBBBBBB": TableExportResult.failure(tables[1], "boom", file_size=4.0)}

    table = _build_progress_table(tables, results)

    assert table.row_count == 2


def test_format_size():
    assert _format_size(None) == ""
    assert _format_size(8.0) == "~8 MB"
