"""Tests for the per-table export worker."""

import asyncio

import pytest

from fusion_export.core.export_log import EXPORT_FINISHED, TABLE_FINISHED, TABLE_STARTED
from fusion_export.core.index_sheet import IndexSheetWriter
from fusion_export.core.models import ExportStatus, Style, WorkerState
from fusion_export.core.worker import TableExportWorker
from fusion_export.services.base import FetchError, ServiceError, UploadError

MB = 1024 * 1024

GEOMETRY_CSV = b"name,geometry\npark,<Point><coordinates>1,2</coordinates></Point>\n"
STYLES = [
    Style(id=1, definition={"markerOptions": {"iconName": "red_dot"}}),
    Style(id=2, definition={"markerOptions": {"iconName": "grn_dot"}}),
]


async def build_worker(
    job,
    table_source,
    drive_store,
    progress_store,
    export_log,
    error_reporter,
    fast_retry,
    is_last=False,
):
    """Build a worker for the first table of ``job`` with a ready index sheet."""
    writer = IndexSheetWriter(drive_store, retry_policy=fast_retry)
    index_sheet = await writer.get_or_create(job.auth, "archive")
    return TableExportWorker(
        job=job,
        table=job.tables[0],
        table_index=1,
        is_last=is_last,
        folder_id="export-folder",
        index_sheet=index_sheet,
        table_source=table_source,
        store=drive_store,
        index_writer=writer,
        progress=progress_store,
        export_log=export_log,
        error_reporter=error_reporter,
        fetch_limiter=asyncio.Semaphore(1),
        retry_policy=fast_retry,
    )


@pytest.fixture
def deps(table_source, drive_store, progress_store, export_log, error_reporter, fast_retry):
    return dict(
        table_source=table_source,
        drive_store=drive_store,
        progress_store=progress_store,
        export_log=export_log,
        error_reporter=error_reporter,
        fast_retry=fast_retry,
    )


class TestWorkerSuccess:
    """Tests for a table exported end to end."""

    @pytest.mark.asyncio
    async def test_success_result(self, make_job, deps, table_source, drive_store, progress_store):
        job = make_job("tableAAAAAAAA")
        table_source.add_table(
            "tableAAAAAAAA",
            data=GEOMETRY_CSV + b"x" * (9 * MB),
            has_geometry_data=True,
            styles=STYLES,
        )
        worker = await build_worker(job, **deps)

        result = await worker.run()

        assert result.status == ExportStatus.SUCCESS
        assert result.file_size == 8.0
        assert result.is_large is False
        assert result.has_geometry_data is True
        assert result.styles == tuple(style.hash for style in STYLES)
        assert result.drive_file == drive_store.uploads[0][1]
        assert drive_store.uploads[0][0] == "export-folder"
        assert progress_store.get(job.export_id, "tableAAAAAAAA") == result
        assert worker.state == WorkerState.SUCCEEDED

    @pytest.mark.asyncio
    async def test_index_rows_and_permissions(self, make_job, deps, table_source, drive_store):
        job = make_job("tableAAAAAAAA")
        table_source.add_table("tableAAAAAAAA", data=GEOMETRY_CSV, has_geometry_data=True, styles=STYLES)
        worker = await build_worker(job, **deps)

        result = await worker.run()

        (spreadsheet_id,) = drive_store.spreadsheets
        rows = drive_store.rows(spreadsheet_id)[1:]
        assert len(rows) == len(STYLES)
        assert drive_store.permissions[result.drive_file.id] == list(job.tables[0].permissions)

    @pytest.mark.asyncio
    async def test_large_table(self, make_job, deps, table_source, drive_store):
        job = make_job("tableAAAAAAAA")
        table_source.add_table("tableAAAAAAAA", data=b"x" * (25 * MB), has_geometry_data=True)
        worker = await build_worker(job, **deps)

        result = await worker.run()

        assert result.is_large is True
        assert result.file_size == 16.0
        (spreadsheet_id,) = drive_store.spreadsheets
        assert "&large=true" in drive_store.rows(spreadsheet_id)[1][4]

    @pytest.mark.asyncio
    async def test_lifecycle_events(self, make_job, deps, table_source, events):
        job = make_job("tableAAAAAAAA")
        table_source.add_table("tableAAAAAAAA")
        worker = await build_worker(job, **deps)

        await worker.run()

        assert [e.name for e in events] == [TABLE_STARTED, TABLE_FINISHED]
        assert events[1].fields["status"] == "success"
        assert events[1].fields["table_index"] == 1


class TestWorkerFailure:
    """Tests for errors contained to a single table."""

    @pytest.mark.asyncio
    async def test_upload_failure_keeps_partial_telemetry(
        self, make_job, deps, table_source, drive_store, error_reporter, events
    ):
        job = make_job("tableAAAAAAAA")
        table_source.add_table("tableAAAAAAAA", data=b"y" * (5 * MB), has_geometry_data=True)
        drive_store.failures.add(
            ("upload", "Table tableAAAAAAAA.csv"),
            UploadError("quota exceeded", status_code=403, retryable=False),
        )
        worker = await build_worker(job, **deps)

        result = await worker.run()

        assert result.status == ExportStatus.ERROR
        assert "quota exceeded" in result.error
        assert result.file_size == 4.0
        assert result.has_geometry_data is True
        assert result.drive_file is None
        assert worker.state == WorkerState.FAILED
        assert events[-1].name == TABLE_FINISHED
        assert events[-1].fields["status"] == "error"

        (error, context), = error_reporter.reports
        assert isinstance(error, UploadError)
        assert context["table_id"] == "tableAAAAAAAA"
        assert context["export_id"] == job.export_id

    @pytest.mark.asyncio
    async def test_failure_after_upload_reports_drive_file(
        self, make_job, deps, table_source, drive_store
    ):
        job = make_job("tableAAAAAAAA")
        table_source.add_table("tableAAAAAAAA", has_geometry_data=True, styles=STYLES)
        worker = await build_worker(job, **deps)
        drive_store.failures.add("append_rows", ServiceError("sheet locked", retryable=False))

        result = await worker.run()

        assert result.status == ExportStatus.ERROR
        assert result.drive_file is not None
        assert result.styles == tuple(style.hash for style in STYLES)

    @pytest.mark.asyncio
    async def test_index_failure_waits_for_permissions(
        self, make_job, deps, table_source, drive_store
    ):
        job = make_job("tableAAAAAAAA")
        table_source.add_table("tableAAAAAAAA", has_geometry_data=True, styles=STYLES)
        worker = await build_worker(job, **deps)
        drive_store.failures.add("append_rows", ServiceError("sheet locked", retryable=False))
        drive_store.permission_delay = 0.05

        result = await worker.run()

        assert result.status == ExportStatus.ERROR
        assert result.error == "sheet locked"
        assert [p.email_address for p in drive_store.permissions[result.drive_file.id]] == [
            "a@example.com"
        ]

    @pytest.mark.asyncio
    async def test_retry_exhaustion(self, make_job, deps, table_source, drive_store):
        job = make_job("tableAAAAAAAA")
        table_source.failures.add(
            ("fetch", "tableAAAAAAAA"),
            *(FetchError(f"timeout {n}", status_code=503) for n in range(3)),
        )
        worker = await build_worker(job, **deps)

        result = await worker.run()

        assert result.status == ExportStatus.ERROR
        assert result.error == "timeout 2"
        assert table_source.fetch_calls == ["tableAAAAAAAA"] * 3
        assert drive_store.uploads == []

    @pytest.mark.asyncio
    async def test_transient_fetch_failure_recovers(self, make_job, deps, table_source):
        job = make_job("tableAAAAAAAA")
        table_source.failures.add(("fetch", "tableAAAAAAAA"), FetchError("429", status_code=429))
        worker = await build_worker(job, **deps)

        result = await worker.run()

        assert result.status == ExportStatus.SUCCESS
        assert len(table_source.fetch_calls) == 2

    @pytest.mark.asyncio
    async def test_broken_error_reporter_does_not_escape(
        self, make_job, deps, table_source, error_reporter, monkeypatch
    ):
        def broken_report(error, context=None):
            raise RuntimeError("reporter down")

        monkeypatch.setattr(error_reporter, "report", broken_report)
        job = make_job("tableAAAAAAAA")
        table_source.failures.add(("fetch", "tableAAAAAAAA"), FetchError("gone", retryable=False))
        worker = await build_worker(job, **deps)

        result = await worker.run()

        assert result.status == ExportStatus.ERROR
        assert result.error == "gone"


class TestLastWorker:
    """Tests for the end-of-export announcement."""

    @pytest.mark.asyncio
    async def test_last_worker_finishes_export(self, make_job, deps, table_source, events):
        job = make_job("tableAAAAAAAA")
        table_source.add_table("tableAAAAAAAA")
        worker = await build_worker(job, **deps, is_last=True)

        await worker.run()

        assert [e.name for e in events] == [TABLE_STARTED, TABLE_FINISHED, EXPORT_FINISHED]

    @pytest.mark.asyncio
    async def test_last_worker_finishes_export_on_failure(self, make_job, deps, table_source, events):
        job = make_job("tableAAAAAAAA")
        table_source.failures.add(("fetch", "tableAAAAAAAA"), FetchError("gone", retryable=False))
        worker = await build_worker(job, **deps, is_last=True)

        await worker.run()

        assert [e.name for e in events] == [TABLE_STARTED, TABLE_FINISHED, EXPORT_FINISHED]
        assert events[1].fields["status"] == "error"
