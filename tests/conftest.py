"""Shared pytest fixtures for fusion_export tests.

The fakes below stand in for Fusion Tables and Drive/Sheets. They keep
everything in memory, can delay or fail any call, and record what the
export pipeline did to them.
"""

import asyncio
import itertools
from collections import defaultdict

import pytest

from fusion_export.core.export_log import ExportLog
from fusion_export.core.models import (
    MIME_TYPE_SPREADSHEET,
    AuthContext,
    DriveFile,
    ExportJob,
    IndexSheet,
    Permission,
    Style,
    TableDescriptor,
    TabularExport,
)
from fusion_export.core.orchestrator import Exporter, ExporterConfig
from fusion_export.core.progress import ProgressStore
from fusion_export.services.base import (
    DestinationStore,
    ErrorReporter,
    SheetNotFoundError,
    TableSource,
)
from fusion_export.utils.retry import RetryPolicy

MB = 1024 * 1024


class FailureQueue:
    """Per-key queues of exceptions raised by the next calls."""

    def __init__(self):
        self._queues = defaultdict(list)

    def add(self, key, *errors):
        self._queues[key].extend(errors)

    def raise_next(self, key):
        if self._queues[key]:
            raise self._queues[key].pop(0)


class FakeTableSource(TableSource):
    """In-memory Fusion Tables."""

    def __init__(self):
        self.contents = {}
        self.styles = {}
        self.fetch_delays = {}
        self.failures = FailureQueue()
        self.fetch_calls = []
        self.in_flight = 0
        self.max_in_flight = 0

    def add_table(self, table_id, data=b"name,value\nfoo,1\n", has_geometry_data=False, styles=()):
        self.contents[table_id] = (data, has_geometry_data)
        self.styles[table_id] = list(styles)

    async def fetch_table_csv(self, auth, table):
        self.fetch_calls.append(table.id)
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            await asyncio.sleep(self.fetch_delays.get(table.id, 0))
            self.failures.raise_next(("fetch", table.id))
            data, has_geometry_data = self.contents.get(table.id, (b"a,b\n1,2\n", False))
            return TabularExport(
                name=f"{table.name}.csv", data=data, has_geometry_data=has_geometry_data
            )
        finally:
            self.in_flight -= 1

    async def fetch_styles(self, auth, table_id):
        await asyncio.sleep(0)
        self.failures.raise_next(("styles", table_id))
        return list(self.styles.get(table_id, []))


class FakeDriveStore(DestinationStore):
    """In-memory Drive and Sheets."""

    def __init__(self):
        self._ids = itertools.count(1)
        self.files = {}
        self.folders_created = []
        self.uploads = []
        self.permissions = defaultdict(list)
        self.spreadsheets = {}
        self.formatted = []
        self.upload_delays = {}
        self.permission_delay = 0
        self.failures = FailureQueue()
        self.uploads_in_flight = 0
        self.max_uploads_in_flight = 0

    def _new_id(self, prefix):
        return f"{prefix}-{next(self._ids)}"

    def add_legacy_sheet(self, name, parent_id):
        """Place a file with ``name`` that has no readable sheet."""
        file_id = self._new_id("legacy")
        self.files[(name, parent_id)] = file_id
        return file_id

    async def resolve_or_create_folder(self, auth, name, parent_id=None):
        self.failures.raise_next("resolve_or_create_folder")
        if (name, parent_id) not in self.files:
            self.files[(name, parent_id)] = self._new_id("folder")
        return self.files[(name, parent_id)]

    async def create_folder(self, auth, name, parent_id=None):
        self.failures.raise_next("create_folder")
        folder_id = self._new_id("folder")
        self.folders_created.append((name, parent_id, folder_id))
        return folder_id

    async def upload_artifact(self, auth, folder_id, content):
        self.uploads_in_flight += 1
        self.max_uploads_in_flight = max(self.max_uploads_in_flight, self.uploads_in_flight)
        try:
            await asyncio.sleep(self.upload_delays.get(content.name, 0))
            self.failures.raise_next(("upload", content.name))
            drive_file = DriveFile(
                id=self._new_id("file"), name=content.name, mime_type=MIME_TYPE_SPREADSHEET
            )
            self.uploads.append((folder_id, drive_file))
            return drive_file
        finally:
            self.uploads_in_flight -= 1

    async def replicate_permissions(self, auth, file_id, permissions):
        await asyncio.sleep(self.permission_delay)
        self.failures.raise_next("replicate_permissions")
        self.permissions[file_id].extend(permissions)

    async def find_named_file(self, auth, name, parent_id):
        await asyncio.sleep(0)
        self.failures.raise_next("find_named_file")
        return self.files.get((name, parent_id))

    async def create_spreadsheet(self, auth, name, parent_id, header):
        await asyncio.sleep(0)
        self.failures.raise_next("create_spreadsheet")
        spreadsheet_id = self._new_id("sheet")
        self.files[(name, parent_id)] = spreadsheet_id
        self.spreadsheets[spreadsheet_id] = {"sheet_id": 0, "rows": [list(header)]}
        return spreadsheet_id

    async def get_first_sheet_id(self, auth, spreadsheet_id):
        self.failures.raise_next("get_first_sheet_id")
        if spreadsheet_id not in self.spreadsheets:
            raise SheetNotFoundError(f"Spreadsheet {spreadsheet_id} not found")
        return self.spreadsheets[spreadsheet_id]["sheet_id"]

    async def format_header(self, auth, sheet, column_count):
        self.formatted.append((sheet, column_count))

    async def append_rows(self, auth, sheet, rows):
        await asyncio.sleep(0)
        self.failures.raise_next("append_rows")
        self.spreadsheets[sheet.spreadsheet_id]["rows"].extend(list(row) for row in rows)

    def rows(self, spreadsheet_id):
        return self.spreadsheets[spreadsheet_id]["rows"]


class RecordingErrorReporter(ErrorReporter):
    """Keeps every reported error."""

    def __init__(self):
        self.reports = []

    def report(self, error, context=None):
        self.reports.append((error, context or {}))


@pytest.fixture
def auth():
    return AuthContext(access_token="ya29.test-token")


@pytest.fixture
def fast_retry():
    """Retry policy without real waiting."""
    return RetryPolicy(max_attempts=3, base_delay=0.0, jitter=(1.0, 1.0))


@pytest.fixture
def table_source():
    return FakeTableSource()


@pytest.fixture
def drive_store():
    return FakeDriveStore()


@pytest.fixture
def error_reporter():
    return RecordingErrorReporter()


@pytest.fixture
def progress_store():
    return ProgressStore()


@pytest.fixture
def events():
    """List receiving every export log event."""
    return []


@pytest.fixture
def export_log(events):
    log = ExportLog()
    log.add_listener(events.append)
    return log


@pytest.fixture
def exporter(table_source, drive_store, progress_store, export_log, error_reporter, fast_retry):
    """Exporter wired to the in-memory fakes."""
    return Exporter(
        table_source=table_source,
        store=drive_store,
        progress=progress_store,
        export_log=export_log,
        error_reporter=error_reporter,
        config=ExporterConfig(retry_policy=fast_retry),
    )


@pytest.fixture
def make_job(auth):
    """Build an ExportJob from table ids."""

    def _make_job(*table_ids, export_id="export-1"):
        tables = [
            TableDescriptor(
                id=table_id,
                name=f"Table {table_id}",
                permissions=(Permission(role="reader", type="user", email_address="a@example.com"),),
            )
            for table_id in table_ids
        ]
        return ExportJob(export_id=export_id, tables=tables, ip_hash="hash", auth=auth)

    return _make_job


@pytest.fixture
def sample_table():
    return TableDescriptor(id="1abcDEFghijKLM", name="Parks")


@pytest.fixture
def sample_drive_file():
    return DriveFile(id="file-42", name="Parks.csv", mime_type=MIME_TYPE_SPREADSHEET)


@pytest.fixture
def sample_styles():
    return [
        Style(id=1, name="Default", definition={"markerOptions": {"iconName": "red_dot"}}),
        Style(id=2, name="Heat", definition={"markerOptions": {"iconName": "blu_circle"}}),
        Style(id=3, name="Buckets", definition={"polygonOptions": {"fillColor": "#00ff00"}}),
    ]


@pytest.fixture
def index_sheet():
    return IndexSheet(spreadsheet_id="sheet-1", sheet_id=0)
