"""Archive index sheet: one audit row per exported artifact.

The index sheet lives in the archive folder and is shared by every export
made into that archive. Its six columns are a stable contract; never reorder
them or change their header text.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional, Sequence

from ..services.base import DestinationStore, SheetNotFoundError
from ..utils.logging import get_logger
from ..utils.retry import RetryPolicy, retry_async
from .errors import ExportSetupError
from .models import AuthContext, DriveFile, Formula, IndexSheet, Style, TableDescriptor

DEFAULT_INDEX_SHEET_NAME = "Fusion Tables Archive Index"
DEFAULT_VISUALIZER_BASE_URI = "https://fusion-tables-visualizer.appspot.com/"

HEADER_ROW = (
    "Exported file name",
    "Source Fusiontable",
    "Exported Spreadsheet/CSV",
    "Type",
    "Visualization",
    "Exported at",
)

NO_GEOMETRY_MESSAGE = "Cannot visualize - no geometry found."
DRIVE_FOLDER_URL = "https://drive.google.com/drive/folders/{folder_id}"


class LegacyArtifactConflict(ExportSetupError):
    """An index sheet with the expected name exists but cannot be used.

    This happens when the file was created by an older exporter version.
    The operator has to rename or remove it; retrying does not help.
    """

    retryable = False

    def __init__(self, sheet_name: str) -> None:
        super().__init__(
            f'The file "{sheet_name}" was created by a deprecated version of the '
            f"exporter. Please rename or remove it to allow the application to "
            f"create a new one."
        )
        self.sheet_name = sheet_name


def _hyperlink(link: str, label: str) -> Formula:
    return Formula(f'=HYPERLINK("{link}", "{label}")')


def build_table_rows(
    table: TableDescriptor,
    drive_file: DriveFile,
    styles: Sequence[Style],
    has_geometry_data: bool,
    is_large: bool,
    visualizer_base_uri: str,
    exported_at: str,
) -> List[List[str]]:
    """Build the index rows for one exported table.

    - Without geometry data: a single row without visualization link.
    - With geometry and several styles: one row per style, each with a
      style-qualified link labelled "Visualization <n>". Only the first row
      repeats source, destination and type.
    - With geometry and at most one style: a single row with an unqualified
      link.

    Args:
        table: The exported table.
        drive_file: File created in Drive for the table.
        styles: Styles of the table.
        has_geometry_data: Whether the table content has geometry.
        is_large: Whether the table is flagged as large.
        visualizer_base_uri: Base URI of the visualizer.
        exported_at: Timestamp written to the last column.

    Returns:
        Rows of six string cells each. Visualization links are ``Formula``
        cells, every other cell is plain text.
    """
    base_link = f"{visualizer_base_uri}#file={drive_file.id}"
    large_suffix = "&large=true" if is_large else ""

    def create_row(visualization: str, is_first_row: bool) -> List[str]:
        return [
            drive_file.name,
            table.source_link if is_first_row else "",
            drive_file.link if is_first_row else "",
            drive_file.file_type if is_first_row else "",
            visualization,
            exported_at,
        ]

    if not has_geometry_data:
        return [create_row(NO_GEOMETRY_MESSAGE, True)]

    if len(styles) > 1:
        return [
            create_row(
                _hyperlink(
                    f"{base_link}&style={style.hash}{large_suffix}",
                    f"Visualization {index + 1}",
                ),
                index == 0,
            )
            for index, style in enumerate(styles)
        ]

    return [create_row(_hyperlink(f"{base_link}{large_suffix}", "Visualization"), True)]


def build_export_row(folder_id: str, exported_at: str) -> List[str]:
    """Build the row marking the start of an export."""
    return [
        f"Export started {exported_at}",
        "",
        DRIVE_FOLDER_URL.format(folder_id=folder_id),
        "Folder",
        "",
        exported_at,
    ]


def _utc_timestamp() -> str:
    return datetime.now(timezone.utc).isoformat()


class IndexSheetWriter:
    """Finds or creates the archive index sheet and appends rows to it.

    Lookups are memoized per archive folder, so every export into the same
    archive reuses one spreadsheet.
    """

    def __init__(
        self,
        store: DestinationStore,
        sheet_name: str = DEFAULT_INDEX_SHEET_NAME,
        visualizer_base_uri: str = DEFAULT_VISUALIZER_BASE_URI,
        retry_policy: Optional[RetryPolicy] = None,
        clock: Callable[[], str] = _utc_timestamp,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self._store = store
        self.sheet_name = sheet_name
        self.visualizer_base_uri = visualizer_base_uri
        self._retry_policy = retry_policy or RetryPolicy()
        self._clock = clock
        self._logger = logger or get_logger("index_sheet")
        self._sheets: Dict[str, IndexSheet] = {}
        self._lock = asyncio.Lock()

    async def get_or_create(self, auth: AuthContext, archive_folder_id: str) -> IndexSheet:
        """Return the index sheet of an archive folder, creating it if needed.

        Args:
            auth: Authorization context.
            archive_folder_id: Drive id of the archive folder.

        Returns:
            The index sheet location.

        Raises:
            LegacyArtifactConflict: If a file with the index sheet name exists
                but has no usable sheet.
        """
        async with self._lock:
            sheet = self._sheets.get(archive_folder_id)
            if sheet is None:
                sheet = await self._resolve(auth, archive_folder_id)
                self._sheets[archive_folder_id] = sheet
            return sheet

    async def _resolve(self, auth: AuthContext, archive_folder_id: str) -> IndexSheet:
        spreadsheet_id = await self._retry(
            lambda: self._store.find_named_file(auth, self.sheet_name, archive_folder_id),
            "find index sheet",
        )

        if not spreadsheet_id:
            return await self._create(auth, archive_folder_id)

        self._logger.debug(f"Found index sheet {spreadsheet_id}")
        sheet_id = await self._first_sheet_id(auth, spreadsheet_id)
        return IndexSheet(spreadsheet_id=spreadsheet_id, sheet_id=sheet_id)

    async def _create(self, auth: AuthContext, archive_folder_id: str) -> IndexSheet:
        self._logger.info(f'Creating index sheet "{self.sheet_name}"')
        spreadsheet_id = await self._retry(
            lambda: self._store.create_spreadsheet(
                auth, self.sheet_name, archive_folder_id, HEADER_ROW
            ),
            "create index sheet",
        )
        sheet = IndexSheet(
            spreadsheet_id=spreadsheet_id,
            sheet_id=await self._first_sheet_id(auth, spreadsheet_id),
        )
        await self._retry(
            lambda: self._store.format_header(auth, sheet, len(HEADER_ROW)),
            "format index sheet header",
        )
        return sheet

    async def _first_sheet_id(self, auth: AuthContext, spreadsheet_id: str) -> int:
        try:
            return await self._retry(
                lambda: self._store.get_first_sheet_id(auth, spreadsheet_id),
                "read index sheet",
            )
        except SheetNotFoundError as e:
            raise LegacyArtifactConflict(self.sheet_name) from e

    async def append_export_row(self, auth: AuthContext, sheet: IndexSheet, folder_id: str) -> None:
        """Record the start of an export, linking to its folder."""
        row = build_export_row(folder_id, self._clock())
        await self._retry(lambda: self._store.append_rows(auth, sheet, [row]), "log export")

    async def append_table_rows(
        self,
        auth: AuthContext,
        sheet: IndexSheet,
        table: TableDescriptor,
        drive_file: DriveFile,
        styles: Sequence[Style],
        has_geometry_data: bool,
        is_large: bool,
    ) -> None:
        """Record an exported table (one row per visualization)."""
        rows = build_table_rows(
            table,
            drive_file,
            styles,
            has_geometry_data,
            is_large,
            self.visualizer_base_uri,
            self._clock(),
        )
        await self._retry(
            lambda: self._store.append_rows(auth, sheet, rows),
            f"log export of table {table.id}",
        )

    async def _retry(self, operation, description: str):
        return await retry_async(
            operation,
            self._retry_policy,
            logger=self._logger,
            description=description,
        )
