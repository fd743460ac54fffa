"""Google Drive and Sheets client.

Implements the DestinationStore contract on top of the Drive v3 and
Sheets v4 APIs with ``googleapiclient``. Every call runs in a worker thread.
"""

from __future__ import annotations

import asyncio
import io
import logging
from typing import Any, Dict, List, Optional, Sequence

from googleapiclient.http import MediaIoBaseUpload

from ..core.models import (
    MIME_TYPE_CSV,
    MIME_TYPE_FOLDER,
    MIME_TYPE_SPREADSHEET,
    AuthContext,
    DriveFile,
    Formula,
    IndexSheet,
    Permission,
    TabularExport,
)
from ..utils.logging import get_logger
from ..utils.sizing import BYTES_PER_MB, LARGE_TABLE_THRESHOLD_MB
from .base import (
    DestinationStore,
    ServiceError,
    SheetNotFoundError,
    UploadError,
)
from .google_api import ServiceCache, ServiceFactory, execute

# Larger CSVs exceed what Sheets can import and stay plain CSV files
SPREADSHEET_CONVERSION_LIMIT = LARGE_TABLE_THRESHOLD_MB * BYTES_PER_MB
RESUMABLE_UPLOAD_THRESHOLD = 5 * BYTES_PER_MB
HEADER_COLUMN_WIDTH = 250


def _escape_query(value: str) -> str:
    return value.replace("\\", "\\\\").replace("'", "\\'")


def _cell(value: str) -> Dict[str, Any]:
    if isinstance(value, Formula):
        return {"userEnteredValue": {"formulaValue": str(value)}}
    return {"userEnteredValue": {"stringValue": str(value)}}


class GoogleDriveStore(DestinationStore):
    """Drive folders, uploads, permissions and index sheet access.

    Args:
        service_factory: Builds an API client for ``(api, version, auth)``.
            Defaults to ``googleapiclient.discovery.build``.
        logger: Logger to use.
    """

    def __init__(
        self,
        service_factory: Optional[ServiceFactory] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self._services = ServiceCache(service_factory)
        self._logger = logger or get_logger("services.google_drive")

    def _drive(self, auth: AuthContext) -> Any:
        return self._services.get("drive", "v3", auth)

    def _sheets(self, auth: AuthContext) -> Any:
        return self._services.get("sheets", "v4", auth)

    async def resolve_or_create_folder(
        self,
        auth: AuthContext,
        name: str,
        parent_id: Optional[str] = None,
    ) -> str:
        folder_id = await asyncio.to_thread(
            self._find, auth, name, parent_id, MIME_TYPE_FOLDER
        )
        if folder_id:
            return folder_id
        return await self.create_folder(auth, name, parent_id)

    async def create_folder(
        self,
        auth: AuthContext,
        name: str,
        parent_id: Optional[str] = None,
    ) -> str:
        metadata: Dict[str, Any] = {"name": name, "mimeType": MIME_TYPE_FOLDER}
        if parent_id:
            metadata["parents"] = [parent_id]

        data = await asyncio.to_thread(
            self._create_file, auth, metadata, None, "id", f"Creating folder {name!r}"
        )
        self._logger.debug(f"Created folder {name!r}: {data['id']}")
        return data["id"]

    async def upload_artifact(
        self,
        auth: AuthContext,
        folder_id: str,
        content: TabularExport,
    ) -> DriveFile:
        convert = len(content.data) <= SPREADSHEET_CONVERSION_LIMIT
        metadata: Dict[str, Any] = {"name": content.name, "parents": [folder_id]}
        if convert:
            metadata["mimeType"] = MIME_TYPE_SPREADSHEET

        media = MediaIoBaseUpload(
            io.BytesIO(content.data),
            mimetype=content.mime_type,
            resumable=len(content.data) >= RESUMABLE_UPLOAD_THRESHOLD,
        )
        data = await asyncio.to_thread(
            self._create_file,
            auth,
            metadata,
            media,
            "id,name,mimeType",
            f"Uploading {content.name!r}",
            UploadError,
        )
        return DriveFile(
            id=data["id"],
            name=data.get("name", content.name),
            mime_type=data.get("mimeType", MIME_TYPE_SPREADSHEET if convert else MIME_TYPE_CSV),
        )

    def _create_file(
        self,
        auth: AuthContext,
        metadata: Dict[str, Any],
        media: Optional[MediaIoBaseUpload],
        fields: str,
        context: str,
        error_class=ServiceError,
    ) -> Dict[str, Any]:
        request = self._drive(auth).files().create(
            body=metadata, media_body=media, fields=fields
        )
        return execute(request, context, error_class)

    async def replicate_permissions(
        self,
        auth: AuthContext,
        file_id: str,
        permissions: Sequence[Permission],
    ) -> None:
        for permission in permissions:
            # Owner permissions cannot be granted on files we create
            if permission.role == "owner":
                continue
            await asyncio.to_thread(self._grant, auth, file_id, permission)

    def _grant(self, auth: AuthContext, file_id: str, permission: Permission) -> None:
        request = self._drive(auth).permissions().create(
            fileId=file_id,
            body=permission.to_dict(),
            sendNotificationEmail=False,
        )
        execute(request, f"Granting {permission.role} on {file_id}")

    async def find_named_file(
        self,
        auth: AuthContext,
        name: str,
        parent_id: str,
    ) -> Optional[str]:
        return await asyncio.to_thread(self._find, auth, name, parent_id, None)

    def _find(
        self,
        auth: AuthContext,
        name: str,
        parent_id: Optional[str],
        mime_type: Optional[str],
    ) -> Optional[str]:
        clauses = [f"name = '{_escape_query(name)}'", "trashed = false"]
        if parent_id:
            clauses.append(f"'{_escape_query(parent_id)}' in parents")
        if mime_type:
            clauses.append(f"mimeType = '{mime_type}'")

        request = self._drive(auth).files().list(
            q=" and ".join(clauses),
            spaces="drive",
            fields="files(id)",
            pageSize=1,
        )
        data = execute(request, f"Looking up {name!r}")
        files: List[Dict[str, Any]] = data.get("files", [])
        return files[0]["id"] if files else None

    async def create_spreadsheet(
        self,
        auth: AuthContext,
        name: str,
        parent_id: str,
        header: Sequence[str],
    ) -> str:
        metadata = {"name": name, "parents": [parent_id], "mimeType": MIME_TYPE_SPREADSHEET}
        media = MediaIoBaseUpload(
            io.BytesIO(",".join(header).encode("utf-8")), mimetype=MIME_TYPE_CSV
        )
        data = await asyncio.to_thread(
            self._create_file, auth, metadata, media, "id", f"Creating spreadsheet {name!r}"
        )
        return data["id"]

    async def get_first_sheet_id(self, auth: AuthContext, spreadsheet_id: str) -> int:
        try:
            data = await asyncio.to_thread(self._read_sheets, auth, spreadsheet_id)
        except ServiceError as e:
            if e.status_code == 404:
                raise SheetNotFoundError(f"Spreadsheet {spreadsheet_id} not found") from e
            raise

        sheets = data.get("sheets") or []
        if not sheets or "sheetId" not in sheets[0].get("properties", {}):
            raise SheetNotFoundError(f"Cannot find Sheet in Spreadsheet {spreadsheet_id}")
        return int(sheets[0]["properties"]["sheetId"])

    def _read_sheets(self, auth: AuthContext, spreadsheet_id: str) -> Dict[str, Any]:
        request = self._sheets(auth).spreadsheets().get(
            spreadsheetId=spreadsheet_id, fields="sheets.properties.sheetId"
        )
        return execute(request, f"Reading spreadsheet {spreadsheet_id}")

    async def format_header(self, auth: AuthContext, sheet: IndexSheet, column_count: int) -> None:
        requests_body = [
            {
                "repeatCell": {
                    "range": {"sheetId": sheet.sheet_id, "startRowIndex": 0, "endRowIndex": 1},
                    "cell": {
                        "userEnteredFormat": {
                            "horizontalAlignment": "CENTER",
                            "textFormat": {"fontSize": 12, "bold": True},
                        }
                    },
                    "fields": "userEnteredFormat(textFormat,horizontalAlignment)",
                }
            },
            {
                "updateDimensionProperties": {
                    "range": {
                        "sheetId": sheet.sheet_id,
                        "dimension": "COLUMNS",
                        "startIndex": 0,
                        "endIndex": column_count,
                    },
                    "properties": {"pixelSize": HEADER_COLUMN_WIDTH},
                    "fields": "pixelSize",
                }
            },
            {
                "updateSheetProperties": {
                    "properties": {
                        "sheetId": sheet.sheet_id,
                        "gridProperties": {"frozenRowCount": 1},
                    },
                    "fields": "gridProperties.frozenRowCount",
                }
            },
        ]
        await asyncio.to_thread(
            self._batch_update, auth, sheet, requests_body, "Formatting index sheet"
        )

    async def append_rows(
        self,
        auth: AuthContext,
        sheet: IndexSheet,
        rows: Sequence[Sequence[str]],
    ) -> None:
        requests_body = [
            {
                "appendCells": {
                    "sheetId": sheet.sheet_id,
                    "rows": [{"values": [_cell(value) for value in row]} for row in rows],
                    "fields": "userEnteredValue",
                }
            }
        ]
        await asyncio.to_thread(
            self._batch_update, auth, sheet, requests_body, "Appending index rows"
        )

    def _batch_update(
        self,
        auth: AuthContext,
        sheet: IndexSheet,
        requests_body: List[Dict[str, Any]],
        context: str,
    ) -> None:
        request = self._sheets(auth).spreadsheets().batchUpdate(
            spreadsheetId=sheet.spreadsheet_id, body={"requests": requests_body}
        )
        execute(request, context)
