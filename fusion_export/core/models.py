"""Data model for table exports.

Covers the export request (ExportJob and its tables), the handles produced
on the Drive side (DriveFile, IndexSheet) and the per-table progress result
(TableExportResult) reported to pollers.
"""

from __future__ import annotations

import base64
import json
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional, Sequence, Tuple

from ..utils.logging import mask_sensitive_data

MIME_TYPE_CSV = "text/csv"
MIME_TYPE_SPREADSHEET = "application/vnd.google-apps.spreadsheet"
MIME_TYPE_FOLDER = "application/vnd.google-apps.folder"

DRIVE_OPEN_URL = "https://drive.google.com/open?id={file_id}"
FUSIONTABLE_URL = "https://fusiontables.google.com/DataSource?docid={table_id}"


class Formula(str):
    """A spreadsheet cell value to be written as a formula.

    Plain ``str`` cells are always written as text, whatever they start with.
    """


class ExportStatus(Enum):
    """Status of a table inside an export, as seen by pollers."""

    LOADING = "loading"
    SUCCESS = "success"
    ERROR = "error"


class WorkerState(Enum):
    """States of the per-table export pipeline."""

    PENDING = "pending"
    FETCHING = "fetching"
    UPLOADING = "uploading"
    FINALIZING = "finalizing"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


@dataclass(frozen=True)
class AuthContext:
    """OAuth authorization used for every service call of an export."""

    access_token: str

    def __repr__(self) -> str:
        return f"AuthContext(access_token={mask_sensitive_data(self.access_token)!r})"


@dataclass(frozen=True)
class Permission:
    """A Drive permission to replicate onto an exported file."""

    role: str
    type: str
    email_address: Optional[str] = None
    domain: Optional[str] = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Permission:
        return cls(
            role=data["role"],
            type=data["type"],
            email_address=data.get("emailAddress") or data.get("email_address"),
            domain=data.get("domain"),
        )

    def to_dict(self) -> dict[str, str]:
        body = {"role": self.role, "type": self.type}
        if self.email_address:
            body["emailAddress"] = self.email_address
        if self.domain:
            body["domain"] = self.domain
        return body


@dataclass(frozen=True)
class TableDescriptor:
    """A source table to export.

    Attributes:
        id: Fusion Tables table id.
        name: Display name, also used as the exported file name.
        permissions: Permissions to replicate onto the exported file.
    """

    id: str
    name: str
    permissions: Tuple[Permission, ...] = ()

    @property
    def source_link(self) -> str:
        return FUSIONTABLE_URL.format(table_id=self.id)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> TableDescriptor:
        """Build a descriptor from ``{"id", "name", "permissions"}``.

        Raises:
            ValueError: If the table id is missing.
        """
        table_id = str(data.get("id") or "").strip()
        if not table_id:
            raise ValueError(f"Table entry without id: {data!r}")
        return cls(
            id=table_id,
            name=str(data.get("name") or table_id),
            permissions=tuple(Permission.from_dict(p) for p in data.get("permissions") or ()),
        )


@dataclass(frozen=True)
class Style:
    """A named rendering configuration of a table.

    Attributes:
        id: Style id within its table.
        name: Display name of the style.
        definition: Raw style definition as returned by Fusion Tables.
    """

    id: int
    name: str = ""
    definition: dict[str, Any] = field(default_factory=dict, hash=False, compare=False)

    @property
    def hash(self) -> str:
        """URL-safe token identifying this style in visualization links."""
        payload = json.dumps(
            {"styleId": self.id, **self.definition},
            sort_keys=True,
            separators=(",", ":"),
        )
        return base64.urlsafe_b64encode(payload.encode("utf-8")).decode("ascii").rstrip("=")


@dataclass(frozen=True)
class TabularExport:
    """Content of a table fetched from Fusion Tables."""

    name: str
    data: bytes
    has_geometry_data: bool = False
    mime_type: str = MIME_TYPE_CSV


@dataclass(frozen=True)
class DriveFile:
    """Handle of a file created in Drive."""

    id: str
    name: str
    mime_type: str

    @property
    def file_type(self) -> str:
        return "CSV" if self.mime_type == MIME_TYPE_CSV else "Spreadsheet"

    @property
    def link(self) -> str:
        return DRIVE_OPEN_URL.format(file_id=self.id)

    def to_dict(self) -> dict[str, str]:
        return {"id": self.id, "name": self.name, "mimeType": self.mime_type}


@dataclass(frozen=True)
class IndexSheet:
    """Location of the archive index sheet."""

    spreadsheet_id: str
    sheet_id: int


@dataclass(frozen=True)
class ExportJob:
    """One batch request to export a set of tables.

    Attributes:
        export_id: Unique export identifier.
        tables: Tables to export, in input order.
        ip_hash: Fingerprint of the requesting client.
        auth: Authorization used for every service call.
    """

    export_id: str
    tables: Tuple[TableDescriptor, ...]
    ip_hash: str
    auth: AuthContext

    def __post_init__(self) -> None:
        # Freeze whatever sequence the caller handed in
        object.__setattr__(self, "tables", tuple(self.tables))

        # Progress is keyed by table id
        seen: set[str] = set()
        for table in self.tables:
            if table.id in seen:
                raise ValueError(
                    f"Table {table.id} appears more than once in export {self.export_id}"
                )
            seen.add(table.id)

    @classmethod
    def create(
        cls,
        tables: Sequence[TableDescriptor],
        auth: AuthContext,
        ip_hash: str = "",
    ) -> ExportJob:
        return cls(export_id=str(uuid.uuid4()), tables=tuple(tables), ip_hash=ip_hash, auth=auth)


@dataclass(frozen=True)
class TableExportResult:
    """Progress of one table, tagged by ``status``.

    ``LOADING`` results carry no telemetry. ``SUCCESS`` results carry the
    Drive file and style hashes. ``ERROR`` results carry the error message
    plus whatever telemetry was captured before the failure.
    """

    table_id: str
    table_name: str
    status: ExportStatus
    error: Optional[str] = None
    drive_file: Optional[DriveFile] = None
    styles: Tuple[str, ...] = ()
    file_size: Optional[float] = None
    latency_ms: int = 0
    is_large: bool = False
    has_geometry_data: bool = False

    @classmethod
    def loading(cls, table: TableDescriptor) -> TableExportResult:
        return cls(table_id=table.id, table_name=table.name, status=ExportStatus.LOADING)

    @classmethod
    def success(
        cls,
        table: TableDescriptor,
        drive_file: DriveFile,
        styles: Sequence[str],
        file_size: float,
        latency_ms: int,
        is_large: bool,
        has_geometry_data: bool,
    ) -> TableExportResult:
        return cls(
            table_id=table.id,
            table_name=table.name,
            status=ExportStatus.SUCCESS,
            drive_file=drive_file,
            styles=tuple(styles),
            file_size=file_size,
            latency_ms=latency_ms,
            is_large=is_large,
            has_geometry_data=has_geometry_data,
        )

    @classmethod
    def failure(
        cls,
        table: TableDescriptor,
        error: str,
        drive_file: Optional[DriveFile] = None,
        styles: Sequence[str] = (),
        file_size: float = 0.0,
        latency_ms: int = 0,
        is_large: bool = False,
        has_geometry_data: bool = False,
    ) -> TableExportResult:
        return cls(
            table_id=table.id,
            table_name=table.name,
            status=ExportStatus.ERROR,
            error=error,
            drive_file=drive_file,
            styles=tuple(styles),
            file_size=file_size,
            latency_ms=latency_ms,
            is_large=is_large,
            has_geometry_data=has_geometry_data,
        )

    @property
    def is_terminal(self) -> bool:
        return self.status != ExportStatus.LOADING

    def to_dict(self) -> dict[str, Any]:
        """Convert to the JSON shape served by the polling feed.

        Returns:
            Dictionary with camelCase keys.
        """
        return {
            "status": self.status.value,
            "error": self.error,
            "tableId": self.table_id,
            "tableName": self.table_name,
            "driveFile": self.drive_file.to_dict() if self.drive_file else None,
            "styles": list(self.styles),
            "fileSize": self.file_size,
            "latency": self.latency_ms,
            "isLarge": self.is_large,
            "hasGeometryData": self.has_geometry_data,
        }
