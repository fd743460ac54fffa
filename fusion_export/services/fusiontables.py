"""Fusion Tables client.

Fetches a table as CSV through the Fusion Tables v2 ``query.sqlGet``
method and reads its styles. Blocking ``googleapiclient`` calls are run in a
worker thread so they do not stall the event loop.
"""

from __future__ import annotations

import asyncio
import io
import logging
import re
from typing import Any, Optional

from googleapiclient.errors import HttpError
from googleapiclient.http import MediaIoBaseDownload

from ..core.models import AuthContext, Style, TableDescriptor, TabularExport
from ..utils.logging import get_logger
from .base import FetchError, TableSource
from .google_api import ServiceCache, ServiceFactory, execute, service_error

DEFAULT_CHUNK_SIZE = 1024 * 1024  # 1MB
# Fusion Tables refuses exports above 250MB
MAX_EXPORT_BYTES = 250 * 1024 * 1024

# KML markup Fusion Tables uses for location columns
GEOMETRY_PATTERN = re.compile(
    rb"<(?:Point|LineString|Polygon|MultiGeometry|LinearRing)\b", re.IGNORECASE
)

STYLE_METADATA_KEYS = ("kind", "tableId", "styleId", "name")


def has_geometry(data: bytes) -> bool:
    """Return True if CSV content carries KML geometry."""
    return GEOMETRY_PATTERN.search(data) is not None


def _csv_file_name(table: TableDescriptor) -> str:
    name = table.name.strip() or table.id
    return name if name.lower().endswith(".csv") else f"{name}.csv"


class FusionTablesClient(TableSource):
    """Reads tables and styles from Fusion Tables.

    Attributes:
        max_export_bytes: Largest export accepted.
        chunk_size: Bytes requested per download chunk.
    """

    def __init__(
        self,
        service_factory: Optional[ServiceFactory] = None,
        max_export_bytes: int = MAX_EXPORT_BYTES,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self._services = ServiceCache(service_factory)
        self.max_export_bytes = max_export_bytes
        self.chunk_size = chunk_size
        self._logger = logger or get_logger("services.fusiontables")

    def _service(self, auth: AuthContext) -> Any:
        return self._services.get("fusiontables", "v2", auth)

    async def fetch_table_csv(self, auth: AuthContext, table: TableDescriptor) -> TabularExport:
        return await asyncio.to_thread(self._fetch_table_csv, auth, table)

    async def fetch_styles(self, auth: AuthContext, table_id: str) -> list[Style]:
        return await asyncio.to_thread(self._fetch_styles, auth, table_id)

    def _fetch_table_csv(self, auth: AuthContext, table: TableDescriptor) -> TabularExport:
        self._logger.debug(f"Fetching CSV of table {table.id}")
        request = self._service(auth).query().sqlGet_media(sql=f"SELECT * FROM {table.id}")

        buffer = io.BytesIO()
        downloader = MediaIoBaseDownload(buffer, request, chunksize=self.chunk_size)
        done = False
        try:
            while not done:
                _, done = downloader.next_chunk()
                if buffer.tell() > self.max_export_bytes:
                    raise FetchError(
                        f"Table {table.id} exceeds the export limit of "
                        f"{self.max_export_bytes:,} bytes",
                        retryable=False,
                    )
        except HttpError as e:
            raise service_error(e, f"Fetching table {table.id}", FetchError) from e
        except OSError as e:
            raise FetchError(f"Reading table {table.id} failed: {e}") from e

        data = buffer.getvalue()
        return TabularExport(
            name=_csv_file_name(table),
            data=data,
            has_geometry_data=has_geometry(data),
        )

    def _fetch_styles(self, auth: AuthContext, table_id: str) -> list[Style]:
        styles_api = self._service(auth).style()
        context = f"Fetching styles of table {table_id}"
        styles: list[Style] = []

        request = styles_api.list(tableId=table_id)
        while request is not None:
            data = execute(request, context, FetchError)
            for item in data.get("items", []):
                definition = {
                    key: value
                    for key, value in item.items()
                    if key not in STYLE_METADATA_KEYS
                }
                styles.append(
                    Style(id=int(item["styleId"]), name=item.get("name", ""), definition=definition)
                )
            request = styles_api.list_next(request, data)

        return styles
