"""Per-table export pipeline.

A TableExportWorker moves one table through

    pending -> fetching -> uploading -> finalizing -> succeeded | failed

and always ends with a terminal result in the progress store. Errors are
contained to the table: they are reported and recorded, never raised.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import List, Optional

from ..services.base import DestinationStore, ErrorReporter, TableSource
from ..utils.logging import TableLogAdapter, get_logger
from ..utils.retry import RetryPolicy, retry_async
from ..utils.sizing import byte_size_mb, is_large, round_down_to_power_of_two
from .export_log import ExportLog
from .index_sheet import IndexSheetWriter
from .models import (
    DriveFile,
    ExportJob,
    ExportStatus,
    IndexSheet,
    Style,
    TableDescriptor,
    TableExportResult,
    WorkerState,
)
from .progress import ProgressStore


async def _gather_settled(*aws):
    """Run ``aws`` concurrently and wait until every one of them has finished.

    The first failure, in argument order, is re-raised once all have settled.
    """
    results = await asyncio.gather(*aws, return_exceptions=True)
    for result in results:
        if isinstance(result, BaseException):
            raise result
    return results


class TableExportWorker:
    """Exports a single table of an export job.

    Attributes:
        job: The export the table belongs to.
        table: The table to export.
        table_index: 1-based position of the table in the job.
        is_last: Whether this is the last table in input order. The last
            worker announces the end of the export, whatever the completion
            order of its siblings.
        state: Current pipeline state.
    """

    def __init__(
        self,
        job: ExportJob,
        table: TableDescriptor,
        table_index: int,
        is_last: bool,
        folder_id: str,
        index_sheet: IndexSheet,
        table_source: TableSource,
        store: DestinationStore,
        index_writer: IndexSheetWriter,
        progress: ProgressStore,
        export_log: ExportLog,
        error_reporter: ErrorReporter,
        fetch_limiter: asyncio.Semaphore,
        retry_policy: Optional[RetryPolicy] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.job = job
        self.table = table
        self.table_index = table_index
        self.is_last = is_last
        self.folder_id = folder_id
        self.index_sheet = index_sheet
        self._table_source = table_source
        self._store = store
        self._index_writer = index_writer
        self._progress = progress
        self._export_log = export_log
        self._error_reporter = error_reporter
        self._fetch_limiter = fetch_limiter
        self._retry_policy = retry_policy or RetryPolicy()
        self._logger = TableLogAdapter(
            logger or get_logger("worker"), job.export_id, table_index
        )

        self.state = WorkerState.PENDING

        # Telemetry captured along the way, reported even on failure
        self._started_at = 0.0
        self.file_size = 0.0
        self.size_bucket = 0.0
        self.is_large = False
        self.has_geometry_data = False
        self.drive_file: Optional[DriveFile] = None
        self.styles: List[Style] = []

    @property
    def latency_ms(self) -> int:
        return int((time.monotonic() - self._started_at) * 1000)

    async def run(self) -> TableExportResult:
        """Run the pipeline to completion.

        Returns:
            The terminal result recorded for the table.
        """
        export_id = self.job.export_id
        self._started_at = time.monotonic()
        self._export_log.table_started(export_id, self.table_index)
        self._logger.info(f"Exporting table {self.table.id} ({self.table.name})")

        try:
            result = await self._export()
        except Exception as e:
            result = self._fail(e)
        finally:
            if self.is_last:
                self._export_log.export_finished(export_id)

        return result

    async def _export(self) -> TableExportResult:
        auth = self.job.auth

        self._transition(WorkerState.FETCHING)
        async with self._fetch_limiter:
            content = await self._retry(
                lambda: self._table_source.fetch_table_csv(auth, self.table),
                f"fetch table {self.table.id}",
            )

        self.file_size = byte_size_mb(content.data)
        self.size_bucket = round_down_to_power_of_two(self.file_size)
        self.is_large = is_large(self.file_size)
        self.has_geometry_data = content.has_geometry_data
        self._logger.debug(
            f"Fetched {len(content.data):,} bytes "
            f"(large={self.is_large}, geometry={self.has_geometry_data})"
        )

        self._transition(WorkerState.UPLOADING)
        self.drive_file, self.styles = await _gather_settled(
            self._retry(
                lambda: self._store.upload_artifact(auth, self.folder_id, content),
                f"upload table {self.table.id}",
            ),
            self._retry(
                lambda: self._table_source.fetch_styles(auth, self.table.id),
                f"fetch styles of table {self.table.id}",
            ),
        )

        self._transition(WorkerState.FINALIZING)
        await _gather_settled(
            self._index_writer.append_table_rows(
                auth,
                self.index_sheet,
                self.table,
                self.drive_file,
                self.styles,
                self.has_geometry_data,
                self.is_large,
            ),
            self._retry(
                lambda: self._store.replicate_permissions(
                    auth, self.drive_file.id, self.table.permissions
                ),
                f"copy permissions of table {self.table.id}",
            ),
        )

        result = TableExportResult.success(
            self.table,
            drive_file=self.drive_file,
            styles=[style.hash for style in self.styles],
            file_size=self.size_bucket,
            latency_ms=self.latency_ms,
            is_large=self.is_large,
            has_geometry_data=self.has_geometry_data,
        )
        self._progress.record_status(self.job.export_id, self.table.id, result)
        self._transition(WorkerState.SUCCEEDED)
        self._export_log.table_finished(
            self.job.export_id, self.table_index, ExportStatus.SUCCESS.value, self.size_bucket
        )
        self._logger.info(f"Exported to {self.drive_file.link}")
        return result

    def _fail(self, error: Exception) -> TableExportResult:
        self._logger.error(f"Export failed while {self.state.value}: {error}")
        self._transition(WorkerState.FAILED)
        try:
            self._error_reporter.report(
                error,
                {
                    "export_id": self.job.export_id,
                    "table_id": self.table.id,
                    "table_index": self.table_index,
                },
            )
        except Exception as e:
            self._logger.warning(f"Error reporting failed: {e}")

        result = TableExportResult.failure(
            self.table,
            error=str(error) or type(error).__name__,
            drive_file=self.drive_file,
            styles=[style.hash for style in self.styles],
            file_size=self.size_bucket,
            latency_ms=self.latency_ms,
            is_large=self.is_large,
            has_geometry_data=self.has_geometry_data,
        )
        self._progress.record_status(self.job.export_id, self.table.id, result)
        self._export_log.table_finished(
            self.job.export_id, self.table_index, ExportStatus.ERROR.value, self.size_bucket
        )
        return result

    def _transition(self, state: WorkerState) -> None:
        self._logger.debug(f"{self.state.value} -> {state.value}")
        self.state = state

    async def _retry(self, operation, description: str):
        return await retry_async(
            operation,
            self._retry_policy,
            logger=self._logger,
            description=description,
        )
