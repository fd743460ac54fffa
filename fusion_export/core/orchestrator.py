"""Export orchestrator: prepares Drive resources and fans out table workers.

This module provides the Exporter class that starts exports, and the
ExporterConfig dataclass holding its settings.
"""

from __future__ import annotations

import asyncio
import logging
import os
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional, Set

from ..services.base import DestinationStore, ErrorReporter, LoggingErrorReporter, TableSource
from ..utils.logging import get_logger
from ..utils.retry import RetryPolicy, retry_async
from .errors import ExportSetupError
from .export_log import ExportLog
from .index_sheet import (
    DEFAULT_INDEX_SHEET_NAME,
    DEFAULT_VISUALIZER_BASE_URI,
    IndexSheetWriter,
)
from .models import ExportJob, TableExportResult
from .progress import ProgressPoller, ProgressStore
from .worker import TableExportWorker

DEFAULT_ARCHIVE_FOLDER_NAME = "Fusion Tables Archive"
DEFAULT_UPLOAD_FOLDER_PREFIX = "Fusion Tables Export"


@dataclass
class ExporterConfig:
    """Configuration for the exporter.

    Attributes:
        archive_folder_name: Name of the top-level Drive folder holding all exports.
        index_sheet_name: Name of the index spreadsheet inside the archive folder.
        visualizer_base_uri: Base URI of the map visualizer used in index links.
        upload_folder_prefix: Prefix of the per-export folder name.
        fetch_concurrency: Fusion Tables fetches allowed at once per export (default 1).
        retry_policy: Retry policy for every service call.
    """

    archive_folder_name: str = DEFAULT_ARCHIVE_FOLDER_NAME
    index_sheet_name: str = DEFAULT_INDEX_SHEET_NAME
    visualizer_base_uri: str = DEFAULT_VISUALIZER_BASE_URI
    upload_folder_prefix: str = DEFAULT_UPLOAD_FOLDER_PREFIX
    fetch_concurrency: int = 1
    retry_policy: RetryPolicy = field(default_factory=RetryPolicy)

    def __post_init__(self) -> None:
        if self.fetch_concurrency < 1:
            raise ValueError(
                f"fetch_concurrency must be at least 1, got {self.fetch_concurrency}"
            )

    @classmethod
    def from_env(cls) -> ExporterConfig:
        """Build a config from ``FUSION_EXPORT_*`` environment variables."""
        defaults = cls()
        return cls(
            archive_folder_name=os.environ.get(
                "FUSION_EXPORT_ARCHIVE_FOLDER", defaults.archive_folder_name
            ),
            index_sheet_name=os.environ.get(
                "FUSION_EXPORT_INDEX_SHEET", defaults.index_sheet_name
            ),
            visualizer_base_uri=os.environ.get(
                "FUSION_EXPORT_VISUALIZER_URI", defaults.visualizer_base_uri
            ),
            fetch_concurrency=int(os.environ.get("FUSION_EXPORT_FETCH_CONCURRENCY", "1")),
            retry_policy=RetryPolicy(
                max_attempts=int(os.environ.get("FUSION_EXPORT_MAX_ATTEMPTS", "5")),
            ),
        )


class Exporter:
    """Starts exports and tracks their workers.

    Features:
    - Shared per-export Drive resources (folder, index sheet) prepared once
    - One worker per table, Fusion Tables fetches serialized per export
    - Fire-and-forget dispatch with a pollable progress feed

    Attributes:
        config: Exporter configuration.
        progress: Progress store shared by all exports of this exporter.
        export_log: Lifecycle event log.
    """

    def __init__(
        self,
        table_source: TableSource,
        store: DestinationStore,
        progress: Optional[ProgressStore] = None,
        export_log: Optional[ExportLog] = None,
        error_reporter: Optional[ErrorReporter] = None,
        config: Optional[ExporterConfig] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.config = config or ExporterConfig()
        self.logger = logger or get_logger("exporter")
        self.progress = progress or ProgressStore()
        self.export_log = export_log or ExportLog()
        self._table_source = table_source
        self._store = store
        self._error_reporter = error_reporter or LoggingErrorReporter()
        self.index_writer = IndexSheetWriter(
            store,
            sheet_name=self.config.index_sheet_name,
            visualizer_base_uri=self.config.visualizer_base_uri,
            retry_policy=self.config.retry_policy,
        )

        self._workers: Dict[str, List[asyncio.Task]] = {}
        self._running: Set[asyncio.Task] = set()
        self._pollers: Dict[str, ProgressPoller] = {}

    async def start_export(self, job: ExportJob) -> str:
        """Prepare the export's Drive resources and dispatch its workers.

        Returns as soon as the workers are scheduled; progress is reported
        through the progress store and the export log.

        Args:
            job: The export to run.

        Returns:
            Drive id of the folder receiving the exported tables.

        Raises:
            ExportSetupError: If the archive folder, the export folder or the
                index sheet cannot be prepared. Nothing is dispatched then.
                An unusable index sheet raises the LegacyArtifactConflict
                subclass.
        """
        self.export_log.export_started(job.export_id, len(job.tables))
        self.logger.info(f"Starting export {job.export_id} of {len(job.tables)} table(s)")

        try:
            folder_id, index_sheet = await self._prepare(job)
        except ExportSetupError:
            raise
        except Exception as e:
            self.logger.error(f"Export {job.export_id} setup failed: {e}")
            raise ExportSetupError(str(e)) from e

        for table in job.tables:
            self.progress.record_status(
                job.export_id, table.id, TableExportResult.loading(table)
            )

        fetch_limiter = asyncio.Semaphore(self.config.fetch_concurrency)
        last_index = len(job.tables) - 1
        tasks = self._workers.setdefault(job.export_id, [])

        for index, table in enumerate(job.tables):
            worker = TableExportWorker(
                job=job,
                table=table,
                table_index=index + 1,
                is_last=index == last_index,
                folder_id=folder_id,
                index_sheet=index_sheet,
                table_source=self._table_source,
                store=self._store,
                index_writer=self.index_writer,
                progress=self.progress,
                export_log=self.export_log,
                error_reporter=self._error_reporter,
                fetch_limiter=fetch_limiter,
                retry_policy=self.config.retry_policy,
                logger=self.logger,
            )
            task = asyncio.create_task(worker.run(), name=f"export-{job.export_id}-{index + 1}")
            tasks.append(task)
            self._running.add(task)
            task.add_done_callback(self._running.discard)

        if not job.tables:
            self.export_log.export_finished(job.export_id)

        return folder_id

    async def _prepare(self, job: ExportJob):
        """Resolve the archive folder, then the export folder and index sheet."""
        auth = job.auth
        archive_folder_id = await retry_async(
            lambda: self._store.resolve_or_create_folder(auth, self.config.archive_folder_name),
            self.config.retry_policy,
            logger=self.logger,
            description="resolve archive folder",
        )

        folder_name = (
            f"{self.config.upload_folder_prefix} {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}"
        )
        folder_id, index_sheet = await asyncio.gather(
            retry_async(
                lambda: self._store.create_folder(auth, folder_name, archive_folder_id),
                self.config.retry_policy,
                logger=self.logger,
                description="create export folder",
            ),
            self.index_writer.get_or_create(auth, archive_folder_id),
        )

        await self.index_writer.append_export_row(auth, index_sheet, folder_id)
        self.logger.debug(f"Export {job.export_id} writes to folder {folder_id}")
        return folder_id, index_sheet

    async def wait_for_export(self, export_id: str) -> List[TableExportResult]:
        """Wait until every worker of an export has finished.

        Returns:
            The results returned by the workers, in input order.
        """
        tasks = self._workers.get(export_id, [])
        if not tasks:
            return []
        return list(await asyncio.gather(*tasks))

    def get_updates(self, export_id: str) -> List[TableExportResult]:
        """Return the results of an export that finished since the last call."""
        poller = self._pollers.get(export_id)
        if poller is None:
            poller = self._pollers[export_id] = ProgressPoller(self.progress, export_id)
        return poller.poll()

    @property
    def active_workers(self) -> int:
        return len(self._running)

    def __repr__(self) -> str:
        return (
            f"Exporter("
            f"archive_folder_name={self.config.archive_folder_name!r}, "
            f"fetch_concurrency={self.config.fetch_concurrency})"
        )
