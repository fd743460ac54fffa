"""
fusion_export.core - Export orchestration.

This module contains the logic for:
- Preparing the archive folder and index sheet of an export
- Running one worker per table under a fetch limiter
- Tracking per-table progress for pollers
"""

from fusion_export.core.errors import ExportSetupError
from fusion_export.core.export_log import ExportEvent, ExportLog
from fusion_export.core.index_sheet import IndexSheetWriter, LegacyArtifactConflict
from fusion_export.core.models import (
    AuthContext,
    DriveFile,
    ExportJob,
    ExportStatus,
    Formula,
    IndexSheet,
    Permission,
    Style,
    TableDescriptor,
    TableExportResult,
    TabularExport,
    WorkerState,
)
from fusion_export.core.orchestrator import Exporter, ExporterConfig
from fusion_export.core.progress import ProgressPoller, ProgressStore
from fusion_export.core.worker import TableExportWorker

__all__ = [
    "AuthContext",
    "DriveFile",
    "ExportEvent",
    "ExportJob",
    "ExportLog",
    "ExportSetupError",
    "ExportStatus",
    "Exporter",
    "ExporterConfig",
    "Formula",
    "IndexSheet",
    "IndexSheetWriter",
    "LegacyArtifactConflict",
    "Permission",
    "ProgressPoller",
    "ProgressStore",
    "Style",
    "TableDescriptor",
    "TableExportResult",
    "TableExportWorker",
    "TabularExport",
    "WorkerState",
]
