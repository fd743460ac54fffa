"""
fusion-export: export Fusion Tables to Google Drive.

Each table of an export becomes a CSV or Google Spreadsheet in a per-export
Drive folder, and every exported file is recorded in an archive index sheet.
Progress of running exports can be polled table by table.
"""

from fusion_export.core.models import (
    AuthContext,
    ExportJob,
    ExportStatus,
    TableDescriptor,
    TableExportResult,
)
from fusion_export.core.errors import ExportSetupError
from fusion_export.core.orchestrator import Exporter, ExporterConfig
from fusion_export.core.progress import ProgressStore

__version__ = "0.1.0"

__all__ = [
    "__version__",
    "AuthContext",
    "ExportJob",
    "ExportSetupError",
    "ExportStatus",
    "Exporter",
    "ExporterConfig",
    "ProgressStore",
    "TableDescriptor",
    "TableExportResult",
]
