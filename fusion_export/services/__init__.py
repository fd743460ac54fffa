"""
fusion_export.services - Clients for the services an export talks to.

- Fusion Tables (source tables and styles)
- Google Drive and Sheets (exported files and the index sheet)

Each client implements a contract from services.base so the export core can
run against fakes.
"""

from fusion_export.services.base import (
    DestinationStore,
    ErrorReporter,
    FetchError,
    LoggingErrorReporter,
    ServiceError,
    SheetNotFoundError,
    TableSource,
    UploadError,
)
from fusion_export.services.fusiontables import FusionTablesClient
from fusion_export.services.google_api import ServiceCache, build_service
from fusion_export.services.google_drive import GoogleDriveStore

__all__ = [
    "DestinationStore",
    "ErrorReporter",
    "FetchError",
    "FusionTablesClient",
    "GoogleDriveStore",
    "LoggingErrorReporter",
    "ServiceCache",
    "ServiceError",
    "SheetNotFoundError",
    "TableSource",
    "UploadError",
    "build_service",
]
