"""Contracts of the external services an export talks to.

The export core only depends on these abstract classes. The concrete
clients in this package talk to Fusion Tables, Drive and Sheets through
the Google API client; tests swap in in-memory fakes.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Any, Optional, Sequence

from ..core.models import (
    AuthContext,
    DriveFile,
    IndexSheet,
    Permission,
    Style,
    TableDescriptor,
    TabularExport,
)
from ..utils.logging import get_logger


class ServiceError(Exception):
    """Base exception for failed service calls.

    Attributes:
        status_code: HTTP status of the failed call, if any.
        retryable: Whether retrying the call may succeed.
    """

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        retryable: bool = True,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.retryable = retryable


class FetchError(ServiceError):
    """A table could not be fetched (timeout, quota, permission...)."""


class UploadError(ServiceError):
    """A file could not be uploaded to Drive."""


class SheetNotFoundError(ServiceError):
    """A spreadsheet exists but has no usable sheet."""

    def __init__(self, message: str, status_code: Optional[int] = 404) -> None:
        super().__init__(message, status_code=status_code, retryable=False)


class TableSource(ABC):
    """Read side: the legacy hosted-table service."""

    @abstractmethod
    async def fetch_table_csv(self, auth: AuthContext, table: TableDescriptor) -> TabularExport:
        """Fetch a table as a size-bounded CSV export.

        Raises:
            FetchError: On timeout, quota or permission problems.
        """

    @abstractmethod
    async def fetch_styles(self, auth: AuthContext, table_id: str) -> list[Style]:
        """Fetch the styles defined on a table."""


class DestinationStore(ABC):
    """Write side: Drive files and the Sheets API."""

    @abstractmethod
    async def resolve_or_create_folder(
        self,
        auth: AuthContext,
        name: str,
        parent_id: Optional[str] = None,
    ) -> str:
        """Return the id of the named folder, creating it if necessary."""

    @abstractmethod
    async def create_folder(
        self,
        auth: AuthContext,
        name: str,
        parent_id: Optional[str] = None,
    ) -> str:
        """Create a new folder and return its id."""

    @abstractmethod
    async def upload_artifact(
        self,
        auth: AuthContext,
        folder_id: str,
        content: TabularExport,
    ) -> DriveFile:
        """Upload exported content into a folder.

        Raises:
            UploadError: If the upload fails.
        """

    @abstractmethod
    async def replicate_permissions(
        self,
        auth: AuthContext,
        file_id: str,
        permissions: Sequence[Permission],
    ) -> None:
        """Grant every permission in ``permissions`` on a file."""

    @abstractmethod
    async def find_named_file(
        self,
        auth: AuthContext,
        name: str,
        parent_id: str,
    ) -> Optional[str]:
        """Return the id of a non-trashed file named ``name`` in a folder, or None."""

    @abstractmethod
    async def create_spreadsheet(
        self,
        auth: AuthContext,
        name: str,
        parent_id: str,
        header: Sequence[str],
    ) -> str:
        """Create a spreadsheet whose first row is ``header``; return its id."""

    @abstractmethod
    async def get_first_sheet_id(self, auth: AuthContext, spreadsheet_id: str) -> int:
        """Return the id of the first sheet of a spreadsheet.

        Raises:
            SheetNotFoundError: If the spreadsheet has no readable sheet.
        """

    @abstractmethod
    async def format_header(self, auth: AuthContext, sheet: IndexSheet, column_count: int) -> None:
        """Style the header row, freeze it and size the columns."""

    @abstractmethod
    async def append_rows(
        self,
        auth: AuthContext,
        sheet: IndexSheet,
        rows: Sequence[Sequence[str]],
    ) -> None:
        """Append rows to a sheet.

        Cells that are ``Formula`` instances are written as formulas, every
        other cell as plain text.
        """


class ErrorReporter(ABC):
    """Destination for per-table errors (error aggregation service)."""

    @abstractmethod
    def report(self, error: BaseException, context: Optional[dict[str, Any]] = None) -> None:
        """Report an error. Implementations must not raise."""


class LoggingErrorReporter(ErrorReporter):
    """Reports errors to the application log with their traceback."""

    def __init__(self, logger: Optional[logging.Logger] = None) -> None:
        self._logger = logger or get_logger("errors")

    def report(self, error: BaseException, context: Optional[dict[str, Any]] = None) -> None:
        details = ", ".join(f"{key}={value}" for key, value in (context or {}).items())
        self._logger.error(
            f"Reported error: {error} ({details})",
            exc_info=(type(error), error, error.__traceback__),
        )
