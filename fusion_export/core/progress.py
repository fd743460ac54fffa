"""In-memory progress tracking for running exports.

The ProgressStore keeps exactly one TableExportResult per (export, table)
pair. Workers write to it, pollers read from it through a ProgressPoller,
which remembers what it has already delivered so the store itself stays
unaware of its consumers.

Entries are created on first write and are never removed here. A table that
stays LOADING forever may belong to a worker that is still running or to a
process that died mid-export; the store cannot tell the two apart.
"""

from __future__ import annotations

import threading
from typing import Callable, Dict, List, Optional

from .models import ExportStatus, TableExportResult


class ProgressStore:
    """Per-export, per-table status map with last-write-wins upserts.

    Safe to read from another thread while an export runs on the event loop.
    """

    def __init__(self) -> None:
        self._exports: Dict[str, Dict[str, TableExportResult]] = {}
        self._lock = threading.Lock()

    def record_status(self, export_id: str, table_id: str, result: TableExportResult) -> None:
        """Upsert the result for a table.

        Args:
            export_id: Export the table belongs to.
            table_id: Table identifier.
            result: New result for the table.

        Raises:
            ValueError: If a LOADING result would replace a terminal one.
        """
        with self._lock:
            results = self._exports.setdefault(export_id, {})
            current = results.get(table_id)
            if current is not None and current.is_terminal and not result.is_terminal:
                raise ValueError(
                    f"Table {table_id} of export {export_id} already finished "
                    f"with status {current.status.value}"
                )
            results[table_id] = result

    def get(self, export_id: str, table_id: str) -> Optional[TableExportResult]:
        with self._lock:
            return self._exports.get(export_id, {}).get(table_id)

    def list_results(self, export_id: str) -> List[TableExportResult]:
        """Return every result of an export in the order tables were first recorded."""
        with self._lock:
            return list(self._exports.get(export_id, {}).values())

    def list_updates_since(
        self,
        export_id: str,
        predicate: Callable[[TableExportResult], bool],
    ) -> List[TableExportResult]:
        """Return terminal results of an export accepted by ``predicate``.

        Args:
            export_id: Export to read.
            predicate: Filter supplied by the poller, typically
                "not delivered yet".

        Returns:
            Matching non-LOADING results.
        """
        return [
            result
            for result in self.list_results(export_id)
            if result.is_terminal and predicate(result)
        ]

    def is_complete(self, export_id: str) -> bool:
        """True once the export has results and none of them is LOADING."""
        results = self.list_results(export_id)
        return bool(results) and all(result.is_terminal for result in results)

    def export_ids(self) -> List[str]:
        with self._lock:
            return list(self._exports)

    def get_stats(self, export_id: str) -> dict[str, int]:
        """Get result counts by status.

        Returns:
            Dictionary mapping status names to counts, plus ``total``.
        """
        stats = {status.value: 0 for status in ExportStatus}
        for result in self.list_results(export_id):
            stats[result.status.value] += 1
        stats["total"] = sum(stats.values())
        return stats

    def __repr__(self) -> str:
        return f"ProgressStore(exports={len(self._exports)})"


class ProgressPoller:
    """Delivers each terminal result of one export exactly once.

    Usage:
        poller = ProgressPoller(store, export_id)
        while not poller.is_complete:
            for result in poller.poll():
                render(result)
    """

    def __init__(self, store: ProgressStore, export_id: str) -> None:
        self._store = store
        self.export_id = export_id
        self._delivered: set[str] = set()
        self._lock = threading.Lock()

    def poll(self) -> List[TableExportResult]:
        """Return results that became terminal since the previous poll."""
        with self._lock:
            updates = self._store.list_updates_since(
                self.export_id,
                lambda result: result.table_id not in self._delivered,
            )
            self._delivered.update(result.table_id for result in updates)
            return updates

    @property
    def delivered_count(self) -> int:
        return len(self._delivered)

    @property
    def is_complete(self) -> bool:
        """True when every table of the export has been delivered."""
        results = self._store.list_results(self.export_id)
        return bool(results) and len(self._delivered) >= len(results)
