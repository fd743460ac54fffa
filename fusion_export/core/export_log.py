"""Lifecycle events of exports and their tables.

The export log is a side channel: it records when an export and each of its
tables start and finish, and it must never interfere with the export itself.
Every failure while emitting an event is swallowed and counted.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, List, Optional

from ..utils.logging import get_logger

EXPORT_STARTED = "export_started"
TABLE_STARTED = "table_started"
TABLE_FINISHED = "table_finished"
EXPORT_FINISHED = "export_finished"


@dataclass(frozen=True)
class ExportEvent:
    """A single lifecycle event.

    Attributes:
        name: One of the event name constants of this module.
        export_id: Export the event belongs to.
        fields: Event-specific values (table index, status, size bucket...).
        timestamp: When the event was emitted.
    """

    name: str
    export_id: str
    fields: dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=datetime.now)


class ExportLog:
    """Write-only, fire-and-forget log of export lifecycle events."""

    def __init__(self, logger: Optional[logging.Logger] = None) -> None:
        self._logger = logger or get_logger("export_log")
        self._listeners: List[Callable[[ExportEvent], None]] = []
        self.dropped_events = 0

    def add_listener(self, listener: Callable[[ExportEvent], None]) -> None:
        """Forward every future event to ``listener``."""
        self._listeners.append(listener)

    def export_started(self, export_id: str, table_count: int) -> None:
        self._emit(EXPORT_STARTED, export_id, table_count=table_count)

    def table_started(self, export_id: str, table_index: int) -> None:
        self._emit(TABLE_STARTED, export_id, table_index=table_index)

    def table_finished(
        self,
        export_id: str,
        table_index: int,
        status: str,
        size_bucket: float,
    ) -> None:
        self._emit(
            TABLE_FINISHED,
            export_id,
            table_index=table_index,
            status=status,
            size_bucket=size_bucket,
        )

    def export_finished(self, export_id: str) -> None:
        self._emit(EXPORT_FINISHED, export_id)

    def _emit(self, name: str, export_id: str, **fields: Any) -> None:
        event = ExportEvent(name=name, export_id=export_id, fields=fields)
        details = " ".join(f"{key}={value}" for key, value in fields.items())

        try:
            self._logger.info(
                f"{name} export_id={export_id} {details}".rstrip(),
                extra={"event": name, "export_id": export_id, "event_fields": fields},
            )
        except Exception:
            self.dropped_events += 1

        for listener in self._listeners:
            try:
                listener(event)
            except Exception:
                self.dropped_events += 1
