"""CSV activity log for hub lifecycle and report outcomes.

One row per thing the hub did: a client connecting or leaving, a report
saved or dropped. The column set is fixed so the file can be loaded by
anything that reads CSV.
"""
from __future__ import annotations

import asyncio
import csv
import json
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Mapping, Optional

COLUMNS = ("timestamp", "event", "connection_id", "count", "message", "extra")


def _encode_extra(extra: Optional[Mapping[str, Any]]) -> str:
    if not extra:
        return ""
    return json.dumps(extra, separators=(",", ":"), sort_keys=True, default=str)


class ActivityLog:
    """Append-only activity file; ``log_async`` moves the write off the event loop."""

    def __init__(self, path: str | Path, *, clock: Optional[Callable[[], datetime]] = None) -> None:
        self.path = Path(path)
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._lock = threading.Lock()
        self.path.parent.mkdir(parents=True, exist_ok=True)
        if not self.path.exists() or self.path.stat().st_size == 0:
            self._append(None)

    def _append(self, row: Optional[Mapping[str, Any]]) -> None:
        with self._lock, self.path.open("a", newline="", encoding="utf-8") as handle:
            writer = csv.DictWriter(handle, fieldnames=COLUMNS)
            if row is None:
                writer.writeheader()
            else:
                writer.writerow(row)

    def log(
        self,
        event: str,
        *,
        connection_id: Optional[str] = None,
        count: Optional[int] = None,
        message: Optional[str] = None,
        extra: Optional[Mapping[str, Any]] = None,
    ) -> None:
        stamp = self._clock()
        if stamp.tzinfo is None:
            stamp = stamp.replace(tzinfo=timezone.utc)
        self._append(
            {
                "timestamp": stamp.astimezone(timezone.utc).isoformat(timespec="milliseconds"),
                "event": event,
                "connection_id": connection_id or "",
                "count": "" if count is None else count,
                "message": message or "",
                "extra": _encode_extra(extra),
            }
        )

    async def log_async(self, event: str, **fields: Any) -> None:
        await asyncio.to_thread(self.log, event, **fields)


__all__ = ["ActivityLog", "COLUMNS"]
