"""Operational utilities: structured event log and sync health."""

from __future__ import annotations

import json
from datetime import datetime
from pathlib import Path
from typing import Callable, Optional

from .models import format_timestamp, utcnow


class SyncHealth:
    """Aggregate connectivity and sync information for status displays."""

    def __init__(self, *, clock: Callable[[], datetime] = utcnow) -> None:
        self._clock = clock
        self.remote_configured = False
        self.remote_online = False
        self.last_sync_at: Optional[datetime] = None
        self.last_error: Optional[str] = None
        self.passes = 0
        self.failed_passes = 0

    def record_pass(self, *, remote_ok: bool, error: str | None = None) -> None:
        self.passes += 1
        self.remote_online = remote_ok
        if remote_ok:
            self.last_sync_at = self._clock()
            self.last_error = None
        else:
            self.failed_passes += 1
            if error:
                self.last_error = error

    def mark_offline(self, error: str) -> None:
        self.remote_online = False
        self.last_error = error

    def mark_online(self) -> None:
        self.remote_online = True

    def status(self) -> dict:
        if not self.remote_configured:
            mode = "local"
        elif self.remote_online:
            mode = "online"
        else:
            mode = "offline"
        return {
            "mode": mode,
            "remote_configured": self.remote_configured,
            "remote_online": self.remote_online,
            "last_sync_at": format_timestamp(self.last_sync_at),
            "last_sync_age_seconds": self.last_sync_age_seconds(),
            "last_error": self.last_error,
            "passes": self.passes,
            "failed_passes": self.failed_passes,
        }

    def last_sync_age_seconds(self) -> Optional[int]:
        if not self.last_sync_at:
            return None
        return int((self._clock() - self.last_sync_at).total_seconds())


class StructuredLogger:
    """Write JSON lines log entries for later inspection."""

    def __init__(self, *, path: Path | str | None = None, clock: Callable[[], datetime] = utcnow) -> None:
        self.path = Path(path) if path else None
        self._clock = clock
        self._entries: list[dict] = []

    def log(self, event_type: str, *, level: str = "info", **fields: object) -> dict:
        entry = {
            "timestamp": format_timestamp(self._clock()),
            "level": level,
            "event": event_type,
            **fields,
        }
        self._entries.append(entry)
        if self.path:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with self.path.open("a", encoding="utf-8") as handle:
                handle.write(json.dumps(entry, default=str) + "\n")
        return entry

    def warning(self, event_type: str, **fields: object) -> dict:
        return self.log(event_type, level="warning", **fields)

    def error(self, event_type: str, **fields: object) -> dict:
        return self.log(event_type, level="error", **fields)

    def tail(self, limit: int = 50) -> tuple[dict, ...]:
        return tuple(self._entries[-limit:])

    def events(self, event_type: str) -> tuple[dict, ...]:
        return tuple(entry for entry in self._entries if entry["event"] == event_type)


__all__ = ["StructuredLogger", "SyncHealth"]
