"""Durable single-device persistence for family records.

Entries live in a small SQLite key-value table. Each family's record is kept
under ``store:<family id>``; the most recently saved record is mirrored under
a legacy shared key that older installs read. All failures are swallowed and
reported as "absent" so callers can fall back to another source.
"""
from __future__ import annotations

import json
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Dict, Mapping, Optional

from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session

from .channel import ChangeChannel, ChangeEvent
from .config import (
    ACTIVE_FAMILY_KEY,
    AUTH_STATE_KEY,
    CONNECTIVITY_KEY,
    FAMILY_KEY_PREFIX,
    LEGACY_RECORD_KEY,
)
from .models import FamilyRecord, Role, format_timestamp, parse_timestamp, utcnow
from .ops import StructuredLogger
from .persistence import LocalEntry, create_local_engine, create_local_tables


@dataclass(slots=True)
class AuthState:
    """Cached sign-in state: who is using this device and since when."""

    role: Role
    timestamp: datetime

    def to_dict(self) -> Dict[str, Any]:
        return {"currentUser": self.role.value, "timestamp": format_timestamp(self.timestamp)}


class LocalStore:
    """Synchronous key-value store scoped per family identifier."""

    def __init__(
        self,
        engine: Engine,
        *,
        channel: ChangeChannel | None = None,
        logger: StructuredLogger | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._engine = engine
        self._logger = logger or StructuredLogger()
        self._clock = clock
        self.channel = channel or ChangeChannel(logger=self._logger)
        create_local_tables(engine)

    @classmethod
    def from_path(cls, path: str | Path, **kwargs: Any) -> "LocalStore":
        return cls(create_local_engine(path), **kwargs)

    @staticmethod
    def family_key(family_id: str) -> str:
        return f"{FAMILY_KEY_PREFIX}{family_id}"

    # ------------------------------------------------------------------
    # Raw entries
    # ------------------------------------------------------------------
    def read_raw(self, key: str) -> Optional[str]:
        try:
            with Session(self._engine) as session:
                entry = session.get(LocalEntry, key)
                return entry.value if entry is not None else None
        except SQLAlchemyError as exc:
            self._logger.error("local_read_failed", key=key, error=str(exc))
            return None

    def write_raw(self, key: str, value: str) -> bool:
        return self._write_many({key: value})

    def delete(self, key: str) -> bool:
        try:
            with Session(self._engine) as session:
                entry = session.get(LocalEntry, key)
                if entry is not None:
                    session.delete(entry)
                    session.commit()
            return True
        except SQLAlchemyError as exc:
            self._logger.error("local_delete_failed", key=key, error=str(exc))
            return False

    def _write_many(self, entries: Mapping[str, str]) -> bool:
        now = self._clock()
        try:
            with Session(self._engine) as session:
                for key, value in entries.items():
                    entry = session.get(LocalEntry, key)
                    if entry is None:
                        entry = LocalEntry(key=key, value=value, updated_at=now)
                    else:
                        entry.value = value
                        entry.updated_at = now
                    session.add(entry)
                session.commit()
            return True
        except SQLAlchemyError as exc:
            self._logger.error("local_write_failed", keys=sorted(entries), error=str(exc))
            return False

    def _read_json(self, key: str) -> Any:
        text = self.read_raw(key)
        if text is None:
            return None
        try:
            return json.loads(text)
        except ValueError:
            self._logger.warning("local_decode_failed", key=key)
            return None

    # ------------------------------------------------------------------
    # Family records
    # ------------------------------------------------------------------
    def save(self, family_id: str, record: FamilyRecord, *, origin: str | None = None) -> bool:
        """Write ``record`` for ``family_id`` and the legacy mirror, then broadcast."""

        try:
            text = record.to_json()
        except (TypeError, ValueError) as exc:
            self._logger.error("local_encode_failed", family=family_id, error=str(exc))
            return False
        if not self._write_many({self.family_key(family_id): text, LEGACY_RECORD_KEY: text}):
            return False
        self.channel.publish(ChangeEvent(family_id=family_id, data_version=record.data_version, origin=origin))
        return True

    def load(self, family_id: str, *, allow_legacy: bool = True) -> Optional[Dict[str, Any]]:
        """Return the decoded record payload for ``family_id`` or ``None``."""

        key = self.family_key(family_id)
        text = self.read_raw(key)
        if text is None and allow_legacy:
            text = self.read_raw(LEGACY_RECORD_KEY)
            if text is not None:
                self._logger.log("local_legacy_fallback", family=family_id)
                self.write_raw(key, text)
        if text is None:
            return None
        try:
            payload = json.loads(text)
        except ValueError:
            self._logger.warning("local_decode_failed", key=key)
            return None
        return payload if isinstance(payload, dict) else None

    # ------------------------------------------------------------------
    # Device level entries
    # ------------------------------------------------------------------
    def get_active_family(self) -> Optional[str]:
        value = self.read_raw(ACTIVE_FAMILY_KEY)
        return value or None

    def set_active_family(self, family_id: str) -> bool:
        return self.write_raw(ACTIVE_FAMILY_KEY, family_id)

    def save_auth_state(self, role: Role, *, at: datetime | None = None) -> AuthState:
        state = AuthState(role=role, timestamp=at or self._clock())
        self.write_raw(AUTH_STATE_KEY, json.dumps(state.to_dict()))
        return state

    def load_auth_state(self) -> Optional[AuthState]:
        payload = self._read_json(AUTH_STATE_KEY)
        if not isinstance(payload, dict):
            return None
        try:
            role = Role(payload.get("currentUser"))
        except ValueError:
            return None
        return AuthState(role=role, timestamp=parse_timestamp(payload.get("timestamp")) or self._clock())

    def clear_auth_state(self) -> bool:
        return self.delete(AUTH_STATE_KEY)

    def set_connectivity(self, online: bool) -> bool:
        return self.write_raw(CONNECTIVITY_KEY, json.dumps({"online": online, "checkedAt": format_timestamp(self._clock())}))

    def last_connectivity(self) -> Optional[bool]:
        payload = self._read_json(CONNECTIVITY_KEY)
        if not isinstance(payload, dict):
            return None
        return bool(payload.get("online"))


__all__ = ["AuthState", "LocalStore"]
