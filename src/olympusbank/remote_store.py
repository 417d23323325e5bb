"""Optional cloud-side document store, one document per family.

Every backend goes through :class:`RemoteStore`, which bounds calls with a
timeout, keeps the process-wide ``connected`` flag current and turns
transport failures into :class:`~olympusbank.exceptions.RemoteConnectionError`.
Nothing else escapes this module.
"""
from __future__ import annotations

import asyncio
import json
from abc import ABC, abstractmethod
from typing import Any, Awaitable, Callable, Dict, List, Optional, TypeVar

from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session

from .config import MEMORY_REMOTE_URL, REMOTE_TIMEOUT_SECONDS
from .exceptions import RemoteConnectionError
from .models import DATA_VERSION, utcnow
from .ops import StructuredLogger
from .persistence import ConnectionProbe, FamilyDocument, create_remote_engine, create_remote_tables

SnapshotCallback = Callable[[Dict[str, Any]], None]
ResultT = TypeVar("ResultT")

CONNECTION_TEST_DOCUMENT = "test"


def _decode(text: Optional[str]) -> Optional[Dict[str, Any]]:
    if text is None:
        return None
    try:
        payload = json.loads(text)
    except ValueError:
        return None
    return payload if isinstance(payload, dict) else None


class RemoteStore(ABC):
    """Abstract remote backend keyed by family identifier."""

    def __init__(self, *, timeout: float = REMOTE_TIMEOUT_SECONDS, logger: StructuredLogger | None = None) -> None:
        self.timeout = timeout
        self.connected = False
        self._logger = logger or StructuredLogger()

    @abstractmethod
    def is_available(self) -> bool:
        """Return ``True`` when a client is configured. Does not touch the network."""

    @abstractmethod
    async def _fetch(self, family_id: str) -> Optional[Dict[str, Any]]: ...

    @abstractmethod
    async def _put(self, family_id: str, payload: Dict[str, Any]) -> None: ...

    @abstractmethod
    async def _probe(self) -> None: ...

    def subscribe(self, family_id: str, callback: SnapshotCallback) -> Optional[Callable[[], None]]:
        """Register for pushed snapshots. ``None`` means push is unsupported."""

        return None

    async def fetch(self, family_id: str) -> Optional[Dict[str, Any]]:
        """Return the stored payload for ``family_id`` or ``None`` when absent."""

        return await self._call("fetch", family_id, self._fetch(family_id))

    async def put(self, family_id: str, payload: Dict[str, Any]) -> None:
        await self._call("put", family_id, self._put(family_id, payload))

    async def test_connection(self) -> bool:
        """Round-trip a no-op write to tell "configured" from "reachable"."""

        if not self.is_available():
            self.connected = False
            return False
        try:
            await self._call("probe", None, self._probe())
        except RemoteConnectionError:
            return False
        return True

    async def _call(self, action: str, family_id: str | None, operation: Awaitable[ResultT]) -> ResultT:
        try:
            result = await asyncio.wait_for(operation, timeout=self.timeout)
        except asyncio.TimeoutError as exc:
            self.connected = False
            self._logger.warning("remote_timeout", action=action, family=family_id, timeout=self.timeout)
            raise RemoteConnectionError(f"Remote {action} timed out after {self.timeout}s") from exc
        except RemoteConnectionError as exc:
            self.connected = False
            self._logger.warning("remote_error", action=action, family=family_id, error=str(exc))
            raise
        self.connected = True
        return result


class SQLRemoteStore(RemoteStore):
    """Document rows in a SQL database reached through SQLAlchemy."""

    def __init__(self, engine: Engine | None, **kwargs: Any) -> None:
        super().__init__(**kwargs)
        self._engine = engine
        self._schema_ready = False

    @classmethod
    def from_url(cls, url: str, **kwargs: Any) -> "SQLRemoteStore":
        return cls(create_remote_engine(url), **kwargs)

    def is_available(self) -> bool:
        return self._engine is not None

    def _require_engine(self) -> Engine:
        if self._engine is None:
            raise RemoteConnectionError("Remote store is not configured.")
        if not self._schema_ready:
            create_remote_tables(self._engine)
            self._schema_ready = True
        return self._engine

    def _fetch_sync(self, family_id: str) -> Optional[str]:
        with Session(self._require_engine()) as session:
            document = session.get(FamilyDocument, family_id)
            return document.payload if document is not None else None

    def _put_sync(self, family_id: str, text: str, data_version: int) -> None:
        with Session(self._require_engine()) as session:
            document = session.get(FamilyDocument, family_id)
            if document is None:
                document = FamilyDocument(family_id=family_id, payload=text)
            document.payload = text
            document.data_version = data_version
            document.updated_at = utcnow()
            session.add(document)
            session.commit()

    def _probe_sync(self) -> None:
        with Session(self._require_engine()) as session:
            probe = session.get(ConnectionProbe, CONNECTION_TEST_DOCUMENT)
            if probe is None:
                probe = ConnectionProbe(id=CONNECTION_TEST_DOCUMENT)
            probe.timestamp = utcnow()
            session.add(probe)
            session.commit()

    async def _run(self, func: Callable[..., ResultT], *args: Any) -> ResultT:
        try:
            return await asyncio.to_thread(func, *args)
        except SQLAlchemyError as exc:
            raise RemoteConnectionError(str(exc)) from exc

    async def _fetch(self, family_id: str) -> Optional[Dict[str, Any]]:
        return _decode(await self._run(self._fetch_sync, family_id))

    async def _put(self, family_id: str, payload: Dict[str, Any]) -> None:
        text = json.dumps(payload, ensure_ascii=False)
        await self._run(self._put_sync, family_id, text, int(payload.get("dataVersion", DATA_VERSION)))

    async def _probe(self) -> None:
        await self._run(self._probe_sync)


class MemoryRemoteStore(RemoteStore):
    """In-process document store with push-style subscriptions.

    Documents are held as JSON text so readers never share objects with
    writers. Setting ``online`` to ``False`` makes every call fail the way an
    unreachable backend would.
    """

    def __init__(self, *, online: bool = True, **kwargs: Any) -> None:
        super().__init__(**kwargs)
        self.online = online
        self.documents: Dict[str, str] = {}
        self.writes: List[str] = []
        self.probes = 0
        self._subscribers: Dict[str, List[SnapshotCallback]] = {}

    def is_available(self) -> bool:
        return True

    def _check_online(self) -> None:
        if not self.online:
            raise RemoteConnectionError("Remote store is offline.")

    async def _fetch(self, family_id: str) -> Optional[Dict[str, Any]]:
        self._check_online()
        return _decode(self.documents.get(family_id))

    async def _put(self, family_id: str, payload: Dict[str, Any]) -> None:
        self._check_online()
        text = json.dumps(payload, ensure_ascii=False)
        self.documents[family_id] = text
        self.writes.append(family_id)
        self._notify(family_id, text)

    async def _probe(self) -> None:
        self._check_online()
        self.probes += 1

    def subscribe(self, family_id: str, callback: SnapshotCallback) -> Optional[Callable[[], None]]:
        listeners = self._subscribers.setdefault(family_id, [])
        listeners.append(callback)

        def _unsubscribe() -> None:
            try:
                listeners.remove(callback)
            except ValueError:
                pass

        return _unsubscribe

    def _notify(self, family_id: str, text: str) -> None:
        for callback in list(self._subscribers.get(family_id, ())):
            snapshot = _decode(text)
            if snapshot is None:
                continue
            try:
                callback(snapshot)
            except Exception as exc:  # noqa: BLE001
                self._logger.error("remote_listener_failed", family=family_id, error=repr(exc))


def create_remote_store(url: str | None, **kwargs: Any) -> Optional[RemoteStore]:
    """Build the backend named by ``url``; empty means local-only operation."""

    if not url:
        return None
    if url == MEMORY_REMOTE_URL:
        return MemoryRemoteStore(**kwargs)
    return SQLRemoteStore.from_url(url, **kwargs)


__all__ = [
    "MemoryRemoteStore",
    "RemoteStore",
    "SQLRemoteStore",
    "SnapshotCallback",
    "create_remote_store",
]
