"""Choose the authoritative record among the remote, local and default sources.

Precedence is fixed: a reachable remote document wins, then the local copy,
then the compiled-in defaults. There is no merging. Whichever copy is written
last replaces the whole record on every device.
"""
from __future__ import annotations

import asyncio
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal, ROUND_HALF_UP
from enum import Enum
from typing import Any, Callable, Dict, Mapping, Optional

from .config import INTEREST_PERIOD
from .exceptions import RemoteConnectionError
from .local_store import LocalStore
from .models import (
    DATA_VERSION,
    FamilyRecord,
    Transaction,
    TransactionType,
    default_record,
    new_id,
    parse_record,
    utcnow,
)
from .money import CENT, to_decimal
from .ops import StructuredLogger
from .remote_store import RemoteStore


class RecordSource(str, Enum):
    REMOTE = "remote"
    LOCAL = "local"
    DEFAULT = "default"
    RESET = "reset"


@dataclass(slots=True)
class Bootstrap:
    """Outcome of :meth:`Reconciler.bootstrap`."""

    record: FamilyRecord
    source: RecordSource
    remote_reachable: bool


def migrate(record: FamilyRecord) -> FamilyRecord:
    """Bring ``record`` up to :data:`DATA_VERSION`.

    Version 1 is the only layout so far. Later steps must be additive and keep
    unknown fields, which the model already preserves in ``extra``.
    """

    if record.data_version < DATA_VERSION:
        record.data_version = DATA_VERSION
    return record


def accrue_interest(record: FamilyRecord, now: datetime) -> tuple[FamilyRecord, bool]:
    """Pay monthly interest when 30 whole days have passed.

    Returns the (possibly new) record and whether it changed. A missing
    ``lastInterestPaid`` is stamped without paying anything.
    """

    settings = record.settings
    if settings.last_interest_paid is None:
        updated = record.clone()
        updated.settings.last_interest_paid = now
        return updated, True

    elapsed_days = (now - settings.last_interest_paid).days
    if elapsed_days < INTEREST_PERIOD.days:
        return record, False

    updated = record.clone()
    interest = (updated.balance * updated.settings.interest_rate / Decimal(12)).quantize(CENT, rounding=ROUND_HALF_UP)
    if interest >= CENT:
        percent = (updated.settings.interest_rate * 100).normalize()
        updated.transactions.insert(
            0,
            Transaction(
                id=new_id(),
                type=TransactionType.INTEREST,
                amount=interest,
                date=now,
                description=f"Monthly interest ({percent:f}% annual)",
            ),
        )
        updated.balance = to_decimal(updated.balance + interest)
    updated.settings.last_interest_paid = now
    return updated, True


class Reconciler:
    """Produce records from the available stores and write them back."""

    def __init__(
        self,
        local: LocalStore,
        remote: RemoteStore | None = None,
        *,
        clock: Callable[[], datetime] = utcnow,
        logger: StructuredLogger | None = None,
    ) -> None:
        self.local = local
        self.remote = remote
        self._clock = clock
        self._logger = logger or StructuredLogger()
        self._push_lock = asyncio.Lock()
        self._queued: Dict[str, Dict[str, Any]] = {}
        self.is_saving = False
        self._last_push_ok = True

    @property
    def remote_enabled(self) -> bool:
        return self.remote is not None and self.remote.is_available()

    # ------------------------------------------------------------------
    # Source selection
    # ------------------------------------------------------------------
    async def bootstrap(self, family_id: str, *, force_reset: bool = False, origin: str | None = None) -> Bootstrap:
        """Return the authoritative record for ``family_id``. Never fails."""

        if force_reset:
            record = default_record()
            await self.persist(family_id, record, origin=origin)
            self._logger.log("bootstrap_source", family=family_id, source=RecordSource.RESET.value)
            return Bootstrap(record=record, source=RecordSource.RESET, remote_reachable=self._remote_connected())

        remote_reachable = False
        if self.remote_enabled:
            try:
                payload = await self.remote.fetch(family_id)
                remote_reachable = True
            except RemoteConnectionError:
                payload = None
            record = self.adopt(payload)
            if record is not None:
                self._logger.log("bootstrap_source", family=family_id, source=RecordSource.REMOTE.value)
                return Bootstrap(record=record, source=RecordSource.REMOTE, remote_reachable=True)
            if remote_reachable:
                self._logger.log("remote_record_unusable", family=family_id, present=payload is not None)

        record = self.adopt(self.local.load(family_id))
        if record is not None:
            self._logger.log("bootstrap_source", family=family_id, source=RecordSource.LOCAL.value)
            if remote_reachable:
                await self.push(family_id, record)
            return Bootstrap(record=record, source=RecordSource.LOCAL, remote_reachable=remote_reachable)

        record = default_record()
        record.settings.last_interest_paid = self._clock()
        await self.persist(family_id, record, origin=origin, push_remote=remote_reachable)
        self._logger.log("bootstrap_source", family=family_id, source=RecordSource.DEFAULT.value)
        return Bootstrap(record=record, source=RecordSource.DEFAULT, remote_reachable=remote_reachable)

    def adopt(self, payload: Any) -> Optional[FamilyRecord]:
        """Validate and migrate ``payload``; ``None`` when it is unusable."""

        record = parse_record(payload)
        if record is None:
            return None
        return migrate(record)

    def reconcile_snapshot(self, current: FamilyRecord | None, payload: Mapping[str, Any]) -> Optional[FamilyRecord]:
        """Return the remote record when it is valid and differs from ``current``."""

        record = self.adopt(payload)
        if record is None:
            self._logger.warning("snapshot_invalid")
            return None
        if current is not None and record == current:
            return None
        return record

    async def pull(self, family_id: str) -> tuple[bool, Optional[FamilyRecord]]:
        """Fetch and adopt the remote record. Returns ``(reachable, record)``."""

        if not self.remote_enabled:
            return False, None
        try:
            payload = await self.remote.fetch(family_id)
        except RemoteConnectionError:
            return False, None
        return True, self.adopt(payload)

    # ------------------------------------------------------------------
    # Writing
    # ------------------------------------------------------------------
    async def persist(
        self,
        family_id: str,
        record: FamilyRecord,
        *,
        origin: str | None = None,
        push_remote: bool = True,
    ) -> bool:
        """Save locally, then push remotely. Returns whether the local write succeeded."""

        record.data_version = DATA_VERSION
        saved = self.local.save(family_id, record, origin=origin)
        if push_remote and self.remote_enabled:
            await self.push(family_id, record)
        return saved

    async def push(self, family_id: str, record: FamilyRecord) -> bool:
        """Upload ``record`` and wait until it has been written.

        Pushes requested while a write is in flight are queued and folded into
        the running drain loop; their callers wait for that loop to finish.
        """

        if not self.remote_enabled:
            return False
        self._queued[family_id] = record.to_dict()
        async with self._push_lock:
            if not self._queued:
                return self._last_push_ok
            self.is_saving = True
            try:
                while self._queued:
                    queued_family, payload = next(iter(self._queued.items()))
                    del self._queued[queued_family]
                    await self.remote.put(queued_family, payload)
            except RemoteConnectionError as exc:
                self._queued.clear()
                self._last_push_ok = False
                self._logger.warning("remote_push_failed", family=family_id, error=str(exc))
                return False
            finally:
                self.is_saving = False
        self._last_push_ok = True
        return True

    def _remote_connected(self) -> bool:
        return self.remote is not None and self.remote.connected


__all__ = ["Bootstrap", "Reconciler", "RecordSource", "accrue_interest", "migrate"]
