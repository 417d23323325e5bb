"""Family State Service: the single owner of a family's in-memory record."""

from __future__ import annotations

import asyncio
import copy
import hmac
import json
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any, Callable, Generic, List, Mapping, Optional, TypeVar

from .account import FamilyAccount
from .channel import ChangeEvent, Dispatcher
from .chores import ChoreBoard
from .config import (
    DEFAULT_FAMILY_ID,
    INITIAL_SYNC_DELAY_SECONDS,
    INTEREST_CHECK_INTERVAL_SECONDS,
    LOCAL_DB_FILE_NAME,
    LOG_PATH,
    REMOTE_TIMEOUT_SECONDS,
    REMOTE_URL,
    SYNC_INTERVAL_SECONDS,
)
from .exceptions import (
    IncorrectPasswordError,
    OlympusBankError,
    PersistenceError,
    StructuralError,
    ValidationError,
)
from .local_store import LocalStore
from .models import (
    ApprovalType,
    Chore,
    FamilyRecord,
    Goal,
    PendingApproval,
    Role,
    Transaction,
    TransactionType,
    build_chore,
    build_goal,
    build_transaction,
    default_record,
    new_id,
    utcnow,
)
from .money import AmountLike
from .ops import StructuredLogger, SyncHealth
from .reconciler import Reconciler, accrue_interest
from .remote_store import RemoteStore, create_remote_store
from .scheduler import SyncScheduler, SyncTrigger

ValueT = TypeVar("ValueT")
Operation = Callable[[FamilyRecord, datetime], ValueT]


@dataclass(slots=True)
class Result(Generic[ValueT]):
    """Outcome of a mutating operation. Failures carry the domain error."""

    ok: bool
    value: Optional[ValueT] = None
    error: Optional[OlympusBankError] = None

    @classmethod
    def success(cls, value: Optional[ValueT] = None) -> "Result[ValueT]":
        return cls(ok=True, value=value)

    @classmethod
    def failure(cls, error: OlympusBankError) -> "Result[ValueT]":
        return cls(ok=False, error=error)

    def unwrap(self) -> ValueT:
        if not self.ok:
            assert self.error is not None
            raise self.error
        return self.value  # type: ignore[return-value]

    def __bool__(self) -> bool:
        return self.ok


@dataclass(frozen=True, slots=True)
class BankEvent:
    """Notification sent to :meth:`FamilyBank.add_listener` subscribers."""

    kind: str
    family_id: Optional[str]
    reason: str
    changed: bool = True
    timestamp: datetime = field(default_factory=utcnow)


class FamilyBank:
    """Own the record for the active family and keep it in sync.

    Every mutation runs against a structural copy of the record. The copy is
    written locally and swapped in only when both the operation and the local
    save succeed, then pushed to the remote store within the same call.
    """

    def __init__(
        self,
        local: LocalStore,
        remote: RemoteStore | None = None,
        *,
        family_id: str | None = None,
        clock: Callable[[], datetime] = utcnow,
        logger: StructuredLogger | None = None,
        initial_sync_delay: float = INITIAL_SYNC_DELAY_SECONDS,
        sync_interval: float = SYNC_INTERVAL_SECONDS,
        interest_check_interval: float = INTEREST_CHECK_INTERVAL_SECONDS,
    ) -> None:
        self.instance_id = new_id()
        self.local = local
        self.remote = remote
        self.family_id = family_id
        self._clock = clock
        self._logger = logger or StructuredLogger()
        self._reconciler = Reconciler(local, remote, clock=clock, logger=self._logger)
        self._scheduler = SyncScheduler(
            self._sync_pass,
            interest_job=self.calculate_interest,
            initial_delay=initial_sync_delay,
            interval=sync_interval,
            interest_interval=interest_check_interval,
            logger=self._logger,
        )
        self._listeners: Dispatcher[BankEvent] = Dispatcher(logger=self._logger)
        self.health = SyncHealth(clock=clock)
        self.health.remote_configured = self._reconciler.remote_enabled
        self._record: Optional[FamilyRecord] = None
        self._last_good: Optional[FamilyRecord] = None
        self._revision = 0
        self._detach: List[Callable[[], None]] = []

    @classmethod
    def from_config(cls, **kwargs: Any) -> "FamilyBank":
        """Build a bank from :mod:`olympusbank.config` settings."""

        logger = kwargs.pop("logger", None) or StructuredLogger(path=LOG_PATH)
        local = LocalStore.from_path(LOCAL_DB_FILE_NAME, logger=logger)
        remote = create_remote_store(REMOTE_URL, timeout=REMOTE_TIMEOUT_SECONDS, logger=logger)
        return cls(local, remote, logger=logger, **kwargs)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------
    @property
    def logger(self) -> StructuredLogger:
        return self._logger

    @property
    def scheduler(self) -> SyncScheduler:
        return self._scheduler

    @property
    def reconciler(self) -> Reconciler:
        return self._reconciler

    @property
    def record(self) -> Optional[FamilyRecord]:
        """Deep copy of the current record, for inspection."""

        return self._record.clone() if self._record is not None else None

    async def init(self, *, force_reset: bool = False) -> bool:
        """Load the authoritative record for the active family."""

        family_id = self.family_id or self.local.get_active_family() or DEFAULT_FAMILY_ID
        self.family_id = family_id
        self.local.set_active_family(family_id)

        outcome = await self._reconciler.bootstrap(family_id, force_reset=force_reset, origin=self.instance_id)
        self._install(outcome.record)
        if self.health.remote_configured:
            self.health.remote_online = outcome.remote_reachable
        self._attach(family_id)
        await self.calculate_interest()
        self._logger.log("bank_initialised", family=family_id, source=outcome.source.value)
        self._emit("data_changed", "init")
        return True

    async def start(self) -> bool:
        """Run the startup sync pass and arm the timers."""

        if self._record is None:
            await self.init()
        return await self._scheduler.start()

    async def close(self) -> None:
        await self._scheduler.stop()
        self._detach_all()

    def set_visibility(self, visible: bool) -> Optional[asyncio.Task]:
        return self._scheduler.set_visibility(visible)

    def add_listener(self, callback: Callable[[BankEvent], None]) -> Callable[[], None]:
        """Subscribe to state changes; returns the unsubscribe callable."""

        return self._listeners.register(callback)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------
    def get_balance(self) -> Decimal:
        return self._record.balance if self._record is not None else Decimal("0.00")

    def get_transactions(self, limit: int = 0, type_filter: TransactionType | str | None = None) -> List[Transaction]:
        """Newest-first history, optionally filtered by type and truncated."""

        if self._record is None:
            return []
        transactions = self._record.transactions
        if type_filter is not None:
            wanted = TransactionType(type_filter)
            transactions = [tx for tx in transactions if tx.type is wanted]
        if limit > 0:
            transactions = transactions[:limit]
        return copy.deepcopy(list(transactions))

    def get_pending_transactions(self) -> List[Transaction]:
        if self._record is None:
            return []
        return copy.deepcopy(self._record.pending_transactions)

    def get_chores(self) -> List[Chore]:
        if self._record is None:
            return []
        return copy.deepcopy(self._record.chores)

    def get_goals(self) -> List[Goal]:
        if self._record is None:
            return []
        return copy.deepcopy(self._record.goals)

    def get_all_pending_approvals(self) -> List[PendingApproval]:
        """Pending transactions and submitted chores, newest first."""

        if self._record is None:
            return []
        approvals = [
            PendingApproval(ApprovalType.TRANSACTION, tx.id, tx.date, transaction=copy.deepcopy(tx))
            for tx in self._record.pending_transactions
        ]
        approvals.extend(
            PendingApproval(ApprovalType.CHORE, chore.id, chore.completed_date, chore=copy.deepcopy(chore))
            for chore in self._record.chores
            if chore.pending
        )
        approvals.sort(key=lambda item: item.sort_key, reverse=True)
        return approvals

    def verify_parent_password(self, candidate: str) -> bool:
        if self._record is None or not isinstance(candidate, str):
            return False
        expected = self._record.settings.parent_password
        return hmac.compare_digest(candidate.encode("utf-8"), expected.encode("utf-8"))

    def health_status(self) -> dict:
        status = self.health.status()
        status.update(
            {
                "family_id": self.family_id,
                "is_saving": self._reconciler.is_saving,
                "pass_in_flight": self._scheduler.pass_in_flight,
                "completed_passes": self._scheduler.completed_passes,
                "skipped_passes": self._scheduler.skipped_passes,
            }
        )
        return status

    # ------------------------------------------------------------------
    # Balance and transactions
    # ------------------------------------------------------------------
    async def mutate_balance(self, delta: AmountLike, kind: TransactionType | str | None = None) -> Result[Decimal]:
        """Shift the balance without logging a transaction."""

        tx_kind = TransactionType(kind) if kind is not None else None
        return await self._apply(
            "mutate_balance",
            lambda record, now: FamilyAccount(record, now=now).mutate_balance(delta, tx_kind),
        )

    async def set_balance(self, amount: AmountLike) -> Result[Decimal]:
        return await self._apply(
            "set_balance",
            lambda record, now: FamilyAccount(record, now=now).set_balance(amount),
        )

    async def add_transaction(self, payload: Mapping[str, Any]) -> Result[Transaction]:
        def _operation(record: FamilyRecord, now: datetime) -> Transaction:
            transaction = build_transaction(payload, now=now)
            return FamilyAccount(record, now=now).add_transaction(transaction)

        return await self._apply("add_transaction", _operation)

    async def add_pending_transaction(self, payload: Mapping[str, Any]) -> Result[Transaction]:
        def _operation(record: FamilyRecord, now: datetime) -> Transaction:
            transaction = build_transaction(payload, now=now)
            return FamilyAccount(record, now=now).add_pending_transaction(transaction)

        return await self._apply("add_pending_transaction", _operation)

    async def approve_pending_transaction(self, transaction_id: str) -> Result[Transaction]:
        return await self._apply(
            "approve_pending_transaction",
            lambda record, now: FamilyAccount(record, now=now).approve_pending_transaction(transaction_id),
        )

    async def reject_pending_transaction(self, transaction_id: str) -> Result[Transaction]:
        return await self._apply(
            "reject_pending_transaction",
            lambda record, now: FamilyAccount(record, now=now).reject_pending_transaction(transaction_id),
        )

    async def clear_transactions(self) -> Result[Transaction]:
        return await self._apply(
            "clear_transactions",
            lambda record, now: FamilyAccount(record, now=now).clear_transactions(),
        )

    # ------------------------------------------------------------------
    # Chores
    # ------------------------------------------------------------------
    async def add_chore(self, payload: Mapping[str, Any]) -> Result[Chore]:
        return await self._apply("add_chore", lambda record, now: ChoreBoard(record).add(build_chore(payload)))

    async def complete_chore(self, chore_id: str, event_count: int = 1) -> Result[Chore]:
        return await self._apply(
            "complete_chore",
            lambda record, now: ChoreBoard(record).complete(chore_id, event_count, at=now),
        )

    async def approve_chore(self, chore_id: str) -> Result[Transaction]:
        """Credit the reward for a submitted chore and make it available again."""

        def _operation(record: FamilyRecord, now: datetime) -> Transaction:
            approval = ChoreBoard(record).approve(chore_id)
            return FamilyAccount(record, now=now).credit(
                approval.reward,
                TransactionType.CHORE,
                approval.description,
                chore_id=approval.chore_id,
            )

        return await self._apply("approve_chore", _operation)

    async def reject_chore(self, chore_id: str) -> Result[Chore]:
        return await self._apply("reject_chore", lambda record, now: ChoreBoard(record).reject(chore_id))

    async def delete_chore(self, chore_id: str) -> Result[Chore]:
        return await self._apply("delete_chore", lambda record, now: ChoreBoard(record).delete(chore_id))

    async def reset_chore(self, chore_id: str) -> Result[Chore]:
        return await self._apply("reset_chore", lambda record, now: ChoreBoard(record).reset(chore_id))

    # ------------------------------------------------------------------
    # Goals
    # ------------------------------------------------------------------
    async def add_goal(self, payload: Mapping[str, Any]) -> Result[Goal]:
        return await self._apply(
            "add_goal",
            lambda record, now: FamilyAccount(record, now=now).add_goal(build_goal(payload, now=now)),
        )

    async def contribute_to_goal(self, goal_id: str, amount: AmountLike) -> Result[Goal]:
        return await self._apply(
            "contribute_to_goal",
            lambda record, now: FamilyAccount(record, now=now).contribute_to_goal(goal_id, amount),
        )

    async def delete_goal(self, goal_id: str) -> Result[Goal]:
        return await self._apply(
            "delete_goal",
            lambda record, now: FamilyAccount(record, now=now).delete_goal(goal_id),
        )

    # ------------------------------------------------------------------
    # Settings and identity
    # ------------------------------------------------------------------
    async def change_parent_password(self, current: str, new: str) -> Result[None]:
        def _operation(record: FamilyRecord, now: datetime) -> None:
            if not self.verify_parent_password(current):
                raise IncorrectPasswordError("Current password is incorrect.")
            if not isinstance(new, str) or not new:
                raise ValidationError("New password must not be empty.")
            record.settings.parent_password = new

        return await self._apply("change_parent_password", _operation)

    def login(self, role: Role | str, password: str | None = None) -> Result[Role]:
        """Cache the signed-in role on this device; parents need the password."""

        try:
            resolved = Role(role)
        except ValueError:
            return Result.failure(ValidationError(f"Unknown role: {role!r}"))
        if resolved is Role.PARENT and not self.verify_parent_password(password or ""):
            self._logger.warning("login_rejected", family=self.family_id)
            return Result.failure(IncorrectPasswordError("Incorrect parent password."))
        self.local.save_auth_state(resolved)
        return Result.success(resolved)

    def logout(self) -> None:
        self.local.clear_auth_state()

    def current_role(self) -> Optional[Role]:
        state = self.local.load_auth_state()
        return state.role if state is not None else None

    async def set_family_id(self, family_id: str) -> bool:
        """Switch to ``family_id``: remote copy first, then a local copy, else new defaults."""

        if not isinstance(family_id, str) or not family_id.strip():
            return False
        family_id = family_id.strip()
        self._detach_all()
        self.family_id = family_id
        self.local.set_active_family(family_id)

        reachable, record = await self._reconciler.pull(family_id)
        source = "remote"
        if record is None:
            record = self._reconciler.adopt(self.local.load(family_id, allow_legacy=False))
            source = "local"
        if record is None:
            record = default_record()
            source = "default"
        self._install(record)
        if source == "remote":
            self.local.save(family_id, record, origin=self.instance_id)
        else:
            await self._reconciler.persist(family_id, record, origin=self.instance_id, push_remote=reachable)
        self._attach(family_id)
        await self.calculate_interest()
        self._logger.log("family_switched", family=family_id, source=source)
        self._emit("data_changed", "set_family_id")
        return True

    # ------------------------------------------------------------------
    # Sync
    # ------------------------------------------------------------------
    async def manual_sync(self) -> bool:
        return await self._scheduler.trigger(SyncTrigger.MANUAL)

    async def force_sync_from_remote(self) -> bool:
        """Replace local state with the remote copy, discarding unsynced edits."""

        return await self._scheduler.trigger(SyncTrigger.FORCE)

    async def check_connection(self) -> bool:
        if self.remote is None:
            self.local.set_connectivity(False)
            return False
        online = await self.remote.test_connection()
        if online:
            self.health.mark_online()
        else:
            self.health.mark_offline("connection test failed")
        self.local.set_connectivity(online)
        return online

    async def _sync_pass(self, trigger: SyncTrigger) -> bool:
        if self._record is None or self.family_id is None:
            return False
        if trigger is SyncTrigger.FORCE:
            return await self._force_pull()

        family_id = self.family_id
        saved = await self._reconciler.persist(family_id, self._record, origin=self.instance_id, push_remote=False)
        if not self._reconciler.remote_enabled:
            self._logger.log("sync_pass", trigger=trigger.value, family=family_id, mode="local", saved=saved)
            self._emit("data_changed", trigger.value, changed=False)
            return saved

        pushed = await self._reconciler.push(family_id, self._record)
        revision = self._revision
        reachable, remote_record = await self._reconciler.pull(family_id)
        adopted = False
        if (
            remote_record is not None
            and family_id == self.family_id
            and revision == self._revision
            and not self._reconciler.is_saving
            and remote_record != self._record
        ):
            # Edits made or pushed while the pull was in flight are newer than the pulled copy.
            self._install(remote_record)
            self.local.save(family_id, remote_record, origin=self.instance_id)
            adopted = True

        remote_ok = pushed and reachable
        self.health.record_pass(remote_ok=remote_ok, error=None if remote_ok else "remote unreachable")
        self.local.set_connectivity(remote_ok)
        self._logger.log(
            "sync_pass",
            trigger=trigger.value,
            family=family_id,
            pushed=pushed,
            reachable=reachable,
            adopted=adopted,
        )
        self._emit("data_changed", trigger.value, changed=adopted)
        return saved and remote_ok

    async def _force_pull(self) -> bool:
        family_id = self.family_id
        assert family_id is not None
        reachable, record = await self._reconciler.pull(family_id)
        if record is None:
            self.health.record_pass(remote_ok=False, error="no usable remote record" if reachable else "remote unreachable")
            self._logger.warning("force_sync_failed", family=family_id, reachable=reachable)
            return False
        self._install(record)
        self._revision += 1
        self.local.save(family_id, record, origin=self.instance_id)
        self.health.record_pass(remote_ok=True)
        self._logger.log("force_sync", family=family_id)
        self._emit("data_changed", SyncTrigger.FORCE.value)
        return True

    # ------------------------------------------------------------------
    # Snapshot, recovery and interest
    # ------------------------------------------------------------------
    def export_data(self) -> str:
        """Serialise the whole record as JSON."""

        if self._record is None:
            return json.dumps(None)
        return self._record.to_json()

    async def import_data(self, text: str | bytes) -> Result[FamilyRecord]:
        try:
            payload = json.loads(text)
        except (TypeError, ValueError):
            payload = None
        record = self._reconciler.adopt(payload)
        if record is None:
            self._logger.warning("import_rejected", family=self.family_id)
            return Result.failure(StructuralError("Invalid data structure in import."))
        return await self._replace(record, "import_data")

    async def reset_data(self) -> Result[FamilyRecord]:
        record = default_record()
        record.settings.last_interest_paid = self._clock()
        return await self._replace(record, "reset_data")

    async def recover_data(self) -> Result[FamilyRecord]:
        """Restore the last record that was saved successfully."""

        if self._last_good is None:
            return Result.failure(PersistenceError("No saved data to recover."))
        return await self._replace(self._last_good.clone(), "recover_data")

    async def calculate_interest(self) -> bool:
        """Pay interest if a full period has passed. ``True`` when a period was settled."""

        if self._record is None:
            return False
        was_stamped = self._record.settings.last_interest_paid is not None
        record, changed = accrue_interest(self._record, self._clock())
        if not changed:
            return False
        return await self._commit("calculate_interest", record) and was_stamped

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------
    async def _apply(self, action: str, operation: Operation[ValueT]) -> Result[ValueT]:
        if self._record is None:
            return Result.failure(PersistenceError("Family data has not been loaded."))
        working = self._record.clone()
        try:
            value = operation(working, self._clock())
        except OlympusBankError as exc:
            self._logger.log("operation_rejected", level="warning", action=action, error=str(exc))
            return Result.failure(exc)
        if not await self._commit(action, working):
            return Result.failure(PersistenceError("Failed to save family data locally."))
        return Result.success(value)

    async def _replace(self, record: FamilyRecord, action: str) -> Result[FamilyRecord]:
        if not await self._commit(action, record):
            return Result.failure(PersistenceError("Failed to save family data locally."))
        return Result.success(record.clone())

    async def _commit(self, action: str, record: FamilyRecord) -> bool:
        """Save ``record`` locally, swap it in, then push it.

        A failed local save leaves the current record untouched.
        """

        assert self.family_id is not None
        family_id = self.family_id
        if not await self._reconciler.persist(family_id, record, origin=self.instance_id, push_remote=False):
            self._logger.error("local_save_failed", action=action, family=family_id)
            return False
        self._install(record)
        self._revision += 1
        if self.remote is not None and self._reconciler.remote_enabled:
            await self._reconciler.push(family_id, record)
            if self.remote.connected:
                self.health.mark_online()
            else:
                self.health.mark_offline("remote push failed")
        self._emit("data_changed", action)
        return True

    def _install(self, record: FamilyRecord) -> None:
        self._record = record
        self._last_good = record.clone()

    def _attach(self, family_id: str) -> None:
        self._detach_all()
        self._detach.append(self.local.channel.register(self._on_local_change))
        if self.remote is not None:
            unsubscribe = self.remote.subscribe(family_id, self._on_remote_snapshot)
            if unsubscribe is not None:
                self._detach.append(unsubscribe)

    def _detach_all(self) -> None:
        detach, self._detach = self._detach, []
        for unsubscribe in detach:
            unsubscribe()

    def _on_remote_snapshot(self, payload: Mapping[str, Any]) -> None:
        if self._reconciler.is_saving:
            self._logger.log("snapshot_ignored", family=self.family_id, reason="save_in_flight")
            return
        record = self._reconciler.reconcile_snapshot(self._record, payload)
        if record is None:
            return
        self._install(record)
        self._revision += 1
        self._logger.log("snapshot_adopted", family=self.family_id, origin="remote")
        self._emit("data_changed", "remote_snapshot")

    def _on_local_change(self, event: ChangeEvent) -> None:
        if event.origin == self.instance_id or event.family_id != self.family_id:
            return
        payload = self.local.load(event.family_id, allow_legacy=False)
        if payload is None:
            return
        record = self._reconciler.reconcile_snapshot(self._record, payload)
        if record is None:
            return
        self._install(record)
        self._revision += 1
        self._logger.log("snapshot_adopted", family=self.family_id, origin="local")
        self._emit("data_changed", "local_change")

    def _emit(self, kind: str, reason: str, *, changed: bool = True) -> None:
        self._listeners.dispatch(BankEvent(kind=kind, family_id=self.family_id, reason=reason, changed=changed))


__all__ = ["BankEvent", "FamilyBank", "Result"]
