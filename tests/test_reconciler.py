import asyncio
import json
from datetime import timedelta
from decimal import Decimal

from olympusbank.local_store import LocalStore
from olympusbank.models import TransactionType, default_record
from olympusbank.reconciler import Reconciler, RecordSource, accrue_interest
from olympusbank.remote_store import MemoryRemoteStore


def make_reconciler(local_store, remote, clock, logger) -> Reconciler:
    return Reconciler(local_store, remote, clock=clock, logger=logger)


def test_remote_record_wins_over_local(local_store, remote, clock, logger) -> None:
    local_copy = default_record()
    local_copy.balance = Decimal("20.00")
    local_store.save("fam", local_copy)
    remote_copy = default_record()
    remote_copy.balance = Decimal("10.00")
    asyncio.run(remote.put("fam", remote_copy.to_dict()))
    reconciler = make_reconciler(local_store, remote, clock, logger)

    outcome = asyncio.run(reconciler.bootstrap("fam"))

    assert outcome.source is RecordSource.REMOTE
    assert outcome.remote_reachable is True
    assert outcome.record.balance == Decimal("10.00")


def test_unreachable_remote_falls_back_to_local_without_push(local_store, remote, clock, logger) -> None:
    local_copy = default_record()
    local_copy.balance = Decimal("20.00")
    local_store.save("fam", local_copy)
    remote.online = False
    reconciler = make_reconciler(local_store, remote, clock, logger)

    outcome = asyncio.run(reconciler.bootstrap("fam"))

    assert outcome.source is RecordSource.LOCAL
    assert outcome.remote_reachable is False
    assert outcome.record.balance == Decimal("20.00")
    assert remote.writes == []


def test_reachable_empty_remote_is_seeded_from_local(local_store, remote, clock, logger) -> None:
    local_store.save("fam", default_record())
    reconciler = make_reconciler(local_store, remote, clock, logger)

    outcome = asyncio.run(reconciler.bootstrap("fam"))

    assert outcome.source is RecordSource.LOCAL
    assert remote.writes == ["fam"]


def test_invalid_remote_document_is_skipped(local_store, remote, clock, logger) -> None:
    local_copy = default_record()
    local_copy.balance = Decimal("42.00")
    local_store.save("fam", local_copy)
    asyncio.run(remote.put("fam", {"balance": 1}))
    reconciler = make_reconciler(local_store, remote, clock, logger)

    outcome = asyncio.run(reconciler.bootstrap("fam"))

    assert outcome.source is RecordSource.LOCAL
    assert outcome.record.balance == Decimal("42.00")
    assert logger.events("remote_record_unusable")


def test_corrupt_local_copy_recovers_defaults(local_store, clock, logger) -> None:
    local_store.write_raw(LocalStore.family_key("fam"), "{definitely not json")
    reconciler = make_reconciler(local_store, None, clock, logger)

    outcome = asyncio.run(reconciler.bootstrap("fam"))

    assert outcome.source is RecordSource.DEFAULT
    assert outcome.record.balance == Decimal("385.80")
    assert outcome.record.settings.last_interest_paid == clock.now
    assert local_store.load("fam")["settings"]["lastInterestPaid"] == "2024-01-01T12:00:00.000Z"


def test_bootstrap_is_idempotent(local_store, remote, clock, logger) -> None:
    reconciler = make_reconciler(local_store, remote, clock, logger)

    async def scenario():
        first = await reconciler.bootstrap("fam")
        second = await reconciler.bootstrap("fam")
        return first, second

    first, second = asyncio.run(scenario())

    assert first.source is RecordSource.DEFAULT
    assert second.source is RecordSource.REMOTE
    assert first.record == second.record


def test_force_reset_overwrites_everything(local_store, remote, clock, logger) -> None:
    changed = default_record()
    changed.balance = Decimal("1.00")
    local_store.save("fam", changed)
    reconciler = make_reconciler(local_store, remote, clock, logger)

    outcome = asyncio.run(reconciler.bootstrap("fam", force_reset=True))

    assert outcome.source is RecordSource.RESET
    assert outcome.record.balance == Decimal("385.80")
    assert local_store.load("fam")["balance"] == 385.8
    assert remote.writes == ["fam"]


def test_reconcile_snapshot_only_returns_changes(local_store, clock, logger) -> None:
    reconciler = make_reconciler(local_store, None, clock, logger)
    current = default_record()
    changed = current.clone()
    changed.balance = Decimal("5.00")

    assert reconciler.reconcile_snapshot(current, current.to_dict()) is None
    assert reconciler.reconcile_snapshot(current, {"nonsense": True}) is None
    assert reconciler.reconcile_snapshot(current, changed.to_dict()).balance == Decimal("5.00")


def test_push_marks_saving_while_remote_write_runs(local_store, remote, clock, logger) -> None:
    reconciler = make_reconciler(local_store, remote, clock, logger)
    observed = []
    remote.subscribe("fam", lambda _payload: observed.append(reconciler.is_saving))

    assert asyncio.run(reconciler.push("fam", default_record())) is True

    assert observed == [True]
    assert reconciler.is_saving is False


def test_failed_push_reports_false(local_store, remote, clock, logger) -> None:
    remote.online = False
    reconciler = make_reconciler(local_store, remote, clock, logger)

    saved = asyncio.run(reconciler.persist("fam", default_record()))

    assert saved is True
    assert local_store.load("fam") is not None
    assert logger.events("remote_push_failed")


def test_interest_stamp_is_set_without_payment(clock) -> None:
    record = default_record()

    updated, changed = accrue_interest(record, clock.now)

    assert changed is True
    assert updated.settings.last_interest_paid == clock.now
    assert updated.transactions == []
    assert record.settings.last_interest_paid is None


def test_interest_paid_after_thirty_days(clock) -> None:
    record = default_record()
    record.settings.last_interest_paid = clock.now

    unchanged, changed = accrue_interest(record, clock.now + timedelta(days=29, hours=23))
    assert changed is False and unchanged is record

    later = clock.now + timedelta(days=30)
    updated, changed = accrue_interest(record, later)

    assert changed is True
    assert updated.balance == Decimal("389.02")
    payment = updated.transactions[0]
    assert payment.type is TransactionType.INTEREST
    assert payment.amount == Decimal("3.22")
    assert payment.description == "Monthly interest (10% annual)"
    assert updated.settings.last_interest_paid == later


def test_interest_below_a_cent_only_moves_stamp(clock) -> None:
    record = default_record()
    record.balance = Decimal("0.05")
    record.settings.last_interest_paid = clock.now

    updated, changed = accrue_interest(record, clock.now + timedelta(days=45))

    assert changed is True
    assert updated.transactions == []
    assert updated.balance == Decimal("0.05")


def test_push_requested_mid_flight_waits_for_the_write(local_store, clock, logger) -> None:
    writes = []

    class SlowRemote(MemoryRemoteStore):
        async def _put(self, family_id, payload) -> None:
            await asyncio.sleep(0.02)
            writes.append(payload["balance"])
            await super()._put(family_id, payload)

    remote = SlowRemote(timeout=1.0, logger=logger)
    reconciler = make_reconciler(local_store, remote, clock, logger)
    first = default_record()
    second = default_record()
    second.balance = Decimal("7.00")

    async def scenario():
        running = asyncio.create_task(reconciler.push("fam", first))
        await asyncio.sleep(0)
        folded = await reconciler.push("fam", second)
        return await running, folded

    running_result, folded_result = asyncio.run(scenario())

    assert running_result is True
    assert folded_result is True
    assert writes == [385.8, 7.0]
    assert json.loads(remote.documents["fam"])["balance"] == 7.0
    assert reconciler.is_saving is False
