import asyncio

import pytest

from olympusbank.exceptions import RemoteConnectionError
from olympusbank.models import default_record
from olympusbank.remote_store import MemoryRemoteStore, SQLRemoteStore, create_remote_store


class SlowRemoteStore(MemoryRemoteStore):
    async def _fetch(self, family_id):
        await asyncio.sleep(1)
        return None


def test_memory_store_round_trip_and_subscription(remote: MemoryRemoteStore) -> None:
    snapshots = []
    unsubscribe = remote.subscribe("fam-a", snapshots.append)
    remote.subscribe("fam-b", lambda _payload: pytest.fail("wrong family notified"))

    async def scenario():
        await remote.put("fam-a", default_record().to_dict())
        fetched = await remote.fetch("fam-a")
        unsubscribe()
        await remote.put("fam-a", default_record().to_dict())
        return fetched

    fetched = asyncio.run(scenario())

    assert fetched["balance"] == 385.8
    assert len(snapshots) == 1
    assert snapshots[0] is not fetched
    assert remote.writes == ["fam-a", "fam-a"]
    assert remote.connected is True


def test_missing_document_is_none(remote: MemoryRemoteStore) -> None:
    assert asyncio.run(remote.fetch("nobody")) is None


def test_offline_store_raises_and_clears_flag(remote: MemoryRemoteStore) -> None:
    asyncio.run(remote.test_connection())
    assert remote.connected is True

    remote.online = False
    with pytest.raises(RemoteConnectionError):
        asyncio.run(remote.fetch("fam-a"))

    assert remote.connected is False
    assert asyncio.run(remote.test_connection()) is False


def test_slow_remote_times_out(logger) -> None:
    store = SlowRemoteStore(timeout=0.01, logger=logger)

    with pytest.raises(RemoteConnectionError):
        asyncio.run(store.fetch("fam-a"))

    assert store.connected is False
    assert logger.events("remote_timeout")


def test_sql_remote_store_in_memory(logger) -> None:
    store = SQLRemoteStore.from_url("sqlite://", logger=logger)
    record = default_record()

    async def scenario():
        assert await store.test_connection() is True
        await store.put("fam-a", record.to_dict())
        record.balance = record.balance + 1
        await store.put("fam-a", record.to_dict())
        return await store.fetch("fam-a"), await store.fetch("fam-b")

    stored, missing = asyncio.run(scenario())

    assert stored["balance"] == 386.8
    assert missing is None


def test_unconfigured_sql_store_is_unavailable(logger) -> None:
    store = SQLRemoteStore(None, logger=logger)

    assert store.is_available() is False
    assert asyncio.run(store.test_connection()) is False
    with pytest.raises(RemoteConnectionError):
        asyncio.run(store.fetch("fam-a"))


def test_create_remote_store_from_url() -> None:
    assert create_remote_store("") is None
    assert isinstance(create_remote_store("memory://"), MemoryRemoteStore)
    assert isinstance(create_remote_store("sqlite://"), SQLRemoteStore)
