import json

from olympusbank.config import LEGACY_RECORD_KEY
from olympusbank.local_store import LocalStore
from olympusbank.models import Role, default_record


def test_save_and_load_round_trip(local_store: LocalStore) -> None:
    record = default_record()

    assert local_store.save("fam-a", record)

    payload = local_store.load("fam-a")
    assert payload is not None
    assert payload["balance"] == 385.8
    assert json.loads(local_store.read_raw(LEGACY_RECORD_KEY))["balance"] == 385.8


def test_families_are_kept_apart(local_store: LocalStore) -> None:
    first = default_record()
    second = default_record()
    second.balance = second.balance + 10

    local_store.save("fam-a", first)
    local_store.save("fam-b", second)

    assert local_store.load("fam-a")["balance"] == 385.8
    assert local_store.load("fam-b")["balance"] == 395.8


def test_legacy_key_is_migrated_on_first_read(local_store: LocalStore) -> None:
    legacy = default_record()
    legacy.balance = legacy.balance - 85
    local_store.write_raw(LEGACY_RECORD_KEY, legacy.to_json())

    assert local_store.load("fam-new", allow_legacy=False) is None

    payload = local_store.load("fam-new")

    assert payload is not None
    assert payload["balance"] == 300.8
    assert local_store.read_raw(LocalStore.family_key("fam-new")) is not None


def test_corrupt_entry_reads_as_absent(local_store: LocalStore, logger) -> None:
    local_store.write_raw(LocalStore.family_key("fam-a"), "{broken")

    assert local_store.load("fam-a") is None
    assert logger.events("local_decode_failed")


def test_save_broadcasts_change_event(local_store: LocalStore) -> None:
    received = []
    unsubscribe = local_store.channel.register(received.append)

    local_store.save("fam-a", default_record(), origin="tab-1")
    unsubscribe()
    local_store.save("fam-a", default_record(), origin="tab-1")

    assert len(received) == 1
    assert received[0].family_id == "fam-a"
    assert received[0].origin == "tab-1"


def test_failing_listener_does_not_block_others(local_store: LocalStore, logger) -> None:
    received = []

    def explode(_event) -> None:
        raise RuntimeError("listener broke")

    local_store.channel.register(explode)
    local_store.channel.register(received.append)

    assert local_store.save("fam-a", default_record())
    assert len(received) == 1
    assert logger.events("listener_failed")[0]["event_kind"] == "ChangeEvent"


def test_device_entries(local_store: LocalStore, clock) -> None:
    assert local_store.get_active_family() is None
    local_store.set_active_family("fam-a")
    assert local_store.get_active_family() == "fam-a"

    state = local_store.save_auth_state(Role.PARENT)
    assert state.to_dict() == {"currentUser": "parent", "timestamp": "2024-01-01T12:00:00.000Z"}
    loaded = local_store.load_auth_state()
    assert loaded is not None and loaded.role is Role.PARENT and loaded.timestamp == clock.now

    local_store.clear_auth_state()
    assert local_store.load_auth_state() is None

    assert local_store.last_connectivity() is None
    local_store.set_connectivity(True)
    assert local_store.last_connectivity() is True
