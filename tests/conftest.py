from datetime import datetime, timedelta, timezone

import pytest

pytest.importorskip("sqlmodel")

from olympusbank.local_store import LocalStore
from olympusbank.ops import StructuredLogger
from olympusbank.remote_store import MemoryRemoteStore


class FakeClock:
    """Manually advanced clock shared by the stores and the service."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **delta: float) -> datetime:
        self.now += timedelta(**delta)
        return self.now


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def logger(clock: FakeClock) -> StructuredLogger:
    return StructuredLogger(clock=clock)


@pytest.fixture
def local_store(tmp_path, clock: FakeClock, logger: StructuredLogger) -> LocalStore:
    return LocalStore.from_path(tmp_path / "local.db", clock=clock, logger=logger)


@pytest.fixture
def remote(logger: StructuredLogger) -> MemoryRemoteStore:
    return MemoryRemoteStore(timeout=1.0, logger=logger)
