"""In-process publish/subscribe channels.

``ChangeChannel`` stands in for the browser's cross-tab storage events: every
service instance sharing a local store subscribes to it and re-reads the
local copy when another instance saved.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Generic, Optional, TypeVar

from .models import utcnow
from .ops import StructuredLogger

EventT = TypeVar("EventT")


class Dispatcher(Generic[EventT]):
    """Simple synchronous broadcaster.

    With a logger, a failing listener is logged and delivery continues;
    without one the error propagates to the publisher.
    """

    def __init__(self, *, logger: StructuredLogger | None = None) -> None:
        self._listeners: list[Callable[[EventT], None]] = []
        self._logger = logger

    def register(self, listener: Callable[[EventT], None]) -> Callable[[], None]:
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            self.unregister(listener)

        return _unsubscribe

    def unregister(self, listener: Callable[[EventT], None]) -> None:
        try:
            self._listeners.remove(listener)
        except ValueError:
            pass

    def dispatch(self, event: EventT) -> None:
        for listener in list(self._listeners):
            if self._logger is None:
                listener(event)
                continue
            try:
                listener(event)
            except Exception as exc:  # noqa: BLE001
                self._logger.error("listener_failed", event_kind=type(event).__name__, error=repr(exc))

    def __len__(self) -> int:
        return len(self._listeners)


@dataclass(frozen=True, slots=True)
class ChangeEvent:
    """Announces that the local copy of a family's record was rewritten."""

    family_id: str
    data_version: int
    origin: Optional[str] = None
    timestamp: datetime = field(default_factory=utcnow)


class ChangeChannel(Dispatcher[ChangeEvent]):
    """Broadcast channel shared by every consumer of one local store.

    A failing subscriber never breaks the writer or its siblings.
    """

    def __init__(self, *, logger: StructuredLogger | None = None) -> None:
        super().__init__(logger=logger or StructuredLogger())

    def publish(self, event: ChangeEvent) -> None:
        self.dispatch(event)


__all__ = ["ChangeChannel", "ChangeEvent", "Dispatcher"]
