"""Trailing-edge debounce of document validation.

Each URI owns a ``DebounceSlot``:

* IDLE -- edit --> SCHEDULED (timer armed, document remembered)
* SCHEDULED -- edit --> SCHEDULED_WITH_NEWER_DATA (remembered document replaced)
* SCHEDULED_WITH_NEWER_DATA -- edit --> same state, newest document kept
* SCHEDULED -- timer --> IDLE, remembered document (if any) validated
* SCHEDULED_WITH_NEWER_DATA -- timer --> SCHEDULED with nothing remembered,
  newest document validated and the timer re-armed

So a burst of edits produces one validation of the final text, and a
continuous stream validates at most once per quiescence interval.
"""

from __future__ import annotations

import asyncio
import enum
import logging
from dataclasses import dataclass
from typing import Callable, Generic, Protocol, TypeVar

logger = logging.getLogger(__name__)

DEFAULT_QUIESCENCE_SECONDS = 0.5

DocumentT = TypeVar("DocumentT")


class TimerHandle(Protocol):
    def cancel(self) -> None: ...


class Timer(Protocol):
    def call_later(self, delay: float, callback: Callable[[], None]) -> TimerHandle: ...


class EventLoopTimer:
    """Timer backed by the running asyncio loop."""

    def __init__(self, loop: asyncio.AbstractEventLoop | None = None) -> None:
        self._loop = loop

    def call_later(self, delay: float, callback: Callable[[], None]) -> TimerHandle:
        loop = self._loop or asyncio.get_running_loop()
        return loop.call_later(delay, callback)


class SlotState(enum.Enum):
    IDLE = "idle"
    SCHEDULED = "scheduled"
    SCHEDULED_WITH_NEWER_DATA = "scheduled_with_newer_data"


@dataclass
class DebounceSlot(Generic[DocumentT]):
    state: SlotState = SlotState.IDLE
    latest: DocumentT | None = None
    handle: TimerHandle | None = None

    def on_edit(self, document: DocumentT) -> bool:
        """Record ``document``; returns True when a timer must be armed."""
        self.latest = document
        if self.state is SlotState.IDLE:
            self.state = SlotState.SCHEDULED
            return True
        self.state = SlotState.SCHEDULED_WITH_NEWER_DATA
        return False

    def on_timer(self) -> tuple[DocumentT | None, bool]:
        """Returns the document to validate and whether to re-arm."""
        document = self.latest
        self.latest = None
        self.handle = None
        if self.state is SlotState.SCHEDULED_WITH_NEWER_DATA:
            self.state = SlotState.SCHEDULED
            return document, True
        self.state = SlotState.IDLE
        return document, False


class ValidationScheduler(Generic[DocumentT]):
    def __init__(
        self,
        validate: Callable[[DocumentT], object],
        *,
        key: Callable[[DocumentT], str],
        timer: Timer | None = None,
        delay: float = DEFAULT_QUIESCENCE_SECONDS,
    ) -> None:
        self._validate = validate
        self._key = key
        self._timer: Timer = timer if timer is not None else EventLoopTimer()
        self.delay = delay
        self._slots: dict[str, DebounceSlot[DocumentT]] = {}

    def state(self, uri: str) -> SlotState:
        slot = self._slots.get(uri)
        return slot.state if slot is not None else SlotState.IDLE

    def on_edit(self, document: DocumentT) -> None:
        uri = self._key(document)
        slot = self._slots.setdefault(uri, DebounceSlot())
        if slot.on_edit(document):
            self._arm(uri, slot)

    def cancel(self, uri: str) -> None:
        slot = self._slots.pop(uri, None)
        if slot is not None and slot.handle is not None:
            slot.handle.cancel()

    def cancel_all(self) -> None:
        for uri in list(self._slots):
            self.cancel(uri)

    def _arm(self, uri: str, slot: DebounceSlot[DocumentT]) -> None:
        slot.handle = self._timer.call_later(self.delay, lambda: self._fire(uri, slot))

    def _fire(self, uri: str, slot: DebounceSlot[DocumentT]) -> None:
        if self._slots.get(uri) is not slot:
            # Cancelled (document closed) after the timer was armed.
            return
        document, rearm = slot.on_timer()
        if rearm:
            self._arm(uri, slot)
        elif slot.state is SlotState.IDLE:
            del self._slots[uri]
        if document is not None:
            try:
                self._validate(document)
            except Exception:
                logger.exception("Validation of %s failed", uri)
