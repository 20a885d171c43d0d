"""
BridgeContext: every piece of mutable bridge state in one place.

The orchestrator owns exactly one context and hands it to each subsystem.
Nothing in the bridge keeps module-level state; ``reset()`` returns every
field to its start-up value, which is what a restart (or a test) needs.
"""

import time
from typing import Callable

from .models import (ConnectionStatus, CoverArtJob, LinkPhase, PollBookkeeping,
                     Settings, Tuning, VolumeModel)


class StateCache:
    """id → last emitted text.  Equal values are not re-emitted."""

    def __init__(self):
        self._values: dict[str, str] = {}

    def changed(self, key: str, text: str) -> bool:
        if self._values.get(key) == text:
            return False
        self._values[key] = text
        return True

    def get(self, key: str) -> str | None:
        return self._values.get(key)

    def clear(self) -> None:
        self._values.clear()

    def __len__(self):
        return len(self._values)


class EventCache(StateCache):
    """Events are edge-triggered: empty values never fire."""

    def changed(self, key: str, text: str) -> bool:
        if text == "":
            return False
        return super().changed(key, text)


class BridgeContext:

    def __init__(self, settings: Settings | None = None, tuning: Tuning | None = None,
                 clock: Callable[[], float] = time.monotonic):
        self._initial_settings = settings or Settings()
        self.tuning = tuning or Tuning()
        self.clock = clock
        self.reset()

    def reset(self) -> None:
        self.settings = self._initial_settings
        self.status = ConnectionStatus.disconnected()
        self.phase = LinkPhase.DISCONNECTED
        self.states = StateCache()
        self.events = EventCache()
        self.connectors = StateCache()
        self.volume = VolumeModel()
        self.cover = CoverArtJob()
        self.polls = PollBookkeeping()

    def now(self) -> float:
        return self.clock()

    @property
    def extended(self) -> bool:
        return self.settings.extended_states_enabled
