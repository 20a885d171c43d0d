# Pear Touch Bridge
# Copyright (C) 2024-2026 Markus Kirsten
# SPDX-License-Identifier: GPL-3.0-or-later
#
# Attribution required — see LICENSE, Section 7(b).

"""
VolumeReconciler: keeps the Touch Portal slider and Pear's volume in step.

Outbound (slider / actions → Pear):
    Requests are debounced (120 ms) and serialised: one send in flight, and
    whatever arrives meanwhile collapses into a single pending target that is
    flushed through the same debounce window once the send completes.

Inbound (Pear readings → Touch Portal):
    Every local set records {target, time}.  A reading inside the hold window
    (600 ms) that is within tolerance (2 points) of the target confirms it;
    one outside tolerance is an echo of an older value and is dropped.  Past
    the hold window the reading is taken as truth.

    Pear reports volume on the ``state`` key in a unit it does not name.
    While a local set is being held, ``target / raw`` is taken as the unit
    scale if it falls inside [0.2, 5.0]; raw readings are then displayed as
    ``round(clamp(raw * scale, 0, 100))``.

Mute has only a toggle upstream, so ``set_mute`` reads the current state and
toggles only when it differs.
"""

import json
import logging
from typing import Callable

from .const import CONNECTORS, STATES
from .context import BridgeContext
from .lib.errors import MediaSourceError
from .lib.jobs import DelayedJob
from .lib.media_client import MediaSourceClient
from .models import clamp, is_number
from .projector import StateProjector

log = logging.getLogger("pear-bridge.volume")

PERCENT_KEYS = ("percent", "percentage", "volumePercent")
READING_KEYS = ("volume", "state", "value")
RAW_KEY = "state"
RESPONSE_MAX_CHARS = 600


def to_number(value) -> float | None:
    if isinstance(value, bool) or value is None:
        return None
    try:
        num = float(value)
    except (TypeError, ValueError):
        return None
    return num if is_number(num) else None


class VolumeReconciler:

    def __init__(self, ctx: BridgeContext, client: MediaSourceClient,
                 projector: StateProjector,
                 on_failure: Callable[[BaseException], None]):
        self.ctx = ctx
        self.client = client
        self.projector = projector
        self.on_failure = on_failure
        self._send_timer = DelayedJob("volume-send", self._flush)
        self._refresh_timer = DelayedJob("volume-refresh", self.refresh)

    @property
    def model(self):
        return self.ctx.volume

    # ── Reading interpretation ──

    @staticmethod
    def resolve(data) -> tuple[float, str] | None:
        """Pick the volume reading out of a /volume response → (value, key)."""
        if not isinstance(data, dict):
            return None
        for key in PERCENT_KEYS + READING_KEYS:
            if key in data:
                num = to_number(data[key])
                if num is not None:
                    return num, key
        return None

    def scaled(self, raw: float) -> int:
        scale = self.model.scale_factor if self.model.scale_factor > 0 else 1.0
        return int(round(clamp(raw * scale, 0, 100)))

    def to_percent(self, raw: float, source: str) -> int:
        if source == RAW_KEY:
            return self.scaled(raw)
        return int(round(clamp(raw, 0, 100)))

    def _hold_active(self) -> bool:
        return (self.model.pending_target is not None
                and self.ctx.now() - self.model.pending_set_at <= self.ctx.tuning.volume_hold)

    def calibrate(self, raw: float) -> bool:
        """Infer the raw→percent scale from the locally held target."""
        if raw <= 0 or not self._hold_active():
            return False
        implied = self.model.pending_target / raw
        tuning = self.ctx.tuning
        if not tuning.volume_scale_min <= implied <= tuning.volume_scale_max:
            log.debug("Rejected implied volume scale %.3f (raw %s)", implied, raw)
            return False
        if implied != self.model.scale_factor:
            log.info("Volume scale calibrated: %.3f (target %d, raw %s)",
                     implied, self.model.pending_target, raw)
        self.model.scale_factor = implied
        return True

    def should_suppress(self, percent: int) -> bool:
        """True if *percent* is a stale echo of an older value."""
        model = self.model
        if model.pending_target is None:
            return False
        age = self.ctx.now() - model.pending_set_at
        if age > self.ctx.tuning.volume_hold:
            model.pending_target = None
            return False
        if abs(percent - model.pending_target) <= self.ctx.tuning.volume_tolerance:
            model.pending_target = None
            return False
        log.debug("Suppressed volume echo %d%% (holding %d%%)", percent, model.pending_target)
        return True

    # ── Inbound ──

    def observe(self, data) -> None:
        """Apply a /volume reading from Pear."""
        if not self.ctx.extended or not isinstance(data, dict):
            return

        self._project_response(data)

        resolved = self.resolve(data)
        if resolved is not None:
            raw, source = resolved
            if source == RAW_KEY:
                self.calibrate(raw)
            percent = self.to_percent(raw, source)
            if not self.should_suppress(percent):
                self.model.last_known_percent = percent
                self.projector.update_state(STATES["volume_percent"], percent)
                self.projector.update_connector(CONNECTORS["volume"], percent)
                self._project_debug(raw, source)

        if isinstance(data.get("isMuted"), bool):
            self.model.last_reported_mute = data["isMuted"]
            self.projector.update_state(STATES["is_muted"], data["isMuted"])

    def _project_debug(self, raw: float, source: str) -> None:
        shown = self.scaled(raw) if source == RAW_KEY else raw
        self.projector.update_state(STATES["volume_raw"], shown)
        self.projector.update_state(STATES["volume_scale"], f"percent via {source}")

    def _project_response(self, data: dict) -> None:
        shown = data
        raw = to_number(data.get(RAW_KEY))
        if raw is not None:
            shown = dict(data, **{RAW_KEY: self.scaled(raw)})
        try:
            text = json.dumps(shown, separators=(",", ":"))
        except (TypeError, ValueError):
            text = str(shown)
        if len(text) > RESPONSE_MAX_CHARS:
            text = text[:RESPONSE_MAX_CHARS - 3] + "..."
        self.projector.update_state(STATES["volume_response"], text)

    # ── Local intent ──

    def apply_local(self, percent: float, source: str = "local") -> int:
        """Record a locally initiated volume and show it immediately."""
        rounded = int(clamp(round(percent), 0, 100))
        model = self.model
        model.last_known_percent = rounded
        model.pending_target = rounded
        model.pending_set_at = self.ctx.now()

        if self.ctx.extended:
            self.projector.update_state(STATES["volume_percent"], rounded)
            self.projector.update_connector(CONNECTORS["volume"], rounded)
            self._project_debug(rounded, source)
        return rounded

    # ── Outbound (debounced, single in flight) ──

    def request(self, percent) -> None:
        if not is_number(percent):
            return
        self.model.pending_send = int(clamp(round(percent), 0, 100))
        if self._send_timer.pending or self.model.send_in_flight:
            return
        self._send_timer.schedule(self.ctx.tuning.volume_debounce)

    async def _flush(self) -> None:
        model = self.model
        if model.send_in_flight or model.pending_send is None:
            return

        target = model.pending_send
        model.pending_send = None
        model.send_in_flight = True
        try:
            await self.client.set_volume(target)
            self.apply_local(target, "slider")
            self.schedule_refresh()
            log.info("-> Pear volume: %d%%", target)
        except Exception as e:
            log.warning("Volume send (%d%%) failed: %s", target, e)
            self.on_failure(e)
        finally:
            model.send_in_flight = False
            if model.pending_send is not None:
                self._send_timer.schedule(self.ctx.tuning.volume_debounce)

    async def flush_now(self) -> None:
        """Skip the debounce window (shutdown, tests)."""
        self._send_timer.cancel()
        await self._flush()

    # ── Actions ──

    async def current_percent(self) -> int:
        if self.model.last_known_percent is not None:
            return self.model.last_known_percent
        resolved = self.resolve(await self.client.get_volume())
        if resolved is None:
            raise MediaSourceError("Volume state unavailable.")
        raw, source = resolved
        return self.to_percent(raw, source)

    async def step(self, delta: float) -> int:
        current = await self.current_percent()
        target = self.apply_local(clamp(current + delta, 0, 100))
        self.request(target)
        return target

    def set_absolute(self, percent: float) -> int:
        target = self.apply_local(percent)
        self.request(target)
        return target

    async def set_mute(self, target: bool) -> None:
        current = self.model.last_reported_mute
        if current is None:
            data = await self.client.get_volume()
            if isinstance(data, dict) and isinstance(data.get("isMuted"), bool):
                current = data["isMuted"]

        if current is None:
            # Unknown: toggle once and let the refresh tell us the outcome
            await self.client.toggle_mute()
            self.schedule_refresh()
            return
        if current == target:
            return

        await self.client.toggle_mute()
        self.model.last_reported_mute = target
        if self.ctx.extended:
            self.projector.update_state(STATES["is_muted"], target)

    async def toggle_mute(self) -> None:
        await self.client.toggle_mute()
        if self.model.last_reported_mute is not None:
            self.model.last_reported_mute = not self.model.last_reported_mute
            if self.ctx.extended:
                self.projector.update_state(STATES["is_muted"], self.model.last_reported_mute)
        self.schedule_refresh()

    # ── Refresh ──

    def schedule_refresh(self) -> None:
        if not self.ctx.extended:
            return
        self._refresh_timer.schedule(self.ctx.tuning.volume_refresh_delay)

    async def refresh(self) -> None:
        try:
            data = await self.client.get_volume()
        except Exception as e:
            log.warning("Volume refresh failed: %s", e)
            self.on_failure(e)
            return
        self.observe(data)

    # ── Lifecycle ──

    def reset(self) -> None:
        """Forget in-flight intent and calibration (surface reconnected)."""
        self.model.pending_target = None
        self.model.pending_set_at = 0.0
        self.model.scale_factor = 1.0

    def clear(self) -> None:
        """Extended states were switched off."""
        self.reset()
        self.model.last_known_percent = None
        self.model.last_reported_mute = None

    def stop(self) -> None:
        self._send_timer.cancel()
        self._refresh_timer.cancel()
