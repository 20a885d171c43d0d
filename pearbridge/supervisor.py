# Pear Touch Bridge
# Copyright (C) 2024-2026 Markus Kirsten
# SPDX-License-Identifier: GPL-3.0-or-later
#
# Attribution required — see LICENSE, Section 7(b).

"""
ConnectionSupervisor: polling cadence, failure classification, reconnect.

Timers (each a singleton handle, see lib/jobs.py):
    song-poll      every poll_interval_ms; skipped while a fetch is running
    extras-poll    like/repeat/shuffle/volume, at most every 5 s unless forced
    reconnect      probes /song every 5 s until it succeeds, then stops itself

Failure policy:
    ConfigError             status = diagnostic, polls stop, no reconnect
    AuthError               status = "Auth failed (N)", polls stop, reconnect
    MediaConnectionError    status = "Disconnected", polls stop, reconnect
    HttpError / other       status only; polling carries on
"""

import asyncio
import logging

from .context import BridgeContext
from .lib.errors import AuthError, ConfigError, is_connection_error
from .lib.jobs import DelayedJob, PeriodicJob
from .lib.media_client import MediaSourceClient
from .models import ConnectionStatus, LinkPhase, SongSnapshot
from .projector import StateProjector

log = logging.getLogger("pear-bridge.supervisor")


class ConnectionSupervisor:

    def __init__(self, ctx: BridgeContext, client: MediaSourceClient,
                 projector: StateProjector):
        self.ctx = ctx
        self.client = client
        self.projector = projector
        self.volume = None
        self.cover = None

        self.poll_job = PeriodicJob("song-poll", self.poll_interval or 1.0, self.poll_song)
        self.extras_job = PeriodicJob("extras-poll", ctx.tuning.extra_poll_interval,
                                      self.poll_extras)
        self.reconnect_job = PeriodicJob("reconnect", ctx.tuning.reconnect_interval,
                                         self.check_connection)
        self._poll_now = DelayedJob("song-poll-now", self.poll_song)
        self._extras_now = DelayedJob("extras-poll-now", lambda: self.poll_extras(force=True))
        self._connect_now = DelayedJob("connect-now", self.check_connection)

    def attach(self, volume, cover) -> None:
        """Hook up the subsystems that consume poll results."""
        self.volume = volume
        self.cover = cover

    @property
    def poll_interval(self) -> float:
        """Song poll interval in seconds (0 when none is set)."""
        ms = self.ctx.settings.poll_interval_ms
        return ms / 1000.0 if ms and ms > 0 else 0.0

    @property
    def jobs(self) -> tuple:
        return (self.poll_job, self.extras_job, self.reconnect_job,
                self._poll_now, self._extras_now, self._connect_now)

    # ── Status ──

    def set_status(self, status: ConnectionStatus) -> bool:
        self.projector.project_status(status.text)
        if status == self.ctx.status:
            return False
        self.ctx.status = status
        log.info("Connection status: %s", status.text)
        return True

    def handle_failure(self, exc: BaseException) -> None:
        """Classify *exc*, publish the status and adjust the timers."""
        self.set_status(ConnectionStatus.from_exception(exc))

        if isinstance(exc, ConfigError):
            self.stop_polling()
            self.stop_reconnect_loop()
            self.ctx.phase = LinkPhase.DISCONNECTED
        elif isinstance(exc, AuthError) or is_connection_error(exc):
            self.stop_polling()
            self.start_reconnect_loop()
        else:
            log.warning("Pear request failed: %s", exc)

    def report_action_failure(self, exc: BaseException, action_id: str | None) -> None:
        cause = exc.__cause__
        suffix = f" ({cause})" if cause else ""
        log.warning("Action %s failed: %s%s", action_id or "unknown", exc, suffix)
        if isinstance(exc, ConfigError):
            # Bad action argument; the connection itself is fine
            self.set_status(ConnectionStatus.from_exception(exc))
            return
        self.handle_failure(exc)

    # ── Song / extras ──

    def apply_song(self, payload) -> bool:
        """Project a /song response; returns True on a track change."""
        song = SongSnapshot.from_payload(payload)
        if song is None:
            return False
        changed = self.projector.project_song(song)
        if changed:
            log.info("Now playing: %s - %s", song.artist or "?", song.title or "?")
        if self.cover is not None:
            self.cover.on_song(song.cover_url)
        return changed

    async def poll_song(self) -> None:
        polls = self.ctx.polls
        if polls.poll_in_flight or not self.poll_interval:
            return

        polls.poll_in_flight = True
        try:
            song = await self.client.get_song()
        except Exception as e:
            self.handle_failure(e)
            return
        finally:
            polls.poll_in_flight = False

        self.set_status(ConnectionStatus.connected())
        self.ctx.phase = LinkPhase.CONNECTED
        changed = self.apply_song(song)
        if self.ctx.extended:
            await self.poll_extras(force=changed)

    async def poll_extras(self, force: bool = False) -> None:
        polls = self.ctx.polls
        if not self.ctx.extended or polls.extra_poll_in_flight:
            return
        now = self.ctx.now()
        if (not force and polls.last_extra_poll_at is not None
                and now - polls.last_extra_poll_at < self.ctx.tuning.extra_poll_interval):
            return

        polls.extra_poll_in_flight = True
        polls.last_extra_poll_at = now
        try:
            like, repeat, shuffle, volume = await asyncio.gather(
                self.client.get_like_state(),
                self.client.get_repeat_mode(),
                self.client.get_shuffle_state(),
                self.client.get_volume(),
                return_exceptions=True,
            )
        finally:
            polls.extra_poll_in_flight = False

        for name, result, apply in (("like", like, self.projector.project_like),
                                    ("repeat", repeat, self.projector.project_repeat),
                                    ("shuffle", shuffle, self.projector.project_shuffle),
                                    ("volume", volume, self._observe_volume)):
            if isinstance(result, BaseException):
                log.debug("Extra poll %s failed: %s", name, result)
                continue
            apply(result)

    def _observe_volume(self, data) -> None:
        if self.volume is not None:
            self.volume.observe(data)

    def request_extras(self) -> None:
        """Force a secondary poll soon (track change, refresh action)."""
        if self.ctx.extended:
            self._extras_now.schedule(0)

    # ── Timers ──

    def start_polling(self) -> bool:
        interval = self.poll_interval
        if interval <= 0:
            log.info("Song polling disabled (no interval)")
            return False
        if self.poll_job.running and self.poll_job.interval == interval:
            return False

        self.poll_job.stop()
        self.poll_job.start(interval)
        self._poll_now.schedule(0)
        self.start_extra_polling()
        return True

    def stop_polling(self) -> None:
        self.poll_job.stop()
        self._poll_now.cancel()
        self.stop_extra_polling()

    def start_extra_polling(self) -> bool:
        if not self.ctx.extended:
            return False
        if not self.extras_job.start(self.ctx.tuning.extra_poll_interval):
            return False
        self.request_extras()
        return True

    def stop_extra_polling(self) -> None:
        self.extras_job.stop()
        self._extras_now.cancel()

    def start_reconnect_loop(self) -> bool:
        if not self.reconnect_job.start(self.ctx.tuning.reconnect_interval):
            return False
        self.ctx.phase = LinkPhase.RECONNECTING
        log.info("Reconnect loop started (every %.1fs)", self.reconnect_job.interval)
        return True

    def stop_reconnect_loop(self) -> None:
        if self.reconnect_job.stop():
            log.debug("Reconnect loop stopped")

    # ── Connection ──

    async def check_connection(self) -> None:
        """Probe /song; on success go Connected and resume polling."""
        polls = self.ctx.polls
        if polls.connecting:
            return

        polls.connecting = True
        if not self.reconnect_job.running:
            self.ctx.phase = LinkPhase.CONNECTING
        try:
            song = await self.client.get_song()
        except Exception as e:
            self.handle_failure(e)
            return
        finally:
            polls.connecting = False

        self.set_status(ConnectionStatus.connected())
        self.ctx.phase = LinkPhase.CONNECTED
        self.apply_song(song)
        self.stop_reconnect_loop()
        self.start_polling()
        self.request_extras()

    def restart(self) -> None:
        """Connection settings changed: drop timers and bookkeeping, probe again."""
        self.stop_polling()
        self.stop_reconnect_loop()
        self.ctx.polls.song_signature = None
        self.ctx.polls.last_extra_poll_at = None
        self.set_status(ConnectionStatus.disconnected())
        self._connect_now.schedule(0)

    def stop(self) -> None:
        self.stop_polling()
        self.stop_reconnect_loop()
        self._connect_now.cancel()
        self.ctx.phase = LinkPhase.DISCONNECTED

    async def drain(self) -> None:
        """Wait for already-fired timer callbacks to finish."""
        for job in self.jobs:
            await job.drain()
