# Pear Touch Bridge
# Copyright (C) 2024-2026 Markus Kirsten
# SPDX-License-Identifier: GPL-3.0-or-later
#
# Attribution required — see LICENSE, Section 7(b).

"""
PearBridge: wires Touch Portal to Pear Desktop.

Owns the BridgeContext and one instance of every subsystem, subscribes to the
link's channels and applies settings pushes:

    connected        forget surface caches, reset volume intent, probe Pear
    info / settings  merge into Settings; extended/cover/connection changes
    action           ActionDispatcher.handle_action
    connectorChange  ActionDispatcher.handle_connector
    close            forget surface caches; closePlugin stops the service
    error            logged
"""

import asyncio
import logging
import signal

from .const import PLUGIN_ID
from .context import BridgeContext
from .cover_art import CoverArtPipeline, fetch_artwork
from .dispatcher import ActionDispatcher
from .lib.config import cfg
from .lib.media_client import MediaSourceClient
from .lib.surface_link import ControlSurfaceLink, TouchPortalLink
from .models import ConnectionStatus, Settings, Tuning, extract_settings
from .projector import StateProjector
from .supervisor import ConnectionSupervisor
from .volume import VolumeReconciler

log = logging.getLogger("pear-bridge")


class PearBridge:

    def __init__(self, link: ControlSurfaceLink | None = None,
                 client: MediaSourceClient | None = None,
                 ctx: BridgeContext | None = None, fetch=None):
        self.ctx = ctx or BridgeContext(Settings.from_config(), Tuning.from_config())
        settings = self.ctx.settings
        self.link = link or TouchPortalLink(
            cfg("surface", "plugin_id", default=PLUGIN_ID),
            host=cfg("surface", "host", default="127.0.0.1"),
            port=int(cfg("surface", "port", default=12136)),
        )
        self.client = client or MediaSourceClient(settings.hostname, settings.port,
                                                  settings.client_id)

        self.projector = StateProjector(self.ctx, self.link)
        self.supervisor = ConnectionSupervisor(self.ctx, self.client, self.projector)
        self.volume = VolumeReconciler(self.ctx, self.client, self.projector,
                                       on_failure=self.supervisor.handle_failure)
        self.cover = CoverArtPipeline(self.ctx, self.projector,
                                      fetch or self._fetch_artwork)
        self.supervisor.attach(self.volume, self.cover)
        self.dispatcher = ActionDispatcher(
            self.ctx, self.client, self.volume, self.supervisor,
            full_connector_id=self.link.connector_id,
        )

        self.running = False
        self._stop_event: asyncio.Event | None = None
        self._subscribe()

    async def _fetch_artwork(self, url: str):
        return await fetch_artwork(self.client.session, url)

    def _subscribe(self) -> None:
        self.link.on("connected", self.on_connected)
        self.link.on("info", self.on_info)
        self.link.on("settings", self.on_settings)
        self.link.on("action", self.dispatcher.handle_action)
        self.link.on("connectorChange", self.dispatcher.handle_connector)
        self.link.on("close", self.on_close)
        self.link.on("error", self.on_error)

    # ── Link channels ──

    async def on_connected(self) -> None:
        log.info("Connected to Touch Portal")
        self.projector.forget()
        self.volume.reset()
        self.supervisor.set_status(ConnectionStatus.disconnected())
        await self.supervisor.check_connection()

    def on_info(self, message) -> None:
        info = message if isinstance(message, dict) else {}
        log.info("Touch Portal info received (version %s)", info.get("tpVersionString", "?"))

    def on_settings(self, payload) -> None:
        log.info("Touch Portal settings received")
        try:
            values = extract_settings(payload)
        except ValueError as e:
            log.warning("Ignoring settings push: %s", e)
            return
        self.apply_settings(self.ctx.settings.merged(values))

    def on_close(self, message=None) -> None:
        log.info("Disconnected from Touch Portal")
        self.projector.forget()
        self.volume.reset()
        if isinstance(message, dict) and message.get("type") == "closePlugin":
            self.request_stop()

    def on_error(self, exc) -> None:
        log.warning("Touch Portal error: %s", exc)

    # ── Settings ──

    def apply_settings(self, new: Settings) -> None:
        old = self.ctx.settings
        if new == old:
            return
        self.ctx.settings = new

        if new.extended_states_enabled != old.extended_states_enabled:
            log.info("Extended states %s", "enabled" if new.extended_states_enabled else "disabled")
            self.supervisor.stop_extra_polling()
            if not new.extended_states_enabled:
                self.volume.clear()
                self.ctx.connectors.clear()
                self.projector.clear_extended()
            if self.supervisor.poll_job.running:
                self.supervisor.start_extra_polling()

        if new.cover_art_mode != old.cover_art_mode:
            self.cover.apply_mode()

        if new.connection_key() != old.connection_key():
            self.client.update_config(new.hostname, new.port, new.client_id)
            self.client.invalidate_token()
            log.info("Config updated: %s (clientId=%s, poll=%sms)",
                     self.client.base_url, self.client.client_id, new.poll_interval_ms)
            self.supervisor.restart()

    # ── Lifecycle ──

    async def start(self) -> None:
        self.running = True
        self._stop_event = asyncio.Event()
        log.info("Starting Pear bridge (Pear at %s)", self.client.base_url)
        self.cover.apply_mode()
        await self.link.connect()

    def request_stop(self) -> None:
        if self._stop_event is not None:
            self._stop_event.set()

    async def run(self) -> None:
        """Start, wait for SIGINT/SIGTERM or closePlugin, then shut down."""
        await self.start()
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.add_signal_handler(sig, self.request_stop)
        try:
            await self._stop_event.wait()
        finally:
            await self.shutdown()

    async def shutdown(self) -> None:
        if not self.running:
            return
        self.running = False
        log.info("Shutting down Pear bridge")
        self.supervisor.stop()
        self.volume.stop()
        await self.cover.stop()
        await self.link.close()
        await self.client.close()

    def teardown(self) -> None:
        """Return every piece of bridge state to its start-up value."""
        self.ctx.reset()
