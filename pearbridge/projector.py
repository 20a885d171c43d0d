# Pear Touch Bridge
# Copyright (C) 2024-2026 Markus Kirsten
# SPDX-License-Identifier: GPL-3.0-or-later
#
# Attribution required — see LICENSE, Section 7(b).

"""
StateProjector: the only path from bridge state to Touch Portal.

Every outbound state, event and connector value goes through here and is
compared with the last value sent, so replaying the same poll result costs
zero writes.  Events are edge-triggered: empty values never fire and the
same value never fires twice in a row.

Song and extended-attribute projection (title, timestamps, like/repeat/
shuffle) also lives here; the supervisor hands over parsed snapshots.
"""

import logging
import math

from .const import EVENTS, EXTENDED_STATES, STATES
from .context import BridgeContext
from .lib.surface_link import ControlSurfaceLink
from .models import SongSnapshot, clamp, is_number

log = logging.getLogger("pear-bridge.projector")


def normalize(value) -> str:
    """Canonical text for a state value."""
    if value is None:
        return ""
    if isinstance(value, bool):
        return "True" if value else "False"
    if isinstance(value, float) and math.isfinite(value) and value.is_integer():
        return str(int(value))
    return str(value)


def format_time(seconds) -> str:
    """Seconds → 'MM:SS', or 'H:MM:SS' from one hour up."""
    if not is_number(seconds):
        return ""
    total = max(0, int(math.floor(seconds)))
    hours, rest = divmod(total, 3600)
    minutes, secs = divmod(rest, 60)
    if hours > 0:
        return f"{hours}:{minutes:02d}:{secs:02d}"
    return f"{minutes:02d}:{secs:02d}"


class StateProjector:

    def __init__(self, ctx: BridgeContext, link: ControlSurfaceLink):
        self.ctx = ctx
        self.link = link

    # ── Deduplicated writes ──

    def update_state(self, state_id: str, value) -> bool:
        text = normalize(value)
        if not self.ctx.states.changed(state_id, text):
            return False
        self.link.update_state(state_id, text)
        return True

    def update_event(self, event_id: str, value) -> bool:
        text = normalize(value)
        if not self.ctx.events.changed(event_id, text):
            return False
        self.link.trigger_event(event_id, text)
        return True

    def update_connector(self, connector_id: str, value) -> bool:
        if not is_number(value):
            return False
        rounded = int(clamp(round(value), 0, 100))
        if not self.ctx.connectors.changed(connector_id, str(rounded)):
            return False
        self.link.update_connector(connector_id, rounded)
        return True

    def forget(self) -> None:
        """Drop everything we believe the surface shows (it reconnected)."""
        self.ctx.states.clear()
        self.ctx.connectors.clear()
        log.debug("State cache cleared")

    # ── Projection ──

    def project_song(self, song: SongSnapshot) -> bool:
        """Push song states; returns True when the track changed."""
        extended = self.ctx.extended

        self.update_state(STATES["title"], song.title)
        self.update_state(STATES["artist"], song.artist)
        self.update_state(STATES["album"], song.album)
        self.update_state(STATES["cover_url"], song.cover_url)
        self.update_state(STATES["url"], song.url if extended else "")
        self.update_state(STATES["video_id"], song.video_id if extended else "")
        self.update_state(STATES["playlist_id"], song.playlist_id if extended else "")
        self.update_state(STATES["media_type"], song.media_type if extended else "")
        self.update_state(STATES["has_song"], song.has_song)

        if song.is_paused is not None:
            self.update_state(STATES["is_paused"], song.is_paused)
            self.update_event(EVENTS["is_paused"], song.is_paused)
        if song.is_playing is not None:
            self.update_state(STATES["is_playing"], song.is_playing)

        if song.duration_sec is not None:
            self.update_state(STATES["duration_sec"], round(song.duration_sec))
            self.update_state(STATES["duration_text"], format_time(song.duration_sec))
        if song.elapsed_sec is not None:
            self.update_state(STATES["elapsed_sec"], round(song.elapsed_sec))
            self.update_state(STATES["elapsed_text"], format_time(song.elapsed_sec))

        changed = song.signature != self.ctx.polls.song_signature
        self.ctx.polls.song_signature = song.signature
        return changed

    def project_like(self, data) -> None:
        if not self.ctx.extended or not isinstance(data, dict):
            return
        state = data.get("state") or ""
        if state:
            self.update_state(STATES["like_state"], state)
            self.update_event(EVENTS["like_state"], state)

    def project_repeat(self, data) -> None:
        if not self.ctx.extended or not isinstance(data, dict):
            return
        mode = data.get("mode") or ""
        if mode:
            self.update_state(STATES["repeat_mode"], mode)
            self.update_event(EVENTS["repeat_mode"], mode)

    def project_shuffle(self, data) -> None:
        if not self.ctx.extended or not isinstance(data, dict):
            return
        if isinstance(data.get("state"), bool):
            self.update_state(STATES["shuffle_state"], data["state"])
            self.update_event(EVENTS["shuffle_state"], data["state"])

    def project_status(self, text: str) -> None:
        self.update_state(STATES["connection_status"], text)

    def clear_extended(self) -> None:
        for key in EXTENDED_STATES:
            self.update_state(STATES[key], "")
