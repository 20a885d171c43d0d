# Pear Touch Bridge
# Copyright (C) 2024-2026 Markus Kirsten
# SPDX-License-Identifier: GPL-3.0-or-later
#
# Attribution required — see LICENSE, Section 7(b).

"""
CoverArtPipeline: single-flight artwork download and delivery.

Modes:
    off    : no artwork; every artwork state is blank.
    memory : bytes are kept in-process and pushed as base64 (pear.coverBase64).
    local  : bytes are also written to one of two alternating files so a
              reader never sees a half-written image; the path and its
              file:// URL are pushed as well.

Queueing is last-write-wins: while one download runs, a newly queued URL
replaces whatever was waiting.  A download whose URL is no longer the one
wanted when it finishes is discarded.  Failures (and oversized artwork) are
terminal for that URL; polling re-queues the same URL every tick and that
must not turn into a retry loop.

Base64 pushes are rate limited (1.5 s), coalescing to the newest value.
"""

import asyncio
import base64
import logging
import re
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from io import BytesIO
from pathlib import Path
from typing import Awaitable, Callable

import aiohttp
from PIL import Image

from .const import COVER_ART_FILENAMES, STATES
from .context import BridgeContext
from .lib.jobs import DelayedJob
from .models import CoverArtMode
from .projector import StateProjector

log = logging.getLogger("pear-bridge.cover")

_HTTP_URL = re.compile(r"^https?://", re.IGNORECASE)
_PASSTHROUGH_FORMATS = ("JPEG", "PNG")
URL_DEBUG_MAX_CHARS = 120

# Image identification is CPU-bound; keep it off the event loop
_artwork_executor = ThreadPoolExecutor(max_workers=1)

ArtworkFetcher = Callable[[str], Awaitable[tuple[bytes, str]]]


class ArtworkFetchError(Exception):
    """Artwork URL answered with a non-success status."""


@dataclass(frozen=True)
class Artwork:
    data: bytes
    content_type: str
    size: tuple[int, int]


async def fetch_artwork(session: aiohttp.ClientSession, url: str) -> tuple[bytes, str]:
    """GET *url* → (bytes, content type)."""
    async with session.get(url) as resp:
        if not 200 <= resp.status < 300:
            raise ArtworkFetchError(f"HTTP {resp.status}")
        return await resp.read(), resp.headers.get("Content-Type", "")


def process_image(image_bytes: bytes) -> Artwork:
    """Identify artwork; JPEG/PNG pass through, anything else becomes PNG.

    Runs in a thread pool (CPU-bound).  Raises OSError for bytes Pillow
    cannot read.
    """
    with Image.open(BytesIO(image_bytes)) as image:
        fmt = image.format or ""
        if fmt in _PASSTHROUGH_FORMATS:
            return Artwork(image_bytes, Image.MIME[fmt], image.size)
        if image.mode not in ("RGB", "RGBA"):
            image = image.convert("RGBA")
        buf = BytesIO()
        image.save(buf, "PNG")
        return Artwork(buf.getvalue(), "image/png", image.size)


def encoded_length(byte_count: int) -> int:
    return (byte_count + 2) // 3 * 4


def truncate_url(url: str) -> str:
    if len(url) <= URL_DEBUG_MAX_CHARS:
        return url
    return url[:URL_DEBUG_MAX_CHARS - 3] + "..."


def describe_file(path: str) -> str:
    if not path:
        return ""
    p = Path(path)
    try:
        if not p.is_file():
            return f"{p.name} (not a file)" if p.exists() else f"{p.name} (missing)"
        return f"{p.name} ({p.stat().st_size} bytes)"
    except OSError:
        return f"{p.name} (missing)"


def file_url(path: str) -> str:
    if not path:
        return ""
    try:
        return Path(path).resolve().as_uri()
    except ValueError:
        return ""


class CoverArtPipeline:

    def __init__(self, ctx: BridgeContext, projector: StateProjector, fetch: ArtworkFetcher):
        self.ctx = ctx
        self.projector = projector
        self._fetch = fetch
        self._worker: asyncio.Task | None = None
        self._emit_timer = DelayedJob("cover-emit", self._emit_pending)

    @property
    def job(self):
        return self.ctx.cover

    @property
    def mode(self) -> CoverArtMode:
        return self.ctx.settings.cover_art_mode

    def slot_path(self, slot: int) -> Path:
        return Path(self.ctx.settings.cover_art_dir) / COVER_ART_FILENAMES[slot]

    # ── Diagnostics / state helpers ──

    def _debug(self, message: str) -> None:
        self.projector.update_state(STATES["cover_debug"], message)

    def _emit_path(self, path: str) -> None:
        self.projector.update_state(STATES["cover_path"], path)
        self.projector.update_state(STATES["cover_file_url"], file_url(path))

    def _clear_ready(self) -> None:
        job = self.job
        job.ready_url = ""
        job.ready_path = ""
        job.ready_encoding = ""
        self._emit_path("")
        self.emit_encoded("")

    # ── Rate-limited base64 emission ──

    def emit_encoded(self, value: str) -> bool:
        """Push *value* to pear.coverBase64, at most once per emit interval.

        Returns False if the value was rejected for size.
        """
        job = self.job
        limit = self.ctx.settings.max_artifact_encoded_length
        if limit > 0 and len(value) > limit:
            self._emit_timer.cancel()
            job.pending_encoded = ""
            job.last_encoded = ""
            job.last_sent_at = None
            self.projector.update_state(STATES["cover_base64"], "")
            self._debug(f"base64 too large ({len(value)} > {limit})")
            return False

        if value == job.last_encoded and not self._emit_timer.pending:
            return True
        job.last_encoded = value

        if not value:
            self._emit_timer.cancel()
            job.pending_encoded = ""
            job.last_sent_at = None
            self.projector.update_state(STATES["cover_base64"], "")
            return True

        interval = self.ctx.tuning.cover_min_emit_interval
        now = self.ctx.now()
        elapsed = float("inf") if job.last_sent_at is None else now - job.last_sent_at
        if elapsed >= interval and not self._emit_timer.pending:
            self._send_encoded(value)
            return True

        job.pending_encoded = value
        self._emit_timer.schedule(max(0.0, interval - elapsed))
        return True

    def _send_encoded(self, value: str) -> None:
        job = self.job
        job.last_sent_at = self.ctx.now()
        if self.projector.update_state(STATES["cover_base64"], value):
            job.send_count += 1
            self.projector.update_state(STATES["cover_base64_send_count"], job.send_count)

    async def _emit_pending(self) -> None:
        job = self.job
        if not job.pending_encoded:
            return
        value, job.pending_encoded = job.pending_encoded, ""
        self._send_encoded(value)

    # ── Queue ──

    def on_song(self, cover_url: str) -> None:
        """Called for every song projection."""
        self.job.last_song_url = cover_url
        if self.mode is not CoverArtMode.OFF:
            self.queue(cover_url)

    def queue(self, url) -> None:
        if self.mode is CoverArtMode.OFF:
            return
        job = self.job
        trimmed = url.strip() if isinstance(url, str) else ""

        if not trimmed or not _HTTP_URL.match(trimmed):
            job.requested_url = ""
            job.failed_url = ""
            self._clear_ready()
            self._debug("cover url invalid" if trimmed else "cover url empty")
            return

        if trimmed == job.failed_url:
            return
        job.failed_url = ""

        if trimmed == job.ready_url and self._reemit():
            return
        if trimmed != job.ready_url:
            self._clear_ready()

        if job.in_flight and trimmed == job.in_flight_url and not job.requested_url:
            return
        job.requested_url = trimmed
        self._kick()

    def _reemit(self) -> bool:
        """Re-push the artwork we already hold for the ready URL."""
        job = self.job
        if self.mode is CoverArtMode.LOCAL and job.ready_path and Path(job.ready_path).is_file():
            self._emit_path(job.ready_path)
            if self.emit_encoded(job.ready_encoding):
                self._debug(f"ready: {describe_file(job.ready_path)}")
            return True
        if self.mode is CoverArtMode.MEMORY and job.ready_encoding:
            self._emit_path("")
            if self.emit_encoded(job.ready_encoding):
                self._debug(f"ready: memory base64={len(job.ready_encoding)}")
            return True
        return False

    def _kick(self) -> None:
        if self._worker is not None and not self._worker.done():
            return
        self._worker = asyncio.ensure_future(self._drain())

    async def _drain(self) -> None:
        job = self.job
        while job.requested_url and not job.in_flight:
            url, job.requested_url = job.requested_url, ""
            job.in_flight = True
            job.in_flight_url = url
            try:
                await self._download(url)
            except Exception:
                log.exception("Cover art pipeline error for %s", url)
            finally:
                job.in_flight = False
            if job.requested_url == url:
                job.requested_url = ""
        job.in_flight_url = ""

    # ── Download ──

    def _superseded(self, url: str) -> bool:
        if self.mode is CoverArtMode.OFF:
            self._debug("cover art mode: off")
            return True
        wanted = self.job.requested_url
        if wanted and wanted != url:
            log.debug("Cover download superseded: %s", url)
            self._debug("download superseded")
            return True
        return False

    async def _download(self, url: str) -> None:
        if self.mode is CoverArtMode.OFF:
            self._debug("cover art mode: off")
            return

        self._debug(f"downloading: {truncate_url(url)}")
        try:
            data, _ = await asyncio.wait_for(self._fetch(url), timeout=self.ctx.tuning.cover_timeout)
        except asyncio.TimeoutError:
            if not self._superseded(url):
                self._fail(url, "timed out")
            return
        except Exception as e:
            if not self._superseded(url):
                self._fail(url, str(e) or type(e).__name__)
            return

        if self._superseded(url):
            return
        if not data:
            self._fail(url, "empty response")
            return

        loop = asyncio.get_running_loop()
        try:
            artwork = await loop.run_in_executor(_artwork_executor, process_image, data)
        except (OSError, ValueError, Image.DecompressionBombError) as e:
            log.debug("Undecodable artwork from %s: %s", url, e)
            if not self._superseded(url):
                self._fail(url, "not an image")
            return
        if self._superseded(url):
            return

        self._store(url, artwork)

    def _store(self, url: str, artwork: Artwork) -> None:
        job = self.job
        size = encoded_length(len(artwork.data))
        info = f" type={artwork.content_type} {artwork.size[0]}x{artwork.size[1]}"
        limit = self.ctx.settings.max_artifact_encoded_length
        if limit > 0 and size > limit:
            self._reject(url, f"base64 too large ({size} > {limit}){info}")
            return

        encoded = base64.b64encode(artwork.data).decode("ascii")

        if self.mode is CoverArtMode.MEMORY:
            job.ready_url = url
            job.ready_path = ""
            job.ready_encoding = encoded
            self._emit_path("")
            self.emit_encoded(encoded)
            self._debug(f"ready: memory{info} base64={size}")
            log.info("Cover art ready in memory (%d bytes)", len(artwork.data))
            return

        path = self.slot_path(job.slot)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_bytes(artwork.data)
        except OSError as e:
            self._fail(url, f"write failed: {e}")
            return
        job.ready_url = url
        job.ready_path = str(path)
        job.ready_encoding = encoded
        job.slot = 1 - job.slot
        self._emit_path(str(path))
        self.emit_encoded(encoded)
        self._debug(f"ready: {describe_file(str(path))}{info} base64={size}")
        log.info("Cover art written to %s", path)

    def _fail(self, url: str, reason: str) -> None:
        log.warning("Cover art download failed for %s: %s", url, reason)
        self._reject(url, f"download failed: {reason}")

    def _reject(self, url: str, message: str) -> None:
        self._clear_ready()
        self.job.failed_url = url
        self._debug(message)

    # ── Mode / lifecycle ──

    def apply_mode(self) -> None:
        """Reset everything for the (new) current mode, then re-queue."""
        job = self.job
        self._emit_timer.cancel()
        job.requested_url = ""
        job.failed_url = ""
        job.pending_encoded = ""
        job.send_count = 0
        self._clear_ready()
        self.projector.update_state(STATES["cover_base64_send_count"], "")
        self._debug(f"cover art mode: {self.mode.value}")
        log.info("Cover art mode: %s", self.mode.value)

        if self.mode is not CoverArtMode.OFF and job.last_song_url:
            self.queue(job.last_song_url)

    async def join(self) -> None:
        """Wait until the download queue is empty."""
        while self._worker is not None and not self._worker.done():
            await asyncio.shield(self._worker)

    async def stop(self) -> None:
        self._emit_timer.cancel()
        if self._worker is not None and not self._worker.done():
            self._worker.cancel()
            try:
                await self._worker
            except asyncio.CancelledError:
                pass
        self._worker = None
        self.job.in_flight = False
