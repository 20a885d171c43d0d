"""Test fixtures for the Pear bridge.

- Fakes: a recording Touch Portal link and a scripted Pear client
- Clock: a manually advanced clock for hold/debounce/spacing logic
- Context: BridgeContext wired to the fake clock with fast timers
"""

import asyncio
from io import BytesIO

import pytest
from PIL import Image

from pearbridge.context import BridgeContext
from pearbridge.lib.surface_link import ControlSurfaceLink
from pearbridge.models import CoverArtMode, Settings, Tuning
from pearbridge.projector import StateProjector


# =============================================================================
# Fakes
# =============================================================================


class FakeClock:
    """Monotonic clock that only moves when told to."""

    def __init__(self, start: float = 1000.0):
        self.t = start

    def __call__(self) -> float:
        return self.t

    def advance(self, seconds: float) -> None:
        self.t += seconds


class FakeLink(ControlSurfaceLink):
    """Records every outbound write in order."""

    def __init__(self):
        super().__init__()
        self.writes: list[tuple[str, str, object]] = []
        self.connected_calls = 0
        self.closed = False

    def update_state(self, state_id, value):
        self.writes.append(("state", state_id, value))

    def trigger_event(self, event_id, value):
        self.writes.append(("event", event_id, value))

    def update_connector(self, connector_id, value):
        self.writes.append(("connector", connector_id, value))

    def connector_id(self, connector_id):
        return f"pc_com.hellblazer90.pear.ytm_{connector_id}"

    async def connect(self):
        self.connected_calls += 1

    async def close(self):
        self.closed = True

    def values(self, kind: str, item_id: str) -> list:
        return [v for k, i, v in self.writes if k == kind and i == item_id]

    def state(self, state_id: str):
        values = self.values("state", state_id)
        return values[-1] if values else None


class FakeClient:
    """Scripted Pear API.

    ``responses[name]`` is returned by the call, ``errors[name]`` is raised,
    and ``gates[name]`` (an asyncio.Event) holds the call until set.  A list
    in ``errors`` is consumed one entry per call (None means succeed).
    """

    def __init__(self):
        self.calls: list[tuple] = []
        self.responses: dict = {
            "get_song": make_song(),
            "get_like_state": {"state": "INDIFFERENT"},
            "get_repeat_mode": {"mode": "NONE"},
            "get_shuffle_state": {"state": False},
            "get_volume": {"state": 40, "isMuted": False},
        }
        self.errors: dict = {}
        self.gates: dict[str, asyncio.Event] = {}
        self.token = None
        self.hostname = "127.0.0.1"
        self.port = 9863
        self.client_id = "touchportal"
        self.base_url = "http://127.0.0.1:9863"
        self.config_updates: list[tuple] = []
        self.closed = False

    def called(self, name: str) -> list[tuple]:
        return [c for c in self.calls if c[0] == name]

    async def _call(self, name, *args):
        self.calls.append((name, *args))
        gate = self.gates.get(name)
        if gate is not None:
            await gate.wait()
        error = self.errors.get(name)
        if isinstance(error, list):
            error = error.pop(0) if error else None
        if error is not None:
            raise error
        return self.responses.get(name, {})

    def update_config(self, hostname, port, client_id):
        self.config_updates.append((hostname, port, client_id))
        self.hostname, self.port, self.client_id = hostname, port, client_id
        self.base_url = f"http://{hostname}:{port}"

    def invalidate_token(self):
        self.token = None

    async def close(self):
        self.closed = True

    async def authenticate(self):
        await self._call("authenticate")
        self.token = "token"
        return self.token

    async def get_song(self):
        return await self._call("get_song")

    async def play(self):
        return await self._call("play")

    async def pause(self):
        return await self._call("pause")

    async def toggle_play(self):
        return await self._call("toggle_play")

    async def next(self):
        return await self._call("next")

    async def previous(self):
        return await self._call("previous")

    async def like(self):
        return await self._call("like")

    async def dislike(self):
        return await self._call("dislike")

    async def get_like_state(self):
        return await self._call("get_like_state")

    async def seek_to(self, seconds):
        return await self._call("seek_to", seconds)

    async def go_back(self, seconds):
        return await self._call("go_back", seconds)

    async def go_forward(self, seconds):
        return await self._call("go_forward", seconds)

    async def shuffle(self):
        return await self._call("shuffle")

    async def get_shuffle_state(self):
        return await self._call("get_shuffle_state")

    async def switch_repeat(self, iteration=1):
        return await self._call("switch_repeat", iteration)

    async def get_repeat_mode(self):
        return await self._call("get_repeat_mode")

    async def set_volume(self, percent):
        return await self._call("set_volume", percent)

    async def get_volume(self):
        return await self._call("get_volume")

    async def toggle_mute(self):
        return await self._call("toggle_mute")

    async def set_queue_index(self, index):
        return await self._call("set_queue_index", index)

    async def add_to_queue(self, video_id, insert_position=None):
        return await self._call("add_to_queue", video_id, insert_position)


def make_song(**overrides) -> dict:
    song = {
        "title": "Midnight City",
        "artist": "M83",
        "album": "Hurry Up, We're Dreaming",
        "imageSrc": "https://lh3.example.com/cover-1.jpg",
        "songDuration": 244,
        "elapsedSeconds": 61,
        "isPaused": False,
        "videoId": "dX3k_QDnzHE",
        "playlistId": "PL1",
        "url": "https://music.youtube.com/watch?v=dX3k_QDnzHE",
        "mediaType": "AUDIO",
    }
    song.update(overrides)
    return song


def image_bytes(fmt: str = "JPEG", size=(8, 8), color=(200, 30, 30)) -> bytes:
    buf = BytesIO()
    mode = "P" if fmt == "GIF" else "RGB"
    Image.new(mode, size, 1 if mode == "P" else color).save(buf, fmt)
    return buf.getvalue()


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def tuning() -> Tuning:
    """Production hold/tolerance values, fast real-time timers."""
    return Tuning(
        extra_poll_interval=5.0,
        reconnect_interval=0.01,
        volume_debounce=0.01,
        volume_refresh_delay=0.01,
        cover_timeout=0.5,
        cover_min_emit_interval=0.05,
    )


@pytest.fixture
def settings() -> Settings:
    return Settings(cover_art_mode=CoverArtMode.OFF)


@pytest.fixture
def ctx(settings, tuning, clock) -> BridgeContext:
    return BridgeContext(settings, tuning, clock=clock)


@pytest.fixture
def link() -> FakeLink:
    return FakeLink()


@pytest.fixture
def client() -> FakeClient:
    return FakeClient()


@pytest.fixture
def projector(ctx, link) -> StateProjector:
    return StateProjector(ctx, link)
