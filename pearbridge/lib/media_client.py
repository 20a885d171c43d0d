"""
Pear Desktop API client (media source).

The Pear Desktop "API server" plugin exposes a small JSON API on localhost:

  GET|POST /auth/{clientId}         pairing, returns {"accessToken": ...}
  GET      /api/v1/song            : current song
  POST     /api/v1/play|pause|toggle-play|next|previous
  POST     /api/v1/like|dislike     GET /api/v1/like-state
  POST     /api/v1/seek-to|go-back|go-forward   {"seconds": N}
  POST     /api/v1/shuffle          GET /api/v1/shuffle
  POST     /api/v1/switch-repeat    {"iteration": N}   GET /api/v1/repeat-mode
  POST     /api/v1/volume           {"volume": N}      GET /api/v1/volume
  POST     /api/v1/toggle-mute
  PATCH    /api/v1/queue            {"index": N}
  POST     /api/v1/queue            {"videoId": ..., "insertPosition": ...}

Every request carries a bearer token.  A 401/403 drops the token,
re-pairs and retries exactly once.
"""

import asyncio
import json
import logging
import math
import re
import urllib.parse
from typing import NamedTuple

import aiohttp

from .errors import AuthError, ConfigError, HttpError, MediaConnectionError

logger = logging.getLogger("pear-bridge.api")

DEFAULT_HOSTNAME = "127.0.0.1"
DEFAULT_PORT = 9863
DEFAULT_CLIENT_ID = "touchportal"
REQUEST_TIMEOUT = 5  # seconds


class Endpoint(NamedTuple):
    methods: tuple
    path: str
    value_key: str | None = None


ENDPOINTS = {
    "auth": Endpoint(("GET", "POST"), "/auth/{id}"),
    "song": Endpoint(("GET",), "/api/v1/song"),
    "play": Endpoint(("POST",), "/api/v1/play"),
    "pause": Endpoint(("POST",), "/api/v1/pause"),
    "toggle_play": Endpoint(("POST",), "/api/v1/toggle-play"),
    "next": Endpoint(("POST",), "/api/v1/next"),
    "previous": Endpoint(("POST",), "/api/v1/previous"),
    "like": Endpoint(("POST",), "/api/v1/like"),
    "dislike": Endpoint(("POST",), "/api/v1/dislike"),
    "like_state": Endpoint(("GET",), "/api/v1/like-state"),
    "seek_to": Endpoint(("POST",), "/api/v1/seek-to", "seconds"),
    "go_back": Endpoint(("POST",), "/api/v1/go-back", "seconds"),
    "go_forward": Endpoint(("POST",), "/api/v1/go-forward", "seconds"),
    "shuffle": Endpoint(("POST",), "/api/v1/shuffle"),
    "shuffle_state": Endpoint(("GET",), "/api/v1/shuffle"),
    "repeat": Endpoint(("POST",), "/api/v1/switch-repeat", "iteration"),
    "repeat_mode": Endpoint(("GET",), "/api/v1/repeat-mode"),
    "volume": Endpoint(("POST",), "/api/v1/volume", "volume"),
    "volume_state": Endpoint(("GET",), "/api/v1/volume"),
    "toggle_mute": Endpoint(("POST",), "/api/v1/toggle-mute"),
    "queue_index": Endpoint(("PATCH",), "/api/v1/queue", "index"),
    "queue_add": Endpoint(("POST",), "/api/v1/queue"),
}


def sanitize_hostname(value) -> str:
    """'http://host:9863/x' → 'host'."""
    if not value:
        return ""
    host = str(value).strip()
    host = re.sub(r"^https?://", "", host, flags=re.IGNORECASE)
    host = re.sub(r"/.*$", "", host)
    host = re.sub(r":\d+$", "", host)
    return host.strip()


def _is_placeholder(path: str) -> bool:
    upper = path.upper()
    return not path or "REPLACE_WITH" in upper or "..." in upper


def _parse_json(text: str):
    if not text:
        return None
    try:
        return json.loads(text)
    except json.JSONDecodeError:
        return None


class MediaSourceClient:
    """Authenticated JSON client for the Pear Desktop API server."""

    def __init__(self, hostname: str = DEFAULT_HOSTNAME, port: int = DEFAULT_PORT,
                 client_id: str = DEFAULT_CLIENT_ID, *,
                 session: aiohttp.ClientSession | None = None,
                 timeout: float = REQUEST_TIMEOUT):
        self.token: str | None = None
        self._session = session
        self._owns_session = session is None
        self._timeout = timeout
        self.update_config(hostname, port, client_id)

    # ── Configuration / lifecycle ──

    def update_config(self, hostname, port, client_id) -> None:
        host = sanitize_hostname(hostname)
        try:
            port_num = int(port)
        except (TypeError, ValueError):
            port_num = 0
        client = client_id.strip() if isinstance(client_id, str) else ""

        self.hostname = host or DEFAULT_HOSTNAME
        self.port = port_num if port_num > 0 else DEFAULT_PORT
        self.client_id = client or DEFAULT_CLIENT_ID
        self.base_url = f"http://{self.hostname}:{self.port}"

    def invalidate_token(self) -> None:
        self.token = None

    @property
    def session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                headers={"User-Agent": "PearBridge/1.0"},
            )
            self._owns_session = True
        return self._session

    async def close(self) -> None:
        if self._session and self._owns_session and not self._session.closed:
            await self._session.close()
        self._session = None

    # ── Transport ──

    def _endpoint(self, name: str) -> Endpoint:
        endpoint = ENDPOINTS.get(name)
        if endpoint is None or _is_placeholder(endpoint.path):
            raise ConfigError(f"Endpoint for {name} is not configured.")
        return endpoint

    async def _send(self, method: str, path: str, *, headers=None, body=None) -> tuple[int, str]:
        url = f"{self.base_url}{path}"
        try:
            async with self.session.request(
                method, url, headers=headers, json=body,
                timeout=aiohttp.ClientTimeout(total=self._timeout),
            ) as resp:
                return resp.status, await resp.text()
        except (aiohttp.ClientConnectionError, asyncio.TimeoutError, OSError) as e:
            reason = str(e) or type(e).__name__
            raise MediaConnectionError(f"fetch failed: {method} {path} ({reason})") from e

    async def authenticate(self) -> str:
        """Pair with the API server and cache the bearer token."""
        endpoint = self._endpoint("auth")
        path = endpoint.path.replace("{id}", urllib.parse.quote(self.client_id, safe=""))

        last_error = None
        for method in endpoint.methods:
            status, text = await self._send(method, path)
            data = _parse_json(text)
            token = None
            if isinstance(data, dict):
                token = data.get("access_token") or data.get("token") or data.get("accessToken")
            if 200 <= status < 300 and token:
                self.token = token
                logger.info("Authenticated with %s as %s", self.base_url, self.client_id)
                return token
            last_error = AuthError(f"Auth failed ({status})", status=status,
                                   user_message=f"Auth failed ({status})",
                                   response_text=text)
            logger.debug("Auth via %s failed (HTTP %d)", method, status)

        raise last_error or AuthError("Auth failed (no methods configured)")

    async def request(self, method: str, path: str, *, body=None,
                      auth: bool = True, _retry: bool = False) -> tuple[int, str]:
        headers = {}
        if auth:
            if not self.token:
                await self.authenticate()
            headers["Authorization"] = f"Bearer {self.token}"

        status, text = await self._send(method, path, headers=headers, body=body)

        if auth and status in (401, 403) and not _retry:
            logger.info("Token rejected (HTTP %d), re-authenticating", status)
            self.token = None
            await self.authenticate()
            return await self.request(method, path, body=body, auth=auth, _retry=True)
        return status, text

    async def request_json(self, method: str, path: str, *, body=None):
        status, text = await self.request(method, path, body=body)
        if not 200 <= status < 300:
            if status in (401, 403):
                raise AuthError(f"HTTP {status}", status=status,
                                user_message=f"Auth failed ({status})", response_text=text)
            raise HttpError(f"HTTP {status}", status=status,
                            user_message=f"Error ({status})", response_text=text)
        return _parse_json(text)

    async def _call(self, name: str, value=None):
        endpoint = self._endpoint(name)
        body = None
        if value is not None:
            if not endpoint.value_key:
                raise ConfigError(f"Endpoint for {name} does not take a value.")
            body = {endpoint.value_key: value}
        return await self.request_json(endpoint.methods[0], endpoint.path, body=body)

    # ── Song / transport ──

    async def get_song(self):
        return await self._call("song")

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

    # ── Rating ──

    async def like(self):
        return await self._call("like")

    async def dislike(self):
        return await self._call("dislike")

    async def get_like_state(self):
        return await self._call("like_state")

    # ── Seeking ──

    async def seek_to(self, seconds: float):
        return await self._call("seek_to", seconds)

    async def go_back(self, seconds: float):
        return await self._call("go_back", seconds)

    async def go_forward(self, seconds: float):
        return await self._call("go_forward", seconds)

    # ── Shuffle / repeat ──

    async def shuffle(self):
        return await self._call("shuffle")

    async def get_shuffle_state(self):
        return await self._call("shuffle_state")

    async def switch_repeat(self, iteration: int = 1):
        return await self._call("repeat", iteration)

    async def get_repeat_mode(self):
        return await self._call("repeat_mode")

    # ── Volume ──

    async def set_volume(self, percent):
        if isinstance(percent, bool) or not isinstance(percent, (int, float)) \
                or not math.isfinite(percent):
            raise ConfigError("Volume must be a number between 0 and 100.")
        return await self._call("volume", int(round(min(100, max(0, percent)))))

    async def get_volume(self):
        return await self._call("volume_state")

    async def toggle_mute(self):
        return await self._call("toggle_mute")

    # ── Queue ──

    async def set_queue_index(self, index: int):
        return await self._call("queue_index", index)

    async def add_to_queue(self, video_id: str, insert_position: str | None = None):
        endpoint = self._endpoint("queue_add")
        body = {"videoId": video_id}
        if insert_position:
            body["insertPosition"] = insert_position
        return await self.request_json(endpoint.methods[0], endpoint.path, body=body)
