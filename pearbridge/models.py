"""Data model for the Pear bridge: settings, tuning, snapshots and job state."""

import enum
import math
from dataclasses import dataclass, field, fields, replace

from .const import SETTINGS, SETTINGS_LABELS
from .lib.config import cfg
from .lib.errors import format_status, is_connection_error

DEFAULT_HOSTNAME = "127.0.0.1"
DEFAULT_PORT = 9863
DEFAULT_CLIENT_ID = "touchportal"
DEFAULT_POLL_INTERVAL_MS = 500

_TRUE_WORDS = {"true", "1", "yes", "y", "on"}
_FALSE_WORDS = {"false", "0", "no", "n", "off"}


class CoverArtMode(str, enum.Enum):
    OFF = "off"
    MEMORY = "memory"
    LOCAL = "local"


_COVER_MODE_WORDS = {
    CoverArtMode.OFF: {"off", "disable", "disabled", "false", "0", "no", "n"},
    CoverArtMode.MEMORY: {"memory", "mem", "ram", "base64", "b64", "inline"},
    CoverArtMode.LOCAL: {"local", "file", "disk", "true", "1", "yes", "y", "on", "download"},
}


class LinkPhase(str, enum.Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    RECONNECTING = "reconnecting"


# ── Tolerant parsers for Touch Portal setting text ──

def is_number(value) -> bool:
    return (isinstance(value, (int, float)) and not isinstance(value, bool)
            and math.isfinite(value))


def parse_optional_number(value) -> float | None:
    """Number from text or a number, None when blank or unparseable."""
    if value is None or value == "" or isinstance(value, bool):
        return None
    try:
        num = float(value)
    except (TypeError, ValueError):
        return None
    return num if math.isfinite(num) else None


def parse_positive(value, fallback):
    num = parse_optional_number(value)
    if num is None or num <= 0:
        return fallback
    return int(num) if num.is_integer() else num


def parse_bool(value, fallback: bool) -> bool:
    if isinstance(value, bool):
        return value
    if value is None:
        return fallback
    text = str(value).strip().lower()
    if text in _TRUE_WORDS:
        return True
    if text in _FALSE_WORDS:
        return False
    return fallback


def parse_cover_mode(value, fallback: CoverArtMode) -> CoverArtMode:
    if isinstance(value, CoverArtMode):
        return value
    if value is None:
        return fallback
    text = str(value).strip().lower()
    for mode, words in _COVER_MODE_WORDS.items():
        if text in words:
            return mode
    return fallback


def clamp(value: float, low: float, high: float) -> float:
    return min(high, max(low, value))


def _pairs_to_dict(entries: list) -> dict:
    """[{"id": k, "value": v}, {"k2": v2}] → {k: v, k2: v2}."""
    result = {}
    for entry in entries:
        if not isinstance(entry, dict):
            continue
        key = entry.get("id") or entry.get("key") or entry.get("name")
        value = entry["value"] if "value" in entry else entry.get("default")
        if not key and len(entry) == 1:
            key, value = next(iter(entry.items()))
        if key:
            result[key] = value
    return result


def extract_settings(payload) -> dict:
    """Flatten any of Touch Portal's settings shapes into ``{id: value}``.

    Raises ValueError for shapes that carry no settings at all.
    """
    if isinstance(payload, list):
        return _pairs_to_dict(payload)
    if not isinstance(payload, dict):
        raise ValueError(f"unrecognised settings payload: {type(payload).__name__}")

    for key in ("values", "settings"):
        inner = payload.get(key)
        if isinstance(inner, dict):
            return inner
        if isinstance(inner, list):
            return _pairs_to_dict(inner)
    nested = payload.get("payload")
    if isinstance(nested, dict) and isinstance(nested.get("settings"), list):
        return _pairs_to_dict(nested["settings"])

    known = set(SETTINGS.values()) | set(SETTINGS_LABELS.values())
    if known.intersection(payload):
        return payload
    raise ValueError("unrecognised settings payload: no known keys")


@dataclass(frozen=True)
class Settings:
    """User-facing configuration, replaced wholesale on every settings push."""

    hostname: str = DEFAULT_HOSTNAME
    port: int = DEFAULT_PORT
    client_id: str = DEFAULT_CLIENT_ID
    poll_interval_ms: float = DEFAULT_POLL_INTERVAL_MS
    extended_states_enabled: bool = True
    cover_art_mode: CoverArtMode = CoverArtMode.MEMORY
    max_artifact_encoded_length: int = 0
    cover_art_dir: str = "."

    @classmethod
    def from_config(cls) -> "Settings":
        base = cls()
        return cls(
            hostname=str(cfg("media", "hostname", default=base.hostname)).strip() or base.hostname,
            port=parse_positive(cfg("media", "port"), base.port),
            client_id=str(cfg("media", "client_id", default=base.client_id)).strip() or base.client_id,
            poll_interval_ms=parse_positive(cfg("media", "poll_interval_ms"), base.poll_interval_ms),
            extended_states_enabled=parse_bool(cfg("media", "extended_states"),
                                               base.extended_states_enabled),
            cover_art_mode=parse_cover_mode(cfg("cover_art", "mode"), base.cover_art_mode),
            max_artifact_encoded_length=int(parse_optional_number(
                cfg("cover_art", "max_encoded_length")) or 0),
            cover_art_dir=str(cfg("cover_art", "directory", default=base.cover_art_dir)),
        )

    def merged(self, values: dict) -> "Settings":
        """Apply a flattened settings push; unknown or blank values keep ours."""

        def pick(name):
            if SETTINGS[name] in values:
                return values[SETTINGS[name]]
            return values.get(SETTINGS_LABELS[name])

        hostname = pick("hostname")
        client_id = pick("client_id")
        return replace(
            self,
            hostname=hostname.strip() if isinstance(hostname, str) and hostname.strip() else self.hostname,
            port=parse_positive(pick("port"), self.port),
            client_id=client_id.strip() if isinstance(client_id, str) and client_id.strip() else self.client_id,
            poll_interval_ms=parse_positive(pick("poll_interval_ms"), self.poll_interval_ms),
            extended_states_enabled=parse_bool(pick("extended_states_enabled"),
                                               self.extended_states_enabled),
            cover_art_mode=parse_cover_mode(pick("cover_art_mode"), self.cover_art_mode),
        )

    def connection_key(self) -> tuple:
        """Fields whose change invalidates auth and poll bookkeeping."""
        return (self.hostname, int(self.port), self.client_id, float(self.poll_interval_ms))


@dataclass(frozen=True)
class Tuning:
    """Empirical timing/tolerance constants.  Seconds unless noted."""

    extra_poll_interval: float = 5.0
    reconnect_interval: float = 5.0
    action_debounce: float = 0.25
    volume_debounce: float = 0.12
    volume_hold: float = 0.6
    volume_tolerance: float = 2          # percentage points
    volume_scale_min: float = 0.2
    volume_scale_max: float = 5.0
    volume_refresh_delay: float = 0.3
    cover_timeout: float = 8.0
    cover_min_emit_interval: float = 1.5

    @classmethod
    def from_config(cls) -> "Tuning":
        overrides = cfg("tuning", default={}) or {}
        known = {f.name for f in fields(cls)}
        values = {k: float(v) for k, v in overrides.items()
                  if k in known and is_number(v)}
        return cls(**values)


@dataclass(frozen=True)
class SongSnapshot:
    title: str = ""
    artist: str = ""
    album: str = ""
    cover_url: str = ""
    duration_sec: float | None = None
    elapsed_sec: float | None = None
    is_paused: bool | None = None
    is_playing: bool | None = None
    video_id: str = ""
    playlist_id: str = ""
    url: str = ""
    media_type: str = ""

    @classmethod
    def from_payload(cls, song) -> "SongSnapshot | None":
        if not isinstance(song, dict):
            return None

        artist = song.get("artist") or song.get("artistName") or ""
        if isinstance(artist, list):
            artist = ", ".join(str(a) for a in artist)
        elif not artist and isinstance(song.get("artists"), list):
            artist = ", ".join(a["name"] for a in song["artists"]
                               if isinstance(a, dict) and a.get("name"))

        is_paused = song.get("isPaused")
        if not isinstance(is_paused, bool):
            is_paused = song.get("paused") if isinstance(song.get("paused"), bool) else None
        if is_paused is not None:
            is_playing = not is_paused
        else:
            is_playing = song.get("isPlaying") if isinstance(song.get("isPlaying"), bool) else None

        duration = song.get("songDuration")
        elapsed = song.get("elapsedSeconds")
        return cls(
            title=str(song.get("title") or song.get("songTitle") or song.get("track") or ""),
            artist=str(artist),
            album=str(song.get("album") or ""),
            cover_url=str(song.get("imageSrc") or song.get("cover") or ""),
            duration_sec=duration if is_number(duration) else None,
            elapsed_sec=elapsed if is_number(elapsed) else None,
            is_paused=is_paused,
            is_playing=is_playing,
            video_id=str(song.get("videoId") or ""),
            playlist_id=str(song.get("playlistId") or ""),
            url=str(song.get("url") or ""),
            media_type=str(song.get("mediaType") or ""),
        )

    @property
    def has_song(self) -> bool:
        return bool(self.title or self.video_id)

    @property
    def signature(self) -> tuple:
        """Identity of the track, ignoring position and play state."""
        return (self.video_id, self.title, self.artist, self.album, self.duration_sec)


class StatusKind(str, enum.Enum):
    DISCONNECTED = "disconnected"
    CONNECTED = "connected"
    ERROR = "error"


@dataclass(frozen=True)
class ConnectionStatus:
    """The single authoritative connection status; ``text`` is user-visible."""

    kind: StatusKind
    text: str

    @classmethod
    def disconnected(cls) -> "ConnectionStatus":
        return cls(StatusKind.DISCONNECTED, "Disconnected")

    @classmethod
    def connected(cls) -> "ConnectionStatus":
        return cls(StatusKind.CONNECTED, "Connected")

    @classmethod
    def error(cls, text: str) -> "ConnectionStatus":
        return cls(StatusKind.ERROR, text)

    @classmethod
    def from_exception(cls, exc: BaseException) -> "ConnectionStatus":
        if is_connection_error(exc):
            return cls.disconnected()
        return cls.error(format_status(exc))

    @property
    def is_connected(self) -> bool:
        return self.kind is StatusKind.CONNECTED


@dataclass
class VolumeModel:
    last_known_percent: int | None = None
    scale_factor: float = 1.0
    pending_target: int | None = None
    pending_set_at: float = 0.0
    last_reported_mute: bool | None = None
    # outbound queue
    pending_send: int | None = None
    send_in_flight: bool = False


@dataclass
class CoverArtJob:
    requested_url: str = ""
    in_flight_url: str = ""
    in_flight: bool = False
    ready_url: str = ""
    ready_path: str = ""
    ready_encoding: str = ""
    failed_url: str = ""
    slot: int = 0
    last_song_url: str = ""
    # emission limiter
    last_encoded: str = ""
    last_sent_at: float | None = None
    pending_encoded: str = ""
    send_count: int = 0


@dataclass
class PollBookkeeping:
    song_signature: tuple | None = None
    poll_in_flight: bool = False
    extra_poll_in_flight: bool = False
    last_extra_poll_at: float | None = None
    connecting: bool = False
    action_times: dict = field(default_factory=dict)
