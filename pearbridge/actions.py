"""
Touch Portal actions → typed commands.

``decode_action`` is the only place that looks at raw action payloads.  It
maps every known action id to one of the frozen dataclasses below and
returns None for ids this plugin does not own.  Field values are looked up
by data id (``choice``), display name (``Choice``) or fully qualified id
(``pear.playPauseChoice.choice``).  Bad values raise ConfigError.
"""

from dataclasses import dataclass
from typing import Union

from .lib.errors import ConfigError
from .models import clamp, parse_optional_number

DEFAULT_SEEK_SECONDS = 10
DEFAULT_VOLUME_STEP = 5


@dataclass(frozen=True)
class Transport:
    command: str        # play | pause | toggle | next | previous


@dataclass(frozen=True)
class Rate:
    like: bool


@dataclass(frozen=True)
class Seek:
    mode: str           # to | back | forward
    seconds: float


@dataclass(frozen=True)
class SetShuffle:
    target: bool | None  # None → toggle


@dataclass(frozen=True)
class SwitchRepeat:
    iterations: int


@dataclass(frozen=True)
class SetRepeat:
    mode: str           # NONE | ALL | ONE


@dataclass(frozen=True)
class SetVolume:
    percent: int


@dataclass(frozen=True)
class StepVolume:
    delta: float


@dataclass(frozen=True)
class SetMute:
    target: bool | None  # None → toggle


@dataclass(frozen=True)
class QueuePlayIndex:
    index: int


@dataclass(frozen=True)
class QueueAddVideo:
    video_id: str
    insert_position: str | None = None


@dataclass(frozen=True)
class Reauthenticate:
    pass


@dataclass(frozen=True)
class Refresh:
    pass


Action = Union[Transport, Rate, Seek, SetShuffle, SwitchRepeat, SetRepeat, SetVolume,
               StepVolume, SetMute, QueuePlayIndex, QueueAddVideo, Reauthenticate, Refresh]


# ── Payload helpers ──

def _pairs(entries: list) -> dict:
    values = {}
    for entry in entries:
        if isinstance(entry, dict) and entry.get("id") is not None:
            values[entry["id"]] = entry.get("value")
    return values


def extract_action_data(payload: dict) -> dict:
    """Flatten ``data``/``values`` (list of {id, value} or mapping)."""
    for key in ("data", "values"):
        inner = payload.get(key)
        if isinstance(inner, list):
            return _pairs(inner)
        if isinstance(inner, dict):
            return inner
    return {}


def field_value(values: dict, key: str, label: str):
    if key in values:
        return values[key]
    if label in values:
        return values[label]
    for name, value in values.items():
        if name.endswith(f".{key}") or name.endswith(f".{label}"):
            return value
    return None


def _choice(values: dict, key: str) -> str:
    raw = field_value(values, key, key.capitalize())
    return str(raw or "").strip().lower()


def _number(values: dict, key: str, label: str | None = None) -> float | None:
    return parse_optional_number(field_value(values, key, label or key.capitalize()))


# ── Decoders ──

def _play_pause_choice(values):
    choice = _choice(values, "choice")
    return Transport(choice if choice in ("play", "pause") else "toggle")


def _next_prev_choice(values):
    return Transport("previous" if _choice(values, "direction") == "previous" else "next")


def _like_dislike_choice(values):
    return Rate(like=_choice(values, "choice") != "dislike")


def _seek_to(values):
    seconds = _number(values, "seconds")
    if seconds is None:
        raise ConfigError("Seek To requires seconds.")
    return Seek("to", seconds)


def _seek(mode):
    def decode(values):
        seconds = _number(values, "seconds")
        return Seek(mode, DEFAULT_SEEK_SECONDS if seconds is None else seconds)
    return decode


def _seek_relative_choice(values):
    mode = "back" if _choice(values, "direction") == "rewind" else "forward"
    return _seek(mode)(values)


def _shuffle_state_choice(values):
    state = _choice(values, "state")
    return SetShuffle(None if state == "toggle" else state == "on")


def _repeat(values):
    iterations = _number(values, "iterations")
    return SwitchRepeat(1 if iterations is None else int(iterations))


def _repeat_mode_choice(values):
    mode = _choice(values, "mode")
    if mode == "toggle":
        return SwitchRepeat(1)
    return SetRepeat({"off": "NONE", "one": "ONE"}.get(mode, "ALL"))


def _volume(values):
    percent = _number(values, "percent")
    if percent is None:
        raise ConfigError("Set Volume requires a percent value.")
    return SetVolume(int(clamp(round(percent), 0, 100)))


def _volume_step(values):
    step = _number(values, "step")
    step = DEFAULT_VOLUME_STEP if step is None else step
    return StepVolume(-step if _choice(values, "direction") == "down" else step)


def _toggle_mute(values):
    choice = _choice(values, "choice")
    return SetMute({"mute": True, "unmute": False}.get(choice))


def _queue_play_index(values):
    index = _number(values, "index")
    if index is None or index < 0:
        raise ConfigError("Queue index must be 0 or higher.")
    return QueuePlayIndex(int(index))


def _queue_add_video(values):
    video_id = field_value(values, "videoId", "Video ID")
    if not video_id or not str(video_id).strip():
        raise ConfigError("Video ID is required.")
    position = field_value(values, "insertPosition", "Insert Position")
    return QueueAddVideo(str(video_id).strip(), str(position) if position else None)


ACTIONS = {
    "pear.play": lambda _: Transport("play"),
    "pear.pause": lambda _: Transport("pause"),
    "pear.playpause": lambda _: Transport("toggle"),
    "pear.playPauseChoice": _play_pause_choice,
    "pear.next": lambda _: Transport("next"),
    "pear.prev": lambda _: Transport("previous"),
    "pear.nextPrevChoice": _next_prev_choice,
    "pear.like": lambda _: Rate(like=True),
    "pear.dislike": lambda _: Rate(like=False),
    "pear.likeDislikeChoice": _like_dislike_choice,
    "pear.seekTo": _seek_to,
    "pear.goBack": _seek("back"),
    "pear.goForward": _seek("forward"),
    "pear.seekRelativeChoice": _seek_relative_choice,
    "pear.shuffle": lambda _: SetShuffle(None),
    "pear.shuffleStateChoice": _shuffle_state_choice,
    "pear.repeat": _repeat,
    "pear.repeatModeChoice": _repeat_mode_choice,
    "pear.volume": _volume,
    "pear.volumeStep": _volume_step,
    "pear.toggleMute": _toggle_mute,
    "pear.queuePlayIndex": _queue_play_index,
    "pear.queueAddVideo": _queue_add_video,
    "pear.token": lambda _: Reauthenticate(),
    "pear.refresh": lambda _: Refresh(),
}


def decode_action(action_id: str | None, values: dict) -> Action | None:
    decoder = ACTIONS.get(action_id or "")
    if decoder is None:
        return None
    return decoder(values)
