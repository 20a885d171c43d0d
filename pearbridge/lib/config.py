"""
Shared configuration loader for the Pear bridge.

Loads a single JSON config file.  Search order:
  1. /etc/pear-bridge/config.json   (system install)
  2. config.json                    (CWD: handy for local dev)
  3. ../../config/default.json      (repo fallback)

The file only seeds start-up values.  Touch Portal pushes the user-facing
settings at runtime and those always win.

Usage:
    from pearbridge.lib.config import cfg

    host      = cfg("media", "hostname", default="127.0.0.1")
    mode      = cfg("cover_art", "mode", default="memory")
    tuning    = cfg("tuning")  # returns the whole dict
"""

import json
import logging
import os

logger = logging.getLogger(__name__)

_config: dict | None = None

_SEARCH_PATHS = [
    "/etc/pear-bridge/config.json",
    "config.json",
    os.path.join(os.path.dirname(__file__), "..", "..", "config", "default.json"),
]

_COVER_MODES = ("off", "memory", "local")


def _validate(config: dict, path: str) -> None:
    """Warn about missing or suspicious config values."""
    media = config.get("media") or {}
    port = media.get("port")
    if port is not None and not isinstance(port, int):
        logger.warning("Config %s: media.port should be a number, got %r", path, port)
    poll = media.get("poll_interval_ms")
    if poll is not None and (not isinstance(poll, (int, float)) or poll < 0):
        logger.warning("Config %s: media.poll_interval_ms must be >= 0, got %r", path, poll)
    cover = config.get("cover_art") or {}
    mode = cover.get("mode", "memory")
    if str(mode).lower() not in _COVER_MODES:
        logger.warning("Config %s: unknown cover_art.mode '%s'", path, mode)
    tuning = config.get("tuning") or {}
    for key, value in tuning.items():
        if not isinstance(value, (int, float)):
            logger.warning("Config %s: tuning.%s should be a number, got %r", path, key, value)


def load_config() -> dict:
    """Load config from the first JSON file found. Cached after first call."""
    global _config
    if _config is not None:
        return _config

    for path in _SEARCH_PATHS:
        try:
            with open(path) as f:
                _config = json.load(f)
                logger.info("Config loaded from %s", path)
                _validate(_config, path)
                return _config
        except FileNotFoundError:
            continue
        except json.JSONDecodeError as e:
            logger.error("Invalid JSON in %s: %s", path, e)
            continue

    logger.info("No config.json found: using built-in defaults")
    _config = {}
    return _config


def cfg(section: str, key: str | None = None, *, default=None):
    """Read a config value.

    cfg("tuning")                        → config["tuning"]
    cfg("media", "port")                 → config["media"]["port"]
    cfg("media", "port", default=9863)   → config["media"]["port"] or 9863
    """
    config = load_config()
    val = config.get(section)
    if key is None:
        return val if val is not None else default
    if isinstance(val, dict):
        return val.get(key, default)
    return default


def reload_config():
    """Force re-read from disk (for testing or hot-reload)."""
    global _config
    _config = None
    return load_config()
