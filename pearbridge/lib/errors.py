"""
Error taxonomy for media-source calls.

Every failure that leaves the media-source client is one of:

  ConfigError          : missing/placeholder endpoint or invalid argument.
                          Never retried automatically.
  AuthError            : pairing or bearer token rejected.  The client has
                          already re-authenticated once before raising.
  MediaConnectionError : refused / reset / timeout / DNS / fetch failure.
                          The supervisor suspends polling and probes.
  HttpError            : any other non-2xx response.  Status text only.

``format_status`` turns any exception into the short string shown in the
``pear.connectionStatus`` state.
"""

import asyncio
import errno

import aiohttp

_CONNECTION_ERRNOS = {
    errno.ECONNREFUSED,
    errno.ECONNRESET,
    errno.EHOSTUNREACH,
    errno.ENETUNREACH,
    errno.ETIMEDOUT,
}

_CONNECTION_HINTS = ("econnrefused", "enotfound", "timed out",
                     "failed to fetch", "fetch failed")


class MediaSourceError(Exception):
    """Base class for media-source failures."""

    kind = "error"

    def __init__(self, message: str, *, status: int | None = None,
                 user_message: str | None = None, response_text: str = ""):
        super().__init__(message)
        self.status = status
        self.user_message = user_message
        self.response_text = response_text


class ConfigError(MediaSourceError):
    kind = "config"

    def __init__(self, message: str, **kwargs):
        kwargs.setdefault("user_message", message)
        super().__init__(message, **kwargs)


class AuthError(MediaSourceError):
    kind = "auth"


class MediaConnectionError(MediaSourceError):
    kind = "connection"


class HttpError(MediaSourceError):
    kind = "http"


def is_connection_error(exc: BaseException | None) -> bool:
    """True for network-level failures (raw or already wrapped)."""
    if exc is None:
        return False
    if isinstance(exc, MediaConnectionError):
        return True
    if isinstance(exc, MediaSourceError):
        return False
    if isinstance(exc, (aiohttp.ClientConnectionError, asyncio.TimeoutError)):
        return True
    if isinstance(exc, OSError) and exc.errno in _CONNECTION_ERRNOS:
        return True
    cause = exc.__cause__
    if cause is not None and cause is not exc and is_connection_error(cause):
        return True
    message = str(exc).lower()
    return any(hint in message for hint in _CONNECTION_HINTS)


def format_status(exc: BaseException | None) -> str:
    """Status text for the control surface."""
    if exc is None:
        return "Connected"
    user_message = getattr(exc, "user_message", None)
    if user_message:
        return user_message
    if is_connection_error(exc):
        return "Disconnected"
    if isinstance(exc, AuthError):
        return f"Auth failed: {exc}"
    return f"Error: {exc}"
