"""
Touch Portal link (control surface).

Touch Portal talks to plugins over a local TCP socket (127.0.0.1:12136) using
newline-delimited JSON records.  On connect the plugin pairs:

    {"type": "pair", "id": "<plugin id>"}

and then receives ``info``, ``settings``, ``action``, ``connectorChange`` and
``closePlugin`` records.  Outbound the plugin sends ``stateUpdate``,
``triggerEvent`` and ``connectorUpdate`` records.

Listeners register on a fixed set of named channels:

    link = TouchPortalLink(PLUGIN_ID)
    link.on("action", handle_action)       # sync or async callables
    await link.connect()
    link.update_state("pear.title", "Song")

Malformed lines are dropped.  After a close or error the link reconnects every
``reconnect_interval`` seconds until ``close()`` is called or Touch Portal
sends ``closePlugin`` for this plugin.
"""

import asyncio
import inspect
import json
import logging
from abc import ABC, abstractmethod
from typing import Callable

logger = logging.getLogger("pear-bridge.surface")

SOCKET_IP = "127.0.0.1"
SOCKET_PORT = 12136
DEFAULT_RECONNECT_INTERVAL = 3.0
READ_LIMIT = 1024 * 1024  # bytes per line
CONNECTOR_PREFIX = "pc"

CHANNELS = ("connected", "info", "settings", "action", "connectorChange", "close", "error")


class ControlSurfaceLink(ABC):
    """Fixed-channel observer interface every control surface implements."""

    def __init__(self):
        self._listeners: dict[str, list[Callable]] = {name: [] for name in CHANNELS}
        self._tasks: set[asyncio.Task] = set()

    def on(self, channel: str, callback: Callable) -> None:
        if channel not in self._listeners:
            raise ValueError(f"unknown channel {channel!r}, expected one of {CHANNELS}")
        self._listeners[channel].append(callback)

    def emit(self, channel: str, *args) -> None:
        for callback in list(self._listeners[channel]):
            try:
                result = callback(*args)
            except Exception:
                logger.exception("Listener for %s failed", channel)
                continue
            if inspect.isawaitable(result):
                task = asyncio.ensure_future(result)
                self._tasks.add(task)
                task.add_done_callback(self._task_done)

    def _task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error("Listener task failed: %s", task.exception())

    async def drain(self) -> None:
        """Wait for async listeners that are still running."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def connect(self) -> None:
        pass

    async def close(self) -> None:
        pass

    def connector_id(self, connector_id: str) -> str:
        """Wire id for a connector; surfaces without prefixes use it as is."""
        return connector_id

    @abstractmethod
    def update_state(self, state_id: str, value: str) -> None: ...

    @abstractmethod
    def trigger_event(self, event_id: str, value: str) -> None: ...

    @abstractmethod
    def update_connector(self, connector_id: str, value: int) -> None: ...


class TouchPortalLink(ControlSurfaceLink):

    def __init__(self, plugin_id: str, *, host: str = SOCKET_IP, port: int = SOCKET_PORT,
                 reconnect_interval: float = DEFAULT_RECONNECT_INTERVAL,
                 auto_reconnect: bool = True, read_limit: int = READ_LIMIT):
        super().__init__()
        self.plugin_id = plugin_id
        self.host = host
        self.port = port
        self.reconnect_interval = reconnect_interval
        self.auto_reconnect = auto_reconnect
        self.read_limit = read_limit
        self._reader: asyncio.StreamReader | None = None
        self._writer: asyncio.StreamWriter | None = None
        self._task: asyncio.Task | None = None
        self._running = False

    @property
    def connected(self) -> bool:
        return self._writer is not None and not self._writer.is_closing()

    async def connect(self) -> None:
        if self._task is not None:
            return
        self._running = True
        self._task = asyncio.create_task(self._run())

    async def close(self) -> None:
        self._running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            except Exception as e:
                logger.warning("Touch Portal link task had failed: %s", e)
            self._task = None
        await self._close_socket()

    async def _close_socket(self) -> None:
        writer, self._writer, self._reader = self._writer, None, None
        if writer is not None:
            try:
                writer.close()
                await writer.wait_closed()
            except (OSError, ConnectionError):
                pass

    async def _run(self) -> None:
        while self._running:
            try:
                self._reader, self._writer = await asyncio.open_connection(
                    self.host, self.port, limit=self.read_limit)
            except OSError as e:
                logger.warning("Touch Portal unreachable at %s:%d: %s", self.host, self.port, e)
                self.emit("error", e)
            else:
                logger.info("Connected to Touch Portal at %s:%d", self.host, self.port)
                self.emit("connected")
                self.send({"type": "pair", "id": self.plugin_id})
                try:
                    await self._read_loop()
                except (OSError, ConnectionError) as e:
                    self.emit("error", e)
                finally:
                    await self._close_socket()
                    if self._running:
                        self.emit("close", None)

            if not (self._running and self.auto_reconnect):
                break
            await asyncio.sleep(self.reconnect_interval)
        self._task = None

    async def _read_loop(self) -> None:
        while self._running and self._reader is not None:
            try:
                line = await self._reader.readline()
            except ValueError as e:
                # over the line limit; the reader has already dropped it
                logger.debug("Dropping oversized Touch Portal line: %s", e)
                continue
            if not line:
                break  # EOF: Touch Portal closed
            text = line.decode("utf-8", errors="replace").strip()
            if not text:
                continue
            try:
                message = json.loads(text)
            except json.JSONDecodeError:
                continue
            if isinstance(message, dict):
                self._dispatch(message)

    def _dispatch(self, message: dict) -> None:
        kind = message.get("type")
        if kind == "closePlugin":
            if message.get("pluginId") == self.plugin_id:
                logger.info("Touch Portal asked plugin to close")
                self._running = False
                self.emit("close", message)
        elif kind == "info":
            self.emit("info", message)
            if message.get("settings"):
                self.emit("settings", message["settings"])
        elif kind == "settings":
            self.emit("settings", message.get("values"))
        elif kind == "action":
            self.emit("action", message)
        elif kind == "connectorChange":
            self.emit("connectorChange", message)
        else:
            logger.debug("Ignoring Touch Portal message type %s", kind)

    # ── Outbound ──

    def send(self, data: dict) -> None:
        if not self.connected:
            return
        self._writer.write(json.dumps(data).encode() + b"\n")

    def update_state(self, state_id: str, value: str) -> None:
        self.send({"type": "stateUpdate", "id": state_id, "value": value})

    def trigger_event(self, event_id: str, value: str) -> None:
        self.send({"type": "triggerEvent", "id": event_id, "value": value})

    def connector_id(self, connector_id: str) -> str:
        return f"{CONNECTOR_PREFIX}_{self.plugin_id}_{connector_id}"

    def update_connector(self, connector_id: str, value: int) -> None:
        try:
            numeric = int(value)
        except (TypeError, ValueError):
            return
        self.send({"type": "connectorUpdate",
                   "connectorId": self.connector_id(connector_id),
                   "value": numeric})
