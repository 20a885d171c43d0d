"""Tests for TouchPortalLink against a local TCP server."""

import asyncio
import json

import pytest
import pytest_asyncio

from pearbridge.lib.surface_link import TouchPortalLink

PLUGIN_ID = "com.hellblazer90.pear.ytm"


class FakeTouchPortal:
    """Accepts one plugin connection and records what it sends."""

    def __init__(self):
        self.received: list[dict] = []
        self.writer: asyncio.StreamWriter | None = None
        self.paired = asyncio.Event()
        self.server: asyncio.AbstractServer | None = None

    async def start(self) -> int:
        self.server = await asyncio.start_server(self._handle, "127.0.0.1", 0)
        return self.server.sockets[0].getsockname()[1]

    async def _handle(self, reader, writer):
        self.writer = writer
        while True:
            line = await reader.readline()
            if not line:
                break
            message = json.loads(line)
            self.received.append(message)
            if message.get("type") == "pair":
                self.paired.set()

    async def send_line(self, raw: str) -> None:
        self.writer.write(raw.encode() + b"\n")
        await self.writer.drain()

    async def send(self, message: dict) -> None:
        await self.send_line(json.dumps(message))

    async def stop(self) -> None:
        if self.writer is not None:
            self.writer.close()
        self.server.close()
        await self.server.wait_closed()


@pytest_asyncio.fixture
async def portal():
    tp = FakeTouchPortal()
    yield tp
    await tp.stop()


async def wait_for(predicate, timeout: float = 1.0) -> None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.01)


class TestTouchPortalLink:

    @pytest.mark.asyncio
    async def test_pairs_on_connect(self, portal):
        port = await portal.start()
        link = TouchPortalLink(PLUGIN_ID, port=port, auto_reconnect=False)
        connected = []
        link.on("connected", lambda: connected.append(True))
        await link.connect()
        try:
            await asyncio.wait_for(portal.paired.wait(), 1.0)
            assert portal.received[0] == {"type": "pair", "id": PLUGIN_ID}
            assert connected == [True]
        finally:
            await link.close()

    @pytest.mark.asyncio
    async def test_dispatches_inbound_records(self, portal):
        port = await portal.start()
        link = TouchPortalLink(PLUGIN_ID, port=port, auto_reconnect=False)
        seen = []
        link.on("info", lambda m: seen.append(("info", m.get("tpVersionString"))))
        link.on("settings", lambda v: seen.append(("settings", v)))
        link.on("action", lambda m: seen.append(("action", m["actionId"])))
        link.on("connectorChange", lambda m: seen.append(("connector", m["value"])))
        await link.connect()
        try:
            await asyncio.wait_for(portal.paired.wait(), 1.0)
            await portal.send({"type": "info", "tpVersionString": "4.3",
                               "settings": [{"Port": "9863"}]})
            await portal.send_line("{not json")
            await portal.send({"type": "settings", "values": [{"Hostname": "studio"}]})
            await portal.send({"type": "action", "actionId": "pear.next", "data": []})
            await portal.send({"type": "connectorChange", "connectorId": "x", "value": 12})
            await portal.send({"type": "somethingNew"})
            await wait_for(lambda: len(seen) == 5)
        finally:
            await link.close()

        assert seen == [
            ("info", "4.3"),
            ("settings", [{"Port": "9863"}]),
            ("settings", [{"Hostname": "studio"}]),
            ("action", "pear.next"),
            ("connector", 12),
        ]

    @pytest.mark.asyncio
    async def test_outbound_records(self, portal):
        port = await portal.start()
        link = TouchPortalLink(PLUGIN_ID, port=port, auto_reconnect=False)
        await link.connect()
        try:
            await asyncio.wait_for(portal.paired.wait(), 1.0)
            link.update_state("pear.title", "Song")
            link.trigger_event("pear.event.trackChanged", "Song")
            link.update_connector("pear.connector.volume", 42.0)
            link.update_connector("pear.connector.volume", "junk")
            await wait_for(lambda: len(portal.received) == 4)
        finally:
            await link.close()

        assert portal.received[1:] == [
            {"type": "stateUpdate", "id": "pear.title", "value": "Song"},
            {"type": "triggerEvent", "id": "pear.event.trackChanged", "value": "Song"},
            {"type": "connectorUpdate",
             "connectorId": f"pc_{PLUGIN_ID}_pear.connector.volume", "value": 42},
        ]

    @pytest.mark.asyncio
    async def test_close_plugin_stops_link(self, portal):
        port = await portal.start()
        link = TouchPortalLink(PLUGIN_ID, port=port, reconnect_interval=0.01)
        closes = []
        link.on("close", closes.append)
        await link.connect()
        try:
            await asyncio.wait_for(portal.paired.wait(), 1.0)
            await portal.send({"type": "closePlugin", "pluginId": "someone.else"})
            await portal.send({"type": "closePlugin", "pluginId": PLUGIN_ID})
            await wait_for(lambda: closes)
            await asyncio.sleep(0.05)
        finally:
            await link.close()

        assert closes == [{"type": "closePlugin", "pluginId": PLUGIN_ID}]
        assert len([m for m in portal.received if m["type"] == "pair"]) == 1

    @pytest.mark.asyncio
    async def test_long_line_does_not_end_link(self, portal):
        port = await portal.start()
        link = TouchPortalLink(PLUGIN_ID, port=port, auto_reconnect=False)
        actions = []
        link.on("action", lambda m: actions.append(m["actionId"]))
        await link.connect()
        try:
            await asyncio.wait_for(portal.paired.wait(), 1.0)
            await portal.send_line("x" * 70000)
            await portal.send({"type": "action", "actionId": "pear.next", "data": []})
            await wait_for(lambda: actions)
        finally:
            await link.close()

        assert actions == ["pear.next"]

    @pytest.mark.asyncio
    async def test_line_over_read_limit_is_dropped(self, portal):
        port = await portal.start()
        link = TouchPortalLink(PLUGIN_ID, port=port, auto_reconnect=False, read_limit=1024)
        actions = []
        link.on("action", lambda m: actions.append(m["actionId"]))
        await link.connect()
        try:
            await asyncio.wait_for(portal.paired.wait(), 1.0)
            await portal.send_line('{"type": "action", "actionId": "' + "y" * 5000 + '"}')
            await portal.send({"type": "action", "actionId": "pear.next", "data": []})
            await wait_for(lambda: actions)
            assert link.connected
        finally:
            await link.close()

        assert actions == ["pear.next"]

    @pytest.mark.asyncio
    async def test_close_after_failed_task(self):
        link = TouchPortalLink(PLUGIN_ID)

        async def broken():
            raise ValueError("reader blew up")

        link._task = asyncio.ensure_future(broken())
        await asyncio.sleep(0)
        await link.close()
        assert link._task is None

    @pytest.mark.asyncio
    async def test_unreachable_emits_error(self):
        link = TouchPortalLink(PLUGIN_ID, port=1, auto_reconnect=False)
        errors = []
        link.on("error", errors.append)
        await link.connect()
        await wait_for(lambda: errors)
        await link.close()
        assert isinstance(errors[0], OSError)

    def test_unknown_channel_rejected(self):
        link = TouchPortalLink(PLUGIN_ID)
        with pytest.raises(ValueError):
            link.on("bogus", lambda: None)

    def test_send_without_socket_is_noop(self):
        link = TouchPortalLink(PLUGIN_ID)
        link.update_state("pear.title", "x")
        assert not link.connected
