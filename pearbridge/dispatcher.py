"""
ActionDispatcher: Touch Portal actions and connector changes → Pear.

Each action id is debounced on its own (250 ms).  Handlers never raise into
the link: failures are logged with the action id and handed to the
supervisor, which decides what the status shows and whether to reconnect.
"""

import logging

from . import actions as act
from .const import CONNECTORS, REPEAT_MODES
from .context import BridgeContext
from .lib.media_client import MediaSourceClient
from .models import ConnectionStatus, parse_optional_number
from .supervisor import ConnectionSupervisor
from .volume import VolumeReconciler

log = logging.getLogger("pear-bridge.actions")


def repeat_iterations(current: str | None, target: str) -> int:
    """Number of repeat switches to go from *current* to *target* (NONE→ALL→ONE)."""
    if current not in REPEAT_MODES or target not in REPEAT_MODES:
        return 1
    return (REPEAT_MODES.index(target) - REPEAT_MODES.index(current)) % len(REPEAT_MODES)


def connector_matches(received: str, connector_id: str, full_id: str) -> bool:
    if not received:
        return False
    return received in (connector_id, full_id) or received.endswith(f"_{connector_id}")


class ActionDispatcher:

    def __init__(self, ctx: BridgeContext, client: MediaSourceClient,
                 volume: VolumeReconciler, supervisor: ConnectionSupervisor,
                 full_connector_id=None):
        self.ctx = ctx
        self.client = client
        self.volume = volume
        self.supervisor = supervisor
        # Touch Portal prefixes connector ids (pc_<plugin>_<id>)
        self._full_connector_id = full_connector_id or (lambda cid: cid)

        self._handlers = {
            act.Transport: self._transport,
            act.Rate: self._rate,
            act.Seek: self._seek,
            act.SetShuffle: self._shuffle,
            act.SwitchRepeat: self._switch_repeat,
            act.SetRepeat: self._set_repeat,
            act.SetVolume: self._set_volume,
            act.StepVolume: self._step_volume,
            act.SetMute: self._mute,
            act.QueuePlayIndex: self._queue_play_index,
            act.QueueAddVideo: self._queue_add_video,
            act.Reauthenticate: self._reauthenticate,
            act.Refresh: self._refresh,
        }

    def should_debounce(self, action_id: str | None) -> bool:
        if not action_id:
            return False
        now = self.ctx.now()
        times = self.ctx.polls.action_times
        last = times.get(action_id)
        if last is not None and now - last < self.ctx.tuning.action_debounce:
            return True
        times[action_id] = now
        return False

    async def handle_action(self, payload: dict) -> None:
        action_id = payload.get("actionId") or payload.get("id")
        if self.should_debounce(action_id):
            log.debug("Debounced action %s", action_id)
            return

        try:
            action = act.decode_action(action_id, act.extract_action_data(payload))
            if action is None:
                log.debug("Ignoring unknown action %s", action_id)
                return
            log.info("Action %s: %s", action_id, action)
            await self._handlers[type(action)](action)
        except Exception as e:
            self.supervisor.report_action_failure(e, action_id)

    def handle_connector(self, payload: dict) -> None:
        connector_id = CONNECTORS["volume"]
        received = str(payload.get("connectorId") or payload.get("shortId")
                       or payload.get("id") or "")
        if not connector_matches(received, connector_id, self._full_connector_id(connector_id)):
            return
        value = parse_optional_number(payload.get("value"))
        if value is None:
            return
        self.volume.request(value)

    # ── Handlers ──

    async def _transport(self, action: act.Transport):
        calls = {
            "play": self.client.play,
            "pause": self.client.pause,
            "toggle": self.client.toggle_play,
            "next": self.client.next,
            "previous": self.client.previous,
        }
        await calls[action.command]()

    async def _rate(self, action: act.Rate):
        if action.like:
            await self.client.like()
        else:
            await self.client.dislike()

    async def _seek(self, action: act.Seek):
        if action.mode == "to":
            await self.client.seek_to(action.seconds)
        elif action.mode == "back":
            await self.client.go_back(action.seconds)
        else:
            await self.client.go_forward(action.seconds)

    async def _shuffle(self, action: act.SetShuffle):
        if action.target is None:
            await self.client.shuffle()
            return
        data = await self.client.get_shuffle_state()
        current = data.get("state") if isinstance(data, dict) else None
        if isinstance(current, bool) and current == action.target:
            return
        await self.client.shuffle()

    async def _switch_repeat(self, action: act.SwitchRepeat):
        await self.client.switch_repeat(action.iterations)

    async def _set_repeat(self, action: act.SetRepeat):
        data = await self.client.get_repeat_mode()
        current = data.get("mode") if isinstance(data, dict) else None
        iterations = repeat_iterations(current, action.mode)
        if iterations:
            await self.client.switch_repeat(iterations)

    async def _set_volume(self, action: act.SetVolume):
        self.volume.set_absolute(action.percent)

    async def _step_volume(self, action: act.StepVolume):
        await self.volume.step(action.delta)

    async def _mute(self, action: act.SetMute):
        if action.target is None:
            await self.volume.toggle_mute()
        else:
            await self.volume.set_mute(action.target)

    async def _queue_play_index(self, action: act.QueuePlayIndex):
        await self.client.set_queue_index(action.index)

    async def _queue_add_video(self, action: act.QueueAddVideo):
        await self.client.add_to_queue(action.video_id, action.insert_position)

    async def _reauthenticate(self, action: act.Reauthenticate):
        self.client.invalidate_token()
        await self.client.authenticate()
        self.supervisor.set_status(ConnectionStatus.connected())

    async def _refresh(self, action: act.Refresh):
        await self.supervisor.poll_song()
        self.supervisor.request_extras()
