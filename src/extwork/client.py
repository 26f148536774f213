# src/extwork/client.py
from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, Optional, Set, Union

from .errors import TransportError
from .mqtt.config import BrokerConfig
from .mqtt.connection import ClientFactory, ConnectionManager
from .persistence import StateCache
from .rig import topics
from .rig.decode.camera import CAMERA_OFF, CAMERA_ON
from .rig.decode.decoder import MessageDecoder
from .rig.decode.pump import PUMP_OFF, PUMP_ON, PUMP_RESET
from .rig.decode.valve import STATUS_REQUEST, is_valve_code, parse_valve_code
from .rig.fragments import (
    CameraFragment,
    ProgressFragment,
    PumpFragment,
    SnapshotFragment,
    SyncRequestFragment,
    ValveFragment,
)
from .rig.reconciler import ReconcilerConfig, StateReconciler
from .rig.state import DEFAULT_CAMERA_COUNT, DEFAULT_UNIT_COUNT, ProgressEntry, SystemState, state_to_dict, utc_now

logger = logging.getLogger(__name__)


@dataclass
class ClientConfig:
    unit_count: int = DEFAULT_UNIT_COUNT
    camera_count: int = DEFAULT_CAMERA_COUNT
    include_sync: bool = False

    # valve STATUS request after each connect
    status_request_delay: float = 1.0

    # persistence endpoint, e.g. "http://localhost:3000/api"; None disables it
    cache_url: Optional[str] = None
    cache_timeout: float = 5.0
    cache_debounce: float = 0.5

    reconciler: ReconcilerConfig = field(default_factory=ReconcilerConfig)


class ExtworkClient:
    """
    Composition root: topics -> connection -> decoder -> reconciler (-> cache).

    Lifecycle: create -> start() -> commands ... -> stop().
    """

    def __init__(
        self,
        broker: BrokerConfig,
        config: ClientConfig | None = None,
        *,
        cache: StateCache | None = None,
        client_factory: ClientFactory | None = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.cfg = config or ClientConfig()
        self._clock = clock

        tanks_per_unit = self.cfg.reconciler.tanks_per_unit
        self.reconciler = StateReconciler(
            unit_count=self.cfg.unit_count,
            camera_count=self.cfg.camera_count,
            config=self.cfg.reconciler,
            clock=clock,
        )
        self.decoder = MessageDecoder(self.cfg.unit_count, tanks_per_unit, self.cfg.camera_count, clock=clock)
        self.connection = ConnectionManager(
            broker,
            self._on_message,
            on_error=self._on_transport_error,
            on_connect=self._on_connect,
            client_factory=client_factory,
        )

        if cache is None and self.cfg.cache_url:
            cache = StateCache(
                self.cfg.cache_url,
                timeout=self.cfg.cache_timeout,
                unit_count=self.cfg.unit_count,
                tanks_per_unit=tanks_per_unit,
                camera_count=self.cfg.camera_count,
            )
        self.cache = cache

        self._status_task: Optional[asyncio.Task] = None
        self._save_task: Optional[asyncio.Task] = None
        self._pending_save: Optional[SystemState] = None
        self._remove_mirror: Optional[Callable[[], None]] = None
        self._tasks: Set[asyncio.Task] = set()

    @property
    def state(self) -> SystemState:
        return self.reconciler.state

    async def __aenter__(self) -> "ExtworkClient":
        await self.start()
        return self

    async def __aexit__(self, *exc) -> None:
        await self.stop()

    # ======================================================
    # Lifecycle
    # ======================================================
    async def start(self) -> bool:
        if self.cache is not None:
            cached = await self.cache.load()
            if cached is not None:
                self.reconciler.replace(cached)
            self._remove_mirror = self.reconciler.add_listener(self._mirror)

        for t in topics.topics_for(
            self.cfg.unit_count,
            include_sync=self.cfg.include_sync,
            camera_count=self.cfg.camera_count,
        ):
            await self.connection.subscribe(t)
        return await self.connection.connect()

    async def stop(self) -> None:
        if self._remove_mirror is not None:
            self._remove_mirror()
            self._remove_mirror = None

        pending = [t for t in (self._status_task, self._save_task, *self._tasks) if t is not None]
        for t in pending:
            t.cancel()
        await asyncio.gather(*pending, return_exceptions=True)
        self._status_task = None
        self._save_task = None
        self._tasks.clear()

        await self.connection.dispose()
        if self.cache is not None:
            self.cache.close()

    # ======================================================
    # Commands: optimistic apply, then publish
    # ======================================================
    async def set_pump(self, unit: int, on: bool) -> bool:
        self.reconciler.apply(PumpFragment(unit_id=unit, pump_status="On" if on else "Off"))
        return await self.connection.publish(topics.pump_command_topic(unit), PUMP_ON if on else PUMP_OFF)

    async def toggle_pump(self, unit: int) -> bool:
        tank = next((t for t in self.state.tanks if t.inverter == unit), None)
        if tank is None:
            logger.warning("[RIG] toggle_pump: no tank for unit %d", unit)
            return False
        return await self.set_pump(unit, tank.pump_status != "On")

    async def reset_pump(self, unit: int) -> bool:
        # state follows from the rig's next pump state message
        return await self.connection.publish(topics.pump_command_topic(unit), PUMP_RESET)

    async def set_camera(self, cam: int, on: bool) -> bool:
        self.reconciler.apply(CameraFragment(cam_id=cam, status="On" if on else "Off"))
        return await self.connection.publish(topics.cam_command_topic(cam), CAMERA_ON if on else CAMERA_OFF)

    async def toggle_camera(self, cam: int) -> bool:
        if not 1 <= cam <= len(self.state.cameras):
            logger.warning("[RIG] toggle_camera: no camera %d", cam)
            return False
        return await self.set_camera(cam, self.state.cameras[cam - 1] != "On")

    async def set_valve(self, code: str) -> bool:
        if not is_valve_code(code):
            raise ValueError(f"valve code must be 4 chars of 0/1, got {code!r}")
        self.reconciler.apply(ValveFragment(valve=parse_valve_code(code)))
        return await self.connection.publish(topics.VALVE_INPUT_TOPIC, code)

    async def request_valve_status(self) -> bool:
        return await self.connection.publish(topics.VALVE_INPUT_TOPIC, STATUS_REQUEST)

    async def send_extraction_command(self, command: Union[str, Dict[str, Any]]) -> bool:
        text = command if isinstance(command, str) else json.dumps(command, ensure_ascii=False)
        self.reconciler.apply(ProgressFragment(entry=ProgressEntry(
            timestamp=self._clock(),
            raw_message=f"command sent: {text}",
        )))
        return await self.connection.publish(topics.EXTRACTION_INPUT_TOPIC, text)

    async def publish_snapshot(self) -> bool:
        # origin lets _on_message skip the broker echo of this snapshot
        snapshot = dict(state_to_dict(self.state), origin=self.connection.cfg.client_id)
        payload = json.dumps(snapshot, ensure_ascii=False)
        return await self.connection.publish(topics.SYNC_STATE_TOPIC, payload)

    # ======================================================
    # Connection callbacks
    # ======================================================
    def _on_message(self, topic: str, payload: str) -> None:
        result = self.decoder.decode(topic, payload)
        if result is None:
            return
        if isinstance(result, SyncRequestFragment):
            logger.info("[RIG] sync request from a peer: %s", result.request)
            self._spawn(self.publish_snapshot())
            return
        if isinstance(result, SnapshotFragment) and result.origin == self.connection.cfg.client_id:
            logger.debug("[RIG] ignoring our own snapshot echo")
            return
        self.reconciler.apply(result)

    def _on_connect(self) -> None:
        if self._status_task is not None:
            self._status_task.cancel()
        self._status_task = asyncio.create_task(self._request_status_later())

    def _on_transport_error(self, err: TransportError) -> None:
        logger.warning("[MQTT] transport error: %s", err)

    async def _request_status_later(self) -> None:
        await asyncio.sleep(self.cfg.status_request_delay)
        await self.request_valve_status()

    # ======================================================
    # Cache mirror: latest state wins, one POST in flight
    # ======================================================
    def _mirror(self, state: SystemState) -> None:
        self._pending_save = state
        if self._save_task is None or self._save_task.done():
            self._save_task = asyncio.create_task(self._save_loop())

    async def _save_loop(self) -> None:
        while self._pending_save is not None:
            await asyncio.sleep(self.cfg.cache_debounce)
            state, self._pending_save = self._pending_save, None
            await self.cache.save(state)

    def _spawn(self, coro) -> None:
        task = asyncio.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
