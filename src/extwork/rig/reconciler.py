# src/extwork/rig/reconciler.py
from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from datetime import datetime
from typing import Callable, List, Literal, Optional, Tuple

from .fragments import (
    CameraFragment,
    DecodeFailure,
    DecodeResult,
    ErrorFragment,
    NoChange,
    OutputFragment,
    OverallStateFragment,
    ProgressFragment,
    PumpFragment,
    QueueFragment,
    SnapshotFragment,
    SyncRequestFragment,
    TankLevelFragment,
    ValveFragment,
)
from .state import DEFAULT_CAMERA_COUNT, DEFAULT_UNIT_COUNT, SystemState, Tank, default_state, utc_now

logger = logging.getLogger(__name__)

TankLayout = Literal["unit", "slot"]
Listener = Callable[[SystemState], None]


@dataclass
class ReconcilerConfig:
    # log bounds (most recent first)
    progress_log_limit: int = 5
    error_log_limit: int = 5

    # "unit": one tank per inverter, tank id == unit id
    # "slot": two tanks per inverter, index (unit-1)*2 + (slot-1)
    tank_layout: TankLayout = "unit"

    @property
    def tanks_per_unit(self) -> int:
        return 2 if self.tank_layout == "slot" else 1


class StateReconciler:
    """
    Holds the canonical SystemState.

    - apply() is the only write path (broker fragments and optimistic local updates alike)
    - every transition builds a new SystemState; only the touched sub-tree is replaced
    - listeners run synchronously after each transition, in registration order
    - NoChange and fragments for unknown units cause no transition and no notification
    """

    def __init__(
        self,
        initial: SystemState | None = None,
        *,
        unit_count: int = DEFAULT_UNIT_COUNT,
        camera_count: int = DEFAULT_CAMERA_COUNT,
        config: ReconcilerConfig | None = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.cfg = config or ReconcilerConfig()
        self.unit_count = unit_count
        self._clock = clock
        self._state = initial or default_state(unit_count, self.cfg.tanks_per_unit, camera_count)
        self._listeners: List[Listener] = []

    # ======================================================
    # READ
    # ======================================================
    @property
    def state(self) -> SystemState:
        return self._state

    def get_state(self) -> SystemState:
        return self._state

    # ======================================================
    # LISTENERS
    # ======================================================
    def add_listener(self, fn: Listener) -> Callable[[], None]:
        self._listeners.append(fn)

        def remove() -> None:
            if fn in self._listeners:
                self._listeners.remove(fn)

        return remove

    def _notify(self) -> None:
        for fn in list(self._listeners):
            try:
                fn(self._state)
            except Exception:
                logger.exception("[RIG] state listener failed")

    # ======================================================
    # MAIN ENTRY
    # ======================================================
    def apply(self, fragment: DecodeResult) -> SystemState:
        new = self._reduce(self._state, fragment)
        if new is None:
            return self._state

        self._state = replace(new, last_updated=self._clock())
        self._notify()
        return self._state

    def replace(self, state: SystemState) -> SystemState:
        """Adopt a whole snapshot (cold-start cache or a peer dashboard)."""
        self._state = state
        self._notify()
        return self._state

    # ======================================================
    # Reducers: return None for "no transition"
    # ======================================================
    def _reduce(self, s: SystemState, f: DecodeResult) -> Optional[SystemState]:
        if isinstance(f, PumpFragment):
            return self._patch_tanks(s, self._unit_indexes(s, f.unit_id), pump_status=f.pump_status)
        if isinstance(f, TankLevelFragment):
            idx = self._slot_index(s, f.unit_id, f.tank_slot)
            if idx is None:
                return self._drop(f)
            return self._patch_tanks(s, (idx,), level=f.level, status=f.status)
        if isinstance(f, OverallStateFragment):
            return self._apply_overall_state(s, f)
        if isinstance(f, CameraFragment):
            return self._apply_camera(s, f)
        if isinstance(f, ValveFragment):
            return replace(s, valve=f.valve)
        if isinstance(f, ProgressFragment):
            return replace(s, progress_log=self._push(s.progress_log, f.entry, self.cfg.progress_log_limit))
        if isinstance(f, ErrorFragment):
            return replace(s, error_log=self._push(s.error_log, f.message, self.cfg.error_log_limit))
        if isinstance(f, DecodeFailure):
            return replace(s, error_log=self._push(s.error_log, f.describe(), self.cfg.error_log_limit))
        if isinstance(f, OutputFragment):
            return replace(s, extraction_output=f.message)
        if isinstance(f, QueueFragment):
            return replace(s, queue_status=f.status)
        if isinstance(f, SnapshotFragment):
            return self._adopt_snapshot(s, f.state)
        if isinstance(f, (NoChange, SyncRequestFragment)):
            return None
        raise TypeError(f"unhandled fragment {f!r}")

    @staticmethod
    def _push(log: Tuple, item, limit: int) -> Tuple:
        return ((item,) + log)[:max(limit, 0)]

    @staticmethod
    def _drop(f) -> None:
        logger.debug("[RIG] no tank for %r, dropped", f)
        return None

    def _unit_indexes(self, s: SystemState, unit_id: int) -> Tuple[int, ...]:
        # pump state applies to every tank owned by the inverter
        if self.cfg.tank_layout == "slot":
            return tuple(i for i, t in enumerate(s.tanks) if t.inverter == unit_id)
        if 1 <= unit_id <= len(s.tanks):
            return (unit_id - 1,)
        return ()

    def _slot_index(self, s: SystemState, unit_id: int, slot: int) -> Optional[int]:
        if unit_id < 1:
            return None
        if self.cfg.tank_layout == "slot":
            if slot not in (1, 2):
                return None
            idx = (unit_id - 1) * 2 + (slot - 1)
        else:
            idx = unit_id - 1
        return idx if idx < len(s.tanks) else None

    def _patch_tanks(self, s: SystemState, indexes: Tuple[int, ...], **changes) -> Optional[SystemState]:
        if not indexes:
            logger.debug("[RIG] no tank for %r, dropped", changes)
            return None

        tanks: List[Tank] = list(s.tanks)
        for i in indexes:
            tanks[i] = replace(tanks[i], **changes)
        return replace(s, tanks=tuple(tanks))

    def _apply_overall_state(self, s: SystemState, f: OverallStateFragment) -> Optional[SystemState]:
        new = self._patch_tanks(s, self._unit_indexes(s, f.unit_id), state_message=f.message)
        if f.main_tank is None:
            return new
        return replace(new or s, main_tank=f.main_tank)

    def _apply_camera(self, s: SystemState, f: CameraFragment) -> Optional[SystemState]:
        if not 1 <= f.cam_id <= len(s.cameras):
            return self._drop(f)
        cameras = list(s.cameras)
        cameras[f.cam_id - 1] = f.status
        return replace(s, cameras=tuple(cameras))

    def _adopt_snapshot(self, s: SystemState, snap: SystemState) -> SystemState:
        # a peer snapshot built for another layout must not break tank ids
        if len(snap.tanks) != len(s.tanks):
            logger.warning(
                "[RIG] snapshot has %d tanks, expected %d; keeping local tanks",
                len(snap.tanks), len(s.tanks),
            )
            snap = replace(snap, tanks=s.tanks)
        if len(snap.cameras) != len(s.cameras):
            snap = replace(snap, cameras=s.cameras)
        return replace(
            snap,
            progress_log=snap.progress_log[:self.cfg.progress_log_limit],
            error_log=snap.error_log[:self.cfg.error_log_limit],
        )
