# src/extwork/rig/fragments.py
from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Union

from .state import CameraStatus, LevelStatus, MainTank, ProgressEntry, PumpStatus, SystemState, ValveState


@dataclass(frozen=True)
class PumpFragment:
    unit_id: int
    pump_status: PumpStatus


@dataclass(frozen=True)
class TankLevelFragment:
    unit_id: int
    tank_slot: int
    level: int
    status: LevelStatus


@dataclass(frozen=True)
class OverallStateFragment:
    unit_id: int
    message: str
    main_tank: Optional[MainTank] = None


@dataclass(frozen=True)
class CameraFragment:
    cam_id: int
    status: CameraStatus


@dataclass(frozen=True)
class ValveFragment:
    valve: ValveState


@dataclass(frozen=True)
class ProgressFragment:
    entry: ProgressEntry


@dataclass(frozen=True)
class ErrorFragment:
    message: str


@dataclass(frozen=True)
class OutputFragment:
    message: str


@dataclass(frozen=True)
class QueueFragment:
    status: str


@dataclass(frozen=True)
class SnapshotFragment:
    state: SystemState
    # client_id of the publisher, when it tagged the snapshot
    origin: Optional[str] = None


@dataclass(frozen=True)
class SyncRequestFragment:
    request: str


@dataclass(frozen=True)
class NoChange:
    reason: str


@dataclass(frozen=True)
class DecodeFailure:
    category: str
    payload: str
    reason: str
    topic: Optional[str] = None

    def describe(self) -> str:
        where = self.topic or self.category
        return f"decode failed on {where}: {self.reason} (payload={self.payload!r})"


Fragment = Union[
    PumpFragment,
    TankLevelFragment,
    OverallStateFragment,
    CameraFragment,
    ValveFragment,
    ProgressFragment,
    ErrorFragment,
    OutputFragment,
    QueueFragment,
    SnapshotFragment,
    SyncRequestFragment,
    NoChange,
]

DecodeResult = Union[Fragment, DecodeFailure]
