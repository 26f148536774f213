# src/extwork/rig/topics.py
"""MQTT topic registry for the extraction rig.

Topic layout (units N = 1..unit_count, tank slot M = 1..2):

- `extwork/inverter{N}/command`        pump command ("0" | "1")
- `extwork/inverter{N}/state`          pump state ("0" | "1")
- `extwork/inverter{N}/tank{M}_level`  "<int>%" or free text
- `extwork/inverter{N}/overallstate`   free text
- `extwork/cam{C}/command|state`       camera command / state ("0" | "1"), C = 1..camera_count
- `extwork/valve/input|state`          4-char code, "STATUS" or valveA=... text
- `extwork/extraction/...`             input, output, progress, error, queue/status
- `tank-system/...`                    multi-client sync (state, valve-state, notifications, request)

Topic construction and recognition live here so that subscription and
dispatch always agree on naming.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Dict, Tuple, Union

from .state import DEFAULT_CAMERA_COUNT

PUMP_COMMAND_TOPIC = "extwork/inverter{unit}/command"
PUMP_STATE_TOPIC = "extwork/inverter{unit}/state"
TANK_LEVEL_TOPIC = "extwork/inverter{unit}/tank{slot}_level"
OVERALL_STATE_TOPIC = "extwork/inverter{unit}/overallstate"

CAM_COMMAND_TOPIC = "extwork/cam{cam}/command"
CAM_STATE_TOPIC = "extwork/cam{cam}/state"

VALVE_INPUT_TOPIC = "extwork/valve/input"
VALVE_STATE_TOPIC = "extwork/valve/state"

EXTRACTION_INPUT_TOPIC = "extwork/extraction/input"
EXTRACTION_OUTPUT_TOPIC = "extwork/extraction/output"
PROGRESS_TOPIC = "extwork/extraction/progress"
ERROR_TOPIC = "extwork/extraction/error"
QUEUE_STATUS_TOPIC = "extwork/extraction/queue/status"

SYNC_STATE_TOPIC = "tank-system/state"
SYNC_VALVE_STATE_TOPIC = "tank-system/valve-state"
SYNC_NOTIFICATIONS_TOPIC = "tank-system/notifications"
SYNC_REQUEST_TOPIC = "tank-system/request"

TANK_SLOTS = (1, 2)

GLOBAL_TOPICS = (
    VALVE_INPUT_TOPIC,
    VALVE_STATE_TOPIC,
    EXTRACTION_INPUT_TOPIC,
    EXTRACTION_OUTPUT_TOPIC,
    PROGRESS_TOPIC,
    ERROR_TOPIC,
    QUEUE_STATUS_TOPIC,
)

SYNC_TOPICS = (
    SYNC_STATE_TOPIC,
    SYNC_VALVE_STATE_TOPIC,
    SYNC_NOTIFICATIONS_TOPIC,
    SYNC_REQUEST_TOPIC,
)


def pump_command_topic(unit: int) -> str:
    return PUMP_COMMAND_TOPIC.format(unit=unit)


def pump_state_topic(unit: int) -> str:
    return PUMP_STATE_TOPIC.format(unit=unit)


def tank_level_topic(unit: int, slot: int) -> str:
    return TANK_LEVEL_TOPIC.format(unit=unit, slot=slot)


def overall_state_topic(unit: int) -> str:
    return OVERALL_STATE_TOPIC.format(unit=unit)


def cam_command_topic(cam: int) -> str:
    return CAM_COMMAND_TOPIC.format(cam=cam)


def cam_state_topic(cam: int) -> str:
    return CAM_STATE_TOPIC.format(cam=cam)


def topics_for(
    unit_count: int,
    include_sync: bool = False,
    camera_count: int = DEFAULT_CAMERA_COUNT,
) -> Tuple[str, ...]:
    """All topics a dashboard subscribes to, in a stable order without duplicates."""
    if unit_count < 1:
        raise ValueError(f"unit_count must be >= 1, got {unit_count}")

    topics: Dict[str, None] = {}
    for n in range(1, unit_count + 1):
        topics[pump_command_topic(n)] = None
        topics[pump_state_topic(n)] = None
        for m in TANK_SLOTS:
            topics[tank_level_topic(n, m)] = None
        topics[overall_state_topic(n)] = None
    for c in range(1, camera_count + 1):
        topics[cam_command_topic(c)] = None
        topics[cam_state_topic(c)] = None

    for t in GLOBAL_TOPICS:
        topics[t] = None
    if include_sync:
        for t in SYNC_TOPICS:
            topics[t] = None
    return tuple(topics)


# ======================================================
# Categories
# ======================================================
@dataclass(frozen=True)
class PumpCommand:
    unit_id: int


@dataclass(frozen=True)
class PumpState:
    unit_id: int


@dataclass(frozen=True)
class TankLevel:
    unit_id: int
    tank_slot: int


@dataclass(frozen=True)
class OverallState:
    unit_id: int


@dataclass(frozen=True)
class CamCommand:
    cam_id: int


@dataclass(frozen=True)
class CamState:
    cam_id: int


@dataclass(frozen=True)
class ValveInput:
    pass


@dataclass(frozen=True)
class ValveState:
    pass


@dataclass(frozen=True)
class ExtractionInput:
    pass


@dataclass(frozen=True)
class ExtractionOutput:
    pass


@dataclass(frozen=True)
class Progress:
    pass


@dataclass(frozen=True)
class Error:
    pass


@dataclass(frozen=True)
class QueueStatus:
    pass


@dataclass(frozen=True)
class SyncState:
    pass


@dataclass(frozen=True)
class SyncValveState:
    pass


@dataclass(frozen=True)
class SyncNotification:
    pass


@dataclass(frozen=True)
class SyncRequest:
    pass


@dataclass(frozen=True)
class Unrecognized:
    topic: str


Category = Union[
    PumpCommand, PumpState, TankLevel, OverallState,
    CamCommand, CamState,
    ValveInput, ValveState,
    ExtractionInput, ExtractionOutput, Progress, Error, QueueStatus,
    SyncState, SyncValveState, SyncNotification, SyncRequest,
    Unrecognized,
]

_PUMP_COMMAND_RE = re.compile(r"extwork/inverter(\d+)/command")
_PUMP_STATE_RE = re.compile(r"extwork/inverter(\d+)/state")
_TANK_LEVEL_RE = re.compile(r"extwork/inverter(\d+)/tank(\d+)_level")
_OVERALL_STATE_RE = re.compile(r"extwork/inverter(\d+)/overallstate")
_CAM_COMMAND_RE = re.compile(r"extwork/cam(\d+)/command")
_CAM_STATE_RE = re.compile(r"extwork/cam(\d+)/state")

_FIXED: Dict[str, Category] = {
    VALVE_INPUT_TOPIC: ValveInput(),
    VALVE_STATE_TOPIC: ValveState(),
    EXTRACTION_INPUT_TOPIC: ExtractionInput(),
    EXTRACTION_OUTPUT_TOPIC: ExtractionOutput(),
    PROGRESS_TOPIC: Progress(),
    ERROR_TOPIC: Error(),
    QUEUE_STATUS_TOPIC: QueueStatus(),
    SYNC_STATE_TOPIC: SyncState(),
    SYNC_VALVE_STATE_TOPIC: SyncValveState(),
    SYNC_NOTIFICATIONS_TOPIC: SyncNotification(),
    SYNC_REQUEST_TOPIC: SyncRequest(),
}


def classify(topic: str) -> Category:
    fixed = _FIXED.get(topic)
    if fixed is not None:
        return fixed

    # fullmatch: "extwork/inverter3/state/extra" is not a pump state topic
    m = _PUMP_STATE_RE.fullmatch(topic)
    if m:
        return PumpState(unit_id=int(m.group(1)))
    m = _TANK_LEVEL_RE.fullmatch(topic)
    if m:
        return TankLevel(unit_id=int(m.group(1)), tank_slot=int(m.group(2)))
    m = _OVERALL_STATE_RE.fullmatch(topic)
    if m:
        return OverallState(unit_id=int(m.group(1)))
    m = _PUMP_COMMAND_RE.fullmatch(topic)
    if m:
        return PumpCommand(unit_id=int(m.group(1)))
    m = _CAM_STATE_RE.fullmatch(topic)
    if m:
        return CamState(cam_id=int(m.group(1)))
    m = _CAM_COMMAND_RE.fullmatch(topic)
    if m:
        return CamCommand(cam_id=int(m.group(1)))
    return Unrecognized(topic=topic)
