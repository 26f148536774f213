# src/extwork/rig/state.py
from __future__ import annotations

import math
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Any, Dict, Literal, Optional, Tuple


LevelStatus = Literal["Empty", "Filling", "Full"]
PumpStatus = Literal["On", "Off"]
CameraStatus = Literal["On", "Off"]
ValvePath = Literal["extract-circulate", "full-circulate"]
ValveGate = Literal["open", "closed"]

DEFAULT_UNIT_COUNT = 6
DEFAULT_CAMERA_COUNT = 5
DEFAULT_VALVE_CODE = "1000"

EXTRACT_CIRCULATE: ValvePath = "extract-circulate"
FULL_CIRCULATE: ValvePath = "full-circulate"
GATE_OPEN: ValveGate = "open"
GATE_CLOSED: ValveGate = "closed"

_LEVEL_STATUSES = ("Empty", "Filling", "Full")
_PUMP_STATUSES = ("On", "Off")


# default clamp function
def clamp(x: float, lo: float, hi: float) -> float:
    return lo if x < lo else hi if x > hi else x


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def is_number(value: Any) -> bool:
    """Finite int or float. bool, NaN and infinities are not numbers here."""
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return False
    return isinstance(value, int) or math.isfinite(value)


@dataclass(frozen=True)
class MainTank:
    level: int = 0
    status: LevelStatus = "Empty"


@dataclass(frozen=True)
class Tank:
    id: int
    level: int = 0
    status: LevelStatus = "Empty"
    pump_status: PumpStatus = "Off"

    # owning inverter; equals id for the 1:1 layout
    inverter: int = 0
    state_message: Optional[str] = None


@dataclass(frozen=True)
class ValveState:
    code: str = DEFAULT_VALVE_CODE
    descriptor_a: str = EXTRACT_CIRCULATE
    descriptor_b: str = GATE_CLOSED
    raw_status_text: Optional[str] = None

    # decoded routing; only bits 1-2 carry meaning, 3-4 are reserved
    path: ValvePath = EXTRACT_CIRCULATE
    gate: ValveGate = GATE_CLOSED


@dataclass(frozen=True)
class ProgressDetail:
    stage: Optional[str] = None
    elapsed_seconds: Optional[float] = None
    remaining_seconds: Optional[float] = None
    total_remaining_seconds: Optional[float] = None
    process_time_seconds: Optional[float] = None
    pump_id: Optional[int] = None
    status: Optional[str] = None
    note: Optional[str] = None
    process_info: Optional[str] = None

    @property
    def mode(self) -> str:
        """Process mode encoded in the first letter of process_info."""
        info = self.process_info
        if not info or info == "waiting":
            return "waiting"
        return {"C": "sequential", "S": "simultaneous", "O": "overlap"}.get(info[0], "waiting")


@dataclass(frozen=True)
class ProgressEntry:
    timestamp: datetime
    raw_message: str
    structured: Optional[ProgressDetail] = None
    fill_percent: Optional[float] = None

    @property
    def summary(self) -> str:
        d = self.structured
        if d is None:
            return self.raw_message

        parts = []
        if d.process_info:
            parts.append(f"progress: {d.process_info}")
        if d.elapsed_seconds is not None:
            parts.append(f"elapsed: {d.elapsed_seconds:g}s")
        if d.remaining_seconds is not None:
            parts.append(f"remaining: {d.remaining_seconds:g}s")
        if d.total_remaining_seconds is not None:
            parts.append(f"total remaining: {d.total_remaining_seconds:g}s")
        if d.process_time_seconds is not None:
            parts.append(f"process time: {d.process_time_seconds:g}s")
        if d.pump_id is not None:
            parts.append(f"pump: {d.pump_id}")
        if d.stage:
            parts.append(f"stage: {d.stage}")
        if d.status:
            parts.append(f"status: {d.status}")
        if d.note:
            parts.append(f"note: {d.note}")
        return ", ".join(parts) or self.raw_message


@dataclass(frozen=True)
class SystemState:
    main_tank: MainTank = field(default_factory=MainTank)
    tanks: Tuple[Tank, ...] = ()
    valve: ValveState = field(default_factory=ValveState)

    # most recent first
    progress_log: Tuple[ProgressEntry, ...] = ()
    error_log: Tuple[str, ...] = ()

    last_updated: datetime = field(default_factory=utc_now)

    queue_status: Optional[str] = None
    extraction_output: Optional[str] = None

    # index i is camera i + 1
    cameras: Tuple[CameraStatus, ...] = ("Off",) * DEFAULT_CAMERA_COUNT

    def tank(self, tank_id: int) -> Optional[Tank]:
        if 1 <= tank_id <= len(self.tanks):
            return self.tanks[tank_id - 1]
        return None


def default_tanks(unit_count: int = DEFAULT_UNIT_COUNT, tanks_per_unit: int = 1) -> Tuple[Tank, ...]:
    tanks = []
    for i in range(unit_count * tanks_per_unit):
        tanks.append(Tank(id=i + 1, inverter=i // tanks_per_unit + 1))
    return tuple(tanks)


def default_state(
    unit_count: int = DEFAULT_UNIT_COUNT,
    tanks_per_unit: int = 1,
    camera_count: int = DEFAULT_CAMERA_COUNT,
) -> SystemState:
    return SystemState(tanks=default_tanks(unit_count, tanks_per_unit), cameras=("Off",) * camera_count)


# ======================================================
# JSON shape used by the persistence endpoint
# ======================================================
def _iso(ts: datetime) -> str:
    return ts.astimezone(timezone.utc).isoformat()


def _parse_ts(value: Any) -> Optional[datetime]:
    if not isinstance(value, str):
        return None
    try:
        ts = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    return ts if ts.tzinfo else ts.replace(tzinfo=timezone.utc)


def _level(value: Any, default: int) -> int:
    if not is_number(value):
        return default
    return int(clamp(float(value), 0.0, 100.0))


def _status(value: Any, choices: Tuple[str, ...], default: str) -> Any:
    if isinstance(value, str):
        for c in choices:
            if c.lower() == value.lower():
                return c
    return default


def _opt_str(value: Any) -> Optional[str]:
    return value if isinstance(value, str) else None


def _opt_num(value: Any) -> Optional[float]:
    if not is_number(value):
        return None
    return value


def state_to_dict(state: SystemState) -> Dict[str, Any]:
    return {
        "mainTank": {"level": state.main_tank.level, "status": state.main_tank.status},
        "tanks": [
            {
                "id": t.id,
                "level": t.level,
                "status": t.status,
                "pumpStatus": t.pump_status,
                "inverter": t.inverter,
                "stateMessage": t.state_message,
            }
            for t in state.tanks
        ],
        "valve": {
            "code": state.valve.code,
            "descriptorA": state.valve.descriptor_a,
            "descriptorB": state.valve.descriptor_b,
            "rawStatusText": state.valve.raw_status_text,
            "path": state.valve.path,
            "gate": state.valve.gate,
        },
        "progressLog": [
            {
                "timestamp": _iso(e.timestamp),
                "rawMessage": e.raw_message,
                "fillPercent": e.fill_percent,
                "structured": None if e.structured is None else {
                    "stage": e.structured.stage,
                    "elapsedSeconds": e.structured.elapsed_seconds,
                    "remainingSeconds": e.structured.remaining_seconds,
                    "totalRemainingSeconds": e.structured.total_remaining_seconds,
                    "processTimeSeconds": e.structured.process_time_seconds,
                    "pumpId": e.structured.pump_id,
                    "status": e.structured.status,
                    "note": e.structured.note,
                    "processInfo": e.structured.process_info,
                },
            }
            for e in state.progress_log
        ],
        "errorLog": list(state.error_log),
        "lastUpdated": _iso(state.last_updated),
        "queueStatus": state.queue_status,
        "extractionOutput": state.extraction_output,
        "cameras": list(state.cameras),
    }


def _detail_from_dict(d: Any) -> Optional[ProgressDetail]:
    if not isinstance(d, dict):
        return None
    pump_id = d.get("pumpId")
    return ProgressDetail(
        stage=_opt_str(d.get("stage")),
        elapsed_seconds=_opt_num(d.get("elapsedSeconds")),
        remaining_seconds=_opt_num(d.get("remainingSeconds")),
        total_remaining_seconds=_opt_num(d.get("totalRemainingSeconds")),
        process_time_seconds=_opt_num(d.get("processTimeSeconds")),
        pump_id=pump_id if isinstance(pump_id, int) and not isinstance(pump_id, bool) else None,
        status=_opt_str(d.get("status")),
        note=_opt_str(d.get("note")),
        process_info=_opt_str(d.get("processInfo")),
    )


def state_from_dict(
    data: Any,
    unit_count: int = DEFAULT_UNIT_COUNT,
    tanks_per_unit: int = 1,
    camera_count: int = DEFAULT_CAMERA_COUNT,
) -> SystemState:
    """
    Rebuild a SystemState from the cached JSON shape.
    Tank identity comes from the configured layout, never from the cache:
    a cached tank only patches the slot with the same id.
    Anything missing or malformed keeps the compiled-in default.
    """
    base = default_state(unit_count, tanks_per_unit, camera_count)
    if not isinstance(data, dict):
        return base

    mt = data.get("mainTank")
    main_tank = base.main_tank
    if isinstance(mt, dict):
        main_tank = MainTank(
            level=_level(mt.get("level"), main_tank.level),
            status=_status(mt.get("status"), _LEVEL_STATUSES, main_tank.status),
        )

    tanks = list(base.tanks)
    cached = data.get("tanks")
    if isinstance(cached, list):
        for raw in cached:
            if not isinstance(raw, dict):
                continue
            tank_id = raw.get("id")
            if isinstance(tank_id, bool) or not isinstance(tank_id, int) or not 1 <= tank_id <= len(tanks):
                continue
            cur = tanks[tank_id - 1]
            tanks[tank_id - 1] = replace(
                cur,
                level=_level(raw.get("level"), cur.level),
                status=_status(raw.get("status"), _LEVEL_STATUSES, cur.status),
                pump_status=_status(raw.get("pumpStatus"), _PUMP_STATUSES, cur.pump_status),
                state_message=_opt_str(raw.get("stateMessage")),
            )

    valve = base.valve
    v = data.get("valve")
    if isinstance(v, dict):
        code = v.get("code")
        if isinstance(code, str) and len(code) == 4 and set(code) <= {"0", "1"}:
            path = v.get("path") if v.get("path") in (EXTRACT_CIRCULATE, FULL_CIRCULATE) else (
                EXTRACT_CIRCULATE if code[0] == "1" else FULL_CIRCULATE
            )
            gate = v.get("gate") if v.get("gate") in (GATE_OPEN, GATE_CLOSED) else (
                GATE_OPEN if code[1] == "1" else GATE_CLOSED
            )
            valve = ValveState(
                code=code,
                descriptor_a=_opt_str(v.get("descriptorA")) or path,
                descriptor_b=_opt_str(v.get("descriptorB")) or gate,
                raw_status_text=_opt_str(v.get("rawStatusText")),
                path=path,
                gate=gate,
            )

    progress = []
    plog = data.get("progressLog")
    if isinstance(plog, list):
        for raw in plog:
            if not isinstance(raw, dict) or not isinstance(raw.get("rawMessage"), str):
                continue
            progress.append(ProgressEntry(
                timestamp=_parse_ts(raw.get("timestamp")) or base.last_updated,
                raw_message=raw["rawMessage"],
                structured=_detail_from_dict(raw.get("structured")),
                fill_percent=_opt_num(raw.get("fillPercent")),
            ))

    errors = []
    elog = data.get("errorLog")
    if isinstance(elog, list):
        errors = [e for e in elog if isinstance(e, str)]

    cameras = list(base.cameras)
    cams = data.get("cameras")
    if isinstance(cams, list):
        for i, status in enumerate(cams[:len(cameras)]):
            cameras[i] = _status(status, _PUMP_STATUSES, cameras[i])

    return SystemState(
        main_tank=main_tank,
        tanks=tuple(tanks),
        valve=valve,
        progress_log=tuple(progress),
        error_log=tuple(errors),
        last_updated=_parse_ts(data.get("lastUpdated")) or base.last_updated,
        queue_status=_opt_str(data.get("queueStatus")),
        extraction_output=_opt_str(data.get("extractionOutput")),
        cameras=tuple(cameras),
    )
