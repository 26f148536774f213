# src/extwork/rig/decode/text.py
from __future__ import annotations

import json

from ..fragments import (
    DecodeFailure,
    DecodeResult,
    ErrorFragment,
    NoChange,
    OutputFragment,
    QueueFragment,
    SnapshotFragment,
    SyncRequestFragment,
)
from ..state import DEFAULT_CAMERA_COUNT, DEFAULT_UNIT_COUNT, state_from_dict


def decode_error(payload: str) -> DecodeResult:
    return ErrorFragment(message=payload)


def decode_output(payload: str) -> DecodeResult:
    return OutputFragment(message=payload)


def decode_queue_status(payload: str) -> DecodeResult:
    try:
        data = json.loads(payload)
    except ValueError:
        return QueueFragment(status=payload)
    return QueueFragment(status=json.dumps(data, ensure_ascii=False, separators=(",", ":")))


def decode_extraction_input(payload: str) -> DecodeResult:
    # our own (or another dashboard's) command; results arrive on output/progress
    return NoChange(reason="extraction command echo")


def decode_sync_valve_state(payload: str) -> DecodeResult:
    return NoChange(reason=f"peer valve state: {payload}")


def decode_sync_notification(payload: str) -> DecodeResult:
    return NoChange(reason=f"notification: {payload}")


def decode_sync_request(payload: str) -> DecodeResult:
    return SyncRequestFragment(request=payload)


def decode_sync_state(
    payload: str,
    unit_count: int = DEFAULT_UNIT_COUNT,
    tanks_per_unit: int = 1,
    camera_count: int = DEFAULT_CAMERA_COUNT,
) -> DecodeResult:
    try:
        data = json.loads(payload)
    except ValueError:
        return DecodeFailure(category="sync_state", payload=payload, reason="snapshot is not JSON")
    if not isinstance(data, dict):
        return DecodeFailure(category="sync_state", payload=payload, reason="snapshot is not an object")

    origin = data.get("origin")
    # the persistence shape wraps the snapshot in {"data": ...}
    if "data" in data and isinstance(data["data"], dict):
        data = data["data"]
        origin = origin or data.get("origin")
    return SnapshotFragment(
        state=state_from_dict(data, unit_count, tanks_per_unit, camera_count),
        origin=origin if isinstance(origin, str) else None,
    )
