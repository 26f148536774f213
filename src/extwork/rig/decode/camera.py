# src/extwork/rig/decode/camera.py
from __future__ import annotations

from ..fragments import CameraFragment, DecodeFailure, DecodeResult, NoChange

CAMERA_ON = "1"
CAMERA_OFF = "0"


def decode_cam_state(payload: str, cam_id: int = 0) -> DecodeResult:
    # cameras report loosely: only "1" means on
    status = "On" if payload == CAMERA_ON else "Off"
    return CameraFragment(cam_id=cam_id, status=status)


def decode_cam_command(payload: str, cam_id: int = 0) -> DecodeResult:
    if payload in (CAMERA_ON, CAMERA_OFF):
        return NoChange(reason=f"camera {cam_id} command echo {payload!r}")
    return DecodeFailure(category="cam_command", payload=payload, reason="expected '0' or '1'")
