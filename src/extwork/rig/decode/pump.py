# src/extwork/rig/decode/pump.py
from __future__ import annotations

from ..fragments import DecodeFailure, DecodeResult, NoChange, PumpFragment

PUMP_ON = "1"
PUMP_OFF = "0"
PUMP_RESET = "3"
PUMP_K = "k"

# commands the dashboard itself publishes and then hears back
KNOWN_COMMANDS = (PUMP_OFF, PUMP_ON, PUMP_RESET, PUMP_K)


def decode_pump_state(payload: str, unit_id: int = 0) -> DecodeResult:
    if payload == PUMP_ON:
        return PumpFragment(unit_id=unit_id, pump_status="On")
    if payload == PUMP_OFF:
        return PumpFragment(unit_id=unit_id, pump_status="Off")
    return DecodeFailure(category="pump_state", payload=payload, reason="expected '0' or '1'")


def decode_pump_command(payload: str, unit_id: int = 0) -> DecodeResult:
    # the broker echoes our own commands; authoritative state comes on /state
    if payload in KNOWN_COMMANDS:
        return NoChange(reason=f"pump {unit_id} command echo {payload!r}")
    return DecodeFailure(category="pump_command", payload=payload, reason="unknown pump command")
