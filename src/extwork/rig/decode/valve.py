# src/extwork/rig/decode/valve.py
from __future__ import annotations

import re
from typing import Dict, Optional, Tuple

from ..fragments import DecodeFailure, DecodeResult, NoChange, ValveFragment
from ..state import (
    EXTRACT_CIRCULATE,
    FULL_CIRCULATE,
    GATE_CLOSED,
    GATE_OPEN,
    ValveGate,
    ValvePath,
    ValveState,
)

STATUS_REQUEST = "STATUS"

_CODE_RE = re.compile(r"[01]{4}")
_DESC_A_RE = re.compile(r"valveA=[A-Z]+([(\[][^)\]]+[)\]])", re.IGNORECASE)
_DESC_B_RE = re.compile(r"valveB=[A-Z]+([(\[][^)\]]+[)\]])", re.IGNORECASE)

# "0100" is decoded from this table, never from the bit rule. Kept as the rig
# firmware reports it until the rig documentation says otherwise.
_CODE_OVERRIDES: Dict[str, Tuple[ValvePath, ValveGate, str, str]] = {
    "0100": (FULL_CIRCULATE, GATE_OPEN, "full-circulate-exchange", GATE_OPEN),
}


def path_for(bit: str) -> ValvePath:
    return EXTRACT_CIRCULATE if bit == "1" else FULL_CIRCULATE


def gate_for(bit: str) -> ValveGate:
    return GATE_OPEN if bit == "1" else GATE_CLOSED


def is_valve_code(payload: str) -> bool:
    return _CODE_RE.fullmatch(payload) is not None


def parse_valve_code(code: str) -> ValveState:
    override = _CODE_OVERRIDES.get(code)
    if override is not None:
        path, gate, desc_a, desc_b = override
        return ValveState(code=code, descriptor_a=desc_a, descriptor_b=desc_b, path=path, gate=gate)

    path = path_for(code[0])
    gate = gate_for(code[1])
    return ValveState(code=code, descriptor_a=path, descriptor_b=gate, path=path, gate=gate)


def _descriptor(pattern: re.Pattern, text: str) -> Optional[str]:
    m = pattern.search(text)
    if not m:
        return None
    return re.sub(r"[()\[\]]", "", m.group(1)).strip() or None


def parse_valve_status_line(text: str) -> ValveState:
    """
    Valve state from a status line such as
    "valveA=ON(extract), valveB=OFF(closed), valveC=OFF(-), valveD=OFF(-)".
    Only valves A and B are decoded; the synthetic code ends in "00".
    """
    bit_a = "1" if "valveA=ON" in text else "0"
    bit_b = "1" if "valveB=ON" in text else "0"
    path = path_for(bit_a)
    gate = gate_for(bit_b)
    return ValveState(
        code=f"{bit_a}{bit_b}00",
        descriptor_a=_descriptor(_DESC_A_RE, text) or path,
        descriptor_b=_descriptor(_DESC_B_RE, text) or gate,
        raw_status_text=text,
        path=path,
        gate=gate,
    )


def decode_valve(payload: str) -> DecodeResult:
    # the status line carries descriptions, so it wins over a bare code
    if "valveA=" in payload:
        return ValveFragment(valve=parse_valve_status_line(payload))

    code = payload.strip()
    if is_valve_code(code):
        return ValveFragment(valve=parse_valve_code(code))
    if code == STATUS_REQUEST:
        return NoChange(reason="valve status request")
    return DecodeFailure(category="valve", payload=payload, reason="not a valve code or status line")
