# src/extwork/rig/decode/tank.py
from __future__ import annotations

import re
from typing import Optional, Tuple

from ..fragments import DecodeFailure, DecodeResult, OverallStateFragment, TankLevelFragment
from ..state import LevelStatus, MainTank

# keywords as the rig firmware sends them (English + Korean)
FULL_KEYWORDS = ("full", "가득")
EMPTY_KEYWORDS = ("empty", "비어")
FILLING_KEYWORDS = ("filling", "채워")
MAIN_TANK_KEYWORDS = ("main", "본탱크", "메인 탱크")

FULL_THRESHOLD_PCT = 90
EMPTY_THRESHOLD_PCT = 10
FULL_LEVEL = 100
EMPTY_LEVEL = 5
DEFAULT_LEVEL = 50

_PERCENT_RE = re.compile(r"(\d+)%")


def _has(text: str, words: Tuple[str, ...]) -> bool:
    return any(w in text for w in words)


def parse_tank_level(payload: str) -> Tuple[int, LevelStatus]:
    """
    Level and status from a tank level payload ("92%", "empty", "50% filling").
    Percentage first, then keywords:
    - full keyword or >= 90%  -> Full, level 100
    - empty keyword or <= 10% -> Empty, level 5
    - otherwise               -> Filling, parsed level (50 when none)
    """
    level: Optional[int] = None
    m = _PERCENT_RE.search(payload)
    if m:
        level = int(m.group(1))

    text = payload.lower()
    if _has(text, FULL_KEYWORDS) or (level is not None and level >= FULL_THRESHOLD_PCT):
        return FULL_LEVEL, "Full"
    if _has(text, EMPTY_KEYWORDS) or (level is not None and level <= EMPTY_THRESHOLD_PCT):
        return EMPTY_LEVEL, "Empty"
    return (DEFAULT_LEVEL if level is None else level), "Filling"


def decode_tank_level(payload: str, unit_id: int = 0, tank_slot: int = 1) -> DecodeResult:
    if not payload.strip():
        return DecodeFailure(category="tank_level", payload=payload, reason="empty tank level payload")

    level, status = parse_tank_level(payload)
    return TankLevelFragment(unit_id=unit_id, tank_slot=tank_slot, level=level, status=status)


def parse_main_tank(payload: str) -> Optional[MainTank]:
    """Main tank status carried inside an overall-state line, if any."""
    text = payload.lower()
    if not _has(text, MAIN_TANK_KEYWORDS):
        return None
    if _has(text, FULL_KEYWORDS):
        return MainTank(level=100, status="Full")
    if _has(text, FILLING_KEYWORDS):
        return MainTank(level=50, status="Filling")
    return MainTank(level=0, status="Empty")


def decode_overall_state(payload: str, unit_id: int = 0) -> DecodeResult:
    return OverallStateFragment(unit_id=unit_id, message=payload, main_tank=parse_main_tank(payload))
