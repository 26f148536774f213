# src/extwork/rig/decode/progress.py
from __future__ import annotations

import json
import re
from datetime import datetime
from typing import Any, Dict, Optional, Tuple

from ..fragments import DecodeResult, ProgressFragment
from ..state import ProgressDetail, ProgressEntry, is_number, utc_now

# "120s | 30s" -> elapsed | remaining
_ELAPSED_REMAINING_RE = re.compile(r"(\d+)s\s*\|\s*(\d+)s")
# "120/150s" -> elapsed / total
_ELAPSED_TOTAL_RE = re.compile(r"(\d+)\s*/\s*(\d+)s")


def _number(data: Dict[str, Any], key: str) -> Optional[float]:
    value = data.get(key)
    return value if is_number(value) else None


def _text(data: Dict[str, Any], key: str) -> Optional[str]:
    value = data.get(key)
    if value is None or isinstance(value, (dict, list)):
        return None
    return str(value)


def fill_percent(elapsed: Optional[float], remaining: Optional[float]) -> Optional[float]:
    if elapsed is None or remaining is None:
        return None
    total = elapsed + remaining
    if total <= 0:
        return None
    return min(100.0, elapsed / total * 100.0)


def detail_from_json(data: Dict[str, Any]) -> ProgressDetail:
    pump_id = data.get("pump_id")
    if isinstance(pump_id, bool) or not isinstance(pump_id, int):
        pump_id = None

    return ProgressDetail(
        stage=_text(data, "current_stage"),
        elapsed_seconds=_number(data, "elapsed_time"),
        remaining_seconds=_number(data, "remaining_time"),
        total_remaining_seconds=_number(data, "total_remaining"),
        process_time_seconds=_number(data, "process_time"),
        pump_id=pump_id,
        status=_text(data, "status"),
        note=_text(data, "additional_info"),
        process_info=_text(data, "process_info"),
    )


def timings_from_text(text: str) -> Optional[Tuple[int, int]]:
    """(elapsed, remaining) recovered from a free-text progress line."""
    m = _ELAPSED_REMAINING_RE.search(text)
    if m:
        return int(m.group(1)), int(m.group(2))

    m = _ELAPSED_TOTAL_RE.search(text)
    if m:
        elapsed, total = int(m.group(1)), int(m.group(2))
        return elapsed, max(total - elapsed, 0)
    return None


def _load_object(payload: str) -> Optional[Dict[str, Any]]:
    try:
        data = json.loads(payload)
    except ValueError:
        return None
    return data if isinstance(data, dict) else None


def decode_progress(payload: str, now: Optional[datetime] = None) -> DecodeResult:
    ts = now or utc_now()

    data = _load_object(payload)
    if data is not None:
        detail = detail_from_json(data)
        return ProgressFragment(entry=ProgressEntry(
            timestamp=ts,
            raw_message=payload,
            structured=detail,
            fill_percent=fill_percent(detail.elapsed_seconds, detail.remaining_seconds),
        ))

    timings = timings_from_text(payload)
    if timings is None:
        return ProgressFragment(entry=ProgressEntry(timestamp=ts, raw_message=payload))

    elapsed, remaining = timings
    return ProgressFragment(entry=ProgressEntry(
        timestamp=ts,
        raw_message=payload,
        structured=ProgressDetail(elapsed_seconds=elapsed, remaining_seconds=remaining),
        fill_percent=fill_percent(elapsed, remaining),
    ))
