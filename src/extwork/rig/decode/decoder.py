# src/extwork/rig/decode/decoder.py
from __future__ import annotations

import logging
from dataclasses import replace
from datetime import datetime
from typing import Callable, Optional

from .. import topics
from ..fragments import DecodeFailure, DecodeResult
from ..state import DEFAULT_CAMERA_COUNT, DEFAULT_UNIT_COUNT, utc_now
from .camera import decode_cam_command, decode_cam_state
from .progress import decode_progress
from .pump import decode_pump_command, decode_pump_state
from .tank import decode_overall_state, decode_tank_level
from .text import (
    decode_error,
    decode_extraction_input,
    decode_output,
    decode_queue_status,
    decode_sync_notification,
    decode_sync_request,
    decode_sync_state,
    decode_sync_valve_state,
)
from .valve import decode_valve

logger = logging.getLogger(__name__)


class MessageDecoder:
    """
    topic + payload -> Fragment | DecodeFailure, or None for unrecognized topics.
    Never raises: a decoder bug is reported as a DecodeFailure.
    """

    def __init__(
        self,
        unit_count: int = DEFAULT_UNIT_COUNT,
        tanks_per_unit: int = 1,
        camera_count: int = DEFAULT_CAMERA_COUNT,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.unit_count = unit_count
        self.tanks_per_unit = tanks_per_unit
        self.camera_count = camera_count
        self._clock = clock

    def decode(self, topic: str, payload: str) -> Optional[DecodeResult]:
        category = topics.classify(topic)
        if isinstance(category, topics.Unrecognized):
            logger.debug("[RIG] dropping unrecognized topic %s", topic)
            return None

        try:
            result = self._dispatch(category, payload)
        except Exception as e:
            logger.exception("[RIG] decoder crashed on %s", topic)
            result = DecodeFailure(category=type(category).__name__, payload=payload, reason=repr(e))

        if isinstance(result, DecodeFailure):
            result = replace(result, topic=topic)
            logger.warning("[RIG] %s", result.describe())
        return result

    def _dispatch(self, c: topics.Category, payload: str) -> DecodeResult:
        if isinstance(c, topics.PumpState):
            return decode_pump_state(payload, c.unit_id)
        if isinstance(c, topics.PumpCommand):
            return decode_pump_command(payload, c.unit_id)
        if isinstance(c, topics.TankLevel):
            return decode_tank_level(payload, c.unit_id, c.tank_slot)
        if isinstance(c, topics.OverallState):
            return decode_overall_state(payload, c.unit_id)
        if isinstance(c, topics.CamState):
            return decode_cam_state(payload, c.cam_id)
        if isinstance(c, topics.CamCommand):
            return decode_cam_command(payload, c.cam_id)
        if isinstance(c, (topics.ValveState, topics.ValveInput)):
            return decode_valve(payload)
        if isinstance(c, topics.SyncValveState):
            return decode_sync_valve_state(payload)
        if isinstance(c, topics.Progress):
            return decode_progress(payload, now=self._clock())
        if isinstance(c, topics.Error):
            return decode_error(payload)
        if isinstance(c, topics.ExtractionOutput):
            return decode_output(payload)
        if isinstance(c, topics.ExtractionInput):
            return decode_extraction_input(payload)
        if isinstance(c, topics.QueueStatus):
            return decode_queue_status(payload)
        if isinstance(c, topics.SyncState):
            return decode_sync_state(payload, self.unit_count, self.tanks_per_unit, self.camera_count)
        if isinstance(c, topics.SyncNotification):
            return decode_sync_notification(payload)
        if isinstance(c, topics.SyncRequest):
            return decode_sync_request(payload)
        raise TypeError(f"no decoder for {c!r}")
