# src/extwork/persistence.py
from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, Optional

import requests

from .errors import PersistenceUnavailable
from .rig.state import DEFAULT_CAMERA_COUNT, DEFAULT_UNIT_COUNT, SystemState, state_from_dict, state_to_dict

logger = logging.getLogger(__name__)


class StateCache:
    """
    HTTP cold-start cache for the dashboard state.

    GET  {base}/state -> {"data": <state>|null, "lastUpdated": ..., "timestamp": ...}
    POST {base}/state  <- <state>, -> {"success": bool, "message": str, "timestamp": ...}

    Best effort only: load() and save() never raise.
    """

    def __init__(
        self,
        base_url: str,
        timeout: float = 5.0,
        unit_count: int = DEFAULT_UNIT_COUNT,
        tanks_per_unit: int = 1,
        camera_count: int = DEFAULT_CAMERA_COUNT,
        session: requests.Session | None = None,
    ):
        self.url = base_url.rstrip("/") + "/state"
        self.timeout = timeout
        self.unit_count = unit_count
        self.tanks_per_unit = tanks_per_unit
        self.camera_count = camera_count
        self._session = session or requests.Session()

    async def load(self) -> Optional[SystemState]:
        try:
            body = await asyncio.to_thread(self._get)
        except PersistenceUnavailable as e:
            logger.warning("[CACHE] load failed, using defaults: %s", e)
            return None

        data = body.get("data")
        if data is None:
            logger.info("[CACHE] no cached state at %s", self.url)
            return None
        logger.info("[CACHE] loaded state (lastUpdated=%s)", body.get("lastUpdated"))
        return state_from_dict(data, self.unit_count, self.tanks_per_unit, self.camera_count)

    async def save(self, state: SystemState) -> bool:
        try:
            body = await asyncio.to_thread(self._post, state_to_dict(state))
        except PersistenceUnavailable as e:
            logger.warning("[CACHE] save failed: %s", e)
            return False

        if not body.get("success", False):
            logger.warning("[CACHE] save rejected: %s", body.get("message"))
            return False
        logger.debug("[CACHE] saved state at %s", body.get("timestamp"))
        return True

    def close(self) -> None:
        self._session.close()

    # blocking halves, run in a worker thread
    def _get(self) -> Dict[str, Any]:
        try:
            response = self._session.get(self.url, timeout=self.timeout)
            response.raise_for_status()
            return self._json(response)
        except requests.exceptions.RequestException as e:
            raise PersistenceUnavailable(f"GET {self.url}: {e}") from e

    def _post(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        try:
            response = self._session.post(self.url, json=payload, timeout=self.timeout)
            response.raise_for_status()
            return self._json(response)
        except requests.exceptions.RequestException as e:
            raise PersistenceUnavailable(f"POST {self.url}: {e}") from e

    @staticmethod
    def _json(response: requests.Response) -> Dict[str, Any]:
        try:
            body = response.json()
        except ValueError as e:
            raise PersistenceUnavailable(f"invalid JSON from {response.url}") from e
        if not isinstance(body, dict):
            raise PersistenceUnavailable(f"unexpected body from {response.url}")
        return body
