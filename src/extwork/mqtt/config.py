# src/extwork/mqtt/config.py
from __future__ import annotations

import os
import uuid
from dataclasses import dataclass, field
from typing import Mapping, Optional

ENV_PREFIX = "EXTWORK_MQTT_"


def _client_id() -> str:
    return f"extwork-{uuid.uuid4().hex[:8]}"


def _env_bool(value: str) -> bool:
    return value.strip().lower() in ("1", "true", "yes", "on")


@dataclass
class BrokerConfig:
    host: str = "api.codingpen.com"
    port: int = 8884
    path: str = "/mqtt"
    username: Optional[str] = None
    password: Optional[str] = None
    client_id: str = field(default_factory=_client_id)

    # wss:// with the broker's self-signed certificate
    tls: bool = True
    tls_verify: bool = False

    keepalive: int = 60
    reconnect_delay: float = 5.0
    max_deferred: int = 100

    @property
    def url(self) -> str:
        scheme = "wss" if self.tls else "ws"
        return f"{scheme}://{self.host}:{self.port}{self.path}"

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> "BrokerConfig":
        """
        Defaults overridden by EXTWORK_MQTT_* variables:
        HOST, PORT, PATH, USERNAME, PASSWORD, CLIENT_ID, TLS, TLS_VERIFY,
        KEEPALIVE, RECONNECT_DELAY.
        """
        env = os.environ if environ is None else environ
        cfg = cls()

        def get(name: str) -> Optional[str]:
            value = env.get(ENV_PREFIX + name)
            return value if value else None

        if get("HOST"):
            cfg.host = get("HOST")
        if get("PORT"):
            cfg.port = int(get("PORT"))
        if get("PATH"):
            cfg.path = get("PATH")
        if get("USERNAME"):
            cfg.username = get("USERNAME")
        if get("PASSWORD"):
            cfg.password = get("PASSWORD")
        if get("CLIENT_ID"):
            cfg.client_id = get("CLIENT_ID")
        if get("TLS"):
            cfg.tls = _env_bool(get("TLS"))
        if get("TLS_VERIFY"):
            cfg.tls_verify = _env_bool(get("TLS_VERIFY"))
        if get("KEEPALIVE"):
            cfg.keepalive = int(get("KEEPALIVE"))
        if get("RECONNECT_DELAY"):
            cfg.reconnect_delay = float(get("RECONNECT_DELAY"))
        return cfg
