# src/extwork/app.py
from __future__ import annotations

import argparse
import asyncio
import logging
import signal
import ssl
from typing import List, Optional

import paho.mqtt.client as mqtt

from .client import ClientConfig, ExtworkClient
from .mqtt.config import BrokerConfig
from .mqtt.connection import valid_publish_topic
from .rig import topics
from .rig.reconciler import ReconcilerConfig
from .rig.state import SystemState

logger = logging.getLogger("extwork")


# ============================================================
# Logging
# ============================================================
def setup_logging(debug: bool = False) -> None:
    logging.basicConfig(
        level=logging.DEBUG if debug else logging.INFO,
        format="[%(asctime)s] %(message)s",
        datefmt="%H:%M:%S",
    )


def describe(state: SystemState) -> str:
    tanks = " ".join(
        f"{t.id}:{t.level}%/{t.status[0]}/{'P' if t.pump_status == 'On' else '-'}" for t in state.tanks
    )
    line = f"main={state.main_tank.level}% valve={state.valve.code} tanks=[{tanks}]"
    if state.cameras:
        line += " cams=" + "".join("1" if c == "On" else "0" for c in state.cameras)
    if state.progress_log:
        line += f" progress='{state.progress_log[0].summary}'"
    if state.error_log:
        line += f" error='{state.error_log[0]}'"
    return line


# ============================================================
# One-shot publish (paho, blocking)
# ============================================================
def mqtt_publish(cfg: BrokerConfig, topic: str, payload: str, timeout: float = 10.0) -> bool:
    c = mqtt.Client(mqtt.CallbackAPIVersion.VERSION2, client_id=cfg.client_id, transport="websockets")
    c.ws_set_options(path=cfg.path)
    if cfg.tls:
        c.tls_set(cert_reqs=ssl.CERT_REQUIRED if cfg.tls_verify else ssl.CERT_NONE)
        c.tls_insecure_set(not cfg.tls_verify)
    if cfg.username:
        c.username_pw_set(cfg.username, cfg.password)

    c.connect(cfg.host, cfg.port, keepalive=cfg.keepalive)
    c.loop_start()
    try:
        info = c.publish(topic, payload.encode("utf-8"), qos=0)
        info.wait_for_publish(timeout=timeout)
        return info.is_published()
    finally:
        c.disconnect()
        c.loop_stop()


# ============================================================
# Main
# ============================================================
def install_signal_handlers(stop_event: asyncio.Event) -> None:
    def _handler(*_):
        stop_event.set()

    signal.signal(signal.SIGINT, _handler)
    signal.signal(signal.SIGTERM, _handler)


def broker_from_args(args: argparse.Namespace) -> BrokerConfig:
    cfg = BrokerConfig.from_env()
    if args.host:
        cfg.host = args.host
    if args.port:
        cfg.port = args.port
    if args.path:
        cfg.path = args.path
    if args.username:
        cfg.username = args.username
    if args.password:
        cfg.password = args.password
    if args.no_tls:
        cfg.tls = False
    if args.reconnect_delay is not None:
        cfg.reconnect_delay = args.reconnect_delay
    return cfg


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    p = argparse.ArgumentParser(prog="extwork", description="MQTT client for the extwork extraction rig")
    p.add_argument("--host", help="MQTT broker host (env EXTWORK_MQTT_HOST)")
    p.add_argument("--port", type=int, help="MQTT broker WebSocket port (env EXTWORK_MQTT_PORT)")
    p.add_argument("--path", help="WebSocket path (env EXTWORK_MQTT_PATH)")
    p.add_argument("--username")
    p.add_argument("--password")
    p.add_argument("--no-tls", action="store_true", help="Use ws:// instead of wss://")
    p.add_argument("--reconnect-delay", type=float, help="Seconds between reconnect attempts")
    p.add_argument("--debug", action="store_true", help="Debug logging")

    sub = p.add_subparsers(dest="cmd", required=True)

    m = sub.add_parser("monitor", help="Subscribe to the rig and log every state change")
    m.add_argument("--units", type=int, default=6, help="Number of pump/inverter units")
    m.add_argument("--cameras", type=int, default=5, help="Number of cameras")
    m.add_argument("--layout", choices=["unit", "slot"], default="unit", help="Tank layout (1 or 2 tanks per unit)")
    m.add_argument("--sync", action="store_true", help="Also join the tank-system/* sync topics")
    m.add_argument("--cache-url", help="Persistence endpoint base, e.g. http://localhost:3000/api")
    m.add_argument("--log-limit", type=int, default=5, help="Progress/error log length")

    s = sub.add_parser("send", help="Publish one message and exit")
    s.add_argument("topic")
    s.add_argument("payload")

    t = sub.add_parser("topics", help="Print the subscription list")
    t.add_argument("--units", type=int, default=6)
    t.add_argument("--cameras", type=int, default=5)
    t.add_argument("--sync", action="store_true")

    return p.parse_args(argv)


async def run_monitor(args: argparse.Namespace) -> None:
    stop_event = asyncio.Event()
    install_signal_handlers(stop_event)

    cfg = ClientConfig(
        unit_count=args.units,
        camera_count=args.cameras,
        include_sync=args.sync,
        cache_url=args.cache_url,
        reconciler=ReconcilerConfig(
            progress_log_limit=args.log_limit,
            error_log_limit=args.log_limit,
            tank_layout=args.layout,
        ),
    )
    broker = broker_from_args(args)
    client = ExtworkClient(broker, cfg)
    client.reconciler.add_listener(lambda s: logger.info("[RIG] %s", describe(s)))

    logger.info("[MAIN] broker=%s units=%d layout=%s", broker.url, args.units, args.layout)
    await client.start()
    try:
        while not stop_event.is_set():
            await asyncio.sleep(0.2)
    finally:
        await client.stop()
        logger.info("[MAIN] stopped")


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)
    setup_logging(args.debug)

    if args.cmd == "topics":
        for t in topics.topics_for(args.units, include_sync=args.sync, camera_count=args.cameras):
            print(t)
        return 0

    if args.cmd == "send":
        if not valid_publish_topic(args.topic):
            logger.error("[PUB] invalid topic %r", args.topic)
            return 2
        broker = broker_from_args(args)
        try:
            ok = mqtt_publish(broker, args.topic, args.payload)
        except (OSError, RuntimeError) as e:
            logger.error("[PUB] %s unreachable: %r", broker.url, e)
            return 1
        logger.info("[PUB] %s -> %s (%s)", args.topic, args.payload, "ok" if ok else "not confirmed")
        return 0 if ok else 1

    try:
        asyncio.run(run_monitor(args))
    except KeyboardInterrupt:
        pass
    return 0
