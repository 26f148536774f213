from datetime import datetime, timezone

import pytest

from extwork.rig.decode.camera import decode_cam_command, decode_cam_state
from extwork.rig.decode.decoder import MessageDecoder
from extwork.rig.decode.progress import decode_progress
from extwork.rig.decode.pump import decode_pump_command, decode_pump_state
from extwork.rig.decode.tank import decode_overall_state, decode_tank_level
from extwork.rig.decode.text import decode_queue_status, decode_sync_state
from extwork.rig.decode.valve import decode_valve
from extwork.rig.fragments import (
    CameraFragment,
    DecodeFailure,
    NoChange,
    OverallStateFragment,
    ProgressFragment,
    PumpFragment,
    QueueFragment,
    SnapshotFragment,
    SyncRequestFragment,
    TankLevelFragment,
    ValveFragment,
)
from extwork.rig.state import MainTank

NOW = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


# ---- pump ----
def test_pump_state():
    assert decode_pump_state("1", 2) == PumpFragment(unit_id=2, pump_status="On")
    assert decode_pump_state("0", 2) == PumpFragment(unit_id=2, pump_status="Off")


@pytest.mark.parametrize("payload", ["", "2", "on", "10"])
def test_pump_state_rejects_garbage(payload):
    f = decode_pump_state(payload, 1)
    assert isinstance(f, DecodeFailure)
    assert f.payload == payload


def test_pump_command_echo():
    for p in ("0", "1", "3", "k"):
        assert isinstance(decode_pump_command(p, 1), NoChange)
    assert isinstance(decode_pump_command("9", 1), DecodeFailure)


# ---- tank ----
@pytest.mark.parametrize("payload,level,status", [
    ("92%", 100, "Full"),
    ("empty", 5, "Empty"),
    ("50%", 50, "Filling"),
    ("8%", 5, "Empty"),
    ("가득", 100, "Full"),
    ("비어있음", 5, "Empty"),
    ("filling", 50, "Filling"),
])
def test_tank_level(payload, level, status):
    assert decode_tank_level(payload, 3, 1) == TankLevelFragment(unit_id=3, tank_slot=1, level=level, status=status)


def test_tank_level_blank_is_failure():
    assert isinstance(decode_tank_level("  ", 1, 1), DecodeFailure)


def test_overall_state_main_tank():
    f = decode_overall_state("main tank full", 1)
    assert f == OverallStateFragment(unit_id=1, message="main tank full", main_tank=MainTank(100, "Full"))
    assert decode_overall_state("pump running", 1).main_tank is None
    assert decode_overall_state("본탱크 채워지는 중", 1).main_tank == MainTank(50, "Filling")


# ---- valve ----
def test_valve_1000():
    f = decode_valve("1000")
    assert isinstance(f, ValveFragment)
    v = f.valve
    assert (v.code, v.path, v.gate) == ("1000", "extract-circulate", "closed")
    assert (v.descriptor_a, v.descriptor_b) == ("extract-circulate", "closed")


def test_valve_0100_uses_override_table():
    v = decode_valve("0100").valve
    assert v.path == "full-circulate"
    assert v.gate == "open"
    assert v.descriptor_a == "full-circulate-exchange"
    assert v.descriptor_b == "open"


def test_valve_0000():
    v = decode_valve("0000").valve
    assert (v.path, v.gate) == ("full-circulate", "closed")


def test_valve_status_line_wins():
    text = "valveA=ON(extract-route), valveB=OFF[gate shut], valveC=OFF(-), valveD=OFF(-)"
    v = decode_valve(text).valve
    assert v.code == "1000"
    assert v.descriptor_a == "extract-route"
    assert v.descriptor_b == "gate shut"
    assert v.raw_status_text == text


def test_valve_status_line_without_descriptors():
    v = decode_valve("valveA=OFF, valveB=ON").valve
    assert v.code == "0100"
    assert (v.descriptor_a, v.descriptor_b) == ("full-circulate", "open")


def test_valve_status_request_and_garbage():
    assert isinstance(decode_valve("STATUS"), NoChange)
    assert isinstance(decode_valve("10a0"), DecodeFailure)
    assert isinstance(decode_valve("10000"), DecodeFailure)


# ---- progress ----
def test_progress_json_fill_percent():
    f = decode_progress('{"elapsed_time":150,"remaining_time":150}', now=NOW)
    assert isinstance(f, ProgressFragment)
    assert f.entry.fill_percent == 50
    assert f.entry.structured.elapsed_seconds == 150
    assert f.entry.timestamp == NOW


def test_progress_json_fields():
    payload = (
        '{"process_info":"S(1/3)","current_stage":"extract","pump_id":2,'
        '"total_remaining":900,"status":"running","additional_info":"ok"}'
    )
    e = decode_progress(payload, now=NOW).entry
    d = e.structured
    assert d.stage == "extract"
    assert d.pump_id == 2
    assert d.total_remaining_seconds == 900
    assert d.elapsed_seconds is None
    assert d.mode == "simultaneous"
    assert e.fill_percent is None
    assert "stage: extract" in e.summary


def test_progress_json_ignores_non_numeric_fields():
    d = decode_progress('{"elapsed_time":"10","remaining_time":true}', now=NOW).entry.structured
    assert d.elapsed_seconds is None
    assert d.remaining_seconds is None


@pytest.mark.parametrize("payload", [
    '{"elapsed_time": NaN, "remaining_time": 10}',
    '{"elapsed_time": Infinity, "remaining_time": 10}',
    '{"elapsed_time": 10, "remaining_time": -Infinity}',
])
def test_progress_json_rejects_non_finite_numbers(payload):
    e = decode_progress(payload, now=NOW).entry
    assert e.structured is not None
    assert e.fill_percent is None
    assert None in (e.structured.elapsed_seconds, e.structured.remaining_seconds)


def test_progress_text_patterns():
    e = decode_progress("stage 2: 30s | 90s", now=NOW).entry
    assert e.structured.elapsed_seconds == 30
    assert e.structured.remaining_seconds == 90
    assert e.fill_percent == 25

    e = decode_progress("elapsed 60/240s", now=NOW).entry
    assert e.structured.remaining_seconds == 180
    assert e.fill_percent == 25


def test_progress_malformed_json_kept_verbatim():
    payload = '{"elapsed_time": 10, broken'
    e = decode_progress(payload, now=NOW).entry
    assert e.raw_message == payload
    assert e.structured is None
    assert e.fill_percent is None


def test_progress_zero_total_has_no_fill():
    assert decode_progress("0s | 0s", now=NOW).entry.fill_percent is None


# ---- cameras ----
def test_cam_state_only_1_is_on():
    assert decode_cam_state("1", 3) == CameraFragment(cam_id=3, status="On")
    assert decode_cam_state("0", 3) == CameraFragment(cam_id=3, status="Off")
    assert decode_cam_state("on", 3) == CameraFragment(cam_id=3, status="Off")
    assert decode_cam_state("", 3) == CameraFragment(cam_id=3, status="Off")


def test_cam_command_echo():
    assert isinstance(decode_cam_command("1", 2), NoChange)
    assert isinstance(decode_cam_command("0", 2), NoChange)
    assert isinstance(decode_cam_command("toggle", 2), DecodeFailure)


# ---- text / sync ----
def test_queue_status_json_is_compacted():
    assert decode_queue_status('{ "queued": 2 }') == QueueFragment(status='{"queued":2}')
    assert decode_queue_status("idle") == QueueFragment(status="idle")


def test_sync_state_snapshot():
    f = decode_sync_state('{"data": {"valve": {"code": "0100"}, "tanks": [{"id": 2, "level": 70}]}}')
    assert isinstance(f, SnapshotFragment)
    assert f.state.valve.code == "0100"
    assert f.state.tanks[1].level == 70
    assert isinstance(decode_sync_state("nope"), DecodeFailure)
    assert isinstance(decode_sync_state("[1, 2]"), DecodeFailure)


def test_sync_state_origin():
    assert decode_sync_state('{"origin": "dash-a", "tanks": []}').origin == "dash-a"
    assert decode_sync_state('{"data": {"origin": "dash-b"}}').origin == "dash-b"
    assert decode_sync_state('{"origin": 7}').origin is None
    assert decode_sync_state("{}").origin is None


def test_sync_state_cameras():
    f = decode_sync_state('{"cameras": ["On", "off", "bogus"]}', camera_count=3)
    assert f.state.cameras == ("On", "Off", "Off")


# ---- dispatcher ----
def test_decoder_dispatch():
    d = MessageDecoder(unit_count=6, clock=lambda: NOW)
    assert d.decode("extwork/inverter2/state", "1") == PumpFragment(unit_id=2, pump_status="On")
    assert d.decode("extwork/other", "1") is None
    assert isinstance(d.decode("tank-system/request", "please"), SyncRequestFragment)
    assert isinstance(d.decode("tank-system/valve-state", "1000"), NoChange)
    assert d.decode("extwork/cam2/state", "1") == CameraFragment(cam_id=2, status="On")
    assert isinstance(d.decode("extwork/cam2/command", "0"), NoChange)
    assert d.decode("extwork/extraction/progress", "x").entry.timestamp == NOW


def test_decoder_stamps_topic_on_failure():
    f = MessageDecoder().decode("extwork/inverter4/state", "bogus")
    assert isinstance(f, DecodeFailure)
    assert f.topic == "extwork/inverter4/state"
    assert "extwork/inverter4/state" in f.describe()
