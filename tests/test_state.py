import json
from datetime import datetime, timezone

from extwork.rig.decode.progress import decode_progress
from extwork.rig.decode.valve import parse_valve_code
from extwork.rig.state import (
    MainTank,
    ProgressEntry,
    SystemState,
    Tank,
    default_state,
    state_from_dict,
    state_to_dict,
)

NOW = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


def test_default_state():
    s = default_state()
    assert [t.id for t in s.tanks] == [1, 2, 3, 4, 5, 6]
    assert all(t.inverter == t.id for t in s.tanks)
    assert s.valve.code == "1000"
    assert s.valve.path == "extract-circulate"
    assert s.tank(0) is None
    assert s.tank(6).id == 6


def test_dict_shape_survives_json():
    tanks = list(default_state().tanks)
    tanks[2] = Tank(id=3, level=70, status="Filling", pump_status="On", inverter=3)
    entry = decode_progress('{"elapsed_time":10,"remaining_time":30,"process_info":"C1"}', now=NOW).entry
    s = SystemState(
        main_tank=MainTank(100, "Full"),
        tanks=tuple(tanks),
        valve=parse_valve_code("0100"),
        progress_log=(entry, ProgressEntry(timestamp=NOW, raw_message="plain")),
        error_log=("e1",),
        last_updated=NOW,
        queue_status="idle",
        cameras=("On", "Off", "Off", "On", "Off"),
    )

    data = json.loads(json.dumps(state_to_dict(s)))
    assert data["tanks"][2]["pumpStatus"] == "On"
    assert data["valve"]["descriptorA"] == "full-circulate-exchange"
    assert data["cameras"] == ["On", "Off", "Off", "On", "Off"]
    assert state_from_dict(data) == s


def test_from_dict_tolerates_garbage():
    s = state_from_dict({
        "mainTank": "full",
        "tanks": [{"id": 9, "level": 50}, {"id": 1, "level": 250, "status": "weird"}, "x"],
        "valve": {"code": "12"},
        "progressLog": [{"timestamp": "not a date", "rawMessage": "m"}, {"rawMessage": 5}],
        "errorLog": ["a", 1],
        "lastUpdated": None,
    })
    assert len(s.tanks) == 6
    assert s.tanks[0].level == 100
    assert s.tanks[0].status == "Empty"
    assert s.main_tank == MainTank()
    assert s.valve.code == "1000"
    assert [e.raw_message for e in s.progress_log] == ["m"]
    assert s.error_log == ("a",)


def test_from_dict_non_object_gives_defaults():
    assert state_from_dict(None).tanks == default_state().tanks
    assert state_from_dict([1, 2]).valve == default_state().valve


def test_from_dict_rejects_non_finite_numbers():
    data = json.loads(
        '{"mainTank": {"level": NaN}, "tanks": [{"id": 1, "level": Infinity}],'
        ' "progressLog": [{"rawMessage": "m", "fillPercent": NaN}]}'
    )
    s = state_from_dict(data)
    assert s.main_tank.level == 0
    assert s.tanks[0].level == 0
    assert s.progress_log[0].fill_percent is None


def test_cameras_default_off_and_sized():
    assert default_state().cameras == ("Off",) * 5
    assert default_state(camera_count=2).cameras == ("Off", "Off")
    s = state_from_dict({"cameras": ["on", "On", "On"]}, camera_count=2)
    assert s.cameras == ("On", "On")


def test_progress_mode():
    def mode(info):
        return decode_progress(json.dumps({"process_info": info}), now=NOW).entry.structured.mode

    assert mode("C(1/2)") == "sequential"
    assert mode("O3") == "overlap"
    assert mode("waiting") == "waiting"
    assert mode("X") == "waiting"
