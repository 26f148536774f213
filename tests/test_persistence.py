import asyncio
from unittest.mock import MagicMock

import requests

from extwork.persistence import StateCache
from extwork.rig.state import default_state


def make_cache(session):
    return StateCache("http://rig.local/api/", timeout=2.0, session=session)


def test_load_returns_cached_state():
    session = MagicMock()
    session.get.return_value.json.return_value = {
        "data": {"valve": {"code": "0100"}, "tanks": [{"id": 1, "level": 42, "status": "Filling"}]},
        "lastUpdated": "2024-05-01T12:00:00Z",
        "timestamp": 1714564800000,
    }

    state = asyncio.run(make_cache(session).load())

    session.get.assert_called_once_with("http://rig.local/api/state", timeout=2.0)
    assert state.valve.code == "0100"
    assert state.tanks[0].level == 42


def test_load_without_data_returns_none():
    session = MagicMock()
    session.get.return_value.json.return_value = {"data": None, "lastUpdated": None}
    assert asyncio.run(make_cache(session).load()) is None


def test_load_failures_return_none():
    session = MagicMock()
    session.get.side_effect = requests.exceptions.ConnectionError("down")
    assert asyncio.run(make_cache(session).load()) is None

    session = MagicMock()
    session.get.return_value.raise_for_status.side_effect = requests.exceptions.HTTPError("500")
    assert asyncio.run(make_cache(session).load()) is None

    session = MagicMock()
    session.get.return_value.json.side_effect = ValueError("not json")
    assert asyncio.run(make_cache(session).load()) is None


def test_save_posts_state_dict():
    session = MagicMock()
    session.post.return_value.json.return_value = {"success": True, "message": "ok", "timestamp": 1}

    ok = asyncio.run(make_cache(session).save(default_state()))

    assert ok is True
    args, kwargs = session.post.call_args
    assert args == ("http://rig.local/api/state",)
    assert kwargs["json"]["valve"]["code"] == "1000"
    assert len(kwargs["json"]["tanks"]) == 6


def test_save_failures_return_false():
    session = MagicMock()
    session.post.return_value.json.return_value = {"success": False, "message": "disk full"}
    assert asyncio.run(make_cache(session).save(default_state())) is False

    session = MagicMock()
    session.post.side_effect = requests.exceptions.Timeout("slow")
    assert asyncio.run(make_cache(session).save(default_state())) is False
