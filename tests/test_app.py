from unittest.mock import patch

from extwork import app
from extwork.mqtt.config import BrokerConfig
from extwork.rig.state import default_state


def test_broker_config_from_env():
    cfg = BrokerConfig.from_env({
        "EXTWORK_MQTT_HOST": "broker.local",
        "EXTWORK_MQTT_PORT": "9001",
        "EXTWORK_MQTT_TLS": "false",
        "EXTWORK_MQTT_RECONNECT_DELAY": "2.5",
    })
    assert cfg.host == "broker.local"
    assert cfg.port == 9001
    assert cfg.tls is False
    assert cfg.reconnect_delay == 2.5
    assert cfg.url == "ws://broker.local:9001/mqtt"


def test_broker_config_defaults():
    cfg = BrokerConfig.from_env({})
    assert cfg.url == "wss://api.codingpen.com:8884/mqtt"
    assert cfg.reconnect_delay == 5.0
    assert cfg.tls_verify is False
    assert cfg.client_id.startswith("extwork-")


def test_cli_flags_override_env():
    args = app.parse_args(["--host", "h", "--port", "1", "--no-tls", "send", "t", "p"])
    with patch.dict("os.environ", {"EXTWORK_MQTT_HOST": "env-host"}):
        cfg = app.broker_from_args(args)
    assert (cfg.host, cfg.port, cfg.tls) == ("h", 1, False)


def test_topics_command_prints_list(capsys):
    assert app.main(["topics", "--units", "1"]) == 0
    lines = capsys.readouterr().out.split()
    assert lines[0] == "extwork/inverter1/command"
    assert len(lines) == 5 + 5 * 2 + 7


def test_topics_command_camera_count(capsys):
    assert app.main(["topics", "--units", "1", "--cameras", "0"]) == 0
    lines = capsys.readouterr().out.split()
    assert len(lines) == 5 + 7
    assert not any("/cam" in line for line in lines)


def test_send_command_uses_one_shot_publish():
    with patch.object(app, "mqtt_publish", return_value=True) as pub:
        assert app.main(["send", "extwork/inverter1/command", "1"]) == 0
    cfg, topic, payload = pub.call_args.args
    assert (topic, payload) == ("extwork/inverter1/command", "1")


def test_send_command_reports_unreachable_broker():
    with patch.object(app, "mqtt_publish", side_effect=OSError("refused")):
        assert app.main(["send", "t", "p"]) == 1


def test_describe_state():
    line = app.describe(default_state())
    assert line.startswith("main=0% valve=1000 tanks=[1:0%/E/-")
    assert " cams=00000" in line


def test_send_rejects_wildcard_topic():
    with patch.object(app, "mqtt_publish") as pub:
        assert app.main(["send", "extwork/#", "1"]) == 2
    pub.assert_not_called()
