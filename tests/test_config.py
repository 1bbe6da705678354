import pytest

from mqtt_stress import stress
from mqtt_stress.config.stress_config import (
    ConfigError, StressConfig, parse_broker_url, resolve_payload_settings,
)
from mqtt_stress.models.worker_config import PayloadMode, WorkerConfig
from mqtt_stress.utils.constants import ENV_PASSWORD, ENV_URL


def build(argv):
    args = stress.build_parser().parse_args(argv)
    return stress.build_config(args)


@pytest.mark.parametrize("url, host, port, transport, tls", [
    ("tcp://localhost:1883", "localhost", 1883, "tcp", False),
    ("mqtt://broker.local", "broker.local", 1883, "tcp", False),
    ("ssl://10.0.0.5", "10.0.0.5", 8883, "tcp", True),
    ("mqtts://broker:9883", "broker", 9883, "tcp", True),
    ("ws://broker:8080/mqtt", "broker", 8080, "websockets", False),
    ("wss://broker", "broker", 443, "websockets", True),
])
def test_parse_broker_url(url, host, port, transport, tls):
    address = parse_broker_url(url)
    assert (address.host, address.port, address.transport, address.use_tls) == (host, port, transport, tls)


def test_parse_broker_url_keeps_websocket_path():
    assert parse_broker_url("ws://broker:8080/mqtt").path == "/mqtt"
    assert parse_broker_url("tcp://broker:1883/ignored").path == ""


@pytest.mark.parametrize("url", ["", "localhost:1883", "http://broker:80", "tcp://:1883", "tcp://broker:notaport"])
def test_parse_broker_url_rejects_invalid(url):
    with pytest.raises(ConfigError):
        parse_broker_url(url)


@pytest.mark.parametrize("increment, fields, payload, expected", [
    (True, "a:number", "x", ("0", PayloadMode.INCREMENTING)),
    (False, "a:number", "x", ("a:number", PayloadMode.GENERATED)),
    (False, "", "x", ("x", PayloadMode.STATIC)),
    (False, "", "", ("mqtt-stress", PayloadMode.STATIC)),
])
def test_payload_precedence(increment, fields, payload, expected):
    assert resolve_payload_settings(increment, fields, payload) == expected


def test_worker_config_derivation_leaves_template_untouched():
    template = WorkerConfig(client_id="mqtt-stress-worker", url="tcp://b:1883", message_delay=0.5)
    derived = template.for_worker(3, "stress")
    assert derived.client_id == "mqtt-stress-worker-3"
    assert derived.topic == "stress/mqtt-stress-worker-3"
    assert template.client_id == "mqtt-stress-worker"
    assert template.topic == ""


def test_build_config_defaults():
    config = build(["-url", "tcp://localhost:1883"])
    assert config.workers == 10
    assert config.message_delay == pytest.approx(0.5)
    assert config.run_for == pytest.approx(15.0)
    assert config.payload_mode is PayloadMode.STATIC
    assert config.payload == "mqtt-stress"
    assert config.client_id == "mqtt-stress-worker"
    assert config.topic_namespace == "stress"


def test_build_config_flags():
    config = build([
        "-url", "tcp://broker:1883", "-username", "user", "-password", "secret",
        "-workers", "3", "-delay", "100ms", "-run", "1s", "-increment",
    ])
    assert (config.username, config.password) == ("user", "secret")
    assert config.workers == 3
    assert config.message_delay == pytest.approx(0.1)
    assert config.run_for == pytest.approx(1.0)
    assert config.payload_mode is PayloadMode.INCREMENTING
    assert config.payload == "0"


def test_double_dash_aliases():
    config = build(["--url", "tcp://broker:1883", "--workers", "2"])
    assert config.workers == 2


def test_fields_take_precedence_over_static_payload():
    config = build(["-url", "tcp://broker:1883", "-payload", "x", "-fields", "a:number"])
    assert config.payload_mode is PayloadMode.GENERATED
    assert config.payload == "a:number"


def test_missing_url_is_config_error():
    with pytest.raises(ConfigError, match="missing url"):
        build([])


@pytest.mark.parametrize("argv", [
    ["-run", "forever"],
    ["-delay", "10"],
    ["-delay", "0"],
    ["-workers", "0"],
])
def test_invalid_settings_are_config_errors(argv):
    with pytest.raises(ConfigError):
        build(["-url", "tcp://broker:1883"] + argv)


def test_missing_ca_file_is_config_error(tmp_path):
    config = StressConfig(url="ssl://broker", ca_file_path=str(tmp_path / "missing.pem"))
    with pytest.raises(ConfigError):
        config.validate()


def test_environment_supplies_url_and_password(monkeypatch):
    monkeypatch.setenv(ENV_URL, "tcp://env-broker:1883")
    monkeypatch.setenv(ENV_PASSWORD, "from-env")
    config = build([])
    assert config.url == "tcp://env-broker:1883"
    assert config.password == "from-env"

    config = build(["-url", "tcp://flag-broker:1883"])
    assert config.url == "tcp://flag-broker:1883"


def test_worker_template_carries_run_settings():
    config = build(["-url", "tcp://broker:1883", "-fields", "a:id", "-delay", "250ms"])
    template = config.worker_template()
    assert template.url == "tcp://broker:1883"
    assert template.message_delay == pytest.approx(0.25)
    assert template.payload_mode is PayloadMode.GENERATED


class PoolNotExpected:
    def __init__(self, *args, **kwargs):
        raise AssertionError("no pool should be constructed")


def test_main_missing_url_exits_without_workers(monkeypatch, capsys):
    monkeypatch.setattr(stress, "ClientPool", PoolNotExpected)
    assert stress.main([]) == 1
    assert "usage:" in capsys.readouterr().out


def test_main_invalid_duration_exits_without_workers(monkeypatch):
    monkeypatch.setattr(stress, "ClientPool", PoolNotExpected)
    assert stress.main(["-url", "tcp://broker:1883", "-run", "soon"]) == 1


def test_main_help(capsys):
    assert stress.main(["-help"]) == 0
    out = capsys.readouterr().out
    assert "-workers" in out
    assert "-increment" in out
