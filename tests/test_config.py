import os

import pytest
from pydantic import ValidationError

from fleetlink.config.loader import load_config

ENV_VARS = ("FLEETLINK_MQTT_HOST", "FLEETLINK_MQTT_PORT", "FLEETLINK_TOPIC_PREFIX", "FLEETLINK_PORT")


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)


def write(tmp_path, text, name="relay.yaml"):
    path = tmp_path / name
    path.write_text(text, encoding="utf-8")
    return str(path)


def test_defaults_without_file():
    cfg = load_config()
    assert cfg.server.port == 9001
    assert cfg.server.server_id == "ACS_SERVER"
    assert cfg.server.read_timeout is None
    assert cfg.monitor.host == "localhost"
    assert cfg.monitor.topic_prefix == "fleetlink/v1"
    assert cfg.devices == []


def test_yaml_file(tmp_path):
    path = write(tmp_path, """
server:
  port: 9100
  server_id: DCC_SERVER
scenario:
  path: scenarios/demo.json
  startup_delay_s: 1.5
monitor:
  host: broker.local
devices:
  - {id: AGV_01, type: AGV, travel_interval: 0.5}
  - {id: CELL_01, type: CELL}
""")
    cfg = load_config(path)
    assert cfg.server.port == 9100
    assert cfg.server.server_id == "DCC_SERVER"
    assert cfg.scenario.startup_delay_s == 1.5
    assert cfg.monitor.host == "broker.local"
    assert cfg.monitor.port == 1883
    assert [d.id for d in cfg.devices] == ["AGV_01", "CELL_01"]
    assert cfg.devices[0].travel_interval == 0.5
    # relative to the config file, not the working directory
    assert cfg.scenario.path == os.path.join(str(tmp_path.resolve()), "scenarios", "demo.json")


def test_env_overrides_file(tmp_path, monkeypatch):
    path = write(tmp_path, "monitor: {host: broker.local, port: 1884}\nserver: {port: 9100}\n")
    monkeypatch.setenv("FLEETLINK_MQTT_HOST", "mqtt.prod")
    monkeypatch.setenv("FLEETLINK_MQTT_PORT", "8883")
    monkeypatch.setenv("FLEETLINK_TOPIC_PREFIX", "plant2/v1")
    monkeypatch.setenv("FLEETLINK_PORT", "9200")
    cfg = load_config(path)
    assert cfg.monitor.host == "mqtt.prod"
    assert cfg.monitor.port == 8883
    assert cfg.monitor.topic_prefix == "plant2/v1"
    assert cfg.server.port == 9200


def test_missing_file(tmp_path):
    with pytest.raises(FileNotFoundError):
        load_config(str(tmp_path / "nope.yaml"))


def test_non_mapping_file(tmp_path):
    with pytest.raises(ValueError):
        load_config(write(tmp_path, "- just\n- a list\n"))


def test_unknown_device_type(tmp_path):
    with pytest.raises(ValidationError):
        load_config(write(tmp_path, "devices:\n  - {id: FORKLIFT_1, type: FORKLIFT}\n"))
