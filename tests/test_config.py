from __future__ import annotations

import pytest

from carsync.config import CarSyncConfig, MqttSettings
from carsync.exceptions import CarSyncConfigError


def test_defaults() -> None:
    config = CarSyncConfig()

    assert config.target_vehicle_ids == frozenset({1})
    assert config.flush_interval == 5.0
    assert config.battery_cell_count == 2
    assert config.ack_rejected is True
    assert config.mqtt == MqttSettings()
    assert config.is_target(1)
    assert not config.is_target(2)


def test_from_env(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("CARSYNC_TARGET_VEHICLE_IDS", "1, 4")
    monkeypatch.setenv("CARSYNC_FLUSH_INTERVAL", "2.5")
    monkeypatch.setenv("CARSYNC_BATTERY_CELL_COUNT", "3")
    monkeypatch.setenv("CARSYNC_ACK_REJECTED", "no")
    monkeypatch.setenv("CARSYNC_MQTT_HOST", "broker.local")
    monkeypatch.setenv("CARSYNC_MQTT_PORT", "8883")
    monkeypatch.setenv("CARSYNC_MQTT_TLS", "true")
    monkeypatch.setenv("CARSYNC_STORE_URL", "http://store.local/states")

    config = CarSyncConfig.from_env()

    assert config.target_vehicle_ids == frozenset({1, 4})
    assert config.flush_interval == 2.5
    assert config.battery_cell_count == 3
    assert config.ack_rejected is False
    assert config.mqtt.host == "broker.local"
    assert config.mqtt.port == 8883
    assert config.mqtt.tls is True
    assert config.store_url == "http://store.local/states"


def test_overrides_take_precedence(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("CARSYNC_FLUSH_INTERVAL", "2.5")
    monkeypatch.setenv("CARSYNC_MQTT_HOST", "broker.local")

    config = CarSyncConfig.from_env(flush_interval=1.0, target_vehicle_ids=[7], mqtt={"port": 1884})

    assert config.flush_interval == 1.0
    assert config.target_vehicle_ids == frozenset({7})
    assert config.mqtt.host == "broker.local"
    assert config.mqtt.port == 1884


@pytest.mark.parametrize(
    "key,value",
    [
        ("CARSYNC_TARGET_VEHICLE_IDS", "one"),
        ("CARSYNC_FLUSH_INTERVAL", "soon"),
        ("CARSYNC_MQTT_PORT", "http"),
        ("CARSYNC_FLUSH_INTERVAL", "0"),
    ],
)
def test_invalid_env_raises(monkeypatch: pytest.MonkeyPatch, key: str, value: str) -> None:
    monkeypatch.setenv(key, value)
    with pytest.raises(CarSyncConfigError):
        CarSyncConfig.from_env()


def test_empty_target_set_rejected() -> None:
    with pytest.raises(CarSyncConfigError):
        CarSyncConfig(target_vehicle_ids=frozenset())
