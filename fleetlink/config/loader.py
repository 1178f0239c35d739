import os
import yaml
from pathlib import Path
from typing import List, Literal, Optional
from pydantic import BaseModel, Field

from fleetlink.core.constants import (
    DEFAULT_ARRIVAL_DELAY_SECS, DEFAULT_SERVER_ID, DEFAULT_STARTUP_DELAY_SECS,
    DEFAULT_TCP_PORT, DEFAULT_TRAVEL_INTERVAL_SECS, DEFAULT_WORK_DURATION_SECS,
)
from .broker import apply_env_overrides, load_common_mqtt_defaults


class ServerConfig(BaseModel):
    host: str = "0.0.0.0"
    port: int = DEFAULT_TCP_PORT
    server_id: str = DEFAULT_SERVER_ID
    # None: reads block forever; a silent peer keeps its worker
    read_timeout: Optional[float] = None


class ScenarioConfig(BaseModel):
    enabled: bool = True
    path: Optional[str] = None
    startup_delay_s: float = DEFAULT_STARTUP_DELAY_SECS


class MonitorConfig(BaseModel):
    enabled: bool = True
    host: str = "localhost"
    port: int = 1883
    client_id: str = "fleetlink-relay"
    topic_prefix: str = "fleetlink/v1"
    qos: int = 0
    username: Optional[str] = None
    password: Optional[str] = None


class DeviceConfig(BaseModel):
    id: str
    type: Literal["AGV", "AMR", "CELL"]
    host: Optional[str] = None
    port: Optional[int] = None
    travel_interval: float = DEFAULT_TRAVEL_INTERVAL_SECS
    arrival_delay: float = DEFAULT_ARRIVAL_DELAY_SECS
    work_duration: float = DEFAULT_WORK_DURATION_SECS


class RelayConfig(BaseModel):
    server: ServerConfig = Field(default_factory=ServerConfig)
    scenario: ScenarioConfig = Field(default_factory=ScenarioConfig)
    monitor: MonitorConfig = Field(default_factory=MonitorConfig)
    devices: List[DeviceConfig] = Field(default_factory=list)


def load_config(path: str = None) -> RelayConfig:
    """Load a relay config from YAML. With no path, defaults plus env overrides."""
    data = {}
    base_dir = Path.cwd()
    if path is not None:
        if not os.path.exists(path):
            raise FileNotFoundError(f"Config not found: {path}")
        with open(Path(path), "r") as fh:
            data = yaml.safe_load(fh) or {}
        if not isinstance(data, dict):
            raise ValueError(f"Config {path} must be a mapping at top level")
        base_dir = Path(path).resolve().parent

    # Fill monitor defaults if missing or partial
    if not isinstance(data.get("monitor"), dict):
        data["monitor"] = {}
    for key, value in load_common_mqtt_defaults().items():
        data["monitor"].setdefault(key, value)
    apply_env_overrides(data)

    config = RelayConfig(**data)
    # scenario paths are relative to the config file
    if config.scenario.path and not os.path.isabs(config.scenario.path):
        config.scenario.path = str(base_dir / config.scenario.path)
    return config
