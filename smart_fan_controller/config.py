"""Configuration from YAML, /etc/default/smart-fan-controller, environment and CLI arguments."""

import argparse
import logging
import os
from dataclasses import asdict, dataclass, field, fields
from pathlib import Path
from typing import Any, Callable

import yaml
from dotenv import dotenv_values

from smart_fan_controller.protocol import DEFAULT_PROTOCOL_KEY, available_protocols

log = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = "/etc/smart-fan-controller/config.yaml"
DEFAULT_ENV_PATH = "/etc/default/smart-fan-controller"
VALID_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR")
VALID_CPU_SOURCES = ("ipmi", "psutil")

# Substituted when a fan control value is configured as 0
DEFAULT_IDLE_SPEED = 20
DEFAULT_CPU_THRESHOLD = 65
DEFAULT_GPU_THRESHOLD = 60
DEFAULT_STEP_SIZE = 10
DEFAULT_COOLDOWN_DELAY = 60


def _parse_bool(raw: str) -> bool:
    return raw.strip().lower() in ("true", "1", "yes")


@dataclass
class IdracConfig:
    """BMC connection. ``host == "local"`` talks to the local IPMI interface."""

    host: str = "local"
    username: str = "root"
    password: str = ""
    timeout: float = 10.0


@dataclass
class MonitoringConfig:
    interval: float = 10.0            # seconds between control cycles
    history_retention: int = 3600     # seconds of in-memory temperature history

    def __post_init__(self) -> None:
        if self.interval <= 0:
            raise ValueError(f"Monitoring interval must be positive, got {self.interval}")
        if self.history_retention <= 0:
            raise ValueError(
                f"History retention must be positive, got {self.history_retention}"
            )


@dataclass
class GpuConfig:
    enabled: bool = True
    nvidia_smi_path: str = "/usr/bin/nvidia-smi"
    timeout: float = 10.0


@dataclass(frozen=True)
class ZoneConfig:
    """A named temperature band, shown on the dashboard only."""

    name: str
    cpu_max: int
    gpu_max: int
    fan_speed: int


DEFAULT_ZONES: tuple[ZoneConfig, ...] = (
    ZoneConfig("idle", cpu_max=45, gpu_max=40, fan_speed=10),
    ZoneConfig("normal", cpu_max=60, gpu_max=70, fan_speed=25),
    ZoneConfig("warm", cpu_max=70, gpu_max=80, fan_speed=45),
    ZoneConfig("hot", cpu_max=80, gpu_max=85, fan_speed=70),
    ZoneConfig("critical", cpu_max=999, gpu_max=999, fan_speed=100),
)


@dataclass
class FanControlConfig:
    """Threshold/hysteresis tuning. Zero values fall back to built-in defaults."""

    min_speed: int = 5
    max_speed: int = 100
    idle_speed: int = DEFAULT_IDLE_SPEED
    cpu_threshold: int = DEFAULT_CPU_THRESHOLD
    gpu_threshold: int = DEFAULT_GPU_THRESHOLD
    step_size: int = DEFAULT_STEP_SIZE
    cooldown_delay: int = DEFAULT_COOLDOWN_DELAY   # seconds

    def __post_init__(self) -> None:
        if not (0 <= self.min_speed <= self.max_speed <= 100):
            raise ValueError(
                f"Fan speed limits must satisfy 0 <= min <= max <= 100, "
                f"got min={self.min_speed} max={self.max_speed}"
            )
        for name in ("idle_speed", "cpu_threshold", "gpu_threshold", "step_size", "cooldown_delay"):
            if getattr(self, name) < 0:
                raise ValueError(f"{name} must not be negative, got {getattr(self, name)}")

    @property
    def effective_idle_speed(self) -> int:
        return self.idle_speed or DEFAULT_IDLE_SPEED

    @property
    def effective_cpu_threshold(self) -> int:
        return self.cpu_threshold or DEFAULT_CPU_THRESHOLD

    @property
    def effective_gpu_threshold(self) -> int:
        return self.gpu_threshold or DEFAULT_GPU_THRESHOLD

    @property
    def effective_step_size(self) -> int:
        return self.step_size or DEFAULT_STEP_SIZE

    @property
    def effective_cooldown_delay(self) -> int:
        return self.cooldown_delay or DEFAULT_COOLDOWN_DELAY

    def clamp(self, speed: int) -> int:
        return max(self.min_speed, min(self.max_speed, speed))


@dataclass
class ApiConfig:
    host: str = "0.0.0.0"
    port: int = 8086

    def __post_init__(self) -> None:
        if not (0 < self.port < 65536):
            raise ValueError(f"API port must be 1-65535, got {self.port}")


@dataclass
class StorageConfig:
    path: str = "/var/lib/smart-fan-controller/history.db"
    retention: int = 7 * 24 * 3600   # seconds of history rows kept on disk


_SECTIONS: dict[str, type] = {
    "idrac": IdracConfig,
    "monitoring": MonitoringConfig,
    "gpu": GpuConfig,
    "fan_control": FanControlConfig,
    "api": ApiConfig,
    "storage": StorageConfig,
}


@dataclass
class Config:
    """Daemon configuration."""

    idrac: IdracConfig = field(default_factory=IdracConfig)
    monitoring: MonitoringConfig = field(default_factory=MonitoringConfig)
    gpu: GpuConfig = field(default_factory=GpuConfig)
    zones: tuple[ZoneConfig, ...] = DEFAULT_ZONES
    fan_control: FanControlConfig = field(default_factory=FanControlConfig)
    api: ApiConfig = field(default_factory=ApiConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)
    log_level: str = "INFO"
    log_file: str | None = None
    debug: bool = False
    demo: bool = False
    protocol: str = DEFAULT_PROTOCOL_KEY
    cpu_source: str = "ipmi"

    def __post_init__(self) -> None:
        if self.debug:
            self.log_level = "DEBUG"
        self.log_level = str(self.log_level).upper()

        if self.log_level not in VALID_LOG_LEVELS:
            raise ValueError(
                f"Invalid log level '{self.log_level}'. "
                f"Must be one of: {', '.join(VALID_LOG_LEVELS)}"
            )

        if self.cpu_source not in VALID_CPU_SOURCES:
            raise ValueError(
                f"Invalid CPU source '{self.cpu_source}'. "
                f"Must be one of: {', '.join(VALID_CPU_SOURCES)}"
            )

        valid_protocols = available_protocols()
        if self.protocol not in valid_protocols:
            raise ValueError(
                f"Unknown protocol '{self.protocol}'. "
                f"Available: {', '.join(sorted(valid_protocols))}"
            )

        if not self.zones:
            raise ValueError("At least one display zone must be configured")

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Config":
        """Build a Config from a nested mapping (YAML layout). Unknown keys are ignored."""
        kwargs: dict[str, Any] = {}

        for name, section_cls in _SECTIONS.items():
            section = data.get(name)
            if section is None:
                continue
            if not isinstance(section, dict):
                raise ValueError(f"Section '{name}' must be a mapping")
            kwargs[name] = section_cls(**_known_fields(section_cls, section, name))

        if (zones := data.get("zones")) is not None:
            if not isinstance(zones, list) or not all(isinstance(z, dict) for z in zones):
                raise ValueError("'zones' must be a list of mappings")
            kwargs["zones"] = tuple(
                ZoneConfig(**_known_fields(ZoneConfig, z, "zones")) for z in zones
            )

        for name in ("log_level", "log_file", "debug", "demo", "protocol", "cpu_source"):
            if data.get(name) is not None:
                kwargs[name] = data[name]

        return cls(**kwargs)

    @classmethod
    def load(cls, argv: list[str] | None = None) -> "Config":
        """Load configuration from the YAML file, environment file, env vars, and CLI args.

        Priority (highest to lowest):
        1. CLI arguments
        2. Environment variables (set by systemd EnvironmentFile or docker)
        3. /etc/default/smart-fan-controller file
        4. YAML configuration file
        5. Dataclass defaults
        """
        args = _parse_cli_args(argv)
        file_env = {k: v for k, v in dotenv_values(DEFAULT_ENV_PATH).items() if v is not None}

        def env(key: str) -> str | None:
            if key in os.environ:
                return os.environ[key]
            return file_env.get(key)

        config_path = args.config or env("CONFIG_PATH") or DEFAULT_CONFIG_PATH
        data = _load_yaml(config_path)

        for key, (section, name, convert) in _ENV_OVERRIDES.items():
            if (v := env(key)) is None:
                continue
            try:
                value = convert(v)
            except ValueError:
                log.warning("Ignoring malformed %s=%r", key, v)
                continue
            if section is None:
                data[name] = value
            else:
                data.setdefault(section, {})[name] = value

        # CLI arguments override everything
        if args.demo:
            data["demo"] = True

        if args.interval is not None:
            data.setdefault("monitoring", {})["interval"] = args.interval

        if args.api_host is not None:
            data.setdefault("api", {})["host"] = args.api_host

        if args.api_port is not None:
            data.setdefault("api", {})["port"] = args.api_port

        if args.log_level is not None:
            data["log_level"] = args.log_level

        if args.debug is True:
            data["debug"] = True

        if args.protocol is not None:
            data["protocol"] = args.protocol.lower()

        if args.cpu_source is not None:
            data["cpu_source"] = args.cpu_source

        return cls.from_dict(data)

    def sanitized(self) -> dict[str, Any]:
        """Configuration safe to expose over the API (no credentials)."""
        return {
            "idrac_host": self.idrac.host,
            "gpu_enabled": self.gpu.enabled,
            "interval": self.monitoring.interval,
            "zones": [asdict(z) for z in self.zones],
            "fan_control": asdict(self.fan_control),
            "api_port": self.api.port,
            "demo": self.demo,
            "protocol": self.protocol,
        }

    def setup_logging(self) -> None:
        """Configure logging based on this config."""
        handlers: list[logging.Handler] = [logging.StreamHandler()]
        if self.log_file:
            Path(self.log_file).parent.mkdir(parents=True, exist_ok=True)
            handlers.append(logging.FileHandler(self.log_file))

        logging.basicConfig(
            level=getattr(logging, self.log_level),
            format="[%(asctime)s] [%(levelname)s] [%(name)s] %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
            handlers=handlers,
        )


_ENV_OVERRIDES: dict[str, tuple[str | None, str, Callable[[str], Any]]] = {
    "IDRAC_HOST": ("idrac", "host", str),
    "IDRAC_USERNAME": ("idrac", "username", str),
    "IDRAC_PASSWORD": ("idrac", "password", str),
    "GPU_ENABLED": ("gpu", "enabled", _parse_bool),
    "NVIDIA_SMI_PATH": ("gpu", "nvidia_smi_path", str),
    "FAN_MIN_SPEED": ("fan_control", "min_speed", int),
    "FAN_MAX_SPEED": ("fan_control", "max_speed", int),
    "FAN_IDLE_SPEED": ("fan_control", "idle_speed", int),
    "FAN_CPU_THRESHOLD": ("fan_control", "cpu_threshold", int),
    "FAN_GPU_THRESHOLD": ("fan_control", "gpu_threshold", int),
    "FAN_STEP_SIZE": ("fan_control", "step_size", int),
    "FAN_COOLDOWN_DELAY": ("fan_control", "cooldown_delay", int),
    "CHECK_INTERVAL": ("monitoring", "interval", float),
    "HISTORY_RETENTION": ("monitoring", "history_retention", int),
    "API_HOST": ("api", "host", str),
    "API_PORT": ("api", "port", int),
    "STORAGE_PATH": ("storage", "path", str),
    "LOG_LEVEL": (None, "log_level", str.upper),
    "LOG_FILE": (None, "log_file", str),
    "DEBUG": (None, "debug", _parse_bool),
    "DEMO": (None, "demo", _parse_bool),
    "PROTOCOL": (None, "protocol", str.lower),
    "CPU_SOURCE": (None, "cpu_source", str.lower),
}


def _known_fields(cls: type, values: dict[str, Any], section: str) -> dict[str, Any]:
    """Keep only the keys ``cls`` declares, warning about the rest."""
    names = {f.name for f in fields(cls)}
    unknown = sorted(set(values) - names)
    if unknown:
        log.warning("Ignoring unknown keys in '%s': %s", section, ", ".join(unknown))
    return {k: v for k, v in values.items() if k in names}


def _load_yaml(path: str) -> dict[str, Any]:
    """Read the YAML config file. A missing file yields an empty mapping."""
    try:
        with open(path) as f:
            data = yaml.safe_load(f)
    except FileNotFoundError:
        log.warning("Could not load config from %s, using defaults", path)
        return {}
    except yaml.YAMLError as e:
        raise ValueError(f"Config file {path} is not valid YAML: {e}") from e

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValueError(f"Config file {path} must contain a mapping")
    return data


def _parse_cli_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse command-line arguments."""
    parser = argparse.ArgumentParser(
        prog="smart-fan-controller",
        description="Threshold/hysteresis fan controller for IPMI-managed servers",
    )
    parser.add_argument(
        "--config",
        help=f"Path to the YAML configuration file (default: {DEFAULT_CONFIG_PATH})",
    )
    parser.add_argument(
        "--demo",
        action="store_true",
        default=None,
        help="Run with simulated temperatures and no hardware control",
    )
    parser.add_argument(
        "--interval",
        type=float,
        help="Seconds between control cycles",
    )
    parser.add_argument(
        "--api-host",
        help="Address the HTTP API binds to",
    )
    parser.add_argument(
        "--api-port",
        type=int,
        help="Port the HTTP API listens on",
    )
    parser.add_argument(
        "--debug",
        action="store_true",
        default=None,
        help="Enable debug logging",
    )
    parser.add_argument(
        "--log-level",
        type=str.upper,
        choices=VALID_LOG_LEVELS,
        help="Log level (overrides config file)",
    )
    parser.add_argument(
        "--protocol",
        help="Raw IPMI command set (see protocols.yaml)",
    )
    parser.add_argument(
        "--cpu-source",
        choices=VALID_CPU_SOURCES,
        help="Where CPU temperatures come from",
    )
    return parser.parse_args(argv)
