"""Temperature readings produced by the reading sources."""

from dataclasses import asdict, dataclass
from datetime import datetime, timezone


class SensorError(OSError):
    """A temperature source could not produce a reading."""


def isoformat(timestamp: float | None) -> str | None:
    """Render a POSIX timestamp as an ISO-8601 UTC string."""
    if timestamp is None:
        return None
    return datetime.fromtimestamp(timestamp, tz=timezone.utc).isoformat()


@dataclass(frozen=True)
class TemperatureSample:
    """One observed maximum temperature, kept in the per-source history."""

    value: int
    observed_at: float


@dataclass(frozen=True)
class CpuReading:
    temps: tuple[int, ...]
    max: int

    @classmethod
    def from_temps(cls, temps: list[int] | tuple[int, ...]) -> "CpuReading":
        return cls(temps=tuple(temps), max=max(temps, default=0))

    @classmethod
    def empty(cls) -> "CpuReading":
        return cls(temps=(), max=0)

    def to_dict(self) -> dict:
        return {"temps": list(self.temps), "max": self.max}


@dataclass(frozen=True)
class GpuDevice:
    index: int
    name: str
    temp: int
    utilization: int    # %
    memory_used: int    # MB
    memory_total: int   # MB
    power_draw: int     # W

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass(frozen=True)
class GpuReading:
    devices: tuple[GpuDevice, ...]
    max: int

    @classmethod
    def from_devices(cls, devices: list[GpuDevice] | tuple[GpuDevice, ...]) -> "GpuReading":
        return cls(devices=tuple(devices), max=max((d.temp for d in devices), default=0))

    @classmethod
    def empty(cls) -> "GpuReading":
        return cls(devices=(), max=0)

    def to_dict(self) -> dict:
        return {"devices": [d.to_dict() for d in self.devices], "max": self.max}
