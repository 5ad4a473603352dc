"""Raw IPMI fan command sets.

Each IpmiProtocol describes how a BMC vendor switches between automatic and
manual fan control and how it takes a duty cycle. Definitions are loaded from
protocols.yaml; the active one is selected by name via the PROTOCOL config
parameter.
"""

from dataclasses import dataclass
from pathlib import Path

import yaml

_PROTOCOLS_FILE = Path(__file__).parent / "protocols.yaml"

DEFAULT_PROTOCOL_KEY = "dell-idrac"


@dataclass(frozen=True)
class IpmiProtocol:
    """Raw command bytes for one BMC family."""

    name: str
    enable_manual: tuple[str, ...]
    restore_auto: tuple[str, ...]
    speed_prefix: tuple[str, ...]

    def __post_init__(self) -> None:
        # YAML yields lists; keep the instance hashable and immutable
        for attr in ("enable_manual", "restore_auto", "speed_prefix"):
            object.__setattr__(self, attr, tuple(getattr(self, attr)))

    @staticmethod
    def speed_to_hex(speed_percent: int) -> str:
        """Convert a duty cycle (0-100) to the hex byte the BMC expects."""
        clamped = max(0, min(100, int(speed_percent)))
        return f"0x{clamped:02x}"

    def build_enable_manual(self) -> list[str]:
        return list(self.enable_manual)

    def build_restore_auto(self) -> list[str]:
        return list(self.restore_auto)

    def build_speed(self, speed_percent: int) -> list[str]:
        return [*self.speed_prefix, self.speed_to_hex(speed_percent)]


def _load_all() -> dict[str, dict]:
    """Load raw protocol definitions from YAML."""
    with open(_PROTOCOLS_FILE) as f:
        return yaml.safe_load(f)


def available_protocols() -> list[str]:
    """Return the list of available protocol keys."""
    return list(_load_all().keys())


def load_protocol(key: str) -> IpmiProtocol:
    """Load an IpmiProtocol by key from protocols.yaml.

    Raises KeyError if the key is not found.
    """
    protocols = _load_all()
    if key not in protocols:
        available = ", ".join(sorted(protocols.keys()))
        raise KeyError(f"Unknown protocol '{key}'. Available: {available}")
    return IpmiProtocol(**protocols[key])
