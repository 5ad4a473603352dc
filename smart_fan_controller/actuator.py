"""Fan actuators: IPMI raw commands, or a no-op stand-in for demo mode."""

import logging
from typing import Protocol

from smart_fan_controller.ipmi import IpmiTool
from smart_fan_controller.protocol import IpmiProtocol

log = logging.getLogger(__name__)


class FanActuator(Protocol):
    """Applies fan duty cycles. Every call raises OSError on failure."""

    def enable_manual(self) -> None: ...

    def restore_auto(self) -> None: ...

    def set_fan_speed(self, speed_percent: int) -> None: ...


class IpmiFanActuator:
    """Drives the chassis fans through BMC raw commands.

    Protocol-agnostic: the command bytes come from the IpmiProtocol.
    """

    def __init__(self, ipmi: IpmiTool, protocol: IpmiProtocol) -> None:
        self._ipmi = ipmi
        self._protocol = protocol
        self._manual = False

    @property
    def manual(self) -> bool:
        return self._manual

    def enable_manual(self) -> None:
        """Take fan control away from the BMC. Raises IpmiError on failure."""
        self._ipmi.raw(self._protocol.build_enable_manual())
        self._manual = True
        log.info("Manual fan control enabled (%s)", self._protocol.name)

    def restore_auto(self) -> None:
        """Hand fan control back to the BMC. Raises IpmiError on failure."""
        self._ipmi.raw(self._protocol.build_restore_auto())
        self._manual = False
        log.info("Automatic fan control restored (%s)", self._protocol.name)

    def set_fan_speed(self, speed_percent: int) -> None:
        log.debug(
            "Setting fan speed: %d%% (byte value: %s)",
            speed_percent, self._protocol.speed_to_hex(speed_percent),
        )
        self._ipmi.raw(self._protocol.build_speed(speed_percent))


class SimulatedActuator:
    """Records the requested speed without touching hardware."""

    def __init__(self) -> None:
        self.speed: int | None = None
        self.manual = False

    def enable_manual(self) -> None:
        self.manual = True
        log.info("[demo] Would enable manual fan control")

    def restore_auto(self) -> None:
        self.manual = False
        log.info("[demo] Would restore automatic fan control")

    def set_fan_speed(self, speed_percent: int) -> None:
        self.speed = speed_percent
        log.debug("[demo] Fan speed %d%%", speed_percent)
