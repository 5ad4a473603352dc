"""CPU temperature reading via IPMI SDR records or psutil."""

import logging
import re

import psutil

from smart_fan_controller.ipmi import IpmiTool
from smart_fan_controller.readings import CpuReading, SensorError

log = logging.getLogger(__name__)

_DEGREES = re.compile(r"(\d+)\s*degrees")

# SDR entries that are chassis air temperatures rather than CPU packages
_AMBIENT_LABELS = ("inlet", "exhaust")

# Known CPU thermal driver names
_CPU_DRIVERS = ("coretemp", "k10temp", "zenpower")


def _plausible(temp: int) -> bool:
    return 0 < temp < 120


def parse_ipmi_temperatures(output: str) -> list[int]:
    """Extract CPU temperatures from ``ipmitool sdr type temperature`` output.

    Dell BMCs report CPU packages as bare "Temp" records, e.g.::

        Inlet Temp       | 04h | ok  |  7.1 | 20 degrees C
        Temp             | 0Eh | ok  |  3.1 | 33 degrees C

    Falls back to every temperature in the output if no "Temp" record matched.
    """
    lines = output.splitlines()
    temps: list[int] = []

    for line in lines:
        lower = line.lower()
        if any(label in lower for label in _AMBIENT_LABELS):
            continue
        if not line.strip().startswith("Temp"):
            continue
        if (m := _DEGREES.search(line)) and _plausible(int(m.group(1))):
            temps.append(int(m.group(1)))

    if not temps:
        for line in lines:
            if (m := _DEGREES.search(line)) and _plausible(int(m.group(1))):
                temps.append(int(m.group(1)))

    return temps


def read_ipmi_cpu(ipmi: IpmiTool) -> CpuReading:
    """Read CPU package temperatures from the BMC. Raises IpmiError on failure."""
    return CpuReading.from_temps(parse_ipmi_temperatures(ipmi.sdr_temperatures()))


def read_psutil_cpu() -> CpuReading:
    """Read per-core CPU temperatures from the local kernel sensors.

    Uses the known CPU thermal drivers if present, otherwise every sensor.
    Raises SensorError if no temperature source is available.
    """
    try:
        sensors = psutil.sensors_temperatures()
    except (AttributeError, OSError) as e:
        raise SensorError(f"psutil.sensors_temperatures() failed: {e}") from e

    if not sensors:
        raise SensorError("No temperature sensors found")

    for name in _CPU_DRIVERS:
        if name in sensors:
            temps = [int(e.current) for e in sensors[name] if e.current > 0]
            if temps:
                return CpuReading.from_temps(temps)

    # Last resort: every sensor
    temps = [int(e.current) for entries in sensors.values() for e in entries if e.current > 0]
    if not temps:
        raise SensorError("No usable temperature readings")
    log.debug("No known CPU driver, using all %d sensor readings", len(temps))
    return CpuReading.from_temps(temps)
