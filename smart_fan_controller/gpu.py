"""GPU temperature and load via nvidia-smi."""

import csv
import io
import logging
import subprocess

from smart_fan_controller.readings import GpuDevice, GpuReading, SensorError

log = logging.getLogger(__name__)

QUERY_FIELDS = (
    "index",
    "name",
    "temperature.gpu",
    "utilization.gpu",
    "memory.used",
    "memory.total",
    "power.draw",
)


def _parse_int(raw: str) -> int:
    """Parse an nvidia-smi number; "N/A" and blanks become 0, decimals are truncated."""
    raw = raw.strip()
    if raw in ("", "N/A", "[N/A]"):
        return 0
    try:
        return int(raw.split(".", 1)[0])
    except ValueError:
        return 0


def parse_nvidia_smi(output: str) -> list[GpuDevice]:
    """Parse ``--format=csv,noheader,nounits`` output into devices."""
    devices = []
    for record in csv.reader(io.StringIO(output)):
        if len(record) < len(QUERY_FIELDS):
            continue
        record = [field.strip() for field in record]
        devices.append(GpuDevice(
            index=_parse_int(record[0]),
            name=record[1],
            temp=_parse_int(record[2]),
            utilization=_parse_int(record[3]),
            memory_used=_parse_int(record[4]),
            memory_total=_parse_int(record[5]),
            power_draw=_parse_int(record[6]),
        ))
    return devices


def read_nvidia_gpu(nvidia_smi_path: str, timeout: float = 10.0) -> GpuReading:
    """Query every NVIDIA GPU. Raises SensorError if nvidia-smi fails."""
    try:
        result = subprocess.run(
            [
                nvidia_smi_path,
                f"--query-gpu={','.join(QUERY_FIELDS)}",
                "--format=csv,noheader,nounits",
            ],
            capture_output=True,
            text=True,
            timeout=timeout,
            check=True,
        )
    except FileNotFoundError as e:
        raise SensorError(f"nvidia-smi not found at {nvidia_smi_path}") from e
    except subprocess.TimeoutExpired as e:
        raise SensorError(f"nvidia-smi timed out after {timeout:.0f}s") from e
    except subprocess.CalledProcessError as e:
        raise SensorError(
            f"nvidia-smi exited with {e.returncode}: {(e.stderr or '').strip()}"
        ) from e
    except UnicodeDecodeError as e:
        raise SensorError(f"nvidia-smi printed undecodable output: {e}") from e

    return GpuReading.from_devices(parse_nvidia_smi(result.stdout))


def nvidia_smi_available(nvidia_smi_path: str) -> bool:
    try:
        subprocess.run(
            [nvidia_smi_path, "--version"], capture_output=True, timeout=10, check=True,
        )
    except (OSError, subprocess.SubprocessError):
        return False
    return True
