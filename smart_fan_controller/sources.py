"""Reading sources: real hardware, or a simulation for demo mode."""

import logging
import random
from collections.abc import Callable
from typing import Protocol

from smart_fan_controller.config import Config
from smart_fan_controller.gpu import read_nvidia_gpu
from smart_fan_controller.ipmi import IpmiTool
from smart_fan_controller.readings import CpuReading, GpuDevice, GpuReading
from smart_fan_controller.temperature import read_ipmi_cpu, read_psutil_cpu

log = logging.getLogger(__name__)


class ReadingSource(Protocol):
    """Supplies CPU and GPU readings on demand. Both calls raise OSError on failure."""

    def read_cpu(self) -> CpuReading: ...

    def read_gpu(self) -> GpuReading: ...


class HardwareSource:
    """CPU temperatures from the BMC (or psutil), GPU temperatures from nvidia-smi."""

    def __init__(self, config: Config, ipmi: IpmiTool) -> None:
        self._config = config
        self._ipmi = ipmi

    def read_cpu(self) -> CpuReading:
        if self._config.cpu_source == "psutil":
            return read_psutil_cpu()
        return read_ipmi_cpu(self._ipmi)

    def read_gpu(self) -> GpuReading:
        gpu = self._config.gpu
        if not gpu.enabled:
            return GpuReading.empty()
        return read_nvidia_gpu(gpu.nvidia_smi_path, gpu.timeout)


# Simulated temperature bounds (°C)
SIM_CPU_BASE, SIM_CPU_RANGE = 42.0, (35.0, 80.0)
SIM_GPU_BASES, SIM_GPU_RANGE = (38.0, 36.0), (32.0, 85.0)
SIM_GPU_NAME = "Tesla P40 (Simulated)"
SIM_GPU_MEMORY_MB = 24576


def _clamp(value: float, bounds: tuple[float, float]) -> float:
    return max(bounds[0], min(bounds[1], value))


class SimulatedSource:
    """Synthetic temperatures that heat up while workload hints are active.

    All simulation state lives on the instance, so several controllers can
    run side by side. The load probe is normally the controller's
    ``has_active_hints``; attach it with :meth:`attach_load_probe`.
    """

    def __init__(self, seed: int | None = None) -> None:
        self.cpu_base = SIM_CPU_BASE
        self.gpu_bases = list(SIM_GPU_BASES)
        self._random = random.Random(seed)
        self._load_probe: Callable[[], bool] = lambda: False

    def attach_load_probe(self, probe: Callable[[], bool]) -> None:
        self._load_probe = probe

    def read_cpu(self) -> CpuReading:
        loaded = self._load_probe()
        self.cpu_base = _clamp(self.cpu_base + (0.3 if loaded else -0.1), SIM_CPU_RANGE)

        base = int(self.cpu_base)
        return CpuReading.from_temps([base + self._random.randrange(3) for _ in range(2)])

    def read_gpu(self) -> GpuReading:
        loaded = self._load_probe()
        devices = []
        for i, base in enumerate(self.gpu_bases):
            base = _clamp(base + (0.5 if loaded else -0.15), SIM_GPU_RANGE)
            self.gpu_bases[i] = base

            devices.append(GpuDevice(
                index=i,
                name=SIM_GPU_NAME,
                temp=int(base) + self._random.randrange(2),
                utilization=85 + self._random.randrange(15) if loaded else 0,
                memory_used=2048 + self._random.randrange(600),
                memory_total=SIM_GPU_MEMORY_MB,
                power_draw=220 + self._random.randrange(30) if loaded else 45,
            ))
        return GpuReading.from_devices(devices)
