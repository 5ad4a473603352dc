"""The control loop: read, decide, actuate, record.

All mutable state is guarded by one reader/writer lock. Sensor reads, the
actuator call and the history write happen outside the lock; the history
update, expiry and decision for a cycle happen together under the exclusive
lock, so hint and override changes from API threads land either before or
after a cycle, never in the middle of one.
"""

import logging
import threading
import time
from collections import deque
from collections.abc import Callable
from dataclasses import dataclass
from typing import Protocol

from smart_fan_controller.actuator import FanActuator
from smart_fan_controller.config import Config, ZoneConfig
from smart_fan_controller.decision import HysteresisState, decide
from smart_fan_controller.hints import HintRegistry, Override, WorkloadHint
from smart_fan_controller.locking import ReadWriteLock
from smart_fan_controller.readings import CpuReading, GpuReading, TemperatureSample, isoformat
from smart_fan_controller.sources import ReadingSource
from smart_fan_controller.storage import StorageError
from smart_fan_controller.trend import trend

log = logging.getLogger(__name__)


class ReadingRecorder(Protocol):
    def record_reading(self, cpu_temp: int, gpu_temp: int, fan_speed: int) -> None: ...


@dataclass(frozen=True)
class Status:
    """Point-in-time snapshot of the controller."""

    timestamp: float
    cpu: CpuReading | None
    gpu: GpuReading | None
    current_speed: int
    target_speed: int
    zone: str
    mode: str
    active_hints: tuple[WorkloadHint, ...]
    override: Override | None
    cpu_trend: float
    gpu_trend: float
    zones: tuple[ZoneConfig, ...]
    cpu_threshold: int
    gpu_threshold: int
    idle_speed: int

    def to_dict(self) -> dict:
        data = {
            "timestamp": isoformat(self.timestamp),
            "cpu": self.cpu.to_dict() if self.cpu is not None else None,
            "gpu": self.gpu.to_dict() if self.gpu is not None else None,
            "current_speed": self.current_speed,
            "target_speed": self.target_speed,
            "zone": self.zone,
            "mode": self.mode,
            "active_hints": [h.to_dict() for h in self.active_hints],
            "cpu_trend": round(self.cpu_trend, 2),
            "gpu_trend": round(self.gpu_trend, 2),
            "zones": [
                {"name": z.name, "cpu_max": z.cpu_max, "gpu_max": z.gpu_max, "fan_speed": z.fan_speed}
                for z in self.zones
            ],
            "cpu_threshold": self.cpu_threshold,
            "gpu_threshold": self.gpu_threshold,
            "idle_speed": self.idle_speed,
        }
        if self.override is not None:
            data["override"] = self.override.to_dict()
        return data


class FanController:
    """Owns the hysteresis state, hints, override and temperature history.

    ``live`` controls whether stop() hands fan control back to the BMC; demo
    runs leave the (simulated) actuator alone.
    """

    def __init__(
        self,
        config: Config,
        source: ReadingSource,
        actuator: FanActuator,
        store: ReadingRecorder,
        *,
        live: bool = True,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._config = config
        self._fan_cfg = config.fan_control
        self._source = source
        self._actuator = actuator
        self._store = store
        self._live = live
        self._clock = clock

        self._lock = ReadWriteLock()
        self._state = HysteresisState.initial(self._fan_cfg)
        self._registry = HintRegistry()
        self._cpu_history: deque[TemperatureSample] = deque()
        self._gpu_history: deque[TemperatureSample] = deque()
        self._last_cpu: CpuReading | None = None
        self._last_gpu: GpuReading | None = None

        self._running = False
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None

    @property
    def running(self) -> bool:
        with self._lock.read():
            return self._running

    # --- lifecycle ---

    def start(self) -> None:
        """Enable manual fan control, run one cycle, then cycle in the background.

        Raises RuntimeError if the controller is already running.
        """
        with self._lock.write():
            if self._running:
                raise RuntimeError("Fan controller is already running")
            self._running = True
            self._stop_event.clear()

        log.info(
            "Starting fan controller (interval=%.1fs, idle=%d%%, cpu>%d°C, gpu>%d°C)",
            self._config.monitoring.interval,
            self._fan_cfg.effective_idle_speed,
            self._fan_cfg.effective_cpu_threshold,
            self._fan_cfg.effective_gpu_threshold,
        )

        try:
            self._actuator.enable_manual()
        except OSError as e:
            log.warning("Failed to enable manual fan mode: %s", e)

        try:
            self.run_cycle()
        except Exception:
            with self._lock.write():
                self._running = False
            if self._live:
                self.restore_auto()
            raise

        self._thread = threading.Thread(target=self._loop, name="fan-control", daemon=True)
        self._thread.start()

    def stop(self) -> None:
        """Stop cycling and, in live mode, restore automatic fan control.

        Idempotent: calls after the first (or before start) do nothing.
        """
        with self._lock.write():
            if not self._running:
                return
            self._running = False

        self._stop_event.set()
        if self._thread is not None and self._thread is not threading.current_thread():
            self._thread.join()
        self._thread = None

        if self._live:
            self.restore_auto()
        log.info("Fan controller stopped")

    def restore_auto(self) -> None:
        """Best-effort hand-back of fan control to the BMC."""
        try:
            self._actuator.restore_auto()
        except OSError as e:
            log.warning("Failed to restore automatic fan mode: %s", e)

    def _loop(self) -> None:
        # The wait only begins after the previous cycle returned, so cycles never overlap
        while not self._stop_event.wait(self._config.monitoring.interval):
            try:
                self.run_cycle()
            except Exception:
                log.exception("Control cycle failed, retrying next interval")

    # --- one control cycle ---

    def _read_cpu(self) -> CpuReading:
        try:
            return self._source.read_cpu()
        except OSError as e:
            log.warning("CPU read error: %s", e)
        except Exception:
            log.exception("Unexpected CPU read error")
        return CpuReading.empty()

    def _read_gpu(self) -> GpuReading:
        try:
            return self._source.read_gpu()
        except OSError as e:
            log.warning("GPU read error: %s", e)
        except Exception:
            log.exception("Unexpected GPU read error")
        return GpuReading.empty()

    def _trim_history(self, now: float) -> None:
        cutoff = now - self._config.monitoring.history_retention
        for history in (self._cpu_history, self._gpu_history):
            while history and history[0].observed_at <= cutoff:
                history.popleft()

    def run_cycle(self) -> int:
        """Run one read → decide → actuate → record cycle. Returns the commanded speed."""
        cpu = self._read_cpu()
        gpu = self._read_gpu()

        with self._lock.write():
            now = self._clock()
            self._last_cpu = cpu
            self._last_gpu = gpu
            self._cpu_history.append(TemperatureSample(cpu.max, now))
            self._gpu_history.append(TemperatureSample(gpu.max, now))
            self._trim_history(now)
            self._registry.evict_expired(now)

            target = decide(
                cpu, gpu, now, self._state,
                self._registry.hints, self._registry.override, self._fan_cfg,
            )
            self._state.current_speed = target
            zone = self._state.zone

        try:
            self._actuator.set_fan_speed(target)
        except OSError as e:
            log.warning("Failed to set fan speed: %s", e)

        try:
            self._store.record_reading(cpu.max, gpu.max, target)
        except StorageError as e:
            log.warning("Failed to record reading: %s", e)

        log.info(
            "CPU: %d°C | GPU: %d°C | Zone: %s | Fan: %d%%",
            cpu.max, gpu.max, zone.value, target,
        )
        return target

    # --- hints and overrides ---

    def add_hint(self, hint: WorkloadHint, duration: float = 0) -> WorkloadHint:
        """Register a workload hint; ``duration`` > 0 makes it expire after that many seconds."""
        with self._lock.write():
            return self._registry.add_hint(hint, self._clock(), duration)

    def remove_hint(self, source: str) -> bool:
        with self._lock.write():
            return self._registry.remove_hint(source)

    def set_override(self, speed: int, duration: float = 0, reason: str = "") -> Override:
        """Pin the fan speed. Raises ValueError if speed is outside 0-100."""
        with self._lock.write():
            return self._registry.set_override(speed, duration, reason, self._clock())

    def clear_override(self) -> bool:
        with self._lock.write():
            return self._registry.clear_override()

    def has_active_hints(self) -> bool:
        with self._lock.read():
            return bool(self._registry.hints)

    # --- status ---

    def get_status(self) -> Status:
        with self._lock.read():
            now = self._clock()
            hints = self._registry.hints
            override = self._registry.override

            if override is not None:
                mode = "override"
            elif hints:
                mode = "hinted"
            else:
                mode = "auto"

            return Status(
                timestamp=now,
                cpu=self._last_cpu,
                gpu=self._last_gpu,
                current_speed=self._state.current_speed,
                target_speed=self._state.target_speed,
                zone=self._state.zone.value,
                mode=mode,
                active_hints=hints,
                override=override,
                cpu_trend=trend(self._cpu_history, now),
                gpu_trend=trend(self._gpu_history, now),
                zones=self._config.zones,
                cpu_threshold=self._fan_cfg.effective_cpu_threshold,
                gpu_threshold=self._fan_cfg.effective_gpu_threshold,
                idle_speed=self._fan_cfg.effective_idle_speed,
            )
