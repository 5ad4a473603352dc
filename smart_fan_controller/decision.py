"""Threshold-based fan speed decisions with hysteresis and cooldown."""

import logging
from collections.abc import Iterable
from dataclasses import dataclass
from enum import Enum

from smart_fan_controller.config import FanControlConfig
from smart_fan_controller.hints import Override, WorkloadHint
from smart_fan_controller.readings import CpuReading, GpuReading

log = logging.getLogger(__name__)

# Display zone boundaries (°C); they do not drive the fan speed
HOT_CPU, HOT_GPU = 80, 85
WARM_CPU, WARM_GPU = 70, 75

# Each DEGREES_PER_STEP over threshold asks for one more step above idle
DEGREES_PER_STEP = 5


class ThermalZone(str, Enum):
    IDLE = "idle"
    ACTIVE = "active"
    WARM = "warm"
    HOT = "hot"


def classify_zone(cpu_max: int, gpu_max: int, over_threshold: bool) -> ThermalZone:
    """First match wins: hot, warm, active (over threshold), idle."""
    if cpu_max > HOT_CPU or gpu_max > HOT_GPU:
        return ThermalZone.HOT
    if cpu_max > WARM_CPU or gpu_max > WARM_GPU:
        return ThermalZone.WARM
    if over_threshold:
        return ThermalZone.ACTIVE
    return ThermalZone.IDLE


@dataclass
class HysteresisState:
    """Controller memory carried from one cycle to the next.

    ``last_over_threshold`` is None until either sensor first exceeds its
    threshold; afterwards it is the time of the latest breach and anchors
    the cooldown.
    """

    current_speed: int
    target_speed: int
    zone: ThermalZone = ThermalZone.IDLE
    last_over_threshold: float | None = None

    @classmethod
    def initial(cls, cfg: FanControlConfig) -> "HysteresisState":
        speed = cfg.clamp(cfg.effective_idle_speed)
        return cls(current_speed=speed, target_speed=speed)


def decide(
    cpu: CpuReading,
    gpu: GpuReading,
    now: float,
    state: HysteresisState,
    hints: Iterable[WorkloadHint],
    override: Override | None,
    cfg: FanControlConfig,
) -> int:
    """Compute the next fan speed (%) and record it as ``state.target_speed``.

    An active override wins outright. Otherwise speed ramps up by at most one
    step per cycle while over threshold, holds during the cooldown after the
    last breach, then steps back down toward idle. Hints only raise a floor.
    The result always lies within [min_speed, max_speed].
    """
    if override is not None and not override.is_expired(now):
        target = cfg.clamp(override.speed)
        if target != override.speed:
            log.warning(
                "Override speed %d%% outside configured limits %d-%d%%, using %d%%",
                override.speed, cfg.min_speed, cfg.max_speed, target,
            )
        state.target_speed = target
        return target

    cpu_threshold = cfg.effective_cpu_threshold
    gpu_threshold = cfg.effective_gpu_threshold
    idle_speed = cfg.effective_idle_speed
    step_size = cfg.effective_step_size

    over_threshold = cpu.max > cpu_threshold or gpu.max > gpu_threshold
    state.zone = classify_zone(cpu.max, gpu.max, over_threshold)

    current = state.current_speed
    if over_threshold:
        state.last_over_threshold = now
        over = max(0, cpu.max - cpu_threshold, gpu.max - gpu_threshold)
        needed = idle_speed + (over // DEGREES_PER_STEP + 1) * step_size
        # Never jump more than one step, never drop while over threshold
        target = min(current + step_size, max(current, needed))
    elif state.last_over_threshold is None:
        target = idle_speed
    elif now - state.last_over_threshold > cfg.effective_cooldown_delay:
        target = max(idle_speed, current - step_size)
    else:
        # Still cooling down
        target = current

    floor = max(
        (h.min_fan_speed for h in hints if not h.is_expired(now)),
        default=0,
    )
    target = cfg.clamp(max(target, floor))

    state.target_speed = target
    return target
