"""Rate-of-change estimate over recent temperature history."""

from collections.abc import Sequence

from smart_fan_controller.readings import TemperatureSample

TREND_WINDOW = 60.0   # seconds of history considered
MIN_SPAN = 6.0        # seconds; shorter spans report no trend


def trend(history: Sequence[TemperatureSample], now: float) -> float:
    """Temperature change in °C/minute over the last minute.

    Endpoint slope between the earliest and latest sample inside the window,
    not a regression fit. Returns 0 with fewer than two samples or when they
    span less than MIN_SPAN seconds.
    """
    cutoff = now - TREND_WINDOW
    recent = [s for s in history if s.observed_at > cutoff]
    if len(recent) < 2:
        return 0.0

    first, last = recent[0], recent[-1]
    span = last.observed_at - first.observed_at
    if span < MIN_SPAN:
        return 0.0

    return (last.value - first.value) / (span / 60.0)
