"""Workload hints and the manual override, with lazy expiry."""

import logging
from dataclasses import dataclass, replace

from smart_fan_controller.readings import isoformat

log = logging.getLogger(__name__)

# Minimum fan speed (%) imposed by a hint of each intensity
INTENSITY_FLOORS: dict[str, int] = {
    "high": 45,
    "medium": 25,
    "low": 15,
}
DEFAULT_FLOOR = INTENSITY_FLOORS["medium"]


def min_fan_speed_for(intensity: str) -> int:
    """Map a hint intensity to its fan speed floor. Unknown intensities get the medium floor."""
    return INTENSITY_FLOORS.get(intensity, DEFAULT_FLOOR)


@dataclass(frozen=True)
class WorkloadHint:
    """An external signal that a workload is running, keyed by ``source``."""

    kind: str
    action: str
    intensity: str
    source: str
    min_fan_speed: int = 0
    created_at: float = 0.0
    expires_at: float | None = None

    def is_expired(self, now: float) -> bool:
        return self.expires_at is not None and now >= self.expires_at

    def to_dict(self) -> dict:
        return {
            "type": self.kind,
            "action": self.action,
            "intensity": self.intensity,
            "source": self.source,
            "min_fan_speed": self.min_fan_speed,
            "created_at": isoformat(self.created_at),
            "expires_at": isoformat(self.expires_at),
        }


@dataclass(frozen=True)
class Override:
    """A manual fan speed that replaces automatic control while active."""

    speed: int
    reason: str
    created_at: float
    expires_at: float | None = None

    def is_expired(self, now: float) -> bool:
        return self.expires_at is not None and now >= self.expires_at

    def to_dict(self) -> dict:
        return {
            "speed": self.speed,
            "reason": self.reason,
            "created_at": isoformat(self.created_at),
            "expires_at": isoformat(self.expires_at),
        }


class HintRegistry:
    """Active hints (unique by source) plus at most one override.

    Not thread-safe on its own: the owning controller serializes access.
    Expired entries are only dropped by :meth:`evict_expired`.
    """

    def __init__(self) -> None:
        self._hints: dict[str, WorkloadHint] = {}
        self._override: Override | None = None

    @property
    def hints(self) -> tuple[WorkloadHint, ...]:
        return tuple(self._hints.values())

    @property
    def override(self) -> Override | None:
        return self._override

    def add_hint(self, hint: WorkloadHint, now: float, duration: float = 0) -> WorkloadHint:
        """Register a hint, replacing any previous hint from the same source.

        ``duration`` > 0 sets the expiry relative to ``now``; otherwise the
        hint keeps its own ``expires_at`` (None means it never expires).
        """
        expires_at = now + duration if duration > 0 else hint.expires_at
        stored = replace(
            hint,
            min_fan_speed=min_fan_speed_for(hint.intensity),
            created_at=now,
            expires_at=expires_at,
        )
        self._hints[stored.source] = stored
        log.info(
            "Hint registered: %s from %s (min fan: %d%%)",
            stored.action, stored.source, stored.min_fan_speed,
        )
        return stored

    def remove_hint(self, source: str) -> bool:
        removed = self._hints.pop(source, None) is not None
        log.info("Hint removed: %s", source)
        return removed

    def set_override(self, speed: int, duration: float, reason: str, now: float) -> Override:
        """Replace the override. ``duration`` <= 0 means it never expires.

        Raises ValueError if speed is outside 0-100.
        """
        if not (0 <= speed <= 100):
            raise ValueError(f"Override speed must be 0-100, got {speed}")

        self._override = Override(
            speed=speed,
            reason=reason,
            created_at=now,
            expires_at=now + duration if duration > 0 else None,
        )
        log.info("Override set: %d%% (%s)", speed, reason)
        return self._override

    def clear_override(self) -> bool:
        cleared = self._override is not None
        self._override = None
        log.info("Override cleared")
        return cleared

    def evict_expired(self, now: float) -> int:
        """Drop hints and the override whose expiry has passed. Returns the number dropped."""
        expired = [source for source, hint in self._hints.items() if hint.is_expired(now)]
        for source in expired:
            del self._hints[source]
            log.info("Hint expired: %s", source)

        evicted = len(expired)
        if self._override is not None and self._override.is_expired(now):
            log.info("Override expired: %d%% (%s)", self._override.speed, self._override.reason)
            self._override = None
            evicted += 1
        return evicted

    def hint_floor(self, now: float | None = None) -> int:
        """Highest minimum fan speed among hints (ignoring expired ones when ``now`` is given)."""
        return max(
            (h.min_fan_speed for h in self._hints.values()
             if now is None or not h.is_expired(now)),
            default=0,
        )
