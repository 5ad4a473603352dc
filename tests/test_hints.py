"""Tests for the hint/override registry."""

import pytest

from smart_fan_controller.hints import HintRegistry, WorkloadHint, min_fan_speed_for


def make_hint(source: str = "whisper", intensity: str = "high", **kwargs: object) -> WorkloadHint:
    return WorkloadHint(kind="gpu_load", action="start", intensity=intensity, source=source, **kwargs)  # type: ignore[arg-type]


class TestMinFanSpeed:
    @pytest.mark.parametrize("intensity, expected", [
        ("high", 45),
        ("medium", 25),
        ("low", 15),
        ("extreme", 25),
        ("", 25),
    ])
    def test_floors(self, intensity: str, expected: int) -> None:
        assert min_fan_speed_for(intensity) == expected


class TestHints:
    def test_add_derives_floor_and_timestamp(self) -> None:
        reg = HintRegistry()
        stored = reg.add_hint(make_hint(min_fan_speed=99), now=100.0)
        assert stored.min_fan_speed == 45
        assert stored.created_at == 100.0
        assert stored.expires_at is None
        assert reg.hints == (stored,)

    def test_same_source_replaces(self) -> None:
        reg = HintRegistry()
        reg.add_hint(make_hint(intensity="high"), now=0.0)
        reg.add_hint(make_hint(intensity="low"), now=1.0)
        assert len(reg.hints) == 1
        assert reg.hints[0].min_fan_speed == 15

    def test_duration_sets_expiry(self) -> None:
        reg = HintRegistry()
        stored = reg.add_hint(make_hint(), now=100.0, duration=300)
        assert stored.expires_at == 400.0

    def test_explicit_expiry_kept_without_duration(self) -> None:
        reg = HintRegistry()
        stored = reg.add_hint(make_hint(expires_at=150.0), now=100.0)
        assert stored.expires_at == 150.0

    def test_remove_is_idempotent(self) -> None:
        reg = HintRegistry()
        reg.add_hint(make_hint(), now=0.0)
        assert reg.remove_hint("whisper") is True
        assert reg.remove_hint("whisper") is False
        assert reg.hints == ()

    def test_hint_floor(self) -> None:
        reg = HintRegistry()
        assert reg.hint_floor() == 0
        reg.add_hint(make_hint("a", "low"), now=0.0)
        reg.add_hint(make_hint("b", "high"), now=0.0, duration=10)
        assert reg.hint_floor() == 45
        assert reg.hint_floor(now=20.0) == 15


class TestOverride:
    def test_set_and_replace(self) -> None:
        reg = HintRegistry()
        reg.set_override(60, 0, "testing", now=0.0)
        reg.set_override(80, 0, "louder", now=1.0)
        assert reg.override is not None
        assert reg.override.speed == 80
        assert reg.override.reason == "louder"

    def test_non_positive_duration_never_expires(self) -> None:
        reg = HintRegistry()
        assert reg.set_override(50, 0, "", now=0.0).expires_at is None
        assert reg.set_override(50, -5, "", now=0.0).expires_at is None

    def test_duration_sets_expiry(self) -> None:
        reg = HintRegistry()
        assert reg.set_override(50, 5, "", now=10.0).expires_at == 15.0

    @pytest.mark.parametrize("speed", [-1, 101])
    def test_out_of_range_rejected(self, speed: int) -> None:
        reg = HintRegistry()
        with pytest.raises(ValueError, match="0-100"):
            reg.set_override(speed, 0, "", now=0.0)
        assert reg.override is None

    def test_clear_is_idempotent(self) -> None:
        reg = HintRegistry()
        reg.set_override(50, 0, "", now=0.0)
        assert reg.clear_override() is True
        assert reg.clear_override() is False
        assert reg.override is None


class TestEvictExpired:
    def test_evicts_only_expired(self) -> None:
        reg = HintRegistry()
        reg.add_hint(make_hint("short"), now=0.0, duration=5)
        reg.add_hint(make_hint("forever"), now=0.0)
        reg.set_override(70, 5, "", now=0.0)

        assert reg.evict_expired(4.9) == 0
        assert reg.evict_expired(5.0) == 2
        assert [h.source for h in reg.hints] == ["forever"]
        assert reg.override is None

    def test_indefinite_override_survives(self) -> None:
        reg = HintRegistry()
        reg.set_override(70, 0, "", now=0.0)
        for now in (1.0, 1e6, 1e9):
            reg.evict_expired(now)
        assert reg.override is not None


class TestSerialization:
    def test_hint_to_dict(self) -> None:
        reg = HintRegistry()
        data = reg.add_hint(make_hint(), now=0.0, duration=60).to_dict()
        assert data["type"] == "gpu_load"
        assert data["source"] == "whisper"
        assert data["min_fan_speed"] == 45
        assert data["created_at"] == "1970-01-01T00:00:00+00:00"
        assert data["expires_at"] == "1970-01-01T00:01:00+00:00"

    def test_override_to_dict_without_expiry(self) -> None:
        reg = HintRegistry()
        data = reg.set_override(55, 0, "burn-in", now=0.0).to_dict()
        assert data == {
            "speed": 55,
            "reason": "burn-in",
            "created_at": "1970-01-01T00:00:00+00:00",
            "expires_at": None,
        }
