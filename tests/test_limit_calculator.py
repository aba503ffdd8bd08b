"""Tests for the target limit and output current."""
import pytest

from custom_components.effekttariff.config import build_config
from custom_components.effekttariff.limit_calculator import (
    calculate_target_limit,
    dynamic_headroom_w,
    to_output_current,
    watts_to_amps,
)
from custom_components.effekttariff.models import BatteryState, EngineState, PeakRecord


def _peaks(*values):
    return [
        PeakRecord(date=f"2024-01-{idx:02d}", hour=18, value=v, effective=v)
        for idx, v in enumerate(values, start=1)
    ]


@pytest.fixture
def config():
    return build_config(
        None,
        {"peak_count": 3, "headroom_w": 300, "minimum_limit_w": 2000, "peak_season_only": False},
    )


class TestTargetLimit:
    """Branches of the target limit calculation."""

    def test_plain_learning_has_no_target(self, config):
        decision = calculate_target_limit(EngineState(peaks=_peaks(5000.0)), config)

        assert decision.target_limit_w is None
        assert decision.is_learning is True
        assert decision.using_carryover is False
        assert decision.limit_reason == "learning (1/3 peaks)"

    def test_carryover_during_learning(self):
        """Test 80% of a 5000 W previous month minus 300 W headroom gives 3700 W."""
        config = build_config(
            None,
            {
                "learning_mode": "carryover-percentage",
                "previous_month_carryover": 80,
                "headroom_w": 300,
                "minimum_limit_w": 2000,
            },
        )
        state = EngineState(previous_month_peak_avg_w=5000.0)

        decision = calculate_target_limit(state, config)

        assert decision.target_limit_w == pytest.approx(3700.0)
        assert decision.is_learning is True
        assert decision.using_carryover is True
        assert decision.limit_reason == "learning (0/3) using 80% of prev month"

    def test_carryover_respects_minimum(self):
        config = build_config(
            None, {"learning_mode": "carryover-percentage", "headroom_w": 300, "minimum_limit_w": 2000}
        )
        decision = calculate_target_limit(EngineState(previous_month_peak_avg_w=2000.0), config)
        assert decision.target_limit_w == 2000.0

    def test_carryover_without_previous_month_falls_back_to_learning(self):
        config = build_config(None, {"learning_mode": "carryover-percentage"})
        decision = calculate_target_limit(EngineState(), config)
        assert decision.target_limit_w is None
        assert decision.using_carryover is False

    def test_ranked_limit_from_nth_peak(self, config):
        decision = calculate_target_limit(EngineState(peaks=_peaks(5000.0, 4000.0, 3500.0)), config)

        assert decision.target_limit_w == pytest.approx(3200.0)
        assert decision.is_learning is False
        assert decision.limit_reason == "peak#3 - headroom"

    def test_minimum_floor(self, config):
        decision = calculate_target_limit(EngineState(peaks=_peaks(2100.0, 2000.0, 1900.0)), config)

        assert decision.target_limit_w == 2000.0
        assert decision.limit_reason == "min (peaks below min)"

    def test_single_peak_mode_reason(self):
        config = build_config("fluvius", {"headroom_w": 300})
        state = EngineState(month_peak=PeakRecord(date="2024-01-05", hour=18, value=5000.0, effective=5000.0))

        decision = calculate_target_limit(state, config)

        assert decision.target_limit_w == pytest.approx(4700.0)
        assert decision.limit_reason == "month peak - headroom"


class TestDynamicHeadroom:
    """SOC dependent headroom."""

    @pytest.fixture
    def dynamic_config(self):
        return build_config(None, {"dynamic_headroom": True, "headroom_w": 300})

    @pytest.mark.parametrize("soc,expected", [(5, 1000.0), (19.9, 1000.0), (20, 500.0), (79, 500.0), (80, 200.0), (100, 200.0)])
    def test_first_matching_rule(self, dynamic_config, soc, expected):
        assert dynamic_headroom_w(dynamic_config, {"soc": soc}) == expected

    def test_falls_back_without_soc(self, dynamic_config):
        assert dynamic_headroom_w(dynamic_config, None) == 300.0
        assert dynamic_headroom_w(dynamic_config, {"soc": "unknown"}) == 300.0

    def test_disabled_uses_fixed(self):
        config = build_config(None, {"headroom_w": 300})
        assert dynamic_headroom_w(config, BatteryState(soc=5.0)) == 300.0

    def test_non_increasing_in_soc(self, dynamic_config):
        values = [dynamic_headroom_w(dynamic_config, {"soc": soc}) for soc in range(0, 101)]
        assert all(a >= b for a, b in zip(values, values[1:]))

    def test_headroom_reported_in_decision(self, dynamic_config):
        decision = calculate_target_limit(EngineState(), dynamic_config, {"soc": 10})
        assert decision.headroom_w == 1000.0


class TestOutputCurrent:
    """Conversion of watts to a per-phase current."""

    def test_watts_to_amps(self, config):
        assert watts_to_amps(6900.0, config) == pytest.approx(10.0)

    def test_learning_converts_minimum(self, config):
        # 2000 W / (3 × 230 V)
        assert to_output_current(None, config, is_learning=True) == 2.9

    def test_carryover_converts_target(self, config):
        assert to_output_current(3700.0, config, is_learning=True, using_carryover=True) == 5.4

    def test_capped_at_breaker(self, config):
        assert to_output_current(30000.0, config, is_learning=False) == 25.0

    def test_never_negative(self, config):
        assert to_output_current(-500.0, config, is_learning=False) == 0.0

    def test_missing_target_uses_breaker(self, config):
        assert to_output_current(None, config, is_learning=False) == 25.0

    @pytest.mark.parametrize("target", [None, 0.0, 1500.0, 4000.0, 17250.0, 50000.0])
    def test_bounds(self, config, target):
        for learning in (True, False):
            amps = to_output_current(target, config, learning)
            assert 0.0 <= amps <= config.max_breaker_current
