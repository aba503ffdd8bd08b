"""Tests for the monthly peak registry."""
from datetime import datetime

import pytest

from custom_components.effekttariff.config import build_config
from custom_components.effekttariff.models import (
    CompletedInterval,
    EngineState,
    MonthlyPeak,
    PeakRecord,
)
from custom_components.effekttariff.peak_registry import (
    ADDED,
    KEPT,
    SKIPPED,
    UPDATED,
    confirmed_peak_count,
    peak_average_w,
    protected_peak_w,
    record_peak,
    record_single_peak,
    roll_over_month,
    rolling_average_w,
    submit_completed_interval,
)


@pytest.fixture
def state():
    return EngineState(current_month="2024-01")


@pytest.fixture
def ranked_config():
    return build_config(None, {"peak_count": 3, "one_peak_per_day": True, "peak_season_only": False})


@pytest.fixture
def single_config():
    return build_config("fluvius", {"rolling_average": True, "rolling_months": 3})


def _peak(date, effective, hour=18):
    return PeakRecord(date=date, hour=hour, value=effective, effective=effective)


class TestRankedPeaks:
    """Top-N registry with the one-peak-per-day rule."""

    def test_same_day_only_replaced_on_improvement(self, state, ranked_config):
        assert record_peak(state, ranked_config, "2024-01-10", 8, 3000.0, 3000.0) == ADDED
        assert record_peak(state, ranked_config, "2024-01-10", 9, 2500.0, 2500.0) == KEPT
        assert record_peak(state, ranked_config, "2024-01-10", 10, 3000.0, 3000.0) == KEPT
        assert record_peak(state, ranked_config, "2024-01-10", 18, 4500.0, 4500.0) == UPDATED

        assert len(state.peaks) == 1
        assert state.peaks[0].hour == 18
        assert state.peaks[0].effective == 4500.0

    def test_list_stays_sorted(self, state, ranked_config):
        for day, value in enumerate([2000.0, 5000.0, 3000.0, 4000.0, 1000.0], start=1):
            record_peak(state, ranked_config, f"2024-01-{day:02d}", 18, value, value)

        effective = [p.effective for p in state.peaks]
        assert effective == sorted(effective, reverse=True)
        assert len(state.peaks) == 5

    def test_one_per_day_keeps_daily_maximum(self, state, ranked_config):
        submissions = [("2024-01-01", 2000.0), ("2024-01-02", 3000.0), ("2024-01-01", 3500.0), ("2024-01-02", 1000.0)]
        for date, value in submissions:
            record_peak(state, ranked_config, date, 12, value, value)

        by_date = {}
        for peak in state.peaks:
            assert peak.date not in by_date
            by_date[peak.date] = peak.effective
        assert by_date == {"2024-01-01": 3500.0, "2024-01-02": 3000.0}

    def test_multiple_per_day_trimmed_to_three_times_count(self, state):
        config = build_config(None, {"peak_count": 2, "one_peak_per_day": False})
        for hour in range(10):
            record_peak(state, config, "2024-01-10", hour, float(hour * 100), float(hour * 100))

        assert len(state.peaks) == 6
        assert [p.effective for p in state.peaks] == [900.0, 800.0, 700.0, 600.0, 500.0, 400.0]

    def test_averages_and_protected_peak(self, state, ranked_config):
        state.peaks = [_peak("2024-01-01", 6000.0), _peak("2024-01-02", 5000.0), _peak("2024-01-03", 4000.0),
                       _peak("2024-01-04", 1000.0)]

        assert confirmed_peak_count(state, ranked_config) == 3
        assert peak_average_w(state, ranked_config) == pytest.approx(5000.0)
        assert protected_peak_w(state, ranked_config) == 4000.0

    def test_protected_peak_missing_while_learning(self, state, ranked_config):
        state.peaks = [_peak("2024-01-01", 6000.0)]
        assert protected_peak_w(state, ranked_config) is None
        assert peak_average_w(state, ranked_config) == pytest.approx(6000.0)

    def test_empty_average_is_zero(self, state, ranked_config):
        assert peak_average_w(state, ranked_config) == 0.0


class TestSinglePeak:
    """Monthly maximum for single-peak billing."""

    def test_lower_value_is_kept_out(self, state):
        assert record_single_peak(state, "2024-01-10", 18, 5000.0, 5000.0) == ADDED
        assert record_single_peak(state, "2024-01-11", 18, 4000.0, 4000.0) == KEPT

        assert state.month_peak.value == 5000.0
        assert state.month_peak.date == "2024-01-10"

    def test_tie_keeps_existing(self, state):
        record_single_peak(state, "2024-01-10", 18, 5000.0, 5000.0)
        assert record_single_peak(state, "2024-01-12", 9, 5000.0, 5000.0) == KEPT
        assert state.month_peak.date == "2024-01-10"

    def test_higher_value_updates(self, state):
        record_single_peak(state, "2024-01-10", 18, 5000.0, 5000.0)
        assert record_single_peak(state, "2024-01-12", 9, 6000.0, 6000.0) == UPDATED
        assert state.month_peak.hour == 9

    def test_rolling_average_uses_history(self, state, single_config):
        state.month_peak = _peak("2024-04-02", 5000.0)
        state.monthly_history = [
            MonthlyPeak("2024-03", 4000.0),
            MonthlyPeak("2024-02", 6000.0),
            MonthlyPeak("2024-01", 8000.0),
        ]

        assert rolling_average_w(state, single_config) == pytest.approx(5000.0)

    def test_rolling_average_disabled(self, state):
        config = build_config("fluvius", {"rolling_average": False})
        state.month_peak = _peak("2024-04-02", 5000.0)
        assert rolling_average_w(state, config) is None


class TestSubmitAndRollover:
    """Routing completed periods and closing the month."""

    def test_skips_outside_peak_hours(self, state):
        config = build_config(None, {"peak_season_only": False, "peak_hours_start": 7, "peak_hours_end": 21})
        interval = CompletedInterval(
            period_start=datetime(2024, 1, 10, 3, 0), average_w=9000.0, effective_w=9000.0, was_night=True
        )

        assert submit_completed_interval(state, config, interval) == SKIPPED
        assert state.peaks == []

    def test_routes_to_single_peak(self, state, single_config):
        interval = CompletedInterval(
            period_start=datetime(2024, 1, 10, 18, 45), average_w=4200.0, effective_w=4200.0, was_night=False
        )

        assert submit_completed_interval(state, single_config, interval) == ADDED
        assert state.month_peak.minute == 45
        assert state.peaks == []

    def test_rollover_snapshots_average(self, state, ranked_config):
        state.peaks = [_peak("2024-01-01", 6000.0), _peak("2024-01-02", 5000.0), _peak("2024-01-03", 4000.0)]
        state.period_samples = 4
        state.last_hour = 23

        cleared = roll_over_month(state, ranked_config, "2024-02")

        assert cleared == 3
        assert state.previous_month_peak_avg_w == pytest.approx(5000.0)
        assert state.peaks == []
        assert state.current_month == "2024-02"
        assert state.period_samples == 0
        assert state.last_hour is None

    def test_rollover_without_peaks_keeps_previous_average(self, state, ranked_config):
        state.previous_month_peak_avg_w = 4321.0

        assert roll_over_month(state, ranked_config, "2024-02") == 0
        assert state.previous_month_peak_avg_w == 4321.0

    def test_rollover_pushes_rolling_history(self, state, single_config):
        state.monthly_history = [MonthlyPeak("2023-12", 1.0), MonthlyPeak("2023-11", 2.0), MonthlyPeak("2023-10", 3.0)]
        state.month_peak = _peak("2024-01-20", 4500.0)

        roll_over_month(state, single_config, "2024-02")

        assert [m.month_key for m in state.monthly_history] == ["2024-01", "2023-12", "2023-11"]
        assert state.monthly_history[0].peak_w == pytest.approx(4500.0)
        assert state.month_peak is None
