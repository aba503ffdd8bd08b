"""Tests for consumption forecasts and battery budget allocation."""
from datetime import datetime

import pytest

from custom_components.effekttariff.config import build_config
from custom_components.effekttariff.forecasting import (
    allocate_budget,
    calculate_budgeted_discharge,
    ensure_forecast,
    fold_completed_interval,
    generate_forecast,
    generate_from_history,
    generate_time_based,
    identify_peak_periods,
    normalize_external,
    record_discharge_energy,
    update_historical_data,
)
from custom_components.effekttariff.models import (
    CompletedInterval,
    DayHistory,
    EngineState,
    Forecast,
    ForecastPeriod,
    PeriodKey,
)

NOW = datetime(2024, 1, 10, 5, 0)  # Wednesday


@pytest.fixture
def config():
    return build_config(None, {"peak_hours_start": 7, "peak_hours_end": 21, "peak_season_only": False})


def _evening_profile():
    hourly = [500.0] * 24
    hourly[7] = 3000.0
    for hour in range(17, 21):
        hourly[hour] = 4000.0
    return hourly


class TestTimeBased:
    """Fixed morning and evening windows."""

    def test_default_windows(self, config):
        forecast = generate_time_based(config.forecast, NOW)

        assert forecast.source == "time-based"
        assert [p.key for p in forecast.periods] == [PeriodKey(6, 9), PeriodKey(17, 21)]
        assert forecast.periods[0].expected_peak_w == pytest.approx(1500.0)
        assert forecast.periods[1].expected_peak_w == pytest.approx(5000.0)

    def test_empty_window_is_dropped(self):
        config = build_config(None, {"morning_peak_start": 9, "morning_peak_end": 9})
        forecast = generate_time_based(config.forecast, NOW)
        assert [p.key for p in forecast.periods] == [PeriodKey(17, 21)]


class TestPeakPeriods:
    """Detection of contiguous high-consumption hours."""

    def test_contiguous_periods(self, config):
        periods = identify_peak_periods(_evening_profile(), config)

        assert [(p.start, p.end) for p in periods] == [(7, 8), (17, 21)]
        assert periods[0].weight == pytest.approx(0.75)
        assert periods[1].expected_peak_w == 4000.0
        assert periods[1].weight == pytest.approx(1.0)

    def test_period_closed_at_window_end(self):
        config = build_config(None, {"peak_hours_start": 7, "peak_hours_end": 19})
        periods = identify_peak_periods(_evening_profile(), config)
        assert periods[-1].key == PeriodKey(17, 19)

    def test_no_consumption(self, config):
        assert identify_peak_periods([0.0] * 24, config) == []

    def test_default_windows_when_nothing_qualifies(self, config):
        hourly = [0.0] * 24
        hourly[2] = 10000.0  # outside the billing window
        hourly[8] = 4000.0
        hourly[18] = 2000.0

        periods = identify_peak_periods(hourly, config)

        assert [(p.start, p.end) for p in periods] == [(6, 10)]
        assert periods[0].expected_peak_w == 4000.0
        assert periods[0].weight == pytest.approx(0.4)


class TestHistory:
    """Per-weekday learned profiles."""

    def test_running_mean(self):
        data = {}
        update_historical_data(data, 2, 18, 1000.0)
        day = update_historical_data(data, 2, 18, 2000.0)

        assert day.hourly_averages[18] == 1500
        assert day.sample_counts[18] == 2
        assert day.learned_hours == 1

    def test_sample_count_capped(self):
        data = {0: DayHistory()}
        data[0].sample_counts[12] = 100
        data[0].hourly_averages[12] = 1000.0

        update_historical_data(data, 0, 12, 1000.0)

        assert data[0].sample_counts[12] == 100

    def test_quarter_hours_fold_into_one_sample(self):
        config = build_config("fluvius")
        state = EngineState()
        for minute, watts in [(0, 2000.0), (15, 3000.0), (30, 4000.0)]:
            interval = CompletedInterval(datetime(2024, 1, 10, 18, minute), watts, watts, False)
            assert fold_completed_interval(state, config, interval) is None

        day = fold_completed_interval(
            state, config, CompletedInterval(datetime(2024, 1, 10, 18, 45), 5000.0, 5000.0, False)
        )

        assert day.hourly_averages[18] == 3500
        assert day.sample_counts[18] == 1
        assert state.history_hour_start is None
        assert state.history_hour_values == []

    def test_hour_cut_short_is_folded_when_next_hour_starts(self):
        config = build_config("fluvius")
        state = EngineState()
        fold_completed_interval(state, config, CompletedInterval(datetime(2024, 1, 10, 18, 0), 2000.0, 2000.0, False))
        fold_completed_interval(state, config, CompletedInterval(datetime(2024, 1, 10, 18, 15), 4000.0, 4000.0, False))

        fold_completed_interval(state, config, CompletedInterval(datetime(2024, 1, 10, 20, 0), 1000.0, 1000.0, False))

        assert state.historical_data[2].hourly_averages[18] == 3000
        assert state.historical_data[2].sample_counts[18] == 1
        assert state.historical_data[2].sample_counts[20] == 0
        assert state.history_hour_values == [1000.0]

    def test_full_hours_fold_immediately(self, config):
        state = EngineState()

        day = fold_completed_interval(
            state, config, CompletedInterval(datetime(2024, 1, 10, 18, 0), 2500.0, 2500.0, False)
        )

        assert day.sample_counts[18] == 1

    def test_partial_history_uses_time_based(self, config):
        data = {}
        update_historical_data(data, NOW.weekday(), 18, 4000.0)

        forecast = generate_from_history(data, NOW, config)

        assert forecast.source == "time-based"

    def test_full_history(self, config):
        data = {NOW.weekday(): DayHistory(hourly_averages=_evening_profile(), sample_counts=[1] * 24)}

        forecast = generate_from_history(data, NOW, config)

        assert forecast.source == "historical"
        assert [p.key for p in forecast.periods] == [PeriodKey(7, 8), PeriodKey(17, 21)]


class TestExternal:
    """Normalization of external forecast payloads."""

    def test_flat_hourly_list(self, config):
        forecast = normalize_external(_evening_profile(), NOW, config)

        assert forecast.source == "external"
        assert [p.key for p in forecast.periods] == [PeriodKey(7, 8), PeriodKey(17, 21)]

    def test_hourly_objects(self, config):
        payload = {"hourly": [{"hour": h, "expectedW": v} for h, v in enumerate(_evening_profile())]}
        forecast = normalize_external(payload, NOW, config)
        assert forecast.periods[-1].key == PeriodKey(17, 21)

    def test_explicit_periods(self, config):
        payload = {"periods": [{"start": 17, "end": 20, "expectedPeakW": 4000}]}

        forecast = normalize_external(payload, NOW, config)

        assert forecast.periods[0].key == PeriodKey(17, 20)
        assert forecast.periods[0].expected_peak_w == 4000.0
        assert forecast.periods[0].weight == 1.0

    @pytest.mark.parametrize("payload", [None, "tomorrow", {}, [1.0, 2.0], {"periods": [{"start": "x", "end": 3}]}])
    def test_malformed_payload(self, config, payload):
        assert normalize_external(payload, NOW, config) is None

    def test_fallback_source(self):
        config = build_config(None, {"forecast_source": "external"})
        forecast = generate_forecast(config, {}, NOW, external="garbage")

        assert forecast.source == "external-fallback"
        assert len(forecast.periods) == 2


class TestBudget:
    """Allocation of battery energy to forecast periods."""

    def test_proportional_split(self):
        forecast = Forecast(
            periods=[ForecastPeriod(6, 9, 1000.0, 1.0), ForecastPeriod(17, 21, 3000.0, 3.0)],
            source="time-based",
            generated_at=NOW,
        )

        allocate_budget(forecast, 2000.0, 20.0)

        assert forecast.buffer_wh == pytest.approx(400.0)
        assert forecast.total_budget_wh == pytest.approx(1600.0)
        assert forecast.periods[0].budget_wh == pytest.approx(400.0)
        assert forecast.periods[1].budget_wh == pytest.approx(1200.0)

    def test_zero_weights_split_equally(self):
        forecast = Forecast(
            periods=[ForecastPeriod(6, 9, 0.0, 0.0), ForecastPeriod(17, 21, 0.0, 0.0)],
            source="external",
            generated_at=NOW,
        )

        allocate_budget(forecast, 1000.0, 0.0)

        assert [p.budget_wh for p in forecast.periods] == [pytest.approx(500.0), pytest.approx(500.0)]

    def test_battery_budget_only_when_enabled(self):
        disabled = generate_forecast(build_config(None, {"forecast_source": "time-based"}), {}, NOW)
        assert all(p.budget_wh is None for p in disabled.periods)

        enabled = generate_forecast(
            build_config(
                None,
                {"forecast_source": "time-based", "battery_enabled": True, "batt_capacity_wh": 10000, "batt_soc_buffer": 20},
            ),
            {},
            NOW,
        )
        assert enabled.total_budget_wh == pytest.approx(1600.0)

    def test_no_forecast_means_greedy(self, config):
        result = calculate_budgeted_discharge(config, {}, None, 18, 6000.0, 80.0, 20.0, 10000.0)
        assert result["use_budget"] is False
        assert result["reason"] == "no forecast"

    def test_discharge_uses_remaining_budget(self):
        config = build_config(None, {"minimum_limit_w": 4000, "batt_max_disch_w": 5000})
        forecast = Forecast(periods=[ForecastPeriod(17, 21, 5000.0, 1.0, budget_wh=1200.0)], source="x", generated_at=NOW)

        result = calculate_budgeted_discharge(
            config, {PeriodKey(17, 21): 600.0}, forecast, 20, 9000.0, 80.0, 20.0, 10000.0
        )

        assert result["discharge_w"] == 600
        assert result["remaining_budget_wh"] == 600
        assert result["period"] == {"start": 17, "end": 21, "budget_wh": 1200, "used_wh": 600}

    def test_battery_empty(self, config):
        forecast = Forecast(periods=[ForecastPeriod(17, 21, 5000.0, 1.0, budget_wh=1200.0)], source="x", generated_at=NOW)
        result = calculate_budgeted_discharge(config, {}, forecast, 18, 9000.0, 20.0, 20.0, 10000.0)
        assert result["reason"] == "battery at minimum SOC"
        assert result["discharge_w"] == 0


class TestEnsureForecast:
    """Daily regeneration and fallback upgrade."""

    def test_disabled_source(self, config):
        assert ensure_forecast(EngineState(), config, NOW) is None

    def test_cached_for_the_day(self):
        config = build_config(None, {"forecast_source": "time-based"})
        state = EngineState()

        first = ensure_forecast(state, config, NOW)
        second = ensure_forecast(state, config, NOW.replace(hour=18))

        assert first is second
        assert state.forecast_date == "2024-01-10"

    def test_fallback_upgraded_keeps_spend(self):
        config = build_config(None, {"forecast_source": "external"})
        state = EngineState()

        fallback = ensure_forecast(state, config, NOW)
        record_discharge_energy(state, PeriodKey(17, 21), 250.0)
        upgraded = ensure_forecast(state, config, NOW.replace(hour=8), external=_evening_profile())

        assert fallback.source == "external-fallback"
        assert upgraded.source == "external"
        assert state.period_energy_used == {PeriodKey(17, 21): 250.0}

    def test_record_discharge_ignores_negative(self):
        state = EngineState()
        record_discharge_energy(state, PeriodKey(6, 9), 100.0)
        assert record_discharge_energy(state, PeriodKey(6, 9), -50.0) == 100.0
