"""Tests for option merging, validation and presets."""
import pytest
import voluptuous as vol

from custom_components.effekttariff.config import build_config, config_from_entry, merge_options
from custom_components.effekttariff.const import DEFAULTS, PRESETS
from custom_components.effekttariff.models import (
    BillingMode,
    ForecastSource,
    LearningMode,
    RankedAverageBilling,
    SingleRollingPeakBilling,
)


class TestBuildConfig:
    """Building a TariffConfig from defaults, presets and overrides."""

    def test_defaults(self):
        config = build_config()

        assert isinstance(config.billing, RankedAverageBilling)
        assert config.mode == BillingMode.RANKED_AVERAGE
        assert config.peak_count == 3
        assert config.interval_minutes == 60
        assert config.minimum_limit_w == 4000.0
        assert config.learning_mode == LearningMode.FIXED_MINIMUM
        assert config.forecast.source == ForecastSource.NONE
        assert config.battery.enabled is False
        assert len(config.dynamic_headroom.rules) == 3

    def test_single_peak_preset(self):
        config = build_config("fluvius")

        assert isinstance(config.billing, SingleRollingPeakBilling)
        assert config.billing.rolling_average is True
        assert config.billing.rolling_months == 12
        assert config.peak_count == 1
        assert config.interval_minutes == 15
        assert config.phases == 1

    def test_overrides_win_over_preset(self):
        config = build_config("vattenfall", {"peak_count": 4, "headroom_w": 0})

        assert config.peak_count == 4
        assert config.weekdays_only is True
        assert config.headroom_w == 0.0

    def test_values_are_coerced(self):
        config = build_config(None, {"peak_count": "5", "minimum_limit_w": "2500"})
        assert config.peak_count == 5
        assert config.minimum_limit_w == 2500.0

    @pytest.mark.parametrize("preset", sorted(PRESETS))
    def test_every_preset_builds(self, preset):
        assert build_config(preset).interval_minutes in (15, 30, 60)

    def test_unknown_preset(self):
        with pytest.raises(ValueError):
            build_config("nope")

    @pytest.mark.parametrize(
        "overrides",
        [
            {"interval_minutes": 20},
            {"peak_hours_start": 24},
            {"peak_season_start": 13},
            {"billing_mode": "max"},
            {"headroom_rules": [{"soc_below": 20}]},
            {"downtime_action": "backfill"},
        ],
    )
    def test_invalid_options(self, overrides):
        with pytest.raises(vol.Invalid):
            build_config(None, overrides)


class TestEntryOptions:
    """Flat config entry data."""

    def test_none_overrides_are_ignored(self):
        merged = merge_options(None, {"peak_count": None})
        assert merged["peak_count"] == DEFAULTS["peak_count"]

    def test_entry_with_preset_and_entities(self):
        config = config_from_entry(
            {
                "preset": "ellevio",
                "grid_power_entity": "sensor.grid_power",
                "batt_soc_entity": "sensor.battery_soc",
                "headroom_w": 500,
            }
        )

        assert config.night_discount is True
        assert config.peak_hours_start == 0
        assert config.peak_hours_end == 24
        assert config.headroom_w == 500.0

    def test_defaults_are_not_mutated(self):
        merge_options("fluvius", {"peak_count": 9})
        assert DEFAULTS["peak_count"] == 3
        assert DEFAULTS["interval_minutes"] == 60
