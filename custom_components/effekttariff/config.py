"""Configuration for the capacity tariff engine.

Options are kept as a flat mapping (the same keys a config entry uses), merged
from ``DEFAULTS``, an optional named preset and caller overrides, validated
with a voluptuous schema and finally frozen into a ``TariffConfig``.
"""
from __future__ import annotations

import logging
from typing import Any, Dict, Mapping, Optional

import voluptuous as vol

from .const import (
    BILLING_RANKED_AVERAGE,
    BILLING_SINGLE_ROLLING_PEAK,
    CONF_ASSUMED_DAILY_PEAK_W,
    CONF_BALANCING_ENABLED,
    CONF_BALANCING_END_HOUR,
    CONF_BALANCING_HOLD_HOURS,
    CONF_BALANCING_SOC_THRESHOLD,
    CONF_BALANCING_START_HOUR,
    CONF_BALANCING_TARGET_SOC,
    CONF_BATT_CAPACITY_WH,
    CONF_BATT_DEFAULT_MIN_SOC,
    CONF_BATT_MAX_CHARGE_W,
    CONF_BATT_MAX_DISCH_W,
    CONF_BATT_SOC_BUFFER,
    CONF_BATTERY_ENABLED,
    CONF_BILLING_MODE,
    CONF_BUDGET_BUFFER,
    CONF_DOWNTIME_ACTION,
    CONF_DOWNTIME_ENABLED,
    CONF_DOWNTIME_TRIGGER_HOURS,
    CONF_DYNAMIC_HEADROOM,
    CONF_EVENING_PEAK_END,
    CONF_EVENING_PEAK_START,
    CONF_EVENING_PEAK_WEIGHT,
    CONF_FORECAST_SOURCE,
    CONF_GRID_VOLTAGE,
    CONF_HEADROOM_RULES,
    CONF_HEADROOM_W,
    CONF_INTERVAL_MINUTES,
    CONF_LEARNING_MODE,
    CONF_MAX_BREAKER_CURRENT,
    CONF_MINIMUM_LIMIT_W,
    CONF_MORNING_PEAK_END,
    CONF_MORNING_PEAK_START,
    CONF_MORNING_PEAK_WEIGHT,
    CONF_NIGHT_DISCOUNT,
    CONF_ONE_PEAK_PER_DAY,
    CONF_PEAK_COUNT,
    CONF_PEAK_HOURS_END,
    CONF_PEAK_HOURS_START,
    CONF_PEAK_SEASON_END,
    CONF_PEAK_SEASON_ONLY,
    CONF_PEAK_SEASON_START,
    CONF_PHASES,
    CONF_PRESET,
    CONF_PREVIOUS_MONTH_CARRYOVER,
    CONF_ROLLING_AVERAGE,
    CONF_ROLLING_MONTHS,
    CONF_WEEKDAYS_ONLY,
    DEFAULTS,
    FORECAST_EXTERNAL,
    FORECAST_HISTORICAL,
    FORECAST_NONE,
    FORECAST_TIME_BASED,
    LEARNING_CARRYOVER,
    LEARNING_FIXED_MINIMUM,
    PRESETS,
)
from .models import (
    BalancingSettings,
    BatterySettings,
    DowntimeSettings,
    DynamicHeadroom,
    ForecastSettings,
    ForecastSource,
    HeadroomRule,
    LearningMode,
    RankedAverageBilling,
    SingleRollingPeakBilling,
    TariffConfig,
)

_LOGGER = logging.getLogger(__name__)

_HOUR = vol.All(vol.Coerce(int), vol.Range(min=0, max=23))
_HOUR_END = vol.All(vol.Coerce(int), vol.Range(min=1, max=24))
_MONTH = vol.All(vol.Coerce(int), vol.Range(min=1, max=12))
_PERCENT = vol.All(vol.Coerce(float), vol.Range(min=0, max=100))
_WATTS = vol.All(vol.Coerce(float), vol.Range(min=0))
_POSITIVE = vol.All(vol.Coerce(float), vol.Range(min=0, min_included=False))

HEADROOM_RULE_SCHEMA = vol.Schema(
    {
        vol.Required("soc_below"): vol.All(vol.Coerce(float), vol.Range(min=0, max=101)),
        vol.Required("headroom_w"): _WATTS,
    }
)

OPTIONS_SCHEMA = vol.Schema(
    {
        vol.Required(CONF_BILLING_MODE): vol.In([BILLING_RANKED_AVERAGE, BILLING_SINGLE_ROLLING_PEAK]),
        vol.Required(CONF_PEAK_COUNT): vol.All(vol.Coerce(int), vol.Range(min=1, max=31)),
        vol.Required(CONF_ONE_PEAK_PER_DAY): bool,
        vol.Required(CONF_ROLLING_AVERAGE): bool,
        vol.Required(CONF_ROLLING_MONTHS): vol.All(vol.Coerce(int), vol.Range(min=1, max=36)),
        vol.Required(CONF_INTERVAL_MINUTES): vol.All(vol.Coerce(int), vol.In([15, 30, 60])),
        vol.Required(CONF_PEAK_HOURS_START): _HOUR,
        vol.Required(CONF_PEAK_HOURS_END): _HOUR_END,
        vol.Required(CONF_WEEKDAYS_ONLY): bool,
        vol.Required(CONF_NIGHT_DISCOUNT): bool,
        vol.Required(CONF_PEAK_SEASON_ONLY): bool,
        vol.Required(CONF_PEAK_SEASON_START): _MONTH,
        vol.Required(CONF_PEAK_SEASON_END): _MONTH,
        vol.Required(CONF_MINIMUM_LIMIT_W): _WATTS,
        vol.Required(CONF_HEADROOM_W): _WATTS,
        vol.Required(CONF_DYNAMIC_HEADROOM): bool,
        vol.Required(CONF_HEADROOM_RULES): [HEADROOM_RULE_SCHEMA],
        vol.Required(CONF_LEARNING_MODE): vol.In([LEARNING_FIXED_MINIMUM, LEARNING_CARRYOVER]),
        vol.Required(CONF_PREVIOUS_MONTH_CARRYOVER): _PERCENT,
        vol.Required(CONF_PHASES): vol.All(vol.Coerce(int), vol.In([1, 2, 3])),
        vol.Required(CONF_GRID_VOLTAGE): _POSITIVE,
        vol.Required(CONF_MAX_BREAKER_CURRENT): _POSITIVE,
        vol.Required(CONF_BATTERY_ENABLED): bool,
        vol.Required(CONF_BATT_CAPACITY_WH): _POSITIVE,
        vol.Required(CONF_BATT_MAX_CHARGE_W): _WATTS,
        vol.Required(CONF_BATT_MAX_DISCH_W): _WATTS,
        vol.Required(CONF_BATT_SOC_BUFFER): _PERCENT,
        vol.Required(CONF_BATT_DEFAULT_MIN_SOC): _PERCENT,
        vol.Required(CONF_BALANCING_ENABLED): bool,
        vol.Required(CONF_BALANCING_SOC_THRESHOLD): _PERCENT,
        vol.Required(CONF_BALANCING_TARGET_SOC): _PERCENT,
        vol.Required(CONF_BALANCING_HOLD_HOURS): vol.All(vol.Coerce(float), vol.Range(min=0)),
        vol.Required(CONF_BALANCING_START_HOUR): _HOUR,
        vol.Required(CONF_BALANCING_END_HOUR): _HOUR_END,
        vol.Required(CONF_FORECAST_SOURCE): vol.In(
            [FORECAST_NONE, FORECAST_TIME_BASED, FORECAST_HISTORICAL, FORECAST_EXTERNAL]
        ),
        vol.Required(CONF_MORNING_PEAK_START): _HOUR,
        vol.Required(CONF_MORNING_PEAK_END): _HOUR_END,
        vol.Required(CONF_MORNING_PEAK_WEIGHT): vol.All(vol.Coerce(float), vol.Range(min=0)),
        vol.Required(CONF_EVENING_PEAK_START): _HOUR,
        vol.Required(CONF_EVENING_PEAK_END): _HOUR_END,
        vol.Required(CONF_EVENING_PEAK_WEIGHT): vol.All(vol.Coerce(float), vol.Range(min=0)),
        vol.Required(CONF_ASSUMED_DAILY_PEAK_W): _WATTS,
        vol.Required(CONF_BUDGET_BUFFER): _PERCENT,
        vol.Required(CONF_DOWNTIME_ENABLED): bool,
        vol.Required(CONF_DOWNTIME_TRIGGER_HOURS): vol.All(vol.Coerce(int), vol.Range(min=1, max=23)),
        vol.Required(CONF_DOWNTIME_ACTION): vol.In(["log", "ignore"]),
    },
    extra=vol.REMOVE_EXTRA,
)


def merge_options(preset: Optional[str] = None, overrides: Optional[Mapping[str, Any]] = None) -> Dict[str, Any]:
    """Lay DEFAULTS, the named preset and the overrides on top of each other."""
    merged: Dict[str, Any] = dict(DEFAULTS)
    if preset:
        if preset not in PRESETS:
            raise ValueError(f"Unknown tariff preset '{preset}', expected one of {sorted(PRESETS)}")
        merged.update(PRESETS[preset])
    if overrides:
        merged.update({k: v for k, v in overrides.items() if v is not None})
    return merged


def build_config(preset: Optional[str] = None, overrides: Optional[Mapping[str, Any]] = None) -> TariffConfig:
    """
    Build a validated, immutable TariffConfig.

    Args:
        preset: Optional key in PRESETS (e.g. "ellevio", "fluvius")
        overrides: Flat option mapping applied on top of the preset

    Returns:
        TariffConfig

    Raises:
        ValueError: Unknown preset
        vol.Invalid: An option is missing or out of range
    """
    options = OPTIONS_SCHEMA(merge_options(preset, overrides))
    config = options_to_config(options)
    _LOGGER.debug(
        "Built tariff config (preset=%s, mode=%s, interval=%d min)",
        preset,
        config.mode.value,
        config.interval_minutes,
    )
    return config


def config_from_entry(data: Mapping[str, Any]) -> TariffConfig:
    """Build a TariffConfig from merged config entry data + options."""
    overrides = {k: v for k, v in data.items() if k != CONF_PRESET}
    return build_config(data.get(CONF_PRESET), overrides)


def options_to_config(options: Mapping[str, Any]) -> TariffConfig:
    """Map validated flat options onto the TariffConfig structure."""
    if options[CONF_BILLING_MODE] == BILLING_SINGLE_ROLLING_PEAK:
        billing = SingleRollingPeakBilling(
            rolling_average=options[CONF_ROLLING_AVERAGE],
            rolling_months=options[CONF_ROLLING_MONTHS],
        )
    else:
        billing = RankedAverageBilling(
            peak_count=options[CONF_PEAK_COUNT],
            one_peak_per_day=options[CONF_ONE_PEAK_PER_DAY],
        )

    rules = tuple(
        HeadroomRule(soc_below=r["soc_below"], headroom_w=r["headroom_w"])
        for r in options[CONF_HEADROOM_RULES]
    )

    return TariffConfig(
        billing=billing,
        interval_minutes=options[CONF_INTERVAL_MINUTES],
        peak_hours_start=options[CONF_PEAK_HOURS_START],
        peak_hours_end=options[CONF_PEAK_HOURS_END],
        weekdays_only=options[CONF_WEEKDAYS_ONLY],
        night_discount=options[CONF_NIGHT_DISCOUNT],
        peak_season_only=options[CONF_PEAK_SEASON_ONLY],
        peak_season_start=options[CONF_PEAK_SEASON_START],
        peak_season_end=options[CONF_PEAK_SEASON_END],
        minimum_limit_w=options[CONF_MINIMUM_LIMIT_W],
        headroom_w=options[CONF_HEADROOM_W],
        dynamic_headroom=DynamicHeadroom(enabled=options[CONF_DYNAMIC_HEADROOM], rules=rules),
        learning_mode=LearningMode(options[CONF_LEARNING_MODE]),
        previous_month_carryover=options[CONF_PREVIOUS_MONTH_CARRYOVER],
        phases=options[CONF_PHASES],
        grid_voltage=options[CONF_GRID_VOLTAGE],
        max_breaker_current=options[CONF_MAX_BREAKER_CURRENT],
        battery=BatterySettings(
            enabled=options[CONF_BATTERY_ENABLED],
            capacity_wh=options[CONF_BATT_CAPACITY_WH],
            max_charge_w=options[CONF_BATT_MAX_CHARGE_W],
            max_discharge_w=options[CONF_BATT_MAX_DISCH_W],
            soc_buffer=options[CONF_BATT_SOC_BUFFER],
            default_min_soc=options[CONF_BATT_DEFAULT_MIN_SOC],
        ),
        balancing=BalancingSettings(
            enabled=options[CONF_BALANCING_ENABLED],
            soc_threshold=options[CONF_BALANCING_SOC_THRESHOLD],
            target_soc=options[CONF_BALANCING_TARGET_SOC],
            hold_hours=options[CONF_BALANCING_HOLD_HOURS],
            start_hour=options[CONF_BALANCING_START_HOUR],
            end_hour=options[CONF_BALANCING_END_HOUR],
        ),
        forecast=ForecastSettings(
            source=ForecastSource(options[CONF_FORECAST_SOURCE]),
            morning_peak_start=options[CONF_MORNING_PEAK_START],
            morning_peak_end=options[CONF_MORNING_PEAK_END],
            morning_peak_weight=options[CONF_MORNING_PEAK_WEIGHT],
            evening_peak_start=options[CONF_EVENING_PEAK_START],
            evening_peak_end=options[CONF_EVENING_PEAK_END],
            evening_peak_weight=options[CONF_EVENING_PEAK_WEIGHT],
            assumed_daily_peak_w=options[CONF_ASSUMED_DAILY_PEAK_W],
            budget_buffer_pct=options[CONF_BUDGET_BUFFER],
        ),
        downtime=DowntimeSettings(
            enabled=options[CONF_DOWNTIME_ENABLED],
            trigger_hours=options[CONF_DOWNTIME_TRIGGER_HOURS],
            action=options[CONF_DOWNTIME_ACTION],
        ),
    )
