"""Consumption forecasting and battery budget allocation.

Splits the usable battery energy across the day's expected peak periods so
that the battery is not drained by the first peak of the day. Forecasts come
from fixed time windows, learned per-weekday history or an external payload.
"""
from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Dict, List, Mapping, Optional, Sequence

from .const import (
    FORECAST_EXTERNAL,
    FORECAST_EXTERNAL_FALLBACK,
    FORECAST_HISTORICAL,
    FORECAST_NONE,
    FORECAST_TIME_BASED,
    HISTORY_SAMPLE_CAP,
    PEAK_PERIOD_THRESHOLD,
)
from .models import (
    CompletedInterval,
    DayHistory,
    EngineState,
    Forecast,
    ForecastPeriod,
    ForecastSource,
    ForecastSettings,
    PeriodKey,
    TariffConfig,
)

_LOGGER = logging.getLogger(__name__)

# Fallback windows when no contiguous period clears the threshold
# (start, end, last hour scanned + 1)
DEFAULT_MORNING_WINDOW = (6, 10, 10)
DEFAULT_EVENING_WINDOW = (17, 21, 22)


def generate_time_based(settings: ForecastSettings, now: datetime) -> Forecast:
    """Morning and evening windows weighted as a share of the assumed daily peak."""
    periods: List[ForecastPeriod] = []

    if settings.morning_peak_start < settings.morning_peak_end:
        periods.append(
            ForecastPeriod(
                start=settings.morning_peak_start,
                end=settings.morning_peak_end,
                expected_peak_w=settings.morning_peak_weight * settings.assumed_daily_peak_w,
                weight=settings.morning_peak_weight,
            )
        )

    if settings.evening_peak_start < settings.evening_peak_end:
        periods.append(
            ForecastPeriod(
                start=settings.evening_peak_start,
                end=settings.evening_peak_end,
                expected_peak_w=settings.evening_peak_weight * settings.assumed_daily_peak_w,
                weight=settings.evening_peak_weight,
            )
        )

    return Forecast(periods=periods, source=FORECAST_TIME_BASED, generated_at=now)


def identify_peak_periods(hourly: Sequence[float], config: TariffConfig) -> List[ForecastPeriod]:
    """
    Find contiguous high-consumption hours inside the billing window.

    An hour belongs to a period when it reaches 60% of the day's maximum.
    When nothing qualifies the default morning (06-10) and evening (17-21)
    windows are used if they carry at least half the threshold.

    Args:
        hourly: 24 hourly consumption values (W)
        config: Tariff configuration (peak hours window)

    Returns:
        List of periods, empty when the profile has no consumption
    """
    values = [float(v or 0.0) for v in hourly[:24]]
    max_consumption = max(values) if values else 0.0
    if max_consumption <= 0:
        return []

    threshold = max_consumption * PEAK_PERIOD_THRESHOLD
    periods: List[ForecastPeriod] = []

    period_start: Optional[int] = None
    period_max = 0.0
    for hour in range(config.peak_hours_start, config.peak_hours_end):
        consumption = values[hour] if hour < len(values) else 0.0
        if consumption >= threshold:
            if period_start is None:
                period_start = hour
                period_max = consumption
            else:
                period_max = max(period_max, consumption)
        elif period_start is not None:
            periods.append(
                ForecastPeriod(
                    start=period_start,
                    end=hour,
                    expected_peak_w=period_max,
                    weight=period_max / max_consumption,
                )
            )
            period_start = None
            period_max = 0.0

    if period_start is not None:
        periods.append(
            ForecastPeriod(
                start=period_start,
                end=config.peak_hours_end,
                expected_peak_w=period_max,
                weight=period_max / max_consumption,
            )
        )

    if periods:
        return periods

    for start, end, scan_end in (DEFAULT_MORNING_WINDOW, DEFAULT_EVENING_WINDOW):
        window_max = max(values[start:scan_end])
        if window_max > threshold * 0.5:
            periods.append(
                ForecastPeriod(
                    start=start,
                    end=end,
                    expected_peak_w=window_max,
                    weight=window_max / max_consumption,
                )
            )
    return periods


def generate_from_history(
    historical_data: Mapping[int, DayHistory],
    now: datetime,
    config: TariffConfig,
) -> Forecast:
    """Forecast from the learned profile of today's weekday, time-based until 24 hours are learned."""
    day = historical_data.get(now.weekday())
    if day is None or day.learned_hours < 24:
        _LOGGER.debug(
            "Only %d/24 hours learned for weekday %d, using time-based forecast",
            day.learned_hours if day else 0,
            now.weekday(),
        )
        return generate_time_based(config.forecast, now)

    return Forecast(
        periods=identify_peak_periods(day.hourly_averages, config),
        source=FORECAST_HISTORICAL,
        generated_at=now,
    )


def _first_number(data: Mapping[str, Any], *keys: str) -> Optional[float]:
    for key in keys:
        value = data.get(key)
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return float(value)
    return None


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _periods_from_payload(items: Sequence[Any]) -> Optional[List[ForecastPeriod]]:
    periods: List[ForecastPeriod] = []
    for item in items:
        if not isinstance(item, Mapping):
            return None
        start = item.get("start")
        end = item.get("end")
        if not _is_number(start) or not _is_number(end):
            return None
        expected = _first_number(item, "expected_peak_w", "expectedPeakW", "expected")
        weight = _first_number(item, "weight")
        periods.append(
            ForecastPeriod(
                start=int(start),
                end=int(end),
                expected_peak_w=expected or 0.0,
                weight=weight or 1.0,
            )
        )
    return periods


def _hourly_from_payload(items: Sequence[Any]) -> Optional[List[float]]:
    if not items:
        return None
    if all(_is_number(v) for v in items):
        return [float(v) for v in items]
    if all(isinstance(v, Mapping) for v in items):
        hourly = [0.0] * 24
        for entry in items:
            hour = entry.get("hour")
            if _is_number(hour) and 0 <= hour < 24:
                hourly[int(hour)] = _first_number(entry, "expected_w", "expectedW", "expected") or 0.0
        return hourly
    return None


def normalize_external(payload: Any, now: datetime, config: TariffConfig) -> Optional[Forecast]:
    """
    Normalize an external forecast payload.

    Accepted shapes:
        - a flat list of 24 hourly values (W)
        - ``{"hourly": [...]}`` with numbers or ``{"hour", "expected"}`` objects
        - ``{"periods": [...]}`` or a list of ``{"start", "end", "expected_peak_w", "weight"}``

    Both snake_case and camelCase keys are read. Returns None when nothing matches.
    """
    if payload is None:
        return None

    periods: Optional[List[ForecastPeriod]] = None
    hourly: Optional[List[float]] = None

    if isinstance(payload, Mapping):
        if isinstance(payload.get("periods"), (list, tuple)):
            periods = _periods_from_payload(payload["periods"])
        elif isinstance(payload.get("hourly"), (list, tuple)):
            hourly = _hourly_from_payload(payload["hourly"])
    elif isinstance(payload, (list, tuple)) and payload:
        if isinstance(payload[0], Mapping) and "start" in payload[0]:
            periods = _periods_from_payload(payload)
        else:
            hourly = _hourly_from_payload(payload)

    if periods is not None:
        return Forecast(periods=periods, source=FORECAST_EXTERNAL, generated_at=now)

    if hourly is not None and len(hourly) >= 24:
        return Forecast(
            periods=identify_peak_periods(hourly, config),
            source=FORECAST_EXTERNAL,
            generated_at=now,
        )

    return None


def update_historical_data(
    historical_data: Dict[int, DayHistory],
    weekday: int,
    hour: int,
    average_w: float,
) -> DayHistory:
    """Fold a completed hour into the weekday profile (running mean, count capped at 100)."""
    day = historical_data.setdefault(weekday, DayHistory())

    old_average = day.hourly_averages[hour]
    count = day.sample_counts[hour]
    day.hourly_averages[hour] = round((old_average * count + average_w) / (count + 1))
    day.sample_counts[hour] = min(count + 1, HISTORY_SAMPLE_CAP)
    return day


def fold_completed_interval(
    state: EngineState, config: TariffConfig, interval: CompletedInterval
) -> Optional[DayHistory]:
    """
    Feed a completed measurement period into the weekday history.

    History is kept per hour. 15 and 30 minute periods are collected until the
    last period of the hour completes and are then folded in as one sample
    (their mean). An hour cut short by a gap is folded in when a later hour
    starts. Returns the updated day, or None while the hour is still open.
    """
    hour_start = interval.period_start.replace(minute=0, second=0, microsecond=0)
    day = None
    if state.history_hour_start is not None and state.history_hour_start != hour_start:
        day = _flush_history_hour(state)

    state.history_hour_start = hour_start
    state.history_hour_values.append(interval.average_w)
    if interval.minute + config.interval_minutes >= 60:
        day = _flush_history_hour(state)
    return day


def _flush_history_hour(state: EngineState) -> Optional[DayHistory]:
    start = state.history_hour_start
    values = state.history_hour_values
    state.history_hour_start = None
    state.history_hour_values = []
    if start is None or not values:
        return None
    return update_historical_data(
        state.historical_data, start.weekday(), start.hour, sum(values) / len(values)
    )


def allocate_budget(forecast: Forecast, usable_capacity_wh: float, buffer_pct: float) -> Forecast:
    """
    Distribute usable battery energy across forecast periods.

    buffer_pct of the capacity is held back for unexpected peaks, the rest is
    split proportionally to period weight (equal split when all weights are 0).
    """
    if not forecast.periods:
        return forecast

    buffer_wh = usable_capacity_wh * buffer_pct / 100.0
    allocatable = usable_capacity_wh - buffer_wh

    total_weight = sum(p.weight for p in forecast.periods)
    if total_weight <= 0:
        share = allocatable / len(forecast.periods)
        for period in forecast.periods:
            period.budget_wh = share
    else:
        for period in forecast.periods:
            period.budget_wh = period.weight / total_weight * allocatable

    forecast.total_budget_wh = allocatable
    forecast.buffer_wh = buffer_wh
    return forecast


def generate_forecast(
    config: TariffConfig,
    historical_data: Mapping[int, DayHistory],
    now: datetime,
    external: Any = None,
) -> Forecast:
    """Build today's forecast from the configured source and allocate the battery budget."""
    source = config.forecast.source

    if source == ForecastSource.TIME_BASED:
        forecast = generate_time_based(config.forecast, now)
    elif source == ForecastSource.HISTORICAL:
        forecast = generate_from_history(historical_data, now, config)
    elif source == ForecastSource.EXTERNAL:
        forecast = normalize_external(external, now, config)
        if forecast is None:
            _LOGGER.debug("External forecast missing or malformed, falling back to time-based")
            forecast = generate_time_based(config.forecast, now)
            forecast.source = FORECAST_EXTERNAL_FALLBACK
    else:
        forecast = Forecast(periods=[], source=FORECAST_NONE, generated_at=now)

    battery = config.battery
    if battery.enabled and forecast.periods:
        usable_wh = battery.capacity_wh * battery.soc_buffer / 100.0
        allocate_budget(forecast, usable_wh, config.forecast.budget_buffer_pct)

    return forecast


def calculate_budgeted_discharge(
    config: TariffConfig,
    period_energy_used: Mapping[PeriodKey, float],
    forecast: Optional[Forecast],
    hour: int,
    sample_w: float,
    soc: float,
    min_soc: float,
    capacity_wh: float,
) -> Dict[str, Any]:
    """
    Allowed discharge rate for the current hour under the period budget.

    The remaining budget is spread over the hours left in the period. The
    caller adds the energy actually discharged with record_discharge_energy.

    Returns:
        Dictionary with discharge_w, reason and budget details. use_budget is
        False when no forecast is available and greedy discharge applies.
    """
    if forecast is None or forecast.source == FORECAST_NONE or not forecast.periods:
        return {
            "discharge_w": 0,
            "reason": "no forecast",
            "use_budget": False,
        }

    period = forecast.find_period(hour)
    if period is None:
        return {
            "discharge_w": 0,
            "reason": "not in forecast period",
            "use_budget": True,
            "remaining_budget_wh": 0,
        }

    key = period.key
    used_wh = period_energy_used.get(key, 0.0)
    remaining_wh = max(0.0, (period.budget_wh or 0.0) - used_wh)

    if remaining_wh <= 0:
        return {
            "discharge_w": 0,
            "reason": "period budget exhausted",
            "use_budget": True,
            "remaining_budget_wh": 0,
            "period_key": key,
        }

    available_wh = (soc - min_soc) / 100.0 * capacity_wh
    if available_wh <= 0:
        return {
            "discharge_w": 0,
            "reason": "battery at minimum SOC",
            "use_budget": True,
            "remaining_budget_wh": round(remaining_wh),
            "period_key": key,
        }

    hours_remaining = max(0.5, period.end - hour)
    target_w = remaining_wh / hours_remaining

    excess_w = max(0.0, sample_w - config.minimum_limit_w)
    interval_h = config.interval_minutes / 60.0
    max_from_battery = min(config.battery.max_discharge_w, available_wh / interval_h)

    discharge_w = min(target_w, excess_w, max_from_battery)

    return {
        "discharge_w": round(discharge_w),
        "reason": "budget-based discharge" if discharge_w > 0 else "no excess power",
        "use_budget": True,
        "remaining_budget_wh": round(remaining_wh),
        "target_discharge_w": round(target_w),
        "period_key": key,
        "period": {
            "start": period.start,
            "end": period.end,
            "budget_wh": round(period.budget_wh or 0.0),
            "used_wh": round(used_wh),
        },
    }


def should_regenerate_forecast(state: EngineState, now: datetime) -> bool:
    return state.forecast_date != now.date().isoformat()


def reset_daily_tracking(state: EngineState, now: datetime) -> None:
    state.period_energy_used = {}
    state.forecast_date = now.date().isoformat()
    state.current_forecast = None


def ensure_forecast(
    state: EngineState,
    config: TariffConfig,
    now: datetime,
    external: Any = None,
) -> Optional[Forecast]:
    """
    Return today's forecast, regenerating it on the first call of a new day.

    A fallback forecast is replaced (keeping today's spend) as soon as an
    external payload arrives.
    """
    if config.forecast.source == ForecastSource.NONE:
        return None

    current = state.current_forecast
    if should_regenerate_forecast(state, now):
        reset_daily_tracking(state, now)
    elif current is not None:
        upgrade = external is not None and current.source == FORECAST_EXTERNAL_FALLBACK
        if not upgrade:
            return current

    forecast = generate_forecast(config, state.historical_data, now, external)
    state.current_forecast = forecast
    _LOGGER.info(
        "Forecast for %s generated from %s: %s",
        state.forecast_date,
        forecast.source,
        ", ".join(
            f"{p.key} ({p.budget_wh:.0f} Wh)" if p.budget_wh is not None else str(p.key)
            for p in forecast.periods
        )
        or "no peak periods",
    )
    return forecast


def record_discharge_energy(state: EngineState, period_key: PeriodKey, energy_wh: float) -> float:
    """Add discharged energy to the period's spend. Returns the new total."""
    total = state.period_energy_used.get(period_key, 0.0) + max(0.0, energy_wh)
    state.period_energy_used[period_key] = total
    return total
