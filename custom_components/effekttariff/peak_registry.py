"""Peak registry for the current billing month.

Ranked mode keeps the top peaks sorted by effective value (average of top N
is billed). Single-peak mode keeps only the month maximum and, when enabled,
a rolling history of monthly maxima for annual averaging.
"""
from __future__ import annotations

import logging
from typing import List, Optional

from .const import PEAK_LIST_TRIM_FACTOR
from .models import (
    CompletedInterval,
    EngineState,
    MonthlyPeak,
    PeakRecord,
    RankedAverageBilling,
    SingleRollingPeakBilling,
    TariffConfig,
)
from .time_windows import is_in_peak_hours, is_in_peak_season

_LOGGER = logging.getLogger(__name__)

ADDED = "added"
UPDATED = "updated"
KEPT = "kept"
SKIPPED = "skipped"


def record_peak(
    state: EngineState,
    config: TariffConfig,
    date: str,
    hour: int,
    value: float,
    effective: float,
    minute: int = 0,
) -> str:
    """
    Record a completed period in the ranked peak list.

    With one peak per day an existing entry for the date is only replaced on
    strict improvement. New entries are appended and the list re-sorted by
    effective value (descending); without the daily rule it is trimmed to 3×N.

    Returns:
        "added", "updated" or "kept"
    """
    billing = config.billing
    one_per_day = isinstance(billing, RankedAverageBilling) and billing.one_peak_per_day
    record = PeakRecord(date=date, hour=hour, value=value, effective=effective, minute=minute)

    if one_per_day:
        for idx, existing in enumerate(state.peaks):
            if existing.date != date:
                continue
            if effective > existing.effective:
                state.peaks[idx] = record
                state.peaks.sort(key=lambda p: p.effective, reverse=True)
                return UPDATED
            return KEPT

    state.peaks.append(record)
    state.peaks.sort(key=lambda p: p.effective, reverse=True)

    # One-per-day lists are bounded by the days in a month and keep every date
    limit = config.peak_count * PEAK_LIST_TRIM_FACTOR
    if not one_per_day and len(state.peaks) > limit:
        del state.peaks[limit:]

    return ADDED


def record_single_peak(
    state: EngineState,
    date: str,
    hour: int,
    value: float,
    effective: float,
    minute: int = 0,
) -> str:
    """Keep the single highest peak of the month. Ties keep the existing record."""
    record = PeakRecord(date=date, hour=hour, value=value, effective=effective, minute=minute)
    if state.month_peak is None:
        state.month_peak = record
        return ADDED
    if effective > state.month_peak.effective:
        state.month_peak = record
        return UPDATED
    return KEPT


def submit_completed_interval(state: EngineState, config: TariffConfig, interval: CompletedInterval) -> str:
    """Route a completed period to the registry, or skip it outside season/peak hours."""
    start = interval.period_start
    in_season = is_in_peak_season(start.month, config)
    in_hours = is_in_peak_hours(start.hour, start.weekday(), start.month, config)
    if not (in_season and in_hours):
        return SKIPPED

    if isinstance(config.billing, SingleRollingPeakBilling):
        result = record_single_peak(
            state, interval.date, interval.hour, interval.average_w, interval.effective_w, interval.minute
        )
    else:
        result = record_peak(
            state, config, interval.date, interval.hour, interval.average_w, interval.effective_w, interval.minute
        )

    if result != KEPT:
        _LOGGER.info(
            "Peak %s: %s %02d:%02d %.0f W (effective %.0f W)",
            result,
            interval.date,
            interval.hour,
            interval.minute,
            interval.average_w,
            interval.effective_w,
        )
    return result


def top_peaks(state: EngineState, config: TariffConfig) -> List[PeakRecord]:
    """Billing relevant peaks: top N in ranked mode, the month peak in single-peak mode."""
    if isinstance(config.billing, SingleRollingPeakBilling):
        return [state.month_peak] if state.month_peak else []
    return state.peaks[: config.peak_count]


def confirmed_peak_count(state: EngineState, config: TariffConfig) -> int:
    return len(top_peaks(state, config))


def peak_average_w(state: EngineState, config: TariffConfig) -> float:
    """Average effective value of the billing peaks (0 when none)."""
    peaks = top_peaks(state, config)
    if not peaks:
        return 0.0
    return sum(p.effective for p in peaks) / len(peaks)


def protected_peak_w(state: EngineState, config: TariffConfig) -> Optional[float]:
    """The peak the limit protects: Nth ranked value or the month peak. None while learning."""
    peaks = top_peaks(state, config)
    if len(peaks) < config.peak_count:
        return None
    return peaks[config.peak_count - 1].effective


def rolling_average_w(state: EngineState, config: TariffConfig) -> Optional[float]:
    """
    Rolling annual average of monthly peaks (single-peak mode).

    Averages the running month peak with the most recent K-1 completed months.
    """
    billing = config.billing
    if not isinstance(billing, SingleRollingPeakBilling) or not billing.rolling_average:
        return None

    values = []
    if state.month_peak is not None:
        values.append(state.month_peak.effective)
    history_slots = billing.rolling_months - len(values)
    values.extend(m.peak_w for m in state.monthly_history[:history_slots])
    if not values:
        return None
    return sum(values) / len(values)


def roll_over_month(state: EngineState, config: TariffConfig, new_month_key: str) -> int:
    """
    Close the billing month.

    Snapshots the outgoing peak average into previous_month_peak_avg_w (and the
    rolling history in annual mode) before clearing the registry.

    Returns:
        Number of peaks that were cleared
    """
    previous_count = len(state.peaks) + (1 if state.month_peak else 0)
    outgoing_month = state.current_month

    if previous_count > 0:
        average = peak_average_w(state, config)
        state.previous_month_peak_avg_w = average

        billing = config.billing
        if isinstance(billing, SingleRollingPeakBilling) and billing.rolling_average and outgoing_month:
            state.monthly_history.insert(0, MonthlyPeak(month_key=outgoing_month, peak_w=average))
            del state.monthly_history[billing.rolling_months:]

        _LOGGER.info(
            "Month %s closed with peak average %.0f W (%d peak(s))",
            outgoing_month,
            average,
            previous_count,
        )

    state.current_month = new_month_key
    state.peaks = []
    state.month_peak = None
    state.period_start = None
    state.period_sum = 0.0
    state.period_samples = 0
    state.last_hour = None
    return previous_count
