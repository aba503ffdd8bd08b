"""Accumulates raw power samples into measurement periods (15, 30 or 60 min)."""
from __future__ import annotations

import logging
from datetime import datetime
from typing import Optional

from .const import NIGHT_DISCOUNT_FACTOR
from .models import CompletedInterval, DowntimeEvent, EngineState, TariffConfig
from .time_windows import is_night_hour, period_start_for

_LOGGER = logging.getLogger(__name__)


def effective_value(average_w: float, hour: int, config: TariffConfig) -> float:
    """Billing value of a period average, halved for night hours when discounted."""
    if config.night_discount and is_night_hour(hour):
        return average_w * NIGHT_DISCOUNT_FACTOR
    return average_w


def accumulate(
    state: EngineState,
    config: TariffConfig,
    sample_w: Optional[float],
    timestamp: datetime,
) -> Optional[CompletedInterval]:
    """
    Add one sample to the current period.

    Negative samples (export) are clamped to zero. When the sample belongs to a
    new period the previous period is closed and returned.

    Returns:
        The completed period, or None while the period is still running
    """
    power = max(0.0, float(sample_w or 0.0))
    period_start = period_start_for(timestamp, config.interval_minutes)

    completed: Optional[CompletedInterval] = None
    if state.period_start is not None and state.period_start != period_start:
        if state.period_samples > 0:
            average = state.period_sum / state.period_samples
            previous = state.period_start
            completed = CompletedInterval(
                period_start=previous,
                average_w=average,
                effective_w=effective_value(average, previous.hour, config),
                was_night=is_night_hour(previous.hour),
            )
            _LOGGER.debug(
                "Period %s completed: %.0f W (effective %.0f W, %d samples)",
                previous.isoformat(),
                completed.average_w,
                completed.effective_w,
                state.period_samples,
            )

    if state.period_start != period_start:
        state.period_start = period_start
        state.period_sum = 0.0
        state.period_samples = 0

    state.period_sum += power
    state.period_samples += 1
    return completed


def current_average_w(state: EngineState) -> float:
    if state.period_samples <= 0:
        return 0.0
    return state.period_sum / state.period_samples


def detect_downtime(state: EngineState, config: TariffConfig, timestamp: datetime) -> Optional[DowntimeEvent]:
    """
    Detect a gap in hourly measurements.

    Only active for 60 minute intervals. Compares the hour of this call with
    the last seen hour (wrap-aware). The gap is only reported, never back-filled.
    """
    hour = timestamp.hour
    previous = state.last_hour
    state.last_hour = hour

    if config.interval_minutes != 60 or previous is None or previous == hour:
        return None

    settings = config.downtime
    if not settings.enabled or settings.action == "ignore":
        return None

    gap = (hour - previous + 24) % 24
    if gap < settings.trigger_hours:
        return None

    event = DowntimeEvent(from_hour=previous, to_hour=hour, missed_hours=gap - 1)
    _LOGGER.warning(
        "Measurement gap detected: no data from %02d:00 to %02d:00 (%d hour(s) missed)",
        event.from_hour,
        event.to_hour,
        event.missed_hours,
    )
    return event
