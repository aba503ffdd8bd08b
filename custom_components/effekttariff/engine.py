"""Entry points tying the tariff tracker together.

``process_sample`` is called for every grid power reading. It handles month
rollover, downtime detection, period aggregation, peak recording and the
resulting current limit. ``get_battery_status`` adds the battery advice.
"""
from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Dict, Optional

from .aggregator import accumulate, current_average_w, detect_downtime
from .battery_scheduler import BatteryScheduler
from .forecasting import fold_completed_interval
from .limit_calculator import calculate_target_limit, to_output_current
from .models import BatteryState, EngineState, SingleRollingPeakBilling, TariffConfig
from .peak_registry import (
    peak_average_w,
    roll_over_month,
    rolling_average_w,
    submit_completed_interval,
    top_peaks,
)
from .time_windows import is_in_peak_hours, is_in_peak_season, month_key

_LOGGER = logging.getLogger(__name__)


def process_sample(
    state: EngineState,
    config: TariffConfig,
    power_w: Optional[float],
    timestamp: datetime,
    battery_state: Any = None,
) -> Dict[str, Any]:
    """
    Process one grid power reading.

    Args:
        state: Engine state, mutated in place
        config: Tariff configuration
        power_w: Grid import (W), negative values count as 0
        timestamp: Time of the reading
        battery_state: Optional BatteryState or mapping for dynamic headroom

    Returns:
        Dictionary describing the month, period, limit and peak status
    """
    # 1. Month rollover
    month_reset = False
    previous_peak_count = 0
    key = month_key(timestamp)
    if state.current_month is None:
        state.current_month = key
    elif state.current_month != key:
        previous_peak_count = roll_over_month(state, config, key)
        month_reset = True

    # 2. Measurement gaps
    downtime = detect_downtime(state, config, timestamp)

    # 3. Period aggregation and peak recording
    completed = accumulate(state, config, power_w, timestamp)
    if completed is not None:
        completed.result = submit_completed_interval(state, config, completed)
        fold_completed_interval(state, config, completed)

    # 4. Limit and output current
    decision = calculate_target_limit(state, config, battery_state)
    in_season = is_in_peak_season(timestamp.month, config)
    in_hours = is_in_peak_hours(timestamp.hour, timestamp.weekday(), timestamp.month, config)

    if in_season and in_hours:
        output_a = to_output_current(
            decision.target_limit_w, config, decision.is_learning, decision.using_carryover
        )
    else:
        output_a = round(config.max_breaker_current, 1)

    output_changed = output_a != state.last_output_limit_a
    if output_changed:
        _LOGGER.debug(
            "Output limit %s -> %.1f A (%s)", state.last_output_limit_a, output_a, decision.limit_reason
        )
        state.last_output_limit_a = output_a

    interval = completed.as_dict() if completed else None
    result: Dict[str, Any] = {
        "month_reset": month_reset,
        "previous_peak_count": previous_peak_count,
        "interval_completed": interval,
        "hour_completed": interval if config.interval_minutes == 60 else None,
        "downtime": downtime.as_dict() if downtime else None,
        "in_peak_season": in_season,
        "in_peak_hours": in_hours,
        "is_learning": decision.is_learning,
        "using_carryover": decision.using_carryover,
        "current_period": state.period_start.isoformat() if state.period_start else None,
        "current_average_w": current_average_w(state),
        "target_limit_w": decision.target_limit_w,
        "limit_reason": decision.limit_reason,
        "headroom_w": decision.headroom_w,
        "output_limit_a": output_a,
        "output_changed": output_changed,
        "peak_average_w": peak_average_w(state, config),
        "ranked_peaks": [p.to_dict() for p in top_peaks(state, config)],
    }

    if isinstance(config.billing, SingleRollingPeakBilling):
        result["current_month_peak"] = state.month_peak.to_dict() if state.month_peak else None
        result["rolling_average_w"] = rolling_average_w(state, config)

    return result


def get_battery_status(
    state: EngineState,
    config: TariffConfig,
    battery_state: Any,
    timestamp: datetime,
    power_w: Optional[float] = None,
    external_forecast: Any = None,
) -> Optional[Dict[str, Any]]:
    """Battery recommendation, or None when no battery is configured."""
    if not config.battery.enabled:
        return None

    recommendation = BatteryScheduler(config).recommend(
        state, battery_state, timestamp, power_w, external_forecast
    )
    status: Dict[str, Any] = {
        "enabled": True,
        "available": BatteryState.from_any(battery_state) is not None,
    }
    status.update(recommendation)
    return status


class EffektTariffEngine:
    """Binds one configuration and one state instance."""

    def __init__(self, config: TariffConfig, state: Optional[EngineState] = None):
        self.config = config
        self.state = state if state is not None else EngineState()

    def process_sample(
        self, power_w: Optional[float], timestamp: datetime, battery_state: Any = None
    ) -> Dict[str, Any]:
        result = process_sample(self.state, self.config, power_w, timestamp, battery_state)
        if result["month_reset"]:
            _LOGGER.info(
                "New billing month %s, cleared %d peak(s) (previous average %s W)",
                self.state.current_month,
                result["previous_peak_count"],
                self.state.previous_month_peak_avg_w,
            )
        return result

    def battery_status(
        self,
        battery_state: Any,
        timestamp: datetime,
        power_w: Optional[float] = None,
        external_forecast: Any = None,
    ) -> Optional[Dict[str, Any]]:
        return get_battery_status(
            self.state, self.config, battery_state, timestamp, power_w, external_forecast
        )

    def snapshot(self) -> Dict[str, Any]:
        return self.state.to_dict()

    @classmethod
    def from_snapshot(cls, config: TariffConfig, snapshot: Optional[Dict[str, Any]]) -> "EffektTariffEngine":
        state = EngineState.from_dict(snapshot) if snapshot else EngineState()
        return cls(config, state)
