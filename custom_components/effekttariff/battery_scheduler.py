"""Battery charge/discharge recommendations for capacity tariff peak shaving.

The battery is charged off-peak to a target SOC and discharged during billing
hours to keep grid import down towards the minimum limit.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Dict, Optional

from .forecasting import calculate_budgeted_discharge, ensure_forecast
from .models import BatteryState, EngineState, ForecastSource, TariffConfig
from .time_windows import (
    balancing_window_key,
    hours_until_peak,
    is_in_balancing_window,
    is_peak_time,
)

_LOGGER = logging.getLogger(__name__)


def _round_to_10(watts: float) -> float:
    return round(watts / 10.0) * 10


class BatteryScheduler:
    """
    Decides what the battery should do right now.

    Priority order:
    1. Peak hours: no charging, discharge excess above the minimum limit
    2. Balancing: charge to the balancing target and hold it (once per window)
    3. Anticipatory charge: reach the target SOC before the next peak window
    4. Idle: SOC already sufficient
    """

    def __init__(self, config: TariffConfig):
        self.config = config

    def recommend(
        self,
        state: EngineState,
        battery_state: Any,
        now: datetime,
        sample_w: Optional[float] = None,
        external_forecast: Any = None,
    ) -> Dict[str, Any]:
        """
        Charge/discharge recommendation for the given moment.

        Args:
            state: Engine state (balancing and forecast fields are updated)
            battery_state: BatteryState or mapping with soc/min_soc
            now: Current time
            sample_w: Current grid import (W), needed for discharge
            external_forecast: Optional external forecast payload

        Returns:
            Dictionary with charge_rate_w, discharge_rate_w, reason and SOC details
        """
        battery = BatteryState.from_any(battery_state)
        if battery is None:
            return {
                "charge_rate_w": 0,
                "discharge_rate_w": 0,
                "charging": False,
                "discharging": False,
                "reason": "no battery data",
                "target_soc": None,
                "current_soc": None,
                "min_soc": None,
                "hours_until_peak": None,
                "balancing_active": False,
                "in_peak_hours": False,
            }

        settings = self.config.battery
        soc = battery.soc
        min_soc = battery.min_soc if battery.min_soc is not None else settings.default_min_soc
        target_soc = min(min_soc + settings.soc_buffer, 100.0)

        if is_peak_time(now, self.config):
            if state.is_balancing:
                _LOGGER.info("Peak hours started, leaving battery balancing at %.0f%% SOC", soc)
            state.is_balancing = False
            state.balancing_start = None

            discharge = self._discharge(state, soc, min_soc, now, sample_w, external_forecast)
            discharge_w = discharge.pop("discharge_w")
            result = self._result(0, soc, min_soc, target_soc, discharge.pop("reason"))
            result.update(
                {
                    "discharge_rate_w": discharge_w,
                    "discharging": discharge_w > 0,
                    "hours_until_peak": 0,
                    "in_peak_hours": True,
                }
            )
            result.update(discharge)
            return result

        balancing = self._balancing(state, soc, min_soc, now)
        if balancing is not None:
            return balancing

        if soc >= target_soc:
            return self._result(0, soc, min_soc, target_soc, "SOC sufficient")

        hours = hours_until_peak(now, self.config)
        energy_deficit_wh = (target_soc - soc) / 100.0 * settings.capacity_wh

        # Spread the deficit over the time left, capped at the charger rating
        charge_w = _round_to_10(min(energy_deficit_wh / hours, settings.max_charge_w))

        result = self._result(
            charge_w,
            soc,
            min_soc,
            target_soc,
            f"charging to {target_soc:g}% before peak" if charge_w > 0 else "no charging needed",
        )
        result["hours_until_peak"] = round(hours, 1)
        result["energy_deficit_wh"] = round(energy_deficit_wh)
        return result

    def _result(
        self,
        charge_w: float,
        soc: float,
        min_soc: float,
        target_soc: float,
        reason: str,
        balancing_active: bool = False,
    ) -> Dict[str, Any]:
        return {
            "charge_rate_w": charge_w,
            "discharge_rate_w": 0,
            "charging": charge_w > 0,
            "discharging": False,
            "reason": reason,
            "target_soc": target_soc,
            "current_soc": soc,
            "min_soc": min_soc,
            "hours_until_peak": None,
            "balancing_active": balancing_active,
            "in_peak_hours": False,
        }

    def _balancing(
        self, state: EngineState, soc: float, min_soc: float, now: datetime
    ) -> Optional[Dict[str, Any]]:
        """Balancing step, or None when balancing does not apply right now."""
        settings = self.config.balancing
        if not settings.enabled:
            return None

        window_key = balancing_window_key(now, settings)
        can_start = (
            is_in_balancing_window(now.hour, settings)
            and soc >= settings.soc_threshold
            and state.last_balancing_window != window_key
        )

        if not state.is_balancing:
            if not can_start:
                state.balancing_start = None
                return None
            state.is_balancing = True
            state.balancing_start = None
            state.last_balancing_window = window_key
            _LOGGER.info(
                "Battery balancing started at %.0f%% SOC (target %.0f%%, hold %.1fh)",
                soc,
                settings.target_soc,
                settings.hold_hours,
            )

        if soc < settings.target_soc:
            state.balancing_start = None
            return self._result(
                _round_to_10(self.config.battery.max_charge_w),
                soc,
                min_soc,
                settings.target_soc,
                f"balancing: charging to {settings.target_soc:g}%",
                balancing_active=True,
            )

        if state.balancing_start is None:
            state.balancing_start = now
        hours_holding = (now - state.balancing_start).total_seconds() / 3600.0

        if hours_holding < settings.hold_hours:
            return self._result(
                0,
                soc,
                min_soc,
                settings.target_soc,
                (
                    f"balancing: holding {settings.target_soc:g}% for {settings.hold_hours:g}h "
                    f"({hours_holding:.1f}h done)"
                ),
                balancing_active=True,
            )

        state.is_balancing = False
        state.balancing_start = None
        _LOGGER.info("Battery balancing complete for window %s", window_key)
        return None

    def _discharge(
        self,
        state: EngineState,
        soc: float,
        min_soc: float,
        now: datetime,
        sample_w: Optional[float],
        external_forecast: Any,
    ) -> Dict[str, Any]:
        settings = self.config.battery
        if sample_w is None:
            return {"discharge_w": 0, "reason": "peak hours - discharge mode"}

        excess_w = max(0.0, sample_w - self.config.minimum_limit_w)

        if self.config.forecast.source != ForecastSource.NONE:
            forecast = ensure_forecast(state, self.config, now, external_forecast)
            budget = calculate_budgeted_discharge(
                self.config,
                state.period_energy_used,
                forecast,
                now.hour,
                sample_w,
                soc,
                min_soc,
                settings.capacity_wh,
            )
            if budget["use_budget"]:
                discharge_w = min(budget["discharge_w"], settings.max_discharge_w, excess_w)
                return {
                    "discharge_w": round(discharge_w),
                    "reason": budget["reason"],
                    "budget": {k: v for k, v in budget.items() if k not in ("discharge_w", "reason")},
                }

        if excess_w <= 0:
            return {"discharge_w": 0, "reason": "no excess power"}
        if soc <= min_soc:
            return {"discharge_w": 0, "reason": "battery at minimum SOC"}

        # Never plan more energy than is left above the SOC floor for this interval
        interval_h = self.config.interval_minutes / 60.0
        available_wh = (soc - min_soc) / 100.0 * settings.capacity_wh
        discharge_w = min(settings.max_discharge_w, available_wh / interval_h, excess_w)

        _LOGGER.debug(
            "Greedy discharge %.0f W (excess %.0f W, %.0f Wh above floor)",
            discharge_w,
            excess_w,
            available_wh,
        )
        return {"discharge_w": round(discharge_w), "reason": "peak shaving discharge"}
