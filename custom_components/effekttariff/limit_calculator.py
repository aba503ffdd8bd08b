"""Turns the registry's protected peak into a power target and an output current."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Optional

from .models import BatteryState, EngineState, LearningMode, SingleRollingPeakBilling, TariffConfig
from .peak_registry import confirmed_peak_count, protected_peak_w

_LOGGER = logging.getLogger(__name__)


@dataclass
class LimitDecision:
    target_limit_w: Optional[float]
    limit_reason: str
    is_learning: bool
    using_carryover: bool
    headroom_w: float


def dynamic_headroom_w(config: TariffConfig, battery_state: Any = None) -> float:
    """
    Headroom to subtract from the protected peak.

    Returns the fixed headroom unless dynamic headroom is enabled and a numeric
    SOC is available. Rules are scanned in the given order; the first rule with
    soc < soc_below wins. Rules are expected sorted ascending by threshold.
    """
    battery = BatteryState.from_any(battery_state)
    if not config.dynamic_headroom.enabled or battery is None:
        return config.headroom_w

    for rule in config.dynamic_headroom.rules:
        if battery.soc < rule.soc_below:
            return rule.headroom_w
    return config.headroom_w


def calculate_target_limit(
    state: EngineState,
    config: TariffConfig,
    battery_state: Any = None,
) -> LimitDecision:
    """Target power ceiling for the current month, with the branch that produced it."""
    minimum_w = config.minimum_limit_w
    headroom = dynamic_headroom_w(config, battery_state)
    count = confirmed_peak_count(state, config)
    needed = config.peak_count
    protected = protected_peak_w(state, config)
    single = isinstance(config.billing, SingleRollingPeakBilling)

    if protected is None:
        previous = state.previous_month_peak_avg_w
        if config.learning_mode == LearningMode.CARRYOVER and previous is not None and previous > 0:
            carryover_w = previous * config.previous_month_carryover / 100.0
            target = max(carryover_w - headroom, minimum_w)
            return LimitDecision(
                target_limit_w=target,
                limit_reason=(
                    f"learning ({count}/{needed}) using {config.previous_month_carryover:g}% of prev month"
                ),
                is_learning=True,
                using_carryover=True,
                headroom_w=headroom,
            )
        return LimitDecision(
            target_limit_w=None,
            limit_reason=f"learning ({count}/{needed} peaks)",
            is_learning=True,
            using_carryover=False,
            headroom_w=headroom,
        )

    target = max(protected - headroom, minimum_w)
    if target == minimum_w:
        reason = "min (peaks below min)"
    elif single:
        reason = "month peak - headroom"
    else:
        reason = f"peak#{needed} - headroom"
    return LimitDecision(
        target_limit_w=target,
        limit_reason=reason,
        is_learning=False,
        using_carryover=False,
        headroom_w=headroom,
    )


def watts_to_amps(watts: float, config: TariffConfig) -> float:
    return watts / (config.phases * config.grid_voltage)


def to_output_current(
    target_limit_w: Optional[float],
    config: TariffConfig,
    is_learning: bool,
    using_carryover: bool = False,
) -> float:
    """
    Convert a power target to a per-phase current limit.

    Plain learning converts the minimum floor instead of the (missing) target.
    The result is capped at the breaker, never negative, and rounded to 0.1 A.
    """
    if is_learning and not using_carryover:
        amps = watts_to_amps(config.minimum_limit_w, config)
    elif target_limit_w is None:
        amps = config.max_breaker_current
    else:
        amps = watts_to_amps(target_limit_w, config)

    amps = min(max(amps, 0.0), config.max_breaker_current)
    return round(amps, 1)
