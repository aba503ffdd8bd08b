"""Time based simulation of the tariff engine.

Drives ``process_sample`` with a synthetic consumption profile, optionally
with a simulated battery following the scheduler's advice, and collects what
happened (completed hours, peak records, limit changes, battery trace).
"""
from __future__ import annotations

import csv
import logging
import math
import os
import random
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence

import yaml

from .config import build_config
from .engine import get_battery_status, process_sample
from .forecasting import record_discharge_energy
from .limit_calculator import dynamic_headroom_w
from .models import EngineState, TariffConfig
from .peak_registry import confirmed_peak_count, peak_average_w, top_peaks
from .time_windows import is_in_peak_hours, is_in_peak_season, is_night_hour

_LOGGER = logging.getLogger(__name__)

SCENARIOS_FILE = Path(__file__).parent / "scenarios.yaml"

PowerGenerator = Callable[[datetime], float]
SocGenerator = Callable[[datetime], Dict[str, float]]


# Power patterns

def constant(watts: float) -> PowerGenerator:
    return lambda moment: watts


def daily_profile(base_w: float, peak_w: float) -> PowerGenerator:
    """Typical Swedish household: low at night, morning peak 6-9, evening peak 17-21."""
    def generator(moment: datetime) -> float:
        hour = moment.hour
        if hour < 6:
            return base_w * 0.5  # natt
        if hour < 9:
            return base_w + (peak_w - base_w) * 0.7  # morgon
        if hour < 17:
            return base_w * 0.8  # dag
        if hour < 21:
            return peak_w  # kvällstopp
        return base_w * 0.6  # sen kväll
    return generator


def hour_ranges(default_w: float, ranges: Sequence[Mapping[str, Any]]) -> PowerGenerator:
    """Fixed power per hour range (from_hour inclusive, to_hour exclusive, may wrap midnight)."""
    def generator(moment: datetime) -> float:
        for entry in ranges:
            if _hour_in_range(moment.hour, entry.get("from_hour"), entry.get("to_hour")):
                return float(entry["watts"])
        return default_w
    return generator


def with_spikes(base_w: float, spike_w: float, probability: float = 0.1, seed: Optional[int] = None) -> PowerGenerator:
    rng = random.Random(seed)
    return lambda moment: spike_w if rng.random() < probability else base_w


def pseudo_random(min_w: float, max_w: float) -> PowerGenerator:
    """Reproducible noise keyed on day of month and hour."""
    def generator(moment: datetime) -> float:
        seed = moment.day * 100 + moment.hour
        fraction = abs(math.sin(seed) * 10000) % 1
        return min_w + fraction * (max_w - min_w)
    return generator


def combined(*patterns: PowerGenerator) -> PowerGenerator:
    return lambda moment: sum(pattern(moment) for pattern in patterns)


def _hour_in_range(hour: int, start: Optional[int], end: Optional[int]) -> bool:
    if start is None or end is None:
        return True
    if start <= end:
        return start <= hour < end
    return hour >= start or hour < end


def with_overrides(base: PowerGenerator, overrides: Sequence[Mapping[str, Any]]) -> PowerGenerator:
    """
    Replace the base value where an override matches.

    Each override may restrict on weekdays (Mon=0), days_of_month and an
    hour range; the first matching override wins.
    """
    def generator(moment: datetime) -> float:
        for rule in overrides:
            if "weekdays" in rule and moment.weekday() not in rule["weekdays"]:
                continue
            if "days_of_month" in rule and moment.day not in rule["days_of_month"]:
                continue
            if not _hour_in_range(moment.hour, rule.get("from_hour"), rule.get("to_hour")):
                continue
            return float(rule["watts"])
        return base(moment)
    return generator


def build_power_generator(power: Mapping[str, Any]) -> PowerGenerator:
    """Power generator from a scenario ``power`` block."""
    pattern = power.get("pattern", "constant")
    if pattern == "constant":
        generator = constant(float(power["watts"]))
    elif pattern == "daily_profile":
        generator = daily_profile(float(power["base_w"]), float(power["peak_w"]))
    elif pattern == "hour_ranges":
        generator = hour_ranges(float(power.get("default_w", 0.0)), power.get("ranges", []))
    elif pattern == "spikes":
        generator = with_spikes(
            float(power["base_w"]), float(power["spike_w"]), float(power.get("probability", 0.1)), power.get("seed")
        )
    elif pattern == "pseudo_random":
        generator = pseudo_random(float(power["min_w"]), float(power["max_w"]))
    else:
        raise ValueError(f"Unknown power pattern '{pattern}'")

    if power.get("overrides"):
        generator = with_overrides(generator, power["overrides"])
    return generator


# Battery patterns

def constant_soc(soc: float, min_soc: float = 20.0) -> SocGenerator:
    return lambda moment: {"soc": soc, "min_soc": min_soc}


def soc_profile(steps: Sequence[Mapping[str, Any]], min_soc: float = 20.0) -> SocGenerator:
    """SOC by time of day. Steps are ``{until_hour, soc}`` sorted by until_hour."""
    def generator(moment: datetime) -> Dict[str, float]:
        for step in steps:
            if moment.hour < step["until_hour"]:
                return {"soc": float(step["soc"]), "min_soc": min_soc}
        return {"soc": float(steps[-1]["soc"]), "min_soc": min_soc}
    return generator


def daily_soc_cycle(min_soc: float = 20.0) -> SocGenerator:
    """Low in the morning after night use, full by evening."""
    def generator(moment: datetime) -> Dict[str, float]:
        hour = moment.hour
        if hour < 6:
            soc = 40 + hour * 2
        elif hour < 12:
            soc = 52 + (hour - 6) * 6
        elif hour < 18:
            soc = 88 + (hour - 12) * 2
        else:
            soc = 100 - (hour - 18) * 8
        return {"soc": float(max(min_soc, min(100, soc))), "min_soc": min_soc}
    return generator


@dataclass
class SimulationResult:
    config: TariffConfig
    start: datetime
    end: Optional[datetime] = None
    duration_days: int = 0
    total_samples: int = 0
    hourly_data: List[Dict[str, Any]] = field(default_factory=list)
    month_resets: List[Dict[str, Any]] = field(default_factory=list)
    peak_records: List[Dict[str, Any]] = field(default_factory=list)
    output_changes: List[Dict[str, Any]] = field(default_factory=list)
    charge_rate_changes: List[Dict[str, Any]] = field(default_factory=list)
    battery_data: List[Dict[str, Any]] = field(default_factory=list)
    downtime_events: List[Dict[str, Any]] = field(default_factory=list)
    final_state: Optional[EngineState] = None
    final_soc: Optional[float] = None
    summary: Dict[str, Any] = field(default_factory=dict)


def run_simulation(
    config: TariffConfig,
    start: datetime,
    duration_days: int,
    power_generator: PowerGenerator,
    samples_per_hour: int = 6,
    initial_soc: Optional[float] = None,
    initial_state: Optional[EngineState] = None,
    soc_generator: Optional[SocGenerator] = None,
) -> SimulationResult:
    """
    Run the engine over a time span.

    With the battery enabled and no soc_generator, SOC is simulated from the
    scheduler's charge/discharge advice and grid import is reduced by the
    discharge. A soc_generator supplies fixed telemetry instead.

    Args:
        config: Tariff configuration
        start: First sample time
        duration_days: Length of the run
        power_generator: Household consumption (W) per sample time
        samples_per_hour: Sample rate (6 = every 10 minutes)
        initial_soc: Starting SOC, defaults to the peak shaving target
        initial_state: Optional state to continue from
        soc_generator: Optional fixed battery telemetry

    Returns:
        SimulationResult with summary filled in
    """
    state = initial_state if initial_state is not None else EngineState()
    result = SimulationResult(config=config, start=start, duration_days=duration_days)

    sample_minutes = 60 / samples_per_hour
    sample_hours = sample_minutes / 60.0
    total_samples = int(duration_days * 24 * samples_per_hour)

    battery = config.battery
    simulate_soc = battery.enabled and soc_generator is None
    min_soc = battery.default_min_soc
    target_soc = min(min_soc + battery.soc_buffer, 100.0)
    soc = initial_soc if initial_soc is not None else target_soc

    _LOGGER.debug(
        "Simulating %d day(s) from %s (%d samples, battery=%s)",
        duration_days,
        start.isoformat(),
        total_samples,
        battery.enabled,
    )

    now = start
    last_hour: Optional[int] = None
    last_rate: Optional[int] = None
    for _ in range(total_samples):
        raw_w = max(0.0, power_generator(now))
        grid_w = raw_w
        charge_w = 0.0
        discharge_w = 0.0
        action = "idle"

        if soc_generator is not None:
            battery_state: Optional[Dict[str, float]] = soc_generator(now)
        elif simulate_soc:
            battery_state = {"soc": soc, "min_soc": min_soc}
        else:
            battery_state = None

        if battery.enabled:
            status = get_battery_status(state, config, battery_state, now, raw_w)
            if status and simulate_soc:
                discharge_w = float(status["discharge_rate_w"])
                charge_w = float(status["charge_rate_w"])
                if discharge_w > 0:
                    energy_wh = discharge_w * sample_hours
                    soc = max(min_soc, soc - energy_wh / battery.capacity_wh * 100.0)
                    grid_w = max(0.0, raw_w - discharge_w)
                    action = "discharging"
                    period_key = status.get("budget", {}).get("period_key")
                    if period_key is not None:
                        record_discharge_energy(state, period_key, energy_wh)
                elif charge_w > 0:
                    soc = min(100.0, soc + charge_w * sample_hours / battery.capacity_wh * 100.0)
                    action = "charging"

        sample = process_sample(state, config, grid_w, now, battery_state)

        if sample["month_reset"] and sample["previous_peak_count"] > 0:
            result.month_resets.append({"date": now, "previous_peak_count": sample["previous_peak_count"]})

        if sample["downtime"]:
            result.downtime_events.append(dict(sample["downtime"], date=now))

        completed = sample["interval_completed"]
        if completed:
            soc_now = battery_state["soc"] if battery_state else None
            result.hourly_data.append(
                dict(completed, timestamp=now, headroom_w=sample["headroom_w"], soc=soc_now)
            )
            if completed["result"] in ("added", "updated"):
                result.peak_records.append(
                    {
                        "date": now,
                        "hour": completed["hour"],
                        "minute": completed["minute"],
                        "avg_w": completed["avg_w"],
                        "effective_w": completed["effective_w"],
                        "action": completed["result"],
                    }
                )

        if sample["output_changed"]:
            result.output_changes.append(
                {
                    "date": now,
                    "limit_a": sample["output_limit_a"],
                    "reason": sample["limit_reason"],
                    "is_learning": sample["is_learning"],
                    "in_peak_hours": sample["in_peak_hours"],
                }
            )

        if battery.enabled:
            if now.hour != last_hour:
                result.battery_data.append(
                    {
                        "date": now,
                        "hour": now.hour,
                        "soc": round(soc if simulate_soc else battery_state["soc"], 1),
                        "min_soc": min_soc,
                        "target_soc": target_soc,
                        "charge_rate_w": round(charge_w),
                        "discharge_rate_w": round(discharge_w),
                        "action": action,
                        "raw_power_w": round(raw_w),
                        "grid_power_w": round(grid_w),
                    }
                )
            rate = round(charge_w - discharge_w)
            if rate != last_rate:
                result.charge_rate_changes.append(
                    {
                        "date": now,
                        "charge_rate_w": rate,
                        "charging": action == "charging",
                        "discharging": action == "discharging",
                        "soc": round(soc, 1),
                    }
                )
                last_rate = rate

        last_hour = now.hour
        result.total_samples += 1
        now += timedelta(minutes=sample_minutes)

    result.end = now
    result.final_state = state
    if simulate_soc:
        result.final_soc = soc
    result.summary = generate_summary(result)
    return result


def generate_summary(result: SimulationResult) -> Dict[str, Any]:
    """Hourly, peak and limit statistics of a run."""
    config = result.config
    state = result.final_state or EngineState()

    averages = [h["avg_w"] for h in result.hourly_data]
    peaks = top_peaks(state, config)
    average = peak_average_w(state, config)
    active_changes = [c for c in result.output_changes if not c["is_learning"]]

    return {
        "hourly_stats": {
            "total_periods": len(averages),
            "avg_power_w": round(sum(averages) / len(averages)) if averages else 0,
            "max_power_w": round(max(averages)) if averages else 0,
            "min_power_w": round(min(averages)) if averages else 0,
        },
        "peak_stats": {
            "total_recorded": len(state.peaks) + (1 if state.month_peak else 0),
            "added": sum(1 for p in result.peak_records if p["action"] == "added"),
            "updated": sum(1 for p in result.peak_records if p["action"] == "updated"),
            "final_top_peaks": [
                {
                    "date": p.date,
                    "hour": p.hour,
                    "minute": p.minute,
                    "value_w": round(p.value),
                    "effective_w": round(p.effective),
                }
                for p in peaks
            ],
            "peak_average_w": round(average),
            "peak_average_kw": round(average / 1000.0, 1),
        },
        "limit_stats": {
            "total_changes": len(result.output_changes),
            "active_limit_changes": len(active_changes),
            "avg_limit_a": (
                round(sum(c["limit_a"] for c in active_changes) / len(active_changes), 1)
                if active_changes
                else None
            ),
        },
    }


# Named checks usable from scenario expectations

def _night_discount_applied(result: SimulationResult) -> bool:
    state = result.final_state
    return all(abs(p.effective - p.value * 0.5) < 1 for p in state.peaks if is_night_hour(p.hour))


def _weekend_limits_open(result: SimulationResult) -> bool:
    cap = result.config.max_breaker_current
    return all(c["limit_a"] == cap for c in result.output_changes if c["date"].weekday() >= 5)


def _peaks_in_season_only(result: SimulationResult) -> bool:
    state = result.final_state
    return all(
        is_in_peak_season(datetime.fromisoformat(p.date).month, result.config) for p in state.peaks
    )


def _output_above_minimum(result: SimulationResult) -> bool:
    config = result.config
    minimum_a = math.floor(config.minimum_limit_w / (config.phases * config.grid_voltage) * 10) / 10
    return all(c["limit_a"] >= minimum_a for c in result.output_changes)


def _charging_off_peak_only(result: SimulationResult) -> bool:
    config = result.config
    return all(
        not is_in_peak_hours(c["date"].hour, c["date"].weekday(), c["date"].month, config)
        for c in result.charge_rate_changes
        if c["charging"]
    )


def _soc_above_minimum(result: SimulationResult) -> bool:
    return all(b["soc"] >= b["min_soc"] - 0.1 for b in result.battery_data)


def _headroom_follows_soc(result: SimulationResult) -> bool:
    records = [h for h in result.hourly_data if h["soc"] is not None]
    matches = all(
        h["headroom_w"] == dynamic_headroom_w(result.config, {"soc": h["soc"]}) for h in records
    )
    return matches and len({h["headroom_w"] for h in records}) > 1


CHECKS: Dict[str, Callable[[SimulationResult], bool]] = {
    "night_discount_applied": _night_discount_applied,
    "weekend_limits_open": _weekend_limits_open,
    "peaks_in_season_only": _peaks_in_season_only,
    "output_above_minimum": _output_above_minimum,
    "charging_off_peak_only": _charging_off_peak_only,
    "soc_above_minimum": _soc_above_minimum,
    "headroom_follows_soc": _headroom_follows_soc,
}


def verify_results(result: SimulationResult, expectations: Mapping[str, Any]) -> Dict[str, Any]:
    """
    Compare a run with expected outcomes.

    Supported expectations: min_peaks, peak_average_range, month_resets,
    learning_complete, limit_range and checks (names from CHECKS).

    Raises:
        KeyError: Unknown named check
    """
    checks: List[Dict[str, Any]] = []
    state = result.final_state or EngineState()
    recorded = result.summary["peak_stats"]["total_recorded"]

    if "min_peaks" in expectations:
        checks.append(
            {
                "name": "Minimum peaks recorded",
                "expected": f">= {expectations['min_peaks']}",
                "actual": recorded,
                "passed": recorded >= expectations["min_peaks"],
            }
        )

    if "peak_average_range" in expectations:
        low, high = expectations["peak_average_range"]
        average = result.summary["peak_stats"]["peak_average_w"]
        checks.append(
            {
                "name": "Peak average in range",
                "expected": f"{low}W - {high}W",
                "actual": f"{average}W",
                "passed": low <= average <= high,
            }
        )

    if "month_resets" in expectations:
        checks.append(
            {
                "name": "Month resets count",
                "expected": expectations["month_resets"],
                "actual": len(result.month_resets),
                "passed": len(result.month_resets) == expectations["month_resets"],
            }
        )

    if "learning_complete" in expectations:
        complete = confirmed_peak_count(state, result.config) >= result.config.peak_count
        checks.append(
            {
                "name": "Learning phase completed",
                "expected": expectations["learning_complete"],
                "actual": complete,
                "passed": complete == expectations["learning_complete"],
            }
        )

    if "limit_range" in expectations:
        low, high = expectations["limit_range"]
        active = [c["limit_a"] for c in result.output_changes if not c["is_learning"]]
        checks.append(
            {
                "name": "Limit values in range",
                "expected": f"{low}A - {high}A",
                "actual": f"{min(active)}A - {max(active)}A" if active else "N/A",
                "passed": all(low <= a <= high for a in active),
            }
        )

    for name in expectations.get("checks", []):
        passed = CHECKS[name](result)
        checks.append({"name": name, "expected": True, "actual": passed, "passed": passed})

    passed_count = sum(1 for c in checks if c["passed"])
    return {
        "passed": passed_count == len(checks),
        "total_checks": len(checks),
        "passed_checks": passed_count,
        "failed_checks": len(checks) - passed_count,
        "checks": checks,
    }


def format_results(result: SimulationResult) -> str:
    config = result.config
    summary = result.summary
    hourly = summary["hourly_stats"]
    peaks = summary["peak_stats"]
    limits = summary["limit_stats"]

    if config.peak_season_only:
        season = f"month {config.peak_season_start}-{config.peak_season_end}"
    else:
        season = "all year"

    lines = [
        "=" * 64,
        "EFFEKTTARIFF SIMULATION RESULTS",
        "=" * 64,
        f"Period: {result.start.date()} to {result.end.date() if result.end else '?'}",
        f"Duration: {result.duration_days} days ({result.total_samples} samples)",
        "-" * 64,
        "CONFIGURATION:",
        f"  Billing: {config.mode.value} ({config.interval_minutes} min)",
        f"  Peak count: {config.peak_count}",
        f"  Peak hours: {config.peak_hours_start}:00 - {config.peak_hours_end}:00",
        f"  Season: {season}",
        f"  Night discount: {'Yes (50%)' if config.night_discount else 'No'}",
        f"  Weekdays only: {'Yes' if config.weekdays_only else 'No'}",
        "-" * 64,
        "PERIOD STATISTICS:",
        f"  Completed periods: {hourly['total_periods']}",
        f"  Average power: {hourly['avg_power_w']} W",
        f"  Max power: {hourly['max_power_w']} W",
        f"  Min power: {hourly['min_power_w']} W",
        "-" * 64,
        "PEAK STATISTICS:",
        f"  Peaks added: {peaks['added']}",
        f"  Peaks updated: {peaks['updated']}",
        f"  Final peak average: {peaks['peak_average_kw']} kW",
        f"  Top {config.peak_count} peaks:",
    ]
    for idx, peak in enumerate(peaks["final_top_peaks"], start=1):
        lines.append(
            f"    {idx}. {peak['date']} {peak['hour']:02d}:{peak['minute']:02d} - "
            f"{peak['effective_w'] / 1000:.2f} kW"
        )
    lines.extend(
        [
            "-" * 64,
            "LIMIT CHANGES:",
            f"  Total changes: {limits['total_changes']}",
            f"  Active limit changes: {limits['active_limit_changes']}",
        ]
    )
    if limits["avg_limit_a"] is not None:
        lines.append(f"  Average limit: {limits['avg_limit_a']} A")
    lines.append("-" * 64)
    lines.append(f"Month resets: {len(result.month_resets)}")
    for reset in result.month_resets:
        lines.append(f"  {reset['date'].date()}: cleared {reset['previous_peak_count']} peaks")
    if result.final_soc is not None:
        lines.append(f"Final SOC: {result.final_soc:.1f}%")
    lines.append("=" * 64)
    return "\n".join(lines)


def format_verification(verification: Mapping[str, Any]) -> str:
    status = "PASSED" if verification["passed"] else "FAILED"
    lines = [
        f"Verification: {status} ({verification['passed_checks']}/{verification['total_checks']})",
        "-" * 50,
    ]
    for check in verification["checks"]:
        lines.append(f"[{'x' if check['passed'] else ' '}] {check['name']}")
        lines.append(f"    Expected: {check['expected']}")
        lines.append(f"    Actual: {check['actual']}")
    return "\n".join(lines)


def _write_csv(path: str, header: Sequence[str], rows: Sequence[Sequence[Any]]) -> None:
    with open(path, "w", newline="", encoding="utf-8") as handle:
        writer = csv.writer(handle)
        writer.writerow(header)
        writer.writerows(rows)


def export_to_csv(result: SimulationResult, output_dir: str, prefix: str) -> Dict[str, str]:
    """
    Write the run to CSV files.

    Returns:
        Mapping of table name (hourly, peaks, limits, battery) to file path.
        Empty tables are skipped.
    """
    os.makedirs(output_dir, exist_ok=True)
    files: Dict[str, str] = {}

    if result.hourly_data:
        path = os.path.join(output_dir, f"{prefix}_hourly.csv")
        _write_csv(
            path,
            ["timestamp", "date", "hour", "minute", "avg_w", "effective_w", "result", "headroom_w"],
            [
                [
                    h["timestamp"].isoformat(),
                    h["date"],
                    h["hour"],
                    h["minute"],
                    round(h["avg_w"]),
                    round(h["effective_w"]),
                    h["result"],
                    round(h["headroom_w"]),
                ]
                for h in result.hourly_data
            ],
        )
        files["hourly"] = path

    if result.peak_records:
        path = os.path.join(output_dir, f"{prefix}_peaks.csv")
        _write_csv(
            path,
            ["timestamp", "hour", "minute", "avg_w", "effective_w", "action"],
            [
                [p["date"].isoformat(), p["hour"], p["minute"], round(p["avg_w"]), round(p["effective_w"]), p["action"]]
                for p in result.peak_records
            ],
        )
        files["peaks"] = path

    if result.output_changes:
        path = os.path.join(output_dir, f"{prefix}_limits.csv")
        _write_csv(
            path,
            ["timestamp", "limit_a", "reason", "is_learning", "in_peak_hours"],
            [
                [c["date"].isoformat(), c["limit_a"], c["reason"], c["is_learning"], c["in_peak_hours"]]
                for c in result.output_changes
            ],
        )
        files["limits"] = path

    if result.battery_data:
        path = os.path.join(output_dir, f"{prefix}_battery.csv")
        _write_csv(
            path,
            ["timestamp", "hour", "soc", "min_soc", "charge_rate_w", "discharge_rate_w", "action", "grid_power_w"],
            [
                [
                    b["date"].isoformat(),
                    b["hour"],
                    b["soc"],
                    b["min_soc"],
                    b["charge_rate_w"],
                    b["discharge_rate_w"],
                    b["action"],
                    b["grid_power_w"],
                ]
                for b in result.battery_data
            ],
        )
        files["battery"] = path

    return files


# Scenarios

@dataclass
class Scenario:
    key: str
    name: str
    description: str
    start: datetime
    duration_days: int
    power: Dict[str, Any]
    preset: Optional[str] = None
    options: Dict[str, Any] = field(default_factory=dict)
    samples_per_hour: int = 6
    battery: Dict[str, Any] = field(default_factory=dict)
    expectations: Dict[str, Any] = field(default_factory=dict)

    def build_config(self) -> TariffConfig:
        return build_config(self.preset, self.options)

    def soc_generator(self, config: TariffConfig) -> Optional[SocGenerator]:
        if "soc_profile" in self.battery:
            min_soc = float(self.battery.get("min_soc", config.battery.default_min_soc))
            return soc_profile(self.battery["soc_profile"], min_soc)
        return None

    def run(self) -> SimulationResult:
        config = self.build_config()
        return run_simulation(
            config,
            self.start,
            self.duration_days,
            build_power_generator(self.power),
            samples_per_hour=self.samples_per_hour,
            initial_soc=self.battery.get("initial_soc"),
            soc_generator=self.soc_generator(config),
        )


def _parse_start(value: Any) -> datetime:
    if isinstance(value, datetime):
        return value
    return datetime.fromisoformat(str(value))


def load_scenarios(path: Optional[Path] = None) -> Dict[str, Scenario]:
    """Load the scenario catalogue (defaults to the bundled scenarios.yaml)."""
    with open(path or SCENARIOS_FILE, encoding="utf-8") as handle:
        raw = yaml.safe_load(handle) or {}

    scenarios: Dict[str, Scenario] = {}
    for key, data in raw.items():
        scenarios[key] = Scenario(
            key=key,
            name=data.get("name", key),
            description=data.get("description", ""),
            start=_parse_start(data["start"]),
            duration_days=int(data["duration_days"]),
            power=dict(data["power"]),
            preset=data.get("preset"),
            options=dict(data.get("options") or {}),
            samples_per_hour=int(data.get("samples_per_hour", 6)),
            battery=dict(data.get("battery") or {}),
            expectations=dict(data.get("expectations") or {}),
        )
    return scenarios


def get_scenario(key: str, path: Optional[Path] = None) -> Optional[Scenario]:
    return load_scenarios(path).get(key)


def list_scenarios(path: Optional[Path] = None) -> List[Dict[str, Any]]:
    return [
        {
            "key": scenario.key,
            "name": scenario.name,
            "description": scenario.description,
            "duration_days": scenario.duration_days,
        }
        for scenario in load_scenarios(path).values()
    ]
