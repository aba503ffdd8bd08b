from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Mapping, NamedTuple, Optional, Tuple, Union

from .const import (
    BILLING_RANKED_AVERAGE,
    BILLING_SINGLE_ROLLING_PEAK,
    FORECAST_EXTERNAL,
    FORECAST_HISTORICAL,
    FORECAST_NONE,
    FORECAST_TIME_BASED,
    LEARNING_CARRYOVER,
    LEARNING_FIXED_MINIMUM,
)


class BillingMode(Enum):
    """How the grid operator bills the capacity charge."""
    RANKED_AVERAGE = BILLING_RANKED_AVERAGE  # Average of the top N peaks (Sweden)
    SINGLE_ROLLING_PEAK = BILLING_SINGLE_ROLLING_PEAK  # Monthly max, rolling annual average (Belgium)


class LearningMode(Enum):
    """Limit policy while a month has too few peaks."""
    FIXED_MINIMUM = LEARNING_FIXED_MINIMUM
    CARRYOVER = LEARNING_CARRYOVER


class ForecastSource(Enum):
    """Source of the daily peak forecast."""
    NONE = FORECAST_NONE
    TIME_BASED = FORECAST_TIME_BASED
    HISTORICAL = FORECAST_HISTORICAL
    EXTERNAL = FORECAST_EXTERNAL


# Configuration

@dataclass(frozen=True)
class HeadroomRule:
    soc_below: float
    headroom_w: float


@dataclass(frozen=True)
class DynamicHeadroom:
    """SOC dependent headroom. First rule with soc < soc_below wins."""
    enabled: bool = False
    rules: Tuple[HeadroomRule, ...] = ()


@dataclass(frozen=True)
class RankedAverageBilling:
    """Billing on the average of the top N peaks in a month."""
    peak_count: int = 3
    one_peak_per_day: bool = True

    @property
    def mode(self) -> BillingMode:
        return BillingMode.RANKED_AVERAGE


@dataclass(frozen=True)
class SingleRollingPeakBilling:
    """Billing on the single highest peak, optionally averaged over K months."""
    rolling_average: bool = True
    rolling_months: int = 12

    @property
    def mode(self) -> BillingMode:
        return BillingMode.SINGLE_ROLLING_PEAK


Billing = Union[RankedAverageBilling, SingleRollingPeakBilling]


@dataclass(frozen=True)
class BatterySettings:
    enabled: bool = False
    capacity_wh: float = 10000.0
    max_charge_w: float = 3000.0
    max_discharge_w: float = 3000.0
    soc_buffer: float = 20.0  # Target SOC = min SOC + buffer
    default_min_soc: float = 20.0


@dataclass(frozen=True)
class BalancingSettings:
    enabled: bool = False
    soc_threshold: float = 95.0
    target_soc: float = 100.0
    hold_hours: float = 2.0
    start_hour: int = 0
    end_hour: int = 6


@dataclass(frozen=True)
class ForecastSettings:
    source: ForecastSource = ForecastSource.NONE
    morning_peak_start: int = 6
    morning_peak_end: int = 9
    morning_peak_weight: float = 0.3
    evening_peak_start: int = 17
    evening_peak_end: int = 21
    evening_peak_weight: float = 1.0
    assumed_daily_peak_w: float = 5000.0
    budget_buffer_pct: float = 20.0


@dataclass(frozen=True)
class DowntimeSettings:
    enabled: bool = True
    trigger_hours: int = 2
    action: str = "log"  # log | ignore


@dataclass(frozen=True)
class TariffConfig:
    """Resolved, immutable configuration for one engine instance."""
    billing: Billing = field(default_factory=RankedAverageBilling)
    interval_minutes: int = 60
    peak_hours_start: int = 7
    peak_hours_end: int = 21
    weekdays_only: bool = False
    night_discount: bool = False
    peak_season_only: bool = True
    peak_season_start: int = 11
    peak_season_end: int = 3
    minimum_limit_w: float = 4000.0
    headroom_w: float = 300.0
    dynamic_headroom: DynamicHeadroom = field(default_factory=DynamicHeadroom)
    learning_mode: LearningMode = LearningMode.FIXED_MINIMUM
    previous_month_carryover: float = 80.0
    phases: int = 3
    grid_voltage: float = 230.0
    max_breaker_current: float = 25.0
    battery: BatterySettings = field(default_factory=BatterySettings)
    balancing: BalancingSettings = field(default_factory=BalancingSettings)
    forecast: ForecastSettings = field(default_factory=ForecastSettings)
    downtime: DowntimeSettings = field(default_factory=DowntimeSettings)

    @property
    def mode(self) -> BillingMode:
        return self.billing.mode

    @property
    def peak_count(self) -> int:
        """Number of confirmed peaks needed before leaving the learning phase."""
        if isinstance(self.billing, RankedAverageBilling):
            return self.billing.peak_count
        return 1


# Runtime records

@dataclass
class PeakRecord:
    date: str  # YYYY-MM-DD
    hour: int
    value: float  # Measured average (W)
    effective: float  # Billing relevant value after night discount (W)
    minute: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "date": self.date,
            "hour": self.hour,
            "minute": self.minute,
            "value": self.value,
            "effective": self.effective,
        }

    @staticmethod
    def from_dict(data: Mapping[str, Any]) -> "PeakRecord":
        return PeakRecord(
            date=data["date"],
            hour=int(data["hour"]),
            value=float(data["value"]),
            effective=float(data["effective"]),
            minute=int(data.get("minute", 0)),
        )


@dataclass
class MonthlyPeak:
    month_key: str  # YYYY-MM
    peak_w: float


@dataclass
class CompletedInterval:
    """A finished measurement period, emitted when the period identifier rolls over."""
    period_start: datetime
    average_w: float
    effective_w: float
    was_night: bool
    result: str = ""  # added | updated | kept | skipped

    @property
    def date(self) -> str:
        return self.period_start.date().isoformat()

    @property
    def hour(self) -> int:
        return self.period_start.hour

    @property
    def minute(self) -> int:
        return self.period_start.minute

    def as_dict(self) -> Dict[str, Any]:
        return {
            "date": self.date,
            "hour": self.hour,
            "minute": self.minute,
            "avg_w": self.average_w,
            "effective_w": self.effective_w,
            "was_night": self.was_night,
            "result": self.result,
        }


@dataclass
class DowntimeEvent:
    from_hour: int
    to_hour: int
    missed_hours: int

    def as_dict(self) -> Dict[str, int]:
        return {
            "from_hour": self.from_hour,
            "to_hour": self.to_hour,
            "missed_hours": self.missed_hours,
        }


class PeriodKey(NamedTuple):
    """Identifies a forecast period by its hour span."""
    start: int
    end: int

    def __str__(self) -> str:
        return f"{self.start}-{self.end}"

    @staticmethod
    def parse(text: str) -> "PeriodKey":
        start, end = text.split("-")
        return PeriodKey(int(start), int(end))


@dataclass
class ForecastPeriod:
    start: int
    end: int  # Exclusive
    expected_peak_w: float
    weight: float
    budget_wh: Optional[float] = None

    @property
    def key(self) -> PeriodKey:
        return PeriodKey(self.start, self.end)

    def contains(self, hour: int) -> bool:
        return self.start <= hour < self.end


@dataclass
class Forecast:
    periods: List[ForecastPeriod]
    source: str
    generated_at: datetime
    total_budget_wh: Optional[float] = None
    buffer_wh: Optional[float] = None

    def find_period(self, hour: int) -> Optional[ForecastPeriod]:
        for period in self.periods:
            if period.contains(hour):
                return period
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "periods": [
                {
                    "start": p.start,
                    "end": p.end,
                    "expected_peak_w": p.expected_peak_w,
                    "weight": p.weight,
                    "budget_wh": p.budget_wh,
                }
                for p in self.periods
            ],
            "source": self.source,
            "generated_at": self.generated_at.isoformat(),
            "total_budget_wh": self.total_budget_wh,
            "buffer_wh": self.buffer_wh,
        }

    @staticmethod
    def from_dict(data: Mapping[str, Any]) -> "Forecast":
        return Forecast(
            periods=[
                ForecastPeriod(
                    start=int(p["start"]),
                    end=int(p["end"]),
                    expected_peak_w=float(p["expected_peak_w"]),
                    weight=float(p["weight"]),
                    budget_wh=p.get("budget_wh"),
                )
                for p in data.get("periods", [])
            ],
            source=data["source"],
            generated_at=datetime.fromisoformat(data["generated_at"]),
            total_budget_wh=data.get("total_budget_wh"),
            buffer_wh=data.get("buffer_wh"),
        )


@dataclass
class DayHistory:
    """Learned hourly consumption for one weekday."""
    hourly_averages: List[float] = field(default_factory=lambda: [0.0] * 24)
    sample_counts: List[int] = field(default_factory=lambda: [0] * 24)

    @property
    def learned_hours(self) -> int:
        return sum(1 for count in self.sample_counts if count > 0)


@dataclass
class BatteryState:
    """Live battery telemetry."""
    soc: float
    min_soc: Optional[float] = None

    @staticmethod
    def from_any(value: Any) -> Optional["BatteryState"]:
        """Coerce telemetry into a BatteryState, None when SOC is not numeric."""
        if isinstance(value, BatteryState):
            candidate_soc, candidate_min = value.soc, value.min_soc
        elif isinstance(value, Mapping):
            candidate_soc = value.get("soc")
            candidate_min = value.get("min_soc", value.get("minSoc"))
        else:
            return None

        if isinstance(candidate_soc, bool) or not isinstance(candidate_soc, (int, float)):
            return None
        if isinstance(candidate_min, bool) or not isinstance(candidate_min, (int, float)):
            candidate_min = None
        return BatteryState(soc=float(candidate_soc), min_soc=candidate_min)


@dataclass
class EngineState:
    """
    Mutable engine state owned by the caller.

    Created empty once, then mutated in place by every call. The caller
    persists it between invocations using ``to_dict``/``from_dict``.
    """
    current_month: Optional[str] = None  # YYYY-MM
    peaks: List[PeakRecord] = field(default_factory=list)
    month_peak: Optional[PeakRecord] = None
    previous_month_peak_avg_w: Optional[float] = None
    monthly_history: List[MonthlyPeak] = field(default_factory=list)  # Most recent first

    # Current measurement period
    period_start: Optional[datetime] = None
    period_sum: float = 0.0
    period_samples: int = 0
    last_hour: Optional[int] = None

    last_output_limit_a: Optional[float] = None

    # Battery balancing
    is_balancing: bool = False
    balancing_start: Optional[datetime] = None
    last_balancing_window: Optional[str] = None

    # Forecasting
    current_forecast: Optional[Forecast] = None
    period_energy_used: Dict[PeriodKey, float] = field(default_factory=dict)  # Wh
    forecast_date: Optional[str] = None
    historical_data: Dict[int, DayHistory] = field(default_factory=dict)  # weekday (Mon=0)
    # Delintervall för timmen som håller på att fyllas (15/30 min)
    history_hour_start: Optional[datetime] = None
    history_hour_values: List[float] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        """JSON compatible snapshot."""
        return {
            "current_month": self.current_month,
            "peaks": [p.to_dict() for p in self.peaks],
            "month_peak": self.month_peak.to_dict() if self.month_peak else None,
            "previous_month_peak_avg_w": self.previous_month_peak_avg_w,
            "monthly_history": [
                {"month_key": m.month_key, "peak_w": m.peak_w} for m in self.monthly_history
            ],
            "period_start": self.period_start.isoformat() if self.period_start else None,
            "period_sum": self.period_sum,
            "period_samples": self.period_samples,
            "last_hour": self.last_hour,
            "last_output_limit_a": self.last_output_limit_a,
            "is_balancing": self.is_balancing,
            "balancing_start": self.balancing_start.isoformat() if self.balancing_start else None,
            "last_balancing_window": self.last_balancing_window,
            "current_forecast": self.current_forecast.to_dict() if self.current_forecast else None,
            "period_energy_used": {str(k): v for k, v in self.period_energy_used.items()},
            "forecast_date": self.forecast_date,
            "history_hour_start": self.history_hour_start.isoformat() if self.history_hour_start else None,
            "history_hour_values": list(self.history_hour_values),
            "historical_data": {
                str(day): {
                    "hourly_averages": list(h.hourly_averages),
                    "sample_counts": list(h.sample_counts),
                }
                for day, h in self.historical_data.items()
            },
        }

    @staticmethod
    def from_dict(data: Mapping[str, Any]) -> "EngineState":
        """Rebuild state from a ``to_dict`` snapshot."""
        period_start = data.get("period_start")
        balancing_start = data.get("balancing_start")
        month_peak = data.get("month_peak")
        forecast = data.get("current_forecast")
        history_hour_start = data.get("history_hour_start")
        return EngineState(
            current_month=data.get("current_month"),
            peaks=[PeakRecord.from_dict(p) for p in data.get("peaks", [])],
            month_peak=PeakRecord.from_dict(month_peak) if month_peak else None,
            previous_month_peak_avg_w=data.get("previous_month_peak_avg_w"),
            monthly_history=[
                MonthlyPeak(month_key=m["month_key"], peak_w=float(m["peak_w"]))
                for m in data.get("monthly_history", [])
            ],
            period_start=datetime.fromisoformat(period_start) if period_start else None,
            period_sum=float(data.get("period_sum", 0.0)),
            period_samples=int(data.get("period_samples", 0)),
            last_hour=data.get("last_hour"),
            last_output_limit_a=data.get("last_output_limit_a"),
            is_balancing=bool(data.get("is_balancing", False)),
            balancing_start=datetime.fromisoformat(balancing_start) if balancing_start else None,
            last_balancing_window=data.get("last_balancing_window"),
            current_forecast=Forecast.from_dict(forecast) if forecast else None,
            period_energy_used={
                PeriodKey.parse(k): float(v) for k, v in data.get("period_energy_used", {}).items()
            },
            forecast_date=data.get("forecast_date"),
            history_hour_start=datetime.fromisoformat(history_hour_start) if history_hour_start else None,
            history_hour_values=[float(v) for v in data.get("history_hour_values", [])],
            historical_data={
                int(day): DayHistory(
                    hourly_averages=[float(v) for v in h["hourly_averages"]],
                    sample_counts=[int(v) for v in h["sample_counts"]],
                )
                for day, h in data.get("historical_data", {}).items()
            },
        )
