"""Calendar predicates for the capacity tariff (pure functions, no state)."""
from __future__ import annotations

from datetime import datetime, timedelta

from .const import MIN_HOURS_UNTIL_PEAK, NIGHT_END_HOUR, NIGHT_START_HOUR, OFF_SEASON_HOURS_UNTIL_PEAK
from .models import BalancingSettings, TariffConfig

SATURDAY = 5
SUNDAY = 6


def is_in_peak_season(month: int, config: TariffConfig) -> bool:
    """True when month (1-12) is inside the billing season. Handles Nov-Mar style wrap."""
    if not config.peak_season_only:
        return True
    if config.peak_season_start <= config.peak_season_end:
        return config.peak_season_start <= month <= config.peak_season_end
    return month >= config.peak_season_start or month <= config.peak_season_end


def is_weekend(weekday: int) -> bool:
    return weekday in (SATURDAY, SUNDAY)


def is_in_peak_hours(hour: int, weekday: int, month: int, config: TariffConfig) -> bool:
    """
    True when the hour counts for billing.

    Args:
        hour: Hour of day (0-23)
        weekday: Day of week, Monday=0 ... Sunday=6
        month: Month (1-12)
        config: Tariff configuration
    """
    if not is_in_peak_season(month, config):
        return False
    if config.weekdays_only and is_weekend(weekday):
        return False
    return config.peak_hours_start <= hour < config.peak_hours_end


def is_peak_time(moment: datetime, config: TariffConfig) -> bool:
    return is_in_peak_hours(moment.hour, moment.weekday(), moment.month, config)


def is_night_hour(hour: int) -> bool:
    """Night discount window 22:00-06:00."""
    return hour >= NIGHT_START_HOUR or hour < NIGHT_END_HOUR


def is_in_balancing_window(hour: int, settings: BalancingSettings) -> bool:
    if settings.start_hour <= settings.end_hour:
        return settings.start_hour <= hour < settings.end_hour
    return hour >= settings.start_hour or hour < settings.end_hour


def balancing_window_key(moment: datetime, settings: BalancingSettings) -> str:
    """Date of the balancing window that moment belongs to (windows may cross midnight)."""
    return (moment - timedelta(hours=settings.start_hour)).date().isoformat()


def period_start_for(moment: datetime, interval_minutes: int) -> datetime:
    """Floor a timestamp to the measurement interval grid."""
    minute = (moment.minute // interval_minutes) * interval_minutes
    return moment.replace(minute=minute, second=0, microsecond=0)


def month_key(moment: datetime) -> str:
    return f"{moment.year:04d}-{moment.month:02d}"


def hours_until_peak(now: datetime, config: TariffConfig) -> float:
    """
    Hours until the next billing window opens.

    Weekends are skipped entirely when only weekdays are billed. Outside the
    season one week is returned so that charge rates stay low.

    Returns:
        Hours until the next peak window (never below 0.5)
    """
    if not is_in_peak_season(now.month, config):
        return float(OFF_SEASON_HOURS_UNTIL_PEAK)

    day = now.replace(hour=0, minute=0, second=0, microsecond=0)
    if config.weekdays_only:
        if now.weekday() == SATURDAY:
            day += timedelta(days=2)
        elif now.weekday() == SUNDAY:
            day += timedelta(days=1)

    next_start = day + timedelta(hours=config.peak_hours_start)
    if now > next_start:
        tomorrow = day + timedelta(days=1)
        if config.weekdays_only and is_weekend(tomorrow.weekday()):
            tomorrow += timedelta(days=2 if tomorrow.weekday() == SATURDAY else 1)
        next_start = tomorrow + timedelta(hours=config.peak_hours_start)

    diff_hours = (next_start - now).total_seconds() / 3600.0
    return max(diff_hours, MIN_HOURS_UNTIL_PEAK)
