from homeassistant.const import Platform

DOMAIN = "effekttariff"

PLATFORMS = [
    Platform.SENSOR,
]

# Host-sensorer
CONF_GRID_POWER_ENTITY = "grid_power_entity"  # W/kW, positiv = import
CONF_BATT_SOC_ENTITY = "batt_soc_entity"  # %
CONF_BATT_MIN_SOC_ENTITY = "batt_min_soc_entity"  # % (frivillig)
CONF_PRESET = "preset"

# Debitering
CONF_BILLING_MODE = "billing_mode"  # ranked_average | single_rolling_peak
CONF_PEAK_COUNT = "peak_count"
CONF_ONE_PEAK_PER_DAY = "one_peak_per_day"
CONF_ROLLING_AVERAGE = "rolling_average"
CONF_ROLLING_MONTHS = "rolling_months"
CONF_INTERVAL_MINUTES = "interval_minutes"  # 15, 30 eller 60

# Tidsfönster
CONF_PEAK_HOURS_START = "peak_hours_start"
CONF_PEAK_HOURS_END = "peak_hours_end"
CONF_WEEKDAYS_ONLY = "weekdays_only"
CONF_NIGHT_DISCOUNT = "night_discount"
CONF_PEAK_SEASON_ONLY = "peak_season_only"
CONF_PEAK_SEASON_START = "peak_season_start"  # månad 1-12
CONF_PEAK_SEASON_END = "peak_season_end"

# Gräns
CONF_MINIMUM_LIMIT_W = "minimum_limit_w"
CONF_HEADROOM_W = "headroom_w"
CONF_DYNAMIC_HEADROOM = "dynamic_headroom"  # bool
CONF_HEADROOM_RULES = "headroom_rules"  # [{"soc_below": 20, "headroom_w": 1000}, ...]
CONF_LEARNING_MODE = "learning_mode"  # fixed-minimum | carryover-percentage
CONF_PREVIOUS_MONTH_CARRYOVER = "previous_month_carryover"  # %

# Elanslutning
CONF_PHASES = "phases"
CONF_GRID_VOLTAGE = "grid_voltage"
CONF_MAX_BREAKER_CURRENT = "max_breaker_current"  # A

# Batteri
CONF_BATTERY_ENABLED = "battery_enabled"
CONF_BATT_CAPACITY_WH = "batt_capacity_wh"
CONF_BATT_MAX_CHARGE_W = "batt_max_charge_w"
CONF_BATT_MAX_DISCH_W = "batt_max_disch_w"
CONF_BATT_SOC_BUFFER = "batt_soc_buffer"  # mål-SOC = min-SOC + buffert
CONF_BATT_DEFAULT_MIN_SOC = "batt_default_min_soc"

# Batteribalansering
CONF_BALANCING_ENABLED = "balancing_enabled"
CONF_BALANCING_SOC_THRESHOLD = "balancing_soc_threshold"
CONF_BALANCING_TARGET_SOC = "balancing_target_soc"
CONF_BALANCING_HOLD_HOURS = "balancing_hold_hours"
CONF_BALANCING_START_HOUR = "balancing_start_hour"
CONF_BALANCING_END_HOUR = "balancing_end_hour"

# Prognos
CONF_FORECAST_SOURCE = "forecast_source"  # none | time-based | historical | external
CONF_MORNING_PEAK_START = "morning_peak_start"
CONF_MORNING_PEAK_END = "morning_peak_end"
CONF_MORNING_PEAK_WEIGHT = "morning_peak_weight"
CONF_EVENING_PEAK_START = "evening_peak_start"
CONF_EVENING_PEAK_END = "evening_peak_end"
CONF_EVENING_PEAK_WEIGHT = "evening_peak_weight"
CONF_ASSUMED_DAILY_PEAK_W = "assumed_daily_peak_w"
CONF_BUDGET_BUFFER = "budget_buffer"  # % reserv för oväntade toppar

# Driftstopp
CONF_DOWNTIME_ENABLED = "downtime_enabled"
CONF_DOWNTIME_TRIGGER_HOURS = "downtime_trigger_hours"
CONF_DOWNTIME_ACTION = "downtime_action"  # log | ignore

BILLING_RANKED_AVERAGE = "ranked_average"
BILLING_SINGLE_ROLLING_PEAK = "single_rolling_peak"

LEARNING_FIXED_MINIMUM = "fixed-minimum"
LEARNING_CARRYOVER = "carryover-percentage"

FORECAST_NONE = "none"
FORECAST_TIME_BASED = "time-based"
FORECAST_HISTORICAL = "historical"
FORECAST_EXTERNAL = "external"
FORECAST_EXTERNAL_FALLBACK = "external-fallback"

# Fasta tariffkonstanter
NIGHT_START_HOUR = 22
NIGHT_END_HOUR = 6
NIGHT_DISCOUNT_FACTOR = 0.5
PEAK_LIST_TRIM_FACTOR = 3  # behåll 3×N toppar i rankat läge
MIN_HOURS_UNTIL_PEAK = 0.5
OFF_SEASON_HOURS_UNTIL_PEAK = 24 * 7
PEAK_PERIOD_THRESHOLD = 0.6  # andel av dygnets max som räknas som topp
HISTORY_SAMPLE_CAP = 100
FALLBACK_MIN_SOC = 20.0

DEFAULTS = {
    CONF_BILLING_MODE: BILLING_RANKED_AVERAGE,
    CONF_PEAK_COUNT: 3,
    CONF_ONE_PEAK_PER_DAY: True,
    CONF_ROLLING_AVERAGE: False,
    CONF_ROLLING_MONTHS: 12,
    CONF_INTERVAL_MINUTES: 60,
    CONF_PEAK_HOURS_START: 7,
    CONF_PEAK_HOURS_END: 21,
    CONF_WEEKDAYS_ONLY: False,
    CONF_NIGHT_DISCOUNT: False,
    CONF_PEAK_SEASON_ONLY: True,
    CONF_PEAK_SEASON_START: 11,
    CONF_PEAK_SEASON_END: 3,
    CONF_MINIMUM_LIMIT_W: 4000.0,
    CONF_HEADROOM_W: 300.0,
    CONF_DYNAMIC_HEADROOM: False,
    CONF_HEADROOM_RULES: [
        {"soc_below": 20, "headroom_w": 1000.0},
        {"soc_below": 80, "headroom_w": 500.0},
        {"soc_below": 101, "headroom_w": 200.0},
    ],
    CONF_LEARNING_MODE: LEARNING_FIXED_MINIMUM,
    CONF_PREVIOUS_MONTH_CARRYOVER: 80.0,
    CONF_PHASES: 3,
    CONF_GRID_VOLTAGE: 230.0,
    CONF_MAX_BREAKER_CURRENT: 25.0,
    CONF_BATTERY_ENABLED: False,
    CONF_BATT_CAPACITY_WH: 10000.0,
    CONF_BATT_MAX_CHARGE_W: 3000.0,
    CONF_BATT_MAX_DISCH_W: 3000.0,
    CONF_BATT_SOC_BUFFER: 20.0,
    CONF_BATT_DEFAULT_MIN_SOC: FALLBACK_MIN_SOC,
    CONF_BALANCING_ENABLED: False,
    CONF_BALANCING_SOC_THRESHOLD: 95.0,
    CONF_BALANCING_TARGET_SOC: 100.0,
    CONF_BALANCING_HOLD_HOURS: 2.0,
    CONF_BALANCING_START_HOUR: 0,
    CONF_BALANCING_END_HOUR: 6,
    CONF_FORECAST_SOURCE: FORECAST_NONE,
    CONF_MORNING_PEAK_START: 6,
    CONF_MORNING_PEAK_END: 9,
    CONF_MORNING_PEAK_WEIGHT: 0.3,
    CONF_EVENING_PEAK_START: 17,
    CONF_EVENING_PEAK_END: 21,
    CONF_EVENING_PEAK_WEIGHT: 1.0,
    CONF_ASSUMED_DAILY_PEAK_W: 5000.0,
    CONF_BUDGET_BUFFER: 20.0,
    CONF_DOWNTIME_ENABLED: True,
    CONF_DOWNTIME_TRIGGER_HOURS: 2,
    CONF_DOWNTIME_ACTION: "log",
}

# Nätbolagens upplägg, läggs ovanpå DEFAULTS
PRESETS = {
    "ellevio": {
        CONF_PEAK_COUNT: 3,
        CONF_ONE_PEAK_PER_DAY: True,
        CONF_PEAK_HOURS_START: 0,
        CONF_PEAK_HOURS_END: 24,
        CONF_NIGHT_DISCOUNT: True,
        CONF_PEAK_SEASON_ONLY: False,
    },
    "vattenfall": {
        CONF_PEAK_COUNT: 5,
        CONF_ONE_PEAK_PER_DAY: True,
        CONF_PEAK_HOURS_START: 7,
        CONF_PEAK_HOURS_END: 21,
        CONF_WEEKDAYS_ONLY: True,
        CONF_PEAK_SEASON_ONLY: True,
        CONF_PEAK_SEASON_START: 11,
        CONF_PEAK_SEASON_END: 3,
    },
    "jonkoping": {
        CONF_PEAK_COUNT: 2,
        CONF_ONE_PEAK_PER_DAY: False,
        CONF_PEAK_HOURS_START: 7,
        CONF_PEAK_HOURS_END: 21,
        CONF_PEAK_SEASON_ONLY: False,
    },
    "kungalv": {
        CONF_PEAK_COUNT: 3,
        CONF_ONE_PEAK_PER_DAY: True,
        CONF_PEAK_HOURS_START: 0,
        CONF_PEAK_HOURS_END: 24,
        CONF_WEEKDAYS_ONLY: True,
        CONF_NIGHT_DISCOUNT: True,
        CONF_PEAK_SEASON_ONLY: False,
    },
    "fluvius": {
        CONF_BILLING_MODE: BILLING_SINGLE_ROLLING_PEAK,
        CONF_ROLLING_AVERAGE: True,
        CONF_ROLLING_MONTHS: 12,
        CONF_INTERVAL_MINUTES: 15,
        CONF_PEAK_HOURS_START: 0,
        CONF_PEAK_HOURS_END: 24,
        CONF_PEAK_SEASON_ONLY: False,
        CONF_MINIMUM_LIMIT_W: 2500.0,
        CONF_PHASES: 1,
        CONF_MAX_BREAKER_CURRENT: 40.0,
    },
}

MONTH_NAMES = ["Jan", "Feb", "Mar", "Apr", "May", "Jun", "Jul", "Aug", "Sep", "Oct", "Nov", "Dec"]

STORAGE_KEY_PREFIX = "effekttariff_"
STORAGE_KEY = "effekttariff_state"
STORAGE_VERSION = 1
STORAGE_SAVE_DELAY = 10  # sekunder

# Längsta tid mellan två mätningar som räknas som urladdning (h)
MAX_DISCHARGE_GAP_H = 0.25
