from __future__ import annotations

import logging
import math
from datetime import datetime
from typing import Any, Callable, Dict, Mapping, Optional, Tuple

from homeassistant.config_entries import ConfigEntry
from homeassistant.core import Event, HomeAssistant, callback
from homeassistant.helpers.event import async_track_state_change_event
from homeassistant.helpers.update_coordinator import DataUpdateCoordinator
from homeassistant.util import dt as dt_util

from .const import (
    CONF_BATT_MIN_SOC_ENTITY,
    CONF_BATT_SOC_ENTITY,
    CONF_GRID_POWER_ENTITY,
    DOMAIN,
    MAX_DISCHARGE_GAP_H,
    MONTH_NAMES,
    STORAGE_KEY_PREFIX,
)
from .engine import EffektTariffEngine
from .forecasting import record_discharge_energy
from .models import PeriodKey, TariffConfig
from .store import MemoryStateStore, StateStore

_LOGGER = logging.getLogger(__name__)

_UNAVAILABLE = ("", "unknown", "unavailable", "None", "nan")


def _safe_float(v: Any, default: Optional[float] = None) -> Optional[float]:
    """Tolerant parse till float. Hanterar None, unknown/unavailable och decimal‑komma."""
    if v is None or isinstance(v, bool):
        return default
    try:
        if isinstance(v, (int, float)):
            f = float(v)
        else:
            s = str(v).strip()
            if s in _UNAVAILABLE:
                return default
            f = float(s.replace(",", "."))
    except (ValueError, TypeError):
        return default
    if math.isnan(f):
        return default
    return f


def _as_watts(value: Any, unit: Optional[str]) -> Optional[float]:
    """Konvertera till W om möjligt. kW→W, MW→W. Saknas unit -> anta W."""
    val = _safe_float(value)
    if val is None:
        return None
    u = (unit or "").lower()
    if u == "kw":
        return val * 1000.0
    if u == "mw":
        return val * 1_000_000.0
    return val


def build_status_text(result: Mapping[str, Any], config: TariffConfig) -> str:
    """One line summary of the tracker state."""
    current_kw = result["current_average_w"] / 1000.0
    average_kw = result["peak_average_w"] / 1000.0
    target_w = result["target_limit_w"]
    peaks = len(result["ranked_peaks"])

    if not result["in_peak_season"]:
        return f"Off-season | Avg: {average_kw:.2f} kW | {peaks} peaks"

    if not result["in_peak_hours"]:
        return (
            f"Off-peak (until {config.peak_hours_start}:00) | Avg: {average_kw:.2f} kW | "
            f"Grid: {current_kw:.1f} kW"
        )

    if result["is_learning"] or not target_w:
        return (
            f"Learning ({peaks}/{config.peak_count}) | Grid: {current_kw:.1f} kW | "
            f"Limit: {result['output_limit_a']}A"
        )

    target_kw = target_w / 1000.0
    pct = result["current_average_w"] / target_w * 100.0
    if result["current_average_w"] > target_w * 1.05:
        return f"OVER {current_kw:.1f}/{target_kw:.1f} kW ({pct:.0f}%) | Limit: {result['output_limit_a']}A"
    if result["current_average_w"] > target_w * 0.85:
        return f"Peak: {current_kw:.1f}/{target_kw:.1f} kW ({pct:.0f}%) | Limit: {result['output_limit_a']}A"
    return (
        f"Peak: {current_kw:.1f}/{target_kw:.1f} kW | Limit: {result['output_limit_a']}A | "
        f"Avg: {average_kw:.2f} kW"
    )


def status_level(result: Mapping[str, Any]) -> str:
    """off_season | off_peak | learning | over | near | ok"""
    if not result["in_peak_season"]:
        return "off_season"
    if not result["in_peak_hours"]:
        return "off_peak"
    target_w = result["target_limit_w"]
    if result["is_learning"] or not target_w:
        return "learning"
    if result["current_average_w"] > target_w * 1.05:
        return "over"
    if result["current_average_w"] > target_w * 0.85:
        return "near"
    return "ok"


class EffektTariffCoordinator(DataUpdateCoordinator):
    """
    Push-baserad koordinator:
    - Lyssnar på nätsensorn (W/kW) och matar motorn vid varje ändring
    - Läser SOC/min-SOC för dynamisk marginal och batteriråd
    - Bokför urladdad energi mot periodbudgeten mellan två mätningar
    - Sparar tillståndet i store när ett intervall avslutas eller gränsen ändras
    """

    def __init__(
        self,
        hass: HomeAssistant,
        entry: ConfigEntry,
        entry_config: Mapping[str, Any],
        tariff_config: TariffConfig,
        store: Optional[StateStore] = None,
    ):
        super().__init__(
            hass,
            logger=_LOGGER,
            config_entry=entry,
            name=f"{DOMAIN}_coordinator",
            update_interval=None,
        )
        self.entry_id: str = entry.entry_id
        self.tariff_config = tariff_config
        self._grid_entity: str = entry_config.get(CONF_GRID_POWER_ENTITY, "")
        self._soc_entity: str = entry_config.get(CONF_BATT_SOC_ENTITY, "")
        self._min_soc_entity: str = entry_config.get(CONF_BATT_MIN_SOC_ENTITY, "")

        self._store: StateStore = store if store is not None else MemoryStateStore()
        self._storage_key = f"{STORAGE_KEY_PREFIX}{entry.entry_id}"
        self.engine = EffektTariffEngine.from_snapshot(tariff_config, self._store.load(self._storage_key))

        self._unsub: Optional[Callable[[], None]] = None
        # (tidpunkt, rekommenderad urladdning W, budgetperiod) från förra mätningen
        self._last_discharge: Optional[Tuple[datetime, float, PeriodKey]] = None
        self.data: Dict[str, Any] = {
            "output_limit_a": None,
            "target_limit_w": None,
            "limit_reason": "",
            "peak_average_w": 0.0,
            "ranked_peaks": [],
            "battery": None,
            "status_text": "waiting for grid power",
            "status_level": "learning",
        }

    async def _async_update_data(self) -> Dict[str, Any]:
        # Ingen polling; data kommer från sensorhändelser
        return self.data

    @callback
    def async_start(self) -> None:
        if not self._grid_entity:
            _LOGGER.warning("No grid power entity configured for %s", self.entry_id)
            return
        self._unsub = async_track_state_change_event(
            self.hass, [self._grid_entity], self._handle_grid_power_event
        )
        current = self.hass.states.get(self._grid_entity)
        if current is not None:
            self._handle_state(current)

    @callback
    def async_stop(self) -> None:
        if self._unsub is not None:
            self._unsub()
            self._unsub = None
        self._store.save(self._storage_key, self.engine.snapshot())

    @callback
    def _handle_grid_power_event(self, event: Event) -> None:
        new_state = event.data.get("new_state")
        if new_state is not None:
            self._handle_state(new_state)

    def _handle_state(self, state: Any) -> None:
        watts = _as_watts(state.state, state.attributes.get("unit_of_measurement"))
        if watts is None:
            if state.state not in ("unknown", "unavailable"):
                _LOGGER.warning("Unparsable grid power %r from %s", state.state, self._grid_entity)
            return
        self.async_set_updated_data(self.process_reading(watts, dt_util.now(), self._read_battery_state()))

    def _read_float(self, entity_id: str) -> Optional[float]:
        if not entity_id:
            return None
        st = self.hass.states.get(entity_id)
        if not st or st.state in (None, "", "unknown", "unavailable"):
            return None
        return _safe_float(st.state)

    def _read_battery_state(self) -> Optional[Dict[str, Optional[float]]]:
        soc = self._read_float(self._soc_entity)
        if soc is None:
            return None
        return {"soc": soc, "min_soc": self._read_float(self._min_soc_entity)}

    def process_reading(
        self,
        power_w: float,
        now: datetime,
        battery_state: Optional[Mapping[str, Any]] = None,
    ) -> Dict[str, Any]:
        """Feed one reading to the engine and build the coordinator data."""
        result = self.engine.process_sample(power_w, now, battery_state)

        if result["month_reset"]:
            _LOGGER.info(
                "Effekttariff: new month (%s), reset %d peaks",
                MONTH_NAMES[now.month - 1],
                result["previous_peak_count"],
            )

        completed = result["interval_completed"]
        if completed:
            night = " (night 50%)" if completed["was_night"] and self.tariff_config.night_discount else ""
            _LOGGER.debug(
                "Effekttariff: interval %d:%02d completed - %.2f kW%s [%s]",
                completed["hour"],
                completed["minute"],
                completed["avg_w"] / 1000.0,
                night,
                completed["result"],
            )

        self._record_discharge(now)
        battery = self.engine.battery_status(battery_state, now, power_w)
        self._remember_discharge(battery, now)

        if completed or result["output_changed"]:
            self._store.save(self._storage_key, self.engine.snapshot())

        data = dict(result)
        data["battery"] = battery
        data["status_text"] = build_status_text(result, self.tariff_config)
        data["status_level"] = status_level(result)
        return data

    def _record_discharge(self, now: datetime) -> None:
        """Book the energy discharged since the previous reading against its budget period."""
        if self._last_discharge is None:
            return
        since, rate_w, period_key = self._last_discharge
        self._last_discharge = None
        elapsed_h = (now - since).total_seconds() / 3600.0
        if elapsed_h <= 0:
            return
        energy_wh = rate_w * min(elapsed_h, MAX_DISCHARGE_GAP_H)
        total = record_discharge_energy(self.engine.state, period_key, energy_wh)
        _LOGGER.debug(
            "Effekttariff: %.0f Wh discharged in period %s (total %.0f Wh)", energy_wh, period_key, total
        )

    def _remember_discharge(self, battery: Optional[Mapping[str, Any]], now: datetime) -> None:
        if not battery:
            return
        rate_w = float(battery.get("discharge_rate_w") or 0)
        period_key = (battery.get("budget") or {}).get("period_key")
        if rate_w > 0 and period_key is not None:
            self._last_discharge = (now, rate_w, period_key)
