from __future__ import annotations

from typing import Any, Optional

from homeassistant.components.sensor import SensorEntity
from homeassistant.core import HomeAssistant
from homeassistant.helpers.device_registry import DeviceInfo
from homeassistant.helpers.update_coordinator import CoordinatorEntity

from .const import DOMAIN


async def async_setup_entry(hass: HomeAssistant, entry, async_add_entities):
    st = hass.data[DOMAIN][entry.entry_id]
    coordinator = st["coordinator"]

    entities = [
        OutputCurrentSensor(coordinator, entry.entry_id),
        TargetLimitSensor(coordinator, entry.entry_id),
        PeakAverageSensor(coordinator, entry.entry_id),
    ]
    if coordinator.tariff_config.battery.enabled:
        entities.append(BatteryChargeRateSensor(coordinator, entry.entry_id))

    async_add_entities(entities)


class BaseEffektSensor(CoordinatorEntity, SensorEntity):
    def __init__(self, coordinator, entry_id: str):
        super().__init__(coordinator)
        self._entry_id = entry_id

    @property
    def device_info(self) -> DeviceInfo:
        return DeviceInfo(
            identifiers={(DOMAIN, self._entry_id)},
            name="Effekttariff",
            manufacturer="Effekttariff",
        )


class OutputCurrentSensor(BaseEffektSensor):
    _attr_name = "Current Limit"
    _attr_native_unit_of_measurement = "A"
    _attr_icon = "mdi:current-ac"
    _attr_device_class = "current"
    _attr_state_class = "measurement"

    @property
    def unique_id(self) -> str:
        return f"{DOMAIN}_output_limit_a_{self._entry_id}"

    @property
    def native_value(self) -> Optional[float]:
        return self.coordinator.data.get("output_limit_a")

    @property
    def extra_state_attributes(self) -> dict[str, Any]:
        data = self.coordinator.data
        return {
            "status": data.get("status_text"),
            "status_level": data.get("status_level"),
            "limit_reason": data.get("limit_reason"),
            "in_peak_season": data.get("in_peak_season"),
            "in_peak_hours": data.get("in_peak_hours"),
            "is_learning": data.get("is_learning"),
            "using_carryover": data.get("using_carryover"),
            "current_average_w": data.get("current_average_w"),
            "downtime": data.get("downtime"),
        }


class TargetLimitSensor(BaseEffektSensor):
    _attr_name = "Target Power Limit"
    _attr_native_unit_of_measurement = "W"
    _attr_icon = "mdi:transmission-tower-import"
    _attr_device_class = "power"
    _attr_state_class = "measurement"

    @property
    def unique_id(self) -> str:
        return f"{DOMAIN}_target_limit_w_{self._entry_id}"

    @property
    def native_value(self) -> Optional[float]:
        value = self.coordinator.data.get("target_limit_w")
        return round(value) if value is not None else None

    @property
    def extra_state_attributes(self) -> dict[str, Any]:
        return {
            "limit_reason": self.coordinator.data.get("limit_reason"),
            "headroom_w": self.coordinator.data.get("headroom_w"),
        }


class PeakAverageSensor(BaseEffektSensor):
    _attr_name = "Peak Average"
    _attr_native_unit_of_measurement = "W"
    _attr_icon = "mdi:chart-bell-curve"
    _attr_device_class = "power"

    @property
    def unique_id(self) -> str:
        return f"{DOMAIN}_peak_average_w_{self._entry_id}"

    @property
    def native_value(self) -> Optional[float]:
        value = self.coordinator.data.get("peak_average_w")
        return round(value) if value is not None else None

    @property
    def extra_state_attributes(self) -> dict[str, Any]:
        data = self.coordinator.data
        attrs = {
            "peaks": data.get("ranked_peaks") or [],
            "peaks_needed": self.coordinator.tariff_config.peak_count,
        }
        if "rolling_average_w" in data:
            attrs["rolling_average_w"] = data.get("rolling_average_w")
            attrs["current_month_peak"] = data.get("current_month_peak")
        return attrs


class BatteryChargeRateSensor(BaseEffektSensor):
    _attr_name = "Battery Charge Rate"
    _attr_native_unit_of_measurement = "W"
    _attr_icon = "mdi:battery-charging"
    _attr_device_class = "power"
    _attr_state_class = "measurement"

    @property
    def unique_id(self) -> str:
        return f"{DOMAIN}_battery_charge_rate_{self._entry_id}"

    @property
    def native_value(self) -> Optional[float]:
        battery = self.coordinator.data.get("battery") or {}
        # Positivt = ladda, negativt = ladda ur
        return battery.get("charge_rate_w", 0) - battery.get("discharge_rate_w", 0) if battery else None

    @property
    def extra_state_attributes(self) -> dict[str, Any]:
        battery = self.coordinator.data.get("battery") or {}
        attrs = {k: v for k, v in battery.items() if k != "budget"}
        budget = battery.get("budget")
        if budget:
            attrs["budget_period"] = str(budget.get("period_key")) if budget.get("period_key") else None
            attrs["remaining_budget_wh"] = budget.get("remaining_budget_wh")
        return attrs
