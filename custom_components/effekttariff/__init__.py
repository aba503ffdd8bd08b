from __future__ import annotations

import logging
from typing import Any, Dict

from homeassistant.config_entries import ConfigEntry
from homeassistant.core import HomeAssistant

from .config import config_from_entry
from .const import DOMAIN, PLATFORMS
from .coordinator import EffektTariffCoordinator
from .store import HomeAssistantStateStore

_LOGGER = logging.getLogger(__name__)


async def async_setup_entry(hass: HomeAssistant, entry: ConfigEntry):
    hass.data.setdefault(DOMAIN, {})

    # Slå ihop data + options till aktuell konfig
    config: Dict[str, Any] = {**entry.data, **(entry.options or {})}
    tariff_config = config_from_entry(config)

    # En gemensam store för alla entries; läses från disk en gång
    store = hass.data[DOMAIN].get("store")
    if store is None:
        store = HomeAssistantStateStore(hass)
        await store.async_load()
        hass.data[DOMAIN]["store"] = store

    coordinator = EffektTariffCoordinator(hass, entry, config, tariff_config, store)

    hass.data[DOMAIN][entry.entry_id] = {
        "config": config,
        "coordinator": coordinator,
    }

    coordinator.async_start()
    entry.async_on_unload(coordinator.async_stop)
    entry.async_on_unload(entry.add_update_listener(async_options_updated))

    await hass.config_entries.async_forward_entry_setups(entry, PLATFORMS)

    _LOGGER.info(
        "Effekttariff %s init complete (%s, %d min intervals)",
        entry.entry_id,
        tariff_config.mode.value,
        tariff_config.interval_minutes,
    )
    return True


async def async_unload_entry(hass: HomeAssistant, entry: ConfigEntry):
    unload_ok = await hass.config_entries.async_unload_platforms(entry, PLATFORMS)
    if unload_ok:
        data = hass.data[DOMAIN].pop(entry.entry_id, None)
        if data:
            data["coordinator"].async_stop()
        store = hass.data[DOMAIN].get("store")
        if store is not None:
            await store.async_save()
    return unload_ok


async def async_options_updated(hass: HomeAssistant, entry: ConfigEntry):
    # Ny konfig kräver ny motor; tillståndet följer med via store
    await hass.config_entries.async_reload(entry.entry_id)
