from abc import ABC, abstractmethod
from copy import deepcopy
import logging
from typing import Any, Dict, Optional

from homeassistant.core import HomeAssistant
from homeassistant.helpers.storage import Store

from .const import STORAGE_KEY, STORAGE_SAVE_DELAY, STORAGE_VERSION

_LOGGER = logging.getLogger(__name__)


class StateStore(ABC):
    """Keeps engine snapshots between runs. The caller decides when to load and save."""

    @abstractmethod
    def load(self, key: str) -> Optional[Dict[str, Any]]:
        ...

    @abstractmethod
    def save(self, key: str, snapshot: Dict[str, Any]) -> None:
        ...


class MemoryStateStore(StateStore):
    """
    In-process store used by the simulation and tests. Snapshots are copied
    on the way in and out so callers can keep mutating their state.
    """
    def __init__(self):
        self._snapshots: Dict[str, Dict[str, Any]] = {}

    def load(self, key: str) -> Optional[Dict[str, Any]]:
        snapshot = self._snapshots.get(key)
        return deepcopy(snapshot) if snapshot is not None else None

    def save(self, key: str, snapshot: Dict[str, Any]) -> None:
        self._snapshots[key] = deepcopy(snapshot)

    def __contains__(self, key: str) -> bool:
        return key in self._snapshots


class HomeAssistantStateStore(MemoryStateStore):
    """
    Snapshots persisted in Home Assistant's .storage directory.

    ``async_load`` must be awaited once before the first ``load``. ``save``
    updates the in-memory copy and schedules a delayed write, so a burst of
    readings ends up as one file write. Pending writes are flushed by Home
    Assistant on shutdown.
    """

    def __init__(self, hass: HomeAssistant, save_delay: float = STORAGE_SAVE_DELAY):
        super().__init__()
        self.hass = hass
        self.store = Store(hass, STORAGE_VERSION, STORAGE_KEY)
        self._save_delay = save_delay

    async def async_load(self) -> bool:
        """Read all snapshots from disk. Returns True if anything was stored."""
        data = await self.store.async_load()
        if not data:
            _LOGGER.debug("No stored effekttariff state found")
            return False
        snapshots = data.get("snapshots", {})
        self._snapshots = {k: v for k, v in snapshots.items() if isinstance(v, dict)}
        _LOGGER.info("Loaded effekttariff state for %d entr(y/ies)", len(self._snapshots))
        return True

    def save(self, key: str, snapshot: Dict[str, Any]) -> None:
        super().save(key, snapshot)
        self.store.async_delay_save(self._data_to_save, self._save_delay)

    async def async_save(self) -> None:
        """Write immediately."""
        await self.store.async_save(self._data_to_save())

    def _data_to_save(self) -> Dict[str, Any]:
        return {"snapshots": self._snapshots}
