"""Tests for the engine state stores."""
import json
from unittest.mock import MagicMock

import pytest

from custom_components.effekttariff.const import STORAGE_KEY, STORAGE_SAVE_DELAY
from custom_components.effekttariff.store import HomeAssistantStateStore, MemoryStateStore


class TestMemoryStateStore:
    """Snapshot isolation."""

    def test_missing_key(self):
        assert MemoryStateStore().load("effekttariff_x") is None

    def test_save_and_load(self):
        store = MemoryStateStore()
        store.save("effekttariff_x", {"peaks": [1, 2]})

        assert "effekttariff_x" in store
        assert store.load("effekttariff_x") == {"peaks": [1, 2]}

    def test_copies_on_save_and_load(self):
        store = MemoryStateStore()
        snapshot = {"peaks": [1]}
        store.save("k", snapshot)
        snapshot["peaks"].append(2)

        loaded = store.load("k")
        loaded["peaks"].append(3)

        assert store.load("k") == {"peaks": [1]}


class TestHomeAssistantStateStore:
    """Snapshots persisted through Home Assistant storage."""

    @pytest.fixture
    def mock_hass(self):
        return MagicMock()

    @pytest.mark.asyncio
    async def test_load_no_data(self, mock_hass, storage_files):
        store = HomeAssistantStateStore(mock_hass)

        assert await store.async_load() is False
        assert store.load("effekttariff_x") is None

    def test_save_schedules_delayed_write(self, mock_hass, storage_files):
        store = HomeAssistantStateStore(mock_hass)

        store.save("effekttariff_x", {"peaks": [1]})

        store.store.async_delay_save.assert_called_once()
        assert store.store.async_delay_save.call_args[0][1] == STORAGE_SAVE_DELAY
        assert json.loads(storage_files[STORAGE_KEY]) == {"snapshots": {"effekttariff_x": {"peaks": [1]}}}

    @pytest.mark.asyncio
    async def test_survives_new_instance(self, mock_hass, storage_files):
        first = HomeAssistantStateStore(mock_hass)
        first.save("effekttariff_a", {"current_month": "2024-01"})
        first.save("effekttariff_b", {"current_month": "2024-02"})

        second = HomeAssistantStateStore(mock_hass)

        assert await second.async_load() is True
        assert second.load("effekttariff_a") == {"current_month": "2024-01"}
        assert "effekttariff_b" in second

    @pytest.mark.asyncio
    async def test_explicit_save(self, mock_hass, storage_files):
        store = HomeAssistantStateStore(mock_hass)
        store.save("effekttariff_x", {"peaks": []})
        storage_files.clear()

        await store.async_save()

        assert "effekttariff_x" in json.loads(storage_files[STORAGE_KEY])["snapshots"]
