"""Shared fixtures."""
import json
from unittest.mock import AsyncMock, MagicMock, Mock, patch

import pytest


@pytest.fixture
def storage_files():
    """
    Replace Home Assistant's Store with one backed by a dict of JSON strings.

    The dict outlives individual Store instances, so it behaves like the
    .storage directory across a restart.
    """
    files = {}

    def make_store(hass, version, key):
        store = MagicMock()
        store.key = key
        store.async_load = AsyncMock(side_effect=lambda: json.loads(files[key]) if key in files else None)
        store.async_save = AsyncMock(side_effect=lambda data: files.__setitem__(key, json.dumps(data)))
        store.async_delay_save = Mock(
            side_effect=lambda data_func, delay=0: files.__setitem__(key, json.dumps(data_func()))
        )
        return store

    with patch("custom_components.effekttariff.store.Store", side_effect=make_store):
        yield files
