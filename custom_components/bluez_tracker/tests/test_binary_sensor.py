"""Tests for BlueZ Tracker binary sensor platform."""
import asyncio

import pytest
from unittest.mock import AsyncMock, MagicMock

from homeassistant.components.binary_sensor import BinarySensorDeviceClass
from homeassistant.helpers.device_registry import CONNECTION_BLUETOOTH

from custom_components.bluez_tracker.binary_sensor import (
    BluezDeviceConnectedSensor,
    async_setup_entry,
    async_watch_device,
)
from custom_components.bluez_tracker.const import DOMAIN
from custom_components.bluez_tracker.coordinator import BluezTopologyCoordinator
from custom_components.bluez_tracker.exceptions import BusError, NotFoundError
from custom_components.bluez_tracker.paths import Kind
from custom_components.bluez_tracker.registry import EntryState
from custom_components.bluez_tracker.tracker import BluezTracker

from .conftest import (
    DEVICE_ADDRESS,
    DEVICE_KEY,
    DEVICE_PATH,
    MOCK_DEVICE_PROPERTIES,
    make_bus,
    subscribed_paths,
)

ENTRY_ID = "test_entry_id"


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _device(connected=True, path=DEVICE_PATH, **extra):
    return {"path": path, "properties": {"Connected": connected, "Alias": "Pixel 7", **extra}}


def _make_coordinator(devices=None, last_update_success=True):
    coord = MagicMock()
    coord.data = {"Device": devices} if devices is not None else None
    coord.last_update_success = last_update_success
    return coord


def _make_entry(coordinator, tracker=None):
    entry = MagicMock()
    entry.entry_id = ENTRY_ID
    entry.runtime_data.coordinator = coordinator
    if tracker is not None:
        entry.runtime_data.tracker = tracker
    return entry


def _make_hass():
    hass = MagicMock()

    def _fake_create_task(coro, **kwargs):
        return asyncio.get_running_loop().create_task(coro)

    hass.async_create_background_task = MagicMock(side_effect=_fake_create_task)
    return hass


def _unresolved_tracker():
    tracker = MagicMock()
    tracker.registry.state.return_value = EntryState.PATH_KNOWN
    tracker.resolve_device = AsyncMock()
    return tracker


async def _settle(rounds=5):
    for _ in range(rounds):
        await asyncio.sleep(0)


# ---------------------------------------------------------------------------
# Setup
# ---------------------------------------------------------------------------

class TestBinarySensorSetup:
    """Tests for async_setup_entry."""

    @pytest.mark.asyncio
    async def test_one_sensor_per_device(self):
        coordinator = _make_coordinator({DEVICE_KEY: _device()})
        added = []

        await async_setup_entry(None, _make_entry(coordinator), added.extend)

        assert len(added) == 1
        assert added[0].device_key == DEVICE_KEY

    @pytest.mark.asyncio
    async def test_no_data(self):
        coordinator = _make_coordinator()
        added = []

        await async_setup_entry(None, _make_entry(coordinator), added.extend)

        assert added == []

    @pytest.mark.asyncio
    async def test_new_devices_added_on_update(self):
        """Devices showing up later get a sensor once, on the next update."""
        coordinator = _make_coordinator({DEVICE_KEY: _device()})
        entry = _make_entry(coordinator)
        added = []

        await async_setup_entry(None, entry, added.extend)
        on_update = coordinator.async_add_listener.call_args.args[0]

        coordinator.data["Device"]["11_22_33_44_55_66"] = _device(
            path="/org/bluez/hci0/dev_11_22_33_44_55_66"
        )
        on_update()
        on_update()

        assert [entity.device_key for entity in added] == [
            DEVICE_KEY,
            "11_22_33_44_55_66",
        ]
        entry.async_on_unload.assert_called_once_with(
            coordinator.async_add_listener.return_value
        )

    @pytest.mark.asyncio
    async def test_unresolved_devices_are_watched(self):
        """Every device gets resolved once so its property changes arrive."""
        coordinator = _make_coordinator({DEVICE_KEY: _device()})
        tracker = _unresolved_tracker()
        hass = _make_hass()

        await async_setup_entry(hass, _make_entry(coordinator, tracker), MagicMock())
        on_update = coordinator.async_add_listener.call_args.args[0]
        on_update()
        await _settle()

        tracker.resolve_device.assert_awaited_once_with(DEVICE_KEY)
        assert hass.async_create_background_task.call_count == 1

    @pytest.mark.asyncio
    async def test_resolved_devices_are_left_alone(self):
        coordinator = _make_coordinator({DEVICE_KEY: _device()})
        tracker = _unresolved_tracker()
        tracker.registry.state.return_value = EntryState.MATERIALIZED
        hass = _make_hass()

        await async_setup_entry(hass, _make_entry(coordinator, tracker), MagicMock())

        hass.async_create_background_task.assert_not_called()


# ---------------------------------------------------------------------------
# Device watch
# ---------------------------------------------------------------------------

class TestWatchDevice:
    """Tests for async_watch_device."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "error", [BusError("introspection failed"), NotFoundError(Kind.DEVICE, DEVICE_KEY)]
    )
    async def test_errors_are_logged(self, error, caplog):
        tracker = MagicMock()
        tracker.resolve_device = AsyncMock(side_effect=error)

        with caplog.at_level("DEBUG"):
            await async_watch_device(tracker, DEVICE_KEY)

        assert DEVICE_KEY in caplog.text or DEVICE_ADDRESS in caplog.text

    @pytest.mark.asyncio
    async def test_connected_change_reaches_sensor(self):
        """A device without media interfaces still flips the sensor."""
        bus = make_bus(
            {DEVICE_PATH: {"org.bluez.Device1": {**MOCK_DEVICE_PROPERTIES, "Connected": False}}}
        )
        tracker = BluezTracker(bus)
        hass = MagicMock()
        hass.loop = asyncio.get_running_loop()
        coordinator = BluezTopologyCoordinator(hass, MagicMock(), tracker)
        coordinator.async_set_updated_data = MagicMock(
            side_effect=lambda data: setattr(coordinator, "data", data)
        )
        tracker.async_add_event_listener(None, coordinator.handle_tracker_event)
        await tracker.start()
        entity = BluezDeviceConnectedSensor(coordinator, ENTRY_ID, DEVICE_KEY)
        assert entity.is_on is False

        await async_watch_device(tracker, DEVICE_KEY)
        assert subscribed_paths(bus.subscribe_properties_changed) == [DEVICE_PATH]
        on_changed = bus.subscribe_properties_changed.await_args_list[0].args[1]
        on_changed(DEVICE_PATH, "org.bluez.Device1", {"Connected": True}, [])

        assert entity.is_on is True
        await tracker.stop()



# ---------------------------------------------------------------------------
# Entity
# ---------------------------------------------------------------------------

class TestBluezDeviceConnectedSensor:
    """Tests for BluezDeviceConnectedSensor state."""

    def test_identity(self):
        coordinator = _make_coordinator({DEVICE_KEY: _device()})
        entity = BluezDeviceConnectedSensor(coordinator, ENTRY_ID, DEVICE_KEY)

        assert entity.unique_id == f"{ENTRY_ID}_{DEVICE_KEY}_connected"
        assert entity.device_class == BinarySensorDeviceClass.CONNECTIVITY
        device_info = entity.device_info
        assert device_info["identifiers"] == {(DOMAIN, DEVICE_ADDRESS)}
        assert device_info["connections"] == {(CONNECTION_BLUETOOTH, DEVICE_ADDRESS)}
        assert device_info["name"] == "Pixel 7"

    def test_name_falls_back_to_address(self):
        coordinator = _make_coordinator({})
        entity = BluezDeviceConnectedSensor(coordinator, ENTRY_ID, DEVICE_KEY)

        assert entity.device_info["name"] == DEVICE_ADDRESS

    @pytest.mark.parametrize("connected", [True, False])
    def test_is_on(self, connected):
        coordinator = _make_coordinator({DEVICE_KEY: _device(connected=connected)})
        entity = BluezDeviceConnectedSensor(coordinator, ENTRY_ID, DEVICE_KEY)

        assert entity.is_on is connected
        assert entity.available is True

    def test_unavailable_once_removed(self):
        coordinator = _make_coordinator({DEVICE_KEY: _device()})
        entity = BluezDeviceConnectedSensor(coordinator, ENTRY_ID, DEVICE_KEY)

        del coordinator.data["Device"][DEVICE_KEY]

        assert entity.available is False
        assert entity.is_on is None
        assert entity.extra_state_attributes == {"address": DEVICE_ADDRESS}

    def test_unavailable_when_coordinator_failed(self):
        coordinator = _make_coordinator(
            {DEVICE_KEY: _device()}, last_update_success=False
        )
        entity = BluezDeviceConnectedSensor(coordinator, ENTRY_ID, DEVICE_KEY)

        assert entity.available is False

    def test_extra_state_attributes(self):
        coordinator = _make_coordinator({DEVICE_KEY: _device()})
        entity = BluezDeviceConnectedSensor(coordinator, ENTRY_ID, DEVICE_KEY)

        assert entity.extra_state_attributes == {
            "address": DEVICE_ADDRESS,
            "path": DEVICE_PATH,
            "adapter": "hci0",
        }
