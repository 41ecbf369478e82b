"""Binary sensor platform for BlueZ Tracker."""
from __future__ import annotations

import logging
from typing import Any

from homeassistant.components.binary_sensor import (
    BinarySensorDeviceClass,
    BinarySensorEntity,
)
from homeassistant.core import HomeAssistant, callback
from homeassistant.helpers.device_registry import CONNECTION_BLUETOOTH
from homeassistant.helpers.entity import DeviceInfo
from homeassistant.helpers.entity_platform import AddEntitiesCallback
from homeassistant.helpers.update_coordinator import CoordinatorEntity

from . import BluezTrackerConfigEntry
from .const import ATTR_ADAPTER, ATTR_ADDRESS, ATTR_PATH, ATTR_PROPERTIES, DOMAIN
from .coordinator import BluezTopologyCoordinator
from .exceptions import BluezTrackerError, NotFoundError
from .paths import Kind, format_address, match_path
from .registry import EntryState
from .tracker import BluezTracker

_LOGGER = logging.getLogger(__name__)


async def async_setup_entry(
    hass: HomeAssistant,
    entry: BluezTrackerConfigEntry,
    async_add_entities: AddEntitiesCallback,
) -> None:
    """Set up BlueZ Tracker binary sensor entities."""
    coordinator = entry.runtime_data.coordinator
    tracker = entry.runtime_data.tracker
    known_keys: set[str] = set()
    watching: set[str] = set()

    async def _async_watch(key: str) -> None:
        try:
            await async_watch_device(tracker, key)
        finally:
            watching.discard(key)

    @callback
    def _async_check_new_devices() -> None:
        if not coordinator.data:
            return
        devices = coordinator.data.get(Kind.DEVICE.value, {})
        for key in devices:
            # Re-added devices come back unresolved and need a new watch
            state = tracker.registry.state(Kind.DEVICE, key)
            if key in watching or state is not EntryState.PATH_KNOWN:
                continue
            watching.add(key)
            hass.async_create_background_task(
                _async_watch(key), name=f"bluez_tracker_watch_device_{key}"
            )
        new_entities = [
            BluezDeviceConnectedSensor(coordinator, entry.entry_id, key)
            for key in devices
            if key not in known_keys
        ]
        if new_entities:
            known_keys.update(entity.device_key for entity in new_entities)
            _LOGGER.debug("Adding %d device connectivity sensors", len(new_entities))
            async_add_entities(new_entities)

    _async_check_new_devices()
    entry.async_on_unload(coordinator.async_add_listener(_async_check_new_devices))


async def async_watch_device(tracker: BluezTracker, key: str) -> None:
    """Resolve a device so its property changes reach the coordinator."""
    try:
        await tracker.resolve_device(key)
    except NotFoundError:
        _LOGGER.debug("Device %s went away before it could be watched", key)
    except BluezTrackerError as err:
        _LOGGER.warning("Unable to watch device %s: %s", format_address(key), err)


class BluezDeviceConnectedSensor(
    CoordinatorEntity[BluezTopologyCoordinator], BinarySensorEntity
):
    """Binary sensor reporting whether a remote Bluetooth device is connected."""

    _attr_device_class = BinarySensorDeviceClass.CONNECTIVITY
    _attr_has_entity_name = True
    _attr_name = None

    def __init__(
        self,
        coordinator: BluezTopologyCoordinator,
        entry_id: str,
        device_key: str,
    ) -> None:
        super().__init__(coordinator)
        self.device_key = device_key
        self._address = format_address(device_key)
        self._attr_unique_id = f"{entry_id}_{device_key}_connected"
        properties = self._properties or {}
        self._attr_device_info = DeviceInfo(
            identifiers={(DOMAIN, self._address)},
            connections={(CONNECTION_BLUETOOTH, self._address)},
            name=properties.get("Alias") or properties.get("Name") or self._address,
        )

    @property
    def _entry(self) -> dict[str, Any] | None:
        if not self.coordinator.data:
            return None
        return self.coordinator.data.get(Kind.DEVICE.value, {}).get(self.device_key)

    @property
    def _properties(self) -> dict[str, Any] | None:
        entry = self._entry
        return None if entry is None else entry[ATTR_PROPERTIES]

    @property
    def available(self) -> bool:
        """Return True while BlueZ still knows the device."""
        return super().available and self._entry is not None

    @property
    def is_on(self) -> bool | None:
        """Return True when the device is connected."""
        properties = self._properties
        if properties is None:
            return None
        return bool(properties.get("Connected", False))

    @property
    def extra_state_attributes(self) -> dict[str, Any]:
        """Return the object path and owning adapter."""
        entry = self._entry
        if entry is None:
            return {ATTR_ADDRESS: self._address}
        match = match_path(entry[ATTR_PATH])
        return {
            ATTR_ADDRESS: self._address,
            ATTR_PATH: entry[ATTR_PATH],
            ATTR_ADAPTER: match.adapter if match else None,
        }
