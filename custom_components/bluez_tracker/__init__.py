"""The BlueZ Tracker integration."""
from __future__ import annotations

import logging
from dataclasses import dataclass

from homeassistant.config_entries import ConfigEntry
from homeassistant.const import Platform
from homeassistant.core import HomeAssistant, callback
from homeassistant.exceptions import ConfigEntryNotReady
from homeassistant.helpers.device_registry import DeviceEntry

from .bus_client import BluezBusClient
from .const import (
    ATTR_OBJECT,
    ATTR_PATH,
    ATTR_TYPE,
    ATTR_UUID,
    AVRC_PROFILE_UUID,
    CONF_BUS_TYPE,
    CONF_DEBUG_SIGNALS,
    CONF_REGISTER_AVRC,
    CONF_TRACK_MEDIA,
    DEFAULT_BUS_TYPE,
    DEFAULT_DEBUG_SIGNALS,
    DEFAULT_REGISTER_AVRC,
    DEFAULT_TRACK_MEDIA,
    EVENT_BLUEZ_TRACKER,
    EVENT_PROFILE_CONNECTION,
)
from .coordinator import BluezTopologyCoordinator
from .events import BluezEvent
from .exceptions import BusError
from .handles import BluezDevice
from .paths import normalize_key
from .profiles import (
    BluezProfile,
    async_register_avrc_profile,
    async_unregister_profile,
)
from .tracker import BluezTracker

_LOGGER = logging.getLogger(__name__)

PLATFORMS: list[Platform] = [
    Platform.BINARY_SENSOR,
]


@dataclass
class BluezTrackerRuntimeData:
    """Runtime data for the BlueZ Tracker integration."""

    bus: BluezBusClient
    tracker: BluezTracker
    coordinator: BluezTopologyCoordinator
    profile: BluezProfile | None = None


type BluezTrackerConfigEntry = ConfigEntry[BluezTrackerRuntimeData]


async def async_setup_entry(
    hass: HomeAssistant, entry: BluezTrackerConfigEntry
) -> bool:
    """Set up BlueZ Tracker from a config entry."""
    _LOGGER.info("Setting up BlueZ Tracker integration")

    bus_type = entry.data.get(CONF_BUS_TYPE, DEFAULT_BUS_TYPE)
    debug_signals = entry.options.get(CONF_DEBUG_SIGNALS, DEFAULT_DEBUG_SIGNALS)
    track_media = entry.options.get(CONF_TRACK_MEDIA, DEFAULT_TRACK_MEDIA)
    register_avrc = entry.options.get(CONF_REGISTER_AVRC, DEFAULT_REGISTER_AVRC)

    _LOGGER.debug(
        "Configuration: bus_type=%s, debug_signals=%s, track_media=%s, register_avrc=%s",
        bus_type,
        debug_signals,
        track_media,
        register_avrc,
    )

    bus = BluezBusClient(bus_type)
    try:
        await bus.connect()
    except BusError as err:
        raise ConfigEntryNotReady(f"Unable to connect to D-Bus: {err}") from err

    tracker = BluezTracker(bus, track_media=track_media, debug_signals=debug_signals)
    coordinator = BluezTopologyCoordinator(hass, entry, tracker)

    # Listeners go in before start() so the initial object replay is seen.
    entry.async_on_unload(
        tracker.async_add_event_listener(None, coordinator.handle_tracker_event)
    )

    @callback
    def _async_fire_event(event: BluezEvent) -> None:
        hass.bus.async_fire(
            EVENT_BLUEZ_TRACKER, {ATTR_TYPE: event.name, **event.payload}
        )

    entry.async_on_unload(tracker.async_add_event_listener(None, _async_fire_event))

    try:
        await tracker.start()
    except BusError as err:
        bus.disconnect()
        raise ConfigEntryNotReady(f"Unable to enumerate BlueZ objects: {err}") from err

    profile: BluezProfile | None = None
    try:
        await coordinator.async_refresh()

        if register_avrc:
            profile = await _async_register_avrc(hass, bus, tracker)

        entry.runtime_data = BluezTrackerRuntimeData(
            bus=bus,
            tracker=tracker,
            coordinator=coordinator,
            profile=profile,
        )

        _LOGGER.debug("Forwarding setup to platforms: %s", PLATFORMS)
        await hass.config_entries.async_forward_entry_setups(entry, PLATFORMS)
    except Exception:
        _LOGGER.debug("Setup failed after the tracker started, shutting it down")
        if profile is not None:
            await _async_unregister_avrc(bus, profile)
        await tracker.stop()
        bus.disconnect()
        raise

    _LOGGER.info("BlueZ Tracker integration setup complete")
    return True


async def _async_register_avrc(
    hass: HomeAssistant, bus: BluezBusClient, tracker: BluezTracker
) -> BluezProfile | None:
    """Register the A/V Remote Control profile, announcing new connections."""

    @callback
    def _async_on_connection(device: BluezDevice, fd: int) -> None:
        _LOGGER.debug("AVRC connection from %s", device.path)
        hass.bus.async_fire(
            EVENT_BLUEZ_TRACKER,
            {
                ATTR_TYPE: EVENT_PROFILE_CONNECTION,
                ATTR_UUID: AVRC_PROFILE_UUID,
                ATTR_OBJECT: normalize_key(device.path),
                ATTR_PATH: device.path,
            },
        )

    try:
        profile = await async_register_avrc_profile(bus, tracker, _async_on_connection)
    except BusError as err:
        _LOGGER.warning("Unable to register the AVRC profile: %s", err)
        return None
    _LOGGER.info("Registered AVRC profile at %s", profile.path)
    return profile


async def _async_unregister_avrc(bus: BluezBusClient, profile: BluezProfile) -> None:
    try:
        await async_unregister_profile(bus, profile)
    except BusError as err:
        _LOGGER.warning("Unable to unregister the AVRC profile: %s", err)


async def async_unload_entry(
    hass: HomeAssistant, entry: BluezTrackerConfigEntry
) -> bool:
    """Unload a config entry."""
    unloaded = await hass.config_entries.async_unload_platforms(entry, PLATFORMS)
    if unloaded:
        runtime_data = entry.runtime_data
        if runtime_data.profile is not None:
            await _async_unregister_avrc(runtime_data.bus, runtime_data.profile)
        await runtime_data.tracker.stop()
        runtime_data.bus.disconnect()
    return unloaded


async def async_remove_config_entry_device(
    hass: HomeAssistant,
    config_entry: BluezTrackerConfigEntry,
    device_entry: DeviceEntry,
) -> bool:
    """Remove a device from the integration."""
    return True
