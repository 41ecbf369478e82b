"""Coordinator for the BlueZ Tracker integration."""
from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from homeassistant.config_entries import ConfigEntry
from homeassistant.core import HomeAssistant, callback
from homeassistant.helpers.update_coordinator import (
    DataUpdateCoordinator,
    UpdateFailed,
)

from .bus_client import ManagedObjects
from .const import ATTR_PATH, ATTR_PROPERTIES, DOMAIN
from .events import (
    BluezEvent,
    InterfaceAddedEvent,
    InterfaceRemovedEvent,
    PropertiesChangedEvent,
)
from .exceptions import BusError
from .paths import classify

if TYPE_CHECKING:
    from .tracker import BluezTracker

_LOGGER = logging.getLogger(__name__)

type Topology = dict[str, dict[str, dict[str, Any]]]


def topology_from_objects(objects: ManagedObjects) -> Topology:
    """Build the {kind: {key: {path, properties}}} view of an object tree."""
    topology: Topology = {}
    for path, interfaces in objects.items():
        for classification in classify(path, interfaces):
            topology.setdefault(classification.kind.value, {})[classification.key] = {
                ATTR_PATH: path,
                ATTR_PROPERTIES: dict(interfaces[classification.interface]),
            }
    return topology


class BluezTopologyCoordinator(DataUpdateCoordinator[Topology]):
    """Coordinator holding the tracked BlueZ topology.

    Updates are pushed by tracker events; a refresh re-reads the whole
    object tree from the bus.
    """

    config_entry: ConfigEntry

    def __init__(
        self,
        hass: HomeAssistant,
        config_entry: ConfigEntry,
        tracker: "BluezTracker",
    ) -> None:
        """Initialize topology coordinator."""
        super().__init__(
            hass,
            _LOGGER,
            name=f"{DOMAIN}_topology",
            update_interval=None,
            config_entry=config_entry,
        )
        self.tracker = tracker

    async def _async_update_data(self) -> Topology:
        """Fetch the object tree from BlueZ."""
        try:
            objects = await self.tracker.bus.get_managed_objects()
        except BusError as err:
            raise UpdateFailed(f"Unable to enumerate BlueZ objects: {err}") from err
        topology = topology_from_objects(objects)
        _LOGGER.debug(
            "Topology refreshed: %s",
            {kind: len(entries) for kind, entries in topology.items()},
        )
        return topology

    @callback
    def handle_tracker_event(self, event: BluezEvent) -> None:
        """Merge a tracker event into the current topology."""
        topology = {kind: dict(entries) for kind, entries in (self.data or {}).items()}
        kind = event.kind.value

        if isinstance(event, InterfaceAddedEvent):
            topology.setdefault(kind, {})[event.key] = {
                ATTR_PATH: event.path,
                ATTR_PROPERTIES: dict(event.properties),
            }
        elif isinstance(event, InterfaceRemovedEvent):
            if topology.get(kind, {}).pop(event.key, None) is None:
                return
        elif isinstance(event, PropertiesChangedEvent):
            if not self._merge_properties(topology, event):
                _LOGGER.debug(
                    "%s for untracked object %s", event.name, event.object_path
                )
                return
        else:
            return

        self.async_set_updated_data(topology)

    @staticmethod
    def _merge_properties(topology: Topology, event: PropertiesChangedEvent) -> bool:
        entries = topology.get(event.kind.value, {})
        for key, entry in entries.items():
            if entry[ATTR_PATH] != event.object_path:
                continue
            properties = {**entry[ATTR_PROPERTIES], **event.properties}
            for name in event.invalidated:
                properties.pop(name, None)
            entries[key] = {**entry, ATTR_PROPERTIES: properties}
            return True
        return False
