"""Topology tracker for the BlueZ Tracker integration."""
from __future__ import annotations

import json
import logging
from collections.abc import Callable
from typing import Any

from .bus_client import BluezBusClient, Subscription
from .const import OBJECT_MANAGER_PATH
from .events import BluezEvent, EventNormalizer
from .exceptions import BusError
from .handles import (
    BluezAdapter,
    BluezDevice,
    BluezHandle,
    BluezMediaPlayer,
    BluezMediaTransport,
)
from .paths import Kind, classify
from .registry import BluezRegistry
from .subscriptions import PropertyWatchers, SubscriptionManager

_LOGGER = logging.getLogger(__name__)

EventListener = Callable[[BluezEvent], None]


class BluezTracker:
    """Follow the BlueZ object tree and publish domain events.

    InterfacesAdded and InterfacesRemoved are classified, applied to the
    registry and the subscription manager, then published. Property
    changes only reach objects something subscribed to: resolved entries
    and tracked media children.
    """

    def __init__(
        self,
        bus: BluezBusClient,
        *,
        track_media: bool = True,
        debug_signals: bool = False,
    ) -> None:
        """Initialize the tracker."""
        self._bus = bus
        self._debug_signals = debug_signals
        self._normalizer = EventNormalizer()
        self.watchers = PropertyWatchers(bus, self._handle_properties_changed)
        self.subscriptions: SubscriptionManager | None = None
        if track_media:
            self.subscriptions = SubscriptionManager(
                bus, self.watchers, self._handle_interfaces_added
            )
        self.registry = BluezRegistry(bus, self.watchers)
        self._listeners: dict[str | None, list[EventListener]] = {}
        self._root_subscriptions: list[Subscription] = []
        self._started = False

    @property
    def bus(self) -> BluezBusClient:
        """Return the bus client."""
        return self._bus

    @property
    def started(self) -> bool:
        """Return True while the tracker follows the bus."""
        return self._started

    async def start(self) -> None:
        """Subscribe to the object manager and replay the current object tree."""
        if self._started:
            _LOGGER.debug("Tracker already started")
            return

        try:
            self._root_subscriptions.append(
                await self._bus.subscribe_interfaces_added(
                    OBJECT_MANAGER_PATH, self._handle_interfaces_added
                )
            )
            self._root_subscriptions.append(
                await self._bus.subscribe_interfaces_removed(
                    OBJECT_MANAGER_PATH, self._handle_interfaces_removed
                )
            )
            objects = await self._bus.get_managed_objects()
        except BusError:
            self._cancel_root_subscriptions()
            raise

        for path, interfaces in objects.items():
            self._handle_interfaces_added(path, interfaces)

        self._started = True
        _LOGGER.info(
            "Tracker started with %d objects, %d tracked",
            len(objects),
            len(self.registry),
        )

    async def stop(self) -> None:
        """Drop every subscription and forget the object tree."""
        self._cancel_root_subscriptions()
        if self.subscriptions is not None:
            await self.subscriptions.stop()
        self.registry.clear()
        self.watchers.clear()
        self._started = False
        _LOGGER.info("Tracker stopped")

    def _cancel_root_subscriptions(self) -> None:
        for subscription in self._root_subscriptions:
            subscription.cancel()
        self._root_subscriptions = []

    # Listeners
    def async_add_event_listener(
        self, event_name: str | None, listener: EventListener
    ) -> Callable[[], None]:
        """Register a listener for one event name, or every event with None.

        Returns a callable that removes the listener.
        """
        self._listeners.setdefault(event_name, []).append(listener)

        def _remove() -> None:
            listeners = self._listeners.get(event_name, [])
            if listener in listeners:
                listeners.remove(listener)

        return _remove

    def _emit(self, event: BluezEvent) -> None:
        listeners = [*self._listeners.get(event.name, []), *self._listeners.get(None, [])]
        _LOGGER.debug("Emitting %s for %d listeners", event.name, len(listeners))
        for listener in listeners:
            try:
                listener(event)
            except Exception:
                _LOGGER.exception("Error in listener for %s", event.name)

    # Signal handlers
    def _dump(self, title: str, payload: dict[str, Any]) -> None:
        if self._debug_signals:
            _LOGGER.debug(
                "===== %s =====\n%s", title, json.dumps(payload, indent=2, default=repr)
            )

    def _handle_interfaces_added(
        self, path: str, interfaces: dict[str, dict[str, Any]]
    ) -> None:
        self._dump("InterfacesAdded", {"path": path, "interfaces": interfaces})
        for classification in classify(path, interfaces):
            kind, key = classification.kind, classification.key
            self.registry.record_path(kind, key, path, classification.interface)
            if self.subscriptions is not None:
                self.subscriptions.track(kind, key, path)
            self._emit(
                self._normalizer.added(
                    classification, interfaces[classification.interface]
                )
            )

    def _handle_interfaces_removed(self, path: str, interfaces: list[str]) -> None:
        self._dump("InterfacesRemoved", {"path": path, "interfaces": interfaces})
        for classification in classify(path, interfaces):
            kind, key = classification.kind, classification.key
            self.registry.remove(kind, key)
            if self.subscriptions is not None:
                self.subscriptions.release(kind, key)
            self._emit(self._normalizer.removed(classification))

    def _handle_properties_changed(
        self,
        path: str,
        interface: str,
        changed: dict[str, Any],
        invalidated: list[str],
    ) -> None:
        self._dump(
            "PropertiesChanged",
            {"path": path, "interface": interface, "properties": changed},
        )
        event = self._normalizer.changed(interface, changed, path, invalidated)
        if event is not None:
            self._emit(event)

    # Accessors
    async def resolve(self, kind: Kind, identifier: str) -> BluezHandle:
        """Return the handle for any tracked object."""
        return await self.registry.resolve(kind, identifier)

    async def resolve_adapter(self, adapter: str) -> BluezAdapter:
        """Return the handle for an adapter."""
        return await self.registry.resolve_adapter(adapter)

    async def resolve_device(self, address: str) -> BluezDevice:
        """Return the handle for a device."""
        return await self.registry.resolve_device(address)

    async def resolve_media_player(self, player: str) -> BluezMediaPlayer:
        """Return the handle for a media player."""
        return await self.registry.resolve_media_player(player)

    async def resolve_media_transport(self, transport: str) -> BluezMediaTransport:
        """Return the handle for a media transport."""
        return await self.registry.resolve_media_transport(transport)
