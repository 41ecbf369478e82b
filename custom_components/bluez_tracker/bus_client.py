"""D-Bus client for the BlueZ Tracker integration."""
from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any

from dbus_fast import BusType, Message, MessageFlag, MessageType, Variant
from dbus_fast.aio import MessageBus, ProxyObject
from dbus_fast.errors import DBusError, InterfaceNotFoundError
from dbus_fast.service import ServiceInterface

from .const import (
    AGENT_MANAGER_INTERFACE,
    BLUEZ_ROOT_PATH,
    BLUEZ_SERVICE,
    BUS_TYPE_SESSION,
    BUS_TYPE_SYSTEM,
    DBUS_PATH,
    DBUS_SERVICE,
    OBJECT_MANAGER_INTERFACE,
    OBJECT_MANAGER_PATH,
    PROFILE_MANAGER_INTERFACE,
    PROPERTIES_INTERFACE,
    SIGNAL_INTERFACES_ADDED,
    SIGNAL_INTERFACES_REMOVED,
    SIGNAL_PROPERTIES_CHANGED,
)
from .exceptions import BusError

_LOGGER = logging.getLogger(__name__)

_BUS_TYPES: dict[str, BusType] = {
    BUS_TYPE_SYSTEM: BusType.SYSTEM,
    BUS_TYPE_SESSION: BusType.SESSION,
}

ManagedObjects = dict[str, dict[str, dict[str, Any]]]
InterfacesAddedCallback = Callable[[str, dict[str, dict[str, Any]]], None]
InterfacesRemovedCallback = Callable[[str, list[str]], None]
PropertiesChangedCallback = Callable[[str, str, dict[str, Any], list[str]], None]


@contextmanager
def bus_errors(operation: str) -> Iterator[None]:
    """Translate dbus-fast failures into BusError."""
    try:
        yield
    except DBusError as err:
        _LOGGER.warning("D-Bus error during %s: %s %s", operation, err.type, err.text)
        raise BusError(f"{operation} failed: {err.text}", err.type) from err
    except InterfaceNotFoundError as err:
        _LOGGER.warning("Interface missing during %s: %s", operation, err)
        raise BusError(f"{operation} failed: {err}") from err


def unpack(value: Any) -> Any:
    """Recursively replace dbus-fast Variants with their plain values."""
    if isinstance(value, Variant):
        return unpack(value.value)
    if isinstance(value, dict):
        return {key: unpack(item) for key, item in value.items()}
    if isinstance(value, list):
        return [unpack(item) for item in value]
    return value


def _match_rule(interface: str, member: str, path: str) -> str:
    return (
        f"type='signal',sender='{BLUEZ_SERVICE}',"
        f"interface='{interface}',member='{member}',path='{path}'"
    )


@dataclass(eq=False)
class Subscription:
    """A signal subscription registered on the bus for a single object path."""

    path: str
    member: str
    rule: str
    handler: Callable[[Message], bool] = field(repr=False)
    client: BluezBusClient = field(repr=False)
    active: bool = True

    def cancel(self) -> None:
        """Stop delivering signals and drop the match rule."""
        if not self.active:
            return
        self.active = False
        self.client.release(self)


class BluezBusClient:
    """Client for the BlueZ daemon over D-Bus."""

    def __init__(self, bus_type: str = BUS_TYPE_SYSTEM) -> None:
        """Initialize the bus client."""
        if bus_type not in _BUS_TYPES:
            raise ValueError(f"Unknown bus type: {bus_type}")
        self._bus_type = bus_type
        self._bus: MessageBus | None = None

    @property
    def connected(self) -> bool:
        """Return True once connected to the bus."""
        return self._bus is not None and self._bus.connected

    @property
    def bus(self) -> MessageBus:
        """Return the underlying message bus."""
        if self._bus is None:
            raise BusError("Not connected to D-Bus")
        return self._bus

    async def connect(self) -> None:
        """Connect to the configured message bus."""
        if self._bus is not None:
            return
        try:
            # Profile connections and transports hand over file descriptors
            self._bus = await MessageBus(
                bus_type=_BUS_TYPES[self._bus_type], negotiate_unix_fd=True
            ).connect()
        except (DBusError, OSError) as err:
            _LOGGER.warning("Unable to connect to %s D-Bus: %s", self._bus_type, err)
            raise BusError(f"Unable to connect to {self._bus_type} bus: {err}") from err
        _LOGGER.info("Connected to %s D-Bus", self._bus_type)

    def disconnect(self) -> None:
        """Disconnect from the message bus."""
        if self._bus is None:
            return
        self._bus.disconnect()
        self._bus = None
        _LOGGER.info("Disconnected from %s D-Bus", self._bus_type)

    # Lookups
    async def get_proxy(self, path: str) -> ProxyObject:
        """Introspect a BlueZ object and return its proxy."""
        _LOGGER.debug("Introspecting %s", path)
        with bus_errors(f"introspection of {path}"):
            introspection = await self.bus.introspect(BLUEZ_SERVICE, path)
        return self.bus.get_proxy_object(BLUEZ_SERVICE, path, introspection)

    async def get_interface(self, path: str, interface: str) -> Any:
        """Return the proxy interface for an object."""
        proxy = await self.get_proxy(path)
        with bus_errors(f"lookup of {interface} at {path}"):
            return proxy.get_interface(interface)

    async def get_managed_objects(self) -> ManagedObjects:
        """Enumerate every object BlueZ manages with its interfaces and properties."""
        manager = await self.get_interface(OBJECT_MANAGER_PATH, OBJECT_MANAGER_INTERFACE)
        with bus_errors("GetManagedObjects"):
            objects = await manager.call_get_managed_objects()
        return unpack(objects)

    # Signals
    async def subscribe_interfaces_added(
        self, path: str, callback: InterfacesAddedCallback
    ) -> Subscription:
        """Subscribe to InterfacesAdded emitted by the object at path."""

        def _deliver(msg: Message) -> None:
            object_path, interfaces = msg.body[0], msg.body[1]
            callback(object_path, unpack(interfaces))

        return await self._subscribe(
            path, OBJECT_MANAGER_INTERFACE, SIGNAL_INTERFACES_ADDED, _deliver
        )

    async def subscribe_interfaces_removed(
        self, path: str, callback: InterfacesRemovedCallback
    ) -> Subscription:
        """Subscribe to InterfacesRemoved emitted by the object at path."""

        def _deliver(msg: Message) -> None:
            object_path, interfaces = msg.body[0], msg.body[1]
            callback(object_path, list(interfaces))

        return await self._subscribe(
            path, OBJECT_MANAGER_INTERFACE, SIGNAL_INTERFACES_REMOVED, _deliver
        )

    async def subscribe_properties_changed(
        self, path: str, callback: PropertiesChangedCallback
    ) -> Subscription:
        """Subscribe to PropertiesChanged for the object at path.

        The callback receives the originating object path first, since the
        signal itself only names the interface.
        """

        def _deliver(msg: Message) -> None:
            interface, changed = msg.body[0], msg.body[1]
            invalidated = list(msg.body[2]) if len(msg.body) > 2 else []
            callback(msg.path, interface, unpack(changed), invalidated)

        return await self._subscribe(
            path, PROPERTIES_INTERFACE, SIGNAL_PROPERTIES_CHANGED, _deliver
        )

    async def _subscribe(
        self,
        path: str,
        interface: str,
        member: str,
        deliver: Callable[[Message], None],
    ) -> Subscription:
        """Install a message handler and its match rule."""
        bus = self.bus

        def _handler(msg: Message) -> bool:
            if (
                msg.message_type == MessageType.SIGNAL
                and msg.interface == interface
                and msg.member == member
                and msg.path == path
            ):
                deliver(msg)
            return False

        rule = _match_rule(interface, member, path)
        bus.add_message_handler(_handler)
        try:
            await self._call_bus_daemon("AddMatch", rule)
        except BusError:
            bus.remove_message_handler(_handler)
            raise
        _LOGGER.debug("Subscribed to %s on %s", member, path)
        return Subscription(path, member, rule, _handler, self)

    def release(self, subscription: Subscription) -> None:
        """Remove a subscription's handler and match rule."""
        if self._bus is None:
            return
        self._bus.remove_message_handler(subscription.handler)
        future = self._bus.send(
            Message(
                destination=DBUS_SERVICE,
                path=DBUS_PATH,
                interface=DBUS_SERVICE,
                member="RemoveMatch",
                signature="s",
                body=[subscription.rule],
                flags=MessageFlag.NO_REPLY_EXPECTED,
            )
        )
        future.add_done_callback(_log_release_failure)
        _LOGGER.debug("Released %s subscription on %s", subscription.member, subscription.path)

    async def _call_bus_daemon(self, member: str, rule: str) -> None:
        with bus_errors(member):
            reply = await self.bus.call(
                Message(
                    destination=DBUS_SERVICE,
                    path=DBUS_PATH,
                    interface=DBUS_SERVICE,
                    member=member,
                    signature="s",
                    body=[rule],
                )
            )
        if reply is not None and reply.message_type == MessageType.ERROR:
            _LOGGER.warning("%s rejected: %s %s", member, reply.error_name, reply.body)
            raise BusError(f"{member} failed: {reply.body}", reply.error_name)

    # Registration pass-throughs
    def export(self, path: str, interface: ServiceInterface) -> None:
        """Export a service object on the bus."""
        self.bus.export(path, interface)

    def unexport(self, path: str) -> None:
        """Remove an exported service object."""
        self.bus.unexport(path)

    async def register_profile(
        self, path: str, uuid: str, options: dict[str, Variant]
    ) -> None:
        """Register a profile implementation with the ProfileManager."""
        manager = await self.get_interface(BLUEZ_ROOT_PATH, PROFILE_MANAGER_INTERFACE)
        with bus_errors(f"RegisterProfile {uuid}"):
            await manager.call_register_profile(path, uuid, options)
        _LOGGER.info("Registered profile %s at %s", uuid, path)

    async def unregister_profile(self, path: str) -> None:
        """Unregister a profile implementation."""
        manager = await self.get_interface(BLUEZ_ROOT_PATH, PROFILE_MANAGER_INTERFACE)
        with bus_errors("UnregisterProfile"):
            await manager.call_unregister_profile(path)

    async def register_agent(self, path: str, capability: str) -> None:
        """Register a pairing agent with the AgentManager."""
        manager = await self.get_interface(BLUEZ_ROOT_PATH, AGENT_MANAGER_INTERFACE)
        with bus_errors("RegisterAgent"):
            await manager.call_register_agent(path, capability)
        _LOGGER.info("Registered agent at %s (%s)", path, capability)

    async def request_default_agent(self, path: str) -> None:
        """Make a registered agent the system default."""
        manager = await self.get_interface(BLUEZ_ROOT_PATH, AGENT_MANAGER_INTERFACE)
        with bus_errors("RequestDefaultAgent"):
            await manager.call_request_default_agent(path)

    async def unregister_agent(self, path: str) -> None:
        """Unregister a pairing agent."""
        manager = await self.get_interface(BLUEZ_ROOT_PATH, AGENT_MANAGER_INTERFACE)
        with bus_errors("UnregisterAgent"):
            await manager.call_unregister_agent(path)


def _log_release_failure(future: asyncio.Future) -> None:
    if future.cancelled():
        return
    if (err := future.exception()) is not None:
        _LOGGER.debug("RemoveMatch failed: %s", err)
