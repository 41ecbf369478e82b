"""Handles wrapping BlueZ objects once they are resolved."""
from __future__ import annotations

import logging
from typing import Any

from dbus_fast import Variant
from dbus_fast.aio import ProxyObject

from .bus_client import bus_errors, unpack
from .const import (
    ADAPTER_INTERFACE,
    DEVICE_INTERFACE,
    MEDIA_PLAYER_INTERFACE,
    MEDIA_TRANSPORT_INTERFACE,
    PROPERTIES_INTERFACE,
)

_LOGGER = logging.getLogger(__name__)


class BluezHandle:
    """Handle on a single BlueZ object implementing one interface."""

    def __init__(self, proxy: ProxyObject, path: str, interface_name: str) -> None:
        """Bind the handle to the object's interface and its properties."""
        self.path = path
        self.interface_name = interface_name
        with bus_errors(f"lookup of {interface_name} at {path}"):
            self._interface = proxy.get_interface(interface_name)
            self._properties = proxy.get_interface(PROPERTIES_INTERFACE)

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.path}>"

    async def _call(self, method: str, *args: Any) -> Any:
        """Invoke a method on the wrapped interface."""
        _LOGGER.debug("%s.%s on %s", self.interface_name, method, self.path)
        with bus_errors(f"{method} on {self.path}"):
            return await getattr(self._interface, f"call_{method}")(*args)

    async def get_properties(self) -> dict[str, Any]:
        """Return all properties of the wrapped interface."""
        with bus_errors(f"GetAll on {self.path}"):
            result = await self._properties.call_get_all(self.interface_name)
        return unpack(result)

    async def get_property(self, name: str) -> Any:
        """Return a single property value."""
        with bus_errors(f"Get {name} on {self.path}"):
            result = await self._properties.call_get(self.interface_name, name)
        return unpack(result)

    async def set_property(self, name: str, signature: str, value: Any) -> None:
        """Set a single property value."""
        with bus_errors(f"Set {name} on {self.path}"):
            await self._properties.call_set(
                self.interface_name, name, Variant(signature, value)
            )


class BluezAdapter(BluezHandle):
    """Handle on an org.bluez.Adapter1 object."""

    def __init__(self, proxy: ProxyObject, path: str) -> None:
        super().__init__(proxy, path, ADAPTER_INTERFACE)

    async def start_discovery(self) -> None:
        await self._call("start_discovery")

    async def stop_discovery(self) -> None:
        await self._call("stop_discovery")

    async def remove_device(self, device_path: str) -> None:
        await self._call("remove_device", device_path)

    async def set_powered(self, powered: bool) -> None:
        await self.set_property("Powered", "b", powered)

    async def set_discoverable(self, discoverable: bool) -> None:
        await self.set_property("Discoverable", "b", discoverable)

    async def set_pairable(self, pairable: bool) -> None:
        await self.set_property("Pairable", "b", pairable)

    async def set_alias(self, alias: str) -> None:
        await self.set_property("Alias", "s", alias)


class BluezDevice(BluezHandle):
    """Handle on an org.bluez.Device1 object."""

    def __init__(self, proxy: ProxyObject, path: str) -> None:
        super().__init__(proxy, path, DEVICE_INTERFACE)

    async def connect(self) -> None:
        await self._call("connect")

    async def disconnect(self) -> None:
        await self._call("disconnect")

    async def connect_profile(self, uuid: str) -> None:
        await self._call("connect_profile", uuid)

    async def disconnect_profile(self, uuid: str) -> None:
        await self._call("disconnect_profile", uuid)

    async def pair(self) -> None:
        await self._call("pair")

    async def cancel_pairing(self) -> None:
        await self._call("cancel_pairing")

    async def set_trusted(self, trusted: bool) -> None:
        await self.set_property("Trusted", "b", trusted)

    async def set_blocked(self, blocked: bool) -> None:
        await self.set_property("Blocked", "b", blocked)

    async def set_alias(self, alias: str) -> None:
        await self.set_property("Alias", "s", alias)


class BluezMediaPlayer(BluezHandle):
    """Handle on an org.bluez.MediaPlayer1 object (AVRCP target)."""

    def __init__(self, proxy: ProxyObject, path: str) -> None:
        super().__init__(proxy, path, MEDIA_PLAYER_INTERFACE)

    async def play(self) -> None:
        await self._call("play")

    async def pause(self) -> None:
        await self._call("pause")

    async def stop(self) -> None:
        await self._call("stop")

    async def next(self) -> None:
        await self._call("next")

    async def previous(self) -> None:
        await self._call("previous")

    async def fast_forward(self) -> None:
        await self._call("fast_forward")

    async def rewind(self) -> None:
        await self._call("rewind")

    # Read-write settings; BlueZ only accepts the values the player advertises
    async def set_equalizer(self, value: str) -> None:
        await self.set_property("Equalizer", "s", value)

    async def set_repeat(self, value: str) -> None:
        await self.set_property("Repeat", "s", value)

    async def set_shuffle(self, value: str) -> None:
        await self.set_property("Shuffle", "s", value)

    async def set_scan(self, value: str) -> None:
        await self.set_property("Scan", "s", value)


class BluezMediaTransport(BluezHandle):
    """Handle on an org.bluez.MediaTransport1 object."""

    def __init__(self, proxy: ProxyObject, path: str) -> None:
        super().__init__(proxy, path, MEDIA_TRANSPORT_INTERFACE)

    async def acquire(self) -> tuple[int, int, int]:
        """Acquire the transport; returns (fd, read MTU, write MTU)."""
        return tuple(await self._call("acquire"))

    async def try_acquire(self) -> tuple[int, int, int]:
        """Acquire the transport only if it is already pending."""
        return tuple(await self._call("try_acquire"))

    async def release(self) -> None:
        await self._call("release")

    async def set_volume(self, volume: int) -> None:
        await self.set_property("Volume", "q", volume)

    async def set_delay(self, delay: int) -> None:
        await self.set_property("Delay", "q", delay)
