"""Profile and agent registration for the BlueZ Tracker integration."""
# Service methods below carry D-Bus signature strings as annotations, which
# dbus-fast reads at export time; postponed evaluation would break them.
import logging
import os
from collections.abc import Callable
from typing import Any

import voluptuous as vol
from dbus_fast import Variant
from dbus_fast.errors import DBusError
from dbus_fast.service import ServiceInterface, method

from .bus_client import BluezBusClient
from .const import (
    AVRC_PROFILE_UUID,
    DEFAULT_AGENT_CAPABILITY,
    DEFAULT_PROFILE_PATH,
    PROFILE_INTERFACE,
    PROFILE_REJECTED_ERROR,
    SERIAL_PROFILE_UUID,
)
from .exceptions import BluezTrackerError, BusError
from .handles import BluezDevice
from .tracker import BluezTracker

_LOGGER = logging.getLogger(__name__)

ROLE_CLIENT = "client"
ROLE_SERVER = "server"

AGENT_CAPABILITIES = (
    "DisplayOnly",
    "DisplayYesNo",
    "KeyboardOnly",
    "NoInputNoOutput",
    "KeyboardDisplay",
    "",
)

_UINT16 = vol.All(vol.Coerce(int), vol.Range(min=0, max=0xFFFF))

PROFILE_OPTIONS_SCHEMA = vol.Schema(
    {
        vol.Optional("Name"): str,
        vol.Optional("Service"): str,
        vol.Optional("Role"): vol.In([ROLE_CLIENT, ROLE_SERVER]),
        vol.Optional("Channel"): _UINT16,
        vol.Optional("PSM"): _UINT16,
        vol.Optional("RequireAuthentication"): bool,
        vol.Optional("RequireAuthorization"): bool,
        vol.Optional("AutoConnect"): bool,
        vol.Optional("ServiceRecord"): str,
        vol.Optional("Version"): _UINT16,
        vol.Optional("Features"): _UINT16,
    }
)

_OPTION_SIGNATURES: dict[str, str] = {
    "Name": "s",
    "Service": "s",
    "Role": "s",
    "Channel": "q",
    "PSM": "q",
    "RequireAuthentication": "b",
    "RequireAuthorization": "b",
    "AutoConnect": "b",
    "ServiceRecord": "s",
    "Version": "q",
    "Features": "q",
}

AGENT_CAPABILITY_SCHEMA = vol.In(AGENT_CAPABILITIES)

ConnectionListener = Callable[[BluezDevice, int], None]


def build_profile_options(options: dict[str, Any]) -> dict[str, Variant]:
    """Validate RegisterProfile options and wrap them as D-Bus variants.

    Raises vol.Invalid for unknown keys or out-of-range values.
    """
    validated = PROFILE_OPTIONS_SCHEMA(options)
    return {
        name: Variant(_OPTION_SIGNATURES[name], value)
        for name, value in validated.items()
    }


def normalize_capability(capability: str) -> str:
    """Validate an agent capability; the empty string means KeyboardDisplay."""
    AGENT_CAPABILITY_SCHEMA(capability)
    return capability or DEFAULT_AGENT_CAPABILITY


class BluezProfile(ServiceInterface):
    """org.bluez.Profile1 implementation handing new connections to a listener.

    The profile owns every connection socket it accepts. Listeners may use
    the descriptor but never close it. Sockets are closed on disconnection
    requests and when the profile goes away.
    """

    def __init__(
        self, tracker: BluezTracker, uuid: str, listener: ConnectionListener
    ) -> None:
        super().__init__(PROFILE_INTERFACE)
        self.uuid = uuid
        self.path: str | None = None
        self._tracker = tracker
        self._listener = listener
        self._fds: dict[str, int] = {}

    @method()
    def Release(self):  # noqa: N802
        _LOGGER.info("Profile %s released by BlueZ", self.uuid)
        self.close_connections()

    @method()
    async def NewConnection(self, device: "o", fd: "h", fd_properties: "a{sv}"):  # noqa: F821, N802
        await self.async_new_connection(device, fd)

    @method()
    def RequestDisconnection(self, device: "o"):  # noqa: F821, N802
        _LOGGER.debug("Profile %s: disconnection requested for %s", self.uuid, device)
        self.close_connection(device)

    async def async_new_connection(self, device_path: str, fd: int) -> None:
        """Resolve the connecting device and hand the socket to the listener.

        Raises DBusError with org.bluez.Error.Rejected when the device
        cannot be resolved, so BlueZ refuses the connection.
        """
        _LOGGER.debug("Profile %s: new connection from %s", self.uuid, device_path)
        try:
            device = await self._tracker.resolve_device(device_path)
        except BluezTrackerError as err:
            _LOGGER.warning(
                "Profile %s: rejecting connection from %s: %s",
                self.uuid, device_path, err,
            )
            os.close(fd)
            raise DBusError(PROFILE_REJECTED_ERROR, str(err)) from err
        self.close_connection(device_path)
        self._fds[device_path] = fd
        self._listener(device, fd)

    def close_connection(self, device_path: str) -> None:
        """Close the socket held for a device, if any."""
        fd = self._fds.pop(device_path, None)
        if fd is not None:
            os.close(fd)

    def close_connections(self) -> None:
        """Close every socket the profile holds."""
        for device_path in list(self._fds):
            self.close_connection(device_path)


async def async_register_profile(
    bus: BluezBusClient,
    tracker: BluezTracker,
    uuid: str,
    listener: ConnectionListener,
    options: dict[str, Any] | None = None,
    path: str | None = None,
) -> BluezProfile:
    """Export a profile object and register it with BlueZ."""
    profile = BluezProfile(tracker, uuid, listener)
    profile.path = path or f"{DEFAULT_PROFILE_PATH}/profile_{uuid[4:8]}"
    dbus_options = build_profile_options(options or {})

    bus.export(profile.path, profile)
    try:
        await bus.register_profile(profile.path, uuid, dbus_options)
    except BusError:
        bus.unexport(profile.path)
        raise
    return profile


async def async_unregister_profile(bus: BluezBusClient, profile: BluezProfile) -> None:
    """Unregister a profile, close its sockets and remove its exported object."""
    if profile.path is None:
        return
    try:
        await bus.unregister_profile(profile.path)
    finally:
        bus.unexport(profile.path)
        profile.path = None
        profile.close_connections()


async def async_register_avrc_profile(
    bus: BluezBusClient,
    tracker: BluezTracker,
    listener: ConnectionListener,
    role: str = ROLE_CLIENT,
    options: dict[str, Any] | None = None,
) -> BluezProfile:
    """Register an A/V Remote Control profile."""
    return await async_register_profile(
        bus,
        tracker,
        AVRC_PROFILE_UUID,
        listener,
        {"Name": "A/V Remote Control", "Role": role, **(options or {})},
    )


async def async_register_serial_profile(
    bus: BluezBusClient,
    tracker: BluezTracker,
    listener: ConnectionListener,
    role: str = ROLE_CLIENT,
    options: dict[str, Any] | None = None,
) -> BluezProfile:
    """Register a Serial Port profile."""
    return await async_register_profile(
        bus,
        tracker,
        SERIAL_PROFILE_UUID,
        listener,
        {"Name": "Serial Port", "Role": role, **(options or {})},
    )


async def async_register_agent(
    bus: BluezBusClient, path: str, capability: str = DEFAULT_AGENT_CAPABILITY
) -> None:
    """Register the agent exported at path with the given capability."""
    await bus.register_agent(path, normalize_capability(capability))
