"""Shared test fixtures for BlueZ Tracker tests."""
import asyncio
import copy
from unittest.mock import AsyncMock, MagicMock

ADAPTER_ID = "hci0"
ADAPTER_PATH = "/org/bluez/hci0"
DEVICE_ADDRESS = "AA:BB:CC:DD:EE:FF"
DEVICE_KEY = "AA_BB_CC_DD_EE_FF"
DEVICE_PATH = f"{ADAPTER_PATH}/dev_{DEVICE_KEY}"
PLAYER_KEY = f"{DEVICE_KEY}.player0"
PLAYER_PATH = f"{DEVICE_PATH}/player0"
TRANSPORT_KEY = f"{DEVICE_KEY}.fd0"
TRANSPORT_PATH = f"{DEVICE_PATH}/fd0"
NOW_PLAYING_PATH = f"{PLAYER_PATH}/NowPlaying"
ITEM_KEY = f"{DEVICE_KEY}.player0.item8896"
ITEM_PATH = f"{NOW_PLAYING_PATH}/item8896"

MOCK_ADAPTER_PROPERTIES = {
    "Address": "00:1A:7D:DA:71:13",
    "AddressType": "public",
    "Name": "htpc",
    "Alias": "htpc",
    "Class": 7077888,
    "Powered": True,
    "Discoverable": False,
    "Pairable": True,
    "Discovering": False,
}

MOCK_DEVICE_PROPERTIES = {
    "Address": DEVICE_ADDRESS,
    "AddressType": "public",
    "Name": "Pixel 7",
    "Alias": "Pixel 7",
    "Paired": True,
    "Trusted": True,
    "Blocked": False,
    "Connected": True,
    "UUIDs": [
        "0000110a-0000-1000-8000-00805f9b34fb",
        "0000110e-0000-1000-8000-00805f9b34fb",
    ],
    "Adapter": ADAPTER_PATH,
}

MOCK_PLAYER_PROPERTIES = {
    "Name": "Spotify",
    "Type": "Audio",
    "Subtype": "Audio Book",
    "Status": "playing",
    "Position": 42000,
    "Device": DEVICE_PATH,
    "Track": {
        "Item": ITEM_PATH,
        "Album": "GRM Daily Presents: The Shortlist",
        "TrackNumber": 86,
        "Genre": "Hip-Hop/Rap",
        "Duration": 151000,
        "NumberOfTracks": 100,
        "Title": "Army Of Two",
        "Artist": "Russ",
    },
}

MOCK_TRANSPORT_PROPERTIES = {
    "Device": DEVICE_PATH,
    "UUID": "0000110a-0000-1000-8000-00805f9b34fb",
    "Codec": 2,
    "State": "idle",
    "Volume": 64,
}

MOCK_ITEM_PROPERTIES = {
    "Player": PLAYER_PATH,
    "Name": "Army Of Two",
    "Type": "audio",
    "Playable": True,
}

# Real-shaped GetManagedObjects reply (variants already unpacked)
MOCK_MANAGED_OBJECTS = {
    "/org/bluez": {
        "org.freedesktop.DBus.Introspectable": {},
        "org.bluez.AgentManager1": {},
        "org.bluez.ProfileManager1": {},
    },
    ADAPTER_PATH: {
        "org.freedesktop.DBus.Introspectable": {},
        "org.bluez.Adapter1": MOCK_ADAPTER_PROPERTIES,
        "org.freedesktop.DBus.Properties": {},
    },
    DEVICE_PATH: {
        "org.freedesktop.DBus.Introspectable": {},
        "org.bluez.Device1": MOCK_DEVICE_PROPERTIES,
        "org.bluez.MediaControl1": {"Connected": True, "Player": PLAYER_PATH},
        "org.freedesktop.DBus.Properties": {},
    },
    PLAYER_PATH: {
        "org.bluez.MediaPlayer1": MOCK_PLAYER_PROPERTIES,
    },
    TRANSPORT_PATH: {
        "org.bluez.MediaTransport1": MOCK_TRANSPORT_PROPERTIES,
    },
}


def make_subscription(path="/"):
    """Return a mock subscription for path."""
    subscription = MagicMock()
    subscription.path = path
    return subscription


def make_proxy():
    """Return a mock proxy object whose interfaces are MagicMocks."""
    proxy = MagicMock()
    proxy.get_interface.side_effect = lambda name: MagicMock(name=name)
    return proxy


def make_bus(objects=None):
    """Return a mock BluezBusClient backed by MOCK_MANAGED_OBJECTS."""
    bus = MagicMock()
    bus.get_managed_objects = AsyncMock(
        return_value=copy.deepcopy(
            MOCK_MANAGED_OBJECTS if objects is None else objects
        )
    )
    bus.get_proxy = AsyncMock(side_effect=lambda path: make_proxy())
    bus.subscribe_interfaces_added = AsyncMock(
        side_effect=lambda path, callback: make_subscription(path)
    )
    bus.subscribe_interfaces_removed = AsyncMock(
        side_effect=lambda path, callback: make_subscription(path)
    )
    bus.subscribe_properties_changed = AsyncMock(
        side_effect=lambda path, callback: make_subscription(path)
    )
    return bus


def gated(gate: asyncio.Event):
    """Return an async side effect that waits on gate before subscribing."""

    async def _subscribe(path, callback):
        await gate.wait()
        return make_subscription(path)

    return _subscribe


def subscribed_paths(mock):
    """Return the object paths a subscribe_* mock was awaited with."""
    return [call.args[0] for call in mock.await_args_list]
