"""Constants for the BlueZ Tracker integration."""
from typing import Final

DOMAIN: Final = "bluez_tracker"

# Config Flow
CONF_BUS_TYPE: Final = "bus_type"
CONF_DEBUG_SIGNALS: Final = "debug_signals"
CONF_TRACK_MEDIA: Final = "track_media"
CONF_REGISTER_AVRC: Final = "register_avrc_profile"

BUS_TYPE_SYSTEM: Final = "system"
BUS_TYPE_SESSION: Final = "session"

# Defaults
DEFAULT_BUS_TYPE: Final = BUS_TYPE_SYSTEM
DEFAULT_DEBUG_SIGNALS: Final = False
DEFAULT_TRACK_MEDIA: Final = True
DEFAULT_REGISTER_AVRC: Final = False
DEFAULT_NAME: Final = "BlueZ Tracker"

# D-Bus names
BLUEZ_SERVICE: Final = "org.bluez"
BLUEZ_ROOT_PATH: Final = "/org/bluez"
BLUEZ_NAMESPACE: Final = "org.bluez."
OBJECT_MANAGER_PATH: Final = "/"

DBUS_SERVICE: Final = "org.freedesktop.DBus"
DBUS_PATH: Final = "/org/freedesktop/DBus"
OBJECT_MANAGER_INTERFACE: Final = "org.freedesktop.DBus.ObjectManager"
PROPERTIES_INTERFACE: Final = "org.freedesktop.DBus.Properties"
AGENT_MANAGER_INTERFACE: Final = "org.bluez.AgentManager1"
PROFILE_MANAGER_INTERFACE: Final = "org.bluez.ProfileManager1"
PROFILE_INTERFACE: Final = "org.bluez.Profile1"
PROFILE_REJECTED_ERROR: Final = "org.bluez.Error.Rejected"

# Recognized BlueZ interfaces
ADAPTER_INTERFACE: Final = "org.bluez.Adapter1"
DEVICE_INTERFACE: Final = "org.bluez.Device1"
FILESYSTEM_INTERFACE: Final = "org.bluez.Filesystem1"
MEDIA_CONTROL_INTERFACE: Final = "org.bluez.MediaControl1"
MEDIA_ITEM_INTERFACE: Final = "org.bluez.MediaItem1"
MEDIA_PLAYER_INTERFACE: Final = "org.bluez.MediaPlayer1"
MEDIA_TRANSPORT_INTERFACE: Final = "org.bluez.MediaTransport1"
NETWORK_INTERFACE: Final = "org.bluez.Network1"

RECOGNIZED_INTERFACES: Final = frozenset(
    {
        ADAPTER_INTERFACE,
        DEVICE_INTERFACE,
        FILESYSTEM_INTERFACE,
        MEDIA_CONTROL_INTERFACE,
        MEDIA_ITEM_INTERFACE,
        MEDIA_PLAYER_INTERFACE,
        MEDIA_TRANSPORT_INTERFACE,
        NETWORK_INTERFACE,
    }
)

# Signals
SIGNAL_INTERFACES_ADDED: Final = "InterfacesAdded"
SIGNAL_INTERFACES_REMOVED: Final = "InterfacesRemoved"
SIGNAL_PROPERTIES_CHANGED: Final = "PropertiesChanged"

# Domain event prefixes
EVENT_ADDED: Final = "added"
EVENT_REMOVED: Final = "removed"
EVENT_CHANGED: Final = "changed"

# Home Assistant bus event carrying every tracker event
EVENT_BLUEZ_TRACKER: Final = f"{DOMAIN}_event"

# Profiles
AVRC_PROFILE_UUID: Final = "0000110e-0000-1000-8000-00805f9b34fb"
SERIAL_PROFILE_UUID: Final = "00001101-0000-1000-8000-00805f9b34fb"
DEFAULT_PROFILE_PATH: Final = "/org/homeassistant/bluez_tracker"
DEFAULT_AGENT_CAPABILITY: Final = "KeyboardDisplay"
EVENT_PROFILE_CONNECTION: Final = "profile-connection"

# Attributes
ATTR_OBJECT: Final = "object"
ATTR_PATH: Final = "path"
ATTR_PROPERTIES: Final = "properties"
ATTR_OBJECT_PATH: Final = "object_path"
ATTR_INVALIDATED: Final = "invalidated"
ATTR_TYPE: Final = "type"
ATTR_ADDRESS: Final = "address"
ATTR_ADAPTER: Final = "adapter"
ATTR_UUID: Final = "uuid"
