"""Tests for BlueZ Tracker setup and unload."""
import pytest
from unittest.mock import AsyncMock, MagicMock, patch

from homeassistant.exceptions import ConfigEntryNotReady

from custom_components.bluez_tracker import (
    PLATFORMS,
    async_setup_entry,
    async_unload_entry,
)
from custom_components.bluez_tracker.const import (
    AVRC_PROFILE_UUID,
    CONF_BUS_TYPE,
    CONF_DEBUG_SIGNALS,
    CONF_REGISTER_AVRC,
    CONF_TRACK_MEDIA,
    EVENT_BLUEZ_TRACKER,
)
from custom_components.bluez_tracker.events import InterfaceRemovedEvent
from custom_components.bluez_tracker.exceptions import BusError
from custom_components.bluez_tracker.paths import Kind

from .conftest import DEVICE_KEY, DEVICE_PATH

PATCH_CLIENT = "custom_components.bluez_tracker.BluezBusClient"
PATCH_TRACKER = "custom_components.bluez_tracker.BluezTracker"
PATCH_COORDINATOR = "custom_components.bluez_tracker.BluezTopologyCoordinator"
PATCH_REGISTER_AVRC = "custom_components.bluez_tracker.async_register_avrc_profile"
PATCH_UNREGISTER = "custom_components.bluez_tracker.async_unregister_profile"


def _make_hass():
    hass = MagicMock()
    hass.config_entries.async_forward_entry_setups = AsyncMock()
    hass.config_entries.async_unload_platforms = AsyncMock(return_value=True)
    return hass


def _make_entry(options=None):
    entry = MagicMock()
    entry.entry_id = "test_entry_id"
    entry.data = {CONF_BUS_TYPE: "session"}
    entry.options = options or {CONF_TRACK_MEDIA: False, CONF_DEBUG_SIGNALS: True}
    return entry


def _patched(bus_connect=None, tracker_start=None):
    """Patch the bus client, tracker and coordinator classes."""
    client_patch = patch(PATCH_CLIENT)
    tracker_patch = patch(PATCH_TRACKER)
    coordinator_patch = patch(PATCH_COORDINATOR)
    mock_client_cls = client_patch.start()
    mock_tracker_cls = tracker_patch.start()
    mock_coordinator_cls = coordinator_patch.start()
    mock_client_cls.return_value.connect = AsyncMock(side_effect=bus_connect)
    mock_tracker_cls.return_value.start = AsyncMock(side_effect=tracker_start)
    mock_tracker_cls.return_value.stop = AsyncMock()
    mock_coordinator_cls.return_value.async_refresh = AsyncMock()
    return (
        (client_patch, tracker_patch, coordinator_patch),
        mock_client_cls,
        mock_tracker_cls,
        mock_coordinator_cls,
    )


@pytest.fixture
def mocks():
    patches, client_cls, tracker_cls, coordinator_cls = _patched()
    yield client_cls, tracker_cls, coordinator_cls
    for p in patches:
        p.stop()


class TestSetupEntry:
    """Tests for async_setup_entry."""

    @pytest.mark.asyncio
    async def test_setup(self, mocks):
        client_cls, tracker_cls, coordinator_cls = mocks
        hass = _make_hass()
        entry = _make_entry()

        assert await async_setup_entry(hass, entry) is True

        client_cls.assert_called_once_with("session")
        tracker_cls.assert_called_once_with(
            client_cls.return_value, track_media=False, debug_signals=True
        )
        tracker_cls.return_value.start.assert_awaited_once()
        coordinator_cls.return_value.async_refresh.assert_awaited_once()
        assert entry.runtime_data.tracker is tracker_cls.return_value
        hass.config_entries.async_forward_entry_setups.assert_awaited_once_with(
            entry, PLATFORMS
        )

    @pytest.mark.asyncio
    async def test_listeners_registered_before_start(self, mocks):
        _, tracker_cls, coordinator_cls = mocks
        tracker = tracker_cls.return_value
        order = []
        tracker.async_add_event_listener.side_effect = (
            lambda name, listener: order.append("listener") or MagicMock()
        )
        tracker.start.side_effect = lambda: order.append("start")

        await async_setup_entry(_make_hass(), _make_entry())

        assert order == ["listener", "listener", "start"]

    @pytest.mark.asyncio
    async def test_events_fired_on_hass_bus(self, mocks):
        _, tracker_cls, coordinator_cls = mocks
        hass = _make_hass()

        await async_setup_entry(hass, _make_entry())

        listeners = [
            call.args[1] for call in tracker_cls.return_value.async_add_event_listener.call_args_list
        ]
        assert coordinator_cls.return_value.handle_tracker_event in listeners
        fire = listeners[1]
        fire(InterfaceRemovedEvent(Kind.DEVICE, DEVICE_KEY, DEVICE_PATH))

        hass.bus.async_fire.assert_called_once_with(
            EVENT_BLUEZ_TRACKER, {"type": "removed-Device", "object": DEVICE_KEY}
        )

    @pytest.mark.asyncio
    async def test_bus_unavailable(self):
        patches, *_ = _patched(bus_connect=BusError("no bus"))
        try:
            with pytest.raises(ConfigEntryNotReady):
                await async_setup_entry(_make_hass(), _make_entry())
        finally:
            for p in patches:
                p.stop()

    @pytest.mark.asyncio
    async def test_bluez_unavailable_disconnects(self):
        patches, client_cls, _, _ = _patched(
            tracker_start=BusError("org.bluez not running")
        )
        try:
            with pytest.raises(ConfigEntryNotReady):
                await async_setup_entry(_make_hass(), _make_entry())
            client_cls.return_value.disconnect.assert_called_once()
        finally:
            for p in patches:
                p.stop()

    @pytest.mark.asyncio
    async def test_platform_failure_stops_tracker(self, mocks):
        """A failure after start() drops the tracker and the bus connection."""
        client_cls, tracker_cls, _ = mocks
        hass = _make_hass()
        hass.config_entries.async_forward_entry_setups.side_effect = RuntimeError("boom")

        with pytest.raises(RuntimeError):
            await async_setup_entry(hass, _make_entry())

        tracker_cls.return_value.stop.assert_awaited_once()
        client_cls.return_value.disconnect.assert_called_once()

    @pytest.mark.asyncio
    async def test_refresh_failure_stops_tracker(self, mocks):
        client_cls, tracker_cls, coordinator_cls = mocks
        coordinator_cls.return_value.async_refresh.side_effect = RuntimeError("boom")
        hass = _make_hass()

        with pytest.raises(RuntimeError):
            await async_setup_entry(hass, _make_entry())

        tracker_cls.return_value.stop.assert_awaited_once()
        client_cls.return_value.disconnect.assert_called_once()
        hass.config_entries.async_forward_entry_setups.assert_not_awaited()


class TestAvrcProfile:
    """Tests for the optional AVRC profile registration."""

    OPTIONS = {CONF_TRACK_MEDIA: True, CONF_DEBUG_SIGNALS: False, CONF_REGISTER_AVRC: True}

    @pytest.mark.asyncio
    async def test_not_registered_by_default(self, mocks):
        with patch(PATCH_REGISTER_AVRC, new_callable=AsyncMock) as mock_register:
            entry = _make_entry()
            await async_setup_entry(_make_hass(), entry)

        mock_register.assert_not_awaited()
        assert entry.runtime_data.profile is None

    @pytest.mark.asyncio
    async def test_registered_and_announces_connections(self, mocks):
        client_cls, tracker_cls, _ = mocks
        hass = _make_hass()
        entry = _make_entry(self.OPTIONS)

        with patch(PATCH_REGISTER_AVRC, new_callable=AsyncMock) as mock_register:
            await async_setup_entry(hass, entry)

        assert entry.runtime_data.profile is mock_register.return_value
        bus, tracker, listener = mock_register.await_args.args
        assert bus is client_cls.return_value
        assert tracker is tracker_cls.return_value

        listener(MagicMock(path=DEVICE_PATH), 12)

        hass.bus.async_fire.assert_called_once_with(
            EVENT_BLUEZ_TRACKER,
            {
                "type": "profile-connection",
                "uuid": AVRC_PROFILE_UUID,
                "object": DEVICE_KEY,
                "path": DEVICE_PATH,
            },
        )

    @pytest.mark.asyncio
    async def test_registration_failure_is_not_fatal(self, mocks):
        entry = _make_entry(self.OPTIONS)

        with patch(
            PATCH_REGISTER_AVRC,
            new_callable=AsyncMock,
            side_effect=BusError("UUID already registered"),
        ):
            assert await async_setup_entry(_make_hass(), entry) is True

        assert entry.runtime_data.profile is None

    @pytest.mark.asyncio
    async def test_setup_failure_unregisters(self, mocks):
        client_cls, _, _ = mocks
        hass = _make_hass()
        hass.config_entries.async_forward_entry_setups.side_effect = RuntimeError("boom")

        with (
            patch(PATCH_REGISTER_AVRC, new_callable=AsyncMock) as mock_register,
            patch(PATCH_UNREGISTER, new_callable=AsyncMock) as mock_unregister,
        ):
            with pytest.raises(RuntimeError):
                await async_setup_entry(hass, _make_entry(self.OPTIONS))

        mock_unregister.assert_awaited_once_with(
            client_cls.return_value, mock_register.return_value
        )

    @pytest.mark.asyncio
    async def test_unload_unregisters(self):
        hass = _make_hass()
        entry = _make_entry(self.OPTIONS)
        entry.runtime_data.tracker.stop = AsyncMock()
        profile = entry.runtime_data.profile

        with patch(PATCH_UNREGISTER, new_callable=AsyncMock) as mock_unregister:
            assert await async_unload_entry(hass, entry) is True

        mock_unregister.assert_awaited_once_with(entry.runtime_data.bus, profile)
        entry.runtime_data.tracker.stop.assert_awaited_once()



class TestUnloadEntry:
    """Tests for async_unload_entry."""

    @pytest.mark.asyncio
    async def test_unload(self):
        hass = _make_hass()
        entry = _make_entry()
        entry.runtime_data.profile = None
        entry.runtime_data.tracker.stop = AsyncMock()

        assert await async_unload_entry(hass, entry) is True

        entry.runtime_data.tracker.stop.assert_awaited_once()
        entry.runtime_data.bus.disconnect.assert_called_once()

    @pytest.mark.asyncio
    async def test_unload_platforms_failed(self):
        hass = _make_hass()
        hass.config_entries.async_unload_platforms.return_value = False
        entry = _make_entry()
        entry.runtime_data.profile = None
        entry.runtime_data.tracker.stop = AsyncMock()

        assert await async_unload_entry(hass, entry) is False

        entry.runtime_data.tracker.stop.assert_not_awaited()
