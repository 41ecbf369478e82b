"""Registry of BlueZ objects seen on the bus.

Every tracked object lives in one table keyed by ``(Kind, key)``. An
entry starts out knowing only its object path. The first accessor call
looks the object up, builds a handle and subscribes to its property
changes; later calls return that same handle. Nothing is fetched ahead
of time, so hosts with many idle remote objects do not pay for a
subscription per object. Property subscriptions are shared by path with
the media child tracking, so a device and its MediaControl1 interface
never watch the same object twice.
"""
from __future__ import annotations

import asyncio
import functools
import logging
from collections.abc import Callable, Iterator
from dataclasses import dataclass
from enum import StrEnum

from dbus_fast.aio import ProxyObject

from .bus_client import BluezBusClient
from .exceptions import NotFoundError
from .handles import (
    BluezAdapter,
    BluezDevice,
    BluezHandle,
    BluezMediaPlayer,
    BluezMediaTransport,
)
from .paths import Kind, normalize_key
from .subscriptions import PropertyWatchers

_LOGGER = logging.getLogger(__name__)

_HANDLE_TYPES: dict[Kind, Callable[[ProxyObject, str], BluezHandle]] = {
    Kind.ADAPTER: BluezAdapter,
    Kind.DEVICE: BluezDevice,
    Kind.MEDIA_PLAYER: BluezMediaPlayer,
    Kind.MEDIA_TRANSPORT: BluezMediaTransport,
}


class EntryState(StrEnum):
    """Lifecycle state of a tracked object."""

    UNKNOWN = "unknown"
    PATH_KNOWN = "path_known"
    MATERIALIZED = "materialized"


@dataclass(frozen=True, slots=True)
class PathKnown:
    """Object path recorded, nothing created yet."""

    path: str
    interface: str

    @property
    def state(self) -> EntryState:
        return EntryState.PATH_KNOWN


@dataclass(frozen=True, slots=True)
class Materialized:
    """Handle created, and a property watch held on the path."""

    path: str
    interface: str
    handle: BluezHandle

    @property
    def state(self) -> EntryState:
        return EntryState.MATERIALIZED


type Entry = PathKnown | Materialized


class BluezRegistry:
    """Track BlueZ objects and lazily build handles for them."""

    def __init__(
        self,
        bus: BluezBusClient,
        watchers: PropertyWatchers,
    ) -> None:
        """Initialize the registry."""
        self._bus = bus
        self._watchers = watchers
        self._entries: dict[tuple[Kind, str], Entry] = {}
        self._pending: dict[tuple[Kind, str], asyncio.Task[BluezHandle]] = {}

    def __contains__(self, item: tuple[Kind, str]) -> bool:
        return item in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[tuple[Kind, str]]:
        return iter(list(self._entries))

    def get(self, kind: Kind, key: str) -> Entry | None:
        """Return the entry for an object, if any."""
        return self._entries.get((kind, key))

    def state(self, kind: Kind, key: str) -> EntryState:
        """Return the lifecycle state of an object."""
        entry = self._entries.get((kind, key))
        return EntryState.UNKNOWN if entry is None else entry.state

    def keys(self, kind: Kind) -> list[str]:
        """Return the keys of every tracked object of a kind."""
        return [key for entry_kind, key in self._entries if entry_kind is kind]

    def record_path(self, kind: Kind, key: str, path: str, interface: str | None = None) -> bool:
        """Record the bus path of an object.

        Returns True when the object was not tracked before. An existing
        entry is left as it is, materialized or not.
        """
        existing = self._entries.get((kind, key))
        if existing is not None:
            if existing.path != path:
                _LOGGER.debug(
                    "%s %s already tracked at %s, ignoring %s",
                    kind, key, existing.path, path,
                )
            return False
        self._entries[(kind, key)] = PathKnown(path, interface or kind.interface)
        _LOGGER.debug("Recorded %s %s at %s", kind, key, path)
        return True

    def remove(self, kind: Kind, key: str) -> bool:
        """Forget an object, dropping its property watch."""
        entry = self._entries.pop((kind, key), None)
        if entry is None:
            return False
        if isinstance(entry, Materialized):
            self._watchers.release(entry.path)
        _LOGGER.debug("Removed %s %s", kind, key)
        return True

    def clear(self) -> None:
        """Forget every object."""
        for task in self._pending.values():
            task.cancel()
        self._pending.clear()
        for kind, key in list(self._entries):
            self.remove(kind, key)

    async def resolve(self, kind: Kind, identifier: str) -> BluezHandle:
        """Return the handle for an object, creating it on first use.

        Raises NotFoundError if the object was never seen and BusError if
        the lookup or subscription fails. A failed resolution leaves the
        entry as it was, so the next call tries again.
        """
        key = normalize_key(identifier)
        entry = self._entries.get((kind, key))
        if entry is None:
            raise NotFoundError(kind, key)
        if isinstance(entry, Materialized):
            return entry.handle

        task = self._pending.get((kind, key))
        if task is None:
            task = asyncio.get_running_loop().create_task(
                self._materialize(kind, key, entry),
                name=f"bluez_tracker_resolve_{kind}_{key}",
            )
            self._pending[(kind, key)] = task
            task.add_done_callback(functools.partial(self._forget_pending, (kind, key)))
        return await asyncio.shield(task)

    def _forget_pending(self, slot: tuple[Kind, str], task: asyncio.Task) -> None:
        if self._pending.get(slot) is task:
            del self._pending[slot]

    async def _materialize(
        self, kind: Kind, key: str, entry: PathKnown
    ) -> BluezHandle:
        proxy = await self._bus.get_proxy(entry.path)
        factory = _HANDLE_TYPES.get(kind)
        if factory is not None:
            handle = factory(proxy, entry.path)
        else:
            handle = BluezHandle(proxy, entry.path, entry.interface)

        await self._watchers.acquire(entry.path)

        current = self._entries.get((kind, key))
        if current is None or current.path != entry.path:
            # Removed, or re-added elsewhere, while the lookup was in flight
            self._watchers.release(entry.path)
            raise NotFoundError(kind, key)
        if isinstance(current, Materialized):
            self._watchers.release(entry.path)
            return current.handle

        self._entries[(kind, key)] = Materialized(
            entry.path, entry.interface, handle
        )
        _LOGGER.debug("Materialized %s %s at %s", kind, key, entry.path)
        return handle

    async def resolve_adapter(self, adapter: str) -> BluezAdapter:
        """Return the handle for an adapter (``hci0`` or its object path)."""
        return await self.resolve(Kind.ADAPTER, adapter)

    async def resolve_device(self, address: str) -> BluezDevice:
        """Return the handle for a device (address, key or object path)."""
        return await self.resolve(Kind.DEVICE, address)

    async def resolve_media_player(self, player: str) -> BluezMediaPlayer:
        """Return the handle for a media player (key or object path)."""
        return await self.resolve(Kind.MEDIA_PLAYER, player)

    async def resolve_media_transport(self, transport: str) -> BluezMediaTransport:
        """Return the handle for a media transport (key or object path)."""
        return await self.resolve(Kind.MEDIA_TRANSPORT, transport)
