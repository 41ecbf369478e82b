"""Subscription bookkeeping for BlueZ objects.

Property subscriptions are shared per object path. The registry and the
media child tracking both hold references on the same path, and the bus
only ever sees one PropertiesChanged match for it.

Media players, transports, controls and items come and go with the
remote device. Each one gets a property watch and a nested
InterfacesAdded subscription as soon as it shows up. Slots are claimed
synchronously, before the first bus round trip, so two notifications
for the same child that interleave on the event loop cannot both start
an acquisition.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Final

from .bus_client import (
    BluezBusClient,
    InterfacesAddedCallback,
    PropertiesChangedCallback,
    Subscription,
)
from .exceptions import BusError
from .paths import Kind

_LOGGER = logging.getLogger(__name__)

TRACKED_KINDS: Final = frozenset(
    {
        Kind.MEDIA_CONTROL,
        Kind.MEDIA_TRANSPORT,
        Kind.MEDIA_ITEM,
        Kind.MEDIA_PLAYER,
    }
)


def _retrieve_exception(task: asyncio.Task) -> None:
    if not task.cancelled():
        task.exception()


@dataclass(eq=False)
class _Watch:
    path: str
    refs: int = 0
    subscription: Subscription | None = None
    task: asyncio.Task | None = field(default=None, repr=False)


class PropertyWatchers:
    """Reference-counted PropertiesChanged subscriptions keyed by path."""

    def __init__(
        self,
        bus: BluezBusClient,
        on_properties_changed: PropertiesChangedCallback,
    ) -> None:
        """Initialize the watcher table."""
        self._bus = bus
        self._on_properties_changed = on_properties_changed
        self._watches: dict[str, _Watch] = {}

    def __contains__(self, path: str) -> bool:
        return path in self._watches

    def refs(self, path: str) -> int:
        """Return how many holders share the watch on path."""
        watch = self._watches.get(path)
        return 0 if watch is None else watch.refs

    async def acquire(self, path: str) -> None:
        """Take a reference on the watch for path, subscribing on first use.

        Raises BusError when the subscription fails. The reference is
        only kept when this returns normally.
        """
        watch = self._watches.get(path)
        if watch is None:
            watch = _Watch(path)
            self._watches[path] = watch
            watch.task = asyncio.get_running_loop().create_task(
                self._subscribe(watch), name=f"bluez_tracker_watch_{path}"
            )
            watch.task.add_done_callback(_retrieve_exception)
        watch.refs += 1
        try:
            await asyncio.shield(watch.task)
        except BaseException:
            self._unref(watch)
            raise

    async def _subscribe(self, watch: _Watch) -> None:
        try:
            subscription = await self._bus.subscribe_properties_changed(
                watch.path, self._on_properties_changed
            )
        except BaseException:
            self._forget(watch)
            raise
        if self._watches.get(watch.path) is not watch:
            # Every holder let go while the match was in flight
            subscription.cancel()
            return
        watch.subscription = subscription
        _LOGGER.debug("Watching properties of %s", watch.path)

    def release(self, path: str) -> bool:
        """Drop one reference on the watch for path."""
        watch = self._watches.get(path)
        if watch is None:
            return False
        self._unref(watch)
        return True

    def _unref(self, watch: _Watch) -> None:
        watch.refs -= 1
        if watch.refs > 0 or self._watches.get(watch.path) is not watch:
            return
        self._forget(watch)
        if watch.subscription is not None:
            watch.subscription.cancel()
            watch.subscription = None
            _LOGGER.debug("Stopped watching properties of %s", watch.path)
        elif watch.task is not None and not watch.task.done():
            watch.task.cancel()

    def _forget(self, watch: _Watch) -> None:
        if self._watches.get(watch.path) is watch:
            del self._watches[watch.path]

    def clear(self) -> None:
        """Cancel every watch regardless of its holders."""
        for watch in list(self._watches.values()):
            if watch.subscription is not None:
                watch.subscription.cancel()
            elif watch.task is not None and not watch.task.done():
                watch.task.cancel()
        self._watches.clear()


@dataclass(eq=False)
class _Slot:
    kind: Kind
    key: str
    path: str
    watching: bool = False
    children: Subscription | None = None
    released: bool = False
    task: asyncio.Task | None = field(default=None, repr=False)


class SubscriptionManager:
    """Acquire and release subscriptions for media child objects."""

    def __init__(
        self,
        bus: BluezBusClient,
        watchers: PropertyWatchers,
        on_interfaces_added: InterfacesAddedCallback,
    ) -> None:
        """Initialize the subscription manager."""
        self._bus = bus
        self._watchers = watchers
        self._on_interfaces_added = on_interfaces_added
        self._slots: dict[tuple[Kind, str], _Slot] = {}
        self._tasks: set[asyncio.Task] = set()

    def __contains__(self, item: tuple[Kind, str]) -> bool:
        return item in self._slots

    def __len__(self) -> int:
        return len(self._slots)

    def track(self, kind: Kind, key: str, path: str) -> asyncio.Task | None:
        """Claim a slot for a child object and start acquiring its subscriptions.

        Returns the acquisition task, or None when the kind is not tracked
        or the slot is already claimed.
        """
        if kind not in TRACKED_KINDS:
            return None
        slot_key = (kind, key)
        if slot_key in self._slots:
            _LOGGER.debug("Subscriptions for %s %s already claimed", kind, key)
            return None

        slot = _Slot(kind, key, path)
        self._slots[slot_key] = slot
        task = asyncio.get_running_loop().create_task(
            self._acquire(slot), name=f"bluez_tracker_subscribe_{kind}_{key}"
        )
        slot.task = task
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _acquire(self, slot: _Slot) -> None:
        try:
            await self._watchers.acquire(slot.path)
            slot.watching = True
            if not slot.released:
                slot.children = await self._bus.subscribe_interfaces_added(
                    slot.path, self._on_interfaces_added
                )
        except BusError as err:
            _LOGGER.warning(
                "Unable to subscribe to %s %s at %s: %s",
                slot.kind, slot.key, slot.path, err,
            )
            self._cancel(slot)
            self._drop(slot)
            return
        except asyncio.CancelledError:
            self._cancel(slot)
            self._drop(slot)
            raise

        if slot.released:
            # Child vanished while the subscriptions were in flight
            self._cancel(slot)
            return
        _LOGGER.debug("Subscribed to %s %s at %s", slot.kind, slot.key, slot.path)

    def _cancel(self, slot: _Slot) -> None:
        if slot.watching:
            self._watchers.release(slot.path)
            slot.watching = False
        if slot.children is not None:
            slot.children.cancel()
            slot.children = None

    def _drop(self, slot: _Slot) -> None:
        if self._slots.get((slot.kind, slot.key)) is slot:
            del self._slots[(slot.kind, slot.key)]

    def release(self, kind: Kind, key: str) -> bool:
        """Release the slot for a child object, if one was claimed."""
        slot = self._slots.pop((kind, key), None)
        if slot is None:
            return False
        slot.released = True
        self._cancel(slot)
        _LOGGER.debug("Released subscriptions for %s %s", kind, key)
        return True

    async def async_wait_idle(self) -> None:
        """Wait for every in-flight acquisition to finish."""
        if self._tasks:
            await asyncio.wait(set(self._tasks))

    async def stop(self) -> None:
        """Cancel pending acquisitions and release every slot."""
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        for slot in list(self._slots.values()):
            slot.released = True
            self._cancel(slot)
        self._slots.clear()
