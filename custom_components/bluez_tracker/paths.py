"""Object path grammar for the BlueZ object tree.

BlueZ lays its objects out below ``/org/bluez``::

    /org/bluez/<adapter>
    /org/bluez/<adapter>/dev_<address>
    /org/bluez/<adapter>[/dev_<address>]/fd<N>
    /org/bluez/<adapter>[/dev_<address>]/player<N>
    /org/bluez/<adapter>[/dev_<address>]/player<N>/Filesystem
    /org/bluez/<adapter>[/dev_<address>]/player<N>/NowPlaying
    /org/bluez/<adapter>[/dev_<address>]/player<N>/NowPlaying/item<M>

``match_path`` turns a path into a ``PathMatch`` (or ``None``) and
``classify`` combines it with the interfaces an object carries to yield
the tracked entities. Both are pure; nothing here touches the bus.
"""
from __future__ import annotations

import re
from collections.abc import Iterable
from dataclasses import dataclass
from enum import StrEnum

from .const import (
    ADAPTER_INTERFACE,
    BLUEZ_NAMESPACE,
    BLUEZ_ROOT_PATH,
    DEVICE_INTERFACE,
    FILESYSTEM_INTERFACE,
    MEDIA_CONTROL_INTERFACE,
    MEDIA_ITEM_INTERFACE,
    MEDIA_PLAYER_INTERFACE,
    MEDIA_TRANSPORT_INTERFACE,
    NETWORK_INTERFACE,
)

_WORD = re.compile(r"\w+", re.ASCII)
_FD = re.compile(r"fd([0-9]+)")
_PLAYER = re.compile(r"player([0-9]+)")
_ITEM = re.compile(r"item([0-9]+)")

_DEVICE_PREFIX = "dev_"
_FILESYSTEM = "Filesystem"
_NOW_PLAYING = "NowPlaying"


class Kind(StrEnum):
    """Domain object categories tracked on the bus."""

    ADAPTER = "Adapter"
    DEVICE = "Device"
    NETWORK = "Network"
    MEDIA_CONTROL = "MediaControl"
    MEDIA_PLAYER = "MediaPlayer"
    MEDIA_TRANSPORT = "MediaTransport"
    MEDIA_ITEM = "MediaItem"
    FILESYSTEM = "Filesystem"

    @property
    def interface(self) -> str:
        """Return the defining BlueZ interface for this kind."""
        return f"{BLUEZ_NAMESPACE}{self.value}1"


class Shape(StrEnum):
    """Path shapes of the grammar."""

    DEVICE = "device"
    FD = "fd"
    FILESYSTEM = "filesystem"
    NOWPLAYING = "nowplaying"
    NOWPLAYING_ITEM = "nowplaying_item"
    PLAYER = "player"


@dataclass(frozen=True, slots=True)
class PathMatch:
    """Segments captured from an object path."""

    shape: Shape
    adapter: str
    address: str | None = None
    ordinal: str | None = None
    item: str | None = None

    @property
    def owner(self) -> str:
        """Return the device id, or the adapter id for adapter-local objects."""
        return self.address if self.address is not None else self.adapter

    @property
    def key(self) -> str:
        """Return the canonical entity key for the matched object."""
        if self.shape is Shape.DEVICE:
            return self.owner
        parts = [self.owner]
        if self.shape is Shape.FD:
            parts.append(f"fd{self.ordinal}")
        else:
            parts.append(f"player{self.ordinal}")
        if self.item is not None:
            parts.append(f"item{self.item}")
        return ".".join(parts)


@dataclass(frozen=True, slots=True)
class Classification:
    """One tracked entity yielded by a path and one of its interfaces."""

    kind: Kind
    key: str
    path: str
    interface: str


@dataclass(frozen=True, slots=True)
class _Rule:
    shape: Shape
    interface: str
    kind: Kind
    # None: either; True: path must carry a dev_ segment; False: must not
    needs_address: bool | None = None


_RULES: tuple[_Rule, ...] = (
    _Rule(Shape.DEVICE, ADAPTER_INTERFACE, Kind.ADAPTER, needs_address=False),
    _Rule(Shape.DEVICE, DEVICE_INTERFACE, Kind.DEVICE, needs_address=True),
    _Rule(Shape.DEVICE, NETWORK_INTERFACE, Kind.NETWORK, needs_address=True),
    _Rule(Shape.DEVICE, MEDIA_CONTROL_INTERFACE, Kind.MEDIA_CONTROL, needs_address=True),
    _Rule(Shape.PLAYER, MEDIA_PLAYER_INTERFACE, Kind.MEDIA_PLAYER),
    _Rule(Shape.FD, MEDIA_TRANSPORT_INTERFACE, Kind.MEDIA_TRANSPORT),
    _Rule(Shape.FILESYSTEM, FILESYSTEM_INTERFACE, Kind.FILESYSTEM),
    _Rule(Shape.FILESYSTEM, MEDIA_ITEM_INTERFACE, Kind.FILESYSTEM),
    _Rule(Shape.NOWPLAYING, MEDIA_ITEM_INTERFACE, Kind.MEDIA_ITEM),
    _Rule(Shape.NOWPLAYING_ITEM, MEDIA_ITEM_INTERFACE, Kind.MEDIA_ITEM),
)


def match_path(path: str) -> PathMatch | None:
    """Match an object path against the grammar.

    Returns None for anything outside the BlueZ tree or not shaped like
    one of the known objects.
    """
    prefix = f"{BLUEZ_ROOT_PATH}/"
    if not isinstance(path, str) or not path.startswith(prefix):
        return None

    segments = path[len(prefix):].split("/")
    adapter = segments.pop(0)
    if not _WORD.fullmatch(adapter):
        return None

    address = None
    if segments and segments[0].startswith(_DEVICE_PREFIX):
        address = segments.pop(0)[len(_DEVICE_PREFIX):]
        if not _WORD.fullmatch(address):
            return None

    if not segments:
        return PathMatch(Shape.DEVICE, adapter, address)

    head, rest = segments[0], segments[1:]

    if (fd := _FD.fullmatch(head)) is not None:
        if rest:
            return None
        return PathMatch(Shape.FD, adapter, address, fd.group(1))

    player = _PLAYER.fullmatch(head)
    if player is None:
        return None
    ordinal = player.group(1)

    if not rest:
        return PathMatch(Shape.PLAYER, adapter, address, ordinal)
    if rest == [_FILESYSTEM]:
        return PathMatch(Shape.FILESYSTEM, adapter, address, ordinal)
    if rest == [_NOW_PLAYING]:
        return PathMatch(Shape.NOWPLAYING, adapter, address, ordinal)
    if len(rest) == 2 and rest[0] == _NOW_PLAYING:
        if (item := _ITEM.fullmatch(rest[1])) is not None:
            return PathMatch(
                Shape.NOWPLAYING_ITEM, adapter, address, ordinal, item.group(1)
            )
    return None


def _rule_applies(rule: _Rule, match: PathMatch) -> bool:
    if rule.shape is not match.shape:
        return False
    if rule.needs_address is None:
        return True
    return rule.needs_address == (match.address is not None)


def classify(path: str, interfaces: Iterable[str]) -> list[Classification]:
    """Return every tracked entity a path yields for the given interfaces.

    Interfaces are considered in the order given; an object carrying
    several recognized interfaces (a device with MediaControl1, say)
    yields one classification per interface.
    """
    match = match_path(path)
    if match is None:
        return []

    results: list[Classification] = []
    for interface in interfaces:
        for rule in _RULES:
            if rule.interface == interface and _rule_applies(rule, match):
                results.append(
                    Classification(rule.kind, match.key, path, interface)
                )
                break
    return results


def normalize_key(identifier: str) -> str:
    """Turn a human-usable identifier into an entity key.

    Accepts a full object path (``/org/bluez/hci0/dev_AA_BB_CC_DD_EE_FF``),
    a colon-separated address (``AA:BB:CC:DD:EE:FF``) or a key as-is.
    """
    if identifier.startswith("/"):
        match = match_path(identifier)
        if match is not None:
            return match.key
    return identifier.replace(":", "_")


def format_address(key: str) -> str:
    """Return the colon-separated address for a device key."""
    return key.replace("_", ":")
