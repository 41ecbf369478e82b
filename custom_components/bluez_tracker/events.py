"""Domain events produced from BlueZ signals."""
from __future__ import annotations

import logging
import re
from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Any

from .const import (
    ATTR_INVALIDATED,
    ATTR_OBJECT,
    ATTR_OBJECT_PATH,
    ATTR_PATH,
    ATTR_PROPERTIES,
    BLUEZ_NAMESPACE,
    EVENT_ADDED,
    EVENT_CHANGED,
    EVENT_REMOVED,
    RECOGNIZED_INTERFACES,
)
from .paths import Classification, Kind

_LOGGER = logging.getLogger(__name__)

_VERSION_SUFFIX = re.compile(r"[0-9]$")


@dataclass(frozen=True, slots=True)
class InterfaceAddedEvent:
    """An object gained one of the tracked interfaces."""

    kind: Kind
    key: str
    path: str
    properties: dict[str, Any] = field(default_factory=dict)

    @property
    def name(self) -> str:
        return f"{EVENT_ADDED}-{self.kind}"

    @property
    def payload(self) -> dict[str, Any]:
        return {
            ATTR_OBJECT: self.key,
            ATTR_PATH: self.path,
            ATTR_PROPERTIES: self.properties,
        }


@dataclass(frozen=True, slots=True)
class InterfaceRemovedEvent:
    """An object lost its defining interface."""

    kind: Kind
    key: str
    path: str

    @property
    def name(self) -> str:
        return f"{EVENT_REMOVED}-{self.kind}"

    @property
    def payload(self) -> dict[str, Any]:
        return {ATTR_OBJECT: self.key}


@dataclass(frozen=True, slots=True)
class PropertiesChangedEvent:
    """Properties changed on one interface of a subscribed object.

    ``interface`` is what the signal reports; ``object_path`` is the
    object the subscription was made for.
    """

    kind: Kind
    interface: str
    object_path: str
    properties: dict[str, Any] = field(default_factory=dict)
    invalidated: tuple[str, ...] = ()

    @property
    def name(self) -> str:
        return f"{EVENT_CHANGED}-{self.kind}"

    @property
    def payload(self) -> dict[str, Any]:
        return {
            ATTR_PATH: self.interface,
            ATTR_PROPERTIES: self.properties,
            ATTR_OBJECT_PATH: self.object_path,
            ATTR_INVALIDATED: list(self.invalidated),
        }


type BluezEvent = InterfaceAddedEvent | InterfaceRemovedEvent | PropertiesChangedEvent


def interface_kind(interface: str) -> Kind | None:
    """Return the kind named by a recognized interface, else None.

    ``org.bluez.MediaPlayer1`` maps to ``Kind.MEDIA_PLAYER``.
    """
    if interface not in RECOGNIZED_INTERFACES:
        return None
    return Kind(_VERSION_SUFFIX.sub("", interface.removeprefix(BLUEZ_NAMESPACE)))


class EventNormalizer:
    """Turn raw bus notifications into domain events."""

    def added(
        self, classification: Classification, properties: dict[str, Any]
    ) -> InterfaceAddedEvent:
        """Build the event for a newly recorded entity."""
        return InterfaceAddedEvent(
            classification.kind,
            classification.key,
            classification.path,
            properties,
        )

    def removed(self, classification: Classification) -> InterfaceRemovedEvent:
        """Build the event for a removed entity."""
        return InterfaceRemovedEvent(
            classification.kind, classification.key, classification.path
        )

    def changed(
        self,
        interface: str,
        properties: dict[str, Any],
        object_path: str,
        invalidated: Iterable[str] = (),
    ) -> PropertiesChangedEvent | None:
        """Build the event for a PropertiesChanged signal.

        Interfaces outside the recognized set yield None.
        """
        kind = interface_kind(interface)
        if kind is None:
            _LOGGER.debug(
                "Dropping PropertiesChanged for %s on %s", interface, object_path
            )
            return None
        return PropertiesChangedEvent(
            kind, interface, object_path, properties, tuple(invalidated)
        )
