"""Exceptions for the BlueZ Tracker integration."""
from __future__ import annotations


class BluezTrackerError(Exception):
    """Base exception for BlueZ Tracker errors."""


class NotFoundError(BluezTrackerError, KeyError):
    """Error to indicate an entity has never been observed on the bus."""

    def __init__(self, kind: str, key: str) -> None:
        super().__init__(f"{kind} not found: {key}")
        self.kind = kind
        self.key = key

    def __str__(self) -> str:
        # KeyError quotes its argument otherwise
        return str(self.args[0])


class BusError(BluezTrackerError):
    """Error to indicate a D-Bus transport or RPC failure."""

    def __init__(self, message: str, error_name: str | None = None) -> None:
        super().__init__(message)
        self.error_name = error_name
