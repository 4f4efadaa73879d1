"""Exception hierarchy for NetWatch."""

from __future__ import annotations


class NetWatchError(Exception):
    """Base exception for NetWatch."""


class StoreError(NetWatchError):
    """Read or write against the device store failed."""


class EventSinkError(NetWatchError):
    """Pushing an event to subscribers failed."""


class ConfigurationError(NetWatchError):
    """Configuration is missing or malformed."""
