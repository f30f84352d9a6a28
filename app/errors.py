"""Exception hierarchy shared by the gateway, stores, and sync coordinator."""

from __future__ import annotations


class StreamCacheError(Exception):
    """Base class for errors raised by the StreamCache core."""


class GatewayError(StreamCacheError):
    """The remote catalog could not be read."""


class GatewayUnavailable(GatewayError):
    """Transport failure, timeout, or server error while talking to the provider."""


class MalformedResponse(GatewayError):
    """The provider answered with a payload of an unexpected shape."""


class StorageUnavailable(StreamCacheError):
    """The local database could not be initialised."""


class SyncInProgress(StreamCacheError):
    """A manual sync was requested while the same type is already running."""

    def __init__(self, sync_type: str):
        super().__init__(f"A {sync_type} sync is already in progress")
        self.sync_type = sync_type


class UnsupportedSyncType(StreamCacheError):
    """The requested type has a cursor and threshold but no sync implementation."""

    def __init__(self, sync_type: str):
        super().__init__(f"Synchronisation of {sync_type!r} is not supported")
        self.sync_type = sync_type
