from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Any

from diplan._internal.descriptors import MISSING, ServiceKey, ServiceType
from diplan.exceptions import InvalidContainerStateError, type_name

CacheKey = tuple[ServiceType, ServiceKey]


@dataclass(slots=True)
class CacheEntry:
    """Hold either a completed instance or a pending async reservation."""

    instance: Any = MISSING
    pending: asyncio.Future[Any] | None = None

    @property
    def is_pending(self) -> bool:
        return self.pending is not None and self.instance is MISSING


class LifetimeCache:
    """Store created instances per ``(service_type, key)`` pair.

    Async creation follows a reservation protocol: the creator publishes a
    pending future with ``reserve_async`` before its first suspension point, and
    concurrent requesters await that future instead of creating a second
    instance. ``complete_async`` stores the result and fulfils the future;
    ``fail_async`` removes the entry and rejects the future so every waiter sees
    the same exception.
    """

    def __init__(self) -> None:
        self._entries: dict[CacheKey, CacheEntry] = {}

    def _check_usable(self) -> None:
        """Raise when the cache can no longer be used."""

    def get(self, service_type: ServiceType, key: ServiceKey = None) -> Any:
        """Return the cached instance, or ``MISSING`` when none is completed."""
        self._check_usable()
        entry = self._entries.get((service_type, key))
        if entry is None:
            return MISSING
        return entry.instance

    def contains(self, service_type: ServiceType, key: ServiceKey = None) -> bool:
        """Return whether a completed instance is cached."""
        return self.get(service_type, key) is not MISSING

    def set(self, service_type: ServiceType, instance: Any, key: ServiceKey = None) -> None:
        """Store a completed instance created on the synchronous path."""
        self._check_usable()
        self._entries[(service_type, key)] = CacheEntry(instance=instance)

    def get_pending_reservation(
        self,
        service_type: ServiceType,
        key: ServiceKey = None,
    ) -> asyncio.Future[Any] | None:
        """Return the in-flight creation future, if one is published."""
        self._check_usable()
        entry = self._entries.get((service_type, key))
        if entry is None or not entry.is_pending:
            return None
        return entry.pending

    def reserve_async(
        self,
        service_type: ServiceType,
        future: asyncio.Future[Any],
        key: ServiceKey = None,
    ) -> None:
        """Publish a pending creation so concurrent requesters await it."""
        self._check_usable()
        existing = self._entries.get((service_type, key))
        if existing is not None:
            msg = f'A cache entry for "{type_name(service_type)}" already exists.'
            raise InvalidContainerStateError(msg)
        self._entries[(service_type, key)] = CacheEntry(pending=future)

    def complete_async(
        self,
        service_type: ServiceType,
        instance: Any,
        key: ServiceKey = None,
    ) -> None:
        """Store the created instance and fulfil the pending future."""
        self._check_usable()
        entry = self._entries.get((service_type, key))
        self._entries[(service_type, key)] = CacheEntry(instance=instance)
        if entry is not None and entry.pending is not None and not entry.pending.done():
            entry.pending.set_result(instance)

    def fail_async(
        self,
        service_type: ServiceType,
        error: BaseException,
        key: ServiceKey = None,
    ) -> None:
        """Drop the pending entry and reject its future with ``error``."""
        entry = self._entries.pop((service_type, key), None)
        if entry is None or entry.pending is None or entry.pending.done():
            return
        if isinstance(error, asyncio.CancelledError):
            entry.pending.cancel()
            return
        entry.pending.set_exception(error)
        # Mark the exception as retrieved when nobody else is waiting.
        entry.pending.exception()

    def remove(self, service_type: ServiceType, key: ServiceKey = None) -> None:
        """Forget any entry for the pair."""
        self._check_usable()
        self._entries.pop((service_type, key), None)

    def clear(self) -> None:
        for entry in self._entries.values():
            if entry.is_pending and entry.pending is not None and not entry.pending.done():
                entry.pending.cancel()
        self._entries.clear()

    def __len__(self) -> int:
        return sum(1 for entry in self._entries.values() if entry.instance is not MISSING)


class SingletonCache(LifetimeCache):
    """Cache owned by the root provider for the container lifetime."""


class ScopedCache(LifetimeCache):
    """Cache owned by one scope; unusable once the scope is closed."""

    def __init__(self) -> None:
        super().__init__()
        self._disposed = False

    @property
    def is_disposed(self) -> bool:
        return self._disposed

    def dispose(self) -> None:
        """Cancel pending reservations, drop all entries, and reject further use."""
        self.clear()
        self._disposed = True

    def _check_usable(self) -> None:
        if self._disposed:
            msg = "Cannot use a scoped cache after its scope has been closed."
            raise InvalidContainerStateError(msg)
