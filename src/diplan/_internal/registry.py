from __future__ import annotations

from collections.abc import Iterator

from diplan._internal.descriptors import (
    KeyedServiceDescriptor,
    ServiceDescriptor,
    ServiceKey,
    ServiceType,
)


class ServiceRegistry:
    """Store service descriptors in registration order.

    Plain and keyed registrations are kept apart. Several descriptors may exist
    for one service type; the compiler resolves single lookups to the last one
    and multi lookups to all of them in order.
    """

    def __init__(self) -> None:
        self._descriptors: list[ServiceDescriptor] = []
        self._keyed_descriptors: list[KeyedServiceDescriptor] = []

    def add(self, descriptor: ServiceDescriptor) -> None:
        """Append a descriptor, routing keyed descriptors to the keyed store."""
        if isinstance(descriptor, KeyedServiceDescriptor):
            self._keyed_descriptors.append(descriptor)
            return
        self._descriptors.append(descriptor)

    def contains(self, service_type: ServiceType) -> bool:
        """Return whether at least one plain descriptor exists for the type."""
        return any(d.service_type == service_type for d in self._descriptors)

    def contains_keyed(self, service_type: ServiceType, key: ServiceKey) -> bool:
        """Return whether a keyed descriptor exists for the type and key."""
        return any(
            d.service_type == service_type and d.key == key for d in self._keyed_descriptors
        )

    def descriptors_for(self, service_type: ServiceType) -> list[ServiceDescriptor]:
        """Return every plain descriptor of the type in registration order."""
        return [d for d in self._descriptors if d.service_type == service_type]

    def remove_all(self, service_type: ServiceType) -> int:
        """Remove every plain descriptor of the type and return how many were removed."""
        before = len(self._descriptors)
        self._descriptors = [d for d in self._descriptors if d.service_type != service_type]
        return before - len(self._descriptors)

    def remove_keyed(self, service_type: ServiceType, key: ServiceKey) -> int:
        """Remove keyed descriptors matching the type and key."""
        before = len(self._keyed_descriptors)
        self._keyed_descriptors = [
            d
            for d in self._keyed_descriptors
            if not (d.service_type == service_type and d.key == key)
        ]
        return before - len(self._keyed_descriptors)

    @property
    def descriptors(self) -> tuple[ServiceDescriptor, ...]:
        return tuple(self._descriptors)

    @property
    def keyed_descriptors(self) -> tuple[KeyedServiceDescriptor, ...]:
        return tuple(self._keyed_descriptors)

    def service_types(self) -> list[ServiceType]:
        """Return distinct plain service types in first-registration order."""
        return list(dict.fromkeys(d.service_type for d in self._descriptors))

    def __iter__(self) -> Iterator[ServiceDescriptor]:
        return iter(self._descriptors)

    def __len__(self) -> int:
        return len(self.service_types())
