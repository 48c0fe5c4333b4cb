from __future__ import annotations

from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from enum import Enum, auto
from typing import TYPE_CHECKING, Any, TypeAlias, TypeVar

from diplan.exceptions import InvalidRegistrationError, type_name

if TYPE_CHECKING:
    from diplan._internal.provider import ServiceProviderBase

T = TypeVar("T")

ServiceType: TypeAlias = Any
"""A type (or any hashable token) that services are registered and resolved under."""

ServiceKey: TypeAlias = Any
"""An additional lookup key that disambiguates keyed registrations of one type."""

Factory: TypeAlias = Callable[["ServiceProviderBase"], Any]
"""A synchronous factory receiving the active provider or scope."""

AsyncFactory: TypeAlias = Callable[["ServiceProviderBase"], Awaitable[Any]]
"""An asynchronous factory receiving the active provider or scope."""

Decorator: TypeAlias = Callable[[Any, "ServiceProviderBase"], Any]
"""A post-creation wrapper receiving the inner instance and the active provider."""


class _Missing:
    __slots__ = ()

    def __repr__(self) -> str:
        return "MISSING"

    def __bool__(self) -> bool:
        return False


MISSING: Any = _Missing()
"""Sentinel for an absent value where ``None`` is a legitimate value."""


class Lifetime(Enum):
    """Define how long a created instance is cached and reused."""

    SINGLETON = auto()
    """Create once per container and share across the root and every scope."""

    SCOPED = auto()
    """Create once per open scope.

    Resolving a scoped service directly from the root provider treats the root
    as an implicit scope, so the instance lives as long as the container.
    """

    TRANSIENT = auto()
    """Create a new instance on every resolution."""

    @property
    def label(self) -> str:
        """Return the lower-case lifetime name used in diagnostics."""
        return self.name.lower()


@dataclass(frozen=True, slots=True, kw_only=True)
class ServiceDescriptor:
    """Describe one registration of a service type.

    Exactly one creation strategy is populated: ``implementation_type``
    (constructed through an implementation factory), ``factory``,
    ``async_factory`` or ``instance``. Instance registrations are always
    singletons.
    """

    service_type: ServiceType
    """The type that callers resolve."""
    lifetime: Lifetime
    """The caching behavior for created instances."""
    implementation_type: type[Any] | None = None
    """A concrete type built through the implementation factory lookup."""
    factory: Factory | None = None
    """A sync callable invoked with the active provider."""
    async_factory: AsyncFactory | None = None
    """An async callable invoked with the active provider."""
    instance: Any = MISSING
    """A prebuilt value returned as-is."""

    def __post_init__(self) -> None:
        strategies = [
            self.implementation_type is not None,
            self.factory is not None,
            self.async_factory is not None,
            self.instance is not MISSING,
        ]
        if sum(strategies) != 1:
            msg = (
                f'Registration for "{type_name(self.service_type)}" must define exactly one of '
                "implementation_type, factory, async_factory or instance."
            )
            raise InvalidRegistrationError(msg)
        if self.instance is not MISSING and self.lifetime is not Lifetime.SINGLETON:
            msg = f'Instance registration for "{type_name(self.service_type)}" must be a singleton.'
            raise InvalidRegistrationError(msg)
        for candidate in (self.factory, self.async_factory):
            if candidate is not None and not callable(candidate):
                msg = f'Factory for "{type_name(self.service_type)}" must be callable.'
                raise InvalidRegistrationError(msg)

    @property
    def strategy_name(self) -> str:
        """Return the creation strategy name used in diagnostics."""
        if self.implementation_type is not None:
            return "constructor"
        if self.factory is not None:
            return "factory"
        if self.async_factory is not None:
            return "async_factory"
        return "instance"


@dataclass(frozen=True, slots=True, kw_only=True)
class KeyedServiceDescriptor(ServiceDescriptor):
    """Describe a registration resolved by service type and key."""

    key: ServiceKey
    """The lookup key paired with ``service_type``."""

    def __post_init__(self) -> None:
        ServiceDescriptor.__post_init__(self)
        if self.key is None:
            msg = f'Keyed registration for "{type_name(self.service_type)}" requires a key.'
            raise InvalidRegistrationError(msg)
