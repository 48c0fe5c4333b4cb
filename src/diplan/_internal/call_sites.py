from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum, auto
from typing import Any, ClassVar, TypeAlias, Union

from diplan._internal.descriptors import (
    AsyncFactory,
    Decorator,
    Factory,
    Lifetime,
    ServiceKey,
    ServiceType,
)


class CallSiteKind(Enum):
    """Tag each compiled call site with the role it plays in the plan."""

    INSTANCE = auto()
    """Return a prebuilt value."""

    FACTORY = auto()
    """Invoke a sync factory with the active provider."""

    ASYNC_FACTORY = auto()
    """Await an async factory invoked with the active provider."""

    CONSTRUCTOR = auto()
    """Delegate to the implementation factory of a concrete type."""

    SINGLETON = auto()
    """Cache the inner result once per container."""

    SCOPED = auto()
    """Cache the inner result once per scope."""

    TRANSIENT = auto()
    """Produce a fresh inner result on every resolution."""

    KEYED = auto()
    """Route a keyed lookup to its lifetime wrapper."""

    DECORATOR = auto()
    """Wrap the inner result with registered decorators."""


@dataclass(frozen=True, slots=True, kw_only=True)
class InstanceCallSite:
    service_type: ServiceType
    instance: Any
    lifetime: Lifetime = Lifetime.SINGLETON
    kind: ClassVar[CallSiteKind] = CallSiteKind.INSTANCE


@dataclass(frozen=True, slots=True, kw_only=True)
class FactoryCallSite:
    service_type: ServiceType
    lifetime: Lifetime
    factory: Factory
    kind: ClassVar[CallSiteKind] = CallSiteKind.FACTORY


@dataclass(frozen=True, slots=True, kw_only=True)
class AsyncFactoryCallSite:
    service_type: ServiceType
    lifetime: Lifetime
    factory: AsyncFactory
    kind: ClassVar[CallSiteKind] = CallSiteKind.ASYNC_FACTORY


@dataclass(frozen=True, slots=True, kw_only=True)
class ConstructorCallSite:
    service_type: ServiceType
    lifetime: Lifetime
    implementation_type: type[Any]
    kind: ClassVar[CallSiteKind] = CallSiteKind.CONSTRUCTOR


TerminalCallSite: TypeAlias = Union[
    InstanceCallSite,
    FactoryCallSite,
    AsyncFactoryCallSite,
    ConstructorCallSite,
]


@dataclass(frozen=True, slots=True, kw_only=True)
class SingletonCallSite:
    service_type: ServiceType
    inner: TerminalCallSite
    key: ServiceKey = None
    slot: int = 0
    lifetime: Lifetime = Lifetime.SINGLETON
    kind: ClassVar[CallSiteKind] = CallSiteKind.SINGLETON


@dataclass(frozen=True, slots=True, kw_only=True)
class ScopedCallSite:
    service_type: ServiceType
    inner: TerminalCallSite
    key: ServiceKey = None
    slot: int = 0
    lifetime: Lifetime = Lifetime.SCOPED
    kind: ClassVar[CallSiteKind] = CallSiteKind.SCOPED


@dataclass(frozen=True, slots=True, kw_only=True)
class TransientCallSite:
    service_type: ServiceType
    inner: TerminalCallSite
    key: ServiceKey = None
    slot: int = 0
    lifetime: Lifetime = Lifetime.TRANSIENT
    kind: ClassVar[CallSiteKind] = CallSiteKind.TRANSIENT


LifetimeCallSite: TypeAlias = Union[SingletonCallSite, ScopedCallSite, TransientCallSite]


@dataclass(frozen=True, slots=True, kw_only=True)
class KeyedCallSite:
    service_type: ServiceType
    inner: LifetimeCallSite
    key: ServiceKey

    kind: ClassVar[CallSiteKind] = CallSiteKind.KEYED

    @property
    def lifetime(self) -> Lifetime:
        return self.inner.lifetime


@dataclass(frozen=True, slots=True, kw_only=True)
class DecoratorCallSite:
    service_type: ServiceType
    inner: LifetimeCallSite
    decorators: tuple[Decorator, ...]

    kind: ClassVar[CallSiteKind] = CallSiteKind.DECORATOR

    @property
    def lifetime(self) -> Lifetime:
        return self.inner.lifetime


CallSite: TypeAlias = Union[
    InstanceCallSite,
    FactoryCallSite,
    AsyncFactoryCallSite,
    ConstructorCallSite,
    SingletonCallSite,
    ScopedCallSite,
    TransientCallSite,
    KeyedCallSite,
    DecoratorCallSite,
]
"""Closed union of every compiled node kind."""


@dataclass(frozen=True, slots=True, kw_only=True)
class CompiledPlan:
    """Hold the frozen lookup maps produced by the compiler.

    The maps are shared read-only by the root provider and every scope.
    """

    call_sites: Mapping[ServiceType, CallSite]
    """The last registered call site per service type."""
    all_call_sites: Mapping[ServiceType, tuple[CallSite, ...]]
    """Every call site per service type in registration order."""
    keyed_call_sites: Mapping[tuple[ServiceType, ServiceKey], KeyedCallSite] = field(
        default_factory=dict,
    )
    """Keyed call sites per ``(service_type, key)`` pair."""


_WRAPPER_TYPES = (
    SingletonCallSite,
    ScopedCallSite,
    TransientCallSite,
    KeyedCallSite,
    DecoratorCallSite,
)


def terminal_of(call_site: CallSite) -> TerminalCallSite:
    """Return the terminal creation node wrapped by any call site."""
    node: Any = call_site
    while isinstance(node, _WRAPPER_TYPES):
        node = node.inner
    return node


@dataclass(frozen=True, slots=True)
class RegistrationSlot:
    """Cache key part for an earlier registration of a multiply-registered type."""

    index: int


def cache_key_of(call_site: LifetimeCallSite) -> Any:
    """Return the key under which a lifetime node caches its instance.

    Keyed nodes cache under their key. The last plain registration of a type
    caches under ``None`` so single and multi lookups share its instance;
    earlier registrations get their own ``RegistrationSlot``.
    """
    if call_site.key is not None:
        return call_site.key
    if call_site.slot == 0:
        return None
    return RegistrationSlot(call_site.slot)
