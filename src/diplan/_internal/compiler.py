from __future__ import annotations

import logging
from collections import Counter
from collections.abc import Callable, Mapping, Sequence
from types import MappingProxyType
from typing import Any

from diplan._internal.call_sites import (
    AsyncFactoryCallSite,
    CallSite,
    CompiledPlan,
    ConstructorCallSite,
    DecoratorCallSite,
    FactoryCallSite,
    InstanceCallSite,
    KeyedCallSite,
    LifetimeCallSite,
    ScopedCallSite,
    SingletonCallSite,
    TerminalCallSite,
    TransientCallSite,
)
from diplan._internal.dependency_graph import DependencyGraph
from diplan._internal.descriptors import (
    Decorator,
    Lifetime,
    ServiceDescriptor,
    ServiceKey,
    ServiceType,
)
from diplan._internal.registry import ServiceRegistry

logger = logging.getLogger(__name__)

DependencyDiscoveryFn = Callable[[type[Any]], Sequence[ServiceType]]


class CallSiteCompiler:
    """Compile registrations into an immutable call-site plan.

    Registrations are processed in order. Each one becomes a terminal creation
    node wrapped in its lifetime node, and decorated when decorators exist for
    its service type. Single lookups see the last registration of a type,
    multi lookups see all of them, and keyed registrations live in their own map.

    The compiler also feeds the dependency graph: every constructor registration
    adds a ``service -> implementation`` edge, and, when a discovery callable is
    supplied, ``implementation -> dependency`` edges for each dependency the
    implementation factory requests.
    """

    def __init__(
        self,
        registry: ServiceRegistry,
        graph: DependencyGraph,
        *,
        decorators: Mapping[ServiceType, Sequence[Decorator]] | None = None,
        dependency_discovery: DependencyDiscoveryFn | None = None,
    ) -> None:
        self._registry = registry
        self._graph = graph
        self._decorators = decorators or {}
        self._dependency_discovery = dependency_discovery

    def compile(self) -> CompiledPlan:
        """Build the frozen lookup maps.

        Returns:
            The compiled plan shared by the root provider and all scopes.

        Raises:
            DependencyInferenceError: If dependency discovery cannot infer an
                implementation type's constructor parameters.

        """
        call_sites: dict[ServiceType, CallSite] = {}
        all_call_sites: dict[ServiceType, list[CallSite]] = {}
        remaining = Counter(d.service_type for d in self._registry.descriptors)
        for descriptor in self._registry.descriptors:
            service_type = descriptor.service_type
            remaining[service_type] -= 1
            self._graph.add_node(service_type)
            wrapped = self._wrap_lifetime(
                descriptor,
                self._terminal(descriptor),
                key=None,
                slot=remaining[service_type],
            )

            call_site: CallSite = wrapped
            decorators = self._decorators.get(service_type)
            if decorators:
                call_site = DecoratorCallSite(
                    service_type=service_type,
                    inner=wrapped,
                    decorators=tuple(decorators),
                )

            call_sites[service_type] = call_site
            all_call_sites.setdefault(service_type, []).append(call_site)

        keyed_call_sites: dict[tuple[ServiceType, ServiceKey], KeyedCallSite] = {}
        for keyed in self._registry.keyed_descriptors:
            self._graph.add_node(keyed.service_type)
            wrapped = self._wrap_lifetime(keyed, self._terminal(keyed), key=keyed.key)
            keyed_call_sites[(keyed.service_type, keyed.key)] = KeyedCallSite(
                service_type=keyed.service_type,
                inner=wrapped,
                key=keyed.key,
            )

        logger.debug(
            "Compiled %d service type(s), %d registration(s), %d keyed registration(s)",
            len(call_sites),
            sum(len(nodes) for nodes in all_call_sites.values()),
            len(keyed_call_sites),
        )
        return CompiledPlan(
            call_sites=MappingProxyType(call_sites),
            all_call_sites=MappingProxyType(
                {service_type: tuple(nodes) for service_type, nodes in all_call_sites.items()},
            ),
            keyed_call_sites=MappingProxyType(keyed_call_sites),
        )

    def _terminal(self, descriptor: ServiceDescriptor) -> TerminalCallSite:
        service_type = descriptor.service_type
        if descriptor.implementation_type is not None:
            implementation_type = descriptor.implementation_type
            if implementation_type != service_type:
                self._graph.add_edge(service_type, implementation_type)
            else:
                self._graph.add_node(implementation_type)
            if self._dependency_discovery is not None:
                for dependency in self._dependency_discovery(implementation_type):
                    self._graph.add_edge(implementation_type, dependency)
            return ConstructorCallSite(
                service_type=service_type,
                lifetime=descriptor.lifetime,
                implementation_type=implementation_type,
            )
        if descriptor.factory is not None:
            return FactoryCallSite(
                service_type=service_type,
                lifetime=descriptor.lifetime,
                factory=descriptor.factory,
            )
        if descriptor.async_factory is not None:
            return AsyncFactoryCallSite(
                service_type=service_type,
                lifetime=descriptor.lifetime,
                factory=descriptor.async_factory,
            )
        return InstanceCallSite(service_type=service_type, instance=descriptor.instance)

    def _wrap_lifetime(
        self,
        descriptor: ServiceDescriptor,
        terminal: TerminalCallSite,
        *,
        key: ServiceKey,
        slot: int = 0,
    ) -> LifetimeCallSite:
        service_type = descriptor.service_type
        if descriptor.lifetime is Lifetime.SINGLETON:
            return SingletonCallSite(service_type=service_type, inner=terminal, key=key, slot=slot)
        if descriptor.lifetime is Lifetime.SCOPED:
            return ScopedCallSite(service_type=service_type, inner=terminal, key=key, slot=slot)
        return TransientCallSite(service_type=service_type, inner=terminal, key=key, slot=slot)
