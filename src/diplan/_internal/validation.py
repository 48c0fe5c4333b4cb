from __future__ import annotations

import contextlib
import logging
from collections.abc import Iterator
from dataclasses import dataclass, field
from typing import Any

from diplan._internal.call_sites import (
    CallSite,
    CompiledPlan,
    ConstructorCallSite,
    DecoratorCallSite,
    KeyedCallSite,
    ScopedCallSite,
    SingletonCallSite,
    TransientCallSite,
    terminal_of,
)
from diplan._internal.descriptors import ServiceType
from diplan._internal.implementation_factories import ImplementationFactoryLookup
from diplan.exceptions import (
    ContainerBuildError,
    MissingServiceError,
    ScopeViolationError,
    type_name,
)

logger = logging.getLogger(__name__)


class _ProbeResult:
    __slots__ = ()

    def __repr__(self) -> str:
        return "<dependency probe>"


PROBE_RESULT: Any = _ProbeResult()
"""Placeholder handed to implementation factories while they are probed."""


class DependencyProbe:
    """Stand-in resolver that records requested types without building anything.

    Probing is best-effort: a factory that branches on the values it receives
    only reveals the requests made along the branch the placeholder triggers.
    """

    is_probe = True

    def __init__(self) -> None:
        self.requested: list[ServiceType] = []

    def __call__(self, service_type: ServiceType) -> Any:
        self.requested.append(service_type)
        return PROBE_RESULT


@dataclass(slots=True)
class DependencyDiscovery:
    """Discover the dependency types of implementation types.

    Declared dependencies of an implementation factory are used as-is; opaque
    factories are probed once with a ``DependencyProbe``. Results are memoized
    per implementation type.
    """

    lookup: ImplementationFactoryLookup
    _cache: dict[type[Any], tuple[ServiceType, ...] | None] = field(
        default_factory=dict,
        init=False,
    )

    def dependencies_of(self, implementation_type: type[Any]) -> tuple[ServiceType, ...] | None:
        """Return discovered dependency types, or ``None`` when no factory exists."""
        if implementation_type in self._cache:
            return self._cache[implementation_type]

        factory = self.lookup.factory_for(implementation_type)
        if factory is None:
            dependencies = None
        elif factory.dependencies is not None:
            dependencies = factory.dependencies
        else:
            probe = DependencyProbe()
            # Factories are expected to fail on placeholder values; only the
            # requests made before the failure matter.
            with contextlib.suppress(Exception):
                factory.create(probe)
            dependencies = tuple(dict.fromkeys(probe.requested))

        self._cache[implementation_type] = dependencies
        return dependencies

    def __call__(self, implementation_type: type[Any]) -> tuple[ServiceType, ...]:
        return self.dependencies_of(implementation_type) or ()


class CallSiteValidator:
    """Run build-time checks over a compiled plan.

    Both checks collect every problem by default; with ``fail_fast`` they raise
    the first problem found instead.
    """

    def __init__(
        self,
        plan: CompiledPlan,
        discovery: DependencyDiscovery,
        *,
        fail_fast: bool = False,
    ) -> None:
        self._plan = plan
        self._discovery = discovery
        self._fail_fast = fail_fast

    def validate_dependencies(self) -> list[str]:
        """Report constructor dependencies that have no registration.

        Returns:
            One message per missing dependency or missing implementation factory.

        Raises:
            MissingServiceError: On the first problem when ``fail_fast`` is set.

        """
        errors: list[str] = []
        seen: set[tuple[ServiceType, type[Any], ServiceType]] = set()
        for call_site in self._roots():
            terminal = terminal_of(call_site)
            if not isinstance(terminal, ConstructorCallSite):
                continue
            implementation_type = terminal.implementation_type
            dependencies = self._discovery.dependencies_of(implementation_type)
            if dependencies is None:
                message = (
                    f'MissingImplementationFactory: "{type_name(terminal.service_type)}" '
                    f'({type_name(implementation_type)}) has no implementation factory.'
                )
                self._report_missing(errors, message, implementation_type)
                continue
            for dependency in dependencies:
                if dependency in self._plan.call_sites:
                    continue
                marker = (terminal.service_type, implementation_type, dependency)
                if marker in seen:
                    continue
                seen.add(marker)
                message = (
                    f'MissingDependency: "{type_name(terminal.service_type)}" '
                    f'({type_name(implementation_type)}) depends on '
                    f'"{type_name(dependency)}" which is not registered.'
                )
                self._report_missing(errors, message, dependency)
        return list(dict.fromkeys(errors))

    def validate_scopes(self) -> list[str]:
        """Report scoped services reachable from singletons.

        Transient services inherit the lifetime of whoever owns them, so a
        singleton depending on a transient that depends on a scoped service is
        also reported.

        Returns:
            One message per ``(singleton, scoped)`` captive pair.

        Raises:
            ScopeViolationError: On the first violation when ``fail_fast`` is set.

        """
        violations: dict[tuple[ServiceType, ServiceType], str] = {}
        seen: set[tuple[int, ServiceType | None]] = set()
        stack: list[tuple[CallSite, ServiceType | None]] = [
            (call_site, None) for call_site in self._roots()
        ]

        while stack:
            node, singleton_owner = stack.pop()
            marker = (id(node), singleton_owner)
            if marker in seen:
                continue
            seen.add(marker)

            if isinstance(node, (KeyedCallSite, DecoratorCallSite)):
                stack.append((node.inner, singleton_owner))
            elif isinstance(node, SingletonCallSite):
                stack.append((node.inner, node.service_type))
            elif isinstance(node, ScopedCallSite):
                if singleton_owner is not None:
                    pair = (singleton_owner, node.service_type)
                    if pair not in violations:
                        violation = ScopeViolationError(*pair)
                        if self._fail_fast:
                            raise violation
                        violations[pair] = str(violation)
                stack.append((node.inner, None))
            elif isinstance(node, TransientCallSite):
                stack.append((node.inner, singleton_owner))
            elif isinstance(node, ConstructorCallSite):
                dependencies = self._discovery.dependencies_of(node.implementation_type) or ()
                stack.extend(
                    (self._plan.call_sites[dependency], singleton_owner)
                    for dependency in reversed(dependencies)
                    if dependency in self._plan.call_sites
                )

        return list(violations.values())

    def validate(self) -> None:
        """Run both checks and raise one aggregate error if anything was found.

        Raises:
            ContainerBuildError: With every collected message.

        """
        errors = [*self.validate_dependencies(), *self.validate_scopes()]
        if errors:
            raise ContainerBuildError(errors)

    def _roots(self) -> Iterator[CallSite]:
        for call_sites in self._plan.all_call_sites.values():
            yield from call_sites
        yield from self._plan.keyed_call_sites.values()

    def _report_missing(self, errors: list[str], message: str, service_type: ServiceType) -> None:
        logger.debug("Build validation: %s", message)
        if self._fail_fast:
            raise MissingServiceError(service_type, message=message)
        errors.append(message)

