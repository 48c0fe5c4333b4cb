from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from collections.abc import Mapping
from dataclasses import dataclass, field
from types import TracebackType
from typing import Any, TypeVar, overload

from typing_extensions import Self

from diplan._internal.caches import ScopedCache, SingletonCache
from diplan._internal.call_sites import CallSite, CompiledPlan, DecoratorCallSite, terminal_of
from diplan._internal.descriptors import ServiceKey, ServiceType
from diplan._internal.disposal import DisposalTracker
from diplan._internal.executor import CallSiteExecutor
from diplan._internal.implementation_factories import ImplementationFactoryLookup
from diplan._internal.options import ContainerOptions
from diplan._internal.resolution_chain import active_resolution_chain
from diplan.exceptions import (
    DisposalError,
    InvalidContainerStateError,
    MissingServiceError,
    type_name,
)

T = TypeVar("T")

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True, kw_only=True)
class ServiceRegistrationInfo:
    """Describe one compiled registration for diagnostics."""

    service_type: ServiceType
    """The registered service type."""
    lifetime_name: str
    """Lower-case lifetime name: ``singleton``, ``scoped`` or ``transient``."""
    strategy_name: str
    """Creation strategy: ``constructor``, ``factory``, ``async_factory`` or ``instance``."""
    key: ServiceKey = None
    """The lookup key of keyed registrations."""
    decorated: bool = False
    """Whether decorators wrap the created instance."""

    def __str__(self) -> str:
        name = type_name(self.service_type)
        if self.key is not None:
            name = f"{name}[key={self.key!r}]"
        suffix = " (decorated)" if self.decorated else ""
        return f"{name} [{self.lifetime_name}] via {self.strategy_name}{suffix}"


@dataclass(kw_only=True)
class _RootState:
    plan: CompiledPlan
    lookup: ImplementationFactoryLookup
    options: ContainerOptions
    graph: Mapping[ServiceType, frozenset[ServiceType]]
    singletons: SingletonCache = field(default_factory=SingletonCache)
    tracker: DisposalTracker = field(default_factory=lambda: DisposalTracker("container"))
    open_scopes: set[ServiceScope] = field(default_factory=set)
    closed: bool = False


class ServiceProviderBase(ABC):
    """Resolve services from a compiled plan.

    Shared by the root ``ServiceProvider`` and every ``ServiceScope``. Each
    instance passes itself to factories and decorators, so scoped services
    requested from inside a factory come from the same scope.
    """

    _root: _RootState
    _executor: CallSiteExecutor

    # region Resolution

    @overload
    def resolve(self, service_type: type[T]) -> T: ...

    @overload
    def resolve(self, service_type: Any) -> Any: ...

    def resolve(self, service_type: Any) -> Any:
        """Resolve the last registration of a service synchronously.

        Args:
            service_type: The registered service type.

        Returns:
            The instance, cached according to its lifetime.

        Raises:
            MissingServiceError: If the type is not registered, or a constructor
                dependency is not.
            CircularDependencyError: If resolution re-enters a type it is
                already constructing.
            AsyncServiceInSyncContextError: If the service or a dependency needs
                async creation.
            InvalidContainerStateError: If this provider or scope is closed.

        Examples:
            .. code-block:: python

                services.add_singleton(Logger, ConsoleLogger)
                provider = services.build_service_provider()
                logger = provider.resolve(Logger)

        """
        self._ensure_open()
        call_site = self._call_site_for(service_type)
        with active_resolution_chain(self._root) as chain:
            return self._executor.resolve(call_site, chain)

    @overload
    async def aresolve(self, service_type: type[T]) -> T: ...

    @overload
    async def aresolve(self, service_type: Any) -> Any: ...

    async def aresolve(self, service_type: Any) -> Any:
        """Resolve the last registration of a service asynchronously.

        Async factories are awaited. Concurrent requests for the same uncached
        singleton or scoped service share one creation.

        Args:
            service_type: The registered service type.

        Returns:
            The instance, cached according to its lifetime.

        Raises:
            MissingServiceError: If the type is not registered, or a constructor
                dependency is not.
            CircularDependencyError: If resolution re-enters a type it is
                already constructing.
            InvalidContainerStateError: If this provider or scope is closed.

        Examples:
            .. code-block:: python

                services.add_singleton_async(Database, open_database)
                provider = services.build_service_provider()
                database = await provider.aresolve(Database)

        """
        self._ensure_open()
        call_site = self._call_site_for(service_type)
        with active_resolution_chain(self._root) as chain:
            return await self._executor.aresolve(call_site, chain)

    def try_resolve(self, service_type: Any) -> Any | None:
        """Resolve a service, returning ``None`` when it is not registered.

        Args:
            service_type: The service type to look up.

        Raises:
            InvalidContainerStateError: If this provider or scope is closed.

        """
        if not self.is_registered(service_type):
            self._ensure_open()
            return None
        return self.resolve(service_type)

    async def atry_resolve(self, service_type: Any) -> Any | None:
        """Asynchronously resolve a service, returning ``None`` when it is not registered.

        Args:
            service_type: The service type to look up.

        Raises:
            InvalidContainerStateError: If this provider or scope is closed.

        """
        if not self.is_registered(service_type):
            self._ensure_open()
            return None
        return await self.aresolve(service_type)

    def resolve_all(self, service_type: Any) -> list[Any]:
        """Resolve every registration of a service in registration order.

        Args:
            service_type: The service type to look up.

        Returns:
            One instance per registration; an empty list when none exist.

        Raises:
            InvalidContainerStateError: If this provider or scope is closed.

        """
        self._ensure_open()
        call_sites = self._root.plan.all_call_sites.get(service_type, ())
        with active_resolution_chain(self._root) as chain:
            return [self._executor.resolve(call_site, chain) for call_site in call_sites]

    async def aresolve_all(self, service_type: Any) -> list[Any]:
        """Asynchronously resolve every registration of a service in registration order.

        Args:
            service_type: The service type to look up.

        Raises:
            InvalidContainerStateError: If this provider or scope is closed.

        """
        self._ensure_open()
        call_sites = self._root.plan.all_call_sites.get(service_type, ())
        instances: list[Any] = []
        with active_resolution_chain(self._root) as chain:
            for call_site in call_sites:
                instances.append(await self._executor.aresolve(call_site, chain))
        return instances

    def resolve_keyed(self, service_type: Any, key: ServiceKey) -> Any:
        """Resolve a keyed registration synchronously.

        Args:
            service_type: The registered service type.
            key: The key the service was registered under.

        Raises:
            MissingServiceError: If no registration exists for the pair.
            InvalidContainerStateError: If this provider or scope is closed.

        """
        self._ensure_open()
        call_site = self._keyed_call_site_for(service_type, key)
        with active_resolution_chain(self._root) as chain:
            return self._executor.resolve(call_site, chain)

    async def aresolve_keyed(self, service_type: Any, key: ServiceKey) -> Any:
        """Resolve a keyed registration asynchronously.

        Args:
            service_type: The registered service type.
            key: The key the service was registered under.

        Raises:
            MissingServiceError: If no registration exists for the pair.
            InvalidContainerStateError: If this provider or scope is closed.

        """
        self._ensure_open()
        call_site = self._keyed_call_site_for(service_type, key)
        with active_resolution_chain(self._root) as chain:
            return await self._executor.aresolve(call_site, chain)

    def try_resolve_keyed(self, service_type: Any, key: ServiceKey) -> Any | None:
        """Resolve a keyed registration, returning ``None`` when absent.

        Args:
            service_type: The service type to look up.
            key: The key to look up.

        Raises:
            InvalidContainerStateError: If this provider or scope is closed.

        """
        if not self.is_keyed_registered(service_type, key):
            self._ensure_open()
            return None
        return self.resolve_keyed(service_type, key)

    async def atry_resolve_keyed(self, service_type: Any, key: ServiceKey) -> Any | None:
        """Asynchronously resolve a keyed registration, returning ``None`` when absent.

        Args:
            service_type: The service type to look up.
            key: The key to look up.

        Raises:
            InvalidContainerStateError: If this provider or scope is closed.

        """
        if not self.is_keyed_registered(service_type, key):
            self._ensure_open()
            return None
        return await self.aresolve_keyed(service_type, key)

    def is_registered(self, service_type: Any) -> bool:
        """Return whether the service type has a compiled registration."""
        return service_type in self._root.plan.call_sites

    def is_keyed_registered(self, service_type: Any, key: ServiceKey) -> bool:
        """Return whether a keyed registration exists for the pair."""
        return (service_type, key) in self._root.plan.keyed_call_sites

    # endregion Resolution

    # region Scopes and Lifecycle

    def create_scope(self) -> ServiceScope:
        """Open a new scope with its own scoped cache and disposal tracker.

        Scopes are siblings: a scope created from another scope does not share
        its scoped instances. The root provider holds every scope until it is
        closed, so a scope that is never closed is torn down with the root.

        Returns:
            The new scope. Close it with ``close``/``aclose`` or use it as a
            (async) context manager.

        Raises:
            InvalidContainerStateError: If the root provider is closed.

        Examples:
            .. code-block:: python

                with provider.create_scope() as scope:
                    repository = scope.resolve(UserRepository)

        """
        if self.is_closed:
            msg = "Cannot create a scope from a closed service provider or scope."
            raise InvalidContainerStateError(msg)
        scope = ServiceScope(self._root)
        self._root.open_scopes.add(scope)
        return scope

    @property
    @abstractmethod
    def is_closed(self) -> bool:
        """Return whether this provider can no longer resolve services."""

    @abstractmethod
    def _ensure_open(self) -> None: ...

    def _call_site_for(self, service_type: Any) -> CallSite:
        call_site = self._root.plan.call_sites.get(service_type)
        if call_site is None:
            raise MissingServiceError(service_type)
        return call_site

    def _keyed_call_site_for(self, service_type: Any, key: ServiceKey) -> CallSite:
        call_site = self._root.plan.keyed_call_sites.get((service_type, key))
        if call_site is None:
            raise MissingServiceError(service_type, key)
        return call_site

    def __enter__(self) -> Self:
        """Return this provider for use as a context manager."""
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_value: BaseException | None,
        traceback: TracebackType | None,
    ) -> None:
        """Close this provider and dispose of its tracked instances."""
        self.close()

    async def __aenter__(self) -> Self:
        """Return this provider for use as an async context manager."""
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_value: BaseException | None,
        traceback: TracebackType | None,
    ) -> None:
        """Asynchronously close this provider and dispose of its tracked instances."""
        await self.aclose()

    @abstractmethod
    def close(self) -> None:
        """Dispose tracked instances owned by this provider."""

    @abstractmethod
    async def aclose(self) -> None:
        """Asynchronously dispose tracked instances owned by this provider."""

    # endregion Scopes and Lifecycle


class ServiceProvider(ServiceProviderBase):
    """Root provider built by ``ServiceCollection.build_service_provider``.

    Owns the singleton cache and the root disposal tracker. Scoped services
    resolved directly from the root are cached for the container lifetime, as
    if the root were a scope of its own.
    """

    def __init__(
        self,
        *,
        plan: CompiledPlan,
        lookup: ImplementationFactoryLookup,
        options: ContainerOptions,
        graph: Mapping[ServiceType, frozenset[ServiceType]],
    ) -> None:
        self._root = _RootState(plan=plan, lookup=lookup, options=options, graph=graph)
        self._executor = CallSiteExecutor(
            plan=plan,
            singletons=self._root.singletons,
            root_tracker=self._root.tracker,
            lookup=lookup,
            provider=self,
            diagnostics=options.enable_diagnostics,
        )

    @property
    def options(self) -> ContainerOptions:
        return self._root.options

    @property
    def is_closed(self) -> bool:
        """Return whether the root provider has been closed."""
        return self._root.closed

    @property
    def dependency_graph(self) -> Mapping[ServiceType, frozenset[ServiceType]]:
        """Return the read-only dependency graph captured at build time."""
        return self._root.graph

    def get_service_descriptions(self) -> list[ServiceRegistrationInfo]:
        """Describe every compiled registration, keyed ones last.

        Returns:
            One entry per registration in registration order.

        """
        infos = [
            _describe(call_site)
            for call_sites in self._root.plan.all_call_sites.values()
            for call_site in call_sites
        ]
        infos.extend(
            _describe(call_site, key=key)
            for (_, key), call_site in self._root.plan.keyed_call_sites.items()
        )
        return infos

    def dump_registrations(self) -> str:
        """Render every compiled registration as ``Type [lifetime] via strategy`` lines."""
        return "\n".join(str(info) for info in self.get_service_descriptions())

    def close(self) -> None:
        """Close open scopes, then dispose singletons in reverse creation order.

        Closing twice is a no-op.

        Raises:
            DisposalError: If any teardown failed; every instance is still attempted.

        """
        if self._root.closed:
            return
        self._root.closed = True
        errors: list[tuple[Any, BaseException]] = []
        for scope in list(self._root.open_scopes):
            try:
                scope.close()
            except DisposalError as exc:
                errors.extend(exc.errors)
        try:
            self._root.tracker.dispose()
        except DisposalError as exc:
            errors.extend(exc.errors)
        self._root.singletons.clear()
        logger.info("Service provider closed with %d disposal failure(s)", len(errors))
        if errors:
            raise DisposalError(errors)

    async def aclose(self) -> None:
        """Asynchronously close open scopes, then dispose singletons.

        Raises:
            DisposalError: If any teardown failed; every instance is still attempted.

        """
        if self._root.closed:
            return
        self._root.closed = True
        errors: list[tuple[Any, BaseException]] = []
        for scope in list(self._root.open_scopes):
            try:
                await scope.aclose()
            except DisposalError as exc:
                errors.extend(exc.errors)
        try:
            await self._root.tracker.adispose()
        except DisposalError as exc:
            errors.extend(exc.errors)
        self._root.singletons.clear()
        logger.info("Service provider closed with %d disposal failure(s)", len(errors))
        if errors:
            raise DisposalError(errors)

    def _ensure_open(self) -> None:
        if self._root.closed:
            msg = "Cannot resolve services from a closed service provider."
            raise InvalidContainerStateError(msg)


class ServiceScope(ServiceProviderBase):
    """A child scope with its own scoped cache and disposal tracker.

    Singletons still come from the root. Transient and scoped instances created
    through the scope are disposed when the scope closes.
    """

    def __init__(self, root: _RootState) -> None:
        self._root = root
        self._cache = ScopedCache()
        self._tracker = DisposalTracker("scope")
        self._closed = False
        self._executor = CallSiteExecutor(
            plan=root.plan,
            singletons=root.singletons,
            root_tracker=root.tracker,
            lookup=root.lookup,
            provider=self,
            scoped=self._cache,
            tracker=self._tracker,
            diagnostics=root.options.enable_diagnostics,
        )

    @property
    def service_provider(self) -> ServiceScope:
        """Return the provider that resolves within this scope."""
        return self

    @property
    def is_closed(self) -> bool:
        """Return whether this scope or its root provider has been closed."""
        return self._closed or self._root.closed

    def close(self) -> None:
        """Dispose instances created in this scope in reverse creation order.

        Closing twice is a no-op.

        Raises:
            DisposalError: If any teardown failed; every instance is still attempted.

        """
        if self._closed:
            return
        self._closed = True
        self._root.open_scopes.discard(self)
        try:
            self._tracker.dispose()
        finally:
            self._cache.dispose()

    async def aclose(self) -> None:
        """Asynchronously dispose instances created in this scope.

        Raises:
            DisposalError: If any teardown failed; every instance is still attempted.

        """
        if self._closed:
            return
        self._closed = True
        self._root.open_scopes.discard(self)
        try:
            await self._tracker.adispose()
        finally:
            self._cache.dispose()

    def _ensure_open(self) -> None:
        if self._closed:
            msg = "Cannot resolve services from a closed scope."
            raise InvalidContainerStateError(msg)
        if self._root.closed:
            msg = "Cannot resolve services from a scope whose service provider is closed."
            raise InvalidContainerStateError(msg)


def _describe(call_site: CallSite, key: ServiceKey = None) -> ServiceRegistrationInfo:
    terminal = terminal_of(call_site)
    return ServiceRegistrationInfo(
        service_type=call_site.service_type,
        lifetime_name=call_site.lifetime.label,
        strategy_name=terminal.kind.name.lower(),
        key=key,
        decorated=isinstance(call_site, DecoratorCallSite),
    )
