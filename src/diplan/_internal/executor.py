from __future__ import annotations

import asyncio
import inspect
import logging
from typing import TYPE_CHECKING, Any

from typing_extensions import assert_never

from diplan._internal.caches import LifetimeCache, ScopedCache, SingletonCache
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
    TransientCallSite,
    cache_key_of,
)
from diplan._internal.descriptors import MISSING, ServiceType
from diplan._internal.disposal import DisposalTracker
from diplan._internal.implementation_factories import (
    ImplementationFactory,
    ImplementationFactoryLookup,
)
from diplan._internal.resolution_chain import ResolutionChain, bind_resolution_chain
from diplan.exceptions import (
    AsyncServiceInSyncContextError,
    MissingServiceError,
    type_name,
)

if TYPE_CHECKING:
    from diplan._internal.provider import ServiceProviderBase

logger = logging.getLogger(__name__)


class CallSiteExecutor:
    """Produce instances by walking compiled call sites.

    One executor exists per provider: the root executor has no scoped cache and
    treats scoped services as container-wide, while each scope's executor owns
    that scope's cache and tracker. Singletons always go to the shared
    singleton cache and the root tracker.
    """

    def __init__(
        self,
        *,
        plan: CompiledPlan,
        singletons: SingletonCache,
        root_tracker: DisposalTracker,
        lookup: ImplementationFactoryLookup,
        provider: ServiceProviderBase,
        scoped: ScopedCache | None = None,
        tracker: DisposalTracker | None = None,
        diagnostics: bool = False,
    ) -> None:
        self._plan = plan
        self._singletons = singletons
        self._root_tracker = root_tracker
        self._lookup = lookup
        self._provider = provider
        self._scoped = scoped
        self._tracker = tracker if tracker is not None else root_tracker
        self._diagnostics = diagnostics

    def resolve(self, call_site: CallSite, chain: ResolutionChain) -> Any:
        """Resolve a call site synchronously under ``chain``.

        Raises:
            CircularDependencyError: If the service is already being constructed.
            AsyncServiceInSyncContextError: If the call site needs async creation.
            MissingServiceError: If a constructor dependency is not registered.

        """
        return self._resolve_guarded(call_site, chain, self._tracker)

    async def aresolve(self, call_site: CallSite, chain: ResolutionChain) -> Any:
        """Resolve a call site asynchronously under ``chain``.

        Raises:
            CircularDependencyError: If the service is already being constructed.
            MissingServiceError: If a constructor dependency is not registered.

        """
        return await self._aresolve_guarded(call_site, chain, self._tracker)

    # ``owner`` is the tracker of the nearest enclosing lifetime. Transients
    # created beneath a singleton live as long as the singleton, so they go to
    # the root tracker even when the singleton is first built from a scope.

    def _resolve_guarded(
        self,
        call_site: CallSite,
        chain: ResolutionChain,
        owner: DisposalTracker,
    ) -> Any:
        return chain.guard(
            call_site.service_type,
            lambda: self._resolve(call_site, chain, owner),
        )

    async def _aresolve_guarded(
        self,
        call_site: CallSite,
        chain: ResolutionChain,
        owner: DisposalTracker,
    ) -> Any:
        return await chain.aguard(
            call_site.service_type,
            lambda: self._aresolve(call_site, chain, owner),
        )

    def _resolve(self, node: CallSite, chain: ResolutionChain, owner: DisposalTracker) -> Any:
        if isinstance(node, InstanceCallSite):
            return node.instance
        if isinstance(node, SingletonCallSite):
            return self._resolve_cached(node, chain, self._singletons, self._root_tracker)
        if isinstance(node, ScopedCallSite):
            return self._resolve_cached(node, chain, self._scoped_cache(), self._tracker)
        if isinstance(node, TransientCallSite):
            instance = self._resolve(node.inner, chain, owner)
            owner.track(instance)
            return instance
        if isinstance(node, KeyedCallSite):
            return self._resolve(node.inner, chain, owner)
        if isinstance(node, DecoratorCallSite):
            instance = self._resolve(node.inner, chain, owner)
            for decorator in node.decorators:
                instance = decorator(instance, self._provider)
            return instance
        if isinstance(node, ConstructorCallSite):
            factory = self._implementation_factory(node)
            return factory.create(
                lambda dependency: self._resolve_dependency(dependency, chain, owner),
            )
        if isinstance(node, FactoryCallSite):
            return node.factory(self._provider)
        if isinstance(node, AsyncFactoryCallSite):
            msg = (
                f'"{type_name(node.service_type)}" is created by an async factory. '
                "Use aresolve() instead of resolve()."
            )
            raise AsyncServiceInSyncContextError(msg)
        assert_never(node)

    async def _aresolve(
        self,
        node: CallSite,
        chain: ResolutionChain,
        owner: DisposalTracker,
    ) -> Any:
        if isinstance(node, InstanceCallSite):
            return node.instance
        if isinstance(node, SingletonCallSite):
            return await self._aresolve_cached(node, chain, self._singletons, self._root_tracker)
        if isinstance(node, ScopedCallSite):
            return await self._aresolve_cached(node, chain, self._scoped_cache(), self._tracker)
        if isinstance(node, TransientCallSite):
            instance = await self._aresolve(node.inner, chain, owner)
            owner.track(instance)
            return instance
        if isinstance(node, KeyedCallSite):
            return await self._aresolve(node.inner, chain, owner)
        if isinstance(node, DecoratorCallSite):
            instance = await self._aresolve(node.inner, chain, owner)
            for decorator in node.decorators:
                instance = await _maybe_await(decorator(instance, self._provider))
            return instance
        if isinstance(node, ConstructorCallSite):
            return await self._aconstruct(node, chain, owner)
        if isinstance(node, FactoryCallSite):
            return await _maybe_await(node.factory(self._provider))
        if isinstance(node, AsyncFactoryCallSite):
            return await node.factory(self._provider)
        assert_never(node)

    def _resolve_cached(
        self,
        node: LifetimeCallSite,
        chain: ResolutionChain,
        cache: LifetimeCache,
        tracker: DisposalTracker,
    ) -> Any:
        service_type, key = node.service_type, cache_key_of(node)
        instance = cache.get(service_type, key)
        if instance is not MISSING:
            self._trace("Cache hit for %s", service_type)
            return instance
        if cache.get_pending_reservation(service_type, key) is not None:
            msg = (
                f'"{type_name(service_type)}" is being created asynchronously. '
                "Use aresolve() to wait for it."
            )
            raise AsyncServiceInSyncContextError(msg)

        self._trace("Cache miss for %s, creating", service_type)
        instance = self._resolve(node.inner, chain, tracker)
        tracker.track(instance)
        cache.set(service_type, instance, key)
        return instance

    async def _aresolve_cached(
        self,
        node: LifetimeCallSite,
        chain: ResolutionChain,
        cache: LifetimeCache,
        tracker: DisposalTracker,
    ) -> Any:
        service_type, key = node.service_type, cache_key_of(node)
        instance = cache.get(service_type, key)
        if instance is not MISSING:
            self._trace("Cache hit for %s", service_type)
            return instance

        pending = cache.get_pending_reservation(service_type, key)
        if pending is not None:
            self._trace("Awaiting in-flight creation of %s", service_type)
            return await asyncio.shield(pending)

        # Publish the reservation before the first suspension point so
        # interleaved requests for the same service await it.
        loop = asyncio.get_running_loop()
        cache.reserve_async(service_type, loop.create_future(), key)
        self._trace("Cache miss for %s, creating asynchronously", service_type)
        creation = loop.create_task(self._acreate(node, chain.copy(), cache, tracker))
        # A caller that gives up must not cancel the creation and strand the
        # reservation.
        return await asyncio.shield(creation)

    async def _acreate(
        self,
        node: LifetimeCallSite,
        chain: ResolutionChain,
        cache: LifetimeCache,
        tracker: DisposalTracker,
    ) -> Any:
        service_type, key = node.service_type, cache_key_of(node)
        with bind_resolution_chain(chain):
            try:
                instance = await self._aresolve(node.inner, chain, tracker)
                tracker.track(instance)
            except BaseException as exc:
                cache.fail_async(service_type, exc, key)
                raise
        cache.complete_async(service_type, instance, key)
        return instance

    async def _aconstruct(
        self,
        node: ConstructorCallSite,
        chain: ResolutionChain,
        owner: DisposalTracker,
    ) -> Any:
        factory = self._implementation_factory(node)

        prepared: dict[ServiceType, list[Any]] = {}
        for dependency in factory.dependencies or ():
            value = await self._aresolve_dependency(dependency, chain, owner)
            prepared.setdefault(dependency, []).append(value)

        def resolve(dependency: ServiceType) -> Any:
            values = prepared.get(dependency)
            if values:
                return values.pop(0)
            return self._resolve_dependency(dependency, chain, owner)

        return await _maybe_await(factory.create(resolve))

    def _resolve_dependency(
        self,
        dependency: ServiceType,
        chain: ResolutionChain,
        owner: DisposalTracker,
    ) -> Any:
        return self._resolve_guarded(self._dependency_call_site(dependency), chain, owner)

    async def _aresolve_dependency(
        self,
        dependency: ServiceType,
        chain: ResolutionChain,
        owner: DisposalTracker,
    ) -> Any:
        return await self._aresolve_guarded(self._dependency_call_site(dependency), chain, owner)

    def _dependency_call_site(self, dependency: ServiceType) -> CallSite:
        call_site = self._plan.call_sites.get(dependency)
        if call_site is None:
            raise MissingServiceError(dependency)
        return call_site

    def _implementation_factory(self, node: ConstructorCallSite) -> ImplementationFactory:
        factory = self._lookup.factory_for(node.implementation_type)
        if factory is None:
            msg = (
                f'No implementation factory registered for "{type_name(node.implementation_type)}" '
                f'(requested as "{type_name(node.service_type)}").'
            )
            raise MissingServiceError(node.implementation_type, message=msg)
        return factory

    def _scoped_cache(self) -> LifetimeCache:
        # The root provider acts as an implicit scope.
        if self._scoped is None:
            return self._singletons
        return self._scoped

    def _trace(self, message: str, service_type: ServiceType) -> None:
        if self._diagnostics:
            logger.debug(message, type_name(service_type))


async def _maybe_await(value: Any) -> Any:
    if inspect.isawaitable(value):
        return await value
    return value
