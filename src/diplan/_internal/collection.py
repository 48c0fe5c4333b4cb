from __future__ import annotations

import inspect
import logging
from collections.abc import Awaitable, Callable, Iterable
from typing import Any, Protocol, TypeAlias, Union

from typing_extensions import Self

from diplan._internal.compiler import CallSiteCompiler
from diplan._internal.dependency_graph import DependencyGraph
from diplan._internal.descriptors import (
    AsyncFactory,
    Decorator,
    Factory,
    KeyedServiceDescriptor,
    Lifetime,
    ServiceDescriptor,
    ServiceKey,
    ServiceType,
)
from diplan._internal.implementation_factories import (
    ImplementationFactoryLookup,
    ImplementationFactoryRegistry,
)
from diplan._internal.lazy import Lazy, ServiceFactory
from diplan._internal.options import ContainerOptions
from diplan._internal.provider import ServiceProvider, ServiceProviderBase
from diplan._internal.registry import ServiceRegistry
from diplan._internal.validation import CallSiteValidator, DependencyDiscovery
from diplan.exceptions import (
    ContainerBuildError,
    InvalidContainerStateError,
    InvalidRegistrationError,
    type_name,
)

logger = logging.getLogger(__name__)

KeyedFactory: TypeAlias = Callable[[ServiceProviderBase, ServiceKey], Any]
BuildHook: TypeAlias = Callable[[ServiceProvider], None]
AsyncBuildHook: TypeAlias = Callable[[ServiceProvider], Awaitable[None]]
Condition: TypeAlias = Union[bool, Callable[[], bool]]


class ServiceModule(Protocol):
    """A reusable group of registrations applied with ``add_module``."""

    def register(self, services: ServiceCollection) -> None:
        """Add this module's registrations to ``services``."""
        ...


class ServiceCollection:
    """Collect service registrations and build them into a provider.

    Registration methods return the collection so calls can be chained. After
    a successful ``build_service_provider`` the collection is frozen and every
    registration method raises ``InvalidContainerStateError``.

    Args:
        implementation_factories: Lookup used to construct implementation
            types. Defaults to an ``ImplementationFactoryRegistry`` with
            constructor autowiring enabled.

    Examples:
        .. code-block:: python

            services = ServiceCollection()
            services.add_singleton(Logger, ConsoleLogger)
            services.add_scoped(Database)
            services.add_transient(UserRepository)

            with services.build_service_provider() as provider:
                with provider.create_scope() as scope:
                    repository = scope.resolve(UserRepository)

    """

    def __init__(
        self,
        *,
        implementation_factories: ImplementationFactoryLookup | None = None,
    ) -> None:
        self._registry = ServiceRegistry()
        self._implementation_factories: ImplementationFactoryLookup = (
            implementation_factories
            if implementation_factories is not None
            else ImplementationFactoryRegistry()
        )
        self._decorators: dict[ServiceType, list[Decorator]] = {}
        self._build_hooks: list[BuildHook] = []
        self._async_build_hooks: list[AsyncBuildHook] = []
        self._built = False

    @property
    def implementation_factories(self) -> ImplementationFactoryLookup:
        """Return the lookup used to construct implementation types."""
        return self._implementation_factories

    # region Descriptor Registration

    def add(self, descriptor: ServiceDescriptor) -> Self:
        """Append a descriptor; earlier registrations of the type are kept.

        Args:
            descriptor: Plain or keyed descriptor to append.

        """
        self._assert_not_built()
        self._registry.add(descriptor)
        return self

    def add_keyed(self, descriptor: KeyedServiceDescriptor) -> Self:
        """Append a keyed descriptor.

        Args:
            descriptor: Keyed descriptor to append.

        Raises:
            InvalidRegistrationError: If ``descriptor`` is not keyed.

        """
        if not isinstance(descriptor, KeyedServiceDescriptor):
            msg = "add_keyed() requires a KeyedServiceDescriptor."
            raise InvalidRegistrationError(msg)
        return self.add(descriptor)

    def try_add(self, descriptor: ServiceDescriptor) -> Self:
        """Append a descriptor only if its service type has no registration yet.

        Args:
            descriptor: Plain or keyed descriptor to append.

        """
        self._assert_not_built()
        if isinstance(descriptor, KeyedServiceDescriptor):
            if not self._registry.contains_keyed(descriptor.service_type, descriptor.key):
                self._registry.add(descriptor)
        elif not self._registry.contains(descriptor.service_type):
            self._registry.add(descriptor)
        return self

    def try_add_keyed(self, descriptor: KeyedServiceDescriptor) -> Self:
        """Append a keyed descriptor only if the type and key pair is free.

        Args:
            descriptor: Keyed descriptor to append.

        """
        return self.try_add(descriptor)

    def add_range(self, descriptors: Iterable[ServiceDescriptor]) -> Self:
        """Append several descriptors in order.

        Args:
            descriptors: Descriptors to append.

        """
        for descriptor in descriptors:
            self.add(descriptor)
        return self

    def replace(self, descriptor: ServiceDescriptor) -> Self:
        """Remove every registration of the descriptor's type, then add it.

        Args:
            descriptor: Plain or keyed descriptor that replaces existing ones.

        """
        self._assert_not_built()
        if isinstance(descriptor, KeyedServiceDescriptor):
            self._registry.remove_keyed(descriptor.service_type, descriptor.key)
        else:
            self._registry.remove_all(descriptor.service_type)
        self._registry.add(descriptor)
        return self

    def remove_all(self, service_type: ServiceType) -> Self:
        """Remove every plain registration of a service type.

        Args:
            service_type: Service type to unregister.

        """
        self._assert_not_built()
        self._registry.remove_all(service_type)
        return self

    # endregion Descriptor Registration

    # region Lifetime Registration

    def add_singleton(
        self,
        service_type: ServiceType,
        implementation_type: type[Any] | None = None,
    ) -> Self:
        """Register a constructor-built singleton.

        Args:
            service_type: The type callers resolve.
            implementation_type: The concrete type to build; defaults to
                ``service_type``.

        """
        return self._add_constructor(service_type, implementation_type, Lifetime.SINGLETON)

    def add_scoped(
        self,
        service_type: ServiceType,
        implementation_type: type[Any] | None = None,
    ) -> Self:
        """Register a constructor-built service cached once per scope.

        Args:
            service_type: The type callers resolve.
            implementation_type: The concrete type to build; defaults to
                ``service_type``.

        """
        return self._add_constructor(service_type, implementation_type, Lifetime.SCOPED)

    def add_transient(
        self,
        service_type: ServiceType,
        implementation_type: type[Any] | None = None,
    ) -> Self:
        """Register a constructor-built service created on every resolution.

        Args:
            service_type: The type callers resolve.
            implementation_type: The concrete type to build; defaults to
                ``service_type``.

        """
        return self._add_constructor(service_type, implementation_type, Lifetime.TRANSIENT)

    def add_singleton_factory(self, service_type: ServiceType, factory: Factory) -> Self:
        """Register a singleton built by ``factory(provider)``.

        Coroutine functions are registered as async factories.

        Args:
            service_type: The type callers resolve.
            factory: Callable receiving the active provider.

        """
        return self.add(_factory_descriptor(service_type, factory, Lifetime.SINGLETON))

    def add_scoped_factory(self, service_type: ServiceType, factory: Factory) -> Self:
        """Register a scoped service built by ``factory(provider)``.

        Args:
            service_type: The type callers resolve.
            factory: Callable receiving the active provider or scope.

        """
        return self.add(_factory_descriptor(service_type, factory, Lifetime.SCOPED))

    def add_transient_factory(self, service_type: ServiceType, factory: Factory) -> Self:
        """Register a transient service built by ``factory(provider)``.

        Args:
            service_type: The type callers resolve.
            factory: Callable receiving the active provider or scope.

        """
        return self.add(_factory_descriptor(service_type, factory, Lifetime.TRANSIENT))

    def add_singleton_async(self, service_type: ServiceType, factory: AsyncFactory) -> Self:
        """Register a singleton created by an async factory.

        Args:
            service_type: The type callers resolve with ``aresolve``.
            factory: Async callable receiving the active provider.

        """
        return self.add(
            ServiceDescriptor(
                service_type=service_type,
                lifetime=Lifetime.SINGLETON,
                async_factory=factory,
            ),
        )

    def add_scoped_async(self, service_type: ServiceType, factory: AsyncFactory) -> Self:
        """Register a scoped service created by an async factory.

        Args:
            service_type: The type callers resolve with ``aresolve``.
            factory: Async callable receiving the active scope.

        """
        return self.add(
            ServiceDescriptor(
                service_type=service_type,
                lifetime=Lifetime.SCOPED,
                async_factory=factory,
            ),
        )

    def add_transient_async(self, service_type: ServiceType, factory: AsyncFactory) -> Self:
        """Register a transient service created by an async factory.

        Args:
            service_type: The type callers resolve with ``aresolve``.
            factory: Async callable receiving the active provider or scope.

        """
        return self.add(
            ServiceDescriptor(
                service_type=service_type,
                lifetime=Lifetime.TRANSIENT,
                async_factory=factory,
            ),
        )

    def add_instance(self, service_type: ServiceType, instance: Any) -> Self:
        """Register a prebuilt singleton instance.

        The instance is disposed with the container when it exposes
        ``close()`` or ``aclose()``.

        Args:
            service_type: The type callers resolve.
            instance: The value returned for every resolution.

        """
        return self.add(
            ServiceDescriptor(
                service_type=service_type,
                lifetime=Lifetime.SINGLETON,
                instance=instance,
            ),
        )

    def try_add_singleton(
        self,
        service_type: ServiceType,
        implementation_type: type[Any] | None = None,
    ) -> Self:
        """Register a singleton unless the service type is already registered.

        Args:
            service_type: The type callers resolve.
            implementation_type: The concrete type to build; defaults to
                ``service_type``.

        """
        return self.try_add(
            _constructor_descriptor(service_type, implementation_type, Lifetime.SINGLETON),
        )

    def try_add_scoped(
        self,
        service_type: ServiceType,
        implementation_type: type[Any] | None = None,
    ) -> Self:
        """Register a scoped service unless the service type is already registered.

        Args:
            service_type: The type callers resolve.
            implementation_type: The concrete type to build; defaults to
                ``service_type``.

        """
        return self.try_add(
            _constructor_descriptor(service_type, implementation_type, Lifetime.SCOPED),
        )

    def try_add_transient(
        self,
        service_type: ServiceType,
        implementation_type: type[Any] | None = None,
    ) -> Self:
        """Register a transient service unless the service type is already registered.

        Args:
            service_type: The type callers resolve.
            implementation_type: The concrete type to build; defaults to
                ``service_type``.

        """
        return self.try_add(
            _constructor_descriptor(service_type, implementation_type, Lifetime.TRANSIENT),
        )

    # endregion Lifetime Registration

    # region Keyed Registration

    def add_keyed_singleton(
        self,
        service_type: ServiceType,
        key: ServiceKey,
        implementation_type: type[Any] | None = None,
    ) -> Self:
        """Register a constructor-built singleton under ``key``.

        Args:
            service_type: The type callers resolve.
            key: Lookup key passed to ``resolve_keyed``.
            implementation_type: The concrete type to build; defaults to
                ``service_type``.

        """
        return self._add_keyed_constructor(
            service_type,
            key,
            implementation_type,
            Lifetime.SINGLETON,
        )

    def add_keyed_scoped(
        self,
        service_type: ServiceType,
        key: ServiceKey,
        implementation_type: type[Any] | None = None,
    ) -> Self:
        """Register a constructor-built scoped service under ``key``.

        Args:
            service_type: The type callers resolve.
            key: Lookup key passed to ``resolve_keyed``.
            implementation_type: The concrete type to build; defaults to
                ``service_type``.

        """
        return self._add_keyed_constructor(service_type, key, implementation_type, Lifetime.SCOPED)

    def add_keyed_transient(
        self,
        service_type: ServiceType,
        key: ServiceKey,
        implementation_type: type[Any] | None = None,
    ) -> Self:
        """Register a constructor-built transient service under ``key``.

        Args:
            service_type: The type callers resolve.
            key: Lookup key passed to ``resolve_keyed``.
            implementation_type: The concrete type to build; defaults to
                ``service_type``.

        """
        return self._add_keyed_constructor(
            service_type,
            key,
            implementation_type,
            Lifetime.TRANSIENT,
        )

    def add_keyed_singleton_factory(
        self,
        service_type: ServiceType,
        key: ServiceKey,
        factory: KeyedFactory,
    ) -> Self:
        """Register a keyed singleton built by ``factory(provider, key)``.

        Args:
            service_type: The type callers resolve.
            key: Lookup key passed to ``resolve_keyed``.
            factory: Callable receiving the active provider and the key.

        """
        return self._add_keyed_factory(service_type, key, factory, Lifetime.SINGLETON)

    def add_keyed_scoped_factory(
        self,
        service_type: ServiceType,
        key: ServiceKey,
        factory: KeyedFactory,
    ) -> Self:
        """Register a keyed scoped service built by ``factory(provider, key)``.

        Args:
            service_type: The type callers resolve.
            key: Lookup key passed to ``resolve_keyed``.
            factory: Callable receiving the active scope and the key.

        """
        return self._add_keyed_factory(service_type, key, factory, Lifetime.SCOPED)

    def add_keyed_transient_factory(
        self,
        service_type: ServiceType,
        key: ServiceKey,
        factory: KeyedFactory,
    ) -> Self:
        """Register a keyed transient service built by ``factory(provider, key)``.

        Args:
            service_type: The type callers resolve.
            key: Lookup key passed to ``resolve_keyed``.
            factory: Callable receiving the active provider or scope and the key.

        """
        return self._add_keyed_factory(service_type, key, factory, Lifetime.TRANSIENT)

    def add_keyed_singleton_async(
        self,
        service_type: ServiceType,
        key: ServiceKey,
        factory: AsyncFactory,
    ) -> Self:
        """Register a keyed singleton created by ``await factory(provider)``.

        Args:
            service_type: The type callers resolve with ``aresolve_keyed``.
            key: Lookup key passed to ``aresolve_keyed``.
            factory: Async callable receiving the active provider.

        """
        return self._add_keyed_async(service_type, key, factory, Lifetime.SINGLETON)

    def add_keyed_scoped_async(
        self,
        service_type: ServiceType,
        key: ServiceKey,
        factory: AsyncFactory,
    ) -> Self:
        """Register a keyed scoped service created by ``await factory(scope)``.

        Args:
            service_type: The type callers resolve with ``aresolve_keyed``.
            key: Lookup key passed to ``aresolve_keyed``.
            factory: Async callable receiving the active scope.

        """
        return self._add_keyed_async(service_type, key, factory, Lifetime.SCOPED)

    def add_keyed_transient_async(
        self,
        service_type: ServiceType,
        key: ServiceKey,
        factory: AsyncFactory,
    ) -> Self:
        """Register a keyed transient service created by ``await factory(provider)``.

        Args:
            service_type: The type callers resolve with ``aresolve_keyed``.
            key: Lookup key passed to ``aresolve_keyed``.
            factory: Async callable receiving the active provider or scope.

        """
        return self._add_keyed_async(service_type, key, factory, Lifetime.TRANSIENT)

    def add_keyed_instance(self, service_type: ServiceType, key: ServiceKey, instance: Any) -> Self:
        """Register a prebuilt keyed singleton instance.

        Args:
            service_type: The type callers resolve.
            key: Lookup key passed to ``resolve_keyed``.
            instance: The value returned for every resolution.

        """
        return self.add(
            KeyedServiceDescriptor(
                service_type=service_type,
                lifetime=Lifetime.SINGLETON,
                instance=instance,
                key=key,
            ),
        )

    # endregion Keyed Registration

    # region Deferred and Conditional Registration

    def add_lazy(self, service_type: ServiceType) -> Self:
        """Register ``Lazy[service_type]`` so consumers can defer resolution.

        Args:
            service_type: The already registered service to wrap.

        """

        def create_lazy(provider: ServiceProviderBase) -> Lazy[Any]:
            return Lazy(lambda: provider.resolve(service_type))

        return self.add_transient_factory(
            Lazy[service_type],  # type: ignore[valid-type]
            create_lazy,
        )

    def add_service_factory(self, service_type: ServiceType) -> Self:
        """Register ``ServiceFactory[service_type]`` for on-demand resolution.

        Args:
            service_type: The already registered service to wrap.

        """

        def create_factory(provider: ServiceProviderBase) -> ServiceFactory[Any]:
            return ServiceFactory(lambda: provider.resolve(service_type))

        return self.add_transient_factory(
            ServiceFactory[service_type],  # type: ignore[valid-type]
            create_factory,
        )

    def add_singleton_if(
        self,
        condition: Condition,
        service_type: ServiceType,
        implementation_type: type[Any] | None = None,
    ) -> Self:
        """Register a singleton only when ``condition`` holds.

        Args:
            condition: A flag or a zero-argument callable returning one.
            service_type: The type callers resolve.
            implementation_type: The concrete type to build.

        """
        if _holds(condition):
            return self.add_singleton(service_type, implementation_type)
        self._assert_not_built()
        return self

    def add_scoped_if(
        self,
        condition: Condition,
        service_type: ServiceType,
        implementation_type: type[Any] | None = None,
    ) -> Self:
        """Register a scoped service only when ``condition`` holds.

        Args:
            condition: A flag or a zero-argument callable returning one.
            service_type: The type callers resolve.
            implementation_type: The concrete type to build.

        """
        if _holds(condition):
            return self.add_scoped(service_type, implementation_type)
        self._assert_not_built()
        return self

    def add_transient_if(
        self,
        condition: Condition,
        service_type: ServiceType,
        implementation_type: type[Any] | None = None,
    ) -> Self:
        """Register a transient service only when ``condition`` holds.

        Args:
            condition: A flag or a zero-argument callable returning one.
            service_type: The type callers resolve.
            implementation_type: The concrete type to build.

        """
        if _holds(condition):
            return self.add_transient(service_type, implementation_type)
        self._assert_not_built()
        return self

    def add_environment(
        self,
        condition: Condition,
        configure: Callable[[ServiceCollection], Any],
        otherwise: Callable[[ServiceCollection], Any] | None = None,
    ) -> Self:
        """Run ``configure`` when ``condition`` holds, else ``otherwise``.

        Args:
            condition: A flag or a zero-argument callable returning one.
            configure: Registration callback for the matching environment.
            otherwise: Optional registration callback for every other case.

        Examples:
            .. code-block:: python

                services.add_environment(
                    lambda: os.environ.get("APP_ENV") == "dev",
                    lambda s: s.add_singleton(Logger, VerboseLogger),
                    otherwise=lambda s: s.add_singleton(Logger, JsonLogger),
                )

        """
        self._assert_not_built()
        if _holds(condition):
            configure(self)
        elif otherwise is not None:
            otherwise(self)
        return self

    # endregion Deferred and Conditional Registration

    # region Composition

    def decorate(self, service_type: ServiceType, decorator: Decorator) -> Self:
        """Wrap every plain registration of a type with ``decorator(inner, provider)``.

        Decorators apply in registration order, so the last one is outermost.
        They run on every resolution; keyed registrations are not decorated.

        Args:
            service_type: The decorated service type.
            decorator: Callable receiving the inner instance and the active provider.

        """
        self._assert_not_built()
        if not callable(decorator):
            msg = f'Decorator for "{type_name(service_type)}" must be callable.'
            raise InvalidRegistrationError(msg)
        self._decorators.setdefault(service_type, []).append(decorator)
        return self

    def add_module(self, module: ServiceModule) -> Self:
        """Apply a module's registrations to this collection.

        Args:
            module: Object whose ``register(services)`` adds registrations.

        """
        self._assert_not_built()
        module.register(self)
        return self

    def on_container_built(self, hook: BuildHook) -> Self:
        """Run ``hook(provider)`` right after a successful build.

        Args:
            hook: Callable receiving the built root provider.

        """
        self._assert_not_built()
        self._build_hooks.append(hook)
        return self

    def on_container_built_async(self, hook: AsyncBuildHook) -> Self:
        """Await ``hook(provider)`` after ``abuild_service_provider`` runs sync hooks.

        Args:
            hook: Async callable receiving the built root provider.

        """
        self._assert_not_built()
        self._async_build_hooks.append(hook)
        return self

    # endregion Composition

    # region Build

    def build_service_provider(self, options: ContainerOptions | None = None) -> ServiceProvider:
        """Compile and validate registrations into a root provider.

        Build order: compile call sites, then (with ``validate_on_build``) detect
        dependency cycles and missing constructor dependencies, then (with
        ``validate_scopes``) detect captive dependencies, then run sync build
        hooks.

        Args:
            options: Validation and diagnostics switches; defaults to
                ``ContainerOptions()``.

        Returns:
            The root provider.

        Raises:
            CircularDependencyError: If the dependency graph has a cycle.
            ContainerBuildError: With every missing dependency and scope
                violation found, in aggregate mode.
            MissingServiceError: On the first missing dependency in fail-fast mode.
            ScopeViolationError: On the first captive dependency in fail-fast mode.
            InvalidContainerStateError: If this collection was already built.

        """
        self._assert_not_built()
        options = options if options is not None else ContainerOptions()

        graph = DependencyGraph()
        discovery = DependencyDiscovery(self._implementation_factories)
        plan = CallSiteCompiler(
            self._registry,
            graph,
            decorators=self._decorators,
            dependency_discovery=discovery if options.validate_on_build else None,
        ).compile()

        validator = CallSiteValidator(plan, discovery, fail_fast=options.fail_fast)
        errors: list[str] = []
        if options.validate_on_build:
            graph.detect_cycles()
            errors.extend(validator.validate_dependencies())
        if options.validate_scopes:
            errors.extend(validator.validate_scopes())
        if errors:
            raise ContainerBuildError(errors)

        provider = ServiceProvider(
            plan=plan,
            lookup=self._implementation_factories,
            options=options,
            graph=graph.adjacency(),
        )
        self._built = True
        logger.info(
            (
                "Service provider built: service_types=%d registrations=%d keyed=%d "
                "validate_on_build=%s validate_scopes=%s"
            ),
            len(plan.call_sites),
            sum(len(call_sites) for call_sites in plan.all_call_sites.values()),
            len(plan.keyed_call_sites),
            options.validate_on_build,
            options.validate_scopes,
        )

        for hook in self._build_hooks:
            hook(provider)
        return provider

    async def abuild_service_provider(
        self,
        options: ContainerOptions | None = None,
    ) -> ServiceProvider:
        """Build the provider, then await every async build hook in order.

        Args:
            options: Validation and diagnostics switches.

        Returns:
            The root provider.

        """
        provider = self.build_service_provider(options)
        for hook in self._async_build_hooks:
            await hook(provider)
        return provider

    # endregion Build

    # region Introspection

    def is_registered(self, service_type: ServiceType) -> bool:
        """Return whether the service type has at least one plain registration."""
        return self._registry.contains(service_type)

    def is_keyed_registered(self, service_type: ServiceType, key: ServiceKey) -> bool:
        """Return whether a keyed registration exists for the pair."""
        return self._registry.contains_keyed(service_type, key)

    def descriptors_for(self, service_type: ServiceType) -> list[ServiceDescriptor]:
        """Return every plain descriptor of the type in registration order."""
        return self._registry.descriptors_for(service_type)

    @property
    def is_built(self) -> bool:
        return self._built

    def __len__(self) -> int:
        return len(self._registry)

    # endregion Introspection

    def _add_constructor(
        self,
        service_type: ServiceType,
        implementation_type: type[Any] | None,
        lifetime: Lifetime,
    ) -> Self:
        return self.add(_constructor_descriptor(service_type, implementation_type, lifetime))

    def _add_keyed_constructor(
        self,
        service_type: ServiceType,
        key: ServiceKey,
        implementation_type: type[Any] | None,
        lifetime: Lifetime,
    ) -> Self:
        return self.add(
            KeyedServiceDescriptor(
                service_type=service_type,
                lifetime=lifetime,
                implementation_type=_implementation_or_service(service_type, implementation_type),
                key=key,
            ),
        )

    def _add_keyed_async(
        self,
        service_type: ServiceType,
        key: ServiceKey,
        factory: AsyncFactory,
        lifetime: Lifetime,
    ) -> Self:
        return self.add(
            KeyedServiceDescriptor(
                service_type=service_type,
                lifetime=lifetime,
                async_factory=factory,
                key=key,
            ),
        )

    def _add_keyed_factory(
        self,
        service_type: ServiceType,
        key: ServiceKey,
        factory: KeyedFactory,
        lifetime: Lifetime,
    ) -> Self:
        if not callable(factory):
            msg = f'Factory for "{type_name(service_type)}" must be callable.'
            raise InvalidRegistrationError(msg)

        if inspect.iscoroutinefunction(factory):

            async def create_async(provider: ServiceProviderBase) -> Any:
                return await factory(provider, key)

            return self.add(
                KeyedServiceDescriptor(
                    service_type=service_type,
                    lifetime=lifetime,
                    async_factory=create_async,
                    key=key,
                ),
            )

        def create(provider: ServiceProviderBase) -> Any:
            return factory(provider, key)

        return self.add(
            KeyedServiceDescriptor(
                service_type=service_type,
                lifetime=lifetime,
                factory=create,
                key=key,
            ),
        )

    def _assert_not_built(self) -> None:
        if self._built:
            msg = (
                "ServiceCollection has already been built into a ServiceProvider. "
                "Create a new ServiceCollection to register additional services."
            )
            raise InvalidContainerStateError(msg)


def _implementation_or_service(
    service_type: ServiceType,
    implementation_type: type[Any] | None,
) -> type[Any]:
    implementation = implementation_type if implementation_type is not None else service_type
    if not inspect.isclass(implementation):
        msg = (
            f'Cannot construct "{type_name(service_type)}": pass a concrete implementation '
            "type or register a factory."
        )
        raise InvalidRegistrationError(msg)
    return implementation


def _constructor_descriptor(
    service_type: ServiceType,
    implementation_type: type[Any] | None,
    lifetime: Lifetime,
) -> ServiceDescriptor:
    return ServiceDescriptor(
        service_type=service_type,
        lifetime=lifetime,
        implementation_type=_implementation_or_service(service_type, implementation_type),
    )


def _factory_descriptor(
    service_type: ServiceType,
    factory: Factory,
    lifetime: Lifetime,
) -> ServiceDescriptor:
    if inspect.iscoroutinefunction(factory):
        return ServiceDescriptor(
            service_type=service_type,
            lifetime=lifetime,
            async_factory=factory,
        )
    return ServiceDescriptor(service_type=service_type, lifetime=lifetime, factory=factory)


def _holds(condition: Condition) -> bool:
    if callable(condition):
        return bool(condition())
    return bool(condition)
