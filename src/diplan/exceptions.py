from __future__ import annotations

from collections.abc import Sequence
from typing import Any


def type_name(service_type: Any) -> str:
    """Return a readable name for a service type used in error messages."""
    name = getattr(service_type, "__qualname__", None)
    if name is None:
        return repr(service_type)
    return str(name)


class DIPlanError(Exception):
    """Represent a base class for all diplan-specific failures.

    Catch this type when you want to handle any diplan error path without
    matching each concrete exception class individually.
    """


class InvalidRegistrationError(DIPlanError):
    """Signal a malformed service registration.

    Raised by ``ServiceDescriptor`` and ``ServiceCollection`` registration
    methods when a descriptor does not carry exactly one creation strategy,
    when an instance registration is given a non-singleton lifetime, or when a
    factory is not callable.

    Typical fixes include passing exactly one of ``implementation_type``,
    ``factory``, ``async_factory`` or ``instance``.
    """


class DependencyInferenceError(InvalidRegistrationError):
    """Signal that constructor dependencies cannot be inferred.

    Raised by ``ImplementationFactoryRegistry`` while autowiring an
    implementation type whose required ``__init__`` parameters have missing or
    unresolvable annotations.

    Typical fixes include annotating every required parameter or registering
    an explicit implementation factory for the type.
    """


class CircularDependencyError(DIPlanError):
    """Signal a dependency cycle.

    Raised at build time by ``DependencyGraph.detect_cycles`` and at resolution
    time by ``ResolutionChain.push`` when a type is requested while it is
    already being constructed. Run-time cycles usually come from factories that
    resolve services the build-time graph cannot see.

    The ``chain`` attribute lists the cycle with the repeated type at both
    ends, for example ``[A, B, C, A]``.
    """

    def __init__(self, chain: Sequence[Any]) -> None:
        self.chain: list[Any] = list(chain)
        rendered = " -> ".join(type_name(service_type) for service_type in self.chain)
        super().__init__(f"Circular dependency detected: {rendered}")


class ContainerBuildError(DIPlanError):
    """Signal one or more validation failures found while building a container.

    Raised by ``ServiceCollection.build_service_provider`` in aggregate mode
    (the default) after the missing-dependency and scope checks. Every problem
    found is listed in ``errors`` so all of them can be fixed in one pass.

    Use ``ContainerOptions(fail_fast=True)`` to raise the first problem as
    ``MissingServiceError`` or ``ScopeViolationError`` instead.
    """

    def __init__(self, errors: Sequence[str]) -> None:
        self.errors: list[str] = list(errors)
        lines = "\n".join(f"  - {error}" for error in self.errors)
        super().__init__(
            f"Container build failed with {len(self.errors)} error(s):\n{lines}",
        )


class ScopeViolationError(DIPlanError):
    """Signal a captive dependency.

    Raised at build time in fail-fast mode when a singleton service depends,
    directly or through transient services, on a scoped service. The scoped
    instance would otherwise outlive every scope it was meant to belong to.

    Typical fixes include making the consumer scoped, making the dependency a
    singleton, or injecting ``Lazy[T]``/``ServiceFactory[T]`` instead.
    """

    def __init__(self, singleton_type: Any, scoped_type: Any) -> None:
        self.singleton_type = singleton_type
        self.scoped_type = scoped_type
        super().__init__(
            f'ScopeViolation: "{type_name(singleton_type)}" (singleton) depends on '
            f'"{type_name(scoped_type)}" (scoped).',
        )


class MissingServiceError(DIPlanError):
    """Signal that a requested service has no compiled registration.

    Raised by ``resolve``/``aresolve`` and keyed variants when the service type
    (or type and key) was never registered, and by constructor resolution when
    no implementation factory exists for the implementation type.

    Typical fixes include registering the service or using ``try_resolve``
    when absence is expected.
    """

    def __init__(self, service_type: Any, key: Any = None, message: str | None = None) -> None:
        self.service_type = service_type
        self.key = key
        if message is None:
            if key is None:
                message = f'No service registered for type "{type_name(service_type)}".'
            else:
                message = (
                    f'No keyed service registered for type "{type_name(service_type)}" '
                    f"with key {key!r}."
                )
        super().__init__(message)


class DisposalError(DIPlanError):
    """Signal that one or more instances failed to tear down.

    Raised by ``close``/``aclose`` on providers and scopes after every tracked
    instance has been attempted. ``errors`` holds one ``(instance, exception)``
    pair per failure in teardown order; ``service_type`` and ``cause`` describe
    the first failure.
    """

    def __init__(self, errors: Sequence[tuple[Any, BaseException]]) -> None:
        self.errors: list[tuple[Any, BaseException]] = list(errors)
        failing = ", ".join(type_name(type(instance)) for instance, _ in self.errors)
        super().__init__(f"{len(self.errors)} instance(s) failed to dispose: {failing}")

    @property
    def service_type(self) -> type[Any] | None:
        """Return the type of the first instance that failed to dispose."""
        if not self.errors:
            return None
        return type(self.errors[0][0])

    @property
    def cause(self) -> BaseException | None:
        """Return the exception raised by the first failing teardown."""
        if not self.errors:
            return None
        return self.errors[0][1]


class InvalidContainerStateError(DIPlanError):
    """Signal an operation that the current container state does not allow.

    Raised when registering into a ``ServiceCollection`` that was already
    built, and when resolving from or creating scopes on a provider or scope
    that has been closed.
    """


class AsyncServiceInSyncContextError(DIPlanError):
    """Signal sync resolution of a service that needs async creation.

    Raised by ``resolve`` when the selected call site is backed by an async
    factory, or when another task is still creating the same cached service
    asynchronously.

    Typical fix is switching to ``await provider.aresolve(...)``.
    """
