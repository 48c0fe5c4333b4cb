from __future__ import annotations

import inspect
from collections.abc import Callable
from dataclasses import dataclass
from inspect import Parameter
from typing import Any, Protocol, TypeAlias, get_type_hints

from diplan._internal.descriptors import ServiceType
from diplan.exceptions import DependencyInferenceError, InvalidRegistrationError, type_name

Resolve: TypeAlias = Callable[[ServiceType], Any]
"""Callback an implementation factory uses to request one dependency."""


@dataclass(frozen=True, slots=True, kw_only=True)
class ImplementationFactory:
    """Build instances of one implementation type.

    ``create`` receives a resolver callback and requests each dependency
    through it. ``dependencies`` optionally declares the requested types up
    front, which lets build validation skip probing and lets async resolution
    pre-resolve async dependencies.
    """

    create: Callable[[Resolve], Any]
    """Callable that builds the instance from resolved dependencies."""
    dependencies: tuple[ServiceType, ...] | None = None
    """Declared dependency types in request order, when known."""


class ImplementationFactoryLookup(Protocol):
    """Look up how to construct an implementation type."""

    def factory_for(self, implementation_type: type[Any]) -> ImplementationFactory | None:
        """Return the factory for ``implementation_type`` or ``None`` when unknown."""
        ...


class ImplementationFactoryRegistry:
    """Map implementation types to the factories that construct them.

    Explicit registrations always win. With ``autowire`` enabled, an
    unregistered class gets a factory derived from its ``__init__`` annotations:
    each required parameter is resolved by its annotated type, and parameters
    with defaults are left to the class.

    Examples:
        .. code-block:: python

            factories = ImplementationFactoryRegistry(autowire=False)
            factories.register(
                UserRepository,
                lambda resolve: UserRepository(resolve(Database)),
                dependencies=(Database,),
            )

    """

    def __init__(self, *, autowire: bool = True) -> None:
        self._autowire = autowire
        self._factories: dict[type[Any], ImplementationFactory] = {}
        self._autowired: dict[type[Any], ImplementationFactory] = {}

    @property
    def autowire(self) -> bool:
        return self._autowire

    def register(
        self,
        implementation_type: type[Any],
        create: Callable[[Resolve], Any],
        *,
        dependencies: tuple[ServiceType, ...] | None = None,
    ) -> None:
        """Register an explicit factory for ``implementation_type``.

        Args:
            implementation_type: The concrete type the factory builds.
            create: Callable receiving a resolver callback and returning the instance.
            dependencies: Types ``create`` requests, if known up front.

        Raises:
            InvalidRegistrationError: If ``create`` is not callable.

        """
        if not callable(create):
            msg = f'Implementation factory for "{type_name(implementation_type)}" must be callable.'
            raise InvalidRegistrationError(msg)
        self._factories[implementation_type] = ImplementationFactory(
            create=create,
            dependencies=tuple(dependencies) if dependencies is not None else None,
        )

    def unregister(self, implementation_type: type[Any]) -> None:
        """Remove an explicit factory and any cached autowired factory."""
        self._factories.pop(implementation_type, None)
        self._autowired.pop(implementation_type, None)

    def has_factory(self, implementation_type: type[Any]) -> bool:
        """Return whether an explicit factory is registered."""
        return implementation_type in self._factories

    def clear(self) -> None:
        """Remove every explicit and autowired factory."""
        self._factories.clear()
        self._autowired.clear()

    def factory_for(self, implementation_type: type[Any]) -> ImplementationFactory | None:
        """Return the explicit factory, else an autowired one when enabled.

        Raises:
            DependencyInferenceError: If autowiring cannot infer a required parameter.

        """
        factory = self._factories.get(implementation_type)
        if factory is not None:
            return factory
        if not self._autowire or not inspect.isclass(implementation_type):
            return None
        factory = self._autowired.get(implementation_type)
        if factory is None:
            factory = _autowire(implementation_type)
            self._autowired[implementation_type] = factory
        return factory

    def __len__(self) -> int:
        return len(self._factories)


def _autowire(implementation_type: type[Any]) -> ImplementationFactory:
    annotations, annotation_error = _constructor_type_hints(implementation_type)
    try:
        parameters = tuple(inspect.signature(implementation_type).parameters.values())
    except (TypeError, ValueError) as error:
        msg = f'Cannot read the constructor signature of "{type_name(implementation_type)}".'
        raise DependencyInferenceError(msg) from error

    positional: list[ServiceType] = []
    keyword: list[tuple[str, ServiceType]] = []
    for parameter in parameters:
        if not _is_required_parameter(parameter):
            continue
        annotation = annotations.get(parameter.name, Parameter.empty)
        if annotation is Parameter.empty:
            msg = (
                f'Cannot infer dependency "{parameter.name}" of '
                f'"{type_name(implementation_type)}": '
                "the parameter has no resolvable type annotation."
            )
            raise DependencyInferenceError(msg) from annotation_error
        if parameter.kind is Parameter.POSITIONAL_ONLY:
            positional.append(annotation)
        else:
            keyword.append((parameter.name, annotation))

    def create(resolve: Resolve) -> Any:
        args = [resolve(dependency) for dependency in positional]
        kwargs = {name: resolve(dependency) for name, dependency in keyword}
        return implementation_type(*args, **kwargs)

    dependencies = (*positional, *(dependency for _, dependency in keyword))
    return ImplementationFactory(create=create, dependencies=dependencies)


def _constructor_type_hints(
    implementation_type: type[Any],
) -> tuple[dict[str, Any], Exception | None]:
    annotations: dict[str, Any] = {}
    annotation_error: Exception | None = None
    # Class-level annotations cover dataclass fields.
    members = (implementation_type.__init__, implementation_type.__new__, implementation_type)
    for member in members:
        if member is object.__init__ or member is object.__new__:
            continue
        try:
            member_annotations = get_type_hints(member)
        except (AttributeError, NameError, TypeError) as error:
            if annotation_error is None:
                annotation_error = error
            continue
        for name, annotation in member_annotations.items():
            annotations.setdefault(name, annotation)
    annotations.pop("return", None)
    return annotations, annotation_error


def _is_required_parameter(parameter: Parameter) -> bool:
    return (
        parameter.default is Parameter.empty
        and parameter.kind is not Parameter.VAR_POSITIONAL
        and parameter.kind is not Parameter.VAR_KEYWORD
    )
