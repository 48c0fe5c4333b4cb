from __future__ import annotations

from collections.abc import Callable
from typing import Generic, TypeVar

from diplan._internal.descriptors import MISSING

T = TypeVar("T")


class Lazy(Generic[T]):
    """Defer resolving a service until ``value`` is first read.

    Register with ``ServiceCollection.add_lazy(Service)`` and depend on
    ``Lazy[Service]``. The wrapped service is resolved from the provider or
    scope that created the ``Lazy`` and then cached inside it.

    Examples:
        .. code-block:: python

            class ReportJob:
                def __init__(self, mailer: Lazy[Mailer]) -> None:
                    self._mailer = mailer

                def finish(self) -> None:
                    self._mailer.value.send("done")

    """

    __slots__ = ("_factory", "_value")

    def __init__(self, factory: Callable[[], T]) -> None:
        self._factory = factory
        self._value: T = MISSING

    @property
    def value(self) -> T:
        """Return the service, resolving it on first access."""
        if self._value is MISSING:
            self._value = self._factory()
        return self._value

    @property
    def is_value_created(self) -> bool:
        return self._value is not MISSING

    def __repr__(self) -> str:
        state = "created" if self.is_value_created else "pending"
        return f"Lazy({state})"


class ServiceFactory(Generic[T]):
    """Resolve a fresh service each time ``create`` is called.

    Register with ``ServiceCollection.add_service_factory(Service)`` and depend
    on ``ServiceFactory[Service]``. Each call goes through the provider or scope
    that created the factory, so lifetimes are honored: transient services are
    new per call, scoped and singleton services are shared.
    """

    __slots__ = ("_factory",)

    def __init__(self, factory: Callable[[], T]) -> None:
        self._factory = factory

    def create(self) -> T:
        """Resolve and return the service."""
        return self._factory()

    def __call__(self) -> T:
        return self._factory()
