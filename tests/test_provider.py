"""Tests for provider teardown and diagnostics."""

from __future__ import annotations

import gc
import logging

import pytest

from diplan import (
    CircularDependencyError,
    ContainerOptions,
    DisposalError,
    ServiceCollection,
    ServiceProviderBase,
    ServiceRegistrationInfo,
)


class Connection:
    def __init__(self, log: list[str]) -> None:
        self._log = log

    def close(self) -> None:
        self._log.append(type(self).__name__)


class BrokenConnection(Connection):
    def close(self) -> None:
        super().close()
        raise RuntimeError("socket already closed")


class ConnectionA(Connection):
    pass


class ConnectionB(Connection):
    pass


class ConnectionC(BrokenConnection):
    pass


class Widget:
    pass


def _register(services: ServiceCollection, log: list[str]) -> None:
    services.add_singleton_factory(ConnectionA, lambda provider: ConnectionA(log))
    services.add_singleton_factory(ConnectionB, lambda provider: ConnectionB(log))
    services.add_scoped_factory(ConnectionC, lambda provider: ConnectionC(log))


def test_root_close_disposes_singletons_in_reverse_order(services: ServiceCollection) -> None:
    log: list[str] = []
    services.add_singleton_factory(ConnectionA, lambda provider: ConnectionA(log))
    services.add_singleton_factory(ConnectionB, lambda provider: ConnectionB(log))
    provider = services.build_service_provider()
    provider.resolve(ConnectionA)
    provider.resolve(ConnectionB)

    provider.close()
    provider.close()

    assert log == ["ConnectionB", "ConnectionA"]


def test_scope_close_disposes_scoped_and_transient_only(services: ServiceCollection) -> None:
    log: list[str] = []
    services.add_singleton_factory(ConnectionA, lambda provider: ConnectionA(log))
    services.add_transient_factory(ConnectionB, lambda provider: ConnectionB(log))
    provider = services.build_service_provider()

    with provider.create_scope() as scope:
        scope.resolve(ConnectionA)
        scope.resolve(ConnectionB)

    assert log == ["ConnectionB"]
    provider.close()
    assert log == ["ConnectionB", "ConnectionA"]


def test_root_close_reports_every_failure_after_attempting_all(
    services: ServiceCollection,
) -> None:
    log: list[str] = []
    _register(services, log)
    services.add_singleton_factory(BrokenConnection, lambda provider: BrokenConnection(log))
    provider = services.build_service_provider()
    provider.resolve(ConnectionA)
    provider.resolve(BrokenConnection)
    provider.resolve(ConnectionB)
    scope = provider.create_scope()
    scope.resolve(ConnectionC)

    with pytest.raises(DisposalError) as exc_info:
        provider.close()

    assert log == ["ConnectionC", "ConnectionB", "BrokenConnection", "ConnectionA"]
    failed = [type(instance) for instance, _ in exc_info.value.errors]
    assert failed == [ConnectionC, BrokenConnection]
    assert scope.is_closed


@pytest.mark.asyncio
async def test_async_context_manager_closes_provider(services: ServiceCollection) -> None:
    log: list[str] = []
    _register(services, log)

    async with services.build_service_provider() as provider:
        provider.resolve(ConnectionA)

    assert provider.is_closed
    assert log == ["ConnectionA"]


def test_instance_registrations_are_disposed_with_the_container(
    services: ServiceCollection,
) -> None:
    log: list[str] = []
    services.add_instance(Connection, Connection(log))

    with services.build_service_provider() as provider:
        provider.resolve(Connection)

    assert log == ["Connection"]


def test_factories_receive_the_resolving_scope(services: ServiceCollection) -> None:
    seen: list[ServiceProviderBase] = []

    def create_widget(provider: ServiceProviderBase) -> Widget:
        seen.append(provider)
        return Widget()

    services.add_scoped_factory(Widget, create_widget)
    provider = services.build_service_provider()

    with provider.create_scope() as scope:
        scope.resolve(Widget)

    assert seen == [scope]
    assert scope.service_provider is scope


def test_service_descriptions_and_dump(services: ServiceCollection) -> None:
    services.add_singleton(Widget)
    services.add_transient_factory(Connection, lambda provider: Connection([]))
    services.add_keyed_scoped(Widget, "side")
    services.decorate(Widget, lambda inner, provider: inner)

    provider = services.build_service_provider()
    descriptions = provider.get_service_descriptions()

    assert descriptions == [
        ServiceRegistrationInfo(
            service_type=Widget,
            lifetime_name="singleton",
            strategy_name="constructor",
            decorated=True,
        ),
        ServiceRegistrationInfo(
            service_type=Connection,
            lifetime_name="transient",
            strategy_name="factory",
        ),
        ServiceRegistrationInfo(
            service_type=Widget,
            lifetime_name="scoped",
            strategy_name="constructor",
            key="side",
        ),
    ]
    assert provider.dump_registrations().splitlines() == [
        "Widget [singleton] via constructor (decorated)",
        "Connection [transient] via factory",
        "Widget[key='side'] [scoped] via constructor",
    ]


def test_diagnostics_log_cache_hits_and_misses(
    services: ServiceCollection,
    caplog: pytest.LogCaptureFixture,
) -> None:
    services.add_singleton(Widget)
    provider = services.build_service_provider(ContainerOptions.DEVELOPMENT)

    with caplog.at_level(logging.DEBUG, logger="diplan"):
        provider.resolve(Widget)
        provider.resolve(Widget)

    assert "Cache miss for Widget, creating" in caplog.text
    assert "Cache hit for Widget" in caplog.text


def test_build_logs_summary(
    services: ServiceCollection,
    caplog: pytest.LogCaptureFixture,
) -> None:
    services.add_singleton(Widget)

    with caplog.at_level(logging.INFO, logger="diplan"):
        services.build_service_provider()

    assert "Service provider built: service_types=1 registrations=1 keyed=0" in caplog.text


# =============================================================================
# Ownership of instances created across scopes and containers
# =============================================================================


class Socket:
    def __init__(self) -> None:
        self.closed = False

    def close(self) -> None:
        self.closed = True


class SocketPool:
    def __init__(self, socket: Socket) -> None:
        self.socket = socket


def test_transient_dependency_of_singleton_outlives_the_creating_scope(
    services: ServiceCollection,
) -> None:
    services.add_transient(Socket)
    services.add_singleton(SocketPool)
    provider = services.build_service_provider()

    with provider.create_scope() as scope:
        pool = scope.resolve(SocketPool)

    assert provider.resolve(SocketPool) is pool
    assert not pool.socket.closed

    provider.close()
    assert pool.socket.closed


@pytest.mark.asyncio
async def test_async_transient_dependency_of_singleton_outlives_the_creating_scope(
    services: ServiceCollection,
) -> None:
    services.add_transient(Socket)
    services.add_singleton(SocketPool)
    provider = services.build_service_provider()

    async with provider.create_scope() as scope:
        pool = await scope.aresolve(SocketPool)

    assert not pool.socket.closed

    await provider.aclose()
    assert pool.socket.closed


def test_transient_resolved_directly_from_scope_is_closed_with_the_scope(
    services: ServiceCollection,
) -> None:
    services.add_transient(Socket)
    provider = services.build_service_provider()

    with provider.create_scope() as scope:
        socket = scope.resolve(Socket)

    assert socket.closed


def test_root_close_disposes_scopes_that_were_never_closed(services: ServiceCollection) -> None:
    services.add_scoped(Socket)
    provider = services.build_service_provider()
    socket = provider.create_scope().resolve(Socket)
    gc.collect()

    provider.close()

    assert socket.closed


def test_factory_can_resolve_the_same_type_from_another_container() -> None:
    inner_services = ServiceCollection()
    inner_services.add_singleton(Widget)
    inner = inner_services.build_service_provider()

    outer_services = ServiceCollection()
    outer_services.add_singleton_factory(Widget, lambda provider: inner.resolve(Widget))
    outer = outer_services.build_service_provider()

    assert outer.resolve(Widget) is inner.resolve(Widget)


@pytest.mark.asyncio
async def test_async_factory_can_resolve_the_same_type_from_another_container() -> None:
    inner_services = ServiceCollection()
    inner_services.add_singleton(Widget)
    inner = inner_services.build_service_provider()

    async def create_widget(provider: ServiceProviderBase) -> Widget:
        return await inner.aresolve(Widget)

    outer_services = ServiceCollection()
    outer_services.add_singleton_async(Widget, create_widget)
    outer = outer_services.build_service_provider()

    assert await outer.aresolve(Widget) is await inner.aresolve(Widget)


def test_cycle_through_another_container_is_still_detected() -> None:
    first_services = ServiceCollection()
    second_services = ServiceCollection()
    first_services.add_singleton_factory(Widget, lambda provider: second.resolve(Socket))
    second_services.add_singleton_factory(Socket, lambda provider: first.resolve(Widget))
    first = first_services.build_service_provider()
    second = second_services.build_service_provider()

    with pytest.raises(CircularDependencyError) as exc_info:
        first.resolve(Widget)

    assert exc_info.value.chain == [Widget, Widget]
