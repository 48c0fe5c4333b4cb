"""Tests for aresolve(), async factories and the async reservation protocol."""

from __future__ import annotations

import asyncio
from typing import Any

import pytest

from diplan import (
    AsyncServiceInSyncContextError,
    CircularDependencyError,
    ServiceCollection,
    ServiceProviderBase,
)

# =============================================================================
# Test Data Classes
# =============================================================================


class Pool:
    """An async resource released through ``aclose``."""

    def __init__(self) -> None:
        self.closed = False

    async def aclose(self) -> None:
        self.closed = True


class Repository:
    def __init__(self, pool: Pool) -> None:
        self.pool = pool


class First:
    pass


class Second:
    pass


# =============================================================================
# Basic async resolution
# =============================================================================


@pytest.mark.asyncio
async def test_async_factory_result_is_awaited(services: ServiceCollection) -> None:
    async def create_pool(provider: ServiceProviderBase) -> Pool:
        await asyncio.sleep(0)
        return Pool()

    services.add_singleton_async(Pool, create_pool)
    provider = services.build_service_provider()

    pool = await provider.aresolve(Pool)

    assert isinstance(pool, Pool)
    assert await provider.aresolve(Pool) is pool


@pytest.mark.asyncio
async def test_coroutine_factory_registered_through_factory_helper_is_async(
    services: ServiceCollection,
) -> None:
    async def create_pool(provider: ServiceProviderBase) -> Pool:
        return Pool()

    services.add_transient_factory(Pool, create_pool)
    provider = services.build_service_provider()

    first = await provider.aresolve(Pool)
    second = await provider.aresolve(Pool)

    assert first is not second
    with pytest.raises(AsyncServiceInSyncContextError, match="aresolve"):
        provider.resolve(Pool)


@pytest.mark.asyncio
async def test_async_dependency_is_injected_into_constructor(
    services: ServiceCollection,
) -> None:
    async def create_pool(provider: ServiceProviderBase) -> Pool:
        return Pool()

    services.add_singleton_async(Pool, create_pool)
    services.add_scoped(Repository)
    provider = services.build_service_provider()

    async with provider.create_scope() as scope:
        repository = await scope.aresolve(Repository)

    assert repository.pool is await provider.aresolve(Pool)


def test_sync_resolve_of_async_factory_raises(services: ServiceCollection) -> None:
    async def create_pool(provider: ServiceProviderBase) -> Pool:
        return Pool()

    services.add_singleton_async(Pool, create_pool)
    services.add_transient(Repository)
    provider = services.build_service_provider()

    with pytest.raises(AsyncServiceInSyncContextError):
        provider.resolve(Pool)
    with pytest.raises(AsyncServiceInSyncContextError):
        provider.resolve(Repository)


@pytest.mark.asyncio
async def test_async_scoped_services_are_per_scope(services: ServiceCollection) -> None:
    async def create_pool(provider: ServiceProviderBase) -> Pool:
        return Pool()

    services.add_scoped_async(Pool, create_pool)
    provider = services.build_service_provider()

    async with provider.create_scope() as first, provider.create_scope() as second:
        first_pool = await first.aresolve(Pool)
        assert await first.aresolve(Pool) is first_pool
        assert await second.aresolve(Pool) is not first_pool

    assert first_pool.closed


# =============================================================================
# Reservation protocol
# =============================================================================


@pytest.mark.asyncio
async def test_concurrent_singleton_resolution_invokes_factory_once(
    services: ServiceCollection,
) -> None:
    calls = 0

    async def create_pool(provider: ServiceProviderBase) -> Pool:
        nonlocal calls
        calls += 1
        await asyncio.sleep(0.01)
        return Pool()

    services.add_singleton_async(Pool, create_pool)
    provider = services.build_service_provider()

    results = await asyncio.gather(*(provider.aresolve(Pool) for _ in range(5)))

    assert calls == 1
    assert all(result is results[0] for result in results)


@pytest.mark.asyncio
async def test_waiters_share_failure_and_later_resolution_retries(
    services: ServiceCollection,
) -> None:
    calls = 0

    async def create_pool(provider: ServiceProviderBase) -> Pool:
        nonlocal calls
        calls += 1
        await asyncio.sleep(0.01)
        if calls == 1:
            raise ConnectionError("database unavailable")
        return Pool()

    services.add_singleton_async(Pool, create_pool)
    provider = services.build_service_provider()

    results = await asyncio.gather(
        provider.aresolve(Pool),
        provider.aresolve(Pool),
        return_exceptions=True,
    )

    assert calls == 1
    assert all(isinstance(result, ConnectionError) for result in results)
    assert results[0] is results[1]

    pool = await provider.aresolve(Pool)
    assert calls == 2
    assert await provider.aresolve(Pool) is pool


@pytest.mark.asyncio
async def test_sync_resolve_during_async_creation_raises(services: ServiceCollection) -> None:
    release = asyncio.Event()

    async def create_pool(provider: ServiceProviderBase) -> Pool:
        await release.wait()
        return Pool()

    services.add_singleton_async(Pool, create_pool)
    provider = services.build_service_provider()

    pending = asyncio.create_task(provider.aresolve(Pool))
    await asyncio.sleep(0)

    with pytest.raises(AsyncServiceInSyncContextError, match="being created asynchronously"):
        provider.resolve(Pool)

    release.set()
    assert isinstance(await pending, Pool)


@pytest.mark.asyncio
async def test_cancelled_caller_does_not_abort_shared_creation(
    services: ServiceCollection,
) -> None:
    calls = 0
    release = asyncio.Event()

    async def create_pool(provider: ServiceProviderBase) -> Pool:
        nonlocal calls
        calls += 1
        await release.wait()
        return Pool()

    services.add_singleton_async(Pool, create_pool)
    provider = services.build_service_provider()

    caller = asyncio.create_task(provider.aresolve(Pool))
    await asyncio.sleep(0)
    caller.cancel()
    with pytest.raises(asyncio.CancelledError):
        await caller

    waiter = asyncio.create_task(provider.aresolve(Pool))
    await asyncio.sleep(0)
    release.set()

    assert isinstance(await waiter, Pool)
    assert calls == 1


@pytest.mark.asyncio
async def test_async_factories_can_resolve_other_services(services: ServiceCollection) -> None:
    async def create_pool(provider: ServiceProviderBase) -> Pool:
        return Pool()

    async def create_repository(provider: ServiceProviderBase) -> Repository:
        return Repository(await provider.aresolve(Pool))

    services.add_singleton_async(Pool, create_pool)
    services.add_scoped_async(Repository, create_repository)
    provider = services.build_service_provider()

    async with provider.create_scope() as scope:
        repository = await scope.aresolve(Repository)

    assert repository.pool is await provider.aresolve(Pool)


@pytest.mark.asyncio
async def test_async_factory_cycle_is_detected_across_creation_tasks(
    services: ServiceCollection,
) -> None:
    async def create_first(provider: ServiceProviderBase) -> First:
        await provider.aresolve(Second)
        return First()

    async def create_second(provider: ServiceProviderBase) -> Second:
        await provider.aresolve(First)
        return Second()

    services.add_singleton_async(First, create_first)
    services.add_singleton_async(Second, create_second)
    provider = services.build_service_provider()

    with pytest.raises(CircularDependencyError) as exc_info:
        await provider.aresolve(First)

    assert exc_info.value.chain == [First, Second, First]


# =============================================================================
# Multi, keyed and optional async lookups
# =============================================================================


@pytest.mark.asyncio
async def test_aresolve_all_and_keyed_variants(services: ServiceCollection) -> None:
    async def create_pool(provider: ServiceProviderBase) -> Pool:
        return Pool()

    async def create_keyed(provider: ServiceProviderBase, key: Any) -> Pool:
        return Pool()

    services.add_transient_async(Pool, create_pool)
    services.add_singleton_async(Pool, create_pool)
    services.add_keyed_singleton_factory(Pool, "replica", create_keyed)
    services.add_keyed_scoped_async(Pool, "primary", create_pool)
    provider = services.build_service_provider()

    pools = await provider.aresolve_all(Pool)
    replica = await provider.aresolve_keyed(Pool, "replica")

    assert len(pools) == 2
    assert pools[1] is await provider.aresolve(Pool)
    assert replica is await provider.aresolve_keyed(Pool, "replica")
    assert replica is not pools[1]
    async with provider.create_scope() as scope:
        primary = await scope.aresolve_keyed(Pool, "primary")
        assert await scope.aresolve_keyed(Pool, "primary") is primary
    assert await provider.atry_resolve(Repository) is None
    assert await provider.atry_resolve_keyed(Pool, "missing") is None


@pytest.mark.asyncio
async def test_aclose_awaits_async_teardown(services: ServiceCollection) -> None:
    async def create_pool(provider: ServiceProviderBase) -> Pool:
        return Pool()

    services.add_singleton_async(Pool, create_pool)
    provider = services.build_service_provider()
    pool = await provider.aresolve(Pool)

    await provider.aclose()

    assert pool.closed
    assert provider.is_closed
