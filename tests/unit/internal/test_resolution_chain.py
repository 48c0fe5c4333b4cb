from __future__ import annotations

import asyncio

import pytest

from diplan import CircularDependencyError
from diplan._internal.resolution_chain import (
    ResolutionChain,
    active_resolution_chain,
    bind_resolution_chain,
)


class _A:
    pass


class _B:
    pass


def test_push_rejects_type_already_in_chain() -> None:
    chain = ResolutionChain()
    chain.push(_A)
    chain.push(_B)

    with pytest.raises(CircularDependencyError) as exc_info:
        chain.push(_A)

    assert exc_info.value.chain == [_A, _B, _A]
    assert str(exc_info.value) == "Circular dependency detected: _A -> _B -> _A"
    assert chain.path == (_A, _B)


def test_guard_pops_on_success_and_failure() -> None:
    chain = ResolutionChain()

    assert chain.guard(_A, lambda: len(chain)) == 1
    assert len(chain) == 0

    def fail() -> None:
        raise ValueError("boom")

    with pytest.raises(ValueError, match="boom"):
        chain.guard(_A, fail)
    assert _A not in chain


@pytest.mark.asyncio
async def test_aguard_pops_after_await() -> None:
    chain = ResolutionChain()

    async def step() -> bool:
        await asyncio.sleep(0)
        return _A in chain

    assert await chain.aguard(_A, step) is True
    assert _A not in chain


def test_copy_is_independent() -> None:
    chain = ResolutionChain()
    chain.push(_A)

    copied = chain.copy()
    copied.push(_B)

    assert chain.path == (_A,)
    assert copied.path == (_A, _B)


def test_nested_active_chain_reuses_enclosing_chain() -> None:
    with active_resolution_chain() as outer:
        outer.push(_A)
        with active_resolution_chain() as inner:
            assert inner is outer
            assert _A in inner

    with active_resolution_chain() as fresh:
        assert fresh is not outer
        assert len(fresh) == 0


@pytest.mark.asyncio
async def test_child_task_gets_a_copy_of_the_inherited_chain() -> None:
    with active_resolution_chain() as outer:
        outer.push(_A)

        async def child() -> tuple[bool, bool]:
            with active_resolution_chain() as inner:
                inner.push(_B)
                return inner is outer, _A in inner

        is_same, inherited = await asyncio.create_task(child())

    assert is_same is False
    assert inherited is True
    assert outer.path == (_A,)


def test_bind_resolution_chain_sets_and_restores() -> None:
    chain = ResolutionChain([_A])

    with bind_resolution_chain(chain):
        with active_resolution_chain() as active:
            assert active is chain

    with active_resolution_chain() as active:
        assert active is not chain


def test_active_chain_is_kept_per_owner() -> None:
    first, second = object(), object()

    with active_resolution_chain(first) as first_chain:
        first_chain.push(_A)
        with active_resolution_chain(second) as second_chain:
            assert second_chain is not first_chain
            assert _A not in second_chain
            with active_resolution_chain(first) as nested:
                assert nested is first_chain


def test_copy_keeps_the_owner() -> None:
    owner = object()
    chain = ResolutionChain([_A], owner=owner)

    assert chain.copy().owner is owner


@pytest.mark.asyncio
async def test_bind_replaces_only_the_chain_of_the_same_owner() -> None:
    first, second = object(), object()

    with active_resolution_chain(first) as first_chain:
        first_chain.push(_A)

        async def child() -> tuple[bool, bool]:
            with bind_resolution_chain(ResolutionChain(owner=second)) as bound:
                with active_resolution_chain(second) as second_active:
                    with active_resolution_chain(first) as first_active:
                        return second_active is bound, _A in first_active

        is_bound, inherited = await asyncio.create_task(child())

    assert is_bound is True
    assert inherited is True
