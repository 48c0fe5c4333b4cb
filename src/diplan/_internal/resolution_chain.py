from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable, Iterator
from contextlib import contextmanager
from contextvars import ContextVar
from typing import TypeVar

from diplan._internal.descriptors import ServiceType
from diplan.exceptions import CircularDependencyError

T = TypeVar("T")


class ResolutionChain:
    """Track the types currently being constructed by one resolution.

    The ordered ``path`` is used for error messages and the companion set gives
    O(1) membership checks.
    """

    __slots__ = ("_members", "_owner", "_path")

    def __init__(self, path: list[ServiceType] | None = None, *, owner: object = None) -> None:
        self._path: list[ServiceType] = list(path or ())
        self._members: set[ServiceType] = set(self._path)
        self._owner = owner

    @property
    def path(self) -> tuple[ServiceType, ...]:
        return tuple(self._path)

    @property
    def owner(self) -> object:
        """The container whose resolutions this chain tracks."""
        return self._owner

    def push(self, service_type: ServiceType) -> None:
        """Append a type, failing if it is already being constructed.

        Raises:
            CircularDependencyError: When ``service_type`` is already in the chain.

        """
        if service_type in self._members:
            raise CircularDependencyError([*self._path, service_type])
        self._path.append(service_type)
        self._members.add(service_type)

    def pop(self) -> ServiceType:
        """Remove and return the most recently pushed type."""
        service_type = self._path.pop()
        self._members.discard(service_type)
        return service_type

    def guard(self, service_type: ServiceType, step: Callable[[], T]) -> T:
        """Run ``step`` with ``service_type`` pushed, popping on every exit path."""
        self.push(service_type)
        try:
            return step()
        finally:
            self.pop()

    async def aguard(self, service_type: ServiceType, step: Callable[[], Awaitable[T]]) -> T:
        """Await ``step`` with ``service_type`` pushed, popping on every exit path."""
        self.push(service_type)
        try:
            return await step()
        finally:
            self.pop()

    def copy(self) -> ResolutionChain:
        return ResolutionChain(self._path, owner=self._owner)

    def __contains__(self, service_type: object) -> bool:
        return service_type in self._members

    def __len__(self) -> int:
        return len(self._path)

    def __repr__(self) -> str:
        return f"ResolutionChain({self._path!r})"


# Stores (task_id, chains) with one chain per owning container, so nested calls
# into an unrelated container start a fresh chain and a chain inherited by
# another asyncio task is copied before use.
_active_chains: ContextVar[tuple[int | None, tuple[ResolutionChain, ...]]] = ContextVar(
    "diplan_resolution_chains",
    default=(None, ()),
)


def _get_context_id() -> int | None:
    """Return the id of the running asyncio task, or None outside of one."""
    try:
        task = asyncio.current_task()
    except RuntimeError:
        return None
    return id(task) if task is not None else None


def _current_chains() -> tuple[int | None, tuple[ResolutionChain, ...]]:
    current_id = _get_context_id()
    owner_id, chains = _active_chains.get()
    if owner_id != current_id:
        chains = tuple(chain.copy() for chain in chains)
    return current_id, chains


def _find_chain(chains: tuple[ResolutionChain, ...], owner: object) -> ResolutionChain | None:
    for chain in chains:
        if chain.owner is owner:
            return chain
    return None


@contextmanager
def active_resolution_chain(owner: object = None) -> Iterator[ResolutionChain]:
    """Yield the chain for the current resolution of ``owner``.

    A top-level call gets a fresh chain. A nested call made from inside a
    factory in the same task reuses the enclosing chain of the same owner, so
    cycles that pass through user factories are still caught. Calls into a
    different owner never see that chain. A different task that inherited the
    context works on its own copy.
    """
    owner_id, _ = _active_chains.get()
    current_id, chains = _current_chains()
    chain = _find_chain(chains, owner)
    if chain is not None and owner_id == current_id:
        yield chain
        return

    # A copied chain for this owner is already part of ``chains``.
    if chain is None:
        chain = ResolutionChain(owner=owner)
        chains = (*chains, chain)
    token = _active_chains.set((current_id, chains))
    try:
        yield chain
    finally:
        _active_chains.reset(token)


@contextmanager
def bind_resolution_chain(chain: ResolutionChain) -> Iterator[ResolutionChain]:
    """Make ``chain`` the active chain of its owner in the current task."""
    current_id, chains = _current_chains()
    others = tuple(other for other in chains if other.owner is not chain.owner)
    token = _active_chains.set((current_id, (*others, chain)))
    try:
        yield chain
    finally:
        _active_chains.reset(token)
