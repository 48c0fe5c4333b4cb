from __future__ import annotations

from typing import Any

from diplan._internal.provider import ServiceProviderBase, ServiceScope
from diplan.exceptions import DisposalError, InvalidContainerStateError


class ScopeManager:
    """Keep named scopes open across calls.

    Useful when a scope's lifetime is driven by external events (a user
    session, a background job) rather than a ``with`` block.

    Examples:
        .. code-block:: python

            scopes = ScopeManager(provider)
            scopes.begin_scope("session-42")
            cart = scopes.resolve("session-42", Cart)
            scopes.end_scope("session-42")

    """

    def __init__(self, root: ServiceProviderBase) -> None:
        self._root = root
        self._scopes: dict[str, ServiceScope] = {}

    def begin_scope(self, name: str) -> ServiceScope:
        """Open a scope under ``name``.

        Raises:
            InvalidContainerStateError: If a scope with that name is already open.

        """
        if name in self._scopes:
            msg = f'A scope named "{name}" already exists. Call end_scope("{name}") first.'
            raise InvalidContainerStateError(msg)
        scope = self._root.create_scope()
        self._scopes[name] = scope
        return scope

    def begin_scope_if_absent(self, name: str) -> ServiceScope:
        """Return the scope named ``name``, opening it when absent."""
        scope = self._scopes.get(name)
        if scope is None:
            scope = self.begin_scope(name)
        return scope

    def has_scope(self, name: str) -> bool:
        """Return whether a scope named ``name`` is open."""
        return name in self._scopes

    def scope(self, name: str) -> ServiceScope:
        """Return the open scope named ``name``.

        Raises:
            InvalidContainerStateError: If no scope with that name is open.

        """
        scope = self._scopes.get(name)
        if scope is None:
            msg = f'No active scope named "{name}". Call begin_scope("{name}") first.'
            raise InvalidContainerStateError(msg)
        return scope

    def resolve(self, name: str, service_type: Any) -> Any:
        """Resolve ``service_type`` from the scope named ``name``."""
        return self.scope(name).resolve(service_type)

    async def aresolve(self, name: str, service_type: Any) -> Any:
        """Asynchronously resolve ``service_type`` from the scope named ``name``."""
        return await self.scope(name).aresolve(service_type)

    def try_resolve(self, name: str, service_type: Any) -> Any | None:
        """Resolve from the named scope, returning ``None`` when unregistered."""
        return self.scope(name).try_resolve(service_type)

    def end_scope(self, name: str) -> None:
        """Close and forget the scope named ``name``.

        Raises:
            InvalidContainerStateError: If no scope with that name is open.
            DisposalError: If teardown of any scoped instance failed.

        """
        self._pop(name).close()

    async def aend_scope(self, name: str) -> None:
        """Asynchronously close and forget the scope named ``name``.

        Raises:
            InvalidContainerStateError: If no scope with that name is open.
            DisposalError: If teardown of any scoped instance failed.

        """
        await self._pop(name).aclose()

    def close_all(self) -> None:
        """Close every open scope, then raise one error for all failures.

        Raises:
            DisposalError: Listing every failed teardown across scopes.

        """
        scopes, self._scopes = self._scopes, {}
        errors: list[tuple[Any, BaseException]] = []
        for scope in scopes.values():
            try:
                scope.close()
            except DisposalError as exc:
                errors.extend(exc.errors)
        if errors:
            raise DisposalError(errors)

    async def aclose_all(self) -> None:
        """Asynchronously close every open scope, then raise one error for all failures.

        Raises:
            DisposalError: Listing every failed teardown across scopes.

        """
        scopes, self._scopes = self._scopes, {}
        errors: list[tuple[Any, BaseException]] = []
        for scope in scopes.values():
            try:
                await scope.aclose()
            except DisposalError as exc:
                errors.extend(exc.errors)
        if errors:
            raise DisposalError(errors)

    @property
    def active_scopes(self) -> tuple[str, ...]:
        """Return the names of open scopes in opening order."""
        return tuple(self._scopes)

    def _pop(self, name: str) -> ServiceScope:
        scope = self._scopes.pop(name, None)
        if scope is None:
            msg = f'No active scope named "{name}" to end.'
            raise InvalidContainerStateError(msg)
        return scope
