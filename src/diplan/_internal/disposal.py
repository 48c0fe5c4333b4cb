from __future__ import annotations

import inspect
import logging
from typing import Any, Protocol, runtime_checkable

from diplan.exceptions import DisposalError, InvalidContainerStateError, type_name

logger = logging.getLogger(__name__)


@runtime_checkable
class Disposable(Protocol):
    """An object released synchronously through ``close()``."""

    def close(self) -> Any: ...


@runtime_checkable
class AsyncDisposable(Protocol):
    """An object released asynchronously through ``aclose()``."""

    def aclose(self) -> Any: ...


def is_disposable(instance: Any) -> bool:
    """Return whether an instance exposes a teardown capability."""
    if isinstance(instance, type):
        return False
    return isinstance(instance, (Disposable, AsyncDisposable))


class DisposalTracker:
    """Record created instances and release them in reverse creation order.

    Only instances exposing ``close()`` or ``aclose()`` are tracked. Teardown
    attempts every instance even when earlier ones fail, then raises a single
    ``DisposalError`` listing all failures. Disposing twice is a no-op.
    """

    def __init__(self, owner: str = "container") -> None:
        self._owner = owner
        self._instances: list[Any] = []
        self._tracked_ids: set[int] = set()
        self._disposed = False

    @property
    def is_disposed(self) -> bool:
        return self._disposed

    def track(self, instance: Any) -> None:
        """Append ``instance`` when it can be torn down.

        Raises:
            InvalidContainerStateError: If the tracker was already disposed.

        """
        if self._disposed:
            msg = f"Cannot track new instances after the {self._owner} has been closed."
            raise InvalidContainerStateError(msg)
        if is_disposable(instance) and id(instance) not in self._tracked_ids:
            self._tracked_ids.add(id(instance))
            self._instances.append(instance)

    def dispose(self) -> None:
        """Release tracked instances synchronously, newest first.

        Instances that only expose ``aclose()`` are skipped with a warning; use
        ``adispose`` to release them.

        Raises:
            DisposalError: If at least one teardown raised.

        """
        if self._disposed:
            return
        self._disposed = True
        instances, self._instances = self._instances, []
        self._tracked_ids.clear()

        errors: list[tuple[Any, BaseException]] = []
        for instance in reversed(instances):
            if not isinstance(instance, Disposable):
                logger.warning(
                    "Skipping async-only disposable %s during sync close of the %s; "
                    "use aclose() to release it",
                    type_name(type(instance)),
                    self._owner,
                )
                continue
            try:
                instance.close()
            except Exception as exc:
                logger.warning(
                    "Disposal of %s failed: %s",
                    type_name(type(instance)),
                    exc,
                )
                errors.append((instance, exc))

        if errors:
            raise DisposalError(errors)

    async def adispose(self) -> None:
        """Release tracked instances, awaiting ``aclose()`` where available.

        Raises:
            DisposalError: If at least one teardown raised.

        """
        if self._disposed:
            return
        self._disposed = True
        instances, self._instances = self._instances, []
        self._tracked_ids.clear()

        errors: list[tuple[Any, BaseException]] = []
        for instance in reversed(instances):
            try:
                if isinstance(instance, AsyncDisposable):
                    await instance.aclose()
                else:
                    result = instance.close()
                    if inspect.isawaitable(result):
                        await result
            except Exception as exc:
                logger.warning(
                    "Disposal of %s failed: %s",
                    type_name(type(instance)),
                    exc,
                )
                errors.append((instance, exc))

        if errors:
            raise DisposalError(errors)

    def __len__(self) -> int:
        return len(self._instances)
